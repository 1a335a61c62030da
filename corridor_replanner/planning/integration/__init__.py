from corridor_replanner.planning.integration.trajectory_committer import (
    ArrivalLatch,
    TrajectoryCommitter,
    check_arrival,
    compute_commit_target,
)
from corridor_replanner.planning.integration.replanning_orchestrator import (
    ReplanningOrchestrator,
    TickResult,
    TrajectorySnapshot,
)
from corridor_replanner.planning.integration.trajectory_follower import TrajectoryFollower

__all__ = [
    "ArrivalLatch",
    "TrajectoryCommitter",
    "check_arrival",
    "compute_commit_target",
    "ReplanningOrchestrator",
    "TickResult",
    "TrajectorySnapshot",
    "TrajectoryFollower",
]
