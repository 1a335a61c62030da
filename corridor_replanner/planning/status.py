"""
Planning status and lifecycle enums shared across the replanning core.
"""

from enum import Enum


class PlannerState(Enum):
    """Replanning orchestrator lifecycle states."""
    NO_TARGET = "no_target"
    INITIAL_PLAN = "initial_plan"
    TRACKING = "tracking"
    REPLAN_PENDING = "replan_pending"


class PlanningStatus(Enum):
    """Outcome of a planning step.

    Every failure listed here is recovered locally: the orchestrator degrades
    to "no trajectory" and the follower hovers.
    """
    SUCCESS = "success"
    UNCHANGED = "unchanged"
    NAVIGATION_COMPLETE = "navigation_complete"

    NOT_READY = "not_ready"
    PATH_NOT_FOUND = "path_not_found"
    CORRIDOR_GAP_UNRESOLVED = "corridor_gap_unresolved"
    TRAJECTORY_SETUP_REJECTED = "trajectory_setup_rejected"
    TRAJECTORY_DIVERGED = "trajectory_diverged"
    PERCEPTION_DROPPED = "perception_dropped"

    @property
    def is_failure(self) -> bool:
        return self in (
            PlanningStatus.PATH_NOT_FOUND,
            PlanningStatus.CORRIDOR_GAP_UNRESOLVED,
            PlanningStatus.TRAJECTORY_SETUP_REJECTED,
            PlanningStatus.TRAJECTORY_DIVERGED,
        )
