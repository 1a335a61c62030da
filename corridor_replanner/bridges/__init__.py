from corridor_replanner.bridges.messages import (
    DesiredTrajectoryMessage,
    PoseMessage,
    TrajectoryAction,
    TrajectoryCommand,
)
from corridor_replanner.bridges.message_bridge import MessageBridge, Topics

__all__ = [
    "MessageBridge",
    "Topics",
    "DesiredTrajectoryMessage",
    "PoseMessage",
    "TrajectoryAction",
    "TrajectoryCommand",
]
