"""
Message types exchanged across the planner boundary.
"""

import numpy as np
from typing import List, Optional
from dataclasses import dataclass, field
from enum import Enum

from corridor_replanner.planning.trajectory.polynomial_trajectory import (
    PolynomialTrajectory,
    ORDER,
    flatten_coefficients,
    unflatten_coefficients,
)

class TrajectoryAction(Enum):
    """Desired-trajectory message actions."""
    ADD = 1
    ABORT = 2
    WARN_FINAL = 4

@dataclass
class DesiredTrajectoryMessage:
    """Piecewise polynomial trajectory on the wire."""
    action: TrajectoryAction
    trajectory_id: int = 0
    start_time: float = 0.0
    durations: List[float] = field(default_factory=list)
    coefficients_flat: List[float] = field(default_factory=list)
    num_segments: int = 0
    order: int = ORDER

    @classmethod
    def from_trajectory(cls, trajectory: PolynomialTrajectory, trajectory_id: int,
                        start_time: float) -> 'DesiredTrajectoryMessage':
        return cls(
            action=TrajectoryAction.ADD,
            trajectory_id=trajectory_id,
            start_time=start_time,
            durations=trajectory.durations.tolist(),
            coefficients_flat=flatten_coefficients(trajectory),
            num_segments=trajectory.segment_count(),
            order=ORDER
        )

    def to_trajectory(self) -> PolynomialTrajectory:
        """Rebuild the trajectory; raises ValueError on inconsistent payloads."""
        if self.order != ORDER:
            raise ValueError(f"Unsupported polynomial order {self.order}")
        if self.num_segments != len(self.durations):
            raise ValueError(f"num_segments={self.num_segments} but "
                             f"{len(self.durations)} durations")
        if len(self.coefficients_flat) != self.num_segments * 3 * (ORDER + 1):
            raise ValueError("Coefficient payload size does not match segment count")

        coefficients = unflatten_coefficients(self.coefficients_flat, self.num_segments)
        return PolynomialTrajectory(self.durations, coefficients)

@dataclass
class PoseMessage:
    timestamp: float
    position: np.ndarray
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    acceleration: np.ndarray = field(default_factory=lambda: np.zeros(3))
    yaw: float = 0.0

@dataclass
class TrajectoryCommand:
    """Fixed-rate tracking command."""
    timestamp: float
    position: np.ndarray
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    acceleration: np.ndarray = field(default_factory=lambda: np.zeros(3))
    jerk: np.ndarray = field(default_factory=lambda: np.zeros(3))
    yaw: float = 0.0
    hover: bool = False
    trajectory_id: Optional[int] = None
