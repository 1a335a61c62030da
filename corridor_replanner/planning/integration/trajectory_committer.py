"""
Trajectory Committer
Receding-horizon commit point selection and edge-triggered arrival detection.
"""

import numpy as np
import logging
from typing import Dict, Optional, Any

from corridor_replanner.planning.trajectory.polynomial_trajectory import PolynomialTrajectory

def compute_commit_target(trajectory: PolynomialTrajectory, horizon: float) -> np.ndarray:
    """
    Position on ``trajectory`` at ``horizon`` seconds from its start.

    Horizons past the end are clamped to the final position.
    """
    if horizon < 0.0:
        raise ValueError(f"Commit horizon must be non-negative, got {horizon}")
    if trajectory.is_empty():
        raise ValueError("Cannot commit on an empty trajectory")
    return trajectory.position(min(horizon, trajectory.total_duration()))

def check_arrival(current: np.ndarray, target: np.ndarray, threshold: float) -> bool:
    return bool(np.linalg.norm(np.asarray(current, dtype=float) -
                               np.asarray(target, dtype=float)) < threshold)

class ArrivalLatch:
    """
    Edge-triggered arrival event.

    Fires when a position update moves from outside to inside the threshold
    ball around the target. ``consume`` returns True once per event.
    """

    def __init__(self, threshold: float):
        self.threshold = threshold
        self.target: Optional[np.ndarray] = None
        self._inside = False
        self._pending = False

    def reset(self, target: Optional[np.ndarray]):
        """Arm for a new target, discarding any unconsumed event."""
        self.target = None if target is None else np.asarray(target, dtype=float).copy()
        self._inside = False
        self._pending = False

    def update(self, position: np.ndarray) -> bool:
        """Feed a position; returns True on the outside-to-inside transition."""
        if self.target is None:
            return False

        inside = check_arrival(position, self.target, self.threshold)
        fired = inside and not self._inside
        self._inside = inside
        if fired:
            self._pending = True
        return fired

    def consume(self) -> bool:
        pending = self._pending
        self._pending = False
        return pending

    @property
    def pending(self) -> bool:
        return self._pending

class TrajectoryCommitter:
    """Holds the commit horizon and the arrival latch of the current commit."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.horizon = config.get('commit_time', 1.0)                # seconds
        self.arrival_threshold = config.get('arrival_threshold', 0.5)  # meters

        if self.horizon < 0.0:
            raise ValueError("commit_time must be non-negative")

        self.latch = ArrivalLatch(self.arrival_threshold)
        self.commit_target: Optional[np.ndarray] = None
        self.commit_time = 0.0

        self.logger.info("Trajectory Committer initialized")
        self.logger.info(f"Commit horizon: {self.horizon}s, "
                         f"Arrival threshold: {self.arrival_threshold}m")

    def commit(self, trajectory: PolynomialTrajectory) -> np.ndarray:
        """Select the commit point of a fresh trajectory and re-arm the latch."""
        self.commit_time = min(self.horizon, trajectory.total_duration())
        self.commit_target = compute_commit_target(trajectory, self.horizon)
        self.latch.reset(self.commit_target)
        self.logger.debug(f"Committed to {self.commit_target} at t={self.commit_time:.2f}s")
        return self.commit_target.copy()

    def clear(self):
        self.commit_target = None
        self.commit_time = 0.0
        self.latch.reset(None)

    def update_position(self, position: np.ndarray) -> bool:
        return self.latch.update(position)

    def consume_arrival(self) -> bool:
        return self.latch.consume()
