"""
Trajectory Follower
Samples the installed trajectory at a fixed control rate, independent of the
planning rate, and falls back to hovering when no trajectory is available.
"""

import numpy as np
import logging
import threading
import time
from typing import Dict, Optional, Any, Callable

from corridor_replanner.bridges.messages import (
    DesiredTrajectoryMessage,
    PoseMessage,
    TrajectoryAction,
    TrajectoryCommand,
)
from corridor_replanner.planning.trajectory.polynomial_trajectory import PolynomialTrajectory
from corridor_replanner.utils.math_utils import MathUtils

class TrajectoryFollower:
    """
    Fixed-rate command generator.

    Heading either faces the goal or the direction of travel and is rate
    limited: the wrapped heading error is saturated to one control period of
    maximum yaw rate, turned into a rate of sign(error) * w_max, low-pass
    filtered and integrated.

    After WARN_FINAL the installed trajectory is flown to its end before the
    follower hovers at the goal, rather than hovering at the goal immediately.
    """

    def __init__(self, config: Dict[str, Any], bridge=None,
                 clock: Optional[Callable[[], float]] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.control_rate = config.get('control_rate', 100.0)     # Hz
        self.dc = config.get('dc', 1.0 / self.control_rate)       # seconds
        self.w_max = config.get('w_max', 1.0)                     # rad/s
        self.alpha = config.get('alpha', 0.5)
        self.face_goal = config.get('face_goal', True)
        self.repeat_hover = config.get('repeat_hover', False)
        self.min_heading_speed = config.get('min_heading_speed', 0.1)   # m/s

        self.bridge = bridge
        self.clock = clock or time.time

        self._trajectory: Optional[PolynomialTrajectory] = None
        self._trajectory_id = 0
        self._start_time = 0.0
        self._goal_final = False
        self._hover_sent = False

        self.goal: Optional[np.ndarray] = None
        self.heading_target: Optional[np.ndarray] = None
        self.last_position: Optional[np.ndarray] = None
        self.previous_yaw = 0.0
        self.filtered_yaw_rate = 0.0

        self.follower_lock = threading.Lock()

        self.follower_stats = {
            'commands': 0,
            'hover_commands': 0,
            'trajectories_added': 0,
            'stale_rejected': 0,
            'aborts': 0,
        }

        self.logger.info("Trajectory Follower initialized")
        self.logger.info(f"Control rate: {self.control_rate}Hz, Max yaw rate: {self.w_max}rad/s, "
                         f"Face goal: {self.face_goal}")

    def handle_trajectory_message(self, message: DesiredTrajectoryMessage) -> bool:
        """Apply an ADD / WARN_FINAL / ABORT message; returns False if rejected."""
        with self.follower_lock:
            if message.action is TrajectoryAction.ADD:
                if message.trajectory_id < self._trajectory_id:
                    self.follower_stats['stale_rejected'] += 1
                    self.logger.warning(f"Backward trajectory {message.trajectory_id} rejected "
                                        f"(installed {self._trajectory_id})")
                    return False
                try:
                    trajectory = message.to_trajectory()
                except ValueError as e:
                    self.logger.warning(f"Malformed trajectory message dropped: {e}")
                    return False

                self._trajectory = trajectory
                self._trajectory_id = message.trajectory_id
                self._start_time = message.start_time
                self._hover_sent = False
                self.follower_stats['trajectories_added'] += 1
                self.logger.debug(f"Trajectory {message.trajectory_id} installed: "
                                  f"{trajectory.segment_count()} segments")
                return True

            if message.action is TrajectoryAction.WARN_FINAL:
                self._goal_final = True
                return True

            self._trajectory = None
            self.follower_stats['aborts'] += 1
            self.logger.warning("Trajectory aborted")
            return True

    def update_pose(self, pose: PoseMessage):
        with self.follower_lock:
            self.last_position = np.asarray(pose.position, dtype=float).copy()

    def set_goal(self, goal: np.ndarray):
        with self.follower_lock:
            self.goal = np.asarray(goal, dtype=float).copy()
            self._goal_final = False

    def set_heading_target(self, point: Optional[np.ndarray]):
        with self.follower_lock:
            self.heading_target = None if point is None else np.asarray(point, dtype=float).copy()

    def has_trajectory(self) -> bool:
        with self.follower_lock:
            return self._trajectory is not None

    def compute_command(self, now: Optional[float] = None) -> Optional[TrajectoryCommand]:
        """
        Command for time ``now``.

        Returns None when hovering and the hover command was already sent.
        """
        now = self.clock() if now is None else now

        with self.follower_lock:
            if self._trajectory is not None:
                elapsed = now - self._start_time
                if elapsed > self._trajectory.total_duration():
                    self.logger.debug(f"Trajectory {self._trajectory_id} completed")
                    self._trajectory = None

            if self._trajectory is None:
                command = self._hover_command(now)
            else:
                command = self._tracking_command(now, max(elapsed, 0.0))

        if command is not None:
            self.follower_stats['commands'] += 1
            if self.bridge is not None:
                self.bridge.publish(self.bridge.topics.command, command)
        return command

    def _tracking_command(self, now: float, elapsed: float) -> TrajectoryCommand:
        trajectory = self._trajectory
        position = trajectory.position(elapsed)
        velocity = trajectory.velocity(elapsed)

        current = self.last_position if self.last_position is not None else position
        yaw = self._rate_limited_yaw(self._desired_yaw(current, velocity))

        return TrajectoryCommand(
            timestamp=now,
            position=position,
            velocity=velocity,
            acceleration=trajectory.acceleration(elapsed),
            jerk=trajectory.jerk(elapsed),
            yaw=yaw,
            hover=False,
            trajectory_id=self._trajectory_id
        )

    def _hover_command(self, now: float) -> Optional[TrajectoryCommand]:
        if self._hover_sent and not self.repeat_hover:
            return None
        self._hover_sent = True

        if self._goal_final and self.goal is not None:
            position = self.goal.copy()
        elif self.last_position is not None:
            position = self.last_position.copy()
        else:
            position = np.zeros(3)

        self.follower_stats['hover_commands'] += 1
        self.logger.debug(f"Hover command at {position}")

        return TrajectoryCommand(
            timestamp=now,
            position=position,
            yaw=self.previous_yaw,
            hover=True
        )

    def _desired_yaw(self, current: np.ndarray, velocity: np.ndarray) -> float:
        if self.face_goal and self.goal is not None:
            direction = self.goal - current
        elif self.heading_target is not None:
            direction = self.heading_target - current
        elif np.linalg.norm(velocity[:2]) > self.min_heading_speed:
            direction = velocity
        else:
            return self.previous_yaw

        if np.linalg.norm(direction[:2]) < 1e-9:
            return self.previous_yaw
        return MathUtils.heading(direction)

    def _rate_limited_yaw(self, desired_yaw: float) -> float:
        step_limit = self.dc * self.w_max
        diff = MathUtils.normalize_angle(desired_yaw - self.previous_yaw)
        diff = MathUtils.clamp(diff, -step_limit, step_limit)

        yaw_rate = np.copysign(1.0, diff) * self.w_max
        self.filtered_yaw_rate = (1.0 - self.alpha) * yaw_rate + self.alpha * self.filtered_yaw_rate
        yaw = MathUtils.normalize_angle(self.previous_yaw + self.filtered_yaw_rate * self.dc)

        self.previous_yaw = yaw
        return yaw

    def get_statistics(self) -> Dict[str, Any]:
        stats = self.follower_stats.copy()
        stats['trajectory_id'] = self._trajectory_id
        return stats
