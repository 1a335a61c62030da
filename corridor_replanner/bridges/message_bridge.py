"""
Message Bridge
Transport-agnostic boundary of the planner: validates inbound messages and
fans outbound payloads out to topic subscribers.
"""

import numpy as np
import logging
import threading
import time
from typing import Dict, List, Optional, Any, Callable
from dataclasses import dataclass
from collections import defaultdict

from corridor_replanner.bridges.messages import (
    DesiredTrajectoryMessage,
    PoseMessage,
    TrajectoryAction,
)
from corridor_replanner.planning.status import PlanningStatus

@dataclass
class Topics:
    """Topic names."""

    # Inbound
    pose: str = "odom"
    goal: str = "waypoints"
    point_cloud: str = "obstacle_points"
    obstacle_state: str = "obs"

    # Outbound
    desired_trajectory: str = "des_trajectory"
    committed_path: str = "rrt_waypoints"
    command: str = "rrt_command"
    tree_view: str = "rrt_tree"
    corridor_view: str = "corridor"
    trajectory_view: str = "trajectory"

class MessageBridge:
    """
    In-process publish/subscribe bridge.

    Inbound ``receive_*`` methods validate raw payloads, drop malformed ones,
    and publish the cleaned message on the matching inbound topic.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 transform: Optional[Callable[[np.ndarray], np.ndarray]] = None):
        config = config or {}
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.topics = Topics()
        for key, value in config.get('topics', {}).items():
            if hasattr(self.topics, key):
                setattr(self.topics, key, value)
            else:
                self.logger.warning(f"Unknown topic key ignored: {key}")

        # Maps obstacle points into the planning frame; may raise to signal failure
        self.transform = transform

        self._subscribers: Dict[str, List[Callable[[Any], None]]] = defaultdict(list)
        self._latest: Dict[str, Any] = {}
        self.bridge_lock = threading.Lock()

        self.bridge_stats = {
            'received': 0,
            'dropped': 0,
            'published': 0,
            'callback_errors': 0,
            'last_drop_status': None,
            'last_drop_reason': None,
        }

        self.logger.info("Message Bridge initialized")

    def subscribe(self, topic: str, callback: Callable[[Any], None]):
        with self.bridge_lock:
            self._subscribers[topic].append(callback)

    def unsubscribe(self, topic: str, callback: Callable[[Any], None]):
        with self.bridge_lock:
            if callback in self._subscribers[topic]:
                self._subscribers[topic].remove(callback)

    def publish(self, topic: str, payload: Any):
        """Deliver ``payload`` to every subscriber of ``topic``."""
        with self.bridge_lock:
            self._latest[topic] = payload
            callbacks = list(self._subscribers[topic])
            self.bridge_stats['published'] += 1

        for callback in callbacks:
            try:
                callback(payload)
            except Exception as e:
                self.bridge_stats['callback_errors'] += 1
                self.logger.error(f"Subscriber of '{topic}' failed: {e}")

    def get_latest(self, topic: str) -> Optional[Any]:
        with self.bridge_lock:
            return self._latest.get(topic)

    def receive_pose(self, position, velocity=None, acceleration=None,
                     timestamp: Optional[float] = None, yaw: float = 0.0) -> Optional[PoseMessage]:
        """Validate and publish a pose update."""
        self.bridge_stats['received'] += 1

        vectors = []
        for name, value in (('position', position), ('velocity', velocity),
                            ('acceleration', acceleration)):
            vector = self._as_vector(value if value is not None else np.zeros(3))
            if vector is None:
                return self._drop(f"pose {name} is malformed")
            vectors.append(vector)

        if not np.isfinite(yaw):
            return self._drop("pose yaw is not finite")

        message = PoseMessage(
            timestamp=time.time() if timestamp is None else timestamp,
            position=vectors[0],
            velocity=vectors[1],
            acceleration=vectors[2],
            yaw=float(yaw)
        )
        self.publish(self.topics.pose, message)
        return message

    def receive_goal(self, waypoints) -> Optional[np.ndarray]:
        """
        Validate a goal waypoint list; the first waypoint is the goal.

        Empty lists and a negative altitude (the cancel sentinel) are dropped.
        """
        self.bridge_stats['received'] += 1

        try:
            points = np.asarray(waypoints, dtype=float)
        except (TypeError, ValueError):
            return self._drop("goal waypoints are not numeric")

        if points.size == 0:
            return self._drop("goal waypoint list is empty")
        if points.ndim != 2 or points.shape[1] != 3:
            return self._drop(f"goal waypoints have shape {points.shape}")

        goal = points[0]
        if not np.all(np.isfinite(goal)):
            return self._drop("goal is not finite")
        if goal[2] < 0.0:
            return self._drop("goal altitude is negative")

        goal = goal.copy()
        self.publish(self.topics.goal, goal)
        return goal

    def receive_point_cloud(self, points) -> Optional[np.ndarray]:
        """Validate, transform and publish an obstacle point snapshot."""
        self.bridge_stats['received'] += 1

        try:
            cloud = np.asarray(points, dtype=float)
        except (TypeError, ValueError):
            return self._drop("point cloud is not numeric")

        if cloud.size == 0:
            # An empty snapshot is a valid observation of free space
            cloud = np.zeros((0, 3))
        if cloud.ndim != 2 or cloud.shape[1] != 3:
            return self._drop(f"point cloud has shape {cloud.shape}")
        if not np.all(np.isfinite(cloud)):
            return self._drop("point cloud contains non-finite points")

        if self.transform is not None:
            try:
                cloud = np.asarray(self.transform(cloud), dtype=float).reshape(-1, 3)
            except Exception as e:
                return self._drop(f"point cloud transform failed: {e}")

        self.publish(self.topics.point_cloud, cloud)
        return cloud

    def receive_obstacle_state(self, state) -> Optional[np.ndarray]:
        """
        Simulation state vector; its first three entries are the robot
        position. Returns that position.
        """
        self.bridge_stats['received'] += 1

        try:
            vector = np.asarray(state, dtype=float).reshape(-1)
        except (TypeError, ValueError):
            return self._drop("obstacle state is not numeric")

        if vector.size < 3 or not np.all(np.isfinite(vector[:3])):
            return self._drop("obstacle state has no valid start position")

        start = vector[:3].copy()
        self.publish(self.topics.obstacle_state, start)
        return start

    def send_trajectory(self, message: DesiredTrajectoryMessage):
        self.publish(self.topics.desired_trajectory, message)

    def send_action(self, action: TrajectoryAction, trajectory_id: int = 0,
                    start_time: float = 0.0):
        self.publish(self.topics.desired_trajectory,
                     DesiredTrajectoryMessage(action=action, trajectory_id=trajectory_id,
                                              start_time=start_time))

    def get_statistics(self) -> Dict[str, Any]:
        return self.bridge_stats.copy()

    def _as_vector(self, value) -> Optional[np.ndarray]:
        try:
            vector = np.asarray(value, dtype=float).reshape(-1)
        except (TypeError, ValueError):
            return None
        if vector.shape != (3,) or not np.all(np.isfinite(vector)):
            return None
        return vector

    def _drop(self, reason: str) -> None:
        self.bridge_stats['dropped'] += 1
        self.bridge_stats['last_drop_status'] = PlanningStatus.PERCEPTION_DROPPED.value
        self.bridge_stats['last_drop_reason'] = reason
        self.logger.warning(f"Dropped inbound message: {reason}")
        return None
