import numpy as np
import pytest
from unittest.mock import MagicMock

from corridor_replanner.bridges import (
    DesiredTrajectoryMessage,
    MessageBridge,
    TrajectoryAction,
)

from conftest import line_trajectory


class TestMessageBridge:

    @pytest.fixture
    def bridge(self):
        return MessageBridge()

    def _subscriber(self, bridge, topic):
        callback = MagicMock()
        bridge.subscribe(topic, callback)
        return callback

    def test_topic_overrides(self):
        bridge = MessageBridge({'topics': {'pose': 'state', 'unknown': 'x'}})
        assert bridge.topics.pose == 'state'
        assert bridge.topics.goal == 'waypoints'

    def test_pose_published(self, bridge):
        callback = self._subscriber(bridge, bridge.topics.pose)

        message = bridge.receive_pose([1.0, 2.0, 3.0], velocity=[0.5, 0.0, 0.0], timestamp=4.0)

        callback.assert_called_once_with(message)
        np.testing.assert_array_equal(message.position, [1.0, 2.0, 3.0])
        np.testing.assert_array_equal(message.acceleration, np.zeros(3))
        assert message.timestamp == 4.0

    @pytest.mark.parametrize("position", [[1.0, 2.0], [np.nan, 0.0, 0.0], "abc"])
    def test_malformed_pose_dropped(self, bridge, position):
        callback = self._subscriber(bridge, bridge.topics.pose)
        assert bridge.receive_pose(position) is None
        callback.assert_not_called()
        assert bridge.get_statistics()['dropped'] == 1

    def test_goal_is_first_waypoint(self, bridge):
        callback = self._subscriber(bridge, bridge.topics.goal)

        goal = bridge.receive_goal([[10.0, 0.0, 1.0], [20.0, 0.0, 1.0]])

        np.testing.assert_array_equal(goal, [10.0, 0.0, 1.0])
        callback.assert_called_once()

    @pytest.mark.parametrize("waypoints", [
        [],
        [[1.0, 2.0]],
        [[1.0, 2.0, -0.5]],
        [[np.inf, 0.0, 1.0]],
    ])
    def test_invalid_goal_dropped(self, bridge, waypoints):
        callback = self._subscriber(bridge, bridge.topics.goal)
        assert bridge.receive_goal(waypoints) is None
        callback.assert_not_called()

    def test_point_cloud_published(self, bridge):
        callback = self._subscriber(bridge, bridge.topics.point_cloud)
        cloud = bridge.receive_point_cloud(np.ones((4, 3)))
        assert cloud.shape == (4, 3)
        callback.assert_called_once()

    def test_empty_point_cloud_is_free_space(self, bridge):
        callback = self._subscriber(bridge, bridge.topics.point_cloud)
        cloud = bridge.receive_point_cloud([])
        assert cloud.shape == (0, 3)
        callback.assert_called_once()

    def test_invalid_point_cloud_dropped(self, bridge):
        callback = self._subscriber(bridge, bridge.topics.point_cloud)
        assert bridge.receive_point_cloud(np.ones((4, 2))) is None
        assert bridge.receive_point_cloud(np.array([[0.0, np.nan, 1.0]])) is None
        callback.assert_not_called()
        assert bridge.get_statistics()['dropped'] == 2

    def test_point_cloud_transform(self):
        bridge = MessageBridge(transform=lambda points: points + np.array([1.0, 0.0, 0.0]))
        cloud = bridge.receive_point_cloud(np.zeros((2, 3)))
        np.testing.assert_array_equal(cloud, [[1.0, 0.0, 0.0], [1.0, 0.0, 0.0]])

    def test_failed_transform_drops_snapshot(self):
        transform = MagicMock(side_effect=RuntimeError("no transform available"))
        bridge = MessageBridge(transform=transform)
        callback = MagicMock()
        bridge.subscribe(bridge.topics.point_cloud, callback)

        assert bridge.receive_point_cloud(np.zeros((2, 3))) is None
        callback.assert_not_called()

        stats = bridge.get_statistics()
        assert stats['last_drop_status'] == "perception_dropped"
        assert "no transform available" in stats['last_drop_reason']

    def test_obstacle_state_start_position(self, bridge):
        callback = self._subscriber(bridge, bridge.topics.obstacle_state)

        start = bridge.receive_obstacle_state([1.0, 2.0, 3.0, 9.0, 9.0])

        np.testing.assert_array_equal(start, [1.0, 2.0, 3.0])
        callback.assert_called_once()
        assert bridge.receive_obstacle_state([1.0]) is None

    def test_failing_subscriber_is_isolated(self, bridge):
        failing = MagicMock(side_effect=RuntimeError("boom"))
        healthy = MagicMock()
        bridge.subscribe("topic", failing)
        bridge.subscribe("topic", healthy)

        bridge.publish("topic", 42)

        healthy.assert_called_once_with(42)
        assert bridge.get_statistics()['callback_errors'] == 1
        assert bridge.get_latest("topic") == 42

    def test_unsubscribe(self, bridge):
        callback = self._subscriber(bridge, "topic")
        bridge.unsubscribe("topic", callback)
        bridge.publish("topic", 1)
        callback.assert_not_called()

    def test_send_action(self, bridge):
        callback = self._subscriber(bridge, bridge.topics.desired_trajectory)
        bridge.send_action(TrajectoryAction.ABORT, trajectory_id=3)

        message = callback.call_args[0][0]
        assert message.action is TrajectoryAction.ABORT
        assert message.trajectory_id == 3


class TestDesiredTrajectoryMessage:

    def test_trajectory_payload(self):
        trajectory = line_trajectory(np.zeros(3), np.array([2.0, 0.0, 0.0]), 2.0)
        message = DesiredTrajectoryMessage.from_trajectory(trajectory, 7, 1.5)

        assert message.action is TrajectoryAction.ADD
        assert message.num_segments == 1
        assert message.order == 5
        assert len(message.coefficients_flat) == 18

        decoded = message.to_trajectory()
        np.testing.assert_array_almost_equal(decoded.position(1.0), [1.0, 0.0, 0.0])

    @pytest.mark.parametrize("changes", [
        {'order': 7},
        {'num_segments': 2},
        {'coefficients_flat': [0.0] * 17},
    ])
    def test_inconsistent_payload(self, changes):
        trajectory = line_trajectory(np.zeros(3), np.ones(3), 1.0)
        message = DesiredTrajectoryMessage.from_trajectory(trajectory, 1, 0.0)
        for key, value in changes.items():
            setattr(message, key, value)

        with pytest.raises(ValueError):
            message.to_trajectory()
