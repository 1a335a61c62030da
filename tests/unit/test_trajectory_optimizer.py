import numpy as np
import pytest

from corridor_replanner.planning.trajectory import (
    MagnitudeBounds,
    PenaltyWeights,
    PhysicalParams,
    PolynomialTrajectory,
    TrajectoryOptimizer,
)
from corridor_replanner.planning.trajectory.trajectory_optimizer import smoothed_l1

from conftest import box_polytope


def rest_state(position):
    state = np.zeros((3, 3))
    state[0] = position
    return state


class TestSmoothedL1:

    def test_regions(self):
        values = smoothed_l1(np.array([-1.0, 0.0, 0.05, 0.1, 1.0]), 0.1)
        assert values[0] == 0.0
        assert values[1] == 0.0
        assert 0.0 < values[2] < 0.05
        assert values[3] == pytest.approx(0.05)
        assert values[4] == pytest.approx(0.95)

    def test_zero_width_is_hinge(self):
        np.testing.assert_array_equal(smoothed_l1(np.array([-1.0, 2.0]), 0.0), [0.0, 2.0])


class TestTrajectoryOptimizer:

    @pytest.fixture
    def optimizer(self):
        return TrajectoryOptimizer({'max_iterations': 30})

    @staticmethod
    def _setup(optimizer, corridor, start, goal, v_max=2.0, a_max=3.0, time_limit=1.0):
        return optimizer.setup(
            time_weight=20.0,
            initial_state=rest_state(start),
            final_state=rest_state(goal),
            corridor=corridor,
            time_limit=time_limit,
            smoothing_eps=0.01,
            quadrature_resolution=16,
            magnitude_bounds=MagnitudeBounds(v_max=v_max, a_max=a_max),
            penalty_weights=PenaltyWeights(),
            physical_params=PhysicalParams(),
        )

    def test_optimize_without_setup_is_infinite(self, optimizer):
        trajectory = PolynomialTrajectory()
        assert optimizer.optimize(trajectory, 1e-5) == float('inf')
        assert trajectory.is_empty()

    def test_rejects_empty_corridor(self, optimizer):
        assert not self._setup(optimizer, [], np.zeros(3), np.ones(3))

    def test_rejects_start_outside_corridor(self, optimizer):
        corridor = [box_polytope([-1.0, -1.0, -1.0], [11.0, 1.0, 1.0])]
        assert not self._setup(optimizer, corridor, np.array([-5.0, 0.0, 0.0]),
                               np.array([10.0, 0.0, 0.0]))
        assert not self._setup(optimizer, corridor, np.zeros(3), np.array([20.0, 0.0, 0.0]))

    def test_rejects_disjoint_polytopes(self, optimizer):
        corridor = [box_polytope([-1.0, -1.0, -1.0], [3.0, 1.0, 1.0]),
                    box_polytope([5.0, -1.0, -1.0], [11.0, 1.0, 1.0])]
        assert not self._setup(optimizer, corridor, np.zeros(3), np.array([10.0, 0.0, 0.0]))

    def test_rejects_malformed_states(self, optimizer):
        corridor = [box_polytope([-1.0, -1.0, -1.0], [11.0, 1.0, 1.0])]
        assert not optimizer.setup(20.0, np.zeros(3), rest_state(np.zeros(3)), corridor, 1.0,
                                   0.01, 16, MagnitudeBounds(), PenaltyWeights(),
                                   PhysicalParams())
        bad = rest_state(np.zeros(3))
        bad[1, 0] = np.nan
        assert not optimizer.setup(20.0, bad, rest_state(np.zeros(3)), corridor, 1.0,
                                   0.01, 16, MagnitudeBounds(), PenaltyWeights(),
                                   PhysicalParams())

    def test_single_polytope_rest_to_rest(self, optimizer):
        start, goal = np.zeros(3), np.array([10.0, 0.0, 0.0])
        corridor = [box_polytope([-1.0, -1.0, -1.0], [11.0, 1.0, 1.0])]

        assert self._setup(optimizer, corridor, start, goal)
        trajectory = PolynomialTrajectory()
        cost = optimizer.optimize(trajectory, 1e-5)

        assert np.isfinite(cost)
        assert trajectory.segment_count() == 1
        duration = trajectory.total_duration()
        assert duration > 0.0
        np.testing.assert_array_almost_equal(trajectory.position(0.0), start)
        np.testing.assert_array_almost_equal(trajectory.position(duration), goal)
        np.testing.assert_array_almost_equal(trajectory.velocity(duration), np.zeros(3))

        times = np.linspace(0.0, duration, 101)
        speeds = [np.linalg.norm(trajectory.velocity(t)) for t in times]
        assert max(speeds) <= 2.0 * 1.02 + 1e-6

    def test_waypoint_at_intersection_center(self, optimizer):
        corridor = [box_polytope([-1.0, -1.0, -1.0], [6.0, 1.0, 1.0]),
                    box_polytope([4.0, -1.0, -1.0], [11.0, 1.0, 1.0])]

        assert self._setup(optimizer, corridor, np.zeros(3), np.array([10.0, 0.0, 0.0]))
        trajectory = PolynomialTrajectory()
        assert np.isfinite(optimizer.optimize(trajectory, 1e-5))

        assert trajectory.segment_count() == 2
        junction = trajectory.durations[0]
        np.testing.assert_array_almost_equal(trajectory.position(junction), [5.0, 0.0, 0.0],
                                             decimal=5)
        np.testing.assert_array_almost_equal(trajectory.velocity(junction - 1e-9),
                                             trajectory.velocity(junction + 1e-9), decimal=5)
        np.testing.assert_array_almost_equal(trajectory.acceleration(junction - 1e-9),
                                             trajectory.acceleration(junction + 1e-9), decimal=5)

    def test_durations_scale_to_velocity_bound(self, optimizer):
        start, goal = np.zeros(3), np.array([10.0, 0.0, 0.0])
        corridor = [box_polytope([-1.0, -1.0, -1.0], [11.0, 1.0, 1.0])]

        assert self._setup(optimizer, corridor, start, goal, v_max=0.5)
        trajectory = PolynomialTrajectory()
        assert np.isfinite(optimizer.optimize(trajectory, 1e-5))

        times = np.linspace(0.0, trajectory.total_duration(), 201)
        speeds = [np.linalg.norm(trajectory.velocity(t)) for t in times]
        assert max(speeds) <= 0.5 * 1.02 + 1e-6

    def test_moving_initial_state(self, optimizer):
        """The boundary velocity is kept even above the nominal bound."""
        initial = rest_state(np.zeros(3))
        initial[1] = [2.5, 0.0, 0.0]
        corridor = [box_polytope([-1.0, -1.0, -1.0], [11.0, 1.0, 1.0])]

        assert optimizer.setup(20.0, initial, rest_state(np.array([10.0, 0.0, 0.0])), corridor,
                               1.0, 0.01, 16, MagnitudeBounds(), PenaltyWeights(),
                               PhysicalParams())
        trajectory = PolynomialTrajectory()
        assert np.isfinite(optimizer.optimize(trajectory, 1e-5))
        np.testing.assert_array_almost_equal(trajectory.velocity(0.0), [2.5, 0.0, 0.0])
