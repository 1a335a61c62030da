"""
Trajectory Optimizer
Minimum-jerk piecewise quintic trajectory through a safe flight corridor.

Waypoints are placed at the Chebyshev centers of consecutive polytope
intersections, the minimum-jerk coefficients for fixed segment durations are
the solution of one linear system (position pinned at waypoints, continuity up
to snap in between), and segment durations are rescaled until velocity and
acceleration respect their magnitude bounds.
"""

import numpy as np
import logging
import time
from typing import Dict, List, Tuple, Optional, Any
from dataclasses import dataclass

from corridor_replanner.planning.geometry import Polytope, chebyshev_center, contains_point
from corridor_replanner.planning.trajectory.polynomial_trajectory import (
    PolynomialTrajectory,
    NUM_COEFFS,
    basis,
)

@dataclass
class MagnitudeBounds:
    """Kinematic limits."""
    v_max: float = 2.0      # m/s
    a_max: float = 3.0      # m/s²

@dataclass
class PenaltyWeights:
    """Constraint violation penalty weights."""
    position: float = 1.0e4
    velocity: float = 1.0e3
    acceleration: float = 1.0e3
    thrust: float = 1.0e2

@dataclass
class PhysicalParams:
    """Point-mass vehicle parameters for the thrust check."""
    mass: float = 1.0           # kg
    gravity: float = 9.81       # m/s²
    min_thrust: float = 2.0     # N
    max_thrust: float = 20.0    # N

def smoothed_l1(x: np.ndarray, mu: float) -> np.ndarray:
    """C2-smooth approximation of max(x, 0)."""
    x = np.asarray(x, dtype=float)
    result = np.zeros_like(x)
    if mu <= 0.0:
        return np.maximum(x, 0.0)

    inner = (x > 0.0) & (x < mu)
    outer = x >= mu
    result[inner] = (mu - 0.5 * x[inner]) * (x[inner] / mu) ** 3
    result[outer] = x[outer] - 0.5 * mu
    return result

class TrajectoryOptimizer:
    """
    Corridor-constrained minimum-jerk trajectory generator.

    Usage mirrors the two-phase optimizer contract: ``setup`` validates the
    problem and returns False when it is degenerate, ``optimize`` fills the
    output trajectory and returns the final cost (infinite on failure).
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.allocation_factor = config.get('allocation_factor', 2.0)
        self.min_segment_duration = config.get('min_segment_duration', 0.05)   # seconds
        self.max_iterations = config.get('max_iterations', 30)
        self.containment_tolerance = config.get('containment_tolerance', 1e-4)  # meters
        self.feasibility_tolerance = config.get('feasibility_tolerance', 0.02)

        self._ready = False
        self._waypoints: Optional[np.ndarray] = None
        self._corridor: List[Polytope] = []
        self._initial_state = np.zeros((3, 3))
        self._final_state = np.zeros((3, 3))
        self._time_weight = 1.0
        self._time_limit = 0.1
        self._smoothing_eps = 0.01
        self._quadrature_resolution = 16
        self._bounds = MagnitudeBounds()
        self._weights = PenaltyWeights()
        self._physical = PhysicalParams()

        self.logger.info("Trajectory Optimizer initialized")
        self.logger.info(f"Allocation factor: {self.allocation_factor}, "
                         f"Max iterations: {self.max_iterations}")

    def setup(self, time_weight: float,
              initial_state: np.ndarray,
              final_state: np.ndarray,
              corridor: List[Polytope],
              time_limit: float,
              smoothing_eps: float,
              quadrature_resolution: int,
              magnitude_bounds: MagnitudeBounds,
              penalty_weights: PenaltyWeights,
              physical_params: PhysicalParams) -> bool:
        """
        Prepare an optimization problem.

        Args:
            time_weight: weight of total duration in the cost
            initial_state: (3, 3) rows position, velocity, acceleration
            final_state: (3, 3) rows position, velocity, acceleration
            corridor: ordered polytopes from start to goal
            time_limit: wall-clock budget for optimize() in seconds
            smoothing_eps: smoothing width of the penalty functions
            quadrature_resolution: samples per segment for cost integration
            magnitude_bounds: kinematic limits
            penalty_weights: constraint penalty weights
            physical_params: vehicle parameters

        Returns:
            False when the problem is degenerate
        """
        self._ready = False

        initial_state = np.asarray(initial_state, dtype=float)
        final_state = np.asarray(final_state, dtype=float)
        if initial_state.shape != (3, 3) or final_state.shape != (3, 3):
            self.logger.warning("Boundary states must be 3x3 (position, velocity, acceleration)")
            return False
        if not (np.all(np.isfinite(initial_state)) and np.all(np.isfinite(final_state))):
            self.logger.warning("Boundary states must be finite")
            return False
        if not corridor:
            self.logger.warning("Empty corridor rejected")
            return False
        if quadrature_resolution < 1 or time_limit <= 0.0:
            self.logger.warning("Quadrature resolution and time limit must be positive")
            return False

        tolerance = self.containment_tolerance
        if not contains_point(corridor[0].half_spaces, initial_state[0], tolerance):
            self.logger.warning(f"Initial position {initial_state[0]} outside the first polytope")
            return False
        if not contains_point(corridor[-1].half_spaces, final_state[0], tolerance):
            self.logger.warning(f"Final position {final_state[0]} outside the last polytope")
            return False

        waypoints = [initial_state[0]]
        for previous, current in zip(corridor[:-1], corridor[1:]):
            center = chebyshev_center(np.vstack([previous.half_spaces, current.half_spaces]))
            if center is None or center[1] < -tolerance:
                self.logger.warning("Consecutive corridor polytopes do not intersect")
                return False
            waypoints.append(center[0])
        waypoints.append(final_state[0])

        self._waypoints = np.asarray(waypoints)
        self._corridor = list(corridor)
        self._initial_state = initial_state
        self._final_state = final_state
        self._time_weight = time_weight
        self._time_limit = time_limit
        self._smoothing_eps = smoothing_eps
        self._quadrature_resolution = int(quadrature_resolution)
        self._bounds = magnitude_bounds
        self._weights = penalty_weights
        self._physical = physical_params
        self._ready = True

        self.logger.debug(f"Optimizer setup: {len(corridor)} segments")
        return True

    def optimize(self, trajectory: PolynomialTrajectory,
                 relative_cost_tolerance: float) -> float:
        """
        Solve the prepared problem into ``trajectory``.

        Returns:
            Final cost, ``inf`` when setup was not accepted or the solve failed
        """
        if not self._ready:
            self.logger.warning("optimize() called without an accepted setup")
            return float('inf')

        optimize_start = time.time()
        durations = self._allocate_durations()

        v_limit = max(self._bounds.v_max,
                      np.linalg.norm(self._initial_state[1]),
                      np.linalg.norm(self._final_state[1]))
        a_limit = max(self._bounds.a_max,
                      np.linalg.norm(self._initial_state[2]),
                      np.linalg.norm(self._final_state[2]))

        best: Optional[Tuple[float, np.ndarray, np.ndarray]] = None
        best_feasible = False
        previous_cost = None

        for iteration in range(self.max_iterations):
            try:
                coefficients = self._solve_coefficients(durations)
            except np.linalg.LinAlgError as e:
                self.logger.warning(f"Minimum-jerk system is singular: {e}")
                return float('inf')

            cost, max_speed, max_acc = self._evaluate_cost(durations, coefficients)
            if not np.isfinite(cost):
                self.logger.warning("Trajectory cost diverged")
                return float('inf')

            ratio = max(max_speed / v_limit, np.sqrt(max_acc / a_limit))
            feasible = ratio <= 1.0 + self.feasibility_tolerance

            if best is None or (feasible and not best_feasible) or \
                    (feasible == best_feasible and cost < best[0]):
                best = (cost, durations.copy(), coefficients)
                best_feasible = feasible

            converged = previous_cost is not None and \
                abs(previous_cost - cost) <= relative_cost_tolerance * max(abs(previous_cost), 1e-9)
            if feasible and (converged or ratio > 0.9):
                break
            if time.time() - optimize_start > self._time_limit:
                self.logger.debug("Optimizer time limit reached")
                break

            previous_cost = cost
            if ratio > 1.0:
                durations = durations * ratio
            elif self._time_weight > 0.0:
                durations = np.maximum(durations * max(ratio, 0.5), self.min_segment_duration)
            else:
                break

        cost, durations, coefficients = best
        trajectory.set_segments(durations, coefficients)

        self.logger.debug(f"Optimized trajectory: {len(durations)} segments, "
                          f"duration {np.sum(durations):.2f}s, cost {cost:.3f}, "
                          f"feasible {best_feasible}")
        return cost

    def _allocate_durations(self) -> np.ndarray:
        distances = np.linalg.norm(np.diff(self._waypoints, axis=0), axis=1)
        durations = self.allocation_factor * distances / self._bounds.v_max
        return np.maximum(durations, self.min_segment_duration)

    def _solve_coefficients(self, durations: np.ndarray) -> np.ndarray:
        """
        Minimum-jerk coefficients for fixed durations.

        Returns:
            (M, 3, 6) coefficient matrices, highest power first
        """
        num_segments = durations.size
        size = NUM_COEFFS * num_segments
        A = np.zeros((size, size))
        B = np.zeros((size, 3))
        row = 0

        for k in range(3):
            A[row, 0:NUM_COEFFS] = basis(0.0, k)
            B[row] = self._initial_state[k]
            row += 1

        for i in range(num_segments - 1):
            current = slice(NUM_COEFFS * i, NUM_COEFFS * (i + 1))
            following = slice(NUM_COEFFS * (i + 1), NUM_COEFFS * (i + 2))
            T = durations[i]

            A[row, current] = basis(T, 0)
            B[row] = self._waypoints[i + 1]
            row += 1
            A[row, following] = basis(0.0, 0)
            B[row] = self._waypoints[i + 1]
            row += 1

            for k in range(1, 5):
                A[row, current] = basis(T, k)
                A[row, following] = -basis(0.0, k)
                row += 1

        last = slice(NUM_COEFFS * (num_segments - 1), size)
        for k in range(3):
            A[row, last] = basis(durations[-1], k)
            B[row] = self._final_state[k]
            row += 1

        solution = np.linalg.solve(A, B)
        return solution.reshape(num_segments, NUM_COEFFS, 3).transpose(0, 2, 1)

    def _evaluate_cost(self, durations: np.ndarray,
                       coefficients: np.ndarray) -> Tuple[float, float, float]:
        """Cost, max speed and max acceleration sampled over all segments."""
        resolution = self._quadrature_resolution
        gravity = np.array([0.0, 0.0, self._physical.gravity])
        mu = self._smoothing_eps

        jerk_energy = 0.0
        penalty = 0.0
        max_speed = 0.0
        max_acc = 0.0

        for i, T in enumerate(durations):
            times = np.linspace(0.0, T, resolution + 1)
            weights = np.full(resolution + 1, T / resolution)
            weights[[0, -1]] *= 0.5

            position = np.array([coefficients[i] @ basis(t, 0) for t in times])
            velocity = np.array([coefficients[i] @ basis(t, 1) for t in times])
            acceleration = np.array([coefficients[i] @ basis(t, 2) for t in times])
            jerk = np.array([coefficients[i] @ basis(t, 3) for t in times])

            jerk_energy += float(np.sum(weights * np.sum(jerk ** 2, axis=1)))

            h_poly = self._corridor[i].half_spaces
            violation = np.max(position @ h_poly[:, :3].T + h_poly[:, 3], axis=1)
            penalty += self._weights.position * float(np.sum(weights * smoothed_l1(violation, mu) ** 2))

            speed_sq = np.sum(velocity ** 2, axis=1)
            acc_sq = np.sum(acceleration ** 2, axis=1)
            penalty += self._weights.velocity * float(
                np.sum(weights * smoothed_l1(speed_sq - self._bounds.v_max ** 2, mu)))
            penalty += self._weights.acceleration * float(
                np.sum(weights * smoothed_l1(acc_sq - self._bounds.a_max ** 2, mu)))

            thrust = self._physical.mass * np.linalg.norm(acceleration + gravity, axis=1)
            penalty += self._weights.thrust * float(np.sum(weights * (
                smoothed_l1(thrust - self._physical.max_thrust, mu) +
                smoothed_l1(self._physical.min_thrust - thrust, mu))))

            max_speed = max(max_speed, float(np.sqrt(np.max(speed_sq))))
            max_acc = max(max_acc, float(np.sqrt(np.max(acc_sq))))

        cost = self._time_weight * float(np.sum(durations)) + jerk_energy + penalty
        return cost, max_speed, max_acc
