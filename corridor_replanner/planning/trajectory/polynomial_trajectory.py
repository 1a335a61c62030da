"""
Piecewise quintic polynomial trajectory.
"""

import numpy as np
from typing import List, Optional, Sequence, Tuple

ORDER = 5
NUM_COEFFS = ORDER + 1

class PolynomialTrajectory:
    """
    Piecewise polynomial in 3-D position.

    Each segment is a ``3 x 6`` coefficient matrix whose columns hold the
    coefficients from the highest power down to the constant term, evaluated in
    segment-local time ``[0, duration]``. Evaluation clamps ``t`` to
    ``[0, total_duration]``.
    """

    def __init__(self, durations: Optional[Sequence[float]] = None,
                 coefficients: Optional[Sequence[np.ndarray]] = None):
        self._durations = np.zeros(0)
        self._coefficients = np.zeros((0, 3, NUM_COEFFS))
        self._start_times = np.zeros(0)

        if durations is not None and coefficients is not None:
            self.set_segments(durations, coefficients)

    def set_segments(self, durations: Sequence[float], coefficients: Sequence[np.ndarray]):
        durations = np.asarray(durations, dtype=float).reshape(-1)
        coefficients = np.asarray(coefficients, dtype=float)

        if durations.size == 0:
            raise ValueError("Trajectory needs at least one segment")
        if coefficients.shape != (durations.size, 3, NUM_COEFFS):
            raise ValueError(f"Expected coefficients of shape {(durations.size, 3, NUM_COEFFS)}, "
                             f"got {coefficients.shape}")
        if np.any(durations <= 0.0) or not np.all(np.isfinite(durations)):
            raise ValueError("Segment durations must be positive and finite")
        if not np.all(np.isfinite(coefficients)):
            raise ValueError("Segment coefficients must be finite")

        self._durations = durations.copy()
        self._coefficients = coefficients.copy()
        self._start_times = np.concatenate(([0.0], np.cumsum(durations)[:-1]))

    def clear(self):
        self._durations = np.zeros(0)
        self._coefficients = np.zeros((0, 3, NUM_COEFFS))
        self._start_times = np.zeros(0)

    def is_empty(self) -> bool:
        return self._durations.size == 0

    def segment_count(self) -> int:
        return int(self._durations.size)

    def total_duration(self) -> float:
        return float(np.sum(self._durations))

    @property
    def durations(self) -> np.ndarray:
        return self._durations.copy()

    @property
    def coefficients(self) -> np.ndarray:
        return self._coefficients.copy()

    def position(self, t: float) -> np.ndarray:
        return self._evaluate(t, 0)

    def velocity(self, t: float) -> np.ndarray:
        return self._evaluate(t, 1)

    def acceleration(self, t: float) -> np.ndarray:
        return self._evaluate(t, 2)

    def jerk(self, t: float) -> np.ndarray:
        return self._evaluate(t, 3)

    def state(self, t: float) -> np.ndarray:
        """Rows: position, velocity, acceleration."""
        return np.vstack([self.position(t), self.velocity(t), self.acceleration(t)])

    def sample(self, dt: float) -> Tuple[np.ndarray, np.ndarray]:
        """Uniformly sampled times and positions, end point included."""
        if self.is_empty():
            return np.zeros(0), np.zeros((0, 3))
        total = self.total_duration()
        times = np.append(np.arange(0.0, total, dt), total)
        return times, np.array([self.position(t) for t in times])

    def truncated(self, t: float) -> 'PolynomialTrajectory':
        """Copy of the trajectory ending at ``t``."""
        if self.is_empty():
            raise ValueError("Cannot truncate an empty trajectory")

        index, local_t = self._locate(t)
        durations = list(self._durations[:index])
        coefficients = list(self._coefficients[:index])

        if local_t > 1e-9:
            durations.append(local_t)
            coefficients.append(self._coefficients[index])

        if not durations:
            raise ValueError(f"Truncation at t={t} leaves no segment")
        return PolynomialTrajectory(durations, coefficients)

    def concatenated(self, other: 'PolynomialTrajectory') -> 'PolynomialTrajectory':
        """Segments of ``self`` followed by the segments of ``other``."""
        if self.is_empty():
            return PolynomialTrajectory(other.durations, other.coefficients)
        if other.is_empty():
            return PolynomialTrajectory(self.durations, self.coefficients)
        return PolynomialTrajectory(
            np.concatenate([self._durations, other.durations]),
            np.concatenate([self._coefficients, other.coefficients])
        )

    def _locate(self, t: float) -> Tuple[int, float]:
        total = self.total_duration()
        t = min(max(float(t), 0.0), total)

        index = int(np.searchsorted(self._start_times, t, side='right')) - 1
        index = min(max(index, 0), self.segment_count() - 1)
        local_t = min(t - self._start_times[index], self._durations[index])
        return index, local_t

    def _evaluate(self, t: float, derivative: int) -> np.ndarray:
        if self.is_empty():
            raise ValueError("Cannot evaluate an empty trajectory")

        index, local_t = self._locate(t)
        return self._coefficients[index] @ basis(local_t, derivative)

def basis(t: float, derivative: int) -> np.ndarray:
    """
    Derivative of the monomial basis ``[t^5, t^4, ..., 1]`` at ``t``.
    """
    row = np.zeros(NUM_COEFFS)
    for column in range(NUM_COEFFS):
        power = ORDER - column
        if power < derivative:
            continue
        factor = 1.0
        for k in range(derivative):
            factor *= power - k
        row[column] = factor * t ** (power - derivative)
    return row

def flatten_coefficients(trajectory: PolynomialTrajectory) -> List[float]:
    """Row-major ``3 x 6`` matrices, segment after segment."""
    return trajectory.coefficients.reshape(-1).tolist()

def unflatten_coefficients(flat: Sequence[float], num_segments: int) -> np.ndarray:
    return np.asarray(flat, dtype=float).reshape(num_segments, 3, NUM_COEFFS)
