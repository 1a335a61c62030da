"""
Half-space geometry helpers for the safe flight corridor.

Polytopes are stored in homogeneous half-space form: an ``(m, 4)`` array whose
rows ``[n_x, n_y, n_z, d]`` encode ``n . x + d <= 0``. Evaluating a polytope at
a point is therefore ``H @ [x, 1]``.
"""

import numpy as np
import logging
from typing import List, Optional, Tuple
from dataclasses import dataclass, field

from scipy.optimize import linprog
from scipy.spatial import HalfspaceIntersection, ConvexHull

logger = logging.getLogger(__name__)


@dataclass
class Polytope:
    """Convex free-space region of the corridor."""
    half_spaces: np.ndarray
    seed_start: np.ndarray = field(default_factory=lambda: np.zeros(3))
    seed_end: np.ndarray = field(default_factory=lambda: np.zeros(3))
    is_connector: bool = False

    def evaluate(self, point: np.ndarray) -> np.ndarray:
        return evaluate_half_spaces(self.half_spaces, point)

    def contains(self, point: np.ndarray, eps: float = 1e-6) -> bool:
        return contains_point(self.half_spaces, point, eps)

    @property
    def num_constraints(self) -> int:
        return int(self.half_spaces.shape[0])


def box_half_spaces(low_corner: np.ndarray, high_corner: np.ndarray) -> np.ndarray:
    """Axis-aligned box ``low <= x <= high`` as six half-spaces."""
    low = np.asarray(low_corner, dtype=float)
    high = np.asarray(high_corner, dtype=float)

    h_poly = np.zeros((6, 4))
    for axis in range(3):
        h_poly[2 * axis, axis] = 1.0
        h_poly[2 * axis, 3] = -high[axis]
        h_poly[2 * axis + 1, axis] = -1.0
        h_poly[2 * axis + 1, 3] = low[axis]
    return h_poly


def evaluate_half_spaces(h_poly: np.ndarray, point: np.ndarray) -> np.ndarray:
    """Signed constraint values at ``point``; non-positive means satisfied."""
    homogeneous = np.append(np.asarray(point, dtype=float), 1.0)
    return h_poly @ homogeneous


def contains_point(h_poly: np.ndarray, point: np.ndarray, eps: float = 1e-6) -> bool:
    return bool(np.all(evaluate_half_spaces(h_poly, point) <= eps))


def points_inside(h_poly: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Boolean mask of points strictly inside every half-space."""
    points = np.asarray(points, dtype=float).reshape(-1, 3)
    if points.shape[0] == 0:
        return np.zeros(0, dtype=bool)
    values = points @ h_poly[:, :3].T + h_poly[:, 3]
    return np.max(values, axis=1) < 0.0


def _max_inscribed_slack(h_poly: np.ndarray,
                         slack_cap: float) -> Optional[Tuple[np.ndarray, float]]:
    """
    Maximize the common slack ``s`` with ``n_i . x + d_i + s * |n_i| <= 0``.

    Returns the maximizer and the slack, or None when the LP fails.
    """
    normals = h_poly[:, :3]
    norms = np.linalg.norm(normals, axis=1)
    valid = norms > 1e-12
    if not np.any(valid):
        return None

    A_ub = np.hstack([normals[valid], norms[valid, None]])
    b_ub = -h_poly[valid, 3]
    cost = np.array([0.0, 0.0, 0.0, -1.0])
    bounds = [(None, None)] * 3 + [(None, slack_cap)]

    result = linprog(cost, A_ub=A_ub, b_ub=b_ub, bounds=bounds, method='highs')
    if result.status != 0 or result.x is None:
        logger.debug(f"Inscribed slack LP failed: {result.message}")
        return None

    return result.x[:3], float(result.x[3])


def overlap(h_poly_0: np.ndarray, h_poly_1: np.ndarray, eps: float = 1e-6) -> bool:
    """True when the two polytopes share an interior ball of radius > eps."""
    stacked = np.vstack([h_poly_0, h_poly_1])
    solution = _max_inscribed_slack(stacked, slack_cap=1.0)
    if solution is None:
        return False
    return solution[1] > eps


def chebyshev_center(h_poly: np.ndarray,
                     radius_cap: float = 1.0e6) -> Optional[Tuple[np.ndarray, float]]:
    """Center and radius of the largest inscribed ball (radius < 0 if empty)."""
    return _max_inscribed_slack(np.asarray(h_poly, dtype=float), slack_cap=radius_cap)


def polytope_vertices(h_poly: np.ndarray, min_radius: float = 1e-9) -> np.ndarray:
    """
    Vertices of a bounded polytope, ordered as returned by the hull.

    Returns an empty ``(0, 3)`` array for empty or degenerate polytopes.
    """
    center = chebyshev_center(h_poly)
    if center is None or center[1] <= min_radius:
        return np.zeros((0, 3))

    try:
        intersection = HalfspaceIntersection(np.asarray(h_poly, dtype=float), center[0])
        vertices = intersection.intersections
        hull = ConvexHull(vertices)
        return vertices[hull.vertices]
    except Exception as e:
        logger.debug(f"Vertex enumeration failed: {e}")
        return np.zeros((0, 3))


def closest_points_on_segment(points: np.ndarray, segment_start: np.ndarray,
                              segment_end: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Closest point on segment ``[start, end]`` for each query point.

    Returns:
        (closest points (N, 3), distances (N,))
    """
    points = np.asarray(points, dtype=float).reshape(-1, 3)
    start = np.asarray(segment_start, dtype=float)
    direction = np.asarray(segment_end, dtype=float) - start

    length_sq = float(direction @ direction)
    if length_sq < 1e-18:
        t = np.zeros(points.shape[0])
    else:
        t = np.clip((points - start) @ direction / length_sq, 0.0, 1.0)

    closest = start + t[:, None] * direction
    distances = np.linalg.norm(points - closest, axis=1)
    return closest, distances


def path_length(path: List[np.ndarray]) -> float:
    path_array = np.asarray(path, dtype=float).reshape(-1, 3)
    if path_array.shape[0] < 2:
        return 0.0
    return float(np.sum(np.linalg.norm(np.diff(path_array, axis=0), axis=1)))
