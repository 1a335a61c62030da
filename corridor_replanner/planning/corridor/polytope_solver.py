"""
Free-space polytope solver.

Greedy separating-plane decomposition: the obstacle point closest to the seed
segment is cut off by the plane through it whose normal points from the
segment toward the point, every point beyond that plane is discarded, and the
process repeats until no candidate remains. The resulting polytope contains
the seed segment whenever no obstacle point lies on it.
"""

import numpy as np
import logging

from corridor_replanner.planning.geometry import closest_points_on_segment

logger = logging.getLogger(__name__)


def _fallback_normal(segment_start: np.ndarray, segment_end: np.ndarray) -> np.ndarray:
    """Any unit normal perpendicular to the segment (x-axis for a point seed)."""
    direction = segment_end - segment_start
    norm = np.linalg.norm(direction)
    if norm < 1e-12:
        return np.array([1.0, 0.0, 0.0])

    direction = direction / norm
    helper = np.array([0.0, 0.0, 1.0]) if abs(direction[2]) < 0.9 else np.array([1.0, 0.0, 0.0])
    normal = np.cross(direction, helper)
    return normal / np.linalg.norm(normal)


def largest_free_polytope(bounding_half_spaces: np.ndarray,
                          obstacle_points: np.ndarray,
                          segment_start: np.ndarray,
                          segment_end: np.ndarray,
                          eps: float = 1e-9) -> np.ndarray:
    """
    Convex obstacle-free region around a segment.

    Args:
        bounding_half_spaces: (m, 4) half-spaces of the local search box
        obstacle_points: (N, 3) obstacle points inside that box
        segment_start: seed segment start
        segment_end: seed segment end (equal to start for a connector)

    Returns:
        (m + k, 4) half-space array, bounding rows first
    """
    start = np.asarray(segment_start, dtype=float)
    end = np.asarray(segment_end, dtype=float)
    remaining = np.asarray(obstacle_points, dtype=float).reshape(-1, 3)

    planes = [np.asarray(bounding_half_spaces, dtype=float)]

    while remaining.shape[0] > 0:
        closest, distances = closest_points_on_segment(remaining, start, end)
        nearest = int(np.argmin(distances))
        point = remaining[nearest]

        if distances[nearest] < eps:
            logger.debug(f"Obstacle point {point} lies on the seed segment")
            normal = _fallback_normal(start, end)
        else:
            normal = (point - closest[nearest]) / distances[nearest]

        offset = -float(normal @ point)
        planes.append(np.append(normal, offset)[None, :])

        keep = remaining @ normal + offset < -eps
        keep[nearest] = False
        remaining = remaining[keep]

    return np.vstack(planes)
