"""
Corridor Builder
Sweeps convex obstacle-free polytopes along a path and prunes redundant ones.
"""

import numpy as np
import logging
import time
from typing import Dict, List, Tuple, Optional, Any, Callable
from dataclasses import dataclass, field

from corridor_replanner.planning.geometry import (
    Polytope,
    box_half_spaces,
    evaluate_half_spaces,
    overlap,
    points_inside,
)
from corridor_replanner.planning.corridor.polytope_solver import largest_free_polytope
from corridor_replanner.planning.status import PlanningStatus

PolytopeSolver = Callable[[np.ndarray, np.ndarray, np.ndarray, np.ndarray], np.ndarray]

@dataclass
class CorridorResult:
    """Corridor construction result."""
    polytopes: List[Polytope] = field(default_factory=list)
    success: bool = False
    status: PlanningStatus = PlanningStatus.PATH_NOT_FOUND
    connectors_inserted: int = 0
    build_time: float = 0.0

class CorridorBuilder:
    """
    Safe flight corridor construction.
    Sweep (convex_cover) followed by greedy interval-skipping prune (short_cut).
    """

    def __init__(self, config: Dict[str, Any], solver: Optional[PolytopeSolver] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.progress = config.get('progress', 7.0)              # meters per sweep window
        self.search_range = config.get('range', 3.0)             # meters of box margin
        self.eps = config.get('eps', 1e-6)
        self.overlap_eps = config.get('overlap_eps', 0.01)       # meters of shared interior
        self.gap_threshold = config.get('gap_threshold', 3)

        self.solver = solver or largest_free_polytope

        if self.progress <= 0.0:
            raise ValueError("Corridor progress radius must be positive")

        self.logger.info("Corridor Builder initialized")
        self.logger.info(f"Progress: {self.progress}m, Range: {self.search_range}m, "
                         f"Gap threshold: {self.gap_threshold}")

    def build(self, path: np.ndarray, obstacles: np.ndarray,
              low_corner: np.ndarray, high_corner: np.ndarray) -> CorridorResult:
        """Sweep then prune."""
        result = self.convex_cover(path, obstacles, low_corner, high_corner)
        if not result.success:
            return result

        build_start = time.time()
        result.polytopes = self.short_cut(result.polytopes)
        result.build_time += time.time() - build_start
        return result

    def convex_cover(self, path: np.ndarray, obstacles: np.ndarray,
                     low_corner: np.ndarray, high_corner: np.ndarray) -> CorridorResult:
        """
        Sweep convex free regions along the path.

        Args:
            path: (N, 3) waypoints, start to goal
            obstacles: (M, 3) obstacle snapshot
            low_corner: workspace lower bound
            high_corner: workspace upper bound

        Returns:
            Corridor result; consecutive polytopes overlap or are bridged by
            a connector polytope
        """
        build_start = time.time()
        path = np.asarray(path, dtype=float).reshape(-1, 3)
        obstacles = np.asarray(obstacles, dtype=float).reshape(-1, 3)
        low = np.asarray(low_corner, dtype=float)
        high = np.asarray(high_corner, dtype=float)

        if path.shape[0] < 2:
            self.logger.warning(f"Cannot sweep a corridor along {path.shape[0]} waypoint(s)")
            return CorridorResult(status=PlanningStatus.PATH_NOT_FOUND,
                                  build_time=time.time() - build_start)

        polytopes: List[Polytope] = []
        connectors = 0
        b = path[0].copy()
        i = 1

        while i < path.shape[0]:
            a = b
            step = path[i] - a
            if np.linalg.norm(step) > self.progress:
                b = a + step / np.linalg.norm(step) * self.progress
            else:
                b = path[i].copy()
                i += 1

            bounding = self._window_box(a, b, low, high)
            candidates = obstacles[points_inside(bounding, obstacles)]

            h_poly = self.solver(bounding, candidates, a, b)
            polytope = Polytope(half_spaces=h_poly, seed_start=a.copy(), seed_end=b.copy())

            if polytopes and self._is_disconnected(polytopes[-1], polytope, a):
                gap = self.solver(bounding, candidates, a, a)
                if np.any(evaluate_half_spaces(gap, a) > self.eps):
                    self.logger.warning(f"Connector polytope does not contain {a}")
                    return CorridorResult(polytopes=polytopes,
                                          status=PlanningStatus.CORRIDOR_GAP_UNRESOLVED,
                                          connectors_inserted=connectors,
                                          build_time=time.time() - build_start)

                polytopes.append(Polytope(half_spaces=gap, seed_start=a.copy(),
                                          seed_end=a.copy(), is_connector=True))
                connectors += 1

            polytopes.append(polytope)

        build_time = time.time() - build_start
        self.logger.debug(f"Swept {len(polytopes)} polytopes "
                          f"({connectors} connectors) in {build_time:.4f}s")

        return CorridorResult(
            polytopes=polytopes,
            success=True,
            status=PlanningStatus.SUCCESS,
            connectors_inserted=connectors,
            build_time=build_time
        )

    def short_cut(self, polytopes: List[Polytope]) -> List[Polytope]:
        """
        Greedy minimal connected sub-sequence of the swept corridor.

        From the last polytope, jump to the farthest earlier polytope that
        overlaps it (the immediate predecessor always counts as connected)
        until the first polytope is reached.
        """
        candidates = list(polytopes)
        if not candidates:
            return []
        if len(candidates) == 1:
            candidates.insert(0, candidates[0])

        count = len(candidates)
        indices = [count - 1]
        i = count - 1

        while i > 0:
            for j in range(i):
                if j < i - 1:
                    connected = overlap(candidates[i].half_spaces,
                                        candidates[j].half_spaces,
                                        self.overlap_eps)
                else:
                    connected = True

                if connected:
                    indices.append(j)
                    i = j
                    break

        indices.reverse()
        pruned = [candidates[k] for k in indices]

        self.logger.debug(f"Corridor pruned: {count} -> {len(pruned)} polytopes")
        return pruned

    def _window_box(self, a: np.ndarray, b: np.ndarray,
                    low: np.ndarray, high: np.ndarray) -> np.ndarray:
        """Local search box around a window, clamped to the workspace."""
        box_low = np.maximum(np.minimum(a, b) - self.search_range, low)
        box_high = np.minimum(np.maximum(a, b) + self.search_range, high)
        return box_half_spaces(box_low, box_high)

    def _is_disconnected(self, previous: Polytope, current: Polytope,
                         point: np.ndarray) -> bool:
        """
        Count constraints of both polytopes that are active or violated at
        ``point``; reaching the gap threshold marks the pair as disconnected.
        """
        active = int(np.sum(evaluate_half_spaces(current.half_spaces, point) > -self.eps))
        active += int(np.sum(evaluate_half_spaces(previous.half_spaces, point) > -self.eps))
        return active >= self.gap_threshold

def corridor_is_connected(polytopes: List[Polytope], eps: float = 1e-6) -> bool:
    """True when every consecutive pair overlaps or one of them is a connector."""
    for previous, current in zip(polytopes[:-1], polytopes[1:]):
        if previous.is_connector or current.is_connector:
            continue
        if not overlap(previous.half_spaces, current.half_spaces, eps):
            return False
    return True

def corridor_contains(polytopes: List[Polytope], point: np.ndarray,
                      eps: float = 1e-6) -> Tuple[bool, int]:
    """Whether any polytope contains ``point`` and the first such index."""
    for index, polytope in enumerate(polytopes):
        if polytope.contains(point, eps):
            return True, index
    return False, -1
