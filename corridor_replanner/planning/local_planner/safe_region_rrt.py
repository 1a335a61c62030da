"""
Safe-Region RRT*
Sampling-tree planner whose nodes are obstacle-free balls. Two nodes are
connected when their balls overlap, so every root-to-goal chain is a sequence
of overlapping safe regions.

The tree lives in an index-addressed arena of numpy tables (position, radius,
parent index, cost, alive flag). Re-rooting and invalidation only flip alive
flags and reassign parent indices; dead rows are compacted when the arena
grows.
"""

import numpy as np
import logging
import time
from typing import Dict, List, Tuple, Optional, Any
from dataclasses import dataclass

from scipy.spatial import cKDTree

@dataclass
class TreeNode:
    """Exported view of one arena row."""
    index: int
    position: np.ndarray
    radius: float
    parent: int
    cost: float

class SafeRegionRRTStar:
    """
    Sphere-based RRT* over a growable arena.

    Collision checking is a nearest-obstacle query: the radius of a node is
    its clearance minus the safety margin, capped at the maximum radius.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.initial_capacity = config.get('initial_capacity', 1024)
        self.informed_spread = config.get('informed_spread', 1.0)   # ball radii
        self.rng = np.random.default_rng(config.get('seed'))

        self.safety_margin = 1.0    # meters
        self.search_margin = 0.5    # meters
        self.max_radius = 1.0       # meters
        self.sensing_range = 10.0   # meters

        self._obstacles = np.zeros((0, 3))
        self._kdtree: Optional[cKDTree] = None

        self._start = np.zeros(3)
        self._goal = np.zeros(3)
        self._bounds_low = np.full(3, -np.inf)
        self._bounds_high = np.full(3, np.inf)
        self._sample_low = np.zeros(3)
        self._sample_high = np.zeros(3)
        self._max_samples = 3000
        self._sample_fraction = 0.1
        self._goal_fraction = 0.05

        self._allocate(self.initial_capacity)
        self._count = 0
        self._root = -1
        self._best_goal = -1

        self.planning_stats = {
            'samples': 0,
            'nodes_added': 0,
            'rewires': 0,
            'invalidated': 0,
            'reroots': 0,
        }

        self.logger.info("Safe-Region RRT* initialized")

    def configure(self, safety_margin: float, search_margin: float,
                  max_radius: float, sensing_range: float):
        if max_radius < search_margin:
            raise ValueError("max_radius must not be smaller than search_margin")

        self.safety_margin = safety_margin
        self.search_margin = search_margin
        self.max_radius = max_radius
        self.sensing_range = sensing_range

        self.logger.info(f"Safety margin: {safety_margin}m, Search margin: {search_margin}m, "
                         f"Max radius: {max_radius}m, Sensing range: {sensing_range}m")

    def reset(self):
        """Drop every node."""
        self._allocate(self.initial_capacity)
        self._count = 0
        self._root = -1
        self._best_goal = -1

    def set_obstacles(self, snapshot: np.ndarray):
        """Replace the obstacle snapshot."""
        points = np.asarray(snapshot, dtype=float).reshape(-1, 3)
        self._obstacles = points
        self._kdtree = cKDTree(points) if points.shape[0] > 0 else None

    def set_endpoints(self, start: np.ndarray, goal: np.ndarray, bounds: np.ndarray,
                      local_range: float, max_samples: int,
                      sample_fraction: float, goal_fraction: float):
        """
        Install root and goal.

        Args:
            start: root position
            goal: goal position
            bounds: (2, 3) workspace corners, low then high
            local_range: half-width of the sampling box around the root
            max_samples: default iteration budget of expand()
            sample_fraction: share of samples drawn around the best path
            goal_fraction: share of samples drawn at the goal
        """
        bounds = np.asarray(bounds, dtype=float).reshape(2, 3)
        self._start = np.asarray(start, dtype=float).copy()
        self._goal = np.asarray(goal, dtype=float).copy()
        self._bounds_low = bounds[0].copy()
        self._bounds_high = bounds[1].copy()
        self._max_samples = int(max_samples)
        self._sample_fraction = sample_fraction
        self._goal_fraction = goal_fraction

        self._sample_low = np.maximum(self._bounds_low, self._start - local_range)
        self._sample_high = np.minimum(self._bounds_high, self._start + local_range)

        self.reset()
        radius = max(self._clearance_radius(self._start), self.search_margin)
        self._root = self._add_node(self._start, radius, parent=-1, cost=0.0)
        self._check_goal(self._root)

        self.logger.debug(f"Tree rooted at {self._start}, goal {self._goal}")

    def expand(self, time_limit: float, max_iterations: Optional[int] = None) -> bool:
        """
        Grow the tree until a path exists or a budget runs out.

        Returns:
            Whether a path to the goal exists
        """
        if self._root < 0:
            raise ValueError("expand() called before set_endpoints()")

        budget = self._max_samples if max_iterations is None else int(max_iterations)
        expand_start = time.time()

        for _ in range(budget):
            if self.path_exists():
                break
            if time.time() - expand_start > time_limit:
                self.logger.debug("Tree expansion time limit reached")
                break
            self._extend(self._draw_sample())

        return self.path_exists()

    def refine(self, fraction: float, time_limit: float) -> int:
        """
        Keep sampling after a path exists to lower its cost.

        Args:
            fraction: share of the sample budget to spend
            time_limit: wall-clock limit in seconds

        Returns:
            Number of nodes added
        """
        if self._root < 0:
            return 0

        budget = max(int(fraction * self._max_samples), 1)
        refine_start = time.time()
        added = 0

        for _ in range(budget):
            if time.time() - refine_start > time_limit:
                break
            if self._extend(self._draw_sample()) >= 0:
                added += 1

        return added

    def evaluate(self, fraction: float, time_limit: float) -> int:
        """
        Re-check node radii against the current obstacle snapshot.

        Nodes that lost their clearance, or whose ball no longer overlaps the
        parent ball, are invalidated together with their subtrees. The root is
        never invalidated.

        Returns:
            Number of nodes invalidated
        """
        if self._root < 0:
            return 0

        candidates = np.flatnonzero(self._alive[:self._count])
        candidates = candidates[candidates != self._root]
        if candidates.size == 0:
            return 0

        count = max(int(np.ceil(fraction * candidates.size)), 1)
        if count < candidates.size:
            candidates = self.rng.choice(candidates, size=count, replace=False)

        evaluate_start = time.time()
        invalidated = 0

        for index in candidates:
            if time.time() - evaluate_start > time_limit:
                break
            if not self._alive[index]:
                continue

            radius = self._clearance_radius(self._coords[index])
            parent = self._parent[index]
            distance = np.linalg.norm(self._coords[index] - self._coords[parent])

            if radius < self.search_margin or distance >= radius + self._radius[parent]:
                mask = self._subtree_mask(index)
                invalidated += int(np.sum(mask))
                self._alive[:self._count] &= ~mask
            else:
                self._radius[index] = radius

        if invalidated:
            self.planning_stats['invalidated'] += invalidated
            self._refresh_goal_nodes()
            self.logger.debug(f"Invalidated {invalidated} tree nodes")

        return invalidated

    def best_path(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Root-to-goal waypoints and per-waypoint clearance radii.

        Returns empty arrays when no path exists.
        """
        if not self.path_exists():
            return np.zeros((0, 3)), np.zeros(0)

        chain = []
        index = self._best_goal
        while index >= 0:
            chain.append(index)
            index = self._parent[index]
        chain.reverse()

        waypoints = self._coords[chain]
        radii = self._radius[chain]
        if np.linalg.norm(waypoints[-1] - self._goal) > 1e-9:
            waypoints = np.vstack([waypoints, self._goal])
            radii = np.append(radii, self._radius[self._best_goal])
        return waypoints.copy(), radii.copy()

    def path_exists(self) -> bool:
        return self._best_goal >= 0

    def goal_region_fully_explored(self) -> bool:
        """True once the root ball contains the goal."""
        if self._root < 0:
            return False
        return bool(np.linalg.norm(self._goal - self._coords[self._root]) < self._radius[self._root])

    def tree(self) -> List[TreeNode]:
        nodes = []
        for index in np.flatnonzero(self._alive[:self._count]):
            nodes.append(TreeNode(
                index=int(index),
                position=self._coords[index].copy(),
                radius=float(self._radius[index]),
                parent=int(self._parent[index]),
                cost=float(self._cost[index])
            ))
        return nodes

    def node_count(self) -> int:
        return int(np.sum(self._alive[:self._count]))

    def root_position(self) -> Optional[np.ndarray]:
        if self._root < 0:
            return None
        return self._coords[self._root].copy()

    def reroot(self, point: np.ndarray):
        """
        Make the alive node nearest to ``point`` the root.

        Its descendants are kept with shifted costs; its ancestors and their
        other branches are dropped.
        """
        if self._root < 0:
            return

        alive = np.flatnonzero(self._alive[:self._count])
        distances = np.linalg.norm(self._coords[alive] - np.asarray(point, dtype=float), axis=1)
        new_root = int(alive[np.argmin(distances)])

        if new_root != self._root:
            mask = self._subtree_mask(new_root)
            self._alive[:self._count] &= mask
            self._cost[:self._count] -= self._cost[new_root]
            self._parent[new_root] = -1
            self._root = new_root
            self._refresh_goal_nodes()
            self.planning_stats['reroots'] += 1

        self._start = self._coords[self._root].copy()
        self.logger.debug(f"Tree re-rooted at {self._start}, {self.node_count()} nodes kept")

    def get_statistics(self) -> Dict[str, Any]:
        stats = self.planning_stats.copy()
        stats['alive_nodes'] = self.node_count()
        stats['path_exists'] = self.path_exists()
        return stats

    def _allocate(self, capacity: int):
        self._coords = np.zeros((capacity, 3))
        self._radius = np.zeros(capacity)
        self._parent = np.full(capacity, -1, dtype=int)
        self._cost = np.zeros(capacity)
        self._alive = np.zeros(capacity, dtype=bool)
        self._reaches_goal = np.zeros(capacity, dtype=bool)

    def _grow(self):
        """Compact dead rows, then double the arena if still full."""
        keep = np.flatnonzero(self._alive[:self._count])
        remap = np.full(self._count, -1, dtype=int)
        remap[keep] = np.arange(keep.size)

        parents = self._parent[keep]
        parents = np.where(parents >= 0, remap[np.maximum(parents, 0)], -1)

        capacity = self._coords.shape[0]
        if keep.size >= capacity // 2:
            capacity *= 2

        coords, radius = self._coords[keep], self._radius[keep]
        cost, reaches_goal = self._cost[keep], self._reaches_goal[keep]

        self._allocate(capacity)
        n = keep.size
        self._coords[:n] = coords
        self._radius[:n] = radius
        self._parent[:n] = parents
        self._cost[:n] = cost
        self._reaches_goal[:n] = reaches_goal
        self._alive[:n] = True
        self._count = n

        self._root = int(remap[self._root]) if self._root >= 0 else -1
        self._best_goal = int(remap[self._best_goal]) if self._best_goal >= 0 else -1

    def _add_node(self, position: np.ndarray, radius: float, parent: int, cost: float) -> int:
        # Callers grow the arena before taking parent indices.
        index = self._count
        self._coords[index] = position
        self._radius[index] = radius
        self._parent[index] = parent
        self._cost[index] = cost
        self._alive[index] = True
        self._reaches_goal[index] = False
        self._count += 1
        self.planning_stats['nodes_added'] += 1
        return index

    def _clearance_radius(self, position: np.ndarray) -> float:
        if self._kdtree is None:
            return self.max_radius
        distance, _ = self._kdtree.query(position, distance_upper_bound=self.sensing_range)
        if not np.isfinite(distance):
            return self.max_radius
        return min(float(distance) - self.safety_margin, self.max_radius)

    def _draw_sample(self) -> np.ndarray:
        self.planning_stats['samples'] += 1
        roll = self.rng.random()

        if roll < self._goal_fraction:
            return self._goal.copy()

        if self.path_exists() and roll < self._goal_fraction + self._sample_fraction:
            waypoints, radii = self.best_path()
            k = int(self.rng.integers(waypoints.shape[0]))
            spread = max(radii[k], self.search_margin) * self.informed_spread
            sample = waypoints[k] + self.rng.normal(0.0, spread, size=3)
            return np.clip(sample, self._bounds_low, self._bounds_high)

        return self.rng.uniform(self._sample_low, self._sample_high)

    def _extend(self, sample: np.ndarray) -> int:
        """One RRT* extension; returns the new node index or -1."""
        if self._count >= self._coords.shape[0]:
            self._grow()

        alive = np.flatnonzero(self._alive[:self._count])
        offsets = self._coords[alive] - sample
        distances = np.linalg.norm(offsets, axis=1)
        nearest_slot = int(np.argmin(distances))
        nearest = int(alive[nearest_slot])
        nearest_distance = distances[nearest_slot]

        if nearest_distance <= self._radius[nearest]:
            return -1

        direction = (sample - self._coords[nearest]) / nearest_distance
        position = self._coords[nearest] + direction * self._radius[nearest]
        radius = self._clearance_radius(position)
        if radius < self.search_margin:
            return -1

        distances = np.linalg.norm(self._coords[alive] - position, axis=1)
        neighbors = distances < self._radius[alive] + radius
        neighbor_ids = alive[neighbors]
        neighbor_distances = distances[neighbors]

        candidate_costs = self._cost[neighbor_ids] + neighbor_distances
        best_slot = int(np.argmin(candidate_costs))
        parent = int(neighbor_ids[best_slot])
        cost = float(candidate_costs[best_slot])

        index = self._add_node(position, radius, parent, cost)
        self._rewire(index, neighbor_ids, neighbor_distances)
        self._check_goal(index)
        return index

    def _rewire(self, index: int, neighbor_ids: np.ndarray, neighbor_distances: np.ndarray):
        for neighbor, distance in zip(neighbor_ids, neighbor_distances):
            if neighbor == self._root or neighbor == self._parent[index]:
                continue
            new_cost = self._cost[index] + distance
            if new_cost < self._cost[neighbor] - 1e-9:
                delta = new_cost - self._cost[neighbor]
                mask = self._subtree_mask(int(neighbor))
                self._parent[neighbor] = index
                self._cost[:self._count][mask] += delta
                self.planning_stats['rewires'] += 1

        if self._best_goal >= 0:
            self._select_best_goal()

    def _check_goal(self, index: int):
        if np.linalg.norm(self._goal - self._coords[index]) < self._radius[index]:
            self._reaches_goal[index] = True
            self._select_best_goal()

    def _select_best_goal(self):
        candidates = np.flatnonzero(self._alive[:self._count] & self._reaches_goal[:self._count])
        if candidates.size == 0:
            self._best_goal = -1
            return

        total = self._cost[candidates] + np.linalg.norm(self._coords[candidates] - self._goal, axis=1)
        self._best_goal = int(candidates[np.argmin(total)])

    def _refresh_goal_nodes(self):
        self._reaches_goal[:self._count] &= self._alive[:self._count]
        self._select_best_goal()

    def _subtree_mask(self, index: int) -> np.ndarray:
        """Alive rows descending from ``index`` (inclusive)."""
        count = self._count
        mask = np.zeros(count, dtype=bool)
        mask[index] = True
        parents = self._parent[:count]
        has_parent = (parents >= 0) & self._alive[:count]
        safe_parents = np.maximum(parents, 0)

        while True:
            updated = mask | (has_parent & mask[safe_parents])
            if np.array_equal(updated, mask):
                return mask
            mask = updated
