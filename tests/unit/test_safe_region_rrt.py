import numpy as np
import pytest

from corridor_replanner.planning.local_planner import SafeRegionRRTStar
from corridor_replanner.simulation import blocked_wall_scenario


def descendants(nodes, root_index):
    children = {}
    for node in nodes:
        children.setdefault(node.parent, []).append(node.index)
    found, stack = set(), [root_index]
    while stack:
        index = stack.pop()
        found.add(index)
        stack.extend(children.get(index, []))
    return found


class TestSafeRegionRRTStar:

    @pytest.fixture
    def planner(self):
        planner = SafeRegionRRTStar({'seed': 3})
        planner.configure(safety_margin=1.0, search_margin=0.5, max_radius=1.0,
                          sensing_range=10.0)
        return planner

    @pytest.fixture
    def free_space_tree(self, planner):
        planner.set_obstacles(np.zeros((0, 3)))
        planner.set_endpoints(np.zeros(3), np.array([5.0, 0.0, 0.0]),
                              np.array([[-10.0] * 3, [10.0] * 3]), local_range=10.0,
                              max_samples=3000, sample_fraction=0.1, goal_fraction=0.05)
        assert planner.expand(10.0)
        planner.refine(0.2, 10.0)
        return planner

    def test_configure_rejects_small_radius(self, planner):
        with pytest.raises(ValueError):
            planner.configure(1.0, 0.5, 0.4, 10.0)

    def test_expand_requires_endpoints(self, planner):
        with pytest.raises(ValueError):
            planner.expand(1.0)

    def test_root_only_tree(self, planner):
        planner.set_obstacles(np.zeros((0, 3)))
        planner.set_endpoints(np.zeros(3), np.array([5.0, 0.0, 0.0]),
                              np.array([[-10.0] * 3, [10.0] * 3]), 10.0, 100, 0.1, 0.05)

        nodes = planner.tree()
        assert len(nodes) == 1
        assert nodes[0].parent == -1
        assert nodes[0].radius == pytest.approx(1.0)
        assert not planner.path_exists()
        waypoints, radii = planner.best_path()
        assert waypoints.shape == (0, 3)
        assert radii.shape == (0,)

    def test_goal_inside_root_ball(self, planner):
        planner.set_obstacles(np.zeros((0, 3)))
        planner.set_endpoints(np.zeros(3), np.array([0.5, 0.0, 0.0]),
                              np.array([[-10.0] * 3, [10.0] * 3]), 10.0, 100, 0.1, 0.05)

        assert planner.path_exists()
        assert planner.goal_region_fully_explored()
        waypoints, _ = planner.best_path()
        np.testing.assert_array_almost_equal(waypoints, [[0, 0, 0], [0.5, 0, 0]])

    def test_free_space_path_is_chain_of_overlapping_balls(self, free_space_tree):
        waypoints, radii = free_space_tree.best_path()

        np.testing.assert_array_almost_equal(waypoints[0], np.zeros(3))
        np.testing.assert_array_almost_equal(waypoints[-1], [5.0, 0.0, 0.0])
        assert waypoints.shape[0] == radii.shape[0]

        for i in range(waypoints.shape[0] - 2):
            gap = np.linalg.norm(waypoints[i + 1] - waypoints[i])
            assert gap < radii[i] + radii[i + 1]
        assert np.linalg.norm(waypoints[-1] - waypoints[-2]) < radii[-2]

    def test_costs_follow_parent_links(self, free_space_tree):
        nodes = {node.index: node for node in free_space_tree.tree()}
        for node in nodes.values():
            if node.parent < 0:
                assert node.cost == 0.0
                continue
            parent = nodes[node.parent]
            step = np.linalg.norm(node.position - parent.position)
            assert node.cost == pytest.approx(parent.cost + step)

    def test_reroot_keeps_exactly_the_subtree(self, free_space_tree):
        waypoints, _ = free_space_tree.best_path()
        target = waypoints[1]

        before = free_space_tree.tree()
        new_root = next(n for n in before if np.allclose(n.position, target))
        expected = descendants(before, new_root.index)
        before_by_index = {n.index: n for n in before}

        free_space_tree.reroot(target)
        after = free_space_tree.tree()

        assert {n.index for n in after} == expected
        np.testing.assert_array_almost_equal(free_space_tree.root_position(), target)
        for node in after:
            old = before_by_index[node.index]
            np.testing.assert_array_almost_equal(node.position, old.position)
            assert node.cost == pytest.approx(old.cost - new_root.cost)
            if node.index == new_root.index:
                assert node.parent == -1
            else:
                assert node.parent == old.parent

        assert free_space_tree.path_exists()

    def test_reroot_to_current_root_is_noop(self, free_space_tree):
        count = free_space_tree.node_count()
        free_space_tree.reroot(np.zeros(3))
        assert free_space_tree.node_count() == count
        assert free_space_tree.get_statistics()['reroots'] == 0

    def test_blocked_wall_has_no_path(self, planner):
        scenario = blocked_wall_scenario()
        planner.set_obstacles(scenario.obstacles)
        planner.set_endpoints(scenario.start, scenario.goal, scenario.bounds, 10.0,
                              1000, 0.1, 0.05)

        assert not planner.expand(5.0, max_iterations=1000)
        assert not planner.path_exists()
        assert planner.best_path()[0].shape == (0, 3)

        for node in planner.tree():
            clearance = np.min(np.linalg.norm(scenario.obstacles - node.position, axis=1))
            assert node.radius >= 0.5
            assert node.radius <= clearance - 1.0 + 1e-9
            assert node.position[0] < 5.0

    def test_evaluate_invalidates_blocked_nodes(self, free_space_tree):
        waypoints, _ = free_space_tree.best_path()
        obstacle = waypoints[2].copy()
        free_space_tree.set_obstacles(obstacle[None, :])

        invalidated = free_space_tree.evaluate(1.0, 10.0)

        assert invalidated > 0
        root = free_space_tree.root_position()
        for node in free_space_tree.tree():
            assert not np.allclose(node.position, obstacle)
            if np.allclose(node.position, root):
                continue
            assert node.radius >= 0.5
            assert node.radius <= np.linalg.norm(node.position - obstacle) - 1.0 + 1e-9

    def test_arena_growth_keeps_tree_consistent(self):
        planner = SafeRegionRRTStar({'seed': 5, 'initial_capacity': 8})
        planner.configure(1.0, 0.5, 1.0, 10.0)
        planner.set_obstacles(np.zeros((0, 3)))
        planner.set_endpoints(np.zeros(3), np.array([6.0, 0.0, 0.0]),
                              np.array([[-10.0] * 3, [10.0] * 3]), 10.0, 2000, 0.1, 0.05)

        assert planner.expand(10.0)
        planner.refine(0.1, 10.0)

        nodes = planner.tree()
        assert len(nodes) > 8
        alive = {node.index for node in nodes}
        roots = [node for node in nodes if node.parent == -1]
        assert len(roots) == 1
        assert all(node.parent in alive for node in nodes if node.parent != -1)

        waypoints, _ = planner.best_path()
        np.testing.assert_array_almost_equal(waypoints[-1], [6.0, 0.0, 0.0])
