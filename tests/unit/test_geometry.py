import numpy as np
import pytest

from corridor_replanner.planning.geometry import (
    Polytope,
    box_half_spaces,
    chebyshev_center,
    closest_points_on_segment,
    contains_point,
    evaluate_half_spaces,
    overlap,
    path_length,
    points_inside,
    polytope_vertices,
)


class TestHalfSpaces:

    @pytest.fixture
    def unit_box(self):
        return box_half_spaces(np.zeros(3), np.ones(3))

    def test_box_has_six_rows(self, unit_box):
        assert unit_box.shape == (6, 4)

    def test_evaluate_at_center(self, unit_box):
        values = evaluate_half_spaces(unit_box, np.array([0.5, 0.5, 0.5]))
        np.testing.assert_array_almost_equal(values, np.full(6, -0.5))

    def test_contains(self, unit_box):
        assert contains_point(unit_box, np.array([0.2, 0.9, 0.5]))
        assert contains_point(unit_box, np.array([1.0, 0.5, 0.5]))
        assert not contains_point(unit_box, np.array([1.1, 0.5, 0.5]))

    def test_points_inside_is_strict(self, unit_box):
        points = np.array([
            [0.5, 0.5, 0.5],
            [1.0, 0.5, 0.5],
            [2.0, 0.5, 0.5],
        ])
        np.testing.assert_array_equal(points_inside(unit_box, points), [True, False, False])

    def test_points_inside_empty(self, unit_box):
        assert points_inside(unit_box, np.zeros((0, 3))).shape == (0,)

    def test_polytope_wrapper(self, unit_box):
        polytope = Polytope(half_spaces=unit_box)
        assert polytope.num_constraints == 6
        assert polytope.contains(np.array([0.5, 0.5, 0.5]))
        assert not polytope.is_connector


class TestOverlap:

    def test_overlapping_boxes(self):
        first = box_half_spaces(np.zeros(3), np.ones(3))
        second = box_half_spaces(np.array([0.5, 0.0, 0.0]), np.array([1.5, 1.0, 1.0]))
        assert overlap(first, second, 0.01)

    def test_disjoint_boxes(self):
        first = box_half_spaces(np.zeros(3), np.ones(3))
        second = box_half_spaces(np.array([2.0, 0.0, 0.0]), np.array([3.0, 1.0, 1.0]))
        assert not overlap(first, second)

    def test_touching_boxes_do_not_overlap(self):
        """A shared face has no interior."""
        first = box_half_spaces(np.zeros(3), np.ones(3))
        second = box_half_spaces(np.array([1.0, 0.0, 0.0]), np.array([2.0, 1.0, 1.0]))
        assert not overlap(first, second, 1e-6)

    def test_thin_intersection_below_threshold(self):
        first = box_half_spaces(np.zeros(3), np.ones(3))
        second = box_half_spaces(np.array([0.99, 0.0, 0.0]), np.array([2.0, 1.0, 1.0]))
        assert overlap(first, second, 1e-6)
        assert not overlap(first, second, 0.01)


class TestChebyshevCenter:

    def test_box_center(self):
        center, radius = chebyshev_center(box_half_spaces(np.zeros(3), np.full(3, 2.0)))
        np.testing.assert_array_almost_equal(center, np.ones(3))
        assert radius == pytest.approx(1.0)

    def test_empty_intersection_has_negative_radius(self):
        stacked = np.vstack([
            box_half_spaces(np.zeros(3), np.ones(3)),
            box_half_spaces(np.array([2.0, 0.0, 0.0]), np.array([3.0, 1.0, 1.0])),
        ])
        _, radius = chebyshev_center(stacked)
        assert radius < 0.0

    def test_box_vertices(self):
        vertices = polytope_vertices(box_half_spaces(np.zeros(3), np.ones(3)))
        assert vertices.shape == (8, 3)
        assert np.all(np.isclose(vertices, 0.0) | np.isclose(vertices, 1.0))

    def test_empty_polytope_has_no_vertices(self):
        stacked = np.vstack([
            box_half_spaces(np.zeros(3), np.ones(3)),
            box_half_spaces(np.full(3, 2.0), np.full(3, 3.0)),
        ])
        assert polytope_vertices(stacked).shape == (0, 3)


class TestSegments:

    def test_closest_points(self):
        points = np.array([[0.5, 1.0, 0.0], [2.0, 0.0, 0.0], [-1.0, 0.0, 0.0]])
        closest, distances = closest_points_on_segment(points, np.zeros(3),
                                                       np.array([1.0, 0.0, 0.0]))
        np.testing.assert_array_almost_equal(closest, [[0.5, 0, 0], [1, 0, 0], [0, 0, 0]])
        np.testing.assert_array_almost_equal(distances, [1.0, 1.0, 1.0])

    def test_degenerate_segment(self):
        closest, distances = closest_points_on_segment(np.array([[0.0, 3.0, 4.0]]),
                                                       np.zeros(3), np.zeros(3))
        np.testing.assert_array_almost_equal(closest, [[0.0, 0.0, 0.0]])
        assert distances[0] == pytest.approx(5.0)

    def test_path_length(self):
        path = [np.zeros(3), np.array([3.0, 4.0, 0.0]), np.array([3.0, 4.0, 2.0])]
        assert path_length(path) == pytest.approx(7.0)
        assert path_length([np.zeros(3)]) == 0.0
