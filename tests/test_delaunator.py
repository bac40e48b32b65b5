"""Tests for the Delaunay triangulation."""

import numpy as np
import pytest
from scipy.spatial import Delaunay

from py_planetgen.core.delaunator import EDGE_STACK_CAPACITY, Delaunator, next_halfedge
from py_planetgen.core.exceptions import DegenerateInputError


class TestDelaunator:
    """Test triangulation structure and the Delaunay property."""

    @pytest.fixture
    def points(self):
        rng = np.random.default_rng(42)
        return rng.random((200, 2)) * 1000.0

    @pytest.fixture
    def delaunay(self, points):
        return Delaunator(points)

    def test_halfedges_are_symmetric(self, delaunay):
        """Test that every paired half-edge points back and shares its endpoints reversed."""
        triangles, halfedges = delaunay.triangles, delaunay.halfedges
        for e, h in enumerate(halfedges):
            if h == -1:
                continue
            assert halfedges[h] == e
            assert triangles[e] == triangles[next_halfedge(h)]
            assert triangles[h] == triangles[next_halfedge(e)]

    def test_empty_circumcircle(self, delaunay, points):
        """Test that no point lies strictly inside any triangle's circumcircle."""
        tri = delaunay.triangles.reshape(-1, 3)
        for a, b, c in tri:
            ax, ay = points[a]
            bx, by = points[b]
            cx, cy = points[c]
            d = 2.0 * (ax * (by - cy) + bx * (cy - ay) + cx * (ay - by))
            ux = ((ax ** 2 + ay ** 2) * (by - cy) + (bx ** 2 + by ** 2) * (cy - ay)
                  + (cx ** 2 + cy ** 2) * (ay - by)) / d
            uy = ((ax ** 2 + ay ** 2) * (cx - bx) + (bx ** 2 + by ** 2) * (ax - cx)
                  + (cx ** 2 + cy ** 2) * (bx - ax)) / d
            r2 = (ax - ux) ** 2 + (ay - uy) ** 2
            dist2 = (points[:, 0] - ux) ** 2 + (points[:, 1] - uy) ** 2
            assert np.all(dist2 >= r2 * (1.0 - 1e-9))

    def test_matches_reference_triangle_count(self, delaunay, points):
        """Test the triangle count against scipy's Qhull triangulation."""
        reference = Delaunay(points)
        assert delaunay.triangle_count == len(reference.simplices)
        assert delaunay.triangle_count == 2 * len(points) - 2 - len(delaunay.hull)

    def test_every_point_is_used(self, delaunay, points):
        """Test that every input point is a vertex of some triangle."""
        assert set(delaunay.triangles.tolist()) == set(range(len(points)))

    def test_edges_around_point_closes_the_fan(self, delaunay):
        """Test that walking around an interior point returns to the start edge."""
        hull = set(delaunay.hull.tolist())
        triangles = delaunay.triangles
        start = next(e for e in range(len(triangles)) if triangles[next_halfedge(e)] not in hull)
        fan = list(delaunay.edges_around_point(start))

        assert len(fan) >= 3
        assert all(triangles[next_halfedge(e)] == triangles[next_halfedge(start)] for e in fan)

    def test_no_dropped_flips_for_ordinary_input(self, delaunay):
        """Test that the bounded flip stack is large enough for random input."""
        assert EDGE_STACK_CAPACITY == 512
        assert delaunay.dropped_flips == 0

    def test_centroids(self, delaunay, points):
        """Test triangle centroids."""
        centroids = delaunay.triangle_centroids()
        a, b, c = delaunay.triangle_points(0)

        assert centroids.shape == (delaunay.triangle_count, 2)
        np.testing.assert_allclose(centroids[0], (points[a] + points[b] + points[c]) / 3.0)


class TestDegenerateInput:
    """Test rejection of inputs with no triangulation."""

    def test_too_few_points(self):
        """Test that fewer than three points are rejected."""
        with pytest.raises(DegenerateInputError):
            Delaunator(np.array([[0.0, 0.0], [1.0, 1.0]]))

    def test_collinear_points(self):
        """Test that collinear points are rejected."""
        points = np.column_stack([np.arange(10.0), np.arange(10.0) * 2.0])
        with pytest.raises(DegenerateInputError):
            Delaunator(points)

    def test_coincident_points(self):
        """Test that a single repeated point is rejected."""
        with pytest.raises(DegenerateInputError):
            Delaunator(np.ones((5, 2)))

    def test_minimal_triangle(self):
        """Test that three points give one triangle with no neighbors."""
        d = Delaunator(np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]]))

        assert d.triangle_count == 1
        assert list(d.halfedges) == [-1, -1, -1]
