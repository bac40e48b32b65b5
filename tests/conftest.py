"""Shared fixtures."""

import numpy as np
import pytest

from py_planetgen.core.planar_graph import PlanarGraph
from py_planetgen.core.point_field import generate_point_field
from py_planetgen.core.world_settings import WorldBounds


@pytest.fixture(scope="session")
def small_bounds():
    """A 1000x1000 world centered on the origin."""
    return WorldBounds(x=-500.0, y=-500.0, width=1000.0, height=1000.0)


@pytest.fixture(scope="session")
def small_graph(small_bounds):
    """Planar graph over roughly a hundred and fifty cells."""
    field = generate_point_field(small_bounds, 70.0, np.random.default_rng(7), 8)
    return PlanarGraph(field, small_bounds)
