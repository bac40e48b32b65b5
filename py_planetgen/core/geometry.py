"""Planar geometry helpers shared by the graph, tectonics and erosion stages.

All positions live on a cylinder: X wraps with period ``width`` while Y is
bounded. Distances and edge vectors therefore go through the wrap-aware
helpers below.
"""

import math
from typing import Optional, Tuple

import numpy as np


def wrap_delta(delta: float, period: float) -> float:
    """Shortest signed offset equivalent to ``delta`` modulo ``period``."""
    return delta - period * round(delta / period)


def wrapped_vector(ax: float, ay: float, bx: float, by: float, width: float,
                   height: Optional[float] = None) -> Tuple[float, float]:
    """Vector from b to a, taking the shorter way around the wrap.

    X always wraps. Y wraps only when ``height`` is given, which is how the
    ghost band links the top and bottom rows of cells.
    """
    dy = ay - by
    if height is not None:
        dy = wrap_delta(dy, height)
    return wrap_delta(ax - bx, width), dy


def wrapped_distance(ax: float, ay: float, bx: float, by: float, width: float,
                     height: Optional[float] = None) -> float:
    dx, dy = wrapped_vector(ax, ay, bx, by, width, height)
    return math.hypot(dx, dy)


def wrap_x(x: float, left: float, width: float) -> float:
    """Fold an X coordinate back into ``[left, left + width)``."""
    return left + (x - left) % width


def cylindrical_embedding(points: np.ndarray, width: float) -> np.ndarray:
    """Lift 2D points onto a cylinder so that Euclidean distance respects the X wrap.

    Args:
        points: Array of shape (N, 2)
        width: Wrap period along X

    Returns:
        Array of shape (N, 3): (cos(2πx/W)·W/2π, sin(2πx/W)·W/2π, y)
    """
    points = np.atleast_2d(np.asarray(points, dtype=np.float64))
    radius = width / (2.0 * math.pi)
    angle = points[:, 0] * (2.0 * math.pi / width)
    return np.column_stack([np.cos(angle) * radius, np.sin(angle) * radius, points[:, 1]])


def polygon_area(vertices: np.ndarray) -> float:
    """Unsigned polygon area by the shoelace formula."""
    if len(vertices) < 3:
        return 0.0
    x = vertices[:, 0]
    y = vertices[:, 1]
    return abs(float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1)))) / 2.0


def triangle_centroid(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> np.ndarray:
    return (np.asarray(a) + np.asarray(b) + np.asarray(c)) / 3.0


def barycentric(p, a, b, c) -> Tuple[float, float, float]:
    """Barycentric coordinates of p in triangle abc.

    Returns (nan, nan, nan) for a degenerate triangle.
    """
    v0x, v0y = b[0] - a[0], b[1] - a[1]
    v1x, v1y = c[0] - a[0], c[1] - a[1]
    v2x, v2y = p[0] - a[0], p[1] - a[1]
    denom = v0x * v1y - v1x * v0y
    if denom == 0.0:
        return (math.nan, math.nan, math.nan)
    v = (v2x * v1y - v1x * v2y) / denom
    w = (v0x * v2y - v2x * v0y) / denom
    return (1.0 - v - w, v, w)


def smoothstep(t: float) -> float:
    return t * t * (3.0 - 2.0 * t)
