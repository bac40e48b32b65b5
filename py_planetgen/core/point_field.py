"""Blue-noise sample points over a wrapping rectangle.

This module implements:
- Bridson Poisson-disk sampling bounded by a background acceleration grid
- Mirroring of near-edge points into "ghost" points so that the
  triangulation built on top is seamless across the world edges
"""

import math
from dataclasses import dataclass
from typing import List

import numpy as np
import structlog

from .world_settings import WorldBounds

logger = structlog.get_logger()

CELL_SIZE_FACTOR = 1.0 / math.sqrt(2.0)


@dataclass
class PointField:
    """Sample points followed by their ghost copies.

    ``points[:real_count]`` are the in-bounds sample points; their ids are
    cell ids. Every row after that is a ghost whose ``origin`` names the real
    point it mirrors. For real points ``origin[i] == i``.
    """
    points: np.ndarray      # (N, 2) real then ghost positions
    real_count: int
    origin: np.ndarray      # (N,) ghost -> real point id

    @property
    def ghost_count(self) -> int:
        return len(self.points) - self.real_count

    @property
    def real_points(self) -> np.ndarray:
        return self.points[:self.real_count]

    def is_ghost(self, point_id: int) -> bool:
        return point_id >= self.real_count


def poisson_disk_sample(
    bounds: WorldBounds,
    min_distance: float,
    rng: np.random.Generator,
    iterations_per_point: int = 8,
) -> np.ndarray:
    """
    Sample points with pairwise distance of at least ``min_distance``.

    Candidates are drawn around a random active point in the annulus
    [min_distance, 2 * min_distance]. An active point retires after
    ``iterations_per_point`` consecutive rejections.

    Args:
        bounds: Sampling rectangle
        min_distance: Minimum distance between any two accepted points
        rng: Random generator
        iterations_per_point: Attempts per active point before it retires

    Returns:
        Array of shape (N, 2) with the accepted points
    """
    if min_distance <= 0:
        raise ValueError("min_distance must be positive")

    cell_size = min_distance * CELL_SIZE_FACTOR
    grid_w = int(bounds.width / cell_size) + 1
    grid_h = int(bounds.height / cell_size) + 1
    grid = np.full((grid_w, grid_h), -1, dtype=np.int64)

    min_sq = min_distance * min_distance
    max_sq = 4.0 * min_sq
    left, top = bounds.x, bounds.y
    right, bottom = bounds.right, bounds.bottom

    xs: List[float] = []
    ys: List[float] = []
    active: List[int] = []

    def add(px: float, py: float) -> None:
        idx = len(xs)
        xs.append(px)
        ys.append(py)
        active.append(idx)
        grid[int((px - left) / cell_size), int((py - top) / cell_size)] = idx

    add(left + rng.random() * bounds.width, top + rng.random() * bounds.height)

    while active:
        slot = int(rng.integers(len(active)))
        base = active[slot]
        bx, by = xs[base], ys[base]
        found = False

        for _ in range(iterations_per_point):
            angle = rng.random() * 2.0 * math.pi
            radius = math.sqrt(min_sq + rng.random() * (max_sq - min_sq))
            cx = bx + math.cos(angle) * radius
            cy = by + math.sin(angle) * radius
            if not (left <= cx < right and top <= cy < bottom):
                continue

            gx = int((cx - left) / cell_size)
            gy = int((cy - top) / cell_size)
            ok = True
            for ix in range(max(gx - 2, 0), min(gx + 3, grid_w)):
                for iy in range(max(gy - 2, 0), min(gy + 3, grid_h)):
                    other = grid[ix, iy]
                    if other < 0:
                        continue
                    dx = xs[other] - cx
                    dy = ys[other] - cy
                    if dx * dx + dy * dy <= min_sq:
                        ok = False
                        break
                if not ok:
                    break

            if ok:
                add(cx, cy)
                found = True
                break

        if not found:
            # Swap-remove keeps retirement O(1)
            active[slot] = active[-1]
            active.pop()

    points = np.column_stack([np.asarray(xs), np.asarray(ys)])
    logger.debug("Poisson sampling complete", points=len(points), min_distance=min_distance)
    return points


def mirror_edge_points(points: np.ndarray, bounds: WorldBounds, edge_distance: float) -> PointField:
    """
    Append ghost copies of points lying within ``edge_distance`` of an edge.

    A point near the left edge is copied one world width to the right (and
    vice versa), likewise for the top and bottom edges. Points near a corner
    also get the diagonal copy.

    Args:
        points: Real sample points, shape (N, 2)
        bounds: World rectangle
        edge_distance: Band width that gets mirrored

    Returns:
        PointField with the real points followed by the ghosts
    """
    w, h = bounds.width, bounds.height
    ghosts: List[tuple] = []
    origins: List[int] = []

    for i, (px, py) in enumerate(points):
        dx = 0.0
        if px < bounds.x + edge_distance:
            dx = w
        elif px > bounds.right - edge_distance:
            dx = -w

        dy = 0.0
        if py < bounds.y + edge_distance:
            dy = h
        elif py > bounds.bottom - edge_distance:
            dy = -h

        if dx:
            ghosts.append((px + dx, py))
            origins.append(i)
        if dy:
            ghosts.append((px, py + dy))
            origins.append(i)
        if dx and dy:
            ghosts.append((px + dx, py + dy))
            origins.append(i)

    n = len(points)
    if ghosts:
        all_points = np.vstack([points, np.asarray(ghosts, dtype=np.float64)])
    else:
        all_points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    origin = np.concatenate([np.arange(n, dtype=np.int64), np.asarray(origins, dtype=np.int64)])

    logger.debug("Edge points mirrored", real=n, ghosts=len(ghosts))
    return PointField(points=all_points, real_count=n, origin=origin)


def generate_point_field(
    bounds: WorldBounds,
    min_distance: float,
    rng: np.random.Generator,
    iterations_per_point: int = 8,
) -> PointField:
    """Poisson-sample the world and mirror a band of 2 * min_distance around it."""
    points = poisson_disk_sample(bounds, min_distance, rng, iterations_per_point)
    field = mirror_edge_points(points, bounds, 2.0 * min_distance)
    logger.info(
        "Point field generated",
        real_points=field.real_count,
        ghost_points=field.ghost_count,
        min_distance=min_distance,
    )
    return field
