"""Incremental Delaunay triangulation over half-edges.

Points are inserted in order of distance from the circumcenter of a seed
triangle. Each insertion walks the convex hull to find visible edges, adds
the fan of new triangles and restores the Delaunay condition by edge flips.

The triangulation is stored as two flat arrays:

- ``triangles[e]``: the point where half-edge ``e`` starts
- ``halfedges[e]``: the opposite half-edge in the adjacent triangle, or -1
  on the convex hull

Half-edges ``3t``, ``3t+1`` and ``3t+2`` belong to triangle ``t``.
"""

import math
from typing import Iterator, List

import numpy as np
import structlog

from .exceptions import DegenerateInputError

logger = structlog.get_logger()

EPSILON = 2.0 ** -52

# Capacity of the explicit edge-flip stack used while legalizing. Pending
# flips beyond this depth are dropped; a well-spaced point set never gets
# close to it.
EDGE_STACK_CAPACITY = 512


def next_halfedge(e: int) -> int:
    return e - 2 if e % 3 == 2 else e + 1


def prev_halfedge(e: int) -> int:
    return e + 2 if e % 3 == 0 else e - 1


def triangle_of_edge(e: int) -> int:
    return e // 3


def edges_of_triangle(t: int) -> tuple:
    return (3 * t, 3 * t + 1, 3 * t + 2)


def _orient(px, py, qx, qy, rx, ry) -> bool:
    """True when p, q, r turn clockwise (in screen coordinates)."""
    return (qy - py) * (rx - qx) - (qx - px) * (ry - qy) < 0


def _in_circle(ax, ay, bx, by, cx, cy, px, py) -> bool:
    dx = ax - px
    dy = ay - py
    ex = bx - px
    ey = by - py
    fx = cx - px
    fy = cy - py

    ap = dx * dx + dy * dy
    bp = ex * ex + ey * ey
    cp = fx * fx + fy * fy

    return dx * (ey * cp - bp * fy) - dy * (ex * cp - bp * fx) + ap * (ex * fy - ey * fx) < 0


def _circumradius_sq(ax, ay, bx, by, cx, cy) -> float:
    dx = bx - ax
    dy = by - ay
    ex = cx - ax
    ey = cy - ay
    denom = dx * ey - dy * ex
    if denom == 0.0:
        return math.inf

    bl = dx * dx + dy * dy
    cl = ex * ex + ey * ey
    d = 0.5 / denom
    x = (ey * bl - dy * cl) * d
    y = (dx * cl - ex * bl) * d
    return x * x + y * y


def circumcenter(ax, ay, bx, by, cx, cy) -> tuple:
    dx = bx - ax
    dy = by - ay
    ex = cx - ax
    ey = cy - ay

    bl = dx * dx + dy * dy
    cl = ex * ex + ey * ey
    d = 0.5 / (dx * ey - dy * ex)
    return (ax + (ey * bl - dy * cl) * d, ay + (dx * cl - ex * bl) * d)


def _pseudo_angle(dx: float, dy: float) -> float:
    """Monotonic in the true angle, in [0, 1)."""
    p = dx / (abs(dx) + abs(dy))
    return (3.0 - p if dy > 0 else 1.0 + p) / 4.0


class Delaunator:
    """Delaunay triangulation of a 2D point set.

    Raises:
        DegenerateInputError: fewer than 3 points, or all points collinear
    """

    def __init__(self, points: np.ndarray):
        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] != 2:
            raise ValueError("points must have shape (N, 2)")

        n = len(points)
        if n < 3:
            raise DegenerateInputError(f"Need at least 3 points to triangulate, got {n}")

        self.points = points
        self._xs: List[float] = points[:, 0].tolist()
        self._ys: List[float] = points[:, 1].tolist()

        max_triangles = max(2 * n - 5, 0)
        self._triangles = [0] * (max_triangles * 3)
        self._halfedges = [-1] * (max_triangles * 3)
        self._hash_size = int(math.ceil(math.sqrt(n)))
        self._hull_prev = [0] * n
        self._hull_next = [0] * n
        self._hull_tri = [0] * n
        self._hull_hash = [-1] * self._hash_size
        self._edge_stack = [0] * EDGE_STACK_CAPACITY
        self.triangles_len = 0
        self.dropped_flips = 0

        self._triangulate()

        self.triangles = np.asarray(self._triangles[:self.triangles_len], dtype=np.int64)
        self.halfedges = np.asarray(self._halfedges[:self.triangles_len], dtype=np.int64)

        if self.dropped_flips:
            logger.warning("Edge flip stack overflowed", dropped_flips=self.dropped_flips,
                           capacity=EDGE_STACK_CAPACITY)

    @property
    def triangle_count(self) -> int:
        return self.triangles_len // 3

    def _triangulate(self) -> None:
        xs, ys = self._xs, self._ys
        n = len(xs)
        hull_prev, hull_next, hull_tri, hull_hash = (
            self._hull_prev, self._hull_next, self._hull_tri, self._hull_hash
        )

        min_x, max_x = min(xs), max(xs)
        min_y, max_y = min(ys), max(ys)
        cx = (min_x + max_x) / 2.0
        cy = (min_y + max_y) / 2.0

        # Seed point closest to the bbox center
        i0 = -1
        min_dist = math.inf
        for i in range(n):
            d = (xs[i] - cx) ** 2 + (ys[i] - cy) ** 2
            if d < min_dist:
                i0 = i
                min_dist = d
        i0x, i0y = xs[i0], ys[i0]

        # Closest point to the seed
        i1 = -1
        min_dist = math.inf
        for i in range(n):
            if i == i0:
                continue
            d = (xs[i] - i0x) ** 2 + (ys[i] - i0y) ** 2
            if 0 < d < min_dist:
                i1 = i
                min_dist = d
        if i1 < 0:
            raise DegenerateInputError("No Delaunay triangulation exists: all points coincide")
        i1x, i1y = xs[i1], ys[i1]

        # Third point forming the smallest circumcircle with the first two
        i2 = -1
        min_radius = math.inf
        for i in range(n):
            if i == i0 or i == i1:
                continue
            r = _circumradius_sq(i0x, i0y, i1x, i1y, xs[i], ys[i])
            if r < min_radius:
                i2 = i
                min_radius = r
        if min_radius == math.inf:
            raise DegenerateInputError("No Delaunay triangulation exists: points are collinear")
        i2x, i2y = xs[i2], ys[i2]

        if _orient(i0x, i0y, i1x, i1y, i2x, i2y):
            i1, i2 = i2, i1
            i1x, i1y, i2x, i2y = i2x, i2y, i1x, i1y

        self._cx, self._cy = circumcenter(i0x, i0y, i1x, i1y, i2x, i2y)

        dists = (self.points[:, 0] - self._cx) ** 2 + (self.points[:, 1] - self._cy) ** 2
        ids = np.argsort(dists, kind="stable").tolist()

        self._hull_start = i0
        hull_size = 3

        hull_next[i0] = hull_prev[i2] = i1
        hull_next[i1] = hull_prev[i0] = i2
        hull_next[i2] = hull_prev[i1] = i0

        hull_tri[i0] = 0
        hull_tri[i1] = 1
        hull_tri[i2] = 2

        hull_hash[self._hash_key(i0x, i0y)] = i0
        hull_hash[self._hash_key(i1x, i1y)] = i1
        hull_hash[self._hash_key(i2x, i2y)] = i2

        self.triangles_len = 0
        self._add_triangle(i0, i1, i2, -1, -1, -1)

        xp = yp = 0.0
        for k, i in enumerate(ids):
            x, y = xs[i], ys[i]

            # Near-duplicate points
            if k > 0 and abs(x - xp) <= EPSILON and abs(y - yp) <= EPSILON:
                continue
            xp, yp = x, y

            if i == i0 or i == i1 or i == i2:
                continue

            # Find a visible edge on the hull using the angular hash
            start = 0
            key = self._hash_key(x, y)
            for j in range(self._hash_size):
                start = hull_hash[(key + j) % self._hash_size]
                if start != -1 and start != hull_next[start]:
                    break

            start = hull_prev[start]
            e = start
            while True:
                q = hull_next[e]
                if _orient(x, y, xs[e], ys[e], xs[q], ys[q]):
                    break
                e = q
                if e == start:
                    e = -1
                    break
            if e == -1:
                # Likely a near-duplicate point
                continue

            t = self._add_triangle(e, i, hull_next[e], -1, -1, hull_tri[e])
            hull_tri[i] = self._legalize(t + 2)
            hull_tri[e] = t
            hull_size += 1

            # Walk forward through the hull
            nxt = hull_next[e]
            while True:
                q = hull_next[nxt]
                if not _orient(x, y, xs[nxt], ys[nxt], xs[q], ys[q]):
                    break
                t = self._add_triangle(nxt, i, q, hull_tri[i], -1, hull_tri[nxt])
                hull_tri[i] = self._legalize(t + 2)
                hull_next[nxt] = nxt
                hull_size -= 1
                nxt = q

            # Walk backward from the other side
            if e == start:
                while True:
                    q = hull_prev[e]
                    if not _orient(x, y, xs[q], ys[q], xs[e], ys[e]):
                        break
                    t = self._add_triangle(q, i, e, -1, hull_tri[e], hull_tri[q])
                    self._legalize(t + 2)
                    hull_tri[q] = t
                    hull_next[e] = e
                    hull_size -= 1
                    e = q

            self._hull_start = hull_prev[i] = e
            hull_next[e] = hull_prev[nxt] = i
            hull_next[i] = nxt

            hull_hash[self._hash_key(x, y)] = i
            hull_hash[self._hash_key(xs[e], ys[e])] = e

        hull = []
        e = self._hull_start
        for _ in range(hull_size):
            hull.append(e)
            e = hull_next[e]
        self.hull = np.asarray(hull, dtype=np.int64)

    def _hash_key(self, x: float, y: float) -> int:
        dx = x - self._cx
        dy = y - self._cy
        if dx == 0.0 and dy == 0.0:
            return 0
        return int(math.floor(_pseudo_angle(dx, dy) * self._hash_size)) % self._hash_size

    def _legalize(self, a: int) -> int:
        triangles = self._triangles
        halfedges = self._halfedges
        stack = self._edge_stack
        xs, ys = self._xs, self._ys
        i = 0
        ar = 0

        while True:
            b = halfedges[a]

            a0 = a - a % 3
            ar = a0 + (a + 2) % 3

            if b == -1:
                if i == 0:
                    break
                i -= 1
                a = stack[i]
                continue

            b0 = b - b % 3
            al = a0 + (a + 1) % 3
            bl = b0 + (b + 2) % 3

            p0 = triangles[ar]
            pr = triangles[a]
            pl = triangles[al]
            p1 = triangles[bl]

            illegal = _in_circle(xs[p0], ys[p0], xs[pr], ys[pr], xs[pl], ys[pl], xs[p1], ys[p1])

            if illegal:
                triangles[a] = p1
                triangles[b] = p0

                hbl = halfedges[bl]

                # Edge swapped on the other side of the hull; fix the hull triangle reference
                if hbl == -1:
                    e = self._hull_start
                    while True:
                        if self._hull_tri[e] == bl:
                            self._hull_tri[e] = a
                            break
                        e = self._hull_prev[e]
                        if e == self._hull_start:
                            break

                self._link(a, hbl)
                self._link(b, halfedges[ar])
                self._link(ar, bl)

                br = b0 + (b + 1) % 3
                if i < EDGE_STACK_CAPACITY:
                    stack[i] = br
                    i += 1
                else:
                    self.dropped_flips += 1
            else:
                if i == 0:
                    break
                i -= 1
                a = stack[i]

        return ar

    def _link(self, a: int, b: int) -> None:
        self._halfedges[a] = b
        if b != -1:
            self._halfedges[b] = a

    def _add_triangle(self, i0: int, i1: int, i2: int, a: int, b: int, c: int) -> int:
        t = self.triangles_len
        self._triangles[t] = i0
        self._triangles[t + 1] = i1
        self._triangles[t + 2] = i2
        self._link(t, a)
        self._link(t + 1, b)
        self._link(t + 2, c)
        self.triangles_len += 3
        return t

    def edges_around_point(self, start: int) -> Iterator[int]:
        """Yield the incoming half-edges around the point that ``start`` ends at."""
        incoming = start
        while True:
            yield incoming
            outgoing = next_halfedge(incoming)
            incoming = int(self.halfedges[outgoing])
            if incoming == -1 or incoming == start:
                break

    def triangle_points(self, t: int) -> tuple:
        return tuple(int(self.triangles[e]) for e in edges_of_triangle(t))

    def triangle_centroids(self) -> np.ndarray:
        """Centroid of every triangle, shape (T, 2)."""
        tri = self.triangles.reshape(-1, 3)
        return self.points[tri].mean(axis=1)
