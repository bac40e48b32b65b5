"""Delaunay/Voronoi spatial graph over a wrapping point field.

The triangulation runs over real and ghost points alike. Everything this
module hands out is expressed in cell ids: ghost triangulation ids are
remapped to the real point they mirror before they leave the graph, so a
triangulation point id and a cell id are not always the same thing.
"""

from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
import structlog
from sklearn.neighbors import KDTree

from .delaunator import Delaunator, next_halfedge
from .exceptions import DomainError
from .geometry import barycentric, cylindrical_embedding, polygon_area, wrap_x, wrapped_vector
from .point_field import PointField
from .world_settings import WorldBounds

logger = structlog.get_logger()

CONTAINMENT_EPSILON = 1e-9
LOCATE_CANDIDATES = 8


@dataclass(frozen=True)
class DualEdge:
    """Voronoi edge shared by two adjacent cells."""
    cell_p: int
    cell_q: int
    start: Tuple[float, float]
    end: Tuple[float, float]


@dataclass(frozen=True)
class TriangleLocation:
    """Result of a point-location query."""
    cells: Tuple[int, int, int]
    weights: Tuple[float, float, float]


class PlanarGraph:
    """Triangulation, Voronoi dual and spatial index for one point field."""

    def __init__(self, field: PointField, bounds: WorldBounds):
        self.field = field
        self.bounds = bounds
        self.delaunay = Delaunator(field.points)

        self._triangles: List[int] = self.delaunay.triangles.tolist()
        self._halfedges: List[int] = self.delaunay.halfedges.tolist()
        self._origin: List[int] = field.origin.tolist()

        self._incoming = self._index_incoming_edges()
        self.centroids = self.delaunay.triangle_centroids()

        self.neighbors: List[np.ndarray] = []
        self.polygons: List[np.ndarray] = []
        self.areas = np.zeros(self.cell_count, dtype=np.float64)
        self._build_cells()

        self.edges: List[DualEdge] = self._build_dual_edges()

        self._tree = KDTree(cylindrical_embedding(self.positions, bounds.width))

        logger.info(
            "Planar graph built",
            cells=self.cell_count,
            triangles=self.delaunay.triangle_count,
            dual_edges=len(self.edges),
        )

    @property
    def cell_count(self) -> int:
        return self.field.real_count

    @property
    def positions(self) -> np.ndarray:
        return self.field.real_points

    @property
    def triangles(self) -> np.ndarray:
        return self.delaunay.triangles

    @property
    def halfedges(self) -> np.ndarray:
        return self.delaunay.halfedges

    def _index_incoming_edges(self) -> List[int]:
        """One incoming half-edge per point, preferring hull edges so fans start at the boundary."""
        incoming = [-1] * len(self.field.points)
        triangles, halfedges = self._triangles, self._halfedges
        for e in range(len(triangles)):
            endpoint = triangles[next_halfedge(e)]
            if incoming[endpoint] == -1 or halfedges[e] == -1:
                incoming[endpoint] = e
        return incoming

    def _edges_around(self, point_id: int):
        start = self._incoming[point_id]
        if start == -1:
            return
        halfedges = self._halfedges
        incoming = start
        while True:
            yield incoming
            incoming = halfedges[next_halfedge(incoming)]
            if incoming == -1 or incoming == start:
                break

    def _build_cells(self) -> None:
        triangles, origin = self._triangles, self._origin
        for cell in range(self.cell_count):
            ring = []
            corners = []
            for e in self._edges_around(cell):
                ring.append(origin[triangles[e]])
                corners.append(e // 3)
            # Drop repeats that can appear when a ghost and its origin are both adjacent
            seen = set()
            unique = [c for c in ring if c != cell and not (c in seen or seen.add(c))]
            self.neighbors.append(np.asarray(unique, dtype=np.int64))
            polygon = self.centroids[corners]
            self.polygons.append(polygon)
            self.areas[cell] = polygon_area(polygon)

    def _build_dual_edges(self) -> List[DualEdge]:
        triangles, halfedges, origin = self._triangles, self._halfedges, self._origin
        real = self.cell_count
        seen = set()
        edges = []
        for e in range(len(triangles)):
            h = halfedges[e]
            if h == -1 or e > h:
                continue
            a, b = triangles[e], triangles[h]
            # At least one endpoint must be real; ghost-ghost edges can be hull artifacts
            if a >= real and b >= real:
                continue
            p, q = origin[a], origin[b]
            if p == q:
                continue
            key = (p, q) if p < q else (q, p)
            if key in seen:
                continue
            seen.add(key)
            c0 = self.centroids[e // 3]
            c1 = self.centroids[h // 3]
            edges.append(DualEdge(p, q, (float(c0[0]), float(c0[1])), (float(c1[0]), float(c1[1]))))
        return edges

    def neighbors_of(self, cell: int) -> np.ndarray:
        return self.neighbors[cell]

    def edge_vector(self, cell_p: int, cell_q: int) -> Tuple[float, float]:
        """Shortest vector from cell q to cell p across the world wrap."""
        px, py = self.positions[cell_p]
        qx, qy = self.positions[cell_q]
        return wrapped_vector(px, py, qx, qy, self.bounds.width, self.bounds.height)

    def edge_length(self, cell_p: int, cell_q: int) -> float:
        dx, dy = self.edge_vector(cell_p, cell_q)
        return float(np.hypot(dx, dy))

    def nearest_cells(self, x: float, y: float, k: int = 1) -> np.ndarray:
        """Ids of the k nearest cells, closest first."""
        k = max(1, min(k, self.cell_count))
        query = cylindrical_embedding(np.array([[x, y]]), self.bounds.width)
        _, ind = self._tree.query(query, k=k)
        return ind[0]

    def nearest_many(self, points: np.ndarray) -> np.ndarray:
        """Nearest cell id for every row of an (N, 2) array."""
        _, ind = self._tree.query(cylindrical_embedding(points, self.bounds.width), k=1)
        return ind[:, 0]

    def containing_triangle(self, x: float, y: float) -> TriangleLocation:
        """
        Find the triangle containing (x, y) and the barycentric weights.

        Nearby cells come from the cylindrical k-d tree; the triangle fan
        around each candidate is then tested for containment.

        Raises:
            DomainError: No triangle around the nearby cells contains the point
        """
        width = self.bounds.width
        px = wrap_x(x, self.bounds.x, width)
        points = self.field.points
        triangles, origin = self._triangles, self._origin

        for cell in self.nearest_cells(px, y, LOCATE_CANDIDATES):
            cx = points[cell][0]
            # Shift the query next to the candidate so ghost triangles line up
            sx = px + width * round((cx - px) / width)
            for e in self._edges_around(int(cell)):
                t = e // 3
                ids = (triangles[3 * t], triangles[3 * t + 1], triangles[3 * t + 2])
                w = barycentric((sx, y), points[ids[0]], points[ids[1]], points[ids[2]])
                if min(w) >= -CONTAINMENT_EPSILON:
                    cells = (origin[ids[0]], origin[ids[1]], origin[ids[2]])
                    return TriangleLocation(cells=cells, weights=w)

        raise DomainError(f"No triangle contains ({x}, {y})")

    def polygon_of(self, cell: int) -> np.ndarray:
        return self.polygons[cell]

