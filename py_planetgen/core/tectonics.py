"""
Plate tectonics approximation.

This module implements:
- Plate assignment from domain-warped cellular noise, quantized into buckets
- Hash-derived plate kinematics (velocity and ocean/continent type)
- Uplift seeding from relative motion across plate boundaries
- Priority-queue propagation of uplift into continental interiors

There is no plate registry: two cells share a plate exactly when their
quantized noise values are equal.
"""

import heapq
import math
from dataclasses import dataclass
from typing import List, Optional, Set, Tuple

import numpy as np
import structlog

from ..utils.random import stable_hash
from .cells import PlateType, WorldCells
from .noise import NoiseField
from .planar_graph import PlanarGraph

logger = structlog.get_logger()

MIN_PROPAGATED_UPLIFT = 0.01


@dataclass
class TectonicsOptions:
    """Tectonic parameters, usually taken from WorldSettings."""
    continent_ratio: float = 0.8
    plate_merge_ratio: float = 0.0
    max_tectonic_movement: float = 10.0
    max_uplift: float = 1000.0
    uplift_noise_intensity: float = -0.3
    uplift_propagation_decrement: float = 0.8
    uplift_propagation_sharpness: float = 0.0
    normalized_spacing: float = 0.6

    @classmethod
    def from_settings(cls, settings) -> "TectonicsOptions":
        return cls(
            continent_ratio=settings.continent_ratio,
            plate_merge_ratio=settings.plate_merge_ratio,
            max_tectonic_movement=settings.max_tectonic_movement,
            max_uplift=settings.max_uplift,
            uplift_noise_intensity=settings.uplift_noise_intensity,
            uplift_propagation_decrement=settings.uplift_propagation_decrement,
            uplift_propagation_sharpness=settings.uplift_propagation_sharpness,
            normalized_spacing=settings.normalized_minimum_cell_distance,
        )


def merge_noise_value(value: float, ratio: float) -> float:
    """Quantize a noise value in [-1, 1] into buckets of width ``ratio``."""
    if ratio <= 0:
        return value
    normalized = (value + 1.0) / 2.0
    return 2.0 * math.floor(normalized / ratio) * ratio - 1.0


def plate_kinematics(value: float, options: TectonicsOptions) -> Tuple[int, np.ndarray, PlateType]:
    """
    Derive plate identity, velocity and type from a merged noise value.

    Args:
        value: Quantized plate noise value
        options: Tectonic parameters

    Returns:
        Tuple of (plate id, velocity vector, plate type)
    """
    plate_id = stable_hash(repr(float(value)))
    rng = np.random.default_rng(plate_id)
    speed = rng.random() * options.max_tectonic_movement
    phi = rng.random() * 2.0 * math.pi
    velocity = np.array([math.cos(phi), math.sin(phi)]) * speed
    plate_type = PlateType.OCEAN if rng.random() < 1.0 - options.continent_ratio else PlateType.CONTINENT
    return plate_id, velocity, plate_type


def ease_relative_motion(rel: float) -> float:
    """Cubic easing that sharpens the middle of [-1, 1] and flattens the ends."""
    if abs(rel) < 0.5:
        return (2.0 * rel) ** 3 / 2.0
    if rel >= 0.5:
        return 1.0 - 2.0 * (1.0 - rel) ** 2
    return -1.0 + 2.0 * (1.0 + rel) ** 2


def boundary_response(type_p: PlateType, type_q: PlateType,
                      rel: float) -> Tuple[Optional[float], Optional[float]]:
    """
    Uplift response for both sides of a plate boundary.

    Args:
        type_p: Plate type of the first cell
        type_q: Plate type of the second cell
        rel: Eased relative motion, positive when the plates converge

    Returns:
        (uplift for p, uplift for q); None where that side gets nothing
    """
    continent, ocean = PlateType.CONTINENT, PlateType.OCEAN

    if type_p == continent and type_q == continent:
        if rel < 0:
            u = (rel ** 3 / 4.0 + 0.25) ** 2
        else:
            u = 1.0 - 0.75 * (1.0 - rel) ** 2
        return u, u

    if type_p == ocean and type_q == ocean:
        u = (rel ** 3 / 2.0 + 0.5) ** 2 * 0.5 - 0.3
        if rel > 0:
            u += 0.25 * (1.0 - (1.0 - rel) ** 2)
        return u, u

    # Continent-ocean margins only build relief when converging
    if rel < 0:
        return None, None

    arc = 1.0 - 0.75 * (1.0 - rel) ** 3
    if type_p == continent:
        return arc, (rel ** 3 / 2.0 + 0.5) ** 2 - 0.2
    return (rel ** 3 / 2.0 + 0.5) ** 2 - 0.25, arc


class Tectonics:
    """Plates and uplift over a planar graph."""

    def __init__(self, graph: PlanarGraph, cells: WorldCells, options: TectonicsOptions,
                 plate_noise: NoiseField, uplift_noise: NoiseField):
        self.graph = graph
        self.cells = cells
        self.options = options
        self.plate_noise = plate_noise
        self.uplift_noise = uplift_noise
        self.seeded: List[int] = []
        self._uplift_factor: Optional[np.ndarray] = None

    def assign_plates(self) -> int:
        """Give every cell a plate id, velocity and type. Returns the plate count."""
        values = self.plate_noise.evaluate_many(self.cells.positions)
        ratio = self.options.plate_merge_ratio
        merged = np.array([merge_noise_value(v, ratio) for v in values])

        buckets, inverse = np.unique(merged, return_inverse=True)
        for b, value in enumerate(buckets):
            plate_id, velocity, plate_type = plate_kinematics(value, self.options)
            members = inverse == b
            self.cells.plate_id[members] = plate_id
            self.cells.velocity[members] = velocity
            self.cells.plate_type[members] = plate_type

        logger.info(
            "Plates assigned",
            plates=len(buckets),
            continental_cells=int(self.cells.continental.sum()),
            cells=len(self.cells),
        )
        return len(buckets)

    def _noise_factor(self, cell: int) -> float:
        if self._uplift_factor is None:
            f = self.uplift_noise.evaluate_many(self.cells.positions)
            self._uplift_factor = 1.0 + (1.0 - f) * self.options.uplift_noise_intensity
        return float(self._uplift_factor[cell])

    def relative_motion(self, cell_p: int, cell_q: int) -> float:
        """Signed convergence of two cells in [-1, 1]; positive when they approach."""
        lx, ly = self.graph.edge_vector(cell_p, cell_q)
        length = math.hypot(lx, ly)
        if length == 0.0:
            return 0.0
        vp = self.cells.velocity[cell_p]
        vq = self.cells.velocity[cell_q]
        closing = (vq[0] * lx + vq[1] * ly) - (vp[0] * lx + vp[1] * ly)
        return closing / (2.0 * length * self.options.max_tectonic_movement)

    def add_initial_uplift(self, cell: int, response: float) -> None:
        self.cells.uplift[cell] += response * self.options.max_uplift * self._noise_factor(cell)
        self.seeded.append(cell)

    def seed_edge(self, cell_p: int, cell_q: int) -> bool:
        """Seed uplift on both sides of one boundary edge. Returns False if it is not a boundary."""
        cells = self.cells
        if np.array_equal(cells.velocity[cell_p], cells.velocity[cell_q]):
            return False

        rel = ease_relative_motion(self.relative_motion(cell_p, cell_q))
        up, uq = boundary_response(PlateType(cells.plate_type[cell_p]),
                                   PlateType(cells.plate_type[cell_q]), rel)
        if up is not None:
            self.add_initial_uplift(cell_p, up)
        if uq is not None:
            self.add_initial_uplift(cell_q, uq)
        return True

    def seed_uplift(self) -> int:
        """Seed uplift along every plate boundary. Returns the number of boundary edges."""
        self.seeded = []
        boundaries = 0
        for edge in self.graph.edges:
            if self.seed_edge(edge.cell_p, edge.cell_q):
                boundaries += 1

        logger.info("Uplift seeded", boundary_edges=boundaries, seeded_cells=len(set(self.seeded)))
        return boundaries

    def propagate_uplift(self, rng: np.random.Generator) -> int:
        """
        Spread seeded uplift into unvisited continental neighbors.

        The strongest remaining cell is expanded first. Each cell is visited
        at most once, so the result depends on processing order rather than
        converging to a shortest-path solution.

        Args:
            rng: Random generator for the sharpness jitter

        Returns:
            Number of cells that received propagated uplift
        """
        uplift = self.cells.uplift
        decay = self.options.uplift_propagation_decrement ** self.options.normalized_spacing
        sharpness = self.options.uplift_propagation_sharpness

        used: Set[int] = set(self.seeded)
        heap = [(-abs(uplift[c]), c) for c in used]
        heapq.heapify(heap)
        visited = 0

        while heap:
            _, cell = heapq.heappop(heap)
            contribution = uplift[cell] * decay
            if abs(contribution) < MIN_PROPAGATED_UPLIFT:
                continue

            for neighbor in self.graph.neighbors[cell]:
                neighbor = int(neighbor)
                if neighbor in used or not self.cells.is_continent(neighbor):
                    continue
                modifier = 1.0 + (rng.random() - 0.5) * sharpness
                uplift[neighbor] += contribution * modifier
                used.add(neighbor)
                visited += 1
                heapq.heappush(heap, (-abs(uplift[neighbor]), neighbor))

        logger.info("Uplift propagated", seeds=len(set(self.seeded)), visited=visited)
        return visited
