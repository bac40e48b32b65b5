"""Per-cell world state.

Cells are stored column-wise: one numpy array per attribute, indexed by
cell id. Stages fill the arrays in place; ``reset`` restores every mutable
field before a regeneration.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional

import numpy as np

from .planar_graph import PlanarGraph

NO_RECEIVER = -1
DEFAULT_UPLIFT = 0.1


class PlateType(IntEnum):
    OCEAN = 0
    CONTINENT = 1


@dataclass
class WorldCells:
    """Struct-of-arrays for every real cell."""
    positions: np.ndarray           # (N, 2) sample point of each cell
    areas: np.ndarray               # Voronoi polygon area
    polygons: List[np.ndarray]      # Voronoi polygon vertices
    latitude: np.ndarray            # degrees, +90 at the top edge
    plate_id: np.ndarray            # hashed plate bucket
    plate_type: np.ndarray          # PlateType values
    velocity: np.ndarray            # (N, 2) plate velocity
    uplift: np.ndarray
    height: np.ndarray
    temperature: np.ndarray
    precipitation: np.ndarray
    is_river_mouth: np.ndarray
    receiver: np.ndarray            # NO_RECEIVER for mouths, lakes and ocean
    drainage_area: np.ndarray
    discharge: np.ndarray
    biome: List[Optional[object]] = field(default_factory=list)

    @classmethod
    def allocate(cls, graph: PlanarGraph) -> "WorldCells":
        n = graph.cell_count
        cells = cls(
            positions=graph.positions.copy(),
            areas=graph.areas.copy(),
            polygons=graph.polygons,
            latitude=np.zeros(n),
            plate_id=np.zeros(n, dtype=np.int64),
            plate_type=np.zeros(n, dtype=np.int8),
            velocity=np.zeros((n, 2)),
            uplift=np.zeros(n),
            height=np.zeros(n),
            temperature=np.zeros(n),
            precipitation=np.zeros(n),
            is_river_mouth=np.zeros(n, dtype=bool),
            receiver=np.full(n, NO_RECEIVER, dtype=np.int64),
            drainage_area=np.zeros(n),
            discharge=np.zeros(n),
        )
        cells.reset()
        return cells

    def __len__(self) -> int:
        return len(self.areas)

    def reset(self) -> None:
        """Clear every simulated field, keeping geometry."""
        self.latitude[:] = 0.0
        self.plate_id[:] = 0
        self.plate_type[:] = PlateType.OCEAN
        self.velocity[:] = 0.0
        self.uplift[:] = DEFAULT_UPLIFT
        self.height[:] = 0.0
        self.temperature[:] = 0.0
        self.precipitation[:] = 0.0
        self.is_river_mouth[:] = False
        self.receiver[:] = NO_RECEIVER
        self.drainage_area[:] = self.areas
        self.discharge[:] = 0.0
        self.biome = [None] * len(self.areas)

    @property
    def continental(self) -> np.ndarray:
        return self.plate_type == PlateType.CONTINENT

    def is_continent(self, cell: int) -> bool:
        return self.plate_type[cell] == PlateType.CONTINENT
