"""
Drainage network for the erosion loop.

This module implements:
- River mouth detection (continental cells touching the ocean)
- Steepest-descent receivers over continental cells
- Lake labelling by flooding upstream from every sink
- Lake overflow: grafting each lake onto the drained forest through its
  lowest pass
- Drainage area and discharge accumulation by post-order traversal

Everything here is rebuilt from scratch on every pass of the erosion loop.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import structlog

logger = structlog.get_logger()

NO_RECEIVER = -1
NO_LAKE = -1


@dataclass
class LakeConnection:
    """Lowest known pass from one lake into another lake or river mouth tree."""
    source_lake: int
    target_lake: int
    target_cell: int
    pass_height: float


@dataclass
class LakeMergeGraph:
    """Candidate passes between lakes, resolved into the drainage graph."""
    connections: List[LakeConnection] = field(default_factory=list)
    joined: set = field(default_factory=set)
    undrained: List[int] = field(default_factory=list)


@dataclass
class DrainageGraph:
    """Result of one hydrology pass.

    Lakes are identified by the id of their root cell: the local minimum
    (or river mouth) that every cell of the lake eventually flows into.
    """
    river_mouths: np.ndarray            # bool per cell
    receivers: np.ndarray               # receiver cell id or NO_RECEIVER
    children: List[List[int]]           # reverse of receivers
    lake_ids: np.ndarray                # root cell of each continental cell, NO_LAKE for ocean
    drainage_area: np.ndarray
    discharge: np.ndarray
    undrained_lakes: List[int] = field(default_factory=list)

    @property
    def mouth_ids(self) -> np.ndarray:
        return np.flatnonzero(self.river_mouths)

    def downstream_order(self) -> List[int]:
        """Cells reachable from a river mouth, breadth-first from the mouths."""
        order: List[int] = []
        queue = deque(int(m) for m in self.mouth_ids)
        while queue:
            cell = queue.popleft()
            order.append(cell)
            queue.extend(self.children[cell])
        return order


class Hydrology:
    """Builds drainage graphs over a fixed cell topology."""

    def __init__(self, neighbors: Sequence[Sequence[int]], continental: np.ndarray,
                 areas: np.ndarray, precipitation: Optional[np.ndarray] = None):
        """
        Initialize hydrology for a set of cells.

        Args:
            neighbors: Neighbor cell ids for every cell
            continental: Bool mask of continental cells
            areas: Polygon area of every cell
            precipitation: Precipitation per cell (defaults to 1 everywhere)
        """
        self.neighbors = [list(map(int, n)) for n in neighbors]
        self.continental = np.asarray(continental, dtype=bool)
        self.areas = np.asarray(areas, dtype=np.float64)
        if precipitation is None:
            precipitation = np.ones(len(self.areas))
        self.precipitation = np.asarray(precipitation, dtype=np.float64)
        self.n_cells = len(self.areas)

    def find_river_mouths(self) -> np.ndarray:
        """Continental cells that touch at least one oceanic cell."""
        mouths = np.zeros(self.n_cells, dtype=bool)
        for cell in np.flatnonzero(self.continental):
            for neighbor in self.neighbors[cell]:
                if not self.continental[neighbor]:
                    mouths[cell] = True
                    break
        logger.debug("River mouths found", mouths=int(mouths.sum()))
        return mouths

    def compute_receivers(self, heights: np.ndarray,
                          mouths: np.ndarray) -> Tuple[np.ndarray, List[List[int]], List[int]]:
        """
        Point every continental cell at its lowest neighbor.

        A cell whose lowest neighbor is not strictly lower keeps no receiver
        and becomes a lake seed. River mouths are seeds as well.

        Returns:
            Tuple of (receivers, children, seeds)
        """
        receivers = np.full(self.n_cells, NO_RECEIVER, dtype=np.int64)
        children: List[List[int]] = [[] for _ in range(self.n_cells)]
        seeds: List[int] = []

        for cell in np.flatnonzero(self.continental):
            cell = int(cell)
            if mouths[cell]:
                seeds.append(cell)
                continue

            lowest = cell
            lowest_height = heights[cell]
            for neighbor in self.neighbors[cell]:
                if heights[neighbor] < lowest_height:
                    lowest = neighbor
                    lowest_height = heights[neighbor]

            if lowest == cell:
                seeds.append(cell)
            else:
                receivers[cell] = lowest
                children[lowest].append(cell)

        return receivers, children, seeds

    def identify_lakes(self, seeds: Sequence[int], children: List[List[int]]) -> np.ndarray:
        """Label every cell with the seed its flow ends in."""
        lake_ids = np.full(self.n_cells, NO_LAKE, dtype=np.int64)
        for seed in seeds:
            lake_ids[seed] = seed
            queue = deque([seed])
            while queue:
                cell = queue.popleft()
                for child in children[cell]:
                    lake_ids[child] = seed
                    queue.append(child)
        return lake_ids

    def resolve_lake_overflow(self, heights: np.ndarray, mouths: np.ndarray, receivers: np.ndarray,
                              children: List[List[int]], lake_ids: np.ndarray) -> LakeMergeGraph:
        """
        Drain lakes into their neighbors through the lowest passes.

        Each candidate pass is an edge between cells of two different lakes,
        with height ``max(h_a, h_b)``. Candidates are taken in ascending pass
        height, repeatedly, until no lake can be joined to a tree that already
        reaches a river mouth. Joining a lake sets its root's receiver to the
        cell across the pass. Lakes that never join stay undrained.
        """
        best: Dict[Tuple[int, int], LakeConnection] = {}
        for cell in np.flatnonzero(self.continental):
            cell = int(cell)
            if mouths[cell]:
                continue
            source = int(lake_ids[cell])
            for neighbor in self.neighbors[cell]:
                target = int(lake_ids[neighbor])
                if target == NO_LAKE or target == source:
                    continue
                pass_height = max(heights[cell], heights[neighbor])
                key = (source, target)
                current = best.get(key)
                if current is None or pass_height < current.pass_height:
                    best[key] = LakeConnection(source, target, neighbor, float(pass_height))

        merges = LakeMergeGraph(
            connections=sorted(best.values(), key=lambda c: c.pass_height),
            joined={int(m) for m in np.flatnonzero(mouths)},
        )

        progress = True
        while progress:
            progress = False
            for connection in merges.connections:
                if connection.source_lake in merges.joined or connection.target_lake not in merges.joined:
                    continue
                receivers[connection.source_lake] = connection.target_cell
                children[connection.target_cell].append(connection.source_lake)
                merges.joined.add(connection.source_lake)
                progress = True

        roots = {int(l) for l in lake_ids[lake_ids != NO_LAKE]}
        merges.undrained = sorted(roots - merges.joined)
        return merges

    def accumulate_drainage(self, mouths: np.ndarray,
                            children: List[List[int]]) -> Tuple[np.ndarray, np.ndarray]:
        """
        Sum area and discharge from every cell into its receiver.

        Returns:
            Tuple of (drainage_area, discharge)
        """
        area = np.where(self.continental, self.areas, 0.0)
        discharge = area * self.precipitation

        for mouth in np.flatnonzero(mouths):
            # Iterative post-order: children are summed before their receiver
            stack = [(int(mouth), False)]
            while stack:
                cell, expanded = stack.pop()
                if expanded:
                    for child in children[cell]:
                        area[cell] += area[child]
                        discharge[cell] += discharge[child]
                    continue
                stack.append((cell, True))
                for child in children[cell]:
                    stack.append((child, False))

        return area, discharge

    def run_pass(self, heights: np.ndarray, mouths: Optional[np.ndarray] = None) -> DrainageGraph:
        """
        Build a complete drainage graph for the current heights.

        Args:
            heights: Height per cell
            mouths: Precomputed river mouth mask (computed if omitted)

        Returns:
            DrainageGraph with receivers, lakes and accumulated drainage
        """
        if mouths is None:
            mouths = self.find_river_mouths()

        receivers, children, seeds = self.compute_receivers(heights, mouths)
        lake_ids = self.identify_lakes(seeds, children)
        merges = self.resolve_lake_overflow(heights, mouths, receivers, children, lake_ids)
        area, discharge = self.accumulate_drainage(mouths, children)

        logger.info(
            "Stream graph prepared",
            river_mouths=int(mouths.sum()),
            lakes=len(seeds) - int(mouths.sum()),
            lake_passes=len(merges.connections),
            undrained_lakes=len(merges.undrained),
        )

        return DrainageGraph(
            river_mouths=mouths,
            receivers=receivers,
            children=children,
            lake_ids=lake_ids,
            drainage_area=area,
            discharge=discharge,
            undrained_lakes=merges.undrained,
        )
