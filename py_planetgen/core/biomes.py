"""
Biome classification and biome blending.

This module implements:
- Biome definitions as temperature/precipitation/height ranges
- The ``BiomeClassifier`` service interface and a lookup-table default
- A precomputed biome grid with smoothstep blending between grid samples
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np
import structlog

from .geometry import smoothstep
from .world_settings import WorldBounds

logger = structlog.get_logger()

UNBOUNDED = 1e9


@dataclass(frozen=True)
class Biome:
    """A biome and the climate envelope it occupies. Ranges are inclusive."""
    id: str
    min_temperature: float = -UNBOUNDED
    max_temperature: float = UNBOUNDED
    min_precipitation: float = -UNBOUNDED
    max_precipitation: float = UNBOUNDED
    min_height: float = -UNBOUNDED
    max_height: float = UNBOUNDED
    color: Tuple[float, float, float] = (0.5, 0.5, 0.5)

    def matches(self, temperature: float, precipitation: float, height: float) -> bool:
        return (self.min_temperature <= temperature <= self.max_temperature
                and self.min_precipitation <= precipitation <= self.max_precipitation
                and self.min_height <= height <= self.max_height)

    def distance(self, temperature: float, precipitation: float, height: float) -> float:
        """Weighted distance to the nearest range bounds, used when nothing matches."""
        t = min(abs(temperature - self.min_temperature), abs(temperature - self.max_temperature))
        p = min(abs(precipitation - self.min_precipitation), abs(precipitation - self.max_precipitation))
        h = min(abs(height - self.min_height), abs(height - self.max_height))
        return t * 2.0 + p * 1.5 + h * 1.0


class BiomeClassifier(ABC):
    """Maps local climate to a biome."""

    @abstractmethod
    def classify(self, temperature: float, precipitation: float, height: float) -> Biome:
        """Biome for the given conditions."""


class BiomeLibrary(BiomeClassifier):
    """Lookup table of biomes, checked in registration order."""

    def __init__(self, biomes: Optional[Iterable[Biome]] = None):
        self._biomes: Dict[str, Biome] = {}
        for biome in (DEFAULT_BIOMES if biomes is None else biomes):
            self.register(biome)

    def register(self, biome: Biome) -> None:
        if biome.id in self._biomes:
            raise ValueError(f"Biome with id {biome.id} already exists")
        self._biomes[biome.id] = biome

    def get(self, biome_id: str) -> Biome:
        return self._biomes[biome_id]

    @property
    def biomes(self) -> List[Biome]:
        return list(self._biomes.values())

    def classify(self, temperature: float, precipitation: float, height: float) -> Biome:
        """First registered match, otherwise the closest biome."""
        if not self._biomes:
            raise ValueError("BiomeLibrary is empty")
        for biome in self._biomes.values():
            if biome.matches(temperature, precipitation, height):
                return biome
        return min(self._biomes.values(), key=lambda b: b.distance(temperature, precipitation, height))


DEFAULT_BIOMES = (
    Biome("glacier", max_temperature=-15.0, min_height=0.0, color=(0.95, 0.97, 1.0)),
    Biome("mountain", min_height=200.0, max_height=2000.0, color=(0.6, 0.6, 0.6)),
    Biome("hill", min_height=100.0, max_height=200.0, color=(0.4, 0.8, 0.4)),
    Biome("desert", min_temperature=20.0, max_precipitation=0.3, min_height=0.0, max_height=100.0,
          color=(0.93, 0.84, 0.55)),
    Biome("tundra", min_temperature=-15.0, max_temperature=0.0, min_height=0.0, max_height=100.0,
          color=(0.7, 0.75, 0.7)),
    Biome("forest", min_precipitation=1.2, min_height=0.0, max_height=100.0, color=(0.15, 0.5, 0.2)),
    Biome("plain", min_height=0.0, max_height=100.0, color=(0.5, 0.8, 0.3)),
)


class BiomeGrid:
    """
    Biomes sampled on a regular grid over the world.

    The grid wraps along X (``nx`` columns cover one full period) and spans
    the world height inclusively along Y (``ny`` rows). ``weights`` blends
    the four grid samples around a position with smoothstep weights.
    """

    def __init__(self, bounds: WorldBounds, biomes: List[Biome], indices: np.ndarray):
        self.bounds = bounds
        self.biomes = biomes
        self.indices = indices  # (nx, ny) index into biomes
        self.nx, self.ny = indices.shape

    @classmethod
    def build(cls, bounds: WorldBounds, resolution: int,
              sample: Callable[[np.ndarray], List[Biome]]) -> "BiomeGrid":
        """
        Sample biomes on the grid.

        Args:
            bounds: World rectangle
            resolution: Number of columns along X
            sample: Returns the biome at each row of an (N, 2) position array

        Returns:
            BiomeGrid
        """
        nx = max(2, int(resolution))
        ny = max(2, int(round(nx * bounds.height / bounds.width)) + 1)
        xs = bounds.x + np.arange(nx) * (bounds.width / nx)
        ys = bounds.y + np.linspace(0.0, bounds.height, ny)
        gx, gy = np.meshgrid(xs, ys, indexing="ij")
        nodes = np.column_stack([gx.ravel(), gy.ravel()])

        sampled = sample(nodes)
        biomes: List[Biome] = []
        lookup: Dict[Biome, int] = {}
        indices = np.empty(len(sampled), dtype=np.int64)
        for i, biome in enumerate(sampled):
            if biome not in lookup:
                lookup[biome] = len(biomes)
                biomes.append(biome)
            indices[i] = lookup[biome]

        logger.info("Biome grid built", columns=nx, rows=ny, distinct_biomes=len(biomes))
        return cls(bounds, biomes, indices.reshape(nx, ny))

    def biome_at_node(self, i: int, j: int) -> Biome:
        return self.biomes[self.indices[i % self.nx, j]]

    def weights(self, x: float, y: float) -> Dict[Biome, float]:
        """Blend weights of the biomes around (x, y); they sum to 1."""
        b = self.bounds
        u = ((x - b.x) % b.width) / b.width * self.nx
        v = min(max((y - b.y) / b.height, 0.0), 1.0) * (self.ny - 1)

        x0 = int(math.floor(u)) % self.nx
        y0 = min(int(math.floor(v)), self.ny - 2)
        ix = smoothstep(u - math.floor(u))
        iy = smoothstep(v - y0)

        corners = (
            (x0, y0, (1.0 - ix) * (1.0 - iy)),
            (x0 + 1, y0, ix * (1.0 - iy)),
            (x0, y0 + 1, (1.0 - ix) * iy),
            (x0 + 1, y0 + 1, ix * iy),
        )

        result: Dict[Biome, float] = {}
        for i, j, w in corners:
            if w <= 0:
                continue
            biome = self.biome_at_node(i, j)
            result[biome] = result.get(biome, 0.0) + w

        total = sum(result.values())
        return {biome: w / total for biome, w in result.items()}
