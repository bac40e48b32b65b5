"""Core world generation modules."""

from .biomes import DEFAULT_BIOMES, Biome, BiomeClassifier, BiomeGrid, BiomeLibrary
from .cells import PlateType, WorldCells
from .events import EventType, GenerationEvent
from .exceptions import (
    ConfigurationError,
    ConvergenceNotReached,
    DegenerateInputError,
    DomainError,
    InvalidStateError,
    PlanetGenError,
)
from .generator import (
    CellInfo,
    GenerationState,
    GenerationStep,
    RepeatUntil,
    WorldGenerator,
    WorldStatistics,
)
from .heightmap import construct_height_map
from .noise import (
    ConstantNoiseField,
    FastNoiseField,
    FunctionNoiseField,
    NoiseField,
    NoiseFields,
    WarpedCellularNoiseField,
    build_noise_fields,
)
from .planar_graph import PlanarGraph, TriangleLocation
from .world_settings import WorldBounds, WorldSettings

__all__ = [
    "DEFAULT_BIOMES",
    "Biome",
    "BiomeClassifier",
    "BiomeGrid",
    "BiomeLibrary",
    "PlateType",
    "WorldCells",
    "EventType",
    "GenerationEvent",
    "ConfigurationError",
    "ConvergenceNotReached",
    "DegenerateInputError",
    "DomainError",
    "InvalidStateError",
    "PlanetGenError",
    "CellInfo",
    "GenerationState",
    "GenerationStep",
    "RepeatUntil",
    "WorldGenerator",
    "WorldStatistics",
    "construct_height_map",
    "ConstantNoiseField",
    "FastNoiseField",
    "FunctionNoiseField",
    "NoiseField",
    "NoiseFields",
    "WarpedCellularNoiseField",
    "build_noise_fields",
    "PlanarGraph",
    "TriangleLocation",
    "WorldBounds",
    "WorldSettings",
]
