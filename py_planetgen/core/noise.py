"""Noise services injected into the generator.

The pipeline only sees the ``NoiseField`` interface: one instance per field
(plates, uplift, temperature, precipitation and the fine height overlay).
The default implementations are backed by FastNoiseLite and are evaluated
on the cylindrical embedding of the world so they tile seamlessly along X.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
from pyfastnoiselite.pyfastnoiselite import (
    CellularReturnType,
    FastNoiseLite,
    FractalType,
    NoiseType,
)

from .geometry import cylindrical_embedding


class NoiseField(ABC):
    """Scalar field over world positions."""

    @abstractmethod
    def evaluate(self, x: float, y: float) -> float:
        """Value at a single position."""

    def evaluate_many(self, points: np.ndarray) -> np.ndarray:
        """Values at an (N, 2) array of positions."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        return np.array([self.evaluate(px, py) for px, py in points], dtype=np.float64)


class ConstantNoiseField(NoiseField):
    """Same value everywhere. Useful for switching a field off."""

    def __init__(self, value: float = 0.0):
        self.value = float(value)

    def evaluate(self, x: float, y: float) -> float:
        return self.value

    def evaluate_many(self, points: np.ndarray) -> np.ndarray:
        return np.full(len(np.asarray(points).reshape(-1, 2)), self.value, dtype=np.float64)


class FunctionNoiseField(NoiseField):
    """Wraps a plain callable ``fn(x, y) -> float``."""

    def __init__(self, fn: Callable[[float, float], float]):
        self.fn = fn

    def evaluate(self, x: float, y: float) -> float:
        return float(self.fn(x, y))


_NOISE_TYPES = {
    "perlin": NoiseType.NoiseType_Perlin,
    "opensimplex": NoiseType.NoiseType_OpenSimplex2,
    "value": NoiseType.NoiseType_Value,
}


def _make_noise(seed: int, frequency: float, noise_type: str = "perlin", octaves: int = 3) -> FastNoiseLite:
    noise = FastNoiseLite(seed=int(seed) & 0x7FFFFFFF)
    noise.noise_type = _NOISE_TYPES[noise_type]
    noise.frequency = frequency
    if octaves > 1:
        noise.fractal_type = FractalType.FractalType_FBm
        noise.fractal_octaves = octaves
        noise.fractal_lacunarity = 2.0
        noise.fractal_gain = 0.5
    return noise


def _seamless_coords(points: np.ndarray, width: float) -> np.ndarray:
    """(3, N) float32 coordinates on the cylinder, as FastNoiseLite expects."""
    return np.ascontiguousarray(cylindrical_embedding(points, width).T, dtype=np.float32)


class FastNoiseField(NoiseField):
    """
    Fractal gradient noise that wraps seamlessly along X.

    The raw value (roughly in [-1, 1]) is mapped through
    ``value * scale + offset`` and then clamped to [minimum, maximum] when
    those are given.
    """

    def __init__(
        self,
        seed: int,
        frequency: float,
        width: float,
        noise_type: str = "perlin",
        octaves: int = 3,
        scale: float = 1.0,
        offset: float = 0.0,
        minimum: Optional[float] = None,
        maximum: Optional[float] = None,
    ):
        self.width = width
        self.scale = scale
        self.offset = offset
        self.minimum = minimum
        self.maximum = maximum
        self._noise = _make_noise(seed, frequency, noise_type, octaves)

    def _transform(self, raw: np.ndarray) -> np.ndarray:
        values = raw.astype(np.float64) * self.scale + self.offset
        if self.minimum is not None or self.maximum is not None:
            values = np.clip(values, self.minimum, self.maximum)
        return values

    def evaluate_many(self, points: np.ndarray) -> np.ndarray:
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        if len(points) == 0:
            return np.zeros(0, dtype=np.float64)
        raw = self._noise.gen_from_coords(_seamless_coords(points, self.width))
        return self._transform(np.asarray(raw))

    def evaluate(self, x: float, y: float) -> float:
        return float(self.evaluate_many(np.array([[x, y]]))[0])


class WarpedCellularNoiseField(NoiseField):
    """
    Cellular "cell value" noise with a gradient-noise domain warp.

    Every Voronoi cell of the noise returns one constant value in [-1, 1],
    which is what makes it usable as a plate identity. The warp displaces
    the lookup position so plate borders meander instead of being straight.
    """

    def __init__(self, seed: int, frequency: float, width: float,
                 warp_frequency: float, warp_amplitude: float):
        self.width = width
        self.warp_amplitude = warp_amplitude

        self._cells = FastNoiseLite(seed=int(seed) & 0x7FFFFFFF)
        self._cells.noise_type = NoiseType.NoiseType_Cellular
        self._cells.cellular_return_type = CellularReturnType.CellularReturnType_CellValue
        self._cells.frequency = frequency

        self._warp_x = _make_noise(seed + 1, warp_frequency, octaves=2)
        self._warp_y = _make_noise(seed + 2, warp_frequency, octaves=2)

    def warp(self, points: np.ndarray) -> np.ndarray:
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        if self.warp_amplitude == 0 or len(points) == 0:
            return points
        coords = _seamless_coords(points, self.width)
        dx = np.asarray(self._warp_x.gen_from_coords(coords), dtype=np.float64)
        dy = np.asarray(self._warp_y.gen_from_coords(coords), dtype=np.float64)
        return points + self.warp_amplitude * np.column_stack([dx, dy])

    def evaluate_many(self, points: np.ndarray) -> np.ndarray:
        warped = self.warp(points)
        if len(warped) == 0:
            return np.zeros(0, dtype=np.float64)
        raw = self._cells.gen_from_coords(_seamless_coords(warped, self.width))
        return np.asarray(raw, dtype=np.float64)

    def evaluate(self, x: float, y: float) -> float:
        return float(self.evaluate_many(np.array([[x, y]]))[0])


@dataclass
class NoiseFields:
    """One noise service per generated field."""
    plates: NoiseField
    uplift: NoiseField
    temperature: NoiseField
    precipitation: NoiseField
    height: NoiseField

    @classmethod
    def constant(cls, plates: float = 0.0) -> "NoiseFields":
        """Every field flat; a single plate everywhere unless ``plates`` is replaced."""
        return cls(
            plates=ConstantNoiseField(plates),
            uplift=ConstantNoiseField(0.0),
            temperature=ConstantNoiseField(0.0),
            precipitation=ConstantNoiseField(0.0),
            height=ConstantNoiseField(0.0),
        )


def build_noise_fields(settings) -> NoiseFields:
    """
    Build the default FastNoiseLite-backed fields for a world.

    Args:
        settings: WorldSettings

    Returns:
        NoiseFields with plates, uplift, temperature, precipitation and
        height overlay services
    """
    base = settings.noise_frequency
    width = settings.bounds.width
    seed = settings.seed

    plates = WarpedCellularNoiseField(
        seed=seed,
        frequency=base,
        width=width,
        warp_frequency=base * settings.domain_warp_frequency,
        warp_amplitude=settings.domain_warp_intensity * settings.minimum_cell_distance,
    )
    uplift = FastNoiseField(seed + 11, base * settings.uplift_noise_frequency, width, octaves=3)
    temperature = FastNoiseField(
        seed + 23,
        base * settings.temperature_noise_frequency,
        width,
        octaves=4,
        scale=settings.temperature_noise_intensity,
    )
    intensity = settings.precipitation_noise_intensity
    precipitation = FastNoiseField(
        seed + 37,
        base * settings.precipitation_noise_frequency,
        width,
        octaves=4,
        scale=1.3 * intensity,
        offset=-0.3 * intensity,
        minimum=-intensity,
        maximum=intensity,
    )
    height = FastNoiseField(
        seed + 51,
        base * settings.height_noise_frequency,
        width,
        noise_type="opensimplex",
        octaves=5,
        scale=settings.height_noise_intensity,
    )
    return NoiseFields(
        plates=plates,
        uplift=uplift,
        temperature=temperature,
        precipitation=precipitation,
        height=height,
    )
