"""
Climate fields for temperature and precipitation.

This module implements:
- Latitude from world position (+90 at the top edge, -90 at the bottom)
- Closed-form temperature and precipitation curves over latitude
- Noise perturbation of both fields per cell
- Altitude correction of temperature after erosion
"""

import math
from dataclasses import dataclass

import numpy as np
import structlog

from .cells import WorldCells
from .noise import NoiseField
from .world_settings import WorldBounds

logger = structlog.get_logger()

# Precipitation lobe shapes (radians)
EQUATORIAL_WIDTH = 0.95
SECONDARY_WEIGHT = 0.45
SECONDARY_WIDTH = 0.45
SECONDARY_CENTER = math.pi / 3.0


@dataclass
class ClimateOptions:
    """Climate parameters."""
    equatorial_temperature: float = 35.0  # °C at sea level on the equator
    polar_temperature: float = -50.0  # °C at sea level on the poles
    max_precipitation: float = 1.3555
    temperature_gradient_with_altitude: float = 0.02  # °C per height unit

    def __post_init__(self):
        if self.polar_temperature >= self.equatorial_temperature:
            raise ValueError("polar_temperature must be below equatorial_temperature")

    @classmethod
    def from_settings(cls, settings) -> "ClimateOptions":
        return cls(
            equatorial_temperature=settings.equatorial_temperature,
            polar_temperature=settings.polar_temperature,
            max_precipitation=settings.max_precipitation,
            temperature_gradient_with_altitude=settings.temperature_gradient_with_altitude,
        )


def latitude_at(y, bounds: WorldBounds):
    """Latitude in degrees for a Y coordinate (scalar or array)."""
    normalized = (np.asarray(y, dtype=np.float64) - bounds.center[1]) / bounds.height + 0.5
    latitude = -(-90.0 + normalized * 180.0)
    return float(latitude) if latitude.ndim == 0 else latitude


def longitude_at(x, bounds: WorldBounds):
    """Longitude in degrees for an X coordinate, in [-180, 180)."""
    normalized = ((np.asarray(x, dtype=np.float64) - bounds.x) % bounds.width) / bounds.width
    longitude = normalized * 360.0 - 180.0
    return float(longitude) if longitude.ndim == 0 else longitude


def temperature_at_latitude(latitude, equatorial: float, polar: float):
    """
    Sea-level temperature with a cosine falloff from equator to pole.

    Args:
        latitude: Degrees (scalar or array)
        equatorial: Temperature at latitude 0
        polar: Controls the temperature at latitude ±90

    Returns:
        Temperature in °C
    """
    lat = np.radians(np.asarray(latitude, dtype=np.float64))
    dt = (equatorial - polar * 2.0 / math.pi) / 2.0
    t = equatorial - dt
    two_lat = 2.0 * lat
    shape = np.where(np.abs(two_lat) < math.pi / 2.0, np.cos(two_lat), math.pi / 2.0 - np.abs(two_lat))
    result = t + dt * shape
    return float(result) if result.ndim == 0 else result


def precipitation_at_latitude(latitude, max_precipitation: float):
    """
    Precipitation as an equatorial lobe plus mid-latitude lobes in both hemispheres.

    Args:
        latitude: Degrees (scalar or array)
        max_precipitation: Scale of the equatorial peak

    Returns:
        Precipitation (same units as ``max_precipitation``)
    """
    lat = np.radians(np.asarray(latitude, dtype=np.float64))
    equatorial = np.exp(-((lat / EQUATORIAL_WIDTH) ** 2))
    secondary = np.exp(-(((np.abs(lat) - SECONDARY_CENTER) / SECONDARY_WIDTH) ** 2))
    result = max_precipitation * (equatorial + SECONDARY_WEIGHT * secondary)
    return float(result) if result.ndim == 0 else result


class Climate:
    """Fills and corrects per-cell climate fields."""

    def __init__(self, cells: WorldCells, bounds: WorldBounds, options: ClimateOptions,
                 temperature_noise: NoiseField, precipitation_noise: NoiseField):
        self.cells = cells
        self.bounds = bounds
        self.options = options
        self.temperature_noise = temperature_noise
        self.precipitation_noise = precipitation_noise

    def initialize(self) -> None:
        """Latitude, temperature and precipitation for every cell."""
        cells = self.cells
        cells.latitude[:] = latitude_at(cells.positions[:, 1], self.bounds)

        temperature_offset = self.temperature_noise.evaluate_many(cells.positions)
        precipitation_factor = 1.0 + self.precipitation_noise.evaluate_many(cells.positions)

        cells.temperature[:] = temperature_at_latitude(
            cells.latitude, self.options.equatorial_temperature, self.options.polar_temperature
        ) + temperature_offset
        cells.precipitation[:] = precipitation_at_latitude(
            cells.latitude, self.options.max_precipitation
        ) * precipitation_factor

        logger.info(
            "Climate initialized",
            min_temperature=round(float(cells.temperature.min()), 2),
            max_temperature=round(float(cells.temperature.max()), 2),
            mean_precipitation=round(float(cells.precipitation.mean()), 3),
        )

    def adjust_for_height(self) -> int:
        """Apply the altitude lapse rate to cells above sea level. Returns the number adjusted."""
        cells = self.cells
        above = cells.height > 0
        cells.temperature[above] -= cells.height[above] * self.options.temperature_gradient_with_altitude
        logger.info("Temperature adjusted for height", cells=int(above.sum()))
        return int(above.sum())
