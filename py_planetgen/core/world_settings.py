"""World generation parameters.

A single value struct carries every tunable of the terrain pipeline. Values
are validated by pydantic when the struct is built; the generator converts
validation failures into ``ConfigurationError`` during its Initializing stage.
"""

from typing import Any, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .exceptions import ConfigurationError


class WorldBounds(BaseModel):
    """Axis-aligned world rectangle. X wraps around; the ghost band also links the top and bottom rows."""

    model_config = ConfigDict(frozen=True)

    x: float = Field(-50000.0, description="Left edge")
    y: float = Field(-50000.0, description="Top edge")
    width: float = Field(100000.0, gt=0, description="Horizontal extent (wrap period)")
    height: float = Field(100000.0, gt=0, description="Vertical extent")

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    def contains(self, px: float, py: float) -> bool:
        """Half-open containment test."""
        return self.x <= px < self.right and self.y <= py < self.bottom


class WorldSettings(BaseModel):
    """All parameters of a generation run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    seed: int = Field(234, ge=0, description="Random seed")
    bounds: WorldBounds = Field(default_factory=WorldBounds, description="World rectangle")

    # Sampling
    poisson_iterations: int = Field(8, ge=1, le=64, description="Candidate attempts per active point")
    normalized_minimum_cell_distance: float = Field(
        0.6, gt=0, le=50, description="Cell spacing, in 1/200ths of the world height"
    )

    # Noise
    normalized_noise_frequency: float = Field(0.8, gt=0, le=100, description="Base noise frequency")
    uplift_noise_frequency: float = Field(0.7, gt=0, description="Uplift noise sub-frequency")
    uplift_noise_intensity: float = Field(-0.3, ge=-1, le=1, description="Uplift noise modulation")
    temperature_noise_frequency: float = Field(1.0, gt=0, description="Temperature noise sub-frequency")
    temperature_noise_intensity: float = Field(10.0, ge=0, description="Temperature noise amplitude (degrees)")
    precipitation_noise_frequency: float = Field(0.8, gt=0, description="Precipitation noise sub-frequency")
    precipitation_noise_intensity: float = Field(0.6, ge=0, le=1, description="Precipitation noise amplitude")
    height_noise_frequency: float = Field(6.0, gt=0, description="Height overlay noise sub-frequency")
    height_noise_intensity: float = Field(4.0, ge=0, description="Height overlay noise amplitude")
    domain_warp_frequency: float = Field(2.0, gt=0, description="Plate domain warp sub-frequency")
    domain_warp_intensity: float = Field(20.0, ge=0, description="Plate domain warp amplitude, in cell spacings")

    # Tectonics
    continent_ratio: float = Field(0.8, ge=0, le=1, description="Probability that a plate is continental")
    plate_merge_ratio: float = Field(0.0, ge=0, lt=1, description="Width of plate quantization buckets")
    max_tectonic_movement: float = Field(10.0, gt=0, description="Largest plate speed")
    max_uplift: float = Field(1000.0, gt=0, description="Uplift scale at plate boundaries")
    uplift_propagation_decrement: float = Field(0.8, gt=0, lt=1, description="Uplift decay per hop")
    uplift_propagation_sharpness: float = Field(0.0, ge=0, le=2, description="Jitter applied while propagating")

    # Erosion
    erosion_rate: float = Field(4.5, gt=0, description="Stream power constant K")
    erosion_time_step: float = Field(0.2, gt=0, description="Implicit solver timestep")
    erosion_convergence_threshold: float = Field(20.0, gt=0, description="Max height change at convergence")
    max_erosion_iterations: int = Field(20, ge=1, le=10000, description="Erosion iteration cap")
    max_erosion_slope_angle: float = Field(30.0, gt=0, lt=90, description="Thermal slope cap in degrees")

    # Climate
    equatorial_temperature: float = Field(35.0, description="Sea-level temperature at the equator")
    polar_temperature: float = Field(-50.0, description="Sea-level temperature at the poles")
    max_precipitation: float = Field(1.3555, gt=0, description="Peak precipitation")
    temperature_gradient_with_altitude: float = Field(0.02, ge=0, description="Lapse rate per height unit")

    # Queries
    biome_grid_resolution: int = Field(64, ge=2, le=4096, description="Biome grid samples along the X axis")

    @model_validator(mode="after")
    def _check_climate(self) -> "WorldSettings":
        if self.polar_temperature >= self.equatorial_temperature:
            raise ValueError("polar_temperature must be below equatorial_temperature")
        return self

    @property
    def minimum_cell_distance(self) -> float:
        """Absolute spacing between sample points."""
        return self.normalized_minimum_cell_distance * self.bounds.height / 200.0

    @property
    def noise_frequency(self) -> float:
        """Absolute base noise frequency, scaled to the world height."""
        return self.normalized_noise_frequency * 10.0 / self.bounds.height

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "WorldSettings":
        """Build settings from a plain mapping, raising ConfigurationError on bad input."""
        try:
            return cls.model_validate(dict(values))
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e

    def with_overrides(self, **overrides: Any) -> "WorldSettings":
        """Return a validated copy with some fields replaced."""
        values = self.model_dump()
        values.update(overrides)
        return self.from_mapping(values)
