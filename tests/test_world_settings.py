"""Tests for world settings and service configuration."""

import pytest

from py_planetgen.config import Settings
from py_planetgen.core.exceptions import ConfigurationError, PlanetGenError
from py_planetgen.core.world_settings import WorldBounds, WorldSettings


class TestWorldSettings:
    """Test validation and derived values."""

    def test_defaults(self):
        """Test default parameters and derived absolute values."""
        settings = WorldSettings()

        assert settings.seed == 234
        assert settings.bounds == WorldBounds()
        assert settings.minimum_cell_distance == pytest.approx(300.0)
        assert settings.noise_frequency == pytest.approx(8e-5)

    def test_from_mapping(self):
        """Test building settings from a plain dict with nested bounds."""
        settings = WorldSettings.from_mapping({
            "seed": 1212,
            "bounds": {"x": -1000, "y": -1000, "width": 2000, "height": 2000},
            "continent_ratio": 0.4,
        })

        assert settings.bounds.right == 1000.0
        assert settings.bounds.center == (0.0, 0.0)
        assert settings.continent_ratio == 0.4

    @pytest.mark.parametrize("values", [
        {"continent_ratio": 1.5},
        {"bounds": {"width": 0}},
        {"max_erosion_iterations": 0},
        {"polar_temperature": 40.0},
        {"unknown_field": 1},
    ])
    def test_invalid_values(self, values):
        """Test that bad parameters raise ConfigurationError."""
        with pytest.raises(ConfigurationError) as excinfo:
            WorldSettings.from_mapping(values)
        assert isinstance(excinfo.value, ValueError)
        assert isinstance(excinfo.value, PlanetGenError)

    def test_with_overrides(self):
        """Test that overrides return a validated copy."""
        base = WorldSettings()
        changed = base.with_overrides(seed=7)

        assert changed.seed == 7
        assert base.seed == 234
        with pytest.raises(ConfigurationError):
            base.with_overrides(erosion_rate=-1.0)

    def test_bounds_contains(self):
        """Test half-open containment."""
        bounds = WorldBounds(x=0.0, y=0.0, width=10.0, height=5.0)

        assert bounds.contains(0.0, 0.0)
        assert not bounds.contains(10.0, 1.0)
        assert not bounds.contains(1.0, 5.0)


class TestServiceSettings:
    """Test environment-driven service settings."""

    def test_env_prefix(self, monkeypatch):
        """Test that PLANETGEN_ variables override defaults."""
        monkeypatch.setenv("PLANETGEN_API_PORT", "9100")
        monkeypatch.setenv("PLANETGEN_LOG_JSON", "false")

        settings = Settings()

        assert settings.api_port == 9100
        assert settings.log_json is False
        assert settings.max_cells > 0
