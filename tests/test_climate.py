"""Tests for climate module."""

import numpy as np
import pytest

from py_planetgen.core.cells import WorldCells
from py_planetgen.core.climate import (
    Climate,
    ClimateOptions,
    latitude_at,
    longitude_at,
    precipitation_at_latitude,
    temperature_at_latitude,
)
from py_planetgen.core.noise import ConstantNoiseField
from py_planetgen.core.world_settings import WorldBounds


class TestGeography:
    """Test latitude and longitude mapping."""

    @pytest.fixture
    def bounds(self):
        return WorldBounds(x=-1000.0, y=-500.0, width=2000.0, height=1000.0)

    def test_latitude_extremes(self, bounds):
        """Test that the top edge is +90, the bottom -90 and the middle 0."""
        assert latitude_at(bounds.y, bounds) == pytest.approx(90.0)
        assert latitude_at(bounds.bottom, bounds) == pytest.approx(-90.0)
        assert latitude_at(bounds.center[1], bounds) == pytest.approx(0.0)

    def test_latitude_vectorized(self, bounds):
        """Test that arrays of Y give arrays of latitude."""
        lat = latitude_at(np.array([-500.0, 0.0, 250.0]), bounds)
        np.testing.assert_allclose(lat, [90.0, 0.0, -45.0])

    def test_longitude_wraps(self, bounds):
        """Test longitude range and wrapping."""
        assert longitude_at(bounds.x, bounds) == pytest.approx(-180.0)
        assert longitude_at(0.0, bounds) == pytest.approx(0.0)
        assert longitude_at(500.0, bounds) == pytest.approx(longitude_at(500.0 + bounds.width, bounds))


class TestLatitudeCurves:
    """Test the closed-form temperature and precipitation curves."""

    def test_equator_is_hottest(self):
        """Test that temperature peaks at the equator and falls toward the poles."""
        lats = np.array([0.0, 20.0, 45.0, 70.0, 90.0])
        temps = temperature_at_latitude(lats, 35.0, -50.0)

        assert temps[0] == pytest.approx(35.0)
        assert np.all(np.diff(temps) < 0)
        assert temperature_at_latitude(-45.0, 35.0, -50.0) == pytest.approx(temps[2])

    def test_temperature_continuous_at_45(self):
        """Test that the two halves of the curve meet at 45 degrees."""
        below = temperature_at_latitude(45.0 - 1e-7, 35.0, -50.0)
        above = temperature_at_latitude(45.0 + 1e-7, 35.0, -50.0)
        assert below == pytest.approx(above, abs=1e-4)

    def test_precipitation_lobes(self):
        """Test the equatorial maximum and the mid-latitude secondary band."""
        p = lambda lat: precipitation_at_latitude(lat, 1.3555)

        assert p(0.0) > p(30.0) > p(60.0) > p(90.0)
        assert p(-60.0) == pytest.approx(p(60.0))
        # The secondary lobe keeps 60 degrees well above what the equatorial lobe alone gives
        assert p(60.0) > 1.3555 * np.exp(-((np.radians(60.0) / 0.95) ** 2)) * 1.5


class TestClimate:
    """Test per-cell climate fields."""

    @pytest.fixture
    def cells(self, small_graph):
        return WorldCells.allocate(small_graph)

    def test_initialize_without_noise(self, cells, small_bounds):
        """Test that without noise the fields follow the latitude curves exactly."""
        options = ClimateOptions()
        climate = Climate(cells, small_bounds, options, ConstantNoiseField(0.0), ConstantNoiseField(0.0))
        climate.initialize()

        expected_lat = latitude_at(cells.positions[:, 1], small_bounds)
        np.testing.assert_allclose(cells.latitude, expected_lat)
        np.testing.assert_allclose(
            cells.temperature, temperature_at_latitude(expected_lat, 35.0, -50.0)
        )
        np.testing.assert_allclose(
            cells.precipitation, precipitation_at_latitude(expected_lat, options.max_precipitation)
        )

    def test_noise_perturbs_fields(self, cells, small_bounds):
        """Test that temperature noise adds and precipitation noise scales."""
        climate = Climate(cells, small_bounds, ClimateOptions(), ConstantNoiseField(3.0), ConstantNoiseField(-0.5))
        climate.initialize()

        base_t = temperature_at_latitude(cells.latitude, 35.0, -50.0)
        base_p = precipitation_at_latitude(cells.latitude, 1.3555)
        np.testing.assert_allclose(cells.temperature, base_t + 3.0)
        np.testing.assert_allclose(cells.precipitation, base_p * 0.5)

    def test_adjust_for_height(self, cells, small_bounds):
        """Test that only cells above sea level are cooled by the lapse rate."""
        climate = Climate(cells, small_bounds, ClimateOptions(temperature_gradient_with_altitude=0.01),
                          ConstantNoiseField(0.0), ConstantNoiseField(0.0))
        climate.initialize()
        before = cells.temperature.copy()
        cells.height[:] = -10.0
        cells.height[:5] = 1000.0

        assert climate.adjust_for_height() == 5
        np.testing.assert_allclose(cells.temperature[:5], before[:5] - 10.0)
        np.testing.assert_allclose(cells.temperature[5:], before[5:])

    def test_invalid_options(self):
        """Test that the poles must be colder than the equator."""
        with pytest.raises(ValueError):
            ClimateOptions(equatorial_temperature=-10.0, polar_temperature=0.0)
