"""Tests for the world generation orchestrator."""

import math
import warnings

import numpy as np
import pytest

from py_planetgen.core.biomes import Biome, BiomeLibrary
from py_planetgen.core.cells import PlateType
from py_planetgen.core.events import EventType
from py_planetgen.core.exceptions import ConfigurationError, ConvergenceNotReached, InvalidStateError
from py_planetgen.core.generator import GenerationState, GenerationStep, WorldGenerator
from py_planetgen.core.heightmap import construct_height_map
from py_planetgen.core.noise import NoiseFields
from py_planetgen.core.world_settings import WorldSettings

SCENARIO = {
    "seed": 1212,
    "bounds": {"x": -1000.0, "y": -1000.0, "width": 2000.0, "height": 2000.0},
    "continent_ratio": 0.4,
    "normalized_minimum_cell_distance": 8.0,
}


def half_continent(generator):
    """Step that turns the eastern half of the world into continent."""
    def action():
        cells = generator.cells
        cells.plate_type[:] = np.where(cells.positions[:, 0] >= 0.0, PlateType.CONTINENT, PlateType.OCEAN)
    return GenerationStep(GenerationState.INITIALIZING_TECTONICS, action, "Splitting continent")


class TestScenarioWorld:
    """Full generation on a small world."""

    @pytest.fixture(scope="class")
    def world(self):
        generator = WorldGenerator(SCENARIO)
        events = []
        generator.subscribe(events.append)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceNotReached)
            generator.generate()
        generator.events.flush()
        yield generator, events
        generator.close()

    def test_reaches_completed(self, world):
        """Test that the pipeline completes and the center height is finite."""
        generator, _ = world

        assert generator.state == GenerationState.COMPLETED
        assert generator.error is None
        assert math.isfinite(generator.height_at(0.0, 0.0))
        assert generator.last_message.endswith("Completed")

    def test_event_sequence(self, world):
        """Test that events start, report every stage and complete."""
        generator, events = world
        kinds = [e.type for e in events]
        states = [e.state for e in events if e.type == EventType.PROGRESS]

        assert kinds[0] == EventType.STARTED
        assert kinds[-1] == EventType.COMPLETED
        assert EventType.FAILED not in kinds
        assert states[0] == GenerationState.INITIALIZING.value
        assert states[-1] == GenerationState.SETTING_BIOMES.value

    def test_erosion_loop_repeats_hydrology(self, world):
        """Test that every erosion iteration is preceded by a fresh hydrology pass."""
        generator, events = world
        states = [e.state for e in events if e.type == EventType.PROGRESS]
        stats = generator.statistics()

        assert states.count(GenerationState.SOLVING_EROSION.value) == stats.erosion_iterations
        assert states.count(GenerationState.FINDING_RIVER_MOUTHS.value) == stats.erosion_iterations
        assert states.count(GenerationState.PREPARING_STREAM_GRAPH.value) == stats.erosion_iterations
        assert 1 <= stats.erosion_iterations <= 20

    def test_statistics(self, world):
        """Test recorded world statistics."""
        generator, _ = world
        stats = generator.statistics()

        assert stats.cells == len(generator.cells) > 100
        assert stats.plates >= 1
        assert stats.max_height == pytest.approx(float(generator.cells.height.max()))
        assert stats.elapsed > 0

    def test_every_cell_has_a_biome(self, world):
        """Test that biome classification covered all cells."""
        generator, _ = world
        assert all(b is not None for b in generator.cells.biome)

    def test_biome_weights_sum_to_one(self, world):
        """Test blended biome weights at a few positions."""
        generator, _ = world
        for x, y in [(0.0, 0.0), (-990.0, 500.0), (700.0, -999.0)]:
            weights = generator.biome_weights(x, y)
            assert sum(weights.values()) == pytest.approx(1.0)

    def test_nearest_and_cell_info(self, world):
        """Test the nearest-cell query and cell debug metadata."""
        generator, _ = world
        nearest = generator.nearest_cells(10.0, 20.0, 3)
        info = generator.cell_info(10.0, 20.0)

        assert len(nearest) == 3
        assert info.id == nearest[0]
        assert info.plate_type in ("ocean", "continent")
        assert info.biome is not None
        if info.receiver is not None:
            assert 0 <= info.receiver < len(generator.cells)

    def test_height_map(self, world):
        """Test height map rasterization."""
        generator, _ = world
        heights = generator.height_map(16, 8, upscale_level=1)

        assert heights.shape == (16, 8)
        assert np.all(np.isfinite(heights))

        sampled = []
        construct_height_map(16, 8, generator.settings.bounds,
                             lambda x, y: sampled.append(x) or generator.height_at(x, y),
                             upscale_level=0)
        assert len(set(sampled)) == 16

    def test_geography_helpers(self, world):
        """Test latitude and longitude on the generated bounds."""
        generator, _ = world
        assert generator.latitude_at(-1000.0) == pytest.approx(90.0)
        assert generator.longitude_at(0.0) == pytest.approx(0.0)

    def test_deterministic(self, world):
        """Test that the same settings reproduce the same heights."""
        generator, _ = world
        again = WorldGenerator(SCENARIO)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceNotReached)
            again.generate()
        np.testing.assert_allclose(again.cells.height, generator.cells.height)
        again.close()


class TestGeneratorControl:
    """Test state handling, failures and pipeline editing."""

    @pytest.fixture
    def settings(self):
        return WorldSettings.from_mapping(SCENARIO)

    def test_queries_before_generation(self, settings):
        """Test that queries fail before Completed."""
        generator = WorldGenerator(settings)

        assert generator.state == GenerationState.NOT_STARTED
        with pytest.raises(InvalidStateError):
            generator.height_at(0.0, 0.0)
        with pytest.raises(InvalidStateError):
            generator.biome_weights(0.0, 0.0)
        with pytest.raises(InvalidStateError):
            generator.nearest_cells(0.0, 0.0)
        with pytest.raises(InvalidStateError):
            generator.statistics()
        generator.close()

    def test_invalid_settings_fail_generation(self):
        """Test that bad parameters move the pipeline to Failed."""
        generator = WorldGenerator({"continent_ratio": 2.0})
        events = []
        generator.subscribe(events.append)

        with pytest.raises(ConfigurationError):
            generator.generate()
        generator.events.flush()

        assert generator.state == GenerationState.FAILED
        assert isinstance(generator.error, ConfigurationError)
        assert [e.type for e in events].count(EventType.FAILED) == 1
        generator.close()

    def test_cell_distance_too_large(self):
        """Test that spacing too coarse for the bounds is a configuration error."""
        generator = WorldGenerator({
            "bounds": {"x": 0.0, "y": 0.0, "width": 1000.0, "height": 2000.0},
            "normalized_minimum_cell_distance": 50.0,
        })
        with pytest.raises(ConfigurationError):
            generator.generate()
        generator.close()

    def test_faulty_listener_does_not_stop_generation(self, settings):
        """Test that a raising listener is isolated from the pipeline."""
        generator = WorldGenerator(settings.with_overrides(max_erosion_iterations=2))
        received = []

        def broken(event):
            raise RuntimeError("listener failure")

        generator.subscribe(broken)
        generator.subscribe(received.append)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceNotReached)
            generator.generate()
        generator.events.flush()

        assert generator.state == GenerationState.COMPLETED
        assert received[-1].type == EventType.COMPLETED
        generator.close()

    def test_unsubscribe(self):
        """Test that an unsubscribed listener receives nothing."""
        generator = WorldGenerator({"continent_ratio": 2.0})
        received = []
        unsubscribe = generator.subscribe(received.append)
        unsubscribe()

        with pytest.raises(ConfigurationError):
            generator.generate()
        generator.events.flush()

        assert received == []
        generator.close()

    def test_convergence_warning(self, settings):
        """Test that hitting the erosion cap above threshold warns and still completes."""
        generator = WorldGenerator(
            settings.with_overrides(max_erosion_iterations=1, erosion_convergence_threshold=1e-9),
            noise=NoiseFields.constant(),
        )
        generator.add_step_after(GenerationState.INITIALIZING_TECTONICS, half_continent(generator))

        with pytest.warns(ConvergenceNotReached):
            generator.generate()

        assert generator.state == GenerationState.COMPLETED
        assert not generator.statistics().converged
        assert generator.statistics().erosion_iterations == 1
        generator.close()

    def test_step_editing(self, settings):
        """Test replacing a stage with a custom step."""
        generator = WorldGenerator(settings.with_overrides(max_erosion_iterations=2), noise=NoiseFields.constant())
        calls = []

        generator.remove_step(GenerationState.ADJUSTING_TEMPERATURE)
        generator.add_step_before(
            GenerationState.SETTING_BIOMES,
            GenerationStep(GenerationState.ADJUSTING_TEMPERATURE, lambda: calls.append("custom"), "Custom"),
        )
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceNotReached)
            generator.generate()

        assert calls == ["custom"]
        assert generator.state == GenerationState.COMPLETED
        with pytest.raises(KeyError):
            generator.remove_step(GenerationState.FAILED)
        generator.close()

    def test_custom_biome_classifier(self, settings):
        """Test that an injected classifier is used for every cell."""
        only = Biome("everywhere")
        generator = WorldGenerator(
            settings.with_overrides(max_erosion_iterations=2),
            noise=NoiseFields.constant(),
            biome_classifier=BiomeLibrary([only]),
        )
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceNotReached)
            generator.generate()

        assert set(b.id for b in generator.cells.biome) == {"everywhere"}
        assert generator.biome_weights(0.0, 0.0) == {only: pytest.approx(1.0)}
        generator.close()

    def test_background_start_and_regenerate(self, settings):
        """Test running on a background thread, then regenerating with new settings."""
        generator = WorldGenerator(settings.with_overrides(max_erosion_iterations=2), noise=NoiseFields.constant())
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceNotReached)
            generator.start()
            assert generator.wait(120) == GenerationState.COMPLETED
            first = len(generator.cells)

            generator.regenerate(settings.with_overrides(max_erosion_iterations=2, seed=99))
            assert generator.wait(120) == GenerationState.COMPLETED

        assert generator.settings.seed == 99
        assert len(generator.cells) > 0 and first > 0
        generator.close()

    def test_pipeline_locked_while_running(self, settings):
        """Test that steps cannot be edited while generation runs."""
        generator = WorldGenerator(settings.with_overrides(max_erosion_iterations=2), noise=NoiseFields.constant())
        seen = []

        def edit():
            try:
                generator.remove_step(GenerationState.SETTING_BIOMES)
            except InvalidStateError as e:
                seen.append(e)

        generator.add_step_after(
            GenerationState.INITIALIZING,
            GenerationStep(GenerationState.INITIALIZING, edit, "Editing"),
        )
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceNotReached)
            generator.generate()

        assert len(seen) == 1
        generator.close()
