"""
World generation orchestrator.

Runs the terrain stages as an ordered list of steps with a cursor. The
hydrology and erosion stages form a loop: after ``SolvingErosion`` the
cursor jumps back to ``FindingRiverMouths`` until the solver reports
convergence. Once the pipeline reaches ``Completed`` the generator serves
read-only spatial queries.
"""

import threading
import time
import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import numpy as np
import structlog

from ..utils.random import RngPool
from .biomes import Biome, BiomeClassifier, BiomeGrid, BiomeLibrary
from .cells import NO_RECEIVER, PlateType, WorldCells
from .climate import Climate, ClimateOptions, latitude_at, longitude_at
from .erosion import ErosionOptions, ErosionReport, ErosionSolver
from .events import EventDispatcher, EventType, GenerationEvent, Listener
from .exceptions import ConfigurationError, ConvergenceNotReached, InvalidStateError
from .heightmap import construct_height_map
from .hydrology import DrainageGraph, Hydrology
from .noise import NoiseFields, build_noise_fields
from .planar_graph import PlanarGraph, TriangleLocation
from .point_field import PointField, generate_point_field
from .tectonics import Tectonics, TectonicsOptions
from .world_settings import WorldSettings

logger = structlog.get_logger()

MIN_CELLS_ACROSS = 4


class GenerationState(str, Enum):
    NOT_STARTED = "NotStarted"
    INITIALIZING = "Initializing"
    GENERATING_SAMPLE_POINTS = "GeneratingSamplePoints"
    INITIALIZING_CELLS = "InitializingCells"
    INITIALIZING_TECTONICS = "InitializingTectonics"
    CALCULATING_UPLIFT = "CalculatingUplift"
    PROPAGATING_UPLIFT = "PropagatingUplift"
    FINDING_RIVER_MOUTHS = "FindingRiverMouths"
    PREPARING_STREAM_GRAPH = "PreparingStreamGraph"
    SOLVING_EROSION = "SolvingErosion"
    ADJUSTING_TEMPERATURE = "AdjustingTemperature"
    SETTING_BIOMES = "SettingBiomes"
    COMPLETED = "Completed"
    FAILED = "Failed"


@dataclass
class RepeatUntil:
    """Loop construct: jump back to ``back_to`` until ``predicate`` holds."""
    predicate: Callable[[], bool]
    back_to: GenerationState


@dataclass
class GenerationStep:
    state: GenerationState
    action: Callable[[], Any]
    message: str
    repeat: Optional[RepeatUntil] = None


@dataclass
class CellInfo:
    """Debug metadata for a single cell."""
    id: int
    x: float
    y: float
    latitude: float
    plate_id: int
    plate_type: str
    velocity: tuple
    uplift: float
    height: float
    temperature: float
    precipitation: float
    drainage_area: float
    discharge: float
    is_river_mouth: bool
    receiver: Optional[int]
    biome: Optional[str]


@dataclass
class WorldStatistics:
    cells: int
    plates: int
    continental_cells: int
    river_mouths: int
    undrained_lakes: int
    erosion_iterations: int
    converged: bool
    max_height: float
    last_max_change: float
    last_total_change: float
    elapsed: float


class WorldGenerator:
    """Generates a world and answers spatial queries about it."""

    def __init__(
        self,
        settings: Union[WorldSettings, Mapping[str, Any], None] = None,
        noise: Optional[NoiseFields] = None,
        biome_classifier: Optional[BiomeClassifier] = None,
    ):
        """
        Initialize the generator. Nothing is computed until ``generate`` or ``start``.

        Args:
            settings: WorldSettings or a plain mapping of its fields (validated
                during the Initializing stage)
            noise: Noise services; built from the settings when omitted
            biome_classifier: Biome lookup; defaults to BiomeLibrary()
        """
        self._raw_settings = settings if settings is not None else WorldSettings()
        self._injected_noise = noise
        self.biome_classifier = biome_classifier or BiomeLibrary()

        self.events = EventDispatcher()
        self.steps: List[GenerationStep] = self._default_steps()

        self.state = GenerationState.NOT_STARTED
        self.error: Optional[BaseException] = None
        self.last_message = ""
        self._thread: Optional[threading.Thread] = None
        self._started_at = 0.0
        self.elapsed = 0.0
        self._clear()

    def _clear(self) -> None:
        self.settings: Optional[WorldSettings] = None
        self.noise: Optional[NoiseFields] = None
        self.field: Optional[PointField] = None
        self.graph: Optional[PlanarGraph] = None
        self.cells: Optional[WorldCells] = None
        self.tectonics: Optional[Tectonics] = None
        self.climate: Optional[Climate] = None
        self.hydrology: Optional[Hydrology] = None
        self.drainage: Optional[DrainageGraph] = None
        self.solver: Optional[ErosionSolver] = None
        self.biome_grid: Optional[BiomeGrid] = None
        self.last_erosion_report: Optional[ErosionReport] = None
        self.plate_count = 0
        self.max_height = 0.0
        self._rng: Optional[RngPool] = None

    def _default_steps(self) -> List[GenerationStep]:
        S = GenerationState
        return [
            GenerationStep(S.INITIALIZING, self._initialize, "Initializing"),
            GenerationStep(S.GENERATING_SAMPLE_POINTS, self._generate_sample_points, "Generating sample points"),
            GenerationStep(S.INITIALIZING_CELLS, self._initialize_cells, "Initializing cells"),
            GenerationStep(S.INITIALIZING_TECTONICS, self._initialize_tectonics, "Initializing tectonics"),
            GenerationStep(S.CALCULATING_UPLIFT, self._calculate_uplift, "Calculating uplift"),
            GenerationStep(S.PROPAGATING_UPLIFT, self._propagate_uplift, "Propagating uplift"),
            GenerationStep(S.FINDING_RIVER_MOUTHS, self._find_river_mouths, "Finding river mouths"),
            GenerationStep(S.PREPARING_STREAM_GRAPH, self._prepare_stream_graph, "Preparing stream graph"),
            GenerationStep(
                S.SOLVING_EROSION,
                self._solve_erosion,
                "Solving erosion",
                repeat=RepeatUntil(self._erosion_converged, S.FINDING_RIVER_MOUTHS),
            ),
            GenerationStep(S.ADJUSTING_TEMPERATURE, self._adjust_temperature, "Adjusting temperature"),
            GenerationStep(S.SETTING_BIOMES, self._set_biomes, "Setting biomes"),
        ]

    # Pipeline editing

    def _require_idle(self) -> None:
        if self.is_running:
            raise InvalidStateError("The pipeline cannot be changed while generation is running")

    def _index_of(self, state: GenerationState) -> int:
        for i, step in enumerate(self.steps):
            if step.state == state:
                return i
        raise KeyError(f"No step for state {state.value}")

    def add_step_after(self, state: GenerationState, step: GenerationStep) -> None:
        self._require_idle()
        self.steps.insert(self._index_of(state) + 1, step)

    def add_step_before(self, state: GenerationState, step: GenerationStep) -> None:
        self._require_idle()
        self.steps.insert(self._index_of(state), step)

    def remove_step(self, state: GenerationState) -> None:
        self._require_idle()
        del self.steps[self._index_of(state)]

    # Running

    @property
    def is_running(self) -> bool:
        return self.state not in (GenerationState.NOT_STARTED, GenerationState.COMPLETED, GenerationState.FAILED)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.events.subscribe(listener)

    def _emit(self, kind: EventType, message: str = "", error: Optional[BaseException] = None) -> None:
        self.events.emit(GenerationEvent(
            type=kind, state=self.state.value, message=message, elapsed=self.elapsed, error=error,
        ))

    def _run(self) -> None:
        self._started_at = time.perf_counter()
        self.elapsed = 0.0
        self.error = None
        self._emit(EventType.STARTED, "Generation started")
        logger.info("World generation started")

        cursor = 0
        try:
            while cursor < len(self.steps):
                step = self.steps[cursor]
                self.state = step.state
                self.elapsed = time.perf_counter() - self._started_at
                self.last_message = f"[{self.elapsed:.2f}s] {step.message}"
                self._emit(EventType.PROGRESS, step.message)

                step.action()

                if step.repeat is not None and not step.repeat.predicate():
                    cursor = self._index_of(step.repeat.back_to)
                    continue
                cursor += 1
        except Exception as e:
            self.elapsed = time.perf_counter() - self._started_at
            failed_in = self.state.value
            self.state = GenerationState.FAILED
            self.error = e
            self.last_message = f"[{self.elapsed:.2f}s] Failed in {failed_in}: {e}"
            logger.error("World generation failed", stage=failed_in, error=str(e))
            self._emit(EventType.FAILED, str(e), error=e)
            return

        self.elapsed = time.perf_counter() - self._started_at
        self.state = GenerationState.COMPLETED
        self.last_message = f"[{self.elapsed:.2f}s] Completed"
        logger.info("World generation completed", elapsed=round(self.elapsed, 2),
                    cells=len(self.cells) if self.cells is not None else 0)
        self._emit(EventType.COMPLETED, "Generation completed")

    def _reset(self) -> None:
        self._clear()
        self.state = GenerationState.NOT_STARTED
        self.error = None
        self.last_message = ""

    def generate(self) -> "WorldGenerator":
        """
        Run the whole pipeline on the calling thread.

        Raises:
            InvalidStateError: Generation is already running
            Exception: Whatever fault moved the pipeline to Failed
        """
        if self.is_running:
            raise InvalidStateError("Generation is already running")
        self._reset()
        self._run()
        if self.error is not None:
            raise self.error
        return self

    def start(self) -> threading.Thread:
        """Run the pipeline on a background thread."""
        if self.is_running:
            raise InvalidStateError("Generation is already running")
        self._reset()
        self.state = GenerationState.INITIALIZING
        self._thread = threading.Thread(target=self._run, daemon=True, name="world-generator")
        self._thread.start()
        return self._thread

    def wait(self, timeout: Optional[float] = None) -> GenerationState:
        if self._thread is not None:
            self._thread.join(timeout)
        return self.state

    def regenerate(self, settings: Union[WorldSettings, Mapping[str, Any], None] = None) -> threading.Thread:
        """Reset every field and start again, optionally with new settings."""
        if settings is not None:
            self._raw_settings = settings
        return self.start()

    # Stages

    def _initialize(self) -> None:
        raw = self._raw_settings
        settings = raw if isinstance(raw, WorldSettings) else WorldSettings.from_mapping(raw)

        spacing = settings.minimum_cell_distance
        if spacing * MIN_CELLS_ACROSS > min(settings.bounds.width, settings.bounds.height):
            raise ConfigurationError(
                f"Minimum cell distance {spacing:.3f} is too large for bounds "
                f"{settings.bounds.width}x{settings.bounds.height}"
            )

        self.settings = settings
        self.noise = self._injected_noise or build_noise_fields(settings)
        self._rng = RngPool(settings.seed)
        logger.info("Generator initialized", seed=settings.seed, bounds=settings.bounds.model_dump(),
                    min_cell_distance=round(spacing, 3))

    def _generate_sample_points(self) -> None:
        s = self.settings
        self.field = generate_point_field(
            s.bounds, s.minimum_cell_distance, self._rng.for_stage("points"), s.poisson_iterations
        )

    def _initialize_cells(self) -> None:
        self.graph = PlanarGraph(self.field, self.settings.bounds)
        self.cells = WorldCells.allocate(self.graph)
        self.climate = Climate(
            self.cells,
            self.settings.bounds,
            ClimateOptions.from_settings(self.settings),
            self.noise.temperature,
            self.noise.precipitation,
        )
        self.climate.initialize()

    def _initialize_tectonics(self) -> None:
        self.tectonics = Tectonics(
            self.graph, self.cells, TectonicsOptions.from_settings(self.settings),
            self.noise.plates, self.noise.uplift,
        )
        self.plate_count = self.tectonics.assign_plates()

    def _calculate_uplift(self) -> None:
        self.tectonics.seed_uplift()

    def _propagate_uplift(self) -> None:
        self.tectonics.propagate_uplift(self._rng.for_stage("uplift"))

    def _find_river_mouths(self) -> None:
        if self.hydrology is None:
            self.hydrology = Hydrology(
                self.graph.neighbors, self.cells.continental, self.cells.areas, self.cells.precipitation
            )
            self.solver = ErosionSolver(ErosionOptions.from_settings(self.settings), self.graph.edge_length)
        self.cells.is_river_mouth[:] = self.hydrology.find_river_mouths()

    def _prepare_stream_graph(self) -> None:
        self.drainage = self.hydrology.run_pass(self.cells.height, self.cells.is_river_mouth)
        self.cells.receiver[:] = self.drainage.receivers
        self.cells.drainage_area[:] = self.drainage.drainage_area
        self.cells.discharge[:] = self.drainage.discharge

    def _solve_erosion(self) -> None:
        report = self.solver.step(self.drainage, self.cells.height, self.cells.uplift)
        self.last_erosion_report = report
        if report.hit_iteration_cap:
            message = (f"Erosion stopped after {report.iteration} iterations with max change "
                       f"{report.max_change:.3f} above threshold {self.solver.options.convergence_threshold}")
            logger.warning("Erosion did not converge", iterations=report.iteration,
                           max_change=round(report.max_change, 4))
            warnings.warn(message, ConvergenceNotReached, stacklevel=2)

    def _erosion_converged(self) -> bool:
        return self.last_erosion_report is not None and self.last_erosion_report.converged

    def _adjust_temperature(self) -> None:
        self.climate.adjust_for_height()
        self.max_height = float(self.cells.height.max()) if len(self.cells) else 0.0

    def _set_biomes(self) -> None:
        cells = self.cells
        classify = self.biome_classifier.classify
        cells.biome = [
            classify(float(t), float(p), float(h))
            for t, p, h in zip(cells.temperature, cells.precipitation, cells.height)
        ]
        self.biome_grid = BiomeGrid.build(
            self.settings.bounds,
            self.settings.biome_grid_resolution,
            lambda nodes: [cells.biome[i] for i in self.graph.nearest_many(nodes)],
        )

    # Queries

    def _require_completed(self) -> None:
        if self.state != GenerationState.COMPLETED:
            raise InvalidStateError(f"World is not generated yet (state: {self.state.value})")

    @property
    def converged(self) -> bool:
        report = self.last_erosion_report
        return report is not None and not report.hit_iteration_cap

    def nearest_cells(self, x: float, y: float, k: int = 1) -> List[int]:
        self._require_completed()
        return [int(i) for i in self.graph.nearest_cells(x, y, k)]

    def containing_triangle(self, x: float, y: float) -> TriangleLocation:
        self._require_completed()
        return self.graph.containing_triangle(x, y)

    def height_at(self, x: float, y: float) -> float:
        """Barycentric blend of the containing triangle's heights plus the fine noise overlay."""
        self._require_completed()
        location = self.graph.containing_triangle(x, y)
        heights = self.cells.height
        base = sum(w * heights[c] for c, w in zip(location.cells, location.weights))
        return float(base + self.noise.height.evaluate(x, y))

    def biome_weights(self, x: float, y: float) -> Dict[Biome, float]:
        self._require_completed()
        return self.biome_grid.weights(x, y)

    def cell_info(self, x: float, y: float) -> CellInfo:
        """Debug metadata for the cell nearest to (x, y)."""
        self._require_completed()
        i = int(self.graph.nearest_cells(x, y, 1)[0])
        c = self.cells
        biome = c.biome[i]
        receiver = int(c.receiver[i])
        return CellInfo(
            id=i,
            x=float(c.positions[i, 0]),
            y=float(c.positions[i, 1]),
            latitude=float(c.latitude[i]),
            plate_id=int(c.plate_id[i]),
            plate_type=PlateType(c.plate_type[i]).name.lower(),
            velocity=(float(c.velocity[i, 0]), float(c.velocity[i, 1])),
            uplift=float(c.uplift[i]),
            height=float(c.height[i]),
            temperature=float(c.temperature[i]),
            precipitation=float(c.precipitation[i]),
            drainage_area=float(c.drainage_area[i]),
            discharge=float(c.discharge[i]),
            is_river_mouth=bool(c.is_river_mouth[i]),
            receiver=None if receiver == NO_RECEIVER else receiver,
            biome=biome.id if biome is not None else None,
        )

    def height_map(self, resolution_x: int, resolution_y: int, upscale_level: int = 3) -> np.ndarray:
        self._require_completed()
        return construct_height_map(resolution_x, resolution_y, self.settings.bounds,
                                    self.height_at, upscale_level)

    def latitude_at(self, y: float) -> float:
        return latitude_at(y, self._settings_or_default().bounds)

    def longitude_at(self, x: float) -> float:
        return longitude_at(x, self._settings_or_default().bounds)

    def _settings_or_default(self) -> WorldSettings:
        if self.settings is not None:
            return self.settings
        raw = self._raw_settings
        return raw if isinstance(raw, WorldSettings) else WorldSettings.from_mapping(raw)

    def statistics(self) -> WorldStatistics:
        self._require_completed()
        report = self.last_erosion_report
        return WorldStatistics(
            cells=len(self.cells),
            plates=self.plate_count,
            continental_cells=int(self.cells.continental.sum()),
            river_mouths=int(self.cells.is_river_mouth.sum()),
            undrained_lakes=len(self.drainage.undrained_lakes) if self.drainage is not None else 0,
            erosion_iterations=report.iteration if report else 0,
            converged=self.converged,
            max_height=self.max_height,
            last_max_change=report.max_change if report else 0.0,
            last_total_change=report.total_change if report else 0.0,
            elapsed=self.elapsed,
        )

    def close(self) -> None:
        """Stop the event dispatcher."""
        self.events.close()
