"""FastAPI main application."""

import dataclasses
import threading
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog
from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ..config import settings
from ..core.exceptions import ConfigurationError, DomainError, InvalidStateError
from ..core.events import EventType
from ..core.generator import GenerationState, WorldGenerator
from ..core.world_settings import WorldBounds, WorldSettings
from ..utils.logging import configure_logging

configure_logging(settings.log_level, settings.log_json)

logger = structlog.get_logger()

app = FastAPI(
    title="Planet Generator API",
    description="Procedural terrain generation with tectonics, erosion and climate",
    version="0.1.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Generated worlds live in memory; the oldest finished ones are evicted past settings.max_worlds
jobs: Dict[str, "WorldJob"] = {}
_jobs_lock = threading.Lock()

FINISHED = ("completed", "failed")


@dataclasses.dataclass
class WorldJob:
    id: str
    generator: WorldGenerator
    seed: int
    status: str = "pending"
    created_at: datetime = dataclasses.field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None


# Request/Response models
class WorldGenerationRequest(BaseModel):
    """Request to generate a new world."""

    seed: Optional[int] = Field(None, ge=0, description="Random seed (random when omitted)")
    width: float = Field(100000.0, gt=0, description="World width")
    height: float = Field(100000.0, gt=0, description="World height")
    normalized_minimum_cell_distance: float = Field(
        0.6, gt=0, le=50, description="Cell spacing, in 1/200ths of the world height"
    )
    continent_ratio: float = Field(0.8, ge=0, le=1, description="Probability that a plate is continental")
    max_erosion_iterations: int = Field(20, ge=1, le=1000, description="Erosion iteration cap")
    overrides: Dict[str, Any] = Field(default_factory=dict, description="Any other WorldSettings fields")

    def to_settings(self) -> WorldSettings:
        values = dict(self.overrides)
        values.update(
            seed=self.seed if self.seed is not None else uuid.uuid4().int % 100000,
            bounds=WorldBounds(x=-self.width / 2.0, y=-self.height / 2.0, width=self.width, height=self.height),
            normalized_minimum_cell_distance=self.normalized_minimum_cell_distance,
            continent_ratio=self.continent_ratio,
            max_erosion_iterations=self.max_erosion_iterations,
        )
        return WorldSettings.from_mapping(values)


class JobResponse(BaseModel):
    """Response with job information."""

    job_id: str
    status: str
    state: str
    message: str
    seed: int
    error_message: Optional[str] = None


class HeightResponse(BaseModel):
    x: float
    y: float
    height: float


class BiomeWeight(BaseModel):
    biome: str
    weight: float


class CellResponse(BaseModel):
    """Debug metadata for the cell nearest a position."""

    id: int
    x: float
    y: float
    latitude: float
    plate_id: int
    plate_type: str
    velocity: Tuple[float, float]
    uplift: float
    height: float
    temperature: float
    precipitation: float
    drainage_area: float
    discharge: float
    is_river_mouth: bool
    receiver: Optional[int]
    biome: Optional[str]


class StatisticsResponse(BaseModel):
    """Summary of a generated world."""

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


def estimated_cell_count(world: WorldSettings) -> int:
    spacing = world.minimum_cell_distance
    return int(world.bounds.width * world.bounds.height / (spacing * spacing))


def _finish(job: WorldJob) -> bool:
    """
    Sync a job's status with its generator once the run has ended.

    A job marked as timed out becomes completed or failed when its
    generator finishes after all.

    Returns:
        True when the generator is no longer running
    """
    generator = job.generator
    state = generator.state
    if state not in (GenerationState.COMPLETED, GenerationState.FAILED):
        return False

    with _jobs_lock:
        if job.status in FINISHED:
            return True
        job.completed_at = datetime.utcnow()
        if state == GenerationState.COMPLETED:
            job.status = "completed"
            job.error_message = None
            logger.info("World generation completed", job_id=job.id, elapsed=round(generator.elapsed, 2))
        else:
            job.status = "failed"
            job.error_message = str(generator.error)
            logger.error("World generation failed", job_id=job.id, error=job.error_message)
    return True


def _track(job: WorldJob) -> None:
    """Finish the job and stop its event dispatcher when the generator ends."""
    def on_event(event) -> None:
        if event.type in (EventType.COMPLETED, EventType.FAILED):
            _finish(job)
            job.generator.close()

    job.generator.subscribe(on_event)


def _evict_finished_jobs() -> None:
    """Drop the oldest finished worlds beyond settings.max_worlds."""
    with _jobs_lock:
        finished = sorted(
            (job for job in jobs.values() if job.status in FINISHED),
            key=lambda job: job.completed_at or job.created_at,
        )
        evicted = finished[:max(0, len(finished) - settings.max_worlds)]
        for job in evicted:
            del jobs[job.id]

    for job in evicted:
        job.generator.close()
    if evicted:
        logger.info("Evicted finished worlds", count=len(evicted), remaining=len(jobs))


def _job_response(job: WorldJob) -> JobResponse:
    _finish(job)
    generator = job.generator
    return JobResponse(
        job_id=job.id,
        status=job.status,
        state=generator.state.value,
        message=generator.last_message or f"Job {job.status}",
        seed=job.seed,
        error_message=job.error_message,
    )


def _get_job(job_id: str) -> WorldJob:
    job = jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


def _query(job_id: str, fn):
    """Run a world query, mapping generation errors to HTTP status codes."""
    job = _get_job(job_id)
    try:
        return fn(job.generator)
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except DomainError as e:
        raise HTTPException(status_code=422, detail=str(e))


# Event handlers
@app.on_event("startup")
async def startup_event():
    logger.info("Starting Planet Generator API")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop event dispatchers of every held world."""
    logger.info("Shutting down Planet Generator API", worlds=len(jobs))
    for job in jobs.values():
        job.generator.close()


# API endpoints
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Planet Generator API",
        "version": "0.1.0",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    running = sum(1 for job in jobs.values() if job.status == "running")
    return {"status": "healthy", "worlds": len(jobs), "running": running}


@app.post("/worlds/generate", response_model=JobResponse)
async def generate_world(request: WorldGenerationRequest, background_tasks: BackgroundTasks):
    """
    Start world generation job.

    Returns immediately with job ID. Use /jobs/{job_id} to check status.
    """
    logger.info("World generation requested", request=request.model_dump())

    try:
        world = request.to_settings()
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    cells = estimated_cell_count(world)
    if cells > settings.max_cells:
        raise HTTPException(
            status_code=422,
            detail=f"Requested world has about {cells} cells, the limit is {settings.max_cells}",
        )

    job_id = str(uuid.uuid4())
    job = WorldJob(id=job_id, generator=WorldGenerator(world), seed=world.seed)
    with _jobs_lock:
        jobs[job_id] = job
    _track(job)

    background_tasks.add_task(run_world_generation, job_id)

    return JobResponse(
        job_id=job_id,
        status="pending",
        state=GenerationState.NOT_STARTED.value,
        message="World generation job started",
        seed=world.seed,
    )


@app.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job_status(job_id: str):
    """Get status of a world generation job."""
    return _job_response(_get_job(job_id))


@app.get("/worlds/{job_id}/height", response_model=HeightResponse)
async def get_height(job_id: str, x: float, y: float):
    """Terrain height at a world position."""
    height = _query(job_id, lambda g: g.height_at(x, y))
    return HeightResponse(x=x, y=y, height=height)


@app.get("/worlds/{job_id}/biomes", response_model=List[BiomeWeight])
async def get_biome_weights(job_id: str, x: float, y: float):
    """Blended biome weights at a world position, heaviest first."""
    weights = _query(job_id, lambda g: g.biome_weights(x, y))
    return [
        BiomeWeight(biome=biome.id, weight=weight)
        for biome, weight in sorted(weights.items(), key=lambda item: -item[1])
    ]


@app.get("/worlds/{job_id}/cells", response_model=CellResponse)
async def get_cell(job_id: str, x: float, y: float):
    """Debug metadata for the cell nearest a world position."""
    info = _query(job_id, lambda g: g.cell_info(x, y))
    return CellResponse(**dataclasses.asdict(info))


@app.get("/worlds/{job_id}/statistics", response_model=StatisticsResponse)
async def get_statistics(job_id: str):
    """Summary statistics of a generated world."""
    stats = _query(job_id, lambda g: g.statistics())
    return StatisticsResponse(**dataclasses.asdict(stats))


# Background task functions
def run_world_generation(job_id: str) -> None:
    """
    Background task to generate a world.
    """
    job = jobs[job_id]
    logger.info("Starting world generation", job_id=job_id)
    job.status = "running"

    generator = job.generator
    generator.start()
    generator.wait(settings.generation_timeout)

    if _finish(job):
        generator.close()
    else:
        # The run keeps going; _track finishes the job when it ends
        with _jobs_lock:
            if job.status == "running":
                job.status = "timeout"
                job.error_message = f"Generation did not finish within {settings.generation_timeout}s"
        logger.warning("World generation timed out", job_id=job_id, state=generator.state.value)

    _evict_finished_jobs()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
