"""End-to-end tests for the HTTP API."""

import math

import pytest
from fastapi.testclient import TestClient

from py_planetgen.api.main import WorldJob, app, jobs
from py_planetgen.config import settings
from py_planetgen.core.generator import GenerationState, WorldGenerator

REQUEST = {
    "seed": 1212,
    "width": 2000.0,
    "height": 2000.0,
    "continent_ratio": 0.4,
    "normalized_minimum_cell_distance": 8.0,
    "max_erosion_iterations": 5,
}


class TestWorldApi:
    """Test job creation and world queries."""

    @pytest.fixture(scope="class")
    def client(self):
        return TestClient(app)

    @pytest.fixture(scope="class")
    def job_id(self, client):
        """Generate one world; TestClient runs the background task before returning."""
        response = client.post("/worlds/generate", json=REQUEST)
        assert response.status_code == 200
        return response.json()["job_id"]

    def test_root_and_health(self, client):
        """Test service information endpoints."""
        assert client.get("/").json()["status"] == "running"
        assert client.get("/health").json()["status"] == "healthy"

    def test_job_completed(self, client, job_id):
        """Test that the job finished and reports its final state."""
        body = client.get(f"/jobs/{job_id}").json()

        assert body["status"] == "completed"
        assert body["state"] == "Completed"
        assert body["seed"] == 1212
        assert body["error_message"] is None

    def test_height_query(self, client, job_id):
        """Test the height endpoint."""
        response = client.get(f"/worlds/{job_id}/height", params={"x": 0.0, "y": 0.0})

        assert response.status_code == 200
        assert math.isfinite(response.json()["height"])

    def test_biome_query(self, client, job_id):
        """Test that biome weights are sorted and sum to one."""
        weights = client.get(f"/worlds/{job_id}/biomes", params={"x": 100.0, "y": -300.0}).json()
        values = [w["weight"] for w in weights]

        assert sum(values) == pytest.approx(1.0)
        assert values == sorted(values, reverse=True)

    def test_cell_query(self, client, job_id):
        """Test cell debug metadata."""
        body = client.get(f"/worlds/{job_id}/cells", params={"x": 0.0, "y": 0.0}).json()

        assert body["plate_type"] in ("ocean", "continent")
        assert len(body["velocity"]) == 2

    def test_statistics(self, client, job_id):
        """Test world statistics."""
        body = client.get(f"/worlds/{job_id}/statistics").json()

        assert body["cells"] > 100
        assert 1 <= body["erosion_iterations"] <= 5

    def test_point_outside_world(self, client, job_id):
        """Test that an unlocatable point is a 422."""
        response = client.get(f"/worlds/{job_id}/height", params={"x": 0.0, "y": 1e7})
        assert response.status_code == 422

    def test_unknown_job(self, client):
        """Test that unknown jobs are a 404."""
        assert client.get("/jobs/missing").status_code == 404
        assert client.get("/worlds/missing/statistics").status_code == 404

    def test_world_not_ready(self, client):
        """Test that querying an unfinished world is a 409."""
        jobs["pending"] = WorldJob(id="pending", generator=WorldGenerator(), seed=234)
        try:
            response = client.get("/worlds/pending/height", params={"x": 0.0, "y": 0.0})
            assert response.status_code == 409
        finally:
            jobs.pop("pending").generator.close()

    @pytest.mark.parametrize("payload", [
        {"continent_ratio": 2.0},
        {"overrides": {"not_a_setting": 1}},
        {"overrides": {"polar_temperature": 90.0}},
        {"normalized_minimum_cell_distance": 0.01},
    ])
    def test_invalid_requests(self, client, payload):
        """Test that bad parameters and oversized worlds are rejected."""
        response = client.post("/worlds/generate", json=payload)
        assert response.status_code == 422


class TestJobLifecycle:
    """Test job status tracking and resource release."""

    @pytest.fixture
    def client(self):
        return TestClient(app)

    def test_finished_job_releases_dispatcher(self, client):
        """Test that a completed job stops its event dispatcher thread."""
        job_id = client.post("/worlds/generate", json=REQUEST).json()["job_id"]
        job = jobs[job_id]

        assert job.status == "completed"
        assert job.generator.events.closed

    def test_timeout_then_completion(self, client, monkeypatch):
        """Test that a timed out job reports completion once its generator finishes."""
        monkeypatch.setattr(settings, "generation_timeout", 0)

        job_id = client.post("/worlds/generate", json=REQUEST).json()["job_id"]
        job = jobs[job_id]
        timed_out = job.status

        assert job.generator.wait(120) == GenerationState.COMPLETED
        body = client.get(f"/jobs/{job_id}").json()

        assert timed_out in ("timeout", "completed")
        assert body["status"] == "completed"
        assert body["state"] == "Completed"
        assert body["error_message"] is None
        assert client.get(f"/worlds/{job_id}/statistics").status_code == 200

        job.generator.events.flush()
        assert job.generator.events.closed

    def test_oldest_finished_worlds_evicted(self, client, monkeypatch):
        """Test that finished worlds beyond the limit are dropped, oldest first."""
        monkeypatch.setattr(settings, "max_worlds", 1)

        first = client.post("/worlds/generate", json=REQUEST).json()["job_id"]
        first_generator = jobs[first].generator
        second = client.post("/worlds/generate", json=REQUEST).json()["job_id"]

        assert first not in jobs
        assert second in jobs
        assert first_generator.events.closed
        assert client.get(f"/jobs/{first}").status_code == 404
