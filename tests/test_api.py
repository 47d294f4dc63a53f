"""
API Endpoint Tests for the PDF to EPUB Read-Aloud Service

Run with: pytest tests/test_api.py -v
"""

import json
import sys
import time
import zipfile
from io import BytesIO
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent))

from api import JobManager, create_app
from config import AppConfig
from conftest import FakeDecoder, FakeOcrEngine, horses_pages
from readaloud_core.pipeline import ConversionJob, JobStatus

TERMINAL = ("completed", "failed", "cancelled")


@pytest.fixture
def manager(tmp_path, job_store):
    config = AppConfig()
    config.api.upload_dir = tmp_path / "uploads"
    config.api.output_dir = tmp_path / "output"
    config.storage.base_dir = tmp_path / "jobs"
    job_manager = JobManager(
        config,
        store=job_store,
        decoder_factory=lambda path: FakeDecoder(horses_pages(), metadata={"title": "All About Horses"}),
        ocr_engine=FakeOcrEngine(),
    )
    yield job_manager
    job_manager.shutdown(wait=True)


@pytest.fixture
def client(manager):
    """Create test client."""
    return TestClient(create_app(manager.config, manager))


def upload(client, name="horses.pdf", **extra):
    files = {"file": (name, BytesIO(b"%PDF-1.4 fake"), "application/pdf")}
    files.update(extra.pop("files", {}))
    return client.post("/api/v1/convert", files=files, data=extra)


def wait_for(client, job_id, timeout=30.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        data = client.get(f"/api/v1/jobs/{job_id}").json()
        if data["status"] in TERMINAL:
            return data
        time.sleep(0.05)
    raise AssertionError(f"Job {job_id} did not finish")


class TestHealthEndpoint:
    """Tests for /api/v1/health endpoint."""

    def test_health_returns_200(self, client):
        """Health endpoint should return 200."""
        response = client.get("/api/v1/health")
        assert response.status_code == 200

    def test_health_returns_status(self, client):
        """Health endpoint should include status field."""
        data = client.get("/api/v1/health").json()
        assert data["status"] == "healthy"
        assert data["store_backend"] == "LocalJobStore"


class TestInfoEndpoint:
    """Tests for /api/v1/info endpoint."""

    def test_info_contains_name_and_version(self, client):
        data = client.get("/api/v1/info").json()
        assert data["name"] == "pdf-to-epub-readaloud"
        assert "version" in data

    def test_info_lists_steps(self, client):
        """Info should list the nine stages in order."""
        steps = client.get("/api/v1/info").json()["steps"]
        assert len(steps) == 9
        assert steps[0]["step"] == "classification"
        assert steps[-1]["progress"] == 100


class TestConfigEndpoint:
    """Tests for /api/v1/config/options endpoint."""

    def test_config_options_contains_options(self, client):
        data = client.get("/api/v1/config/options").json()
        assert "options" in data
        assert "defaults" in data

    def test_config_options_dpi_dropdown(self, client):
        """Config should include DPI dropdown options."""
        data = client.get("/api/v1/config/options").json()
        dpi_values = [opt["value"] for opt in data["options"]["dpi"]["options"]]
        assert 150 in dpi_values
        assert data["defaults"]["dpi"] == 150


class TestConvertEndpoint:
    """Tests for /api/v1/convert and the job endpoints."""

    def test_convert_runs_to_completion(self, client):
        response = upload(client)
        assert response.status_code == 200
        job_id = response.json()["job_id"]

        data = wait_for(client, job_id)
        assert data["status"] == "completed", data["error"]
        assert data["progress"] == 100
        assert data["epub_available"]
        assert data["requires_review"] is False
        assert data["filename"] == "horses.pdf"

    def test_download_epub(self, client):
        job_id = upload(client).json()["job_id"]
        wait_for(client, job_id)

        response = client.get(f"/api/v1/jobs/{job_id}/epub")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/epub+zip"
        with zipfile.ZipFile(BytesIO(response.content)) as zf:
            assert zf.namelist()[0] == "mimetype"

    def test_convert_with_audio_and_timings(self, client):
        timings = json.dumps([{"page_number": 1, "start_time": 0, "end_time": 8}]).encode()
        response = upload(client, files={
            "audio": ("narration.mp3", BytesIO(b"ID3fake"), "audio/mpeg"),
            "timings": ("timings.json", BytesIO(timings), "application/json"),
        })
        assert response.status_code == 200
        data = wait_for(client, response.json()["job_id"])
        assert data["status"] == "completed", data["error"]
        assert data["metrics"]["media_overlays"] == 1

    def test_non_pdf_rejected(self, client):
        response = upload(client, name="horses.txt")
        assert response.status_code == 400

    def test_bad_audio_rejected(self, client):
        response = upload(client, files={"audio": ("narration.flac", BytesIO(b"fLaC"), "audio/flac")})
        assert response.status_code == 400

    def test_invalid_dpi_rejected(self, client):
        response = upload(client, dpi="10")
        assert response.status_code == 400

    def test_invalid_timings_rejected(self, client):
        response = upload(client, files={"timings": ("timings.json", BytesIO(b"{not json"), "application/json")})
        assert response.status_code == 400

    def test_unknown_job(self, client):
        assert client.get("/api/v1/jobs/unknown").status_code == 404
        assert client.get("/api/v1/jobs/unknown/epub").status_code == 404

    def test_epub_of_failed_job_is_conflict(self, client, job_store):
        job_store.save(ConversionJob(id="failed1", filename="bad.pdf", status=JobStatus.FAILED,
                                     error_message="Cannot open bad.pdf"))
        response = client.get("/api/v1/jobs/failed1/epub")
        assert response.status_code == 409
        assert client.get("/api/v1/jobs/failed1").json()["error"] == "Cannot open bad.pdf"

    def test_cancel_finished_job_rejected(self, client, job_store):
        job_store.save(ConversionJob(id="done1", filename="a.pdf", status=JobStatus.COMPLETED))
        assert client.delete("/api/v1/jobs/done1").status_code == 400

    def test_events(self, client):
        job_id = upload(client).json()["job_id"]
        wait_for(client, job_id)
        events = client.get(f"/api/v1/jobs/{job_id}/events").json()
        assert events[0]["event_type"] == "created"
        assert events[-1]["event_type"] == "completed"
        assert [e["sequence"] for e in events] == list(range(1, len(events) + 1))

    def test_structure_snapshots(self, client):
        job_id = upload(client).json()["job_id"]
        wait_for(client, job_id)

        latest = client.get(f"/api/v1/jobs/{job_id}/structure").json()
        assert latest["metadata"]["title"] == "All About Horses"
        layout = client.get(f"/api/v1/jobs/{job_id}/structure", params={"step": "layout_analysis"})
        assert layout.status_code == 200
        bad = client.get(f"/api/v1/jobs/{job_id}/structure", params={"step": "printing"})
        assert bad.status_code == 400

    def test_list_jobs(self, client):
        job_id = upload(client).json()["job_id"]
        wait_for(client, job_id)
        jobs = client.get("/api/v1/jobs", params={"status": "completed"}).json()
        assert job_id in [j["job_id"] for j in jobs]
        assert client.get("/api/v1/jobs", params={"status": "bogus"}).status_code == 400


class TestJobRecovery:
    """Tests for recovery of jobs interrupted by a restart."""

    def test_unfinished_jobs_marked_failed(self, tmp_path, job_store):
        job_store.save(ConversionJob(id="stale", filename="a.pdf", status=JobStatus.IN_PROGRESS))
        config = AppConfig()
        config.api.output_dir = tmp_path / "output"
        manager = JobManager(config, store=job_store, ocr_engine=FakeOcrEngine())
        try:
            job = job_store.load("stale")
            assert job.status == JobStatus.FAILED
            assert job.error_message == "Job interrupted by server restart"
        finally:
            manager.shutdown(wait=True)
