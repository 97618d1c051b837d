"""
Tests for the diagnostics API.
"""

from fastapi.testclient import TestClient

from visionworker import __version__
from visionworker.api.server import create_app


class TestApiWithoutWorker:
    """Endpoints when no worker is attached."""

    def test_root(self):
        client = TestClient(create_app())
        body = client.get("/").json()
        assert body["service"] == "VisionWorker"
        assert body["version"] == __version__

    def test_health_unavailable(self):
        client = TestClient(create_app())
        assert client.get("/health").status_code == 503

    def test_status_unavailable(self):
        client = TestClient(create_app())
        assert client.get("/status").status_code == 503


class TestApiWithWorker:
    """Endpoints backed by a running worker."""

    def test_health(self, make_worker):
        client = TestClient(create_app(make_worker()))
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health_after_stop(self, make_worker):
        worker = make_worker()
        worker.stop(timeout=5.0)
        client = TestClient(create_app(worker))
        assert client.get("/health").status_code == 503

    def test_status(self, make_worker):
        client = TestClient(create_app(make_worker()))
        response = client.get("/status")
        assert response.status_code == 200

        body = response.json()
        assert body["worker"]["running"] is True
        assert body["worker"]["scheduler"]["state"] == "IDLE"
        assert "memory_rss_mb" in body["process"]
