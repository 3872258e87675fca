"""
Function Endpoint Tests
=======================

FastAPI TestClient against the function routers, with the database
engine and worker invoker swapped through dependency overrides.

Coverage:
  - Queue endpoints: nothing-to-do message and dispatch summary
  - Enqueue endpoint
  - Per-row worker endpoints and their error bodies
  - 400 on missing body fields, 500 JSON error bodies on failures
  - Missing gateway configuration fails before any row is touched
"""

import pytest
from unittest.mock import patch
from fastapi.testclient import TestClient

from backlinkhub.config import settings
from backlinkhub.core.errors import QueueError
from backlinkhub.main import app
from backlinkhub.models.backlinks import Backlink, BacklinkReview, BacklinkStatus, NetworkSite, ReviewStatus
from backlinkhub.routers.functions import get_db_engine, get_worker_invoker


@pytest.fixture
def client(engine, invoker):
    app.dependency_overrides[get_db_engine] = lambda: engine
    app.dependency_overrides[get_worker_invoker] = lambda: invoker
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


class TestQueueEndpoints:

    def test_enrichment_queue_empty(self, client, invoker):
        response = client.post("/functions/process-enrichment-queue")
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "No queued backlinks to process."
        assert body["nothing_to_do"] is True
        assert invoker.calls == []

    def test_enrichment_queue_dispatches(self, client, store, invoker):
        rows = store.add_all([Backlink(status=BacklinkStatus.QUEUED) for _ in range(2)])
        invoker.fail_ids = {rows[0].id}

        response = client.post("/functions/process-enrichment-queue")

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Started processing for 2 backlinks."
        assert body["dispatched"] == 2
        assert body["failed"] == 1

    def test_review_queue_summary(self, client, store, invoker):
        store.add(NetworkSite(domain="blog.example.com", api_url="https://blog.example.com",
                              username="u", application_password="p"))
        store.add(BacklinkReview(user_email="a@example.com", network_site_domain="blog.example.com"))
        store.add(BacklinkReview(user_email="b@example.com", network_site_domain="gone.example.com"))

        response = client.post("/functions/process-backlinks-to-review")

        body = response.json()
        assert response.status_code == 200
        assert body["dispatched"] == 1
        assert body["skipped"] == 1
        assert "Processed 2 review items" in body["message"]

    def test_queue_failure_returns_error_body(self, client):
        with patch("backlinkhub.routers.functions.EnrichmentQueue.run",
                   side_effect=QueueError(detail="Failed to fetch queued rows from backlinks: locked")):
            response = client.post("/functions/process-enrichment-queue")

        assert response.status_code == 500
        assert response.json() == {
            "error": "Failed to fetch queued rows from backlinks: locked",
            "code": "BLH-DB-001",
            "retryable": True,
        }

    def test_unhandled_error_returns_500_error_body(self, client):
        with patch("backlinkhub.routers.functions.ReviewQueue.run", side_effect=RuntimeError("kaboom")):
            response = client.post("/functions/process-backlinks-to-review")

        assert response.status_code == 500
        assert response.json() == {"error": "kaboom"}

    def test_missing_gateway_config(self, engine, store):
        store.add(Backlink(status=BacklinkStatus.QUEUED))
        app.dependency_overrides[get_db_engine] = lambda: engine
        try:
            with patch.object(settings, "service_role_key", None):
                response = TestClient(app).post("/functions/process-enrichment-queue")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert response.json()["code"] == "BLH-CFG-001"
        assert set(store.statuses(Backlink).values()) == {BacklinkStatus.QUEUED}


class TestEnqueueEndpoint:

    def test_queues_eligible(self, client, store):
        store.add(Backlink(network_site_id=2, status="pending"))
        response = client.post("/functions/batch-enrich-backlinks")
        assert response.json() == {
            "message": "1 backlinks have been successfully queued for enrichment.",
            "queued": 1,
        }

    def test_nothing_to_queue(self, client):
        response = client.post("/functions/batch-enrich-backlinks")
        assert response.json() == {"message": "No backlinks to queue.", "queued": 0}


class TestWorkerEndpoints:

    def test_enrich_requires_backlink_id(self, client):
        response = client.post("/functions/enrich-backlinks-from-wordpress", json={})
        assert response.status_code == 400
        body = response.json()
        assert "backlink_id" in body["error"]
        assert body["code"] == "BLH-API-001"
        assert body["retryable"] is False

    def test_enrich_rejects_malformed_json(self, client):
        response = client.post(
            "/functions/enrich-backlinks-from-wordpress",
            content="{not json",
            headers={"content-type": "application/json"},
        )
        assert response.status_code == 400
        assert "error" in response.json()

    def test_enrich_unknown_backlink(self, client):
        response = client.post("/functions/enrich-backlinks-from-wordpress", json={"backlink_id": 404})
        assert response.status_code == 404
        assert response.json() == {
            "error": "Backlink with ID 404 not found",
            "status": BacklinkStatus.ERROR_BACKLINK_NOT_FOUND,
        }

    def test_enrich_skipped_network(self, client, store):
        backlink = store.add(Backlink(network_site_id=81, article_title="x"))
        response = client.post("/functions/enrich-backlinks-from-wordpress", json={"backlink_id": backlink.id})
        assert response.status_code == 200
        assert response.json()["status"] == "skipped_network_81"

    def test_review_requires_review_id(self, client):
        response = client.post("/functions/process-backlink-review", json={"network_site_id": 3})
        assert response.status_code == 400
        assert "review_id" in response.json()["error"]

    def test_review_unknown_site(self, client, store):
        row = store.add(BacklinkReview(user_email="a@example.com", network_site_domain="gone.example.com"))
        response = client.post("/functions/process-backlink-review", json={"review_id": row.id})
        assert response.status_code == 404
        assert response.json()["status"] == ReviewStatus.ERROR_NETWORK_SITE_NOT_FOUND


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["service"] == "backlinkhub"
    assert body["database"] == "ok"
