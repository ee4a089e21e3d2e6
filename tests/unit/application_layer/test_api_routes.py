"""
Unit Tests for API Routes

Drives the FastAPI app through TestClient with a container built on the
in-memory store and queue. Background workers are not started; tests that
need a job processed run the worker once through the client's portal.
"""

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from enhance_gateway.application.app import create_app
from enhance_gateway.application.container import ServiceContainer
from enhance_gateway.infrastructure.message_queue import InMemoryJobQueue
from enhance_gateway.infrastructure.store import InMemoryStore

USER = {"X-User-ID": "user-1"}


class DownStore(InMemoryStore):
    async def ping(self) -> bool:
        return False


def _build_container(settings, store=None) -> ServiceContainer:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    return asyncio.run(
        ServiceContainer.build(
            settings,
            store=store or InMemoryStore(),
            queue=InMemoryJobQueue(),
            http_client=http_client,
        )
    )


def _upload(content: bytes, name="doc.txt", content_type="text/plain"):
    return {"file": (name, content, content_type)}


async def _trip(breaker):
    for _ in range(breaker.failure_threshold):
        await breaker.record_failure(await breaker.acquire())


@pytest.fixture
def container(test_settings):
    return _build_container(test_settings)


@pytest.fixture
def client(test_settings, container):
    app = create_app(test_settings, container)
    with TestClient(app) as test_client:
        yield test_client


@pytest.mark.unit
class TestHealthRoutes:
    def test_liveness(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data

    def test_readiness(self, client):
        response = client.get("/api/v1/health/ready")

        assert response.status_code == 200
        components = response.json()["components"]
        assert components["store"] == "healthy"
        assert components["job_worker"] == "stopped"

    def test_readiness_fails_when_store_down(self, test_settings):
        container = _build_container(test_settings, store=DownStore())

        with TestClient(create_app(test_settings, container)) as client:
            response = client.get("/api/v1/health/ready")

        assert response.status_code == 503
        assert response.json()["components"]["store"] == "unhealthy"

    def test_circuit_states(self, client):
        circuits = client.get("/api/v1/health/circuits").json()["circuits"]

        assert {"enhance", "batch_enhance", "webhooks"} <= set(circuits)
        assert circuits["enhance"]["state"] == "closed"

    def test_metrics_at_root(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "gateway_" in response.text

    def test_request_id_echoed(self, client):
        response = client.get("/api/v1/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.unit
class TestEnhanceRoutes:
    def test_requires_user(self, client):
        response = client.post("/api/v1/enhance", files=_upload(b"hello"), headers={"X-Request-ID": "req-9"})

        assert response.status_code == 401
        body = response.json()
        assert body["code"] == "AUTHENTICATION_REQUIRED"
        assert body["request_id"] == "req-9"

    def test_new_document_is_queued(self, client):
        response = client.post(
            "/api/v1/enhance", files=_upload(b"a fresh document"), data={"priority": "high"}, headers=USER
        )

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "queued"
        assert body["job_id"]
        assert response.headers["X-RateLimit-Limit"] == "3"
        assert response.headers["X-RateLimit-Remaining"] == "2"

        job = client.get(f"/api/v1/enhance/jobs/{body['job_id']}", headers=USER).json()
        assert job["state"] == "waiting"
        assert job["priority"] == "high"

    def test_processed_document_is_served_from_cache(self, client, container):
        queued = client.post("/api/v1/enhance", files=_upload(b"enhance me once"), headers=USER).json()

        client.portal.call(container.worker.process_next)

        job = client.get(f"/api/v1/enhance/jobs/{queued['job_id']}", headers=USER).json()
        assert job["state"] == "completed"

        response = client.post("/api/v1/enhance", files=_upload(b"enhance me once"), headers=USER)
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "cached"
        assert body["cache_match"] == "exact"
        assert body["enhancement_id"] == job["result"]["enhancement_id"]

    def test_rate_limited_after_endpoint_limit(self, client):
        for i in range(3):
            response = client.post("/api/v1/enhance", files=_upload(f"doc {i}".encode()), headers=USER)
            assert response.status_code == 202

        response = client.post("/api/v1/enhance", files=_upload(b"doc 4"), headers=USER)

        assert response.status_code == 429
        assert response.json()["code"] == "RATE_LIMITED"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert int(response.headers["Retry-After"]) >= 1

        # Limits are per user
        other = client.post("/api/v1/enhance", files=_upload(b"doc 4"), headers={"X-User-ID": "user-2"})
        assert other.status_code == 202

    def test_open_circuit_serves_cached_fallback(self, client, container):
        queued = client.post("/api/v1/enhance", files=_upload(b"known document"), headers=USER).json()
        client.portal.call(container.worker.process_next)
        client.portal.call(_trip, container.breakers.get_breaker("enhance"))

        response = client.post("/api/v1/enhance", files=_upload(b"known document"), headers=USER)

        assert response.status_code == 200
        assert response.headers["X-Fallback-Response"] == "true"
        body = response.json()
        assert body["fallback"] is True
        job = client.get(f"/api/v1/enhance/jobs/{queued['job_id']}", headers=USER).json()
        assert body["document_id"] == job["document_id"]

    def test_open_circuit_without_cached_result(self, client, container):
        client.portal.call(_trip, container.breakers.get_breaker("enhance"))

        response = client.post("/api/v1/enhance", files=_upload(b"never seen"), headers=USER)

        assert response.status_code == 503
        assert response.json()["code"] == "CIRCUIT_OPEN"
        assert "Retry-After" in response.headers

    def test_invalid_priority(self, client):
        response = client.post("/api/v1/enhance", files=_upload(b"doc"), data={"priority": "urgent"}, headers=USER)

        assert response.status_code == 400
        assert response.json()["details"]["field"] == "priority"

    def test_unsupported_content_type(self, client):
        response = client.post(
            "/api/v1/enhance", files=_upload(b"MZ", name="a.exe", content_type="application/x-msdownload"), headers=USER
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_missing_file_is_validation_error(self, client):
        response = client.post("/api/v1/enhance", data={"priority": "high"}, headers=USER)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_job_of_other_user_not_found(self, client):
        job_id = client.post("/api/v1/enhance", files=_upload(b"private"), headers=USER).json()["job_id"]

        response = client.get(f"/api/v1/enhance/jobs/{job_id}", headers={"X-User-ID": "user-2"})
        assert response.status_code == 404


@pytest.mark.unit
class TestBatchRoutes:
    def test_partial_batch(self, client):
        files = [
            ("files", ("a.txt", b"first", "text/plain")),
            ("files", ("b.txt", b"", "text/plain")),
            ("files", ("c.txt", b"third", "text/plain")),
        ]

        response = client.post("/api/v1/enhance/batch", files=files, headers=USER)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "partial"
        assert (body["queued_files"], body["failed_files"]) == (2, 1)
        assert body["results"][1]["error_code"] == "VALIDATION_ERROR"

        record = client.get(f"/api/v1/enhance/batch/{body['batch_id']}", headers=USER).json()
        assert record["owner_id"] == "user-1"
        assert record["total_files"] == 3

        other = client.get(f"/api/v1/enhance/batch/{body['batch_id']}", headers={"X-User-ID": "user-2"})
        assert other.status_code == 404

    def test_stop_on_error(self, client):
        files = [
            ("files", ("a.txt", b"", "text/plain")),
            ("files", ("b.txt", b"second", "text/plain")),
        ]

        body = client.post(
            "/api/v1/enhance/batch", files=files, data={"stop_on_error": "true"}, headers=USER
        ).json()

        assert body["aborted"] is True
        assert body["status"] == "aborted"
        assert len(body["results"]) == 1

    def test_subscribed_webhook_gets_batch_started(self, client):
        created = client.post(
            "/api/v1/webhooks",
            json={"url": "https://hooks.example.com/in", "events": ["batch.started"]},
            headers=USER,
        )
        assert created.status_code == 201
        files = [("files", (f"{i}.txt", f"document {i}".encode(), "text/plain")) for i in range(3)]

        response = client.post("/api/v1/enhance/batch", files=files, headers=USER)

        assert response.status_code == 200
        assert response.json()["queued_files"] == 3
        webhook_id = created.json()["webhook"]["id"]
        deliveries = client.get(f"/api/v1/webhooks/{webhook_id}/deliveries", headers=USER).json()
        assert [d["event"] for d in deliveries["deliveries"]] == ["batch.started"]

    def test_webhook_fault_keeps_batch_response(self, client, container, monkeypatch):
        async def broken_trigger(*args, **kwargs):
            raise RuntimeError("webhook store unavailable")

        monkeypatch.setattr(container.webhooks, "trigger", broken_trigger)
        files = [("files", (f"{i}.txt", f"document {i}".encode(), "text/plain")) for i in range(3)]

        response = client.post("/api/v1/enhance/batch", files=files, headers=USER)

        assert response.status_code == 200
        assert response.json()["queued_files"] == 3
        circuits = client.get("/api/v1/health/circuits").json()["circuits"]
        assert circuits["batch_enhance"]["consecutive_failures"] == 0

    def test_too_many_files(self, client):
        files = [("files", (f"{i}.txt", f"doc {i}".encode(), "text/plain")) for i in range(11)]

        response = client.post("/api/v1/enhance/batch", files=files, headers=USER)

        assert response.status_code == 400
        assert response.json()["details"]["max"] == 10


@pytest.mark.unit
class TestWebhookRoutes:
    def _create(self, client, **overrides):
        body = {"url": "https://hooks.example.com/in", "events": ["batch.started"], **overrides}
        return client.post("/api/v1/webhooks", json=body, headers=USER)

    def test_create_returns_secret_once(self, client):
        response = self._create(client, description="primary")

        assert response.status_code == 201
        body = response.json()
        assert len(body["secret"]) == 64
        assert "secret" not in body["webhook"]
        assert body["webhook"]["retry_policy"]["max_attempts"] == 3

        fetched = client.get(f"/api/v1/webhooks/{body['webhook']['id']}", headers=USER).json()
        assert "secret" not in fetched
        assert fetched["description"] == "primary"

    def test_create_validation(self, client):
        assert self._create(client, url="ftp://nope").status_code == 400
        assert self._create(client, events=["batch.exploded"]).status_code == 400
        assert self._create(client, retry_policy={"max_attempts": 0}).status_code == 400

    def test_list_update_delete(self, client):
        webhook_id = self._create(client).json()["webhook"]["id"]

        listed = client.get("/api/v1/webhooks", headers=USER).json()
        assert listed["total"] == 1

        updated = client.put(f"/api/v1/webhooks/{webhook_id}", json={"is_active": False}, headers=USER)
        assert updated.status_code == 200
        assert updated.json()["is_active"] is False

        assert client.delete(f"/api/v1/webhooks/{webhook_id}", headers=USER).status_code == 204
        assert client.get(f"/api/v1/webhooks/{webhook_id}", headers=USER).status_code == 404

    def test_other_user_cannot_access(self, client):
        webhook_id = self._create(client).json()["webhook"]["id"]

        response = client.get(f"/api/v1/webhooks/{webhook_id}", headers={"X-User-ID": "user-2"})
        assert response.status_code == 404

    def test_rotate_secret(self, client):
        created = self._create(client).json()

        rotated = client.post(f"/api/v1/webhooks/{created['webhook']['id']}/rotate-secret", headers=USER)

        assert rotated.status_code == 200
        assert rotated.json()["secret"] != created["secret"]
        assert rotated.json()["webhook"]["previous_secret_expires_at"] is not None

    def test_deliveries_and_stats(self, client):
        webhook_id = self._create(client).json()["webhook"]["id"]
        client.post("/api/v1/enhance/batch", files=[("files", ("a.txt", b"doc", "text/plain"))], headers=USER)

        deliveries = client.get(f"/api/v1/webhooks/{webhook_id}/deliveries", headers=USER).json()
        assert deliveries["total"] == 1
        delivery = deliveries["deliveries"][0]
        assert delivery["event"] == "batch.started"
        assert delivery["status"] == "pending"
        assert "payload" not in delivery

        retried = client.post(
            f"/api/v1/webhooks/{webhook_id}/deliveries/{delivery['id']}/retry", headers=USER
        )
        assert retried.status_code == 200
        assert retried.json()["status"] == "pending"

        stats = client.get(f"/api/v1/webhooks/{webhook_id}/stats", headers=USER).json()
        assert stats["total"] == 1
        assert stats["pending"] == 1
        assert stats["success_rate"] is None

    def test_retry_delivered_is_conflict(self, client, container):
        webhook_id = self._create(client).json()["webhook"]["id"]
        client.post("/api/v1/enhance/batch", files=[("files", ("a.txt", b"doc", "text/plain"))], headers=USER)
        deliveries = client.get(f"/api/v1/webhooks/{webhook_id}/deliveries", headers=USER).json()
        delivery_id = deliveries["deliveries"][0]["id"]

        client.portal.call(container.webhook_delivery.attempt_delivery, delivery_id)

        response = client.post(f"/api/v1/webhooks/{webhook_id}/deliveries/{delivery_id}/retry", headers=USER)
        assert response.status_code == 409
        assert response.json()["code"] == "CONFLICT"
