"""
HTTP contract tests for the moderation worker.

The delivery system only sees status codes: 200 acknowledges an event, 400
drops it, and any 5xx schedules redelivery.
"""

import asyncio
import json
import threading
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from main import app
from moderation_worker.core.dependencies import get_moderation_service, get_object_store
from moderation_worker.core.exceptions import ClassificationException
from moderation_worker.db.session import get_session_factory
from moderation_worker.models.sale import Item, Sale
from moderation_worker.services.moderation_service import ModerationService

from conftest import FakeClassifier, unsafe_result

KEY = "pending/sale_item/x.jpg"
EVENT = {"bucket": "b", "name": KEY, "metadata": {"userId": "u1", "type": "sale_item"}}


@pytest.fixture
def client(store, classifier, session_factory, tokens):
    app.dependency_overrides[get_moderation_service] = lambda: ModerationService(
        store, classifier, session_factory, token_factory=tokens
    )
    app.dependency_overrides[get_object_store] = lambda: store
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


class TestGeneralEndpoints:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data
        assert data["services"]["pending_prefix"] == "pending/"

    def test_request_id_header(self, client):
        response = client.get("/")
        assert response.headers["X-Request-ID"]
        assert "X-Process-Time" in response.headers


class TestEventsEndpoint:
    def test_get_is_method_not_allowed(self, client):
        assert client.get("/events").status_code == 405

    def test_malformed_body_is_bad_request(self, client):
        response = client.post("/events", content=b"not json", headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json()["error_code"] == "MALFORMED_EVENT"

    def test_missing_fields_are_acknowledged(self, client, store, classifier):
        response = client.post("/events", json={"data": {}})

        assert response.status_code == 200
        assert response.json()["status"] == "acknowledged"
        assert store.calls == []
        assert classifier.calls == []

    def test_safe_event_is_promoted(self, client, store, db_session):
        db_session.add(Sale(id="s1", user_id="u1", title="Sale", items=[Item(id="i1", name="Lamp", image_url=KEY)]))
        db_session.commit()
        store.put("b", KEY, EVENT["metadata"])

        response = client.post("/events", json=EVENT, headers={"Ce-Type": "google.cloud.storage.object.v1.finalized"})

        assert response.status_code == 200
        data = response.json()
        assert data["outcome"] == "approved"
        assert data["object_key"] == "sale_item/x.jpg"
        db_session.expire_all()
        assert db_session.get(Item, "i1").image_url == data["approved_url"]

    def test_enveloped_unsafe_event_is_rejected(self, client, store, session_factory):
        app.dependency_overrides[get_moderation_service] = lambda: ModerationService(
            store, FakeClassifier(unsafe_result()), session_factory
        )
        store.put("b", KEY, EVENT["metadata"])

        response = client.post("/events", content=json.dumps({"data": EVENT}))

        assert response.status_code == 200
        assert response.json()["outcome"] == "rejected"
        assert not store.exists("b", KEY)

    def test_classifier_failure_requests_redelivery(self, client, store, failing_classifier, session_factory):
        app.dependency_overrides[get_moderation_service] = lambda: ModerationService(
            store, failing_classifier, session_factory
        )
        store.put("b", KEY, EVENT["metadata"])

        response = client.post("/events", json=EVENT)

        assert response.status_code == 500
        assert response.json()["status"] == "retry"
        assert store.exists("b", KEY)

    def test_deadline_exceeded_requests_redelivery(self, client, store, session_factory):
        release = threading.Event()

        class SlowClassifier(FakeClassifier):
            def classify(self, gcs_uri):
                release.wait(timeout=2)
                raise ClassificationException("gave up")

        app.dependency_overrides[get_moderation_service] = lambda: ModerationService(
            store, SlowClassifier(), session_factory
        )
        store.put("b", KEY, EVENT["metadata"])

        with patch("moderation_worker.routers.events.settings") as mock_settings:
            mock_settings.invocation_timeout_seconds = 0.05
            response = client.post("/events", json=EVENT)

        release.set()
        assert response.status_code == 504
        assert response.json()["error_code"] == "INVOCATION_TIMEOUT"

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_are_independent(self, client, store, classifier):
        keys = [f"pending/uploads/{i}.jpg" for i in range(3)]
        for key in keys:
            store.put("b", key)

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as async_client:
            responses = await asyncio.gather(*[
                async_client.post("/events", json={"bucket": "b", "name": key}) for key in keys
            ])

        assert [r.status_code for r in responses] == [200, 200, 200]
        assert sorted(r.json()["object_key"] for r in responses) == [f"uploads/{i}.jpg" for i in range(3)]
        assert sorted(classifier.calls) == sorted(f"gs://b/{key}" for key in keys)


class TestAdminEndpoints:
    def test_reconcile_reports_counts(self, client, store, db_session):
        db_session.add(Sale(id="s1", user_id="u1", title="Sale", sale_cover_photo="pending/sale_cover/c.jpg"))
        db_session.commit()

        response = client.post("/api/v1/admin/reconcile", params={"bucket": "b"})

        assert response.status_code == 200
        assert response.json() == {"scanned": 1, "promoted": 0, "cleared": 1, "in_flight": 0, "errors": 0}

    def test_reconcile_without_bucket_is_configuration_error(self, client):
        with patch("moderation_worker.services.reconciliation_service.settings") as mock_settings:
            mock_settings.storage_bucket = None
            mock_settings.pending_prefix = "pending/"
            response = client.post("/api/v1/admin/reconcile")

        assert response.status_code == 500
        assert response.json()["error_code"] == "CONFIGURATION_ERROR"
