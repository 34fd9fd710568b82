"""
FastAPI 라우터 테스트 (TestClient + 메모리 DB)
"""

import hashlib
import hmac
import json
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from adapters.factory import initialize_adapter_factory
from web_server import app

SECRET = "test_unified_webhook_secret"


def signed(body: bytes) -> dict:
    return {"x-nylas-signature": hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()}


@pytest.fixture
def client(config):
    initialize_adapter_factory(config)
    with TestClient(app) as client:
        yield client


class TestWebhookRoutes:
    def test_challenge_is_echoed(self, client):
        response = client.get("/webhooks/unified", params={"challenge": "abc123"})

        assert response.status_code == 200
        assert response.text == "abc123"

    def test_missing_signature_is_rejected(self, client):
        response = client.post("/webhooks/unified", content=b'{"deltas": []}')

        assert response.status_code == 401

    def test_wrong_signature_is_rejected(self, client):
        response = client.post(
            "/webhooks/unified", content=b'{"deltas": []}', headers={"x-nylas-signature": "0" * 64}
        )

        assert response.status_code == 401

    def test_malformed_body_is_acknowledged_unprocessed(self, client):
        body = b"not json"

        response = client.post("/webhooks/unified", content=body, headers=signed(body))

        assert response.status_code == 200
        assert response.json()["processed"] is False
        assert response.json()["messages_processed"] == 0

    def test_empty_delta_list_is_processed(self, client):
        body = json.dumps({"deltas": []}).encode()

        response = client.post("/webhooks/unified", content=body, headers=signed(body))

        assert response.status_code == 200
        assert response.json()["processed"] is True

    def test_gmail_malformed_payload(self, client):
        response = client.post("/webhooks/gmail", json={"message": {}})

        assert response.status_code == 200
        assert response.json()["processed"] is False


class TestSyncAndConflictRoutes:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["in_flight_syncs"] == 0

    def test_sync_unknown_account_is_404(self, client):
        response = client.post(f"/sync/{uuid4()}")

        assert response.status_code == 404

    def test_logs_unknown_account_is_404(self, client):
        response = client.get(f"/sync/{uuid4()}/logs")

        assert response.status_code == 404

    def test_conflict_list_is_empty(self, client):
        response = client.get("/conflicts")

        assert response.status_code == 200
        assert response.json() == []

    def test_dismiss_unknown_conflict_is_404(self, client):
        response = client.delete(f"/conflicts/{uuid4()}")

        assert response.status_code == 404

    def test_bulk_resolve_reports_failures(self, client):
        response = client.post(
            "/conflicts/resolve", json={"conflict_ids": [str(uuid4())], "resolution": "remote"}
        )

        assert response.status_code == 200
        assert response.json()["failed"] == 1
        assert response.json()["resolved"] == 0
