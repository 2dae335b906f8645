"""Tests for event ingestion endpoints."""

from __future__ import annotations

from fastapi.testclient import TestClient


class TestIngest:
    def test_batch_with_rejects(self, client: TestClient):
        response = client.post(
            "/api/v1/events",
            json={
                "events": [
                    {"variant": "canary", "type": "pageview", "payload": {"clientId": "a"}},
                    {"variant": "canary", "type": "error", "payload": {"message": "boom"}},
                    {"variant": "green", "type": "pageview"},
                ]
            },
        )
        assert response.status_code == 200
        assert response.json() == {"accepted": 2, "rejected": 1}

    def test_empty_batch(self, client: TestClient):
        response = client.post("/api/v1/events", json={})
        assert response.json() == {"accepted": 0, "rejected": 0}


class TestSnapshot:
    def test_snapshot_reflects_events(self, client: TestClient):
        client.post(
            "/api/v1/events",
            json={
                "events": [
                    {"variant": "stable", "type": "pageview", "payload": {"pageLoadTime": 1200}},
                    {"variant": "stable", "type": "pageview", "payload": {"pageLoadTime": 1400}},
                ]
            },
        )
        data = client.get("/api/v1/events/snapshot/stable").json()
        assert data["variant"] == "stable"
        assert data["pageviews"] == 2
        assert data["performance"]["pageLoadTime"] == 1300

    def test_unknown_variant(self, client: TestClient):
        response = client.get("/api/v1/events/snapshot/purple")
        assert response.status_code == 422
