# FILE: tests/test_admin_api.py
"""
Tests for the routing admin API.

Tests cover:
1. POST /routing/resolve (dry-run resolution)
2. Metrics and cache maintenance endpoints
3. Threshold / weight tuning and its validation
4. Experiment lifecycle and error status codes
5. Concurrent resolves report their own multi-intent plan
"""
from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent))

from chatrouter.admin import router
from chatrouter.routing.router import get_router


VARIANTS = [
    {"name": "control", "weight": 1, "params": {"ambiguity_threshold": 0.5}},
    {"name": "strict", "weight": 1, "params": {"ambiguity_threshold": 0.6}},
]


@pytest.fixture
def app(smart_router):
    """FastAPI app with the routing router bound to a fresh SmartRouter."""
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_router] = lambda: smart_router
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


# =============================================================================
# RESOLVE
# =============================================================================


class TestResolve:
    """POST /routing/resolve"""

    def test_classifier_command(self, client):
        response = client.post("/routing/resolve", json={"message": "release the judo platform"})
        assert response.status_code == 200
        data = response.json()
        assert data["command"] == "deploy JUDO"
        assert data["changed"] is True
        assert data["source"] == "classifier"
        assert data["risk"] == "high"
        assert data["requires_confirmation"] is True
        assert data["multi_intent"] is None

    def test_passthrough(self, client):
        data = client.post("/routing/resolve", json={"message": "hello"}).json()
        assert data["command"] == "hello"
        assert data["changed"] is False
        assert data["source"] == "passthrough"

    def test_context(self, client):
        data = client.post(
            "/routing/resolve",
            json={"message": "deploy", "context": {"auto_repo": "JUDO"}},
        ).json()
        assert data["command"] == "deploy JUDO"

    def test_multi_intent(self, client):
        data = client.post(
            "/routing/resolve", json={"message": "run tests on JUDO and then deploy it"}
        ).json()
        assert data["command"] == "run tests JUDO"
        assert data["multi_intent"]["total_intents"] == 2
        assert data["multi_intent"]["remaining_intents"][0]["text"] == "deploy JUDO"

    def test_missing_message(self, client):
        assert client.post("/routing/resolve", json={}).status_code == 422

    @pytest.mark.asyncio
    async def test_concurrent_requests_keep_their_own_plan(self, app, smart_router):
        started = asyncio.Event()
        release = asyncio.Event()

        async def fallback(text, context):
            started.set()
            await release.wait()
            return None

        smart_router.fallback = fallback
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as async_client:
            slow = asyncio.create_task(async_client.post(
                "/routing/resolve", json={"message": "blah blah and then restart JUDO"}
            ))
            await asyncio.wait_for(started.wait(), timeout=5)
            fast = await async_client.post("/routing/resolve", json={"message": "restart JUDO"})
            release.set()
            slow_response = await slow

        assert fast.json()["multi_intent"] is None
        plan = slow_response.json()["multi_intent"]
        assert plan["total_intents"] == 2
        assert plan["remaining_intents"][0]["text"] == "restart JUDO"


# =============================================================================
# METRICS / CACHE
# =============================================================================


class TestMetricsAndCache:
    """Metrics, reset and cache endpoints."""

    def test_metrics(self, client):
        client.post("/routing/resolve", json={"message": "restart JUDO"})
        data = client.get("/routing/metrics").json()
        assert data["pattern_hits"] == 1
        assert data["total"] == 1
        assert data["pattern_rate"] == "100.0%"

    def test_reset(self, client):
        client.post("/routing/resolve", json={"message": "restart JUDO"})
        assert client.post("/routing/metrics/reset").json() == {"status": "reset"}
        assert client.get("/routing/metrics").json()["total"] == 0

    def test_cache(self, client):
        client.post("/routing/resolve", json={"message": "restart JUDO"})
        assert client.get("/routing/cache").json()["size"] == 1
        data = client.post("/routing/cache/clean").json()
        assert data["removed"] == 0
        assert data["size"] == 1


# =============================================================================
# TUNING
# =============================================================================


class TestThresholds:
    """GET/PUT /routing/thresholds"""

    def test_get(self, client):
        data = client.get("/routing/thresholds").json()
        assert data["ambiguity_threshold"] == 0.5
        assert data["clarification_threshold"] == 0.3
        assert data["confidence_weights"]["keyword_match"] == 0.4

    def test_update(self, client, smart_router):
        response = client.put("/routing/thresholds", json={"ambiguity_threshold": 0.6})
        assert response.status_code == 200
        assert response.json()["ambiguity_threshold"] == 0.6
        assert smart_router.classifier.ambiguity_threshold == 0.6

    def test_update_weights(self, client):
        response = client.put(
            "/routing/thresholds",
            json={"confidence_weights": {"keyword_match": 0.5, "history_match": 0.05}},
        )
        assert response.status_code == 200
        assert response.json()["confidence_weights"]["keyword_match"] == 0.5

    @pytest.mark.parametrize("body", [
        {"ambiguity_threshold": 1.5},
        {"clarification_threshold": 0.9},
        {"confidence_weights": {"keyword_match": 0.9}},
    ])
    def test_rejected(self, client, body):
        assert client.put("/routing/thresholds", json=body).status_code == 400
        assert client.get("/routing/thresholds").json()["ambiguity_threshold"] == 0.5

    def test_correction_stats(self, client):
        data = client.get("/routing/corrections/stats").json()
        assert data["total_corrections"] == 0


# =============================================================================
# EXPERIMENTS
# =============================================================================


class TestExperiments:
    """Experiment endpoints and error mapping."""

    def test_create_and_list(self, client):
        response = client.post(
            "/routing/experiments",
            json={"id": "t1", "variants": VARIANTS, "description": "threshold test"},
        )
        assert response.status_code == 201
        assert response.json()["variants"] == 2
        listed = client.get("/routing/experiments").json()
        assert [e["id"] for e in listed] == ["t1"]

    def test_invalid_config(self, client):
        body = {"id": "t1", "variants": [{"name": "only", "weight": 1}]}
        assert client.post("/routing/experiments", json=body).status_code == 400

    def test_duplicate(self, client):
        body = {"id": "t1", "variants": VARIANTS}
        client.post("/routing/experiments", json=body)
        assert client.post("/routing/experiments", json=body).status_code == 400

    def test_outcome_and_results(self, client):
        client.post("/routing/experiments", json={"id": "t1", "variants": VARIANTS})
        response = client.post(
            "/routing/experiments/t1/outcomes",
            json={"user_id": "alice", "success": True, "latency_ms": 40},
        )
        assert response.status_code == 200
        variant = response.json()["variant"]
        results = client.get("/routing/experiments/t1/results").json()
        assert results["total_participants"] == 1
        assert results["variants"][variant]["outcomes"] == 1

    def test_unknown_experiment(self, client):
        assert client.get("/routing/experiments/nope/results").status_code == 404
        outcome = {"user_id": "alice", "success": True}
        assert client.post("/routing/experiments/nope/outcomes", json=outcome).status_code == 404
        assert client.post("/routing/experiments/nope/end").status_code == 404

    def test_end(self, client):
        client.post("/routing/experiments", json={"id": "t1", "variants": VARIANTS})
        response = client.post("/routing/experiments/t1/end", json={"promote_winner": True})
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["winner"] is None
        assert data["ended_at"] is not None

    def test_completed_conflicts(self, client):
        client.post("/routing/experiments", json={"id": "t1", "variants": VARIANTS})
        client.post("/routing/experiments/t1/end")
        assert client.post("/routing/experiments/t1/end").status_code == 409
        outcome = {"user_id": "alice", "success": True}
        assert client.post("/routing/experiments/t1/outcomes", json=outcome).status_code == 409

    def test_empty_user(self, client):
        client.post("/routing/experiments", json={"id": "t1", "variants": VARIANTS})
        outcome = {"user_id": "", "success": True}
        assert client.post("/routing/experiments/t1/outcomes", json=outcome).status_code == 400
