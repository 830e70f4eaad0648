"""Tests for the HTTP control surface using httpx against the ASGI app."""

from __future__ import annotations

import asyncio
import json

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import chain, node
from flowengine.db.engine import engine, init_db
from flowengine.main import app
from flowengine.services.execution_service import execution_manager


@pytest.fixture
async def client():
    """Async client over the app with tables created up front."""
    await init_db()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await engine.dispose()


def _log_workflow(breakpoint_on: str | None = None) -> dict:
    nodes = [
        node("start", "start"),
        node("greet", "log", message="hello {{who}}"),
        node("bye", "log", message="bye"),
    ]
    for n in nodes:
        if n["id"] == breakpoint_on:
            n["data"]["breakpoint"] = True
    return {"name": "greeter", "nodes": nodes, "edges": chain("start", "greet", "bye")}


async def _poll_status(client, run_id: str, wanted: str, timeout: float = 3.0) -> dict:
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        body = (await client.get(f"/api/runs/{run_id}")).json()
        if body["status"] == wanted:
            return body
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"run {run_id} stuck in {body['status']}")
        await asyncio.sleep(0.02)


class TestHealthAndMetrics:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_metrics_summary(self, client):
        resp = await client.get("/api/runs/metrics/summary")
        assert resp.status_code == 200
        assert set(resp.json()) == {"counters", "histograms"}


class TestValidateEndpoint:
    @pytest.mark.asyncio
    async def test_valid_workflow_returns_plan(self, client):
        resp = await client.post("/api/workflows/validate", json=_log_workflow())
        assert resp.status_code == 200
        data = resp.json()
        assert data["valid"] is True
        assert data["plan"] == ["start", "greet", "bye"]

    @pytest.mark.asyncio
    async def test_invalid_workflow_lists_errors(self, client):
        doc = {"nodes": [node("a", "log")], "edges": []}
        data = (await client.post("/api/workflows/validate", json=doc)).json()
        assert data["valid"] is False
        assert data["errors"][0]["kind"] == "missing_entry_node"
        assert data["plan"] == []

    @pytest.mark.asyncio
    async def test_malformed_body(self, client):
        resp = await client.post("/api/workflows/validate", json={"nodes": [{"id": "x"}]})
        assert resp.status_code == 422


class TestRunsAPI:
    @pytest.mark.asyncio
    async def test_run_to_completion_and_timeline(self, client):
        resp = await client.post("/api/runs", json={"workflow": _log_workflow(), "variables": {"who": "Ada"}})
        assert resp.status_code == 201
        run_id = resp.json()["run_id"]

        assert await execution_manager.wait(run_id, timeout=5) == "completed"
        data = (await client.get(f"/api/runs/{run_id}")).json()
        assert data["executed_node_ids"] == ["start", "greet", "bye"]

        events = (await client.get(f"/api/runs/{run_id}/events")).json()
        kinds = [e["event_type"] for e in events]
        assert kinds[0] == "execution_start"
        assert kinds[-1] == "execution_complete"
        assert kinds.count("node_complete") == 3

        report = (await client.get(f"/api/runs/{run_id}/report")).json()
        assert report["status"] == "completed"

    @pytest.mark.asyncio
    async def test_breakpoint_continue(self, client):
        body = {"workflow": _log_workflow(breakpoint_on="bye"), "breakpoints": {"enabled": True}}
        run_id = (await client.post("/api/runs", json=body)).json()["run_id"]

        paused = await _poll_status(client, run_id, "paused")
        assert paused["paused_node_id"] == "bye"
        assert paused["pause_reason"] == "breakpoint"

        resp = await client.post(f"/api/runs/{run_id}/continue")
        assert resp.status_code == 200
        assert resp.json()["accepted"] is True
        assert await execution_manager.wait(run_id, timeout=5) == "completed"

        again = await client.post(f"/api/runs/{run_id}/continue")
        assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_stop_from_breakpoint(self, client):
        body = {"workflow": _log_workflow(breakpoint_on="greet"), "breakpoints": {"enabled": True}}
        run_id = (await client.post("/api/runs", json=body)).json()["run_id"]
        await _poll_status(client, run_id, "paused")

        resp = await client.post(f"/api/runs/{run_id}/stop")
        assert resp.status_code == 200
        assert await execution_manager.wait(run_id, timeout=5) == "stopped"
        data = (await client.get(f"/api/runs/{run_id}")).json()
        assert "greet" not in data["executed_node_ids"]

    @pytest.mark.asyncio
    async def test_update_workflow_at_breakpoint(self, client):
        doc = _log_workflow(breakpoint_on="bye")
        body = {"workflow": doc, "breakpoints": {"enabled": True}}
        run_id = (await client.post("/api/runs", json=body)).json()["run_id"]
        await _poll_status(client, run_id, "paused")

        doc["nodes"].append(node("extra", "log", message="added live"))
        doc["edges"] = chain("start", "greet", "bye", "extra")
        resp = await client.put(f"/api/runs/{run_id}/workflow", json=doc)
        assert resp.status_code == 200
        assert resp.json()["plan"] == ["bye", "extra"]

        await client.post(f"/api/runs/{run_id}/continue")
        assert await execution_manager.wait(run_id, timeout=5) == "completed"
        data = (await client.get(f"/api/runs/{run_id}")).json()
        assert data["executed_node_ids"][-1] == "extra"

    @pytest.mark.asyncio
    async def test_update_workflow_when_not_paused(self, client):
        run_id = (await client.post("/api/runs", json={"workflow": _log_workflow()})).json()["run_id"]
        await execution_manager.wait(run_id, timeout=5)
        resp = await client.put(f"/api/runs/{run_id}/workflow", json=_log_workflow())
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_run(self, client):
        assert (await client.get("/api/runs/nope")).status_code == 404
        assert (await client.post("/api/runs/nope/skip")).status_code == 404
        assert (await client.get("/api/runs/nope/events")).status_code == 404

    @pytest.mark.asyncio
    async def test_stream_replays_finished_run(self, client):
        run_id = (await client.post("/api/runs", json={"workflow": _log_workflow()})).json()["run_id"]
        await execution_manager.wait(run_id, timeout=5)

        resp = await client.get(f"/api/runs/{run_id}/stream")
        assert resp.status_code == 200
        data_lines = [line[len("data: "):] for line in resp.text.splitlines() if line.startswith("data: ")]
        payloads = [json.loads(line) for line in data_lines]
        assert payloads[0]["type"] == "execution_start"
        assert payloads[-1]["type"] == "execution_complete"
        assert payloads[-1]["runId"] == run_id
