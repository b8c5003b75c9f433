"""HTTP API: health, run trigger, SSE progress, status and cancellation."""

import json
import logging

import pytest
from fastapi.testclient import TestClient

from wealth_radar.api import pipeline as pipeline_api
from wealth_radar.api.run_manager import run_manager
from wealth_radar.main import app
from wealth_radar.pipeline.context import RunContext
from wealth_radar.schemas.base import RunStatus
from wealth_radar.schemas.pipeline import RunOutcome, RunStats

runner_logger = logging.getLogger("wealth_radar.pipeline.runner")


@pytest.fixture
def client():
    run_manager.clear()
    with TestClient(app) as c:
        yield c
    run_manager.clear()


@pytest.fixture
def fake_run(monkeypatch, caplog):
    """Replace the pipeline with a quick run that logs one stage banner."""
    caplog.set_level(logging.INFO, logger="wealth_radar")
    calls = []

    async def _fake_run_pipeline(refresh_mode=None, mock_mode=False, deps=None, ctx=None):
        calls.append({"mock_mode": mock_mode, "refresh_mode": ctx.refresh_mode, "run_id": ctx.run_id})
        runner_logger.info("STAGE 2: SCRAPE & FILTER")
        return RunOutcome(
            run_id=ctx.run_id,
            success=True,
            committed=True,
            duration_seconds=0.1,
            stats=RunStats(headlines_scraped=7, fresh_headlines_found=3),
        )

    monkeypatch.setattr(pipeline_api, "run_pipeline", _fake_run_pipeline)
    return calls


def _sse_events(text: str):
    return [json.loads(line[len("data: "):]) for line in text.splitlines() if line.startswith("data: ")]


# ════════════════════════════════════════════════════════════════════
# Health
# ════════════════════════════════════════════════════════════════════

def test_root(client):
    assert client.get("/").json()["service"] == "Wealth Radar API"


def test_health_reports_thresholds_and_providers(client, set_env):
    set_env(GROQ_API_KEY="gsk-test")

    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["providers"] == ["Groq"]
    assert body["thresholds"]["high_signal"] == 85
    assert body["thresholds"]["headlines_relevance"] == 20


# ════════════════════════════════════════════════════════════════════
# Runs
# ════════════════════════════════════════════════════════════════════

def test_run_pipeline_starts_background_run(client, fake_run):
    response = client.post("/run-pipeline", json={"mock_mode": True, "refresh_mode": True})

    assert response.status_code == 202
    run_id = response.json()["run_id"]
    assert fake_run == [{"mock_mode": True, "refresh_mode": True, "run_id": run_id}]

    status = client.get(f"/pipeline/status/{run_id}").json()
    assert status["status"] == "completed"
    assert status["current_stage"] == "done"
    assert status["funnel"]["headlines_scraped"] == 7
    assert status["funnel"]["fresh_headlines_found"] == 3


def test_refresh_mode_defaults_to_settings(client, fake_run, set_env):
    set_env(REFRESH_MODE="true")

    client.post("/run-pipeline")

    assert fake_run[0]["refresh_mode"] is True
    assert fake_run[0]["mock_mode"] is False


def test_stream_replays_logs_and_ends_with_complete(client, fake_run):
    run_id = client.post("/run-pipeline", json={}).json()["run_id"]

    events = _sse_events(client.get(f"/pipeline/stream/{run_id}").text)

    assert any(e["event"] == "log" and e["message"] == "STAGE 2: SCRAPE & FILTER" for e in events)
    assert events[-1]["event"] == "complete"
    assert events[-1]["status"] == "completed"
    assert events[-1]["committed"] is True


def test_failed_outcome_is_reported_as_failed(client, monkeypatch):
    async def _failing(refresh_mode=None, mock_mode=False, deps=None, ctx=None):
        return RunOutcome(run_id=ctx.run_id, success=False, stats=RunStats(pipeline_error="Pre-flight failed"))

    monkeypatch.setattr(pipeline_api, "run_pipeline", _failing)

    run_id = client.post("/run-pipeline").json()["run_id"]
    status = client.get(f"/pipeline/status/{run_id}").json()

    assert status["status"] == "failed"
    assert status["errors"][0] == "Pre-flight failed"


def test_second_run_is_rejected_while_one_is_active(client, fake_run):
    run_manager.create_run("20261019_060000")

    response = client.post("/run-pipeline")

    assert response.status_code == 409
    assert fake_run == []


def test_api_key_is_required_when_configured(client, fake_run, set_env):
    set_env(API_KEY="s3cret")

    assert client.post("/run-pipeline").status_code == 401
    assert client.post("/run-pipeline", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.post("/run-pipeline", headers={"Authorization": "Bearer s3cret"}).status_code == 202


def test_unknown_run_is_404(client):
    assert client.get("/pipeline/status/nope").status_code == 404
    assert client.get("/pipeline/stream/nope").status_code == 404
    assert client.post("/pipeline/cancel/nope").status_code == 404


# ════════════════════════════════════════════════════════════════════
# Cancellation
# ════════════════════════════════════════════════════════════════════

def test_cancel_active_run(client):
    run = run_manager.create_run("20261019_060000")
    run.ctx = RunContext(run_id=run.run_id)

    response = client.post(f"/pipeline/cancel/{run.run_id}")

    assert response.status_code == 200
    assert run.ctx.cancelled


def test_cancel_finished_run_conflicts(client):
    run = run_manager.create_run("20261019_060000")
    run.status = RunStatus.COMPLETED

    assert client.post(f"/pipeline/cancel/{run.run_id}").status_code == 409


def test_runs_are_listed_newest_first(client, fake_run):
    older = run_manager.create_run("20261019_050000")
    older.status = RunStatus.COMPLETED
    run_id = client.post("/run-pipeline").json()["run_id"]

    runs = client.get("/pipeline/runs").json()

    assert [r["run_id"] for r in runs] == [run_id, "20261019_050000"]
    assert client.get("/pipeline/runs", params={"limit": 1}).json()[0]["run_id"] == run_id
