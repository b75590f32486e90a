"""Tests for the job control HTTP surface (Flask test client, mocked manager)."""

from unittest.mock import MagicMock

import pytest

from flashfungi.core.config import RunConfig, Settings
from flashfungi.jobs.api import create_app
from flashfungi.jobs.manager import JobConflictError, JobManager, JobNotFoundError

AUTH = {"Authorization": "Bearer op-token"}


@pytest.fixture()
def manager():
    return MagicMock(spec=JobManager)


@pytest.fixture()
def client(manager):
    settings = Settings.model_validate({"api": {"operator_tokens": {"op-token": "alice"}}})
    app = create_app(manager, settings)
    app.config["TESTING"] = True
    return app.test_client()


# ── Authorization ────────────────────────────────────────────────────


def test_missing_token_is_401(client, manager):
    resp = client.post("/api/pipeline/run", json={})
    assert resp.status_code == 401
    assert resp.get_json() == {"error": "No authorization token"}
    manager.start.assert_not_called()


def test_unknown_token_is_403(client, manager):
    resp = client.get("/api/pipeline/history", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 403
    assert resp.get_json() == {"error": "Operator access required"}
    manager.history.assert_not_called()


def test_health_needs_no_token(client, manager):
    manager.health.return_value = {"status": "healthy", "runningJobs": 0, "historicalJobs": 2}
    resp = client.get("/api/pipeline/health")
    assert resp.status_code == 200
    assert resp.get_json()["historicalJobs"] == 2


# ── Run ──────────────────────────────────────────────────────────────


def test_run_starts_job_with_body_config(client, manager):
    manager.start.return_value = "job_1_abc"
    resp = client.post(
        "/api/pipeline/run",
        json={"limit": 10, "minPhotos": 2, "requireDNA": True, "excludedTaxa": [152028]},
        headers=AUTH,
    )
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["jobId"] == "job_1_abc"

    config, = manager.start.call_args.args
    assert config == RunConfig(limit=10, min_photos=2, require_dna=True, excluded_taxa=[152028])
    assert manager.start.call_args.kwargs["started_by"] == "alice"


def test_run_with_empty_body_uses_defaults(client, manager):
    manager.start.return_value = "job_2"
    resp = client.post("/api/pipeline/run", headers=AUTH)
    assert resp.status_code == 200
    assert manager.start.call_args.args[0] == RunConfig()


def test_run_conflict_is_409(client, manager):
    manager.start.side_effect = JobConflictError("Pipeline is already running")
    resp = client.post("/api/pipeline/run", json={}, headers=AUTH)
    assert resp.status_code == 409
    assert resp.get_json()["success"] is False


def test_run_invalid_body_is_400(client, manager):
    resp = client.post("/api/pipeline/run", json={"limit": -1}, headers=AUTH)
    assert resp.status_code == 400
    resp = client.post("/api/pipeline/run", json=[1, 2], headers=AUTH)
    assert resp.status_code == 400
    manager.start.assert_not_called()


def test_run_unparsable_json_is_400(client, manager):
    resp = client.post(
        "/api/pipeline/run",
        data='{"limit": 5,',
        content_type="application/json",
        headers=AUTH,
    )
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False
    manager.start.assert_not_called()


# ── Status, Logs, Stop, History ──────────────────────────────────────


def test_status(client, manager):
    manager.status.return_value = {"status": "running", "startedAt": "t", "stats": {}, "recentLogs": []}
    resp = client.get("/api/pipeline/status/job_1", headers=AUTH)
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "running"
    manager.status.assert_called_once_with("job_1")


def test_status_unknown_is_404(client, manager):
    manager.status.side_effect = JobNotFoundError("job_x")
    resp = client.get("/api/pipeline/status/job_x", headers=AUTH)
    assert resp.status_code == 404


def test_logs_pass_pagination(client, manager):
    manager.logs.return_value = {"logs": [], "total": 0}
    resp = client.get("/api/pipeline/logs/job_1?limit=10&offset=5", headers=AUTH)
    assert resp.status_code == 200
    manager.logs.assert_called_once_with("job_1", 10, 5)


def test_stop(client, manager):
    resp = client.post("/api/pipeline/stop/job_1", headers=AUTH)
    assert resp.status_code == 200
    assert resp.get_json()["success"] is True
    manager.stop.assert_called_once_with("job_1", stopped_by="alice")


def test_stop_not_yet_finalized_is_202(client, manager):
    manager.stop.return_value = False
    resp = client.post("/api/pipeline/stop/job_1", headers=AUTH)
    assert resp.status_code == 202
    assert resp.get_json()["success"] is True


def test_stop_not_running_is_404(client, manager):
    manager.stop.side_effect = JobNotFoundError("job_1")
    resp = client.post("/api/pipeline/stop/job_1", headers=AUTH)
    assert resp.status_code == 404


def test_history_defaults(client, manager):
    manager.history.return_value = {"runs": [], "total": 0, "limit": 20, "offset": 0}
    resp = client.get("/api/pipeline/history", headers=AUTH)
    assert resp.status_code == 200
    manager.history.assert_called_once_with(20, 0)
