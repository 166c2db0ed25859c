"""Integration tests for API routes (routes.py + main.py)."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from fastapi.testclient import TestClient

from hubdeploy.api.routes import get_flow_service, get_orchestrator
from hubdeploy.models.errors import (
    IncompatibleTargetError,
    StepExecutionError,
    TargetUnreachableError,
)
from hubdeploy.models.flow import JobHandle, JobStatus
from hubdeploy.models.status import StageEnum
from hubdeploy.services.state_manager import StateManager


# -----------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------

@pytest.fixture
def orchestrator():
    """Orchestrator double; every operation is an AsyncMock."""
    orch = MagicMock()
    orch.validate_target = AsyncMock(return_value=(8, 5))
    orch.is_installed = AsyncMock(return_value=False)
    orch.install = AsyncMock(return_value=[])
    orch.uninstall = AsyncMock(return_value=[])
    orch.install_user_assets = AsyncMock(return_value={})
    return orch


@pytest.fixture
def client(orchestrator, monkeypatch, tmp_path):
    """TestClient with logging patched out and the orchestrator overridden."""
    from hubdeploy.main import app

    monkeypatch.setenv("HUB_LEDGER_FILE", "")
    monkeypatch.delenv("HUB_JOB_RUNNER", raising=False)
    monkeypatch.setenv("HUB_LOG_FILE", str(tmp_path / "logs" / "hubdeploy.log"))
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    with patch("hubdeploy.main.setup_logger") as mock_log:
        mock_log.return_value = MagicMock()
        with TestClient(app, raise_server_exceptions=True) as c:
            yield c

    app.dependency_overrides.clear()


# -----------------------------------------------------------------------
# GET /
# -----------------------------------------------------------------------

@pytest.mark.unit
def test_health_check(client):
    resp = client.get("/")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


# -----------------------------------------------------------------------
# GET /api/v1.0/progress
# -----------------------------------------------------------------------

@pytest.mark.unit
class TestGetProgress:
    """GET /api/v1.0/progress"""

    def test_idle_state_returns_200_code(self, client):
        resp = client.get("/api/v1.0/progress")

        assert resp.status_code == 200
        body = resp.json()
        assert body["code"] == 200
        assert body["msg"] == "success"
        assert body["data"]["stage"] == "idle"

    def test_failed_state_returns_code_500(self, client):
        StateManager().update_status(
            stage=StageEnum.FAILED,
            progress=0,
            message="Install failed",
            error="STEP_FAILED: install step 'roles' failed",
        )

        resp = client.get("/api/v1.0/progress")

        assert resp.status_code == 200
        body = resp.json()
        assert body["code"] == 500
        assert "STEP_FAILED" in body["msg"]
        assert body["stage"] == "failed"

    def test_failed_state_no_error_field(self, client):
        StateManager().update_status(stage=StageEnum.FAILED, progress=0, message="x")

        body = client.get("/api/v1.0/progress").json()

        assert body["code"] == 500
        assert body["msg"] == "Operation failed"

    def test_completed_steps_reported(self, client):
        manager = StateManager()
        manager.record_steps(["roles", "users"])
        manager.update_status(stage=StageEnum.SUCCESS, progress=100, message="done")

        body = client.get("/api/v1.0/progress").json()

        assert body["data"]["completed_steps"] == ["roles", "users"]


# -----------------------------------------------------------------------
# POST /api/v1.0/validate, GET /api/v1.0/installed
# -----------------------------------------------------------------------

@pytest.mark.unit
class TestTargetQueries:
    """POST /api/v1.0/validate and GET /api/v1.0/installed"""

    def test_validate_returns_version(self, client):
        body = client.post("/api/v1.0/validate").json()

        assert body["code"] == 200
        assert body["data"] == {"major": 8, "minor": 5}

    def test_incompatible_returns_412(self, client, orchestrator):
        orchestrator.validate_target.side_effect = IncompatibleTargetError("8.0-1")

        body = client.post("/api/v1.0/validate").json()

        assert body["code"] == 412
        assert "8.0-1" in body["msg"]

    def test_unreachable_returns_503(self, client, orchestrator):
        orchestrator.validate_target.side_effect = TargetUnreachableError("refused")

        body = client.post("/api/v1.0/validate").json()

        assert body["code"] == 503

    def test_installed(self, client, orchestrator):
        orchestrator.is_installed.return_value = True

        body = client.get("/api/v1.0/installed").json()

        assert body["data"] == {"installed": True}


# -----------------------------------------------------------------------
# POST /api/v1.0/install, POST /api/v1.0/uninstall
# -----------------------------------------------------------------------

@pytest.mark.unit
class TestInstallUninstall:
    """POST /api/v1.0/install and /api/v1.0/uninstall"""

    def test_install_runs_in_background(self, client, orchestrator):
        resp = client.post("/api/v1.0/install")

        assert resp.json()["code"] == 200
        orchestrator.install.assert_awaited_once()

    def test_install_while_busy_returns_409(self, client, orchestrator):
        StateManager().update_status(stage=StageEnum.INSTALLING, progress=30, message="x")

        body = client.post("/api/v1.0/install").json()

        assert body["code"] == 409
        assert body["stage"] == "installing"
        orchestrator.install.assert_not_awaited()

    def test_uninstall_while_syncing_returns_409(self, client, orchestrator):
        StateManager().update_status(stage=StageEnum.SYNCING, progress=0, message="x")

        body = client.post("/api/v1.0/uninstall").json()

        assert body["code"] == 409
        orchestrator.uninstall.assert_not_awaited()

    def test_failed_state_allows_retry(self, client, orchestrator):
        StateManager().update_status(stage=StageEnum.FAILED, progress=0, message="x")

        body = client.post("/api/v1.0/install").json()

        assert body["code"] == 200
        orchestrator.install.assert_awaited_once()

    def test_background_failure_is_contained(self, client, orchestrator):
        orchestrator.uninstall.side_effect = StepExecutionError(
            "roles", "uninstall", RuntimeError("boom")
        )

        resp = client.post("/api/v1.0/uninstall")

        assert resp.json()["code"] == 200
        orchestrator.uninstall.assert_awaited_once()


# -----------------------------------------------------------------------
# POST /api/v1.0/user-modules
# -----------------------------------------------------------------------

@pytest.mark.unit
class TestUserModules:
    """POST /api/v1.0/user-modules"""

    def test_missing_directory_returns_404(self, client, tmp_path, orchestrator):
        body = client.post(
            "/api/v1.0/user-modules", json={"path": str(tmp_path / "nope")}
        ).json()

        assert body["code"] == 404
        orchestrator.install_user_assets.assert_not_awaited()

    def test_empty_path_rejected(self, client):
        resp = client.post("/api/v1.0/user-modules", json={"path": ""})

        assert resp.status_code == 422

    def test_sync_reports_installed_files(self, client, tmp_path, orchestrator, fixed_clock):
        lib = tmp_path / "ext" / "lib.xqy"
        orchestrator.install_user_assets.return_value = {lib: fixed_clock()}

        body = client.post("/api/v1.0/user-modules", json={"path": str(tmp_path)}).json()

        assert body["code"] == 200
        assert body["data"]["count"] == 1
        assert body["data"]["installed"] == {str(lib): "2030-01-01T12:00:00+00:00"}
        orchestrator.install_user_assets.assert_awaited_once_with(tmp_path)

    def test_untracked_vanished_file_reported_as_null(self, client, tmp_path, orchestrator):
        orchestrator.install_user_assets.return_value = {tmp_path / "gone.sjs": None}

        body = client.post("/api/v1.0/user-modules", json={"path": str(tmp_path)}).json()

        assert body["data"]["installed"] == {str(tmp_path / "gone.sjs"): None}

    def test_unreachable_returns_503(self, client, tmp_path, orchestrator):
        orchestrator.install_user_assets.side_effect = TargetUnreachableError("timeout")

        body = client.post("/api/v1.0/user-modules", json={"path": str(tmp_path)}).json()

        assert body["code"] == 503


# -----------------------------------------------------------------------
# POST /api/v1.0/flows/run, POST /api/v1.0/flows/test
# -----------------------------------------------------------------------

_flow_payload = {"entity_name": "Person", "flow_name": "harmonize-person", "batch_size": 25}


@pytest.mark.unit
class TestFlows:
    """POST /api/v1.0/flows/run and /api/v1.0/flows/test"""

    @pytest.fixture
    def flow_service(self, client):
        from hubdeploy.main import app

        service = MagicMock()
        service.run_flow = MagicMock(
            return_value=JobHandle(job_id="job-1", flow_name="harmonize-person")
        )
        service.test_flow = AsyncMock(
            return_value=JobHandle(
                job_id="job-2", flow_name="harmonize-person", status=JobStatus.FINISHED
            )
        )
        app.dependency_overrides[get_flow_service] = lambda: service
        return service

    def test_no_runner_returns_501(self, client):
        body = client.post("/api/v1.0/flows/run", json=_flow_payload).json()

        assert body["code"] == 501
        assert "HUB_JOB_RUNNER" in body["msg"]

    def test_run_returns_submitted_handle(self, client, flow_service):
        body = client.post("/api/v1.0/flows/run", json=_flow_payload).json()

        assert body["code"] == 200
        assert body["data"]["job_id"] == "job-1"
        assert body["data"]["status"] == "submitted"
        flow, = flow_service.run_flow.call_args.args
        assert flow.entity_name == "Person"
        assert flow_service.run_flow.call_args.kwargs["batch_size"] == 25

    def test_test_run_waits_for_result(self, client, flow_service):
        body = client.post("/api/v1.0/flows/test", json=_flow_payload).json()

        assert body["code"] == 200
        assert body["data"]["status"] == "finished"
        flow_service.test_flow.assert_awaited_once()

    def test_failed_test_run_returns_500(self, client, flow_service):
        flow_service.test_flow.return_value = JobHandle(
            job_id="job-3", flow_name="harmonize-person", status=JobStatus.FAILED, error="bad doc"
        )

        body = client.post("/api/v1.0/flows/test", json=_flow_payload).json()

        assert body["code"] == 500
        assert "bad doc" in body["msg"]

    def test_invalid_batch_size_rejected(self, client, flow_service):
        resp = client.post("/api/v1.0/flows/run", json={**_flow_payload, "batch_size": 0})

        assert resp.status_code == 422


@pytest.mark.unit
def test_lifespan_builds_flow_service_from_env(orchestrator, monkeypatch, tmp_path):
    """HUB_JOB_RUNNER is resolved at startup and backs the flow endpoints."""
    from hubdeploy.main import app

    monkeypatch.setenv("HUB_LEDGER_FILE", "")
    monkeypatch.setenv("HUB_JOB_RUNNER", "test_flows:make_runner")
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    with patch("hubdeploy.main.setup_logger") as mock_log:
        mock_log.return_value = MagicMock()
        with TestClient(app) as c:
            body = c.post("/api/v1.0/flows/run", json=_flow_payload).json()
            assert app.state.flow_service.runner.config.job_runner == "test_flows:make_runner"

    app.dependency_overrides.clear()
    assert body["code"] == 200
    assert body["data"]["flow_name"] == "harmonize-person"
