"""API route handlers for hub deployment endpoints."""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from hubdeploy.api.models import (
    FlowRunRequest,
    ProgressResponse,
    SuccessResponse,
    UserModulesRequest,
)
from hubdeploy.models.errors import (
    HubDeployError,
    IncompatibleTargetError,
    TargetUnreachableError,
)
from hubdeploy.models.flow import JobHandle
from hubdeploy.models.status import StageEnum
from hubdeploy.services.flows import FlowService
from hubdeploy.services.orchestrator import DeploymentOrchestrator
from hubdeploy.services.state_manager import StateManager

router = APIRouter(prefix="/api/v1.0")
logger = logging.getLogger("hubdeploy.api")


def get_orchestrator(request: Request) -> DeploymentOrchestrator:
    """Orchestrator built at startup by the application lifespan."""
    return request.app.state.orchestrator


def get_flow_service(request: Request) -> Optional[FlowService]:
    """Flow service built at startup, or None when no job runner is configured."""
    return getattr(request.app.state, "flow_service", None)


def _error(code: int, msg: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=200, content={"code": code, "msg": msg, **extra})


def _busy_response(state_manager: StateManager) -> JSONResponse:
    status = state_manager.get_status()
    return _error(
        409,
        f"Operation already in progress: {status.stage.value}",
        stage=status.stage.value,
        progress=status.progress,
    )


def _target_error(e: HubDeployError) -> JSONResponse:
    if isinstance(e, TargetUnreachableError):
        return _error(503, str(e))
    if isinstance(e, IncompatibleTargetError):
        return _error(412, str(e))
    return _error(500, str(e))


@router.get("/progress", response_model=ProgressResponse)
async def get_progress():
    """GET /api/v1.0/progress - Query current deployment status.

    Response format (success):
        {
            "code": 200,
            "msg": "success",
            "data": {
                "stage": "installing",
                "progress": 37,
                "message": "Running install step content-db...",
                "error": null,
                "completed_steps": []
            }
        }
    """
    state_manager = StateManager()
    status = state_manager.get_status()

    if status.stage.value == "failed":
        msg = f"Operation failed: {status.error}" if status.error else "Operation failed"
        return ProgressResponse(
            code=500,
            msg=msg,
            data=status,
            stage=status.stage,
            progress=status.progress,
        )
    return ProgressResponse(code=200, msg="success", data=status)


@router.post("/validate", response_model=SuccessResponse)
async def post_validate(orchestrator: DeploymentOrchestrator = Depends(get_orchestrator)):
    """POST /api/v1.0/validate - Check the target server version.

    Returns code 412 for an incompatible version, 503 if unreachable.
    """
    try:
        major, minor = await orchestrator.validate_target()
    except HubDeployError as e:
        return _target_error(e)
    return SuccessResponse(data={"major": major, "minor": minor})


@router.get("/installed", response_model=SuccessResponse)
async def get_installed(orchestrator: DeploymentOrchestrator = Depends(get_orchestrator)):
    """GET /api/v1.0/installed - Whether the hub's app server exists."""
    try:
        installed = await orchestrator.is_installed()
    except HubDeployError as e:
        return _target_error(e)
    return SuccessResponse(data={"installed": installed})


@router.post("/install", response_model=SuccessResponse)
async def post_install(
    background_tasks: BackgroundTasks,
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    """POST /api/v1.0/install - Trigger async install; poll /progress."""
    state_manager = StateManager()
    if state_manager.is_busy():
        return _busy_response(state_manager)

    state_manager.update_status(stage=StageEnum.VALIDATING, progress=0, message="Install queued")
    background_tasks.add_task(_install_workflow, orchestrator)
    return JSONResponse(status_code=200, content={"code": 200, "msg": "success", "data": None})


@router.post("/uninstall", response_model=SuccessResponse)
async def post_uninstall(
    background_tasks: BackgroundTasks,
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    """POST /api/v1.0/uninstall - Trigger async uninstall; poll /progress."""
    state_manager = StateManager()
    if state_manager.is_busy():
        return _busy_response(state_manager)

    state_manager.update_status(
        stage=StageEnum.UNINSTALLING, progress=0, message="Uninstall queued"
    )
    background_tasks.add_task(_uninstall_workflow, orchestrator)
    return JSONResponse(status_code=200, content={"code": 200, "msg": "success", "data": None})


@router.post("/user-modules", response_model=SuccessResponse)
async def post_user_modules(
    request: UserModulesRequest,
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    """POST /api/v1.0/user-modules - Sync a user module directory.

    Runs synchronously and returns the files current after the sync:
        {
            "code": 200,
            "msg": "success",
            "data": {
                "count": 1,
                "installed": {"/home/dev/plugins/ext/lib.xqy": "2026-10-18T09:12:44.120000+00:00"}
            }
        }
    """
    state_manager = StateManager()
    if state_manager.is_busy():
        return _busy_response(state_manager)

    user_root = Path(request.path)
    if not user_root.is_dir():
        return _error(404, f"User module directory not found: {request.path}")

    try:
        installed = await orchestrator.install_user_assets(user_root)
    except HubDeployError as e:
        return _target_error(e)

    return SuccessResponse(
        data={
            "count": len(installed),
            "installed": {
                str(path): when.isoformat() if when else None
                for path, when in installed.items()
            },
        }
    )


def _no_runner_response() -> JSONResponse:
    return _error(501, "No job runner configured (set HUB_JOB_RUNNER)")


def _log_job_end(handle: JobHandle) -> None:
    if handle.error:
        logger.error(
            f"Job {handle.job_id} ({handle.flow_name}) ended {handle.status.value}: {handle.error}"
        )
    else:
        logger.info(f"Job {handle.job_id} ({handle.flow_name}) ended {handle.status.value}")


@router.post("/flows/run", response_model=SuccessResponse)
async def post_flow_run(
    request: FlowRunRequest,
    flow_service: Optional[FlowService] = Depends(get_flow_service),
):
    """POST /api/v1.0/flows/run - Submit a flow; returns the job handle at once.

    Response format (success):
        {
            "code": 200,
            "msg": "success",
            "data": {
                "job_id": "job-17",
                "flow_name": "harmonize-person",
                "status": "submitted",
                "submitted_at": "2026-10-18T09:12:44.120000",
                "error": null
            }
        }
    """
    if flow_service is None:
        return _no_runner_response()

    handle = flow_service.run_flow(
        request.to_flow(), batch_size=request.batch_size, listener=_log_job_end
    )
    return SuccessResponse(data=handle.model_dump(mode="json"))


@router.post("/flows/test", response_model=SuccessResponse)
async def post_flow_test(
    request: FlowRunRequest,
    flow_service: Optional[FlowService] = Depends(get_flow_service),
):
    """POST /api/v1.0/flows/test - Run a flow and wait for it to finish."""
    if flow_service is None:
        return _no_runner_response()

    handle = await flow_service.test_flow(request.to_flow())
    if handle.error:
        return _error(500, f"Flow {handle.flow_name} failed: {handle.error}")
    return SuccessResponse(data=handle.model_dump(mode="json"))


async def _install_workflow(orchestrator: DeploymentOrchestrator) -> None:
    """Background task for install workflow."""
    try:
        await orchestrator.install()
    except Exception as e:
        # Status already set to failed by the orchestrator
        logger.error(f"Install workflow ended with error: {e}")


async def _uninstall_workflow(orchestrator: DeploymentOrchestrator) -> None:
    """Background task for uninstall workflow."""
    try:
        await orchestrator.uninstall()
    except Exception as e:
        logger.error(f"Uninstall workflow ended with error: {e}")
