"""FastAPI application for the hub deployer."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
import uvicorn

from hubdeploy.utils.logging import setup_logger
from hubdeploy.models.target import HubConfig
from hubdeploy.services.flows import FlowService, load_job_runner
from hubdeploy.services.orchestrator import DeploymentOrchestrator
from hubdeploy.services.state_manager import StateManager
from hubdeploy.api.routes import router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown hooks.

    Startup:
    - Load HubConfig from HUB_* environment variables
    - Initialize logger
    - Create the ledger directory
    - Initialize StateManager singleton and the orchestrator
    - Build the flow service when HUB_JOB_RUNNER names a job runner factory

    Shutdown:
    - Log shutdown message
    """
    config = HubConfig.from_env()
    logger = setup_logger(
        "hubdeploy",
        config.log_file,
        level=getattr(logging, config.log_level),
        secrets=(config.target.password.get_secret_value(),),
    )
    logger.info("Hub deployer starting up...")

    if config.ledger_path is not None:
        config.ledger_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Asset install ledger: {config.ledger_path}")
    else:
        logger.info("Asset change tracking disabled, every sync uploads all modules")

    state_manager = StateManager()
    app.state.orchestrator = DeploymentOrchestrator(config, state_manager=state_manager)

    if config.job_runner:
        app.state.flow_service = FlowService(load_job_runner(config.job_runner, config))
        logger.info(f"Flows run through {config.job_runner}")
    else:
        app.state.flow_service = None
        logger.info("No job runner configured, flow endpoints disabled")

    logger.info(
        f"Target {config.target.host}:{config.target.manage_port}, "
        f"application {config.target.application_name}"
    )

    yield

    logger.info("Hub deployer shutting down...")


app = FastAPI(
    title="Hub Deployer",
    description="Provisions the data hub application stack onto a server",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "hubdeploy", "version": "1.0.0"}


def main():
    """Main entry point for running the server."""
    uvicorn.run(
        app,
        host=os.environ.get("HUB_BIND_HOST", "127.0.0.1"),
        port=int(os.environ.get("HUB_BIND_PORT", "12316")),
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    main()
