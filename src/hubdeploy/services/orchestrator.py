"""Deployment orchestrator: single entry point for installing the hub."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from hubdeploy.models.errors import IncompatibleTargetError
from hubdeploy.models.status import Direction, StageEnum
from hubdeploy.models.target import HubConfig, TargetDescriptor
from hubdeploy.services.manage_client import ManageClient, RestAssetLoader
from hubdeploy.services.pipeline import CommandPipeline, StepContext
from hubdeploy.services.scanner import AssetScanner
from hubdeploy.services.state_manager import StateManager
from hubdeploy.services.synchronizer import AssetSynchronizer

MIN_MAJOR_VERSION = 8
MIN_MINOR_VERSION = 4


def parse_server_version(version: str) -> Tuple[int, int]:
    """Extract (major, minor) from a ``D.D-D...`` version string.

    Positional: major is the first character, minor is the characters at
    offsets 2 and 4 joined, so ``"8.0-4"`` gives ``(8, 4)``.

    Raises:
        IncompatibleTargetError: If the string is too short or not numeric there
    """
    try:
        major = int(version[0])
        minor = int(version[2] + version[4])
    except (IndexError, ValueError) as e:
        raise IncompatibleTargetError(version, f"unparseable: {e}") from e
    return major, minor


class DeploymentOrchestrator:
    """Validates the target and drives install, uninstall and module sync.

    One instance is bound to one HubConfig (and so to one target). Install
    and uninstall are both safe to call whatever the current target state.
    """

    def __init__(
        self,
        config: HubConfig,
        state_manager: Optional[StateManager] = None,
        client_factory: Callable[[TargetDescriptor], ManageClient] = ManageClient,
        loader_factory: Callable[[TargetDescriptor], RestAssetLoader] = RestAssetLoader,
        scanner: Optional[AssetScanner] = None,
    ):
        """Initialize orchestrator.

        Args:
            config: Immutable hub configuration
            state_manager: StateManager instance (uses singleton if None)
            client_factory: Builds the management client for a target
            loader_factory: Builds the asset loader for a target
            scanner: AssetScanner instance (new one if None)
        """
        self.logger = logging.getLogger("hubdeploy.orchestrator")
        self.config = config
        self.target = config.target
        self.state_manager = state_manager or StateManager()
        self.client_factory = client_factory
        self.loader_factory = loader_factory
        self.scanner = scanner or AssetScanner()

    async def validate_target(self) -> Tuple[int, int]:
        """Check the target server version.

        Returns:
            (major, minor) of the server

        Raises:
            TargetUnreachableError: If the server cannot be reached
            IncompatibleTargetError: If the version is older than 8.x with minor 4
        """
        async with self.client_factory(self.target) as client:
            version = await client.get_server_version()

        major, minor = parse_server_version(version)
        if major < MIN_MAJOR_VERSION or minor < MIN_MINOR_VERSION:
            raise IncompatibleTargetError(version)

        self.logger.info(f"Target {self.target.host} runs compatible version {version}")
        return major, minor

    async def is_installed(self) -> bool:
        """Check whether the application server exists on the target."""
        async with self.client_factory(self.target) as client:
            installed = await client.server_exists(self.target.application_name)
        self.logger.info(f"{self.target.application_name} installed: {installed}")
        return installed

    async def install(self) -> List[str]:
        """Validate the target, then run the pipeline forward.

        Returns:
            Names of the steps that ran

        Raises:
            TargetUnreachableError, IncompatibleTargetError: From validation
            StepExecutionError: If a step fails (later steps are not run)
        """
        self.logger.info(f"Installing {self.target.application_name} on {self.target.host}")
        self.state_manager.update_status(
            stage=StageEnum.VALIDATING,
            progress=0,
            message=f"Validating {self.target.host}...",
        )
        try:
            await self.validate_target()
        except Exception as e:
            self._mark_failed("Target validation failed", e)
            raise

        return await self._run_pipeline(Direction.INSTALL, StageEnum.INSTALLING)

    async def uninstall(self) -> List[str]:
        """Run the pipeline in reverse.

        Returns:
            Names of the steps that ran

        Raises:
            StepExecutionError: If a step fails (later steps are not run)
        """
        self.logger.info(f"Uninstalling {self.target.application_name} from {self.target.host}")
        return await self._run_pipeline(Direction.UNINSTALL, StageEnum.UNINSTALLING)

    async def install_user_assets(self, user_root: Path) -> Dict[Path, Optional[datetime]]:
        """Sync one user module directory, outside the full pipeline.

        Without a configured ledger every file is uploaded and still reported.

        Args:
            user_root: Directory holding the user's modules

        Returns:
            Files current after this run, mapped to their install time
        """
        user_root = Path(user_root)
        self.logger.info(f"Installing user modules from {user_root}")
        self.state_manager.update_status(
            stage=StageEnum.SYNCING,
            progress=0,
            message=f"Syncing user modules from {user_root}...",
        )

        try:
            async with self.loader_factory(self.target) as loader:
                synchronizer = AssetSynchronizer(loader, scanner=self.scanner)
                installed = await synchronizer.sync([user_root], self.config.ledger_path)
        except Exception as e:
            self._mark_failed("User module sync failed", e)
            raise

        self.state_manager.update_status(
            stage=StageEnum.SUCCESS,
            progress=100,
            message=f"User modules current: {len(installed)} files",
        )
        return installed

    async def _run_pipeline(self, direction: Direction, stage: StageEnum) -> List[str]:
        pipeline = CommandPipeline.build(self.target)
        self.state_manager.update_status(
            stage=stage,
            progress=0,
            message=f"Starting {direction.value}...",
        )

        def on_step(idx: int, total: int, name: str) -> None:
            self.state_manager.update_status(
                stage=stage,
                progress=int((idx - 1) / total * 100),
                message=f"Running {direction.value} step {name}...",
            )

        try:
            async with self.client_factory(self.target) as client:
                async with self.loader_factory(self.target) as loader:
                    context = StepContext(
                        target=self.target,
                        config=self.config,
                        client=client,
                        synchronizer=AssetSynchronizer(loader, scanner=self.scanner),
                    )
                    completed = await pipeline.execute(context, direction, on_step=on_step)
        except Exception as e:
            self._mark_failed(f"{direction.value.capitalize()} failed", e)
            raise

        self.state_manager.record_steps(completed)
        self.state_manager.update_status(
            stage=StageEnum.SUCCESS,
            progress=100,
            message=f"{direction.value.capitalize()} of {self.target.application_name} complete",
        )
        return completed

    def _mark_failed(self, message: str, error: Exception) -> None:
        self.logger.error(f"{message}: {error}")
        self.state_manager.update_status(
            stage=StageEnum.FAILED,
            progress=0,
            message=message,
            error=str(error),
        )
