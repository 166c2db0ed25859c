"""State manager for in-memory deployment status."""

import logging
from typing import List, Optional

from hubdeploy.api.models import ProgressData
from hubdeploy.models.status import StageEnum


class StateManager:
    """Singleton holding the status of the current or last operation.

    Serves GET /progress. Nothing here is persisted; the only state that
    survives restarts is the asset install ledger.
    """

    _instance: Optional["StateManager"] = None

    def __new__(cls):
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize state manager (only once due to singleton)."""
        if self._initialized:
            return

        self.logger = logging.getLogger("hubdeploy.state_manager")

        self._current_stage: StageEnum = StageEnum.IDLE
        self._current_progress: int = 0
        self._current_message: str = "Deployer ready"
        self._current_error: Optional[str] = None
        self._completed_steps: List[str] = []

        self._initialized = True
        self.logger.info("StateManager initialized")

    def get_status(self) -> ProgressData:
        """Get current status for GET /progress endpoint.

        Returns:
            ProgressData with current stage, progress, message, error, steps
        """
        return ProgressData(
            stage=self._current_stage,
            progress=self._current_progress,
            message=self._current_message,
            error=self._current_error,
            completed_steps=list(self._completed_steps),
        )

    def update_status(
        self,
        stage: StageEnum,
        progress: int,
        message: str,
        error: Optional[str] = None,
    ) -> None:
        """Update in-memory status state.

        Args:
            stage: Current lifecycle stage
            progress: Percentage completion (0-100)
            message: Human-readable description
            error: Error message if stage == failed
        """
        self._current_stage = stage
        self._current_progress = progress
        self._current_message = message
        self._current_error = error
        self.logger.debug(
            f"Status updated: stage={stage.value}, progress={progress}%, message={message}"
        )

    def record_steps(self, steps: List[str]) -> None:
        """Remember which pipeline steps completed in the last run."""
        self._completed_steps = list(steps)

    def is_busy(self) -> bool:
        """True while an install, uninstall, validation or sync is running."""
        return self._current_stage not in (StageEnum.IDLE, StageEnum.SUCCESS, StageEnum.FAILED)

    def reset(self) -> None:
        """Reset to idle state."""
        self._current_stage = StageEnum.IDLE
        self._current_progress = 0
        self._current_message = "Deployer ready"
        self._current_error = None
        self._completed_steps = []
        self.logger.info("State reset to idle")
