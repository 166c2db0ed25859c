"""Exception types raised by hub deployment services.

Every error carries an ``error_code`` which is also used as the message
prefix (``"STEP_FAILED: ..."``) so status payloads and logs stay greppable.
"""

from pathlib import Path
from typing import Optional


class HubDeployError(Exception):
    """Base exception for hubdeploy."""

    error_code = "HUB_DEPLOY_ERROR"

    def __init__(self, message: str):
        super().__init__(f"{self.error_code}: {message}")
        self.detail = message


class TargetUnreachableError(HubDeployError):
    """Target server could not be reached (connection refused, timeout, DNS)."""

    error_code = "TARGET_UNREACHABLE"


class IncompatibleTargetError(HubDeployError):
    """Target server version is too old for the hub."""

    error_code = "INCOMPATIBLE_TARGET"

    def __init__(self, version: str, reason: Optional[str] = None):
        message = f"Invalid server version: {version}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.version = version


class ManagementApiError(HubDeployError):
    """Management API answered with a non-success status."""

    error_code = "MANAGE_API_ERROR"

    def __init__(self, method: str, url: str, status_code: int, body: str = ""):
        super().__init__(f"{method} {url} returned {status_code}: {body[:200]}")
        self.method = method
        self.url = url
        self.status_code = status_code


class StepExecutionError(HubDeployError):
    """A pipeline step failed; remaining steps were not run."""

    error_code = "STEP_FAILED"

    def __init__(self, step_name: str, direction: str, cause: BaseException):
        super().__init__(f"{direction} step '{step_name}' failed: {cause}")
        self.step_name = step_name
        self.direction = direction
        self.cause = cause


class AssetUploadError(HubDeployError):
    """A single asset could not be uploaded."""

    error_code = "ASSET_UPLOAD_FAILED"

    def __init__(self, path: Path, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path


class LedgerLoadError(HubDeployError):
    """Persisted ledger is unreadable or corrupt."""

    error_code = "LEDGER_LOAD_FAILED"


class LedgerPersistenceError(HubDeployError):
    """Ledger could not be written to disk."""

    error_code = "LEDGER_PERSIST_FAILED"
