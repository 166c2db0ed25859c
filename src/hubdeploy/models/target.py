"""Target connection and hub configuration models."""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

RESOURCES_DIR = Path(__file__).resolve().parent.parent / "resources"
DEFAULT_CONFIG_DIR = RESOURCES_DIR / "ml_config"
DEFAULT_MODULES_DIR = RESOURCES_DIR / "ml_modules"


class TargetDescriptor(BaseModel):
    """Connection parameters for the server being provisioned.

    Immutable; holds no session state. The password is only unwrapped
    when building request auth and is never persisted.
    """

    model_config = ConfigDict(frozen=True)

    host: str = Field(..., min_length=1, description="Server hostname")
    manage_port: int = Field(default=8002, gt=0, lt=65536, description="Management API port")
    rest_port: int = Field(default=8010, gt=0, lt=65536, description="Application REST port")
    username: str = Field(..., min_length=1, description="Admin username")
    password: SecretStr = Field(..., description="Admin password")
    application_name: str = Field(
        default="data-hub-in-a-box",
        pattern=r"^[A-Za-z0-9][A-Za-z0-9_-]*$",
        description="Name of the application server and prefix of its databases",
    )
    forests_per_host: int = Field(default=4, ge=1, description="Content forests created per host")

    @property
    def manage_url(self) -> str:
        return f"http://{self.host}:{self.manage_port}"

    @property
    def rest_url(self) -> str:
        return f"http://{self.host}:{self.rest_port}"

    @property
    def content_database(self) -> str:
        return f"{self.application_name}-content"

    @property
    def modules_database(self) -> str:
        return f"{self.application_name}-modules"

    @property
    def triggers_database(self) -> str:
        return f"{self.application_name}-triggers"

    @property
    def schemas_database(self) -> str:
        return f"{self.application_name}-schemas"

    def tokens(self) -> dict:
        """Substitution tokens for resource payload templates."""
        return {
            "APP_NAME": self.application_name,
            "REST_PORT": str(self.rest_port),
            "CONTENT_DB": self.content_database,
            "MODULES_DB": self.modules_database,
            "TRIGGERS_DB": self.triggers_database,
            "SCHEMAS_DB": self.schemas_database,
            "ADMIN_ROLE": f"{self.application_name}-role",
            "ADMIN_USER": f"{self.application_name}-user",
        }


class HubConfig(BaseModel):
    """Immutable configuration handed to the orchestrator at construction."""

    model_config = ConfigDict(frozen=True)

    target: TargetDescriptor
    ledger_path: Optional[Path] = Field(
        default=Path("./tmp/asset-install-info.json"),
        description="Asset install ledger; None disables change tracking",
    )
    config_dir: Path = Field(default=DEFAULT_CONFIG_DIR, description="Resource payload directory")
    module_roots: tuple[Path, ...] = Field(
        default=(DEFAULT_MODULES_DIR,), description="Bundled module roots"
    )
    user_module_root: Optional[Path] = Field(
        default=None, description="User module root synced alongside bundled modules"
    )
    job_runner: Optional[str] = Field(
        default=None,
        description="\"module:attribute\" of a factory taking this config and returning a JobRunner",
    )
    log_file: str = "./logs/hubdeploy.log"
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def known_log_level(cls, v: str) -> str:
        """Accept only standard logging level names."""
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "HubConfig":
        """Build configuration from HUB_* environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            HubConfig with unset variables left at their defaults

        Note:
            HUB_LEDGER_FILE set to an empty string disables change tracking.
        """
        env = os.environ if environ is None else environ

        target_fields = {
            "host": env.get("HUB_HOST", "localhost"),
            "username": env.get("HUB_USERNAME", "admin"),
            "password": env.get("HUB_PASSWORD", "admin"),
        }
        if "HUB_MANAGE_PORT" in env:
            target_fields["manage_port"] = int(env["HUB_MANAGE_PORT"])
        if "HUB_REST_PORT" in env:
            target_fields["rest_port"] = int(env["HUB_REST_PORT"])
        if "HUB_APP_NAME" in env:
            target_fields["application_name"] = env["HUB_APP_NAME"]
        if "HUB_FORESTS_PER_HOST" in env:
            target_fields["forests_per_host"] = int(env["HUB_FORESTS_PER_HOST"])

        config_fields = {"target": TargetDescriptor(**target_fields)}
        if "HUB_LEDGER_FILE" in env:
            ledger = env["HUB_LEDGER_FILE"].strip()
            config_fields["ledger_path"] = Path(ledger) if ledger else None
        if env.get("HUB_USER_MODULES"):
            config_fields["user_module_root"] = Path(env["HUB_USER_MODULES"])
        if env.get("HUB_JOB_RUNNER"):
            config_fields["job_runner"] = env["HUB_JOB_RUNNER"]
        if env.get("HUB_LOG_FILE"):
            config_fields["log_file"] = env["HUB_LOG_FILE"]
        if env.get("HUB_LOG_LEVEL"):
            config_fields["log_level"] = env["HUB_LOG_LEVEL"]

        return cls(**config_fields)
