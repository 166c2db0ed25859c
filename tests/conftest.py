"""Global pytest fixtures and configuration."""

import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from hubdeploy.models.target import HubConfig, TargetDescriptor  # noqa: E402
from hubdeploy.services.state_manager import StateManager  # noqa: E402


@pytest.fixture(autouse=True)
def reset_state_manager():
    """Reset the StateManager singleton around every test."""
    StateManager._instance = None
    yield
    StateManager._instance = None


@pytest.fixture
def target():
    """Target descriptor pointing at a fake host."""
    return TargetDescriptor(
        host="ml-test",
        username="admin",
        password="secret",
        application_name="test-hub",
        forests_per_host=2,
    )


@pytest.fixture
def config_dir(tmp_path):
    """Minimal resource payload directory."""
    root = tmp_path / "ml_config"
    (root / "security" / "roles").mkdir(parents=True)
    (root / "security" / "users").mkdir(parents=True)
    (root / "databases").mkdir()
    (root / "servers").mkdir()

    (root / "security" / "roles" / "role.json").write_text('{"role-name": "${ADMIN_ROLE}"}')
    (root / "security" / "users" / "user.json").write_text(
        '{"user-name": "${ADMIN_USER}", "role": ["${ADMIN_ROLE}"]}'
    )
    (root / "databases" / "content-database.json").write_text(
        '{"database-name": "${CONTENT_DB}"}'
    )
    (root / "databases" / "triggers-database.json").write_text(
        '{"database-name": "${TRIGGERS_DB}"}'
    )
    (root / "databases" / "schemas-database.json").write_text(
        '{"database-name": "${SCHEMAS_DB}"}'
    )
    (root / "rest-api.json").write_text(
        '{"rest-api": {"name": "${APP_NAME}", "port": "${REST_PORT}",'
        ' "database": "${CONTENT_DB}", "modules-database": "${MODULES_DB}"}}'
    )
    (root / "servers" / "server.json").write_text(
        '{"server-name": "${APP_NAME}", "group-name": "Default"}'
    )
    return root


@pytest.fixture
def modules_root(tmp_path):
    """Module root with two assets."""
    root = tmp_path / "ml_modules"
    (root / "ext").mkdir(parents=True)
    (root / "ext" / "a.xqy").write_text("xquery version '1.0-ml'; 1")
    (root / "ext" / "b.sjs").write_text("'use strict'; 1")
    return root


@pytest.fixture
def hub_config(target, config_dir, modules_root, tmp_path):
    """HubConfig wired to temporary payloads, modules and ledger."""
    return HubConfig(
        target=target,
        ledger_path=tmp_path / "ledger.json",
        config_dir=config_dir,
        module_roots=(modules_root,),
        log_file=str(tmp_path / "logs" / "hubdeploy.log"),
    )


@pytest.fixture
def mock_state_manager():
    """Mock StateManager for unit tests."""
    manager = MagicMock()
    manager.update_status = MagicMock()
    manager.record_steps = MagicMock()
    return manager


@pytest.fixture
def set_mtime():
    """Set a file's mtime (and atime) to a datetime."""
    def _set(path: Path, when: datetime) -> None:
        ns = round(when.timestamp() * 1000) * 1_000_000
        os.utime(path, ns=(ns, ns))
    return _set


@pytest.fixture
def fixed_clock():
    """Clock returning a fixed, later-than-any-test-file instant."""
    return lambda: datetime(2030, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
