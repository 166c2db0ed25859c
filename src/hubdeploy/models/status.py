"""Status enums for hub deployment operations."""

from enum import Enum


class StageEnum(str, Enum):
    """Deployment lifecycle stages.

    State transitions:
    idle → validating → installing ─┐
    idle → uninstalling ────────────┼→ success
    idle → syncing ─────────────────┘
                ↓          ↓
              failed ←─────────
    """

    IDLE = "idle"
    VALIDATING = "validating"
    INSTALLING = "installing"
    UNINSTALLING = "uninstalling"
    SYNCING = "syncing"
    SUCCESS = "success"
    FAILED = "failed"


class Direction(str, Enum):
    """Pipeline traversal direction."""

    INSTALL = "install"
    UNINSTALL = "uninstall"
