"""Rotating logger setup for the hubdeploy service."""

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Tuple

REDACTED = "********"

# "password": "...", password=..., Authorization: Digest ...
_CREDENTIAL_PATTERNS = (
    re.compile(r'("password"\s*:\s*")[^"]*(")', re.IGNORECASE),
    re.compile(r"(\bpassword=)[^\s&,;]+()", re.IGNORECASE),
    re.compile(r"(\bauthorization:\s*)[^\r\n]+()", re.IGNORECASE),
)


class RedactingFilter(logging.Filter):
    """Masks known secrets and credential-looking fragments in log records.

    Attached to handlers rather than loggers so records propagated from
    child loggers (``hubdeploy.manage_client`` ...) are covered too.
    """

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        self.secrets: Tuple[str, ...] = tuple(s for s in secrets if s)

    def redact(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, REDACTED)
        for pattern in _CREDENTIAL_PATTERNS:
            text = pattern.sub(rf"\g<1>{REDACTED}\g<2>", text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logger(
    name: str = "hubdeploy",
    log_file: str = "./logs/hubdeploy.log",
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 3,
    level: int = logging.INFO,
    secrets: Iterable[str] = (),
) -> logging.Logger:
    """Setup rotating file logger with ISO 8601 timestamps.

    Child loggers (``hubdeploy.ledger``, ``hubdeploy.pipeline`` ...) propagate
    to the logger configured here. Every handler masks ``secrets`` (the target
    password) and anything shaped like a password or auth header.

    Args:
        name: Logger name
        log_file: Path to log file (created if doesn't exist)
        max_bytes: Max size before rotation (default 10MB)
        backup_count: Number of rotated files to keep (default 3)
        level: Logging level
        secrets: Literal values to mask in every record

    Returns:
        Configured logger instance
    """
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Already configured: only widen the set of masked values
    if logger.handlers:
        for handler in logger.handlers:
            for existing in handler.filters:
                if isinstance(existing, RedactingFilter):
                    existing.secrets += tuple(s for s in secrets if s and s not in existing.secrets)
        return logger

    redactor = RedactingFilter(secrets)
    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    file_handler = RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    console_handler = logging.StreamHandler()

    for handler in (file_handler, console_handler):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(redactor)
        logger.addHandler(handler)

    return logger
