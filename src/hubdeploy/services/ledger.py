"""Change ledger: persisted record of when each asset was last installed.

The ledger is a plain value (``InstallLedger``); the functions here take a
ledger and return a new one. Reads and writes key entries through the same
``canonical_key`` so a file is always looked up under the key it was stored
with.
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Iterable, Union

from pydantic import ValidationError

from hubdeploy.models.errors import LedgerLoadError, LedgerPersistenceError
from hubdeploy.models.ledger import InstallLedger, to_millis

logger = logging.getLogger("hubdeploy.ledger")

PathLike = Union[str, os.PathLike]


def canonical_key(path: PathLike) -> str:
    """Return the ledger key for a path.

    Existing paths resolve to their symlink-free real path. Paths that
    cannot be resolved (missing file) fall back to the plain absolute path.
    Never raises.
    """
    absolute = os.path.abspath(os.fspath(path))
    if os.path.exists(absolute):
        return os.path.realpath(absolute)
    logger.warning(f"Cannot get canonical path of {path}, using absolute path instead")
    return absolute


def read_ledger(source: Path) -> InstallLedger:
    """Read a persisted ledger, strictly.

    Args:
        source: Ledger JSON file

    Returns:
        InstallLedger with the stored entries

    Raises:
        LedgerLoadError: If the file is unreadable, not JSON, or malformed
    """
    try:
        with open(source, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise LedgerLoadError(f"Cannot read {source}: {e}") from e

    if not isinstance(data, dict):
        raise LedgerLoadError(f"{source} does not contain a JSON object")

    try:
        return InstallLedger(entries=data)
    except ValidationError as e:
        raise LedgerLoadError(f"Malformed entries in {source}: {e}") from e


def load(source: Path) -> InstallLedger:
    """Load the ledger, substituting an empty one on first run or corruption.

    Losing history only costs a redundant full upload, so this never raises.
    """
    source = Path(source)
    if not source.exists():
        logger.debug(f"No ledger file at {source}, starting empty")
        return InstallLedger()

    try:
        ledger = read_ledger(source)
    except LedgerLoadError as e:
        logger.warning(f"{e}. Starting with an empty ledger")
        return InstallLedger()

    logger.info(f"Loaded ledger: {len(ledger)} entries from {source}")
    return ledger


def is_modified_since_install(ledger: InstallLedger, path: PathLike) -> bool:
    """Check whether a file needs (re)installing.

    A file is modified if it has never been installed, or if its current
    modification time is strictly after the recorded install time. A file
    whose mtime cannot be read is treated as modified.
    """
    stored = ledger.entries.get(canonical_key(path))
    if stored is None:
        return True

    try:
        mtime_millis = os.stat(path).st_mtime_ns // 1_000_000
    except OSError as e:
        logger.warning(f"Cannot stat {path}: {e}")
        return True

    return mtime_millis > stored


def record_installed(ledger: InstallLedger, path: PathLike, when: datetime) -> InstallLedger:
    """Return a ledger with ``path`` marked as installed at ``when``."""
    key = canonical_key(path)
    entries = dict(ledger.entries)
    entries[key] = to_millis(when)
    logger.debug(f"Recorded install of {key} at {when.isoformat()}")
    return InstallLedger(entries=entries)


def forget(ledger: InstallLedger, roots: Iterable[PathLike]) -> InstallLedger:
    """Return a ledger without any entries located under the given roots."""
    prefixes = [canonical_key(root).rstrip(os.sep) + os.sep for root in roots]
    entries = {
        key: millis
        for key, millis in ledger.entries.items()
        if not any(key.startswith(prefix) for prefix in prefixes)
    }
    dropped = len(ledger.entries) - len(entries)
    if dropped:
        logger.info(f"Forgot {dropped} ledger entries")
    return InstallLedger(entries=entries)


def persist(ledger: InstallLedger, destination: Path) -> None:
    """Write the whole ledger atomically (temp file + rename).

    Raises:
        LedgerPersistenceError: If the file cannot be written
    """
    destination = Path(destination)
    tmp_path = destination.parent / f"{destination.name}.tmp"
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(ledger.entries, f, indent=2, sort_keys=True)
        os.replace(tmp_path, destination)
    except OSError as e:
        if tmp_path.exists():
            tmp_path.unlink()
        raise LedgerPersistenceError(f"Cannot write {destination}: {e}") from e

    logger.info(f"Persisted ledger: {len(ledger)} entries to {destination}")
