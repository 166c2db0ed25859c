"""Incremental asset synchronization against the install ledger."""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from hubdeploy.models.errors import LedgerPersistenceError
from hubdeploy.models.ledger import AssetRecord
from hubdeploy.services import ledger as change_ledger
from hubdeploy.services.scanner import AssetScanner


class AssetLoader(Protocol):
    """Uploads one asset to the target; raises on failure."""

    async def load_asset(self, record: AssetRecord) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AssetSynchronizer:
    """Uploads the assets that changed since their last successful install.

    One ``sync`` call owns its ledger file for the duration of the call;
    callers must not run two syncs against the same ledger concurrently.
    """

    def __init__(
        self,
        loader: AssetLoader,
        scanner: Optional[AssetScanner] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize synchronizer.

        Args:
            loader: Asset upload collaborator
            scanner: AssetScanner instance (new one if None)
            clock: Source of upload completion timestamps
        """
        self.logger = logging.getLogger("hubdeploy.synchronizer")
        self.loader = loader
        self.scanner = scanner or AssetScanner()
        self.clock = clock

    async def sync(
        self, roots: Iterable[Path], ledger_path: Optional[Path] = None
    ) -> Dict[Path, Optional[datetime]]:
        """Synchronize assets under ``roots``.

        Args:
            roots: Directories to scan
            ledger_path: Ledger file for change tracking; None uploads everything

        Returns:
            Mapping of files current as of this run to their install time.
            Files that failed to upload are absent.
        """
        records = self.scanner.scan(roots)
        if not records:
            self.logger.info("No assets found, nothing to sync")
            return {}

        if ledger_path is None:
            return await self._sync_untracked(records)
        return await self._sync_tracked(records, Path(ledger_path))

    async def _sync_untracked(self, records: List[AssetRecord]) -> Dict[Path, Optional[datetime]]:
        """Upload every asset; no ledger is read or written."""
        self.logger.info(f"Change tracking disabled, uploading all {len(records)} assets")
        installed: Dict[Path, Optional[datetime]] = {}
        for record in records:
            completed_at = await self._upload(record)
            if completed_at is None:
                continue
            installed[record.path] = completed_at if record.path.exists() else None
        self._log_summary(len(records), len(installed))
        return installed

    async def _sync_tracked(
        self, records: List[AssetRecord], ledger_path: Path
    ) -> Dict[Path, Optional[datetime]]:
        """Upload changed assets and record each success in the ledger."""
        ledger = change_ledger.load(ledger_path)

        changed: List[AssetRecord] = []
        unchanged: List[AssetRecord] = []
        for record in records:
            if change_ledger.is_modified_since_install(ledger, record.path):
                changed.append(record)
            else:
                unchanged.append(record)
        self.logger.info(
            f"{len(changed)} changed, {len(unchanged)} unchanged of {len(records)} assets"
        )

        installed: Dict[Path, Optional[datetime]] = {
            record.path: ledger.installed_at(record.canonical_path) for record in unchanged
        }

        uploaded = 0
        for record in changed:
            completed_at = await self._upload(record)
            if completed_at is None:
                continue
            ledger = change_ledger.record_installed(ledger, record.path, completed_at)
            installed[record.path] = completed_at
            uploaded += 1

        try:
            change_ledger.persist(ledger, ledger_path)
        except LedgerPersistenceError as e:
            self.logger.error(f"{e}. Uploaded assets will be re-sent next run", exc_info=True)

        self._log_summary(len(changed), uploaded)
        return installed

    async def _upload(self, record: AssetRecord) -> Optional[datetime]:
        """Upload one asset.

        Returns:
            Completion timestamp, or None if the upload failed
        """
        try:
            await self.loader.load_asset(record)
        except Exception as e:
            self.logger.error(f"Failed to upload {record.path}: {e}")
            return None
        completed_at = self.clock()
        self.logger.info(f"Uploaded {record.relative_uri}")
        return completed_at

    def _log_summary(self, attempted: int, succeeded: int) -> None:
        failed = attempted - succeeded
        if failed:
            self.logger.warning(f"Asset sync finished: {succeeded} uploaded, {failed} failed")
        else:
            self.logger.info(f"Asset sync finished: {succeeded} uploaded")
