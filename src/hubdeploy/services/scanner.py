"""Asset discovery under one or more module roots."""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List

from hubdeploy.models.ledger import AssetRecord
from hubdeploy.services.ledger import canonical_key


class AssetScanner:
    """Finds asset files recursively, in a stable order.

    Roots are visited in the order given; within a root, files are sorted by
    their root-relative POSIX path. A file reachable from several roots is
    reported once, under the first root that contains it. Hidden files and
    directories are skipped.
    """

    def __init__(self):
        self.logger = logging.getLogger("hubdeploy.scanner")

    def scan(self, roots: Iterable[Path]) -> List[AssetRecord]:
        """Scan roots for asset files.

        Args:
            roots: Directories to walk

        Returns:
            Ordered, duplicate-free list of AssetRecord
        """
        records: List[AssetRecord] = []
        seen = set()

        for root in roots:
            root = Path(root)
            for path in self._walk(root):
                key = canonical_key(path)
                if key in seen:
                    self.logger.debug(f"Skipping duplicate asset {path}")
                    continue
                try:
                    mtime = path.stat().st_mtime
                except OSError as e:
                    # Removed or made unreadable since the walk listed it
                    self.logger.warning(f"Skipping asset {path}: {e}")
                    continue
                seen.add(key)
                records.append(
                    AssetRecord(
                        path=path,
                        root=root,
                        canonical_path=key,
                        last_modified_at=datetime.fromtimestamp(mtime, tz=timezone.utc),
                    )
                )

        self.logger.info(f"Found {len(records)} assets")
        return records

    def _walk(self, root: Path) -> List[Path]:
        """List visible files under one root, sorted by relative path."""
        if not root.exists():
            self.logger.warning(f"Asset root does not exist: {root}")
            return []
        if not root.is_dir():
            self.logger.warning(f"Asset root is not a directory: {root}")
            return []

        files = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            for filename in filenames:
                if filename.startswith("."):
                    continue
                path = Path(dirpath) / filename
                if path.is_file():
                    files.append(path)

        files.sort(key=lambda p: p.relative_to(root).as_posix())
        if not files:
            self.logger.debug(f"Asset root is empty: {root}")
        return files
