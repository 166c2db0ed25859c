"""Asset and install ledger models."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def to_millis(when: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are taken as local time)."""
    return int(when.timestamp() * 1000)


def from_millis(millis: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


class AssetRecord(BaseModel):
    """A discovered asset file.

    Two records are the same asset iff their canonical paths are equal.
    """

    model_config = ConfigDict(frozen=True)

    path: Path = Field(..., description="Path as discovered under its root")
    root: Path = Field(..., description="Scan root the file was found under")
    canonical_path: str = Field(..., description="Resolved absolute path, ledger key")
    last_modified_at: datetime = Field(..., description="File mtime at scan time")

    @property
    def relative_uri(self) -> str:
        """Root-relative URI, e.g. ``/ext/lib.xqy``."""
        return "/" + self.path.relative_to(self.root).as_posix()


class InstallLedger(BaseModel):
    """Canonical path → epoch millis of last successful install.

    Persisted as a flat JSON object. Treat as a value: ledger functions
    return new instances instead of mutating ``entries``.
    """

    model_config = ConfigDict(frozen=True)

    entries: dict[str, int] = Field(default_factory=dict)

    @field_validator("entries")
    @classmethod
    def non_negative_timestamps(cls, v: dict[str, int]) -> dict[str, int]:
        """Reject negative timestamps from hand-edited files."""
        for key, millis in v.items():
            if millis < 0:
                raise ValueError(f"Negative install timestamp for {key}")
        return v

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, key: str) -> bool:
        return key in self.entries

    def installed_at(self, key: str) -> Optional[datetime]:
        """Install time recorded for a canonical key, or None."""
        millis = self.entries.get(key)
        return None if millis is None else from_millis(millis)
