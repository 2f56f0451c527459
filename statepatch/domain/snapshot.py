"""Snapshot value objects, stored-file naming and the manifest format.

The naming convention lives here so capture and restore always agree: every
stored file is named ``<logical>__<percent-encoded remote path>.bin`` and can
be mapped back to its logical identity without a manifest.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from urllib.parse import quote, unquote

from pydantic import BaseModel, Field

STORED_SUFFIX = ".bin"
NAME_SEPARATOR = "__"
MANIFEST_FILENAME = "manifest.json"
MANIFEST_FORMAT_VERSION = 1
_ID_UNSAFE = re.compile(r"[^A-Za-z0-9.-]+")


def stored_name_for(logical_name: str, remote_path: str) -> str:
    """Return the local file name used to store ``remote_path``."""
    encoded = quote(remote_path, safe="")
    return f"{logical_name}{NAME_SEPARATOR}{encoded}{STORED_SUFFIX}"


def parse_stored_name(name: str) -> Optional[Tuple[str, str]]:
    """Reverse ``stored_name_for``; returns ``None`` for foreign file names."""
    if not name.endswith(STORED_SUFFIX):
        return None
    stem = name[: -len(STORED_SUFFIX)]
    logical, sep, encoded = stem.partition(NAME_SEPARATOR)
    if not sep or not logical or not encoded:
        return None
    path = unquote(encoded)
    if not path.startswith("/"):
        return None
    return logical, path


def sanitize_device_id(device_id: str) -> str:
    """Device id as it appears in snapshot ids and folder names."""
    return _ID_UNSAFE.sub("-", device_id or "").strip("-") or "device"


def make_snapshot_id(device_id: str, when: Optional[datetime] = None) -> str:
    """Build ``<sanitized device id>_<YYYYmmdd_HHMMSS_ffffff>``."""
    stamp = (when or datetime.now(timezone.utc)).strftime("%Y%m%d_%H%M%S_%f")
    return f"{sanitize_device_id(device_id)}_{stamp}"


@dataclass(frozen=True)
class SnapshotEntry:
    """One captured logical path; ``stored_name`` is ``None`` when absent."""

    logical_name: str
    remote_path: str
    stored_name: Optional[str] = None
    present: bool = False
    size: int = 0
    sha256: Optional[str] = None


@dataclass(frozen=True)
class Snapshot:
    snapshot_id: str
    device_id: str
    device_version: str
    created_at: datetime
    entries: Tuple[SnapshotEntry, ...] = ()
    variant: str = "unknown"
    location: Optional[str] = None

    @property
    def present_names(self) -> Tuple[str, ...]:
        return tuple(entry.logical_name for entry in self.entries if entry.present)

    @property
    def absent_names(self) -> Tuple[str, ...]:
        return tuple(entry.logical_name for entry in self.entries if not entry.present)

    @property
    def captured_count(self) -> int:
        return len(self.entries)

    def entry_for(self, logical_name: str) -> Optional[SnapshotEntry]:
        for entry in self.entries:
            if entry.logical_name == logical_name:
                return entry
        return None


@dataclass(frozen=True)
class SnapshotInfo:
    """Listing row for one stored snapshot."""

    snapshot_id: str
    device_id: str
    created_at: datetime
    entry_count: int
    has_manifest: bool
    location: Optional[str] = None


@dataclass
class SnapshotCapture:
    """Outcome of ``SnapshotStore.capture``.

    ``snapshot`` is ``None`` when nothing could be captured (no snapshot
    directory is kept and ``snapshot_id`` is ``None`` too) or when the
    manifest could not be written. In the latter case ``snapshot_id`` still
    names the directory holding the stored files.
    """

    snapshot: Optional[Snapshot]
    failed: Tuple[str, ...] = ()
    warnings: List[str] = field(default_factory=list)
    snapshot_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.snapshot is not None and self.snapshot_id is None:
            self.snapshot_id = self.snapshot.snapshot_id

    @property
    def success_count(self) -> int:
        return 0 if self.snapshot is None else self.snapshot.captured_count

    @property
    def ok(self) -> bool:
        return self.success_count > 0


RESTORED = "restored"
REMOVED = "removed"
ALREADY_ABSENT = "already-absent"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class RestoreReport:
    """Per-logical-name outcome of a restore."""

    snapshot_id: str
    outcomes: List[Tuple[str, str]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def record(self, logical_name: str, outcome: str) -> None:
        self.outcomes.append((logical_name, outcome))

    def outcome_for(self, logical_name: str) -> Optional[str]:
        for name, outcome in self.outcomes:
            if name == logical_name:
                return outcome
        return None

    @property
    def failed(self) -> Tuple[str, ...]:
        return tuple(name for name, outcome in self.outcomes if outcome == FAILED)

    @property
    def ok(self) -> bool:
        return not self.failed


# ---- Manifest (persisted JSON) ----
class ManifestEntry(BaseModel):
    logical_name: str
    remote_path: str
    stored_name: Optional[str] = None
    present: bool = False
    size: int = 0
    sha256: Optional[str] = None


class SnapshotManifest(BaseModel):
    format_version: int = MANIFEST_FORMAT_VERSION
    snapshot_id: str
    device_id: str
    device_version: str = ""
    variant: str = "unknown"
    created_at: datetime
    entries: List[ManifestEntry] = Field(default_factory=list)

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "SnapshotManifest":
        return cls(
            snapshot_id=snapshot.snapshot_id,
            device_id=snapshot.device_id,
            device_version=snapshot.device_version,
            variant=snapshot.variant,
            created_at=snapshot.created_at,
            entries=[
                ManifestEntry(
                    logical_name=entry.logical_name,
                    remote_path=entry.remote_path,
                    stored_name=entry.stored_name,
                    present=entry.present,
                    size=entry.size,
                    sha256=entry.sha256,
                )
                for entry in snapshot.entries
            ],
        )

    def to_snapshot(self, location: Optional[str] = None) -> Snapshot:
        return Snapshot(
            snapshot_id=self.snapshot_id,
            device_id=self.device_id,
            device_version=self.device_version,
            created_at=self.created_at,
            entries=tuple(
                SnapshotEntry(
                    logical_name=entry.logical_name,
                    remote_path=entry.remote_path,
                    stored_name=entry.stored_name,
                    present=entry.present,
                    size=entry.size,
                    sha256=entry.sha256,
                )
                for entry in self.entries
            ),
            variant=self.variant,
            location=location,
        )


__all__ = [
    "ALREADY_ABSENT",
    "FAILED",
    "MANIFEST_FILENAME",
    "ManifestEntry",
    "REMOVED",
    "RESTORED",
    "RestoreReport",
    "SKIPPED",
    "Snapshot",
    "SnapshotCapture",
    "SnapshotEntry",
    "SnapshotInfo",
    "SnapshotManifest",
    "make_snapshot_id",
    "sanitize_device_id",
    "parse_stored_name",
    "stored_name_for",
]
