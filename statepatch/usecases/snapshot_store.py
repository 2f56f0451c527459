"""Pre-mutation snapshots: capture, restore, listing and retention.

Capture reads every requested logical path over the session and persists the
bytes plus a manifest before returning, so no destructive phase can start
without a durable safety net. Restore is driven by the manifest when present
and by the stored file names otherwise.
"""

from __future__ import annotations

import hashlib
import logging
import posixpath
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from statepatch.domain import errors as E
from statepatch.domain.errors import RemoteFileNotFoundError
from statepatch.domain.paths import LOGICAL_NAMES, PathSet
from statepatch.domain.ports import SnapshotArchivePort, UseCaseError
from statepatch.domain.snapshot import (
    ALREADY_ABSENT,
    FAILED,
    REMOVED,
    RESTORED,
    SKIPPED,
    RestoreReport,
    Snapshot,
    SnapshotCapture,
    SnapshotEntry,
    SnapshotInfo,
    make_snapshot_id,
    parse_stored_name,
    sanitize_device_id,
    stored_name_for,
)
from statepatch.usecases.session_manager import Session

_log = logging.getLogger(__name__)

DEFAULT_KEEP_COUNT = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SnapshotStore:
    """Snapshot use cases over a ``SnapshotArchivePort``."""

    def __init__(
        self,
        archive: SnapshotArchivePort,
        *,
        keep_count: int = DEFAULT_KEEP_COUNT,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.archive = archive
        self.keep_count = keep_count
        self._clock = clock

    # ------------------------------------------------------------------
    def capture(
        self, session: Session, path_set: PathSet, logical_names: Iterable[str]
    ) -> SnapshotCapture:
        """Capture the current bytes of ``logical_names``.

        Not-found paths are recorded absent. Other read failures become
        per-file warnings and capture continues. When nothing at all could be
        captured the returned capture has ``snapshot=None``.
        """
        requested = list(logical_names)
        names = path_set.ordered(requested)
        warnings: List[str] = [
            f"Unknown logical name ignored: {name}" for name in requested if not path_set.has(name)
        ]
        created_at = self._clock()
        snapshot_id = make_snapshot_id(session.device_id, created_at)
        location = self.archive.create(snapshot_id)

        entries: List[SnapshotEntry] = []
        failed: List[str] = []
        for name in names:
            path = path_set.path_for(name)
            try:
                data = session.read_file(path)
            except RemoteFileNotFoundError:
                _log.debug("Snapshot %s: %s absent (%s)", snapshot_id, name, path)
                entries.append(SnapshotEntry(logical_name=name, remote_path=path))
                continue
            except Exception as exc:
                _log.warning("Snapshot %s: could not read %s (%s): %s", snapshot_id, name, path, exc)
                failed.append(name)
                warnings.append(f"Could not capture {name} ({path}): {exc}")
                continue

            stored = stored_name_for(name, path)
            try:
                self.archive.write_blob(snapshot_id, stored, data)
            except OSError as exc:
                _log.warning("Snapshot %s: could not store %s: %s", snapshot_id, name, exc)
                failed.append(name)
                warnings.append(f"Could not store {name}: {exc}")
                continue
            entries.append(
                SnapshotEntry(
                    logical_name=name,
                    remote_path=path,
                    stored_name=stored,
                    present=True,
                    size=len(data),
                    sha256=hashlib.sha256(data).hexdigest(),
                )
            )
            _log.debug("Snapshot %s: captured %s (%d bytes)", snapshot_id, name, len(data))

        if not entries:
            _log.error("Snapshot %s: nothing captured", snapshot_id)
            self.archive.delete(snapshot_id)
            return SnapshotCapture(snapshot=None, failed=tuple(failed), warnings=warnings)

        snapshot = Snapshot(
            snapshot_id=snapshot_id,
            device_id=session.device_id,
            device_version=session.descriptor.version,
            created_at=created_at,
            entries=tuple(entries),
            variant=path_set.variant.value,
            location=location,
        )
        try:
            self.archive.write_manifest(snapshot)
        except OSError as exc:
            # Stored files stay on disk and remain restorable by name.
            _log.error("Snapshot %s: manifest not persisted: %s", snapshot_id, exc)
            warnings.append(f"Manifest not persisted for {snapshot_id}: {exc}")
            return SnapshotCapture(
                snapshot=None, failed=tuple(failed), warnings=warnings, snapshot_id=snapshot_id
            )

        _log.info(
            "Snapshot %s: %d present, %d absent, %d failed",
            snapshot_id,
            len(snapshot.present_names),
            len(snapshot.absent_names),
            len(failed),
        )
        return SnapshotCapture(snapshot=snapshot, failed=tuple(failed), warnings=warnings)

    # ------------------------------------------------------------------
    def load(self, snapshot_id: str) -> Snapshot:
        """Return the snapshot, rebuilding it from file names without a manifest.

        Raises:
            UseCaseError: ``SNAPSHOT_NOT_FOUND``.
        """
        if not self._exists(snapshot_id):
            raise UseCaseError(E.SNAPSHOT_NOT_FOUND, f"Snapshot not found: {snapshot_id}")
        snapshot = self.archive.read_manifest(snapshot_id)
        if snapshot is not None:
            return snapshot
        entries = []
        for stored in self.archive.list_blobs(snapshot_id):
            parsed = parse_stored_name(stored)
            if parsed is None or parsed[0] not in LOGICAL_NAMES:
                continue
            logical, path = parsed
            entries.append(
                SnapshotEntry(logical_name=logical, remote_path=path, stored_name=stored, present=True)
            )
        info = self._info(snapshot_id)
        return Snapshot(
            snapshot_id=snapshot_id,
            device_id=info.device_id if info else "",
            device_version="",
            created_at=info.created_at if info else self._clock(),
            entries=tuple(entries),
            location=info.location if info else None,
        )

    def restore(self, session: Session, snapshot_id: str) -> RestoreReport:
        """Write captured bytes back and remove files that were absent.

        Raises:
            UseCaseError: ``SNAPSHOT_NOT_FOUND``, ``SNAPSHOT_DEVICE_MISMATCH`` or
                ``SHELL_UNAVAILABLE``.
        """
        if not self._exists(snapshot_id):
            raise UseCaseError(E.SNAPSHOT_NOT_FOUND, f"Snapshot not found: {snapshot_id}")
        snapshot = self.archive.read_manifest(snapshot_id)
        owner = snapshot.device_id if snapshot is not None else self._owner_from_listing(snapshot_id)
        if owner not in (session.device_id, sanitize_device_id(session.device_id)):
            raise UseCaseError(
                E.SNAPSHOT_DEVICE_MISMATCH,
                f"Snapshot {snapshot_id} belongs to {owner or 'an unknown device'}, "
                f"not {session.device_id}.",
                meta={"snapshot_device": owner, "session_device": session.device_id},
            )
        if not session.has_shell:
            raise UseCaseError(E.SHELL_UNAVAILABLE, "Restore needs a shell channel.")

        report = RestoreReport(snapshot_id=snapshot_id)
        if snapshot is not None:
            plan = list(snapshot.entries)
        else:
            _log.warning("Snapshot %s has no manifest; restoring by file name", snapshot_id)
            plan = []
            for stored in self.archive.list_blobs(snapshot_id):
                parsed = parse_stored_name(stored)
                if parsed is None or parsed[0] not in LOGICAL_NAMES:
                    report.record(stored, SKIPPED)
                    report.warnings.append(f"Skipped unmapped stored file: {stored}")
                    continue
                logical, path = parsed
                plan.append(
                    SnapshotEntry(logical_name=logical, remote_path=path, stored_name=stored, present=True)
                )

        for entry in plan:
            outcome = self._restore_entry(session, snapshot_id, entry, report)
            report.record(entry.logical_name, outcome)

        _log.info(
            "Restore of %s: %d entries, %d failed", snapshot_id, len(report.outcomes), len(report.failed)
        )
        return report

    def _restore_entry(
        self, session: Session, snapshot_id: str, entry: SnapshotEntry, report: RestoreReport
    ) -> str:
        name, path = entry.logical_name, entry.remote_path
        if not entry.present:
            try:
                removed = session.delete_file(path)
            except Exception as exc:
                _log.warning("Restore %s: could not remove %s: %s", snapshot_id, path, exc)
                report.warnings.append(f"Could not remove {name} ({path}): {exc}")
                return FAILED
            return REMOVED if removed else ALREADY_ABSENT

        try:
            data = self.archive.read_blob(snapshot_id, entry.stored_name or "")
        except OSError as exc:
            report.warnings.append(f"Stored file missing for {name}: {exc}")
            return FAILED
        if entry.sha256 and hashlib.sha256(data).hexdigest() != entry.sha256:
            report.warnings.append(f"Stored file for {name} does not match its checksum")
            return FAILED
        try:
            parent = posixpath.dirname(path)
            if parent and parent != "/":
                session.make_dirs(parent)
            session.write_file(path, data)
        except Exception as exc:
            _log.warning("Restore %s: could not write %s: %s", snapshot_id, path, exc)
            report.warnings.append(f"Could not restore {name} ({path}): {exc}")
            return FAILED
        _log.debug("Restore %s: wrote %s", snapshot_id, path)
        return RESTORED

    # ------------------------------------------------------------------
    def list(self, device_id: Optional[str] = None) -> List[SnapshotInfo]:
        """Snapshots ordered newest first, optionally for one device."""
        infos = self.archive.list_snapshots()
        if device_id is not None:
            infos = [info for info in infos if info.device_id == device_id]
        return sorted(infos, key=lambda i: (i.created_at, i.snapshot_id), reverse=True)

    def prune(self, keep_count: Optional[int] = None) -> List[str]:
        """Delete all but the ``keep_count`` most recent snapshots.

        Returns the ids actually deleted; failures are logged, not raised.
        """
        keep = self.keep_count if keep_count is None else keep_count
        if keep < 0:
            raise ValueError("keep_count cannot be negative")
        deleted: List[str] = []
        for info in self.list()[keep:]:
            try:
                if self.archive.delete(info.snapshot_id):
                    deleted.append(info.snapshot_id)
            except OSError as exc:
                _log.warning("Could not delete snapshot %s: %s", info.snapshot_id, exc)
        if deleted:
            _log.info("Pruned %d snapshot(s)", len(deleted))
        return deleted

    def delete(self, snapshot_id: str) -> bool:
        try:
            return self.archive.delete(snapshot_id)
        except (OSError, ValueError) as exc:
            _log.warning("Could not delete snapshot %s: %s", snapshot_id, exc)
            return False

    def _info(self, snapshot_id: str) -> Optional[SnapshotInfo]:
        return next((i for i in self.archive.list_snapshots() if i.snapshot_id == snapshot_id), None)

    def _owner_from_listing(self, snapshot_id: str) -> str:
        info = self._info(snapshot_id)
        return info.device_id if info else ""

    def _exists(self, snapshot_id: str) -> bool:
        try:
            return self.archive.exists(snapshot_id)
        except ValueError:
            return False


__all__ = ["DEFAULT_KEEP_COUNT", "SnapshotStore"]
