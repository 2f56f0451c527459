from __future__ import annotations

import logging
import os
import re
import shutil
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ValidationError

from statepatch.domain.ports import SnapshotArchivePort
from statepatch.domain.snapshot import (
    MANIFEST_FILENAME,
    STORED_SUFFIX,
    Snapshot,
    SnapshotInfo,
    SnapshotManifest,
)

_log = logging.getLogger(__name__)

_ID_STAMP = re.compile(r"^(?P<device>.+)_(?P<stamp>\d{8}_\d{6}_\d{6})$")
_TMP_SUFFIX = ".tmp"


def _fsync_dir(path: str) -> None:
    """Flush a directory entry (rename durability); not supported everywhere."""
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def write_durable(path: str, data: bytes) -> None:
    """Write ``data`` to ``path`` via fsync + atomic rename."""
    tmp = path + _TMP_SUFFIX
    with open(tmp, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)
    _fsync_dir(os.path.dirname(path) or ".")


class LocalSnapshotArchive(SnapshotArchivePort):
    """One directory per snapshot under ``root_dir``: stored files + manifest.json."""

    def __init__(self, root_dir: str) -> None:
        self.root = root_dir

    def _dir(self, snapshot_id: str) -> str:
        if not snapshot_id or os.sep in snapshot_id or snapshot_id in (".", ".."):
            raise ValueError(f"Invalid snapshot id: {snapshot_id!r}")
        return os.path.join(self.root, snapshot_id)

    # ---- writing ----
    def create(self, snapshot_id: str) -> str:
        path = self._dir(snapshot_id)
        os.makedirs(path, exist_ok=True)
        return path

    def write_blob(self, snapshot_id: str, stored_name: str, data: bytes) -> None:
        write_durable(os.path.join(self._dir(snapshot_id), stored_name), data)

    def write_manifest(self, snapshot: Snapshot) -> None:
        manifest = SnapshotManifest.from_snapshot(snapshot)
        payload = manifest.model_dump_json(indent=2).encode("utf-8")
        write_durable(os.path.join(self._dir(snapshot.snapshot_id), MANIFEST_FILENAME), payload)

    # ---- reading ----
    def exists(self, snapshot_id: str) -> bool:
        return os.path.isdir(self._dir(snapshot_id))

    def read_blob(self, snapshot_id: str, stored_name: str) -> bytes:
        with open(os.path.join(self._dir(snapshot_id), stored_name), "rb") as f:
            return f.read()

    def list_blobs(self, snapshot_id: str) -> List[str]:
        path = self._dir(snapshot_id)
        if not os.path.isdir(path):
            return []
        return sorted(name for name in os.listdir(path) if name.endswith(STORED_SUFFIX))

    def read_manifest(self, snapshot_id: str) -> Optional[Snapshot]:
        """Return the manifest as a ``Snapshot``, or ``None`` if missing/unreadable."""
        folder = self._dir(snapshot_id)
        path = os.path.join(folder, MANIFEST_FILENAME)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                manifest = SnapshotManifest.model_validate_json(f.read())
        except (OSError, ValidationError) as exc:
            _log.warning("Unreadable manifest for %s: %s", snapshot_id, exc)
            return None
        return manifest.to_snapshot(location=folder)

    def list_snapshots(self) -> List[SnapshotInfo]:
        if not os.path.isdir(self.root):
            return []
        infos: List[SnapshotInfo] = []
        for name in os.listdir(self.root):
            folder = os.path.join(self.root, name)
            if not os.path.isdir(folder):
                continue
            infos.append(self._info(name, folder))
        return infos

    def _info(self, snapshot_id: str, folder: str) -> SnapshotInfo:
        snapshot = self.read_manifest(snapshot_id)
        if snapshot is not None:
            return SnapshotInfo(
                snapshot_id=snapshot_id,
                device_id=snapshot.device_id,
                created_at=snapshot.created_at,
                entry_count=snapshot.captured_count,
                has_manifest=True,
                location=folder,
            )
        device_id, created_at = snapshot_id, None
        match = _ID_STAMP.match(snapshot_id)
        if match:
            device_id = match.group("device")
            try:
                created_at = datetime.strptime(
                    match.group("stamp"), "%Y%m%d_%H%M%S_%f"
                ).replace(tzinfo=timezone.utc)
            except ValueError:
                created_at = None
        if created_at is None:
            created_at = datetime.fromtimestamp(os.path.getmtime(folder), tz=timezone.utc)
        return SnapshotInfo(
            snapshot_id=snapshot_id,
            device_id=device_id,
            created_at=created_at,
            entry_count=len(self.list_blobs(snapshot_id)),
            has_manifest=False,
            location=folder,
        )

    # ---- removal ----
    def delete(self, snapshot_id: str) -> bool:
        path = self._dir(snapshot_id)
        if not os.path.isdir(path):
            return False
        shutil.rmtree(path)
        return True


__all__ = ["LocalSnapshotArchive", "write_durable"]
