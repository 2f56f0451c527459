from __future__ import annotations

import os
from datetime import datetime, timezone

import pytest

from statepatch.adapters.snapshot_local import LocalSnapshotArchive, write_durable
from statepatch.domain.snapshot import Snapshot, SnapshotEntry

CREATED = datetime(2024, 6, 1, 8, 30, tzinfo=timezone.utc)


def _snapshot(snapshot_id: str) -> Snapshot:
    return Snapshot(
        snapshot_id=snapshot_id,
        device_id="udid-1",
        device_version="16.3.1",
        created_at=CREATED,
        entries=(
            SnapshotEntry("data-ark", "/var/root/Library/Lockdown/data_ark.plist", "a.bin", True, 3),
            SnapshotEntry("wildcard-record", "/var/x/wildcard_record.plist"),
        ),
        variant="legacy",
    )


def test_write_durable_replaces_atomically(tmp_path) -> None:
    target = tmp_path / "blob.bin"
    target.write_bytes(b"old")

    write_durable(str(target), b"new")

    assert target.read_bytes() == b"new"
    assert os.listdir(tmp_path) == ["blob.bin"]


def test_manifest_round_trip(tmp_path) -> None:
    archive = LocalSnapshotArchive(str(tmp_path))
    location = archive.create("udid-1_20240601_083000_000000")
    archive.write_blob("udid-1_20240601_083000_000000", "a.bin", b"ark")

    archive.write_manifest(_snapshot("udid-1_20240601_083000_000000"))
    loaded = archive.read_manifest("udid-1_20240601_083000_000000")

    assert loaded.entries == _snapshot("x").entries
    assert loaded.location == location
    assert archive.read_blob("udid-1_20240601_083000_000000", "a.bin") == b"ark"
    assert archive.list_blobs("udid-1_20240601_083000_000000") == ["a.bin"]


def test_corrupt_manifest_reads_as_missing(tmp_path) -> None:
    archive = LocalSnapshotArchive(str(tmp_path))
    folder = archive.create("s1")
    with open(os.path.join(folder, "manifest.json"), "w", encoding="utf-8") as handle:
        handle.write("{not json")

    assert archive.read_manifest("s1") is None


def test_listing_without_manifest_parses_id_stamp(tmp_path) -> None:
    archive = LocalSnapshotArchive(str(tmp_path))
    archive.create("udid-1_20240601_083000_000000")
    archive.write_blob("udid-1_20240601_083000_000000", "data-ark__%2Fark.bin", b"ark")
    (tmp_path / "stray.txt").write_text("not a snapshot")

    infos = archive.list_snapshots()

    assert len(infos) == 1
    info = infos[0]
    assert info.device_id == "udid-1"
    assert info.created_at == CREATED
    assert info.entry_count == 1
    assert not info.has_manifest


def test_delete_and_exists(tmp_path) -> None:
    archive = LocalSnapshotArchive(str(tmp_path))
    archive.create("s1")

    assert archive.exists("s1")
    assert archive.delete("s1") is True
    assert archive.delete("s1") is False
    assert not archive.exists("s1")


@pytest.mark.parametrize("snapshot_id", ["", "..", "a/b"])
def test_invalid_snapshot_ids_are_rejected(tmp_path, snapshot_id: str) -> None:
    with pytest.raises(ValueError):
        LocalSnapshotArchive(str(tmp_path)).create(snapshot_id)


def test_listing_missing_root_is_empty(tmp_path) -> None:
    assert LocalSnapshotArchive(str(tmp_path / "absent")).list_snapshots() == []
