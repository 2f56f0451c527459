from __future__ import annotations

from datetime import datetime, timezone

from statepatch.domain.snapshot import (
    FAILED,
    RESTORED,
    RestoreReport,
    Snapshot,
    SnapshotEntry,
    SnapshotManifest,
    make_snapshot_id,
    parse_stored_name,
    stored_name_for,
)


def test_stored_name_maps_back_to_logical_identity() -> None:
    path = "/var/containers/Shared/SystemGroup/x y/com.apple.purplebuddy.plist"

    stored = stored_name_for("setup-prefs", path)

    assert "/" not in stored
    assert stored.endswith(".bin")
    assert parse_stored_name(stored) == ("setup-prefs", path)


def test_parse_stored_name_rejects_foreign_names() -> None:
    assert parse_stored_name("manifest.json") is None
    assert parse_stored_name("notes.bin") is None
    assert parse_stored_name("data-ark__relative%2Fpath.bin") is None
    assert parse_stored_name("__%2Fvar%2Fx.bin") is None


def test_snapshot_id_is_sanitized_and_sortable() -> None:
    when = datetime(2024, 3, 5, 14, 7, 9, 123456, tzinfo=timezone.utc)

    snapshot_id = make_snapshot_id("0000/8030:ab", when)

    assert snapshot_id == "0000-8030-ab_20240305_140709_123456"
    assert make_snapshot_id("", when).startswith("device_")


def test_snapshot_helpers_split_present_and_absent() -> None:
    snapshot = Snapshot(
        snapshot_id="s1",
        device_id="d1",
        device_version="16.3.1",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        entries=(
            SnapshotEntry("activation-record", "/a", stored_name="x.bin", present=True, size=3),
            SnapshotEntry("wildcard-record", "/b"),
        ),
    )

    assert snapshot.present_names == ("activation-record",)
    assert snapshot.absent_names == ("wildcard-record",)
    assert snapshot.captured_count == 2
    assert snapshot.entry_for("wildcard-record").stored_name is None
    assert snapshot.entry_for("missing") is None


def test_manifest_model_round_trips_snapshot() -> None:
    snapshot = Snapshot(
        snapshot_id="s1",
        device_id="d1",
        device_version="16.3.1",
        created_at=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
        entries=(SnapshotEntry("data-ark", "/ark", stored_name="a.bin", present=True, size=4, sha256="ab"),),
        variant="relocated",
    )

    text = SnapshotManifest.from_snapshot(snapshot).model_dump_json()
    restored = SnapshotManifest.model_validate_json(text).to_snapshot(location="/tmp/s1")

    assert restored.entries == snapshot.entries
    assert restored.created_at == snapshot.created_at
    assert restored.variant == "relocated"
    assert restored.location == "/tmp/s1"


def test_restore_report_tracks_failures() -> None:
    report = RestoreReport(snapshot_id="s1")
    report.record("activation-record", RESTORED)
    assert report.ok

    report.record("data-ark", FAILED)

    assert report.failed == ("data-ark",)
    assert report.outcome_for("activation-record") == RESTORED
    assert not report.ok
