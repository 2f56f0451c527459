from __future__ import annotations

from statepatch.adapters.api_errors import ApiClientError
from statepatch.adapters.snapshot_local import LocalSnapshotArchive
from statepatch.domain import errors as E
from statepatch.domain import paths as P
from statepatch.domain.device import DeviceDescriptor
from statepatch.domain.mutation import MutationStep
from statepatch.domain.variants import Variant
from statepatch.tests.helpers import (
    DEVICE_ID,
    StaticArtifactSource,
    Stack,
    StepRecorder,
    artifacts_for,
    make_device,
    path_set_for,
)
from statepatch.usecases.mutation_orchestrator import MutationHooks

ORIGINAL = {
    P.SETUP_PREFS: b"<plist>setup done=false</plist>",
    P.DATA_ARK: b"<plist>ark</plist>",
}

FULL_STEPS = [
    MutationStep.DETECTING_VARIANT,
    MutationStep.CONNECTING,
    MutationStep.CAPTURING_SNAPSHOT,
    MutationStep.ACQUIRING_ARTIFACTS,
    MutationStep.TRANSFERRING,
    MutationStep.SETTING_PERMISSIONS,
    MutationStep.RESTARTING_SERVICES,
    MutationStep.VERIFYING,
    MutationStep.COMPLETE,
]


def _setup(tmp_path, device=None, *, shell: bool = True):
    device = device or make_device(existing=ORIGINAL)
    recorder = StepRecorder()
    stack = Stack(tmp_path / "snapshots", device, shell=shell, mutation_hooks=recorder.hooks())
    session = stack.connect()
    return device, stack, session, recorder


def test_full_run_installs_every_artifact(tmp_path) -> None:
    device, stack, session, recorder = _setup(tmp_path)
    path_set = path_set_for(device)
    artifacts = artifacts_for()

    result = stack.orchestrator.run(session, session.descriptor, StaticArtifactSource(artifacts))

    assert result.success
    assert result.current_step is MutationStep.COMPLETE
    assert result.cause is None
    assert result.transferred == P.INSTALL_NAMES
    assert result.failed == ()
    assert result.requires_reboot
    assert result.snapshot_id is not None
    assert recorder.steps == FULL_STEPS
    for name, data in artifacts.items():
        assert device.files[path_set.path_for(name)] == data
    assert device.modes[path_set.verification_path] == P.FILE_MODE
    assert "killall -9 mobileactivationd 2>/dev/null || true" in device.commands
    assert "killall -9 CommCenter 2>/dev/null || true" in device.commands
    assert "chown -R mobile:mobile /var/mobile/Library" in device.commands


def test_progress_is_monotonic_and_ends_at_100(tmp_path) -> None:
    _, stack, session, recorder = _setup(tmp_path)

    stack.orchestrator.run(session, session.descriptor, StaticArtifactSource(artifacts_for()))

    assert recorder.percents == sorted(recorder.percents)
    assert recorder.percents[-1] == 100
    assert all(0 <= percent <= 100 for percent in recorder.percents)


def test_snapshot_captures_pre_mutation_bytes(tmp_path) -> None:
    device, stack, session, _ = _setup(tmp_path)
    path_set = path_set_for(device)

    result = stack.orchestrator.run(session, session.descriptor, StaticArtifactSource(artifacts_for()))

    snapshot = stack.snapshots.load(result.snapshot_id)
    entry = snapshot.entry_for(P.SETUP_PREFS)
    assert entry.present
    assert stack.archive.read_blob(result.snapshot_id, entry.stored_name) == ORIGINAL[P.SETUP_PREFS]
    assert device.files[path_set.path_for(P.SETUP_PREFS)] != ORIGINAL[P.SETUP_PREFS]


def test_zero_capture_stops_before_any_write(tmp_path) -> None:
    device = make_device(existing=ORIGINAL)
    path_set = path_set_for(device)
    for name in P.INSTALL_NAMES:
        device.fail_reads.add(path_set.path_for(name))
    device, stack, session, recorder = _setup(tmp_path, device)
    files_before = dict(device.files)

    result = stack.orchestrator.run(session, session.descriptor, StaticArtifactSource(artifacts_for()))

    assert not result.success
    assert result.current_step is MutationStep.CAPTURING_SNAPSHOT
    assert result.cause == E.SNAPSHOT_UNAVAILABLE
    assert result.snapshot_id is None
    assert device.files == files_before
    assert MutationStep.TRANSFERRING not in recorder.steps
    assert recorder.steps[-1] is MutationStep.FAILED


def test_partial_transfer_failure_is_accounted_per_name(tmp_path) -> None:
    device = make_device(existing=ORIGINAL)
    path_set = path_set_for(device)
    device.fail_writes.add(path_set.path_for(P.SPRINGBOARD_PREFS))
    device, stack, session, _ = _setup(tmp_path, device)

    result = stack.orchestrator.run(
        session,
        session.descriptor,
        StaticArtifactSource(artifacts_for()),
        names=[P.SPRINGBOARD_PREFS, P.ACTIVATION_RECORD],
    )

    assert result.success
    assert result.transferred == (P.ACTIVATION_RECORD,)
    assert result.failed == (P.SPRINGBOARD_PREFS,)
    assert result.partial
    assert any(E.PARTIAL_TRANSFER_FAILURE in warning for warning in result.warnings)


def test_missing_marker_after_transfer_fails_verification(tmp_path) -> None:
    device = make_device(existing=ORIGINAL)
    path_set = path_set_for(device)
    device.fail_writes.add(path_set.verification_path)
    device, stack, session, _ = _setup(tmp_path, device)

    result = stack.orchestrator.run(session, session.descriptor, StaticArtifactSource(artifacts_for()))

    assert not result.success
    assert result.current_step is MutationStep.VERIFYING
    assert result.cause == E.VERIFICATION_FAILED
    assert P.ACTIVATION_RECORD in result.failed
    assert result.snapshot_id is not None
    assert stack.archive.exists(result.snapshot_id)


def test_required_artifact_missing_aborts_at_acquire(tmp_path) -> None:
    device, stack, session, _ = _setup(tmp_path)
    files_before = dict(device.files)
    artifacts = artifacts_for()
    del artifacts[P.DATA_ARK]

    result = stack.orchestrator.run(session, session.descriptor, StaticArtifactSource(artifacts))

    assert result.current_step is MutationStep.ACQUIRING_ARTIFACTS
    assert result.cause == E.ARTIFACT_MISSING
    assert P.DATA_ARK in result.message
    assert device.files == files_before
    assert stack.archive.exists(result.snapshot_id)


def test_optional_artifact_missing_is_a_warning(tmp_path) -> None:
    device, stack, session, _ = _setup(tmp_path)
    artifacts = artifacts_for()
    del artifacts[P.SPRINGBOARD_PREFS]

    result = stack.orchestrator.run(session, session.descriptor, StaticArtifactSource(artifacts))

    assert result.success
    assert P.SPRINGBOARD_PREFS not in result.transferred
    assert result.failed == ()
    assert any(P.SPRINGBOARD_PREFS in warning for warning in result.warnings)


def test_data_ark_optional_below_15(tmp_path) -> None:
    device = make_device(version="14.8", existing={P.SETUP_PREFS: b"old"})
    device, stack, session, _ = _setup(tmp_path, device)
    artifacts = artifacts_for()
    del artifacts[P.DATA_ARK]

    result = stack.orchestrator.run(session, session.descriptor, StaticArtifactSource(artifacts))

    assert result.success
    assert device.files[P.BASELINE_PATHS[P.ACTIVATION_RECORD]] == artifacts[P.ACTIVATION_RECORD]


def test_unparsable_version_fails_before_probing(tmp_path) -> None:
    device, stack, session, recorder = _setup(tmp_path)
    descriptor = DeviceDescriptor(DEVICE_ID, "not-a-version")

    result = stack.orchestrator.run(session, descriptor, StaticArtifactSource(artifacts_for()))

    assert result.current_step is MutationStep.DETECTING_VARIANT
    assert result.cause == E.VERSION_UNPARSABLE
    assert device.commands == []
    assert stack.snapshots.list() == []


def test_narrow_only_unknown_variant_refuses_to_mutate(tmp_path) -> None:
    device = make_device(variant=Variant.UNKNOWN, existing=ORIGINAL)
    device.put("/private/var/lib/apt/lists/lock", b"")
    device.narrow_visible = set()
    device, stack, session, _ = _setup(tmp_path, device, shell=False)
    files_before = dict(device.files)

    result = stack.orchestrator.run(session, session.descriptor, StaticArtifactSource(artifacts_for()))

    assert result.current_step is MutationStep.DETECTING_VARIANT
    assert result.cause == E.VARIANT_INDETERMINATE
    assert "shell channel" in result.message
    assert device.files == files_before
    assert stack.snapshots.list() == []


def test_shell_unavailable_fails_at_connecting(tmp_path) -> None:
    device, stack, session, _ = _setup(tmp_path)
    session._detach_shell()
    stack.connector.available = False

    result = stack.orchestrator.run(session, session.descriptor, StaticArtifactSource(artifacts_for()))

    assert result.current_step is MutationStep.CONNECTING
    assert result.cause == E.SHELL_UNAVAILABLE
    assert result.snapshot_id is None


def test_cancel_at_phase_boundary_keeps_snapshot(tmp_path) -> None:
    _, stack, session, _ = _setup(tmp_path)
    checks = []

    def cancel() -> bool:
        checks.append(True)
        return len(checks) >= 4

    result = stack.orchestrator.run(
        session, session.descriptor, StaticArtifactSource(artifacts_for()), cancel=cancel
    )

    assert result.cause == E.CANCELLED
    assert result.current_step is MutationStep.ACQUIRING_ARTIFACTS
    assert result.snapshot_id is not None
    assert result.transferred == ()


def test_artifact_auth_failure_is_mapped(tmp_path) -> None:
    class _Rejecting:
        def for_artifacts(self, descriptor, names):
            raise ApiClientError("fetch_artifact: HTTP 401", status=401)

    _, stack, session, _ = _setup(tmp_path)

    result = stack.orchestrator.run(session, session.descriptor, _Rejecting())

    assert result.current_step is MutationStep.ACQUIRING_ARTIFACTS
    assert result.cause == "AUTH_FAILED"
    assert result.detail == "fetch_artifact: HTTP 401"


def test_broken_hook_does_not_break_run(tmp_path) -> None:
    def explode(_payload) -> None:
        raise RuntimeError("observer bug")

    device = make_device(existing=ORIGINAL)
    stack = Stack(
        tmp_path / "snapshots",
        device,
        mutation_hooks=MutationHooks(on_step=explode, on_progress=explode),
    )
    session = stack.connect()

    result = stack.orchestrator.run(session, session.descriptor, StaticArtifactSource(artifacts_for()))

    assert result.success


def test_second_run_reuses_existing_directories(tmp_path) -> None:
    device, stack, session, _ = _setup(tmp_path)
    source = StaticArtifactSource(artifacts_for())

    first = stack.orchestrator.run(session, session.descriptor, source)
    second = stack.orchestrator.run(session, session.descriptor, source)

    assert first.success and second.success
    assert first.snapshot_id != second.snapshot_id


def test_unknown_requested_names_only(tmp_path) -> None:
    _, stack, session, _ = _setup(tmp_path)

    result = stack.orchestrator.run(
        session, session.descriptor, StaticArtifactSource(artifacts_for()), names=["bogus"]
    )

    assert result.cause == E.ARTIFACT_MISSING
    assert result.warnings == ("Unknown logical name ignored: bogus",)


def test_restore_returns_device_to_captured_state(tmp_path) -> None:
    device, stack, session, _ = _setup(tmp_path)
    before = dict(device.files)
    result = stack.orchestrator.run(session, session.descriptor, StaticArtifactSource(artifacts_for()))
    device.commands.clear()

    report = stack.orchestrator.restore(session, result.snapshot_id)

    assert report.ok
    assert device.files == before
    assert device.commands == [
        "killall -9 mobileactivationd 2>/dev/null || true",
        "killall -9 CommCenter 2>/dev/null || true",
    ]


def test_activated_device_is_refused_before_layout_detection(tmp_path) -> None:
    device = make_device(existing=ORIGINAL)
    device.attributes["ActivationState"] = "Activated"
    device, stack, session, recorder = _setup(tmp_path, device)
    files_before = dict(device.files)
    commands_before = list(device.commands)

    result = stack.orchestrator.run(session, session.descriptor, StaticArtifactSource(artifacts_for()))

    assert not result.success
    assert result.cause == E.DEVICE_ALREADY_ACTIVATED
    assert result.current_step is MutationStep.DETECTING_VARIANT
    assert result.snapshot_id is None
    assert device.files == files_before
    assert device.commands == commands_before
    assert stack.snapshots.list() == []


def test_decommission_is_allowed_on_activated_device(tmp_path) -> None:
    device = make_device(existing=ORIGINAL)
    device.attributes["ActivationState"] = "Activated"
    _, stack, session, _ = _setup(tmp_path, device)

    result = stack.orchestrator.decommission(session, session.descriptor)

    assert result.success, result.summary()


class _ManifestlessArchive(LocalSnapshotArchive):
    def write_manifest(self, snapshot) -> None:
        raise OSError("disk full")


def test_manifest_failure_still_reports_snapshot_id(tmp_path) -> None:
    device, stack, session, _ = _setup(tmp_path)
    archive = _ManifestlessArchive(str(tmp_path / "snapshots"))
    stack.snapshots.archive = archive
    files_before = dict(device.files)

    result = stack.orchestrator.run(session, session.descriptor, StaticArtifactSource(artifacts_for()))

    assert result.cause == E.SNAPSHOT_UNAVAILABLE
    assert result.current_step is MutationStep.CAPTURING_SNAPSHOT
    assert result.snapshot_id is not None
    assert archive.exists(result.snapshot_id)
    assert archive.list_blobs(result.snapshot_id)
    assert device.files == files_before


def test_known_but_non_installable_name_is_reported(tmp_path) -> None:
    _, stack, session, _ = _setup(tmp_path)

    result = stack.orchestrator.run(
        session,
        session.descriptor,
        StaticArtifactSource(artifacts_for()),
        names=[P.FAIRPLAY_INFO, P.ACTIVATION_RECORD],
    )

    assert result.success
    assert result.transferred == (P.ACTIVATION_RECORD,)
    assert f"Logical name is not installable, ignored: {P.FAIRPLAY_INFO}" in result.warnings
