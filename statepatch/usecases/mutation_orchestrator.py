"""Snapshot-first mutation runs as an explicit step state machine.

Steps run strictly in ``MutationStep`` order. Every aborting condition turns
into a ``MutationResult`` whose ``current_step`` names the step in progress;
nothing is raised past ``run``/``decommission``. A snapshot, once captured,
is never removed by a failure path.
"""

from __future__ import annotations

import logging
import posixpath
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from statepatch.domain import errors as E
from statepatch.domain.device import DeviceDescriptor, is_activated
from statepatch.domain.mutation import (
    OPERATION_DECOMMISSION,
    OPERATION_INSTALL,
    STEP_PERCENT,
    MutationResult,
    MutationStep,
    ProgressEvent,
)
from statepatch.domain.paths import SERVICES, PathSet, resolve
from statepatch.domain.ports import ArtifactSourcePort, UseCaseError
from statepatch.domain.snapshot import RestoreReport
from statepatch.domain.version import DeviceVersion
from statepatch.usecases.detect_variant import VariantDetector
from statepatch.usecases.error_mapping import map_transport_error
from statepatch.usecases.session_manager import Session, SessionManager
from statepatch.usecases.snapshot_store import SnapshotStore

_log = logging.getLogger(__name__)

CancelCheck = Callable[[], bool]


def _noop(*_: object, **__: object) -> None:
    """Default no-op callback used for hooks."""


@dataclass
class MutationHooks:
    """Optional callbacks for step changes and progress."""

    on_step: Callable[[MutationStep], None] = _noop
    on_progress: Callable[[ProgressEvent], None] = _noop

    def __post_init__(self) -> None:
        self.on_step = self.on_step or _noop
        self.on_progress = self.on_progress or _noop


class _Abort(Exception):
    """Internal signal: stop the run at the current step."""

    def __init__(self, cause: str, message: str, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.cause = cause
        self.message = message
        self.detail = detail


@dataclass
class _RunState:
    """Mutable bookkeeping for one run; frozen into a ``MutationResult``."""

    operation: str
    hooks: MutationHooks
    cancel: Optional[CancelCheck] = None
    started: float = field(default_factory=time.monotonic)
    step: MutationStep = MutationStep.IDLE
    percent: int = 0
    warnings: List[str] = field(default_factory=list)
    transferred: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    snapshot_id: Optional[str] = None

    def enter(self, step: MutationStep) -> None:
        self.step = step
        _log.debug("%s: entering %s", self.operation, step.name)
        self._call(self.hooks.on_step, step)
        self.progress(STEP_PERCENT.get(step, self.percent), step.label)
        if self.cancel is not None and self.cancel():
            raise _Abort(E.CANCELLED, f"Cancelled before {step.label.lower()}.")

    def progress(self, percent: int, status: str) -> None:
        # Percent never decreases within a run.
        self.percent = max(self.percent, min(100, int(percent)))
        self._call(self.hooks.on_progress, ProgressEvent(self.percent, status, self.step))

    def warn(self, text: str) -> None:
        _log.warning("%s: %s", self.operation, text)
        self.warnings.append(text)

    def _call(self, callback, payload) -> None:
        try:
            callback(payload)
        except Exception:
            _log.exception("Mutation hook failed")

    def elapsed(self) -> float:
        return round(time.monotonic() - self.started, 3)

    def failure(self, abort: _Abort) -> MutationResult:
        return MutationResult(
            success=False,
            current_step=self.step,
            failed_step=self.step,
            cause=abort.cause,
            message=abort.message,
            detail=abort.detail,
            transferred=tuple(self.transferred),
            failed=tuple(self.failed),
            warnings=tuple(self.warnings),
            snapshot_id=self.snapshot_id,
            elapsed_s=self.elapsed(),
            requires_reboot=bool(self.transferred),
            operation=self.operation,
        )

    def success(self, message: str) -> MutationResult:
        return MutationResult(
            success=True,
            current_step=MutationStep.COMPLETE,
            message=message,
            transferred=tuple(self.transferred),
            failed=tuple(self.failed),
            warnings=tuple(self.warnings),
            snapshot_id=self.snapshot_id,
            elapsed_s=self.elapsed(),
            requires_reboot=True,
            operation=self.operation,
        )


def _abort_from(exc: Exception, default_code: str) -> _Abort:
    mapped = map_transport_error(exc, default_code=default_code)
    detail = (mapped.meta or {}).get("detail") or str(exc)
    return _Abort(mapped.code, mapped.message, detail)


class MutationOrchestrator:
    """Sequences detection, snapshot, transfer, restart and verification."""

    def __init__(
        self,
        sessions: SessionManager,
        detector: VariantDetector,
        snapshots: SnapshotStore,
        *,
        hooks: Optional[MutationHooks] = None,
        resolver: Callable[..., PathSet] = resolve,
    ) -> None:
        self.sessions = sessions
        self.detector = detector
        self.snapshots = snapshots
        self.hooks = hooks or MutationHooks()
        self.resolver = resolver

    # ------------------------------------------------------------------
    def run(
        self,
        session: Session,
        descriptor: DeviceDescriptor,
        artifact_source: ArtifactSourcePort,
        *,
        names: Optional[Sequence[str]] = None,
        cancel: Optional[CancelCheck] = None,
    ) -> MutationResult:
        """Install replacement artifacts for ``names`` (default: every install name)."""
        state = _RunState(OPERATION_INSTALL, self.hooks, cancel)
        _log.info("Mutation run started for %s", descriptor.device_id)
        try:
            path_set = self._detect(state, session, descriptor)
            targets = self._targets(state, path_set, names)
            self._connect(state, session)
            self._capture(state, session, path_set, targets)

            state.enter(MutationStep.ACQUIRING_ARTIFACTS)
            artifacts = self._acquire(state, descriptor, artifact_source, path_set, targets)

            state.enter(MutationStep.TRANSFERRING)
            self._transfer(state, session, path_set, artifacts)

            state.enter(MutationStep.SETTING_PERMISSIONS)
            self._set_permissions(state, session, path_set)

            self._restart(state, session, path_set)

            state.enter(MutationStep.VERIFYING)
            if not self._marker_present(session, path_set):
                raise _Abort(
                    E.VERIFICATION_FAILED,
                    f"Verification marker missing after transfer: {path_set.verification_path}",
                )
        except _Abort as abort:
            return self._finish_failed(state, abort)
        except Exception as exc:
            _log.exception("Unexpected error during %s", state.step.name)
            return self._finish_failed(state, _abort_from(exc, E.UNEXPECTED_ERROR))

        return self._finish_ok(state)

    def decommission(
        self,
        session: Session,
        descriptor: DeviceDescriptor,
        *,
        cancel: Optional[CancelCheck] = None,
    ) -> MutationResult:
        """Remove the marker catalogue; not-found deletions count as success."""
        state = _RunState(OPERATION_DECOMMISSION, self.hooks, cancel)
        _log.info("Decommission run started for %s", descriptor.device_id)
        try:
            path_set = self._detect(state, session, descriptor)
            targets = path_set.ordered(path_set.decommission_names)
            self._connect(state, session)
            self._capture(state, session, path_set, targets)

            # Nothing to acquire; the step still runs so the order has no gaps.
            state.enter(MutationStep.ACQUIRING_ARTIFACTS)

            state.enter(MutationStep.TRANSFERRING)
            self._delete(state, session, path_set, targets)

            state.enter(MutationStep.SETTING_PERMISSIONS)

            self._restart(state, session, path_set)

            state.enter(MutationStep.VERIFYING)
            if self._marker_present(session, path_set):
                raise _Abort(
                    E.VERIFICATION_FAILED,
                    f"Verification marker still present: {path_set.verification_path}",
                )
        except _Abort as abort:
            return self._finish_failed(state, abort)
        except Exception as exc:
            _log.exception("Unexpected error during %s", state.step.name)
            return self._finish_failed(state, _abort_from(exc, E.UNEXPECTED_ERROR))

        return self._finish_ok(state)

    def restore(self, session: Session, snapshot_id: str) -> RestoreReport:
        """Restore a snapshot, then restart the owning services.

        Raises:
            UseCaseError: ``SNAPSHOT_NOT_FOUND``, ``SHELL_UNAVAILABLE`` or
                ``INVALID_SESSION``.
        """
        self.sessions.ensure_shell(session)
        report = self.snapshots.restore(session, snapshot_id)
        for service in SERVICES:
            try:
                session.kill_process(service)
            except Exception as exc:
                report.warnings.append(f"Could not restart {service}: {exc}")
        return report

    # ---- phases ------------------------------------------------------
    def _detect(
        self, state: _RunState, session: Session, descriptor: DeviceDescriptor
    ) -> PathSet:
        state.enter(MutationStep.DETECTING_VARIANT)
        version = DeviceVersion.try_parse(descriptor.version)
        if version is None:
            raise _Abort(
                E.VERSION_UNPARSABLE,
                f"Device software version is not parsable: {descriptor.version!r}",
            )
        if not session.is_open:
            raise _Abort(E.INVALID_SESSION, "Session is not open.")
        if state.operation == OPERATION_INSTALL and is_activated(descriptor):
            raise _Abort(
                E.DEVICE_ALREADY_ACTIVATED,
                f"{descriptor.display_name} is already activated; nothing to install.",
                f"ActivationState={descriptor.activation_state}",
            )
        detection = self.detector.detect(session)
        if not detection.detected:
            message = "Device layout could not be determined; refusing to mutate."
            if not detection.conclusive:
                message += " Only the narrow channel was probed; attach a shell channel and retry."
            raise _Abort(E.VARIANT_INDETERMINATE, message)
        path_set = self.resolver(version, detection.variant)
        _log.info(
            "Resolved %s paths for version %s (marker %s)",
            detection.variant.value,
            version,
            detection.marker,
        )
        return path_set

    def _targets(
        self, state: _RunState, path_set: PathSet, names: Optional[Sequence[str]]
    ) -> Tuple[str, ...]:
        if names is None:
            return path_set.install_names()
        install = path_set.install_names()
        for name in names:
            if not path_set.has(name):
                state.warn(f"Unknown logical name ignored: {name}")
            elif name not in install:
                state.warn(f"Logical name is not installable, ignored: {name}")
        targets = path_set.ordered(n for n in names if n in install)
        if not targets:
            raise _Abort(E.ARTIFACT_MISSING, "No known logical names requested.")
        return targets

    def _connect(self, state: _RunState, session: Session) -> None:
        state.enter(MutationStep.CONNECTING)
        try:
            self.sessions.ensure_shell(session)
        except UseCaseError as exc:
            raise _Abort(exc.code, exc.message, (exc.meta or {}).get("detail"))

    def _capture(
        self, state: _RunState, session: Session, path_set: PathSet, targets: Sequence[str]
    ) -> None:
        state.enter(MutationStep.CAPTURING_SNAPSHOT)
        try:
            capture = self.snapshots.capture(session, path_set, targets)
        except Exception as exc:
            raise _Abort(E.SNAPSHOT_UNAVAILABLE, "Snapshot could not be taken.", str(exc))
        state.warnings.extend(capture.warnings)
        state.snapshot_id = capture.snapshot_id
        if not capture.ok:
            if capture.snapshot_id:
                message = (
                    f"Snapshot {capture.snapshot_id} is incomplete (no manifest); "
                    "refusing to continue. Its stored files remain restorable."
                )
            else:
                message = "No file could be captured; refusing to continue without a snapshot."
            raise _Abort(E.SNAPSHOT_UNAVAILABLE, message, "; ".join(capture.warnings) or None)
        if capture.failed:
            state.warn(f"Partial snapshot; not captured: {', '.join(capture.failed)}")

    def _acquire(
        self,
        state: _RunState,
        descriptor: DeviceDescriptor,
        source: ArtifactSourcePort,
        path_set: PathSet,
        targets: Sequence[str],
    ) -> Dict[str, bytes]:
        try:
            offered: Mapping[str, bytes] = source.for_artifacts(descriptor, list(targets)) or {}
        except Exception as exc:
            raise _abort_from(exc, E.ARTIFACT_MISSING)

        artifacts: Dict[str, bytes] = {}
        missing: List[str] = []
        for name in targets:
            data = offered.get(name)
            if isinstance(data, (bytes, bytearray)) and data:
                artifacts[name] = bytes(data)
            else:
                missing.append(name)
        required_missing = [name for name in missing if path_set.requires(name)]
        if required_missing:
            raise _Abort(
                E.ARTIFACT_MISSING,
                f"Required artifact missing: {', '.join(required_missing)}",
            )
        for name in missing:
            state.warn(f"Optional artifact not available: {name}")
        return artifacts

    def _transfer(
        self, state: _RunState, session: Session, path_set: PathSet, artifacts: Mapping[str, bytes]
    ) -> None:
        def write_one(name: str) -> None:
            path = path_set.path_for(name)
            parent = posixpath.dirname(path)
            if parent and parent != "/":
                session.make_dirs(parent)
            session.write_file(path, artifacts[name])
            _log.info("Wrote %s -> %s (%d bytes)", name, path, len(artifacts[name]))

        self._per_file(state, path_set.ordered(artifacts), write_one)
        if state.failed:
            state.warn(f"{E.PARTIAL_TRANSFER_FAILURE}: not written: {', '.join(state.failed)}")

    def _delete(
        self, state: _RunState, session: Session, path_set: PathSet, targets: Sequence[str]
    ) -> None:
        def delete_one(name: str) -> None:
            path = path_set.path_for(name)
            if session.delete_file(path):
                _log.info("Removed %s (%s)", name, path)
            else:
                _log.info("%s already absent (%s)", name, path)

        self._per_file(state, targets, delete_one)
        if state.failed:
            state.warn(f"{E.PARTIAL_TRANSFER_FAILURE}: not removed: {', '.join(state.failed)}")

    @staticmethod
    def _per_file(state: _RunState, names: Sequence[str], action: Callable[[str], None]) -> None:
        start = STEP_PERCENT[MutationStep.TRANSFERRING]
        span = STEP_PERCENT[MutationStep.SETTING_PERMISSIONS] - start
        total = len(names)
        for index, name in enumerate(names, start=1):
            try:
                action(name)
            except Exception as exc:
                _log.warning("%s: %s failed: %s", state.operation, name, exc)
                state.failed.append(name)
                state.warnings.append(f"{name}: {exc}")
                status = f"Failed {name}"
            else:
                state.transferred.append(name)
                status = f"Done {name}"
            state.progress(start + (span * index) // max(total, 1), status)

    def _set_permissions(self, state: _RunState, session: Session, path_set: PathSet) -> None:
        for name in state.transferred:
            path = path_set.path_for(name)
            try:
                session.chmod(path, path_set.file_mode)
            except Exception as exc:
                state.warn(f"Could not set mode on {path}: {exc}")
        for directory, owner in path_set.ownership_trees:
            try:
                session.chown_tree(directory, owner)
            except Exception as exc:
                state.warn(f"Could not set owner on {directory}: {exc}")
        for directory, mode in path_set.permission_trees:
            try:
                session.chmod_tree(directory, mode)
            except Exception as exc:
                state.warn(f"Could not set mode on {directory}: {exc}")

    def _restart(self, state: _RunState, session: Session, path_set: PathSet) -> None:
        state.enter(MutationStep.RESTARTING_SERVICES)
        for service in path_set.services:
            try:
                session.kill_process(service)
                _log.debug("Restarted %s", service)
            except Exception as exc:
                state.warn(f"Could not restart {service}: {exc}")

    @staticmethod
    def _marker_present(session: Session, path_set: PathSet) -> bool:
        try:
            return session.exists(path_set.verification_path)
        except Exception as exc:
            raise _Abort(
                E.VERIFICATION_FAILED,
                f"Could not check verification marker {path_set.verification_path}.",
                str(exc),
            )

    # ---- results -----------------------------------------------------
    def _finish_failed(self, state: _RunState, abort: _Abort) -> MutationResult:
        result = state.failure(abort)
        _log.error(
            "%s failed at %s (%s): %s",
            state.operation,
            state.step.name,
            abort.cause,
            abort.detail or abort.message,
        )
        state._call(self.hooks.on_step, MutationStep.FAILED)
        return result

    def _finish_ok(self, state: _RunState) -> MutationResult:
        state.step = MutationStep.COMPLETE
        state._call(self.hooks.on_step, MutationStep.COMPLETE)
        state.progress(100, "Complete")
        result = state.success(f"{state.operation} complete; restart the device to apply.")
        _log.info("%s", result.summary())
        return result


__all__ = ["CancelCheck", "MutationHooks", "MutationOrchestrator"]
