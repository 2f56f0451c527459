"""Shared builders for tests running against the in-memory device."""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from statepatch.adapters.snapshot_local import LocalSnapshotArchive
from statepatch.adapters.transport_mock import (
    InMemoryDevice,
    InMemoryShellConnector,
    InMemoryTransport,
)
from statepatch.domain.device import DeviceDescriptor
from statepatch.domain.paths import INSTALL_NAMES, PathSet, resolve
from statepatch.domain.variants import Variant
from statepatch.usecases.detect_variant import VariantDetector
from statepatch.usecases.mutation_orchestrator import MutationHooks, MutationOrchestrator
from statepatch.usecases.session_manager import SessionHooks, SessionManager
from statepatch.usecases.snapshot_store import SnapshotStore

DEVICE_ID = "00008030-001A2B3C4D5E802E"
LEGACY_MARKER_FILE = "/Applications/Cydia.app/Info.plist"
RELOCATED_MARKER_FILE = "/var/jb/prep_bootstrap.sh"


def make_device(
    *,
    device_id: str = DEVICE_ID,
    version: str = "16.3.1",
    variant: Variant = Variant.RELOCATED,
    existing: Optional[Mapping[str, bytes]] = None,
) -> InMemoryDevice:
    """Device with one marker of ``variant`` and ``existing`` logical files.

    ``existing`` maps logical names to their current bytes on the device.
    """
    device = InMemoryDevice(
        device_id=device_id,
        attributes={
            "ProductVersion": version,
            "ProductType": "iPhone12,1",
            "SerialNumber": "F2LXK0ABCDEF",
            "UniqueChipID": 1234567890,
            "DeviceName": "Test iPhone",
            "ActivationState": "Unactivated",
        },
    )
    if variant is Variant.LEGACY:
        device.put(LEGACY_MARKER_FILE, b"<plist/>")
    elif variant is Variant.RELOCATED:
        device.put(RELOCATED_MARKER_FILE, b"#!/bin/sh\n")
    path_set = resolve(version, variant)
    for name, data in (existing or {}).items():
        device.put(path_set.path_for(name), data)
    return device


def path_set_for(device: InMemoryDevice, variant: Variant = Variant.RELOCATED) -> PathSet:
    return resolve(device.attributes.get("ProductVersion"), variant)


def artifacts_for(names: Iterable[str] = INSTALL_NAMES) -> Dict[str, bytes]:
    return {name: f"replacement {name}".encode("utf-8") for name in names}


class StaticArtifactSource:
    """Artifact source returning a fixed map and recording each request."""

    def __init__(self, artifacts: Mapping[str, bytes]) -> None:
        self.artifacts = dict(artifacts)
        self.requests: List[Sequence[str]] = []

    def for_artifacts(
        self, descriptor: DeviceDescriptor, names: Sequence[str]
    ) -> Dict[str, bytes]:
        self.requests.append(list(names))
        return {name: self.artifacts[name] for name in names if name in self.artifacts}


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class Stack:
    """Use cases wired over one in-memory device."""

    def __init__(
        self,
        snapshot_root,
        *devices: InMemoryDevice,
        shell: bool = True,
        session_hooks: Optional[SessionHooks] = None,
        mutation_hooks: Optional[MutationHooks] = None,
        clock=None,
    ) -> None:
        self.transport = InMemoryTransport(*devices)
        self.connector = InMemoryShellConnector(self.transport) if shell else None
        self.sleep = SleepRecorder()
        self.sessions = SessionManager(
            self.transport,
            shell_connector=self.connector,
            hooks=session_hooks,
            sleep=self.sleep,
        )
        self.detector = VariantDetector()
        self.archive = LocalSnapshotArchive(str(snapshot_root))
        if clock is None:
            self.snapshots = SnapshotStore(self.archive)
        else:
            self.snapshots = SnapshotStore(self.archive, clock=clock)
        self.orchestrator = MutationOrchestrator(
            self.sessions, self.detector, self.snapshots, hooks=mutation_hooks
        )

    def connect(self, device_id: str = DEVICE_ID):
        return self.sessions.connect(device_id)


class StepRecorder:
    """``MutationHooks`` target collecting steps and progress percents."""

    def __init__(self) -> None:
        self.steps = []
        self.events = []

    def hooks(self) -> MutationHooks:
        return MutationHooks(on_step=self.steps.append, on_progress=self.events.append)

    @property
    def percents(self) -> List[int]:
        return [event.percent for event in self.events]
