from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from statepatch.domain.device import DeviceDescriptor
from statepatch.domain.snapshot import Snapshot, SnapshotInfo

DeviceId = str
LogicalName = str


# ---- Error model ----
class UseCaseError(Exception):
    """Base class for use case level errors (user-presentable)."""

    def __init__(self, code: str, message: str, meta: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.meta = meta


class SessionError(UseCaseError):
    """Connecting, attaching the shell or using a session failed."""


# ---- Ports (Hexagonal boundaries) ----
class DeviceHandle(Protocol):
    """Low-level handle returned by ``DeviceTransportPort.open``.

    Narrow channel only: attribute reads and existence/metadata probes. The
    handle never executes commands.
    """

    device_id: DeviceId

    def handshake(self, label: str) -> None: ...
    def read_attribute(self, key: str, domain: Optional[str] = None) -> Any: ...
    def probe(self, path: str) -> bool: ...
    @property
    def is_valid(self) -> bool: ...
    def close(self) -> None: ...


class DeviceTransportPort(Protocol):
    """Device discovery and session opening (USB enumeration + pairing)."""

    def list_devices(self) -> List[DeviceId]: ...
    def open(self, device_id: DeviceId) -> DeviceHandle: ...


class ShellChannel(Protocol):
    """Rich channel: command execution and file transfer."""

    def run(self, command: str, timeout: float) -> str: ...  # stdout; raises on non-zero exit
    def exists(self, path: str, timeout: float) -> bool: ...
    def read_file(self, path: str) -> bytes: ...
    def write_file(self, path: str, data: bytes) -> None: ...
    def delete_file(self, path: str) -> bool: ...  # False when already absent
    def mkdir(self, path: str) -> None: ...
    def chmod(self, path: str, mode: int) -> None: ...
    def close(self) -> None: ...


class ShellConnector(Protocol):
    """Factory for shell channels to the device of the current session."""

    def open(self, descriptor: DeviceDescriptor) -> ShellChannel: ...


class ArtifactSourcePort(Protocol):
    """Supplies replacement bytes keyed by logical name.

    A name that cannot be produced is omitted from the result, never returned
    as a partial blob.
    """

    def for_artifacts(
        self, descriptor: DeviceDescriptor, names: Sequence[LogicalName]
    ) -> Mapping[LogicalName, bytes]: ...


class SnapshotArchivePort(Protocol):
    """Durable local persistence for snapshots."""

    def create(self, snapshot_id: str) -> str: ...  # returns location
    def write_blob(self, snapshot_id: str, stored_name: str, data: bytes) -> None: ...
    def read_blob(self, snapshot_id: str, stored_name: str) -> bytes: ...
    def list_blobs(self, snapshot_id: str) -> List[str]: ...
    def write_manifest(self, snapshot: Snapshot) -> None: ...
    def read_manifest(self, snapshot_id: str) -> Optional[Snapshot]: ...
    def list_snapshots(self) -> List[SnapshotInfo]: ...
    def delete(self, snapshot_id: str) -> bool: ...
    def exists(self, snapshot_id: str) -> bool: ...
