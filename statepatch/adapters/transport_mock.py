"""Offline device double implementing the transport and shell ports.

``InMemoryDevice`` models one device's filesystem (files plus implicit
directories), identifying attributes and kernel identification string. The
transport and shell connector expose it through the same ports the real
adapters implement, with switches for injecting failures. ``simulated_device``
backs dry runs wired by the composition root.
"""

from __future__ import annotations

import posixpath
import shlex
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from statepatch.domain.device import DeviceDescriptor
from statepatch.domain.errors import (
    CommandFailedError,
    DeviceNotFoundError,
    HandshakeRejectedError,
    InvalidSessionError,
    RemoteFileNotFoundError,
    ShellUnavailableError,
    TransientIOError,
)
from statepatch.domain.variants import RELOCATED_MARKERS


@dataclass
class InMemoryDevice:
    """Mutable device state plus failure switches used by tests and dry runs."""

    device_id: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    files: Dict[str, bytes] = field(default_factory=dict)
    dirs: Set[str] = field(default_factory=set)
    kernel_ident: str = ""
    # Paths the narrow channel can see; ``None`` means everything.
    narrow_visible: Optional[Set[str]] = None
    handshake_failures: int = 0
    invalid_handles: int = 0
    fail_reads: Set[str] = field(default_factory=set)
    fail_writes: Set[str] = field(default_factory=set)
    fail_deletes: Set[str] = field(default_factory=set)
    fail_probes: Set[str] = field(default_factory=set)
    fail_commands: Set[str] = field(default_factory=set)
    modes: Dict[str, int] = field(default_factory=dict)
    commands: List[str] = field(default_factory=list)
    mkdir_calls: List[str] = field(default_factory=list)
    rebooted: bool = False

    # ---- filesystem model ----
    def _all_dirs(self) -> Set[str]:
        found = set(self.dirs)
        for path in list(self.files) + list(self.dirs):
            parent = posixpath.dirname(path)
            while parent and parent != "/":
                found.add(parent)
                parent = posixpath.dirname(parent)
        return found

    def exists(self, path: str) -> bool:
        return path in self.files or path in self._all_dirs()

    def put(self, path: str, data: bytes) -> None:
        self.files[path] = data

    def mkdir(self, path: str) -> None:
        self.mkdir_calls.append(path)
        parent = path.rstrip("/")
        while parent and parent != "/":
            if parent in self.files:
                raise CommandFailedError(f"mkdir -p {path}", 1, "File exists")
            self.dirs.add(parent)
            parent = posixpath.dirname(parent)

    def descriptor(self) -> DeviceDescriptor:
        return DeviceDescriptor.from_attributes(self.device_id, self.attributes)


class InMemoryHandle:
    """Narrow-channel handle onto an ``InMemoryDevice``."""

    def __init__(self, device: InMemoryDevice, transport: "InMemoryTransport") -> None:
        self.device_id = device.device_id
        self.device = device
        self.transport = transport
        self.label: Optional[str] = None
        self._valid = False
        self.closed = False

    def handshake(self, label: str) -> None:
        self.label = label
        if self.device.handshake_failures > 0:
            self.device.handshake_failures -= 1
            raise HandshakeRejectedError(f"Device {self.device_id} rejected pairing")
        if self.device.invalid_handles > 0:
            self.device.invalid_handles -= 1
            return
        self._valid = True

    def read_attribute(self, key: str, domain: Optional[str] = None) -> Any:
        self._check()
        attr_key = f"{domain}:{key}" if domain else key
        return self.device.attributes.get(attr_key)

    def probe(self, path: str) -> bool:
        self._check()
        if path in self.device.fail_probes:
            raise TransientIOError(f"Probe failed for {path}")
        visible = self.device.narrow_visible
        if visible is not None and path not in visible:
            return False
        return self.device.exists(path)

    @property
    def is_valid(self) -> bool:
        return self._valid and not self.closed

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.transport.closed_handles.append(self)

    def _check(self) -> None:
        if self.closed:
            raise InvalidSessionError(f"Handle for {self.device_id} is closed")


class InMemoryTransport:
    """``DeviceTransportPort`` over a set of in-memory devices."""

    def __init__(self, *devices: InMemoryDevice) -> None:
        self.devices: Dict[str, InMemoryDevice] = {d.device_id: d for d in devices}
        self.opened: List[InMemoryHandle] = []
        self.closed_handles: List[InMemoryHandle] = []
        self.open_failures: List[Exception] = []

    def add(self, device: InMemoryDevice) -> None:
        self.devices[device.device_id] = device

    def list_devices(self) -> List[str]:
        return sorted(self.devices)

    def open(self, device_id: str) -> InMemoryHandle:
        if self.open_failures:
            raise self.open_failures.pop(0)
        device = self.devices.get(device_id)
        if device is None:
            raise DeviceNotFoundError(f"Device {device_id} not found")
        handle = InMemoryHandle(device, self)
        self.opened.append(handle)
        return handle


class InMemoryShellChannel:
    """Shell channel onto an ``InMemoryDevice``.

    Understands the handful of commands the use cases send; anything else
    is recorded and succeeds with empty output.
    """

    def __init__(self, device: InMemoryDevice) -> None:
        self.device = device
        self.closed = False

    def _check(self, what: str) -> None:
        if self.closed:
            raise ShellUnavailableError("Shell channel is closed", context=what)
        for needle in self.device.fail_commands:
            if needle in what:
                raise CommandFailedError(what, 1, "injected failure")

    def run(self, command: str, timeout: float) -> str:
        self._check(command)
        self.device.commands.append(command)
        argv = shlex.split(command)
        if command.strip() == "uname -v":
            return self.device.kernel_ident + "\n"
        if argv[:2] == ["test", "-e"] and len(argv) == 3:
            if not self.device.exists(argv[2]):
                raise CommandFailedError(command, 1)
            return ""
        if command.strip() == "reboot":
            self.device.rebooted = True
        return ""

    def exists(self, path: str, timeout: float) -> bool:
        self._check(f"test -e {path}")
        return self.device.exists(path)

    def read_file(self, path: str) -> bytes:
        self._check(f"cat {path}")
        if path in self.device.fail_reads:
            raise TransientIOError(f"Read failed for {path}")
        if path not in self.device.files:
            raise RemoteFileNotFoundError(path)
        return self.device.files[path]

    def write_file(self, path: str, data: bytes) -> None:
        self._check(f"cat > {path}")
        if path in self.device.fail_writes:
            raise CommandFailedError(f"cat > {path}", 1, "Permission denied")
        parent = posixpath.dirname(path)
        if parent not in ("", "/") and parent not in self.device._all_dirs():
            raise CommandFailedError(f"cat > {path}", 1, "No such file or directory")
        self.device.files[path] = bytes(data)

    def delete_file(self, path: str) -> bool:
        self._check(f"rm -f {path}")
        if path in self.device.fail_deletes:
            raise CommandFailedError(f"rm -f {path}", 1, "Operation not permitted")
        return self.device.files.pop(path, None) is not None

    def mkdir(self, path: str) -> None:
        self._check(f"mkdir -p {path}")
        self.device.mkdir(path)

    def chmod(self, path: str, mode: int) -> None:
        self._check(f"chmod {mode:o} {path}")
        if not self.device.exists(path):
            raise CommandFailedError(f"chmod {mode:o} {path}", 1, "No such file or directory")
        self.device.modes[path] = mode

    def close(self) -> None:
        self.closed = True


class InMemoryShellConnector:
    """``ShellConnector`` handing out channels onto in-memory devices."""

    def __init__(self, transport: InMemoryTransport, *, failures: int = 0) -> None:
        self.transport = transport
        self.failures = failures
        self.available = True
        self.channels: List[InMemoryShellChannel] = []

    def open(self, descriptor: DeviceDescriptor) -> InMemoryShellChannel:
        if not self.available:
            raise ShellUnavailableError("Shell channel disabled")
        if self.failures > 0:
            self.failures -= 1
            raise ShellUnavailableError("Connection refused")
        device = self.transport.devices.get(descriptor.device_id)
        if device is None:
            raise ShellUnavailableError(f"No shell for {descriptor.device_id}")
        channel = InMemoryShellChannel(device)
        self.channels.append(channel)
        return channel


DRY_RUN_DEVICE_ID = "dry-run-device"


def simulated_device(device_id: str = DRY_RUN_DEVICE_ID, version: str = "16.3.1") -> InMemoryDevice:
    """Unactivated relocated-layout device used when settings ask for a dry run."""
    device = InMemoryDevice(
        device_id=device_id,
        attributes={
            "ProductVersion": version,
            "ProductType": "iPhone12,1",
            "DeviceName": "Simulated device",
            "ActivationState": "Unactivated",
        },
        kernel_ident="Darwin Kernel Version 22.3.0 (simulated)",
    )
    device.put(RELOCATED_MARKERS[-1], b"#!/bin/sh\n")
    return device


__all__ = [
    "DRY_RUN_DEVICE_ID",
    "InMemoryDevice",
    "InMemoryHandle",
    "InMemoryShellChannel",
    "InMemoryShellConnector",
    "InMemoryTransport",
    "simulated_device",
]
