"""USB lockdown transport backed by the libimobiledevice command-line tools.

Narrow channel only: device enumeration (``idevice_id``), pairing validation
(``idevicepair``), attribute reads (``ideviceinfo``) and existence probes over
the file-conduit service (``afcclient``). No command execution is possible
through this channel.

Call context:
    - ``SessionManager`` calls ``open`` once per connect attempt and owns the
      returned handle until teardown.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from statepatch.adapters.command import CmdResult, Runner, run_cmd
from statepatch.domain.errors import (
    DeviceNotFoundError,
    HandshakeRejectedError,
    InvalidSessionError,
    TransientIOError,
)

_log = logging.getLogger(__name__)

_NOT_FOUND_HINTS = ("no device found", "device not found")
_UNREACHABLE_HINTS = ("could not connect", "lockdownd", "timed out", "timeout")


@dataclass
class LockdownToolsConfig:
    """Executable names and the per-call timeout for the lockdown tools."""

    id_binary: str = "idevice_id"
    pair_binary: str = "idevicepair"
    info_binary: str = "ideviceinfo"
    afc_binary: str = "afcclient"
    timeout_s: float = 15.0


def _output(result: CmdResult) -> str:
    return f"{result.text}\n{result.error_text}".strip()


def _raise_for_device(result: CmdResult, device_id: str, action: str) -> None:
    """Map a failed tool call to the transport error family."""
    text = _output(result)
    lower = text.lower()
    if any(hint in lower for hint in _NOT_FOUND_HINTS):
        raise DeviceNotFoundError(f"Device {device_id} not found", context=action)
    raise TransientIOError(
        f"{action} failed for {device_id} (exit {result.returncode}): {text[:200]}",
        context=action,
    )


class LockdownHandle:
    """Handle for one opened device; closed handles reject every call."""

    def __init__(self, device_id: str, config: LockdownToolsConfig, runner: Runner) -> None:
        self.device_id = device_id
        self.config = config
        self._runner = runner
        self._paired = False
        self._closed = False
        self.label: Optional[str] = None

    def _run(self, argv: List[str]) -> CmdResult:
        if self._closed:
            raise InvalidSessionError(f"Handle for {self.device_id} is closed")
        return self._runner(argv, timeout=self.config.timeout_s)

    def handshake(self, label: str) -> None:
        """Validate the pairing record (the tools reuse the host pairing).

        Raises:
            DeviceNotFoundError: The device disappeared.
            HandshakeRejectedError: The device does not trust this host.
        """
        self.label = label
        result = self._run([self.config.pair_binary, "-u", self.device_id, "validate"])
        if result.ok:
            self._paired = True
            _log.debug("Pairing validated for %s (client %s)", self.device_id, label)
            return
        text = _output(result)
        if any(hint in text.lower() for hint in _NOT_FOUND_HINTS):
            raise DeviceNotFoundError(f"Device {self.device_id} not found", context="handshake")
        raise HandshakeRejectedError(
            f"Device {self.device_id} rejected pairing: {text[:200] or 'no detail'}",
            context="handshake",
        )

    def read_attribute(self, key: str, domain: Optional[str] = None) -> Any:
        argv = [self.config.info_binary, "-u", self.device_id]
        if domain:
            argv += ["-q", domain]
        argv += ["-k", key]
        result = self._run(argv)
        if not result.ok:
            _raise_for_device(result, self.device_id, f"read_attribute[{key}]")
        value = result.text.strip()
        return value or None

    def probe(self, path: str) -> bool:
        result = self._run([self.config.afc_binary, "-u", self.device_id, "info", path])
        if result.ok:
            return True
        lower = _output(result).lower()
        if any(hint in lower for hint in _NOT_FOUND_HINTS + _UNREACHABLE_HINTS):
            _raise_for_device(result, self.device_id, f"probe[{path}]")
        return False

    @property
    def is_valid(self) -> bool:
        return self._paired and not self._closed

    def close(self) -> None:
        self._closed = True


class UsbLockdownTransport:
    """``DeviceTransportPort`` implementation over libimobiledevice tools."""

    def __init__(
        self, config: Optional[LockdownToolsConfig] = None, runner: Runner = run_cmd
    ) -> None:
        self.config = config or LockdownToolsConfig()
        self._runner = runner

    def list_devices(self) -> List[str]:
        result = self._runner([self.config.id_binary, "-l"], timeout=self.config.timeout_s)
        if not result.ok:
            raise TransientIOError(
                f"Device enumeration failed (exit {result.returncode}): {result.error_text}",
                context="list_devices",
            )
        return [line.strip() for line in result.text.splitlines() if line.strip()]

    def open(self, device_id: str) -> LockdownHandle:
        devices = self.list_devices()
        if device_id not in devices:
            raise DeviceNotFoundError(f"Device {device_id} not found", context="open")
        return LockdownHandle(device_id, self.config, self._runner)


__all__ = ["LockdownHandle", "LockdownToolsConfig", "UsbLockdownTransport"]
