"""Session lifecycle: connect with retries, shell attachment and teardown.

``SessionManager`` exclusively owns the open device handle. Callers receive a
``Session`` value from ``connect`` and thread it through detection, snapshot
and mutation calls; every transport operation goes through the session.
There is no module-level connection state.
"""

from __future__ import annotations

import logging
import shlex
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from statepatch.domain import errors as E
from statepatch.domain.device import ATTRIBUTE_KEYS, DeviceDescriptor
from statepatch.domain.errors import (
    InvalidSessionError,
    ShellUnavailableError,
    TransientIOError,
    TransportError,
)
from statepatch.domain.paths import RESPRING_SERVICE
from statepatch.domain.ports import (
    DeviceHandle,
    DeviceTransportPort,
    SessionError,
    ShellChannel,
    ShellConnector,
)
from statepatch.usecases.error_mapping import map_transport_error

_log = logging.getLogger(__name__)

DEFAULT_CLIENT_LABEL = "statepatch"
# Attributes without which a descriptor is useless; the rest are best-effort.
_CRITICAL_ATTRIBUTES = ("ProductVersion",)


def _noop(*_: object, **__: object) -> None:
    """Default no-op callback used for hooks."""


@dataclass
class SessionHooks:
    """Optional callbacks for connect/teardown notifications."""

    on_connected: Callable[[DeviceDescriptor], None] = _noop
    on_disconnected: Callable[[DeviceDescriptor], None] = _noop

    def __post_init__(self) -> None:
        self.on_connected = self.on_connected or _noop
        self.on_disconnected = self.on_disconnected or _noop


class Session:
    """Open, authenticated channel to one device.

    Created only by ``SessionManager``. The narrow channel (attributes and
    existence probes) is always present; the shell channel (commands and
    file transfer) is optional and attached by the manager.
    """

    def __init__(
        self,
        handle: DeviceHandle,
        descriptor: DeviceDescriptor,
        *,
        command_timeout_s: float = 60.0,
    ) -> None:
        self._handle = handle
        self._shell: Optional[ShellChannel] = None
        self._open = True
        self.descriptor = descriptor
        self.command_timeout_s = command_timeout_s

    # ---- state ----
    @property
    def device_id(self) -> str:
        return self.descriptor.device_id

    @property
    def is_open(self) -> bool:
        return self._open and bool(self._handle.is_valid)

    @property
    def has_shell(self) -> bool:
        return self._open and self._shell is not None

    def _require_open(self) -> DeviceHandle:
        if not self._open:
            raise InvalidSessionError(f"Session for {self.device_id} is closed")
        return self._handle

    def _require_shell(self) -> ShellChannel:
        self._require_open()
        if self._shell is None:
            raise ShellUnavailableError(f"No shell channel attached for {self.device_id}")
        return self._shell

    # ---- narrow channel ----
    def read_attribute(self, key: str, domain: Optional[str] = None) -> Any:
        return self._require_open().read_attribute(key, domain)

    def probe(self, path: str) -> bool:
        return bool(self._require_open().probe(path))

    def refresh_descriptor(self) -> DeviceDescriptor:
        """Re-read identifying attributes and replace ``descriptor``."""
        attrs = _read_attributes(self._require_open())
        self.descriptor = DeviceDescriptor.from_attributes(self.device_id, attrs)
        return self.descriptor

    # ---- shell channel ----
    def exists(self, path: str) -> bool:
        return bool(self._require_shell().exists(path, self.command_timeout_s))

    def read_file(self, path: str) -> bytes:
        return self._require_shell().read_file(path)

    def write_file(self, path: str, data: bytes) -> None:
        self._require_shell().write_file(path, data)

    def delete_file(self, path: str) -> bool:
        return bool(self._require_shell().delete_file(path))

    def make_dirs(self, path: str) -> None:
        """Create ``path`` and its parents; an existing directory is fine."""
        self._require_shell().mkdir(path)

    def chmod(self, path: str, mode: int) -> None:
        self._require_shell().chmod(path, mode)

    def chmod_tree(self, path: str, mode: int) -> None:
        self.run(f"chmod -R {mode:o} {shlex.quote(path)}")

    def chown_tree(self, path: str, owner: str) -> None:
        self.run(f"chown -R {shlex.quote(owner)} {shlex.quote(path)}")

    def run(self, command: str, timeout: Optional[float] = None) -> str:
        return self._require_shell().run(command, timeout or self.command_timeout_s)

    def kill_process(self, name: str) -> None:
        """Terminate every process called ``name``; nothing running is fine."""
        self.run(f"killall -9 {shlex.quote(name)} 2>/dev/null || true")

    def respring(self) -> None:
        self.kill_process(RESPRING_SERVICE)

    def reboot(self) -> None:
        """Send the reboot command and detach the shell channel."""
        try:
            self.run("reboot")
        except TransientIOError:
            # The connection usually drops before the command returns.
            _log.debug("Shell dropped during reboot of %s", self.device_id)
        finally:
            self._detach_shell()

    # ---- owned by SessionManager ----
    def _attach_shell(self, channel: ShellChannel) -> None:
        self._detach_shell()
        self._shell = channel

    def _detach_shell(self) -> None:
        shell, self._shell = self._shell, None
        if shell is None:
            return
        try:
            shell.close()
        except Exception as exc:
            _log.warning("Error closing shell for %s: %s", self.device_id, exc)

    def _teardown(self) -> None:
        self._detach_shell()
        self._open = False
        _close_quietly(self._handle)


def _close_quietly(handle: Optional[DeviceHandle]) -> None:
    if handle is None:
        return
    try:
        handle.close()
    except Exception as exc:
        _log.warning("Error closing device handle: %s", exc)


def _read_attributes(handle: DeviceHandle) -> Dict[str, Any]:
    attrs: Dict[str, Any] = {}
    for key in ATTRIBUTE_KEYS:
        try:
            attrs[key] = handle.read_attribute(key)
        except TransportError as exc:
            if key in _CRITICAL_ATTRIBUTES:
                raise
            _log.debug("Attribute %s unavailable: %s", key, exc)
            attrs[key] = None
    return attrs


class SessionManager:
    """Opens, retries and tears down device sessions (one at a time)."""

    def __init__(
        self,
        transport: DeviceTransportPort,
        *,
        shell_connector: Optional[ShellConnector] = None,
        hooks: Optional[SessionHooks] = None,
        connect_attempts: int = 3,
        retry_delay_s: float = 0.5,
        command_timeout_s: float = 60.0,
        client_label: str = DEFAULT_CLIENT_LABEL,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if connect_attempts < 1:
            raise ValueError("connect_attempts must be at least 1")
        self.transport = transport
        self.shell_connector = shell_connector
        self.hooks = hooks or SessionHooks()
        self.connect_attempts = connect_attempts
        self.retry_delay_s = retry_delay_s
        self.command_timeout_s = command_timeout_s
        self.client_label = client_label
        self._sleep = sleep
        self._session: Optional[Session] = None

    @property
    def current(self) -> Optional[Session]:
        return self._session

    def list_devices(self) -> List[str]:
        try:
            return list(self.transport.list_devices())
        except Exception as exc:
            raise map_transport_error(exc, error_cls=SessionError) from exc

    def connect(self, device_id: str) -> Session:
        """Open a session with bounded retries.

        Any session already open is torn down first. Each failed attempt
        closes its partially opened handle before the next one.

        Raises:
            SessionError: With the code of the last failure
                (``DEVICE_NOT_FOUND`` is never retried).
        """
        if not device_id or not device_id.strip():
            raise SessionError(E.DEVICE_NOT_FOUND, "No device identifier given.")
        if self._session is not None:
            _log.info("Closing existing session for %s before reconnecting", self._session.device_id)
            self.disconnect()

        last_exc: Optional[Exception] = None
        for attempt in range(1, self.connect_attempts + 1):
            handle: Optional[DeviceHandle] = None
            try:
                handle = self.transport.open(device_id)
                handle.handshake(self.client_label)
                if not handle.is_valid:
                    raise InvalidSessionError(
                        f"Session for {device_id} is not usable after handshake"
                    )
                descriptor = DeviceDescriptor.from_attributes(device_id, _read_attributes(handle))
            except TransportError as exc:
                _close_quietly(handle)
                last_exc = exc
                _log.warning(
                    "Connect attempt %d/%d to %s failed (%s): %s",
                    attempt,
                    self.connect_attempts,
                    device_id,
                    exc.code,
                    exc,
                )
                if exc.code not in E.RETRYABLE_CODES:
                    break
                if attempt < self.connect_attempts:
                    self._sleep(self.retry_delay_s)
                continue
            except Exception as exc:
                _close_quietly(handle)
                _log.exception("Unexpected error connecting to %s", device_id)
                raise map_transport_error(exc, error_cls=SessionError) from exc

            session = Session(handle, descriptor, command_timeout_s=self.command_timeout_s)
            self._session = session
            _log.info(
                "Connected to %s (%s, version %s)",
                device_id,
                descriptor.display_name,
                descriptor.version or "?",
            )
            if self.shell_connector is not None:
                self._try_attach_shell(session)
            self.hooks.on_connected(descriptor)
            return session

        assert last_exc is not None
        _log.error("Could not connect to %s: %s", device_id, last_exc)
        raise map_transport_error(last_exc, error_cls=SessionError) from last_exc

    def disconnect(self) -> None:
        """Tear down the current session; a no-op when none is open."""
        session, self._session = self._session, None
        if session is None:
            return
        session._teardown()
        _log.info("Disconnected from %s", session.device_id)
        self.hooks.on_disconnected(session.descriptor)

    def ensure_shell(self, session: Session) -> Session:
        """Make sure ``session`` has a shell channel attached.

        Raises:
            SessionError: ``SHELL_UNAVAILABLE`` when no connector is configured
                or every attempt failed; ``INVALID_SESSION`` for a closed session.
        """
        if session is not self._session or not session.is_open:
            raise SessionError(E.INVALID_SESSION, "Session is not open.")
        if session.has_shell:
            return session
        if self.shell_connector is None:
            raise SessionError(E.SHELL_UNAVAILABLE, "No shell channel configured.")

        last_exc: Optional[Exception] = None
        for attempt in range(1, self.connect_attempts + 1):
            try:
                session._attach_shell(self.shell_connector.open(session.descriptor))
                return session
            except TransportError as exc:
                last_exc = exc
                _log.warning(
                    "Shell attach attempt %d/%d failed: %s", attempt, self.connect_attempts, exc
                )
                if exc.code == E.TOOL_UNAVAILABLE:
                    break
                if attempt < self.connect_attempts:
                    self._sleep(self.retry_delay_s)
        assert last_exc is not None
        detail = str(last_exc)
        raise SessionError(
            E.SHELL_UNAVAILABLE,
            f"Shell channel unavailable: {detail}",
            meta={"detail": detail},
        ) from last_exc

    def _try_attach_shell(self, session: Session) -> None:
        try:
            session._attach_shell(self.shell_connector.open(session.descriptor))
        except TransportError as exc:
            _log.warning(
                "Shell channel not attached for %s; continuing narrow-only: %s",
                session.device_id,
                exc,
            )


__all__ = ["Session", "SessionHooks", "SessionManager"]
