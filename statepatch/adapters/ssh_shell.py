"""Shell channel over the system ``ssh`` client.

Each operation is one ``ssh`` invocation with a bounded timeout; password
authentication goes through ``sshpass -e`` so the secret never appears on
the command line. File contents travel over stdin/stdout as raw bytes.

Dependencies:
    - ``ssh`` (OpenSSH client) and, for password auth, ``sshpass`` on PATH.
    - ``statepatch.adapters.command.run_cmd`` for bounded execution.

Call context:
    - ``SessionManager`` opens a channel at connect time and on
      ``ensure_shell``; all other components reach it through ``Session``.
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from typing import List, Optional

from statepatch.adapters.command import CmdResult, Runner, run_cmd
from statepatch.domain.device import DeviceDescriptor
from statepatch.domain.errors import (
    CommandFailedError,
    RemoteFileNotFoundError,
    ShellUnavailableError,
    TransientIOError,
    TransportError,
)
from statepatch.domain.ports import ShellChannel, ShellConnector

_log = logging.getLogger(__name__)

SSH_CONNECTION_FAILED = 255
# sshpass exit codes for a rejected password and an unknown host key.
SSHPASS_AUTH_CODES = (5, 6)
NOT_FOUND_EXIT = 44
TEMP_SUFFIX = ".statepatch-tmp"


@dataclass
class SshConfig:
    """Connection parameters for the device shell."""

    host: str = "localhost"
    port: int = 22
    username: str = "root"
    password: Optional[str] = "alpine"
    connect_timeout_s: int = 30
    command_timeout_s: float = 60.0
    strict_host_keys: bool = False
    ssh_binary: str = "ssh"
    sshpass_binary: str = "sshpass"


class SshShellChannel(ShellChannel):
    """One logical shell channel; every call is a separate ``ssh`` exec."""

    def __init__(self, config: SshConfig, runner: Runner = run_cmd) -> None:
        self.config = config
        self._runner = runner
        self._closed = False

    # ---- argv construction ----
    def _argv(self, command: str) -> List[str]:
        cfg = self.config
        argv: List[str] = []
        if cfg.password:
            argv += [cfg.sshpass_binary, "-e"]
        argv += [
            cfg.ssh_binary,
            "-p",
            str(cfg.port),
            "-o",
            f"ConnectTimeout={int(cfg.connect_timeout_s)}",
            "-o",
            "LogLevel=ERROR",
        ]
        if not cfg.strict_host_keys:
            argv += ["-o", "StrictHostKeyChecking=no", "-o", "UserKnownHostsFile=/dev/null"]
        if not cfg.password:
            argv += ["-o", "BatchMode=yes"]
        argv += [f"{cfg.username}@{cfg.host}", command]
        return argv

    def _exec(
        self, command: str, *, timeout: Optional[float] = None, data: Optional[bytes] = None
    ) -> CmdResult:
        if self._closed:
            raise ShellUnavailableError("Shell channel is closed", context=command)
        env = {"SSHPASS": self.config.password} if self.config.password else None
        result = self._runner(
            self._argv(command),
            timeout=timeout or self.config.command_timeout_s,
            input_bytes=data,
            env=env,
        )
        if result.returncode == SSH_CONNECTION_FAILED:
            raise TransientIOError(
                f"SSH connection to {self.config.host}:{self.config.port} failed: "
                f"{result.error_text or 'no detail'}",
                context=command,
            )
        if self.config.password and result.returncode in SSHPASS_AUTH_CODES:
            raise ShellUnavailableError(
                f"SSH authentication rejected by {self.config.host}", context=command
            )
        return result

    # ---- ShellChannel ----
    def run(self, command: str, timeout: float) -> str:
        result = self._exec(command, timeout=timeout)
        if not result.ok:
            raise CommandFailedError(command, result.returncode, result.error_text)
        return result.text

    def exists(self, path: str, timeout: float) -> bool:
        command = f"test -e {shlex.quote(path)}"
        result = self._exec(command, timeout=timeout)
        if result.returncode in (0, 1):
            return result.returncode == 0
        raise CommandFailedError(command, result.returncode, result.error_text)

    def read_file(self, path: str) -> bytes:
        quoted = shlex.quote(path)
        command = f"test -e {quoted} || exit {NOT_FOUND_EXIT}; cat {quoted}"
        result = self._exec(command)
        if result.returncode == NOT_FOUND_EXIT:
            raise RemoteFileNotFoundError(path)
        if not result.ok:
            raise CommandFailedError(command, result.returncode, result.error_text)
        return result.stdout

    def write_file(self, path: str, data: bytes) -> None:
        quoted = shlex.quote(path)
        temp = shlex.quote(path + TEMP_SUFFIX)
        # A failed write must not leave the temporary file behind.
        command = f"cat > {temp} && mv -f {temp} {quoted} || {{ rm -f {temp}; exit 1; }}"
        result = self._exec(command, data=data)
        if not result.ok:
            raise CommandFailedError(command, result.returncode, result.error_text)

    def delete_file(self, path: str) -> bool:
        quoted = shlex.quote(path)
        command = f"if [ -e {quoted} ]; then rm -f {quoted} && echo removed; fi"
        result = self._exec(command)
        if not result.ok:
            raise CommandFailedError(command, result.returncode, result.error_text)
        return "removed" in result.text

    def mkdir(self, path: str) -> None:
        self.run(f"mkdir -p {shlex.quote(path)}", self.config.command_timeout_s)

    def chmod(self, path: str, mode: int) -> None:
        self.run(f"chmod {mode:o} {shlex.quote(path)}", self.config.command_timeout_s)

    def close(self) -> None:
        self._closed = True


class SshShellConnector(ShellConnector):
    """Opens ``SshShellChannel`` instances and checks them with a test command."""

    def __init__(self, config: Optional[SshConfig] = None, runner: Runner = run_cmd) -> None:
        self.config = config or SshConfig()
        self._runner = runner

    def open(self, descriptor: DeviceDescriptor) -> SshShellChannel:
        """Return a verified channel.

        Raises:
            ShellUnavailableError: The host is unreachable or rejects login.
        """
        cfg = self.config
        _log.info(
            "Connecting shell for %s via %s@%s:%s",
            descriptor.device_id,
            cfg.username,
            cfg.host,
            cfg.port,
        )
        channel = SshShellChannel(cfg, runner=self._runner)
        try:
            reply = channel.run("echo 'Connection test'", cfg.connect_timeout_s)
        except TransportError as exc:
            channel.close()
            raise ShellUnavailableError(
                f"Shell channel unavailable: {exc}", context=f"{cfg.host}:{cfg.port}"
            ) from exc
        _log.debug("Connection test result: %s", reply.strip())
        return channel


__all__ = ["SshConfig", "SshShellChannel", "SshShellConnector"]
