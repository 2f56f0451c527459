"""Host command execution shared by the subprocess-backed adapters.

Every call is bounded by a timeout. Output is kept as bytes because remote
file contents travel through stdout/stdin unchanged.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Sequence

from statepatch.domain.errors import ToolUnavailableError, TransientIOError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: bytes
    stderr: bytes

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def error_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace").strip()


Runner = Callable[..., CmdResult]


def fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(arg) for arg in argv)


def run_cmd(
    argv: Sequence[str],
    *,
    timeout: float,
    input_bytes: Optional[bytes] = None,
    env: Optional[Mapping[str, str]] = None,
) -> CmdResult:
    """Run a command and capture its output.

    Secrets belong in ``env``; the argv is logged at DEBUG.

    Raises:
        ToolUnavailableError: The executable is not installed.
        TransientIOError: The command did not finish within ``timeout``.
    """
    argv_list = list(argv)
    shown = fmt_argv(argv_list)
    logger.debug("CMD %s", shown)
    try:
        p = subprocess.run(
            argv_list,
            input=input_bytes,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=dict(os.environ, **(env or {})),
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise ToolUnavailableError(
            f"Required tool not found: {argv_list[0]}", context=shown
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise TransientIOError(
            f"Command timed out after {timeout:g}s: {argv_list[0]}", context=shown
        ) from exc

    if p.stderr:
        logger.debug("STDERR %s", p.stderr.decode("utf-8", errors="replace").strip())
    return CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout, stderr=p.stderr)


__all__ = ["CmdResult", "Runner", "fmt_argv", "run_cmd"]
