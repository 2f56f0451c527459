"""Domain-level error types for use-case and adapter mapping.

This module is the home for shared errors that must cross layer boundaries
without leaking library-specific exception details. Adapters translate their
transport library failures into the ``TransportError`` family below; use cases
translate those into ``UseCaseError`` codes (see
``statepatch.usecases.error_mapping``) or into a ``MutationResult`` cause.
"""

from __future__ import annotations

from typing import Optional


# ---- Cause codes ----
DEVICE_NOT_FOUND = "DEVICE_NOT_FOUND"
HANDSHAKE_REJECTED = "HANDSHAKE_REJECTED"
TRANSIENT_IO_FAILURE = "TRANSIENT_IO_FAILURE"
INVALID_SESSION = "INVALID_SESSION"
SHELL_UNAVAILABLE = "SHELL_UNAVAILABLE"
TOOL_UNAVAILABLE = "TOOL_UNAVAILABLE"
VERSION_UNPARSABLE = "VERSION_UNPARSABLE"
VARIANT_INDETERMINATE = "VARIANT_INDETERMINATE"
ARTIFACT_MISSING = "ARTIFACT_MISSING"
PARTIAL_TRANSFER_FAILURE = "PARTIAL_TRANSFER_FAILURE"
VERIFICATION_FAILED = "VERIFICATION_FAILED"
SNAPSHOT_UNAVAILABLE = "SNAPSHOT_UNAVAILABLE"
SNAPSHOT_NOT_FOUND = "SNAPSHOT_NOT_FOUND"
SNAPSHOT_DEVICE_MISMATCH = "SNAPSHOT_DEVICE_MISMATCH"
DEVICE_ALREADY_ACTIVATED = "DEVICE_ALREADY_ACTIVATED"
CANCELLED = "CANCELLED"
UNEXPECTED_ERROR = "UNEXPECTED_ERROR"

RETRYABLE_CODES = frozenset({TRANSIENT_IO_FAILURE, HANDSHAKE_REJECTED, INVALID_SESSION})


class TransportError(RuntimeError):
    """Base class for failures raised by device transport adapters."""

    code = TRANSIENT_IO_FAILURE

    def __init__(self, message: str, *, context: Optional[str] = None) -> None:
        super().__init__(message)
        self.context = context


class DeviceNotFoundError(TransportError):
    """The device is absent; retrying does not help."""

    code = DEVICE_NOT_FOUND


class HandshakeRejectedError(TransportError):
    """The device is present but does not trust or pair with this host."""

    code = HANDSHAKE_REJECTED


class TransientIOError(TransportError):
    """Timeout or connectivity failure worth retrying."""

    code = TRANSIENT_IO_FAILURE


class InvalidSessionError(TransportError):
    """A session object exists but cannot be used."""

    code = INVALID_SESSION


class ShellUnavailableError(TransportError):
    """An operation needs the shell channel but none is attached."""

    code = SHELL_UNAVAILABLE


class ToolUnavailableError(TransportError):
    """A host-side helper executable is not installed."""

    code = TOOL_UNAVAILABLE


class RemoteFileNotFoundError(TransportError):
    """A remote path does not exist."""

    def __init__(self, path: str, *, context: Optional[str] = None) -> None:
        super().__init__(f"Remote path not found: {path}", context=context)
        self.path = path


class CommandFailedError(TransportError):
    """A remote command exited with a non-zero status."""

    def __init__(
        self,
        command: str,
        exit_status: int,
        stderr: str = "",
        *,
        context: Optional[str] = None,
    ) -> None:
        detail = stderr.strip()
        message = f"Command exited with {exit_status}: {command}"
        if detail:
            message = f"{message} ({detail[:200]})"
        super().__init__(message, context=context)
        self.command = command
        self.exit_status = exit_status
        self.stderr = stderr


__all__ = [
    "ARTIFACT_MISSING",
    "CANCELLED",
    "CommandFailedError",
    "DEVICE_ALREADY_ACTIVATED",
    "DEVICE_NOT_FOUND",
    "DeviceNotFoundError",
    "HANDSHAKE_REJECTED",
    "HandshakeRejectedError",
    "INVALID_SESSION",
    "InvalidSessionError",
    "PARTIAL_TRANSFER_FAILURE",
    "RETRYABLE_CODES",
    "RemoteFileNotFoundError",
    "SHELL_UNAVAILABLE",
    "SNAPSHOT_DEVICE_MISMATCH",
    "SNAPSHOT_NOT_FOUND",
    "SNAPSHOT_UNAVAILABLE",
    "ShellUnavailableError",
    "TOOL_UNAVAILABLE",
    "TRANSIENT_IO_FAILURE",
    "ToolUnavailableError",
    "TransientIOError",
    "TransportError",
    "UNEXPECTED_ERROR",
    "VARIANT_INDETERMINATE",
    "VERIFICATION_FAILED",
    "VERSION_UNPARSABLE",
]
