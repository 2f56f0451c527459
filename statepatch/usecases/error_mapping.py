"""Translate adapter errors into user-facing UseCaseError instances."""

from __future__ import annotations

from typing import Optional, Type

from statepatch.adapters.api_errors import (
    ApiClientError,
    ApiError,
    ApiServerError,
    ApiTimeoutError,
)
from statepatch.domain import errors as E
from statepatch.domain.ports import UseCaseError

_TRANSPORT_MESSAGES = {
    E.DEVICE_NOT_FOUND: "Device not found. Check the cable and that the device is unlocked.",
    E.HANDSHAKE_REJECTED: "Device does not trust this computer. Accept the trust prompt and retry.",
    E.TRANSIENT_IO_FAILURE: "Device communication failed or timed out.",
    E.INVALID_SESSION: "Device session is not usable.",
    E.SHELL_UNAVAILABLE: "Shell channel unavailable. Check host, port and credentials.",
    E.TOOL_UNAVAILABLE: "A required host tool is not installed.",
}


def map_transport_error(
    exc: Exception,
    *,
    default_code: str = E.UNEXPECTED_ERROR,
    default_message: Optional[str] = None,
    error_cls: Type[UseCaseError] = UseCaseError,
) -> UseCaseError:
    """Map transport exceptions to stable codes, keeping the low-level text.

    ``meta["detail"]`` always carries ``str(exc)`` so callers can show the
    original message next to the friendly one.
    """
    if isinstance(exc, UseCaseError):
        return exc
    detail = str(exc) or exc.__class__.__name__
    if isinstance(exc, E.TransportError):
        code = exc.code
        base = _TRANSPORT_MESSAGES.get(code, "Device operation failed.")
        meta = {"detail": detail, "context": exc.context}
        return error_cls(code, _compose_error_message(base, detail), meta=meta)
    if isinstance(exc, ApiError):
        mapped = map_api_error(exc, default_code=default_code)
        return error_cls(mapped.code, mapped.message, meta={"detail": detail})
    message = default_message or detail or "Unexpected error."
    return error_cls(default_code, message, meta={"detail": detail})


def map_api_error(
    exc: Exception,
    *,
    default_code: str,
    default_message: Optional[str] = None,
) -> UseCaseError:
    """Map artifact-server exceptions to stable UseCaseError codes."""
    if isinstance(exc, UseCaseError):
        return exc
    if isinstance(exc, ApiTimeoutError):
        return UseCaseError(E.TRANSIENT_IO_FAILURE, "Artifact server timed out. Check connection.")
    if isinstance(exc, ApiClientError):
        status = exc.status or 0
        hint = exc.hint
        if status == 404:
            return UseCaseError(
                E.ARTIFACT_MISSING, _compose_error_message("Artifact not offered", hint)
            )
        if status in (401, 403):
            return UseCaseError("AUTH_FAILED", "Auth failed / API key invalid.")
        label = f"Request failed (HTTP {status})" if status else "Request failed"
        return UseCaseError("REQUEST_FAILED", _compose_error_message(label, hint))
    if isinstance(exc, ApiServerError):
        return UseCaseError("SERVER_ERROR", "Artifact server error, try again.")
    if isinstance(exc, ApiError):
        return UseCaseError("API_ERROR", str(exc))

    message = default_message or str(exc) or "Unexpected error."
    return UseCaseError(default_code, message)


def _compose_error_message(base: str, hint: Optional[str]) -> str:
    hint_text = (hint or "").strip()
    if hint_text:
        return f"{base.rstrip('.')}: {hint_text}"
    if base.endswith("."):
        return base
    return f"{base}."


__all__ = ["map_api_error", "map_transport_error"]
