"""Typed failures of the artifact server and their construction from responses."""

from __future__ import annotations

from typing import Any, Optional

# Keys an artifact server may use for a human-readable reason, best first.
_DETAIL_KEYS = ("detail", "hint", "message", "error")
_DETAIL_LIMIT = 200


class ApiError(RuntimeError):
    """Base class for artifact-server adapter failures.

    ``hint`` defaults to the reason found in ``payload``.
    """

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        hint: Optional[str] = None,
        payload: Any = None,
        context: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.hint = hint if hint is not None else error_detail(payload)
        self.payload = payload
        self.context = context


class ApiClientError(ApiError):
    """HTTP 4xx from the artifact server."""


class ApiServerError(ApiError):
    """HTTP 5xx from the artifact server."""


class ApiTimeoutError(ApiError):
    """Transport level timeout or connectivity failure."""


def read_error_payload(resp: Any) -> Any:
    """JSON body of an error response, else a text snippet, else ``None``."""
    try:
        return resp.json()
    except ValueError:
        return (getattr(resp, "text", "") or "")[:400] or None


def error_detail(payload: Any) -> Optional[str]:
    if isinstance(payload, dict):
        for key in _DETAIL_KEYS:
            value = payload.get(key)
            if value is not None and str(value).strip():
                return str(value).strip()[:_DETAIL_LIMIT]
        return None
    if isinstance(payload, str):
        return payload.strip()[:_DETAIL_LIMIT] or None
    return None


def error_for_response(resp: Any, context: str) -> ApiError:
    """Build the typed error for a non-2xx response."""
    status = resp.status_code
    payload = read_error_payload(resp)
    detail = error_detail(payload)
    message = f"{context}: {detail} (HTTP {status})" if detail else f"{context}: HTTP {status}"
    if 400 <= status < 500:
        cls = ApiClientError
    elif 500 <= status < 600:
        cls = ApiServerError
    else:
        cls = ApiError
    return cls(message, status=status, hint=detail, payload=payload, context=context)


__all__ = [
    "ApiClientError",
    "ApiError",
    "ApiServerError",
    "ApiTimeoutError",
    "error_detail",
    "error_for_response",
    "read_error_payload",
]
