"""Shared HTTP transport utilities for the artifact-server adapter.

This module wraps ``requests.Session`` so HTTP adapters share one timeout
policy, one retry loop and one API-key header construction.

Dependencies:
    - ``requests`` for network I/O.
    - ``statepatch.adapters.api_errors.ApiTimeoutError`` for typed transport
      failures.

Call context:
    - Constructed by ``statepatch.adapters.artifact_http.HttpArtifactSource``.
    - Used only inside adapter methods; use cases interact through ports.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from requests import exceptions as req_exc

from statepatch.adapters.api_errors import ApiTimeoutError


@dataclass
class HttpConfig:
    """Timeout and retry configuration for adapter HTTP calls.

    Attributes:
        request_timeout_s: Default timeout in seconds for JSON API calls.
        download_timeout_s: Default timeout in seconds for artifact downloads.
        retries: Number of retry attempts after the initial request.
    """

    request_timeout_s: int = 10
    download_timeout_s: int = 60
    retries: int = 2


class RetryingSession:
    """Shared requests wrapper with API-key headers and a retry loop.

    Transport-only: callers provide endpoint URLs and decide how to map
    non-2xx responses into typed errors.
    """

    def __init__(
        self,
        api_key: Optional[str],
        cfg: HttpConfig,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.session = session if session is not None else requests.Session()
        self.api_key = api_key
        self.cfg = cfg

    def _headers(self, accept: str = "application/json") -> Dict[str, str]:
        headers = {"Accept": accept}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    def get(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        accept: str = "application/json",
        timeout: Optional[int] = None,
    ) -> requests.Response:
        """Send a GET request with retries on timeout/connectivity failures.

        Returns:
            ``requests.Response`` from the first attempt that got an answer,
            whatever its status code.

        Raises:
            ApiTimeoutError: If all attempts fail with timeout/connection errors.
        """
        context = f"GET {url}"
        last_err: ApiTimeoutError | None = None
        for _ in range(self.cfg.retries + 1):
            try:
                return self.session.get(
                    url,
                    params=params,
                    headers=self._headers(accept=accept),
                    timeout=timeout or self.cfg.request_timeout_s,
                )
            except (req_exc.Timeout, req_exc.ConnectionError):
                last_err = ApiTimeoutError(f"Timeout contacting {url}", context=context)
        raise last_err

    def close(self) -> None:
        self.session.close()


__all__ = ["HttpConfig", "RetryingSession"]
