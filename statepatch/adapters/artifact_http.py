"""HTTP adapter implementing ``ArtifactSourcePort``.

Replacement artifacts are fetched one logical name at a time from an
operator-run artifact server:

    GET {base_url}/artifacts/{logical_name}?device_id=...&version=...

Dependencies:
    - ``RetryingSession``/``HttpConfig`` for shared HTTP policy.
    - ``api_errors.error_for_response`` for status-to-error conversion.

Call context:
    - Built by ``statepatch.app.composition`` when an artifact base URL is
      configured; consumed by ``MutationOrchestrator`` during
      ``ACQUIRING_ARTIFACTS``.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict, Mapping, Optional, Sequence

from statepatch.adapters.api_errors import ApiClientError, ApiError, error_for_response
from statepatch.adapters.http_client import HttpConfig, RetryingSession
from statepatch.domain.device import DeviceDescriptor
from statepatch.domain.ports import ArtifactSourcePort

_log = logging.getLogger(__name__)

DIGEST_HEADER = "X-Content-SHA256"
# Statuses that invalidate every request, not just one artifact.
_FATAL_STATUSES = (401, 403)


class HttpArtifactSource(ArtifactSourcePort):
    """Artifact source backed by a REST endpoint."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        request_timeout_s: int = 10,
        download_timeout_s: int = 60,
        retries: int = 2,
        session: Optional[RetryingSession] = None,
    ) -> None:
        """Create the adapter.

        Args:
            base_url: Server root, with or without a trailing slash.
            api_key: Optional value for the ``X-API-Key`` header.
            session: Pre-built session (tests inject a stub here).

        Raises:
            ValueError: If ``base_url`` is empty.
        """
        if not base_url or not base_url.strip():
            raise ValueError("HttpArtifactSource requires a base URL")
        self.base_url = base_url.strip().rstrip("/")
        self.cfg = HttpConfig(
            request_timeout_s=request_timeout_s,
            download_timeout_s=download_timeout_s,
            retries=retries,
        )
        self.session = session or RetryingSession(api_key, self.cfg)
        self.failures: Dict[str, ApiError] = {}

    def for_artifacts(
        self, descriptor: DeviceDescriptor, names: Sequence[str]
    ) -> Mapping[str, bytes]:
        """Fetch every requested artifact; failed names are omitted.

        Raises:
            ApiClientError: On 401/403, which no other name would escape.
        """
        self.failures = {}
        result: Dict[str, bytes] = {}
        for name in names:
            try:
                data = self.fetch(descriptor, name)
            except ApiClientError as exc:
                if exc.status in _FATAL_STATUSES:
                    raise
                self.failures[name] = exc
                if exc.status == 404:
                    _log.info("Artifact %s not offered for %s", name, descriptor.device_id)
                else:
                    _log.warning("Artifact %s rejected: %s", name, exc)
                continue
            except ApiError as exc:
                self.failures[name] = exc
                _log.warning("Artifact %s unavailable: %s", name, exc)
                continue
            if data is not None:
                result[name] = data
        return result

    def fetch(self, descriptor: DeviceDescriptor, name: str) -> Optional[bytes]:
        """Download one artifact.

        Returns:
            The artifact bytes, or ``None`` when the body is empty or fails
            the digest check.

        Raises:
            ApiError: For transport failures and non-2xx responses.
        """
        url = f"{self.base_url}/artifacts/{name}"
        ctx = f"fetch_artifact[{name}]"
        resp = self.session.get(
            url,
            params=self._params(descriptor),
            accept="application/octet-stream",
            timeout=self.cfg.download_timeout_s,
        )
        if not 200 <= resp.status_code < 300:
            raise error_for_response(resp, ctx)
        data = resp.content or b""
        if not data:
            _log.warning("Artifact %s returned an empty body", name)
            return None
        expected = (resp.headers or {}).get(DIGEST_HEADER)
        if expected and hashlib.sha256(data).hexdigest() != expected.strip().lower():
            _log.warning("Artifact %s failed digest check", name)
            return None
        return data

    @staticmethod
    def _params(descriptor: DeviceDescriptor) -> Dict[str, Any]:
        raw = {
            "device_id": descriptor.device_id,
            "version": descriptor.version,
            "hardware_class": descriptor.hardware_class,
            "serial": descriptor.serial,
            "chip_id": descriptor.chip_id,
            "build": descriptor.build_version,
        }
        return {key: value for key, value in raw.items() if value}

    def close(self) -> None:
        self.session.close()


__all__ = ["DIGEST_HEADER", "HttpArtifactSource"]
