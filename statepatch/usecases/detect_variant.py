from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from statepatch.domain.variants import CATALOGUES, KERNEL_IDENT_COMMAND, SIGNATURES, Variant
from statepatch.usecases.session_manager import Session

_log = logging.getLogger(__name__)

CHANNEL_NARROW = "narrow"
CHANNEL_SHELL = "shell"
CHANNEL_SIGNATURE = "signature"


@dataclass(frozen=True)
class VariantDetection:
    """Detector verdict.

    ``conclusive`` is ``False`` for a negative that only the narrow channel
    produced; a later shell-backed probe may still find a variant.
    """

    variant: Variant
    marker: Optional[str] = None
    channel: Optional[str] = None
    conclusive: bool = True

    @property
    def detected(self) -> bool:
        return self.variant is not Variant.UNKNOWN


@dataclass
class VariantDetector:
    """Classify the device layout by probing marker catalogues.

    Read-only and safe to call repeatedly. The first marker that exists wins.
    """

    catalogues: Tuple[Tuple[Variant, Tuple[str, ...]], ...] = CATALOGUES
    signatures: Tuple[Tuple[str, Variant], ...] = SIGNATURES

    def __call__(self, session: Session) -> VariantDetection:
        return self.detect(session)

    def detect(self, session: Session) -> VariantDetection:
        hit = self._scan(session.probe, CHANNEL_NARROW)
        if hit is not None:
            return hit
        if not session.has_shell:
            _log.info(
                "No variant marker visible over the narrow channel for %s", session.device_id
            )
            return VariantDetection(Variant.UNKNOWN, conclusive=False)

        hit = self._scan(session.exists, CHANNEL_SHELL)
        if hit is not None:
            return hit
        hit = self._match_signature(session)
        if hit is not None:
            return hit
        _log.info("No variant marker found for %s", session.device_id)
        return VariantDetection(Variant.UNKNOWN, conclusive=True)

    def _scan(self, check, channel: str) -> Optional[VariantDetection]:
        for variant, markers in self.catalogues:
            for marker in markers:
                try:
                    present = check(marker)
                except Exception as exc:
                    _log.warning("Probe of %s over %s channel failed: %s", marker, channel, exc)
                    continue
                if present:
                    _log.info("Detected %s layout via %s (%s)", variant.value, marker, channel)
                    return VariantDetection(variant, marker=marker, channel=channel)
        return None

    def _match_signature(self, session: Session) -> Optional[VariantDetection]:
        try:
            ident = session.run(KERNEL_IDENT_COMMAND)
        except Exception as exc:
            _log.warning("Kernel identification failed: %s", exc)
            return None
        lowered = (ident or "").lower()
        for needle, variant in self.signatures:
            if needle in lowered:
                _log.info("Detected %s layout via kernel signature %r", variant.value, needle)
                return VariantDetection(variant, marker=needle, channel=CHANNEL_SIGNATURE)
        return None


__all__ = ["VariantDetection", "VariantDetector"]
