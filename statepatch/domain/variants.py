"""Device layout variants and the marker catalogues that identify them."""

from __future__ import annotations

from enum import Enum
from typing import Tuple


class Variant(str, Enum):
    """Mutually exclusive on-device filesystem layouts."""

    LEGACY = "legacy"
    RELOCATED = "relocated"
    UNKNOWN = "unknown"

    @classmethod
    def from_value(cls, value: object) -> "Variant":
        text = str(getattr(value, "value", value) or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return cls.UNKNOWN


# Ordered catalogues; any single marker may be missing depending on the tool
# that produced the layout, so each family lists several.
LEGACY_MARKERS: Tuple[str, ...] = (
    "/Applications/Cydia.app",
    "/Applications/Sileo.app",
    "/usr/bin/ssh",
    "/bin/bash",
    "/etc/apt",
    "/private/var/lib/apt",
)

RELOCATED_MARKERS: Tuple[str, ...] = (
    "/var/jb",
    "/var/jb/usr/bin/ssh",
    "/var/jb/Applications/Sileo.app",
    "/var/jb/usr/bin/apt",
    "/.installed_dopamine",
    "/.installed_palera1n",
    "/var/jb/prep_bootstrap.sh",
)

CATALOGUES: Tuple[Tuple[Variant, Tuple[str, ...]], ...] = (
    (Variant.LEGACY, LEGACY_MARKERS),
    (Variant.RELOCATED, RELOCATED_MARKERS),
)

# Kernel identification substrings (lower case) checked over the shell channel.
SIGNATURES: Tuple[Tuple[str, Variant], ...] = (
    ("dopamine", Variant.RELOCATED),
    ("palera1n", Variant.RELOCATED),
    ("checkra1n", Variant.LEGACY),
    ("fugu", Variant.LEGACY),
)

KERNEL_IDENT_COMMAND = "uname -v"


__all__ = [
    "CATALOGUES",
    "KERNEL_IDENT_COMMAND",
    "LEGACY_MARKERS",
    "RELOCATED_MARKERS",
    "SIGNATURES",
    "Variant",
]
