"""Device software-version parsing and comparison."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional, Tuple

_VERSION_RE = re.compile(r"^(\d+)(?:\.(\d+))?(?:\.(\d+))?(.*)$")


@dataclass(frozen=True, order=True)
class DeviceVersion:
    """Numeric (major, minor, patch) triple with an ignored build suffix."""

    major: int
    minor: int = 0
    patch: int = 0
    build: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        for name in ("major", "minor", "patch"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise TypeError(f"DeviceVersion.{name} must be an int.")
            if value < 0:
                raise ValueError(f"DeviceVersion.{name} cannot be negative.")

    @classmethod
    def parse(cls, text: str) -> "DeviceVersion":
        """Parse ``"16"``, ``"16.3"`` or ``"16.3.1"`` with an optional suffix.

        Anything after the numeric triple (``" (20D67)"``, ``"-beta"``) is kept
        as ``build`` and ignored by comparisons.

        Raises:
            ValueError: If ``text`` is empty or does not start with a number.
        """
        if not isinstance(text, str) or not text.strip():
            raise ValueError("Version string cannot be empty.")
        match = _VERSION_RE.match(text.strip())
        if not match:
            raise ValueError(f"Invalid version format: {text!r}")
        major, minor, patch, rest = match.groups()
        suffix = (rest or "").strip(" .-_()")
        return cls(
            major=int(major),
            minor=int(minor) if minor else 0,
            patch=int(patch) if patch else 0,
            build=suffix,
        )

    @classmethod
    def try_parse(cls, text: Optional[str]) -> Optional["DeviceVersion"]:
        """Return the parsed version or ``None`` when ``text`` is unparsable."""
        try:
            return cls.parse(text or "")
        except ValueError:
            return None

    @property
    def triple(self) -> Tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def at_least(self, other: "DeviceVersion") -> bool:
        return self.triple >= other.triple

    def __str__(self) -> str:
        if self.patch:
            return f"{self.major}.{self.minor}.{self.patch}"
        return f"{self.major}.{self.minor}"


V14 = DeviceVersion(14)
V15 = DeviceVersion(15)


__all__ = ["DeviceVersion", "V14", "V15"]
