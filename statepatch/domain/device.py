"""Immutable descriptor of the identifying attributes of one device."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .version import DeviceVersion

# Attribute keys read over the narrow channel during connect.
ATTRIBUTE_KEYS = (
    "ProductVersion",
    "ProductType",
    "SerialNumber",
    "UniqueChipID",
    "BuildVersion",
    "DeviceClass",
    "DeviceName",
    "ActivationState",
)
ACTIVATED_STATE = "Activated"


def _as_text(value: Any) -> Optional[str]:
    """Normalize a string/bool/number attribute value to text."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class DeviceDescriptor:
    """Identifying and version attributes captured once per session."""

    device_id: str
    version: str
    hardware_class: Optional[str] = None
    serial: Optional[str] = None
    chip_id: Optional[str] = None
    build_version: Optional[str] = None
    device_class: Optional[str] = None
    device_name: Optional[str] = None
    activation_state: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.device_id, str) or not self.device_id.strip():
            raise ValueError("DeviceDescriptor requires a non-empty device_id.")

    @classmethod
    def from_attributes(cls, device_id: str, attrs: Mapping[str, Any]) -> "DeviceDescriptor":
        """Build a descriptor from raw attribute values keyed by attribute name."""
        return cls(
            device_id=device_id,
            version=_as_text(attrs.get("ProductVersion")) or "",
            hardware_class=_as_text(attrs.get("ProductType")),
            serial=_as_text(attrs.get("SerialNumber")),
            chip_id=_as_text(attrs.get("UniqueChipID")),
            build_version=_as_text(attrs.get("BuildVersion")),
            device_class=_as_text(attrs.get("DeviceClass")),
            device_name=_as_text(attrs.get("DeviceName")),
            activation_state=_as_text(attrs.get("ActivationState")),
        )

    def parsed_version(self) -> DeviceVersion:
        """Return the parsed software version.

        Raises:
            ValueError: If the version string is unparsable. The core never
                substitutes a default version.
        """
        return DeviceVersion.parse(self.version)

    @property
    def display_name(self) -> str:
        return self.device_name or self.hardware_class or "Unknown device"

    def to_dict(self) -> dict:
        return {
            "device_id": self.device_id,
            "version": self.version,
            "hardware_class": self.hardware_class,
            "serial": self.serial,
            "chip_id": self.chip_id,
            "build_version": self.build_version,
            "device_class": self.device_class,
            "device_name": self.device_name,
            "activation_state": self.activation_state,
        }


def is_activated(descriptor: DeviceDescriptor) -> bool:
    """True when the device reports the ``Activated`` state.

    Other states (``Unactivated``, missing, ...) leave the device eligible.
    """
    return (descriptor.activation_state or "").lower() == ACTIVATED_STATE.lower()


__all__ = ["ACTIVATED_STATE", "ATTRIBUTE_KEYS", "DeviceDescriptor", "is_activated"]
