"""Domain package exports for value objects, path tables and ports."""

from .device import DeviceDescriptor
from .mutation import MutationResult, MutationStep, ProgressEvent
from .paths import PathSet, resolve
from .snapshot import (
    RestoreReport,
    Snapshot,
    SnapshotCapture,
    SnapshotEntry,
    SnapshotInfo,
    make_snapshot_id,
    parse_stored_name,
    stored_name_for,
)
from .variants import Variant
from .version import DeviceVersion

__all__ = [
    "DeviceDescriptor",
    "DeviceVersion",
    "MutationResult",
    "MutationStep",
    "PathSet",
    "ProgressEvent",
    "RestoreReport",
    "Snapshot",
    "SnapshotCapture",
    "SnapshotEntry",
    "SnapshotInfo",
    "Variant",
    "make_snapshot_id",
    "parse_stored_name",
    "resolve",
    "stored_name_for",
]
