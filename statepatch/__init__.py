"""Snapshot-first mutation of persistent state on a remote device."""

__version__ = "0.1.0"
