"""Use-case layer for sessions, detection, snapshots and mutation runs.

Each module coordinates domain objects and ports without performing transport
I/O directly, preserving the hexagonal boundaries.
"""
