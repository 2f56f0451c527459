"""Adapter package for external I/O implementations.

Purpose:
    Collect concrete implementations for domain ports (USB lockdown, SSH
    shell, HTTP and directory artifact sources, local snapshot archive, and
    the in-memory device double) used by use cases.

Dependencies:
    Individual submodules depend on ``requests``, the ``ssh``/``sshpass``
    and libimobiledevice executables (through ``command.run_cmd``),
    filesystem APIs, and domain protocol definitions.

Call context:
    Imported by ``statepatch.app.composition`` (for runtime wiring) and by
    tests (for doubles and transport-level behavior verification).
"""
