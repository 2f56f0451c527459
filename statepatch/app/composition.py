"""Composition root: build the adapter and use-case graph from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from statepatch.adapters.artifact_dir import DirectoryArtifactSource
from statepatch.adapters.artifact_http import HttpArtifactSource
from statepatch.adapters.lockdown_usb import UsbLockdownTransport
from statepatch.adapters.snapshot_local import LocalSnapshotArchive
from statepatch.adapters.transport_mock import InMemoryShellConnector, InMemoryTransport, simulated_device
from statepatch.adapters.ssh_shell import SshConfig, SshShellConnector
from statepatch.app.settings import SettingsConfig
from statepatch.domain.ports import ArtifactSourcePort, DeviceTransportPort, ShellConnector
from statepatch.usecases.detect_variant import VariantDetector
from statepatch.usecases.mutation_orchestrator import MutationHooks, MutationOrchestrator
from statepatch.usecases.session_manager import SessionHooks, SessionManager
from statepatch.usecases.snapshot_store import SnapshotStore
from statepatch.utils.logging import configure_root, effective_level

_log = logging.getLogger(__name__)


@dataclass
class Services:
    """Wired use cases for one process."""

    settings: SettingsConfig
    sessions: SessionManager
    detector: VariantDetector
    snapshots: SnapshotStore
    orchestrator: MutationOrchestrator
    artifact_source: Optional[ArtifactSourcePort] = None


def build_shell_connector(settings: SettingsConfig) -> Optional[SshShellConnector]:
    if not settings.ssh_enabled:
        return None
    config = SshConfig(
        host=settings.ssh_host,
        port=settings.ssh_port,
        username=settings.ssh_username,
        password=settings.ssh_password or None,
        connect_timeout_s=settings.ssh_connect_timeout_s,
        command_timeout_s=settings.command_timeout_s,
    )
    return SshShellConnector(config)


def build_artifact_source(settings: SettingsConfig) -> Optional[ArtifactSourcePort]:
    """HTTP source when a base URL is set, else a directory source, else ``None``."""
    if settings.artifact_base_url:
        return HttpArtifactSource(
            settings.artifact_base_url,
            api_key=settings.artifact_api_key or None,
            request_timeout_s=settings.request_timeout_s,
            download_timeout_s=settings.download_timeout_s,
            retries=settings.http_retries,
        )
    if settings.artifact_dir:
        return DirectoryArtifactSource(settings.artifact_dir)
    return None


def build_services(
    settings: Optional[SettingsConfig] = None,
    *,
    transport: Optional[DeviceTransportPort] = None,
    shell_connector: Optional[ShellConnector] = None,
    artifact_source: Optional[ArtifactSourcePort] = None,
    session_hooks: Optional[SessionHooks] = None,
    mutation_hooks: Optional[MutationHooks] = None,
    configure_logging: bool = True,
) -> Services:
    """Wire real adapters unless test doubles are passed in.

    With ``settings.dry_run`` and no injected transport, both channels talk to
    a simulated in-memory device.
    """
    settings = settings or SettingsConfig()
    if configure_logging:
        configure_root(
            effective_level(settings.log_level, settings.debug_logging),
            log_dir=settings.log_dir or None,
        )
    if settings.dry_run and transport is None:
        transport = InMemoryTransport(simulated_device())
        if shell_connector is None:
            shell_connector = InMemoryShellConnector(transport)
        _log.warning("Dry run: mutations go to a simulated device, not real hardware")

    sessions = SessionManager(
        transport if transport is not None else UsbLockdownTransport(),
        shell_connector=shell_connector if shell_connector is not None else build_shell_connector(settings),
        hooks=session_hooks,
        connect_attempts=settings.connect_attempts,
        retry_delay_s=settings.retry_delay_s,
        command_timeout_s=settings.command_timeout_s,
        client_label=settings.client_label,
    )
    detector = VariantDetector()
    snapshots = SnapshotStore(
        LocalSnapshotArchive(settings.snapshot_dir), keep_count=settings.snapshot_keep_count
    )
    orchestrator = MutationOrchestrator(sessions, detector, snapshots, hooks=mutation_hooks)
    source = artifact_source if artifact_source is not None else build_artifact_source(settings)
    _log.debug("Services built (snapshots in %s)", settings.snapshot_dir)
    return Services(
        settings=settings,
        sessions=sessions,
        detector=detector,
        snapshots=snapshots,
        orchestrator=orchestrator,
        artifact_source=source,
    )


__all__ = ["Services", "build_artifact_source", "build_services", "build_shell_connector"]
