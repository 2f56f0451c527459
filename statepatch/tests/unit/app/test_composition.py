from __future__ import annotations

from statepatch.adapters.artifact_dir import DirectoryArtifactSource
from statepatch.adapters.artifact_http import HttpArtifactSource
from statepatch.adapters.lockdown_usb import UsbLockdownTransport
from statepatch.adapters.ssh_shell import SshShellConnector
from statepatch.adapters.transport_mock import DRY_RUN_DEVICE_ID, InMemoryShellConnector, InMemoryTransport
from statepatch.app.composition import build_artifact_source, build_services, build_shell_connector
from statepatch.app.settings import SettingsConfig
from statepatch.domain import paths as P
from statepatch.tests.helpers import StaticArtifactSource, artifacts_for, path_set_for


def test_default_wiring_uses_real_adapters(tmp_path) -> None:
    services = build_services(
        SettingsConfig(snapshot_dir=str(tmp_path)), configure_logging=False
    )

    assert isinstance(services.sessions.transport, UsbLockdownTransport)
    assert isinstance(services.sessions.shell_connector, SshShellConnector)
    assert services.artifact_source is None
    assert services.snapshots.keep_count == 5
    assert services.orchestrator.snapshots is services.snapshots


def test_injected_doubles_are_used(tmp_path) -> None:
    transport = InMemoryTransport()
    connector = InMemoryShellConnector(transport)

    services = build_services(
        SettingsConfig(snapshot_dir=str(tmp_path), connect_attempts=2),
        transport=transport,
        shell_connector=connector,
        configure_logging=False,
    )

    assert services.sessions.transport is transport
    assert services.sessions.shell_connector is connector
    assert services.sessions.connect_attempts == 2


def test_shell_connector_follows_settings() -> None:
    assert build_shell_connector(SettingsConfig(ssh_enabled=False)) is None
    connector = build_shell_connector(SettingsConfig(ssh_host="10.1.1.1", ssh_password=""))
    assert connector.config.host == "10.1.1.1"
    assert connector.config.password is None


def test_artifact_source_preference(tmp_path) -> None:
    both = SettingsConfig(artifact_dir=str(tmp_path), artifact_base_url="http://srv")
    assert isinstance(build_artifact_source(both), HttpArtifactSource)
    only_dir = SettingsConfig(artifact_dir=str(tmp_path))
    assert isinstance(build_artifact_source(only_dir), DirectoryArtifactSource)
    assert build_artifact_source(SettingsConfig()) is None


def test_dry_run_wires_simulated_device(tmp_path) -> None:
    services = build_services(
        SettingsConfig(snapshot_dir=str(tmp_path), dry_run=True), configure_logging=False
    )

    assert isinstance(services.sessions.transport, InMemoryTransport)
    assert isinstance(services.sessions.shell_connector, InMemoryShellConnector)
    assert services.sessions.transport.list_devices() == [DRY_RUN_DEVICE_ID]


def test_dry_run_keeps_injected_transport(tmp_path) -> None:
    transport = InMemoryTransport()

    services = build_services(
        SettingsConfig(snapshot_dir=str(tmp_path), dry_run=True),
        transport=transport,
        configure_logging=False,
    )

    assert services.sessions.transport is transport
    assert isinstance(services.sessions.shell_connector, SshShellConnector)


def test_dry_run_install_mutates_only_the_simulated_device(tmp_path) -> None:
    services = build_services(
        SettingsConfig(snapshot_dir=str(tmp_path / "snaps"), dry_run=True), configure_logging=False
    )
    device = services.sessions.transport.devices[DRY_RUN_DEVICE_ID]
    session = services.sessions.connect(DRY_RUN_DEVICE_ID)
    source = StaticArtifactSource(artifacts_for([P.ACTIVATION_RECORD]))

    result = services.orchestrator.run(
        session, session.descriptor, source, names=[P.ACTIVATION_RECORD]
    )

    assert result.success, result.summary()
    assert result.snapshot_id
    path_set = path_set_for(device)
    assert device.files[path_set.path_for(P.ACTIVATION_RECORD)] == b"replacement activation-record"
