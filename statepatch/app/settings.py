"""Typed runtime settings and their JSON persistence.

``SettingsStore`` reads ``settings.json`` from its root directory, coerces
every known key to its declared type, fills defaults for missing keys and
then applies environment overrides. Unknown keys are rejected so a typo
does not silently fall back to a default.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

from statepatch.utils.logging import parse_level

_log = logging.getLogger(__name__)

SETTINGS_FILENAME = "settings.json"
ENV_OVERRIDES = {
    "STATEPATCH_SSH_HOST": "ssh_host",
    "STATEPATCH_SSH_PORT": "ssh_port",
    "STATEPATCH_SSH_PASSWORD": "ssh_password",
    "STATEPATCH_SNAPSHOT_DIR": "snapshot_dir",
    "STATEPATCH_LOG_LEVEL": "log_level",
    "STATEPATCH_LOG_DIR": "log_dir",
    "STATEPATCH_DEBUG": "debug_logging",
    "STATEPATCH_DRY_RUN": "dry_run",
}


@dataclass(frozen=True)
class SettingsConfig:
    """Typed runtime settings persisted via ``SettingsStore``."""

    snapshot_dir: str = "snapshots"
    snapshot_keep_count: int = 5
    connect_attempts: int = 3
    retry_delay_s: float = 0.5
    command_timeout_s: float = 60.0
    client_label: str = "statepatch"
    ssh_enabled: bool = True
    ssh_host: str = "localhost"
    ssh_port: int = 22
    ssh_username: str = "root"
    ssh_password: str = "alpine"
    ssh_connect_timeout_s: int = 30
    artifact_dir: str = ""
    artifact_base_url: str = ""
    artifact_api_key: str = ""
    request_timeout_s: int = 10
    download_timeout_s: int = 60
    http_retries: int = 2
    debug_logging: bool = False
    # Explicit level name ("DEBUG", "warning", "20"); empty defers to debug_logging.
    log_level: str = ""
    log_dir: str = ""
    # Run against a simulated in-memory device instead of USB/SSH.
    dry_run: bool = False


_INT_KEYS = {
    "snapshot_keep_count",
    "connect_attempts",
    "ssh_port",
    "ssh_connect_timeout_s",
    "request_timeout_s",
    "download_timeout_s",
    "http_retries",
}
_FLOAT_KEYS = {"retry_delay_s", "command_timeout_s"}
_BOOL_KEYS = {"ssh_enabled", "debug_logging", "dry_run"}
_POSITIVE_KEYS = {"connect_attempts", "ssh_port", "command_timeout_s", "ssh_connect_timeout_s"}


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _coerce_number(name: str, value: Any, kind: type) -> Any:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number.")
    try:
        coerced = kind(value.strip()) if isinstance(value, str) else kind(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number.") from exc
    if coerced < 0:
        raise ValueError(f"{name} cannot be negative.")
    if name in _POSITIVE_KEYS and coerced == 0:
        raise ValueError(f"{name} must be positive.")
    return coerced


def _coerce_level_name(raw: Any) -> str:
    text = "" if raw is None else str(raw).strip().upper()
    if text and parse_level(text, fallback=-1) == -1:
        raise ValueError(f"log_level is not a logging level: {raw!r}")
    return text


def coerce_value(key: str, raw: Any) -> Any:
    """Coerce one persisted/env value to the type of ``SettingsConfig.<key>``."""
    if key in _INT_KEYS:
        return _coerce_number(key, raw, int)
    if key in _FLOAT_KEYS:
        return _coerce_number(key, raw, float)
    if key in _BOOL_KEYS:
        return _coerce_bool(raw)
    if key == "log_level":
        return _coerce_level_name(raw)
    if raw is None:
        return ""
    return str(raw).strip()


def config_from_dict(payload: Mapping[str, Any], base: Optional[SettingsConfig] = None) -> SettingsConfig:
    """Build a config from flat keys; unknown keys raise ``ValueError``."""
    if not isinstance(payload, Mapping):
        raise ValueError("Settings payload must be a mapping of flat keys.")
    known = {f.name for f in fields(SettingsConfig)}
    unknown = set(payload) - known
    if unknown:
        raise ValueError(f"Unsupported settings keys: {', '.join(sorted(str(k) for k in unknown))}")
    updates = {key: coerce_value(key, value) for key, value in payload.items()}
    return replace(base or SettingsConfig(), **updates)


def apply_env_overrides(config: SettingsConfig, environ: Optional[Mapping[str, str]] = None) -> SettingsConfig:
    env = os.environ if environ is None else environ
    updates: Dict[str, Any] = {}
    for var, key in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            updates[key] = coerce_value(key, value)
    return replace(config, **updates) if updates else config


class SettingsStore:
    """Load/save ``SettingsConfig`` as ``<root>/settings.json``."""

    def __init__(self, root_dir: str = ".", environ: Optional[Mapping[str, str]] = None) -> None:
        self.root = root_dir
        self.environ = environ

    @property
    def path(self) -> str:
        return os.path.join(self.root, SETTINGS_FILENAME)

    def load(self) -> SettingsConfig:
        """Return persisted settings (defaults when absent) with env overrides.

        Raises:
            ValueError: If the file holds unknown keys or ill-typed values.
        """
        payload: Dict[str, Any] = {}
        if os.path.exists(self.path):
            with open(self.path, "r", encoding="utf-8") as f:
                try:
                    payload = json.load(f)
                except json.JSONDecodeError as exc:
                    raise ValueError(f"Settings file is not valid JSON: {exc}") from exc
        else:
            _log.debug("No settings file at %s; using defaults", self.path)
        return apply_env_overrides(config_from_dict(payload), self.environ)

    def save(self, config: SettingsConfig) -> None:
        os.makedirs(self.root, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(asdict(config), f, ensure_ascii=False, indent=2)


__all__ = [
    "ENV_OVERRIDES",
    "SettingsConfig",
    "SettingsStore",
    "apply_env_overrides",
    "coerce_value",
    "config_from_dict",
]
