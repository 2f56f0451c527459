"""Table-driven resolution of logical artifact names to remote paths.

``resolve(version, variant)`` is pure and total: it performs no I/O, never
raises, and always returns a ``PathSet``. The version only selects *candidate*
locations; which family is authoritative for a live session is decided
empirically by the variant detector.

Family rules:
    * ``LEGACY`` (and ``UNKNOWN``) keep the canonical locations rooted at the
      privileged home directory for every version.
    * ``RELOCATED`` starts from the same baseline and applies every
      ``VersionRule`` whose minimum version is met, in table order. Versions
      above the highest entry therefore get the highest entry's rule.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union

from .variants import Variant
from .version import DeviceVersion, V14, V15

# ---- Logical names ----
ACTIVATION_RECORD = "activation-record"
DATA_ARK = "data-ark"
SETUP_PREFS = "setup-prefs"
WILDCARD_RECORD = "wildcard-record"
SETUP_ASSISTANT_PREFS = "setup-assistant-prefs"
SPRINGBOARD_PREFS = "springboard-prefs"
BYPASS_RECORD = "bypass-record"
FAIRPLAY_INFO = "fairplay-info"

INSTALL_NAMES: Tuple[str, ...] = (
    ACTIVATION_RECORD,
    DATA_ARK,
    SETUP_PREFS,
    WILDCARD_RECORD,
    SETUP_ASSISTANT_PREFS,
    SPRINGBOARD_PREFS,
    BYPASS_RECORD,
)
DECOMMISSION_NAMES: Tuple[str, ...] = (
    ACTIVATION_RECORD,
    WILDCARD_RECORD,
    DATA_ARK,
    BYPASS_RECORD,
    FAIRPLAY_INFO,
    SETUP_PREFS,
)
LOGICAL_NAMES: Tuple[str, ...] = INSTALL_NAMES + (FAIRPLAY_INFO,)

# ---- Canonical locations ----
LOCKDOWN_DIR = "/var/root/Library/Lockdown"
ACTIVATION_RECORDS_DIR = f"{LOCKDOWN_DIR}/activation_records"
MOBILE_PREFS_DIR = "/var/mobile/Library/Preferences"
MOBILE_LIBRARY_DIR = "/var/mobile/Library"
FAIRPLAY_DIR = "/var/mobile/Library/FairPlay"

PER_PROCESS_ACTIVATION_DIR = (
    "/var/containers/Data/System/com.apple.mobileactivationd/Library/activation_records"
)
SHARED_PROFILE_PUBLIC_DIR = (
    "/var/containers/Shared/SystemGroup/systemgroup.com.apple.configurationprofiles"
    "/Library/ConfigurationProfiles/PublicInfo"
)

BASELINE_PATHS: Mapping[str, str] = {
    ACTIVATION_RECORD: f"{ACTIVATION_RECORDS_DIR}/activation_record.plist",
    DATA_ARK: f"{LOCKDOWN_DIR}/data_ark.plist",
    SETUP_PREFS: f"{MOBILE_PREFS_DIR}/com.apple.purplebuddy.plist",
    WILDCARD_RECORD: f"{ACTIVATION_RECORDS_DIR}/wildcard_record.plist",
    SETUP_ASSISTANT_PREFS: f"{MOBILE_PREFS_DIR}/com.apple.SetupAssistant.plist",
    SPRINGBOARD_PREFS: f"{MOBILE_PREFS_DIR}/com.apple.springboard.plist",
    BYPASS_RECORD: f"{LOCKDOWN_DIR}/bypass_record.plist",
    FAIRPLAY_INFO: f"{FAIRPLAY_DIR}/iTunes_Control/iTunes/ic-info.sisv",
}
BASELINE_REQUIRED: Tuple[str, ...] = (ACTIVATION_RECORD, SETUP_PREFS)

FILE_MODE = 0o644
TREE_MODE = 0o755
MOBILE_OWNER = "mobile:mobile"
SERVICES: Tuple[str, ...] = ("mobileactivationd", "CommCenter")
RESPRING_SERVICE = "SpringBoard"


@dataclass(frozen=True)
class VersionRule:
    """One row of the relocation table."""

    min_version: DeviceVersion
    effect: str
    relocations: Mapping[str, str] = field(default_factory=dict)
    requires: Tuple[str, ...] = ()


VERSION_RULES: Tuple[VersionRule, ...] = (
    VersionRule(
        min_version=V14,
        effect=(
            "versions >= 14 relocate the setup-completion marker under the shared "
            "configuration-profile namespace"
        ),
        relocations={SETUP_PREFS: f"{SHARED_PROFILE_PUBLIC_DIR}/com.apple.purplebuddy.plist"},
    ),
    VersionRule(
        min_version=V15,
        effect=(
            "versions >= 15 relocate the activation record under the per-process "
            "data namespace and require the data ark"
        ),
        relocations={
            ACTIVATION_RECORD: f"{PER_PROCESS_ACTIVATION_DIR}/activation_record.plist",
            WILDCARD_RECORD: f"{PER_PROCESS_ACTIVATION_DIR}/wildcard_record.plist",
        },
        requires=(DATA_ARK,),
    ),
)

_BASELINE_VERSION = DeviceVersion(0)


@dataclass(frozen=True)
class PathSet:
    """Resolved ``logical name -> absolute remote path`` map for one device."""

    version: DeviceVersion
    variant: Variant
    paths: Tuple[Tuple[str, str], ...]
    required: Tuple[str, ...]
    verification_name: str = ACTIVATION_RECORD
    permission_trees: Tuple[Tuple[str, int], ...] = ()
    ownership_trees: Tuple[Tuple[str, str], ...] = ()
    services: Tuple[str, ...] = SERVICES
    decommission_names: Tuple[str, ...] = DECOMMISSION_NAMES
    file_mode: int = FILE_MODE

    def as_dict(self) -> Dict[str, str]:
        return dict(self.paths)

    def names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.paths)

    def install_names(self) -> Tuple[str, ...]:
        return tuple(name for name in self.names() if name in INSTALL_NAMES)

    def path_for(self, name: str) -> str:
        for logical, path in self.paths:
            if logical == name:
                return path
        raise KeyError(f"Unknown logical name: {name}")

    def has(self, name: str) -> bool:
        return any(logical == name for logical, _ in self.paths)

    def requires(self, name: str) -> bool:
        return name in self.required

    @property
    def verification_path(self) -> str:
        return self.path_for(self.verification_name)

    def ordered(self, names: Iterable[str]) -> Tuple[str, ...]:
        """Return ``names`` filtered to known entries in path-set order."""
        wanted = set(names)
        return tuple(name for name in self.names() if name in wanted)

    def subset(self, names: Iterable[str]) -> Tuple[Tuple[str, str], ...]:
        """Return ``(name, path)`` pairs for ``names`` in path-set order."""
        return tuple((name, self.path_for(name)) for name in self.ordered(names))

    def name_for_path(self, path: str) -> Optional[str]:
        for logical, candidate in self.paths:
            if candidate == path:
                return logical
        return None


def _coerce_version(version: Union[DeviceVersion, str, None]) -> DeviceVersion:
    if isinstance(version, DeviceVersion):
        return version
    parsed = DeviceVersion.try_parse(version if isinstance(version, str) else None)
    return parsed if parsed is not None else _BASELINE_VERSION


def _unique(items: Iterable) -> Tuple:
    seen = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return tuple(seen)


def resolve(version: Union[DeviceVersion, str, None], variant: Variant) -> PathSet:
    """Resolve the path set for ``(version, variant)``.

    Unparsable version strings resolve against the baseline; callers that must
    reject such versions do so before calling (see ``MutationOrchestrator``).
    """
    parsed = _coerce_version(version)
    family = Variant.from_value(variant)

    paths: Dict[str, str] = dict(BASELINE_PATHS)
    required = list(BASELINE_REQUIRED)
    # Requirements follow the version for every family; relocations only apply
    # to the relocated layout.
    for rule in VERSION_RULES:
        if not parsed.at_least(rule.min_version):
            continue
        required.extend(rule.requires)
        if family is Variant.RELOCATED:
            paths.update(rule.relocations)

    activation_dir = posixpath.dirname(paths[ACTIVATION_RECORD])
    permission_trees = _unique(
        [
            (activation_dir, TREE_MODE),
            (posixpath.dirname(paths[DATA_ARK]), TREE_MODE),
        ]
    )
    ordered_paths = tuple((name, paths[name]) for name in LOGICAL_NAMES)
    return PathSet(
        version=parsed,
        variant=family,
        paths=ordered_paths,
        required=_unique(required),
        permission_trees=permission_trees,
        ownership_trees=((MOBILE_LIBRARY_DIR, MOBILE_OWNER),),
    )


__all__ = [
    "ACTIVATION_RECORD",
    "BASELINE_PATHS",
    "BYPASS_RECORD",
    "DATA_ARK",
    "DECOMMISSION_NAMES",
    "FAIRPLAY_INFO",
    "FILE_MODE",
    "INSTALL_NAMES",
    "LOGICAL_NAMES",
    "PathSet",
    "RESPRING_SERVICE",
    "SERVICES",
    "SETUP_ASSISTANT_PREFS",
    "SETUP_PREFS",
    "SPRINGBOARD_PREFS",
    "VERSION_RULES",
    "VersionRule",
    "WILDCARD_RECORD",
    "resolve",
]
