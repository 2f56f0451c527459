from __future__ import annotations

import logging
import os
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from statepatch.domain import paths as P
from statepatch.domain.device import DeviceDescriptor
from statepatch.domain.ports import ArtifactSourcePort

_log = logging.getLogger(__name__)

# Default on-disk file name per logical name; "<logical>.bin" is also accepted.
DEFAULT_FILENAMES: Mapping[str, str] = {
    P.ACTIVATION_RECORD: "activation_record.plist",
    P.DATA_ARK: "data_ark.plist",
    P.SETUP_PREFS: "com.apple.purplebuddy.plist",
    P.WILDCARD_RECORD: "wildcard_record.plist",
    P.SETUP_ASSISTANT_PREFS: "com.apple.SetupAssistant.plist",
    P.SPRINGBOARD_PREFS: "com.apple.springboard.plist",
    P.BYPASS_RECORD: "bypass_record.plist",
}


class DirectoryArtifactSource(ArtifactSourcePort):
    """Operator-supplied artifacts read from a local directory.

    Lookup order per name: ``<root>/<device dir>/<file>`` for each device
    directory candidate (identifier, serial), then ``<root>/<file>``.
    """

    def __init__(
        self,
        root_dir: str,
        *,
        per_device: bool = True,
        filenames: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.root = root_dir
        self.per_device = per_device
        self.filenames: Dict[str, str] = dict(DEFAULT_FILENAMES)
        self.filenames.update(filenames or {})

    def for_artifacts(
        self, descriptor: DeviceDescriptor, names: Sequence[str]
    ) -> Mapping[str, bytes]:
        result: Dict[str, bytes] = {}
        for name in names:
            path = self.locate(descriptor, name)
            if path is None:
                _log.debug("No artifact file for %s under %s", name, self.root)
                continue
            try:
                with open(path, "rb") as handle:
                    data = handle.read()
            except OSError as exc:
                _log.warning("Could not read artifact %s from %s: %s", name, path, exc)
                continue
            if not data:
                _log.warning("Artifact file %s is empty; ignoring", path)
                continue
            result[name] = data
        return result

    def locate(self, descriptor: DeviceDescriptor, name: str) -> Optional[str]:
        for directory in self._directories(descriptor):
            for filename in self._candidates(name):
                path = os.path.join(directory, filename)
                if os.path.isfile(path):
                    return path
        return None

    def _directories(self, descriptor: DeviceDescriptor) -> Iterable[str]:
        dirs: List[str] = []
        if self.per_device:
            for key in (descriptor.device_id, descriptor.serial):
                if key:
                    dirs.append(os.path.join(self.root, key))
        dirs.append(self.root)
        return dirs

    def _candidates(self, name: str) -> List[str]:
        names = []
        mapped = self.filenames.get(name)
        if mapped:
            names.append(mapped)
        names.append(f"{name}.bin")
        return names


__all__ = ["DEFAULT_FILENAMES", "DirectoryArtifactSource"]
