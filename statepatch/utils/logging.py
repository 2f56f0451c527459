"""Root logger setup driven by ``SettingsConfig``.

Console output always goes to stderr. When a log directory is configured,
every process also appends to its own timestamped file there so a failed
mutation run can be inspected after the fact.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Callable, Optional, Union

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_CONSOLE_DATEFMT = "%H:%M:%S"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_PREFIX = "statepatch"
# Chatty at DEBUG; kept at WARNING or above.
_THIRD_PARTY = ("urllib3",)


def parse_level(value: Union[int, str, None], fallback: int = logging.INFO) -> int:
    """Return a numeric level for ``"debug"``/``"WARNING"``/``"10"``-style input."""
    if isinstance(value, int):
        return value
    text = (value or "").strip()
    if not text:
        return fallback
    if text.isdigit():
        return int(text)
    candidate = logging.getLevelName(text.upper())
    return candidate if isinstance(candidate, int) else fallback


def effective_level(log_level: str = "", debug: bool = False) -> int:
    """An explicit level wins; otherwise ``debug`` selects DEBUG over INFO."""
    return parse_level(log_level, logging.DEBUG if debug else logging.INFO)


def log_file_path(log_dir: str, now: Callable[[], datetime] = datetime.now) -> str:
    return os.path.join(log_dir, f"{LOG_FILE_PREFIX}_{now():%Y%m%d_%H%M%S}.log")


def configure_root(
    level: Union[int, str] = logging.INFO, *, log_dir: Optional[str] = None
) -> Optional[str]:
    """Set the root level, attach handlers once and quiet third-party loggers.

    Returns the log file path when file logging is active.
    """
    numeric = parse_level(level)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=numeric, format=_FORMAT, datefmt=_CONSOLE_DATEFMT)
    root.setLevel(numeric)
    for name in _THIRD_PARTY:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))

    if not log_dir:
        return None
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler) and os.path.dirname(
            handler.baseFilename
        ) == os.path.abspath(log_dir):
            return handler.baseFilename
    os.makedirs(log_dir, exist_ok=True)
    path = log_file_path(log_dir)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_FILE_DATEFMT))
    root.addHandler(handler)
    logging.getLogger(__name__).info("Logging to %s", path)
    return handler.baseFilename


__all__ = ["LOG_FILE_PREFIX", "configure_root", "effective_level", "log_file_path", "parse_level"]
