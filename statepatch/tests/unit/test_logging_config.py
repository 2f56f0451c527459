from __future__ import annotations

import logging
import os
from datetime import datetime

import pytest

from statepatch.utils.logging import (
    configure_root,
    effective_level,
    log_file_path,
    parse_level,
)


@pytest.fixture
def restore_root():
    root = logging.getLogger()
    level = root.level
    handlers = list(root.handlers)
    urllib3_level = logging.getLogger("urllib3").level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    logging.getLogger("urllib3").setLevel(urllib3_level)


@pytest.mark.parametrize(
    "value, expected",
    [("warning", logging.WARNING), ("DEBUG", logging.DEBUG), ("15", 15), (logging.ERROR, logging.ERROR)],
)
def test_parse_level(value, expected) -> None:
    assert parse_level(value) == expected


def test_parse_level_falls_back_on_unknown_names() -> None:
    assert parse_level("chatty") == logging.INFO
    assert parse_level("", fallback=logging.ERROR) == logging.ERROR


def test_explicit_level_wins_over_debug_flag() -> None:
    assert effective_level("", debug=True) == logging.DEBUG
    assert effective_level("", debug=False) == logging.INFO
    assert effective_level("ERROR", debug=True) == logging.ERROR


def test_configure_root_sets_level_and_quiets_urllib3(restore_root) -> None:
    assert configure_root(logging.DEBUG) is None

    assert restore_root.level == logging.DEBUG
    assert logging.getLogger("urllib3").level == logging.WARNING


def test_log_dir_gets_one_file_per_process(tmp_path, restore_root) -> None:
    log_dir = tmp_path / "logs"

    path = configure_root("INFO", log_dir=str(log_dir))
    again = configure_root("INFO", log_dir=str(log_dir))
    logging.getLogger("statepatch.test").info("written to file")
    for handler in restore_root.handlers:
        handler.flush()

    assert path == again
    assert os.path.dirname(path) == str(log_dir)
    assert os.path.basename(path).startswith("statepatch_")
    with open(path, encoding="utf-8") as f:
        assert "written to file" in f.read()
    file_handlers = [h for h in restore_root.handlers if isinstance(h, logging.FileHandler)]
    assert [h.baseFilename for h in file_handlers].count(path) == 1


def test_log_file_name_carries_timestamp() -> None:
    path = log_file_path("/tmp/logs", now=lambda: datetime(2024, 5, 1, 12, 30, 5))

    assert path == os.path.join("/tmp/logs", "statepatch_20240501_123005.log")
