from __future__ import annotations

import pytest

from statepatch.domain.version import V14, V15, DeviceVersion


@pytest.mark.parametrize(
    "text, triple",
    [
        ("16", (16, 0, 0)),
        ("16.3", (16, 3, 0)),
        ("16.3.1", (16, 3, 1)),
        ("  15.7.9 ", (15, 7, 9)),
        ("17.0.3 (21A360)", (17, 0, 3)),
        ("14.8-beta", (14, 8, 0)),
    ],
)
def test_parse_accepts_common_forms(text: str, triple) -> None:
    assert DeviceVersion.parse(text).triple == triple


@pytest.mark.parametrize("text", ["", "   ", "abc", "v16.3", "-1.0"])
def test_parse_rejects_non_numeric(text: str) -> None:
    with pytest.raises(ValueError):
        DeviceVersion.parse(text)


def test_try_parse_returns_none_instead_of_raising() -> None:
    assert DeviceVersion.try_parse("garbage") is None
    assert DeviceVersion.try_parse(None) is None
    assert DeviceVersion.try_parse("15.1") == DeviceVersion(15, 1)


def test_build_suffix_is_ignored_by_comparison() -> None:
    assert DeviceVersion.parse("16.3.1 (20D67)") == DeviceVersion(16, 3, 1)
    assert DeviceVersion.parse("16.3.1 (20D67)").build == "20D67"


def test_ordering_is_numeric() -> None:
    assert DeviceVersion.parse("14.10") > DeviceVersion.parse("14.9")
    assert DeviceVersion.parse("16.3.1").at_least(V15)
    assert not DeviceVersion.parse("13.7").at_least(V14)
    assert DeviceVersion(14).at_least(V14)


def test_negative_components_are_rejected() -> None:
    with pytest.raises(ValueError):
        DeviceVersion(-1)


def test_str_drops_zero_patch() -> None:
    assert str(DeviceVersion(16, 3, 1)) == "16.3.1"
    assert str(DeviceVersion(15)) == "15.0"
