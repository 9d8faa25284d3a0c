import pytest

from surveyor_flows.errors import UnsupportedVersionError
from surveyor_flows.version import check_version, is_supported, parse_spec_version


@pytest.mark.parametrize("version,expected", [
    ("11.12", True),
    ("13.5.0", True),
    (12, True),
    ("10.4", False),
    ("14.0", False),
    ("20.0", False),
    ("", False),
    (None, False),
    (True, False),
    ("latest", False),
])
def test_is_supported(version, expected):
    assert is_supported(version, min_major=11, max_major=13) is expected


def test_custom_range():
    assert is_supported("20.0", min_major=11, max_major=20)


def test_parse_spec_version():
    assert parse_spec_version("11.12").major == 11
    assert parse_spec_version("not a version") is None


def test_check_version_returns_normalized_text():
    assert check_version(" 12.1 ", min_major=11, max_major=13) == "12.1"


def test_check_version_raises_with_version():
    with pytest.raises(UnsupportedVersionError) as exc_info:
        check_version("20.0", min_major=11, max_major=13)
    assert exc_info.value.spec_version == "20.0"
    assert "[11, 13]" in str(exc_info.value)
