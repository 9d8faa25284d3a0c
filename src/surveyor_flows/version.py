"""Version gate — rejects flows the engine cannot safely execute.

The engine supports a range of flow spec *major* versions.  The check runs
strictly before any structural validation, so a flow written for a newer
spec never reaches the validator.
"""

from __future__ import annotations

from packaging.version import InvalidVersion, Version

from surveyor_flows.constants import SUPPORTED_SPEC_MAJOR_MAX, SUPPORTED_SPEC_MAJOR_MIN
from surveyor_flows.errors import UnsupportedVersionError


def parse_spec_version(spec_version: object) -> Version | None:
    """Parse a declared spec version (``"11.12"``, ``"13.5.0"``, ``12``).

    Returns None if the value is absent or not a version.
    """
    if spec_version is None or isinstance(spec_version, bool):
        return None
    try:
        return Version(str(spec_version).strip())
    except InvalidVersion:
        return None


def is_supported(
    spec_version: object,
    *,
    min_major: int = SUPPORTED_SPEC_MAJOR_MIN,
    max_major: int = SUPPORTED_SPEC_MAJOR_MAX,
) -> bool:
    """True if the version's major component lies in ``[min_major, max_major]``."""
    parsed = parse_spec_version(spec_version)
    if parsed is None:
        return False
    return min_major <= parsed.major <= max_major


def check_version(
    spec_version: object,
    *,
    min_major: int = SUPPORTED_SPEC_MAJOR_MIN,
    max_major: int = SUPPORTED_SPEC_MAJOR_MAX,
) -> str:
    """Return the version string, or raise if it is outside the supported range.

    Raises:
        UnsupportedVersionError: if the version is missing, unparsable or
            its major version is outside ``[min_major, max_major]``.
    """
    if not is_supported(spec_version, min_major=min_major, max_major=max_major):
        shown = None if spec_version is None else str(spec_version)
        raise UnsupportedVersionError(
            shown,
            f"Flow spec version {shown!r} is outside the supported "
            f"major range [{min_major}, {max_major}]",
        )
    return str(spec_version).strip()
