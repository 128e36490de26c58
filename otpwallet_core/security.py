"""
Security parameter resolver.

Maps a wallet's contract version to the schedule its tree must be built on.
The table is closed: a version that is not listed is rejected instead of
falling back to defaults, since a tree built on the wrong schedule would
never verify on-chain.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping

from otpwallet_core.errors import UnsupportedVersionError
from otpwallet_core.otp import DEFAULT_INTERVAL

DAY_MS = 24 * 3600 * 1000
DEFAULT_DURATION = 364 * DAY_MS
MULTI_CODE_WINDOW = 6

MIN_VERSION = (14, 1)


@dataclass(frozen=True)
class SecurityParameters:
    interval: int          # ms
    slot_size: int
    duration: int          # ms, default lifetime of a new tree
    multi_code: int        # 0 = no multi-code trees
    double_otp: bool       # whether a second-factor tree is supported

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_PARAMETERS: dict[int, SecurityParameters] = {
    14: SecurityParameters(DEFAULT_INTERVAL, 1, DEFAULT_DURATION, MULTI_CODE_WINDOW, False),
    15: SecurityParameters(DEFAULT_INTERVAL, 1, DEFAULT_DURATION, MULTI_CODE_WINDOW, True),
    16: SecurityParameters(DEFAULT_INTERVAL, 1, DEFAULT_DURATION, MULTI_CODE_WINDOW, True),
}


def supported_versions() -> list[int]:
    return sorted(_PARAMETERS)


def security_parameters(major_version: int, minor_version: int = 0) -> SecurityParameters:
    if (major_version, minor_version) < MIN_VERSION:
        raise UnsupportedVersionError(major_version, minor_version)
    params = _PARAMETERS.get(major_version)
    if params is None:
        raise UnsupportedVersionError(major_version, minor_version)
    return params


def security_parameters_for(wallet: Mapping[str, Any]) -> SecurityParameters:
    """Resolve from a wallet record carrying ``major_version`` / ``minor_version``."""
    if "major_version" not in wallet:
        raise UnsupportedVersionError(-1)
    return security_parameters(
        int(wallet["major_version"]), int(wallet.get("minor_version", 0)),
    )
