"""
Error taxonomy for the OTP wallet core.

All errors are raised synchronously and never retried internally:

  - ``InvalidConfigurationError`` – bad duration / interval / slot size,
    rejected before any hashing begins (fatal)
  - ``OutOfRangeError``           – index or time outside a tree's window
    (recoverable: pick another time or build an extended tree)
  - ``StaleResultError``          – a background build finished after a newer
    request superseded it (discard silently)
  - ``ProofMismatchError``        – a regenerated leaf does not reduce to the
    expected root (corrupt seed / hseed / layers, do not retry)
"""

from __future__ import annotations


class OTPWalletError(Exception):
    """Base class for every error raised by ``otpwallet_core``."""


class InvalidConfigurationError(OTPWalletError, ValueError):
    pass


class UnsupportedVersionError(InvalidConfigurationError):
    """Wallet version has no known security parameters."""

    def __init__(self, major_version: int, minor_version: int = 0):
        self.major_version = major_version
        self.minor_version = minor_version
        super().__init__(
            f"No security parameters for wallet version "
            f"{major_version}.{minor_version}"
        )


class OutOfRangeError(OTPWalletError, IndexError):
    pass


class StaleResultError(OTPWalletError, RuntimeError):
    """Result belongs to a superseded build generation."""

    def __init__(self, salt: str, latest: str | None):
        self.salt = salt
        self.latest = latest
        super().__init__(f"Build {salt} superseded by {latest}")


class ProofMismatchError(OTPWalletError, RuntimeError):
    pass
