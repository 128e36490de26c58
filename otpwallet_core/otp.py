"""
OTP engine.

Produces the same 6-digit codes an authenticator app shows for a wallet's
seed (HOTP, RFC 4226, with the TOTP counter of RFC 6238) and maps wall-clock
time onto the wallet's index space.

Times are always passed in explicitly, in milliseconds.  A code is handled as
an unsigned 32-bit integer (the decimal code read as a number) and is only
ever transmitted after being folded into an EOTP.
"""

from __future__ import annotations

import base64
from typing import Callable, Optional

import pyotp

from otpwallet_core.errors import OutOfRangeError
from otpwallet_core.hashing import u32

DEFAULT_INTERVAL = 30_000   # ms, the authenticator-app step
OTP_DIGITS = 6

ProgressObserver = Callable[[int, int, int], None]


def seed_to_base32(seed: bytes) -> str:
    """Render a raw seed the way authenticator apps import it."""
    return base64.b32encode(bytes(seed)).decode("ascii").rstrip("=")


def base32_to_seed(text: str) -> bytes:
    text = text.strip().replace(" ", "").upper()
    missing = len(text) % 8
    if missing:
        text += "=" * (8 - missing)
    return base64.b32decode(text)


def _hotp(seed: bytes) -> pyotp.HOTP:
    return pyotp.HOTP(seed_to_base32(seed), digits=OTP_DIGITS)


def gen_otp(seed: bytes, counter: int) -> int:
    """HOTP code for ``counter`` as an unsigned 32-bit integer."""
    return int(_hotp(seed).at(counter))


def gen_otps(
    seed: bytes,
    counter: int,
    n: int,
    progress_observer: Optional[ProgressObserver] = None,
    report_interval: Optional[int] = None,
) -> list[int]:
    """Codes for ``counter`` … ``counter + n - 1`` (build stage 0)."""
    hotp = _hotp(seed)
    otps = []
    for i in range(n):
        otps.append(int(hotp.at(counter + i)))
        if progress_observer and report_interval and i % report_interval == 0:
            progress_observer(i, n, 0)
    return otps


def otp_bytes(otp: int) -> bytes:
    return u32(otp)


def time_to_counter(time: int, interval: int = DEFAULT_INTERVAL) -> int:
    return time // interval


def time_to_index(
    effective_time: int,
    time: int,
    interval: int = DEFAULT_INTERVAL,
    lifespan: Optional[int] = None,
) -> int:
    """
    Index of the time slot containing ``time`` within a wallet whose tree
    starts at ``effective_time``.

    Raises
    ------
    OutOfRangeError
        If ``time`` is before the wallet's first slot, or at/after the end of
        its lifetime when ``lifespan`` is given.
    """
    index = time // interval - effective_time // interval
    if index < 0:
        raise OutOfRangeError(f"Time {time} is before effective time {effective_time}")
    if lifespan is not None and index >= lifespan:
        raise OutOfRangeError(f"Index {index} beyond wallet lifespan {lifespan}")
    return index
