"""
Shared pytest fixtures for the otpwallet test suite.
"""

import pytest

from otpwallet_core.eotp import derive_hseed
from otpwallet_core.merkle import compute_merkle_tree

# RFC 4226 / RFC 6238 test secret (20 bytes)
SEED = b"12345678901234567890"
SEED2 = b"abcdefghijklmnopqrst"

INTERVAL = 30_000
DURATION = 360_000                  # 12 intervals
EFFECTIVE_TIME = 1_600_000_020_000  # interval-aligned
T0 = EFFECTIVE_TIME // INTERVAL

DEST = "0x" + "11" * 20
OTHER_DEST = "0x" + "22" * 20


@pytest.fixture
def seed():
    return SEED


@pytest.fixture
def hseed():
    return derive_hseed(SEED)


@pytest.fixture
def small_result():
    """12-interval wallet, one slot per interval."""
    return compute_merkle_tree(SEED, EFFECTIVE_TIME, DURATION, interval=INTERVAL)


@pytest.fixture
def small_tree(small_result):
    return small_result.tree


@pytest.fixture
def slotted_result():
    """6-interval wallet with two operation slots per interval."""
    return compute_merkle_tree(
        SEED, EFFECTIVE_TIME, 6 * INTERVAL, interval=INTERVAL, slot_size=2,
    )


@pytest.fixture
def double_otp_result():
    return compute_merkle_tree(
        SEED, EFFECTIVE_TIME, DURATION, interval=INTERVAL, seed2=SEED2,
    )
