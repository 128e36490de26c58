"""
EOTP derivation — folds an OTP code into a per-leaf secret.

    eotp       = SHA256(hseed[0:22] || u16(slot) || u32(otp) || u32(aux))
    multi-eotp = SHA256(hseed[0:22] || u16(slot) || u32(otp_0) || ... || u32(otp_k-1))
    leaf       = SHA256(u32(index) || u16(slot) || eotp)

The hseed keeps EOTPs unguessable even when two unrelated wallets see the
same 6-digit code; index and slot in the leaf keep every leaf of a tree
distinct even if two EOTPs collided.
"""

from __future__ import annotations

from typing import Sequence

from otpwallet_core.hashing import HASH_SIZE, MAX_UINT32, sha256, u16, u32

HSEED_PREFIX = 22
MAX_SLOT = 0xFFFF


def derive_hseed(seed: bytes, salt: bytes = b"") -> bytes:
    """Wallet hash-seed: SHA256(salt || seed)."""
    return sha256(bytes(salt) + bytes(seed))


def derive_second_hseed(hseed: bytes, seed2: bytes) -> bytes:
    """Hash-seed of a double-OTP wallet's second-factor tree."""
    return derive_hseed(seed2, salt=hseed)


def _check_hseed(hseed: bytes) -> None:
    if len(hseed) < HSEED_PREFIX:
        raise ValueError(f"hseed must be at least {HSEED_PREFIX} bytes")


def compute_eotp(otp: int, hseed: bytes, slot: int = 0, aux: int = 0) -> bytes:
    _check_hseed(hseed)
    if not 0 <= slot <= MAX_SLOT:
        raise ValueError(f"Slot {slot} out of range")
    if not 0 <= aux <= MAX_UINT32:
        raise ValueError(f"aux {aux} does not fit in uint32")
    return sha256(bytes(hseed[:HSEED_PREFIX]) + u16(slot) + u32(otp) + u32(aux))


def compute_multi_eotp(otps: Sequence[int], hseed: bytes, slot: int = 0) -> bytes:
    """EOTP over several consecutive codes (multi-code inner trees)."""
    _check_hseed(hseed)
    if len(otps) < 2:
        raise ValueError("multi-code EOTP needs at least two codes")
    buf = bytes(hseed[:HSEED_PREFIX]) + u16(slot)
    for otp in otps:
        buf += u32(otp)
    return sha256(buf)


def compute_leaf(index: int, slot: int, eotp: bytes) -> bytes:
    if len(eotp) != HASH_SIZE:
        raise ValueError(f"EOTP must be {HASH_SIZE} bytes")
    return sha256(u32(index) + u16(slot) + bytes(eotp))
