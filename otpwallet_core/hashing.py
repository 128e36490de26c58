"""
Hash primitives and fixed-width encodings shared by the tree builder and the
commit-reveal codec.

SHA-256 builds the tree (leaves, EOTPs, inner nodes); Keccak-256 hashes the
commit-reveal messages so they match the on-chain verifier byte for byte.
Every integer and address is encoded at a fixed width:

    u16 / u32   big-endian, used inside EOTP and leaf preimages
    u256        32-byte big-endian word
    address     20 bytes, left-padded with zeros to a 32-byte word
"""

from __future__ import annotations

import hashlib
import struct

from Crypto.Hash import keccak

HASH_SIZE = 32
ADDRESS_SIZE = 20
MAX_UINT32 = 2**32 - 1
MAX_UINT256 = 2**256 - 1

EMPTY_ADDRESS = "0x" + "00" * ADDRESS_SIZE


# ── Hash helpers ────────────────────────────────────────────────

def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def keccak256(data: bytes) -> bytes:
    """Ethereum Keccak-256 (pre-standard SHA-3 padding)."""
    return keccak.new(digest_bits=256, data=data).digest()


# ── Fixed-width encodings ───────────────────────────────────────

def u16(value: int) -> bytes:
    return struct.pack(">H", value)


def u32(value: int) -> bytes:
    return struct.pack(">I", value)


def u256(value: int) -> bytes:
    value = int(value)
    if value < 0 or value > MAX_UINT256:
        raise ValueError(f"Value {value} does not fit in uint256")
    return value.to_bytes(32, "big")


def normalize_address(address: str | bytes) -> str:
    """Return a ``0x``-prefixed lowercase 20-byte address."""
    if isinstance(address, (bytes, bytearray)):
        raw = bytes(address)
    else:
        text = address[2:] if address[:2] in ("0x", "0X") else address
        try:
            raw = bytes.fromhex(text)
        except ValueError as exc:
            raise ValueError(f"Malformed address: {address!r}") from exc
    if len(raw) != ADDRESS_SIZE:
        raise ValueError(f"Address must be {ADDRESS_SIZE} bytes, got {len(raw)}")
    return "0x" + raw.hex()


def address_word(address: str | bytes) -> bytes:
    """Left-pad a 20-byte address to a 32-byte word."""
    raw = bytes.fromhex(normalize_address(address)[2:])
    return b"\x00" * (32 - ADDRESS_SIZE) + raw


# ── Hex rendering ───────────────────────────────────────────────

def hexstring(data: bytes) -> str:
    return "0x" + bytes(data).hex()


def from_hexstring(text: str) -> bytes:
    if text[:2] in ("0x", "0X"):
        text = text[2:]
    return bytes.fromhex(text)
