"""
Authentication paths ("neighbors") for wallet tree leaves.

Trees are always perfect, so every node has a sibling at ``pos ^ 1`` and a
path always has exactly ``height`` entries, leaf level first.
"""

from __future__ import annotations

from typing import Optional, Sequence

from otpwallet_core.errors import OutOfRangeError, ProofMismatchError
from otpwallet_core.hashing import hexstring, sha256


def select_neighbors(
    layers: Sequence[Sequence[bytes]],
    index: int,
    slot: int = 0,
    slot_size: int = 1,
    lifespan: Optional[int] = None,
) -> tuple[bytes, ...]:
    """
    Sibling hashes from leaf ``index * slot_size + slot`` up to the root.

    ``lifespan`` bounds ``index``; without it any position in layer 0 is
    accepted, padding leaves included.
    """
    pos = index * slot_size + slot
    if slot < 0 or slot >= slot_size or not 0 <= pos < len(layers[0]):
        raise OutOfRangeError(f"Leaf ({index}, {slot}) not in tree")
    if lifespan is not None and not 0 <= index < lifespan:
        raise OutOfRangeError(f"Index {index} outside lifespan {lifespan}")
    neighbors = []
    for layer in layers[:-1]:
        neighbors.append(layer[pos ^ 1])
        pos >>= 1
    return tuple(neighbors)


def reduce_path(leaf: bytes, position: int, neighbors: Sequence[bytes]) -> bytes:
    """Hash ``leaf`` up through ``neighbors``; returns the implied root."""
    node = leaf
    for sibling in neighbors:
        if position & 1:
            node = sha256(sibling + node)
        else:
            node = sha256(node + sibling)
        position >>= 1
    return node


def verify_path(
    root: bytes, leaf: bytes, position: int, neighbors: Sequence[bytes],
) -> None:
    implied = reduce_path(leaf, position, neighbors)
    if implied != root:
        raise ProofMismatchError(
            f"Leaf at {position} reduces to {hexstring(implied)}, "
            f"expected {hexstring(root)}"
        )
