"""
Merkle tree builder for OTP wallets.

A wallet's tree commits to every authorization the wallet can ever make: one
leaf per (time index, operation slot) pair over the wallet's lifetime,
padded to a power of two so the tree is always perfect.

    layer 0      leaves (+ padding leaves)
    layer i+1    SHA256(layer_i[2k] || layer_i[2k+1])
    layer h      (root,)

Every layer is kept: the proof selector reads sibling hashes from them at
spend time.  Trees are immutable once built; extending a wallet's life means
building a new tree, never changing an existing one.

Inner trees
-----------
Built next to the main tree on the same schedule, each with its own root:

* ``SECOND_FACTOR`` — keyed to a second OTP seed (double-OTP wallets)
* ``RANDOMNESS``    — main seed, with a caller-chosen 32-bit value folded in
* ``MULTI_CODE``    — ``k`` trees whose leaves each cover ``k`` consecutive
  codes; tree ``j`` starts ``j`` intervals after the main tree so any run of
  ``k`` codes lines up with exactly one of them
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Optional, Sequence

from otpwallet_core.eotp import (
    MAX_SLOT,
    compute_eotp,
    compute_leaf,
    compute_multi_eotp,
    derive_hseed,
    derive_second_hseed,
)
from otpwallet_core.errors import (
    InvalidConfigurationError,
    OutOfRangeError,
    ProofMismatchError,
)
from otpwallet_core.hashing import HASH_SIZE, MAX_UINT32, hexstring, sha256
from otpwallet_core.otp import DEFAULT_INTERVAL, gen_otps
from otpwallet_core.proof import select_neighbors

log = logging.getLogger("otpwallet.merkle")

PADDING_LEAF = sha256(b"otpwallet:padding")

SEED_MIN_BYTES = 16
SEED_MAX_BYTES = 20

# progress stages reported to observers
STAGE_OTP = 0
STAGE_LEAVES = 1
STAGE_LAYERS = 2
STAGE_INNER = 3

ProgressObserver = Callable[[int, int, int], None]

_BLOB_MAGIC = b"OTPT"
_BLOB_VERSION = 1
_BLOB_HEADER = struct.Struct(">4sBQIQII")
_BUILD_ID_PARAMS = struct.Struct(">QQQI??II")
_BUILD_ID_INNER = struct.Struct(">BI")


class InnerTreeKind(IntEnum):
    SECOND_FACTOR = 1
    RANDOMNESS = 2
    MULTI_CODE = 3


def _next_power_of_two(n: int) -> int:
    p = 1
    while p < n:
        p <<= 1
    return p


def build_layers(
    leaves: Sequence[bytes],
    progress_observer: Optional[ProgressObserver] = None,
    report_interval: Optional[int] = None,
) -> tuple[tuple[bytes, ...], ...]:
    """Pad ``leaves`` to a power of two and reduce them to a root."""
    if not leaves:
        raise InvalidConfigurationError("Cannot build a tree without leaves")
    n = _next_power_of_two(len(leaves))
    layer = tuple(leaves) + (PADDING_LEAF,) * (n - len(leaves))
    layers = [layer]
    done = 0
    while len(layer) > 1:
        layer = tuple(
            sha256(layer[i] + layer[i + 1]) for i in range(0, len(layer), 2)
        )
        layers.append(layer)
        done += len(layer)
        if progress_observer and report_interval:
            progress_observer(done, n - 1, STAGE_LAYERS)
    return tuple(layers)


# ── Tree value ──────────────────────────────────────────────────

@dataclass(frozen=True)
class MerkleTree:
    """An immutable, fully layered tree plus the schedule it was built for."""
    layers: tuple[tuple[bytes, ...], ...]
    t0: int            # floor(start / interval), in this tree's own interval units
    lifespan: int      # number of indices
    interval: int      # ms per index
    slot_size: int = 1

    @property
    def root(self) -> bytes:
        return self.layers[-1][0]

    @property
    def height(self) -> int:
        """Number of layers above the leaves (= auth path length)."""
        return len(self.layers) - 1

    @property
    def leaves(self) -> tuple[bytes, ...]:
        return self.layers[0]

    def leaf_position(self, index: int, slot: int = 0) -> int:
        if not 0 <= index < self.lifespan:
            raise OutOfRangeError(f"Index {index} outside lifespan {self.lifespan}")
        if not 0 <= slot < self.slot_size:
            raise OutOfRangeError(f"Slot {slot} outside slot size {self.slot_size}")
        return index * self.slot_size + slot

    def leaf(self, index: int, slot: int = 0) -> bytes:
        return self.layers[0][self.leaf_position(index, slot)]

    def neighbors(self, index: int, slot: int = 0) -> tuple[bytes, ...]:
        """Auth path of a leaf inside the lifespan."""
        return select_neighbors(self.layers, index, slot, self.slot_size, self.lifespan)

    def core(self) -> tuple[str, int, int, int, int, int]:
        """On-chain core: (root, height, interval seconds, t0, lifespan, slot size)."""
        return (
            hexstring(self.root),
            self.height,
            self.interval // 1000,
            self.t0,
            self.lifespan,
            self.slot_size,
        )

    # ---- persistence ----

    def to_blob(self) -> bytes:
        header = _BLOB_HEADER.pack(
            _BLOB_MAGIC, _BLOB_VERSION, self.t0, self.lifespan,
            self.interval, self.slot_size, len(self.layers[0]),
        )
        return header + b"".join(h for layer in self.layers for h in layer)

    @classmethod
    def from_blob(cls, blob: bytes, verify: bool = True) -> MerkleTree:
        """
        Load a tree written by :meth:`to_blob`.

        With ``verify`` every inner node is recomputed from its children and a
        mismatch raises ``ProofMismatchError``.
        """
        if len(blob) < _BLOB_HEADER.size:
            raise ValueError("Tree blob truncated")
        magic, version, t0, lifespan, interval, slot_size, n = _BLOB_HEADER.unpack_from(blob)
        if magic != _BLOB_MAGIC or version != _BLOB_VERSION:
            raise ValueError("Not a tree blob")
        if n < 1 or n & (n - 1):
            raise ValueError(f"Leaf count {n} is not a power of two")
        body = blob[_BLOB_HEADER.size:]
        if len(body) != (2 * n - 1) * HASH_SIZE:
            raise ValueError("Tree blob length does not match its leaf count")

        layers = []
        offset = 0
        size = n
        while size >= 1:
            layer = tuple(
                body[offset + i * HASH_SIZE: offset + (i + 1) * HASH_SIZE]
                for i in range(size)
            )
            layers.append(layer)
            offset += size * HASH_SIZE
            size //= 2

        if verify:
            for depth in range(1, len(layers)):
                below = layers[depth - 1]
                for i, node in enumerate(layers[depth]):
                    if sha256(below[2 * i] + below[2 * i + 1]) != node:
                        raise ProofMismatchError(
                            f"Stored layer {depth} node {i} does not match its children"
                        )
        return cls(tuple(layers), t0, lifespan, interval, slot_size)


@dataclass(frozen=True)
class InnerTree:
    kind: InnerTreeKind
    tree: MerkleTree
    offset: int = 0    # MULTI_CODE: intervals after the main tree's t0


@dataclass(frozen=True)
class BuildResult:
    """Everything a client keeps after a successful build."""
    tree: MerkleTree
    hseed: bytes
    effective_time: int
    duration: int
    inner_trees: tuple[InnerTree, ...] = ()
    double_otp: bool = False
    randomness: Optional[int] = None
    multi_code: int = 0

    @property
    def root(self) -> bytes:
        return self.tree.root

    @property
    def layers(self) -> tuple[tuple[bytes, ...], ...]:
        return self.tree.layers

    @property
    def build_id(self) -> bytes:
        """
        Digest over the main root, the hseed, the build parameters and every
        inner tree.  The main root alone does not depend on ``seed2``,
        ``randomness`` or ``multi_code``, so stores key builds on this.
        """
        tree = self.tree
        parts = [
            self.root,
            self.hseed,
            _BUILD_ID_PARAMS.pack(
                self.effective_time, self.duration, tree.interval, tree.slot_size,
                self.double_otp, self.randomness is not None, self.randomness or 0,
                self.multi_code,
            ),
        ]
        for inner in self.inner_trees:
            parts.append(_BUILD_ID_INNER.pack(int(inner.kind), inner.offset))
            parts.append(inner.tree.root)
        return sha256(b"".join(parts))

    def inner(self, kind: InnerTreeKind) -> list[InnerTree]:
        return [t for t in self.inner_trees if t.kind == kind]

    def cores(self) -> dict[str, Any]:
        return {
            "core": self.tree.core(),
            "inner_cores": [t.tree.core() for t in self.inner_trees],
        }

    def to_response(self) -> dict[str, Any]:
        """Build response as handed across the UI / worker boundary."""
        return {
            "root": self.root,
            "layers": self.layers,
            "inner_trees": [
                {"kind": t.kind.name, "offset": t.offset,
                 "root": t.tree.root, "layers": t.tree.layers}
                for t in self.inner_trees
            ],
            "hseed": self.hseed,
            "double_otp": self.double_otp,
        }


# ── Builder ─────────────────────────────────────────────────────

def _validate(
    seed: bytes, seed2: Optional[bytes], duration: int, interval: int,
    slot_size: int, randomness: Optional[int], multi_code: int,
) -> int:
    if interval <= 0:
        raise InvalidConfigurationError(f"Interval must be positive, got {interval}")
    if duration <= 0:
        raise InvalidConfigurationError(f"Duration must be positive, got {duration}")
    if duration % interval:
        raise InvalidConfigurationError(
            f"Duration {duration} is not a multiple of interval {interval}"
        )
    if slot_size < 1 or slot_size > MAX_SLOT + 1:
        raise InvalidConfigurationError(f"Invalid slot size {slot_size}")
    for name, s in (("seed", seed), ("seed2", seed2)):
        if s is not None and not SEED_MIN_BYTES <= len(s) <= SEED_MAX_BYTES:
            raise InvalidConfigurationError(
                f"{name} must be {SEED_MIN_BYTES}-{SEED_MAX_BYTES} bytes, got {len(s)}"
            )
    if randomness is not None and not 0 <= randomness <= MAX_UINT32:
        raise InvalidConfigurationError(f"Randomness {randomness} does not fit in uint32")
    lifespan = duration // interval
    if multi_code:
        if multi_code < 2:
            raise InvalidConfigurationError("multi_code window must be at least 2 codes")
        if 2 * multi_code - 1 > lifespan:
            raise InvalidConfigurationError(
                f"multi_code window {multi_code} too large for lifespan {lifespan}"
            )
    return lifespan


def _single_code_leaves(
    otps: Sequence[int], hseed: bytes, slot_size: int, aux: int,
    progress_observer: Optional[ProgressObserver], report_interval: Optional[int],
) -> list[bytes]:
    leaves = []
    total = len(otps) * slot_size
    for index, otp in enumerate(otps):
        for slot in range(slot_size):
            eotp = compute_eotp(otp, hseed, slot, aux)
            leaves.append(compute_leaf(index, slot, eotp))
            n = len(leaves)
            if progress_observer and report_interval and n % report_interval == 0:
                progress_observer(n, total, STAGE_LEAVES)
    return leaves


def build_tree(
    otps: Sequence[int],
    hseed: bytes,
    t0: int,
    interval: int,
    slot_size: int = 1,
    aux: int = 0,
    progress_observer: Optional[ProgressObserver] = None,
    report_interval: Optional[int] = None,
) -> MerkleTree:
    """One tree over precomputed codes, one code per index."""
    leaves = _single_code_leaves(
        otps, hseed, slot_size, aux, progress_observer, report_interval,
    )
    layers = build_layers(leaves, progress_observer, report_interval)
    return MerkleTree(layers, t0, len(otps), interval, slot_size)


def build_multi_code_trees(
    otps: Sequence[int],
    hseed: bytes,
    t0: int,
    interval: int,
    k: int,
    slot_size: int = 1,
) -> list[InnerTree]:
    trees = []
    for j in range(k):
        lifespan = (len(otps) - j) // k
        leaves = []
        for i in range(lifespan):
            start = j + i * k
            window = otps[start: start + k]
            for slot in range(slot_size):
                leaves.append(compute_leaf(i, slot, compute_multi_eotp(window, hseed, slot)))
        # window i of tree j starts at counter t0 + j + i*k, which falls in
        # k-interval (t0 + j) // k + i
        tree = MerkleTree(
            build_layers(leaves), (t0 + j) // k, lifespan, interval * k, slot_size,
        )
        trees.append(InnerTree(InnerTreeKind.MULTI_CODE, tree, offset=j))
    return trees


def multi_code_position(result: BuildResult, counter: int) -> tuple[InnerTree, int]:
    """
    Find the multi-code tree and index whose window starts at ``counter``
    (the counter of the first of the ``k`` codes).
    """
    k = result.multi_code
    if not k:
        raise OutOfRangeError("Wallet has no multi-code trees")
    rel = counter - result.tree.t0
    if rel < 0:
        raise OutOfRangeError(f"Counter {counter} before wallet start")
    j = rel % k
    for inner in result.inner(InnerTreeKind.MULTI_CODE):
        if inner.offset == j:
            index = rel // k
            if index >= inner.tree.lifespan:
                raise OutOfRangeError(f"Counter {counter} beyond multi-code window")
            return inner, index
    raise OutOfRangeError(f"No multi-code tree with offset {j}")


def compute_merkle_tree(
    seed: bytes,
    effective_time: int,
    duration: int,
    interval: int = DEFAULT_INTERVAL,
    slot_size: int = 1,
    seed2: Optional[bytes] = None,
    hseed: Optional[bytes] = None,
    randomness: Optional[int] = None,
    multi_code: int = 0,
    progress_observer: Optional[ProgressObserver] = None,
    report_interval: Optional[int] = None,
) -> BuildResult:
    """
    Build a wallet's main tree and its inner trees.

    Parameters
    ----------
    seed : bytes
        Authenticator secret (16–20 bytes).
    effective_time : int
        Wallet start in ms; rounded down to an interval boundary.
    duration : int
        Wallet lifetime in ms; must be a multiple of ``interval``.
    seed2 : bytes, optional
        Second authenticator secret; adds a ``SECOND_FACTOR`` inner tree.
    hseed : bytes, optional
        Explicit hash-seed; defaults to ``SHA256(seed)``.
    randomness : int, optional
        32-bit value committed to by a ``RANDOMNESS`` inner tree.
    multi_code : int
        Window size ``k`` for ``MULTI_CODE`` inner trees (0 disables them).

    Raises
    ------
    InvalidConfigurationError
        Before any hashing, for an inconsistent schedule or malformed input.
    """
    lifespan = _validate(seed, seed2, duration, interval, slot_size, randomness, multi_code)
    effective_time = effective_time // interval * interval
    t0 = effective_time // interval
    if hseed is None:
        hseed = derive_hseed(seed)

    log.info(
        f"Building tree: lifespan={lifespan} slot_size={slot_size} "
        f"t0={t0} double_otp={seed2 is not None}"
    )
    otps = gen_otps(seed, t0, lifespan, progress_observer, report_interval)
    log.debug("Stage 0 done: OTPs generated")
    tree = build_tree(
        otps, hseed, t0, interval, slot_size, 0, progress_observer, report_interval,
    )
    log.debug(f"Main tree built: height={tree.height} root={hexstring(tree.root)}")

    inner: list[InnerTree] = []
    if seed2 is not None:
        otps2 = gen_otps(seed2, t0, lifespan)
        hseed2 = derive_second_hseed(hseed, seed2)
        inner.append(InnerTree(
            InnerTreeKind.SECOND_FACTOR,
            build_tree(otps2, hseed2, t0, interval, slot_size),
        ))
    if randomness is not None:
        inner.append(InnerTree(
            InnerTreeKind.RANDOMNESS,
            build_tree(otps, hseed, t0, interval, slot_size, aux=randomness),
        ))
    if multi_code:
        inner.extend(build_multi_code_trees(otps, hseed, t0, interval, multi_code, slot_size))
    if progress_observer and inner:
        progress_observer(len(inner), len(inner), STAGE_INNER)

    log.info(f"Tree built: root={hexstring(tree.root)} inner_trees={len(inner)}")
    return BuildResult(
        tree=tree,
        hseed=hseed,
        effective_time=effective_time,
        duration=duration,
        inner_trees=tuple(inner),
        double_otp=seed2 is not None,
        randomness=randomness,
        multi_code=multi_code,
    )
