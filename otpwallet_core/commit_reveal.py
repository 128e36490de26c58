"""
Commit-reveal codec.

Spending a leaf is two on-chain calls.  The commit publishes three hashes that
say nothing about the operation:

    commit_hash        = KECCAK(neighbors[0] || u32(position) || eotp)
    params_hash        = KECCAK(canonical operation fields)
    verification_hash  = KECCAK(params_hash || eotp)

The reveal then discloses the auth path, the position, the EOTP and the
operation fields.  The verifier rebuilds the leaf, walks it to the wallet
root and recomputes all three hashes against the stored commitment.

Everything here is a pure function of its inputs, so a reveal can be
re-prepared at any later time and yields byte-identical hashes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from otpwallet_core.eotp import compute_eotp, compute_leaf, compute_multi_eotp
from otpwallet_core.hashing import HASH_SIZE, hexstring, keccak256, u32
from otpwallet_core.merkle import BuildResult, InnerTree, MerkleTree, multi_code_position
from otpwallet_core.operations import (
    OperationParams,
    compute_params_hash,
    reveal_params,
)
from otpwallet_core.otp import gen_otp, gen_otps, time_to_index
from otpwallet_core.proof import reduce_path, verify_path

log = logging.getLogger("otpwallet.commit_reveal")

REVEAL_WINDOW = 60   # seconds a commitment stays revealable

_EMPTY_NEIGHBOR = b"\x00" * HASH_SIZE


def compute_commit_hash(neighbor: bytes, index: int, eotp: bytes) -> bytes:
    return keccak256(bytes(neighbor) + u32(index) + bytes(eotp))


def compute_verification_hash(params_hash: bytes, eotp: bytes) -> bytes:
    return keccak256(bytes(params_hash) + bytes(eotp))


# ── Payloads ────────────────────────────────────────────────────

@dataclass(frozen=True)
class AuthParams:
    neighbors: tuple[bytes, ...]
    index: int          # leaf position
    eotp: bytes

    def to_dict(self) -> dict:
        return {
            "neighbors": [hexstring(n) for n in self.neighbors],
            "index": self.index,
            "eotp": hexstring(self.eotp),
        }


@dataclass(frozen=True)
class RevealPayload:
    auth: AuthParams
    params: OperationParams

    def to_args(self) -> tuple:
        """Positional arguments of the on-chain reveal call."""
        fields = reveal_params(self.params)
        auth = self.auth.to_dict()
        data = fields[6]
        return (auth["neighbors"], auth["index"], auth["eotp"]) + fields[:6] + (hexstring(data),)

    def to_dict(self) -> dict:
        op, token_type, contract, token_id, dest, amount, data = reveal_params(self.params)
        return {
            **self.auth.to_dict(),
            "operation_type": op,
            "token_type": token_type,
            "contract_address": contract,
            "token_id": token_id,
            "dest": dest,
            "amount": amount,
            "data": hexstring(data),
        }


@dataclass(frozen=True)
class CommitArgs:
    commit_hash: bytes
    params_hash: bytes
    verification_hash: bytes

    def to_args(self) -> tuple[str, str, str]:
        return (
            hexstring(self.commit_hash),
            hexstring(self.params_hash),
            hexstring(self.verification_hash),
        )


@dataclass(frozen=True)
class CommitReveal:
    commit: CommitArgs
    reveal: RevealPayload

    def to_dict(self) -> dict:
        commit_hash, params_hash, verification_hash = self.commit.to_args()
        return {
            "commit": {
                "commit_hash": commit_hash,
                "params_hash": params_hash,
                "verification_hash": verification_hash,
            },
            "reveal": self.reveal.to_dict(),
        }


# ── Commitment lifecycle ────────────────────────────────────────

class CommitState(Enum):
    UNCOMMITTED = "uncommitted"
    COMMITTED = "committed"
    COMPLETED = "completed"
    EXPIRED = "expired"


@dataclass
class Commitment:
    """A commitment as the verifier records it."""
    commit_hash: bytes
    params_hash: bytes
    verification_hash: bytes
    timestamp: int        # seconds
    completed: bool = False

    @classmethod
    def from_args(cls, args: CommitArgs, timestamp: int) -> Commitment:
        return cls(args.commit_hash, args.params_hash, args.verification_hash, timestamp)

    def to_dict(self) -> dict:
        return {
            "commit_hash": hexstring(self.commit_hash),
            "params_hash": hexstring(self.params_hash),
            "verification_hash": hexstring(self.verification_hash),
            "timestamp": self.timestamp,
            "completed": self.completed,
        }


def commitment_state(
    commitment: Optional[Commitment], now: int, reveal_window: int = REVEAL_WINDOW,
) -> CommitState:
    if commitment is None:
        return CommitState.UNCOMMITTED
    if commitment.completed:
        return CommitState.COMPLETED
    if now - commitment.timestamp >= reveal_window:
        return CommitState.EXPIRED
    return CommitState.COMMITTED


# ── Spend-time helpers ──────────────────────────────────────────

def regenerate_eotp(
    seed: bytes,
    hseed: bytes,
    tree: MerkleTree,
    time: int,
    slot: int = 0,
    aux: int = 0,
) -> tuple[int, bytes]:
    """
    Recompute the EOTP of the leaf covering ``time`` (ms).

    Works for any single-code tree (main, second-factor, randomness); pass
    the randomness as ``aux`` for the latter.  Returns ``(index, eotp)``.
    """
    index = time_to_index(tree.t0 * tree.interval, time, tree.interval, tree.lifespan)
    otp = gen_otp(seed, tree.t0 + index)
    return index, compute_eotp(otp, hseed, slot, aux)


def regenerate_multi_eotp(
    seed: bytes,
    hseed: bytes,
    result: BuildResult,
    counter: int,
    slot: int = 0,
) -> tuple[InnerTree, int, bytes]:
    """EOTP for the ``k`` codes starting at base ``counter``."""
    inner, index = multi_code_position(result, counter)
    otps = gen_otps(seed, counter, result.multi_code)
    return inner, index, compute_multi_eotp(otps, hseed, slot)


def prepare_commit_reveal(
    tree: MerkleTree,
    index: int,
    eotp: bytes,
    params: OperationParams,
    slot: int = 0,
) -> CommitReveal:
    """
    Build the commit arguments and the matching reveal for one leaf.

    The leaf is checked against the tree root first; a regenerated EOTP that
    does not reduce to the root means the seed, hseed or layers are wrong and
    raises ``ProofMismatchError``.
    """
    position = tree.leaf_position(index, slot)
    neighbors = tree.neighbors(index, slot)
    verify_path(tree.root, compute_leaf(index, slot, eotp), position, neighbors)

    params_hash = compute_params_hash(params)
    verification_hash = compute_verification_hash(params_hash, eotp)
    first = neighbors[0] if neighbors else _EMPTY_NEIGHBOR
    commit_hash = compute_commit_hash(first, position, eotp)
    log.debug(
        f"Prepared {params.operation_type.name} at position {position}: "
        f"commit={hexstring(commit_hash)}"
    )
    return CommitReveal(
        commit=CommitArgs(commit_hash, params_hash, verification_hash),
        reveal=RevealPayload(AuthParams(neighbors, position, bytes(eotp)), params),
    )


def verify_reveal(
    root: bytes, slot_size: int, commitment: Commitment, reveal: RevealPayload,
) -> bool:
    """Check a reveal against a root and a stored commitment, as the verifier does."""
    if commitment.completed:
        return False
    auth = reveal.auth
    index, slot = divmod(auth.index, slot_size)
    leaf = compute_leaf(index, slot, auth.eotp)
    if reduce_path(leaf, auth.index, auth.neighbors) != root:
        return False
    first = auth.neighbors[0] if auth.neighbors else _EMPTY_NEIGHBOR
    if compute_commit_hash(first, auth.index, auth.eotp) != commitment.commit_hash:
        return False
    params_hash = compute_params_hash(reveal.params)
    if params_hash != commitment.params_hash:
        return False
    return compute_verification_hash(params_hash, auth.eotp) == commitment.verification_hash
