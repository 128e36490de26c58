"""
Tests for otpwallet_core.merkle — tree construction.

Covers:
  - Shape: leaf padding, height, layer relation
  - Leaf derivation per (index, slot)
  - Idempotence and effective-time rounding
  - Configuration validation (before any hashing)
  - Progress reporting
  - Second-factor, randomness and multi-code inner trees
  - Cores, build responses and blob persistence
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from conftest import DURATION, EFFECTIVE_TIME, INTERVAL, SEED, SEED2, T0
from otpwallet_core.eotp import (
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
from otpwallet_core.hashing import hexstring, sha256
from otpwallet_core.merkle import (
    PADDING_LEAF,
    STAGE_INNER,
    STAGE_LAYERS,
    STAGE_LEAVES,
    STAGE_OTP,
    InnerTreeKind,
    MerkleTree,
    build_layers,
    compute_merkle_tree,
    multi_code_position,
)
from otpwallet_core.otp import gen_otp, gen_otps, time_to_index


# ═══════════════════════════════════════════════════════════════════
#  Shape
# ═══════════════════════════════════════════════════════════════════

class TestShape:
    def test_twelve_leaves_padded_to_sixteen(self, small_tree):
        assert len(small_tree.leaves) == 16
        assert small_tree.height == 4
        assert small_tree.lifespan == 12
        assert small_tree.leaves[12:] == (PADDING_LEAF,) * 4
        assert len(small_tree.root) == 32

    def test_layers_halve_up_to_root(self, small_tree):
        sizes = [len(layer) for layer in small_tree.layers]
        assert sizes == [16, 8, 4, 2, 1]
        assert small_tree.layers[-1] == (small_tree.root,)

    def test_parent_is_hash_of_children(self, small_tree):
        layers = small_tree.layers
        for depth in range(1, len(layers)):
            for i, node in enumerate(layers[depth]):
                assert node == sha256(layers[depth - 1][2 * i] + layers[depth - 1][2 * i + 1])

    def test_layers_are_immutable_tuples(self, small_tree):
        assert isinstance(small_tree.layers, tuple)
        assert all(isinstance(layer, tuple) for layer in small_tree.layers)

    def test_slot_size_multiplies_leaves(self, slotted_result):
        tree = slotted_result.tree
        assert tree.slot_size == 2
        assert len(tree.leaves) == 16
        assert tree.leaves[12:] == (PADDING_LEAF,) * 4

    def test_exact_power_of_two_needs_no_padding(self):
        result = compute_merkle_tree(SEED, EFFECTIVE_TIME, 8 * INTERVAL, interval=INTERVAL)
        assert PADDING_LEAF not in result.tree.leaves
        assert result.tree.height == 3

    def test_single_interval_tree(self):
        result = compute_merkle_tree(SEED, EFFECTIVE_TIME, INTERVAL, interval=INTERVAL)
        assert result.tree.height == 0
        assert result.root == result.tree.leaves[0]

    def test_build_layers_requires_leaves(self):
        with pytest.raises(InvalidConfigurationError):
            build_layers([])


# ═══════════════════════════════════════════════════════════════════
#  Leaves
# ═══════════════════════════════════════════════════════════════════

class TestLeaves:
    def test_leaf_derivation(self, small_tree):
        hseed = derive_hseed(SEED)
        for index in (0, 5, 11):
            eotp = compute_eotp(gen_otp(SEED, T0 + index), hseed)
            assert small_tree.leaf(index) == compute_leaf(index, 0, eotp)

    def test_slotted_leaf_positions(self, slotted_result):
        tree = slotted_result.tree
        hseed = slotted_result.hseed
        otp = gen_otp(SEED, T0 + 4)
        assert tree.leaf_position(4, 1) == 9
        assert tree.leaves[9] == compute_leaf(4, 1, compute_eotp(otp, hseed, 1))

    def test_leaves_distinct(self, slotted_result, small_tree):
        assert len(set(small_tree.leaves[:12])) == 12
        assert len(set(slotted_result.tree.leaves[:12])) == 12

    def test_neighbors_bounded_by_lifespan(self, small_tree):
        assert len(small_tree.neighbors(11)) == small_tree.height
        with pytest.raises(OutOfRangeError):
            small_tree.neighbors(12)     # padding leaf
        with pytest.raises(OutOfRangeError):
            small_tree.neighbors(-1)

    def test_leaf_position_out_of_range(self, small_tree):
        with pytest.raises(OutOfRangeError):
            small_tree.leaf_position(12)
        with pytest.raises(OutOfRangeError):
            small_tree.leaf_position(0, 1)
        with pytest.raises(OutOfRangeError):
            small_tree.leaf(-1)

    def test_explicit_hseed(self):
        hseed = b"\x42" * 32
        result = compute_merkle_tree(SEED, EFFECTIVE_TIME, DURATION, interval=INTERVAL, hseed=hseed)
        assert result.hseed == hseed
        eotp = compute_eotp(gen_otp(SEED, T0), hseed)
        assert result.tree.leaf(0) == compute_leaf(0, 0, eotp)


# ═══════════════════════════════════════════════════════════════════
#  Determinism
# ═══════════════════════════════════════════════════════════════════

class TestDeterminism:
    def test_idempotent(self, small_result):
        again = compute_merkle_tree(SEED, EFFECTIVE_TIME, DURATION, interval=INTERVAL)
        assert again.root == small_result.root
        assert again.layers == small_result.layers

    def test_effective_time_rounded_down(self, small_result):
        shifted = compute_merkle_tree(SEED, EFFECTIVE_TIME + 12_345, DURATION, interval=INTERVAL)
        assert shifted.root == small_result.root
        assert shifted.effective_time == EFFECTIVE_TIME

    def test_different_seed_different_root(self, small_result):
        other = compute_merkle_tree(SEED2, EFFECTIVE_TIME, DURATION, interval=INTERVAL)
        assert other.root != small_result.root

    def test_different_start_different_root(self, small_result):
        later = compute_merkle_tree(SEED, EFFECTIVE_TIME + INTERVAL, DURATION, interval=INTERVAL)
        assert later.root != small_result.root


# ═══════════════════════════════════════════════════════════════════
#  Validation
# ═══════════════════════════════════════════════════════════════════

class TestValidation:
    @pytest.mark.parametrize("kwargs", [
        {"duration": DURATION + 1},
        {"duration": 0},
        {"interval": 0},
        {"slot_size": 0},
        {"slot_size": 0x10001},
        {"seed": b"short"},
        {"seed": b"x" * 21},
        {"seed2": b"y" * 15},
        {"randomness": -1},
        {"randomness": 2**32},
        {"multi_code": 1},
        {"multi_code": 7},
    ])
    def test_rejected(self, kwargs):
        args = {"seed": SEED, "effective_time": EFFECTIVE_TIME,
                "duration": DURATION, "interval": INTERVAL, **kwargs}
        with pytest.raises(InvalidConfigurationError):
            compute_merkle_tree(**args)

    def test_rejected_before_hashing(self):
        with patch("otpwallet_core.merkle.gen_otps") as gen:
            with pytest.raises(InvalidConfigurationError):
                compute_merkle_tree(SEED, EFFECTIVE_TIME, DURATION + 1, interval=INTERVAL)
            gen.assert_not_called()

    def test_invalid_configuration_is_value_error(self):
        with pytest.raises(ValueError):
            compute_merkle_tree(SEED, EFFECTIVE_TIME, DURATION, interval=-1)

    def test_largest_multi_code_window_accepted(self):
        result = compute_merkle_tree(
            SEED, EFFECTIVE_TIME, DURATION, interval=INTERVAL, multi_code=6,
        )
        assert len(result.inner(InnerTreeKind.MULTI_CODE)) == 6


# ═══════════════════════════════════════════════════════════════════
#  Progress
# ═══════════════════════════════════════════════════════════════════

class TestProgress:
    def test_all_stages_reported(self):
        seen = []
        compute_merkle_tree(
            SEED, EFFECTIVE_TIME, DURATION, interval=INTERVAL, seed2=SEED2,
            progress_observer=lambda c, t, s: seen.append((c, t, s)),
            report_interval=1,
        )
        stages = {s for _, _, s in seen}
        assert stages == {STAGE_OTP, STAGE_LEAVES, STAGE_LAYERS, STAGE_INNER}
        leaf_reports = [(c, t) for c, t, s in seen if s == STAGE_LEAVES]
        assert leaf_reports[-1] == (12, 12)
        layer_reports = [(c, t) for c, t, s in seen if s == STAGE_LAYERS]
        assert layer_reports[-1] == (15, 15)

    def test_silent_without_report_interval(self):
        seen = []
        compute_merkle_tree(
            SEED, EFFECTIVE_TIME, DURATION, interval=INTERVAL,
            progress_observer=lambda c, t, s: seen.append(s),
        )
        assert seen == []


# ═══════════════════════════════════════════════════════════════════
#  Inner trees
# ═══════════════════════════════════════════════════════════════════

class TestInnerTrees:
    def test_plain_build_has_none(self, small_result):
        assert small_result.inner_trees == ()
        assert small_result.double_otp is False

    def test_second_factor_tree(self, double_otp_result, small_result):
        assert double_otp_result.double_otp is True
        assert double_otp_result.root == small_result.root
        (inner,) = double_otp_result.inner(InnerTreeKind.SECOND_FACTOR)
        hseed2 = derive_second_hseed(double_otp_result.hseed, SEED2)
        eotp = compute_eotp(gen_otp(SEED2, T0 + 3), hseed2)
        assert inner.tree.leaf(3) == compute_leaf(3, 0, eotp)
        assert inner.tree.root != small_result.root
        assert (inner.tree.t0, inner.tree.lifespan) == (T0, 12)

    def test_randomness_tree(self, small_result):
        result = compute_merkle_tree(
            SEED, EFFECTIVE_TIME, DURATION, interval=INTERVAL, randomness=123456,
        )
        (inner,) = result.inner(InnerTreeKind.RANDOMNESS)
        eotp = compute_eotp(gen_otp(SEED, T0 + 2), result.hseed, aux=123456)
        assert inner.tree.leaf(2) == compute_leaf(2, 0, eotp)
        assert inner.tree.root != small_result.root
        assert result.randomness == 123456

    def test_randomness_zero_still_builds_tree(self):
        result = compute_merkle_tree(
            SEED, EFFECTIVE_TIME, DURATION, interval=INTERVAL, randomness=0,
        )
        assert len(result.inner(InnerTreeKind.RANDOMNESS)) == 1

    def test_multi_code_schedule(self):
        k = 3
        result = compute_merkle_tree(
            SEED, EFFECTIVE_TIME, DURATION, interval=INTERVAL, multi_code=k,
        )
        trees = result.inner(InnerTreeKind.MULTI_CODE)
        assert [t.offset for t in trees] == [0, 1, 2]
        assert [t.tree.lifespan for t in trees] == [4, 3, 3]
        assert [t.tree.t0 for t in trees] == [(T0 + j) // k for j in range(k)]
        assert all(t.tree.interval == k * INTERVAL for t in trees)

        tree1 = trees[1].tree
        window = gen_otps(SEED, T0 + 1 + 2 * k, k)
        assert tree1.leaf(2) == compute_leaf(2, 0, compute_multi_eotp(window, result.hseed))

    @pytest.mark.parametrize("start", [EFFECTIVE_TIME, EFFECTIVE_TIME + INTERVAL])
    def test_multi_code_cores_index_their_windows(self, start):
        k = 3
        result = compute_merkle_tree(SEED, start, DURATION, interval=INTERVAL, multi_code=k)
        t0 = start // INTERVAL
        for inner in result.inner(InnerTreeKind.MULTI_CODE):
            root, height, interval_s, core_t0, lifespan, slot_size = inner.tree.core()
            interval = interval_s * 1000
            assert interval == k * INTERVAL
            for i in range(lifespan):
                # any moment of the interval holding the window's first code
                when = (t0 + inner.offset + i * k) * INTERVAL + INTERVAL - 1
                assert time_to_index(core_t0 * interval, when, interval, lifespan) == i

    def test_multi_code_position(self):
        result = compute_merkle_tree(
            SEED, EFFECTIVE_TIME, DURATION, interval=INTERVAL, multi_code=3,
        )
        inner, index = multi_code_position(result, T0 + 4)
        assert (inner.offset, index) == (1, 1)
        inner, index = multi_code_position(result, T0 + 9)
        assert (inner.offset, index) == (0, 3)
        with pytest.raises(OutOfRangeError):
            multi_code_position(result, T0 + 11)
        with pytest.raises(OutOfRangeError):
            multi_code_position(result, T0 - 1)

    def test_multi_code_position_needs_multi_code(self, small_result):
        with pytest.raises(OutOfRangeError):
            multi_code_position(small_result, T0)


# ═══════════════════════════════════════════════════════════════════
#  Cores, responses, blobs
# ═══════════════════════════════════════════════════════════════════

class TestOutputs:
    def test_core(self, small_tree):
        assert small_tree.core() == (hexstring(small_tree.root), 4, 30, T0, 12, 1)

    def test_cores_include_inner_trees(self, double_otp_result):
        cores = double_otp_result.cores()
        assert cores["core"] == double_otp_result.tree.core()
        assert len(cores["inner_cores"]) == 1

    def test_build_id_stable(self, small_result):
        again = compute_merkle_tree(SEED, EFFECTIVE_TIME, DURATION, interval=INTERVAL)
        assert again.build_id == small_result.build_id
        assert len(small_result.build_id) == 32

    def test_build_id_covers_inner_trees(self, small_result, double_otp_result):
        rnd = compute_merkle_tree(
            SEED, EFFECTIVE_TIME, DURATION, interval=INTERVAL, randomness=7,
        )
        ids = {small_result.build_id, double_otp_result.build_id, rnd.build_id}
        assert len(ids) == 3

    def test_response(self, double_otp_result):
        resp = double_otp_result.to_response()
        assert resp["root"] == double_otp_result.root
        assert resp["layers"] == double_otp_result.layers
        assert resp["hseed"] == double_otp_result.hseed
        assert resp["double_otp"] is True
        assert resp["inner_trees"][0]["kind"] == "SECOND_FACTOR"


class TestBlob:
    def test_roundtrip(self, slotted_result):
        tree = slotted_result.tree
        assert MerkleTree.from_blob(tree.to_blob()) == tree

    def test_corrupt_leaf_detected(self, small_tree):
        blob = bytearray(small_tree.to_blob())
        blob[-1 - 32 * 15] ^= 0x01   # inside layer 0
        with pytest.raises(ProofMismatchError):
            MerkleTree.from_blob(bytes(blob))

    def test_corruption_ignored_without_verify(self, small_tree):
        blob = bytearray(small_tree.to_blob())
        blob[-1] ^= 0x01
        loaded = MerkleTree.from_blob(bytes(blob), verify=False)
        assert loaded.root != small_tree.root

    def test_truncated(self, small_tree):
        with pytest.raises(ValueError):
            MerkleTree.from_blob(small_tree.to_blob()[:-1])
        with pytest.raises(ValueError):
            MerkleTree.from_blob(b"OTPT")

    def test_wrong_magic(self, small_tree):
        blob = b"XXXX" + small_tree.to_blob()[4:]
        with pytest.raises(ValueError):
            MerkleTree.from_blob(blob)
