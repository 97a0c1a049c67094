"""
Tests for the Poseidon2 hash over the BN254 scalar field.

Known-answer values come from the barretenberg / Noir Poseidon2 test vectors
for the width-4 BN254 instance.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from poseidon_hash import (
    BN254_SCALAR_FIELD,
    DEFAULT_PARAMETERS,
    Poseidon2Parameters,
    PoseidonHasher,
    get_hasher,
    poseidon_hash_bytes,
    round_constants,
)

# poseidon2_permutation([0, 1, 2, 3])
PERMUTATION_INPUT = [0, 1, 2, 3]
PERMUTATION_OUTPUT = [
    0x01bd538c2ee014ed5141b29e9ae240bf8db3fe5b9a38629a9647cf8d76c01737,
    0x239b62e7db98aa3a2a8f6a0d2fa1709e7a35959aa6c7034814d9daa90cbac662,
    0x04cbb44c61d928ed06808456bf758cbf0c18d1e15a7b6dbc8245fa7515d5e3cb,
    0x2e11c5cff2a22c64d01304b778d78f6998eff1ab73163a35603f54794c30847a,
]

FIRST_ROUND_CONSTANT = 0x19b849f69450b06848da1d39bd5e4a4302bb86744edc26238b0878e269ed23e5


class TestParameters:
    """Tests for the permutation parameter tables."""

    def test_default_parameters(self):
        assert DEFAULT_PARAMETERS.width == 4
        assert DEFAULT_PARAMETERS.full_rounds == 8
        assert DEFAULT_PARAMETERS.partial_rounds == 56
        assert DEFAULT_PARAMETERS.alpha == 5
        assert DEFAULT_PARAMETERS.rate == 3

    def test_round_constant_shape(self):
        rows = round_constants()
        assert len(rows) == 64
        assert all(len(row) == 4 for row in rows)

    def test_first_round_constant(self):
        assert round_constants()[0][0] == FIRST_ROUND_CONSTANT

    def test_partial_rounds_use_one_constant(self):
        rows = round_constants()
        for row in rows[4:60]:
            assert row[1:] == (0, 0, 0)
            assert row[0] != 0
        for row in rows[:4] + rows[60:]:
            assert all(row)

    def test_round_constants_are_field_elements(self):
        assert all(0 <= c < BN254_SCALAR_FIELD for row in round_constants() for c in row)

    def test_round_constants_are_cached(self):
        assert round_constants() is round_constants()

    def test_rejects_other_widths(self):
        with pytest.raises(ValueError):
            PoseidonHasher(Poseidon2Parameters(width=3))


class TestPermutation:
    """Known-answer tests for the permutation."""

    def test_known_answer(self):
        assert PoseidonHasher().permute(PERMUTATION_INPUT) == PERMUTATION_OUTPUT

    def test_permute_requires_full_width(self):
        with pytest.raises(ValueError):
            PoseidonHasher().permute([1, 2, 3])

    def test_inputs_reduced_mod_p(self):
        hasher = PoseidonHasher()
        shifted = [x + BN254_SCALAR_FIELD for x in PERMUTATION_INPUT]
        assert hasher.permute(shifted) == PERMUTATION_OUTPUT


class TestPoseidonHasher:
    """Tests for the sponge construction."""

    def test_sponge_matches_single_permutation(self):
        """Up to three inputs are absorbed in one duplex with the length IV."""
        hasher = PoseidonHasher()
        iv = 3 << 64
        assert hasher.hash([1, 2, 3]) == hasher.permute([1, 2, 3, iv])[0]

    def test_empty_input_is_one_permutation(self):
        hasher = PoseidonHasher()
        assert hasher.hash([]) == hasher.permute([0, 0, 0, 0])[0]

    def test_four_inputs_take_two_permutations(self):
        hasher = PoseidonHasher()
        state = hasher.permute([1, 2, 3, 4 << 64])
        state[0] = (state[0] + 4) % BN254_SCALAR_FIELD
        assert hasher.hash([1, 2, 3, 4]) == hasher.permute(state)[0]

    def test_deterministic(self):
        hasher = PoseidonHasher()
        assert hasher.hash([1, 2, 3]) == hasher.hash([1, 2, 3])

    def test_output_in_field(self):
        digest = PoseidonHasher().hash([5, 6])
        assert 0 <= digest < BN254_SCALAR_FIELD

    def test_input_order_matters(self):
        hasher = PoseidonHasher()
        assert hasher.hash([1, 2]) != hasher.hash([2, 1])

    def test_length_is_domain_separated(self):
        """Trailing zeros change the digest."""
        hasher = PoseidonHasher()
        assert hasher.hash([1]) != hasher.hash([1, 0])
        assert hasher.hash([]) != hasher.hash([0])

    def test_rejects_out_of_field_input(self):
        with pytest.raises(ValueError):
            PoseidonHasher().hash([BN254_SCALAR_FIELD])

    def test_rejects_negative_input(self):
        with pytest.raises(ValueError):
            PoseidonHasher().hash([-1])


class TestHashBytes:
    """Tests for byte-per-limb hashing."""

    def test_bytes_match_limb_hash(self):
        data = bytes(range(10))
        assert poseidon_hash_bytes(data) == get_hasher().hash(list(data))

    def test_chunks_are_concatenated(self):
        a = bytes([1] * 32)
        b = bytes([2] * 32)
        assert poseidon_hash_bytes(a, b) == poseidon_hash_bytes(a + b)

    def test_single_bit_change(self):
        secret = bytes(32)
        nullifier = bytes(32)
        flipped = bytes([1]) + bytes(31)
        assert poseidon_hash_bytes(secret, nullifier) != poseidon_hash_bytes(flipped, nullifier)

    def test_shared_hasher(self):
        assert get_hasher() is get_hasher()
