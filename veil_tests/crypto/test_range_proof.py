# Copyright 2024 Hathor Labs
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

from dataclasses import replace

import pytest

from veil.crypto.scalar import SCALAR_ORDER
from veil.crypto.shielded import RangeProof, commit, prove_range, random_blinding, verify_range
from veil.crypto.shielded.range_proof import BitProof
from veil.transaction.exceptions import ValueOutOfRange

BIT_WIDTH = 8


class TestRangeProof:
    @pytest.mark.parametrize('value', [0, 1, 100, 2**BIT_WIDTH - 1])
    def test_valid(self, value: int) -> None:
        blinding = random_blinding()
        proof = prove_range(value, blinding, BIT_WIDTH)
        assert verify_range(commit(value, blinding), proof, BIT_WIDTH)

    def test_boundary_fails(self) -> None:
        with pytest.raises(ValueOutOfRange):
            prove_range(2**BIT_WIDTH, random_blinding(), BIT_WIDTH)

    def test_negative_fails(self) -> None:
        with pytest.raises(ValueOutOfRange):
            prove_range(-1, random_blinding(), BIT_WIDTH)

    def test_single_bit(self) -> None:
        blinding = random_blinding()
        assert verify_range(commit(1, blinding), prove_range(1, blinding, 1), 1)
        with pytest.raises(ValueOutOfRange):
            prove_range(2, blinding, 1)

    @pytest.mark.parametrize('bit_width', [0, 129, -3])
    def test_invalid_bit_width(self, bit_width: int) -> None:
        with pytest.raises(ValueError, match='bit width'):
            prove_range(1, random_blinding(), bit_width)

    def test_deterministic(self) -> None:
        blinding = random_blinding()
        assert prove_range(42, blinding, BIT_WIDTH) == prove_range(42, blinding, BIT_WIDTH)

    def test_bit_commitments_reconstruct(self) -> None:
        blinding = random_blinding()
        proof = prove_range(77, blinding, BIT_WIDTH)
        bit_commitments = proof.bit_commitments()
        assert len(bit_commitments) == BIT_WIDTH
        total = bit_commitments[-1]
        for c in reversed(bit_commitments[:-1]):
            total = total + total + c
        assert total == commit(77, blinding)

    def test_bound_to_commitment(self) -> None:
        blinding = random_blinding()
        proof = prove_range(42, blinding, BIT_WIDTH)
        assert not verify_range(commit(42, random_blinding()), proof, BIT_WIDTH)
        assert not verify_range(commit(43, blinding), proof, BIT_WIDTH)

    def test_not_portable_across_widths(self) -> None:
        blinding = random_blinding()
        proof = prove_range(42, blinding, BIT_WIDTH)
        assert not verify_range(commit(42, blinding), proof, BIT_WIDTH + 1)
        assert not verify_range(commit(42, blinding), replace(proof, bit_width=BIT_WIDTH + 1), BIT_WIDTH + 1)

    def test_invalid_width_on_verify(self) -> None:
        blinding = random_blinding()
        proof = prove_range(1, blinding, BIT_WIDTH)
        assert not verify_range(commit(1, blinding), proof, 0)
        assert not verify_range(commit(1, blinding), proof, 200)

    def test_tampered_challenge(self) -> None:
        blinding = random_blinding()
        proof = prove_range(5, blinding, BIT_WIDTH)
        bit = proof.bit_proofs[0]
        tampered_bit = replace(bit, challenge_zero=(bit.challenge_zero + 1) % SCALAR_ORDER)
        tampered = replace(proof, bit_proofs=(tampered_bit,) + proof.bit_proofs[1:])
        assert not verify_range(commit(5, blinding), tampered, BIT_WIDTH)

    def test_non_canonical_scalar(self) -> None:
        blinding = random_blinding()
        proof = prove_range(5, blinding, BIT_WIDTH)
        bit = proof.bit_proofs[2]
        tampered_bit = replace(bit, response_one=bit.response_one + SCALAR_ORDER)
        tampered = replace(proof, bit_proofs=proof.bit_proofs[:2] + (tampered_bit,) + proof.bit_proofs[3:])
        assert not verify_range(commit(5, blinding), tampered, BIT_WIDTH)

    def test_swapped_bits(self) -> None:
        blinding = random_blinding()
        proof = prove_range(1, blinding, BIT_WIDTH)
        bits = list(proof.bit_proofs)
        bits[0], bits[1] = bits[1], bits[0]
        assert not verify_range(commit(1, blinding), replace(proof, bit_proofs=tuple(bits)), BIT_WIDTH)

    def test_missing_bit(self) -> None:
        blinding = random_blinding()
        proof = prove_range(1, blinding, BIT_WIDTH)
        assert not verify_range(commit(1, blinding), replace(proof, bit_proofs=proof.bit_proofs[:-1]), BIT_WIDTH)

    def test_invalid_bit_commitment(self) -> None:
        blinding = random_blinding()
        proof = prove_range(1, blinding, BIT_WIDTH)
        bad_bit = replace(proof.bit_proofs[0], commitment=b'\x05' + bytes(32))
        tampered = replace(proof, bit_proofs=(bad_bit,) + proof.bit_proofs[1:])
        assert not verify_range(commit(1, blinding), tampered, BIT_WIDTH)

    def test_forged_wide_value_is_rejected(self) -> None:
        # a valid proof for 2^BIT_WIDTH+1 made at a wider width cannot pass as a narrow proof
        blinding = random_blinding()
        wide = prove_range(2**BIT_WIDTH + 1, blinding, BIT_WIDTH + 1)
        narrow = RangeProof(bit_width=BIT_WIDTH, bit_proofs=wide.bit_proofs[:BIT_WIDTH])
        assert not verify_range(commit(2**BIT_WIDTH + 1, blinding), narrow, BIT_WIDTH)

    def test_garbage_inputs(self) -> None:
        blinding = random_blinding()
        proof = prove_range(1, blinding, BIT_WIDTH)
        assert not verify_range(commit(1, blinding), None, BIT_WIDTH)  # type: ignore[arg-type]
        assert not verify_range(bytes(commit(1, blinding)), proof, BIT_WIDTH)  # type: ignore[arg-type]


class TestRangeProofSerialization:
    def test_roundtrip(self) -> None:
        blinding = random_blinding()
        proof = prove_range(200, blinding, BIT_WIDTH)
        data = bytes(proof)
        assert len(data) == 4 + BIT_WIDTH * 161
        parsed = RangeProof.from_bytes(data)
        assert parsed == proof
        assert verify_range(commit(200, blinding), parsed, BIT_WIDTH)

    def test_truncated(self) -> None:
        data = bytes(prove_range(3, random_blinding(), BIT_WIDTH))
        with pytest.raises(ValueError):
            RangeProof.from_bytes(data[:-1])
        with pytest.raises(ValueError):
            RangeProof.from_bytes(data[:2])

    def test_non_canonical_scalar_rejected(self) -> None:
        bit = prove_range(1, random_blinding(), 1).bit_proofs[0]
        data = bytearray(bytes(bit))
        data[33:65] = b'\xff' * 32
        with pytest.raises(ValueError):
            BitProof.from_bytes(bytes(data))
