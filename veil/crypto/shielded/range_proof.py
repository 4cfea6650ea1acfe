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

"""Bit-decomposition range proofs proving a committed amount is in [0, 2^n).

The amount is split into n bits and each bit gets its own commitment C_i = b_i*H + r_i*G. The bit blindings are
chosen so that sum(2^i * r_i) equals the blinding of the original commitment, which makes the weighted sum of the bit
commitments reconstruct it exactly:

    sum(2^i * C_i) == value*H + blinding*G == C

Each bit commitment carries a two-way OR proof (Cramer-Damgard-Schoenmakers) that it opens to 0 or to 1: either C_i
or C_i - H is a multiple of G with a known discrete log. Challenges come from a Fiat-Shamir transcript bound to the
original commitment, the bit width and the bit index, so a proof is tied to exactly one commitment and width.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING

from structlog import get_logger

from veil.constants import COMMITMENT_SIZE, MAX_RANGE_PROOF_BIT_WIDTH, SCALAR_SIZE
from veil.crypto.group import (
    GENERATOR_G,
    GENERATOR_H,
    IDENTITY,
    base_mul,
    decode_point,
    encode_point,
    point_add,
    point_mul,
    point_sub,
)
from veil.crypto.scalar import (
    SCALAR_ORDER,
    derive_nonce,
    is_canonical_scalar,
    reduce_scalar,
    scalar_from_bytes,
    scalar_inverse,
    scalar_to_bytes,
)
from veil.crypto.shielded.commitment import Commitment, commit
from veil.crypto.transcript import Transcript
from veil.transaction.exceptions import ValueOutOfRange

if TYPE_CHECKING:
    from pycoin.ecdsa.Point import Point

logger = get_logger()

_RANGE_PROOF_LABEL = b'veil/range-proof/v1'

# bit_width(2) | count(2)
_HEADER_FORMAT = '!HH'
_BIT_PROOF_FORMAT = f'!{COMMITMENT_SIZE}s{SCALAR_SIZE}s{SCALAR_SIZE}s{SCALAR_SIZE}s{SCALAR_SIZE}s'
_BIT_PROOF_SIZE = struct.calcsize(_BIT_PROOF_FORMAT)


@dataclass(slots=True, frozen=True)
class BitProof:
    """Commitment to a single bit plus the OR proof that it opens to 0 or 1."""
    commitment: bytes     # 33B, C_i
    challenge_zero: int   # c0, challenge of the "bit is 0" branch
    challenge_one: int    # c1, challenge of the "bit is 1" branch
    response_zero: int    # s0
    response_one: int     # s1

    def __bytes__(self) -> bytes:
        return struct.pack(
            _BIT_PROOF_FORMAT,
            self.commitment,
            scalar_to_bytes(self.challenge_zero),
            scalar_to_bytes(self.challenge_one),
            scalar_to_bytes(self.response_zero),
            scalar_to_bytes(self.response_one),
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> BitProof:
        commitment, c0, c1, s0, s1 = struct.unpack(_BIT_PROOF_FORMAT, data)
        return cls(
            commitment=commitment,
            challenge_zero=scalar_from_bytes(c0),
            challenge_one=scalar_from_bytes(c1),
            response_zero=scalar_from_bytes(s0),
            response_one=scalar_from_bytes(s1),
        )


@dataclass(slots=True, frozen=True)
class RangeProof:
    """Evidence that one specific commitment hides a value in [0, 2^bit_width)."""
    bit_width: int
    bit_proofs: tuple[BitProof, ...]

    def bit_commitments(self) -> list[Commitment]:
        return [Commitment(bit_proof.commitment) for bit_proof in self.bit_proofs]

    def __bytes__(self) -> bytes:
        """ Convert to byte representation.

        | Size | Description   | Comments |
        |------|---------------|----------|
        | 2    | `bit_width`   | public bit width the proof was made for |
        | 2    | count         | number of bit proofs, equal to `bit_width` on valid proofs |
        | 161  | bit proof     | repeated: C_i(33) c0(32) c1(32) s0(32) s1(32) |
        """
        parts = [struct.pack(_HEADER_FORMAT, self.bit_width, len(self.bit_proofs))]
        parts.extend(bytes(bit_proof) for bit_proof in self.bit_proofs)
        return b''.join(parts)

    @classmethod
    def from_bytes(cls, data: bytes) -> RangeProof:
        """ Convert bytes to class instance. Raises ValueError on truncated or oversized input.
        """
        header_size = struct.calcsize(_HEADER_FORMAT)
        if len(data) < header_size:
            raise ValueError('truncated range proof header')
        bit_width, count = struct.unpack_from(_HEADER_FORMAT, data)
        expected = header_size + count * _BIT_PROOF_SIZE
        if len(data) != expected:
            raise ValueError(f'range proof must be {expected} bytes for {count} bits, got {len(data)}')
        bit_proofs = []
        offset = header_size
        for _ in range(count):
            bit_proofs.append(BitProof.from_bytes(data[offset:offset + _BIT_PROOF_SIZE]))
            offset += _BIT_PROOF_SIZE
        return cls(bit_width=bit_width, bit_proofs=tuple(bit_proofs))


def _check_bit_width(bit_width: int) -> None:
    if not isinstance(bit_width, int) or not 1 <= bit_width <= MAX_RANGE_PROOF_BIT_WIDTH:
        raise ValueError(f'bit width must be in [1, {MAX_RANGE_PROOF_BIT_WIDTH}], got {bit_width}')


def _bit_transcript(commitment: bytes, bit_width: int, index: int, bit_commitment: bytes) -> Transcript:
    transcript = Transcript(_RANGE_PROOF_LABEL)
    transcript.append_message(b'C', commitment)
    transcript.append_u64(b'n', bit_width)
    transcript.append_u64(b'i', index)
    transcript.append_message(b'C_i', bit_commitment)
    return transcript


def _bit_challenge(transcript: Transcript, r_zero: Point, r_one: Point) -> int:
    transcript.append_point(b'R0', r_zero)
    transcript.append_point(b'R1', r_one)
    return transcript.challenge_scalar(b'c')


def _split_blinding(value: int, blinding: int, commitment: bytes, bit_width: int) -> list[int]:
    """Per-bit blindings r_i with sum(2^i * r_i) == blinding (mod order)."""
    context = commitment + scalar_to_bytes(value)
    blindings = [
        derive_nonce(blinding, b'range/bit-blinding', context, i.to_bytes(2, 'big'))
        for i in range(bit_width - 1)
    ]
    remaining = blinding
    for i, r in enumerate(blindings):
        remaining -= r << i
    last = reduce_scalar(remaining * scalar_inverse(1 << (bit_width - 1)))
    blindings.append(last)
    return blindings


def prove_range(value: int, blinding: int, bit_width: int) -> RangeProof:
    """Create a range proof for commit(value, blinding), proving value is in [0, 2^bit_width).

    Raises ValueOutOfRange if the value does not fit in `bit_width` bits (negative values included).
    The proof is deterministic given its inputs.
    """
    _check_bit_width(bit_width)
    if value < 0 or value >= (1 << bit_width):
        raise ValueOutOfRange(f'value does not fit in {bit_width} bits')

    blinding = reduce_scalar(blinding)
    commitment = commit(value, blinding).data
    bit_blindings = _split_blinding(value, blinding, commitment, bit_width)

    bit_proofs = []
    for i, r in enumerate(bit_blindings):
        bit = (value >> i) & 1
        bit_point = base_mul(bit, r)
        bit_commitment = encode_point(bit_point)
        # branch statements: P0 = C_i (bit is 0), P1 = C_i - H (bit is 1); both claim "P = r*G"
        statements = (bit_point, point_sub(bit_point, GENERATOR_H))
        context = (commitment, bit_commitment, i.to_bytes(2, 'big'))

        fake = 1 - bit
        fake_challenge = derive_nonce(r, b'range/fake-challenge', *context)
        fake_response = derive_nonce(r, b'range/fake-response', *context)
        nonce = derive_nonce(r, b'range/nonce', *context)

        nonces: list[Point] = [IDENTITY, IDENTITY]
        nonces[bit] = point_mul(GENERATOR_G, nonce)
        nonces[fake] = point_sub(point_mul(GENERATOR_G, fake_response), point_mul(statements[fake], fake_challenge))

        transcript = _bit_transcript(commitment, bit_width, i, bit_commitment)
        c = _bit_challenge(transcript, nonces[0], nonces[1])
        real_challenge = reduce_scalar(c - fake_challenge)
        real_response = reduce_scalar(nonce + real_challenge * r)

        challenges = [0, 0]
        responses = [0, 0]
        challenges[bit], responses[bit] = real_challenge, real_response
        challenges[fake], responses[fake] = fake_challenge, fake_response

        bit_proofs.append(BitProof(
            commitment=bit_commitment,
            challenge_zero=challenges[0],
            challenge_one=challenges[1],
            response_zero=responses[0],
            response_one=responses[1],
        ))

    return RangeProof(bit_width=bit_width, bit_proofs=tuple(bit_proofs))


def _verify_bit_proof(commitment: bytes, bit_width: int, index: int, bit_proof: BitProof, bit_point: Point) -> bool:
    scalars = (bit_proof.challenge_zero, bit_proof.challenge_one, bit_proof.response_zero, bit_proof.response_one)
    if not all(is_canonical_scalar(s) for s in scalars):
        return False

    r_zero = point_sub(point_mul(GENERATOR_G, bit_proof.response_zero), point_mul(bit_point, bit_proof.challenge_zero))
    shifted = point_sub(bit_point, GENERATOR_H)
    r_one = point_sub(point_mul(GENERATOR_G, bit_proof.response_one), point_mul(shifted, bit_proof.challenge_one))

    transcript = _bit_transcript(commitment, bit_width, index, bit_proof.commitment)
    c = _bit_challenge(transcript, r_zero, r_one)
    return (bit_proof.challenge_zero + bit_proof.challenge_one) % SCALAR_ORDER == c


def verify_range(commitment: Commitment, proof: RangeProof, bit_width: int) -> bool:
    """Verify that `proof` shows `commitment` hides a value in [0, 2^bit_width).

    Pure and non-failing: any structural problem or mismatch yields False.
    """
    if not isinstance(proof, RangeProof) or not isinstance(commitment, Commitment):
        return False
    if not isinstance(bit_width, int) or not 1 <= bit_width <= MAX_RANGE_PROOF_BIT_WIDTH:
        return False
    if proof.bit_width != bit_width or len(proof.bit_proofs) != bit_width:
        return False

    try:
        target = commitment.point()
        bit_points = [decode_point(bit_proof.commitment) for bit_proof in proof.bit_proofs]
    except ValueError:
        return False

    # reconstruction: sum(2^i * C_i) == C, evaluated Horner-style from the top bit down
    accumulated = IDENTITY
    for bit_point in reversed(bit_points):
        accumulated = point_add(point_add(accumulated, accumulated), bit_point)
    if encode_point(accumulated) != encode_point(target):
        logger.debug('range proof reconstruction mismatch', commitment=commitment.hex())
        return False

    for i, (bit_proof, bit_point) in enumerate(zip(proof.bit_proofs, bit_points)):
        if not _verify_bit_proof(commitment.data, bit_width, i, bit_proof, bit_point):
            logger.debug('range proof bit check failed', commitment=commitment.hex(), bit=i)
            return False

    return True
