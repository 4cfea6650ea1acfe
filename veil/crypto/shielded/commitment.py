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

"""Pedersen commitments over secp256k1: C = value*H + blinding*G.

Commitments are binding under the discrete log assumption and perfectly hiding, and they are additively homomorphic:
commit(v1, b1) + commit(v2, b2) == commit(v1 + v2, b1 + b2). The balance proof relies on exactly that identity.

Reusing a blinding factor for two commitments to different values is a caller error that breaks hiding; it is not
detected here.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

from veil.constants import COMMITMENT_SIZE, SCALAR_SIZE
from veil.crypto.group import (
    GENERATOR_H,
    IDENTITY_ENCODING,
    base_mul,
    decode_point,
    encode_point,
    is_valid_point_encoding,
    point_add,
    point_mul,
    point_neg,
    point_sum,
)
from veil.crypto.scalar import (
    derive_nonce,
    is_canonical_scalar,
    random_scalar,
    reduce_scalar,
    scalar_from_bytes,
    scalar_to_bytes,
)
from veil.crypto.transcript import Transcript

if TYPE_CHECKING:
    from pycoin.ecdsa.Point import Point

_OPENING_PROOF_LABEL = b'veil/opening-proof/v1'


@dataclass(slots=True, frozen=True)
class Commitment:
    """Pedersen commitment as a 33-byte compressed point (33 zero bytes for the identity)."""
    data: bytes

    def __post_init__(self) -> None:
        if len(self.data) != COMMITMENT_SIZE:
            raise ValueError(f'commitment must be {COMMITMENT_SIZE} bytes, got {len(self.data)}')

    @classmethod
    def from_point(cls, point: Point) -> Commitment:
        return cls(encode_point(point))

    @classmethod
    def from_hex(cls, hex_str: str) -> Commitment:
        return cls(bytes.fromhex(hex_str))

    def point(self) -> Point:
        """Decode to a group element. Raises ValueError if the bytes are not a valid point."""
        return decode_point(self.data)

    def is_identity(self) -> bool:
        return self.data == IDENTITY_ENCODING

    def hex(self) -> str:
        return self.data.hex()

    def __bytes__(self) -> bytes:
        return self.data

    def __add__(self, other: Commitment) -> Commitment:
        return add_commitments(self, other)

    def __sub__(self, other: Commitment) -> Commitment:
        return subtract_commitments(self, other)

    def __neg__(self) -> Commitment:
        return negate_commitment(self)

    def __repr__(self) -> str:
        return f'Commitment({self.data.hex()})'


@dataclass(slots=True, frozen=True)
class Opening:
    """The secret behind a commitment: the hidden value and its blinding factor."""
    value: int
    blinding: int

    def commitment(self) -> Commitment:
        return commit(self.value, self.blinding)

    def opens(self, commitment: Commitment) -> bool:
        return self.commitment() == commitment

    def __repr__(self) -> str:
        # never render the secret parts
        return 'Opening(...)'


def random_blinding() -> int:
    """A fresh blinding factor from a cryptographically strong source."""
    return random_scalar()


def commit(value: int, blinding: int) -> Commitment:
    """Create a Pedersen commitment: C = value*H + blinding*G. Deterministic given both inputs."""
    return Commitment.from_point(base_mul(reduce_scalar(value), reduce_scalar(blinding)))


def create_trivial_commitment(value: int) -> Commitment:
    """Create a trivial (zero-blinding) commitment: C = value*H. Anyone knowing the value can recompute it."""
    return Commitment.from_point(point_mul(GENERATOR_H, value))


def add_commitments(a: Commitment, b: Commitment) -> Commitment:
    return Commitment.from_point(point_add(a.point(), b.point()))


def negate_commitment(c: Commitment) -> Commitment:
    return Commitment.from_point(point_neg(c.point()))


def subtract_commitments(a: Commitment, b: Commitment) -> Commitment:
    return Commitment.from_point(point_add(a.point(), point_neg(b.point())))


def sum_commitments(commitments: Iterable[Commitment]) -> Commitment:
    """Sum of commitments; the empty sum is the identity commitment."""
    return Commitment.from_point(point_sum(c.point() for c in commitments))


def validate_commitment(data: bytes) -> bool:
    """Validate that bytes represent a valid Pedersen commitment (curve point or identity)."""
    return is_valid_point_encoding(data)


def verify_opening(commitment: Commitment, value: int, blinding: int) -> bool:
    """Open a commitment: check that (value, blinding) is what it hides. Reveals the value."""
    return commit(value, blinding) == commitment


@dataclass(slots=True, frozen=True)
class OpeningProof:
    """Proof of knowledge of an opening (v, b) of C = v*H + b*G, without revealing it.

    Okamoto's Sigma protocol made non-interactive: R = kv*H + kb*G, c = Hash(C, R), sv = kv + c*v, sb = kb + c*b.
    """
    nonce_commitment: bytes  # 33B, R
    response_value: int      # sv
    response_blinding: int   # sb

    def __bytes__(self) -> bytes:
        return self.nonce_commitment + scalar_to_bytes(self.response_value) + scalar_to_bytes(self.response_blinding)

    @classmethod
    def from_bytes(cls, data: bytes) -> OpeningProof:
        expected = COMMITMENT_SIZE + 2 * SCALAR_SIZE
        if len(data) != expected:
            raise ValueError(f'opening proof must be {expected} bytes, got {len(data)}')
        r, sv, sb = struct.unpack(f'!{COMMITMENT_SIZE}s{SCALAR_SIZE}s{SCALAR_SIZE}s', data)
        return cls(r, scalar_from_bytes(sv), scalar_from_bytes(sb))


def _opening_challenge(commitment: Commitment, nonce_commitment: bytes) -> int:
    transcript = Transcript(_OPENING_PROOF_LABEL)
    transcript.append_message(b'C', commitment.data)
    transcript.append_message(b'R', nonce_commitment)
    return transcript.challenge_scalar(b'c')


def prove_opening(value: int, blinding: int) -> OpeningProof:
    """Prove knowledge of the opening of commit(value, blinding)."""
    value = reduce_scalar(value)
    blinding = reduce_scalar(blinding)
    commitment = commit(value, blinding)

    kv = derive_nonce(value, b'opening/value', scalar_to_bytes(blinding), commitment.data)
    kb = derive_nonce(blinding, b'opening/blinding', scalar_to_bytes(value), commitment.data)
    nonce_commitment = encode_point(base_mul(kv, kb))

    c = _opening_challenge(commitment, nonce_commitment)
    return OpeningProof(
        nonce_commitment=nonce_commitment,
        response_value=reduce_scalar(kv + c * value),
        response_blinding=reduce_scalar(kb + c * blinding),
    )


def verify_opening_proof(commitment: Commitment, proof: OpeningProof) -> bool:
    """Check sv*H + sb*G == R + c*C. Never raises; malformed input is simply invalid."""
    if not (is_canonical_scalar(proof.response_value) and is_canonical_scalar(proof.response_blinding)):
        return False
    try:
        r_point = decode_point(proof.nonce_commitment)
        c_point = commitment.point()
    except ValueError:
        return False

    c = _opening_challenge(commitment, proof.nonce_commitment)
    lhs = base_mul(proof.response_value, proof.response_blinding)
    rhs = point_add(r_point, point_mul(c_point, c))
    return encode_point(lhs) == encode_point(rhs)
