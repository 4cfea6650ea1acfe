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

"""Balance (conservation) proofs over Pedersen commitments.

For inputs C_in, outputs C_out and a fee commitment F the excess

    D = sum(C_in) - sum(C_out) - F

equals (sum(v_in) - sum(v_out) - fee)*H + db*G. When values balance the H component vanishes and D = db*G, so a
Schnorr proof of knowledge of db with respect to G shows conservation without revealing any value. If the values do
not balance, D has an H component whose discrete log relative to G is unknown and no such proof can be produced.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

from structlog import get_logger

from veil.constants import COMMITMENT_SIZE, SCALAR_SIZE
from veil.crypto.group import GENERATOR_G, decode_point, encode_point, point_add, point_mul, point_neg, point_sum
from veil.crypto.scalar import derive_nonce, is_canonical_scalar, reduce_scalar, scalar_from_bytes, scalar_to_bytes
from veil.crypto.shielded.commitment import Commitment, Opening
from veil.crypto.transcript import Transcript
from veil.transaction.exceptions import BalanceMismatch, MalformedTransaction

if TYPE_CHECKING:
    from pycoin.ecdsa.Point import Point

logger = get_logger()

_BALANCE_PROOF_LABEL = b'veil/balance-proof/v1'
_BALANCE_PROOF_FORMAT = f'!{COMMITMENT_SIZE}s{SCALAR_SIZE}s'
BALANCE_PROOF_SIZE = struct.calcsize(_BALANCE_PROOF_FORMAT)


@dataclass(slots=True, frozen=True)
class BalanceProof:
    """Schnorr proof (R, s) of knowledge of db with D = db*G, bound to the ordered commitment lists."""
    nonce_commitment: bytes  # 33B, R
    response: int            # s

    def __bytes__(self) -> bytes:
        return struct.pack(_BALANCE_PROOF_FORMAT, self.nonce_commitment, scalar_to_bytes(self.response))

    @classmethod
    def from_bytes(cls, data: bytes) -> BalanceProof:
        if len(data) != BALANCE_PROOF_SIZE:
            raise ValueError(f'balance proof must be {BALANCE_PROOF_SIZE} bytes, got {len(data)}')
        nonce_commitment, response = struct.unpack(_BALANCE_PROOF_FORMAT, data)
        return cls(nonce_commitment=nonce_commitment, response=scalar_from_bytes(response))


def _excess_point(inputs: Sequence[Commitment], outputs: Sequence[Commitment], fee: Commitment) -> Point:
    """D = sum(inputs) - sum(outputs) - fee. Raises ValueError on invalid encodings."""
    total_in = point_sum(c.point() for c in inputs)
    total_out = point_add(point_sum(c.point() for c in outputs), fee.point())
    return point_add(total_in, point_neg(total_out))


def _balance_transcript(inputs: Sequence[Commitment], outputs: Sequence[Commitment], fee: Commitment) -> Transcript:
    transcript = Transcript(_BALANCE_PROOF_LABEL)
    transcript.append_u64(b'inputs', len(inputs))
    for c in inputs:
        transcript.append_message(b'in', c.data)
    transcript.append_u64(b'outputs', len(outputs))
    for c in outputs:
        transcript.append_message(b'out', c.data)
    transcript.append_message(b'fee', fee.data)
    return transcript


def _balance_challenge(transcript: Transcript, excess: Point, nonce_commitment: bytes) -> int:
    transcript.append_point(b'D', excess)
    transcript.append_message(b'R', nonce_commitment)
    return transcript.challenge_scalar(b'c')


def _check_openings(kind: str, commitments: Sequence[Commitment], openings: Sequence[Opening]) -> None:
    if len(commitments) != len(openings):
        raise MalformedTransaction(
            f'{kind}: {len(commitments)} commitments but {len(openings)} opening witnesses'
        )
    for i, (commitment, opening) in enumerate(zip(commitments, openings)):
        if not opening.opens(commitment):
            raise MalformedTransaction(f'{kind} {i}: witness does not open its commitment')


def compute_balancing_blinding(
    input_openings: Sequence[Opening],
    other_outputs: Sequence[Opening],
    fee_blinding: int = 0,
) -> int:
    """Compute the blinding factor for the last output that makes the excess blinding zero.

    Args:
        input_openings: Openings of every input.
        other_outputs: Openings of every output except the last one.
        fee_blinding: Blinding of the fee commitment, zero for a public fee.
    """
    total = sum(o.blinding for o in input_openings) - sum(o.blinding for o in other_outputs) - fee_blinding
    return reduce_scalar(total)


def prove_balance(
    inputs: Sequence[Commitment],
    outputs: Sequence[Commitment],
    fee: Commitment,
    input_openings: Sequence[Opening],
    output_openings: Sequence[Opening],
    fee_opening: Opening,
) -> BalanceProof:
    """Prove sum(inputs) == sum(outputs) + fee using the secret openings behind every commitment.

    Raises MalformedTransaction on empty lists or witnesses that do not match their commitments, and
    BalanceMismatch if the hidden values do not balance.
    """
    if not inputs:
        raise MalformedTransaction('a transaction needs at least one input')
    if not outputs:
        raise MalformedTransaction('a transaction needs at least one output')
    _check_openings('input', inputs, input_openings)
    _check_openings('output', outputs, output_openings)
    _check_openings('fee', [fee], [fee_opening])

    net_value = (
        sum(o.value for o in input_openings)
        - sum(o.value for o in output_openings)
        - fee_opening.value
    )
    if net_value != 0:
        raise BalanceMismatch('inputs are not equal to outputs plus fee')

    excess_blinding = compute_balancing_blinding(input_openings, output_openings, fee_opening.blinding)
    excess = _excess_point(inputs, outputs, fee)
    transcript = _balance_transcript(inputs, outputs, fee)

    nonce = derive_nonce(excess_blinding, b'balance/nonce', encode_point(excess), transcript.digest())
    nonce_commitment = encode_point(point_mul(GENERATOR_G, nonce))
    c = _balance_challenge(transcript, excess, nonce_commitment)
    return BalanceProof(nonce_commitment=nonce_commitment, response=reduce_scalar(nonce + c * excess_blinding))


def verify_balance(
    inputs: Sequence[Commitment],
    outputs: Sequence[Commitment],
    fee: Commitment,
    proof: BalanceProof,
) -> bool:
    """Check the balance proof against public commitments only: s*G == R + c*D.

    Returns False on empty lists, invalid encodings or a failing equation, never raises.
    """
    if not inputs or not outputs or not isinstance(proof, BalanceProof):
        return False
    if not is_canonical_scalar(proof.response):
        return False
    try:
        excess = _excess_point(inputs, outputs, fee)
        nonce_point = decode_point(proof.nonce_commitment)
    except ValueError:
        return False

    c = _balance_challenge(_balance_transcript(inputs, outputs, fee), excess, proof.nonce_commitment)
    lhs = point_mul(GENERATOR_G, proof.response)
    rhs = point_add(nonce_point, point_mul(excess, c))
    if encode_point(lhs) != encode_point(rhs):
        logger.debug('balance equation does not hold', inputs=len(inputs), outputs=len(outputs))
        return False
    return True
