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

"""Shielded transaction cryptographic primitives.

Pedersen commitments with opening proofs, bit-decomposition range proofs and homomorphic balance proofs, all built
on secp256k1 group arithmetic from pycoin.
"""

from veil.crypto.shielded.balance import BalanceProof, compute_balancing_blinding, prove_balance, verify_balance
from veil.crypto.shielded.commitment import (
    Commitment,
    Opening,
    OpeningProof,
    add_commitments,
    commit,
    create_trivial_commitment,
    negate_commitment,
    prove_opening,
    random_blinding,
    subtract_commitments,
    sum_commitments,
    validate_commitment,
    verify_opening,
    verify_opening_proof,
)
from veil.crypto.shielded.range_proof import RangeProof, prove_range, verify_range

__all__ = [
    'BalanceProof',
    'Commitment',
    'Opening',
    'OpeningProof',
    'RangeProof',
    'add_commitments',
    'commit',
    'compute_balancing_blinding',
    'create_trivial_commitment',
    'negate_commitment',
    'prove_balance',
    'prove_opening',
    'prove_range',
    'random_blinding',
    'subtract_commitments',
    'sum_commitments',
    'validate_commitment',
    'verify_balance',
    'verify_opening',
    'verify_opening_proof',
    'verify_range',
]
