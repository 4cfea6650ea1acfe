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

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, replace
from enum import Enum
from struct import pack
from typing import Any, Optional

from veil.crypto.shielded.balance import BalanceProof
from veil.crypto.shielded.commitment import Commitment, create_trivial_commitment
from veil.merkle import MerkleInclusionProof
from veil.transaction.amount import (
    RecordEntry,
    TransactionWitness,
    encode_public_value,
    entry_from_json,
    entry_to_json,
    json_bool,
    json_int,
    serialize_entry,
)
from veil.transaction.exceptions import ErrorKind, InvalidStateTransition, MalformedTransaction

# version(1) | shielded(1) | timestamp(8) | bit_width(2) | inputs(2) | outputs(2)
_HEADER_FORMAT_STRING = '!BBQHHH'


class TxState(Enum):
    DRAFTED = 'drafted'      # commitments exist, no proofs yet
    PROVEN = 'proven'        # range and balance proofs generated by the creator
    VERIFIED = 'verified'    # every proof checked out
    COMMITTED = 'committed'  # digest appended to the accumulator
    REJECTED = 'rejected'    # terminal, some check failed

    def can_transition_to(self, other: TxState) -> bool:
        return other in _ALLOWED_TRANSITIONS[self]

    def is_terminal(self) -> bool:
        return not _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS: dict[TxState, frozenset[TxState]] = {
    TxState.DRAFTED: frozenset({TxState.PROVEN, TxState.REJECTED}),
    TxState.PROVEN: frozenset({TxState.VERIFIED, TxState.REJECTED}),
    TxState.VERIFIED: frozenset({TxState.COMMITTED}),
    TxState.COMMITTED: frozenset(),
    TxState.REJECTED: frozenset(),
}


def sha256d(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


@dataclass(slots=True, frozen=True)
class TransactionRecord:
    """Public transaction data plus its lifecycle state.

    Records are immutable: every lifecycle step builds a new record through `transition`. The witness, when present,
    holds the secret openings and only ever lives in the creator's process; it is not part of the digest and is
    never serialized.
    """
    version: int
    shielded: bool
    timestamp: int
    bit_width: int
    inputs: tuple[RecordEntry, ...]
    outputs: tuple[RecordEntry, ...]
    fee: int
    balance_proof: Optional[BalanceProof] = None
    tx_id: Optional[bytes] = None
    state: TxState = TxState.DRAFTED
    merkle_root: Optional[bytes] = None
    inclusion_proof: Optional[MerkleInclusionProof] = None
    rejection_reasons: tuple[ErrorKind, ...] = ()
    witness: Optional[TransactionWitness] = field(default=None, compare=False, repr=False)

    @property
    def tx_id_hex(self) -> Optional[str]:
        return self.tx_id.hex() if self.tx_id is not None else None

    def fee_commitment(self) -> Commitment:
        """The fee is always public, its commitment is the trivial one."""
        return create_trivial_commitment(self.fee)

    def input_commitments(self) -> list[Commitment]:
        return [entry.commitment for entry in self.inputs]

    def output_commitments(self) -> list[Commitment]:
        return [entry.commitment for entry in self.outputs]

    def get_struct(self) -> bytes:
        """Canonical serialization of the public fields covered by the transaction id.

        State, accumulator data and the witness are excluded, so the id is fixed once the record is proven.
        """
        if len(self.inputs) > 0xFFFF or len(self.outputs) > 0xFFFF:
            raise MalformedTransaction('too many entries to serialize')
        struct_bytes = pack(
            _HEADER_FORMAT_STRING,
            self.version,
            int(self.shielded),
            self.timestamp,
            self.bit_width,
            len(self.inputs),
            len(self.outputs),
        )
        struct_bytes += encode_public_value(self.fee)
        for entry in self.inputs:
            struct_bytes += serialize_entry(entry)
        for entry in self.outputs:
            struct_bytes += serialize_entry(entry)
        struct_bytes += bytes(self.balance_proof) if self.balance_proof is not None else b''
        return struct_bytes

    def calculate_tx_id(self) -> bytes:
        """The transaction id is `sha256(sha256(get_struct()))`."""
        return sha256d(self.get_struct())

    def transition(self, new_state: TxState, **changes: Any) -> TransactionRecord:
        """Build the record for the next lifecycle state. Raises InvalidStateTransition on illegal moves."""
        if not self.state.can_transition_to(new_state):
            raise InvalidStateTransition(f'cannot move a {self.state.value} record to {new_state.value}')
        return replace(self, state=new_state, **changes)

    def without_witness(self) -> TransactionRecord:
        """Copy of the record safe to hand to other parties."""
        return replace(self, witness=None)

    def to_json(self) -> dict[str, Any]:
        """ Creates a json serializable Dict object with the public fields only
        """
        data: dict[str, Any] = {}
        data['tx_id'] = self.tx_id_hex
        data['version'] = self.version
        data['shielded'] = self.shielded
        data['timestamp'] = self.timestamp
        data['bit_width'] = self.bit_width
        data['fee'] = self.fee
        data['inputs'] = [entry_to_json(entry) for entry in self.inputs]
        data['outputs'] = [entry_to_json(entry) for entry in self.outputs]
        data['balance_proof'] = bytes(self.balance_proof).hex() if self.balance_proof is not None else None
        data['state'] = self.state.value
        data['merkle_root'] = self.merkle_root.hex() if self.merkle_root is not None else None
        data['inclusion_proof'] = self.inclusion_proof.to_json() if self.inclusion_proof is not None else None
        data['rejection_reasons'] = [reason.value for reason in self.rejection_reasons]
        return data

    @classmethod
    def create_from_json(cls, data: dict[str, Any]) -> TransactionRecord:
        """ Rebuild a record from its `to_json` form. Raises MalformedTransaction if it cannot be parsed.
        """
        try:
            balance_proof_hex = data.get('balance_proof')
            inclusion_proof_json = data.get('inclusion_proof')
            merkle_root_hex = data.get('merkle_root')
            tx_id_hex = data.get('tx_id')
            return cls(
                version=json_int(data, 'version'),
                shielded=json_bool(data, 'shielded'),
                timestamp=json_int(data, 'timestamp'),
                bit_width=json_int(data, 'bit_width'),
                inputs=tuple(entry_from_json(item) for item in data['inputs']),
                outputs=tuple(entry_from_json(item) for item in data['outputs']),
                fee=json_int(data, 'fee'),
                balance_proof=BalanceProof.from_bytes(bytes.fromhex(balance_proof_hex)) if balance_proof_hex else None,
                tx_id=bytes.fromhex(tx_id_hex) if tx_id_hex else None,
                state=TxState(data.get('state', TxState.DRAFTED.value)),
                merkle_root=bytes.fromhex(merkle_root_hex) if merkle_root_hex else None,
                inclusion_proof=(
                    MerkleInclusionProof.create_from_json(inclusion_proof_json) if inclusion_proof_json else None
                ),
                rejection_reasons=tuple(ErrorKind(reason) for reason in data.get('rejection_reasons', [])),
            )
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise MalformedTransaction(f'cannot parse transaction record: {e}') from e
