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

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Optional

from veil.constants import MAX_RANGE_PROOF_BIT_WIDTH
from veil.crypto.shielded.commitment import Commitment, Opening, create_trivial_commitment
from veil.crypto.shielded.range_proof import RangeProof
from veil.transaction.exceptions import MalformedTransaction, ValueOutOfRange

# cleartext amounts never exceed the widest range proof
PUBLIC_VALUE_SIZE = MAX_RANGE_PROOF_BIT_WIDTH // 8


class EntryMode(IntEnum):
    """Privacy level of an input, output or fee amount."""
    PUBLIC = 0    # cleartext value with its trivial (zero-blinding) commitment
    SHIELDED = 1  # hidden value, blinded commitment plus range proof


@dataclass(slots=True, frozen=True)
class PublicAmount:
    """Cleartext amount. The commitment is value*H so public and shielded amounts share the balance algebra."""
    value: int
    commitment: Commitment

    @classmethod
    def create(cls, value: int) -> PublicAmount:
        return cls(value=value, commitment=create_trivial_commitment(value))

    @staticmethod
    def mode() -> EntryMode:
        return EntryMode.PUBLIC


@dataclass(slots=True, frozen=True)
class ShieldedAmount:
    """Hidden amount. The range proof is attached when the record is proven."""
    commitment: Commitment
    range_proof: Optional[RangeProof] = None

    @staticmethod
    def mode() -> EntryMode:
        return EntryMode.SHIELDED


RecordEntry = PublicAmount | ShieldedAmount


@dataclass(slots=True, frozen=True)
class TransactionWitness:
    """Secret openings behind every commitment of a record. Kept by the creator, never serialized."""
    inputs: tuple[Opening, ...]
    outputs: tuple[Opening, ...]
    fee: Opening

    def __repr__(self) -> str:
        return f'TransactionWitness(inputs={len(self.inputs)}, outputs={len(self.outputs)})'


def encode_public_value(value: int) -> bytes:
    if not isinstance(value, int) or not 0 <= value < (1 << (8 * PUBLIC_VALUE_SIZE)):
        raise ValueOutOfRange(f'public value {value} cannot be encoded')
    return value.to_bytes(PUBLIC_VALUE_SIZE, 'big')


def serialize_entry(entry: RecordEntry) -> bytes:
    """Serialize an entry to bytes.

    Format:
        mode(1) | commitment(33) |
        [if PUBLIC]:   value(16)
        [if SHIELDED]: rp_len(4) | range_proof(var)
    """
    parts: list[bytes] = []
    parts.append(struct.pack('!B', entry.mode()))
    parts.append(entry.commitment.data)

    if isinstance(entry, PublicAmount):
        parts.append(encode_public_value(entry.value))
    elif isinstance(entry, ShieldedAmount):
        range_proof = bytes(entry.range_proof) if entry.range_proof is not None else b''
        parts.append(struct.pack('!I', len(range_proof)))
        parts.append(range_proof)
    else:
        raise MalformedTransaction(f'unknown entry type: {type(entry).__name__}')

    return b''.join(parts)


def entry_to_json(entry: RecordEntry) -> dict[str, Any]:
    data: dict[str, Any] = {
        'mode': entry.mode().name.lower(),
        'commitment': entry.commitment.hex(),
    }
    if isinstance(entry, PublicAmount):
        data['value'] = entry.value
    elif isinstance(entry, ShieldedAmount):
        data['range_proof'] = bytes(entry.range_proof).hex() if entry.range_proof is not None else None
    return data


def json_int(data: dict[str, Any], key: str) -> int:
    """Read an integer field from decoded JSON without coercing floats, strings or booleans."""
    value = data[key]
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f'{key} must be an integer, got {value!r}')
    return value


def json_bool(data: dict[str, Any], key: str) -> bool:
    value = data[key]
    if not isinstance(value, bool):
        raise ValueError(f'{key} must be a boolean, got {value!r}')
    return value


def entry_from_json(data: dict[str, Any]) -> RecordEntry:
    """ Build an entry from its `entry_to_json` form. Raises ValueError or KeyError on malformed input.
    """
    mode = EntryMode[data['mode'].upper()]
    commitment = Commitment.from_hex(data['commitment'])
    if mode == EntryMode.PUBLIC:
        return PublicAmount(value=json_int(data, 'value'), commitment=commitment)
    range_proof_hex = data.get('range_proof')
    range_proof = RangeProof.from_bytes(bytes.fromhex(range_proof_hex)) if range_proof_hex is not None else None
    return ShieldedAmount(commitment=commitment, range_proof=range_proof)
