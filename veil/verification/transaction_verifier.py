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
from typing import TYPE_CHECKING, Callable

from structlog import get_logger

from veil.crypto.shielded import (
    Commitment,
    create_trivial_commitment,
    validate_commitment,
    verify_balance,
    verify_range,
)
from veil.merkle import verify_inclusion
from veil.transaction.amount import PublicAmount, RecordEntry, ShieldedAmount
from veil.transaction.exceptions import (
    BalanceMismatch,
    MalformedTransaction,
    ProofVerificationFailed,
    ShieldedTxError,
    ValueOutOfRange,
)
from veil.transaction.record import TransactionRecord, TxState
from veil.verification.verdict import Verdict

if TYPE_CHECKING:
    from veil.conf.settings import VeilSettings

logger = get_logger()

_MAX_TIMESTAMP = (1 << 64) - 1


class TransactionVerifier:
    """Checks a transaction record using its public fields only.

    Every `verify_*` rule raises the matching `ShieldedTxError` subclass; `verify` runs them all and folds the
    failures into a `Verdict`. Verification reads nothing but the record and the settings, so repeating it on the
    same record always gives the same verdict.
    """
    __slots__ = ('_settings', 'log')

    def __init__(self, *, settings: VeilSettings) -> None:
        self._settings = settings
        self.log = logger.new()

    def verify(self, record: TransactionRecord) -> Verdict:
        """Run every rule and return the verdict. Never raises."""
        try:
            self.verify_structure(record)
        except ShieldedTxError as e:
            return self._conclude(record, [e])

        errors: list[ShieldedTxError] = []
        rules: list[Callable[[TransactionRecord], None]] = [
            self.verify_public_amounts,
            self.verify_range_proofs,
            self.verify_balance,
            self.verify_tx_id,
            self.verify_inclusion,
        ]
        for rule in rules:
            try:
                rule(record)
            except ShieldedTxError as e:
                errors.append(e)
            except (ValueError, struct.error) as e:
                errors.append(MalformedTransaction(f'{rule.__name__}: {e}'))
        return self._conclude(record, errors)

    def _conclude(self, record: TransactionRecord, errors: list[ShieldedTxError]) -> Verdict:
        verdict = Verdict.from_errors(errors)
        raw_tx_id = getattr(record, 'tx_id', None)
        tx_id = raw_tx_id.hex() if isinstance(raw_tx_id, bytes) else None
        if verdict.valid:
            self.log.debug('transaction verified', tx_id=tx_id)
        else:
            self.log.info('transaction rejected', tx_id=tx_id, reasons=[r.value for r in verdict.reasons])
        return verdict

    def verify_structure(self, record: TransactionRecord) -> None:
        """Counts, limits, encodings and presence of the proofs the other rules need."""
        if not isinstance(record, TransactionRecord):
            raise MalformedTransaction(f'not a transaction record: {type(record).__name__}')
        if record.version != self._settings.TX_VERSION:
            raise MalformedTransaction(f'unsupported version {record.version}')
        if record.bit_width != self._settings.RANGE_PROOF_BIT_WIDTH:
            raise MalformedTransaction(
                f'range proofs made for {record.bit_width} bits, '
                f'this deployment uses {self._settings.RANGE_PROOF_BIT_WIDTH}'
            )
        if not isinstance(record.timestamp, int) or not 0 <= record.timestamp <= _MAX_TIMESTAMP:
            raise MalformedTransaction(f'invalid timestamp {record.timestamp}')
        if not isinstance(record.fee, int) or record.fee < 0:
            raise MalformedTransaction(f'invalid fee {record.fee}')

        if not record.inputs:
            raise MalformedTransaction('a transaction needs at least one input')
        if not record.outputs:
            raise MalformedTransaction('a transaction needs at least one output')
        if len(record.inputs) > self._settings.MAX_TX_INPUTS:
            raise MalformedTransaction(
                f'too many inputs: {len(record.inputs)} exceeds maximum {self._settings.MAX_TX_INPUTS}'
            )
        if len(record.outputs) > self._settings.MAX_TX_OUTPUTS:
            raise MalformedTransaction(
                f'too many outputs: {len(record.outputs)} exceeds maximum {self._settings.MAX_TX_OUTPUTS}'
            )

        expected_type = ShieldedAmount if record.shielded else PublicAmount
        for kind, entries in (('input', record.inputs), ('output', record.outputs)):
            for i, entry in enumerate(entries):
                self._verify_entry_structure(kind, i, entry, expected_type)

        if record.state == TxState.DRAFTED or record.balance_proof is None:
            raise MalformedTransaction('transaction has not been proven')

    def _verify_entry_structure(self, kind: str, index: int, entry: RecordEntry, expected_type: type) -> None:
        if not isinstance(entry, (PublicAmount, ShieldedAmount)):
            raise MalformedTransaction(f'{kind} {index}: unknown entry type {type(entry).__name__}')
        if not isinstance(entry, expected_type):
            raise MalformedTransaction(f'{kind} {index}: {entry.mode().name.lower()} entry in the wrong mode')
        if not isinstance(entry.commitment, Commitment):
            raise MalformedTransaction(f'{kind} {index}: expected a Commitment, got {type(entry.commitment).__name__}')
        if not validate_commitment(entry.commitment.data):
            raise MalformedTransaction(f'{kind} {index}: invalid commitment (not a valid curve point)')
        if isinstance(entry, ShieldedAmount) and entry.range_proof is None:
            raise MalformedTransaction(f'{kind} {index}: shielded entry without range proof')

    def verify_public_amounts(self, record: TransactionRecord) -> None:
        """Cleartext amounts must be in range and carry their own trivial commitment."""
        limit = 1 << record.bit_width
        for kind, entries in (('input', record.inputs), ('output', record.outputs)):
            for i, entry in enumerate(entries):
                if not isinstance(entry, PublicAmount):
                    continue
                if not isinstance(entry.value, int) or not 0 <= entry.value < limit:
                    raise ValueOutOfRange(f'{kind} {i}: public value does not fit in {record.bit_width} bits')
                if entry.commitment != create_trivial_commitment(entry.value):
                    raise MalformedTransaction(f'{kind} {i}: commitment does not match the public value')
        if record.fee >= limit:
            raise ValueOutOfRange(f'fee does not fit in {record.bit_width} bits')

    def verify_range_proofs(self, record: TransactionRecord) -> None:
        """Every shielded commitment must carry a valid range proof for the deployment bit width."""
        for kind, entries in (('input', record.inputs), ('output', record.outputs)):
            for i, entry in enumerate(entries):
                if not isinstance(entry, ShieldedAmount):
                    continue
                if entry.range_proof is None or not verify_range(entry.commitment, entry.range_proof, record.bit_width):
                    raise ValueOutOfRange(f'{kind} {i}: range proof verification failed')

    def verify_balance(self, record: TransactionRecord) -> None:
        """sum(C_in) == sum(C_out) + fee*H, checked through the balance proof."""
        assert record.balance_proof is not None
        if not verify_balance(
            record.input_commitments(),
            record.output_commitments(),
            record.fee_commitment(),
            record.balance_proof,
        ):
            raise BalanceMismatch('balance equation does not hold')

    def verify_tx_id(self, record: TransactionRecord) -> None:
        if record.tx_id is None:
            raise ProofVerificationFailed('transaction id is missing')
        if record.tx_id != record.calculate_tx_id():
            raise ProofVerificationFailed('transaction id does not match the record contents')

    def verify_inclusion(self, record: TransactionRecord) -> None:
        """When the record carries an inclusion proof it must lead from its own id to the recorded root."""
        if record.inclusion_proof is None:
            if record.state == TxState.COMMITTED:
                raise ProofVerificationFailed('committed transaction without inclusion proof')
            return
        if record.merkle_root is None:
            raise ProofVerificationFailed('inclusion proof without accumulator root')
        if record.inclusion_proof.leaf_digest != record.tx_id:
            raise ProofVerificationFailed('inclusion proof is for a different transaction')
        if not verify_inclusion(record.merkle_root, record.inclusion_proof):
            raise ProofVerificationFailed('inclusion proof verification failed')
