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

import time
from dataclasses import dataclass, replace
from threading import RLock
from typing import TYPE_CHECKING, Callable, Optional, Sequence, Union

from structlog import get_logger

from veil.crypto.shielded import (
    Commitment,
    Opening,
    OpeningProof,
    RangeProof,
    commit,
    prove_balance,
    prove_opening,
    prove_range,
    random_blinding,
    verify_opening_proof,
    verify_range,
)
from veil.merkle import MerkleAccumulator, MerkleInclusionProof, verify_inclusion
from veil.transaction.amount import PublicAmount, RecordEntry, ShieldedAmount, TransactionWitness
from veil.transaction.exceptions import (
    ErrorKind,
    IndexOutOfRange,
    InvalidStateTransition,
    MalformedTransaction,
    ProofVerificationFailed,
    ValueOutOfRange,
)
from veil.transaction.record import TransactionRecord, TxState
from veil.verification.transaction_verifier import TransactionVerifier

if TYPE_CHECKING:
    from veil.conf.settings import VeilSettings
    from veil.verification.verdict import Verdict

logger = get_logger()

AmountSpec = Union[int, Opening]


@dataclass(slots=True, frozen=True)
class CommitmentDemonstration:
    """Opening proof and range proof for a single commitment, without any transaction around it."""
    opening_proof: OpeningProof
    range_proof: RangeProof
    bit_width: int

    def verify(self, commitment: Commitment) -> bool:
        return (
            verify_opening_proof(commitment, self.opening_proof)
            and verify_range(commitment, self.range_proof, self.bit_width)
        )


class TransactionEngine:
    """Drives transaction records through their lifecycle and owns the accumulator of committed transactions.

    Drafted -> Proven -> Verified -> Committed, or Rejected from Drafted or Proven. Each step returns a new record.
    Proving and verifying touch no shared state; only `commit` and the accumulator queries are serialized.
    """

    def __init__(
        self,
        *,
        settings: Optional[VeilSettings] = None,
        accumulator: Optional[MerkleAccumulator] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if settings is None:
            from veil.conf.get_settings import get_global_settings
            settings = get_global_settings()
        self._settings = settings
        self._accumulator = accumulator if accumulator is not None else MerkleAccumulator()
        self._clock = clock or time.time
        self._verifier = TransactionVerifier(settings=settings)
        self._lock = RLock()
        self._leaf_index_by_tx_id: dict[bytes, int] = {}
        self.log = logger.new()

    @property
    def settings(self) -> VeilSettings:
        return self._settings

    @property
    def accumulator(self) -> MerkleAccumulator:
        return self._accumulator

    def _to_openings(self, kind: str, amounts: Sequence[AmountSpec], shielded: bool) -> tuple[Opening, ...]:
        openings = []
        for i, amount in enumerate(amounts):
            if isinstance(amount, Opening):
                opening = amount
            elif isinstance(amount, int) and not isinstance(amount, bool):
                opening = Opening(value=amount, blinding=random_blinding() if shielded else 0)
            else:
                raise MalformedTransaction(f'{kind} {i}: expected an int or an Opening, got {type(amount).__name__}')
            if not shielded and opening.blinding != 0:
                raise MalformedTransaction(f'{kind} {i}: public amounts cannot be blinded')
            self._check_value(f'{kind} {i}', opening.value)
            openings.append(opening)
        return tuple(openings)

    def _check_value(self, what: str, value: int) -> None:
        bit_width = self._settings.RANGE_PROOF_BIT_WIDTH
        if not 0 <= value < (1 << bit_width):
            raise ValueOutOfRange(f'{what}: amount does not fit in {bit_width} bits')

    def _make_entry(self, opening: Opening, shielded: bool) -> RecordEntry:
        if shielded:
            return ShieldedAmount(commitment=opening.commitment())
        return PublicAmount.create(opening.value)

    def draft(
        self,
        inputs: Sequence[AmountSpec],
        outputs: Sequence[AmountSpec],
        fee: Optional[int] = None,
        *,
        shielded: bool = True,
    ) -> TransactionRecord:
        """Commit to every amount and build a Drafted record carrying the secret witness.

        Plain ints get a fresh random blinding when shielded and zero otherwise. When `fee` is None the default fee
        for the total output amount is used.
        """
        if not inputs:
            raise MalformedTransaction('a transaction needs at least one input')
        if not outputs:
            raise MalformedTransaction('a transaction needs at least one output')
        if len(inputs) > self._settings.MAX_TX_INPUTS:
            raise MalformedTransaction(f'too many inputs: {len(inputs)} exceeds maximum {self._settings.MAX_TX_INPUTS}')
        if len(outputs) > self._settings.MAX_TX_OUTPUTS:
            raise MalformedTransaction(
                f'too many outputs: {len(outputs)} exceeds maximum {self._settings.MAX_TX_OUTPUTS}'
            )

        input_openings = self._to_openings('input', inputs, shielded)
        output_openings = self._to_openings('output', outputs, shielded)
        if fee is None:
            fee = self._settings.calculate_fee(sum(o.value for o in output_openings))
        if not isinstance(fee, int) or isinstance(fee, bool):
            raise MalformedTransaction(f'fee must be an int, got {type(fee).__name__}')
        self._check_value('fee', fee)

        record = TransactionRecord(
            version=self._settings.TX_VERSION,
            shielded=shielded,
            timestamp=int(self._clock()),
            bit_width=self._settings.RANGE_PROOF_BIT_WIDTH,
            inputs=tuple(self._make_entry(o, shielded) for o in input_openings),
            outputs=tuple(self._make_entry(o, shielded) for o in output_openings),
            fee=fee,
            witness=TransactionWitness(inputs=input_openings, outputs=output_openings, fee=Opening(fee, 0)),
        )
        self.log.debug('transaction drafted', inputs=len(inputs), outputs=len(outputs), fee=fee, shielded=shielded)
        return record

    def prove(self, record: TransactionRecord) -> TransactionRecord:
        """Generate the range proofs and the balance proof of a Drafted record.

        Raises ValueOutOfRange, BalanceMismatch or MalformedTransaction when the witness does not allow a valid
        proof; nothing partially proven is returned.
        """
        if not record.state.can_transition_to(TxState.PROVEN):
            raise InvalidStateTransition(f'cannot prove a {record.state.value} record')
        witness = record.witness
        if witness is None:
            raise MalformedTransaction('cannot prove a record without its witness')

        def with_range_proofs(entries: tuple[RecordEntry, ...], openings: tuple[Opening, ...]) -> tuple:
            proven = []
            for entry, opening in zip(entries, openings):
                if isinstance(entry, ShieldedAmount):
                    range_proof = prove_range(opening.value, opening.blinding, record.bit_width)
                    entry = replace(entry, range_proof=range_proof)
                proven.append(entry)
            return tuple(proven)

        balance_proof = prove_balance(
            record.input_commitments(),
            record.output_commitments(),
            record.fee_commitment(),
            witness.inputs,
            witness.outputs,
            witness.fee,
        )
        updated = replace(
            record,
            inputs=with_range_proofs(record.inputs, witness.inputs),
            outputs=with_range_proofs(record.outputs, witness.outputs),
            balance_proof=balance_proof,
        )
        proven = updated.transition(TxState.PROVEN, tx_id=updated.calculate_tx_id())
        self.log.debug('transaction proven', tx_id=proven.tx_id_hex)
        return proven

    def _validate(self, record: TransactionRecord) -> tuple[TransactionRecord, Verdict]:
        verdict = self._verifier.verify(record)
        if verdict.valid:
            return record.transition(TxState.VERIFIED), verdict
        return record.transition(TxState.REJECTED, rejection_reasons=verdict.reasons), verdict

    def validate(self, record: TransactionRecord) -> TransactionRecord:
        """Verify a Proven record: the result is Verified, or Rejected with the failing reasons."""
        validated, _ = self._validate(record)
        return validated

    def reject(self, record: TransactionRecord, *reasons: ErrorKind) -> TransactionRecord:
        return record.transition(TxState.REJECTED, rejection_reasons=reasons)

    def commit(self, record: TransactionRecord) -> TransactionRecord:
        """Append the id of a Verified record to the accumulator and attach its inclusion proof.

        Raises MalformedTransaction if the same transaction id was already committed.
        """
        if not record.state.can_transition_to(TxState.COMMITTED):
            raise InvalidStateTransition(f'cannot commit a {record.state.value} record')
        if record.tx_id is None:
            raise MalformedTransaction('cannot commit a record without transaction id')
        with self._lock:
            if record.tx_id in self._leaf_index_by_tx_id:
                raise MalformedTransaction(f'transaction {record.tx_id.hex()} was already committed')
            root, proof = self._accumulator.append_with_proof(record.tx_id)
            self._leaf_index_by_tx_id[record.tx_id] = proof.leaf_index
        self.log.info('transaction committed', tx_id=record.tx_id.hex(), leaf_index=proof.leaf_index, root=root.hex())
        return record.transition(TxState.COMMITTED, merkle_root=root, inclusion_proof=proof)

    def create_shielded_transaction(
        self,
        inputs: Sequence[AmountSpec],
        outputs: Sequence[AmountSpec],
        fee: Optional[int] = None,
        shielded: bool = True,
    ) -> TransactionRecord:
        """Build, prove, verify and commit a transaction in one go.

        Generation errors propagate as raised; a record that fails its own verification raises
        ProofVerificationFailed carrying the verdict. The returned record still holds the witness, call
        `without_witness()` before handing it to anyone else.
        """
        drafted = self.draft(inputs, outputs, fee, shielded=shielded)
        proven = self.prove(drafted)
        validated, verdict = self._validate(proven)
        if validated.state == TxState.REJECTED:
            raise ProofVerificationFailed('transaction failed verification', verdict=verdict)
        return self.commit(validated)

    def verify_transaction(self, record: TransactionRecord) -> Verdict:
        """Re-verify a record from its public fields. Pure read, never raises, never changes stored state."""
        return self._verifier.verify(record)

    def accumulator_root(self) -> bytes:
        return self._accumulator.root()

    def _leaf_index(self, tx_id: bytes) -> int:
        with self._lock:
            leaf_index = self._leaf_index_by_tx_id.get(tx_id)
        if leaf_index is None:
            raise IndexOutOfRange(f'transaction {tx_id.hex()} was never committed')
        return leaf_index

    def inclusion_proof(self, tx_id: bytes) -> MerkleInclusionProof:
        """Inclusion proof of a committed transaction against the current root."""
        return self._accumulator.prove_inclusion(self._leaf_index(tx_id))

    def refresh_inclusion(self, record: TransactionRecord) -> TransactionRecord:
        """New record whose inclusion proof and root are those of the current accumulator."""
        if record.state != TxState.COMMITTED or record.tx_id is None:
            raise InvalidStateTransition(f'cannot refresh the inclusion of a {record.state.value} record')
        root, proof = self._accumulator.root_and_proof(self._leaf_index(record.tx_id))
        return replace(record, merkle_root=root, inclusion_proof=proof)

    def is_canonical(self, record: TransactionRecord) -> bool:
        """Whether the record's inclusion proof holds against a root this accumulator actually had."""
        if record.inclusion_proof is None or record.merkle_root is None:
            return False
        if record.inclusion_proof.leaf_digest != record.tx_id:
            return False
        return self._accumulator.has_root(record.merkle_root) and verify_inclusion(
            record.merkle_root, record.inclusion_proof
        )

    def demonstrate_commitment(
        self,
        amount: int,
        bit_width: Optional[int] = None,
    ) -> tuple[Commitment, CommitmentDemonstration]:
        """Commit to `amount` with a fresh blinding and prove both the opening and the range.

        Raises ValueOutOfRange if the amount does not fit in `bit_width` bits (deployment width by default).
        """
        if bit_width is None:
            bit_width = self._settings.RANGE_PROOF_BIT_WIDTH
        blinding = random_blinding()
        range_proof = prove_range(amount, blinding, bit_width)
        commitment = commit(amount, blinding)
        demonstration = CommitmentDemonstration(
            opening_proof=prove_opening(amount, blinding),
            range_proof=range_proof,
            bit_width=bit_width,
        )
        self.log.debug('commitment demonstrated', commitment=commitment.hex(), bit_width=bit_width)
        return commitment, demonstration
