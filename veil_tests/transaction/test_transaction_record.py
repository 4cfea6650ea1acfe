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

import json
from dataclasses import FrozenInstanceError, replace

import pytest

from veil.crypto.shielded import Opening, commit
from veil.engine import TransactionEngine
from veil.transaction.amount import EntryMode, PublicAmount, ShieldedAmount, entry_from_json, entry_to_json
from veil.transaction.exceptions import ErrorKind, InvalidStateTransition, MalformedTransaction
from veil.transaction.record import TransactionRecord, TxState

ALL_STATES = list(TxState)
ALLOWED = {
    (TxState.DRAFTED, TxState.PROVEN),
    (TxState.DRAFTED, TxState.REJECTED),
    (TxState.PROVEN, TxState.VERIFIED),
    (TxState.PROVEN, TxState.REJECTED),
    (TxState.VERIFIED, TxState.COMMITTED),
}


class TestTxState:
    @pytest.mark.parametrize('source', ALL_STATES)
    @pytest.mark.parametrize('target', ALL_STATES)
    def test_transition_table(self, source: TxState, target: TxState) -> None:
        assert source.can_transition_to(target) == ((source, target) in ALLOWED)

    def test_terminal_states(self) -> None:
        assert TxState.COMMITTED.is_terminal()
        assert TxState.REJECTED.is_terminal()
        assert not TxState.DRAFTED.is_terminal()
        assert not TxState.PROVEN.is_terminal()
        assert not TxState.VERIFIED.is_terminal()


class TestTransactionRecord:
    def _public_record(self, engine: TransactionEngine) -> TransactionRecord:
        return engine.prove(engine.draft([500], [100, 395], 5, shielded=False))

    def test_frozen(self, engine: TransactionEngine) -> None:
        record = engine.draft([10], [9], 1, shielded=False)
        with pytest.raises(FrozenInstanceError):
            record.fee = 2  # type: ignore[misc]

    def test_transition_returns_new_record(self, engine: TransactionEngine) -> None:
        record = engine.draft([10], [9], 1, shielded=False)
        rejected = record.transition(TxState.REJECTED, rejection_reasons=(ErrorKind.BALANCE_MISMATCH,))
        assert record.state == TxState.DRAFTED
        assert rejected.state == TxState.REJECTED
        assert rejected.rejection_reasons == (ErrorKind.BALANCE_MISMATCH,)

    def test_illegal_transition(self, engine: TransactionEngine) -> None:
        record = engine.draft([10], [9], 1, shielded=False)
        with pytest.raises(InvalidStateTransition):
            record.transition(TxState.COMMITTED)
        rejected = record.transition(TxState.REJECTED)
        with pytest.raises(InvalidStateTransition):
            rejected.transition(TxState.PROVEN)

    def test_tx_id_is_digest_of_contents(self, engine: TransactionEngine) -> None:
        record = self._public_record(engine)
        assert record.tx_id is not None
        assert len(record.tx_id) == 32
        assert record.tx_id == record.calculate_tx_id()
        assert replace(record, fee=6).calculate_tx_id() != record.tx_id
        assert replace(record, timestamp=record.timestamp + 1).calculate_tx_id() != record.tx_id

    def test_tx_id_ignores_state_and_witness(self, engine: TransactionEngine) -> None:
        record = self._public_record(engine)
        verified = record.transition(TxState.VERIFIED)
        assert verified.calculate_tx_id() == record.tx_id
        assert record.without_witness().calculate_tx_id() == record.tx_id

    def test_fee_commitment_is_trivial(self, engine: TransactionEngine) -> None:
        record = engine.draft([10], [9], 1, shielded=True)
        assert record.fee_commitment() == commit(1, 0)

    def test_without_witness(self, engine: TransactionEngine) -> None:
        record = engine.draft([10], [9], 1, shielded=True)
        assert record.witness is not None
        stripped = record.without_witness()
        assert stripped.witness is None
        assert stripped == record

    def test_witness_matches_commitments(self, engine: TransactionEngine) -> None:
        record = engine.draft([10], [9], 1, shielded=True)
        assert record.witness is not None
        assert record.witness.inputs[0].opens(record.inputs[0].commitment)
        assert record.witness.outputs[0].opens(record.outputs[0].commitment)


class TestRecordSerialization:
    def test_json_has_no_witness(self, engine: TransactionEngine) -> None:
        opening = Opening(value=10, blinding=123456789123456789)
        record = engine.draft([opening], [9], 1, shielded=True)
        data = record.to_json()
        assert 'witness' not in data
        assert '123456789123456789' not in json.dumps(data)

    def test_public_roundtrip(self, engine: TransactionEngine) -> None:
        record = engine.create_shielded_transaction([500], [100, 395], 5, shielded=False)
        data = json.loads(json.dumps(record.to_json()))
        parsed = TransactionRecord.create_from_json(data)
        assert parsed == record.without_witness()
        assert parsed.calculate_tx_id() == record.tx_id
        assert engine.verify_transaction(parsed).valid

    def test_shielded_roundtrip(self, engine: TransactionEngine) -> None:
        record = engine.create_shielded_transaction([50], [30, 19], 1)
        data = json.loads(json.dumps(record.to_json()))
        assert data['state'] == 'committed'
        assert all(entry['mode'] == 'shielded' for entry in data['outputs'])
        assert all('value' not in entry for entry in data['outputs'])
        parsed = TransactionRecord.create_from_json(data)
        assert parsed == record.without_witness()
        assert engine.verify_transaction(parsed).valid

    def test_drafted_roundtrip(self, engine: TransactionEngine) -> None:
        record = engine.draft([10], [9], 1, shielded=True)
        parsed = TransactionRecord.create_from_json(record.to_json())
        assert parsed == record
        assert parsed.tx_id is None
        assert parsed.balance_proof is None

    @pytest.mark.parametrize('mutate', [
        lambda d: d.pop('inputs'),
        lambda d: d.update(balance_proof='zz'),
        lambda d: d.update(state='unknown'),
        lambda d: d['outputs'][0].update(commitment='00'),
        lambda d: d['outputs'][0].update(mode='hidden'),
        lambda d: d['outputs'][0].update(value='9'),
        lambda d: d.update(shielded='false'),
        lambda d: d.update(shielded=0),
        lambda d: d.update(fee=1.9),
        lambda d: d.update(version='1'),
        lambda d: d.update(timestamp=True),
        lambda d: d.update(bit_width=None),
    ])
    def test_malformed_json(self, engine: TransactionEngine, mutate) -> None:
        record = engine.prove(engine.draft([10], [9], 1, shielded=False))
        data = record.to_json()
        mutate(data)
        with pytest.raises(MalformedTransaction):
            TransactionRecord.create_from_json(data)


class TestEntries:
    def test_public_entry(self) -> None:
        entry = PublicAmount.create(42)
        assert entry.mode() == EntryMode.PUBLIC
        assert entry.commitment == commit(42, 0)
        assert entry_from_json(entry_to_json(entry)) == entry

    def test_shielded_entry_without_proof(self) -> None:
        entry = ShieldedAmount(commitment=commit(42, 7))
        assert entry.mode() == EntryMode.SHIELDED
        data = entry_to_json(entry)
        assert data['range_proof'] is None
        assert entry_from_json(data) == entry
