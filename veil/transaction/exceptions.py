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

from enum import Enum
from typing import TYPE_CHECKING, ClassVar, Optional

from veil.exception import VeilError

if TYPE_CHECKING:
    from veil.verification.verdict import Verdict


class ErrorKind(str, Enum):
    """Reason codes carried by verdicts, one per error class below."""
    VALUE_OUT_OF_RANGE = 'ValueOutOfRange'
    MALFORMED_TRANSACTION = 'MalformedTransaction'
    BALANCE_MISMATCH = 'BalanceMismatch'
    INDEX_OUT_OF_RANGE = 'IndexOutOfRange'
    PROOF_VERIFICATION_FAILED = 'ProofVerificationFailed'


class ShieldedTxError(VeilError):
    """Base class for shielded transaction validation errors"""
    kind: ClassVar[ErrorKind] = ErrorKind.PROOF_VERIFICATION_FAILED


class ValueOutOfRange(ShieldedTxError):
    """Amount does not fit in the range proof bit width, or a range proof does not check out"""
    kind = ErrorKind.VALUE_OUT_OF_RANGE


class MalformedTransaction(ShieldedTxError):
    """Missing inputs or outputs, mismatched lengths, bad encodings or witnesses that do not open their commitments"""
    kind = ErrorKind.MALFORMED_TRANSACTION


class BalanceMismatch(ShieldedTxError):
    """Inputs are not equal to outputs plus fee"""
    kind = ErrorKind.BALANCE_MISMATCH


class IndexOutOfRange(ShieldedTxError):
    """Query on a leaf (or transaction) that was never appended to the accumulator"""
    kind = ErrorKind.INDEX_OUT_OF_RANGE


class ProofVerificationFailed(ShieldedTxError):
    """A record did not pass verification; `verdict` tells which checks failed"""
    kind = ErrorKind.PROOF_VERIFICATION_FAILED

    def __init__(self, message: str, verdict: Optional[Verdict] = None) -> None:
        super().__init__(message)
        self.verdict = verdict


class InvalidStateTransition(VeilError):
    """A transaction record was asked to move to a state not reachable from its current one"""
