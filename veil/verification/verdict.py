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

from dataclasses import dataclass
from typing import Any, Iterable

from veil.transaction.exceptions import ErrorKind, ShieldedTxError


@dataclass(slots=True, frozen=True)
class Verdict:
    """Outcome of verifying a transaction record.

    `reasons` holds each failing error kind once, in the order the checks found them, and `details` the matching
    human readable messages.
    """
    valid: bool
    reasons: tuple[ErrorKind, ...] = ()
    details: tuple[str, ...] = ()

    @classmethod
    def accept(cls) -> Verdict:
        return cls(valid=True)

    @classmethod
    def from_errors(cls, errors: Iterable[ShieldedTxError]) -> Verdict:
        reasons: list[ErrorKind] = []
        details: list[str] = []
        for error in errors:
            if error.kind not in reasons:
                reasons.append(error.kind)
            details.append(str(error))
        return cls(valid=not details, reasons=tuple(reasons), details=tuple(details))

    def __bool__(self) -> bool:
        return self.valid

    def to_json(self) -> dict[str, Any]:
        return {
            'valid': self.valid,
            'reasons': [reason.value for reason in self.reasons],
            'details': list(self.details),
        }
