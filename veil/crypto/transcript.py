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

"""Fiat-Shamir transcript.

Turns the interactive Sigma protocols into non-interactive ones: prover and verifier feed the same labelled public
data in the same order and both derive the same challenge from the running hash.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

from veil.crypto.group import encode_point
from veil.crypto.scalar import reduce_scalar, scalar_to_bytes

if TYPE_CHECKING:
    from pycoin.ecdsa.Point import Point


class Transcript:
    """SHA-256 based transcript with domain separation.

    Every item is absorbed as `len(label) || label || len(data) || data`, so two different sequences of items can
    never produce the same hash input.

    Usage:
        t = Transcript(b'veil/balance')
        t.append_message(b'commitment', commitment_bytes)
        t.append_point(b'R', nonce_point)
        challenge = t.challenge_scalar(b'c')
    """

    __slots__ = ('_hasher',)

    def __init__(self, protocol_label: bytes) -> None:
        self._hasher = hashlib.sha256()
        self._absorb(b'protocol', protocol_label)

    def _absorb(self, label: bytes, data: bytes) -> None:
        self._hasher.update(len(label).to_bytes(4, 'big'))
        self._hasher.update(label)
        self._hasher.update(len(data).to_bytes(4, 'big'))
        self._hasher.update(data)

    def append_message(self, label: bytes, data: bytes) -> None:
        self._absorb(label, data)

    def append_u64(self, label: bytes, value: int) -> None:
        self._absorb(label, value.to_bytes(8, 'big'))

    def append_scalar(self, label: bytes, value: int) -> None:
        self._absorb(label, scalar_to_bytes(value))

    def append_point(self, label: bytes, point: Point) -> None:
        self._absorb(label, encode_point(point))

    def digest(self) -> bytes:
        """Hash of everything absorbed so far, without absorbing anything."""
        return self._hasher.copy().digest()

    def challenge_scalar(self, label: bytes) -> int:
        """Derive a challenge from everything absorbed so far.

        The challenge label is absorbed as well, so later challenges depend on earlier ones.
        """
        self._absorb(b'challenge', label)
        wide = hashlib.sha512(self._hasher.digest()).digest()
        return reduce_scalar(int.from_bytes(wide, 'big'))
