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

"""Scalar arithmetic modulo the order of the secp256k1 group.

Amounts, blinding factors and proof challenges are all plain ints reduced modulo `SCALAR_ORDER`. Nothing here ever
truncates: out-of-range values wrap through modular reduction.
"""

import hashlib
import secrets

from pycoin.ecdsa.secp256k1 import secp256k1_generator

from veil.constants import SCALAR_SIZE

SCALAR_ORDER: int = secp256k1_generator.order()

_NONCE_DOMAIN_SEPARATOR = b'veil/nonce/v1'


def reduce_scalar(value: int) -> int:
    """Reduce any int (negative included) into [0, SCALAR_ORDER)."""
    return value % SCALAR_ORDER


def is_canonical_scalar(value: object) -> bool:
    """Whether `value` is an int already reduced into [0, SCALAR_ORDER)."""
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < SCALAR_ORDER


def random_scalar() -> int:
    """Draw a uniformly random non-zero scalar from the OS CSPRNG."""
    return secrets.randbelow(SCALAR_ORDER - 1) + 1


def scalar_to_bytes(value: int) -> bytes:
    return reduce_scalar(value).to_bytes(SCALAR_SIZE, 'big')


def scalar_from_bytes(data: bytes) -> int:
    """Parse a 32-byte big-endian scalar. Raises ValueError if it is not canonical."""
    if len(data) != SCALAR_SIZE:
        raise ValueError(f'scalar must be {SCALAR_SIZE} bytes, got {len(data)}')
    value = int.from_bytes(data, 'big')
    if value >= SCALAR_ORDER:
        raise ValueError('scalar is not reduced modulo the group order')
    return value


def scalar_inverse(value: int) -> int:
    value = reduce_scalar(value)
    if value == 0:
        raise ZeroDivisionError('zero has no inverse modulo the group order')
    return pow(value, -1, SCALAR_ORDER)


def hash_to_scalar(*parts: bytes) -> int:
    """Hash length-prefixed parts into a scalar.

    Wide reduction: 64 bytes of output are reduced, so the bias modulo the order is negligible.
    """
    h = hashlib.sha512()
    for part in parts:
        h.update(len(part).to_bytes(4, 'big'))
        h.update(part)
    return reduce_scalar(int.from_bytes(h.digest(), 'big'))


def derive_nonce(secret: int, *context: bytes) -> int:
    """Deterministic prover nonce bound to a secret and the public statement being proven.

    The same secret with a different statement yields an unrelated nonce, so nonces are never reused across proofs.
    """
    nonce = hash_to_scalar(_NONCE_DOMAIN_SEPARATOR, scalar_to_bytes(secret), *context)
    # a zero nonce would expose the secret in the response
    return nonce or 1
