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

"""secp256k1 group helpers on top of pycoin.

`G` is the standard base point and `H` a second generator whose discrete log relative to `G` is unknown to anyone:
it is derived by hashing a fixed tag onto the curve. Points travel as 33-byte compressed encodings; the identity
element (point at infinity) encodes as 33 zero bytes.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING, Iterable

from pycoin.ecdsa.Point import NoSuchPointError
from pycoin.ecdsa.secp256k1 import secp256k1_generator
from pycoin.encoding.exceptions import EncodingError
from pycoin.encoding.sec import public_pair_to_sec, sec_to_public_pair

from veil.constants import COMMITMENT_SIZE
from veil.crypto.scalar import reduce_scalar

if TYPE_CHECKING:
    from pycoin.ecdsa.Point import Point

_FIELD_PRIME: int = secp256k1_generator.p()

_H_GENERATOR_TAG = b'veil/pedersen/H'

GENERATOR_G: Point = secp256k1_generator
IDENTITY: Point = secp256k1_generator.infinity()
IDENTITY_ENCODING = bytes(COMMITMENT_SIZE)


def is_identity(point: Point) -> bool:
    return point == IDENTITY


def hash_to_point(tag: bytes) -> Point:
    """Map a tag onto the curve by try-and-increment; nobody knows the discrete log of the result.

    The first hash that is the x coordinate of a curve point wins, and of its two points the one with even y.
    """
    counter = 0
    while True:
        digest = hashlib.sha256(tag + counter.to_bytes(4, 'big')).digest()
        x = int.from_bytes(digest, 'big')
        if x < _FIELD_PRIME:
            try:
                even, _ = secp256k1_generator.points_for_x(x)
            except (NoSuchPointError, ValueError):
                pass
            else:
                return even
        counter += 1


GENERATOR_H: Point = hash_to_point(_H_GENERATOR_TAG)


def point_add(a: Point, b: Point) -> Point:
    return a + b


def point_neg(point: Point) -> Point:
    if is_identity(point):
        return IDENTITY
    x, y = point
    return secp256k1_generator.Point(x, _FIELD_PRIME - y)


def point_sub(a: Point, b: Point) -> Point:
    return point_add(a, point_neg(b))


def point_mul(point: Point, scalar: int) -> Point:
    """Multiply a point by a scalar, reducing the scalar modulo the group order first."""
    scalar = reduce_scalar(scalar)
    if scalar == 0 or is_identity(point):
        return IDENTITY
    if point is GENERATOR_G:
        return secp256k1_generator * scalar
    return point * scalar


def point_sum(points: Iterable[Point]) -> Point:
    total = IDENTITY
    for point in points:
        total = point_add(total, point)
    return total


def base_mul(scalar_h: int, scalar_g: int) -> Point:
    """Compute scalar_h*H + scalar_g*G, the shape of every Pedersen commitment."""
    return point_add(point_mul(GENERATOR_H, scalar_h), point_mul(GENERATOR_G, scalar_g))


def encode_point(point: Point) -> bytes:
    """Compressed SEC encoding: parity byte (0x02/0x03) followed by the 32-byte x coordinate."""
    if is_identity(point):
        return IDENTITY_ENCODING
    return public_pair_to_sec(point, compressed=True)


def decode_point(data: bytes) -> Point:
    """Inverse of `encode_point`. Raises ValueError if the bytes do not encode a curve point."""
    if len(data) != COMMITMENT_SIZE:
        raise ValueError(f'point must be {COMMITMENT_SIZE} bytes, got {len(data)}')
    if data == IDENTITY_ENCODING:
        return IDENTITY
    prefix = data[0]
    if prefix not in (2, 3):
        raise ValueError(f'invalid point prefix: {prefix:#04x}')
    # pycoin does not reject x >= p, which would give the same point a second encoding
    if int.from_bytes(data[1:], 'big') >= _FIELD_PRIME:
        raise ValueError('point x coordinate is not a field element')
    try:
        return sec_to_public_pair(data, generator=secp256k1_generator)
    except (EncodingError, NoSuchPointError, ValueError) as e:
        raise ValueError('point is not on the curve') from e


def is_valid_point_encoding(data: bytes) -> bool:
    try:
        decode_point(data)
    except ValueError:
        return False
    return True
