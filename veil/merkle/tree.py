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
from dataclasses import dataclass
from enum import Enum
from threading import RLock
from typing import Any

from structlog import get_logger

from veil.constants import DIGEST_SIZE
from veil.transaction.exceptions import IndexOutOfRange, MalformedTransaction

logger = get_logger()

EMPTY_ROOT = bytes(DIGEST_SIZE)

_LEAF_PREFIX = b'\x00'
_NODE_PREFIX = b'\x01'

# deep enough for any leaf count an int index can address in practice
_MAX_HEIGHT = 64


def hash_leaf(leaf_digest: bytes) -> bytes:
    return hashlib.sha256(_LEAF_PREFIX + leaf_digest).digest()


def hash_node(left: bytes, right: bytes) -> bytes:
    return hashlib.sha256(_NODE_PREFIX + left + right).digest()


def _build_zero_hashes(height: int) -> list[bytes]:
    """ Root of an all-absent subtree for every level, the absent leaf being 32 zero bytes.
    """
    zero_hashes = [EMPTY_ROOT]
    for _ in range(height):
        zero_hashes.append(hash_node(zero_hashes[-1], zero_hashes[-1]))
    return zero_hashes


ZERO_HASHES = _build_zero_hashes(_MAX_HEIGHT)


def tree_height(leaf_count: int) -> int:
    """ Smallest h with 2**h >= leaf_count (0 for empty and single-leaf trees).
    """
    return (leaf_count - 1).bit_length() if leaf_count > 0 else 0


class SiblingSide(str, Enum):
    """Which side of the path node the sibling sits on."""
    LEFT = 'left'
    RIGHT = 'right'


@dataclass(slots=True, frozen=True)
class MerkleInclusionProof:
    """Path from a leaf to the root: the siblings from the bottom level up, each with its orientation."""
    leaf_index: int
    leaf_digest: bytes
    path: tuple[tuple[bytes, SiblingSide], ...]

    def to_json(self) -> dict[str, Any]:
        return {
            'leaf_index': self.leaf_index,
            'leaf_digest': self.leaf_digest.hex(),
            'path': [{'sibling': sibling.hex(), 'side': side.value} for sibling, side in self.path],
        }

    @classmethod
    def create_from_json(cls, data: dict[str, Any]) -> MerkleInclusionProof:
        """ Build a proof from its `to_json` form. Raises ValueError or KeyError on malformed input.
        """
        leaf_index = data['leaf_index']
        if not isinstance(leaf_index, int) or isinstance(leaf_index, bool):
            raise ValueError(f'leaf_index must be an integer, got {leaf_index!r}')
        return cls(
            leaf_index=leaf_index,
            leaf_digest=bytes.fromhex(data['leaf_digest']),
            path=tuple((bytes.fromhex(item['sibling']), SiblingSide(item['side'])) for item in data['path']),
        )


@dataclass(slots=True, frozen=True)
class MerkleSnapshot:
    root: bytes
    leaf_count: int
    height: int


def verify_inclusion(root: bytes, proof: MerkleInclusionProof) -> bool:
    """Recompute the path from the leaf up and compare with `root`.

    The orientation of every step must agree with the corresponding bit of `leaf_index`, and the index must be
    addressable by a path of that length. Pure, returns False on any mismatch.
    """
    if not isinstance(proof, MerkleInclusionProof) or not isinstance(root, bytes):
        return False
    if not isinstance(proof.leaf_index, int) or proof.leaf_index < 0:
        return False
    if len(proof.leaf_digest) != DIGEST_SIZE or len(root) != DIGEST_SIZE:
        return False

    node = hash_leaf(proof.leaf_digest)
    index = proof.leaf_index
    for sibling, side in proof.path:
        if not isinstance(sibling, bytes) or len(sibling) != DIGEST_SIZE:
            return False
        expected_side = SiblingSide.LEFT if index & 1 else SiblingSide.RIGHT
        if side != expected_side:
            return False
        node = hash_node(sibling, node) if side == SiblingSide.LEFT else hash_node(node, sibling)
        index >>= 1
    if index != 0:
        return False
    return node == root


class MerkleAccumulator:
    """Append-only binary Merkle tree with array-backed levels.

    `_levels[0]` holds the hashed leaves and `_levels[l]` the nodes at height l; a missing right child is replaced
    by the all-absent subtree of that level. Each append only recomputes the path of the new leaf. The root is a
    function of the ordered leaf sequence alone, so two trees fed the same leaves agree on roots and proofs.

    Appends and reads are serialized by a reentrant lock, every root ever reached is kept so old proofs can be
    checked against the canonical history.
    """

    def __init__(self) -> None:
        self.log = logger.new()
        self._lock = RLock()
        self._leaves: list[bytes] = []
        self._levels: list[list[bytes]] = [[]]
        self._root_history: set[bytes] = {EMPTY_ROOT}

    def __len__(self) -> int:
        return self.leaf_count

    @property
    def leaf_count(self) -> int:
        with self._lock:
            return len(self._leaves)

    @property
    def height(self) -> int:
        with self._lock:
            return tree_height(len(self._leaves))

    def root(self) -> bytes:
        with self._lock:
            return self._root()

    def _root(self) -> bytes:
        if not self._leaves:
            return EMPTY_ROOT
        return self._levels[tree_height(len(self._leaves))][0]

    def snapshot(self) -> MerkleSnapshot:
        with self._lock:
            return MerkleSnapshot(root=self._root(), leaf_count=len(self._leaves), height=self.height)

    def has_root(self, root: bytes) -> bool:
        """Whether `root` was the root of this accumulator at some point in its history."""
        with self._lock:
            return root in self._root_history

    def get_leaf(self, leaf_index: int) -> bytes:
        with self._lock:
            self._check_index(leaf_index)
            return self._leaves[leaf_index]

    def append(self, leaf_digest: bytes) -> tuple[bytes, int]:
        """Append a leaf and return the new root and the leaf's index.

        Duplicate digests are accepted; they are told apart by position.
        """
        if not isinstance(leaf_digest, bytes) or len(leaf_digest) != DIGEST_SIZE:
            raise MalformedTransaction(f'leaf digest must be {DIGEST_SIZE} bytes')
        with self._lock:
            leaf_index = len(self._leaves)
            if tree_height(leaf_index + 1) > _MAX_HEIGHT:
                raise MalformedTransaction('accumulator is full')
            self._leaves.append(leaf_digest)
            self._levels[0].append(hash_leaf(leaf_digest))
            height = tree_height(len(self._leaves))
            while len(self._levels) <= height:
                self._levels.append([])

            index = leaf_index
            for level in range(height):
                nodes = self._levels[level]
                parent = index >> 1
                left = nodes[2 * parent]
                right = nodes[2 * parent + 1] if 2 * parent + 1 < len(nodes) else ZERO_HASHES[level]
                parents = self._levels[level + 1]
                node = hash_node(left, right)
                if parent < len(parents):
                    parents[parent] = node
                else:
                    parents.append(node)
                index = parent

            root = self._root()
            self._root_history.add(root)
        self.log.debug('leaf appended', leaf_index=leaf_index, root=root.hex())
        return root, leaf_index

    def append_with_proof(self, leaf_digest: bytes) -> tuple[bytes, MerkleInclusionProof]:
        """Append a leaf and build its inclusion proof against the root the append produced, atomically."""
        with self._lock:
            root, leaf_index = self.append(leaf_digest)
            return root, self._prove(leaf_index)

    def prove_inclusion(self, leaf_index: int) -> MerkleInclusionProof:
        """Inclusion proof of `leaf_index` against the current root. Raises IndexOutOfRange for unknown indexes."""
        with self._lock:
            self._check_index(leaf_index)
            return self._prove(leaf_index)

    def root_and_proof(self, leaf_index: int) -> tuple[bytes, MerkleInclusionProof]:
        """Current root and the matching inclusion proof of `leaf_index`, read under one lock."""
        with self._lock:
            self._check_index(leaf_index)
            return self._root(), self._prove(leaf_index)

    def _check_index(self, leaf_index: int) -> None:
        if not isinstance(leaf_index, int) or not 0 <= leaf_index < len(self._leaves):
            raise IndexOutOfRange(f'leaf index {leaf_index} was never appended (leaf count {len(self._leaves)})')

    def _prove(self, leaf_index: int) -> MerkleInclusionProof:
        path: list[tuple[bytes, SiblingSide]] = []
        index = leaf_index
        for level in range(tree_height(len(self._leaves))):
            nodes = self._levels[level]
            sibling_index = index ^ 1
            sibling = nodes[sibling_index] if sibling_index < len(nodes) else ZERO_HASHES[level]
            side = SiblingSide.LEFT if index & 1 else SiblingSide.RIGHT
            path.append((sibling, side))
            index >>= 1
        return MerkleInclusionProof(
            leaf_index=leaf_index,
            leaf_digest=self._leaves[leaf_index],
            path=tuple(path),
        )
