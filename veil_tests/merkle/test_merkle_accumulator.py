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

import hashlib
import threading
from dataclasses import replace

import pytest

from veil.merkle import EMPTY_ROOT, MerkleAccumulator, MerkleInclusionProof, SiblingSide, verify_inclusion
from veil.merkle.tree import hash_leaf, hash_node, tree_height
from veil.transaction.exceptions import IndexOutOfRange, MalformedTransaction


def _digest(i: int) -> bytes:
    return hashlib.sha256(i.to_bytes(8, 'big')).digest()


def _filled(count: int) -> MerkleAccumulator:
    accumulator = MerkleAccumulator()
    for i in range(count):
        accumulator.append(_digest(i))
    return accumulator


class TestMerkleAccumulator:
    def test_empty(self) -> None:
        accumulator = MerkleAccumulator()
        assert accumulator.root() == EMPTY_ROOT
        assert accumulator.leaf_count == 0
        assert accumulator.height == 0
        assert len(accumulator) == 0

    def test_single_leaf(self) -> None:
        accumulator = MerkleAccumulator()
        root, index = accumulator.append(_digest(0))
        assert index == 0
        assert root == hash_leaf(_digest(0))
        assert accumulator.root() == root

    def test_two_and_three_leaves(self) -> None:
        a, b, c = _digest(0), _digest(1), _digest(2)
        accumulator = MerkleAccumulator()
        accumulator.append(a)
        root2, _ = accumulator.append(b)
        assert root2 == hash_node(hash_leaf(a), hash_leaf(b))
        root3, index = accumulator.append(c)
        assert index == 2
        absent = bytes(32)
        assert root3 == hash_node(hash_node(hash_leaf(a), hash_leaf(b)), hash_node(hash_leaf(c), absent))

    @pytest.mark.parametrize(['leaf_count', 'height'], [(0, 0), (1, 0), (2, 1), (3, 2), (4, 2), (5, 3), (8, 3), (9, 4)])
    def test_height(self, leaf_count: int, height: int) -> None:
        assert tree_height(leaf_count) == height
        assert _filled(leaf_count).height == height

    def test_indexes_are_sequential(self) -> None:
        accumulator = MerkleAccumulator()
        for i in range(5):
            _, index = accumulator.append(_digest(i))
            assert index == i

    def test_duplicates_are_distinct_leaves(self) -> None:
        accumulator = MerkleAccumulator()
        root1, index1 = accumulator.append(_digest(7))
        root2, index2 = accumulator.append(_digest(7))
        assert (index1, index2) == (0, 1)
        assert root1 != root2
        assert accumulator.get_leaf(0) == accumulator.get_leaf(1)

    def test_root_depends_only_on_leaves(self) -> None:
        for count in range(1, 10):
            a = _filled(count)
            b = _filled(count)
            assert a.root() == b.root()
            for i in range(count):
                assert a.prove_inclusion(i) == b.prove_inclusion(i)

    def test_order_matters(self) -> None:
        a = MerkleAccumulator()
        a.append(_digest(0))
        a.append(_digest(1))
        b = MerkleAccumulator()
        b.append(_digest(1))
        b.append(_digest(0))
        assert a.root() != b.root()

    def test_invalid_leaf_size(self) -> None:
        accumulator = MerkleAccumulator()
        with pytest.raises(MalformedTransaction):
            accumulator.append(b'\x00' * 31)
        with pytest.raises(MalformedTransaction):
            accumulator.append('not bytes')  # type: ignore[arg-type]
        assert accumulator.leaf_count == 0

    def test_get_leaf_out_of_range(self) -> None:
        accumulator = _filled(2)
        assert accumulator.get_leaf(1) == _digest(1)
        with pytest.raises(IndexOutOfRange):
            accumulator.get_leaf(2)

    def test_snapshot(self) -> None:
        accumulator = _filled(3)
        snapshot = accumulator.snapshot()
        assert snapshot.root == accumulator.root()
        assert snapshot.leaf_count == 3
        assert snapshot.height == 2
        accumulator.append(_digest(3))
        assert snapshot.leaf_count == 3

    def test_root_history(self) -> None:
        accumulator = MerkleAccumulator()
        assert accumulator.has_root(EMPTY_ROOT)
        roots = [accumulator.append(_digest(i))[0] for i in range(4)]
        for root in roots:
            assert accumulator.has_root(root)
        assert not accumulator.has_root(_digest(100))


class TestInclusionProof:
    @pytest.mark.parametrize('count', [1, 2, 3, 4, 5, 7, 8, 9, 16, 17])
    def test_all_indexes_verify(self, count: int) -> None:
        accumulator = _filled(count)
        root = accumulator.root()
        for i in range(count):
            proof = accumulator.prove_inclusion(i)
            assert proof.leaf_index == i
            assert proof.leaf_digest == _digest(i)
            assert len(proof.path) == accumulator.height
            assert verify_inclusion(root, proof)

    def test_old_proofs_against_old_and_new_root(self) -> None:
        accumulator = _filled(5)
        old_root = accumulator.root()
        old_proofs = [accumulator.prove_inclusion(i) for i in range(5)]
        new_root, _ = accumulator.append(_digest(5))
        assert new_root != old_root
        for proof in old_proofs:
            assert verify_inclusion(old_root, proof)
            assert not verify_inclusion(new_root, proof)
        for i in range(5):
            assert verify_inclusion(new_root, accumulator.prove_inclusion(i))

    def test_unappended_index(self) -> None:
        accumulator = _filled(3)
        with pytest.raises(IndexOutOfRange):
            accumulator.prove_inclusion(3)
        with pytest.raises(IndexOutOfRange):
            accumulator.prove_inclusion(-1)
        with pytest.raises(IndexOutOfRange):
            MerkleAccumulator().prove_inclusion(0)

    def test_append_with_proof(self) -> None:
        accumulator = _filled(3)
        root, proof = accumulator.append_with_proof(_digest(3))
        assert proof.leaf_index == 3
        assert root == accumulator.root()
        assert verify_inclusion(root, proof)

    def test_root_and_proof(self) -> None:
        accumulator = _filled(6)
        root, proof = accumulator.root_and_proof(2)
        assert root == accumulator.root()
        assert verify_inclusion(root, proof)

    def test_wrong_leaf(self) -> None:
        accumulator = _filled(4)
        proof = accumulator.prove_inclusion(1)
        assert not verify_inclusion(accumulator.root(), replace(proof, leaf_digest=_digest(99)))

    def test_wrong_index(self) -> None:
        accumulator = _filled(4)
        proof = accumulator.prove_inclusion(1)
        assert not verify_inclusion(accumulator.root(), replace(proof, leaf_index=0))
        assert not verify_inclusion(accumulator.root(), replace(proof, leaf_index=5))
        assert not verify_inclusion(accumulator.root(), replace(proof, leaf_index=-1))

    def test_flipped_orientation(self) -> None:
        accumulator = _filled(4)
        proof = accumulator.prove_inclusion(1)
        (sibling, side), rest = proof.path[0], proof.path[1:]
        flipped = SiblingSide.RIGHT if side == SiblingSide.LEFT else SiblingSide.LEFT
        assert not verify_inclusion(accumulator.root(), replace(proof, path=((sibling, flipped),) + rest))

    def test_tampered_sibling(self) -> None:
        accumulator = _filled(4)
        proof = accumulator.prove_inclusion(2)
        (_, side), rest = proof.path[0], proof.path[1:]
        assert not verify_inclusion(accumulator.root(), replace(proof, path=((_digest(50), side),) + rest))
        assert not verify_inclusion(accumulator.root(), replace(proof, path=((b'\x00', side),) + rest))

    def test_truncated_path(self) -> None:
        accumulator = _filled(4)
        proof = accumulator.prove_inclusion(3)
        assert not verify_inclusion(accumulator.root(), replace(proof, path=proof.path[:-1]))

    def test_garbage(self) -> None:
        accumulator = _filled(2)
        proof = accumulator.prove_inclusion(0)
        assert not verify_inclusion(b'\x00', proof)
        assert not verify_inclusion(accumulator.root(), None)  # type: ignore[arg-type]

    def test_json_roundtrip(self) -> None:
        accumulator = _filled(5)
        proof = accumulator.prove_inclusion(4)
        data = proof.to_json()
        assert data['leaf_index'] == 4
        assert data['path'][0]['side'] in ('left', 'right')
        parsed = MerkleInclusionProof.create_from_json(data)
        assert parsed == proof
        assert verify_inclusion(accumulator.root(), parsed)

    @pytest.mark.parametrize('leaf_index', ['4', 4.0, True, None])
    def test_json_leaf_index_must_be_int(self, leaf_index: object) -> None:
        data = _filled(5).prove_inclusion(4).to_json()
        data['leaf_index'] = leaf_index
        with pytest.raises(ValueError, match='leaf_index must be an integer'):
            MerkleInclusionProof.create_from_json(data)


class TestConcurrency:
    def test_concurrent_appends(self) -> None:
        accumulator = MerkleAccumulator()
        per_thread = 50
        thread_count = 8
        indexes: list[int] = []
        indexes_lock = threading.Lock()

        def worker(offset: int) -> None:
            for i in range(per_thread):
                _, index = accumulator.append(_digest(offset * per_thread + i))
                with indexes_lock:
                    indexes.append(index)

        threads = [threading.Thread(target=worker, args=(t,)) for t in range(thread_count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        total = per_thread * thread_count
        assert sorted(indexes) == list(range(total))
        assert accumulator.leaf_count == total

        # the concurrent tree must match a sequential rebuild with the same final leaf order
        rebuilt = MerkleAccumulator()
        for i in range(total):
            rebuilt.append(accumulator.get_leaf(i))
        assert rebuilt.root() == accumulator.root()

        root = accumulator.root()
        for i in range(0, total, 37):
            assert verify_inclusion(root, accumulator.prove_inclusion(i))
