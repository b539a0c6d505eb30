"""
Tests for kernel records and the kernel builder.

Records here log their destruction so tests can check that every record
in a chain is destroyed exactly once, children before parents.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'python'))

import ctypes

import numpy as np
import pytest

from ndkit.errors import AllocationFailure
from ndkit.kernel_builder import (
    BaseKernel,
    KernelBuilder,
    KernelRequest,
    align_offset,
    inc_ckb_offset,
    kernel_functions,
)
from ndkit.kernels.memory import address_of, read_i64, write_i64

destroyed = []


class Tagged(BaseKernel):
    """Adds its tag to an int64 destination, then calls its child."""
    _fields_ = [("tag", ctypes.c_int64), ("has_child", ctypes.c_int64)]

    def single(self, dst, src):
        write_i64(dst, read_i64(dst) + self.tag)
        if self.has_child:
            self.get_child().single(dst, src)

    def destruct_children(self):
        if self.has_child:
            self.get_child().destroy()

    def release(self):
        destroyed.append(self.tag)


class Pair(BaseKernel):
    """Two children: the first inline, the second at a stored offset."""
    _fields_ = [("second", ctypes.c_int64)]

    def single(self, dst, src):
        self.get_child().single(dst, src)
        self.get_child(self.second).single(dst, src)

    def destruct_children(self):
        self.get_child().destroy()
        self.get_child(self.second).destroy()

    def release(self):
        destroyed.append(0)


def build_chain(kb, tags):
    for i, tag in enumerate(tags):
        kb.emplace_back(Tagged, KernelRequest.SINGLE, tag, 1 if i < len(tags) - 1 else 0)


def run(kb):
    out = np.zeros(1, dtype=np.int64)
    kb.single(address_of(out), [])
    return int(out[0])


@pytest.fixture(autouse=True)
def clear_log():
    destroyed.clear()
    yield
    destroyed.clear()


# ============================================================
# Records
# ============================================================

class TestRecords:
    """Tests for record layout and construction."""

    def test_offsets(self):
        assert align_offset(13) == 16
        assert align_offset(16) == 16
        assert inc_ckb_offset(8, 20) == 32

    def test_own_fields(self):
        assert Tagged.own_fields() == ["tag", "has_child"]
        assert Tagged.child_offset() == 32

    def test_construct_sets_fields(self):
        with KernelBuilder() as kb:
            ck = kb.emplace_back(Tagged, KernelRequest.SINGLE, 7, 0)
            assert ck.tag == 7
            assert kb.size == 32

    def test_too_many_fields(self):
        with KernelBuilder() as kb:
            with pytest.raises(TypeError):
                kb.emplace_back(Tagged, KernelRequest.SINGLE, 1, 0, 5)

    def test_function_follows_request(self):
        fns = kernel_functions(Tagged)
        with KernelBuilder() as kb:
            kb.emplace_back(Tagged, KernelRequest.STRIDED, 1, 0)
            assert kb.get().function == fns.strided
            assert kb.get().destructor == fns.destructor
        with KernelBuilder() as kb:
            kb.emplace_back(Tagged, KernelRequest.SINGLE, 1, 0)
            assert kb.get().function == fns.single

    def test_default_strided_loops_single(self):
        out = np.zeros(3, dtype=np.int64)
        with KernelBuilder() as kb:
            kb.emplace_back(Tagged, KernelRequest.STRIDED, 2, 1)
            kb.emplace_back(Tagged, KernelRequest.SINGLE, 3, 0)
            kb.strided(address_of(out), 8, [], [], 3)
        assert out.tolist() == [5, 5, 5]


# ============================================================
# Destruction
# ============================================================

class TestDestruction:
    """Tests for chain destruction."""

    def test_each_record_destroyed_once_children_first(self):
        kb = KernelBuilder()
        build_chain(kb, [1, 2, 3])
        assert run(kb) == 6
        kb.reset()
        assert destroyed == [3, 2, 1]
        assert kb.size == 0
        kb.close()
        assert destroyed == [3, 2, 1]

    def test_context_manager_destroys(self):
        with KernelBuilder() as kb:
            build_chain(kb, [4, 5])
        assert destroyed == [5, 4]

    def test_close_twice(self):
        kb = KernelBuilder()
        build_chain(kb, [1])
        kb.close()
        kb.close()
        assert destroyed == [1]

    def test_collected_builder_destroys(self):
        kb = KernelBuilder()
        build_chain(kb, [9])
        del kb
        assert destroyed == [9]

    def test_second_child_at_stored_offset(self):
        """Children reached by stored offset survive growth mid-construction."""
        with KernelBuilder(inline_bytes=32) as kb:
            self_offset = kb.size
            kb.emplace_back(Pair, KernelRequest.SINGLE)
            kb.emplace_back(Tagged, KernelRequest.SINGLE, 1, 0)
            kb.get_at(Pair, self_offset).second = kb.size - self_offset
            kb.emplace_back(Tagged, KernelRequest.SINGLE, 2, 0)
            assert not kb.using_inline_storage
            assert run(kb) == 3
        assert destroyed == [1, 2, 0]


# ============================================================
# Growth
# ============================================================

class TestGrowth:
    """Tests for storage growth and relocation."""

    def test_starts_inline(self):
        with KernelBuilder(inline_bytes=64) as kb:
            assert kb.using_inline_storage
            assert kb.capacity == 64
            assert kb.size == 0

    def test_canaries_survive_growth(self):
        with KernelBuilder(inline_bytes=64) as kb:
            tags = list(range(100, 120))
            build_chain(kb, tags)
            assert not kb.using_inline_storage
            assert kb.capacity >= kb.size == 20 * 32
            for i, tag in enumerate(tags):
                assert kb.get_at(Tagged, i * 32).tag == tag
            assert run(kb) == sum(tags)
        assert sorted(destroyed) == sorted(tags)
        assert len(destroyed) == 20

    def test_growth_factor(self):
        with KernelBuilder(inline_bytes=64) as kb:
            kb.ensure_capacity_leaf(65)
            assert kb.capacity == 96
            kb.ensure_capacity_leaf(1000)
            assert kb.capacity == 1000

    def test_allocation_failure_resets(self, monkeypatch):
        kb = KernelBuilder(inline_bytes=64)

        def fail(nbytes):
            raise MemoryError

        monkeypatch.setattr(kb, "_alloc", fail)
        with pytest.raises(AllocationFailure) as exc_info:
            build_chain(kb, [1, 2])
        assert exc_info.value.requested == 96
        assert destroyed == [1]
        assert kb.size == 0
        assert kb.using_inline_storage
        kb.close()
        assert destroyed == [1]


# ============================================================
# Swap
# ============================================================

class TestSwap:
    """Tests for exchanging builder contents."""

    @pytest.mark.parametrize("n_a, n_b", [(1, 1), (1, 10), (10, 1), (10, 10)])
    def test_swap(self, n_a, n_b):
        """Inline and heap storage in every combination."""
        a = KernelBuilder(inline_bytes=64)
        b = KernelBuilder(inline_bytes=64)
        tags_a = [1] * n_a
        tags_b = [100] * n_b
        build_chain(a, tags_a)
        build_chain(b, tags_b)
        assert a.using_inline_storage == (n_a == 1)
        assert b.using_inline_storage == (n_b == 1)
        a.swap(b)
        assert a.size == 32 * n_b
        assert b.size == 32 * n_a
        assert run(a) == sum(tags_b)
        assert run(b) == sum(tags_a)
        a.close()
        assert sorted(destroyed) == tags_b
        b.close()
        assert sorted(destroyed) == sorted(tags_a + tags_b)

    def test_swap_into_smaller_inline(self):
        a = KernelBuilder(inline_bytes=128)
        b = KernelBuilder(inline_bytes=32)
        build_chain(a, [1, 2, 3])
        assert a.using_inline_storage
        a.swap(b)
        assert a.size == 0
        assert not b.using_inline_storage
        assert run(b) == 6
        b.close()
        a.close()
        assert destroyed == [3, 2, 1]


# ============================================================
# Call graph
# ============================================================

class TestCallGraph:
    """Tests for emission through the builder's call graph."""

    def test_closures_consumed_in_order(self):
        seen = []

        def first(kb, kernreq, data, dst_arrmeta, nsrc, src_arrmeta):
            seen.append(("first", data))
            kb.emplace_back(Tagged, kernreq, 1, 1)
            kb(kernreq, data + 1, dst_arrmeta, nsrc, src_arrmeta)

        def second(kb, kernreq, data, dst_arrmeta, nsrc, src_arrmeta):
            seen.append(("second", data))
            kb.emplace_back(Tagged, kernreq, 2, 0)

        with KernelBuilder() as kb:
            kb.call_graph.extend([first, second])
            kb(KernelRequest.SINGLE, 10, 0, 0, [])
            assert seen == [("first", 10), ("second", 11)]
            assert run(kb) == 3

    def test_empty_call_graph(self):
        with KernelBuilder() as kb:
            with pytest.raises(RuntimeError):
                kb(KernelRequest.SINGLE, 0, 0, 0, [])
