"""
Tests for memory blocks, arrmeta lifecycle and the object handle table.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'python'))

import numpy as np
import pytest

from ndkit.arrmeta import ArrMeta, FixedDimArrMeta, PointerArrMeta, VarDimArrMeta
from ndkit.array import array, empty
from ndkit.errors import AllocationFailure
from ndkit.handles import get_object, hold_object, live_object_count, release_object
from ndkit.kernels.memory import read_bytes, read_i64, write_bytes, write_i64
from ndkit.memblock import (
    ExternalMemoryBlock,
    FixedSizePodMemoryBlock,
    PodMemoryBlock,
    PooledMemoryBlock,
    get_memory_block,
    live_memory_blocks,
    memory_block_decref,
    memory_block_incref,
    memory_block_use_count,
)
from ndkit.types import ndt


# ============================================================
# Memory blocks
# ============================================================

class TestMemoryBlocks:
    """Tests for reference-counted memory blocks."""

    def test_reference_counting(self):
        blk = FixedSizePodMemoryBlock(16)
        handle = blk.handle
        assert memory_block_use_count(handle) == 1
        memory_block_incref(handle)
        assert memory_block_use_count(handle) == 2
        memory_block_decref(handle)
        assert blk.is_unique_owner()
        memory_block_decref(handle)
        with pytest.raises(RuntimeError):
            get_memory_block(handle)

    def test_null_handle(self):
        assert get_memory_block(0) is None
        assert memory_block_use_count(0) == 0
        memory_block_incref(0)
        memory_block_decref(0)

    def test_live_count(self):
        before = live_memory_blocks()
        blk = PodMemoryBlock()
        assert live_memory_blocks() == before + 1
        blk.decref()
        assert live_memory_blocks() == before

    def test_fixed_size_alignment(self):
        blk = FixedSizePodMemoryBlock(24, alignment=16)
        assert blk.data % 16 == 0
        assert read_bytes(blk.data, 24) == b"\0" * 24
        blk.decref()

    def test_pod_allocate(self):
        blk = PodMemoryBlock(capacity=64)
        a = blk.allocate(10, 1)
        b = blk.allocate(8, 8)
        assert b % 8 == 0
        assert b >= a + 10
        assert blk.total_allocated == 18
        write_i64(b, 42)
        big = blk.allocate(1000, 8)
        assert read_i64(b) == 42
        assert read_bytes(big, 16) == b"\0" * 16
        blk.decref()

    def test_pod_resize_in_place(self):
        blk = PodMemoryBlock(capacity=256)
        a = blk.allocate(16, 8)
        assert blk.resize(a, 32) == a

    def test_pod_resize_moves(self):
        blk = PodMemoryBlock(capacity=64)
        a = blk.allocate(8, 8)
        write_bytes(a, b"abcdefgh")
        blk.allocate(8, 8)
        moved = blk.resize(a, 16)
        assert moved != a
        assert read_bytes(moved, 8) == b"abcdefgh"

    def test_pod_finalize(self):
        blk = PodMemoryBlock()
        blk.allocate(4)
        blk.finalize()
        with pytest.raises(AllocationFailure):
            blk.allocate(4)
        blk.reset()
        blk.allocate(4)

    def test_pooled(self):
        pool = PooledMemoryBlock(24, chunks_per_slab=2)
        a = pool.allocate()
        b = pool.allocate()
        c = pool.allocate()
        assert len({a, b, c}) == 3
        assert pool.chunks_in_use == 3
        pool.release(b)
        assert pool.allocate() == b
        with pytest.raises(ValueError):
            pool.release(12345)

    def test_owner_mutable(self):
        """POD and fixed-size blocks may be written by a unique owner."""
        fixed = FixedSizePodMemoryBlock(8)
        pod = PodMemoryBlock()
        pooled = PooledMemoryBlock(8)
        external = ExternalMemoryBlock(np.zeros(2, dtype=np.int64))
        assert fixed.owner_mutable()
        assert pod.owner_mutable()
        assert not pooled.owner_mutable()
        assert not external.owner_mutable()
        assert not fixed.supports_inplace_realloc()
        for blk in (fixed, pod, pooled, external):
            blk.decref()

    def test_pointer_into_fixed_block_is_owned(self):
        tp = ndt("pointer<int32>")
        meta = ArrMeta(tp).default_construct(blockref_alloc=False)
        blk = FixedSizePodMemoryBlock(4)
        PointerArrMeta.from_address(meta.address).blockref = blk.handle
        assert tp.is_unique_data_owner(meta.address)
        memory_block_incref(blk.handle)
        assert not tp.is_unique_data_owner(meta.address)
        memory_block_decref(blk.handle)
        meta.destruct()

    def test_external_keeps_object(self):
        buf = np.arange(4, dtype=np.int64)
        blk = ExternalMemoryBlock(buf)
        assert read_i64(blk.data + 8) == 1
        assert blk.obj is buf
        blk.decref()
        assert blk.obj is None


# ============================================================
# Arrmeta
# ============================================================

class TestArrMeta:
    """Tests for arrmeta construction and destruction."""

    def test_fixed_dim_default(self):
        meta = ArrMeta(ndt("2 * 3 * int32")).default_construct()
        outer = FixedDimArrMeta.from_address(meta.address)
        inner = FixedDimArrMeta.from_address(meta.address + 16)
        assert (outer.dim_size, outer.stride) == (2, 12)
        assert (inner.dim_size, inner.stride) == (3, 4)

    def test_var_dim_owns_block(self):
        tp = ndt("var * int32")
        meta = ArrMeta(tp).default_construct()
        handle = VarDimArrMeta.from_address(meta.address).blockref
        assert isinstance(get_memory_block(handle), PodMemoryBlock)
        copy = ArrMeta(tp).copy_construct(meta.address)
        assert memory_block_use_count(handle) == 2
        meta.destruct()
        assert memory_block_use_count(handle) == 1
        copy.destruct()
        with pytest.raises(RuntimeError):
            get_memory_block(handle)

    def test_destruct_once(self):
        meta = ArrMeta(ndt("string")).default_construct()
        meta.destruct()
        meta.destruct()
        assert not meta.constructed
        with pytest.raises(RuntimeError):
            meta.address

    def test_debug_print(self):
        meta = ArrMeta(ndt("3 * int32")).default_construct()
        assert "3" in meta.debug_print()


class TestArrayLifetime:
    """Tests for data references held by arrays."""

    def test_empty_is_zeroed(self):
        a = empty("4 * float64")
        assert a.as_py() == [0.0, 0.0, 0.0, 0.0]

    def test_view_holds_reference(self):
        a = array([1, 2, 3], "3 * int32")
        handle = a.data_reference
        assert memory_block_use_count(handle) == 1
        v = a[1:]
        assert memory_block_use_count(handle) == 2
        del v
        assert memory_block_use_count(handle) == 1

    def test_symbolic_type_not_allocated(self):
        from ndkit.errors import UnsupportedOperationError
        with pytest.raises(UnsupportedOperationError):
            empty("Scalar")


# ============================================================
# Object handles
# ============================================================

class TestHandles:
    """Tests for the object handle table."""

    def test_hold_and_release(self):
        before = live_object_count()
        obj = object()
        handle = hold_object(obj)
        assert handle > 0
        assert get_object(handle) is obj
        assert live_object_count() == before + 1
        release_object(handle)
        assert live_object_count() == before
        with pytest.raises(RuntimeError):
            get_object(handle)

    def test_null_handle(self):
        assert get_object(0) is None
        release_object(0)
