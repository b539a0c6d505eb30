"""
Reference-counted memory blocks for ndkit.

Memory blocks own the variable-sized storage behind blockref'd values
(strings, bytes, var dims, pointer targets). Arrmeta stores a block as an
integer handle (0 is null); handles are resolved through a process-wide
table, the same way a raw ABI context maps back to its Python object.

Block types:
    EXTERNAL        keeps a foreign buffer alive
    FIXED_SIZE_POD  one fixed data area
    POD             bump allocator with in-place resize of the last allocation
    POOLED          fixed-size chunks with reuse

Mutation in place is only safe for the unique owner (use_count == 1) of a
POD or FIXED_SIZE_POD block (owner_mutable()). The block does not enforce
this; callers check is_unique_owner() first.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum
import itertools
import threading

import numpy as np

from ndkit.config import get_config
from ndkit.errors import AllocationFailure
from ndkit.kernels.memory import address_of, memmove


class MemoryBlockType(Enum):
    """Kind of backing storage."""
    EXTERNAL = "external"
    FIXED_SIZE_POD = "fixed_size_pod"
    POD = "pod"
    POOLED = "pooled"


def _zeroed(size: int, what: str) -> np.ndarray:
    try:
        return np.zeros(max(size, 1), dtype=np.uint8)
    except MemoryError:
        raise AllocationFailure(size, what) from None


def _align_up(value: int, alignment: int) -> int:
    return (value + alignment - 1) & ~(alignment - 1)


class MemoryBlock:
    """Base class for reference-counted blocks.

    A new block starts with use_count 1, owned by its creator.
    """
    block_type: MemoryBlockType = None

    def __init__(self):
        self._use_count = 1
        self.handle = next(_next_handle)
        with _lock:
            _MEMORY_BLOCKS[self.handle] = self

    @property
    def use_count(self) -> int:
        return self._use_count

    def incref(self) -> None:
        with _lock:
            self._use_count += 1

    def decref(self) -> None:
        with _lock:
            self._use_count -= 1
            remaining = self._use_count
            if remaining == 0:
                _MEMORY_BLOCKS.pop(self.handle, None)
        if remaining == 0:
            self._free()
        elif remaining < 0:
            raise RuntimeError(f"memory block {self.handle} released more times than referenced")

    def is_unique_owner(self) -> bool:
        return self._use_count == 1

    def supports_inplace_realloc(self) -> bool:
        return False

    def owner_mutable(self) -> bool:
        """Whether a unique owner may write the block's data in place."""
        return self.block_type in (MemoryBlockType.POD, MemoryBlockType.FIXED_SIZE_POD)

    def _free(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(handle={self.handle}, use_count={self._use_count})"


class ExternalMemoryBlock(MemoryBlock):
    """Keeps a buffer-protocol object alive while referenced."""
    block_type = MemoryBlockType.EXTERNAL

    def __init__(self, obj: Any):
        super().__init__()
        self.obj = obj
        arr = obj if isinstance(obj, np.ndarray) else np.frombuffer(obj, dtype=np.uint8)
        self.data = address_of(arr)
        self._view = arr

    def _free(self) -> None:
        self.obj = None
        self._view = None


class FixedSizePodMemoryBlock(MemoryBlock):
    """A single aligned, zero-initialized data area."""
    block_type = MemoryBlockType.FIXED_SIZE_POD

    def __init__(self, size: int, alignment: int = 8):
        super().__init__()
        self.size = size
        self._buffer = _zeroed(size + alignment, "fixed-size memory block")
        base = address_of(self._buffer)
        self.data = _align_up(base, alignment)

    def _free(self) -> None:
        self._buffer = None


class PodMemoryBlock(MemoryBlock):
    """Chunked bump allocator for variable-sized POD data.

    Example:
        blk = PodMemoryBlock()
        addr = blk.allocate(16, 8)
        addr = blk.resize(addr, 32)   # grows in place: most recent allocation
        blk.finalize()
    """
    block_type = MemoryBlockType.POD

    def __init__(self, capacity: Optional[int] = None):
        super().__init__()
        self.initial_capacity = capacity or get_config().pod_block_capacity
        self.reset()

    def supports_inplace_realloc(self) -> bool:
        return True

    def reset(self) -> None:
        """Drop every allocation and accept new ones."""
        self._chunks: List[np.ndarray] = []
        self._cursor = 0
        self._end = 0
        self._sizes: Dict[int, int] = {}
        self._last: Optional[Tuple[int, int]] = None
        self.finalized = False

    def _new_chunk(self, size: int) -> None:
        chunk = _zeroed(max(self.initial_capacity, size), "pod memory block")
        self._chunks.append(chunk)
        self._cursor = address_of(chunk)
        self._end = self._cursor + chunk.size

    def allocate(self, size: int, alignment: int = 1) -> int:
        """Allocate `size` zeroed bytes and return their address."""
        if self.finalized:
            raise AllocationFailure(size, "finalized pod memory block")
        start = _align_up(self._cursor, alignment)
        if not self._chunks or start + size > self._end:
            self._new_chunk(size + alignment)
            start = _align_up(self._cursor, alignment)
        self._cursor = start + size
        self._sizes[start] = size
        self._last = (start, alignment)
        return start

    def resize(self, address: int, size: int) -> int:
        """Resize a previous allocation, returning its (possibly new) address."""
        if self.finalized:
            raise AllocationFailure(size, "finalized pod memory block")
        old_size = self._sizes.get(address)
        if old_size is None:
            raise ValueError(f"address {address:#x} was not allocated from this block")
        if self._last is not None and self._last[0] == address and address + size <= self._end:
            self._cursor = address + size
            self._sizes[address] = size
            return address
        alignment = self._last[1] if self._last is not None else 1
        new_address = self.allocate(size, alignment)
        memmove(new_address, address, min(old_size, size))
        del self._sizes[address]
        return new_address

    def finalize(self) -> None:
        """Mark the block complete; no further allocation is allowed."""
        self.finalized = True

    @property
    def total_allocated(self) -> int:
        return sum(self._sizes.values())

    def _free(self) -> None:
        self._chunks = []
        self._sizes = {}


class PooledMemoryBlock(MemoryBlock):
    """Fixed-size chunks handed out and returned individually."""
    block_type = MemoryBlockType.POOLED

    def __init__(self, chunk_size: int, chunks_per_slab: int = 64, alignment: int = 8):
        super().__init__()
        self.chunk_size = _align_up(max(chunk_size, 1), alignment)
        self.chunks_per_slab = chunks_per_slab
        self.alignment = alignment
        self._slabs: List[np.ndarray] = []
        self._free_list: List[int] = []
        self._in_use = set()

    def _new_slab(self) -> None:
        slab = _zeroed(self.chunk_size * self.chunks_per_slab + self.alignment, "pooled memory block")
        self._slabs.append(slab)
        base = _align_up(address_of(slab), self.alignment)
        self._free_list.extend(reversed([base + i * self.chunk_size for i in range(self.chunks_per_slab)]))

    def allocate(self) -> int:
        if not self._free_list:
            self._new_slab()
        address = self._free_list.pop()
        self._in_use.add(address)
        return address

    def release(self, address: int) -> None:
        if address not in self._in_use:
            raise ValueError(f"address {address:#x} is not an allocated chunk of this pool")
        self._in_use.remove(address)
        self._free_list.append(address)

    @property
    def chunks_in_use(self) -> int:
        return len(self._in_use)

    def _free(self) -> None:
        self._slabs = []
        self._free_list = []
        self._in_use = set()


# ============================================================
# Handle table
# ============================================================

_MEMORY_BLOCKS: Dict[int, MemoryBlock] = {}
_next_handle = itertools.count(1)
_lock = threading.RLock()


def get_memory_block(handle: int) -> Optional[MemoryBlock]:
    """Resolve a blockref handle. The null handle maps to None."""
    handle = int(handle)
    if handle == 0:
        return None
    blk = _MEMORY_BLOCKS.get(handle)
    if blk is None:
        raise RuntimeError(f"Invalid memory block handle {handle}")
    return blk


def memory_block_incref(handle: int) -> None:
    blk = get_memory_block(handle)
    if blk is not None:
        blk.incref()


def memory_block_decref(handle: int) -> None:
    blk = get_memory_block(handle)
    if blk is not None:
        blk.decref()


def memory_block_use_count(handle: int) -> int:
    blk = get_memory_block(handle)
    return 0 if blk is None else blk.use_count


def live_memory_blocks() -> int:
    return len(_MEMORY_BLOCKS)


__all__ = [
    "MemoryBlockType", "MemoryBlock", "ExternalMemoryBlock", "FixedSizePodMemoryBlock",
    "PodMemoryBlock", "PooledMemoryBlock", "get_memory_block", "memory_block_incref",
    "memory_block_decref", "memory_block_use_count", "live_memory_blocks",
]
