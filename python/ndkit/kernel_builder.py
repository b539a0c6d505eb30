"""
Kernel builder for ndkit.

A kernel is a chain of records placed back to back in one growable byte
buffer. Every record starts with the same 16-byte prefix:

    struct KernelPrefix {
        int64 function;     // id in the kernel function table, selected by call mode
        int64 destructor;   // id in the kernel function table, 0 for none
    };

Records are ctypes structures (subclasses of BaseKernel) holding only POD
fields. A record's first child sits at align(sizeof(record), 8) past it;
further children are addressed by byte offsets stored in the parent. Since
every link is offset-relative, growing the buffer is a raw byte copy and
runs no per-record hook.

Python state a record needs (index arrays, callables) lives in the object
handle table (ndkit.handles) and the record stores the handle.

Example:
    class AddOneKernel(BaseKernel):
        def single(self, dst, src):
            write_i64(dst, read_i64(src[0]) + 1)

    with KernelBuilder() as kb:
        kb.emplace_back(AddOneKernel, KernelRequest.SINGLE)
        kb.single(dst_address, [src_address])
"""

from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type
from collections import deque
from dataclasses import dataclass
from enum import IntEnum
import ctypes
import weakref

import numpy as np

from ndkit.config import get_config
from ndkit.errors import AllocationFailure
from ndkit import trace

KERNEL_ALIGNMENT = 8


class KernelRequest(IntEnum):
    """Call mode a kernel record is constructed for."""
    SINGLE = 0      # (dst, src[]) -> None
    STRIDED = 1     # (dst, dst_stride, src[], src_stride[], count) -> None


def align_offset(offset: int, alignment: int = KERNEL_ALIGNMENT) -> int:
    return (offset + alignment - 1) & ~(alignment - 1)


def inc_ckb_offset(offset: int, size: int) -> int:
    """Offset just past a record of `size` bytes placed at `offset`."""
    return align_offset(offset + size)


# ============================================================
# Kernel function table
# ============================================================

# Slot 0 is the null function
_KERNEL_FUNCTIONS: List[Optional[Callable]] = [None]


def register_kernel_function(fn: Callable) -> int:
    _KERNEL_FUNCTIONS.append(fn)
    return len(_KERNEL_FUNCTIONS) - 1


def get_kernel_function(fid: int) -> Optional[Callable]:
    return _KERNEL_FUNCTIONS[fid]


@dataclass(frozen=True)
class KernelFunctions:
    """Function ids registered for one kernel record class."""
    single: int
    strided: int
    destructor: int

    def for_request(self, kernreq: KernelRequest) -> int:
        if kernreq == KernelRequest.SINGLE:
            return self.single
        if kernreq == KernelRequest.STRIDED:
            return self.strided
        raise ValueError(f"unknown kernel request {kernreq!r}")


_CLASS_FUNCTIONS: Dict[type, KernelFunctions] = {}


def kernel_functions(cls: Type["BaseKernel"]) -> KernelFunctions:
    """Register (once) and return the trampolines of a kernel record class."""
    fns = _CLASS_FUNCTIONS.get(cls)
    if fns is not None:
        return fns
    if cls.function.offset != 0 or cls.destructor.offset != 8:
        raise TypeError(f"{cls.__name__} does not start with the kernel prefix")

    def single(prefix, dst, src):
        cls.from_address(ctypes.addressof(prefix)).single(dst, src)

    def strided(prefix, dst, dst_stride, src, src_stride, count):
        cls.from_address(ctypes.addressof(prefix)).strided(dst, dst_stride, src, src_stride, count)

    def destruct(prefix):
        ck = cls.from_address(ctypes.addressof(prefix))
        ck.destruct_children()
        ck.release()
        trace.record("kernel", cls.__name__, action="destroy")

    fns = KernelFunctions(
        register_kernel_function(single),
        register_kernel_function(strided),
        register_kernel_function(destruct),
    )
    _CLASS_FUNCTIONS[cls] = fns
    return fns


# ============================================================
# Records
# ============================================================

class KernelPrefix(ctypes.Structure):
    """Generic view of any record: calls go through the function table."""
    _fields_ = [
        ("function", ctypes.c_int64),
        ("destructor", ctypes.c_int64),
    ]

    def get_function(self) -> Optional[Callable]:
        return _KERNEL_FUNCTIONS[self.function]

    def single(self, dst: int, src: Sequence[int]) -> None:
        _KERNEL_FUNCTIONS[self.function](self, dst, src)

    def strided(self, dst: int, dst_stride: int, src: Sequence[int],
                src_stride: Sequence[int], count: int) -> None:
        _KERNEL_FUNCTIONS[self.function](self, dst, dst_stride, src, src_stride, count)

    def destroy(self) -> None:
        """Run the destructor, if one is installed."""
        if self.destructor != 0:
            _KERNEL_FUNCTIONS[self.destructor](self)

    def get_child(self, offset: int) -> "KernelPrefix":
        return KernelPrefix.from_address(ctypes.addressof(self) + offset)


class BaseKernel(ctypes.Structure):
    """Base class of kernel records.

    Subclasses append POD `_fields_` and implement `single`. `strided`
    defaults to looping `single`. Records with children override
    `destruct_children`; records holding Python state override `release`.
    """
    _fields_ = [
        ("function", ctypes.c_int64),
        ("destructor", ctypes.c_int64),
    ]

    def construct(self, *args) -> None:
        """Set the record's own fields from positional arguments."""
        own = type(self).own_fields()
        if len(args) > len(own):
            raise TypeError(f"{type(self).__name__} takes {len(own)} fields ({len(args)} given)")
        for name, value in zip(own, args):
            setattr(self, name, value)

    @classmethod
    def own_fields(cls) -> List[str]:
        """Field names declared below BaseKernel, in layout order."""
        names: List[str] = []
        for klass in reversed(cls.__mro__):
            if klass is BaseKernel or not issubclass(klass, BaseKernel):
                continue
            names.extend(name for name, *_ in klass.__dict__.get("_fields_", ()))
        return names

    def single(self, dst: int, src: Sequence[int]) -> None:
        raise NotImplementedError(f"{type(self).__name__}.single")

    def strided(self, dst: int, dst_stride: int, src: Sequence[int],
                src_stride: Sequence[int], count: int) -> None:
        src = list(src)
        for _ in range(count):
            self.single(dst, src)
            dst += dst_stride
            for j in range(len(src)):
                src[j] += src_stride[j]

    def destruct_children(self) -> None:
        pass

    def release(self) -> None:
        pass

    @classmethod
    def child_offset(cls) -> int:
        return align_offset(ctypes.sizeof(cls))

    def get_child(self, offset: Optional[int] = None) -> KernelPrefix:
        """The child record at `offset` bytes past this one (default: the first child)."""
        if offset is None:
            offset = self.child_offset()
        return KernelPrefix.from_address(ctypes.addressof(self) + offset)

    def prefix(self) -> KernelPrefix:
        return KernelPrefix.from_address(ctypes.addressof(self))

    @classmethod
    def instantiate(cls, kb: "KernelBuilder", kernreq: KernelRequest, data: int,
                    dst_tp, dst_arrmeta: int, src_tp: Sequence, src_arrmeta: Sequence[int],
                    kwds: Optional[dict] = None) -> None:
        """Emit this record as a leaf of the kernel under construction."""
        kb.emplace_back(cls, kernreq)


# ============================================================
# Builder
# ============================================================

class _Storage:
    """Buffers owned by a KernelBuilder, shared with its finalizer."""
    __slots__ = ("inline", "heap")

    def __init__(self, inline_bytes: int):
        self.inline = np.zeros(inline_bytes, dtype=np.uint8)
        self.heap: Optional[np.ndarray] = None

    @property
    def data(self) -> np.ndarray:
        return self.heap if self.heap is not None else self.inline

    def destroy_chain(self) -> None:
        """Destroy the root record (which destroys its children) and zero the buffer."""
        data = self.data
        try:
            KernelPrefix.from_buffer(data).destroy()
        finally:
            self.heap = None
            self.inline[:] = 0


class KernelBuilder:
    """Growable buffer holding one kernel record chain.

    Storage starts inline and moves to a heap buffer on overflow, growing by
    3/2. Newly exposed bytes are always zero. Views returned by `get_at`
    become stale when the buffer grows and must be fetched again.

    Attributes:
        call_graph: Pending emission closures, consumed by __call__
    """

    def __init__(self, inline_bytes: Optional[int] = None):
        self._storage = _Storage(inline_bytes or get_config().kernel_inline_bytes)
        self._size = 0
        self.call_graph: deque = deque()
        self._finalizer = weakref.finalize(self, _Storage.destroy_chain, self._storage)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    @property
    def capacity(self) -> int:
        return int(self._storage.data.size)

    @property
    def size(self) -> int:
        """Bytes reserved by records constructed so far."""
        return self._size

    @property
    def using_inline_storage(self) -> bool:
        return self._storage.heap is None

    @property
    def address(self) -> int:
        return int(self._storage.data.ctypes.data)

    def _alloc(self, nbytes: int) -> np.ndarray:
        return np.zeros(nbytes, dtype=np.uint8)

    def _copy(self, dst: np.ndarray, src: np.ndarray) -> None:
        dst[:src.size] = src

    def ensure_capacity_leaf(self, requested: int) -> None:
        """Make at least `requested` bytes available."""
        old = self._storage.data
        if requested <= old.size:
            return
        new_capacity = max(requested, old.size * 3 // 2)
        try:
            new = self._alloc(new_capacity)
        except MemoryError:
            self._storage.destroy_chain()
            self._size = 0
            raise AllocationFailure(new_capacity) from None
        self._copy(new, old)
        self._storage.heap = new
        if old is self._storage.inline:
            self._storage.inline[:] = 0
        trace.record("builder", "grow", old_capacity=int(old.size), new_capacity=new_capacity)

    def ensure_capacity(self, requested: int) -> None:
        """Like ensure_capacity_leaf, plus room for an empty child prefix."""
        self.ensure_capacity_leaf(requested + ctypes.sizeof(KernelPrefix))

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def get_at(self, cls: Type[ctypes.Structure], offset: int) -> Any:
        return cls.from_buffer(self._storage.data, offset)

    def get(self) -> KernelPrefix:
        """The root record."""
        return KernelPrefix.from_buffer(self._storage.data, 0)

    def _reserve(self, cls: type, offset: int, leaf: bool) -> int:
        end = inc_ckb_offset(offset, ctypes.sizeof(cls))
        if leaf:
            self.ensure_capacity_leaf(end)
        else:
            self.ensure_capacity(end)
        self._size = max(self._size, end)
        return end

    def alloc_ck(self, cls: Type[BaseKernel], offset: int) -> Tuple[BaseKernel, int]:
        """Reserve a record at `offset` with headroom for a child prefix.

        Returns:
            (view of the record, offset just past it)
        """
        end = self._reserve(cls, offset, leaf=False)
        return self.get_at(cls, offset), end

    def alloc_ck_leaf(self, cls: Type[BaseKernel], offset: int) -> Tuple[BaseKernel, int]:
        end = self._reserve(cls, offset, leaf=True)
        return self.get_at(cls, offset), end

    def init(self, cls: Type[BaseKernel], offset: int, kernreq: KernelRequest, *args) -> BaseKernel:
        """Construct a record in place at `offset`.

        The record's fields are set first, then its destructor is installed
        and its function chosen for `kernreq`.
        """
        fns = kernel_functions(cls)
        ck = self.get_at(cls, offset)
        ck.construct(*args)
        ck.destructor = fns.destructor
        ck.function = fns.for_request(kernreq)
        trace.record("kernel", cls.__name__, action="construct", offset=offset,
                     request=KernelRequest(kernreq).name)
        return ck

    def emplace_back(self, cls: Type[BaseKernel], kernreq: KernelRequest, *args) -> BaseKernel:
        """Append a record after everything constructed so far."""
        offset = self._size
        self._reserve(cls, offset, leaf=False)
        return self.init(cls, offset, kernreq, *args)

    def reset(self) -> None:
        """Destroy the chain and return to the empty inline state."""
        self._storage.destroy_chain()
        self._size = 0
        self.call_graph.clear()

    def swap(self, other: "KernelBuilder") -> None:
        """Exchange contents with another builder."""
        mine = self._take()
        theirs = other._take()
        self._adopt(*theirs)
        other._adopt(*mine)

    def _take(self) -> Tuple[Optional[np.ndarray], Optional[np.ndarray], int]:
        s = self._storage
        if s.heap is not None:
            taken = (s.heap, None, self._size)
            s.heap = None
        else:
            taken = (None, s.inline.copy(), self._size)
        s.inline[:] = 0
        self._size = 0
        return taken

    def _adopt(self, heap: Optional[np.ndarray], inline: Optional[np.ndarray], size: int) -> None:
        s = self._storage
        if heap is not None:
            s.heap = heap
        elif inline.size <= s.inline.size:
            s.inline[:inline.size] = inline
        else:
            s.heap = inline
        self._size = size

    def close(self) -> None:
        self._finalizer()

    def __enter__(self) -> "KernelBuilder":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    def __call__(self, kernreq: KernelRequest, data: int, dst_arrmeta: int,
                 nsrc: int, src_arrmeta: Sequence[int]) -> None:
        """Emit the next kernel of the call graph."""
        if not self.call_graph:
            raise RuntimeError("kernel builder has no pending call graph entries")
        closure = self.call_graph.popleft()
        closure(self, kernreq, data, dst_arrmeta, nsrc, src_arrmeta)

    def single(self, dst: int, src: Sequence[int]) -> None:
        self.get().single(dst, list(src))

    def strided(self, dst: int, dst_stride: int, src: Sequence[int],
                src_stride: Sequence[int], count: int) -> None:
        self.get().strided(dst, dst_stride, list(src), list(src_stride), count)

    def __repr__(self) -> str:
        where = "inline" if self.using_inline_storage else "heap"
        return f"KernelBuilder(size={self._size}, capacity={self.capacity}, {where})"


__all__ = [
    "KERNEL_ALIGNMENT", "KernelRequest", "align_offset", "inc_ckb_offset",
    "register_kernel_function", "get_kernel_function", "KernelFunctions", "kernel_functions",
    "KernelPrefix", "BaseKernel", "KernelBuilder",
]
