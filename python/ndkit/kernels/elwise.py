"""
Elementwise dimension kernels for ndkit.

Each record handles one dimension level and passes element addresses on to
its child:

    FixedDimElwiseKernel(n)   every participant has a fixed dimension here
    VarDimElwiseKernel(n)     at least one participant has a var dimension;
                              sizes are read from the data and broadcast at
                              call time, and an unallocated var dst is
                              allocated from its memory block
    IndexStateKernel          root of a state-tracking elementwise kernel;
                              owns the index array that levels write into

Record classes are made per source count and cached. When a level record
has a non-zero `index` address it writes the running position into
index[depth] and calls its child once per element; otherwise it makes a
single strided call.
"""

from __future__ import annotations
from typing import Dict, List, Type
import ctypes

from ndkit.arrmeta import VarDimData
from ndkit.errors import BroadcastError, UnsupportedOperationError
from ndkit.handles import release_object
from ndkit.kernel_builder import BaseKernel
from ndkit.kernels.memory import write_i64
from ndkit.memblock import PodMemoryBlock, get_memory_block

INDEX_ITEMSIZE = ctypes.sizeof(ctypes.c_int64)

# Participant kinds of VarDimElwiseKernel
BROADCAST = 0
FIXED = 1
VAR = 2


def _run_child(ck, dst, dst_stride, src, src_stride, size):
    child = ck.get_child()
    if not ck.index:
        child.strided(dst, dst_stride, src, src_stride, size)
        return
    src = list(src)
    slot = ck.index + ck.depth * INDEX_ITEMSIZE
    for i in range(size):
        write_i64(slot, i)
        child.single(dst, src)
        dst += dst_stride
        for j in range(len(src)):
            src[j] += src_stride[j]


class FixedDimElwiseKernelBase(BaseKernel):
    nsrc = 0

    def single(self, dst, src):
        n = self.nsrc
        _run_child(self, dst, self.dst_stride, src[:n], list(self.src_stride)[:n], self.size)

    def destruct_children(self):
        self.get_child().destroy()


class VarDimElwiseKernelBase(BaseKernel):
    nsrc = 0

    def _source_runs(self, src) -> List[List[int]]:
        runs = []
        for j in range(self.nsrc):
            kind = self.src_kind[j]
            if kind == VAR:
                d = VarDimData.from_address(src[j])
                runs.append([d.begin + self.src_offset[j], self.src_stride[j], d.size])
            elif kind == FIXED:
                runs.append([src[j], self.src_stride[j], self.src_size[j]])
            else:
                runs.append([src[j], 0, 1])
        return runs

    def _dst_run(self, dst, dim):
        if self.dst_kind == BROADCAST:
            return dst, dim
        if self.dst_kind == FIXED:
            return dst, self.dst_size
        d = VarDimData.from_address(dst)
        if d.begin != 0 or d.size != 0:
            return d.begin + self.dst_offset, d.size
        blk = get_memory_block(self.dst_blockref)
        if not isinstance(blk, PodMemoryBlock):
            raise UnsupportedOperationError("elementwise", [], "var dimension result has no writable memory block")
        begin = blk.allocate(dim * self.dst_stride, self.dst_alignment)
        d.begin = begin - self.dst_offset
        d.size = dim
        return begin, dim

    def single(self, dst, src):
        runs = self._source_runs(src)
        dim = 1
        for _, _, size in runs:
            if size != 1:
                if dim not in (1, size):
                    raise BroadcastError(f"cannot broadcast dimensions of size {dim} and {size}",
                                         [r[2] for r in runs])
                dim = size
        dst_begin, dst_size = self._dst_run(dst, dim)
        if dim != dst_size:
            if dim != 1:
                raise BroadcastError(f"cannot broadcast dimension of size {dim} into size {dst_size}",
                                     [r[2] for r in runs] + [dst_size])
            dim = dst_size
        for run in runs:
            if run[2] == 1:
                run[1] = 0
        _run_child(self, dst_begin, self.dst_stride, [r[0] for r in runs], [r[1] for r in runs], dim)

    def destruct_children(self):
        self.get_child().destroy()


class IndexStateKernel(BaseKernel):
    """Owns the index array (by handle) of a state-tracking kernel."""
    _fields_ = [("handle", ctypes.c_uint64), ("ndim", ctypes.c_int64)]

    def single(self, dst, src):
        self.get_child().single(dst, src)

    def strided(self, dst, dst_stride, src, src_stride, count):
        self.get_child().strided(dst, dst_stride, src, src_stride, count)

    def destruct_children(self):
        self.get_child().destroy()

    def release(self):
        handle, self.handle = self.handle, 0
        release_object(handle)


_FIXED_KERNELS: Dict[int, Type[FixedDimElwiseKernelBase]] = {}
_VAR_KERNELS: Dict[int, Type[VarDimElwiseKernelBase]] = {}


def fixed_dim_elwise_kernel(nsrc: int) -> Type[FixedDimElwiseKernelBase]:
    cls = _FIXED_KERNELS.get(nsrc)
    if cls is None:
        width = max(nsrc, 1)
        cls = type(f"FixedDimElwiseKernel{nsrc}", (FixedDimElwiseKernelBase,), {
            "nsrc": nsrc,
            "_fields_": [
                ("size", ctypes.c_int64),
                ("dst_stride", ctypes.c_int64),
                ("src_stride", ctypes.c_int64 * width),
                ("index", ctypes.c_uint64),
                ("depth", ctypes.c_int64),
            ],
        })
        _FIXED_KERNELS[nsrc] = cls
    return cls


def var_dim_elwise_kernel(nsrc: int) -> Type[VarDimElwiseKernelBase]:
    cls = _VAR_KERNELS.get(nsrc)
    if cls is None:
        width = max(nsrc, 1)
        cls = type(f"VarDimElwiseKernel{nsrc}", (VarDimElwiseKernelBase,), {
            "nsrc": nsrc,
            "_fields_": [
                ("dst_kind", ctypes.c_int64),
                ("dst_size", ctypes.c_int64),
                ("dst_stride", ctypes.c_int64),
                ("dst_offset", ctypes.c_int64),
                ("dst_blockref", ctypes.c_uint64),
                ("dst_alignment", ctypes.c_int64),
                ("src_kind", ctypes.c_int64 * width),
                ("src_size", ctypes.c_int64 * width),
                ("src_stride", ctypes.c_int64 * width),
                ("src_offset", ctypes.c_int64 * width),
                ("index", ctypes.c_uint64),
                ("depth", ctypes.c_int64),
            ],
        })
        _VAR_KERNELS[nsrc] = cls
    return cls


__all__ = [
    "BROADCAST", "FIXED", "VAR", "INDEX_ITEMSIZE",
    "FixedDimElwiseKernelBase", "VarDimElwiseKernelBase", "IndexStateKernel",
    "fixed_dim_elwise_kernel", "var_dim_elwise_kernel",
]
