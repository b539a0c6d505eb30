"""
Assignment kernels for ndkit.

    PodCopyKernel          bit-compatible copy of a fixed number of bytes
    BuiltinAssignKernel    numeric conversion between built-in types (numpy cast)
    StringAssignKernel     copies string bytes into the destination's memory block
    PointerToValueKernel   dereferences the source, then runs its child
    ValueToPointerKernel   stores the source address into a pointer
    FixedDimAssignKernel   assigns a fixed dimension element by element
    tuple assignment       field-wise, one child per field

make_assignment_kernel() picks the kernel from the destination and source
types.
"""

from __future__ import annotations
from typing import Dict, Type
import ctypes

import numpy as np

from ndkit.arrmeta import FixedDimArrMeta, StringData
from ndkit.errors import BroadcastError, UnsupportedOperationError
from ndkit.kernel_builder import BaseKernel, KernelRequest
from ndkit.kernels.memory import (
    memmove,
    read_bytes,
    read_ptr,
    scalar_view,
    strided_view,
    write_bytes,
    write_ptr,
)
from ndkit.memblock import get_memory_block
from ndkit.type_registry import TypeId
from ndkit.types import BuiltinType, TypeKind


# ============================================================
# Records
# ============================================================

class PodCopyKernel(BaseKernel):
    """Copies data_size bytes."""
    _fields_ = [("data_size", ctypes.c_int64)]

    def single(self, dst, src):
        memmove(dst, src[0], self.data_size)

    def strided(self, dst, dst_stride, src, src_stride, count):
        size = self.data_size
        if dst_stride == size and src_stride[0] == size:
            memmove(dst, src[0], size * count)
            return
        s = src[0]
        for _ in range(count):
            memmove(dst, s, size)
            dst += dst_stride
            s += src_stride[0]


def _cast_source(values: np.ndarray, dst_dtype: np.dtype) -> np.ndarray:
    if values.dtype.kind == "c" and dst_dtype.kind != "c":
        return values.real
    return values


class BuiltinAssignKernel(BaseKernel):
    """Converts between two built-in types with numpy casting."""
    _fields_ = [("dst_id", ctypes.c_int32), ("src_id", ctypes.c_int32)]

    def single(self, dst, src):
        dst_dtype = BuiltinType.get(self.dst_id).dtype
        value = scalar_view(src[0], BuiltinType.get(self.src_id).dtype)
        np.copyto(scalar_view(dst, dst_dtype), _cast_source(value, dst_dtype), casting="unsafe")

    def strided(self, dst, dst_stride, src, src_stride, count):
        if dst_stride == 0:
            BaseKernel.strided(self, dst, dst_stride, src, src_stride, count)
            return
        dst_dtype = BuiltinType.get(self.dst_id).dtype
        values = strided_view(src[0], BuiltinType.get(self.src_id).dtype, count, src_stride[0])
        np.copyto(strided_view(dst, dst_dtype, count, dst_stride), _cast_source(values, dst_dtype),
                  casting="unsafe")


class StringAssignKernel(BaseKernel):
    """Copies a string value into the destination memory block."""
    _fields_ = [("dst_blockref", ctypes.c_uint64)]

    def single(self, dst, src):
        s = StringData.from_address(src[0])
        payload = read_bytes(s.begin, s.end - s.begin)
        blk = get_memory_block(self.dst_blockref)
        begin = blk.allocate(len(payload), 1)
        write_bytes(begin, payload)
        d = StringData.from_address(dst)
        d.begin = begin
        d.end = begin + len(payload)


class PointerToValueKernel(BaseKernel):
    """Follows the source pointer, then assigns through the child."""
    _fields_ = [("offset", ctypes.c_int64)]

    def single(self, dst, src):
        self.get_child().single(dst, [read_ptr(src[0]) + self.offset])

    def destruct_children(self):
        self.get_child().destroy()


class ValueToPointerKernel(BaseKernel):
    """Points the destination at the source value."""

    def single(self, dst, src):
        write_ptr(dst, src[0])


class FixedDimAssignKernel(BaseKernel):
    """Assigns each element of a fixed dimension through a strided child."""
    _fields_ = [
        ("size", ctypes.c_int64),
        ("dst_stride", ctypes.c_int64),
        ("src_stride", ctypes.c_int64),
    ]

    def single(self, dst, src):
        self.get_child().strided(dst, self.dst_stride, [src[0]], [self.src_stride], self.size)

    def destruct_children(self):
        self.get_child().destroy()


class TupleAssignKernelBase(BaseKernel):
    """Field-wise assignment; children live at child_offsets[i] past this record."""

    def single(self, dst, src):
        for i in range(self.field_count):
            child = self.get_child(self.child_offsets[i])
            child.single(dst + self.dst_offsets[i], [src[0] + self.src_offsets[i]])

    def destruct_children(self):
        for i in range(self.field_count):
            if self.child_offsets[i] != 0:
                self.get_child(self.child_offsets[i]).destroy()


_TUPLE_ASSIGN_KERNELS: Dict[int, Type[TupleAssignKernelBase]] = {}


def tuple_assign_kernel(nfields: int) -> Type[TupleAssignKernelBase]:
    """Tuple assignment record class for `nfields` fields."""
    cls = _TUPLE_ASSIGN_KERNELS.get(nfields)
    if cls is None:
        cls = type(f"TupleAssignKernel{nfields}", (TupleAssignKernelBase,), {
            "_fields_": [
                ("field_count", ctypes.c_int64),
                ("dst_offsets", ctypes.c_int64 * nfields),
                ("src_offsets", ctypes.c_int64 * nfields),
                ("child_offsets", ctypes.c_int64 * nfields),
            ],
        })
        _TUPLE_ASSIGN_KERNELS[nfields] = cls
    return cls


# ============================================================
# Construction
# ============================================================

def make_builtin_assignment_kernel(kb, kernreq, dst_tp: BuiltinType, src_tp: BuiltinType) -> None:
    if dst_tp == src_tp:
        kb.emplace_back(PodCopyKernel, kernreq, dst_tp.data_size)
        return
    if dst_tp.dtype is None or src_tp.dtype is None or TypeId.VOID in (dst_tp.id, src_tp.id):
        raise UnsupportedOperationError("assignment", [src_tp, dst_tp],
                                        f"cannot assign from {src_tp} to {dst_tp}")
    kb.emplace_back(BuiltinAssignKernel, kernreq, dst_tp.id, src_tp.id)


def make_fixed_dim_assignment_kernel(kb, kernreq, dst_tp, dst_arrmeta, src_tp, src_arrmeta) -> None:
    from ndkit.dim_types import FIXED_DIM_ARRMETA_SIZE, FixedDimType
    dst_md = FixedDimArrMeta.from_address(dst_arrmeta)
    if isinstance(src_tp, FixedDimType) and src_tp.ndim == dst_tp.ndim:
        src_md = FixedDimArrMeta.from_address(src_arrmeta)
        if src_md.dim_size == dst_md.dim_size:
            src_stride = src_md.stride
        elif src_md.dim_size == 1:
            src_stride = 0
        else:
            raise BroadcastError(f"cannot broadcast {src_tp} to {dst_tp}",
                                 [src_tp.get_shape(), dst_tp.get_shape()])
        child_src_tp = src_tp.element_type
        child_src_arrmeta = src_arrmeta + FIXED_DIM_ARRMETA_SIZE
    elif src_tp.ndim < dst_tp.ndim:
        src_stride = 0
        child_src_tp = src_tp
        child_src_arrmeta = src_arrmeta
    else:
        raise BroadcastError(f"cannot broadcast {src_tp} to {dst_tp}",
                             [src_tp.get_shape(), dst_tp.get_shape()])
    kb.emplace_back(FixedDimAssignKernel, kernreq, dst_md.dim_size, dst_md.stride, src_stride)
    make_assignment_kernel(kb, KernelRequest.STRIDED, dst_tp.element_type,
                           dst_arrmeta + FIXED_DIM_ARRMETA_SIZE, child_src_tp, child_src_arrmeta)


def make_tuple_assignment_kernel(kb, kernreq, dst_tp, dst_arrmeta, src_tp, src_arrmeta) -> None:
    n = dst_tp.field_count
    cls = tuple_assign_kernel(n)
    self_offset = kb.size
    ck = kb.emplace_back(cls, kernreq, n)
    for i, (dst_off, src_off) in enumerate(zip(dst_tp.data_offsets(dst_arrmeta),
                                               src_tp.data_offsets(src_arrmeta))):
        ck.dst_offsets[i] = dst_off
        ck.src_offsets[i] = src_off
    for i in range(n):
        # Re-fetch: building a child may move the buffer
        kb.get_at(cls, self_offset).child_offsets[i] = kb.size - self_offset
        make_assignment_kernel(kb, KernelRequest.SINGLE,
                               dst_tp.field_types[i], dst_arrmeta + dst_tp.arrmeta_offsets[i],
                               src_tp.field_types[i], src_arrmeta + src_tp.arrmeta_offsets[i])


def make_assignment_kernel(kb, kernreq, dst_tp, dst_arrmeta: int, src_tp, src_arrmeta: int) -> None:
    """Emit a kernel assigning src_tp values to dst_tp values.

    Pointer and expression sources are handled by the source type unless the
    destination has the same nature; otherwise the destination decides.
    """
    indirect = (TypeKind.POINTER, TypeKind.EXPRESSION)
    if src_tp.kind in indirect and dst_tp.kind not in indirect:
        src_tp.make_assignment_kernel(kb, kernreq, dst_tp, dst_arrmeta, src_tp, src_arrmeta)
    else:
        dst_tp.make_assignment_kernel(kb, kernreq, dst_tp, dst_arrmeta, src_tp, src_arrmeta)


__all__ = [
    "PodCopyKernel", "BuiltinAssignKernel", "StringAssignKernel", "PointerToValueKernel",
    "ValueToPointerKernel", "FixedDimAssignKernel", "TupleAssignKernelBase", "tuple_assign_kernel",
    "make_builtin_assignment_kernel", "make_fixed_dim_assignment_kernel",
    "make_tuple_assignment_kernel", "make_assignment_kernel",
]
