"""
Comparison kernels for ndkit.

Every comparison writes a bool to dst. Built-in types compare through numpy
ufuncs; strings compare their bytes; tuples compare field by field in order,
with one child per field for (in)equality and two per field for ordering.
"""

from __future__ import annotations
from enum import IntEnum
from typing import Dict, Tuple, Type
import ctypes

import numpy as np

from ndkit.arrmeta import StringData
from ndkit.errors import UnsupportedOperationError
from ndkit.kernel_builder import BaseKernel, KernelRequest
from ndkit.kernels.memory import read_bytes, scalar_view, strided_view
from ndkit.types import BuiltinType


class ComparisonOp(IntEnum):
    LESS = 0
    LESS_EQUAL = 1
    EQUAL = 2
    NOT_EQUAL = 3
    GREATER_EQUAL = 4
    GREATER = 5

    @property
    def ufunc(self) -> np.ufunc:
        return _UFUNCS[self]

    def compare(self, a, b) -> bool:
        return bool(_PY_OPS[self](a, b))

    @property
    def is_ordering(self) -> bool:
        return self not in (ComparisonOp.EQUAL, ComparisonOp.NOT_EQUAL)


_UFUNCS = {
    ComparisonOp.LESS: np.less,
    ComparisonOp.LESS_EQUAL: np.less_equal,
    ComparisonOp.EQUAL: np.equal,
    ComparisonOp.NOT_EQUAL: np.not_equal,
    ComparisonOp.GREATER_EQUAL: np.greater_equal,
    ComparisonOp.GREATER: np.greater,
}

_PY_OPS = {
    ComparisonOp.LESS: lambda a, b: a < b,
    ComparisonOp.LESS_EQUAL: lambda a, b: a <= b,
    ComparisonOp.EQUAL: lambda a, b: a == b,
    ComparisonOp.NOT_EQUAL: lambda a, b: a != b,
    ComparisonOp.GREATER_EQUAL: lambda a, b: a >= b,
    ComparisonOp.GREATER: lambda a, b: a > b,
}

_BOOL = np.dtype(np.bool_)


# ============================================================
# Records
# ============================================================

class BuiltinComparisonKernel(BaseKernel):
    """Compares two built-in values with a numpy ufunc."""
    _fields_ = [
        ("op", ctypes.c_int32),
        ("src0_id", ctypes.c_int32),
        ("src1_id", ctypes.c_int32),
    ]

    def single(self, dst, src):
        a = scalar_view(src[0], BuiltinType.get(self.src0_id).dtype)
        b = scalar_view(src[1], BuiltinType.get(self.src1_id).dtype)
        ComparisonOp(self.op).ufunc(a, b, out=scalar_view(dst, _BOOL))

    def strided(self, dst, dst_stride, src, src_stride, count):
        if dst_stride == 0:
            BaseKernel.strided(self, dst, dst_stride, src, src_stride, count)
            return
        a = strided_view(src[0], BuiltinType.get(self.src0_id).dtype, count, src_stride[0])
        b = strided_view(src[1], BuiltinType.get(self.src1_id).dtype, count, src_stride[1])
        ComparisonOp(self.op).ufunc(a, b, out=strided_view(dst, _BOOL, count, dst_stride))


class StringComparisonKernel(BaseKernel):
    """Compares two string values by their encoded bytes."""
    _fields_ = [("op", ctypes.c_int32)]

    def single(self, dst, src):
        a = StringData.from_address(src[0])
        b = StringData.from_address(src[1])
        result = ComparisonOp(self.op).compare(read_bytes(a.begin, a.end - a.begin),
                                               read_bytes(b.begin, b.end - b.begin))
        scalar_view(dst, _BOOL)[0] = result


class RawBytesEqualKernel(BaseKernel):
    """(In)equality of two fixed-size byte runs."""
    _fields_ = [("size", ctypes.c_int64), ("is_equal", ctypes.c_int8)]

    def single(self, dst, src):
        same = read_bytes(src[0], self.size) == read_bytes(src[1], self.size)
        scalar_view(dst, _BOOL)[0] = same if self.is_equal else not same


class TupleComparisonKernelBase(BaseKernel):
    """Lexicographic tuple comparison.

    For EQUAL and NOT_EQUAL, child_offsets[i] is a per-field equality kernel.
    For ordering ops, child_offsets[2*i] is a per-field LESS kernel on
    (src0, src1) and child_offsets[2*i+1] the same on (src1, src0).
    The first field whose two LESS results differ decides the ordering.
    """

    def _call(self, which: int, dst: int, a: int, b: int) -> bool:
        self.get_child(self.child_offsets[which]).single(dst, [a, b])
        return bool(scalar_view(dst, _BOOL)[0])

    def single(self, dst, src):
        op = ComparisonOp(self.op)
        n = self.field_count
        fields = [(src[0] + self.src0_offsets[i], src[1] + self.src1_offsets[i]) for i in range(n)]
        if op is ComparisonOp.EQUAL or op is ComparisonOp.NOT_EQUAL:
            equal = all(self._call(i, dst, x0, x1) for i, (x0, x1) in enumerate(fields))
            result = equal if op is ComparisonOp.EQUAL else not equal
        else:
            swapped = op in (ComparisonOp.GREATER, ComparisonOp.GREATER_EQUAL)
            result = op in (ComparisonOp.LESS_EQUAL, ComparisonOp.GREATER_EQUAL)
            for i, (x0, x1) in enumerate(fields):
                lt01 = self._call(2 * i, dst, x0, x1)
                lt10 = self._call(2 * i + 1, dst, x1, x0)
                if lt01 != lt10:
                    result = lt10 if swapped else lt01
                    break
        scalar_view(dst, _BOOL)[0] = result

    def destruct_children(self):
        for i in range(len(self.child_offsets)):
            if self.child_offsets[i] != 0:
                self.get_child(self.child_offsets[i]).destroy()


_TUPLE_COMPARISON_KERNELS: Dict[Tuple[int, int], Type[TupleComparisonKernelBase]] = {}


def tuple_comparison_kernel(nfields: int, nchildren: int) -> Type[TupleComparisonKernelBase]:
    key = (nfields, nchildren)
    cls = _TUPLE_COMPARISON_KERNELS.get(key)
    if cls is None:
        cls = type(f"TupleComparisonKernel{nfields}x{nchildren}", (TupleComparisonKernelBase,), {
            "_fields_": [
                ("op", ctypes.c_int64),
                ("field_count", ctypes.c_int64),
                ("src0_offsets", ctypes.c_int64 * max(nfields, 1)),
                ("src1_offsets", ctypes.c_int64 * max(nfields, 1)),
                ("child_offsets", ctypes.c_int64 * max(nchildren, 1)),
            ],
        })
        _TUPLE_COMPARISON_KERNELS[key] = cls
    return cls


# ============================================================
# Construction
# ============================================================

def make_builtin_comparison_kernel(kb, kernreq, src0_tp: BuiltinType, src1_tp: BuiltinType, op) -> None:
    if src0_tp.dtype is None or src1_tp.dtype is None:
        raise UnsupportedOperationError("comparison", [src0_tp, src1_tp])
    kb.emplace_back(BuiltinComparisonKernel, kernreq, int(op), src0_tp.id, src1_tp.id)


def make_tuple_comparison_kernel(kb, kernreq, src0_tp, src0_arrmeta, src1_tp, src1_arrmeta, op) -> None:
    op = ComparisonOp(op)
    n = src0_tp.field_count
    per_field = 2 if op.is_ordering else 1
    cls = tuple_comparison_kernel(n, n * per_field)
    self_offset = kb.size
    ck = kb.emplace_back(cls, kernreq, int(op), n)
    for i, (a, b) in enumerate(zip(src0_tp.data_offsets(src0_arrmeta), src1_tp.data_offsets(src1_arrmeta))):
        ck.src0_offsets[i] = a
        ck.src1_offsets[i] = b
    field_op = ComparisonOp.LESS if op.is_ordering else ComparisonOp.EQUAL
    for i in range(n):
        f0 = (src0_tp.field_types[i], src0_arrmeta + src0_tp.arrmeta_offsets[i])
        f1 = (src1_tp.field_types[i], src1_arrmeta + src1_tp.arrmeta_offsets[i])
        operands = [(f0, f1), (f1, f0)] if op.is_ordering else [(f0, f1)]
        for j, (lhs, rhs) in enumerate(operands):
            kb.get_at(cls, self_offset).child_offsets[per_field * i + j] = kb.size - self_offset
            make_comparison_kernel(kb, KernelRequest.SINGLE, lhs[0], lhs[1], rhs[0], rhs[1], field_op)


def make_comparison_kernel(kb, kernreq, src0_tp, src0_arrmeta: int, src1_tp, src1_arrmeta: int, op) -> None:
    """Emit a kernel writing `src0 op src1` as a bool."""
    src0_tp.make_comparison_kernel(kb, kernreq, src0_tp, src0_arrmeta, src1_tp, src1_arrmeta,
                                   ComparisonOp(op))


__all__ = [
    "ComparisonOp", "BuiltinComparisonKernel", "StringComparisonKernel", "RawBytesEqualKernel",
    "TupleComparisonKernelBase", "tuple_comparison_kernel",
    "make_builtin_comparison_kernel", "make_tuple_comparison_kernel", "make_comparison_kernel",
]
