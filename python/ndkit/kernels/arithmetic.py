"""
Arithmetic kernels for ndkit.

Binary ops: add, subtract, multiply, divide, minimum, maximum.
Unary ops: negative, bitwise_not, real, imag, abs.

Kernel classes are made per (op, dst, src...) type combination and cached.
Strided calls are vectorized with numpy, except when dst_stride is 0 (an
accumulation into one element), which runs element by element so each
step sees the previous result.
"""

from __future__ import annotations
from typing import Callable, Dict, Tuple, Type

import numpy as np

from ndkit.errors import UnsupportedOperationError
from ndkit.kernel_builder import BaseKernel
from ndkit.kernels.memory import scalar_view, strided_view
from ndkit.types import BaseType, BuiltinType, TypeKind, builtin_from_dtype


def _divide(a: np.ndarray, b: np.ndarray, dtype: np.dtype) -> np.ndarray:
    if dtype.kind in "iu":
        # Integer division truncates toward zero
        with np.errstate(divide="ignore"):
            q = np.floor_divide(a, b)
            r = np.remainder(a, b)
        fix = (r != 0) & ((a < 0) != (b < 0)) if dtype.kind == "i" else np.zeros_like(r, dtype=bool)
        return q + fix
    return np.true_divide(a, b)


BINARY_OPS: Dict[str, Callable] = {
    "add": lambda a, b, dt: np.add(a, b),
    "subtract": lambda a, b, dt: np.subtract(a, b),
    "multiply": lambda a, b, dt: np.multiply(a, b),
    "divide": _divide,
    "minimum": lambda a, b, dt: np.minimum(a, b),
    "maximum": lambda a, b, dt: np.maximum(a, b),
}

UNARY_OPS: Dict[str, Callable] = {
    "negative": np.negative,
    "bitwise_not": np.invert,
    "real": np.real,
    "imag": np.imag,
    "abs": np.abs,
}

_NUMERIC_KINDS = (TypeKind.INT, TypeKind.UINT, TypeKind.FLOAT, TypeKind.COMPLEX)


# ============================================================
# Records
# ============================================================

class BinaryArithmeticKernel(BaseKernel):
    """dst = op(src0, src1), computed in the dst dtype."""

    op_name = ""
    dst_dtype: np.dtype = None
    src_dtypes: Tuple[np.dtype, np.dtype] = ()

    def _compute(self, out, a, b):
        dt = self.dst_dtype
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            result = BINARY_OPS[self.op_name](a.astype(dt), b.astype(dt), dt)
        np.copyto(out, result, casting="unsafe")

    def single(self, dst, src):
        self._compute(scalar_view(dst, self.dst_dtype),
                      scalar_view(src[0], self.src_dtypes[0]),
                      scalar_view(src[1], self.src_dtypes[1]))

    def strided(self, dst, dst_stride, src, src_stride, count):
        if dst_stride == 0:
            BaseKernel.strided(self, dst, dst_stride, src, src_stride, count)
            return
        self._compute(strided_view(dst, self.dst_dtype, count, dst_stride),
                      strided_view(src[0], self.src_dtypes[0], count, src_stride[0]),
                      strided_view(src[1], self.src_dtypes[1], count, src_stride[1]))


class UnaryArithmeticKernel(BaseKernel):
    """dst = op(src0)."""

    op_name = ""
    dst_dtype: np.dtype = None
    src_dtype: np.dtype = None

    def _compute(self, out, a):
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            result = UNARY_OPS[self.op_name](a)
        np.copyto(out, result, casting="unsafe")

    def single(self, dst, src):
        self._compute(scalar_view(dst, self.dst_dtype), scalar_view(src[0], self.src_dtype))

    def strided(self, dst, dst_stride, src, src_stride, count):
        if dst_stride == 0:
            BaseKernel.strided(self, dst, dst_stride, src, src_stride, count)
            return
        self._compute(strided_view(dst, self.dst_dtype, count, dst_stride),
                      strided_view(src[0], self.src_dtype, count, src_stride[0]))


_BINARY_KERNELS: Dict[tuple, Type[BinaryArithmeticKernel]] = {}
_UNARY_KERNELS: Dict[tuple, Type[UnaryArithmeticKernel]] = {}


def binary_kernel(op: str, dst_tp: BuiltinType, src0_tp: BuiltinType,
                  src1_tp: BuiltinType) -> Type[BinaryArithmeticKernel]:
    """The kernel class computing `op` for one type combination."""
    key = (op, dst_tp.id, src0_tp.id, src1_tp.id)
    cls = _BINARY_KERNELS.get(key)
    if cls is None:
        cls = type(f"{op.capitalize()}Kernel_{src0_tp}_{src1_tp}", (BinaryArithmeticKernel,), {
            "_fields_": [],
            "op_name": op,
            "dst_dtype": dst_tp.dtype,
            "src_dtypes": (src0_tp.dtype, src1_tp.dtype),
        })
        _BINARY_KERNELS[key] = cls
    return cls


def unary_kernel(op: str, dst_tp: BuiltinType, src_tp: BuiltinType) -> Type[UnaryArithmeticKernel]:
    key = (op, dst_tp.id, src_tp.id)
    cls = _UNARY_KERNELS.get(key)
    if cls is None:
        cls = type(f"{op.capitalize()}Kernel_{src_tp}", (UnaryArithmeticKernel,), {
            "_fields_": [],
            "op_name": op,
            "dst_dtype": dst_tp.dtype,
            "src_dtype": src_tp.dtype,
        })
        _UNARY_KERNELS[key] = cls
    return cls


# ============================================================
# Result types
# ============================================================

def is_numeric(tp: BaseType) -> bool:
    return tp.is_builtin and tp.kind in _NUMERIC_KINDS and tp.dtype is not None


def binary_result_type(op: str, src0_tp: BuiltinType, src1_tp: BuiltinType) -> BuiltinType:
    """Result type of a binary op, following numpy promotion."""
    if op not in BINARY_OPS:
        raise UnsupportedOperationError(op, [src0_tp, src1_tp], f"unknown binary op {op!r}")
    return builtin_from_dtype(np.result_type(src0_tp.dtype, src1_tp.dtype))


def unary_result_type(op: str, src_tp: BuiltinType) -> BuiltinType:
    if op not in UNARY_OPS:
        raise UnsupportedOperationError(op, [src_tp], f"unknown unary op {op!r}")
    if op == "bitwise_not" and src_tp.kind not in (TypeKind.BOOL, TypeKind.INT, TypeKind.UINT):
        raise UnsupportedOperationError(op, [src_tp])
    if op != "bitwise_not" and not is_numeric(src_tp):
        raise UnsupportedOperationError(op, [src_tp])
    if op in ("real", "imag", "abs") and src_tp.kind is TypeKind.COMPLEX:
        return builtin_from_dtype(np.empty(0, src_tp.dtype).real.dtype)
    return src_tp


__all__ = [
    "BINARY_OPS", "UNARY_OPS", "BinaryArithmeticKernel", "UnaryArithmeticKernel",
    "binary_kernel", "unary_kernel", "is_numeric", "binary_result_type", "unary_result_type",
]
