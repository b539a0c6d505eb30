"""
Arrays for ndkit.

An Array is a typed view of memory: a type, an owned arrmeta block, a data
address and a reference to the memory block keeping the data alive.
Indexing produces new views sharing the data.

Example:
    a = array([[1, 2, 3], [4, 5, 6]], "2 * 3 * int32")
    a[1].as_py()          # [4, 5, 6]
    a[:, 1:].shape        # (2, 2)
"""

from __future__ import annotations
from typing import Any, List, Optional, Sequence, Tuple
import ctypes
import weakref

import numpy as np

from ndkit.arrmeta import ArrMeta, FixedDimArrMeta, PointerArrMeta, VarDimArrMeta
from ndkit.dim_types import FIXED_DIM_ARRMETA_SIZE, VAR_DIM_ARRMETA_SIZE, FixedDimType, VarDimType, make_fixed_dim
from ndkit.errors import BroadcastError, UnsupportedOperationError
from ndkit.expr_types import ConvertType
from ndkit.irange import IRange
from ndkit.kernels.memory import read_bytes, scalar_view, write_bytes, write_ptr
from ndkit.memblock import (
    FixedSizePodMemoryBlock,
    PodMemoryBlock,
    get_memory_block,
    memory_block_decref,
    memory_block_incref,
)
from ndkit.pointer_type import POINTER_ARRMETA_SIZE, PointerType
from ndkit.string_types import FixedBytesType, _BlockrefBytesType, bytes_, string
from ndkit.tuple_types import StructType, TupleType
from ndkit.types import BaseType, DataRef, builtin_from_dtype, make_type


# ============================================================
# Array
# ============================================================

class Array:
    """A typed, reference-counted view of memory.

    Attributes:
        type: The array's type
        arrmeta: Address of the arrmeta block
        data: Address of the first byte of data
        data_reference: Handle of the memory block owning the data
    """

    def __init__(self, tp: BaseType, meta: ArrMeta, data: int, data_reference: int):
        self._type = tp
        self._meta = meta
        self._data = data
        self._reference = data_reference
        # Owns one reference to data_reference
        self._finalizer = weakref.finalize(self, memory_block_decref, data_reference)

    @property
    def type(self) -> BaseType:
        return self._type

    @property
    def arrmeta(self) -> int:
        return self._meta.address

    @property
    def data(self) -> int:
        return self._data

    @property
    def data_reference(self) -> int:
        return self._reference

    @property
    def ndim(self) -> int:
        return self._type.ndim

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(self._type.get_shape_from_arrmeta(self.arrmeta, self._data))

    def __len__(self) -> int:
        if self.ndim == 0:
            raise TypeError(f"len() of a scalar array of type {self._type}")
        return self.shape[0]

    def __getitem__(self, key) -> "Array":
        if not isinstance(key, tuple):
            key = (key,)
        indices = [IRange.from_key(k) for k in key]
        tp = self._type
        result_tp = tp.apply_linear_index(indices, 0, tp, True)
        out = ArrMeta(result_tp)
        memory_block_incref(self._reference)
        inout = DataRef(self._data, self._reference)
        try:
            offset = tp.apply_linear_index_data(indices, self.arrmeta, result_tp, out.address,
                                                self._reference, 0, tp, True, inout)
        except BaseException:
            memory_block_decref(inout.reference)
            raise
        return Array(result_tp, out, inout.data + offset, inout.reference)

    def view(self) -> "Array":
        """A new array sharing this array's data and layout."""
        meta = ArrMeta(self._type).copy_construct(self.arrmeta, self._reference)
        memory_block_incref(self._reference)
        return Array(self._type, meta, self._data, self._reference)

    def as_py(self) -> Any:
        """The value as nested Python lists, tuples, dicts and scalars."""
        return _load(self._type, self.arrmeta, self._data)

    def to_numpy(self) -> np.ndarray:
        """A numpy copy of an array of fixed dimensions over a numeric type."""
        view = _numpy_view(self._type, self.arrmeta, self._data)
        if view is None:
            raise UnsupportedOperationError("to_numpy", [self._type])
        return view.copy()

    def finalize_buffers(self) -> None:
        self._meta.finalize_buffers()

    def debug_print(self) -> str:
        return (f"array debug print\n type: {self._type}\n data: {self._data:#x}\n"
                f" data reference: {self._reference}\n" + self._meta.debug_print())

    def __repr__(self) -> str:
        return f"array({self.as_py()!r}, type={str(self._type)!r})"


# ============================================================
# Construction
# ============================================================

def empty(tp) -> Array:
    """An uninitialized (zeroed) array of type `tp`."""
    tp = make_type(tp)
    if tp.is_symbolic:
        raise UnsupportedOperationError("empty", [tp], f"cannot allocate symbolic type {tp}")
    meta = ArrMeta(tp).default_construct()
    blk = FixedSizePodMemoryBlock(tp.data_size, max(tp.data_alignment, 1))
    return Array(tp, meta, blk.data, blk.handle)


def infer_type(value: Any) -> BaseType:
    """The type of a Python value: fixed dimensions over a scalar type."""
    try:
        arr = np.asarray(value)
    except ValueError:
        raise UnsupportedOperationError(
            "type inference", [], "cannot infer a type for ragged data; pass an explicit type") from None
    if arr.dtype.kind == "U":
        element = string
    elif arr.dtype.kind == "S":
        element = bytes_
    elif arr.dtype.kind == "O":
        raise UnsupportedOperationError("type inference", [], "cannot infer a type; pass an explicit type")
    else:
        element = builtin_from_dtype(arr.dtype)
    return make_fixed_dim(arr.shape, element)


def array(value: Any, tp=None) -> Array:
    """An array holding `value`, of type `tp` or one inferred from the value."""
    if isinstance(value, Array) and tp is None:
        return value
    tp = infer_type(value) if tp is None else make_type(tp)
    result = empty(tp)
    _store(tp, result.arrmeta, result.data, value)
    return result


def asarray(value: Any) -> Array:
    return value if isinstance(value, Array) else array(value)


# ============================================================
# Value conversion
# ============================================================

def _numpy_view(tp: BaseType, arrmeta: int, data: int) -> Optional[np.ndarray]:
    shape: List[int] = []
    strides: List[int] = []
    while isinstance(tp, FixedDimType):
        md = FixedDimArrMeta.from_address(arrmeta)
        shape.append(md.dim_size)
        strides.append(md.stride)
        arrmeta += FIXED_DIM_ARRMETA_SIZE
        tp = tp.element_type
    dtype = getattr(tp, "dtype", None) if tp.is_builtin else None
    if dtype is None:
        return None
    if 0 in shape:
        return np.empty(shape, dtype=dtype)
    low = data + sum(s * (n - 1) for s, n in zip(strides, shape) if s < 0)
    high = data + sum(s * (n - 1) for s, n in zip(strides, shape) if s > 0) + dtype.itemsize
    raw = (ctypes.c_char * (high - low)).from_address(low)
    return np.ndarray(tuple(shape), dtype=dtype, buffer=raw, offset=data - low, strides=tuple(strides))


def _is_sequence(value: Any) -> bool:
    # Ragged nested lists have no numpy shape; only their own length counts here
    return isinstance(value, (list, tuple)) or (isinstance(value, np.ndarray) and value.ndim > 0)


def _value_shape(value: Any) -> tuple:
    """Shape of a nested value, stopping at the first ragged level."""
    if isinstance(value, np.ndarray):
        return value.shape
    if not isinstance(value, (list, tuple)):
        return ()
    inner = {_value_shape(v) for v in value}
    if len(inner) == 1:
        return (len(value),) + inner.pop()
    return (len(value),)



def _load(tp: BaseType, arrmeta: int, data: int) -> Any:
    if tp.is_builtin:
        if tp.data_size == 0:
            return None
        if tp.dtype is None:
            raise UnsupportedOperationError("as_py", [tp])
        return scalar_view(data, tp.dtype)[0].item()
    if isinstance(tp, FixedDimType):
        view = _numpy_view(tp, arrmeta, data)
        if view is not None:
            return view.tolist()
        md = FixedDimArrMeta.from_address(arrmeta)
        return [_load(tp.element_type, arrmeta + FIXED_DIM_ARRMETA_SIZE, data + i * md.stride)
                for i in range(md.dim_size)]
    if isinstance(tp, VarDimType):
        begin, stride, size = tp.element_data(arrmeta, data)
        return [_load(tp.element_type, arrmeta + VAR_DIM_ARRMETA_SIZE, begin + i * stride)
                for i in range(size)]
    if isinstance(tp, _BlockrefBytesType):
        return tp.get_value(data)
    if isinstance(tp, FixedBytesType):
        return read_bytes(data, tp.data_size)
    if isinstance(tp, TupleType):
        values = [_load(f, arrmeta + tp.arrmeta_offsets[i], data + off)
                  for i, (f, off) in enumerate(zip(tp.field_types, tp.data_offsets(arrmeta)))]
        if isinstance(tp, StructType):
            return dict(zip(tp.field_names, values))
        return tuple(values)
    if isinstance(tp, PointerType):
        return _load(tp.target_type, arrmeta + POINTER_ARRMETA_SIZE, tp.target_address(arrmeta, data))
    if isinstance(tp, ConvertType):
        value = _load(tp.operand_type, arrmeta, data)
        target = tp.value_type
        if target.is_builtin and target.dtype is not None:
            return np.asarray(value).astype(target.dtype).item()
        return value
    raise UnsupportedOperationError("as_py", [tp])


def _store(tp: BaseType, arrmeta: int, data: int, value: Any) -> None:
    if tp.is_builtin:
        if tp.data_size == 0:
            return
        if tp.dtype is None:
            raise UnsupportedOperationError("array construction", [tp])
        scalar_view(data, tp.dtype)[0] = value
        return
    if isinstance(tp, FixedDimType):
        view = _numpy_view(tp, arrmeta, data)
        if view is not None:
            try:
                view[...] = value
            except ValueError as e:
                raise BroadcastError(f"cannot store {_value_shape(value)} into {tp}: {e}",
                                     [_value_shape(value), tp.get_shape()]) from None
            return
        md = FixedDimArrMeta.from_address(arrmeta)
        items = list(value) if _is_sequence(value) else [value]
        if len(items) == 1:
            items = items * md.dim_size
        elif len(items) != md.dim_size:
            raise BroadcastError(f"cannot store {len(items)} values into {tp}",
                                 [(len(items),), tp.get_shape()])
        for i, item in enumerate(items):
            _store(tp.element_type, arrmeta + FIXED_DIM_ARRMETA_SIZE, data + i * md.stride, item)
        return
    if isinstance(tp, VarDimType):
        items = list(value)
        begin = tp.allocate_elements(arrmeta, data, len(items))
        stride = VarDimArrMeta.from_address(arrmeta).stride
        for i, item in enumerate(items):
            _store(tp.element_type, arrmeta + VAR_DIM_ARRMETA_SIZE, begin + i * stride, item)
        return
    if isinstance(tp, _BlockrefBytesType):
        tp.set_value(arrmeta, data, value)
        return
    if isinstance(tp, FixedBytesType):
        payload = bytes(value)
        if len(payload) > tp.data_size:
            raise ValueError(f"{len(payload)} bytes do not fit in {tp}")
        write_bytes(data, payload.ljust(tp.data_size, b"\0"))
        return
    if isinstance(tp, TupleType):
        if isinstance(value, dict):
            if not isinstance(tp, StructType):
                raise TypeError(f"cannot store a dict into tuple type {tp}")
            value = [value[name] for name in tp.field_names]
        items = list(value)
        if len(items) != tp.field_count:
            raise ValueError(f"{tp} has {tp.field_count} fields, got {len(items)} values")
        for i, (f, off) in enumerate(zip(tp.field_types, tp.data_offsets(arrmeta))):
            _store(f, arrmeta + tp.arrmeta_offsets[i], data + off, items[i])
        return
    if isinstance(tp, PointerType):
        md = PointerArrMeta.from_address(arrmeta)
        blk = get_memory_block(md.blockref)
        if not isinstance(blk, PodMemoryBlock):
            raise UnsupportedOperationError("array construction", [tp], f"{tp} value has no writable memory block")
        target = tp.target_type
        address = blk.allocate(target.data_size, target.data_alignment)
        write_ptr(data, address - md.offset)
        _store(target, arrmeta + POINTER_ARRMETA_SIZE, address, value)
        return
    if isinstance(tp, ConvertType):
        _store(tp.operand_type, arrmeta, data, value)
        return
    raise UnsupportedOperationError("array construction", [tp])


__all__ = ["Array", "empty", "array", "asarray", "infer_type"]
