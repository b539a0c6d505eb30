"""
Type descriptors for ndkit.

A type describes the shape and kind of a value: its data size and
alignment, how many dimensions it contributes, how large its arrmeta is,
and the virtual behavior used by indexing, assignment and comparison.

Built-in scalar types are singletons identified purely by their id.
Composite types (dimensions, tuples, strings, pointers) compare
structurally.

Indexing is done in two synchronized passes:

    result_tp = tp.apply_linear_index(indices)                 # type only
    offset = tp.apply_linear_index_data(indices, arrmeta,       # arrmeta + data
                                        result_tp, out_arrmeta, ...)

The data pass writes exactly result_tp.arrmeta_size bytes of arrmeta.
"""

from __future__ import annotations
from typing import Any, Dict, Optional, Sequence, Tuple
from dataclasses import dataclass
from enum import Enum

import numpy as np

from ndkit.errors import TooManyIndicesError, UnsupportedOperationError
from ndkit.type_registry import TypeId, type_registry
from ndkit.memblock import memory_block_decref, memory_block_incref


class TypeKind(Enum):
    """Coarse category of a type."""
    VOID = "void"
    BOOL = "bool"
    INT = "int"
    UINT = "uint"
    FLOAT = "float"
    COMPLEX = "complex"
    STRING = "string"
    BYTES = "bytes"
    TUPLE = "tuple"
    DIM = "dim"
    POINTER = "pointer"
    EXPRESSION = "expression"
    PATTERN = "pattern"


@dataclass
class DataRef:
    """A data address and the memory block keeping it alive.

    Leading-dimension indexing may move `data` and switch `reference`
    (for example when it dereferences a pointer). `reference` is an owned
    reference: whoever replaces it decrefs the old handle.
    """
    data: int
    reference: int = 0

    def rebind(self, data: int, reference: int) -> None:
        memory_block_incref(reference)
        memory_block_decref(self.reference)
        self.data = data
        self.reference = reference


class BaseType:
    """Base class of every type descriptor."""

    is_builtin = False

    def __init__(self, type_id: int, kind: TypeKind, data_size: int, data_alignment: int,
                 ndim: int = 0, arrmeta_size: int = 0):
        self._id = int(type_id)
        self._kind = kind
        self._data_size = data_size
        self._data_alignment = data_alignment
        self._ndim = ndim
        self._arrmeta_size = arrmeta_size

    # ------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------

    @property
    def id(self) -> int:
        return self._id

    @property
    def kind(self) -> TypeKind:
        return self._kind

    @property
    def data_size(self) -> int:
        return self._data_size

    itemsize = data_size

    @property
    def data_alignment(self) -> int:
        return self._data_alignment

    alignment = data_alignment

    @property
    def ndim(self) -> int:
        return self._ndim

    @property
    def arrmeta_size(self) -> int:
        return self._arrmeta_size

    @property
    def is_scalar(self) -> bool:
        return self._ndim == 0

    @property
    def is_expression(self) -> bool:
        return self._kind is TypeKind.EXPRESSION

    @property
    def is_symbolic(self) -> bool:
        return self._kind is TypeKind.PATTERN

    @property
    def value_type(self) -> "BaseType":
        """The type values appear as after evaluation."""
        return self

    @property
    def operand_type(self) -> "BaseType":
        """The type values are stored as."""
        return self

    def get_canonical_type(self) -> "BaseType":
        return self

    def is_a(self, kind_id: int) -> bool:
        return type_registry.is_a(self._id, kind_id)

    # ------------------------------------------------------------------
    # Shape
    # ------------------------------------------------------------------

    def get_shape(self) -> Tuple[int, ...]:
        return ()

    def get_shape_from_arrmeta(self, arrmeta: int, data: int = 0) -> Tuple[int, ...]:
        return ()

    def get_dim_size(self, arrmeta: int, data: int = 0) -> int:
        raise UnsupportedOperationError("get_dim_size", [self])

    def get_type_at_dimension(self, i: int) -> "BaseType":
        if i == 0:
            return self
        raise TooManyIndicesError(i, 0, str(self))

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def apply_linear_index(self, indices: Sequence, current_i: int = 0,
                           root_tp: Optional["BaseType"] = None,
                           leading_dimension: bool = True) -> "BaseType":
        """Type of the value selected by `indices`.

        Args:
            indices: Remaining IRanges, one per dimension
            current_i: Position of the first remaining index in the full index
            root_tp: The type the full index is applied to (for diagnostics)
            leading_dimension: Whether the current dimension is the outermost one
        """
        if indices:
            raise TooManyIndicesError(current_i + len(indices), current_i, str(root_tp or self))
        return self

    def apply_linear_index_data(self, indices: Sequence, arrmeta: int, result_tp: "BaseType",
                                out_arrmeta: int, embedded_reference: int, current_i: int = 0,
                                root_tp: Optional["BaseType"] = None,
                                leading_dimension: bool = True,
                                inout: Optional[DataRef] = None) -> int:
        """Write result_tp's arrmeta for `indices` and return the data offset.

        When leading_dimension is set and `inout` is given, the data pass may
        move inout.data (baking offsets in) and switch inout.reference.
        """
        if indices:
            raise TooManyIndicesError(current_i + len(indices), current_i, str(root_tp or self))
        self.arrmeta_copy_construct(out_arrmeta, arrmeta, embedded_reference)
        return 0

    # ------------------------------------------------------------------
    # Arrmeta lifecycle
    # ------------------------------------------------------------------

    def arrmeta_default_construct(self, arrmeta: int, blockref_alloc: bool = True) -> None:
        pass

    def arrmeta_copy_construct(self, dst_arrmeta: int, src_arrmeta: int,
                               embedded_reference: int) -> None:
        pass

    def arrmeta_destruct(self, arrmeta: int) -> None:
        pass

    def arrmeta_finalize_buffers(self, arrmeta: int) -> None:
        pass

    def arrmeta_reset_buffers(self, arrmeta: int) -> None:
        pass

    def arrmeta_debug_print(self, arrmeta: int, indent: str = "") -> str:
        return ""

    def is_unique_data_owner(self, arrmeta: int) -> bool:
        return True

    # ------------------------------------------------------------------
    # Kernels
    # ------------------------------------------------------------------

    def is_lossless_assignment(self, dst_tp: "BaseType", src_tp: "BaseType") -> bool:
        return dst_tp == src_tp

    def make_assignment_kernel(self, kb, kernreq, dst_tp: "BaseType", dst_arrmeta: int,
                               src_tp: "BaseType", src_arrmeta: int) -> None:
        if dst_tp == src_tp and not _has_blockrefs(dst_tp):
            from ndkit.kernels.assignment import PodCopyKernel
            kb.emplace_back(PodCopyKernel, kernreq, dst_tp.data_size)
            return
        raise UnsupportedOperationError("assignment", [src_tp, dst_tp],
                                        f"cannot assign from {src_tp} to {dst_tp}")

    def make_comparison_kernel(self, kb, kernreq, src0_tp: "BaseType", src0_arrmeta: int,
                               src1_tp: "BaseType", src1_arrmeta: int, op) -> None:
        raise UnsupportedOperationError("comparison", [src0_tp, src1_tp])

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def _key(self) -> tuple:
        return (self._id,)

    def __eq__(self, other) -> bool:
        if self is other:
            return True
        if not isinstance(other, BaseType):
            return NotImplemented
        return type(self) is type(other) and self._key() == other._key()

    def __ne__(self, other) -> bool:
        result = self.__eq__(other)
        return result if result is NotImplemented else not result

    def __hash__(self) -> int:
        return hash((type(self).__name__,) + self._key())

    def __str__(self) -> str:
        return type_registry.name(self._id)

    def __repr__(self) -> str:
        return f"ndt({str(self)!r})"


def _has_blockrefs(tp: BaseType) -> bool:
    """True if values of tp reference memory blocks through arrmeta."""
    return getattr(tp, "has_blockrefs", False)


# ============================================================
# Built-in scalar types
# ============================================================

@dataclass(frozen=True)
class _BuiltinInfo:
    name: str
    kind: TypeKind
    size: int
    alignment: int
    dtype: Optional[str]


_BUILTIN_INFO: Dict[TypeId, _BuiltinInfo] = {
    TypeId.BOOL: _BuiltinInfo("bool", TypeKind.BOOL, 1, 1, "?"),
    TypeId.INT8: _BuiltinInfo("int8", TypeKind.INT, 1, 1, "i1"),
    TypeId.INT16: _BuiltinInfo("int16", TypeKind.INT, 2, 2, "i2"),
    TypeId.INT32: _BuiltinInfo("int32", TypeKind.INT, 4, 4, "i4"),
    TypeId.INT64: _BuiltinInfo("int64", TypeKind.INT, 8, 8, "i8"),
    TypeId.INT128: _BuiltinInfo("int128", TypeKind.INT, 16, 16, None),
    TypeId.UINT8: _BuiltinInfo("uint8", TypeKind.UINT, 1, 1, "u1"),
    TypeId.UINT16: _BuiltinInfo("uint16", TypeKind.UINT, 2, 2, "u2"),
    TypeId.UINT32: _BuiltinInfo("uint32", TypeKind.UINT, 4, 4, "u4"),
    TypeId.UINT64: _BuiltinInfo("uint64", TypeKind.UINT, 8, 8, "u8"),
    TypeId.UINT128: _BuiltinInfo("uint128", TypeKind.UINT, 16, 16, None),
    TypeId.FLOAT16: _BuiltinInfo("float16", TypeKind.FLOAT, 2, 2, "f2"),
    TypeId.FLOAT32: _BuiltinInfo("float32", TypeKind.FLOAT, 4, 4, "f4"),
    TypeId.FLOAT64: _BuiltinInfo("float64", TypeKind.FLOAT, 8, 8, "f8"),
    TypeId.FLOAT128: _BuiltinInfo("float128", TypeKind.FLOAT, 16, 16, None),
    TypeId.COMPLEX_FLOAT32: _BuiltinInfo("complex<float32>", TypeKind.COMPLEX, 8, 4, "c8"),
    TypeId.COMPLEX_FLOAT64: _BuiltinInfo("complex<float64>", TypeKind.COMPLEX, 16, 8, "c16"),
    TypeId.VOID: _BuiltinInfo("void", TypeKind.VOID, 0, 1, None),
}

# Significand bits of each float size, for int -> float losslessness
_FLOAT_MANTISSA = {2: 11, 4: 24, 8: 53, 16: 113}


class BuiltinType(BaseType):
    """A built-in scalar type. One instance exists per id."""

    is_builtin = True
    _instances: Dict[int, "BuiltinType"] = {}

    def __init__(self, type_id: TypeId):
        info = _BUILTIN_INFO[type_id]
        super().__init__(type_id, info.kind, info.size, info.alignment)
        self._name = info.name
        self._dtype = np.dtype(info.dtype) if info.dtype is not None else None

    @classmethod
    def get(cls, type_id: int) -> "BuiltinType":
        tp = cls._instances.get(int(type_id))
        if tp is None:
            raise ValueError(f"type id {int(type_id)} is not a built-in scalar type")
        return tp

    @property
    def dtype(self) -> Optional[np.dtype]:
        """numpy dtype of the type, None where numpy has no exact match."""
        return self._dtype

    def is_lossless_assignment(self, dst_tp: BaseType, src_tp: BaseType) -> bool:
        if not (dst_tp.is_builtin and src_tp.is_builtin):
            return False
        if dst_tp.id == src_tp.id:
            return True
        dk, sk = dst_tp.kind, src_tp.kind
        ds, ss = dst_tp.data_size, src_tp.data_size
        if sk is TypeKind.VOID or dk is TypeKind.VOID:
            return False
        if sk is TypeKind.BOOL:
            return dk is not TypeKind.BOOL
        if dk is TypeKind.BOOL:
            return False
        if dk is sk:
            return ds >= ss
        if dk is TypeKind.INT and sk is TypeKind.UINT:
            return ds > ss
        if dk in (TypeKind.FLOAT, TypeKind.COMPLEX) and sk in (TypeKind.INT, TypeKind.UINT):
            component = ds if dk is TypeKind.FLOAT else ds // 2
            bits = ss * 8 - (1 if sk is TypeKind.INT else 0)
            return bits <= _FLOAT_MANTISSA.get(component, 0)
        if dk is TypeKind.COMPLEX and sk is TypeKind.FLOAT:
            return ds // 2 >= ss
        return False

    def make_assignment_kernel(self, kb, kernreq, dst_tp, dst_arrmeta, src_tp, src_arrmeta) -> None:
        if not src_tp.is_builtin:
            src_tp.make_assignment_kernel(kb, kernreq, dst_tp, dst_arrmeta, src_tp, src_arrmeta)
            return
        from ndkit.kernels.assignment import make_builtin_assignment_kernel
        make_builtin_assignment_kernel(kb, kernreq, dst_tp, src_tp)

    def make_comparison_kernel(self, kb, kernreq, src0_tp, src0_arrmeta, src1_tp, src1_arrmeta, op) -> None:
        if src1_tp.is_builtin:
            from ndkit.kernels.comparison import make_builtin_comparison_kernel
            make_builtin_comparison_kernel(kb, kernreq, src0_tp, src1_tp, op)
            return
        super().make_comparison_kernel(kb, kernreq, src0_tp, src0_arrmeta, src1_tp, src1_arrmeta, op)

    def __str__(self) -> str:
        return self._name

    def __reduce__(self):
        return (BuiltinType.get, (self._id,))


for _tid in _BUILTIN_INFO:
    BuiltinType._instances[int(_tid)] = BuiltinType(_tid)
del _tid

bool_ = BuiltinType.get(TypeId.BOOL)
int8 = BuiltinType.get(TypeId.INT8)
int16 = BuiltinType.get(TypeId.INT16)
int32 = BuiltinType.get(TypeId.INT32)
int64 = BuiltinType.get(TypeId.INT64)
int128 = BuiltinType.get(TypeId.INT128)
uint8 = BuiltinType.get(TypeId.UINT8)
uint16 = BuiltinType.get(TypeId.UINT16)
uint32 = BuiltinType.get(TypeId.UINT32)
uint64 = BuiltinType.get(TypeId.UINT64)
uint128 = BuiltinType.get(TypeId.UINT128)
float16 = BuiltinType.get(TypeId.FLOAT16)
float32 = BuiltinType.get(TypeId.FLOAT32)
float64 = BuiltinType.get(TypeId.FLOAT64)
float128 = BuiltinType.get(TypeId.FLOAT128)
complex_float32 = BuiltinType.get(TypeId.COMPLEX_FLOAT32)
complex_float64 = BuiltinType.get(TypeId.COMPLEX_FLOAT64)
void = BuiltinType.get(TypeId.VOID)

BUILTIN_TYPES: Tuple[BuiltinType, ...] = tuple(BuiltinType._instances.values())


def builtin_from_dtype(dtype) -> BuiltinType:
    """The built-in type matching a numpy dtype."""
    dtype = np.dtype(dtype)
    for tp in BUILTIN_TYPES:
        if tp.dtype is not None and tp.dtype == dtype:
            return tp
    raise ValueError(f"no built-in type for numpy dtype {dtype}")


# ============================================================
# Patterns
# ============================================================

_KIND_NAMES: Dict[str, TypeId] = {
    "Any": TypeId.ANY_KIND,
    "Scalar": TypeId.SCALAR_KIND,
    "Bool": TypeId.BOOL_KIND,
    "Int": TypeId.INT_KIND,
    "UInt": TypeId.UINT_KIND,
    "Float": TypeId.FLOAT_KIND,
    "Complex": TypeId.COMPLEX_KIND,
    "String": TypeId.STRING_KIND,
    "Bytes": TypeId.BYTES_KIND,
    "Dim": TypeId.DIM_KIND,
}


class KindType(BaseType):
    """A pattern standing for every type whose id is_a `kind_id`.

    Used in callable signatures (e.g. "(Scalar, Scalar) -> Scalar") and as
    kind-level dispatch keys.
    """

    def __init__(self, kind_id: int):
        super().__init__(kind_id, TypeKind.PATTERN, 0, 1)
        names = {v: k for k, v in _KIND_NAMES.items()}
        self._name = names.get(int(kind_id), type_registry.name(kind_id))

    @classmethod
    def from_name(cls, name: str) -> "KindType":
        return cls(_KIND_NAMES[name])

    @staticmethod
    def is_kind_name(name: str) -> bool:
        return name in _KIND_NAMES

    def matches(self, candidate: BaseType) -> bool:
        if self._id == TypeId.ANY_KIND:
            return True
        return type_registry.is_a(candidate.id, self._id)

    def __str__(self) -> str:
        return self._name


any_type = KindType(TypeId.ANY_KIND)
scalar_kind = KindType(TypeId.SCALAR_KIND)


def matches(pattern: BaseType, candidate: BaseType) -> bool:
    """True if `candidate` is an instance of `pattern`."""
    if isinstance(pattern, KindType):
        return pattern.matches(candidate)
    match = getattr(pattern, "matches", None)
    if match is not None:
        return match(candidate)
    return pattern == candidate


def is_lossless_assignment(dst_tp: BaseType, src_tp: BaseType) -> bool:
    """Conservative test that assigning src_tp values to dst_tp loses nothing."""
    if dst_tp == src_tp:
        return True
    if dst_tp.is_builtin:
        if src_tp.is_builtin:
            return dst_tp.is_lossless_assignment(dst_tp, src_tp)
        return src_tp.is_lossless_assignment(dst_tp, src_tp)
    return dst_tp.is_lossless_assignment(dst_tp, src_tp)


def make_type(value: Any) -> BaseType:
    """Coerce a type string, type id or numpy dtype into a type."""
    if isinstance(value, BaseType):
        return value
    if isinstance(value, str):
        from ndkit.type_string import parse_type
        return parse_type(value)
    if isinstance(value, (TypeId, int)) and not isinstance(value, bool):
        return BuiltinType.get(value)
    return builtin_from_dtype(value)


ndt = make_type


__all__ = [
    "TypeKind", "DataRef", "BaseType", "BuiltinType", "KindType", "BUILTIN_TYPES",
    "bool_", "int8", "int16", "int32", "int64", "int128",
    "uint8", "uint16", "uint32", "uint64", "uint128",
    "float16", "float32", "float64", "float128",
    "complex_float32", "complex_float64", "void",
    "any_type", "scalar_kind", "matches", "builtin_from_dtype",
    "is_lossless_assignment", "make_type", "ndt",
]
