"""
Type-id registry for ndkit.

Every type kind gets a small stable integer id together with the chain of
ids it "is a". The chain is the dispatch lattice: a dispatcher keyed on a
kind id (e.g. INT_KIND) matches every id whose chain contains it.

The registry is a process-wide singleton built eagerly at import, in a
fixed order, before any type object exists.

Example:
    from ndkit.type_registry import TypeId, type_registry

    type_registry.is_a(TypeId.INT32, TypeId.INT_KIND)      # True
    type_registry.is_a(TypeId.INT32, TypeId.FLOAT_KIND)    # False
    my_id = type_registry.new_id(TypeId.STRING_KIND)
"""

from __future__ import annotations
from typing import List, Optional, Tuple
from dataclasses import dataclass
from enum import IntEnum
import threading

from ndkit.errors import TypeConstructionError


class TypeId(IntEnum):
    """Built-in type ids, in registration order."""
    UNINITIALIZED = 0
    ANY_KIND = 1
    SCALAR_KIND = 2
    BOOL_KIND = 3
    BOOL = 4
    INT_KIND = 5
    INT8 = 6
    INT16 = 7
    INT32 = 8
    INT64 = 9
    INT128 = 10
    UINT_KIND = 11
    UINT8 = 12
    UINT16 = 13
    UINT32 = 14
    UINT64 = 15
    UINT128 = 16
    FLOAT_KIND = 17
    FLOAT16 = 18
    FLOAT32 = 19
    FLOAT64 = 20
    FLOAT128 = 21
    COMPLEX_KIND = 22
    COMPLEX_FLOAT32 = 23
    COMPLEX_FLOAT64 = 24
    VOID = 25
    DIM_KIND = 26
    BYTES_KIND = 27
    FIXED_BYTES = 28
    BYTES = 29
    STRING_KIND = 30
    FIXED_STRING = 31
    CHAR = 32
    STRING = 33
    TUPLE = 34
    STRUCT = 35
    FIXED_DIM_KIND = 36
    FIXED_DIM = 37
    VAR_DIM = 38
    CATEGORICAL = 39
    OPTION = 40
    POINTER = 41
    MEMORY = 42
    TYPE = 43
    ARRAY = 44
    CALLABLE = 45
    EXPR_KIND = 46
    ADAPT = 47
    EXPR = 48
    CUDA_HOST = 49
    CUDA_DEVICE = 50
    KIND_SYM = 51
    INT_SYM = 52
    TYPEVAR = 53
    TYPEVAR_DIM = 54
    TYPEVAR_CONSTRUCTED = 55
    POW_DIMSYM = 56
    ELLIPSIS_DIM = 57
    DIM_FRAGMENT = 58


# (id, base) pairs; base None means a root of the lattice
_BUILTIN_BASES: List[Tuple[TypeId, Optional[TypeId]]] = [
    (TypeId.UNINITIALIZED, None),
    (TypeId.ANY_KIND, None),
    (TypeId.SCALAR_KIND, TypeId.ANY_KIND),
    (TypeId.BOOL_KIND, TypeId.SCALAR_KIND),
    (TypeId.BOOL, TypeId.BOOL_KIND),
    (TypeId.INT_KIND, TypeId.SCALAR_KIND),
    (TypeId.INT8, TypeId.INT_KIND),
    (TypeId.INT16, TypeId.INT_KIND),
    (TypeId.INT32, TypeId.INT_KIND),
    (TypeId.INT64, TypeId.INT_KIND),
    (TypeId.INT128, TypeId.INT_KIND),
    (TypeId.UINT_KIND, TypeId.SCALAR_KIND),
    (TypeId.UINT8, TypeId.UINT_KIND),
    (TypeId.UINT16, TypeId.UINT_KIND),
    (TypeId.UINT32, TypeId.UINT_KIND),
    (TypeId.UINT64, TypeId.UINT_KIND),
    (TypeId.UINT128, TypeId.UINT_KIND),
    (TypeId.FLOAT_KIND, TypeId.SCALAR_KIND),
    (TypeId.FLOAT16, TypeId.FLOAT_KIND),
    (TypeId.FLOAT32, TypeId.FLOAT_KIND),
    (TypeId.FLOAT64, TypeId.FLOAT_KIND),
    (TypeId.FLOAT128, TypeId.FLOAT_KIND),
    (TypeId.COMPLEX_KIND, TypeId.SCALAR_KIND),
    (TypeId.COMPLEX_FLOAT32, TypeId.COMPLEX_KIND),
    (TypeId.COMPLEX_FLOAT64, TypeId.COMPLEX_KIND),
    (TypeId.VOID, TypeId.ANY_KIND),
    (TypeId.DIM_KIND, TypeId.ANY_KIND),
    (TypeId.BYTES_KIND, TypeId.SCALAR_KIND),
    (TypeId.FIXED_BYTES, TypeId.BYTES_KIND),
    (TypeId.BYTES, TypeId.BYTES_KIND),
    (TypeId.STRING_KIND, TypeId.SCALAR_KIND),
    (TypeId.FIXED_STRING, TypeId.STRING_KIND),
    (TypeId.CHAR, TypeId.STRING_KIND),
    (TypeId.STRING, TypeId.STRING_KIND),
    (TypeId.TUPLE, TypeId.SCALAR_KIND),
    (TypeId.STRUCT, TypeId.TUPLE),
    (TypeId.FIXED_DIM_KIND, TypeId.DIM_KIND),
    (TypeId.FIXED_DIM, TypeId.FIXED_DIM_KIND),
    (TypeId.VAR_DIM, TypeId.DIM_KIND),
    (TypeId.CATEGORICAL, TypeId.ANY_KIND),
    (TypeId.OPTION, TypeId.ANY_KIND),
    (TypeId.POINTER, TypeId.ANY_KIND),
    (TypeId.MEMORY, TypeId.ANY_KIND),
    (TypeId.TYPE, TypeId.SCALAR_KIND),
    (TypeId.ARRAY, TypeId.SCALAR_KIND),
    (TypeId.CALLABLE, TypeId.SCALAR_KIND),
    (TypeId.EXPR_KIND, TypeId.ANY_KIND),
    (TypeId.ADAPT, TypeId.EXPR_KIND),
    (TypeId.EXPR, TypeId.EXPR_KIND),
    (TypeId.CUDA_HOST, TypeId.MEMORY),
    (TypeId.CUDA_DEVICE, TypeId.MEMORY),
    (TypeId.KIND_SYM, TypeId.ANY_KIND),
    (TypeId.INT_SYM, TypeId.ANY_KIND),
    (TypeId.TYPEVAR, TypeId.ANY_KIND),
    (TypeId.TYPEVAR_DIM, TypeId.DIM_KIND),
    (TypeId.TYPEVAR_CONSTRUCTED, TypeId.ANY_KIND),
    (TypeId.POW_DIMSYM, TypeId.DIM_KIND),
    (TypeId.ELLIPSIS_DIM, TypeId.DIM_KIND),
    (TypeId.DIM_FRAGMENT, TypeId.DIM_KIND),
]


@dataclass(frozen=True)
class IdInfo:
    """Registry entry for one type id.

    Attributes:
        id: The type id
        name: Lower-case name of the id
        base_ids: Ancestor ids, nearest first
    """
    id: int
    name: str
    base_ids: Tuple[int, ...]


class TypeRegistry:
    """Table of type ids and their ancestor chains."""

    def __init__(self):
        self._infos: List[IdInfo] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._infos)

    def __getitem__(self, id: int) -> IdInfo:
        id = int(id)
        if not 0 <= id < len(self._infos):
            raise IndexError(f"type id {id} is not registered (registry holds {len(self._infos)} ids)")
        return self._infos[id]

    def new_id(self, base_id: Optional[int] = None, name: Optional[str] = None) -> int:
        """Register the next unused id under `base_id`.

        Args:
            base_id: Direct ancestor, or None for a lattice root
            name: Optional display name

        Returns:
            The new id. Its ancestor chain is [base_id] + base_ids(base_id).
        """
        with self._lock:
            if base_id is None:
                bases: Tuple[int, ...] = ()
            else:
                parent = self[base_id]
                bases = (parent.id,) + parent.base_ids
            new = len(self._infos)
            self._infos.append(IdInfo(new, name or f"id{new}", bases))
            return new

    register_base = new_id

    def base_ids(self, id: int) -> Tuple[int, ...]:
        return self[id].base_ids

    def is_a(self, id: int, candidate_base: int) -> bool:
        """True iff `candidate_base` is `id` or one of its ancestors."""
        return int(candidate_base) == int(id) or int(candidate_base) in self[id].base_ids

    def name(self, id: int) -> str:
        return self[id].name


def _build_registry(bases=_BUILTIN_BASES) -> TypeRegistry:
    registry = TypeRegistry()
    for id, base in bases:
        assigned = registry.new_id(base, id.name.lower())
        if assigned != id:
            raise TypeConstructionError(
                f"built-in id {id.name} registered out of order (got {assigned})", id.name.lower())
    return registry


type_registry = _build_registry()


def is_a(id: int, candidate_base: int) -> bool:
    return type_registry.is_a(id, candidate_base)


__all__ = ["TypeId", "IdInfo", "TypeRegistry", "type_registry", "is_a"]
