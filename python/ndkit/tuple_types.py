"""
Tuple and struct types for ndkit.

    (T, U, ...)          tuple of positional fields
    {a: T, b: U, ...}    struct: a tuple with field names

Field data offsets live in the arrmeta, so an indexed view can select a
subset of fields and keep their original offsets:

    arrmeta = data_offsets[nfields] (uint64), then each field's arrmeta
              at the static arrmeta_offsets[i]
"""

from __future__ import annotations
from typing import List, Optional, Sequence, Tuple
import ctypes

from ndkit.errors import TypeConstructionError
from ndkit.irange import apply_single_linear_index
from ndkit.kernels.memory import read_u64, write_u64
from ndkit.type_registry import TypeId
from ndkit.types import BaseType, DataRef, TypeKind, is_lossless_assignment

_OFFSET_SIZE = ctypes.sizeof(ctypes.c_uint64)


def _align_up(value: int, alignment: int) -> int:
    return (value + alignment - 1) // alignment * alignment


class TupleType(BaseType):
    """An ordered collection of heterogeneous fields."""

    def __init__(self, fields: Sequence[BaseType], type_id: int = TypeId.TUPLE):
        fields = tuple(fields)
        for f in fields:
            if not isinstance(f, BaseType):
                raise TypeConstructionError(f"tuple field must be a type, not {type(f).__name__}")
        alignment = max((f.data_alignment for f in fields), default=1)
        offsets: List[int] = []
        running = 0
        for f in fields:
            running = _align_up(running, f.data_alignment)
            offsets.append(running)
            running += f.data_size
        arrmeta_offsets: List[int] = []
        arrmeta_running = _OFFSET_SIZE * len(fields)
        for f in fields:
            arrmeta_offsets.append(arrmeta_running)
            arrmeta_running += f.arrmeta_size
        super().__init__(type_id, TypeKind.TUPLE, _align_up(running, alignment), alignment,
                         arrmeta_size=arrmeta_running)
        self._fields = fields
        self._default_offsets = tuple(offsets)
        self._arrmeta_offsets = tuple(arrmeta_offsets)

    @property
    def field_types(self) -> Tuple[BaseType, ...]:
        return self._fields

    @property
    def field_count(self) -> int:
        return len(self._fields)

    @property
    def default_data_offsets(self) -> Tuple[int, ...]:
        return self._default_offsets

    @property
    def arrmeta_offsets(self) -> Tuple[int, ...]:
        return self._arrmeta_offsets

    @property
    def has_blockrefs(self) -> bool:
        return any(getattr(f, "has_blockrefs", False) for f in self._fields)

    def data_offsets(self, arrmeta: int) -> List[int]:
        return [read_u64(arrmeta + i * _OFFSET_SIZE) for i in range(len(self._fields))]

    def _with_fields(self, fields: Sequence[BaseType], selection: Sequence[int]) -> "TupleType":
        return TupleType(fields)

    def _key(self) -> tuple:
        return self._fields

    def get_canonical_type(self) -> BaseType:
        return self._with_fields([f.get_canonical_type() for f in self._fields],
                                 range(len(self._fields)))

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def apply_linear_index(self, indices, current_i=0, root_tp=None, leading_dimension=True) -> BaseType:
        if not indices:
            return self
        root_tp = root_tp or self
        r = apply_single_linear_index(indices[0], len(self._fields), current_i, root_tp.get_shape())
        if r.remove_dimension:
            return self._fields[r.start].apply_linear_index(indices[1:], current_i + 1, root_tp,
                                                            leading_dimension)
        selection = [r.start + k * r.index_stride for k in range(r.dimension_size)]
        fields = [self._fields[i].apply_linear_index(indices[1:], current_i + 1, root_tp, False)
                  for i in selection]
        return self._with_fields(fields, selection)

    def apply_linear_index_data(self, indices, arrmeta, result_tp, out_arrmeta, embedded_reference,
                                current_i=0, root_tp=None, leading_dimension=True,
                                inout: Optional[DataRef] = None) -> int:
        if not indices:
            self.arrmeta_copy_construct(out_arrmeta, arrmeta, embedded_reference)
            return 0
        root_tp = root_tp or self
        offsets = self.data_offsets(arrmeta)
        r = apply_single_linear_index(indices[0], len(self._fields), current_i, root_tp.get_shape())
        if r.remove_dimension:
            i = r.start
            field_arrmeta = arrmeta + self._arrmeta_offsets[i]
            if leading_dimension and inout is not None:
                inout.data += offsets[i]
                return self._fields[i].apply_linear_index_data(
                    indices[1:], field_arrmeta, result_tp, out_arrmeta, embedded_reference,
                    current_i + 1, root_tp, True, inout)
            return offsets[i] + self._fields[i].apply_linear_index_data(
                indices[1:], field_arrmeta, result_tp, out_arrmeta, embedded_reference,
                current_i + 1, root_tp, leading_dimension, None)
        for j in range(r.dimension_size):
            i = r.start + j * r.index_stride
            out_field_arrmeta = out_arrmeta + result_tp.arrmeta_offsets[j]
            field_offset = self._fields[i].apply_linear_index_data(
                indices[1:], arrmeta + self._arrmeta_offsets[i], result_tp.field_types[j],
                out_field_arrmeta, embedded_reference, current_i + 1, root_tp, False, None)
            write_u64(out_arrmeta + j * _OFFSET_SIZE, offsets[i] + field_offset)
        return 0

    # ------------------------------------------------------------------
    # Arrmeta
    # ------------------------------------------------------------------

    def arrmeta_default_construct(self, arrmeta: int, blockref_alloc: bool = True) -> None:
        for i, f in enumerate(self._fields):
            write_u64(arrmeta + i * _OFFSET_SIZE, self._default_offsets[i])
            f.arrmeta_default_construct(arrmeta + self._arrmeta_offsets[i], blockref_alloc)

    def arrmeta_copy_construct(self, dst_arrmeta: int, src_arrmeta: int, embedded_reference: int) -> None:
        for i, f in enumerate(self._fields):
            write_u64(dst_arrmeta + i * _OFFSET_SIZE, read_u64(src_arrmeta + i * _OFFSET_SIZE))
            f.arrmeta_copy_construct(dst_arrmeta + self._arrmeta_offsets[i],
                                     src_arrmeta + self._arrmeta_offsets[i], embedded_reference)

    def arrmeta_destruct(self, arrmeta: int) -> None:
        for i, f in enumerate(self._fields):
            f.arrmeta_destruct(arrmeta + self._arrmeta_offsets[i])

    def arrmeta_finalize_buffers(self, arrmeta: int) -> None:
        for i, f in enumerate(self._fields):
            f.arrmeta_finalize_buffers(arrmeta + self._arrmeta_offsets[i])

    def arrmeta_reset_buffers(self, arrmeta: int) -> None:
        for i, f in enumerate(self._fields):
            f.arrmeta_reset_buffers(arrmeta + self._arrmeta_offsets[i])

    def arrmeta_debug_print(self, arrmeta: int, indent: str = "") -> str:
        out = f"{indent}{type(self).__name__} arrmeta\n{indent} data_offsets: {self.data_offsets(arrmeta)}\n"
        for i, f in enumerate(self._fields):
            out += f.arrmeta_debug_print(arrmeta + self._arrmeta_offsets[i], indent + "  ")
        return out

    def is_unique_data_owner(self, arrmeta: int) -> bool:
        return all(f.is_unique_data_owner(arrmeta + self._arrmeta_offsets[i])
                   for i, f in enumerate(self._fields))

    # ------------------------------------------------------------------
    # Kernels
    # ------------------------------------------------------------------

    def is_lossless_assignment(self, dst_tp, src_tp) -> bool:
        if not (isinstance(dst_tp, TupleType) and isinstance(src_tp, TupleType)):
            return False
        if dst_tp.field_count != src_tp.field_count:
            return False
        return all(is_lossless_assignment(d, s) for d, s in zip(dst_tp.field_types, src_tp.field_types))

    def make_assignment_kernel(self, kb, kernreq, dst_tp, dst_arrmeta, src_tp, src_arrmeta) -> None:
        if isinstance(dst_tp, TupleType) and isinstance(src_tp, TupleType) \
                and dst_tp.field_count == src_tp.field_count:
            from ndkit.kernels.assignment import make_tuple_assignment_kernel
            make_tuple_assignment_kernel(kb, kernreq, dst_tp, dst_arrmeta, src_tp, src_arrmeta)
            return
        super().make_assignment_kernel(kb, kernreq, dst_tp, dst_arrmeta, src_tp, src_arrmeta)

    def make_comparison_kernel(self, kb, kernreq, src0_tp, src0_arrmeta, src1_tp, src1_arrmeta, op) -> None:
        if isinstance(src1_tp, TupleType) and src0_tp.field_count == src1_tp.field_count:
            from ndkit.kernels.comparison import make_tuple_comparison_kernel
            make_tuple_comparison_kernel(kb, kernreq, src0_tp, src0_arrmeta, src1_tp, src1_arrmeta, op)
            return
        super().make_comparison_kernel(kb, kernreq, src0_tp, src0_arrmeta, src1_tp, src1_arrmeta, op)

    def __str__(self) -> str:
        return "(" + ", ".join(str(f) for f in self._fields) + ")"


class StructType(TupleType):
    """A tuple whose fields have names."""

    def __init__(self, names: Sequence[str], fields: Sequence[BaseType]):
        names = tuple(names)
        if len(names) != len(fields):
            raise TypeConstructionError(f"struct has {len(names)} names but {len(fields)} fields")
        if len(set(names)) != len(names):
            raise TypeConstructionError(f"struct field names must be unique: {names}")
        super().__init__(fields, TypeId.STRUCT)
        self._names = names

    @property
    def field_names(self) -> Tuple[str, ...]:
        return self._names

    def field_index(self, name: str) -> int:
        try:
            return self._names.index(name)
        except ValueError:
            raise KeyError(f"struct {self} has no field {name!r}") from None

    def _with_fields(self, fields, selection) -> "StructType":
        return StructType([self._names[i] for i in selection], fields)

    def _key(self) -> tuple:
        return (self._names, self._fields)

    def __str__(self) -> str:
        return "{" + ", ".join(f"{n}: {f}" for n, f in zip(self._names, self._fields)) + "}"


__all__ = ["TupleType", "StructType"]
