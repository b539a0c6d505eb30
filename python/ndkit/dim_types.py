"""
Dimension types for ndkit.

    N * T       fixed dimension of size N; arrmeta {dim_size, stride}
    var * T     variable dimension; data {begin, size}, arrmeta {blockref, stride, offset}
    Fixed * T   pattern matching any fixed dimension over T
"""

from __future__ import annotations
from typing import Optional, Sequence, Tuple
import ctypes

from ndkit.arrmeta import FixedDimArrMeta, VarDimArrMeta, VarDimData
from ndkit.errors import TypeConstructionError, UnsupportedOperationError
from ndkit.irange import apply_single_index, apply_single_linear_index
from ndkit.memblock import (
    PodMemoryBlock,
    get_memory_block,
    memory_block_decref,
    memory_block_incref,
)
from ndkit.type_registry import TypeId
from ndkit.types import BaseType, DataRef, TypeKind, is_lossless_assignment, matches

FIXED_DIM_ARRMETA_SIZE = ctypes.sizeof(FixedDimArrMeta)
VAR_DIM_ARRMETA_SIZE = ctypes.sizeof(VarDimArrMeta)


class BaseDimType(BaseType):
    """Common behavior of dimension types."""

    def __init__(self, type_id: int, element: BaseType, data_size: int, data_alignment: int,
                 arrmeta_size: int, kind: TypeKind = TypeKind.DIM):
        if not isinstance(element, BaseType):
            raise TypeConstructionError(f"dimension element must be a type, not {type(element).__name__}")
        super().__init__(type_id, kind, data_size, data_alignment,
                         ndim=1 + element.ndim, arrmeta_size=arrmeta_size)
        self._element = element

    @property
    def element_type(self) -> BaseType:
        return self._element

    @property
    def has_blockrefs(self) -> bool:
        return getattr(self._element, "has_blockrefs", False)

    def get_type_at_dimension(self, i: int) -> BaseType:
        if i == 0:
            return self
        return self._element.get_type_at_dimension(i - 1)

    def _key(self) -> tuple:
        return (self._element,)


class FixedDimType(BaseDimType):
    """A dimension of fixed size, strided in memory."""

    def __init__(self, dim_size: int, element: BaseType):
        if dim_size < 0:
            raise TypeConstructionError(f"fixed dimension size must be non-negative, not {dim_size}")
        super().__init__(TypeId.FIXED_DIM, element, dim_size * element.data_size,
                         element.data_alignment, FIXED_DIM_ARRMETA_SIZE + element.arrmeta_size)
        self._dim_size = dim_size

    @property
    def dim_size(self) -> int:
        return self._dim_size

    def _key(self) -> tuple:
        return (self._dim_size, self._element)

    def get_canonical_type(self) -> BaseType:
        return FixedDimType(self._dim_size, self._element.get_canonical_type())

    def get_shape(self) -> Tuple[int, ...]:
        return (self._dim_size,) + self._element.get_shape()

    def get_shape_from_arrmeta(self, arrmeta: int, data: int = 0) -> Tuple[int, ...]:
        md = FixedDimArrMeta.from_address(arrmeta)
        return (md.dim_size,) + self._element.get_shape_from_arrmeta(arrmeta + FIXED_DIM_ARRMETA_SIZE, 0)

    def get_dim_size(self, arrmeta: int, data: int = 0) -> int:
        return self._dim_size

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def apply_linear_index(self, indices, current_i=0, root_tp=None, leading_dimension=True) -> BaseType:
        if not indices:
            return self
        root_tp = root_tp or self
        r = apply_single_linear_index(indices[0], self._dim_size, current_i, root_tp.get_shape())
        if r.remove_dimension:
            return self._element.apply_linear_index(indices[1:], current_i + 1, root_tp, leading_dimension)
        return FixedDimType(r.dimension_size,
                            self._element.apply_linear_index(indices[1:], current_i + 1, root_tp, False))

    def apply_linear_index_data(self, indices, arrmeta, result_tp, out_arrmeta, embedded_reference,
                                current_i=0, root_tp=None, leading_dimension=True,
                                inout: Optional[DataRef] = None) -> int:
        if not indices:
            self.arrmeta_copy_construct(out_arrmeta, arrmeta, embedded_reference)
            return 0
        root_tp = root_tp or self
        md = FixedDimArrMeta.from_address(arrmeta)
        r = apply_single_linear_index(indices[0], self._dim_size, current_i, root_tp.get_shape())
        element_arrmeta = arrmeta + FIXED_DIM_ARRMETA_SIZE
        if r.remove_dimension:
            offset = md.stride * r.start
            if leading_dimension and inout is not None:
                # Move the data to the selected element before collapsing further
                inout.data += offset
                return self._element.apply_linear_index_data(
                    indices[1:], element_arrmeta, result_tp, out_arrmeta, embedded_reference,
                    current_i + 1, root_tp, True, inout)
            return offset + self._element.apply_linear_index_data(
                indices[1:], element_arrmeta, result_tp, out_arrmeta, embedded_reference,
                current_i + 1, root_tp, leading_dimension, None)
        out_md = FixedDimArrMeta.from_address(out_arrmeta)
        out_md.dim_size = r.dimension_size
        out_md.stride = md.stride * r.index_stride
        offset = md.stride * r.start
        offset += self._element.apply_linear_index_data(
            indices[1:], element_arrmeta, result_tp.element_type, out_arrmeta + FIXED_DIM_ARRMETA_SIZE,
            embedded_reference, current_i + 1, root_tp, False, None)
        return offset

    # ------------------------------------------------------------------
    # Arrmeta
    # ------------------------------------------------------------------

    def arrmeta_default_construct(self, arrmeta: int, blockref_alloc: bool = True) -> None:
        md = FixedDimArrMeta.from_address(arrmeta)
        md.dim_size = self._dim_size
        md.stride = self._element.data_size
        self._element.arrmeta_default_construct(arrmeta + FIXED_DIM_ARRMETA_SIZE, blockref_alloc)

    def arrmeta_copy_construct(self, dst_arrmeta: int, src_arrmeta: int, embedded_reference: int) -> None:
        src = FixedDimArrMeta.from_address(src_arrmeta)
        dst = FixedDimArrMeta.from_address(dst_arrmeta)
        dst.dim_size = src.dim_size
        dst.stride = src.stride
        self._element.arrmeta_copy_construct(dst_arrmeta + FIXED_DIM_ARRMETA_SIZE,
                                             src_arrmeta + FIXED_DIM_ARRMETA_SIZE, embedded_reference)

    def arrmeta_destruct(self, arrmeta: int) -> None:
        self._element.arrmeta_destruct(arrmeta + FIXED_DIM_ARRMETA_SIZE)

    def arrmeta_finalize_buffers(self, arrmeta: int) -> None:
        self._element.arrmeta_finalize_buffers(arrmeta + FIXED_DIM_ARRMETA_SIZE)

    def arrmeta_reset_buffers(self, arrmeta: int) -> None:
        self._element.arrmeta_reset_buffers(arrmeta + FIXED_DIM_ARRMETA_SIZE)

    def arrmeta_debug_print(self, arrmeta: int, indent: str = "") -> str:
        md = FixedDimArrMeta.from_address(arrmeta)
        out = f"{indent}fixed_dim arrmeta\n{indent} size: {md.dim_size}\n{indent} stride: {md.stride}\n"
        return out + self._element.arrmeta_debug_print(arrmeta + FIXED_DIM_ARRMETA_SIZE, indent + " ")

    def is_unique_data_owner(self, arrmeta: int) -> bool:
        return self._element.is_unique_data_owner(arrmeta + FIXED_DIM_ARRMETA_SIZE)

    # ------------------------------------------------------------------
    # Kernels
    # ------------------------------------------------------------------

    def is_lossless_assignment(self, dst_tp, src_tp) -> bool:
        if isinstance(dst_tp, FixedDimType) and isinstance(src_tp, FixedDimType):
            return (dst_tp.dim_size == src_tp.dim_size
                    and is_lossless_assignment(dst_tp.element_type, src_tp.element_type))
        return False

    def make_assignment_kernel(self, kb, kernreq, dst_tp, dst_arrmeta, src_tp, src_arrmeta) -> None:
        if not isinstance(dst_tp, FixedDimType):
            raise UnsupportedOperationError("assignment", [src_tp, dst_tp],
                                            f"cannot assign from {src_tp} to {dst_tp}")
        from ndkit.kernels.assignment import make_fixed_dim_assignment_kernel
        make_fixed_dim_assignment_kernel(kb, kernreq, dst_tp, dst_arrmeta, src_tp, src_arrmeta)

    def __str__(self) -> str:
        return f"{self._dim_size} * {self._element}"


class VarDimType(BaseDimType):
    """A dimension whose size is stored with each value."""

    has_blockrefs = True

    def __init__(self, element: BaseType):
        super().__init__(TypeId.VAR_DIM, element, ctypes.sizeof(VarDimData), 8,
                         VAR_DIM_ARRMETA_SIZE + element.arrmeta_size)

    def get_canonical_type(self) -> BaseType:
        return VarDimType(self._element.get_canonical_type())

    def get_shape(self) -> Tuple[int, ...]:
        return (-1,) + self._element.get_shape()

    def get_shape_from_arrmeta(self, arrmeta: int, data: int = 0) -> Tuple[int, ...]:
        size = VarDimData.from_address(data).size if data else -1
        return (size,) + self._element.get_shape_from_arrmeta(arrmeta + VAR_DIM_ARRMETA_SIZE, 0)

    def get_dim_size(self, arrmeta: int, data: int = 0) -> int:
        if not data:
            raise UnsupportedOperationError("get_dim_size", [self], "var dimension size needs the data")
        return VarDimData.from_address(data).size

    def element_data(self, arrmeta: int, data: int) -> Tuple[int, int, int]:
        """(first element address, element stride, size) of the value at `data`."""
        md = VarDimArrMeta.from_address(arrmeta)
        d = VarDimData.from_address(data)
        return d.begin + md.offset, md.stride, d.size

    def allocate_elements(self, arrmeta: int, data: int, size: int) -> int:
        """Allocate `size` zeroed elements from the arrmeta's memory block."""
        md = VarDimArrMeta.from_address(arrmeta)
        blk = get_memory_block(md.blockref)
        if not isinstance(blk, PodMemoryBlock):
            raise UnsupportedOperationError("var dimension allocation", [self],
                                            f"{self} value has no writable memory block")
        begin = blk.allocate(size * md.stride, self._element.data_alignment)
        d = VarDimData.from_address(data)
        d.begin = begin - md.offset
        d.size = size
        return begin

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def apply_linear_index(self, indices, current_i=0, root_tp=None, leading_dimension=True) -> BaseType:
        if not indices:
            return self
        root_tp = root_tp or self
        first = indices[0]
        if first.step == 0:
            if leading_dimension:
                return self._element.apply_linear_index(indices[1:], current_i + 1, root_tp, True)
            raise UnsupportedOperationError("indexing", [root_tp],
                                            "single index into a non-leading var dimension")
        if first.is_nop():
            return VarDimType(self._element.apply_linear_index(indices[1:], current_i + 1, root_tp, False))
        raise UnsupportedOperationError("indexing", [root_tp], "var dimension indexing with a non-trivial range")

    def apply_linear_index_data(self, indices, arrmeta, result_tp, out_arrmeta, embedded_reference,
                                current_i=0, root_tp=None, leading_dimension=True,
                                inout: Optional[DataRef] = None) -> int:
        if not indices:
            self.arrmeta_copy_construct(out_arrmeta, arrmeta, embedded_reference)
            return 0
        root_tp = root_tp or self
        md = VarDimArrMeta.from_address(arrmeta)
        element_arrmeta = arrmeta + VAR_DIM_ARRMETA_SIZE
        first = indices[0]
        if first.step == 0:
            if not (leading_dimension and inout is not None):
                raise UnsupportedOperationError("indexing", [root_tp],
                                                "single index into a non-leading var dimension")
            d = VarDimData.from_address(inout.data)
            i = apply_single_index(first.start, d.size, current_i, None)
            reference = md.blockref if md.blockref else inout.reference
            inout.rebind(d.begin + md.offset + i * md.stride, reference)
            return self._element.apply_linear_index_data(
                indices[1:], element_arrmeta, result_tp, out_arrmeta, embedded_reference,
                current_i + 1, root_tp, True, inout)
        if first.is_nop():
            out_md = VarDimArrMeta.from_address(out_arrmeta)
            out_md.blockref = md.blockref if md.blockref else embedded_reference
            memory_block_incref(out_md.blockref)
            out_md.stride = md.stride
            out_md.offset = md.offset + self._element.apply_linear_index_data(
                indices[1:], element_arrmeta, result_tp.element_type, out_arrmeta + VAR_DIM_ARRMETA_SIZE,
                embedded_reference, current_i + 1, root_tp, False, None)
            return 0
        raise UnsupportedOperationError("indexing", [root_tp], "var dimension indexing with a non-trivial range")

    # ------------------------------------------------------------------
    # Arrmeta
    # ------------------------------------------------------------------

    def arrmeta_default_construct(self, arrmeta: int, blockref_alloc: bool = True) -> None:
        md = VarDimArrMeta.from_address(arrmeta)
        md.blockref = PodMemoryBlock().handle if blockref_alloc else 0
        md.stride = self._element.data_size
        md.offset = 0
        self._element.arrmeta_default_construct(arrmeta + VAR_DIM_ARRMETA_SIZE, blockref_alloc)

    def arrmeta_copy_construct(self, dst_arrmeta: int, src_arrmeta: int, embedded_reference: int) -> None:
        src = VarDimArrMeta.from_address(src_arrmeta)
        dst = VarDimArrMeta.from_address(dst_arrmeta)
        dst.blockref = src.blockref if src.blockref else embedded_reference
        memory_block_incref(dst.blockref)
        dst.stride = src.stride
        dst.offset = src.offset
        self._element.arrmeta_copy_construct(dst_arrmeta + VAR_DIM_ARRMETA_SIZE,
                                             src_arrmeta + VAR_DIM_ARRMETA_SIZE, embedded_reference)

    def arrmeta_destruct(self, arrmeta: int) -> None:
        md = VarDimArrMeta.from_address(arrmeta)
        handle, md.blockref = md.blockref, 0
        memory_block_decref(handle)
        self._element.arrmeta_destruct(arrmeta + VAR_DIM_ARRMETA_SIZE)

    def arrmeta_finalize_buffers(self, arrmeta: int) -> None:
        blk = get_memory_block(VarDimArrMeta.from_address(arrmeta).blockref)
        if isinstance(blk, PodMemoryBlock):
            blk.finalize()
        self._element.arrmeta_finalize_buffers(arrmeta + VAR_DIM_ARRMETA_SIZE)

    def arrmeta_reset_buffers(self, arrmeta: int) -> None:
        blk = get_memory_block(VarDimArrMeta.from_address(arrmeta).blockref)
        if isinstance(blk, PodMemoryBlock):
            blk.reset()
        self._element.arrmeta_reset_buffers(arrmeta + VAR_DIM_ARRMETA_SIZE)

    def arrmeta_debug_print(self, arrmeta: int, indent: str = "") -> str:
        md = VarDimArrMeta.from_address(arrmeta)
        out = (f"{indent}var_dim arrmeta\n{indent} blockref: {md.blockref}\n"
               f"{indent} stride: {md.stride}\n{indent} offset: {md.offset}\n")
        return out + self._element.arrmeta_debug_print(arrmeta + VAR_DIM_ARRMETA_SIZE, indent + " ")

    def is_unique_data_owner(self, arrmeta: int) -> bool:
        blk = get_memory_block(VarDimArrMeta.from_address(arrmeta).blockref)
        if blk is not None and not (blk.is_unique_owner() and blk.owner_mutable()):
            return False
        return self._element.is_unique_data_owner(arrmeta + VAR_DIM_ARRMETA_SIZE)

    def is_lossless_assignment(self, dst_tp, src_tp) -> bool:
        if isinstance(dst_tp, VarDimType) and isinstance(src_tp, VarDimType):
            return is_lossless_assignment(dst_tp.element_type, src_tp.element_type)
        return False

    def __str__(self) -> str:
        return f"var * {self._element}"


class FixedDimKindType(BaseDimType):
    """Pattern matching a fixed dimension of any size over `element`."""

    def __init__(self, element: BaseType):
        super().__init__(TypeId.FIXED_DIM_KIND, element, 0, 1, 0, kind=TypeKind.PATTERN)

    def matches(self, candidate: BaseType) -> bool:
        return isinstance(candidate, FixedDimType) and matches(self._element, candidate.element_type)

    def __str__(self) -> str:
        return f"Fixed * {self._element}"


def dim_depth(tp: BaseType) -> int:
    """Number of leading dimension types wrapped around the innermost element."""
    depth = 0
    while isinstance(tp, BaseDimType):
        tp = tp.element_type
        depth += 1
    return depth


def make_fixed_dim(shape: Sequence[int], element: BaseType) -> BaseType:
    """Nest fixed dimensions: make_fixed_dim((2, 3), int32) is 2 * 3 * int32."""
    tp = element
    for size in reversed(shape):
        tp = FixedDimType(size, tp)
    return tp


__all__ = [
    "FIXED_DIM_ARRMETA_SIZE", "VAR_DIM_ARRMETA_SIZE", "BaseDimType", "FixedDimType",
    "VarDimType", "FixedDimKindType", "dim_depth", "make_fixed_dim",
]
