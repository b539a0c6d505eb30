"""
Pointer type for ndkit.

pointer<T> stores the address of a T value. Its arrmeta is
{blockref, offset} followed by T's arrmeta; the addressed value lives at
*data + offset and is kept alive by blockref.

Indexing a pointer as the leading dimension dereferences it, so
pointer<int32> indexed with no indices is int32.
"""

from __future__ import annotations
from typing import Optional, Tuple
import ctypes

from ndkit.arrmeta import PointerArrMeta
from ndkit.errors import TypeConstructionError, UnsupportedOperationError
from ndkit.kernel_builder import KernelRequest
from ndkit.kernels.memory import POINTER_SIZE, read_ptr
from ndkit.memblock import (
    PodMemoryBlock,
    get_memory_block,
    memory_block_decref,
    memory_block_incref,
)
from ndkit.type_registry import TypeId
from ndkit.types import BaseType, DataRef, TypeKind

POINTER_ARRMETA_SIZE = ctypes.sizeof(PointerArrMeta)


class PointerType(BaseType):
    """A pointer to a value of the target type."""

    has_blockrefs = True

    def __init__(self, target: BaseType):
        if not isinstance(target, BaseType):
            raise TypeConstructionError(f"pointer target must be a type, not {type(target).__name__}")
        if target.kind is TypeKind.EXPRESSION:
            raise TypeConstructionError(
                f"cannot make a pointer to expression type {target}",
                f"pointer<{target}>", str(target))
        super().__init__(TypeId.POINTER, TypeKind.POINTER, POINTER_SIZE, POINTER_SIZE,
                         ndim=target.ndim, arrmeta_size=POINTER_ARRMETA_SIZE + target.arrmeta_size)
        self._target = target

    @property
    def target_type(self) -> BaseType:
        return self._target

    @property
    def value_type(self) -> BaseType:
        return self._target.value_type

    def get_canonical_type(self) -> BaseType:
        return self._target.get_canonical_type()

    def _key(self) -> tuple:
        return (self._target,)

    def get_shape(self) -> Tuple[int, ...]:
        return self._target.get_shape()

    def get_type_at_dimension(self, i: int) -> BaseType:
        if i == 0:
            return self
        return self._target.get_type_at_dimension(i)

    def target_address(self, arrmeta: int, data: int) -> int:
        """Address of the value the pointer at `data` refers to."""
        return read_ptr(data) + PointerArrMeta.from_address(arrmeta).offset

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def apply_linear_index(self, indices, current_i=0, root_tp=None, leading_dimension=True) -> BaseType:
        if leading_dimension:
            # A leading pointer is always dereferenced
            return self._target.apply_linear_index(indices, current_i, root_tp or self, True)
        if not indices:
            return self
        return PointerType(self._target.apply_linear_index(indices, current_i, root_tp or self, False))

    def apply_linear_index_data(self, indices, arrmeta, result_tp, out_arrmeta, embedded_reference,
                                current_i=0, root_tp=None, leading_dimension=True,
                                inout: Optional[DataRef] = None) -> int:
        md = PointerArrMeta.from_address(arrmeta)
        target_arrmeta = arrmeta + POINTER_ARRMETA_SIZE
        if leading_dimension:
            if inout is None:
                raise UnsupportedOperationError("indexing", [root_tp or self],
                                                "dereferencing a pointer requires its data")
            reference = md.blockref if md.blockref else embedded_reference
            inout.rebind(read_ptr(inout.data) + md.offset, reference)
            return self._target.apply_linear_index_data(
                indices, target_arrmeta, result_tp, out_arrmeta, embedded_reference,
                current_i, root_tp or self, True, inout)
        out_md = PointerArrMeta.from_address(out_arrmeta)
        out_md.blockref = md.blockref if md.blockref else embedded_reference
        memory_block_incref(out_md.blockref)
        out_md.offset = md.offset
        # Indexing inside the target moves the pointer's offset
        out_md.offset += self._target.apply_linear_index_data(
            indices, target_arrmeta, result_tp.target_type, out_arrmeta + POINTER_ARRMETA_SIZE,
            embedded_reference, current_i, root_tp or self, False, None)
        return 0

    # ------------------------------------------------------------------
    # Arrmeta
    # ------------------------------------------------------------------

    def arrmeta_default_construct(self, arrmeta: int, blockref_alloc: bool = True) -> None:
        md = PointerArrMeta.from_address(arrmeta)
        md.blockref = PodMemoryBlock().handle if blockref_alloc else 0
        md.offset = 0
        self._target.arrmeta_default_construct(arrmeta + POINTER_ARRMETA_SIZE, blockref_alloc)

    def arrmeta_copy_construct(self, dst_arrmeta: int, src_arrmeta: int, embedded_reference: int) -> None:
        src = PointerArrMeta.from_address(src_arrmeta)
        dst = PointerArrMeta.from_address(dst_arrmeta)
        dst.blockref = src.blockref if src.blockref else embedded_reference
        memory_block_incref(dst.blockref)
        dst.offset = src.offset
        self._target.arrmeta_copy_construct(dst_arrmeta + POINTER_ARRMETA_SIZE,
                                            src_arrmeta + POINTER_ARRMETA_SIZE, embedded_reference)

    def arrmeta_destruct(self, arrmeta: int) -> None:
        md = PointerArrMeta.from_address(arrmeta)
        handle, md.blockref = md.blockref, 0
        memory_block_decref(handle)
        self._target.arrmeta_destruct(arrmeta + POINTER_ARRMETA_SIZE)

    def arrmeta_finalize_buffers(self, arrmeta: int) -> None:
        self._target.arrmeta_finalize_buffers(arrmeta + POINTER_ARRMETA_SIZE)

    def arrmeta_reset_buffers(self, arrmeta: int) -> None:
        self._target.arrmeta_reset_buffers(arrmeta + POINTER_ARRMETA_SIZE)

    def arrmeta_debug_print(self, arrmeta: int, indent: str = "") -> str:
        md = PointerArrMeta.from_address(arrmeta)
        out = f"{indent}pointer arrmeta\n{indent} blockref: {md.blockref}\n{indent} offset: {md.offset}\n"
        return out + self._target.arrmeta_debug_print(arrmeta + POINTER_ARRMETA_SIZE, indent + " ")

    def is_unique_data_owner(self, arrmeta: int) -> bool:
        blk = get_memory_block(PointerArrMeta.from_address(arrmeta).blockref)
        if blk is not None and not (blk.is_unique_owner() and blk.owner_mutable()):
            return False
        return self._target.is_unique_data_owner(arrmeta + POINTER_ARRMETA_SIZE)

    # ------------------------------------------------------------------
    # Kernels
    # ------------------------------------------------------------------

    def is_lossless_assignment(self, dst_tp, src_tp) -> bool:
        from ndkit.types import is_lossless_assignment
        if isinstance(src_tp, PointerType) and not isinstance(dst_tp, PointerType):
            return is_lossless_assignment(dst_tp, src_tp.target_type)
        return dst_tp == src_tp

    def make_assignment_kernel(self, kb, kernreq, dst_tp, dst_arrmeta, src_tp, src_arrmeta) -> None:
        from ndkit.kernels import assignment
        if isinstance(dst_tp, PointerType):
            if dst_tp == src_tp:
                kb.emplace_back(assignment.PodCopyKernel, kernreq, POINTER_SIZE)
                return
            if dst_tp.target_type == src_tp:
                kb.emplace_back(assignment.ValueToPointerKernel, kernreq)
                return
        elif isinstance(src_tp, PointerType):
            offset = PointerArrMeta.from_address(src_arrmeta).offset
            kb.emplace_back(assignment.PointerToValueKernel, kernreq, offset)
            assignment.make_assignment_kernel(kb, KernelRequest.SINGLE, dst_tp, dst_arrmeta,
                                              src_tp.target_type,
                                              src_arrmeta + POINTER_ARRMETA_SIZE)
            return
        super().make_assignment_kernel(kb, kernreq, dst_tp, dst_arrmeta, src_tp, src_arrmeta)

    def make_comparison_kernel(self, kb, kernreq, src0_tp, src0_arrmeta, src1_tp, src1_arrmeta, op) -> None:
        raise UnsupportedOperationError("comparison", [src0_tp, src1_tp])

    def __str__(self) -> str:
        return f"pointer<{self._target}>"


__all__ = ["POINTER_ARRMETA_SIZE", "PointerType"]
