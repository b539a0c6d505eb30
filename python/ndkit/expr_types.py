"""
Expression types for ndkit.

convert<to=V, from=O> stores values as O and presents them as V. Reading
assigns O -> V, writing assigns V -> O.
"""

from __future__ import annotations
from typing import Tuple

from ndkit.errors import TypeConstructionError, UnsupportedOperationError
from ndkit.type_registry import TypeId
from ndkit.types import BaseType, TypeKind


class ConvertType(BaseType):
    """Values stored as `operand` and viewed as `value`."""

    def __init__(self, value: BaseType, operand: BaseType):
        if value.ndim != operand.ndim:
            raise TypeConstructionError(
                f"convert value {value} and operand {operand} must have the same dimensions",
                f"convert<to={value}, from={operand}>")
        super().__init__(TypeId.EXPR, TypeKind.EXPRESSION, operand.data_size, operand.data_alignment,
                         ndim=operand.ndim, arrmeta_size=operand.arrmeta_size)
        self._value = value
        self._operand = operand

    @property
    def value_type(self) -> BaseType:
        return self._value

    @property
    def operand_type(self) -> BaseType:
        return self._operand

    @property
    def has_blockrefs(self) -> bool:
        return getattr(self._operand, "has_blockrefs", False)

    def get_canonical_type(self) -> BaseType:
        return self._value

    def _key(self) -> tuple:
        return (self._value, self._operand)

    def get_shape(self) -> Tuple[int, ...]:
        return self._operand.get_shape()

    def apply_linear_index(self, indices, current_i=0, root_tp=None, leading_dimension=True) -> BaseType:
        if indices:
            raise UnsupportedOperationError("indexing", [self], f"cannot index into expression type {self}")
        return self

    def arrmeta_default_construct(self, arrmeta: int, blockref_alloc: bool = True) -> None:
        self._operand.arrmeta_default_construct(arrmeta, blockref_alloc)

    def arrmeta_copy_construct(self, dst_arrmeta: int, src_arrmeta: int, embedded_reference: int) -> None:
        self._operand.arrmeta_copy_construct(dst_arrmeta, src_arrmeta, embedded_reference)

    def arrmeta_destruct(self, arrmeta: int) -> None:
        self._operand.arrmeta_destruct(arrmeta)

    def arrmeta_finalize_buffers(self, arrmeta: int) -> None:
        self._operand.arrmeta_finalize_buffers(arrmeta)

    def arrmeta_reset_buffers(self, arrmeta: int) -> None:
        self._operand.arrmeta_reset_buffers(arrmeta)

    def arrmeta_debug_print(self, arrmeta: int, indent: str = "") -> str:
        return self._operand.arrmeta_debug_print(arrmeta, indent)

    def is_unique_data_owner(self, arrmeta: int) -> bool:
        return self._operand.is_unique_data_owner(arrmeta)

    def is_lossless_assignment(self, dst_tp, src_tp) -> bool:
        from ndkit.types import is_lossless_assignment
        if src_tp is self or src_tp == self:
            return (is_lossless_assignment(self._value, self._operand)
                    and is_lossless_assignment(dst_tp, self._value))
        return False

    def make_assignment_kernel(self, kb, kernreq, dst_tp, dst_arrmeta, src_tp, src_arrmeta) -> None:
        from ndkit.kernels.assignment import make_assignment_kernel
        if src_tp == self:
            if dst_tp == self:
                make_assignment_kernel(kb, kernreq, self._operand, dst_arrmeta, self._operand, src_arrmeta)
            elif dst_tp == self._value:
                make_assignment_kernel(kb, kernreq, dst_tp, dst_arrmeta, self._operand, src_arrmeta)
            else:
                raise UnsupportedOperationError("assignment", [src_tp, dst_tp],
                                                f"cannot assign from {src_tp} to {dst_tp}")
            return
        if dst_tp == self and src_tp == self._value:
            make_assignment_kernel(kb, kernreq, self._operand, dst_arrmeta, src_tp, src_arrmeta)
            return
        raise UnsupportedOperationError("assignment", [src_tp, dst_tp],
                                        f"cannot assign from {src_tp} to {dst_tp}")

    def __str__(self) -> str:
        return f"convert<to={self._value}, from={self._operand}>"


__all__ = ["ConvertType"]
