"""
String and bytes types for ndkit.

    bytes<size,align>   fixed-size raw bytes, stored inline
    string              variable-length utf-8 text
    bytes               variable-length raw bytes

Variable-length values store {begin, end} addresses in their data and keep
the characters in the memory block referenced by their arrmeta {blockref}.
"""

from __future__ import annotations
from typing import Union
import ctypes

from ndkit.arrmeta import StringArrMeta, StringData
from ndkit.errors import TypeConstructionError, UnsupportedOperationError
from ndkit.kernels.memory import read_bytes, write_bytes
from ndkit.memblock import (
    PodMemoryBlock,
    get_memory_block,
    memory_block_decref,
    memory_block_incref,
)
from ndkit.type_registry import TypeId
from ndkit.types import BaseType, TypeKind


class FixedBytesType(BaseType):
    """Raw bytes of a fixed size and alignment."""

    def __init__(self, size: int, alignment: int = 1):
        if alignment <= 0 or alignment & (alignment - 1):
            raise TypeConstructionError(f"bytes alignment must be a power of two, not {alignment}",
                                        f"bytes<{size},{alignment}>")
        if size % alignment != 0:
            raise TypeConstructionError(f"bytes size {size} is not a multiple of alignment {alignment}",
                                        f"bytes<{size},{alignment}>")
        super().__init__(TypeId.FIXED_BYTES, TypeKind.BYTES, size, alignment)

    def _key(self) -> tuple:
        return (self.data_size, self.data_alignment)

    def make_comparison_kernel(self, kb, kernreq, src0_tp, src0_arrmeta, src1_tp, src1_arrmeta, op) -> None:
        from ndkit.kernels.comparison import ComparisonOp, RawBytesEqualKernel
        if src0_tp == src1_tp and op in (ComparisonOp.EQUAL, ComparisonOp.NOT_EQUAL):
            kb.emplace_back(RawBytesEqualKernel, kernreq, self.data_size, op == ComparisonOp.EQUAL)
            return
        super().make_comparison_kernel(kb, kernreq, src0_tp, src0_arrmeta, src1_tp, src1_arrmeta, op)

    def __str__(self) -> str:
        return f"bytes<{self.data_size},{self.data_alignment}>"


class _BlockrefBytesType(BaseType):
    """Shared layout of the variable-length string and bytes types."""

    has_blockrefs = True

    def __init__(self, type_id: int, kind: TypeKind):
        super().__init__(type_id, kind, ctypes.sizeof(StringData), 8,
                         arrmeta_size=ctypes.sizeof(StringArrMeta))

    def encode(self, value) -> bytes:
        raise NotImplementedError

    def decode(self, payload: bytes):
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def get_value(self, data: int):
        d = StringData.from_address(data)
        return self.decode(read_bytes(d.begin, d.end - d.begin))

    def set_value(self, arrmeta: int, data: int, value) -> None:
        """Store `value`, allocating its bytes from the arrmeta's memory block."""
        payload = self.encode(value)
        blk = get_memory_block(StringArrMeta.from_address(arrmeta).blockref)
        if not isinstance(blk, PodMemoryBlock):
            raise UnsupportedOperationError("string assignment", [self],
                                            f"{self} value has no writable memory block")
        begin = blk.allocate(len(payload), 1)
        write_bytes(begin, payload)
        d = StringData.from_address(data)
        d.begin = begin
        d.end = begin + len(payload)

    # ------------------------------------------------------------------
    # Arrmeta
    # ------------------------------------------------------------------

    def arrmeta_default_construct(self, arrmeta: int, blockref_alloc: bool = True) -> None:
        md = StringArrMeta.from_address(arrmeta)
        md.blockref = PodMemoryBlock().handle if blockref_alloc else 0

    def arrmeta_copy_construct(self, dst_arrmeta: int, src_arrmeta: int, embedded_reference: int) -> None:
        src = StringArrMeta.from_address(src_arrmeta)
        dst = StringArrMeta.from_address(dst_arrmeta)
        dst.blockref = src.blockref if src.blockref else embedded_reference
        memory_block_incref(dst.blockref)

    def arrmeta_destruct(self, arrmeta: int) -> None:
        md = StringArrMeta.from_address(arrmeta)
        handle, md.blockref = md.blockref, 0
        memory_block_decref(handle)

    def arrmeta_finalize_buffers(self, arrmeta: int) -> None:
        blk = get_memory_block(StringArrMeta.from_address(arrmeta).blockref)
        if isinstance(blk, PodMemoryBlock):
            blk.finalize()

    def arrmeta_reset_buffers(self, arrmeta: int) -> None:
        blk = get_memory_block(StringArrMeta.from_address(arrmeta).blockref)
        if isinstance(blk, PodMemoryBlock):
            blk.reset()

    def arrmeta_debug_print(self, arrmeta: int, indent: str = "") -> str:
        return f"{indent}{self} arrmeta\n{indent} blockref: {StringArrMeta.from_address(arrmeta).blockref}\n"

    def is_unique_data_owner(self, arrmeta: int) -> bool:
        blk = get_memory_block(StringArrMeta.from_address(arrmeta).blockref)
        if blk is None:
            return True
        return blk.is_unique_owner() and blk.owner_mutable()

    # ------------------------------------------------------------------
    # Kernels
    # ------------------------------------------------------------------

    def is_lossless_assignment(self, dst_tp, src_tp) -> bool:
        return dst_tp == src_tp

    def make_assignment_kernel(self, kb, kernreq, dst_tp, dst_arrmeta, src_tp, src_arrmeta) -> None:
        if dst_tp == src_tp:
            from ndkit.kernels.assignment import StringAssignKernel
            blockref = StringArrMeta.from_address(dst_arrmeta).blockref
            if not isinstance(get_memory_block(blockref), PodMemoryBlock):
                raise UnsupportedOperationError("assignment", [src_tp, dst_tp],
                                                f"destination {dst_tp} has no writable memory block")
            kb.emplace_back(StringAssignKernel, kernreq, blockref)
            return
        super().make_assignment_kernel(kb, kernreq, dst_tp, dst_arrmeta, src_tp, src_arrmeta)

    def make_comparison_kernel(self, kb, kernreq, src0_tp, src0_arrmeta, src1_tp, src1_arrmeta, op) -> None:
        if src0_tp == src1_tp:
            from ndkit.kernels.comparison import StringComparisonKernel
            kb.emplace_back(StringComparisonKernel, kernreq, int(op))
            return
        super().make_comparison_kernel(kb, kernreq, src0_tp, src0_arrmeta, src1_tp, src1_arrmeta, op)


class StringType(_BlockrefBytesType):
    """Variable-length utf-8 string."""

    def __init__(self):
        super().__init__(TypeId.STRING, TypeKind.STRING)

    def encode(self, value: Union[str, bytes]) -> bytes:
        return value.encode("utf-8") if isinstance(value, str) else bytes(value)

    def decode(self, payload: bytes) -> str:
        return payload.decode("utf-8")

    def __str__(self) -> str:
        return "string"


class BytesType(_BlockrefBytesType):
    """Variable-length raw bytes."""

    def __init__(self):
        super().__init__(TypeId.BYTES, TypeKind.BYTES)

    def encode(self, value) -> bytes:
        return bytes(value)

    def decode(self, payload: bytes) -> bytes:
        return payload

    def __str__(self) -> str:
        return "bytes"


string = StringType()
bytes_ = BytesType()


__all__ = ["FixedBytesType", "StringType", "BytesType", "string", "bytes_"]
