"""
Array metadata (arrmeta) for ndkit.

Arrmeta is the per-value layout record that sits beside the data: strides,
dimension sizes, offsets and blockrefs (memory block handles, 0 for null).
Its layout is defined recursively by the type; a type's arrmeta_size is
known from the type alone, so arrmeta can be allocated before any data.

Record layouts:
    fixed dim   {dim_size, stride}                  then element arrmeta
    var dim     {blockref, stride, offset}          then element arrmeta
    pointer     {blockref, offset}                  then target arrmeta
    string      {blockref}
    tuple       data_offsets[nfields]               then each field's arrmeta
"""

from __future__ import annotations
from typing import Optional
import ctypes
import weakref

import numpy as np

from ndkit.kernels.memory import address_of


# ============================================================
# Record layouts
# ============================================================

class FixedDimArrMeta(ctypes.Structure):
    _fields_ = [("dim_size", ctypes.c_int64), ("stride", ctypes.c_int64)]


class VarDimArrMeta(ctypes.Structure):
    _fields_ = [("blockref", ctypes.c_uint64), ("stride", ctypes.c_int64), ("offset", ctypes.c_int64)]


class VarDimData(ctypes.Structure):
    _fields_ = [("begin", ctypes.c_uint64), ("size", ctypes.c_int64)]


class PointerArrMeta(ctypes.Structure):
    _fields_ = [("blockref", ctypes.c_uint64), ("offset", ctypes.c_int64)]


class StringArrMeta(ctypes.Structure):
    _fields_ = [("blockref", ctypes.c_uint64)]


class StringData(ctypes.Structure):
    _fields_ = [("begin", ctypes.c_uint64), ("end", ctypes.c_uint64)]


def view(layout, address: int):
    """A ctypes view of `layout` at a raw address."""
    return layout.from_address(address)


# ============================================================
# Owned arrmeta
# ============================================================

def _destruct(tp, holder: dict) -> None:
    buffer = holder.pop("buffer", None)
    if buffer is not None and tp.arrmeta_size > 0:
        tp.arrmeta_destruct(address_of(buffer))


class ArrMeta:
    """A zeroed arrmeta block for one type, destructed exactly once.

    Example:
        meta = ArrMeta(tp)
        meta.default_construct()
        ...
        meta.destruct()
    """

    def __init__(self, tp):
        self.tp = tp
        self._holder = {"buffer": np.zeros(max(tp.arrmeta_size, 8), dtype=np.uint8)}
        self._finalizer = weakref.finalize(self, _destruct, tp, self._holder)

    @property
    def address(self) -> int:
        buffer = self._holder.get("buffer")
        if buffer is None:
            raise RuntimeError("arrmeta has been destructed")
        return address_of(buffer)

    @property
    def constructed(self) -> bool:
        return self._finalizer.alive

    def default_construct(self, blockref_alloc: bool = True) -> "ArrMeta":
        self.tp.arrmeta_default_construct(self.address, blockref_alloc)
        return self

    def copy_construct(self, src: int, embedded_reference: int = 0) -> "ArrMeta":
        self.tp.arrmeta_copy_construct(self.address, src, embedded_reference)
        return self

    def finalize_buffers(self) -> None:
        self.tp.arrmeta_finalize_buffers(self.address)

    def reset_buffers(self) -> None:
        self.tp.arrmeta_reset_buffers(self.address)

    def destruct(self) -> None:
        self._finalizer()

    def debug_print(self) -> str:
        return self.tp.arrmeta_debug_print(self.address)

    def __repr__(self) -> str:
        return f"ArrMeta({self.tp}, size={self.tp.arrmeta_size})"


__all__ = [
    "FixedDimArrMeta", "VarDimArrMeta", "VarDimData", "PointerArrMeta",
    "StringArrMeta", "StringData", "view", "ArrMeta",
]
