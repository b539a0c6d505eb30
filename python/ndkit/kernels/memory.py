"""
Raw address helpers for ndkit kernels.

Data, arrmeta and kernel records all live in numpy byte buffers and are
addressed by integer addresses. These helpers read and write fixed-width
fields at an address and build numpy views over strided runs of elements.
"""

from __future__ import annotations
from typing import Sequence
import ctypes

import numpy as np

POINTER_SIZE = ctypes.sizeof(ctypes.c_void_p)


def read_i64(address: int) -> int:
    return ctypes.c_int64.from_address(address).value


def write_i64(address: int, value: int) -> None:
    ctypes.c_int64.from_address(address).value = int(value)


def read_u64(address: int) -> int:
    return ctypes.c_uint64.from_address(address).value


def write_u64(address: int, value: int) -> None:
    ctypes.c_uint64.from_address(address).value = int(value)


read_ptr = read_u64
write_ptr = write_u64


def memmove(dst: int, src: int, size: int) -> None:
    if size > 0:
        ctypes.memmove(dst, src, size)


def memset(dst: int, value: int, size: int) -> None:
    if size > 0:
        ctypes.memset(dst, value, size)


def read_bytes(address: int, size: int) -> bytes:
    if size <= 0:
        return b""
    return ctypes.string_at(address, size)


def write_bytes(address: int, payload: bytes) -> None:
    if payload:
        ctypes.memmove(address, payload, len(payload))


def address_of(buffer: np.ndarray) -> int:
    """Address of the first byte of a numpy array."""
    return int(buffer.ctypes.data)


def scalar_view(address: int, dtype) -> np.ndarray:
    """A writable one-element numpy view of the value at `address`."""
    dtype = np.dtype(dtype)
    raw = (ctypes.c_char * dtype.itemsize).from_address(address)
    return np.ndarray((1,), dtype=dtype, buffer=raw)


def strided_view(address: int, dtype, count: int, stride: int) -> np.ndarray:
    """A writable numpy view of `count` elements spaced `stride` bytes apart.

    Negative and zero strides are allowed.
    """
    dtype = np.dtype(dtype)
    if count <= 0:
        return np.empty((0,), dtype=dtype)
    lowest = address + min(0, stride * (count - 1))
    span = abs(stride) * (count - 1) + dtype.itemsize
    raw = (ctypes.c_char * span).from_address(lowest)
    return np.ndarray((count,), dtype=dtype, buffer=raw,
                      offset=address - lowest, strides=(stride,))


def strided_views(addresses: Sequence[int], dtypes: Sequence, count: int,
                  strides: Sequence[int]) -> list:
    return [strided_view(a, dt, count, s) for a, dt, s in zip(addresses, dtypes, strides)]


__all__ = [
    "POINTER_SIZE",
    "read_i64", "write_i64", "read_u64", "write_u64", "read_ptr", "write_ptr",
    "memmove", "memset", "read_bytes", "write_bytes", "address_of",
    "scalar_view", "strided_view", "strided_views",
]
