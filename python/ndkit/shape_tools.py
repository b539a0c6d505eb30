"""
Shape and stride utilities for ndkit.

Broadcasting rules follow the usual right-aligned convention. A dimension
size of -1 stands for a variable-sized (var) dimension, which broadcasts
against anything.
"""

from __future__ import annotations
from typing import List, Sequence, Tuple

from ndkit.errors import BroadcastError
from ndkit.irange import apply_single_index, apply_single_linear_index, ResolvedIndex

VAR_SIZE = -1


def shape_can_broadcast(dst_shape: Sequence[int], src_shape: Sequence[int]) -> bool:
    """True if src_shape broadcasts to dst_shape without changing dst_shape."""
    if len(src_shape) > len(dst_shape):
        return False
    offset = len(dst_shape) - len(src_shape)
    for i, size in enumerate(src_shape):
        dst_size = dst_shape[offset + i]
        if size != dst_size and size != 1 and size != VAR_SIZE and dst_size != VAR_SIZE:
            return False
    return True


def broadcast_to_shape(dst_shape: Sequence[int], src_shape: Sequence[int],
                       src_strides: Sequence[int]) -> List[int]:
    """Strides that view a source as dst_shape.

    Missing leading dimensions and size-1 dimensions get stride 0.

    Raises:
        BroadcastError: If the shapes are incompatible
    """
    if len(src_shape) != len(src_strides):
        raise ValueError("src_shape and src_strides must have the same length")
    if len(src_shape) > len(dst_shape):
        raise BroadcastError(f"cannot broadcast shape {tuple(src_shape)} to {tuple(dst_shape)}",
                             [src_shape, dst_shape])
    offset = len(dst_shape) - len(src_shape)
    out = [0] * len(dst_shape)
    for i, (size, stride) in enumerate(zip(src_shape, src_strides)):
        dst_size = dst_shape[offset + i]
        if size == dst_size:
            out[offset + i] = stride
        elif size == 1:
            out[offset + i] = 0
        else:
            raise BroadcastError(f"cannot broadcast shape {tuple(src_shape)} to {tuple(dst_shape)}",
                                 [src_shape, dst_shape])
    return out


def incremental_broadcast(out_shape: Sequence[int], shape: Sequence[int]) -> Tuple[int, ...]:
    """Combine shape into the running broadcast shape out_shape."""
    out = list(out_shape)
    if len(shape) > len(out):
        out = list(shape[:len(shape) - len(out)]) + out
    offset = len(out) - len(shape)
    for i, size in enumerate(shape):
        outsize = out[offset + i]
        if size == 1:
            continue
        if size == VAR_SIZE:
            if outsize == 1:
                out[offset + i] = VAR_SIZE
        elif outsize == 1 or outsize == VAR_SIZE:
            out[offset + i] = size
        elif size != outsize:
            raise BroadcastError(f"cannot broadcast shapes {tuple(out_shape)} and {tuple(shape)} together",
                                 [out_shape, shape])
    return tuple(out)


def broadcast_shapes(*shapes: Sequence[int]) -> Tuple[int, ...]:
    out: Tuple[int, ...] = ()
    for shape in shapes:
        out = incremental_broadcast(out, shape)
    return out


def c_strides(shape: Sequence[int], itemsize: int) -> List[int]:
    """C-order strides in bytes."""
    strides = [0] * len(shape)
    stride = itemsize
    for i in reversed(range(len(shape))):
        strides[i] = stride
        stride *= shape[i]
    return strides


def strides_are_c_contiguous(itemsize: int, shape: Sequence[int], strides: Sequence[int]) -> bool:
    stride = itemsize
    for size, s in zip(reversed(shape), reversed(strides)):
        if size != 1 and s != stride:
            return False
        stride *= size
    return True


def strides_are_f_contiguous(itemsize: int, shape: Sequence[int], strides: Sequence[int]) -> bool:
    stride = itemsize
    for size, s in zip(shape, strides):
        if size != 1 and s != stride:
            return False
        stride *= size
    return True


def is_valid_perm(perm: Sequence[int]) -> bool:
    """True if perm is a permutation of range(len(perm))."""
    seen = [False] * len(perm)
    for v in perm:
        if not 0 <= v < len(perm) or seen[v]:
            return False
        seen[v] = True
    return True


def strides_to_axis_perm(strides: Sequence[int]) -> List[int]:
    """Axes ordered from smallest to largest absolute stride.

    Ties keep the C-order convention (later axes first), so C-contiguous
    strides give [ndim-1, ..., 0].
    """
    return sorted(range(len(strides)), key=lambda i: (abs(strides[i]), -i))


def axis_perm_to_strides(shape: Sequence[int], axis_perm: Sequence[int], itemsize: int) -> List[int]:
    """Contiguous strides laid out in the axis order given by axis_perm.

    Size-1 dimensions get stride 0.
    """
    if not is_valid_perm(axis_perm) or len(axis_perm) != len(shape):
        raise ValueError(f"invalid axis permutation {list(axis_perm)}")
    strides = [0] * len(shape)
    stride = itemsize
    for axis in axis_perm:
        size = shape[axis]
        strides[axis] = 0 if size == 1 else stride
        stride *= size
    return strides


__all__ = [
    "VAR_SIZE", "shape_can_broadcast", "broadcast_to_shape", "incremental_broadcast",
    "broadcast_shapes", "c_strides", "strides_are_c_contiguous", "strides_are_f_contiguous",
    "is_valid_perm", "strides_to_axis_perm", "axis_perm_to_strides",
    "apply_single_index", "apply_single_linear_index", "ResolvedIndex",
]
