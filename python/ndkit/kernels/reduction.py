"""
Reduction kernel for ndkit.

FoldKernel folds the leading fixed dimension of its source into dst. Its
children are an assignment kernel (first child) seeding dst with the first
element visited, a compound kernel (at compound_offset) accumulating the
remaining elements with dst_stride 0 and, when the fold has an identity, an
assignment kernel (at identity_offset) writing it for an empty dimension.

With reverse set, the walk starts at the last element and moves backward.
Without an identity an empty dimension leaves dst as the caller supplied it.
"""

from __future__ import annotations
import ctypes

from ndkit.handles import release_object
from ndkit.kernel_builder import BaseKernel


class FoldKernel(BaseKernel):
    _fields_ = [
        ("size", ctypes.c_int64),
        ("src_stride", ctypes.c_int64),
        ("reverse", ctypes.c_int8),
        ("compound_offset", ctypes.c_int64),
        ("identity_offset", ctypes.c_int64),
        ("identity", ctypes.c_uint64),
        ("identity_handle", ctypes.c_uint64),
    ]

    def single(self, dst, src):
        n = self.size
        if n == 0:
            if self.identity_offset != 0:
                self.get_child(self.identity_offset).single(dst, [self.identity])
            return
        stride = -self.src_stride if self.reverse else self.src_stride
        first = src[0] + (n - 1) * self.src_stride if self.reverse else src[0]
        self.get_child().single(dst, [first])
        if n > 1:
            self.get_child(self.compound_offset).strided(dst, 0, [first + stride], [stride], n - 1)

    def destruct_children(self):
        self.get_child().destroy()
        if self.compound_offset != 0:
            self.get_child(self.compound_offset).destroy()
        if self.identity_offset != 0:
            self.get_child(self.identity_offset).destroy()

    def release(self):
        handle, self.identity_handle = self.identity_handle, 0
        release_object(handle)


__all__ = ["FoldKernel"]
