"""
Sort kernel for ndkit.

Sorts the elements of a fixed dimension in place (src[0]), ordering them
with a child `less` kernel that writes a bool. The sort is stable.
"""

from __future__ import annotations
import ctypes
import functools

import numpy as np

from ndkit.kernel_builder import BaseKernel
from ndkit.kernels.memory import address_of, memmove, scalar_view


class SortKernel(BaseKernel):
    _fields_ = [
        ("size", ctypes.c_int64),
        ("stride", ctypes.c_int64),
        ("element_size", ctypes.c_int64),
    ]

    def single(self, dst, src):
        n, stride, elsize = self.size, self.stride, self.element_size
        if n < 2:
            return
        less = self.get_child()
        scratch = np.zeros(n * elsize + 1, dtype=np.uint8)
        base = address_of(scratch)
        flag = base + n * elsize
        for i in range(n):
            memmove(base + i * elsize, src[0] + i * stride, elsize)

        def compare(i, j):
            less.single(flag, [base + i * elsize, base + j * elsize])
            if scalar_view(flag, np.bool_)[0]:
                return -1
            less.single(flag, [base + j * elsize, base + i * elsize])
            return 1 if scalar_view(flag, np.bool_)[0] else 0

        order = sorted(range(n), key=functools.cmp_to_key(compare))
        for k, i in enumerate(order):
            memmove(src[0] + k * stride, base + i * elsize, elsize)

    def destruct_children(self):
        self.get_child().destroy()


__all__ = ["SortKernel"]
