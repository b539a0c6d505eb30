"""
Indirection kernel for ndkit.

Dereferences the pointer-typed sources (is_pointer[i] set) before calling
its child, so the child sees the pointed-to values.
"""

from __future__ import annotations
from typing import Dict, Type
import ctypes

from ndkit.kernel_builder import BaseKernel
from ndkit.kernels.memory import read_ptr


class IndirectionKernelBase(BaseKernel):
    nsrc = 0

    def _targets(self, src):
        return [read_ptr(s) + self.offset[i] if self.is_pointer[i] else s
                for i, s in enumerate(src[:self.nsrc])]

    def single(self, dst, src):
        self.get_child().single(dst, self._targets(src))

    def destruct_children(self):
        self.get_child().destroy()


_INDIRECTION_KERNELS: Dict[int, Type[IndirectionKernelBase]] = {}


def indirection_kernel(nsrc: int) -> Type[IndirectionKernelBase]:
    cls = _INDIRECTION_KERNELS.get(nsrc)
    if cls is None:
        width = max(nsrc, 1)
        cls = type(f"IndirectionKernel{nsrc}", (IndirectionKernelBase,), {
            "nsrc": nsrc,
            "_fields_": [
                ("is_pointer", ctypes.c_int64 * width),
                ("offset", ctypes.c_int64 * width),
            ],
        })
        _INDIRECTION_KERNELS[nsrc] = cls
    return cls


__all__ = ["IndirectionKernelBase", "indirection_kernel"]
