"""
Composition kernel for ndkit.

ComposeKernel runs `first` into an intermediate buffer, then `second` from
that buffer into dst. `first` is the record's first child; `second` sits at
second_offset. The buffer (and its arrmeta) is held by handle and released
with the record.
"""

from __future__ import annotations
import ctypes

from ndkit.handles import get_object, release_object
from ndkit.kernel_builder import BaseKernel


class ComposeKernel(BaseKernel):
    _fields_ = [
        ("second_offset", ctypes.c_int64),
        ("buffer_handle", ctypes.c_uint64),
        ("buffer", ctypes.c_uint64),
    ]

    def single(self, dst, src):
        self.get_child().single(self.buffer, src)
        self.get_child(self.second_offset).single(dst, [self.buffer])

    def destruct_children(self):
        self.get_child().destroy()
        if self.second_offset != 0:
            self.get_child(self.second_offset).destroy()

    def release(self):
        handle, self.buffer_handle = self.buffer_handle, 0
        held = get_object(handle) if handle else None
        if held is not None:
            held.close()
        release_object(handle)


__all__ = ["ComposeKernel"]
