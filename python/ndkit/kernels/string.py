"""
String search kernel for ndkit.

StringFindKernel writes the code point index of the first occurrence of
src1 in src0 as an int64, or -1 when it does not occur. A strided call with
a constant needle (stride 0) decodes the needle once.
"""

from __future__ import annotations

import numpy as np

from ndkit.arrmeta import StringData
from ndkit.kernel_builder import BaseKernel
from ndkit.kernels.memory import read_bytes, scalar_view, strided_view


def read_string(address: int, encoding: str = "utf-8") -> str:
    d = StringData.from_address(address)
    return read_bytes(d.begin, d.end - d.begin).decode(encoding)


class StringFindKernel(BaseKernel):
    def single(self, dst, src):
        scalar_view(dst, np.int64)[0] = read_string(src[0]).find(read_string(src[1]))

    def strided(self, dst, dst_stride, src, src_stride, count):
        if src_stride[1] != 0 or dst_stride == 0:
            BaseKernel.strided(self, dst, dst_stride, src, src_stride, count)
            return
        needle = read_string(src[1])
        haystacks = [read_string(src[0] + i * src_stride[0]) for i in range(count)]
        out = strided_view(dst, np.int64, count, dst_stride)
        out[:] = [h.find(needle) for h in haystacks]


__all__ = ["StringFindKernel", "read_string"]
