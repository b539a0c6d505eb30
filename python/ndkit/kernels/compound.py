"""
Compound kernels for ndkit.

Turn a binary kernel (dst, src0, src1) into an accumulating one (dst, src):

    LeftCompoundKernel     dst = dst op src      child sources (dst, src)
    RightCompoundKernel    dst = src op dst      child sources (src, dst)

In strided mode the child is called strided with the destination repeated
as one of its sources, so with dst_stride 0 it folds a run of sources into
dst.
"""

from __future__ import annotations

from ndkit.kernel_builder import BaseKernel


class LeftCompoundKernel(BaseKernel):
    def single(self, dst, src):
        self.get_child().single(dst, [dst, src[0]])

    def strided(self, dst, dst_stride, src, src_stride, count):
        self.get_child().strided(dst, dst_stride, [dst, src[0]], [dst_stride, src_stride[0]], count)

    def destruct_children(self):
        self.get_child().destroy()


class RightCompoundKernel(BaseKernel):
    def single(self, dst, src):
        self.get_child().single(dst, [src[0], dst])

    def strided(self, dst, dst_stride, src, src_stride, count):
        self.get_child().strided(dst, dst_stride, [src[0], dst], [src_stride[0], dst_stride], count)

    def destruct_children(self):
        self.get_child().destroy()


__all__ = ["LeftCompoundKernel", "RightCompoundKernel"]
