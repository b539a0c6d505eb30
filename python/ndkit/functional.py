"""
Callable combinators for ndkit.

    elwise(child)                 broadcast `child` over leading dimensions
    left_compound(child)          dst = child(dst, src)
    right_compound(child)         dst = child(src, dst)
    reduction(child, ...)         fold the leading fixed dimension with `child`
    indirect(child)               dereference pointer arguments for `child`
    compose(first, second, tp)    second(first(src...)) through a `tp` buffer

Elementwise resolution peels one dimension level per step. Level callables
exist for 0 to 7 sources; each emits a fixed-dim or var-dim loop record and
resolves the next level with the element types, until no argument has
dimensions beyond what the child accepts.

Example:
    add = elwise(add_scalars)
    add(array([[1, 2], [3, 4]]), array([10, 20]))    # 2 * 2 * int64
"""

from __future__ import annotations
from typing import List, Optional, Sequence
from dataclasses import dataclass, replace

import numpy as np

from ndkit.array import asarray
from ndkit.arrmeta import ArrMeta, FixedDimArrMeta, PointerArrMeta, VarDimArrMeta
from ndkit.callable import BaseCallable, CallableType
from ndkit.config import get_config
from ndkit.dim_types import (
    FIXED_DIM_ARRMETA_SIZE,
    VAR_DIM_ARRMETA_SIZE,
    FixedDimType,
    VarDimType,
    dim_depth,
)
from ndkit.errors import BroadcastError, UnsupportedOperationError
from ndkit.handles import hold_object
from ndkit.kernel_builder import KernelRequest
from ndkit.kernels import elwise as elwise_kernels
from ndkit.kernels.assignment import make_assignment_kernel
from ndkit.kernels.compose import ComposeKernel
from ndkit.kernels.compound import LeftCompoundKernel, RightCompoundKernel
from ndkit.kernels.indirection import indirection_kernel
from ndkit.kernels.memory import address_of
from ndkit.kernels.reduction import FoldKernel
from ndkit.pointer_type import POINTER_ARRMETA_SIZE, PointerType
from ndkit.types import BaseType, any_type

MAX_ELWISE_OPERANDS = 7


# ============================================================
# Elementwise
# ============================================================

@dataclass(frozen=True)
class ElwiseFrame:
    """Resolution data carried down the elementwise levels."""
    child: BaseCallable
    state: bool = False
    res_ignore: bool = False
    depth: int = 0

    def deeper(self) -> "ElwiseFrame":
        return replace(self, depth=self.depth + 1)


def _broadcast_sizes(sizes: Sequence[int], types: Sequence[BaseType]) -> int:
    dim = 1
    for size in sizes:
        if size != 1:
            if dim not in (1, size):
                raise BroadcastError(
                    "cannot broadcast " + ", ".join(str(t) for t in types),
                    [t.get_shape() for t in types])
            dim = size
    return dim


class ElwiseCallable(BaseCallable):
    """Entry point of an elementwise callable.

    Args:
        child: Callable applied to each element combination
        state: Track the element index; the child receives the index
            array's address as its kernel data
        res_ignore: The child writes the whole destination itself; the
            destination is not iterated
    """

    def __init__(self, child: BaseCallable, state: bool = False, res_ignore: bool = False,
                 name: Optional[str] = None):
        super().__init__(child.signature, name or child.name)
        self.child = child
        self.state = state
        self.res_ignore = res_ignore

    def overload(self, dst_tp, src_tp, candidate: BaseCallable) -> BaseCallable:
        """Register an element-level overload with the child dispatcher."""
        return self.child.overload(dst_tp, src_tp, candidate)

    def resolve(self, caller, data, cg, dst_tp, src_tp, kwds, tp_vars) -> BaseType:
        n = len(src_tp)
        if n > get_config().max_elwise_operands:
            raise UnsupportedOperationError(
                "elementwise", src_tp,
                f"elementwise {self.name} supports at most {get_config().max_elwise_operands} operands, got {n}")
        frame = ElwiseFrame(self.child, self.state, self.res_ignore)
        if self.state:
            ndim = max([dim_depth(t) for t in src_tp] + [dim_depth(dst_tp) if dst_tp is not None else 0])

            def emit_state(kb, kernreq, data, dst_arrmeta, nsrc, src_arrmeta):
                index = np.zeros(max(ndim, 1), dtype=np.int64)
                ck = kb.emplace_back(elwise_kernels.IndexStateKernel, kernreq, 0, ndim)
                ck.handle = hold_object(index)
                kb(kernreq, address_of(index), dst_arrmeta, nsrc, src_arrmeta)

            cg.emplace_back(emit_state)
        return ELWISE_LEVELS[n].resolve(self, frame, cg, dst_tp, src_tp, kwds, tp_vars)


class ElwiseLevelCallable(BaseCallable):
    """One dimension level of elementwise resolution for `nsrc` sources."""

    def __init__(self, nsrc: int):
        super().__init__(CallableType(any_type, (any_type,) * nsrc), name=f"elwise{nsrc}")
        self.nsrc_fixed = nsrc

    def resolve(self, caller, frame: ElwiseFrame, cg, dst_tp, src_tp, kwds, tp_vars) -> BaseType:
        n = self.nsrc_fixed
        child = frame.child
        arg_types = child.signature.arg_types
        child_ndims = [dim_depth(a) for a in arg_types] if len(arg_types) == n else [0] * n
        extras = [max(dim_depth(t) - c, 0) for t, c in zip(src_tp, child_ndims)]
        levels = max(extras, default=0)
        dst_iter = not frame.res_ignore
        if dst_iter and dst_tp is not None:
            dst_extra = max(dim_depth(dst_tp) - dim_depth(child.signature.return_type), 0)
            if dst_extra < levels:
                raise BroadcastError(
                    f"cannot broadcast ({', '.join(str(t) for t in src_tp)}) into {dst_tp}",
                    [t.get_shape() for t in src_tp] + [dst_tp.get_shape()])
            levels = dst_extra
        if levels == 0:
            return child.resolve(self, frame, cg, dst_tp, src_tp, kwds, tp_vars)

        part = [e == levels for e in extras]
        dims = [t for t, p in zip(src_tp, part) if p]
        if dst_iter and dst_tp is not None:
            dims.append(dst_tp)
        all_fixed = all(isinstance(t, FixedDimType) for t in dims)
        size = 0
        if all_fixed:
            size = _broadcast_sizes([t.dim_size for t, p in zip(src_tp, part) if p], src_tp)
            if dst_iter and dst_tp is not None:
                if size not in (1, dst_tp.dim_size):
                    raise BroadcastError(
                        f"cannot broadcast ({', '.join(str(t) for t in src_tp)}) into {dst_tp}",
                        [t.get_shape() for t in src_tp] + [dst_tp.get_shape()])
                size = dst_tp.dim_size

        child_src = [t.element_type if p else t for t, p in zip(src_tp, part)]
        child_dst = dst_tp.element_type if (dst_iter and dst_tp is not None) else dst_tp
        # Filled once the element result type is known
        level = {}
        if all_fixed:
            cg.emplace_back(self._fixed_emitter(frame, part, size, level))
        else:
            cg.emplace_back(self._var_emitter(frame, part, src_tp, level))
        el_ret = self.resolve(self, frame.deeper(), cg, child_dst, child_src, kwds, tp_vars)
        if frame.res_ignore:
            result = el_ret
        elif dst_tp is not None:
            result = dst_tp
        elif all_fixed:
            result = FixedDimType(size, el_ret)
        else:
            result = VarDimType(el_ret)
        level["dst_tp"] = None if frame.res_ignore else result
        return result

    def _child_request(self, frame: ElwiseFrame) -> KernelRequest:
        return KernelRequest.SINGLE if frame.state else KernelRequest.STRIDED

    def _fixed_emitter(self, frame, part, size, level):
        n = self.nsrc_fixed

        def emit(kb, kernreq, data, dst_arrmeta, nsrc, src_arrmeta):
            ck = kb.emplace_back(elwise_kernels.fixed_dim_elwise_kernel(n), kernreq)
            if level["dst_tp"] is not None:
                md = FixedDimArrMeta.from_address(dst_arrmeta)
                ck.size = md.dim_size
                ck.dst_stride = md.stride
                child_dst_arrmeta = dst_arrmeta + FIXED_DIM_ARRMETA_SIZE
            else:
                ck.size = size
                ck.dst_stride = 0
                child_dst_arrmeta = dst_arrmeta
            child_src_arrmeta = list(src_arrmeta)
            for i in range(n):
                if part[i]:
                    md = FixedDimArrMeta.from_address(src_arrmeta[i])
                    ck.src_stride[i] = 0 if md.dim_size == 1 else md.stride
                    child_src_arrmeta[i] += FIXED_DIM_ARRMETA_SIZE
                else:
                    ck.src_stride[i] = 0
            ck.index = data if frame.state else 0
            ck.depth = frame.depth
            kb(self._child_request(frame), data, child_dst_arrmeta, n, child_src_arrmeta)

        return emit

    def _var_emitter(self, frame, part, src_tp, level):
        n = self.nsrc_fixed
        src_tp = list(src_tp)

        def emit(kb, kernreq, data, dst_arrmeta, nsrc, src_arrmeta):
            ck = kb.emplace_back(elwise_kernels.var_dim_elwise_kernel(n), kernreq)
            out_tp = level["dst_tp"]
            child_dst_arrmeta = dst_arrmeta
            if out_tp is None:
                ck.dst_kind = elwise_kernels.BROADCAST
                ck.dst_stride = 0
            elif isinstance(out_tp, VarDimType):
                md = VarDimArrMeta.from_address(dst_arrmeta)
                ck.dst_kind = elwise_kernels.VAR
                ck.dst_stride = md.stride
                ck.dst_offset = md.offset
                ck.dst_blockref = md.blockref
                ck.dst_alignment = out_tp.element_type.data_alignment
                child_dst_arrmeta += VAR_DIM_ARRMETA_SIZE
            else:
                md = FixedDimArrMeta.from_address(dst_arrmeta)
                ck.dst_kind = elwise_kernels.FIXED
                ck.dst_size = md.dim_size
                ck.dst_stride = md.stride
                child_dst_arrmeta += FIXED_DIM_ARRMETA_SIZE
            child_src_arrmeta = list(src_arrmeta)
            for i in range(n):
                if not part[i]:
                    ck.src_kind[i] = elwise_kernels.BROADCAST
                elif isinstance(src_tp[i], VarDimType):
                    md = VarDimArrMeta.from_address(src_arrmeta[i])
                    ck.src_kind[i] = elwise_kernels.VAR
                    ck.src_stride[i] = md.stride
                    ck.src_offset[i] = md.offset
                    child_src_arrmeta[i] += VAR_DIM_ARRMETA_SIZE
                else:
                    md = FixedDimArrMeta.from_address(src_arrmeta[i])
                    ck.src_kind[i] = elwise_kernels.FIXED
                    ck.src_size[i] = md.dim_size
                    ck.src_stride[i] = md.stride
                    child_src_arrmeta[i] += FIXED_DIM_ARRMETA_SIZE
            ck.index = data if frame.state else 0
            ck.depth = frame.depth
            kb(self._child_request(frame), data, child_dst_arrmeta, n, child_src_arrmeta)

        return emit


ELWISE_LEVELS: List[ElwiseLevelCallable] = [ElwiseLevelCallable(n) for n in range(MAX_ELWISE_OPERANDS + 1)]


def elwise(child: BaseCallable, state: bool = False, res_ignore: bool = False,
           name: Optional[str] = None) -> ElwiseCallable:
    return ElwiseCallable(child, state=state, res_ignore=res_ignore, name=name)


# ============================================================
# Compound and reduction
# ============================================================

class CompoundCallable(BaseCallable):
    """Adapts a binary child to (dst, src) accumulation.

    Left: dst = child(dst, src). Right: dst = child(src, dst).
    """

    def __init__(self, child: BaseCallable, left: bool = True, name: Optional[str] = None):
        prefix = "left_compound" if left else "right_compound"
        super().__init__(CallableType(any_type, (any_type,)), name or f"{prefix}({child.name})")
        self.child = child
        self.left = left

    def resolve(self, caller, data, cg, dst_tp, src_tp, kwds, tp_vars) -> BaseType:
        if dst_tp is None or len(src_tp) != 1:
            raise self.no_overload(dst_tp, src_tp)
        left = self.left

        def emit(kb, kernreq, data, dst_arrmeta, nsrc, src_arrmeta):
            if left:
                kb.emplace_back(LeftCompoundKernel, kernreq)
                kb(kernreq, data, dst_arrmeta, 2, [dst_arrmeta, src_arrmeta[0]])
            else:
                kb.emplace_back(RightCompoundKernel, kernreq)
                kb(kernreq, data, dst_arrmeta, 2, [src_arrmeta[0], dst_arrmeta])

        cg.emplace_back(emit)
        operands = [dst_tp, src_tp[0]] if left else [src_tp[0], dst_tp]
        self.child.resolve(self, data, cg, dst_tp, operands, kwds, tp_vars)
        return dst_tp


def left_compound(child: BaseCallable) -> CompoundCallable:
    return CompoundCallable(child, left=True)


def right_compound(child: BaseCallable) -> CompoundCallable:
    return CompoundCallable(child, left=False)


class ReductionCallable(BaseCallable):
    """Folds the leading fixed dimension of its argument with a binary child.

    associativity="left" folds through left_compound walking backward from
    the last element; "right" folds through right_compound walking forward.
    For [10, 3, 2] with subtraction these give -11 and 9.

    An empty dimension writes `identity` (converted to the result type) into
    dst. Without an identity it leaves dst as the caller supplied it.
    """

    def __init__(self, child: BaseCallable, associativity: str = "left", name: Optional[str] = None,
                 identity=None):
        if associativity not in ("left", "right"):
            raise ValueError(f"associativity must be 'left' or 'right', not {associativity!r}")
        super().__init__(CallableType(any_type, (any_type,)), name or f"reduction({child.name})")
        self.child = child
        self.associativity = associativity
        self.compound = CompoundCallable(child, left=associativity == "left")
        self.identity = None if identity is None else asarray(identity)

    def resolve(self, caller, data, cg, dst_tp, src_tp, kwds, tp_vars) -> BaseType:
        if len(src_tp) != 1:
            raise self.no_overload(dst_tp, src_tp)
        src = src_tp[0]
        if not isinstance(src, FixedDimType):
            raise UnsupportedOperationError("reduction", [src],
                                            f"reduction needs a fixed leading dimension, got {src}")
        element = src.element_type
        ret = dst_tp if dst_tp is not None else element
        reverse = self.associativity == "left"
        identity = self.identity

        def emit(kb, kernreq, data, dst_arrmeta, nsrc, src_arrmeta):
            md = FixedDimArrMeta.from_address(src_arrmeta[0])
            element_arrmeta = src_arrmeta[0] + FIXED_DIM_ARRMETA_SIZE
            self_offset = kb.size
            kb.emplace_back(FoldKernel, kernreq, md.dim_size, md.stride, reverse)
            make_assignment_kernel(kb, KernelRequest.SINGLE, ret, dst_arrmeta, element, element_arrmeta)
            kb.get_at(FoldKernel, self_offset).compound_offset = kb.size - self_offset
            kb(KernelRequest.STRIDED, data, dst_arrmeta, 1, [element_arrmeta])
            if identity is not None:
                ck = kb.get_at(FoldKernel, self_offset)
                ck.identity_offset = kb.size - self_offset
                ck.identity = identity.data
                ck.identity_handle = hold_object(identity)
                make_assignment_kernel(kb, KernelRequest.SINGLE, ret, dst_arrmeta,
                                       identity.type, identity.arrmeta)

        cg.emplace_back(emit)
        self.compound.resolve(self, data, cg, ret, [element], kwds, tp_vars)
        return ret


def reduction(child: BaseCallable, associativity: str = "left",
              name: Optional[str] = None, identity=None) -> ReductionCallable:
    return ReductionCallable(child, associativity, name, identity)



# ============================================================
# Indirection and composition
# ============================================================

class IndirectCallable(BaseCallable):
    """Calls `child` with pointer arguments replaced by their targets."""

    def __init__(self, child: BaseCallable, name: Optional[str] = None):
        super().__init__(child.signature, name or f"indirect({child.name})")
        self.child = child

    def resolve(self, caller, data, cg, dst_tp, src_tp, kwds, tp_vars) -> BaseType:
        n = len(src_tp)
        is_pointer = [isinstance(t, PointerType) for t in src_tp]
        child_src = [t.target_type if p else t for t, p in zip(src_tp, is_pointer)]

        def emit(kb, kernreq, data, dst_arrmeta, nsrc, src_arrmeta):
            ck = kb.emplace_back(indirection_kernel(n), kernreq)
            child_src_arrmeta = list(src_arrmeta)
            for i in range(n):
                if is_pointer[i]:
                    ck.is_pointer[i] = 1
                    ck.offset[i] = PointerArrMeta.from_address(src_arrmeta[i]).offset
                    child_src_arrmeta[i] += POINTER_ARRMETA_SIZE
            kb(KernelRequest.SINGLE, data, dst_arrmeta, n, child_src_arrmeta)

        cg.emplace_back(emit)
        return self.child.resolve(self, data, cg, dst_tp, child_src, kwds, tp_vars)


def indirect(child: BaseCallable) -> IndirectCallable:
    return IndirectCallable(child)


class _ComposeBuffer:
    """Intermediate value of a composed kernel: data plus arrmeta."""

    def __init__(self, tp: BaseType):
        self.data = np.zeros(tp.data_size + tp.data_alignment, dtype=np.uint8)
        base = address_of(self.data)
        self.address = base + (-base) % tp.data_alignment
        self.arrmeta = ArrMeta(tp).default_construct()

    def close(self) -> None:
        self.arrmeta.destruct()


class ComposeCallable(BaseCallable):
    """second(first(src...)), with first writing a `buffer_tp` intermediate."""

    def __init__(self, first: BaseCallable, second: BaseCallable, buffer_tp: BaseType,
                 name: Optional[str] = None):
        super().__init__(CallableType(second.signature.return_type, first.signature.arg_types),
                         name or f"compose({first.name}, {second.name})")
        self.first = first
        self.second = second
        self.buffer_tp = buffer_tp

    def resolve(self, caller, data, cg, dst_tp, src_tp, kwds, tp_vars) -> BaseType:
        buffer_tp = self.buffer_tp

        def emit(kb, kernreq, data, dst_arrmeta, nsrc, src_arrmeta):
            held = _ComposeBuffer(buffer_tp)
            self_offset = kb.size
            ck = kb.emplace_back(ComposeKernel, kernreq, 0, 0, held.address)
            ck.buffer_handle = hold_object(held)
            kb(KernelRequest.SINGLE, data, held.arrmeta.address, nsrc, src_arrmeta)
            kb.get_at(ComposeKernel, self_offset).second_offset = kb.size - self_offset
            kb(KernelRequest.SINGLE, data, dst_arrmeta, 1, [held.arrmeta.address])

        cg.emplace_back(emit)
        self.first.resolve(self, data, cg, buffer_tp, src_tp, kwds, tp_vars)
        return self.second.resolve(self, data, cg, dst_tp, [buffer_tp], kwds, tp_vars)


def compose(first: BaseCallable, second: BaseCallable, buffer_tp: BaseType,
            name: Optional[str] = None) -> ComposeCallable:
    return ComposeCallable(first, second, buffer_tp, name)


__all__ = [
    "MAX_ELWISE_OPERANDS", "ElwiseFrame", "ElwiseCallable", "ElwiseLevelCallable", "ELWISE_LEVELS",
    "elwise", "CompoundCallable", "left_compound", "right_compound",
    "ReductionCallable", "reduction", "IndirectCallable", "indirect",
    "ComposeCallable", "compose",
]
