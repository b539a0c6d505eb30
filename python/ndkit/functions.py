"""
Predefined callables for ndkit.

    assign, copy                               conversion between types
    add, subtract, multiply, divide,
    minimum, maximum                           binary arithmetic
    negative, bitwise_not, real, imag, abs     unary arithmetic
    less, less_equal, equal, not_equal,
    greater_equal, greater                     comparisons (bool result)
    string_find                                code point index or -1
    sort                                       in-place sort of the innermost dimension
    sum, min, max                              fold the leading dimension (empty sum is 0)

Arithmetic and comparison callables are elementwise over a dispatch table;
other packages extend them with `overload`:

    add.overload(None, [my_type, my_type], my_add)
"""

from __future__ import annotations
from typing import Dict, Optional

from ndkit.callable import BaseCallable, CallableType, LeafCallable
from ndkit.dim_types import FIXED_DIM_ARRMETA_SIZE, BaseDimType, FixedDimType, VarDimType
from ndkit.dispatch import (
    ElementDispatchCallable,
    FirstArgDispatchCallable,
    MultiDispatchCallable,
    UniformDispatchCallable,
)
from ndkit.arrmeta import FixedDimArrMeta
from ndkit.functional import ElwiseCallable, elwise, reduction
from ndkit.kernel_builder import KernelRequest
from ndkit.kernels.arithmetic import binary_kernel, binary_result_type, is_numeric, unary_kernel, unary_result_type
from ndkit.kernels.assignment import make_assignment_kernel
from ndkit.kernels.comparison import ComparisonOp, make_comparison_kernel
from ndkit.kernels.sort import SortKernel
from ndkit.kernels.string import StringFindKernel
from ndkit.type_registry import TypeId
from ndkit.types import BaseType, KindType, any_type, bool_, scalar_kind, void

_ANY_UNARY = CallableType(any_type, (any_type,))
_SCALAR_UNARY = CallableType(scalar_kind, (scalar_kind,))
_SCALAR_BINARY = CallableType(scalar_kind, (scalar_kind, scalar_kind))

_NUMERIC_KINDS = tuple(KindType(k) for k in (TypeId.INT_KIND, TypeId.UINT_KIND,
                                              TypeId.FLOAT_KIND, TypeId.COMPLEX_KIND))
_BITWISE_KINDS = tuple(KindType(k) for k in (TypeId.BOOL_KIND, TypeId.INT_KIND, TypeId.UINT_KIND))


def _has_var_dim(tp: Optional[BaseType]) -> bool:
    while isinstance(tp, BaseDimType):
        if isinstance(tp, VarDimType):
            return True
        tp = tp.element_type
    return False


# ============================================================
# Assignment
# ============================================================

class _AssignKernelCallable(BaseCallable):
    """Emits the destination type's assignment kernel directly."""

    def __init__(self):
        super().__init__(_ANY_UNARY, "assign")

    def resolve(self, caller, data, cg, dst_tp, src_tp, kwds, tp_vars) -> BaseType:
        if dst_tp is None or len(src_tp) != 1:
            raise self.no_overload(dst_tp, src_tp)
        src = src_tp[0]

        def emit(kb, kernreq, data, dst_arrmeta, nsrc, src_arrmeta):
            make_assignment_kernel(kb, kernreq, dst_tp, dst_arrmeta, src, src_arrmeta[0])

        cg.emplace_back(emit)
        return dst_tp


class AssignCallable(BaseCallable):
    """dst = src, converting between types.

    Fixed dimensions, tuples and pointers are handled by the types'
    assignment kernels; anything involving a var dimension goes through an
    elementwise loop so the destination can be allocated.
    """

    def __init__(self):
        super().__init__(_ANY_UNARY, "assign")
        self._direct = _AssignKernelCallable()
        self._elwise = elwise(self._direct, name="assign")

    def resolve(self, caller, data, cg, dst_tp, src_tp, kwds, tp_vars) -> BaseType:
        if dst_tp is None or len(src_tp) != 1:
            raise self.no_overload(dst_tp, src_tp)
        if _has_var_dim(dst_tp) or _has_var_dim(src_tp[0]):
            return self._elwise.resolve(caller, data, cg, dst_tp, src_tp, kwds, tp_vars)
        return self._direct.resolve(caller, data, cg, dst_tp, src_tp, kwds, tp_vars)


class CopyCallable(BaseCallable):
    """Assignment into a new value of the source's value type."""

    def __init__(self):
        super().__init__(_ANY_UNARY, "copy")

    def resolve(self, caller, data, cg, dst_tp, src_tp, kwds, tp_vars) -> BaseType:
        if len(src_tp) != 1:
            raise self.no_overload(dst_tp, src_tp)
        if dst_tp is None:
            dst_tp = src_tp[0].value_type
        return assign.resolve(self, data, cg, dst_tp, src_tp, kwds, tp_vars)


assign = UniformDispatchCallable(_ANY_UNARY, name="assign")
assign.overload(any_type, [any_type], AssignCallable())

copy = CopyCallable()


# ============================================================
# Arithmetic
# ============================================================

class BinaryArithmeticCallable(LeafCallable):
    """One binary arithmetic op over builtin numeric types."""

    def __init__(self, op: str):
        super().__init__(_SCALAR_BINARY, name=op)
        self.op = op

    def check_arguments(self, dst_tp, src_tp) -> None:
        if len(src_tp) != 2 or not all(is_numeric(t) for t in src_tp):
            raise self.no_overload(dst_tp, src_tp)
        if dst_tp is not None and not is_numeric(dst_tp):
            raise self.no_overload(dst_tp, src_tp)

    def resolve_return_type(self, dst_tp, src_tp) -> BaseType:
        return dst_tp if dst_tp is not None else binary_result_type(self.op, src_tp[0], src_tp[1])

    def instantiate_kernel(self, kb, kernreq, data, dst_tp, dst_arrmeta, src_tp, src_arrmeta, kwds) -> None:
        kb.emplace_back(binary_kernel(self.op, dst_tp, src_tp[0], src_tp[1]), kernreq)


class UnaryArithmeticCallable(LeafCallable):
    def __init__(self, op: str):
        super().__init__(_SCALAR_UNARY, name=op)
        self.op = op

    def check_arguments(self, dst_tp, src_tp) -> None:
        if len(src_tp) != 1 or not src_tp[0].is_builtin or src_tp[0].dtype is None:
            raise self.no_overload(dst_tp, src_tp)
        if dst_tp is not None and not (dst_tp.is_builtin and dst_tp.dtype is not None):
            raise self.no_overload(dst_tp, src_tp)

    def resolve_return_type(self, dst_tp, src_tp) -> BaseType:
        ret = unary_result_type(self.op, src_tp[0])
        return dst_tp if dst_tp is not None else ret

    def instantiate_kernel(self, kb, kernreq, data, dst_tp, dst_arrmeta, src_tp, src_arrmeta, kwds) -> None:
        kb.emplace_back(unary_kernel(self.op, dst_tp, src_tp[0]), kernreq)


def _binary(op: str) -> ElwiseCallable:
    table = MultiDispatchCallable(_SCALAR_BINARY, name=op)
    leaf = BinaryArithmeticCallable(op)
    for k0 in _NUMERIC_KINDS:
        for k1 in _NUMERIC_KINDS:
            table.overload(None, [k0, k1], leaf)
    return elwise(table, name=op)


def _unary(op: str) -> ElwiseCallable:
    table = FirstArgDispatchCallable(_SCALAR_UNARY, name=op)
    leaf = UnaryArithmeticCallable(op)
    for kind in (_BITWISE_KINDS if op == "bitwise_not" else _NUMERIC_KINDS):
        table.overload(None, [kind], leaf)
    return elwise(table, name=op)


add = _binary("add")
subtract = _binary("subtract")
multiply = _binary("multiply")
divide = _binary("divide")
minimum = _binary("minimum")
maximum = _binary("maximum")

negative = _unary("negative")
bitwise_not = _unary("bitwise_not")
real = _unary("real")
imag = _unary("imag")
abs = _unary("abs")


# ============================================================
# Comparison
# ============================================================

class ComparisonCallable(LeafCallable):
    """src0 op src1 as a bool, through the first operand type's comparison kernel."""

    def __init__(self, op: ComparisonOp):
        super().__init__(CallableType(bool_, (any_type, any_type)), name=op.name.lower())
        self.op = op

    def instantiate_kernel(self, kb, kernreq, data, dst_tp, dst_arrmeta, src_tp, src_arrmeta, kwds) -> None:
        make_comparison_kernel(kb, kernreq, src_tp[0], src_arrmeta[0], src_tp[1], src_arrmeta[1], self.op)


_COMPARISONS: Dict[ComparisonOp, MultiDispatchCallable] = {}
for _op in ComparisonOp:
    _COMPARISONS[_op] = MultiDispatchCallable(CallableType(bool_, (any_type, any_type)), name=_op.name.lower())
    _COMPARISONS[_op].overload(None, [any_type, any_type], ComparisonCallable(_op))
del _op

less = elwise(_COMPARISONS[ComparisonOp.LESS], name="less")
less_equal = elwise(_COMPARISONS[ComparisonOp.LESS_EQUAL], name="less_equal")
equal = elwise(_COMPARISONS[ComparisonOp.EQUAL], name="equal")
not_equal = elwise(_COMPARISONS[ComparisonOp.NOT_EQUAL], name="not_equal")
greater_equal = elwise(_COMPARISONS[ComparisonOp.GREATER_EQUAL], name="greater_equal")
greater = elwise(_COMPARISONS[ComparisonOp.GREATER], name="greater")


# ============================================================
# Strings and sorting
# ============================================================

string_find = elwise(LeafCallable("(string, string) -> int64", StringFindKernel, name="string_find"))


class SortCallable(BaseCallable):
    """Sorts a fixed dimension in place, ordering elements with `less`."""

    def __init__(self):
        super().__init__("(Fixed * Scalar) -> void", "sort")

    def resolve(self, caller, data, cg, dst_tp, src_tp, kwds, tp_vars) -> BaseType:
        if len(src_tp) != 1 or not isinstance(src_tp[0], FixedDimType):
            raise self.no_overload(dst_tp, src_tp)
        element = src_tp[0].element_type

        def emit(kb, kernreq, data, dst_arrmeta, nsrc, src_arrmeta):
            md = FixedDimArrMeta.from_address(src_arrmeta[0])
            kb.emplace_back(SortKernel, kernreq, md.dim_size, md.stride, element.data_size)
            element_arrmeta = src_arrmeta[0] + FIXED_DIM_ARRMETA_SIZE
            kb(KernelRequest.SINGLE, data, 0, 2, [element_arrmeta, element_arrmeta])

        cg.emplace_back(emit)
        _COMPARISONS[ComparisonOp.LESS].resolve(self, data, cg, bool_, [element, element], kwds, tp_vars)
        return void


_sort_table = ElementDispatchCallable("(Fixed * Scalar) -> void", name="sort")
_sort_table.overload(None, [scalar_kind], SortCallable())
sort = elwise(_sort_table, res_ignore=True, name="sort")


# ============================================================
# Reductions
# ============================================================

def _fold(name: str, op: ElwiseCallable, identity=None) -> FirstArgDispatchCallable:
    table = FirstArgDispatchCallable(_ANY_UNARY, name=name)
    table.overload(None, [KindType(TypeId.FIXED_DIM_KIND)], reduction(op, name=name, identity=identity))
    table.overload(None, [scalar_kind], copy)
    return table


sum = _fold("sum", add, identity=0)
# An empty min or max has no value and leaves dst unchanged
min = _fold("min", minimum)
max = _fold("max", maximum)


__all__ = [
    "AssignCallable", "CopyCallable", "BinaryArithmeticCallable", "UnaryArithmeticCallable",
    "ComparisonCallable", "SortCallable",
    "assign", "copy", "add", "subtract", "multiply", "divide", "minimum", "maximum",
    "negative", "bitwise_not", "real", "imag", "abs",
    "less", "less_equal", "equal", "not_equal", "greater_equal", "greater",
    "string_find", "sort", "sum", "min", "max",
]
