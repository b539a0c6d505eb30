"""
Tests for callables, dispatch and the callable combinators.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'python'))

import ctypes

import pytest

from ndkit import functions
from ndkit.array import array, empty
from ndkit.callable import CallableType, CallState, LeafCallable
from ndkit.dispatch import Dispatcher, FirstArgDispatchCallable, MultiDispatchCallable
from ndkit.errors import BroadcastError, NoOverloadError, UnsupportedOperationError
from ndkit.functional import compose, elwise, indirect, left_compound, reduction, right_compound
from ndkit.kernel_builder import BaseKernel
from ndkit.kernels.memory import read_i64, write_i64
from ndkit.type_registry import TypeId
from ndkit.types import float64, int16, int32, int64, ndt


class PositionKernel(BaseKernel):
    """Writes 10 * index[0] + index[1] from a state-tracking loop."""
    _fields_ = [("index", ctypes.c_uint64)]

    def single(self, dst, src):
        write_i64(dst, read_i64(self.index) * 10 + read_i64(self.index + 8))

    @classmethod
    def instantiate(cls, kb, kernreq, data, dst_tp, dst_arrmeta, src_tp, src_arrmeta, kwds=None):
        kb.emplace_back(cls, kernreq, data)


# ============================================================
# Signatures
# ============================================================

class TestCallableType:
    """Tests for callable signatures."""

    def test_parse(self):
        sig = CallableType.parse("(int32, 3 * float64) -> bool")
        assert sig.arg_types == (int32, ndt("3 * float64"))
        assert sig.return_type == ndt("bool")
        assert sig.nsrc == 2
        assert str(sig) == "(int32, 3 * float64) -> bool"

    def test_parse_nested(self):
        sig = CallableType.parse("((int32, int64), {x: int32}) -> void")
        assert sig.nsrc == 2

    def test_leaf_rejects_mismatch(self):
        leaf = LeafCallable("(int32) -> int32", name="only_int32")
        with pytest.raises(NoOverloadError):
            leaf.call(None, [float64]).resolve()


# ============================================================
# Dispatch
# ============================================================

class TestDispatcher:
    """Tests for type-id lookup with ancestor fallback."""

    def test_exact_then_ancestors(self):
        d = Dispatcher("t")
        d.insert([TypeId.INT32], "int32")
        d.insert([TypeId.INT_KIND], "int")
        d.insert([TypeId.SCALAR_KIND], "scalar")
        assert d.lookup([TypeId.INT32]) == "int32"
        assert d.lookup([TypeId.INT64]) == "int"
        assert d.lookup([TypeId.FLOAT64]) == "scalar"
        with pytest.raises(KeyError):
            d.lookup([TypeId.FIXED_DIM])

    def test_multi_key(self):
        d = Dispatcher("t")
        d.insert([TypeId.INT_KIND, TypeId.FLOAT_KIND], "int-float")
        d.insert([TypeId.SCALAR_KIND, TypeId.SCALAR_KIND], "scalars")
        assert d.lookup([TypeId.INT32, TypeId.FLOAT64]) == "int-float"
        assert d.lookup([TypeId.FLOAT64, TypeId.INT32]) == "scalars"
        assert len(d) == 2
        assert (TypeId.INT_KIND, TypeId.FLOAT_KIND) in d

    def test_no_cross_talk(self):
        """Overloads only serve their own keys."""
        table = FirstArgDispatchCallable("(Scalar) -> Scalar", name="describe")
        for_int32 = LeafCallable("(int32) -> int32", name="for_int32")
        for_float64 = LeafCallable("(float64) -> float64", name="for_float64")
        table.overload(None, [int32], for_int32)
        table.overload(None, [float64], for_float64)
        assert table.specialize(None, [int32]) is for_int32
        assert table.specialize(None, [float64]) is for_float64
        with pytest.raises(NoOverloadError) as exc_info:
            table.specialize(None, [int16])
        message = str(exc_info.value)
        assert "describe" in message
        assert "int16" in message
        assert exc_info.value.key == (TypeId.INT16,)

    def test_multi_dispatch_callable(self):
        table = MultiDispatchCallable("(Scalar, Scalar) -> Scalar", name="pick")
        leaf = LeafCallable("(Int, Int) -> int64", name="ints")
        table.overload(None, [ndt("Int"), ndt("Int")], leaf)
        assert table.specialize(None, [int32, int16]) is leaf
        with pytest.raises(NoOverloadError):
            table.specialize(None, [int32, float64])

    def test_extension_through_elwise(self):
        """Overloads added to an elementwise callable reach its table."""
        table = MultiDispatchCallable("(Scalar, Scalar) -> Scalar", name="combine")
        combine = elwise(table)
        leaf = LeafCallable("(Int, Int) -> int64", name="ints")
        combine.overload(None, [ndt("Int"), ndt("Int")], leaf)
        assert table.specialize(None, [int64, int64]) is leaf


# ============================================================
# Call lifecycle
# ============================================================

class TestCall:
    """Tests for the resolve / instantiate / invoke sequence."""

    def test_states(self):
        call = functions.add.call(None, ["int32", "int32"])
        assert call.state is CallState.UNRESOLVED
        assert call.resolve() == int32
        assert call.state is CallState.RESOLVING
        a = array(3, "int32")
        b = array(4, "int32")
        dst = empty("int32")
        kb = call.instantiate(dst.arrmeta, [a.arrmeta, b.arrmeta])
        assert call.state is CallState.RESOLVED
        call.invoke(kb, dst.data, [a.data, b.data])
        assert call.state is CallState.INVOKED
        assert dst.as_py() == 7
        kb.close()

    def test_resolve_twice(self):
        call = functions.add.call(None, ["int32", "int32"])
        call.resolve()
        with pytest.raises(RuntimeError):
            call.resolve()

    def test_invoke_before_instantiate(self):
        call = functions.add.call(None, ["int32", "int32"])
        call.resolve()
        with pytest.raises(RuntimeError):
            call.invoke(None, 0, [0, 0])

    def test_instantiate_resolves(self):
        call = functions.negative.call(None, ["int64"])
        a = array(5, "int64")
        dst = empty("int64")
        with call.instantiate(dst.arrmeta, [a.arrmeta]) as kb:
            call.invoke(kb, dst.data, [a.data])
        assert call.return_type == int64
        assert dst.as_py() == -5

    def test_failed_instantiate_resets_builder(self):
        p = array(1, "pointer<int32>")
        call = functions.less.call(None, [p.type, p.type])
        dst = empty("bool")
        with pytest.raises(UnsupportedOperationError):
            call.instantiate(dst.arrmeta, [p.arrmeta, p.arrmeta])
        assert call.state is CallState.RESOLVING


# ============================================================
# Elementwise
# ============================================================

class TestElwise:
    """Tests for elementwise broadcasting over dimensions."""

    def test_scalars(self):
        assert functions.add(array(2, "int32"), array(3, "int32")).as_py() == 5

    def test_fixed_broadcast(self):
        a = array([[1, 2, 3], [4, 5, 6]], "2 * 3 * int32")
        b = array([10, 20, 30], "3 * int32")
        r = functions.add(a, b)
        assert r.type == ndt("2 * 3 * int32")
        assert r.as_py() == [[11, 22, 33], [14, 25, 36]]

    def test_size_one_broadcast(self):
        a = array([[1], [2]], "2 * 1 * int32")
        b = array([10, 20, 30], "3 * int32")
        assert functions.add(a, b).as_py() == [[11, 21, 31], [12, 22, 32]]

    def test_scalar_broadcast_promotes(self):
        r = functions.add(array([1, 2, 3], "3 * int32"), 5)
        assert r.type == ndt("3 * int64")
        assert r.as_py() == [6, 7, 8]

    def test_into_given_destination(self):
        dst = empty("2 * 3 * float64")
        functions.multiply(array([1, 2, 3], "3 * int32"), array(2, "int32"), dst=dst)
        assert dst.as_py() == [[2.0, 4.0, 6.0], [2.0, 4.0, 6.0]]

    def test_strided_source(self):
        a = array([1, 2, 3, 4, 5, 6], "6 * int64")
        assert functions.negative(a[::2]).as_py() == [-1, -3, -5]
        assert functions.negative(a[::-3]).as_py() == [-6, -3]

    def test_incompatible_sizes(self):
        with pytest.raises(BroadcastError):
            functions.add(array([1, 2], "2 * int32"), array([1, 2, 3], "3 * int32"))

    def test_destination_too_small(self):
        with pytest.raises(BroadcastError):
            functions.add(array([[1, 2]], "1 * 2 * int32"), array(1, "int32"), dst=empty("2 * int32"))

    def test_var_with_scalar(self):
        a = array([[1, 2], [3]], "2 * var * int32")
        r = functions.add(a, array(10, "int32"))
        assert r.type == ndt("2 * var * int32")
        assert r.as_py() == [[11, 12], [13]]

    def test_var_size_one_broadcast(self):
        a = array([[1, 2], [3]], "2 * var * int32")
        b = array([[10], [20, 30]], "2 * var * int32")
        assert functions.add(a, b).as_py() == [[11, 12], [23, 33]]

    def test_var_with_fixed(self):
        a = array([[1, 2], [3, 4]], "2 * var * int32")
        b = array([100, 200], "2 * int32")
        assert functions.add(a, b).as_py() == [[101, 202], [103, 204]]

    def test_var_mismatch_at_run_time(self):
        a = array([[1, 2]], "1 * var * int32")
        b = array([[1, 2, 3]], "1 * var * int32")
        with pytest.raises(BroadcastError):
            functions.add(a, b)

    def test_state_tracks_index(self):
        position = elwise(LeafCallable("(int64) -> int64", PositionKernel, name="position"), state=True)
        src = array([[0, 0, 0], [0, 0, 0]], "2 * 3 * int64")
        assert position(src).as_py() == [[0, 1, 2], [10, 11, 12]]

    def test_operand_limit(self):
        eight = elwise(LeafCallable("(Any, Any, Any, Any, Any, Any, Any, Any) -> int32", name="eight"))
        with pytest.raises(UnsupportedOperationError):
            eight.call(None, [int32] * 8).resolve()


# ============================================================
# Compound, reduction, indirection, composition
# ============================================================

class TestCombinators:
    """Tests for the remaining combinators."""

    def test_left_compound(self):
        dst = array(10, "int64")
        left_compound(functions.subtract)(array(3, "int64"), dst=dst)
        assert dst.as_py() == 7

    def test_right_compound(self):
        dst = array(10, "int64")
        right_compound(functions.subtract)(array(3, "int64"), dst=dst)
        assert dst.as_py() == -7

    def test_left_fold(self):
        """Left folds walk backward from the last element."""
        r = reduction(functions.subtract, "left")
        assert r(array([10, 3, 2])).as_py() == -11

    def test_right_fold(self):
        r = reduction(functions.subtract, "right")
        assert r(array([10, 3, 2])).as_py() == 9

    def test_fold_single_and_empty(self):
        """Without an identity an empty fold leaves dst as supplied."""
        r = reduction(functions.add)
        assert r(array([4], "1 * int32")).as_py() == 4
        dst = array(5, "int32")
        r(array([], "0 * int32"), dst=dst)
        assert dst.as_py() == 5

    def test_fold_identity(self):
        r = reduction(functions.multiply, identity=1)
        assert r(array([2, 3, 4], "3 * int32")).as_py() == 24
        dst = array(5, "int32")
        r(array([], "0 * int32"), dst=dst)
        assert dst.as_py() == 1

    def test_fold_rows(self):
        r = reduction(functions.add)
        assert r(array([[1, 2], [3, 4], [5, 6]], "3 * 2 * int32")).as_py() == [9, 12]

    def test_fold_needs_fixed_dimension(self):
        with pytest.raises(UnsupportedOperationError):
            reduction(functions.add).call(None, [int32]).resolve()

    def test_bad_associativity(self):
        with pytest.raises(ValueError):
            reduction(functions.add, "middle")

    def test_indirect(self):
        p = array(5, "pointer<int32>")
        r = indirect(functions.add)(p, array(2, "int32"))
        assert r.type == int32
        assert r.as_py() == 7

    def test_compose(self):
        negate_sum = compose(functions.add, functions.negative, ndt("int32"))
        r = negate_sum(array(3, "int32"), array(4, "int32"))
        assert r.type == int32
        assert r.as_py() == -7

    def test_compose_converts_through_buffer(self):
        negate_as_float = compose(functions.copy, functions.negative, ndt("float64"))
        assert negate_as_float(array(3, "int32")).as_py() == -3.0
