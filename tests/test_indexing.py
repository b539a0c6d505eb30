"""
Tests for index ranges, shape utilities and array indexing.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'python'))

import pytest

from ndkit.array import array
from ndkit.arrmeta import ArrMeta
from ndkit.errors import BroadcastError, IndexOutOfBoundsError, TooManyIndicesError, UnsupportedOperationError
from ndkit.irange import INTPTR_MAX, INTPTR_MIN, IRange, apply_single_index, apply_single_linear_index
from ndkit.shape_tools import (
    VAR_SIZE,
    axis_perm_to_strides,
    broadcast_shapes,
    broadcast_to_shape,
    c_strides,
    is_valid_perm,
    shape_can_broadcast,
    strides_are_c_contiguous,
    strides_are_f_contiguous,
    strides_to_axis_perm,
)
from ndkit.types import ndt


def _progression(r, n):
    resolved = apply_single_linear_index(r, n)
    return [resolved.start + k * resolved.index_stride for k in range(resolved.dimension_size)]


# ============================================================
# IRange construction
# ============================================================

class TestIRange:
    """Tests for IRange construction."""

    def test_defaults(self):
        r = IRange()
        assert (r.start, r.finish, r.step) == (INTPTR_MIN, INTPTR_MAX, 1)
        assert r.is_nop()

    def test_index(self):
        r = IRange.index(4)
        assert (r.start, r.finish, r.step) == (4, 4, 0)
        assert not r.is_nop()

    def test_fluent(self):
        assert (IRange() < 10) == IRange(INTPTR_MIN, 10, 1)
        assert (IRange().starting_at(2) < 10) == IRange(2, 10, 1)
        assert (IRange().after(1) < 5) == IRange(2, 5, 1)
        assert ((IRange() / 2).starting_at(3) < 10) == IRange(3, 10, 2)

    def test_from_key(self):
        assert IRange.from_key(3) == IRange.index(3)
        assert IRange.from_key(slice(1, None, 2)) == IRange(1, INTPTR_MAX, 2)
        assert IRange.from_key(slice(None)).is_nop()

    def test_from_key_rejects(self):
        with pytest.raises(ValueError):
            IRange.from_key(slice(None, None, 0))
        with pytest.raises(TypeError):
            IRange.from_key("a")


# ============================================================
# Resolution against a dimension
# ============================================================

class TestApplyIndex:
    """Tests for resolving indices against dimension sizes."""

    def test_single_index(self):
        assert apply_single_index(2, 5) == 2
        assert apply_single_index(-1, 5) == 4
        assert apply_single_index(-5, 5) == 0

    @pytest.mark.parametrize("i", [5, -6, 100])
    def test_single_index_out_of_bounds(self, i):
        with pytest.raises(IndexOutOfBoundsError) as exc_info:
            apply_single_index(i, 5, 1, (3, 5))
        assert exc_info.value.index == i
        assert exc_info.value.dim_size == 5
        assert exc_info.value.shape == (3, 5)

    def test_out_of_bounds_is_index_error(self):
        with pytest.raises(IndexError):
            apply_single_index(7, 3)

    def test_single_removes_dimension(self):
        r = apply_single_linear_index(IRange.index(-2), 10)
        assert r.remove_dimension
        assert r.start == 8
        assert r.dimension_size == 1

    def test_strided_range(self):
        r = apply_single_linear_index(IRange(1, 8, 3), 10)
        assert not r.remove_dimension
        assert (r.start, r.index_stride, r.dimension_size) == (1, 3, 3)

    @pytest.mark.parametrize("key, expected", [
        (slice(None), [0, 1, 2, 3, 4]),
        (slice(1, 4), [1, 2, 3]),
        (slice(-2, None), [3, 4]),
        (slice(None, -3), [0, 1]),
        (slice(None, None, 2), [0, 2, 4]),
        (slice(None, None, -1), [4, 3, 2, 1, 0]),
        (slice(None, None, -2), [4, 2, 0]),
        (slice(3, 0, -1), [3, 2, 1]),
        (slice(10, 2, -1), [4, 3]),
        (slice(2, 100), [2, 3, 4]),
        (slice(4, 1), []),
        (slice(-100, 2), [0, 1]),
    ])
    def test_matches_python_slices(self, key, expected):
        """Range progressions agree with Python list slicing."""
        assert _progression(IRange.from_key(key), 5) == expected
        assert list(range(5))[key] == expected

    def test_empty_range(self):
        r = apply_single_linear_index(IRange(3, 3, 1), 5)
        assert r.dimension_size == 0
        assert not r.remove_dimension


# ============================================================
# Shape utilities
# ============================================================

class TestShapeTools:
    """Tests for broadcasting and stride helpers."""

    def test_can_broadcast(self):
        assert shape_can_broadcast((2, 3), (3,))
        assert shape_can_broadcast((2, 3), (1, 3))
        assert shape_can_broadcast((2, VAR_SIZE), (2, 4))
        assert not shape_can_broadcast((2, 3), (2,))
        assert not shape_can_broadcast((3,), (2, 3))

    def test_broadcast_to_shape(self):
        assert broadcast_to_shape((4, 2, 3), (1, 3), (12, 4)) == [0, 0, 4]
        with pytest.raises(BroadcastError):
            broadcast_to_shape((2, 3), (2,), (4,))

    def test_broadcast_shapes(self):
        assert broadcast_shapes((2, 1), (3,)) == (2, 3)
        assert broadcast_shapes((1,), (VAR_SIZE,)) == (VAR_SIZE,)
        assert broadcast_shapes((VAR_SIZE,), (4,)) == (4,)
        with pytest.raises(BroadcastError):
            broadcast_shapes((2,), (3,))

    def test_strides(self):
        assert c_strides((2, 3, 4), 8) == [96, 32, 8]
        assert strides_are_c_contiguous(8, (2, 3), (24, 8))
        assert not strides_are_c_contiguous(8, (2, 3), (8, 16))
        assert strides_are_f_contiguous(8, (2, 3), (8, 16))

    def test_axis_perm(self):
        assert is_valid_perm([2, 0, 1])
        assert not is_valid_perm([0, 0, 1])
        assert strides_to_axis_perm([96, 32, 8]) == [2, 1, 0]
        assert axis_perm_to_strides((2, 3, 4), [2, 1, 0], 8) == [96, 32, 8]
        assert axis_perm_to_strides((2, 3, 4), [0, 1, 2], 8) == [8, 16, 48]
        with pytest.raises(ValueError):
            axis_perm_to_strides((2, 3), [0, 0], 8)


# ============================================================
# Array indexing
# ============================================================

class TestArrayIndexing:
    """Tests for indexing arrays, which shares data with the source."""

    def test_single_index(self):
        a = array([[1, 2, 3], [4, 5, 6]], "2 * 3 * int32")
        row = a[1]
        assert row.type == ndt("3 * int32")
        assert row.as_py() == [4, 5, 6]
        assert a[1, 2].as_py() == 6
        assert a[-1, -3].as_py() == 4

    def test_slice_columns(self):
        a = array([[1, 2, 3], [4, 5, 6]], "2 * 3 * int32")
        b = a[:, 1:]
        assert b.shape == (2, 2)
        assert b.as_py() == [[2, 3], [5, 6]]

    def test_reverse(self):
        a = array([1, 2, 3, 4], "4 * int64")
        r = a[::-1]
        assert r.as_py() == [4, 3, 2, 1]
        assert r.to_numpy().tolist() == [4, 3, 2, 1]
        assert r[::2].as_py() == [4, 2]

    def test_view_shares_data(self):
        a = array([1, 2, 3], "3 * int32")
        b = a[1:]
        a2 = a.view()
        assert b.data == a.data + 4
        assert a2.data == a.data

    def test_out_of_bounds(self):
        a = array([[1, 2, 3], [4, 5, 6]], "2 * 3 * int32")
        with pytest.raises(IndexOutOfBoundsError):
            a[2]
        with pytest.raises(IndexOutOfBoundsError):
            a[0, 3]

    def test_too_many_indices(self):
        a = array([1, 2], "2 * int32")
        with pytest.raises(TooManyIndicesError):
            a[0, 0]

    def test_var_leading_index(self):
        a = array([[1, 2], [3]], "2 * var * int32")
        assert a[0].as_py() == [1, 2]
        assert a[1, 0].as_py() == 3
        assert a[0, -1].as_py() == 2

    def test_var_nop_range(self):
        a = array([1, 2, 3], "var * int32")
        assert a[:].as_py() == [1, 2, 3]

    def test_var_strided_range_unsupported(self):
        a = array([1, 2, 3], "var * int32")
        with pytest.raises(UnsupportedOperationError):
            a[::2]

    def test_tuple_field(self):
        a = array((7, "seven"), "(int32, string)")
        assert a[0].as_py() == 7
        assert a[1].as_py() == "seven"
        assert a[1:].as_py() == ("seven",)

    def test_pointer_dereference(self):
        p = array(5, "pointer<int32>")
        assert p[()].type == ndt("int32")
        assert p[()].as_py() == 5
        assert p.as_py() == 5

    def test_pointer_element_needs_data(self):
        """Indexing through a leading pointer without data cannot dereference it."""
        tp = ndt("2 * pointer<int32>")
        indices = [IRange.index(1)]
        result_tp = tp.apply_linear_index(indices, 0, tp, True)
        assert result_tp == ndt("int32")
        meta = ArrMeta(tp).default_construct()
        out = ArrMeta(result_tp)
        with pytest.raises(UnsupportedOperationError):
            tp.apply_linear_index_data(indices, meta.address, result_tp, out.address, 0, 0, tp, True, None)

    def test_pointer_element_with_data(self):
        a = array([5, 6], "2 * pointer<int32>")
        assert a[1].type == ndt("int32")
        assert a[1].as_py() == 6


# ============================================================
# Ragged construction
# ============================================================

class TestRaggedArrays:
    """Tests for building var dimensions from nested lists of uneven length."""

    def test_fixed_over_var(self):
        a = array([[1, 2], [3]], "2 * var * int32")
        assert a.type == ndt("2 * var * int32")
        assert a.as_py() == [[1, 2], [3]]
        assert a.shape == (2, -1)
        assert a[0].shape == (2,)
        assert a[1].shape == (1,)
        assert a[1, 0].as_py() == 3

    def test_var_over_var(self):
        a = array([[1, 2, 3], [4]], "var * var * int32")
        assert a.shape[0] == 2
        assert a[0].type == ndt("var * int32")
        assert a[0].as_py() == [1, 2, 3]
        assert a[1].as_py() == [4]

    def test_leading_var(self):
        a = array([7, 8, 9], "var * int64")
        assert a.shape == (3,)
        assert a[0].as_py() == 7

    def test_empty_row(self):
        a = array([[], [1]], "2 * var * float64")
        assert a.as_py() == [[], [1.0]]

    def test_ragged_into_fixed_is_rejected(self):
        with pytest.raises(BroadcastError):
            array([[1, 2], [3]], "2 * 2 * int32")
