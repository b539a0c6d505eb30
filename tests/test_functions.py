"""
Tests for the predefined callables: assignment, arithmetic, comparison,
strings, sorting and folds.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'python'))

import pytest

from ndkit import functions
from ndkit.array import array, empty
from ndkit.errors import BroadcastError, NoOverloadError, UnsupportedOperationError
from ndkit.types import ndt


# ============================================================
# Assignment and copy
# ============================================================

class TestAssign:
    """Tests for assign and copy."""

    def test_converts(self):
        dst = empty("3 * float64")
        functions.assign(array([1, 2, 3], "3 * int32"), dst=dst)
        assert dst.as_py() == [1.0, 2.0, 3.0]

    def test_broadcasts_scalar(self):
        dst = empty("2 * 3 * int64")
        functions.assign(array(7, "int32"), dst=dst)
        assert dst.as_py() == [[7, 7, 7], [7, 7, 7]]

    def test_broadcasts_size_one(self):
        dst = empty("2 * 3 * int32")
        functions.assign(array([[1], [2]], "2 * 1 * int32"), dst=dst)
        assert dst.as_py() == [[1, 1, 1], [2, 2, 2]]

    def test_mismatched_sizes(self):
        with pytest.raises(BroadcastError):
            functions.assign(array([1, 2], "2 * int32"), dst=empty("3 * int32"))

    def test_var_dimension(self):
        dst = empty("2 * var * int64")
        functions.assign(array([[1, 2], [3]], "2 * var * int32"), dst=dst)
        assert dst.as_py() == [[1, 2], [3]]

    def test_needs_destination(self):
        with pytest.raises(NoOverloadError):
            functions.assign(array(1, "int32"))

    def test_copy_fixed(self):
        a = array([1, 2, 3], "3 * int32")
        b = functions.copy(a)
        assert b.type == a.type
        assert b.as_py() == [1, 2, 3]
        assert b.data != a.data

    def test_copy_string(self):
        b = functions.copy(array("hello"))
        assert b.type == ndt("string")
        assert b.as_py() == "hello"

    def test_copy_tuple(self):
        b = functions.copy(array((1, "one"), "(int32, string)"))
        assert b.as_py() == (1, "one")

    def test_copy_dereferences_pointer(self):
        b = functions.copy(array(5, "pointer<int32>"))
        assert b.type == ndt("int32")
        assert b.as_py() == 5

    def test_copy_converts(self):
        b = functions.copy(array(3, "convert<to=int64, from=int32>"))
        assert b.type == ndt("int64")
        assert b.as_py() == 3


# ============================================================
# Arithmetic
# ============================================================

class TestArithmetic:
    """Tests for binary and unary arithmetic."""

    def test_binary_ops(self):
        a = array([6, 8], "2 * int32")
        b = array([3, 2], "2 * int32")
        assert functions.add(a, b).as_py() == [9, 10]
        assert functions.subtract(a, b).as_py() == [3, 6]
        assert functions.multiply(a, b).as_py() == [18, 16]
        assert functions.divide(a, b).as_py() == [2, 4]
        assert functions.minimum(a, b).as_py() == [3, 2]
        assert functions.maximum(a, b).as_py() == [6, 8]

    def test_integer_division_truncates(self):
        r = functions.divide(array([7, -7], "2 * int64"), array(2, "int64"))
        assert r.as_py() == [3, -3]

    def test_float_division(self):
        r = functions.divide(array([1.0, 3.0]), array(2.0))
        assert r.type == ndt("2 * float64")
        assert r.as_py() == [0.5, 1.5]

    def test_promotion(self):
        r = functions.add(array(1, "int32"), array(1, "int64"))
        assert r.type == ndt("int64")
        r = functions.add(array(1, "int16"), array(0.5, "float64"))
        assert r.type == ndt("float64")
        assert r.as_py() == 1.5

    def test_strings_have_no_arithmetic(self):
        with pytest.raises(NoOverloadError):
            functions.add(array("a"), array("b"))

    def test_unary(self):
        a = array([1, -2, 3], "3 * int32")
        assert functions.negative(a).as_py() == [-1, 2, -3]
        assert functions.abs(a).as_py() == [1, 2, 3]
        assert functions.bitwise_not(array(0, "int8")).as_py() == -1

    def test_complex_parts(self):
        z = array(3 + 4j, "complex<float64>")
        assert functions.abs(z).type == ndt("float64")
        assert functions.abs(z).as_py() == 5.0
        assert functions.real(z).as_py() == 3.0
        assert functions.imag(z).as_py() == 4.0

    def test_bitwise_not_needs_integers(self):
        with pytest.raises(NoOverloadError):
            functions.bitwise_not(array(1.5))


# ============================================================
# Comparison
# ============================================================

class TestComparison:
    """Tests for comparisons producing bool."""

    def test_mixed_numeric(self):
        a = array([1, 2, 3], "3 * int32")
        b = array(2.0, "float64")
        assert functions.less(a, b).as_py() == [True, False, False]
        assert functions.less_equal(a, b).as_py() == [True, True, False]
        assert functions.equal(a, b).as_py() == [False, True, False]
        assert functions.not_equal(a, b).as_py() == [True, False, True]
        assert functions.greater_equal(a, b).as_py() == [False, True, True]
        assert functions.greater(a, b).as_py() == [False, False, True]
        assert functions.less(a, b).type == ndt("3 * bool")

    def test_strings(self):
        words = array(["apple", "pear"], "2 * string")
        pear = array("pear")
        assert functions.equal(words, pear).as_py() == [False, True]
        assert functions.less(words, pear).as_py() == [True, False]

    def test_tuple_equality(self):
        a = array((1, "x"), "(int32, string)")
        b = array((1, "x"), "(int32, string)")
        c = array((1, "y"), "(int32, string)")
        assert functions.equal(a, b).as_py() is True
        assert functions.equal(a, c).as_py() is False
        assert functions.not_equal(a, c).as_py() is True

    def test_tuple_ordering(self):
        """The first differing field decides."""
        a = array((1, 9), "(int32, int32)")
        b = array((2, 0), "(int32, int32)")
        assert functions.less(a, b).as_py() is True
        assert functions.greater(a, b).as_py() is False
        assert functions.greater(b, a).as_py() is True
        assert functions.less_equal(a, a).as_py() is True
        assert functions.less(a, a).as_py() is False
        assert functions.greater_equal(a, a).as_py() is True

    def test_pointers_do_not_compare(self):
        p = array(1, "pointer<int32>")
        with pytest.raises(UnsupportedOperationError):
            functions.less(p, p)


# ============================================================
# Strings and sorting
# ============================================================

class TestStringFind:
    """Tests for string_find."""

    def test_find(self):
        r = functions.string_find(array(["hello", "world", "xyz"], "3 * string"), array("o"))
        assert r.type == ndt("3 * int64")
        assert r.as_py() == [4, 1, -1]

    def test_code_point_index(self):
        assert functions.string_find(array("naïve café"), array("café")).as_py() == 6

    def test_per_element_needles(self):
        r = functions.string_find(array(["abc", "abc"], "2 * string"), array(["c", "a"], "2 * string"))
        assert r.as_py() == [2, 0]


class TestSort:
    """Tests for in-place sorting."""

    def test_sort(self):
        a = array([3, 1, 2], "3 * int32")
        assert functions.sort(a) is None
        assert a.as_py() == [1, 2, 3]

    def test_sort_rows(self):
        a = array([[3, 1, 2], [9, 8, 7]], "2 * 3 * float64")
        functions.sort(a)
        assert a.as_py() == [[1.0, 2.0, 3.0], [7.0, 8.0, 9.0]]

    def test_sort_strings(self):
        a = array(["pear", "apple", "fig"], "3 * string")
        functions.sort(a)
        assert a.as_py() == ["apple", "fig", "pear"]

    def test_sort_strided_view(self):
        a = array([5, 0, 4, 0, 3, 0], "6 * int64")
        functions.sort(a[::2])
        assert a.as_py() == [3, 0, 4, 0, 5, 0]


# ============================================================
# Folds
# ============================================================

class TestFolds:
    """Tests for sum, min and max."""

    def test_sum(self):
        assert functions.sum(array([1, 2, 3, 4])).as_py() == 10

    def test_min_max(self):
        a = array([4, -1, 7], "3 * int32")
        assert functions.min(a).as_py() == -1
        assert functions.max(a).as_py() == 7

    def test_sum_rows(self):
        r = functions.sum(array([[1, 2], [3, 4]], "2 * 2 * int64"))
        assert r.type == ndt("2 * int64")
        assert r.as_py() == [4, 6]

    def test_sum_scalar_copies(self):
        a = array(5, "int32")
        r = functions.sum(a)
        assert r.as_py() == 5
        assert r.data != a.data

    def test_sum_into_wider_destination(self):
        dst = empty("float64")
        functions.sum(array([1, 2], "2 * int32"), dst=dst)
        assert dst.as_py() == 3.0

    def test_empty_sum_writes_zero(self):
        dst = array(7, "int64")
        functions.sum(array([], "0 * int32"), dst=dst)
        assert dst.as_py() == 0

    def test_empty_sum_of_rows(self):
        dst = array([1.5, 2.5], "2 * float64")
        functions.sum(empty("0 * 2 * float64"), dst=dst)
        assert dst.as_py() == [0.0, 0.0]

    def test_empty_max_leaves_destination(self):
        dst = array(3, "int32")
        functions.max(array([], "0 * int32"), dst=dst)
        assert dst.as_py() == 3
