"""
Tests for the type system: registry, builtins, dimensions, tuples, pointers
and the type-string parser.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'python'))

import pytest

from ndkit.errors import TooManyIndicesError, TypeConstructionError, TypeStringError
from ndkit.irange import IRange
from ndkit.type_registry import TypeId, _build_registry, type_registry
from ndkit.types import BUILTIN_TYPES, BuiltinType, KindType, any_type, int32, int64, float64, void, ndt
from ndkit.types import int128, matches, scalar_kind
from ndkit.dim_types import FixedDimType, FixedDimKindType, VarDimType, dim_depth, make_fixed_dim
from ndkit.string_types import FixedBytesType, string
from ndkit.tuple_types import StructType, TupleType
from ndkit.pointer_type import PointerType
from ndkit.expr_types import ConvertType
from ndkit.type_string import parse_type


# ============================================================
# Type registry
# ============================================================

class TestTypeRegistry:
    """Tests for the type-id lattice."""

    def test_builtin_ancestry(self):
        """int32 descends through Int and Scalar to Any."""
        assert type_registry.base_ids(TypeId.INT32) == (
            TypeId.INT_KIND, TypeId.SCALAR_KIND, TypeId.ANY_KIND)
        assert type_registry.is_a(TypeId.INT32, TypeId.SCALAR_KIND)
        assert type_registry.is_a(TypeId.INT32, TypeId.INT32)
        assert not type_registry.is_a(TypeId.INT32, TypeId.FLOAT_KIND)

    def test_dimension_ancestry(self):
        """Fixed dimensions descend from the dimension kinds."""
        assert type_registry.is_a(TypeId.FIXED_DIM, TypeId.FIXED_DIM_KIND)
        assert type_registry.is_a(TypeId.FIXED_DIM, TypeId.DIM_KIND)
        assert type_registry.is_a(TypeId.FIXED_DIM, TypeId.ANY_KIND)
        assert not type_registry.is_a(TypeId.FIXED_DIM, TypeId.SCALAR_KIND)

    def test_string_is_scalar(self):
        assert type_registry.is_a(TypeId.STRING, TypeId.STRING_KIND)
        assert type_registry.is_a(TypeId.STRING, TypeId.SCALAR_KIND)

    def test_new_id_extends_chain(self):
        """A new id inherits its parent's chain, nearest first."""
        new = type_registry.new_id(TypeId.INT_KIND, "my_int")
        assert new >= len(TypeId)
        assert type_registry.base_ids(new) == (
            TypeId.INT_KIND, TypeId.SCALAR_KIND, TypeId.ANY_KIND)
        assert type_registry.name(new) == "my_int"
        assert type_registry.is_a(new, TypeId.SCALAR_KIND)

    def test_unknown_id(self):
        with pytest.raises(IndexError):
            type_registry.base_ids(10 ** 6)

    def test_builtin_order_checked(self):
        """A built-in table out of id order is rejected at build time."""
        with pytest.raises(TypeConstructionError):
            _build_registry([(TypeId.UNINITIALIZED, None), (TypeId.SCALAR_KIND, None)])
        assert len(_build_registry()) == len(TypeId)



# ============================================================
# Builtin types
# ============================================================

class TestBuiltinTypes:
    """Tests for builtin scalar types."""

    def test_singletons(self):
        assert BuiltinType.get(TypeId.INT32) is int32
        assert ndt("int32") is int32

    def test_sizes(self):
        assert int32.data_size == 4
        assert int32.itemsize == 4
        assert ndt("complex<float32>").data_size == 8
        assert ndt("complex<float32>").data_alignment == 4
        assert void.data_size == 0

    @pytest.mark.parametrize("tp", BUILTIN_TYPES, ids=str)
    def test_string_round_trip(self, tp):
        """Every builtin parses back from its spelling."""
        assert parse_type(str(tp)) == tp

    def test_dtypes(self):
        assert int64.dtype.itemsize == 8
        assert float64.dtype.kind == "f"
        assert int128.dtype is None

    def test_scalar_queries(self):
        assert int32.is_builtin
        assert int32.is_scalar
        assert not int32.is_symbolic
        assert int32.get_canonical_type() is int32
        assert int32.value_type is int32

    def test_indexing_scalar_fails(self):
        with pytest.raises(TooManyIndicesError):
            int32.apply_linear_index([IRange.index(0)], 0, int32, True)


class TestKindTypes:
    """Tests for kind patterns."""

    def test_matching(self):
        int_kind = KindType(TypeId.INT_KIND)
        assert matches(int_kind, int32)
        assert not matches(int_kind, float64)
        assert matches(scalar_kind, string)
        assert matches(any_type, ndt("3 * int32"))
        assert not matches(scalar_kind, ndt("3 * int32"))

    def test_symbolic(self):
        assert any_type.is_symbolic
        assert str(ndt("Int")) == "Int"

    def test_fixed_kind_pattern(self):
        pattern = FixedDimKindType(scalar_kind)
        assert str(pattern) == "Fixed * Scalar"
        assert matches(pattern, ndt("4 * float64"))
        assert not matches(pattern, ndt("var * float64"))


# ============================================================
# Dimension types
# ============================================================

class TestDimTypes:
    """Tests for fixed and var dimensions."""

    def test_fixed_layout(self):
        tp = ndt("2 * 3 * int32")
        assert isinstance(tp, FixedDimType)
        assert str(tp) == "2 * 3 * int32"
        assert tp.dim_size == 2
        assert tp.ndim == 2
        assert tp.get_shape() == (2, 3)
        assert tp.data_size == 24
        assert dim_depth(tp) == 2

    def test_make_fixed_dim(self):
        assert make_fixed_dim((2, 3), int32) == ndt("2 * 3 * int32")

    def test_var(self):
        tp = ndt("var * int32")
        assert isinstance(tp, VarDimType)
        assert str(tp) == "var * int32"
        assert tp.element_type is int32

    def test_index_removes_dimension(self):
        tp = ndt("2 * 3 * int32")
        assert tp.apply_linear_index([IRange.index(1)], 0, tp, True) == ndt("3 * int32")
        assert tp.apply_linear_index([IRange.index(1), IRange.index(2)], 0, tp, True) == int32

    def test_range_keeps_dimension(self):
        tp = ndt("10 * int32")
        assert tp.apply_linear_index([IRange(1, 8, 3)], 0, tp, True) == ndt("3 * int32")

    def test_too_many_indices(self):
        tp = ndt("3 * int32")
        with pytest.raises(TooManyIndicesError):
            tp.apply_linear_index([IRange.index(0), IRange.index(0)], 0, tp, True)

    def test_type_at_dimension(self):
        tp = ndt("2 * 3 * int32")
        assert tp.get_type_at_dimension(1) == ndt("3 * int32")
        assert tp.get_type_at_dimension(2) is int32


# ============================================================
# Tuples, structs, bytes
# ============================================================

class TestTupleTypes:
    """Tests for tuple and struct layout."""

    def test_tuple_layout(self):
        tp = TupleType([ndt("int8"), int32, ndt("int16")])
        assert tp.default_data_offsets == (0, 4, 8)
        assert tp.data_alignment == 4
        assert tp.data_size == 12
        assert str(tp) == "(int8, int32, int16)"

    def test_struct_names(self):
        tp = ndt("{x: int32, y: float64}")
        assert isinstance(tp, StructType)
        assert tp.field_names == ("x", "y")
        assert tp.field_index("y") == 1
        assert str(tp) == "{x: int32, y: float64}"

    def test_struct_duplicate_names(self):
        with pytest.raises(TypeConstructionError):
            StructType(["a", "a"], [int32, int32])

    def test_struct_name_count(self):
        with pytest.raises(TypeConstructionError):
            StructType(["a"], [int32, int32])

    def test_tuple_field_index(self):
        tp = ndt("(int32, string)")
        assert tp.apply_linear_index([IRange.index(1)], 0, tp, True) == string

    def test_fixed_bytes(self):
        tp = ndt("bytes<4, 2>")
        assert isinstance(tp, FixedBytesType)
        assert tp.data_size == 4
        assert tp.data_alignment == 2


# ============================================================
# Pointer and convert types
# ============================================================

class TestPointerType:
    """Tests for pointer<T>."""

    def test_pointer_to_int32(self):
        tp = ndt("pointer<int32>")
        assert isinstance(tp, PointerType)
        assert tp.data_size == 8
        assert tp.target_type is int32
        assert tp.get_canonical_type() is int32
        assert tp.value_type is int32
        assert str(tp) == "pointer<int32>"

    def test_leading_pointer_is_dereferenced(self):
        tp = ndt("pointer<int32>")
        assert tp.apply_linear_index([], 0, tp, True) == int32

    def test_pointer_to_expression_rejected(self):
        with pytest.raises(TypeConstructionError):
            PointerType(ConvertType(int64, int32))

    def test_convert(self):
        tp = ndt("convert<to=int64, from=int32>")
        assert isinstance(tp, ConvertType)
        assert tp.value_type is int64
        assert tp.operand_type is int32
        assert tp.data_size == 4
        assert tp.get_canonical_type() is int64


# ============================================================
# Type strings
# ============================================================

class TestTypeString:
    """Tests for the type-string parser."""

    @pytest.mark.parametrize("source", [
        "3 * int32",
        "var * 2 * float64",
        "(int32, string)",
        "{x: int32}",
        "pointer<int32>",
        "complex<float64>",
        "string",
    ])
    def test_round_trip(self, source):
        assert str(parse_type(source)) == source

    def test_whitespace(self):
        assert parse_type("  3 *   int32 ") == ndt("3 * int32")

    @pytest.mark.parametrize("source", ["", "3 *", "int33", "(int32", "pointer<int32"])
    def test_invalid(self, source):
        with pytest.raises(TypeStringError):
            parse_type(source)

    def test_error_position(self):
        with pytest.raises(TypeStringError) as exc_info:
            parse_type("3 * int33")
        assert exc_info.value.source == "3 * int33"
        assert exc_info.value.position is not None
