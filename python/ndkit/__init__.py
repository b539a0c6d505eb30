"""
ndkit: dynamically typed N-dimensional arrays with relocatable kernels

Values carry a runtime type plus an arrmeta block describing their layout.
Operations are resolved against argument types into chains of kernel
records placed in a growable buffer:
- Types: builtins, strings, bytes, tuples and structs, pointers, fixed and var dimensions
- Indexing: IRange algebra applied to types, arrmeta and data
- Kernels: ctypes records with single and strided call modes
- Callables: leaf kernels, type-id dispatch and combinators (elwise, reduction, compose)
"""

__version__ = "0.1.0"

# ============================================================
# Errors and configuration
# ============================================================

from ndkit.errors import (
    NdkitError,
    TypeConstructionError,
    TypeStringError,
    IndexOutOfBoundsError,
    TooManyIndicesError,
    BroadcastError,
    NoOverloadError,
    AllocationFailure,
    UnsupportedOperationError,
)
from ndkit.config import EngineConfig, get_config, set_config

# ============================================================
# Types
# ============================================================

from ndkit.type_registry import TypeId, type_registry
from ndkit.types import (
    BaseType,
    BuiltinType,
    KindType,
    TypeKind,
    bool_,
    int8,
    int16,
    int32,
    int64,
    uint8,
    uint16,
    uint32,
    uint64,
    float16,
    float32,
    float64,
    complex_float32,
    complex_float64,
    void,
    any_type,
    make_type,
    ndt,
)
from ndkit.string_types import FixedBytesType, StringType, BytesType, string, bytes_
from ndkit.dim_types import FixedDimType, VarDimType, FixedDimKindType
from ndkit.tuple_types import TupleType, StructType
from ndkit.pointer_type import PointerType
from ndkit.expr_types import ConvertType
from ndkit.type_string import parse_type

# ============================================================
# Memory, arrmeta and indexing
# ============================================================

from ndkit.memblock import (
    MemoryBlock,
    FixedSizePodMemoryBlock,
    PodMemoryBlock,
    PooledMemoryBlock,
    ExternalMemoryBlock,
)
from ndkit.arrmeta import ArrMeta
from ndkit.irange import IRange, apply_single_index, apply_single_linear_index

# ============================================================
# Kernels and callables
# ============================================================

from ndkit.kernel_builder import KernelBuilder, KernelRequest, BaseKernel
from ndkit.callable import BaseCallable, LeafCallable, CallableType, Call, CallState
from ndkit.dispatch import (
    Dispatcher,
    UniformDispatchCallable,
    FirstArgDispatchCallable,
    ElementDispatchCallable,
    MultiDispatchCallable,
)
from ndkit.functional import elwise, left_compound, right_compound, reduction, indirect, compose

# ============================================================
# Arrays and predefined callables
# ============================================================

from ndkit.array import Array, array, asarray, empty
from ndkit import functions

__all__ = [
    # Errors and configuration
    "NdkitError", "TypeConstructionError", "TypeStringError", "IndexOutOfBoundsError",
    "TooManyIndicesError", "BroadcastError", "NoOverloadError", "AllocationFailure",
    "UnsupportedOperationError", "EngineConfig", "get_config", "set_config",
    # Types
    "TypeId", "type_registry", "BaseType", "BuiltinType", "KindType", "TypeKind",
    "bool_", "int8", "int16", "int32", "int64", "uint8", "uint16", "uint32", "uint64",
    "float16", "float32", "float64", "complex_float32", "complex_float64", "void", "any_type",
    "make_type", "ndt", "FixedBytesType", "StringType", "BytesType", "string", "bytes_",
    "FixedDimType", "VarDimType", "FixedDimKindType", "TupleType", "StructType",
    "PointerType", "ConvertType", "parse_type",
    # Memory, arrmeta and indexing
    "MemoryBlock", "FixedSizePodMemoryBlock", "PodMemoryBlock", "PooledMemoryBlock",
    "ExternalMemoryBlock", "ArrMeta", "IRange", "apply_single_index", "apply_single_linear_index",
    # Kernels and callables
    "KernelBuilder", "KernelRequest", "BaseKernel", "BaseCallable", "LeafCallable",
    "CallableType", "Call", "CallState", "Dispatcher", "UniformDispatchCallable",
    "FirstArgDispatchCallable", "ElementDispatchCallable", "MultiDispatchCallable",
    "elwise", "left_compound", "right_compound", "reduction", "indirect", "compose",
    # Arrays
    "Array", "array", "asarray", "empty", "functions",
]
