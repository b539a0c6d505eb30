"""
Exception Hierarchy for the ndkit dynamic array engine.

This module defines the exception taxonomy for ndkit.
All exceptions inherit from NdkitError for consistent error handling.

Exception Hierarchy:
    NdkitError (base)
    ├── TypeConstructionError (illegal nested type shape)
    ├── TypeStringError (unparseable type spelling)
    ├── IndexingError (indexing failures)
    │   ├── IndexOutOfBoundsError (single index outside [-N, N))
    │   └── TooManyIndicesError (more indices than dimensions)
    ├── BroadcastError (shapes that cannot broadcast)
    ├── NoOverloadError (dispatch miss)
    ├── AllocationFailure (kernel buffer / memory block allocation)
    └── UnsupportedOperationError (operation deliberately not implemented)
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class NdkitError(Exception):
    """Base exception for all ndkit errors.

    Example:
        try:
            kb = add.instantiate(dst_tp, src_tp, ...)
        except NdkitError as e:
            print(f"ndkit error: {e}")
    """
    pass


# ============================================================
# Type Errors
# ============================================================

class TypeConstructionError(NdkitError, TypeError):
    """Raised when a type would be built with an illegal nested shape.

    Attributes:
        message: Error description
        type_name: Spelling of the type being constructed (if available)
        child: Spelling of the offending child type (if available)
    """
    def __init__(self, message: str, type_name: str = None, child: str = None):
        self.type_name = type_name
        self.child = child
        super().__init__(message)


class TypeStringError(NdkitError, ValueError):
    """Raised when a type string cannot be parsed.

    Attributes:
        message: Error description
        source: The full type string
        position: Character offset of the failure
    """
    def __init__(self, message: str, source: str = None, position: int = None):
        self.source = source
        self.position = position
        super().__init__(message)


# ============================================================
# Indexing Errors
# ============================================================

class IndexingError(NdkitError, IndexError):
    """Base error for indexing failures."""
    pass


class IndexOutOfBoundsError(IndexingError):
    """Single-index resolution failure.

    Attributes:
        index: The offending index
        dim_size: Size of the dimension being indexed
        axis: Position of the dimension in the shape
        shape: The full shape, when known
    """
    def __init__(self, index: int, dim_size: int, axis: int = 0,
                 shape: Optional[Sequence[int]] = None):
        self.index = index
        self.dim_size = dim_size
        self.axis = axis
        self.shape = tuple(shape) if shape is not None else None
        if self.shape is not None:
            message = f"index {index} is out of bounds for axis {axis} in shape {self.shape}"
        else:
            message = f"index {index} is out of bounds for dimension of size {dim_size}"
        super().__init__(message)


class TooManyIndicesError(IndexingError):
    """More indices were supplied than the type has dimensions.

    Attributes:
        nindices: Number of indices supplied
        ndim: Number of dimensions available
    """
    def __init__(self, nindices: int, ndim: int, type_name: str = None):
        self.nindices = nindices
        self.ndim = ndim
        self.type_name = type_name
        super().__init__(f"too many indices: {nindices} for type {type_name} with {ndim} dimensions")


class BroadcastError(NdkitError, ValueError):
    """Raised when operand shapes cannot be broadcast together.

    Attributes:
        shapes: The operand shapes that failed to broadcast
    """
    def __init__(self, message: str, shapes: Sequence[Any] = ()):
        self.shapes = tuple(shapes)
        super().__init__(message)


# ============================================================
# Dispatch Errors
# ============================================================

class NoOverloadError(NdkitError, TypeError):
    """Dispatch miss: no overload matches the attempted signature.

    Attributes:
        callable_name: Name of the dispatcher (if available)
        dst_type: Requested destination type (may be None)
        src_types: Source operand types
        key: The type-id key that was looked up
    """
    def __init__(self, callable_name: str = None, dst_type: Any = None,
                 src_types: Sequence[Any] = (), key: Sequence[int] = ()):
        self.callable_name = callable_name
        self.dst_type = dst_type
        self.src_types = tuple(src_types)
        self.key = tuple(key)
        srcs = ", ".join(str(tp) for tp in self.src_types)
        signature = f"({srcs}) -> {dst_type if dst_type is not None else '?'}"
        name = callable_name or "callable"
        super().__init__(f"no overload of {name} for signature {signature}")


# ============================================================
# Resource Errors
# ============================================================

class AllocationFailure(NdkitError, MemoryError):
    """Kernel buffer growth or memory block allocation failure.

    Attributes:
        requested: Number of bytes requested
        what: Which allocator failed
    """
    def __init__(self, requested: int, what: str = "kernel builder"):
        self.requested = requested
        self.what = what
        super().__init__(f"{what} failed to allocate {requested} bytes")


class UnsupportedOperationError(NdkitError, NotImplementedError):
    """A virtual operation invoked on a type or kernel that does not implement it.

    Attributes:
        operation: Name of the operation
        types: The types involved
    """
    def __init__(self, operation: str, types: Sequence[Any] = (), message: str = None):
        self.operation = operation
        self.types = tuple(types)
        if message is None:
            names = ", ".join(str(tp) for tp in self.types)
            message = f"{operation} is not supported for {names}" if names else f"{operation} is not supported"
        super().__init__(message)


# ============================================================
# __all__ exports
# ============================================================

__all__ = [
    "NdkitError",
    "TypeConstructionError",
    "TypeStringError",
    "IndexingError",
    "IndexOutOfBoundsError",
    "TooManyIndicesError",
    "BroadcastError",
    "NoOverloadError",
    "AllocationFailure",
    "UnsupportedOperationError",
]
