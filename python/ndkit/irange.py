"""
Index ranges for ndkit.

An IRange is either a single index (step == 0, removes the dimension it
indexes) or the arithmetic progression {start, start + step, ...} bounded by
finish: below it for a positive step, above it for a negative step.

Constructors do no bounds checking; resolving a range against a concrete
dimension size is done by apply_single_linear_index().

Fluent construction:
    IRange()                         # the full range
    IRange() < 10                    # [0, 10)
    IRange().starting_at(2) < 10     # [2, 10)
    IRange().after(1) < 5            # [2, 5)
    (IRange() / 2).starting_at(3) < 10   # {3, 5, 7, 9}
    IRange().before(10) / -1 > 2     # {9, 8, ..., 3}
"""

from __future__ import annotations
from typing import NamedTuple, Optional, Sequence, Union

from ndkit.errors import IndexOutOfBoundsError

INTPTR_MIN = -(1 << 63)
INTPTR_MAX = (1 << 63) - 1


class IRange:
    """A single index or a strided range of indices."""
    __slots__ = ("start", "finish", "step")

    def __init__(self, start: int = INTPTR_MIN, finish: int = INTPTR_MAX, step: int = 1):
        self.start = start
        self.finish = finish
        self.step = step

    @classmethod
    def index(cls, i: int) -> "IRange":
        return cls(i, i, 0)

    @classmethod
    def from_key(cls, key: Union[int, slice, "IRange"]) -> "IRange":
        """Convert a Python subscript element into an IRange."""
        if isinstance(key, IRange):
            return key
        if isinstance(key, slice):
            step = 1 if key.step is None else int(key.step)
            if step == 0:
                raise ValueError("slice step cannot be zero")
            start = INTPTR_MIN if key.start is None else int(key.start)
            finish = INTPTR_MAX if key.stop is None else int(key.stop)
            return cls(start, finish, step)
        if hasattr(key, "__index__"):
            return cls.index(key.__index__())
        raise TypeError(f"cannot index with {type(key).__name__}")

    def is_nop(self) -> bool:
        """True for the full range with unit step."""
        return self.start == INTPTR_MIN and self.finish == INTPTR_MAX and self.step == 1

    # ------------------------------------------------------------------
    # Fluent construction
    # ------------------------------------------------------------------

    def __truediv__(self, step: int) -> "IRange":
        # "by"
        return IRange(self.start, self.finish, step)

    def __lt__(self, finish: int) -> "IRange":
        return IRange(self.start, finish, self.step)

    def __le__(self, last: int) -> "IRange":
        return IRange(self.start, last + 1 if last != -1 else INTPTR_MAX, self.step)

    def __gt__(self, finish: int) -> "IRange":
        return IRange(self.start, finish, self.step)

    def __ge__(self, last: int) -> "IRange":
        return IRange(self.start, last - 1 if last != 0 else INTPTR_MAX, self.step)

    def starting_at(self, start: int) -> "IRange":
        return IRange(start, self.finish, self.step)

    def after(self, start_minus_one: int) -> "IRange":
        return IRange(start_minus_one + 1, self.finish, self.step)

    def before(self, start_plus_one: int) -> "IRange":
        return IRange(start_plus_one - 1, self.finish, self.step)

    def __eq__(self, other) -> bool:
        if not isinstance(other, IRange):
            return NotImplemented
        return (self.start, self.finish, self.step) == (other.start, other.finish, other.step)

    def __hash__(self) -> int:
        return hash((self.start, self.finish, self.step))

    def __repr__(self) -> str:
        if self.step == 0:
            return f"IRange.index({self.start})"
        start = "MIN" if self.start == INTPTR_MIN else self.start
        finish = "MAX" if self.finish == INTPTR_MAX else self.finish
        return f"IRange({start}, {finish}, {self.step})"


class ResolvedIndex(NamedTuple):
    """An IRange resolved against a dimension."""
    remove_dimension: bool
    start: int
    index_stride: int
    dimension_size: int


def apply_single_index(i: int, dim_size: int, axis: int = 0,
                       shape: Optional[Sequence[int]] = None) -> int:
    """Normalize a single index into [0, dim_size).

    Raises:
        IndexOutOfBoundsError: If i is outside [-dim_size, dim_size)
    """
    if 0 <= i < dim_size:
        return i
    if -dim_size <= i < 0:
        return i + dim_size
    raise IndexOutOfBoundsError(i, dim_size, axis, shape)


def apply_single_linear_index(r: IRange, dim_size: int, axis: int = 0,
                              shape: Optional[Sequence[int]] = None) -> ResolvedIndex:
    """Resolve an IRange against a dimension of size dim_size.

    Single indices normalize and remove the dimension. Ranges wrap negative
    bounds by dim_size, treat the sentinels as "from the start" and "to the
    end" in the direction of the step, and clip to the dimension.

    Example:
        apply_single_linear_index(IRange(1, 8, 3), 10)
        # ResolvedIndex(remove_dimension=False, start=1, index_stride=3, dimension_size=3)
    """
    step = r.step
    if step == 0:
        return ResolvedIndex(True, apply_single_index(r.start, dim_size, axis, shape), 1, 1)

    if step > 0:
        start = 0 if r.start == INTPTR_MIN else r.start
        if start >= 0:
            start = min(start, dim_size)
        elif start >= -dim_size:
            start += dim_size
        else:
            start = 0

        end = r.finish
        if end >= 0:
            end = min(end, dim_size)
        elif end >= -dim_size:
            end += dim_size
        else:
            end = 0

        size = end - start
        if size <= 0:
            return ResolvedIndex(False, 0, 0, 0)
        return ResolvedIndex(False, start, step, (size + step - 1) // step)

    start = r.start
    if start == INTPTR_MIN or start >= dim_size:
        start = dim_size - 1
    elif start < 0:
        start = start + dim_size if start >= -dim_size else -1

    end = r.finish
    if end == INTPTR_MAX:
        end = -1
    elif end >= 0:
        end = min(end, dim_size - 1)
    elif end >= -dim_size:
        end += dim_size
    else:
        end = -1

    size = start - end
    if size <= 0:
        return ResolvedIndex(False, 0, 0, 0)
    return ResolvedIndex(False, start, step, (size - step - 1) // (-step))


__all__ = [
    "INTPTR_MIN", "INTPTR_MAX", "IRange", "ResolvedIndex",
    "apply_single_index", "apply_single_linear_index",
]
