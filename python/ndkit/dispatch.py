"""
Type-id dispatch for ndkit.

A Dispatcher maps tuples of type ids to values. Lookup tries the exact key
first, then every combination of ancestor ids (see TypeRegistry.base_ids),
most specific first, so a table holding a kind-level key such as
(INT_KIND,) serves every integer type not registered individually.

Dispatch callables forward resolution to the overload selected by a key
derived from the call's types:

    UniformDispatchCallable    (dst.id,)
    FirstArgDispatchCallable   (src[0].id,)
    ElementDispatchCallable    (id of the scalar type inside src[0],)
    MultiDispatchCallable      (src[0].id, src[1].id, ...)

Example:
    add = MultiDispatchCallable("(Scalar, Scalar) -> Scalar", name="add")
    add.overload(None, [int32, int32], add_int32)
    add.specialize(None, [int32, int32])       # add_int32
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, Iterator, Optional, Sequence, Tuple
import itertools

from ndkit.callable import BaseCallable
from ndkit.dim_types import dim_depth
from ndkit.errors import NoOverloadError
from ndkit.type_registry import type_registry
from ndkit.types import BaseType


class Dispatcher:
    """Mapping from type-id tuples to values with ancestor fallback."""

    def __init__(self, name: Optional[str] = None):
        self.name = name
        self._table: Dict[Tuple[int, ...], Any] = {}

    def insert(self, key: Sequence[int], value: Any) -> None:
        self._table[tuple(int(k) for k in key)] = value

    def candidates(self, key: Sequence[int]) -> Iterator[Tuple[int, ...]]:
        """Keys to try for `key`, most specific first."""
        chains = [[int(k)] + list(type_registry.base_ids(k)) for k in key]
        return itertools.product(*chains)

    def lookup(self, key: Sequence[int]) -> Any:
        """The value for `key`.

        Raises:
            KeyError: If neither the key nor any ancestor combination is present
        """
        key = tuple(int(k) for k in key)
        found = self._table.get(key)
        if found is not None:
            return found
        for candidate in self.candidates(key):
            found = self._table.get(candidate)
            if found is not None:
                return found
        raise KeyError(key)

    def __contains__(self, key) -> bool:
        return tuple(int(k) for k in key) in self._table

    def __len__(self) -> int:
        return len(self._table)

    def keys(self) -> Iterable[Tuple[int, ...]]:
        return self._table.keys()


class BaseDispatchCallable(BaseCallable):
    """A callable that resolves through an overload chosen by type ids."""

    def __init__(self, signature, name: Optional[str] = None):
        super().__init__(signature, name)
        self.dispatcher = Dispatcher(self.name)

    def key(self, dst_tp: Optional[BaseType], src_tp: Sequence[BaseType]) -> Tuple[int, ...]:
        raise NotImplementedError(f"{type(self).__name__}.key")

    def overload(self, dst_tp, src_tp, candidate: BaseCallable) -> BaseCallable:
        """Register `candidate` for the key of (dst_tp, src_tp)."""
        self.dispatcher.insert(self.key(dst_tp, src_tp), candidate)
        return candidate

    def specialize(self, dst_tp, src_tp) -> BaseCallable:
        """The overload serving (dst_tp, src_tp).

        Raises:
            NoOverloadError: If there is none
        """
        try:
            key = self.key(dst_tp, src_tp)
        except (IndexError, AttributeError):
            raise self.no_overload(dst_tp, src_tp) from None
        try:
            return self.dispatcher.lookup(key)
        except KeyError:
            raise NoOverloadError(self.name, dst_tp, src_tp, key) from None

    def resolve(self, caller, data, cg, dst_tp, src_tp, kwds, tp_vars) -> BaseType:
        child = self.specialize(dst_tp, src_tp)
        return child.resolve(self, data, cg, dst_tp, src_tp, kwds, tp_vars)


class UniformDispatchCallable(BaseDispatchCallable):
    """Dispatches on the destination type. Used for conversions into a type."""

    def key(self, dst_tp, src_tp):
        if dst_tp is None:
            raise AttributeError("destination type required")
        return (dst_tp.id,)


class FirstArgDispatchCallable(BaseDispatchCallable):
    def key(self, dst_tp, src_tp):
        return (src_tp[0].id,)


class ElementDispatchCallable(BaseDispatchCallable):
    """Dispatches on the scalar type inside the first argument's dimensions."""

    def key(self, dst_tp, src_tp):
        tp = src_tp[0]
        return (tp.get_type_at_dimension(dim_depth(tp)).id,)


class MultiDispatchCallable(BaseDispatchCallable):
    def key(self, dst_tp, src_tp):
        return tuple(tp.id for tp in src_tp)


__all__ = [
    "Dispatcher", "BaseDispatchCallable", "UniformDispatchCallable", "FirstArgDispatchCallable",
    "ElementDispatchCallable", "MultiDispatchCallable",
]
