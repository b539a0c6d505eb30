"""
Callables for ndkit.

A callable turns argument types into a kernel in two phases:

1. resolve: walk the callable tree with the argument types, deciding the
   result type and appending one emission closure per kernel record to a
   call graph.
2. instantiate: replay the call graph against concrete arrmeta, each
   closure constructing its record in a KernelBuilder and asking the
   builder to emit its children.

The finished kernel is then invoked on data addresses.

Example:
    call = add.call(None, [ndt("int32"), ndt("int32")])
    ret_tp = call.resolve()                    # int32
    kb = call.instantiate(dst.arrmeta, [a.arrmeta, b.arrmeta])
    call.invoke(kb, dst.data, [a.data, b.data])
"""

from __future__ import annotations
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple
from dataclasses import dataclass, field
from enum import Enum
import re

from ndkit.errors import NoOverloadError, TypeStringError
from ndkit.kernel_builder import KernelBuilder, KernelRequest
from ndkit.trace import traced
from ndkit.types import BaseType, make_type, matches, void

# closure(kb, kernreq, data, dst_arrmeta, nsrc, src_arrmeta)
Closure = Callable[[KernelBuilder, KernelRequest, int, int, int, Sequence[int]], None]


# ============================================================
# Signatures
# ============================================================

_SIGNATURE = re.compile(r"^\s*\((?P<args>.*)\)\s*->\s*(?P<ret>.+?)\s*$")


def _split_top_level(text: str) -> List[str]:
    parts, depth, start = [], 0, 0
    for i, ch in enumerate(text):
        if ch in "(<{":
            depth += 1
        elif ch in ")>}":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append(text[start:i])
            start = i + 1
    tail = text[start:]
    if tail.strip():
        parts.append(tail)
    return [p.strip() for p in parts]


@dataclass(frozen=True)
class CallableType:
    """Signature of a callable: positional argument types and a return type.

    Attributes:
        return_type: Result type (may be a pattern such as Scalar)
        arg_types: Positional argument types (may be patterns)
        kwd_names: Accepted keyword names
    """
    return_type: BaseType
    arg_types: Tuple[BaseType, ...]
    kwd_names: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, source: str, kwd_names: Sequence[str] = ()) -> "CallableType":
        """Parse "(T, U) -> R"."""
        m = _SIGNATURE.match(source)
        if m is None:
            raise TypeStringError(f"invalid callable signature {source!r}", source, 0)
        args = tuple(make_type(a) for a in _split_top_level(m.group("args")))
        return cls(make_type(m.group("ret")), args, tuple(kwd_names))

    @property
    def nsrc(self) -> int:
        return len(self.arg_types)

    def __str__(self) -> str:
        return "(" + ", ".join(str(a) for a in self.arg_types) + f") -> {self.return_type}"


def as_signature(signature) -> CallableType:
    return signature if isinstance(signature, CallableType) else CallableType.parse(signature)


# ============================================================
# Call graph
# ============================================================

class CallGraph:
    """Emission closures in the order their records are constructed."""

    def __init__(self):
        self._closures: List[Closure] = []

    def emplace_back(self, closure: Closure) -> Closure:
        self._closures.append(closure)
        return closure

    def __len__(self) -> int:
        return len(self._closures)

    def __iter__(self) -> Iterator[Closure]:
        return iter(self._closures)


class CallState(Enum):
    """Lifecycle of a Call.

    UNRESOLVED: nothing done yet
    RESOLVING: call graph built, kernel not yet constructed
    RESOLVED: kernel chain constructed and ready
    INVOKED: kernel run at least once
    """
    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    INVOKED = "invoked"


@dataclass
class Call:
    """One resolution of a callable for concrete argument types.

    Attributes:
        target: The callable being called
        src_types: Argument types
        dst_type: Requested result type, None to let the callable decide
        kwds: Keyword arguments
        return_type: Resolved result type (after resolve)
    """
    target: "BaseCallable"
    src_types: List[BaseType]
    dst_type: Optional[BaseType] = None
    kwds: Dict[str, Any] = field(default_factory=dict)
    return_type: Optional[BaseType] = None
    state: CallState = CallState.UNRESOLVED
    call_graph: CallGraph = field(default_factory=CallGraph)

    def resolve(self) -> BaseType:
        if self.state is not CallState.UNRESOLVED:
            raise RuntimeError(f"call of {self.target.name} is already {self.state.value}")
        with traced("resolve", self.target.name, nsrc=len(self.src_types)) as meta:
            self.return_type = self.target.resolve(None, None, self.call_graph, self.dst_type,
                                                   list(self.src_types), self.kwds, {})
            meta["closures"] = len(self.call_graph)
            meta["return_type"] = str(self.return_type)
        self.state = CallState.RESOLVING
        return self.return_type

    def instantiate(self, dst_arrmeta: int, src_arrmeta: Sequence[int],
                    kernreq: KernelRequest = KernelRequest.SINGLE,
                    kb: Optional[KernelBuilder] = None) -> KernelBuilder:
        """Construct the kernel. On failure the partial chain is destroyed."""
        if self.state is CallState.UNRESOLVED:
            self.resolve()
        elif self.state is not CallState.RESOLVING:
            raise RuntimeError(f"call of {self.target.name} is already {self.state.value}")
        kb = kb if kb is not None else KernelBuilder()
        kb.call_graph.extend(self.call_graph)
        try:
            kb(kernreq, 0, dst_arrmeta, len(self.src_types), list(src_arrmeta))
        except BaseException:
            kb.reset()
            raise
        self.state = CallState.RESOLVED
        return kb

    def invoke(self, kb: KernelBuilder, dst: int, src: Sequence[int]) -> None:
        """Run the constructed kernel once on data addresses."""
        if self.state not in (CallState.RESOLVED, CallState.INVOKED):
            raise RuntimeError(f"call of {self.target.name} is {self.state.value}, not resolved")
        kb.single(dst, list(src))
        self.state = CallState.INVOKED


# ============================================================
# Callables
# ============================================================

class BaseCallable:
    """Base class of callables.

    Subclasses implement resolve(), which returns the result type and
    appends emission closures to `cg`.
    """

    def __init__(self, signature, name: Optional[str] = None):
        self._signature = as_signature(signature)
        self.name = name or type(self).__name__

    @property
    def signature(self) -> CallableType:
        return self._signature

    @property
    def nsrc(self) -> int:
        return self._signature.nsrc

    def get_return_type(self) -> BaseType:
        return self._signature.return_type

    def get_argument_types(self) -> Tuple[BaseType, ...]:
        return self._signature.arg_types

    def resolve(self, caller: Optional["BaseCallable"], data: Any, cg: CallGraph,
                dst_tp: Optional[BaseType], src_tp: List[BaseType],
                kwds: Dict[str, Any], tp_vars: Dict[str, BaseType]) -> BaseType:
        """Resolve for the given argument types.

        Args:
            caller: The enclosing callable, None at the top
            data: Resolution data handed down by the caller
            cg: Call graph receiving emission closures
            dst_tp: Requested result type, or None
            src_tp: Argument types
            kwds: Keyword arguments
            tp_vars: Type variable bindings

        Returns:
            The result type
        """
        raise NotImplementedError(f"{type(self).__name__}.resolve")

    def no_overload(self, dst_tp, src_tp, key=()) -> NoOverloadError:
        return NoOverloadError(self.name, dst_tp, src_tp, key)

    def call(self, dst_tp: Optional[BaseType], src_tp: Sequence[BaseType],
             kwds: Optional[Dict[str, Any]] = None) -> Call:
        return Call(self, [make_type(t) for t in src_tp],
                    make_type(dst_tp) if dst_tp is not None else None, dict(kwds or {}))

    def instantiate(self, dst_tp, src_tp, dst_arrmeta: int, src_arrmeta: Sequence[int],
                    kwds: Optional[Dict[str, Any]] = None,
                    kernreq: KernelRequest = KernelRequest.SINGLE,
                    kb: Optional[KernelBuilder] = None) -> KernelBuilder:
        """Resolve and construct in one step."""
        return self.call(dst_tp, src_tp, kwds).instantiate(dst_arrmeta, src_arrmeta, kernreq, kb)

    def __call__(self, *args, dst=None, **kwds):
        """Apply the callable to arrays (or values convertible to arrays).

        Returns the result array, or None when the result type is void.
        """
        from ndkit.array import asarray, empty
        srcs = [asarray(a) for a in args]
        call = self.call(dst.type if dst is not None else None, [a.type for a in srcs], kwds)
        ret_tp = call.resolve()
        if dst is None:
            dst = empty(ret_tp)
        with call.instantiate(dst.arrmeta, [a.arrmeta for a in srcs]) as kb:
            call.invoke(kb, dst.data, [a.data for a in srcs])
        return None if ret_tp == void else dst

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}: {self._signature}>"


class LeafCallable(BaseCallable):
    """A callable emitting a single kernel record class.

    Example:
        negate_int32 = LeafCallable("(int32) -> int32", NegateKernel, name="negate")
    """

    def __init__(self, signature, kernel_cls=None, name: Optional[str] = None):
        super().__init__(signature, name)
        self.kernel_cls = kernel_cls

    def check_arguments(self, dst_tp, src_tp) -> None:
        args = self._signature.arg_types
        if len(src_tp) != len(args) or not all(matches(p, t) for p, t in zip(args, src_tp)):
            raise self.no_overload(dst_tp, src_tp)

    def resolve_return_type(self, dst_tp, src_tp) -> BaseType:
        ret = self._signature.return_type
        if dst_tp is not None:
            if not matches(ret, dst_tp):
                raise self.no_overload(dst_tp, src_tp)
            return dst_tp
        if ret.is_symbolic:
            raise self.no_overload(dst_tp, src_tp)
        return ret

    def resolve(self, caller, data, cg, dst_tp, src_tp, kwds, tp_vars) -> BaseType:
        self.check_arguments(dst_tp, src_tp)
        ret = self.resolve_return_type(dst_tp, src_tp)
        src_tp = list(src_tp)

        def emit(kb, kernreq, data, dst_arrmeta, nsrc, src_arrmeta):
            self.instantiate_kernel(kb, kernreq, data, ret, dst_arrmeta, src_tp, src_arrmeta, kwds)

        cg.emplace_back(emit)
        return ret

    def instantiate_kernel(self, kb, kernreq, data, dst_tp, dst_arrmeta, src_tp, src_arrmeta, kwds) -> None:
        self.kernel_cls.instantiate(kb, kernreq, data, dst_tp, dst_arrmeta, src_tp, src_arrmeta, kwds)


__all__ = [
    "Closure", "CallableType", "as_signature", "CallGraph", "CallState", "Call",
    "BaseCallable", "LeafCallable",
]
