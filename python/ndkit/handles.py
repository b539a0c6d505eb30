"""
Handle table for Python objects referenced from raw memory.

Kernel records and arrmeta are plain bytes, so any Python object they need
(index state arrays, owned buffers, callables) is stored here and referred to
by a positive integer handle. Handle 0 is the null handle.
"""

from __future__ import annotations
from typing import Any, Dict
import itertools
import threading

_OBJECT_REGISTRY: Dict[int, Any] = {}
_next_handle = itertools.count(1)
_lock = threading.Lock()


def hold_object(obj: Any) -> int:
    """Store `obj` and return its handle."""
    with _lock:
        handle = next(_next_handle)
        _OBJECT_REGISTRY[handle] = obj
    return handle


def get_object(handle: int) -> Any:
    """Look up a handle. The null handle maps to None."""
    handle = int(handle)
    if handle == 0:
        return None
    obj = _OBJECT_REGISTRY.get(handle)
    if obj is None:
        raise RuntimeError(f"Invalid object handle {handle}")
    return obj


def release_object(handle: int) -> None:
    handle = int(handle)
    if handle == 0:
        return
    with _lock:
        _OBJECT_REGISTRY.pop(handle, None)


def live_object_count() -> int:
    return len(_OBJECT_REGISTRY)
