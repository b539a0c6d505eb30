"""
Tracing for ndkit kernel construction and dispatch.

Collects structured events (callable resolution, kernel record construction
and destruction, kernel builder growth) into a process-wide ExecutionTrace.
The trace level comes from NDKIT_TRACE_LEVEL (see ndkit.config).
"""

from __future__ import annotations
from typing import Optional, List, Iterator
from dataclasses import dataclass, field
from contextlib import contextmanager
from enum import IntEnum
import threading
import time

from ndkit.config import get_config


class TraceLevel(IntEnum):
    """Trace level for kernel construction profiling.

    IntEnum allows comparison with >= for level checking.
    """
    NONE = 0           # No tracing
    SUMMARY = 1        # Only summary statistics
    TIMING = 2         # Per-resolution timing
    FULL = 3           # Every kernel record and buffer growth


@dataclass
class TraceEvent:
    """A single trace event.

    Attributes:
        name: Event name (callable name, kernel class name, ...)
        category: Event category (resolve, kernel, builder)
        start_ns: Start timestamp in nanoseconds
        end_ns: End timestamp in nanoseconds
        thread_id: Thread that recorded the event
        metadata: Additional event metadata
    """
    name: str
    category: str
    start_ns: int
    end_ns: int
    thread_id: Optional[int] = None
    metadata: dict = field(default_factory=dict)

    @property
    def duration_us(self) -> float:
        """Duration in microseconds."""
        return (self.end_ns - self.start_ns) / 1000


@dataclass
class ExecutionTrace:
    """Collection of trace events.

    Thread-safe for concurrent event recording.
    """
    events: List[TraceEvent] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def add_event(self, event: TraceEvent) -> None:
        """Add a trace event (thread-safe)."""
        with self._lock:
            self.events.append(event)

    def get_events(self, category: Optional[str] = None) -> List[TraceEvent]:
        """Get events, optionally filtered by category."""
        if category is None:
            return list(self.events)
        return [e for e in self.events if e.category == category]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()

    def summary(self) -> dict:
        """Generate summary statistics."""
        resolves = self.get_events("resolve")
        kernels = self.get_events("kernel")
        return {
            "total_events": len(self.events),
            "resolutions": len(resolves),
            "kernels_constructed": sum(1 for e in kernels if e.metadata.get("action") == "construct"),
            "kernels_destroyed": sum(1 for e in kernels if e.metadata.get("action") == "destroy"),
            "builder_growths": len(self.get_events("builder")),
            "resolve_time_us": sum(e.duration_us for e in resolves),
        }

    def to_chrome_trace(self) -> dict:
        """Export trace in Chrome Tracing format for visualization."""
        chrome_events = []
        for event in self.events:
            chrome_events.append({
                "name": event.name,
                "cat": event.category,
                "ph": "X",  # Complete event
                "ts": event.start_ns / 1000,
                "dur": (event.end_ns - event.start_ns) / 1000,
                "pid": 1,
                "tid": event.thread_id or 0,
                "args": event.metadata,
            })
        return {"traceEvents": chrome_events}


_trace = ExecutionTrace()


def get_trace() -> ExecutionTrace:
    return _trace


def trace_level() -> TraceLevel:
    return TraceLevel(min(get_config().trace_level, TraceLevel.FULL))


def record(category: str, name: str, level: TraceLevel = TraceLevel.FULL, **metadata) -> None:
    """Record an instantaneous event if the trace level allows it."""
    if trace_level() < level:
        return
    now = time.perf_counter_ns()
    _trace.add_event(TraceEvent(name, category, now, now, threading.get_ident(), metadata))


@contextmanager
def traced(category: str, name: str, level: TraceLevel = TraceLevel.TIMING, **metadata) -> Iterator[dict]:
    """Time a block and record it as one event.

    The yielded dict can be filled with more metadata inside the block.
    """
    if trace_level() < level:
        yield metadata
        return
    start = time.perf_counter_ns()
    try:
        yield metadata
    finally:
        _trace.add_event(TraceEvent(name, category, start, time.perf_counter_ns(),
                                    threading.get_ident(), metadata))
