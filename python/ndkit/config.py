"""
Process configuration for ndkit.

Settings are read from the environment once at import time:

    NDKIT_KERNEL_INLINE_BYTES   inline capacity of a kernel builder (default 128)
    NDKIT_POD_BLOCK_CAPACITY    initial chunk size of a POD memory block (default 2048)
    NDKIT_TRACE_LEVEL           0 none, 1 summary, 2 timing, 3 full (default 0)
    NDKIT_MAX_ELWISE_OPERANDS   highest elementwise operand count (default 7)
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


@dataclass(frozen=True)
class EngineConfig:
    """Engine-wide settings.

    Attributes:
        kernel_inline_bytes: Inline ("static") storage of a kernel builder
        pod_block_capacity: First chunk size of a POD memory block
        trace_level: Trace granularity (see ndkit.trace.TraceLevel)
        max_elwise_operands: Highest operand count of elementwise dispatch
    """
    kernel_inline_bytes: int = 128
    pod_block_capacity: int = 2048
    trace_level: int = 0
    max_elwise_operands: int = 7

    def __post_init__(self):
        if self.kernel_inline_bytes % 8 != 0:
            raise ValueError("kernel_inline_bytes must be a multiple of 8")
        if not 0 <= self.max_elwise_operands <= 7:
            raise ValueError("max_elwise_operands must be in [0, 7]")


def load_config() -> EngineConfig:
    """Build an EngineConfig from NDKIT_* environment variables."""
    return EngineConfig(
        kernel_inline_bytes=_env_int("NDKIT_KERNEL_INLINE_BYTES", 128, minimum=16),
        pod_block_capacity=_env_int("NDKIT_POD_BLOCK_CAPACITY", 2048, minimum=1),
        trace_level=_env_int("NDKIT_TRACE_LEVEL", 0),
        max_elwise_operands=_env_int("NDKIT_MAX_ELWISE_OPERANDS", 7),
    )


_config: EngineConfig = load_config()


def get_config() -> EngineConfig:
    return _config


def set_config(config: EngineConfig = None, **overrides) -> EngineConfig:
    """Replace the process configuration, returning the previous one."""
    global _config
    previous = _config
    base = config if config is not None else _config
    _config = dataclasses.replace(base, **overrides) if overrides else base
    return previous
