"""Timing and counter collection for engine calls."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from time import perf_counter
from typing import Dict, Iterator, List, Optional, Tuple


_STATS_VAR: ContextVar["EngineStats | None"] = ContextVar(
    "partcomposer_engine_stats", default=None
)


@dataclass
class EngineStats:
    """Accumulates stage durations (seconds) and counters."""

    timings: Dict[str, float] = field(default_factory=dict)
    counters: Dict[str, float] = field(default_factory=dict)

    def add_time(self, key: str, duration: float) -> None:
        if duration < 0.0:
            return
        self.timings[key] = self.timings.get(key, 0.0) + duration

    def increment(self, key: str, value: float = 1.0) -> None:
        self.counters[key] = self.counters.get(key, 0.0) + value

    def rows(self) -> List[Tuple[str, str]]:
        out = [(key, f"{dt * 1000:.1f} ms") for key, dt in sorted(self.timings.items())]
        out.extend((key, f"{int(val)}") for key, val in sorted(self.counters.items()))
        return out


def active_stats() -> "EngineStats | None":
    return _STATS_VAR.get()


@contextmanager
def collect_stats(stats: Optional[EngineStats] = None) -> Iterator[EngineStats]:
    """Make *stats* (or a fresh object) the active collector inside the block."""

    stats = stats if stats is not None else EngineStats()
    token = _STATS_VAR.set(stats)
    try:
        yield stats
    finally:
        _STATS_VAR.reset(token)


def count(key: str, value: float = 1.0) -> None:
    stats = _STATS_VAR.get()
    if stats is not None:
        stats.increment(key, value)


@contextmanager
def stage(key: str, logger: Optional[logging.Logger] = None) -> Iterator[None]:
    """Time the block under *key*; logs the duration at DEBUG when *logger* is given."""

    t0 = perf_counter()
    try:
        yield
    finally:
        dt = perf_counter() - t0
        stats = _STATS_VAR.get()
        if stats is not None:
            stats.add_time(key, dt)
        if logger is not None and logger.isEnabledFor(logging.DEBUG):
            logger.debug("%s took %.3f s", key, dt)


__all__ = ["EngineStats", "active_stats", "collect_stats", "count", "stage"]
