"""
Metrics and timing helpers for observability.

Responsibilities:
- Count drops / retries / outcomes per (stage, reason) for one pipeline run
- Measure durations using monotonic time (immune to clock changes)
- Emit timer metrics as JSONL events via observability.logger

Lifecycle:
- A PipelineMetrics instance is created when a pipeline starts and
  reset when it shuts down. Counters are never module-global, so
  independent pipeline runs (e.g. in tests) never share state.
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


class PipelineMetrics:
    """
    Per-run counters keyed by (stage, reason).

    Thread-safe so the status server may snapshot while the loop writes.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Counter[tuple[str, str]] = Counter()

    def increment(self, stage: Any, reason: Any, amount: int = 1) -> None:
        key = (_name(stage), _name(reason))
        with self._lock:
            self._counts[key] += amount

    def count(self, stage: Any, reason: Any) -> int:
        with self._lock:
            return self._counts[(_name(stage), _name(reason))]

    def total(self, reason: Any) -> int:
        """Sum of a reason across all stages."""
        wanted = _name(reason)
        with self._lock:
            return sum(v for (_, r), v in self._counts.items() if r == wanted)

    def snapshot(self) -> dict[str, dict[str, int]]:
        """{stage: {reason: count}} view for logging / the status API."""
        out: dict[str, dict[str, int]] = {}
        with self._lock:
            for (stage, reason), value in sorted(self._counts.items()):
                out.setdefault(stage, {})[reason] = value
        return out

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()


def _name(value: Any) -> str:
    enum_value = getattr(value, "value", None)
    return str(enum_value if enum_value is not None else value)


# -----------------------------------------------------------------------------
# Timing: context manager
# -----------------------------------------------------------------------------

@contextmanager
def timed(
    name: str,
    *,
    stage: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[None]:
    """
    Context manager for measuring durations safely.

    Guarantees:
    - Metric is emitted exactly once
    - Exceptions inside the block do NOT suppress timing

    Usage:
        with timed("pipeline_run", details={"source": "file"}):
            await pipeline.run()
    """
    start_ns = time.monotonic_ns()
    try:
        yield
    finally:
        log_event({
            "event_type": "METRIC_TIMER",
            "metric": name,
            "value_ms": (time.monotonic_ns() - start_ns) // 1_000_000,
            "stage": stage,
            "details": details or {},
        })
