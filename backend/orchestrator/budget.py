"""
Latency budget tracker.

Responsibilities:
- Accumulate, per item, stage-to-stage elapsed time since ingestion
- Classify items WITHIN_BUDGET / OVER_BUDGET against the target latency
- Keep a rolling window of LatencySamples for per-stage p50/p95

Non-responsibilities:
- Never drops items. Dropping is an orchestrator decision informed by
  classify().

Time base:
- All timestamps are monotonic seconds. "Age" for window eviction is
  measured on the same clock, FIFO, so bursty stage timing cannot grow
  the window without bound.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque

import numpy as np

from constants import LATENCY_STATS_WINDOW_S
from orchestrator.enums.mode import BudgetStatus
from orchestrator.enums.service import StageName
from orchestrator.items import PipelineItem


@dataclass(frozen=True)
class LatencySample:
    stage: StageName
    t_in: float
    t_out: float

    @property
    def duration_s(self) -> float:
        return self.t_out - self.t_in


class LatencyBudgetTracker:
    """
    Budget classification plus rolling per-stage statistics.

    The sample window is append-only with a single accumulator; the lock
    exists so the status server thread can snapshot safely.
    """

    def __init__(
        self,
        *,
        target_ms: int,
        window_s: float = LATENCY_STATS_WINDOW_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if target_ms <= 0:
            raise ValueError("target_ms must be > 0")
        if window_s <= 0:
            raise ValueError("window_s must be > 0")

        self._target_s = target_ms / 1000.0
        self._window_s = window_s
        self._clock = clock
        self._lock = threading.Lock()
        self._samples: Deque[LatencySample] = deque()

    @property
    def target_s(self) -> float:
        return self._target_s

    def now(self) -> float:
        return self._clock()

    # ------------------------------------------------------------------
    # Per-item accounting
    # ------------------------------------------------------------------

    def begin(self, item: PipelineItem, at: float | None = None) -> None:
        """Stamp the ingestion time of a freshly captured item."""
        ts = self._clock() if at is None else at
        item.captured_at = ts
        item.last_handoff = ts
        item.elapsed_s = 0.0

    def record(
        self,
        item: PipelineItem,
        stage: StageName,
        t_in: float,
        t_out: float,
    ) -> None:
        """
        Record one completed stage call.

        The stage-to-stage interval (t_out - previous handoff) includes
        queue wait; the stage timing (t_out - t_in) does not.
        """
        item.elapsed_s += max(0.0, t_out - item.last_handoff)
        item.last_handoff = t_out
        item.stage_timings[stage] = t_out - t_in

        sample = LatencySample(stage=stage, t_in=t_in, t_out=t_out)
        with self._lock:
            self._samples.append(sample)
            self._evict(t_out)

    def elapsed(self, item: PipelineItem, now: float | None = None) -> float:
        """Elapsed seconds so far; `now` adds time queued since the last handoff."""
        if now is None:
            return item.elapsed_s
        return item.elapsed_s + max(0.0, now - item.last_handoff)

    def remaining_budget(self, item: PipelineItem, now: float | None = None) -> float:
        """target_latency - elapsed_so_far, in seconds. Negative = over budget."""
        return self._target_s - self.elapsed(item, now)

    def classify(self, item: PipelineItem, now: float | None = None) -> BudgetStatus:
        """Classify and remember the result on the item."""
        if self.remaining_budget(item, now) < 0:
            item.budget_status = BudgetStatus.OVER_BUDGET
        else:
            item.budget_status = BudgetStatus.WITHIN_BUDGET
        return item.budget_status

    # ------------------------------------------------------------------
    # Rolling statistics
    # ------------------------------------------------------------------

    def _evict(self, now: float) -> None:
        horizon = now - self._window_s
        while self._samples and self._samples[0].t_out < horizon:
            self._samples.popleft()

    def sample_count(self) -> int:
        with self._lock:
            return len(self._samples)

    def stage_stats(self, now: float | None = None) -> dict[str, dict[str, float]]:
        """
        Rolling p50/p95 of elapsed time per stage, in milliseconds.

        Stages with no samples in the window are omitted.
        """
        ts = self._clock() if now is None else now
        with self._lock:
            self._evict(ts)
            per_stage: dict[StageName, list[float]] = {}
            for s in self._samples:
                per_stage.setdefault(s.stage, []).append(s.duration_s)

        stats: dict[str, dict[str, float]] = {}
        for stage, durations in per_stage.items():
            arr = np.asarray(durations) * 1000.0
            stats[stage.value] = {
                "count": float(len(arr)),
                "p50_ms": float(np.percentile(arr, 50)),
                "p95_ms": float(np.percentile(arr, 95)),
            }
        return stats

    def snapshot(self) -> dict[str, object]:
        return {
            "target_ms": int(self._target_s * 1000),
            "window_s": self._window_s,
            "stages": self.stage_stats(),
        }
