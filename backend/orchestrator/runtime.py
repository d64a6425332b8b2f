"""
Pipeline runtime: the execution shell for one audio stream.

Responsibilities:
- Own the ring buffer, the bounded inter-stage queues and the stage workers
- Run the ingestion task (source -> ring buffer, reads under retry)
- Run the drain task (ring buffer -> fixed windows -> Decode queue)
- Surface fatal stage errors as PipelineFatalError
- Coordinate graceful shutdown with a grace deadline
- Produce a PipelineReport describing every admitted item

Non-responsibilities:
- Provider calls (stages / adapters)
- Retry math (retry.py), budget math (budget.py), ordering (worker.py)
- Transport concerns (server/, cli.py)
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Sequence

import numpy as np

from audio.frames import RawSegment
from audio.pcm import pcm16le_to_int16
from audio.ring_buffer import RingBuffer
from config import PipelineConfig
from constants import DRAIN_POLL_INTERVAL_MS, MIN_SEGMENT_WINDOW_MS, SEQ_NUM_START, ms_to_samples
from observability.logger import log_event, now_ms
from observability.metrics import PipelineMetrics
from orchestrator.budget import LatencyBudgetTracker
from orchestrator.cancellation import ShutdownCoordinator
from orchestrator.enums.service import StageName
from orchestrator.enums.state import ItemState
from orchestrator.errors import DropReason, PipelineFatalError
from orchestrator.items import PipelineItem
from orchestrator.queues import OverflowPolicy, StageQueue
from orchestrator.retry import NO_RETRY, RetryError, execute_with_retry
from orchestrator.stage import Stage
from orchestrator.worker import StageWorker

if TYPE_CHECKING:
    from adapters.ingest.base import AudioSource


# Stage order is fixed; each stage consumes the previous stage's output
PIPELINE_STAGES: tuple[StageName, ...] = (
    StageName.DECODE,
    StageName.RECOGNIZE,
    StageName.TRANSLATE,
    StageName.SYNTHESIZE,
    StageName.PLAY,
)

# Stage an item in a given state is waiting for
_NEXT_STAGE: dict[ItemState, StageName] = {
    ItemState.CAPTURED: StageName.DECODE,
    ItemState.DECODED: StageName.RECOGNIZE,
    ItemState.TRANSCRIBED: StageName.TRANSLATE,
    ItemState.TRANSLATED: StageName.SYNTHESIZE,
    ItemState.SYNTHESIZED: StageName.PLAY,
}


@dataclass(frozen=True)
class PipelineReport:
    """
    Outcome of one run().

    states:     final ItemState per sequence number
    emitted:    sequence numbers that reached DONE, in playback order
    attempts:   attempts_used per stage, per item
    drops:      {sequence_num: (stage, reason)} for SKIPPED / ABORTED items
    counters:   PipelineMetrics snapshot {stage: {reason: count}}
    """
    states: dict[int, ItemState]
    emitted: list[int]
    attempts: dict[int, dict[StageName, int]]
    drops: dict[int, tuple[StageName | None, DropReason | None]]
    counters: dict[str, dict[str, int]]
    ring: dict[str, int]
    budget: dict[str, Any]
    shutdown_requested: bool
    grace_expired: bool

    def count(self, state: ItemState) -> int:
        return sum(1 for s in self.states.values() if s is state)


class Pipeline:
    """
    Streaming pipeline for a single audio stream.

    Guarantees:
    - Every admitted item ends in exactly one terminal state
      (DONE / SKIPPED / ABORTED) by the time run() returns or raises
    - Every drop is counted in `metrics` under (stage, reason)
    - Played audio reaches the sink in sequence order
    - Memory is bounded: ring buffer + queue capacities + reorder windows
    """

    def __init__(
        self,
        *,
        config: PipelineConfig,
        source: AudioSource,
        stages: Sequence[Stage[Any, Any]],
        metrics: PipelineMetrics | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        names = tuple(s.name for s in stages)
        if names != PIPELINE_STAGES:
            raise ValueError(
                f"stages must be {[n.value for n in PIPELINE_STAGES]}, "
                f"got {[n.value for n in names]}"
            )

        self._config = config
        self._source = source
        self._stages = list(stages)

        self.metrics = metrics or PipelineMetrics()
        self.tracker = LatencyBudgetTracker(
            target_ms=config.latency.target_ms,
            window_s=config.latency_window_s,
            clock=clock,
        )
        self.ring = RingBuffer(config.ring_buffer_capacity_samples)

        self._window_samples = ms_to_samples(config.segment_window_ms, config.sample_rate_hz)
        self._min_window_samples = min(
            self._window_samples,
            ms_to_samples(MIN_SEGMENT_WINDOW_MS, config.sample_rate_hz),
        )

        self._items: dict[int, PipelineItem] = {}
        self._emitted: list[int] = []
        self._next_seq = SEQ_NUM_START
        self._last_source_seq = 0
        self._source_exhausted = False

        # One inbox per stage; the playback edge evicts oldest under pressure
        self._queues: list[StageQueue[PipelineItem]] = []
        for name in PIPELINE_STAGES:
            if name is StageName.PLAY:
                queue: StageQueue[PipelineItem] = StageQueue(
                    name=name.value,
                    capacity=config.queue_capacity,
                    overflow=OverflowPolicy.DROP_OLDEST,
                    on_drop=self._on_playback_overflow,
                )
            else:
                queue = StageQueue(name=name.value, capacity=config.queue_capacity)
            self._queues.append(queue)

        self._workers: list[StageWorker] = []
        for i, stage in enumerate(self._stages):
            outbox = self._queues[i + 1] if i + 1 < len(self._queues) else None
            self._workers.append(StageWorker(
                stage=stage,
                inbox=self._queues[i],
                outbox=outbox,
                tracker=self.tracker,
                metrics=self.metrics,
                on_terminal=self._on_terminal,
                max_in_flight=config.max_in_flight,
                reorder_window=config.reorder_window,
                budget_gate=stage.name is StageName.SYNTHESIZE,
                over_budget_policy=config.over_budget_policy,
                retry_policy=(
                    NO_RETRY if stage.retries_internally
                    else config.retry_policy_for(stage.name)
                ),
            ))

        self._shutdown = ShutdownCoordinator(
            grace_s=config.shutdown_grace_ms / 1000.0,
            stop_admission=self._stop_admission,
            hard_stop=self._hard_stop,
        )

        self._ingest_task: asyncio.Task[None] | None = None
        self._drain_task: asyncio.Task[None] | None = None
        self._worker_tasks: list[asyncio.Task[None]] = []
        self._close_task: asyncio.Task[None] | None = None
        self._admitting: PipelineItem | None = None
        self._running = False
        self._started = False
        self.last_report: PipelineReport | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    async def run(self) -> PipelineReport:
        """
        Run until the source ends and every item is resolved, or until
        shutdown completes.

        Raises:
            PipelineFatalError: a stage failed fatally (or the source
                exhausted its retries). `last_report` is still populated.
        """
        if self._started:
            raise RuntimeError("Pipeline.run() may only be called once")
        self._started = True
        self._running = True

        log_event({
            "event_type": "PIPELINE_STARTED",
            "target_ms": self._config.latency.target_ms,
            "segment_window_ms": self._config.segment_window_ms,
            "queue_capacity": self._config.queue_capacity,
            "max_in_flight": self._config.max_in_flight,
            "reorder_window": self._config.reorder_window,
            "over_budget_policy": self._config.over_budget_policy.value,
        })

        self._ingest_task = asyncio.create_task(self._ingest_loop())
        self._drain_task = asyncio.create_task(self._drain_loop())
        self._worker_tasks = [asyncio.create_task(w.run()) for w in self._workers]
        tasks = [self._ingest_task, self._drain_task, *self._worker_tasks]

        fatal: PipelineFatalError | None = None
        try:
            pending: set[asyncio.Task[None]] = set(tasks)
            while pending and fatal is None:
                done, pending = await asyncio.wait(
                    pending, return_when=asyncio.FIRST_EXCEPTION
                )
                for task in done:
                    if task.cancelled():
                        continue
                    exc = task.exception()
                    if isinstance(exc, PipelineFatalError):
                        fatal = exc
                        break
                    if exc is not None:
                        raise exc
        finally:
            for worker in self._workers:
                worker.abort_reason = DropReason.FATAL if fatal else DropReason.SHUTDOWN
            if self._close_task is not None:
                tasks.append(self._close_task)
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._shutdown.clear()
            self._abort_leftovers(DropReason.FATAL if fatal else DropReason.SHUTDOWN)
            await self._close_resources()
            self._running = False

        report = self._build_report()
        self.last_report = report
        self.metrics.reset()

        if fatal is not None:
            log_event({
                "event_type": "PIPELINE_FATAL",
                "stage": fatal.stage.value,
                "seq": fatal.sequence_num,
                "cause": repr(fatal.cause),
            })
            raise fatal

        log_event({
            "event_type": "PIPELINE_STOPPED",
            "done": report.count(ItemState.DONE),
            "skipped": report.count(ItemState.SKIPPED),
            "aborted": report.count(ItemState.ABORTED),
            "ring_dropped": report.ring["dropped"],
            "grace_expired": report.grace_expired,
        })
        return report

    def request_shutdown(self, reason: str = "requested") -> None:
        """Stop admission; in-flight items drain until the grace deadline."""
        if not self._running:
            return
        self._shutdown.request_shutdown(reason)

    async def ready(self) -> bool:
        for stage in self._stages:
            if not await stage.ready():
                return False
        return True

    def status(self) -> dict[str, Any]:
        """Snapshot for the status server."""
        return {
            "running": self._running,
            "admitted": self._next_seq - SEQ_NUM_START,
            "emitted": len(self._emitted),
            "shutdown_requested": self._shutdown.requested,
            "ring": self.ring.snapshot(),
            "queues": [q.snapshot() for q in self._queues],
            "in_flight": {w.name.value: w.in_flight() for w in self._workers},
            "drops": self.metrics.snapshot(),
            "budget": self.tracker.snapshot(),
        }

    # ------------------------------------------------------------------
    # Ingestion: source -> ring buffer
    # ------------------------------------------------------------------

    async def _ingest_loop(self) -> None:
        policy = self._config.retry_policy_for(StageName.INGEST) or NO_RETRY
        try:
            while True:
                try:
                    result = await execute_with_retry(
                        self._source.read_segment, policy, label="ingest"
                    )
                except RetryError as exc:
                    raise PipelineFatalError(
                        stage=StageName.INGEST,
                        sequence_num=self._last_source_seq,
                        cause=exc.last_error,
                    ) from exc

                segment: RawSegment | None = result.value
                if segment is None:
                    break

                self._last_source_seq = segment.sequence_num
                dropped = self.ring.write(pcm16le_to_int16(segment.pcm_bytes))
                if dropped:
                    self.metrics.increment(StageName.INGEST, DropReason.RING_OVERFLOW, dropped)
                    log_event({
                        "event_type": "RING_BUFFER_OVERFLOW",
                        "dropped_samples": dropped,
                        "dropped_total": self.ring.dropped,
                        "source_seq": segment.sequence_num,
                    })
        finally:
            self._source_exhausted = True

    # ------------------------------------------------------------------
    # Drain: ring buffer -> Decode queue
    # ------------------------------------------------------------------

    async def _drain_loop(self) -> None:
        decode_q = self._queues[0]
        poll_s = DRAIN_POLL_INTERVAL_MS / 1000.0

        while True:
            if self.ring.available() >= self._window_samples:
                await self._admit(self.ring.read(self._window_samples))
                continue

            if self._source_exhausted:
                # Final partial window; shorter tails carry no usable speech
                tail = self.ring.available()
                if tail >= self._min_window_samples:
                    await self._admit(self.ring.read(tail))
                else:
                    self.ring.read(tail)
                break

            await asyncio.sleep(poll_s)

        await decode_q.close()

    async def _admit(self, samples: np.ndarray) -> None:
        seq = self._next_seq
        self._next_seq += 1

        item = PipelineItem(
            sequence_num=seq,
            payload=RawSegment(
                sequence_num=seq,
                pcm_bytes=samples.astype("<i2").tobytes(),
                ts_ms=now_ms(),
            ),
        )
        self.tracker.begin(item)
        self._items[seq] = item

        self._admitting = item
        await self._queues[0].put(item)
        self._admitting = None

    # ------------------------------------------------------------------
    # Shutdown hooks
    # ------------------------------------------------------------------

    def _stop_admission(self) -> None:
        for task in (self._ingest_task, self._drain_task):
            if task is not None:
                task.cancel()
        self._close_task = asyncio.create_task(self._close_intake())

    async def _close_intake(self) -> None:
        pending = [t for t in (self._ingest_task, self._drain_task) if t is not None]
        await asyncio.gather(*pending, return_exceptions=True)
        if self._admitting is not None:
            self._drop(self._admitting, StageName.DECODE, DropReason.SHUTDOWN)
            self._admitting = None
        await self._queues[0].close()

    def _hard_stop(self) -> None:
        for task in self._worker_tasks:
            task.cancel()

    # ------------------------------------------------------------------
    # Terminal accounting
    # ------------------------------------------------------------------

    def _on_terminal(self, item: PipelineItem) -> None:
        if item.state is ItemState.DONE:
            self._emitted.append(item.sequence_num)

    def _on_playback_overflow(self, item: PipelineItem) -> None:
        self._drop(item, StageName.PLAY, DropReason.QUEUE_OVERFLOW)

    def _drop(self, item: PipelineItem, stage: StageName, reason: DropReason) -> None:
        if item.is_terminal:
            return
        item.abort(stage=stage, reason=reason)
        self.metrics.increment(stage, reason)
        log_event({
            "event_type": "ITEM_DROPPED",
            "stage": stage.value,
            "seq": item.sequence_num,
            "reason": reason.value,
        })

    def _abort_leftovers(self, reason: DropReason) -> None:
        """Abort items still sitting in queues once every task has stopped."""
        for name, queue in zip(PIPELINE_STAGES, self._queues):
            for item in queue.drain_nowait():
                self._drop(item, name, reason)

        for item in self._items.values():
            if not item.is_terminal:
                self._drop(item, _NEXT_STAGE.get(item.state, StageName.PLAY), reason)

    async def _close_resources(self) -> None:
        for stage in self._stages:
            await stage.close()
        await self._source.close()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _build_report(self) -> PipelineReport:
        items = sorted(self._items.values(), key=lambda i: i.sequence_num)
        return PipelineReport(
            states={i.sequence_num: i.state for i in items},
            emitted=list(self._emitted),
            attempts={i.sequence_num: dict(i.attempts) for i in items},
            drops={
                i.sequence_num: (i.drop_stage, i.drop_reason)
                for i in items
                if i.state is not ItemState.DONE
            },
            counters=self.metrics.snapshot(),
            ring=self.ring.snapshot(),
            budget=self.tracker.snapshot(),
            shutdown_requested=self._shutdown.requested,
            grace_expired=self._shutdown.grace_expired,
        )
