"""
Stage worker: drives one Stage between two bounded queues.

Responsibilities:
- Consume items from the inbox in upstream order
- Run up to `max_in_flight` Stage.process() calls concurrently
- Wrap every call in execute_with_retry (NO_RETRY when the stage has no policy)
- Emit results to the outbox in strict sequence order (per-stage FIFO)
- Drop, never block forever: a pending head item is cancelled and dropped
  once more than `reorder_window` later items have completed behind it
- Propagate backpressure: the reorder window is bounded, so a full outbox
  stalls emission, which stalls intake, which fills the inbox upstream

Non-responsibilities:
- Queue wiring, ingestion, shutdown deadlines (runtime.py)
- Budget classification math (budget.py)
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque

from observability.logger import log_event
from observability.metrics import PipelineMetrics
from orchestrator.budget import LatencyBudgetTracker
from orchestrator.enums.mode import BudgetStatus, OverBudgetPolicy
from orchestrator.enums.service import STATE_AFTER_STAGE, StageName
from orchestrator.enums.state import ItemState
from orchestrator.errors import (
    DropReason,
    ErrorKind,
    PipelineFatalError,
    StageError,
)
from orchestrator.items import PipelineItem
from orchestrator.queues import StageQueue
from orchestrator.retry import NO_RETRY, RetryError, RetryPolicy, execute_with_retry
from orchestrator.stage import Stage

TerminalSink = Callable[[PipelineItem], None]


@dataclass
class _Slot:
    """One item admitted to the reorder window."""
    item: PipelineItem
    task: asyncio.Task[None] | None = None
    done: bool = False
    output: Any = None
    drop_reason: DropReason | None = None


class StageWorker:
    """
    Concurrent, order-preserving executor for one Stage.

    Lifecycle:
    1. run() starts an intake loop and an emit loop
    2. Inbox close() + drain -> outbox close() -> run() returns
    3. Fatal StageError -> run() raises PipelineFatalError
    4. Cancellation -> in-flight and held items are ABORTED (shutdown)
    """

    def __init__(
        self,
        *,
        stage: Stage[Any, Any],
        inbox: StageQueue[PipelineItem],
        outbox: StageQueue[PipelineItem] | None,
        tracker: LatencyBudgetTracker,
        metrics: PipelineMetrics,
        on_terminal: TerminalSink,
        max_in_flight: int,
        reorder_window: int,
        budget_gate: bool = False,
        over_budget_policy: OverBudgetPolicy = OverBudgetPolicy.OBSERVE,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        if reorder_window < 0:
            raise ValueError("reorder_window must be >= 0")

        self._stage = stage
        self._inbox = inbox
        self._outbox = outbox
        self._tracker = tracker
        self._metrics = metrics
        self._on_terminal = on_terminal
        self._reorder_window = reorder_window
        self._window_limit = max_in_flight + reorder_window
        self._budget_gate = budget_gate
        self._over_budget_policy = over_budget_policy
        self._retry_policy = retry_policy or stage.retry_policy or NO_RETRY

        # Reason applied to held items when run() is cancelled
        self.abort_reason = DropReason.SHUTDOWN

        self._slots = asyncio.Semaphore(max_in_flight)
        self._window: Deque[_Slot] = deque()
        self._wake = asyncio.Event()
        self._space = asyncio.Event()
        self._intake_done = False
        self._fatal: PipelineFatalError | None = None
        self._delivering: _Slot | None = None

    @property
    def name(self) -> StageName:
        return self._stage.name

    def in_flight(self) -> int:
        return len(self._window)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """
        Run until the inbox is closed and every admitted item is resolved.

        Raises:
            PipelineFatalError: a stage call failed with ErrorKind.FATAL.
        """
        intake = asyncio.create_task(self._intake_loop())
        emit = asyncio.create_task(self._emit_loop())
        try:
            await asyncio.gather(intake, emit)
        finally:
            for task in (intake, emit):
                task.cancel()
            await asyncio.gather(intake, emit, return_exceptions=True)
            reason = DropReason.FATAL if self._fatal is not None else self.abort_reason
            await self._abort_window(reason)

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def _intake_loop(self) -> None:
        while True:
            item = await self._inbox.get()
            if item is None:
                break

            # Bounded window: a stalled emitter stops intake (backpressure)
            while len(self._window) >= self._window_limit:
                self._space.clear()
                if len(self._window) < self._window_limit:
                    break
                await self._space.wait()

            await self._slots.acquire()
            slot = _Slot(item=item)
            self._window.append(slot)
            slot.task = asyncio.create_task(self._process(slot))

        self._intake_done = True
        self._wake.set()

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def _process(self, slot: _Slot) -> None:
        item = slot.item
        stage = self._stage
        try:
            if self._budget_gate:
                status = self._tracker.classify(item, now=self._tracker.now())
                if (
                    status is BudgetStatus.OVER_BUDGET
                    and self._over_budget_policy is OverBudgetPolicy.DROP
                ):
                    slot.drop_reason = DropReason.OVER_BUDGET
                    return

            payload = item.payload
            t_in = self._tracker.now()
            try:
                result = await execute_with_retry(
                    lambda: stage.process(payload),
                    self._retry_policy,
                    label=f"{stage.name.value}:{item.sequence_num}",
                )
            except RetryError as exc:
                item.attempts[stage.name] = exc.attempts_used
                slot.drop_reason = self._classify_failure(item, exc)
                return

            t_out = self._tracker.now()
            item.attempts[stage.name] = result.attempts_used
            self._tracker.record(item, stage.name, t_in, t_out)
            self._tracker.classify(item)
            slot.output = result.value

            log_event({
                "event_type": "STAGE_TIMING",
                "stage": stage.name.value,
                "seq": item.sequence_num,
                "duration_ms": int((t_out - t_in) * 1000),
                "attempts": result.attempts_used,
            })
        finally:
            slot.done = True
            self._slots.release()
            self._wake.set()

    def _classify_failure(self, item: PipelineItem, exc: RetryError) -> DropReason | None:
        cause = exc.last_error
        kind = cause.kind if isinstance(cause, StageError) else None

        if kind is ErrorKind.FATAL:
            if self._fatal is None:
                self._fatal = PipelineFatalError(
                    stage=self._stage.name,
                    sequence_num=item.sequence_num,
                    cause=cause,
                )
            return DropReason.FATAL

        if exc.retryable:
            return DropReason.RETRY_EXHAUSTED
        if self._stage.name is StageName.DECODE:
            return DropReason.MALFORMED
        return DropReason.TERMINAL_ERROR

    # ------------------------------------------------------------------
    # Ordered emission
    # ------------------------------------------------------------------

    def _completed_behind_head(self) -> int:
        return sum(1 for i, s in enumerate(self._window) if i > 0 and s.done)

    def _can_advance(self) -> bool:
        if self._fatal is not None:
            return True
        if self._window:
            return self._window[0].done or self._completed_behind_head() > self._reorder_window
        return self._intake_done

    async def _emit_loop(self) -> None:
        while True:
            if self._fatal is not None:
                raise self._fatal

            while self._window:
                head = self._window[0]
                if head.done:
                    self._window.popleft()
                    self._space.set()
                    self._delivering = head
                    await self._deliver(head)
                    self._delivering = None
                elif self._completed_behind_head() > self._reorder_window:
                    self._window.popleft()
                    self._space.set()
                    if head.task is not None:
                        head.task.cancel()
                    self._drop(head.item, DropReason.REORDER_WINDOW)
                else:
                    break

                if self._fatal is not None:
                    raise self._fatal

            if self._intake_done and not self._window:
                if self._outbox is not None:
                    await self._outbox.close()
                return

            self._wake.clear()
            if self._can_advance():
                continue
            await self._wake.wait()

    async def _deliver(self, slot: _Slot) -> None:
        item = slot.item

        if slot.drop_reason is not None:
            self._drop(item, slot.drop_reason)
            return

        if slot.output is None:
            item.skip(stage=self._stage.name)
            self._metrics.increment(self._stage.name, DropReason.NO_OUTPUT)
            self._on_terminal(item)
            return

        item.payload = slot.output
        item.state = STATE_AFTER_STAGE[self._stage.name]

        if self._outbox is None:
            item.state = ItemState.DONE
            log_event({
                "event_type": "ITEM_DONE",
                "seq": item.sequence_num,
                "elapsed_ms": int(item.elapsed_s * 1000),
                "budget_status": item.budget_status.value,
                "attempts": {k.value: v for k, v in item.attempts.items()},
            })
            self._on_terminal(item)
            return

        await self._outbox.put(item)

    def _drop(self, item: PipelineItem, reason: DropReason) -> None:
        item.abort(stage=self._stage.name, reason=reason)
        self._metrics.increment(self._stage.name, reason)
        log_event({
            "event_type": "ITEM_DROPPED",
            "stage": self._stage.name.value,
            "seq": item.sequence_num,
            "reason": reason.value,
            "attempts": item.attempts.get(self._stage.name),
        })
        self._on_terminal(item)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def _abort_window(self, reason: DropReason) -> None:
        """Cancel in-flight calls and abort every held item."""
        pending = [s.task for s in self._window if s.task is not None and not s.task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        if self._delivering is not None:
            self._window.appendleft(self._delivering)
            self._delivering = None

        while self._window:
            slot = self._window.popleft()
            if not slot.item.is_terminal:
                self._drop(slot.item, reason)
