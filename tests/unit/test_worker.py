# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import itertools
import random

import pytest

import observability.logger as logger_mod
from observability.metrics import PipelineMetrics
from orchestrator.budget import LatencyBudgetTracker
from orchestrator.enums.mode import BudgetStatus, OverBudgetPolicy
from orchestrator.enums.service import StageName
from orchestrator.enums.state import ItemState
from orchestrator.errors import DropReason, PipelineFatalError, StageError
from orchestrator.items import PipelineItem
from orchestrator.queues import StageQueue
from orchestrator.retry import RetryPolicy
from orchestrator.stage import Stage
from orchestrator.worker import StageWorker


@pytest.fixture(autouse=True)
def quiet_logger(monkeypatch):
    monkeypatch.setattr(logger_mod, "_print", lambda line: None)


class FnStage(Stage):
    """Stage whose behavior is a per-test coroutine function."""

    def __init__(self, fn, name=StageName.TRANSLATE):
        self._fn = fn
        self.name = name
        self.calls = []

    async def process(self, item):
        self.calls.append(item)
        return await self._fn(item)


async def echo(payload):
    return payload


class FakeClock:
    def __init__(self, t=0.0):
        self.t = t

    def __call__(self):
        return self.t


class Harness:
    def __init__(self, stage, *, tracker=None, inbox_capacity=4, outbox_capacity=4, **kwargs):
        self.tracker = tracker or LatencyBudgetTracker(target_ms=1500)
        self.metrics = PipelineMetrics()
        self.inbox = StageQueue(name="in", capacity=inbox_capacity)
        self.outbox = StageQueue(name="out", capacity=outbox_capacity)
        self.terminal = []
        kwargs.setdefault("max_in_flight", 2)
        kwargs.setdefault("reorder_window", 4)
        self.worker = StageWorker(
            stage=stage,
            inbox=self.inbox,
            outbox=self.outbox,
            tracker=self.tracker,
            metrics=self.metrics,
            on_terminal=self.terminal.append,
            **kwargs,
        )

    def items(self, n):
        out = []
        for seq in range(1, n + 1):
            item = PipelineItem(sequence_num=seq, payload=seq)
            self.tracker.begin(item)
            out.append(item)
        return out

    async def feed(self, items):
        for item in items:
            await self.inbox.put(item)
        await self.inbox.close()

    async def collect(self):
        out = []
        while True:
            item = await self.outbox.get()
            if item is None:
                return out
            out.append(item.sequence_num)

    async def run(self, items):
        _, emitted, _ = await asyncio.gather(
            self.feed(items), self.collect(), self.worker.run()
        )
        return emitted


# ---------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------

def test_random_completion_times_emit_in_sequence_order():
    rng = random.Random(7)
    delays = {seq: rng.uniform(0.0, 0.02) for seq in range(1, 21)}

    async def jittery(payload):
        await asyncio.sleep(delays[payload])
        return payload

    h = Harness(FnStage(jittery), max_in_flight=4, reorder_window=20)
    items = h.items(20)

    emitted = asyncio.run(h.run(items))

    assert emitted == list(range(1, 21))
    assert all(i.state is ItemState.TRANSLATED for i in items)
    assert not h.metrics.snapshot()


def test_stalled_head_is_dropped_once_reorder_window_overflows():
    async def head_hangs(payload):
        if payload == 1:
            await asyncio.sleep(10)
        return payload

    h = Harness(FnStage(head_hangs), max_in_flight=4, reorder_window=2)
    items = h.items(6)

    emitted = asyncio.run(h.run(items))

    assert emitted == [2, 3, 4, 5, 6]
    assert items[0].state is ItemState.ABORTED
    assert items[0].drop_reason is DropReason.REORDER_WINDOW
    assert h.metrics.count(StageName.TRANSLATE, DropReason.REORDER_WINDOW) == 1
    assert h.terminal == [items[0]]


# ---------------------------------------------------------------------
# Backpressure
# ---------------------------------------------------------------------

def test_stalled_downstream_bounds_admission():
    async def scenario():
        # Outbox is never consumed
        h = Harness(
            FnStage(echo),
            inbox_capacity=2,
            outbox_capacity=2,
            max_in_flight=2,
            reorder_window=4,
        )
        admitted = 0

        async def producer():
            nonlocal admitted
            for seq in itertools.count(1):
                item = PipelineItem(sequence_num=seq, payload=seq)
                h.tracker.begin(item)
                await h.inbox.put(item)
                admitted += 1

        prod = asyncio.create_task(producer())
        run = asyncio.create_task(h.worker.run())

        await asyncio.sleep(0.05)
        first = admitted
        await asyncio.sleep(0.05)
        second = admitted

        prod.cancel()
        run.cancel()
        await asyncio.gather(prod, run, return_exceptions=True)
        return first, second

    first, second = asyncio.run(scenario())

    # inbox 2 + held by intake 1 + window 6 + delivering 1 + outbox 2
    assert 0 < first <= 12
    assert first == second


# ---------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------

def test_retry_exhaustion_drops_only_that_item():
    async def seq2_flaky(payload):
        if payload == 2:
            raise StageError.transient("503")
        return payload

    h = Harness(
        FnStage(seq2_flaky),
        retry_policy=RetryPolicy(max_attempts=3, initial_delay_s=0.0),
    )
    items = h.items(3)

    emitted = asyncio.run(h.run(items))

    assert emitted == [1, 3]
    assert items[1].state is ItemState.ABORTED
    assert items[1].drop_reason is DropReason.RETRY_EXHAUSTED
    assert items[1].attempts[StageName.TRANSLATE] == 3
    assert items[0].attempts[StageName.TRANSLATE] == 1


def test_terminal_error_on_decode_counts_as_malformed():
    async def bad(payload):
        raise StageError.terminal("odd byte count")

    h = Harness(FnStage(bad, name=StageName.DECODE))
    items = h.items(1)

    emitted = asyncio.run(h.run(items))

    assert emitted == []
    assert items[0].drop_reason is DropReason.MALFORMED
    assert h.metrics.count("decode", "malformed") == 1


def test_fatal_error_raises_pipeline_fatal():
    async def boom(payload):
        if payload == 2:
            raise StageError.fatal("out of memory")
        return payload

    h = Harness(FnStage(boom), max_in_flight=1)
    items = h.items(3)

    with pytest.raises(PipelineFatalError) as info:
        asyncio.run(h.run(items))

    assert info.value.stage is StageName.TRANSLATE
    assert info.value.sequence_num == 2
    assert items[1].state is ItemState.ABORTED
    assert items[1].drop_reason is DropReason.FATAL


def test_none_output_skips_item():
    async def silent(payload):
        return None if payload == 1 else payload

    h = Harness(FnStage(silent, name=StageName.RECOGNIZE))
    items = h.items(2)

    emitted = asyncio.run(h.run(items))

    assert emitted == [2]
    assert items[0].state is ItemState.SKIPPED
    assert h.terminal == [items[0]]
    assert h.metrics.count("recognize", "no_output") == 1


# ---------------------------------------------------------------------
# Budget gate
# ---------------------------------------------------------------------

def test_over_budget_items_dropped_before_stage_call():
    clock = FakeClock(0.0)
    tracker = LatencyBudgetTracker(target_ms=1000, clock=clock)
    stage = FnStage(echo, name=StageName.SYNTHESIZE)
    h = Harness(
        stage,
        tracker=tracker,
        budget_gate=True,
        over_budget_policy=OverBudgetPolicy.DROP,
    )
    stale = PipelineItem(sequence_num=1, payload=1)
    tracker.begin(stale)
    clock.t = 1.5
    fresh = PipelineItem(sequence_num=2, payload=2)
    tracker.begin(fresh)

    emitted = asyncio.run(h.run([stale, fresh]))

    assert emitted == [2]
    assert stage.calls == [2]
    assert stale.drop_reason is DropReason.OVER_BUDGET
    assert stale.budget_status is BudgetStatus.OVER_BUDGET
    assert h.metrics.count("synthesize", "over_budget") == 1


def test_observe_policy_only_classifies():
    clock = FakeClock(0.0)
    tracker = LatencyBudgetTracker(target_ms=1000, clock=clock)
    h = Harness(
        FnStage(echo, name=StageName.SYNTHESIZE),
        tracker=tracker,
        budget_gate=True,
        over_budget_policy=OverBudgetPolicy.OBSERVE,
    )
    late = PipelineItem(sequence_num=1, payload=1)
    tracker.begin(late)
    clock.t = 2.0

    emitted = asyncio.run(h.run([late]))

    assert emitted == [1]
    assert late.budget_status is BudgetStatus.OVER_BUDGET


# ---------------------------------------------------------------------
# Terminal stage / cancellation
# ---------------------------------------------------------------------

def test_last_stage_marks_items_done():
    async def scenario():
        tracker = LatencyBudgetTracker(target_ms=1500)
        inbox = StageQueue(name="play", capacity=4)
        terminal = []
        worker = StageWorker(
            stage=FnStage(echo, name=StageName.PLAY),
            inbox=inbox,
            outbox=None,
            tracker=tracker,
            metrics=PipelineMetrics(),
            on_terminal=terminal.append,
            max_in_flight=1,
            reorder_window=0,
        )
        items = [PipelineItem(sequence_num=s, payload=s) for s in (1, 2)]
        for item in items:
            tracker.begin(item)
            await inbox.put(item)
        await inbox.close()
        await worker.run()
        return terminal

    terminal = asyncio.run(scenario())

    assert [i.sequence_num for i in terminal] == [1, 2]
    assert all(i.state is ItemState.DONE for i in terminal)


def test_cancellation_aborts_held_items_with_shutdown():
    async def hang(payload):
        await asyncio.sleep(10)

    async def scenario():
        h = Harness(FnStage(hang), max_in_flight=2)
        items = h.items(2)
        for item in items:
            await h.inbox.put(item)
        task = asyncio.create_task(h.worker.run())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return h, items

    h, items = asyncio.run(scenario())

    assert [i.drop_reason for i in items] == [DropReason.SHUTDOWN, DropReason.SHUTDOWN]
    assert len(h.terminal) == 2
    assert h.metrics.count("translate", "shutdown") == 2
