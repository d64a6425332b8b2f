# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio

import numpy as np
import pytest

import observability.logger as logger_mod
from adapters.decode.pcm16 import Pcm16Decoder
from adapters.ingest.base import AudioSource
from adapters.playback.base import PlayStage
from adapters.playback.null_sink import NullSink
from adapters.tts.tone import ToneSynthesizer
from audio.frames import RawSegment
from config import PipelineConfig
from orchestrator.enums.service import StageName
from orchestrator.enums.state import TERMINAL_STATES, ItemState
from orchestrator.errors import DropReason, PipelineFatalError, StageError
from orchestrator.retry import RetryPolicy
from orchestrator.runtime import Pipeline
from orchestrator.segments import TranscriptSegment, TranslatedSegment
from orchestrator.stage import Stage

WINDOW_MS = 100
WINDOW_SAMPLES = 1600  # 100 ms @ 16 kHz


@pytest.fixture(autouse=True)
def quiet_logger(monkeypatch):
    events = []
    monkeypatch.setattr(logger_mod, "_print", events.append)
    return events


# ---------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------

class ListSource(AudioSource):
    """Yields pre-built PCM16 blocks, then end of stream."""

    def __init__(self, blocks):
        self._blocks = list(blocks)
        self._seq = 0
        self.closed = False

    async def read_segment(self):
        if not self._blocks:
            return None
        self._seq += 1
        return RawSegment(sequence_num=self._seq, pcm_bytes=self._blocks.pop(0), ts_ms=0)

    async def close(self):
        self.closed = True


def speech_blocks(windows, block_samples=800):
    total = windows * WINDOW_SAMPLES
    t = np.arange(total) / 16_000.0
    pcm = (np.sin(2 * np.pi * 200.0 * t) * 8000).astype("<i2")
    return [pcm[i:i + block_samples].tobytes() for i in range(0, total, block_samples)]


class FakeRecognizer(Stage):
    name = StageName.RECOGNIZE

    def __init__(self, silent=()):
        self._silent = set(silent)

    async def process(self, item):
        if item.sequence_num in self._silent:
            return None
        return TranscriptSegment(
            text=f"hello {item.sequence_num}",
            source_lang="en",
            seq_range=(item.sequence_num, item.sequence_num + 1),
            confidence=0.9,
        )


class FakeTranslator(Stage):
    name = StageName.TRANSLATE

    def __init__(self, *, flaky=None, failures=0, fatal_on=None, hang=False):
        self._flaky = flaky
        self._failures = failures
        self._fatal_on = fatal_on
        self._hang = hang

    async def process(self, item):
        seq = item.seq_range[0]
        if self._hang:
            await asyncio.sleep(60)
        if seq == self._fatal_on:
            raise StageError.fatal("translator state corrupted")
        if seq == self._flaky and self._failures > 0:
            self._failures -= 1
            raise StageError.transient("503 from provider")
        return TranslatedSegment(source=item, text=f"ola {seq}", target_lang="pt-BR")


def make_pipeline(translator, *, recognizer=None, blocks=None, **config_kwargs):
    sink = NullSink()
    source = ListSource(speech_blocks(3) if blocks is None else blocks)
    config_kwargs.setdefault("retry_policies", {
        StageName.TRANSLATE: RetryPolicy(max_attempts=3, initial_delay_s=0.001),
    })
    config = PipelineConfig(segment_window_ms=WINDOW_MS, **config_kwargs)
    pipeline = Pipeline(
        config=config,
        source=source,
        stages=[
            Pcm16Decoder(),
            recognizer or FakeRecognizer(),
            translator,
            ToneSynthesizer(),
            PlayStage(sink),
        ],
    )
    return pipeline, source, sink


# ---------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------

def test_three_items_flow_in_order_with_transient_retry():
    pipeline, source, sink = make_pipeline(FakeTranslator(flaky=2, failures=2))

    report = asyncio.run(pipeline.run())

    assert report.states == {1: ItemState.DONE, 2: ItemState.DONE, 3: ItemState.DONE}
    assert report.emitted == [1, 2, 3]
    assert sink.played == [(1, 2), (2, 3), (3, 4)]
    assert report.attempts[2][StageName.TRANSLATE] == 3
    assert report.attempts[1][StageName.TRANSLATE] == 1
    assert report.drops == {}
    assert report.counters == {}
    assert source.closed
    assert not pipeline.running


def test_silent_window_is_skipped():
    pipeline, _, sink = make_pipeline(
        FakeTranslator(),
        recognizer=FakeRecognizer(silent={2}),
    )

    report = asyncio.run(pipeline.run())

    assert report.states[2] is ItemState.SKIPPED
    assert report.drops == {2: (StageName.RECOGNIZE, DropReason.NO_OUTPUT)}
    assert report.emitted == [1, 3]
    assert sink.played == [(1, 2), (3, 4)]
    assert report.counters == {"recognize": {"no_output": 1}}


def test_retry_exhaustion_drops_item_and_continues():
    pipeline, _, _ = make_pipeline(FakeTranslator(flaky=2, failures=5))

    report = asyncio.run(pipeline.run())

    assert report.emitted == [1, 3]
    assert report.drops[2] == (StageName.TRANSLATE, DropReason.RETRY_EXHAUSTED)
    assert report.counters["translate"]["retry_exhausted"] == 1


def test_short_tail_is_discarded_at_end_of_stream():
    # 2 full windows + a 50 ms tail (below the minimum window)
    blocks = speech_blocks(2) + [np.zeros(800, dtype="<i2").tobytes()]
    pipeline, _, _ = make_pipeline(FakeTranslator(), blocks=blocks)

    report = asyncio.run(pipeline.run())

    assert sorted(report.states) == [1, 2]
    assert report.ring["available"] == 0


def test_metrics_reset_after_run():
    pipeline, _, _ = make_pipeline(FakeTranslator(), recognizer=FakeRecognizer(silent={1}))

    report = asyncio.run(pipeline.run())

    assert report.counters == {"recognize": {"no_output": 1}}
    assert pipeline.metrics.snapshot() == {}
    assert pipeline.last_report is report


def test_run_twice_rejected():
    pipeline, _, _ = make_pipeline(FakeTranslator())
    asyncio.run(pipeline.run())

    with pytest.raises(RuntimeError):
        asyncio.run(pipeline.run())


def test_stage_order_validated():
    with pytest.raises(ValueError):
        Pipeline(
            config=PipelineConfig(),
            source=ListSource([]),
            stages=[Pcm16Decoder(), FakeTranslator(), FakeRecognizer()],
        )


# ---------------------------------------------------------------------
# Fatal
# ---------------------------------------------------------------------

def test_fatal_stage_error_aborts_run_with_context():
    pipeline, source, _ = make_pipeline(FakeTranslator(fatal_on=2))

    with pytest.raises(PipelineFatalError) as info:
        asyncio.run(pipeline.run())

    assert info.value.stage is StageName.TRANSLATE
    assert info.value.sequence_num == 2

    report = pipeline.last_report
    assert report is not None
    assert report.states[2] is ItemState.ABORTED
    assert report.drops[2] == (StageName.TRANSLATE, DropReason.FATAL)
    assert all(state in TERMINAL_STATES for state in report.states.values())
    assert source.closed


def test_source_retry_exhaustion_is_fatal():
    class BrokenSource(AudioSource):
        async def read_segment(self):
            raise StageError.transient("connection reset")

    pipeline = Pipeline(
        config=PipelineConfig(
            segment_window_ms=WINDOW_MS,
            retry_policies={StageName.INGEST: RetryPolicy(max_attempts=2, initial_delay_s=0.0)},
        ),
        source=BrokenSource(),
        stages=[
            Pcm16Decoder(),
            FakeRecognizer(),
            FakeTranslator(),
            ToneSynthesizer(),
            PlayStage(NullSink()),
        ],
    )

    with pytest.raises(PipelineFatalError) as info:
        asyncio.run(pipeline.run())

    assert info.value.stage is StageName.INGEST


# ---------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------

def test_shutdown_grace_expiry_aborts_in_flight_items(quiet_logger):
    pipeline, _, sink = make_pipeline(FakeTranslator(hang=True), shutdown_grace_ms=50)

    async def scenario():
        run = asyncio.create_task(pipeline.run())
        await asyncio.sleep(0.1)
        pipeline.request_shutdown("test")
        return await asyncio.wait_for(run, 2.0)

    report = asyncio.run(scenario())

    assert report.shutdown_requested
    assert report.grace_expired
    assert report.emitted == []
    assert sink.played == []
    assert set(report.states.values()) == {ItemState.ABORTED}
    assert all(reason is DropReason.SHUTDOWN for _, reason in report.drops.values())
    assert any('"SHUTDOWN_GRACE_EXPIRED"' in line for line in quiet_logger)


def test_shutdown_before_grace_drains_in_flight_items():
    pipeline, _, _ = make_pipeline(FakeTranslator(), shutdown_grace_ms=5_000)

    async def scenario():
        run = asyncio.create_task(pipeline.run())
        await asyncio.sleep(0)
        pipeline.request_shutdown("test")
        return await asyncio.wait_for(run, 2.0)

    report = asyncio.run(scenario())

    assert report.shutdown_requested
    assert not report.grace_expired
    assert all(state in TERMINAL_STATES for state in report.states.values())


def test_status_snapshot_shape():
    pipeline, _, _ = make_pipeline(FakeTranslator())

    status = pipeline.status()

    assert status["running"] is False
    assert status["admitted"] == 0
    assert [q["name"] for q in status["queues"]] == [
        "decode", "recognize", "translate", "synthesize", "play",
    ]
    assert status["ring"]["dropped"] == 0
