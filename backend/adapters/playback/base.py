"""
Playback sink contract and the play stage.

Key invariants:
- Sinks receive audio strictly in sequence order (the play worker's
  reorder buffer guarantees it).
- A sink that is temporarily unavailable raises SinkUnavailableError
  (TRANSIENT); the play stage's short retry policy absorbs it.
- Idempotency: PlayStage keeps a played-sequence high-water mark, so a
  replayed or duplicated segment is never emitted to the sink twice.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from constants import PLAYBACK_MAX_ATTEMPTS, PLAYBACK_RETRY_DELAY_MS
from orchestrator.enums.service import StageName
from orchestrator.retry import RetryPolicy
from orchestrator.segments import SynthesizedAudio
from orchestrator.stage import Stage


class PlaybackSink(ABC):
    """Abstract audio output."""

    @abstractmethod
    async def play(self, audio: SynthesizedAudio) -> None:
        """
        Emit one segment of audio.

        Raises:
            SinkUnavailableError: device or file temporarily unavailable.
        """
        raise NotImplementedError

    async def ready(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class PlayStage(Stage[SynthesizedAudio, SynthesizedAudio]):
    """Adapts a PlaybackSink to the Stage contract."""

    name = StageName.PLAY
    expected_latency_ms = 5
    retry_policy = RetryPolicy(
        max_attempts=PLAYBACK_MAX_ATTEMPTS,
        initial_delay_s=PLAYBACK_RETRY_DELAY_MS / 1000.0,
    )

    def __init__(self, sink: PlaybackSink) -> None:
        self._sink = sink
        self._high_water: int | None = None

    @property
    def high_water(self) -> int | None:
        """Start sequence number of the most recently played segment."""
        return self._high_water

    async def process(self, item: SynthesizedAudio) -> SynthesizedAudio | None:
        start = item.seq_range[0]
        if self._high_water is not None and start <= self._high_water:
            return None

        await self._sink.play(item)
        self._high_water = start
        return item

    async def ready(self) -> bool:
        return await self._sink.ready()

    async def close(self) -> None:
        await self._sink.close()
