"""PCM16 window decoder: raw drained bytes -> float32 AudioFrame."""

from __future__ import annotations

from audio.frames import AudioFrame, RawSegment
from audio.pcm import pcm16le_to_float32
from constants import AUDIO_SAMPLE_RATE_HZ, AUDIO_SAMPLE_WIDTH_BYTES
from orchestrator.enums.service import StageName
from orchestrator.errors import StageError
from orchestrator.stage import Stage


class Pcm16Decoder(Stage[RawSegment, AudioFrame]):
    """
    Local, CPU-only decode. Never retried: a malformed window stays
    malformed, so failures are TERMINAL and the item is dropped.
    """

    name = StageName.DECODE
    expected_latency_ms = 1

    def __init__(self, *, sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ) -> None:
        self._sample_rate_hz = sample_rate_hz

    async def process(self, item: RawSegment) -> AudioFrame | None:
        data = item.pcm_bytes
        if not data:
            raise StageError.terminal(f"malformed segment seq={item.sequence_num}: empty")
        if len(data) % AUDIO_SAMPLE_WIDTH_BYTES != 0:
            raise StageError.terminal(
                f"malformed segment seq={item.sequence_num}: {len(data)} bytes is not "
                f"a whole number of {AUDIO_SAMPLE_WIDTH_BYTES}-byte samples"
            )

        return AudioFrame(
            sequence_num=item.sequence_num,
            samples=pcm16le_to_float32(data),
            captured_at_ms=item.ts_ms,
            sample_rate_hz=self._sample_rate_hz,
        )
