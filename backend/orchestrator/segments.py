"""
Text and synthesized-audio segment primitives.

Pure data containers only. Every segment is frozen: once a stage hands a
segment downstream it is never mutated again.

Range semantics:
    `seq_range` is a half-open [start, end) range of AudioFrame sequence
    numbers the segment was derived from. It is copied unchanged from
    transcript -> translation -> synthesized audio so captions and audio
    stay aligned downstream.
"""

from __future__ import annotations

from dataclasses import dataclass

from audio.prosody import Emotion, ProsodyFeatures
from constants import AUDIO_FORMAT_TAG, AUDIO_SAMPLE_RATE_HZ


@dataclass(frozen=True)
class TranscriptSegment:
    text: str
    source_lang: str
    seq_range: tuple[int, int]
    confidence: float
    prosody: ProsodyFeatures | None = None
    emotion: Emotion = Emotion.NEUTRAL

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")
        start, end = self.seq_range
        if end <= start:
            raise ValueError(f"empty seq_range {self.seq_range}")


@dataclass(frozen=True)
class TranslatedSegment:
    """Exactly one per TranscriptSegment; shares its seq_range."""
    source: TranscriptSegment
    text: str
    target_lang: str

    @property
    def seq_range(self) -> tuple[int, int]:
        return self.source.seq_range

    @property
    def emotion(self) -> Emotion:
        return self.source.emotion


@dataclass(frozen=True)
class SynthesizedAudio:
    audio: bytes
    seq_range: tuple[int, int]
    format_tag: str = AUDIO_FORMAT_TAG
    sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ
    emotion: Emotion = Emotion.NEUTRAL
    text: str = ""
