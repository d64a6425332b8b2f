"""
Audio frame primitives.

Pure data containers only.
No behavior, no queues, no timing logic.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from constants import AUDIO_SAMPLE_RATE_HZ


@dataclass(frozen=True)
class RawSegment:
    """
    One block of raw audio produced by a source ingester.

    sequence_num:
        Source-assigned monotonic block number (observability only).

    pcm_bytes:
        PCM16 little-endian mono bytes at AUDIO_SAMPLE_RATE_HZ.

    ts_ms:
        Wall-clock timestamp (milliseconds) when the block was captured.
    """
    sequence_num: int
    pcm_bytes: bytes
    ts_ms: int


@dataclass(frozen=True)
class AudioFrame:
    """
    Canonical decoded audio frame consumed by recognition.

    sequence_num:
        Pipeline item sequence number. Strictly increasing per stream;
        gaps are permitted (dropped windows), reordering is not.

    samples:
        Read-only float32 mono samples in [-1.0, 1.0).

    captured_at_ms:
        Wall-clock timestamp (milliseconds) when the window was captured.
    """
    sequence_num: int
    samples: np.ndarray
    captured_at_ms: int
    sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ

    def __post_init__(self) -> None:
        self.samples.setflags(write=False)

    @property
    def duration_ms(self) -> int:
        if self.sample_rate_hz <= 0:
            return 0
        return (len(self.samples) * 1000) // self.sample_rate_hz
