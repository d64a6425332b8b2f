"""
Source ingester contract.

This module defines the *interface only*. Ring buffering, windowing,
retries and shutdown live in the pipeline runtime.

Key invariants:
- read_segment() returns PCM16LE mono bytes at AUDIO_SAMPLE_RATE_HZ.
  Resampling and channel mixing are the ingester's job.
- None means end of stream; the runtime then drains gracefully.
- Recoverable read failures raise StageError.transient so the runtime's
  retry policy can absorb them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from audio.frames import RawSegment


class AudioSource(ABC):
    """Abstract pull-based audio source."""

    @abstractmethod
    async def read_segment(self) -> RawSegment | None:
        """
        Read the next block of audio.

        Returns:
            RawSegment with a source-monotonic sequence number, or None at
            end of stream.
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Release the underlying handle. Idempotent."""
        return None
