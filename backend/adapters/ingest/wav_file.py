"""
Audio file source.

Reads any container soundfile understands (WAV, FLAC, OGG), mixes to
mono, resamples to the pipeline rate and yields fixed-size PCM16 blocks.

With `realtime=True` blocks are paced at capture speed, which is what a
live source looks like to the pipeline; tests and batch runs leave it off.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import numpy as np
import soundfile as sf

from adapters.ingest.base import AudioSource
from audio.frames import RawSegment
from audio.pcm import resample, to_mono
from constants import AUDIO_SAMPLE_RATE_HZ, SOURCE_BLOCK_MS, ms_to_samples
from observability.logger import now_ms
from orchestrator.errors import StageError


class WavFileSource(AudioSource):
    """Pull-based file reader; soundfile IO runs in a worker thread."""

    def __init__(
        self,
        path: str | Path,
        *,
        block_ms: int = SOURCE_BLOCK_MS,
        realtime: bool = False,
    ) -> None:
        self._path = Path(path)
        self._block_ms = block_ms
        self._realtime = realtime
        self._file: sf.SoundFile | None = None
        self._seq = 0
        self._closed = False

    async def read_segment(self) -> RawSegment | None:
        if self._closed:
            return None

        if self._file is None:
            try:
                self._file = await asyncio.to_thread(sf.SoundFile, str(self._path))
            except (sf.LibsndfileError, OSError) as exc:
                raise StageError.terminal(f"cannot open {self._path}", cause=exc) from exc

        src_rate = self._file.samplerate
        frames = ms_to_samples(self._block_ms, src_rate)

        block = await asyncio.to_thread(self._file.read, frames, "int16", True)
        if len(block) == 0:
            await self.close()
            return None

        samples = resample(to_mono(np.asarray(block)), src_rate, AUDIO_SAMPLE_RATE_HZ)

        if self._realtime:
            await asyncio.sleep(self._block_ms / 1000.0)

        self._seq += 1
        return RawSegment(
            sequence_num=self._seq,
            pcm_bytes=samples.astype("<i2").tobytes(),
            ts_ms=now_ms(),
        )

    async def close(self) -> None:
        self._closed = True
        if self._file is not None:
            self._file.close()
            self._file = None
