"""WAV file sink: appends played segments to one PCM16 mono file."""

from __future__ import annotations

import asyncio
from pathlib import Path

import soundfile as sf

from adapters.playback.base import PlaybackSink
from audio.pcm import pcm16le_to_int16, resample
from constants import AUDIO_SAMPLE_RATE_HZ
from orchestrator.errors import SinkUnavailableError
from orchestrator.segments import SynthesizedAudio


class WavFileSink(PlaybackSink):
    def __init__(
        self,
        path: str | Path,
        *,
        sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ,
        realtime: bool = False,
    ) -> None:
        self._path = Path(path)
        self._sample_rate_hz = sample_rate_hz
        self._realtime = realtime
        self._file: sf.SoundFile | None = None
        self.samples_written = 0

    def _open(self) -> sf.SoundFile:
        if self._file is None:
            try:
                self._file = sf.SoundFile(
                    str(self._path),
                    mode="w",
                    samplerate=self._sample_rate_hz,
                    channels=1,
                    format="WAV",
                    subtype="PCM_16",
                )
            except (sf.LibsndfileError, OSError) as exc:
                raise SinkUnavailableError(f"cannot open {self._path}", cause=exc) from exc
        return self._file

    async def play(self, audio: SynthesizedAudio) -> None:
        samples = resample(
            pcm16le_to_int16(audio.audio), audio.sample_rate_hz, self._sample_rate_hz
        )
        handle = self._open()
        await asyncio.to_thread(handle.write, samples)
        self.samples_written += len(samples)

        if self._realtime:
            await asyncio.sleep(len(samples) / self._sample_rate_hz)

    async def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
