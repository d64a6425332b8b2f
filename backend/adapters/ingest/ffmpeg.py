"""
ffmpeg-backed source for URLs and live streams.

ffmpeg does the container demux, decode, downmix and resample; this class
only reads fixed-size s16le blocks from its stdout pipe.

Failure mapping:
- ffmpeg binary missing              -> TERMINAL
- stdout closes with non-zero status -> TRANSIENT (the process is
  restarted on the next read, so the retry policy can reconnect)
- stdout closes with status 0        -> end of stream

A partial block read before a non-zero exit is still delivered; the
TRANSIENT error is raised on the following read.

Restarts:
- Live inputs (rtmp, rtsp, srt, udp, ...) reconnect at the live edge.
- Seekable inputs (files, http) resume with `-ss` at the audio already
  delivered, so no block is admitted twice.
"""

from __future__ import annotations

import asyncio

from adapters.ingest.base import AudioSource
from audio.frames import RawSegment
from constants import (
    AUDIO_CHANNELS,
    AUDIO_SAMPLE_RATE_HZ,
    AUDIO_SAMPLE_WIDTH_BYTES,
    SOURCE_BLOCK_MS,
    ms_to_samples,
)
from observability.logger import log_event, now_ms
from orchestrator.errors import StageError

LIVE_SCHEMES = ("rtmp", "rtmps", "rtsp", "srt", "udp", "rtp", "tcp")


def is_live_url(url: str) -> bool:
    scheme, sep, _ = url.partition("://")
    return bool(sep) and scheme.lower() in LIVE_SCHEMES


class FfmpegSource(AudioSource):
    def __init__(
        self,
        url: str,
        *,
        block_ms: int = SOURCE_BLOCK_MS,
        ffmpeg_bin: str = "ffmpeg",
        live: bool | None = None,
    ) -> None:
        self._url = url
        self._ffmpeg_bin = ffmpeg_bin
        self._live = is_live_url(url) if live is None else live
        self._block_bytes = ms_to_samples(block_ms) * AUDIO_SAMPLE_WIDTH_BYTES
        self._proc: asyncio.subprocess.Process | None = None
        self._seq = 0
        self._samples_read = 0
        self._pending_error: StageError | None = None
        self._closed = False

    @property
    def samples_read(self) -> int:
        return self._samples_read

    def _command(self) -> list[str]:
        cmd = [self._ffmpeg_bin, "-nostdin", "-loglevel", "error"]
        if not self._live and self._samples_read:
            offset_s = self._samples_read / AUDIO_SAMPLE_RATE_HZ
            cmd += ["-ss", f"{offset_s:.6f}"]
        return cmd + [
            "-i", self._url,
            "-vn",
            "-ac", str(AUDIO_CHANNELS),
            "-ar", str(AUDIO_SAMPLE_RATE_HZ),
            "-f", "s16le",
            "pipe:1",
        ]

    async def _spawn(self) -> asyncio.subprocess.Process:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._command(),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except FileNotFoundError as exc:
            raise StageError.terminal(f"{self._ffmpeg_bin} not found", cause=exc) from exc

        log_event({
            "event_type": "SOURCE_STARTED",
            "source": "ffmpeg",
            "url": self._url,
            "pid": proc.pid,
            "resume_samples": 0 if self._live else self._samples_read,
        })
        return proc

    async def read_segment(self) -> RawSegment | None:
        if self._closed:
            return None

        if self._pending_error is not None:
            err, self._pending_error = self._pending_error, None
            raise err

        if self._proc is None:
            self._proc = await self._spawn()

        assert self._proc.stdout is not None
        try:
            data = await self._proc.stdout.readexactly(self._block_bytes)
        except asyncio.IncompleteReadError as exc:
            data = exc.partial

        # Keep whole samples only
        data = data[: len(data) - len(data) % AUDIO_SAMPLE_WIDTH_BYTES]

        if len(data) < self._block_bytes:
            returncode = await self._proc.wait()
            self._proc = None
            if returncode != 0:
                err = StageError.transient(f"ffmpeg exited with status {returncode}")
                if not data:
                    raise err
                self._pending_error = err
            else:
                self._closed = True
                if not data:
                    return None

        self._samples_read += len(data) // AUDIO_SAMPLE_WIDTH_BYTES
        self._seq += 1
        return RawSegment(sequence_num=self._seq, pcm_bytes=data, ts_ms=now_ms())

    async def close(self) -> None:
        self._closed = True
        self._pending_error = None
        proc, self._proc = self._proc, None
        if proc is None or proc.returncode is not None:
            return
        proc.kill()
        await proc.wait()
