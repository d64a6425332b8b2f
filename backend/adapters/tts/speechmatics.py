"""
Speechmatics synthesizer.

Implements a non-streaming Text-to-Speech stage using the Speechmatics
Async TTS API.

Role in the system:
- Receives one TranslatedSegment per call
- Performs one synthesis request per segment
- Collects provider output as PCM16 16kHz mono
- Applies the source emotion's loudness shaping
- Returns exactly one SynthesizedAudio

Architectural constraints:
- No retries, timers, or backpressure logic live in this adapter.
- Cancellation is never suppressed: a cancelled call raises CancelledError.
- Provider failures are mapped to StageError kinds.
"""
from __future__ import annotations

import asyncio
import time

from speechmatics.tts import AsyncClient, OutputFormat, Voice # pyright: ignore[reportMissingTypeStubs] # pylint: disable=no-name-in-module, import-error

from adapters.tts.base import apply_gain, style_for
from constants import DEFAULT_SPEECHMATICS_VOICE, PROVIDER_CHUNK_SIZE
from observability.logger import log_event
from orchestrator.enums.service import StageName
from orchestrator.errors import QuotaExhaustedError, StageError
from orchestrator.retry import is_http_retryable
from orchestrator.segments import SynthesizedAudio, TranslatedSegment
from orchestrator.stage import Stage

# HTTP status Speechmatics uses when the account's usage quota is spent
_QUOTA_STATUS = 402


class SpeechmaticsSynthesizer(Stage[TranslatedSegment, SynthesizedAudio]):
    """
    Speechmatics chunked (non-streaming) synthesizer.

    Design:
    - One client session per call
    - Output bytes are re-aligned to whole PCM16 samples as they stream in
    """

    name = StageName.SYNTHESIZE
    expected_latency_ms = 600

    _VOICE_MAP: dict[str, Voice] = {
        "sarah": Voice.SARAH,
        "theo": Voice.THEO,
        "megan": Voice.MEGAN,
    }

    def __init__(
        self,
        *,
        api_key: str,
        voice: str = DEFAULT_SPEECHMATICS_VOICE,
    ) -> None:
        self._api_key = api_key
        self._voice = self._resolve_voice(voice)

    async def ready(self) -> bool:
        return bool(self._api_key)

    async def process(self, item: TranslatedSegment) -> SynthesizedAudio | None:
        text = item.text.strip()
        if not text:
            return None

        t0 = time.monotonic_ns()
        try:
            pcm = await self._synthesize(text)
        except StageError:
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            raise self._map_error(exc) from exc

        log_event({
            "event_type": "TTS_SYNTH_METRICS",
            "provider": "speechmatics",
            "seq_range": item.seq_range,
            "chars": len(text),
            "bytes": len(pcm),
            "synth_ms": (time.monotonic_ns() - t0) // 1_000_000,
        })

        if not pcm:
            return None

        return SynthesizedAudio(
            audio=apply_gain(pcm, style_for(item.emotion).gain),
            seq_range=item.seq_range,
            emotion=item.emotion,
            text=text,
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _synthesize(self, text: str) -> bytes:
        chunks: list[bytes] = []
        carry = b""

        async with AsyncClient(api_key=self._api_key) as client:
            async with await client.generate(
                text=text,
                voice=self._voice,
                output_format=OutputFormat.RAW_PCM_16000,
            ) as response:
                async for chunk in response.content.iter_chunked(PROVIDER_CHUNK_SIZE):
                    data = carry + chunk

                    if len(data) % 2 == 1:
                        carry = data[-1:]
                        data = data[:-1]
                    else:
                        carry = b""

                    chunks.append(data)

        return b"".join(chunks)

    @staticmethod
    def _map_error(exc: Exception) -> StageError:
        if isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
            return StageError.transient(f"speechmatics: {type(exc).__name__}", cause=exc)

        status = getattr(exc, "status", None) or getattr(exc, "status_code", None)
        if isinstance(status, int):
            if status == _QUOTA_STATUS:
                return QuotaExhaustedError("speechmatics: quota exhausted", cause=exc)
            if is_http_retryable(status):
                return StageError.transient(f"speechmatics: HTTP {status}", cause=exc)
            return StageError.terminal(f"speechmatics: HTTP {status}", cause=exc)

        return StageError.terminal(f"speechmatics: {type(exc).__name__}: {exc}", cause=exc)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @classmethod
    def _resolve_voice(cls, voice: str) -> Voice:
        """
        Convert user-facing voice string to Speechmatics Voice enum.

        Defaults to SARAH if unknown.
        """
        return cls._VOICE_MAP.get(voice.lower(), Voice.SARAH)
