# pyright: reportUnknownMemberType=false
"""
OpenAI speech recognizer.

Role in the system:
- Receives one decoded AudioFrame (a drained window) per call
- Gates silence locally on RMS energy; silent windows never hit the network
- Uploads the window as an in-memory WAV to the audio transcription API
- Returns one TranscriptSegment carrying prosody + emotion of the source
  audio, or None when there is nothing worth translating

Architectural constraints:
- No retries here; the orchestrator runs process() under the stage policy
- Vendor exceptions are mapped to StageError kinds (adapters/openai_errors.py)
- The client is injected (AsyncOpenAI or a test double)
"""

from __future__ import annotations

import math
from typing import Any

import numpy as np
import openai

from adapters.openai_errors import stage_error_from_openai
from audio.frames import AudioFrame
from audio.pcm import encode_wav
from audio.prosody import classify_emotion, extract_features
from constants import (
    DEFAULT_TRANSCRIBE_MODEL,
    MIN_TRANSCRIPT_CONFIDENCE,
    SILENCE_RMS_THRESHOLD,
)
from orchestrator.enums.service import StageName
from orchestrator.segments import TranscriptSegment
from orchestrator.stage import Stage


class OpenAIRecognizer(Stage[AudioFrame, TranscriptSegment]):
    name = StageName.RECOGNIZE
    expected_latency_ms = 700

    def __init__(
        self,
        *,
        client: Any,
        model: str = DEFAULT_TRANSCRIBE_MODEL,
        language: str | None = None,
        silence_threshold: float = SILENCE_RMS_THRESHOLD,
        min_confidence: float = MIN_TRANSCRIPT_CONFIDENCE,
    ) -> None:
        """
        Args:
            client:
                Vendor client exposing `audio.transcriptions.create`.
            language:
                Optional ISO-639-1 hint. When None the provider detects it.
        """
        self._client = client
        self._model = model
        self._language = language
        self._silence_threshold = silence_threshold
        self._min_confidence = min_confidence

    async def process(self, item: AudioFrame) -> TranscriptSegment | None:
        features = extract_features(item.samples, item.sample_rate_hz)
        if features.energy_rms < self._silence_threshold:
            return None

        wav = encode_wav(np.asarray(item.samples, dtype=np.float32), item.sample_rate_hz)

        kwargs: dict[str, Any] = {
            "model": self._model,
            "file": (f"window-{item.sequence_num}.wav", wav, "audio/wav"),
            "response_format": "verbose_json",
        }
        if self._language:
            kwargs["language"] = self._language

        try:
            response = await self._client.audio.transcriptions.create(**kwargs)
        except openai.OpenAIError as exc:
            raise stage_error_from_openai(exc, what="transcription") from exc

        text = (getattr(response, "text", "") or "").strip()
        if not text:
            return None

        confidence = transcript_confidence(getattr(response, "segments", None))
        if confidence < self._min_confidence:
            return None

        return TranscriptSegment(
            text=text,
            source_lang=self._language or getattr(response, "language", None) or "und",
            seq_range=(item.sequence_num, item.sequence_num + 1),
            confidence=confidence,
            prosody=features,
            emotion=classify_emotion(features),
        )


def transcript_confidence(segments: Any) -> float:
    """
    Collapse per-segment Whisper statistics into one [0, 1] score.

    Each segment contributes exp(avg_logprob) * (1 - no_speech_prob).
    No segment data means the provider did not report confidence: 1.0.
    """
    if not segments:
        return 1.0

    scores: list[float] = []
    for seg in segments:
        avg_logprob = float(getattr(seg, "avg_logprob", 0.0))
        no_speech = float(getattr(seg, "no_speech_prob", 0.0))
        scores.append(math.exp(min(avg_logprob, 0.0)) * (1.0 - no_speech))

    return float(min(1.0, max(0.0, sum(scores) / len(scores))))
