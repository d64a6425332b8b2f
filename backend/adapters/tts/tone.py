"""
Local tone synthesizer.

Offline stand-in for a real voice: renders a sine tone whose length
follows the text and whose pitch, loudness and pace follow the source
speaker's prosody and emotion. Used for dry runs, tests, and as the
fallback when the cloud synthesizer is unavailable.
"""

from __future__ import annotations

import numpy as np

from adapters.tts.base import style_for
from audio.pcm import float32_to_pcm16le
from constants import (
    AUDIO_SAMPLE_RATE_HZ,
    TONE_BASE_FREQ_HZ,
    TONE_MIN_DURATION_MS,
    TONE_MS_PER_CHAR,
    ms_to_samples,
)
from orchestrator.enums.service import StageName
from orchestrator.segments import SynthesizedAudio, TranslatedSegment
from orchestrator.stage import Stage

# Peak amplitude before emotion gain; leaves headroom for loud styles
_BASE_AMPLITUDE = 0.3

# Fade in/out to avoid clicks at segment boundaries
_FADE_MS = 10


class ToneSynthesizer(Stage[TranslatedSegment, SynthesizedAudio]):
    name = StageName.SYNTHESIZE
    expected_latency_ms = 5

    def __init__(self, *, sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ) -> None:
        self._sample_rate_hz = sample_rate_hz

    def render(self, item: TranslatedSegment) -> np.ndarray:
        style = style_for(item.emotion)

        prosody = item.source.prosody
        base_freq = TONE_BASE_FREQ_HZ
        if prosody is not None and prosody.pitch_hz is not None:
            base_freq = prosody.pitch_hz
        freq = base_freq * style.pitch_scale

        duration_ms = max(
            TONE_MIN_DURATION_MS,
            int(len(item.text) * TONE_MS_PER_CHAR / style.rate_scale),
        )
        n = ms_to_samples(duration_ms, self._sample_rate_hz)

        t = np.arange(n, dtype=np.float32) / np.float32(self._sample_rate_hz)
        wave = np.sin(2.0 * np.pi * freq * t).astype(np.float32)
        wave *= np.float32(_BASE_AMPLITUDE * style.gain)

        fade = min(ms_to_samples(_FADE_MS, self._sample_rate_hz), n // 2)
        if fade > 0:
            ramp = np.linspace(0.0, 1.0, fade, dtype=np.float32)
            wave[:fade] *= ramp
            wave[-fade:] *= ramp[::-1]

        return wave

    async def process(self, item: TranslatedSegment) -> SynthesizedAudio | None:
        if not item.text.strip():
            return None

        return SynthesizedAudio(
            audio=float32_to_pcm16le(self.render(item)),
            seq_range=item.seq_range,
            sample_rate_hz=self._sample_rate_hz,
            emotion=item.emotion,
            text=item.text,
        )
