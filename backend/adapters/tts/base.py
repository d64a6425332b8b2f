"""
Shared synthesis helpers.

Synthesizers are plain Stage[TranslatedSegment, SynthesizedAudio]
implementations; this module holds what they have in common:

- EmotionStyle: how a source emotion colours the synthesized voice
- apply_gain: loudness shaping on PCM16 output

Key invariants:
- Output audio is always PCM16LE mono at AUDIO_SAMPLE_RATE_HZ.
- Styling never changes the seq_range carried through the segment.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from audio.pcm import float32_to_pcm16le, pcm16le_to_float32
from audio.prosody import Emotion


@dataclass(frozen=True)
class EmotionStyle:
    """
    gain:        linear amplitude multiplier
    pitch_scale: multiplier on the base pitch (local synthesis only)
    rate_scale:  multiplier on speaking rate (local synthesis only)
    """
    gain: float = 1.0
    pitch_scale: float = 1.0
    rate_scale: float = 1.0


EMOTION_STYLES: dict[Emotion, EmotionStyle] = {
    Emotion.NEUTRAL: EmotionStyle(),
    Emotion.HAPPY: EmotionStyle(gain=1.1, pitch_scale=1.15, rate_scale=1.1),
    Emotion.SAD: EmotionStyle(gain=0.8, pitch_scale=0.85, rate_scale=0.85),
    Emotion.ANGRY: EmotionStyle(gain=1.25, pitch_scale=0.95, rate_scale=1.15),
    Emotion.FEARFUL: EmotionStyle(gain=0.9, pitch_scale=1.25, rate_scale=1.2),
    Emotion.SURPRISED: EmotionStyle(gain=1.15, pitch_scale=1.3, rate_scale=1.05),
}


def style_for(emotion: Emotion) -> EmotionStyle:
    return EMOTION_STYLES.get(emotion, EMOTION_STYLES[Emotion.NEUTRAL])


def apply_gain(pcm_bytes: bytes, gain: float) -> bytes:
    """Scale PCM16 audio by `gain`, clipping at full scale."""
    if gain == 1.0 or not pcm_bytes:
        return pcm_bytes
    samples = pcm16le_to_float32(pcm_bytes) * np.float32(gain)
    return float32_to_pcm16le(samples)
