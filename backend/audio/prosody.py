"""
Prosody features and heuristic emotion classification.

Used by:
- Recognition: RMS energy gates silent windows before any network call
- Synthesis: emotion + pitch shape the synthesized voice

This module is pure: numpy in, dataclasses out. No IO, no timing.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

# Voiced speech pitch search range
_PITCH_MIN_HZ = 60.0
_PITCH_MAX_HZ = 400.0

# Autocorrelation peak must reach this fraction of lag-0 energy
_VOICING_THRESHOLD = 0.3


class Emotion(str, Enum):
    """Coarse emotional colouring carried from source audio to synthesis."""

    NEUTRAL = "neutral"
    HAPPY = "happy"
    SAD = "sad"
    ANGRY = "angry"
    FEARFUL = "fearful"
    SURPRISED = "surprised"


@dataclass(frozen=True)
class ProsodyFeatures:
    """
    energy_rms:
        Root-mean-square amplitude on the float32 [-1, 1) scale.

    pitch_hz:
        Fundamental frequency estimate, None when the window is unvoiced.

    speaking_rate:
        Zero-crossing rate per second; a cheap proxy for articulation speed.
    """
    energy_rms: float
    pitch_hz: float | None = None
    speaking_rate: float | None = None


def rms(samples: np.ndarray) -> float:
    if len(samples) == 0:
        return 0.0
    as_f64 = samples.astype(np.float64)
    return float(np.sqrt(np.mean(as_f64 * as_f64)))


def estimate_pitch(samples: np.ndarray, sample_rate_hz: int) -> float | None:
    """Autocorrelation pitch estimate; None for unvoiced or too-short input."""
    min_lag = int(sample_rate_hz / _PITCH_MAX_HZ)
    max_lag = int(sample_rate_hz / _PITCH_MIN_HZ)
    if len(samples) <= max_lag + 1:
        return None

    x = samples.astype(np.float64)
    x = x - x.mean()
    energy = float(np.dot(x, x))
    if energy <= 0.0:
        return None

    # Full autocorrelation via FFT, positive lags only
    n = 1 << (2 * len(x) - 1).bit_length()
    spectrum = np.fft.rfft(x, n)
    corr = np.fft.irfft(spectrum * np.conj(spectrum), n)[: len(x)]

    window = corr[min_lag:max_lag]
    peak = int(np.argmax(window))
    if window[peak] / energy < _VOICING_THRESHOLD:
        return None

    return sample_rate_hz / float(min_lag + peak)


def zero_crossing_rate(samples: np.ndarray, sample_rate_hz: int) -> float:
    if len(samples) < 2 or sample_rate_hz <= 0:
        return 0.0
    signs = np.signbit(samples)
    crossings = int(np.count_nonzero(signs[1:] != signs[:-1]))
    return crossings * sample_rate_hz / float(len(samples))


def extract_features(samples: np.ndarray, sample_rate_hz: int) -> ProsodyFeatures:
    return ProsodyFeatures(
        energy_rms=rms(samples),
        pitch_hz=estimate_pitch(samples, sample_rate_hz),
        speaking_rate=zero_crossing_rate(samples, sample_rate_hz),
    )


def classify_emotion(features: ProsodyFeatures) -> Emotion:
    """
    Map prosody to a coarse emotion.

    Heuristic bands (float32 RMS scale):
    - loud + high pitch   -> SURPRISED / HAPPY
    - loud + low pitch    -> ANGRY
    - quiet + low pitch   -> SAD
    - quiet + high pitch  -> FEARFUL
    - otherwise           -> NEUTRAL
    """
    energy = features.energy_rms
    pitch = features.pitch_hz

    if pitch is None:
        return Emotion.NEUTRAL

    loud = energy >= 0.25
    quiet = energy <= 0.04

    if loud and pitch >= 300.0:
        return Emotion.SURPRISED
    if loud and pitch >= 200.0:
        return Emotion.HAPPY
    if loud:
        return Emotion.ANGRY
    if quiet and pitch < 140.0:
        return Emotion.SAD
    if quiet and pitch >= 250.0:
        return Emotion.FEARFUL
    return Emotion.NEUTRAL
