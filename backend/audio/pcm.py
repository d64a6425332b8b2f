"""PCM conversion utilities."""

from __future__ import annotations

import io
from math import gcd

import numpy as np
import soundfile as sf
from scipy import signal


def pcm16le_to_int16(pcm_bytes: bytes) -> np.ndarray:
    """
    Interpret PCM16 little-endian mono bytes as int16 samples.

    A trailing odd byte (truncated sample) is discarded.
    """
    if len(pcm_bytes) % 2 != 0:
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]
    return np.frombuffer(pcm_bytes, dtype="<i2")


def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    Runtime-safe, adapter-agnostic utility.
    No resampling. No channel mixing.
    """
    audio_i16 = pcm16le_to_int16(pcm_bytes)
    return audio_i16.astype(np.float32) / 32768.0


def float32_to_pcm16le(audio_f32: np.ndarray) -> bytes:
    """
    Inverse of pcm16le_to_float32.
    Does not contain a np.int16(32768) == -32768 bug.
    """
    audio_f32 = np.clip(audio_f32, -1.0, 1.0)
    audio_i16 = np.round(audio_f32 * 32767.0).astype("<i2")
    return audio_i16.tobytes()


def resample(samples: np.ndarray, src_rate_hz: int, dst_rate_hz: int) -> np.ndarray:
    """
    Polyphase resample of a mono int16 or float signal.

    Output keeps the input dtype; int16 output is clipped.
    """
    if src_rate_hz == dst_rate_hz or len(samples) == 0:
        return samples

    g = gcd(src_rate_hz, dst_rate_hz)
    out = signal.resample_poly(samples, dst_rate_hz // g, src_rate_hz // g)

    if samples.dtype == np.int16:
        return np.clip(out, -32768, 32767).astype(np.int16)
    return out.astype(samples.dtype)


def to_mono(samples: np.ndarray) -> np.ndarray:
    """Average channels of a (frames, channels) array down to mono."""
    if samples.ndim == 1:
        return samples
    mixed = samples.mean(axis=1)
    if samples.dtype == np.int16:
        return mixed.astype(np.int16)
    return mixed.astype(samples.dtype)


def encode_wav(samples_f32: np.ndarray, sample_rate_hz: int) -> bytes:
    """Encode float32 mono samples as an in-memory PCM16 WAV file."""
    buf = io.BytesIO()
    sf.write(buf, samples_f32, sample_rate_hz, format="WAV", subtype="PCM_16")
    return buf.getvalue()
