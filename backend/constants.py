"""
DEFAULTS-AS-CONSTANTS
---------------------
Single source of truth for default behavioral values of the pipeline.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Runtime configuration (config.py) reads its defaults from this file.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Audio Format (PCM16 mono @ 16kHz)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)
AUDIO_FORMAT_TAG: Final[str] = "pcm_s16le"

# One pipeline item = one window drained from the ring buffer
SEGMENT_WINDOW_MS: Final[int] = 2_000

# A trailing window shorter than this is discarded at end of stream
MIN_SEGMENT_WINDOW_MS: Final[int] = 250

# Ring buffer holds this much audio before overwriting the oldest samples
RING_BUFFER_CAPACITY_S: Final[float] = 10.0

# Drain loop poll interval when the ring buffer lacks a full window
DRAIN_POLL_INTERVAL_MS: Final[int] = 20

# Source read block size
SOURCE_BLOCK_MS: Final[int] = 100

SEQ_NUM_START: Final[int] = 1

# =============================================================================
# Latency Budget
# =============================================================================

DEFAULT_LATENCY_TARGET_MS: Final[int] = 1_500

# Rolling window for per-stage p50/p95 statistics (wall-clock age)
LATENCY_STATS_WINDOW_S: Final[float] = 30.0

# =============================================================================
# Queues, Concurrency & Ordering
# =============================================================================

STAGE_QUEUE_CAPACITY: Final[int] = 4
STAGE_MAX_IN_FLIGHT: Final[int] = 2

# Completed items allowed to wait behind a pending head item
REORDER_WINDOW_ITEMS: Final[int] = 4

SHUTDOWN_GRACE_MS: Final[int] = 3_000

# =============================================================================
# Retry Policy
# =============================================================================

RETRY_MAX_ATTEMPTS: Final[int] = 3
RETRY_INITIAL_DELAY_MS: Final[int] = 500
RETRY_BACKOFF_MULTIPLIER: Final[float] = 2.0
RETRY_MAX_DELAY_MS: Final[int] = 10_000

# Per-attempt ceiling for one external call
STAGE_ATTEMPT_TIMEOUT_MS: Final[int] = 8_000

# Playback sink: "buffer briefly" before giving up on an item
PLAYBACK_MAX_ATTEMPTS: Final[int] = 2
PLAYBACK_RETRY_DELAY_MS: Final[int] = 100

# =============================================================================
# Recognition
# =============================================================================

# Windows quieter than this RMS (float32 scale) are treated as silence
SILENCE_RMS_THRESHOLD: Final[float] = 0.01
MIN_TRANSCRIPT_CONFIDENCE: Final[float] = 0.35

# =============================================================================
# Translation / Synthesis
# =============================================================================

DEFAULT_TARGET_LANG: Final[str] = "pt-BR"
DEFAULT_TRANSLATE_MODEL: Final[str] = "gpt-4o-mini"
DEFAULT_TRANSCRIBE_MODEL: Final[str] = "whisper-1"
DEFAULT_SPEECHMATICS_VOICE: Final[str] = "sarah"

PROVIDER_CHUNK_SIZE: Final[int] = 4096

# Primary synthesizer is retried this long after quota exhaustion
SYNTH_FALLBACK_COOLDOWN_S: Final[float] = 300.0

# Offline tone synthesizer
TONE_BASE_FREQ_HZ: Final[float] = 220.0
TONE_MS_PER_CHAR: Final[int] = 60
TONE_MIN_DURATION_MS: Final[int] = 300


# =============================================================================
# Helper Functions
# =============================================================================

def ms_to_samples(duration_ms: int, sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ) -> int:
    """
    Convert a duration in milliseconds to a whole sample count (floor).

    Non-positive input returns 0.
    """
    if duration_ms <= 0:
        return 0
    return (duration_ms * sample_rate_hz) // 1000


def samples_to_ms(num_samples: int, sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ) -> int:
    """Convert a sample count to milliseconds (floor)."""
    if num_samples <= 0 or sample_rate_hz <= 0:
        return 0
    return (num_samples * 1000) // sample_rate_hz
