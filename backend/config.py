"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Validate operator input (latency budget, target language, API keys)
- Provide typed, immutable config objects

Non-responsibilities:
- No orchestration logic
- No default constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from constants import (
    AUDIO_SAMPLE_RATE_HZ,
    DEFAULT_LATENCY_TARGET_MS,
    DEFAULT_SPEECHMATICS_VOICE,
    DEFAULT_TARGET_LANG,
    DEFAULT_TRANSCRIBE_MODEL,
    DEFAULT_TRANSLATE_MODEL,
    LATENCY_STATS_WINDOW_S,
    PLAYBACK_MAX_ATTEMPTS,
    PLAYBACK_RETRY_DELAY_MS,
    REORDER_WINDOW_ITEMS,
    RETRY_BACKOFF_MULTIPLIER,
    RETRY_INITIAL_DELAY_MS,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_DELAY_MS,
    RING_BUFFER_CAPACITY_S,
    SEGMENT_WINDOW_MS,
    SHUTDOWN_GRACE_MS,
    STAGE_ATTEMPT_TIMEOUT_MS,
    STAGE_MAX_IN_FLIGHT,
    STAGE_QUEUE_CAPACITY,
)
from orchestrator.enums.mode import OverBudgetPolicy
from orchestrator.enums.service import StageName
from orchestrator.retry import RetryPolicy


class ConfigError(ValueError):
    """Invalid operator configuration."""


# ---------------------------------------------------------------------
# Validated value types
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class LatencyBudget:
    target_ms: int = DEFAULT_LATENCY_TARGET_MS

    def __post_init__(self) -> None:
        if self.target_ms <= 0:
            raise ConfigError("latency must be > 0 ms")

    def samples_for_rate(self, sample_rate_hz: int) -> int:
        """Number of samples that fit in the budget at `sample_rate_hz`."""
        return self.target_ms * sample_rate_hz // 1000


def require_target_lang(value: str) -> str:
    if not value.strip():
        raise ConfigError("target language must not be empty")
    return value


def optional_api_key(value: str | None) -> str | None:
    """None means 'not configured'; an empty string is an operator error."""
    if value is None:
        return None
    if not value.strip():
        raise ConfigError("api key must not be empty")
    return value


# ---------------------------------------------------------------------
# Pipeline configuration
# ---------------------------------------------------------------------

def default_retry_policies() -> dict[StageName, RetryPolicy]:
    network = RetryPolicy(
        max_attempts=RETRY_MAX_ATTEMPTS,
        initial_delay_s=RETRY_INITIAL_DELAY_MS / 1000.0,
        multiplier=RETRY_BACKOFF_MULTIPLIER,
        max_delay_s=RETRY_MAX_DELAY_MS / 1000.0,
        attempt_timeout_s=STAGE_ATTEMPT_TIMEOUT_MS / 1000.0,
    )
    return {
        StageName.INGEST: network,
        StageName.RECOGNIZE: network,
        StageName.TRANSLATE: network,
        StageName.SYNTHESIZE: network,
        StageName.PLAY: RetryPolicy(
            max_attempts=PLAYBACK_MAX_ATTEMPTS,
            initial_delay_s=PLAYBACK_RETRY_DELAY_MS / 1000.0,
        ),
    }


@dataclass(frozen=True)
class PipelineConfig:
    """
    Everything the orchestrator needs, passed in at construction.

    Stages missing from `retry_policies` fall back to their own
    `Stage.retry_policy` (or a single attempt).
    """

    latency: LatencyBudget = field(default_factory=LatencyBudget)
    sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ
    ring_buffer_capacity_samples: int = int(RING_BUFFER_CAPACITY_S * AUDIO_SAMPLE_RATE_HZ)
    segment_window_ms: int = SEGMENT_WINDOW_MS
    queue_capacity: int = STAGE_QUEUE_CAPACITY
    max_in_flight: int = STAGE_MAX_IN_FLIGHT
    reorder_window: int = REORDER_WINDOW_ITEMS
    shutdown_grace_ms: int = SHUTDOWN_GRACE_MS
    over_budget_policy: OverBudgetPolicy = OverBudgetPolicy.OBSERVE
    latency_window_s: float = LATENCY_STATS_WINDOW_S
    retry_policies: Mapping[StageName, RetryPolicy] = field(default_factory=default_retry_policies)

    def __post_init__(self) -> None:
        if self.ring_buffer_capacity_samples <= 0:
            raise ConfigError("ring buffer capacity must be > 0 samples")
        if self.segment_window_ms <= 0:
            raise ConfigError("segment window must be > 0 ms")
        if self.queue_capacity <= 0:
            raise ConfigError("queue capacity must be > 0")
        if self.max_in_flight <= 0:
            raise ConfigError("max_in_flight must be > 0")
        if self.reorder_window < 0:
            raise ConfigError("reorder window must be >= 0")
        if self.shutdown_grace_ms < 0:
            raise ConfigError("shutdown grace must be >= 0 ms")

    def retry_policy_for(self, stage: StageName) -> RetryPolicy | None:
        return self.retry_policies.get(stage)


# ---------------------------------------------------------------------
# Application configuration
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to bootstrap code, which builds stages and the
    PipelineConfig from it.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Languages
    # ------------------------------------------------------------------

    target_lang: str
    source_lang: str | None

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    openai_api_key: str | None
    transcribe_model: str
    translate_model: str
    translator_provider: str

    tts_provider: str
    speechmatics_api_key: str | None
    speechmatics_voice: str

    # ------------------------------------------------------------------
    # Pipeline tuning
    # ------------------------------------------------------------------

    latency: LatencyBudget
    queue_capacity: int
    max_in_flight: int
    reorder_window: int
    segment_window_ms: int
    shutdown_grace_ms: int
    over_budget_policy: OverBudgetPolicy

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------

    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            latency=self.latency,
            segment_window_ms=self.segment_window_ms,
            queue_capacity=self.queue_capacity,
            max_in_flight=self.max_in_flight,
            reorder_window=self.reorder_window,
            shutdown_grace_ms=self.shutdown_grace_ms,
            over_budget_policy=self.over_budget_policy,
        )

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env(environ: Mapping[str, str] | None = None) -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ConfigError if a value is present but invalid.
        """
        env = os.environ if environ is None else environ

        try:
            latency = LatencyBudget(int(env.get("LATENCY_TARGET_MS", DEFAULT_LATENCY_TARGET_MS)))
            queue_capacity = int(env.get("QUEUE_CAPACITY", STAGE_QUEUE_CAPACITY))
            max_in_flight = int(env.get("MAX_IN_FLIGHT", STAGE_MAX_IN_FLIGHT))
            reorder_window = int(env.get("REORDER_WINDOW", REORDER_WINDOW_ITEMS))
            segment_window_ms = int(env.get("SEGMENT_WINDOW_MS", SEGMENT_WINDOW_MS))
            shutdown_grace_ms = int(env.get("SHUTDOWN_GRACE_MS", SHUTDOWN_GRACE_MS))
            over_budget_policy = OverBudgetPolicy(env.get("OVER_BUDGET_POLICY", "observe"))
        except ValueError as exc:
            if isinstance(exc, ConfigError):
                raise
            raise ConfigError(str(exc)) from exc

        return AppConfig(
            env=env.get("ENV", "dev"),
            log_level=env.get("LOG_LEVEL", "INFO"),

            target_lang=require_target_lang(env.get("TARGET_LANG", DEFAULT_TARGET_LANG)),
            source_lang=env.get("SOURCE_LANG") or None,

            openai_api_key=optional_api_key(env.get("OPENAI_API_KEY")),
            transcribe_model=env.get("TRANSCRIBE_MODEL", DEFAULT_TRANSCRIBE_MODEL),
            translate_model=env.get("TRANSLATE_MODEL", DEFAULT_TRANSLATE_MODEL),
            translator_provider=env.get("TRANSLATOR_PROVIDER", "openai"),

            tts_provider=env.get("TTS_PROVIDER", "speechmatics"),
            speechmatics_api_key=optional_api_key(env.get("SPEECHMATICS_API_KEY")),
            speechmatics_voice=env.get("SPEECHMATICS_VOICE", DEFAULT_SPEECHMATICS_VOICE),

            latency=latency,
            queue_capacity=queue_capacity,
            max_in_flight=max_in_flight,
            reorder_window=reorder_window,
            segment_window_ms=segment_window_ms,
            shutdown_grace_ms=shutdown_grace_ms,
            over_budget_policy=over_budget_policy,
        )
