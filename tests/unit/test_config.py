# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from config import AppConfig, ConfigError, LatencyBudget, PipelineConfig
from constants import ms_to_samples, samples_to_ms
from orchestrator.enums.mode import OverBudgetPolicy
from orchestrator.enums.service import StageName


# ---------------------------------------------------------------------
# Latency budget
# ---------------------------------------------------------------------

@pytest.mark.parametrize("value", [0, -1])
def test_non_positive_latency_rejected(value):
    with pytest.raises(ConfigError, match="latency must be > 0 ms"):
        LatencyBudget(value)


def test_latency_to_samples():
    assert LatencyBudget(1500).samples_for_rate(16_000) == 24_000


def test_ms_sample_conversions():
    assert ms_to_samples(100) == 1600
    assert ms_to_samples(0) == 0
    assert samples_to_ms(1600) == 100
    assert samples_to_ms(-5) == 0


# ---------------------------------------------------------------------
# Pipeline config
# ---------------------------------------------------------------------

def test_pipeline_defaults_cover_network_stages():
    config = PipelineConfig()

    assert config.latency.target_ms == 1500
    assert config.reorder_window == 4
    for stage in (StageName.INGEST, StageName.RECOGNIZE, StageName.TRANSLATE, StageName.SYNTHESIZE):
        policy = config.retry_policy_for(stage)
        assert policy.max_attempts == 3
        assert policy.initial_delay_s == 0.5
        assert policy.multiplier == 2.0
    assert config.retry_policy_for(StageName.PLAY).max_attempts == 2
    assert config.retry_policy_for(StageName.DECODE) is None


@pytest.mark.parametrize("kwargs", [
    {"queue_capacity": 0},
    {"max_in_flight": 0},
    {"reorder_window": -1},
    {"segment_window_ms": 0},
    {"ring_buffer_capacity_samples": 0},
    {"shutdown_grace_ms": -1},
])
def test_pipeline_config_validation(kwargs):
    with pytest.raises(ConfigError):
        PipelineConfig(**kwargs)


# ---------------------------------------------------------------------
# Environment loading
# ---------------------------------------------------------------------

def test_load_from_env_defaults():
    config = AppConfig.load_from_env({})

    assert config.target_lang == "pt-BR"
    assert config.source_lang is None
    assert config.openai_api_key is None
    assert config.translator_provider == "openai"
    assert config.tts_provider == "speechmatics"
    assert config.over_budget_policy is OverBudgetPolicy.OBSERVE
    assert config.pipeline_config().latency.target_ms == 1500


def test_load_from_env_overrides():
    config = AppConfig.load_from_env({
        "LATENCY_TARGET_MS": "800",
        "TARGET_LANG": "es",
        "SOURCE_LANG": "en",
        "OPENAI_API_KEY": "sk-test",
        "OVER_BUDGET_POLICY": "drop",
        "MAX_IN_FLIGHT": "3",
        "REORDER_WINDOW": "6",
    })

    pipeline = config.pipeline_config()
    assert config.target_lang == "es"
    assert config.source_lang == "en"
    assert config.openai_api_key == "sk-test"
    assert pipeline.latency.target_ms == 800
    assert pipeline.over_budget_policy is OverBudgetPolicy.DROP
    assert pipeline.max_in_flight == 3
    assert pipeline.reorder_window == 6


@pytest.mark.parametrize("environ", [
    {"LATENCY_TARGET_MS": "0"},
    {"LATENCY_TARGET_MS": "fast"},
    {"TARGET_LANG": "  "},
    {"OPENAI_API_KEY": ""},
    {"OVER_BUDGET_POLICY": "panic"},
])
def test_invalid_environment_rejected(environ):
    with pytest.raises(ConfigError):
        AppConfig.load_from_env(environ)
