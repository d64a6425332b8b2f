"""
Provider wiring.

Responsibilities:
- Build vendor clients once per process
- Select stage implementations from AppConfig
- Assemble the Pipeline

Non-responsibilities:
- No orchestration, no retries (the runtime owns both)
"""

from __future__ import annotations

from openai import AsyncOpenAI

from adapters.asr.openai_recognizer import OpenAIRecognizer
from adapters.decode.pcm16 import Pcm16Decoder
from adapters.ingest.base import AudioSource
from adapters.ingest.ffmpeg import FfmpegSource
from adapters.ingest.wav_file import WavFileSource
from adapters.playback.base import PlaybackSink, PlayStage
from adapters.playback.null_sink import NullSink
from adapters.playback.wav_sink import WavFileSink
from adapters.translate.echo import EchoTranslator
from adapters.translate.openai_translator import OpenAITranslator
from adapters.tts.fallback import FallbackSynthesizer
from adapters.tts.speechmatics import SpeechmaticsSynthesizer
from adapters.tts.tone import ToneSynthesizer
from config import AppConfig, ConfigError
from observability.metrics import PipelineMetrics
from orchestrator.enums.service import StageName
from orchestrator.runtime import Pipeline
from orchestrator.stage import Stage

TRANSLATOR_PROVIDERS = ("openai", "echo")
TTS_PROVIDERS = ("speechmatics", "tone")


def build_openai_client(config: AppConfig) -> AsyncOpenAI:
    if not config.openai_api_key:
        raise ConfigError("OPENAI_API_KEY environment variable not set")
    return AsyncOpenAI(api_key=config.openai_api_key)


def build_source(input_ref: str, *, realtime: bool = False) -> AudioSource:
    """Local paths are read with soundfile; anything with a scheme goes to ffmpeg."""
    if "://" in input_ref:
        return FfmpegSource(input_ref)
    return WavFileSource(input_ref, realtime=realtime)


def build_sink(output_path: str | None) -> PlaybackSink:
    if output_path:
        return WavFileSink(output_path)
    return NullSink()


def build_stages(
    config: AppConfig,
    *,
    sink: PlaybackSink,
    client: AsyncOpenAI | None = None,
) -> list[Stage]:
    """Stages in pipeline order: decode, recognize, translate, synthesize, play."""
    if config.translator_provider not in TRANSLATOR_PROVIDERS:
        raise ConfigError(f"unknown translator provider {config.translator_provider!r}")
    if config.tts_provider not in TTS_PROVIDERS:
        raise ConfigError(f"unknown tts provider {config.tts_provider!r}")

    openai_client = client or build_openai_client(config)

    recognizer = OpenAIRecognizer(
        client=openai_client,
        model=config.transcribe_model,
        language=config.source_lang,
    )

    translator: Stage
    if config.translator_provider == "openai":
        translator = OpenAITranslator(
            client=openai_client,
            model=config.translate_model,
            target_lang=config.target_lang,
        )
    else:
        translator = EchoTranslator(target_lang=config.target_lang)

    synthesizer: Stage
    if config.tts_provider == "speechmatics":
        if not config.speechmatics_api_key:
            raise ConfigError("SPEECHMATICS_API_KEY environment variable not set")
        synthesizer = FallbackSynthesizer(
            primary=SpeechmaticsSynthesizer(
                api_key=config.speechmatics_api_key,
                voice=config.speechmatics_voice,
            ),
            local=ToneSynthesizer(),
            primary_retry=config.pipeline_config().retry_policy_for(StageName.SYNTHESIZE),
        )
    else:
        synthesizer = ToneSynthesizer()

    return [
        Pcm16Decoder(),
        recognizer,
        translator,
        synthesizer,
        PlayStage(sink),
    ]


def build_pipeline(
    config: AppConfig,
    *,
    input_ref: str,
    output_path: str | None = None,
    realtime: bool = False,
    client: AsyncOpenAI | None = None,
) -> Pipeline:
    return Pipeline(
        config=config.pipeline_config(),
        source=build_source(input_ref, realtime=realtime),
        stages=build_stages(config, sink=build_sink(output_path), client=client),
        metrics=PipelineMetrics(),
    )
