# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from types import SimpleNamespace

import httpx
import numpy as np
import openai
import pytest

from adapters.asr.openai_recognizer import OpenAIRecognizer, transcript_confidence
from adapters.openai_errors import stage_error_from_openai
from adapters.translate.echo import EchoTranslator
from adapters.translate.openai_translator import OpenAITranslator
from audio.frames import AudioFrame
from audio.prosody import Emotion
from orchestrator.errors import ErrorKind, QuotaExhaustedError, StageError
from orchestrator.segments import TranscriptSegment

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def status_error(status, body=None):
    return openai.APIStatusError(
        "provider error",
        response=httpx.Response(status, request=REQUEST),
        body=body,
    )


class FakeEndpoint:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.exc is not None:
            raise self.exc
        return self.response


def asr_client(endpoint):
    return SimpleNamespace(audio=SimpleNamespace(transcriptions=endpoint))


def chat_client(endpoint):
    return SimpleNamespace(chat=SimpleNamespace(completions=endpoint))


def voiced_frame(seq=5, amplitude=0.5):
    t = np.arange(3200) / 16_000.0
    samples = (amplitude * np.sin(2 * np.pi * 200.0 * t)).astype(np.float32)
    return AudioFrame(sequence_num=seq, samples=samples, captured_at_ms=0)


def transcript(text="hello world", emotion=Emotion.NEUTRAL):
    return TranscriptSegment(
        text=text,
        source_lang="en",
        seq_range=(7, 8),
        confidence=0.9,
        emotion=emotion,
    )


# ---------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------

def test_connection_error_is_transient():
    err = stage_error_from_openai(openai.APIConnectionError(request=REQUEST), what="x")
    assert err.kind is ErrorKind.TRANSIENT


@pytest.mark.parametrize("status,kind", [
    (500, ErrorKind.TRANSIENT),
    (503, ErrorKind.TRANSIENT),
    (429, ErrorKind.TRANSIENT),
    (400, ErrorKind.TERMINAL),
    (401, ErrorKind.TERMINAL),
])
def test_status_errors_by_code(status, kind):
    assert stage_error_from_openai(status_error(status), what="x").kind is kind


def test_insufficient_quota_maps_to_quota_error():
    err = stage_error_from_openai(
        status_error(429, body={"code": "insufficient_quota", "message": "quota"}),
        what="x",
    )
    assert isinstance(err, QuotaExhaustedError)


# ---------------------------------------------------------------------
# Recognizer
# ---------------------------------------------------------------------

def test_recognizer_returns_segment_with_prosody():
    endpoint = FakeEndpoint(SimpleNamespace(
        text=" hello world ",
        language="english",
        segments=[SimpleNamespace(avg_logprob=-0.1, no_speech_prob=0.05)],
    ))
    recognizer = OpenAIRecognizer(client=asr_client(endpoint), model="whisper-1")

    seg = asyncio.run(recognizer.process(voiced_frame(seq=5)))

    assert seg.text == "hello world"
    assert seg.seq_range == (5, 6)
    assert seg.source_lang == "english"
    assert seg.confidence == pytest.approx(np.exp(-0.1) * 0.95)
    assert seg.prosody.pitch_hz == pytest.approx(200.0, rel=0.02)

    call = endpoint.calls[0]
    assert call["model"] == "whisper-1"
    assert call["response_format"] == "verbose_json"
    name, wav, mime = call["file"]
    assert name == "window-5.wav"
    assert wav[:4] == b"RIFF"
    assert mime == "audio/wav"
    assert "language" not in call


def test_recognizer_skips_silence_without_network_call():
    endpoint = FakeEndpoint(SimpleNamespace(text="ghost"))
    recognizer = OpenAIRecognizer(client=asr_client(endpoint))
    silent = AudioFrame(sequence_num=1, samples=np.zeros(1600, dtype=np.float32), captured_at_ms=0)

    assert asyncio.run(recognizer.process(silent)) is None
    assert endpoint.calls == []


def test_recognizer_drops_low_confidence_and_empty_text():
    low = FakeEndpoint(SimpleNamespace(
        text="mumble",
        segments=[SimpleNamespace(avg_logprob=-1.0, no_speech_prob=0.9)],
    ))
    empty = FakeEndpoint(SimpleNamespace(text="  "))

    assert asyncio.run(OpenAIRecognizer(client=asr_client(low)).process(voiced_frame())) is None
    assert asyncio.run(OpenAIRecognizer(client=asr_client(empty)).process(voiced_frame())) is None


def test_recognizer_passes_language_hint():
    endpoint = FakeEndpoint(SimpleNamespace(text="hola", segments=None))
    recognizer = OpenAIRecognizer(client=asr_client(endpoint), language="es")

    seg = asyncio.run(recognizer.process(voiced_frame()))

    assert endpoint.calls[0]["language"] == "es"
    assert seg.source_lang == "es"
    assert seg.confidence == 1.0


def test_recognizer_maps_provider_errors():
    endpoint = FakeEndpoint(exc=openai.APIConnectionError(request=REQUEST))
    recognizer = OpenAIRecognizer(client=asr_client(endpoint))

    with pytest.raises(StageError) as info:
        asyncio.run(recognizer.process(voiced_frame()))

    assert info.value.kind is ErrorKind.TRANSIENT


def test_transcript_confidence_bounds():
    assert transcript_confidence(None) == 1.0
    assert transcript_confidence([SimpleNamespace(avg_logprob=0.5, no_speech_prob=0.0)]) == 1.0
    assert 0.0 <= transcript_confidence([SimpleNamespace(avg_logprob=-9.0, no_speech_prob=1.0)]) <= 0.01


# ---------------------------------------------------------------------
# Translators
# ---------------------------------------------------------------------

def chat_response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def test_translator_returns_one_segment_with_same_range():
    endpoint = FakeEndpoint(chat_response(" Olá mundo "))
    translator = OpenAITranslator(client=chat_client(endpoint), model="gpt-4o-mini", target_lang="pt-BR")

    out = asyncio.run(translator.process(transcript(emotion=Emotion.HAPPY)))

    assert out.text == "Olá mundo"
    assert out.seq_range == (7, 8)
    assert out.target_lang == "pt-BR"
    assert out.emotion is Emotion.HAPPY

    messages = endpoint.calls[0]["messages"]
    assert messages[0]["role"] == "system"
    assert "pt-BR" in messages[0]["content"]
    assert "happy" in messages[0]["content"]
    assert messages[1] == {"role": "user", "content": "hello world"}


def test_translator_empty_reply_is_no_output():
    endpoint = FakeEndpoint(chat_response(""))
    translator = OpenAITranslator(client=chat_client(endpoint))

    assert asyncio.run(translator.process(transcript())) is None


def test_translator_malformed_reply_is_terminal():
    endpoint = FakeEndpoint(SimpleNamespace(choices=[]))
    translator = OpenAITranslator(client=chat_client(endpoint))

    with pytest.raises(StageError) as info:
        asyncio.run(translator.process(transcript()))

    assert info.value.kind is ErrorKind.TERMINAL


def test_translator_server_error_is_transient():
    endpoint = FakeEndpoint(exc=status_error(503))
    translator = OpenAITranslator(client=chat_client(endpoint))

    with pytest.raises(StageError) as info:
        asyncio.run(translator.process(transcript()))

    assert info.value.kind is ErrorKind.TRANSIENT
    assert isinstance(info.value.__cause__, openai.APIStatusError)


def test_echo_translator_passes_text_through():
    out = asyncio.run(EchoTranslator(target_lang="fr").process(transcript("bonjour")))

    assert out.text == "bonjour"
    assert out.target_lang == "fr"
    assert out.seq_range == (7, 8)
