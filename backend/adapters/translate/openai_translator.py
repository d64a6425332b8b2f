"""
Chat-completions translator.

- One request per TranscriptSegment, non-streaming
- Returns exactly one TranslatedSegment with the same seq_range
- No retries, no buffering; failures become StageError via openai_errors
"""

from __future__ import annotations

from typing import Any

import openai

from adapters.openai_errors import stage_error_from_openai
from adapters.translate.prompts import TRANSLATION_SYSTEM_PROMPT_V1
from constants import DEFAULT_TARGET_LANG, DEFAULT_TRANSLATE_MODEL
from orchestrator.enums.service import StageName
from orchestrator.errors import StageError
from orchestrator.segments import TranscriptSegment, TranslatedSegment
from orchestrator.stage import Stage


class OpenAITranslator(Stage[TranscriptSegment, TranslatedSegment]):
    name = StageName.TRANSLATE
    expected_latency_ms = 500

    def __init__(
        self,
        *,
        client: Any,
        model: str = DEFAULT_TRANSLATE_MODEL,
        target_lang: str = DEFAULT_TARGET_LANG,
    ) -> None:
        self._client = client
        self._model = model
        self._target_lang = target_lang

    def build_messages(self, segment: TranscriptSegment) -> list[dict[str, str]]:
        system = TRANSLATION_SYSTEM_PROMPT_V1.format(
            target_lang=self._target_lang,
            emotion=segment.emotion.value,
        )
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": segment.text},
        ]

    async def process(self, item: TranscriptSegment) -> TranslatedSegment | None:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=self.build_messages(item),
                temperature=0.2,
            )
        except openai.OpenAIError as exc:
            raise stage_error_from_openai(exc, what="translation") from exc

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as exc:
            raise StageError.terminal("translation: malformed response", cause=exc) from exc

        text = (content or "").strip()
        if not text:
            return None

        return TranslatedSegment(source=item, text=text, target_lang=self._target_lang)
