"""Offline translator: passes the transcript through unchanged."""

from __future__ import annotations

from constants import DEFAULT_TARGET_LANG
from orchestrator.enums.service import StageName
from orchestrator.segments import TranscriptSegment, TranslatedSegment
from orchestrator.stage import Stage


class EchoTranslator(Stage[TranscriptSegment, TranslatedSegment]):
    name = StageName.TRANSLATE

    def __init__(self, *, target_lang: str = DEFAULT_TARGET_LANG) -> None:
        self._target_lang = target_lang

    async def process(self, item: TranscriptSegment) -> TranslatedSegment | None:
        return TranslatedSegment(source=item, text=item.text, target_lang=self._target_lang)
