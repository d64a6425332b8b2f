"""
Stage name enumeration.

Rules:
- This enum identifies pipeline stages only.
- It must NOT encode behavior or lifecycle rules.
- The orchestrator decides ordering; this file only names things.
"""

from __future__ import annotations

from enum import Enum

from orchestrator.enums.state import ItemState


class StageName(str, Enum):
    """
    Pluggable transform steps, in pipeline order.

    INGEST is not a Stage implementation; it names the source read loop
    for metrics and retry logging.
    """

    INGEST = "ingest"
    DECODE = "decode"
    RECOGNIZE = "recognize"
    TRANSLATE = "translate"
    SYNTHESIZE = "synthesize"
    PLAY = "play"


# State an item enters after the named stage completes
STATE_AFTER_STAGE: dict[StageName, ItemState] = {
    StageName.DECODE: ItemState.DECODED,
    StageName.RECOGNIZE: ItemState.TRANSCRIBED,
    StageName.TRANSLATE: ItemState.TRANSLATED,
    StageName.SYNTHESIZE: ItemState.SYNTHESIZED,
    StageName.PLAY: ItemState.PLAYED,
}
