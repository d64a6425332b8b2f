"""
Pipeline item state enumeration.

Rules:
- This enum defines ONLY the per-item lifecycle states.
- No behavior, no helper methods, no side effects.
- Transitions are driven exclusively by the stage workers.
"""

from __future__ import annotations

from enum import Enum


class ItemState(str, Enum):
    """
    Lifecycle of one item as it moves stage to stage.

    Forward path:
        CAPTURED -> DECODED -> TRANSCRIBED -> TRANSLATED
                 -> SYNTHESIZED -> PLAYED -> DONE

    Terminal states:
        DONE:
            Played to the sink.
        SKIPPED:
            A stage legitimately produced no output (e.g. silence).
        ABORTED:
            Fatal error, per-item failure, over-budget drop, reorder-window
            drop, or pipeline shutdown. Reachable from any non-terminal state.
    """

    CAPTURED = "CAPTURED"
    DECODED = "DECODED"
    TRANSCRIBED = "TRANSCRIBED"
    TRANSLATED = "TRANSLATED"
    SYNTHESIZED = "SYNTHESIZED"
    PLAYED = "PLAYED"
    DONE = "DONE"
    SKIPPED = "SKIPPED"
    ABORTED = "ABORTED"


TERMINAL_STATES: frozenset[ItemState] = frozenset({
    ItemState.DONE,
    ItemState.SKIPPED,
    ItemState.ABORTED,
})
