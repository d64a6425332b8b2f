"""
Pipeline item container.

One PipelineItem is one unit of work traceable to one drained audio
window. It is owned by exactly one stage worker at a time; ownership
moves with the item through the bounded queues.

Rules:
- The payload is replaced (never mutated) as each stage completes.
- Timing fields are written only by the LatencyBudgetTracker.
- Once the state is terminal, nothing writes to the item again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from orchestrator.enums.mode import BudgetStatus
from orchestrator.enums.service import StageName
from orchestrator.enums.state import TERMINAL_STATES, ItemState
from orchestrator.errors import DropReason


@dataclass
class PipelineItem:
    """Mutable, single-owner record of one in-flight item."""

    sequence_num: int
    payload: Any
    state: ItemState = ItemState.CAPTURED

    # ------------------------------------------------------------------
    # Latency accounting (monotonic seconds)
    # ------------------------------------------------------------------

    captured_at: float = 0.0
    last_handoff: float = 0.0

    # Sum of stage-to-stage intervals since ingestion
    elapsed_s: float = 0.0

    # Time spent inside each stage call (queue wait excluded)
    stage_timings: dict[StageName, float] = field(default_factory=dict)

    budget_status: BudgetStatus = BudgetStatus.WITHIN_BUDGET

    # ------------------------------------------------------------------
    # Resilience / outcome
    # ------------------------------------------------------------------

    attempts: dict[StageName, int] = field(default_factory=dict)
    drop_stage: StageName | None = None
    drop_reason: DropReason | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def abort(self, *, stage: StageName, reason: DropReason) -> None:
        """Move to ABORTED, keeping the first recorded cause."""
        if self.is_terminal:
            return
        self.state = ItemState.ABORTED
        self.drop_stage = stage
        self.drop_reason = reason
        self.payload = None

    def skip(self, *, stage: StageName) -> None:
        if self.is_terminal:
            return
        self.state = ItemState.SKIPPED
        self.drop_stage = stage
        self.drop_reason = DropReason.NO_OUTPUT
        self.payload = None
