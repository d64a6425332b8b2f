"""
Over-budget policy enumeration.

Policies are orthogonal to item states:
- State answers:  "Where is this item?"
- Policy answers: "What happens when it is late?"
"""

from __future__ import annotations

from enum import Enum


class OverBudgetPolicy(str, Enum):
    """
    OBSERVE:
        Over-budget items continue; classification is observability-only.

    DROP:
        Over-budget items are dropped before the next expensive stage
        (synthesis) to protect overall system latency.
    """

    OBSERVE = "observe"
    DROP = "drop"


class BudgetStatus(str, Enum):
    """Latency classification of one item."""

    WITHIN_BUDGET = "within_budget"
    OVER_BUDGET = "over_budget"
