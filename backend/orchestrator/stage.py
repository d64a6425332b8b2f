"""
Stage contract.

This module defines the *interface only*. No queues, ordering, retries,
timers, or orchestration decisions live here.

Key invariants:
- The orchestrator depends only on this interface, never on a concrete
  provider type. Swapping a recognizer/translator/synthesizer means
  passing a different Stage implementation.
- A stage transforms exactly one input into at most one output.
  It must never fan out or merge items.
- Reprocessing the same input (after a transient failure) must not
  double-emit to downstream sinks.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from orchestrator.enums.service import StageName
from orchestrator.retry import RetryPolicy

InT = TypeVar("InT")
OutT = TypeVar("OutT")


class Stage(ABC, Generic[InT, OutT]):
    """
    Abstract pipeline stage.

    Implementations are responsible for:
    - Calling their provider (or doing local work) in process()
    - Translating provider failures into StageError with the correct kind
    - Returning None when there is legitimately nothing to emit

    Non-responsibilities:
    - No retries (the orchestrator wraps process() in execute_with_retry)
    - No ordering, buffering, or backpressure
    - No latency budget decisions
    """

    name: StageName

    # Hint used by the latency tracker and for operator visibility
    expected_latency_ms: int = 0

    # None = call process() once; otherwise run under execute_with_retry
    retry_policy: RetryPolicy | None = None

    # True when process() already runs its provider under a retry policy;
    # the orchestrator then calls it once
    retries_internally: bool = False

    @abstractmethod
    async def process(self, item: InT) -> OutT | None:
        """
        Transform one input.

        Contract:
        - Raise StageError(TRANSIENT | TERMINAL | FATAL) on failure.
        - Return None to emit nothing for this item (not an error).
        - Must observe cancellation promptly: never shield a provider call
          to "finish for correctness".
        """
        raise NotImplementedError

    async def ready(self) -> bool:
        """
        Readiness probe.

        Default: always ready. Providers override to check credentials or
        local resources.
        """
        return True

    async def close(self) -> None:
        """Release provider resources. Idempotent."""
        return None
