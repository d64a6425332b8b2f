"""
Pipeline error taxonomy.

ErrorKind semantics:

TRANSIENT:
    Network / timeout / rate-limit. Recoverable by retry; once the stage's
    retry policy is exhausted the orchestrator drops the single item.

TERMINAL:
    Bad input, unsupported format, permanent auth failure. Never retried;
    drops the single item.

FATAL:
    Resource exhaustion or internal invariant violation. Terminates the
    whole pipeline run.

Over-budget is NOT an error; see orchestrator.enums.mode.BudgetStatus.
"""

from __future__ import annotations

from enum import Enum

from orchestrator.enums.service import StageName


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    TERMINAL = "terminal"
    FATAL = "fatal"


class DropReason(str, Enum):
    """
    Reason an item (or audio) was discarded.

    Counted per (stage, reason) in PipelineMetrics.
    """

    MALFORMED = "malformed"
    TERMINAL_ERROR = "terminal_error"
    RETRY_EXHAUSTED = "retry_exhausted"
    OVER_BUDGET = "over_budget"
    REORDER_WINDOW = "reorder_window"
    QUEUE_OVERFLOW = "queue_overflow"
    RING_OVERFLOW = "ring_overflow"
    NO_OUTPUT = "no_output"
    SHUTDOWN = "shutdown"
    FATAL = "fatal"


class StageError(Exception):
    """
    Failure raised by a Stage.process() call.

    `cause` keeps the underlying vendor/IO exception for diagnosis.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.cause = cause

    @classmethod
    def transient(cls, message: str, *, cause: BaseException | None = None) -> StageError:
        return cls(ErrorKind.TRANSIENT, message, cause=cause)

    @classmethod
    def terminal(cls, message: str, *, cause: BaseException | None = None) -> StageError:
        return cls(ErrorKind.TERMINAL, message, cause=cause)

    @classmethod
    def fatal(cls, message: str, *, cause: BaseException | None = None) -> StageError:
        return cls(ErrorKind.FATAL, message, cause=cause)

    def __repr__(self) -> str:
        return f"StageError({self.kind.value}, {str(self)!r})"


class SinkUnavailableError(StageError):
    """Playback sink cannot accept audio right now (retryable)."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(ErrorKind.TRANSIENT, message, cause=cause)


class QuotaExhaustedError(StageError):
    """Provider quota exhausted; fallback synthesis switches to local."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(ErrorKind.TERMINAL, message, cause=cause)


class PipelineFatalError(RuntimeError):
    """
    Aborts the whole pipeline run.

    Carries enough context for an operator to diagnose: stage name,
    item sequence number, and the underlying cause.
    """

    def __init__(
        self,
        *,
        stage: StageName,
        sequence_num: int | None,
        cause: BaseException,
    ) -> None:
        super().__init__(
            f"fatal error in stage={stage.value} seq={sequence_num}: "
            f"{type(cause).__name__}: {cause}"
        )
        self.stage = stage
        self.sequence_num = sequence_num
        self.cause = cause
