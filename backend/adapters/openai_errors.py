"""
OpenAI SDK exception -> StageError mapping.

Shared by the recognizer and translator so both classify provider
failures identically:
- connection errors and timeouts        -> TRANSIENT
- 429 with code "insufficient_quota"    -> QuotaExhaustedError (TERMINAL)
- 5xx / 429 / 408                       -> TRANSIENT
- any other status                      -> TERMINAL
"""

from __future__ import annotations

import openai

from orchestrator.errors import QuotaExhaustedError, StageError
from orchestrator.retry import is_http_retryable


def stage_error_from_openai(exc: openai.OpenAIError, *, what: str) -> StageError:
    if isinstance(exc, openai.APIConnectionError):
        return StageError.transient(f"{what}: connection failed", cause=exc)

    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        if getattr(exc, "code", None) == "insufficient_quota":
            return QuotaExhaustedError(f"{what}: quota exhausted", cause=exc)
        if is_http_retryable(status):
            return StageError.transient(f"{what}: HTTP {status}", cause=exc)
        return StageError.terminal(f"{what}: HTTP {status}", cause=exc)

    return StageError.terminal(f"{what}: {type(exc).__name__}: {exc}", cause=exc)
