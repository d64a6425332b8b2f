"""
Primary/local synthesizer failover.

Behavior:
- Primary succeeds                  -> primary audio
- Primary fails transiently         -> retried under the primary's own
                                       policy before any fallback
- Primary quota exhausted           -> local audio; primary is skipped
                                       until the cooldown elapses
- Primary retries exhausted, or a
  TERMINAL error                    -> local audio for this request only
- Cooldown elapsed                  -> primary is probed again; success
                                       switches back, quota resets the clock
- FATAL errors and cancellation always propagate
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

from constants import SYNTH_FALLBACK_COOLDOWN_S
from observability.logger import log_event
from orchestrator.enums.service import StageName
from orchestrator.errors import ErrorKind, QuotaExhaustedError, StageError
from orchestrator.retry import NO_RETRY, RetryError, RetryPolicy, execute_with_retry
from orchestrator.segments import SynthesizedAudio, TranslatedSegment
from orchestrator.stage import Stage


class FallbackSynthesizer(Stage[TranslatedSegment, SynthesizedAudio]):
    name = StageName.SYNTHESIZE
    retries_internally = True

    def __init__(
        self,
        *,
        primary: Stage[TranslatedSegment, SynthesizedAudio],
        local: Stage[TranslatedSegment, SynthesizedAudio],
        cooldown_s: float = SYNTH_FALLBACK_COOLDOWN_S,
        clock: Callable[[], float] = time.monotonic,
        primary_retry: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._primary = primary
        self._local = local
        self._cooldown_s = cooldown_s
        self._clock = clock
        self._primary_retry = primary_retry or NO_RETRY
        self._sleep = sleep
        self._exhausted_at: float | None = None
        self.expected_latency_ms = primary.expected_latency_ms
        # Attempts the last primary call took; 0 when the primary was skipped
        self.last_primary_attempts = 0

    @property
    def using_fallback(self) -> bool:
        return self._exhausted_at is not None

    def reset_quota_flag(self) -> None:
        self._exhausted_at = None

    async def process(self, item: TranslatedSegment) -> SynthesizedAudio | None:
        self.last_primary_attempts = 0
        if self._exhausted_at is not None:
            if self._clock() - self._exhausted_at < self._cooldown_s:
                return await self._local.process(item)
            log_event({
                "event_type": "SYNTH_PRIMARY_PROBE",
                "seq_range": item.seq_range,
            })

        try:
            result = await execute_with_retry(
                lambda: self._primary.process(item),
                self._primary_retry,
                sleep=self._sleep,
                label=f"synthesize_primary:{item.seq_range[0]}",
            )
        except RetryError as exc:
            self.last_primary_attempts = exc.attempts_used
            last = exc.last_error
            if isinstance(last, QuotaExhaustedError):
                self._exhausted_at = self._clock()
                self._log_switch(item, "quota_exhausted", last)
                return await self._local.process(item)
            if isinstance(last, StageError) and last.kind is ErrorKind.FATAL:
                raise last from None
            if not isinstance(last, StageError) and not exc.retryable:
                raise last from None
            self._log_switch(item, "primary_error", last)
            return await self._local.process(item)

        self.last_primary_attempts = result.attempts_used
        if self._exhausted_at is not None:
            self._exhausted_at = None
            log_event({
                "event_type": "SYNTH_PRIMARY_RECOVERED",
                "seq_range": item.seq_range,
            })
        return result.value

    async def ready(self) -> bool:
        return await self._primary.ready() or await self._local.ready()

    async def close(self) -> None:
        await self._primary.close()
        await self._local.close()

    @staticmethod
    def _log_switch(item: TranslatedSegment, reason: str, exc: Any) -> None:
        log_event({
            "event_type": "SYNTH_FALLBACK",
            "seq_range": item.seq_range,
            "reason": reason,
            "error": repr(exc),
        })
