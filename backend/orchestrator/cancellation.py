"""
Shutdown protocol runtime.

Responsibilities:
- Stop admission exactly once when shutdown is requested
- Start the grace timer for in-flight items
- Emit SHUTDOWN_REQUESTED / SHUTDOWN_GRACE_EXPIRED events
- Invoke the hard-stop hook when the grace deadline passes

Non-responsibilities:
- NO knowledge of stages, queues or items
- NO decision about which items are aborted

This module is infrastructure only.
"""

from __future__ import annotations

import asyncio
from asyncio import Task
from typing import Callable

from observability.logger import log_event


# ---------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------

StopAdmissionFn = Callable[[], None]
HardStopFn = Callable[[], None]


# ---------------------------------------------------------------------
# Shutdown Coordinator
# ---------------------------------------------------------------------

class ShutdownCoordinator:
    """
    Runtime manager for graceful shutdown.

    Lifecycle:
    1. Caller invokes request_shutdown(reason)
    2. Coordinator calls stop_admission() and starts the grace timer
    3a. Pipeline drains in time -> clear() cancels the timer
    3b. Timer fires -> SHUTDOWN_GRACE_EXPIRED + hard_stop()

    This class never decides what happens to individual items.
    """

    def __init__(
        self,
        *,
        grace_s: float,
        stop_admission: StopAdmissionFn,
        hard_stop: HardStopFn,
    ) -> None:
        if grace_s < 0:
            raise ValueError("grace_s must be >= 0")

        self._grace_s = grace_s
        self._stop_admission = stop_admission
        self._hard_stop = hard_stop

        self._timer: Task[None] | None = None
        self._requested = False
        self._grace_expired = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def requested(self) -> bool:
        return self._requested

    @property
    def grace_expired(self) -> bool:
        return self._grace_expired

    def request_shutdown(self, reason: str = "requested") -> None:
        """
        Stop admission and start the grace timer.

        Idempotent: only the first call has any effect. Must be called
        from the event loop thread.
        """
        if self._requested:
            return
        self._requested = True

        log_event({
            "event_type": "SHUTDOWN_REQUESTED",
            "reason": reason,
            "grace_ms": int(self._grace_s * 1000),
        })

        self._stop_admission()
        self._timer = asyncio.create_task(self._grace_timer_task())

    def clear(self) -> None:
        """
        Cancel an outstanding grace timer.
        Used once the pipeline has fully stopped.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _grace_timer_task(self) -> None:
        """
        Wait for the grace deadline; hard-stop on expiry.
        """
        try:
            await asyncio.sleep(self._grace_s)
        except asyncio.CancelledError:
            return

        self._timer = None
        self._grace_expired = True

        log_event({
            "event_type": "SHUTDOWN_GRACE_EXPIRED",
            "grace_ms": int(self._grace_s * 1000),
        })

        self._hard_stop()
