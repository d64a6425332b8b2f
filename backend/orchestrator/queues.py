"""
Bounded inter-stage queues.

Requirements:
- Capacity measured in items
- BLOCK policy: a full queue suspends the producer (backpressure). This is
  the primary admission-control mechanism under slow external services.
- DROP_OLDEST policy: a full queue evicts its oldest item to admit the new
  one, keeping audio fresh at the playback edge. Evictions are counted and
  reported through `on_drop`, never silent.
- Explicit end-of-stream: close() lets consumers drain and then see None.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Generic, TypeVar

T = TypeVar("T")


class OverflowPolicy(str, Enum):
    BLOCK = "block"
    DROP_OLDEST = "drop_oldest"


@dataclass
class QueueCounters:
    """
    Counters for observability.
    """
    enqueued: int = 0
    dropped_oldest: int = 0
    blocked_puts: int = 0
    high_water: int = 0


class QueueClosedError(RuntimeError):
    """put() after close()."""


class StageQueue(Generic[T]):
    """
    Bounded async FIFO between two stage workers (single producer,
    single consumer).
    """

    def __init__(
        self,
        *,
        name: str,
        capacity: int,
        overflow: OverflowPolicy = OverflowPolicy.BLOCK,
        on_drop: Callable[[T], None] | None = None,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")

        self.name = name
        self._capacity = capacity
        self._overflow = overflow
        self._on_drop = on_drop
        self._items: Deque[T] = deque()
        self._closed = False
        self._cond = asyncio.Condition()
        self.counters = QueueCounters()

    # -------------------------
    # Core queue operations
    # -------------------------

    async def put(self, item: T) -> None:
        """
        Enqueue one item.

        BLOCK: waits while the queue is full.
        DROP_OLDEST: evicts the oldest item instead of waiting.
        """
        async with self._cond:
            if self._closed:
                raise QueueClosedError(f"queue {self.name} is closed")

            if len(self._items) >= self._capacity:
                if self._overflow is OverflowPolicy.DROP_OLDEST:
                    evicted = self._items.popleft()
                    self.counters.dropped_oldest += 1
                    if self._on_drop is not None:
                        self._on_drop(evicted)
                else:
                    self.counters.blocked_puts += 1
                    await self._cond.wait_for(
                        lambda: len(self._items) < self._capacity or self._closed
                    )
                    if self._closed:
                        raise QueueClosedError(f"queue {self.name} is closed")

            self._items.append(item)
            self.counters.enqueued += 1
            self.counters.high_water = max(self.counters.high_water, len(self._items))
            self._cond.notify_all()

    async def get(self) -> T | None:
        """
        Dequeue the oldest item, waiting while empty.

        Returns None once the queue is closed AND drained.
        """
        async with self._cond:
            await self._cond.wait_for(lambda: bool(self._items) or self._closed)
            if not self._items:
                return None
            item = self._items.popleft()
            self._cond.notify_all()
            return item

    async def close(self) -> None:
        """
        Mark end-of-stream. Queued items remain readable.

        Idempotent.
        """
        async with self._cond:
            self._closed = True
            self._cond.notify_all()

    def drain_nowait(self) -> list[T]:
        """
        Remove and return everything queued, without counting drops.

        Used during shutdown so the caller can account for aborted items.
        """
        items = list(self._items)
        self._items.clear()
        return items

    # -------------------------
    # Introspection helpers
    # -------------------------

    def __len__(self) -> int:
        return len(self._items)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    def is_full(self) -> bool:
        return len(self._items) >= self._capacity

    def snapshot(self) -> dict[str, int | str]:
        """
        Lightweight snapshot for logging / metrics.
        """
        return {
            "name": self.name,
            "depth": len(self._items),
            "capacity": self._capacity,
            "enqueued": self.counters.enqueued,
            "dropped_oldest": self.counters.dropped_oldest,
            "blocked_puts": self.counters.blocked_puts,
            "high_water": self.counters.high_water,
        }
