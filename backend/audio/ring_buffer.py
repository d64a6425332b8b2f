"""
Fixed-capacity circular store of raw PCM16 samples.

Rules:
- Single producer (ingestion task), single consumer (drain task).
- No operation blocks; an empty read returns zero samples.
- Overflow overwrites the OLDEST unread samples and is counted in `dropped`.
  Data loss is explicit, never silent.

Cursors are absolute sample counts; the physical index is cursor % capacity.
"""

from __future__ import annotations

import numpy as np


class RingBuffer:
    """SPSC ring buffer of int16 samples."""

    def __init__(self, capacity: int, dtype: type = np.int16) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")

        self._capacity = capacity
        self._buf = np.zeros(capacity, dtype=dtype)
        self._write_pos = 0
        self._read_pos = 0
        self.dropped = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def available(self) -> int:
        """Count of unread samples."""
        return self._write_pos - self._read_pos

    def write(self, samples: np.ndarray) -> int:
        """
        Append samples, overwriting the oldest unread data on overflow.

        Returns the number of samples dropped by this write.
        """
        n = len(samples)
        if n == 0:
            return 0

        # Only the newest `capacity` samples of an oversized write survive
        skipped = 0
        if n > self._capacity:
            skipped = n - self._capacity
            samples = samples[-self._capacity:]

        start = (self._write_pos + skipped) % self._capacity
        count = len(samples)
        first = min(count, self._capacity - start)
        self._buf[start:start + first] = samples[:first]
        if count > first:
            self._buf[:count - first] = samples[first:]

        self._write_pos += n

        overflow = self.available() - self._capacity
        if overflow > 0:
            self._read_pos += overflow
            self.dropped += overflow
            return overflow
        return 0

    def read(self, max_samples: int) -> np.ndarray:
        """Return up to max_samples of the oldest unread samples."""
        count = min(max_samples, self.available())
        if count <= 0:
            return self._buf[:0].copy()

        start = self._read_pos % self._capacity
        first = min(count, self._capacity - start)
        if count > first:
            out = np.concatenate((self._buf[start:start + first], self._buf[:count - first]))
        else:
            out = self._buf[start:start + count].copy()

        self._read_pos += count
        return out

    def snapshot(self) -> dict[str, int]:
        """Lightweight snapshot for logging / metrics."""
        return {
            "capacity": self._capacity,
            "available": self.available(),
            "dropped": self.dropped,
            "written_total": self._write_pos,
            "read_total": self._read_pos,
        }
