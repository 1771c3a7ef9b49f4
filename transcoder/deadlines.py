"""Wall-clock budget shared by every blocking step of one pipeline run."""

from __future__ import annotations

import time
from typing import Callable


class Deadline:
    def __init__(self, seconds: float | None, *, clock: Callable[[], float] = time.monotonic) -> None:
        if seconds is not None and seconds <= 0:
            raise ValueError("seconds must be positive")
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds

    @classmethod
    def unbounded(cls) -> "Deadline":
        return cls(None)

    def remaining(self) -> float | None:
        """Seconds left, ``None`` when unbounded, never negative."""
        if self._expires_at is None:
            return None
        return max(self._expires_at - self._clock(), 0.0)

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def clip(self, timeout: float | None) -> float | None:
        """Return the smaller of ``timeout`` and the time left on this deadline."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        if timeout is None:
            return remaining
        return min(timeout, remaining)
