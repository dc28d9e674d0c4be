"""Per-request time budgets."""

from __future__ import annotations

import time
from typing import Callable, Optional

from .errors import RequestTimeout


class Deadline:
    """A point in monotonic time after which work for a request must stop."""

    def __init__(self, timeout: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._clock = clock
        self._expires_at = clock() + timeout

    @classmethod
    def after(cls, timeout: Optional[float]) -> Optional["Deadline"]:
        """Return a deadline ``timeout`` seconds from now, or ``None`` for no limit."""

        if timeout is None:
            return None
        return cls(timeout)

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self._expires_at

    def check(self, stage: str) -> None:
        if self.expired():
            raise RequestTimeout(f"Request timed out during {stage}")


__all__ = ["Deadline"]
