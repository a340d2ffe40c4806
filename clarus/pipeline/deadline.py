from __future__ import annotations

import time
from typing import Callable

from clarus.errors import PipelineTimeout


class Deadline:
    """Absolute deadline passed down the call graph.

    Each provider call takes ``deadline.bound(call_timeout)`` so a child never
    outlives its parent budget.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(self._expires_at - self._clock(), 0.0)

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def bound(self, timeout: float) -> float:
        remaining = self.remaining()
        if remaining <= 0:
            raise PipelineTimeout("pipeline deadline elapsed")
        return min(timeout, remaining)

    def child(self, seconds: float) -> "Deadline":
        """A nested deadline that never extends past this one."""
        return Deadline(min(seconds, self.remaining()), self._clock)
