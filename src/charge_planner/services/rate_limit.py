from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from django.conf import settings

Clock = Callable[[], float]
Sleeper = Callable[[float], None]


@dataclass(slots=True, frozen=True)
class BackoffPolicy:
    base_seconds: float = 5.0
    factor: float = 2.0
    max_seconds: float = 30.0
    max_attempts: int = 3

    def delay_for(self, retry: int) -> float:
        """Delay before the ``retry``-th retry (1-based)."""
        return min(self.base_seconds * self.factor ** (retry - 1), self.max_seconds)

    @classmethod
    def from_settings(cls) -> BackoffPolicy:
        return cls(
            base_seconds=float(settings.REGISTRY_BACKOFF_BASE_SECONDS),
            max_seconds=float(settings.REGISTRY_BACKOFF_MAX_SECONDS),
            max_attempts=int(settings.REGISTRY_MAX_ATTEMPTS),
        )


class RateLimitGate:
    """Process-wide admission point that spaces outbound calls ``min_interval_seconds`` apart.

    Callers are admitted one at a time; a caller arriving early blocks while
    holding the gate, so later callers queue behind it.
    """

    def __init__(
        self,
        min_interval_seconds: float = 2.0,
        clock: Clock = time.monotonic,
        sleep: Sleeper = time.sleep,
    ) -> None:
        self.min_interval_seconds = min_interval_seconds
        self.clock = clock
        self.sleep = sleep
        self._lock = threading.Lock()
        self._next_slot: float | None = None

    def acquire(self) -> float:
        with self._lock:
            waited = 0.0
            now = self.clock()
            if self._next_slot is not None and now < self._next_slot:
                waited = self._next_slot - now
                self.sleep(waited)
                now = self.clock()
            self._next_slot = now + self.min_interval_seconds
            return waited
