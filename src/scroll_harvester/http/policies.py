from __future__ import annotations

import random
import threading
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for HTTP retry behavior."""

    max_attempts: int = 3
    base_delay_s: float = 1.0
    jitter_s: float = 0.3
    retry_statuses: tuple[int, ...] = (500, 502, 503, 504)


@dataclass(frozen=True)
class BackoffPolicy:
    """Quadratic backoff for load-more attempts: retry n waits n² units."""

    max_retries: int = 10
    unit_s: float = 1.0

    def delay_for(self, retry: int) -> float:
        """Delay before retry number ``retry`` (1-based)."""
        retry = max(1, retry)
        return float(retry * retry) * self.unit_s


class CancellableDelay:
    """Sleeps that return early once the shared stop event is set."""

    def __init__(self, stop_event: Optional[threading.Event] = None):
        self.stop_event = stop_event or threading.Event()

    @property
    def cancelled(self) -> bool:
        return self.stop_event.is_set()

    def sleep(self, seconds: float) -> bool:
        """Wait ``seconds``; returns False if the wait was cancelled."""
        if seconds <= 0:
            return not self.cancelled
        return not self.stop_event.wait(seconds)

    def cancel(self) -> None:
        self.stop_event.set()


def backoff_sleep(policy: RetryPolicy, attempt_index: int, delay: Optional[CancellableDelay] = None) -> bool:
    """Sleep with exponential backoff and jitter."""
    seconds = policy.base_delay_s * (2**attempt_index)
    seconds += random.uniform(0, policy.jitter_s)
    return (delay or CancellableDelay()).sleep(seconds)
