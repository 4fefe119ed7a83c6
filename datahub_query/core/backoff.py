from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator


def backoff_delays(initial_delay: float, max_delay: float) -> Iterator[float]:
    """Yield ``initial_delay`` and then double it forever, capped at ``max_delay``."""
    delay = min(initial_delay, max_delay)
    while True:
        yield delay
        delay = min(delay * 2, max_delay)


@dataclass(frozen=True)
class BackoffPolicy:
    """Restartable exponential backoff.

    Every ``iter()`` starts a new, infinite sequence of delays (seconds). There
    is no jitter and no attempt limit.
    """

    initial_delay: float = 0.3
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.initial_delay <= 0:
            raise ValueError("initial_delay must be > 0")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")

    def __iter__(self) -> Iterator[float]:
        return backoff_delays(self.initial_delay, self.max_delay)


DEFAULT_POLL_POLICY = BackoffPolicy(initial_delay=0.3, max_delay=30.0)
