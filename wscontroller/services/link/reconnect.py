"""
Reconnect backoff policies.

Two strategies are available and exactly one drives a controller's reconnect
loop (selected by Settings.reconnect_strategy):

- attempt_bounded:    5s * 1.5^n for n = 0..4, then a flat 30s wait and the
                      counter starts over
- capped_exponential: min(5s * 2^min(n, 5), 120s), counter grows until a
                      connection succeeds

Delays are seconds.
"""
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from wscontroller.core.config import Settings


def attempt_bounded_delay(attempt: int, base: float = 5.0, factor: float = 1.5) -> float:
    """Delay for one attempt of the bounded strategy (before the long wait)."""
    return base * factor ** attempt


def capped_exponential_delay(attempt: int, base: float = 5.0, cap: float = 120.0,
                             max_exponent: int = 5) -> float:
    """Delay for one attempt of the capped exponential strategy."""
    return min(base * (2 ** min(attempt, max_exponent)), cap)


@dataclass
class ReconnectState:
    """Backoff bookkeeping for one reconnect loop."""
    attempt_count: int = 0
    last_attempt_at: Optional[float] = None

    def reset(self) -> None:
        self.attempt_count = 0
        self.last_attempt_at = None


class ReconnectPolicy(ABC):
    """Maps the attempt counter to the next delay and advances it."""

    name: str = ""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.state = ReconnectState()
        self._clock = clock

    @property
    def attempts(self) -> int:
        return self.state.attempt_count

    def next_delay(self) -> float:
        """Delay before the next attempt. Counts the attempt as made."""
        delay = self._advance()
        self.state.last_attempt_at = self._clock()
        return delay

    @abstractmethod
    def _advance(self) -> float:
        pass

    def reset(self) -> None:
        """Called on every successful transition to Connected."""
        self.state.reset()


class AttemptBoundedBackoff(ReconnectPolicy):
    """5s * 1.5^n for the first attempts, then one long wait and start over."""

    name = "attempt_bounded"

    def __init__(self, base: float = 5.0, factor: float = 1.5, max_attempts: int = 5,
                 long_wait: float = 30.0, clock: Callable[[], float] = time.monotonic):
        super().__init__(clock)
        self.base = base
        self.factor = factor
        self.max_attempts = max_attempts
        self.long_wait = long_wait

    def _advance(self) -> float:
        if self.state.attempt_count >= self.max_attempts:
            self.state.attempt_count = 0
            return self.long_wait
        delay = attempt_bounded_delay(self.state.attempt_count, self.base, self.factor)
        self.state.attempt_count += 1
        return delay


class CappedExponentialBackoff(ReconnectPolicy):
    """Doubling delay saturating at the cap; never resets on its own."""

    name = "capped_exponential"

    def __init__(self, base: float = 5.0, cap: float = 120.0, max_exponent: int = 5,
                 clock: Callable[[], float] = time.monotonic):
        super().__init__(clock)
        self.base = base
        self.cap = cap
        self.max_exponent = max_exponent

    def _advance(self) -> float:
        delay = capped_exponential_delay(self.state.attempt_count, self.base, self.cap, self.max_exponent)
        self.state.attempt_count += 1
        return delay


def create_policy(settings: Settings) -> ReconnectPolicy:
    """Build the reconnect policy selected by settings."""
    if settings.reconnect_strategy == "attempt_bounded":
        return AttemptBoundedBackoff(
            base=settings.backoff_base,
            factor=settings.backoff_factor,
            max_attempts=settings.backoff_max_attempts,
            long_wait=settings.backoff_long_wait,
        )
    return CappedExponentialBackoff(
        base=settings.backoff_base,
        cap=settings.backoff_cap,
        max_exponent=settings.backoff_max_exponent,
    )
