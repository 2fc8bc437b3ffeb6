"""
Retry policy — bounded retries with an on-exhaustion hook.

Network-dependent operations (image pulls during early boot) flake
while the VM's network is still coming up. A RetryPolicy runs an
operation up to ``max_attempts`` times, stops at the first result the
success predicate accepts, and on exhaustion runs a best-effort
diagnostic hook before handing back the last result.

Delays use exponential backoff with jitter; the default base delay is
zero, so retries are immediate unless configured otherwise.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    """What a retried operation produced."""

    result: T
    attempts: int
    succeeded: bool

    @property
    def exhausted(self) -> bool:
        return not self.succeeded


@dataclass
class RetryPolicy:
    """Bounded retry with exponential backoff and jitter.

    Args:
        max_attempts: Total attempts, including the first.
        base_delay: Delay before the second attempt, in seconds.
        max_delay: Upper bound for any single delay.
        sleep: Sleep function (replaceable in tests).
    """

    max_attempts: int = 10
    base_delay: float = 0.0
    max_delay: float = 60.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed ``attempt`` (1-based)."""
        if self.base_delay <= 0:
            return 0.0
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return delay + random.uniform(0, delay * 0.3)

    def run(
        self,
        operation: Callable[[int], T],
        succeeded: Callable[[T], bool],
        on_exhausted: Callable[[T], None] | None = None,
    ) -> RetryOutcome[T]:
        """Run ``operation(attempt)`` until ``succeeded`` accepts its result.

        ``on_exhausted`` runs exactly once after the final failed attempt.
        Any exception it raises is logged and discarded, so the caller
        always sees the operation's own last result.
        """
        result: T | None = None
        for attempt in range(1, self.max_attempts + 1):
            result = operation(attempt)
            if succeeded(result):
                return RetryOutcome(result=result, attempts=attempt, succeeded=True)
            if attempt < self.max_attempts:
                delay = self.delay_for(attempt)
                if delay > 0:
                    logger.debug("Attempt %d/%d failed, retrying in %.1fs", attempt, self.max_attempts, delay)
                    self.sleep(delay)

        assert result is not None
        logger.warning("All %d attempts failed", self.max_attempts)
        if on_exhausted is not None:
            try:
                on_exhausted(result)
            except Exception as e:
                logger.warning("Diagnostic capture after retries failed: %s", e)
        return RetryOutcome(result=result, attempts=self.max_attempts, succeeded=False)
