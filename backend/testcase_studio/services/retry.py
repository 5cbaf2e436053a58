"""
Bounded retry policy for a single fallible async operation.

Retries happen immediately (no backoff). Intermediate failures are
logged at WARNING and swallowed; only the final attempt's exception
reaches the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Run an operation up to `max_attempts` times.

    Attributes:
        max_attempts: Total attempts including the first one (>= 1).
        retry_on:     Exception types that count as a failed attempt.
                      Anything else propagates immediately.
    """

    max_attempts: int = 3
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str = "operation",
    ) -> T:
        """Await `operation()` until it succeeds or attempts run out."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except self.retry_on as exc:
                if attempt == self.max_attempts:
                    logger.error(
                        "%s failed after %d attempts: %s",
                        label, self.max_attempts, exc,
                    )
                    raise
                logger.warning(
                    "%s failed (attempt %d/%d): %s — retrying",
                    label, attempt, self.max_attempts, exc,
                )
        raise AssertionError("unreachable")  # pragma: no cover
