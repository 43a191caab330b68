"""Retry schedule for failed deferred handlers.

Exponential backoff: attempt ``n`` (1-based) that fails is retried after
``min(base * 2**(n-1), max_delay)`` seconds.  Once ``max_attempts``
attempts have failed the task is dead-lettered.
"""

from __future__ import annotations

from dataclasses import dataclass

from pod_marketplace.core.config import RetryConfig


@dataclass(frozen=True)
class RetryPolicy:
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    max_attempts: int = 5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("retry delays must be non-negative")

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        return cls(
            base_delay_seconds=config.base_delay_seconds,
            max_delay_seconds=config.max_delay_seconds,
            max_attempts=config.max_attempts,
        )

    def should_retry(self, failed_attempt: int) -> bool:
        return failed_attempt < self.max_attempts

    def delay_for(self, failed_attempt: int) -> float:
        """Seconds to wait after *failed_attempt* failed."""
        exponent = min(max(failed_attempt - 1, 0), 62)
        return min(self.base_delay_seconds * (2 ** exponent), self.max_delay_seconds)
