"""Exponential backoff for transient provider errors."""

from __future__ import annotations

import random
from dataclasses import dataclass

from ..config import ExecutorConfig


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    backoff_base_seconds: float = 1.0
    max_backoff_seconds: float = 30.0
    jitter: bool = True

    @classmethod
    def from_config(cls, config: ExecutorConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            backoff_base_seconds=config.backoff_base_seconds,
            max_backoff_seconds=config.max_backoff_seconds,
        )

    def should_retry(self, attempt: int) -> bool:
        """``attempt`` is the 1-based number of the attempt that just failed."""
        return attempt < self.max_attempts

    def delay(self, attempt: int) -> float:
        """Sleep before the attempt following ``attempt``."""
        backoff = min(
            self.backoff_base_seconds * (2 ** (attempt - 1)),
            self.max_backoff_seconds,
        )
        if self.jitter:
            backoff += random.uniform(0, self.backoff_base_seconds)
        return min(backoff, self.max_backoff_seconds)
