"""Pure retry/backoff policy for generation calls."""

from __future__ import annotations

from dataclasses import dataclass

from rag_recommender.config import RetryConfig
from rag_recommender.errors import GenerationError


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Decides whether a failed generation attempt is retried, and after how long.

    `retry_number` is 1 for the first retry. Delays grow as
    `base_delay * factor ** (retry_number - 1)`; with the defaults that is
    0.5s then 1.0s.
    """

    max_retries: int = 2
    base_delay_seconds: float = 0.5
    backoff_factor: float = 2.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            base_delay_seconds=config.base_delay_seconds,
            backoff_factor=config.backoff_factor,
        )

    def delay_for(self, retry_number: int, error: GenerationError) -> float | None:
        """Return the wait before `retry_number`, or None to stop retrying."""
        if not error.retryable or retry_number > self.max_retries:
            return None
        return self.base_delay_seconds * (self.backoff_factor ** (retry_number - 1))
