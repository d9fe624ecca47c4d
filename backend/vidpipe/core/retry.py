"""Retry configuration with exponential backoff."""

import math

from vidpipe.core.config import settings


class RetryConfig:
    """Configuration for retry behavior with exponential backoff."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 300.0,
        backoff_multiplier: float = 2.0,
    ):
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay before retrying after a failed attempt.

        Args:
            attempt: The attempt that just failed (1-indexed).

        Returns:
            The delay in seconds, capped at max_delay.
        """
        if attempt < 1:
            return self.initial_delay

        delay = self.initial_delay * math.pow(self.backoff_multiplier, attempt - 1)
        return min(delay, self.max_delay)


RETRY_CONFIGS = {
    "upload": RetryConfig(
        max_attempts=settings.UPLOAD_MAX_ATTEMPTS,
        initial_delay=settings.UPLOAD_INITIAL_DELAY_SECONDS,
        max_delay=30.0,
        backoff_multiplier=2,
    ),
    "source_download": RetryConfig(max_attempts=3, initial_delay=2.0, max_delay=30.0, backoff_multiplier=2),
    "default": RetryConfig(max_attempts=3, initial_delay=1.0, max_delay=60.0, backoff_multiplier=2),
}


def get_retry_config(name: str) -> RetryConfig:
    """Get a named retry profile, falling back to the default one."""
    return RETRY_CONFIGS.get(name, RETRY_CONFIGS["default"])
