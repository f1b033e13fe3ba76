"""
Retry utility with exponential backoff.

Used where a bounded number of repeated attempts is part of the contract,
such as opening the direct browser session.
"""

import asyncio
from typing import Callable, Optional
from dataclasses import dataclass
from mapsharvest.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.exponential_base <= 1:
            raise ValueError("exponential_base must be > 1")

    def delay_for(self, attempt: int) -> float:
        """Backoff delay in seconds before retry number ``attempt + 1``."""
        return min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)


def retry_async_with_backoff(
    func: Callable,
    config: Optional[RetryConfig] = None,
    retry_on: tuple = (Exception,),
    on_retry: Optional[Callable[[int, Exception], None]] = None,
):
    """
    Wrap an async function so it is retried with exponential backoff.

    Args:
        func: Async function to retry
        config: Retry configuration
        retry_on: Tuple of exception types to retry on
        on_retry: Optional callback called on each retry (attempt, exception)

    Returns:
        Async wrapper function; raises the last exception once retries run out

    Example:
        >>> open_direct = retry_async_with_backoff(launcher.open, RetryConfig(max_retries=1))
        >>> # session = await open_direct(ConnectionMode.DIRECT, None)
    """
    if config is None:
        config = RetryConfig()

    async def wrapper(*args, **kwargs):
        for attempt in range(config.max_retries + 1):
            try:
                return await func(*args, **kwargs)
            except retry_on as e:
                if attempt == config.max_retries:
                    logger.error(f"All {config.max_retries} retries exhausted: {e}")
                    raise

                delay = config.delay_for(attempt)
                logger.warning(
                    f"Retry {attempt + 1}/{config.max_retries} "
                    f"after {delay:.2f}s: {e}"
                )
                if on_retry:
                    on_retry(attempt + 1, e)

                await asyncio.sleep(delay)

        raise RuntimeError("Retry logic error")

    return wrapper
