"""
Retry with exponential backoff for connector network and file operations.

Used for transport failures against the bridge API and for lock contention
while copying legacy table files. Only the exception types listed in
`retry_on` are retried; anything else propagates immediately.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including first try)
        initial_delay_ms: Initial delay in milliseconds
        max_delay_ms: Maximum delay in milliseconds
        backoff_multiplier: Multiplier for exponential backoff
        jitter: Whether to add random jitter to delay
    """

    max_attempts: int = 3
    initial_delay_ms: float = 500.0
    max_delay_ms: float = 8000.0
    backoff_multiplier: float = 2.0
    jitter: bool = True


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate delay for a given attempt with exponential backoff.

    Args:
        attempt: Attempt number (0-based)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay_ms = min(config.initial_delay_ms * (config.backoff_multiplier**attempt), config.max_delay_ms)

    # ±25% random variation
    if config.jitter:
        delay_ms *= 0.75 + (random.random() * 0.5)

    return delay_ms / 1000.0


def retry_call(
    operation: Callable[[], T],
    config: RetryConfig,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    operation_name: str = "operation",
) -> T:
    """
    Run a blocking operation, retrying on `retry_on` with backoff.

    Raises:
        The last error once attempts are exhausted.
    """
    for attempt in range(config.max_attempts):
        try:
            return operation()
        except retry_on as e:
            if attempt + 1 >= config.max_attempts:
                logger.error(f"{operation_name} failed after {config.max_attempts} attempts: {e}")
                raise
            delay = calculate_delay(attempt, config)
            logger.warning(
                f"{operation_name} attempt {attempt + 1}/{config.max_attempts} failed: {e}. Retrying in {delay:.2f}s"
            )
            time.sleep(delay)
    raise RuntimeError("unreachable")  # pragma: no cover


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    operation_name: str = "operation",
) -> T:
    """
    Await an operation, retrying on `retry_on` with backoff.

    Example:
        >>> response = await retry_async(lambda: client.post(url, json=body), RetryConfig(), (httpx.TransportError,))

    Raises:
        The last error once attempts are exhausted.
    """
    for attempt in range(config.max_attempts):
        try:
            return await operation()
        except retry_on as e:
            if attempt + 1 >= config.max_attempts:
                logger.error(f"{operation_name} failed after {config.max_attempts} attempts: {e}")
                raise
            delay = calculate_delay(attempt, config)
            logger.warning(
                f"{operation_name} attempt {attempt + 1}/{config.max_attempts} failed: {e}. Retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)
    raise RuntimeError("unreachable")  # pragma: no cover
