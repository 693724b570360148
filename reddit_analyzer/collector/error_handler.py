"""Retry logic for throttled Reddit API requests."""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from reddit_analyzer.exceptions import ThrottlingError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
BACKOFF_BASE_DELAY_SEC = 5.0


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = BACKOFF_BASE_DELAY_SEC,
    prometheus_exporter=None,
) -> T:
    """
    Run an async operation, retrying only when Reddit throttles it.

    On ``ThrottlingError`` the call is retried up to ``max_retries`` more
    times, sleeping ``base_delay * 2**attempt`` before each retry
    (5s, 10s, 20s with the defaults). Any other error propagates at once.

    Args:
        operation: Zero-argument coroutine function performing the request
        max_retries: Number of additional attempts after the first one
        base_delay: Backoff before the first retry, doubled for each later one
        prometheus_exporter: Optional Prometheus exporter

    Returns:
        The operation's result

    Raises:
        ThrottlingError: When every attempt was throttled
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except ThrottlingError as e:
            if prometheus_exporter:
                prometheus_exporter.record_api_error("429")
            if attempt >= max_retries:
                logger.error(f"Max retries ({max_retries}) exceeded: {e}")
                raise

            wait_time = base_delay * (2 ** attempt)
            logger.warning(
                f"429 Too Many Requests. Retrying in {wait_time:.0f}s "
                f"(attempt {attempt + 1}/{max_retries})"
            )
            if prometheus_exporter:
                prometheus_exporter.record_rate_limit_wait("backoff", wait_time)
            await asyncio.sleep(wait_time)
            attempt += 1

