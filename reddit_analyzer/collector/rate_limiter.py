"""Rate limiting functionality for Reddit API requests."""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from reddit_analyzer.config import RateLimitConfig
from reddit_analyzer.models.dtos import RateLimitStatus

logger = logging.getLogger(__name__)

# Length of the local accounting window in seconds
WINDOW_SECONDS = 60.0

# Sleep until reset once Reddit reports this many calls or fewer remaining
QUOTA_LOW_WATER = 1


@dataclass
class RateState:
    """Mutable pacing state owned by a single RateLimiter."""

    request_count: int = 0
    window_start: float = 0.0
    last_request_time: float = 0.0
    remaining_calls: Optional[float] = None
    reset_timestamp: Optional[float] = None


class RateLimiter:
    """
    Rate limiter for Reddit API requests.

    Combines three rules, applied in order before each request:
    a minimum interval between requests, Reddit's own X-Ratelimit quota,
    and a local requests-per-minute ceiling.
    """

    def __init__(self, config: RateLimitConfig, prometheus_exporter=None):
        """
        Initialize the rate limiter with configuration.

        Args:
            config: Rate limiting configuration
            prometheus_exporter: Optional Prometheus exporter for wait metrics
        """
        self.config = config
        self.prometheus_exporter = prometheus_exporter
        self.state = RateState(window_start=time.time())
        self._lock = asyncio.Lock()

    async def throttle(self) -> None:
        """
        Wait until the next request may be issued, then account for it.

        This should be called before each Reddit API request. Concurrent
        callers are serialized so the pacing guarantees hold across them.
        """
        async with self._lock:
            state = self.state

            # (a) minimum interval since the previous request
            elapsed = time.time() - state.last_request_time
            if elapsed < self.config.min_request_interval_sec:
                wait_time = self.config.min_request_interval_sec - elapsed
                logger.debug(f"Waiting {wait_time:.2f}s between requests")
                await self._sleep(wait_time, "interval")

            now = time.time()
            if now - state.window_start >= WINDOW_SECONDS:
                state.request_count = 0
                state.window_start = now

            # (b) remote quota nearly exhausted
            if (state.remaining_calls is not None and
                    state.reset_timestamp is not None and
                    state.remaining_calls <= QUOTA_LOW_WATER and
                    state.reset_timestamp > now):
                wait_time = state.reset_timestamp - now
                logger.warning(f"Reddit rate limit reached: {state.remaining_calls} calls remaining. "
                               f"Sleeping {wait_time:.2f}s until reset.")
                await self._sleep(wait_time, "quota")
                state.remaining_calls = None
                state.reset_timestamp = None

            # (c) local per-window ceiling
            if state.request_count >= self.config.max_requests_per_minute:
                wait_time = max(0.0, WINDOW_SECONDS - (time.time() - state.window_start))
                logger.warning(f"Local rate limit of {self.config.max_requests_per_minute}/min reached. "
                               f"Sleeping {wait_time:.2f}s.")
                await self._sleep(wait_time, "window")
                state.request_count = 0
                state.window_start = time.time()

            state.last_request_time = time.time()
            state.request_count += 1

    def update_from_headers(self, headers: Mapping[str, Any]) -> None:
        """
        Update quota tracking from Reddit API response headers.

        Remote values always replace whatever was remembered before.

        Args:
            headers: Response headers from a Reddit API request
        """
        lowered = {str(k).lower(): v for k, v in headers.items()}

        if "x-ratelimit-remaining" in lowered:
            try:
                self.state.remaining_calls = float(lowered["x-ratelimit-remaining"])
            except (ValueError, TypeError):
                logger.warning("Failed to parse x-ratelimit-remaining header")

        if "x-ratelimit-reset" in lowered:
            try:
                reset_seconds = float(lowered["x-ratelimit-reset"])
                self.state.reset_timestamp = time.time() + reset_seconds
            except (ValueError, TypeError):
                logger.warning("Failed to parse x-ratelimit-reset header")

        if self.state.remaining_calls is not None and self.state.reset_timestamp is not None:
            reset_in = self.state.reset_timestamp - time.time()
            logger.debug(f"Rate limit status: {self.state.remaining_calls} calls remaining, "
                         f"reset in {reset_in:.2f}s")

    def get_status(self) -> RateLimitStatus:
        """Report local window usage without changing any state."""
        since_reset = time.time() - self.state.window_start
        resets_in = max(0.0, WINDOW_SECONDS - since_reset)
        return RateLimitStatus(
            request_count=self.state.request_count,
            limit=self.config.max_requests_per_minute,
            resets_in=math.ceil(resets_in),
        )

    async def _sleep(self, seconds: float, reason: str) -> None:
        if self.prometheus_exporter:
            self.prometheus_exporter.record_rate_limit_wait(reason, seconds)
        await asyncio.sleep(seconds)
