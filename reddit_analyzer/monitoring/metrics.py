"""Prometheus metrics for monitoring the Reddit Analyzer."""

import logging
import time
from typing import Optional

from prometheus_client import Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)

API_REQUESTS = Counter(
    "reddit_analyzer_api_requests_total",
    "Number of Reddit API requests issued",
    ["endpoint"],
)

API_ERRORS = Counter(
    "reddit_analyzer_api_errors_total",
    "Number of Reddit API errors encountered",
    ["error_type"],
)

CACHE_LOOKUPS = Counter(
    "reddit_analyzer_cache_lookups_total",
    "Listing cache lookups by outcome",
    ["outcome"],
)

RATE_LIMIT_WAIT_SECONDS = Counter(
    "reddit_analyzer_rate_limit_wait_seconds_total",
    "Seconds spent waiting on rate limits",
    ["reason"],
)

POSTS_STORED = Counter(
    "reddit_analyzer_posts_stored_total",
    "Number of posts upserted into storage",
    ["subreddit"],
)

REQUEST_DURATION = Histogram(
    "reddit_analyzer_request_duration_seconds",
    "Duration of Reddit API requests in seconds",
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)


class PrometheusExporter:
    """Prometheus metrics exporter for the Reddit Analyzer."""

    def __init__(self, port: int = 8000):
        """
        Initialize the Prometheus exporter.

        Args:
            port: Port to expose metrics on
        """
        self.port = port
        self.server_started = False

    def start_server(self) -> None:
        """Start the Prometheus metrics server."""
        if not self.server_started:
            try:
                start_http_server(self.port)
                self.server_started = True
                logger.info(f"Started Prometheus metrics server on port {self.port}")
            except OSError as e:
                logger.error(f"Failed to start Prometheus metrics server: {str(e)}")

    def record_api_request(self, endpoint: str) -> None:
        """Record an outbound API request (e.g. 'listing', 'search', 'comments')."""
        API_REQUESTS.labels(endpoint=endpoint).inc()

    def record_api_error(self, error_type: str) -> None:
        """Record an API error (e.g. '429', '5xx', 'connection', 'auth')."""
        API_ERRORS.labels(error_type=error_type).inc()

    def record_cache_lookup(self, hit: bool) -> None:
        CACHE_LOOKUPS.labels(outcome="hit" if hit else "miss").inc()

    def record_rate_limit_wait(self, reason: str, seconds: float) -> None:
        """
        Record time spent suspended by the rate limiter or retry policy.

        Args:
            reason: 'interval', 'quota', 'window' or 'backoff'
            seconds: Duration of the wait
        """
        RATE_LIMIT_WAIT_SECONDS.labels(reason=reason).inc(seconds)

    def record_posts_stored(self, subreddit: str, count: int) -> None:
        if count > 0:
            POSTS_STORED.labels(subreddit=subreddit).inc(count)

    def time_request(self) -> "RequestTimer":
        """
        Create a context manager for timing API requests.

        Returns:
            RequestTimer context manager
        """
        return RequestTimer()


class RequestTimer:
    """Context manager for timing API requests."""

    def __init__(self):
        self.start_time: Optional[float] = None

    def __enter__(self) -> "RequestTimer":
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is not None:
            duration = time.time() - self.start_time
            REQUEST_DURATION.observe(duration)
