"""
Custom exception classes for the Reddit Analyzer.

Remote errors abort the current fetch and surface to the ETL layer as a
failed run. Persistence errors are isolated per post. Cache errors never
reach callers of the response cache.
"""

from typing import Optional


class RedditAnalyzerError(Exception):
    """Base exception for all Reddit Analyzer errors."""
    pass


# =============================================================================
# Configuration / authentication
# =============================================================================

class ConfigurationError(RedditAnalyzerError):
    """Raised when required settings (e.g. Reddit API credentials) are missing."""
    pass


class AuthenticationError(RedditAnalyzerError):
    """Raised when the OAuth client-credentials exchange is rejected."""
    pass


# =============================================================================
# Remote API errors
# =============================================================================

class RemoteRequestError(RedditAnalyzerError):
    """Raised for any non-throttling failure talking to the Reddit API."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ThrottlingError(RedditAnalyzerError):
    """Raised when Reddit answers 429 Too Many Requests."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.status = 429
        self.retry_after = retry_after


# =============================================================================
# Storage errors
# =============================================================================

class PersistenceError(RedditAnalyzerError):
    """Raised when storing a single subreddit, author or post fails."""
    pass


class CacheError(RedditAnalyzerError):
    """Raised by cache backends; always degraded to a miss by the cache facade."""
    pass
