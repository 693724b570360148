"""Rate-limited Reddit API client using OAuth client credentials."""

import asyncio
import logging
import time
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

import aiohttp
from pydantic import ValidationError

from reddit_analyzer.collector.error_handler import (
    BACKOFF_BASE_DELAY_SEC,
    DEFAULT_MAX_RETRIES,
    execute_with_retry,
)
from reddit_analyzer.collector.rate_limiter import RateLimiter
from reddit_analyzer.config import Config
from reddit_analyzer.exceptions import (
    AuthenticationError,
    ConfigurationError,
    RemoteRequestError,
    ThrottlingError,
)
from reddit_analyzer.models.dtos import NormalizedPost, RateLimitStatus, RedditComment
from reddit_analyzer.models.mapping import flatten_comments, listing_to_posts
from reddit_analyzer.storage.cache import CacheBackend

logger = logging.getLogger(__name__)

TOKEN_URL = "https://www.reddit.com/api/v1/access_token"
API_BASE_URL = "https://oauth.reddit.com"

# Listing responses stay fresh for 10 minutes
LISTING_CACHE_TTL_SEC = 600

# Refresh the token this long before Reddit says it expires
TOKEN_EXPIRY_MARGIN_SEC = 60

REQUEST_TIMEOUT_SEC = 30


@dataclass
class AccessToken:
    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class RedditClient:
    """
    Client for the Reddit OAuth API.

    One instance owns the access token and the rate limiter state and is
    meant to be shared by every ingestion run in the process. All traffic is
    paced through :meth:`RateLimiter.throttle`.
    """

    def __init__(
        self,
        config: Config,
        cache: Optional[CacheBackend] = None,
        rate_limiter: Optional[RateLimiter] = None,
        session: Optional[aiohttp.ClientSession] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_base_delay: float = BACKOFF_BASE_DELAY_SEC,
        prometheus_exporter=None,
    ):
        """
        Initialize the Reddit client with configuration.

        Args:
            config: Application configuration with Reddit credentials
            cache: Optional response cache for listing results
            rate_limiter: Rate limiter; built from ``config.rate_limit`` if omitted
            session: Optional aiohttp session; created lazily if omitted
            max_retries: Retries after a 429 response
            backoff_base_delay: First backoff delay in seconds
            prometheus_exporter: Optional Prometheus exporter
        """
        self.config = config
        self.cache = cache
        self.prometheus_exporter = prometheus_exporter
        self.rate_limiter = rate_limiter or RateLimiter(config.rate_limit, prometheus_exporter)
        self.max_retries = max_retries
        self.backoff_base_delay = backoff_base_delay
        self._session = session
        self._token: Optional[AccessToken] = None
        self._auth_lock = asyncio.Lock()

    async def __aenter__(self) -> "RedditClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.config.user_agent},
                timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SEC),
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session and release resources."""
        if self._session is not None and not self._session.closed:
            logger.info("Closing Reddit client")
            await self._session.close()
        self._session = None

    async def authenticate(self) -> str:
        """
        Return a valid access token, exchanging credentials if needed.

        Returns:
            OAuth bearer token

        Raises:
            ConfigurationError: If client id or secret are not configured
            AuthenticationError: If Reddit rejects the exchange
        """
        async with self._auth_lock:
            now = time.time()
            if self._token is not None and self._token.is_valid(now):
                return self._token.value

            if not self.config.client_id or not self.config.client_secret:
                raise ConfigurationError(
                    "Reddit API credentials not configured. "
                    "Set REDDIT_CLIENT_ID and REDDIT_CLIENT_SECRET."
                )

            logger.info("Requesting Reddit API access token")
            try:
                async with self._get_session().post(
                    TOKEN_URL,
                    data={"grant_type": "client_credentials"},
                    auth=aiohttp.BasicAuth(self.config.client_id, self.config.client_secret),
                    headers={"User-Agent": self.config.user_agent},
                ) as response:
                    if response.status != 200:
                        body = await response.text()
                        raise AuthenticationError(
                            f"Reddit authentication failed with status {response.status}: {body[:200]}"
                        )
                    payload = await response.json()
            except aiohttp.ClientError as e:
                if self.prometheus_exporter:
                    self.prometheus_exporter.record_api_error("auth")
                raise AuthenticationError(f"Reddit authentication failed: {e}") from e

            access_token = payload.get("access_token")
            if not access_token:
                raise AuthenticationError(f"Reddit authentication returned no token: {payload}")

            expires_in = float(payload.get("expires_in", 3600))
            self._token = AccessToken(
                value=access_token,
                expires_at=now + expires_in - TOKEN_EXPIRY_MARGIN_SEC,
            )
            logger.info("Reddit API authenticated")
            return access_token

    async def fetch_posts(
        self,
        subreddit: str,
        limit: int = 100,
        time_filter: str = "week",
        sort: str = "hot",
    ) -> List[NormalizedPost]:
        """
        Fetch a subreddit listing, served from cache when fresh.

        Args:
            subreddit: Subreddit name without the r/ prefix
            limit: Maximum number of posts
            time_filter: hour, day, week, month, year or all
            sort: hot, new, top or rising

        Returns:
            Normalized posts in listing order
        """
        cache_key = f"reddit:posts:{subreddit}:{sort}:{time_filter}:{limit}"

        cached = await self.cache.get(cache_key) if self.cache else None
        if self.prometheus_exporter and self.cache:
            self.prometheus_exporter.record_cache_lookup(cached is not None)
        if cached is not None:
            logger.debug(f"Cache hit for r/{subreddit}")
            try:
                return [NormalizedPost.model_validate(item) for item in cached]
            except (TypeError, ValidationError) as e:
                raise RemoteRequestError(f"Malformed cached listing for r/{subreddit}: {e}") from e

        listing = await self._call(
            "listing",
            f"/r/{subreddit}/{sort}",
            {"limit": limit, "t": time_filter},
        )
        posts = _parse_listing(listing, f"/r/{subreddit}/{sort}")

        if self.cache:
            await self.cache.set(
                cache_key,
                [post.model_dump(mode="json") for post in posts],
                LISTING_CACHE_TTL_SEC,
            )

        logger.info(f"Fetched {len(posts)} posts from r/{subreddit}")
        return posts

    async def search_posts(
        self,
        query: str,
        subreddit: Optional[str] = None,
        limit: int = 100,
        sort: str = "relevance",
        time_filter: str = "all",
    ) -> List[NormalizedPost]:
        """
        Search posts across Reddit or within one subreddit. Never cached.

        Args:
            query: Free-text search query
            subreddit: Restrict the search to this subreddit when given
            limit: Maximum number of posts
            sort: relevance, hot, top, new or comments
            time_filter: hour, day, week, month, year or all

        Returns:
            Normalized posts in result order
        """
        path = f"/r/{subreddit}/search" if subreddit else "/search"
        params = {
            "q": query,
            "limit": limit,
            "sort": sort,
            "t": time_filter,
            "restrict_sr": "true" if subreddit else "false",
            "type": "link",
        }
        listing = await self._call("search", path, params)
        posts = _parse_listing(listing, path)

        logger.info(f"Found {len(posts)} posts matching \"{query}\"")
        return posts

    async def fetch_comments(self, subreddit: str, post_id: str, limit: int = 100) -> List[RedditComment]:
        """
        Fetch the comment tree of a post, flattened in depth-first order.

        Args:
            subreddit: Subreddit the post belongs to
            post_id: Reddit id of the post (without the t3_ prefix)
            limit: Maximum number of top-level comments requested

        Returns:
            All comments in the returned tree
        """
        payload = await self._call(
            "comments",
            f"/r/{subreddit}/comments/{post_id}",
            {"limit": limit},
        )
        # The endpoint returns [post listing, comment listing]
        if not isinstance(payload, list) or len(payload) < 2:
            raise RemoteRequestError(f"Unexpected comments payload for post {post_id}")

        try:
            children = (payload[1].get("data") or {}).get("children") or []
            comments = flatten_comments(children)
        except (KeyError, TypeError, AttributeError, ValueError, ValidationError) as e:
            raise RemoteRequestError(f"Malformed comments payload for post {post_id}: {e}") from e

        logger.info(f"Fetched {len(comments)} comments for post {post_id}")
        return comments

    def get_rate_limit_status(self) -> RateLimitStatus:
        """Current local request count, configured limit and seconds to window reset."""
        return self.rate_limiter.get_status()

    async def _call(self, endpoint: str, path: str, params: Dict[str, Any]) -> Any:
        """Throttle, authenticate, then GET with retry on 429."""
        await self.rate_limiter.throttle()
        token = await self.authenticate()

        return await execute_with_retry(
            lambda: self._get_json(endpoint, path, params, token),
            max_retries=self.max_retries,
            base_delay=self.backoff_base_delay,
            prometheus_exporter=self.prometheus_exporter,
        )

    async def _get_json(self, endpoint: str, path: str, params: Dict[str, Any], token: str) -> Any:
        """
        Perform one GET request against the OAuth API.

        Raises:
            ThrottlingError: On HTTP 429
            RemoteRequestError: On any other non-200 status or transport error
        """
        if self.prometheus_exporter:
            self.prometheus_exporter.record_api_request(endpoint)
            timer = self.prometheus_exporter.time_request()
        else:
            timer = None

        try:
            with timer if timer else nullcontext():
                async with self._get_session().get(
                    f"{API_BASE_URL}{path}",
                    params=params,
                    headers={"Authorization": f"Bearer {token}"},
                ) as response:
                    self.rate_limiter.update_from_headers(response.headers)
                    status, data = await self._read_response(response)
        except aiohttp.ClientError as e:
            if self.prometheus_exporter:
                self.prometheus_exporter.record_api_error("connection")
            raise RemoteRequestError(f"Request to {path} failed: {e}") from e
        except asyncio.TimeoutError as e:
            if self.prometheus_exporter:
                self.prometheus_exporter.record_api_error("timeout")
            raise RemoteRequestError(f"Request to {path} timed out") from e

        if status == 429:
            retry_after = _parse_retry_after(response.headers)
            raise ThrottlingError(f"429 Too Many Requests for {path}", retry_after=retry_after)
        if status != 200:
            if self.prometheus_exporter:
                error_type = "5xx" if 500 <= status < 600 else str(status)
                self.prometheus_exporter.record_api_error(error_type)
            raise RemoteRequestError(f"Reddit API returned {status} for {path}: {str(data)[:200]}", status=status)

        return data

    @staticmethod
    async def _read_response(response: aiohttp.ClientResponse) -> Tuple[int, Any]:
        if response.status == 200:
            return response.status, await response.json()
        return response.status, await response.text()


def _parse_retry_after(headers: Mapping[str, Any]) -> Optional[float]:
    value = headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_listing(listing: Any, path: str) -> List[NormalizedPost]:
    """Normalize a listing body, reporting malformed payloads as a failed request."""
    try:
        return listing_to_posts(listing)
    except (KeyError, TypeError, AttributeError, ValueError, ValidationError) as e:
        raise RemoteRequestError(f"Malformed listing payload from {path}: {e}") from e
