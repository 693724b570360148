"""
Ingestion of Reddit posts into the relational store.

Each post is written in its own transaction so one bad row never loses the
rest of the run. Fetch failures (auth, throttling, transport) fail the whole
run; storage failures are collected as messages on an otherwise successful
result.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reddit_analyzer.collector.reddit_client import RedditClient
from reddit_analyzer.exceptions import PersistenceError, RedditAnalyzerError
from reddit_analyzer.models.dtos import IngestionResult, NormalizedPost
from reddit_analyzer.storage.database import session_scope
from reddit_analyzer.storage.repositories import (
    AuthorRepository,
    PostRepository,
    SubredditRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_LIMIT = 50


class ETLService:
    """Fetches posts through the Reddit client and upserts them."""

    def __init__(
        self,
        client: RedditClient,
        session_factory: async_sessionmaker[AsyncSession],
        batch_pause_sec: float = 1.0,
        prometheus_exporter=None,
    ):
        """
        Args:
            client: Shared Reddit API client
            session_factory: Factory for database sessions
            batch_pause_sec: Pause between subreddits in ``batch_ingest``
            prometheus_exporter: Optional Prometheus exporter
        """
        self.client = client
        self.session_factory = session_factory
        self.batch_pause_sec = batch_pause_sec
        self.prometheus_exporter = prometheus_exporter

    async def ingest_subreddit(
        self,
        subreddit: str,
        limit: int = 100,
        time_filter: str = "week",
        sort: str = "hot",
    ) -> IngestionResult:
        """
        Fetch one subreddit listing and store every post in it.

        Returns:
            IngestionResult; ``success`` is False only when the fetch or the
            subreddit row could not be obtained
        """
        logger.info(f"Starting ingestion for r/{subreddit}")

        try:
            posts = await self.client.fetch_posts(subreddit, limit, time_filter, sort)
        except RedditAnalyzerError as e:
            logger.error(f"Ingestion failed for r/{subreddit}: {e}")
            return IngestionResult.failed(str(e))

        if not posts:
            logger.info(f"No posts found in r/{subreddit}")
            return IngestionResult()

        try:
            subreddit_id = await self._find_or_create_subreddit(subreddit)
        except (PersistenceError, SQLAlchemyError) as e:
            logger.error(f"Ingestion failed for r/{subreddit}: {e}")
            return IngestionResult.failed(str(e))

        result = IngestionResult()
        await self._store_posts(posts, subreddit_id, result)
        self._record_stored(subreddit, result.posts_count)

        logger.info(f"Ingestion completed for r/{subreddit}: {result.posts_count}/{len(posts)} posts stored")
        return result

    async def ingest_search(
        self,
        query: str,
        subreddit: Optional[str] = None,
        limit: int = 100,
    ) -> IngestionResult:
        """
        Search Reddit and store the matching posts.

        Posts are grouped by the subreddit they report, which may differ from
        the ``subreddit`` filter. A subreddit that cannot be stored is
        recorded as an error and its posts are skipped.
        """
        where = f" in r/{subreddit}" if subreddit else ""
        logger.info(f"Searching and ingesting \"{query}\"{where}")

        try:
            posts = await self.client.search_posts(query, subreddit, limit)
        except RedditAnalyzerError as e:
            logger.error(f"Search ingestion failed for \"{query}\": {e}")
            return IngestionResult.failed(str(e))

        if not posts:
            logger.info(f"No posts found for query \"{query}\"")
            return IngestionResult()

        result = IngestionResult()
        for subreddit_name, group in group_by_subreddit(posts).items():
            if not subreddit_name:
                for post in group:
                    message = f"Failed to store post {post.id}: no subreddit reported"
                    logger.error(message)
                    result.record_error(message)
                continue

            try:
                subreddit_id = await self._find_or_create_subreddit(subreddit_name)
            except (PersistenceError, SQLAlchemyError) as e:
                message = f"Failed to process subreddit {subreddit_name}: {e}"
                logger.error(message)
                result.record_error(message)
                continue

            before = result.posts_count
            await self._store_posts(group, subreddit_id, result)
            self._record_stored(subreddit_name, result.posts_count - before)

        logger.info(f"Search ingestion completed: {result.posts_count}/{len(posts)} posts stored")
        return result

    async def batch_ingest(self, subreddits: List[str], limit: int = DEFAULT_BATCH_LIMIT) -> Dict[str, IngestionResult]:
        """
        Ingest several subreddits one after another.

        Subreddits are never processed concurrently; the service pauses
        ``batch_pause_sec`` between them.

        Returns:
            Mapping of subreddit name to its result, in input order
        """
        logger.info(f"Batch ingesting {len(subreddits)} subreddits")

        results: Dict[str, IngestionResult] = {}
        for index, subreddit in enumerate(subreddits):
            if index > 0 and self.batch_pause_sec > 0:
                await asyncio.sleep(self.batch_pause_sec)

            try:
                results[subreddit] = await self.ingest_subreddit(subreddit, limit)
            except Exception as e:
                logger.exception(f"Unexpected error ingesting r/{subreddit}")
                results[subreddit] = IngestionResult.failed(str(e))

        succeeded = sum(1 for r in results.values() if r.success)
        logger.info(f"Batch completed: {succeeded}/{len(subreddits)} subreddits succeeded")
        return results

    async def _find_or_create_subreddit(self, name: str) -> int:
        async with session_scope(self.session_factory) as session:
            return await SubredditRepository.find_or_create(session, name)

    async def _store_posts(self, posts: Iterable[NormalizedPost], subreddit_id: int, result: IngestionResult) -> None:
        """Store posts in order, accumulating successes and error messages on ``result``."""
        for post in posts:
            error = await self._store_post(post, subreddit_id)
            if error is None:
                result.record_stored()
            else:
                result.record_error(error)

    async def _store_post(self, post: NormalizedPost, subreddit_id: int) -> Optional[str]:
        """
        Upsert the post's author, then the post.

        Karma is not known from a listing and is stored as zero.

        Returns:
            None on success, otherwise the error message
        """
        try:
            async with session_scope(self.session_factory) as session:
                author_id = await AuthorRepository.find_or_create(session, post.author)
                await PostRepository.upsert(session, post, subreddit_id, author_id)
        except (PersistenceError, SQLAlchemyError) as e:
            message = f"Failed to store post {post.id}: {e}"
            logger.error(message)
            return message
        return None

    def _record_stored(self, subreddit: str, count: int) -> None:
        if self.prometheus_exporter:
            self.prometheus_exporter.record_posts_stored(subreddit, count)


def group_by_subreddit(posts: Iterable[NormalizedPost]) -> Dict[str, List[NormalizedPost]]:
    """Group posts by subreddit name, keeping first-seen order."""
    groups: Dict[str, List[NormalizedPost]] = {}
    for post in posts:
        groups.setdefault(post.subreddit, []).append(post)
    return groups
