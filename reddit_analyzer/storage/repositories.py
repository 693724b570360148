"""
Repositories over the subreddits, authors and posts tables.

Writes are idempotent upserts keyed on natural unique keys (subreddit name,
author username, Reddit post id) so re-running an ingestion never creates
duplicate rows. PostgreSQL is the production dialect; SQLite is supported
for tests through the same ``ON CONFLICT`` constructs.
"""

import logging
from typing import List, Optional

from sqlalchemy import Select, distinct, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reddit_analyzer.exceptions import PersistenceError
from reddit_analyzer.models.dtos import NormalizedPost, PostStats, SearchResult
from reddit_analyzer.models.orm import AuthorORM, PostORM, SubredditORM

logger = logging.getLogger(__name__)


def dialect_name(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


def dialect_insert(session: AsyncSession, model):
    """Return an INSERT construct supporting ON CONFLICT for the session's dialect."""
    if dialect_name(session) == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)


def author_karma():
    """Combined link + comment karma of the joined author."""
    return AuthorORM.link_karma + AuthorORM.comment_karma


def joined_posts_select() -> Select:
    """
    SELECT posts with author username, combined karma and subreddit name.

    Outer joins keep posts whose author was removed.
    """
    return (
        select(
            PostORM,
            AuthorORM.username.label("author_username"),
            author_karma().label("author_karma"),
            SubredditORM.name.label("subreddit_name"),
        )
        .outerjoin(AuthorORM, PostORM.author_id == AuthorORM.id)
        .outerjoin(SubredditORM, PostORM.subreddit_id == SubredditORM.id)
    )


def rows_to_results(rows) -> List[SearchResult]:
    """Convert rows of :func:`joined_posts_select` into SearchResult DTOs."""
    results = []
    for post, author_username, karma, subreddit_name in rows:
        result = SearchResult.model_validate(post)
        result.author_username = author_username
        result.author_karma = karma
        result.subreddit_name = subreddit_name
        results.append(result)
    return results


class SubredditRepository:
    """Find-or-create and lookups for subreddits."""

    @staticmethod
    async def find_or_create(
        session: AsyncSession,
        name: str,
        description: Optional[str] = None,
        subscribers_count: int = 0,
    ) -> int:
        """
        Return the id of the subreddit called ``name``, creating it if needed.

        An existing row is never modified.
        """
        try:
            existing = await session.execute(select(SubredditORM.id).where(SubredditORM.name == name))
            subreddit_id = existing.scalar_one_or_none()
            if subreddit_id is not None:
                return subreddit_id

            stmt = (
                dialect_insert(session, SubredditORM)
                .values(name=name, description=description, subscribers_count=subscribers_count or 0)
                .on_conflict_do_nothing(index_elements=["name"])
                .returning(SubredditORM.id)
            )
            subreddit_id = (await session.execute(stmt)).scalar_one_or_none()
            if subreddit_id is None:
                # Lost a race with a concurrent insert
                existing = await session.execute(select(SubredditORM.id).where(SubredditORM.name == name))
                subreddit_id = existing.scalar_one()

            logger.debug(f"Created subreddit r/{name} with id {subreddit_id}")
            return subreddit_id
        except SQLAlchemyError as e:
            raise PersistenceError(f"Database error storing subreddit {name}: {e}") from e

    @staticmethod
    async def find_by_name(session: AsyncSession, name: str) -> Optional[SubredditORM]:
        result = await session.execute(select(SubredditORM).where(SubredditORM.name == name))
        return result.scalar_one_or_none()

    @staticmethod
    async def find_all(session: AsyncSession) -> List[SubredditORM]:
        result = await session.execute(
            select(SubredditORM).order_by(SubredditORM.subscribers_count.desc(), SubredditORM.name)
        )
        return list(result.scalars().all())


class AuthorRepository:
    """Find-or-create and lookups for authors."""

    @staticmethod
    async def find_or_create(
        session: AsyncSession,
        username: str,
        link_karma: int = 0,
        comment_karma: int = 0,
    ) -> int:
        """
        Return the id of ``username``, creating the author if needed.

        Karma values are overwritten with the ones given on every call.
        """
        try:
            stmt = dialect_insert(session, AuthorORM).values(
                username=username, link_karma=link_karma, comment_karma=comment_karma
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["username"],
                set_={
                    "link_karma": stmt.excluded.link_karma,
                    "comment_karma": stmt.excluded.comment_karma,
                    "updated_at": func.now(),
                },
            ).returning(AuthorORM.id)
            return (await session.execute(stmt)).scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Database error storing author {username}: {e}") from e

    @staticmethod
    async def find_by_username(session: AsyncSession, username: str) -> Optional[AuthorORM]:
        result = await session.execute(select(AuthorORM).where(AuthorORM.username == username))
        return result.scalar_one_or_none()

    @staticmethod
    async def find_high_karma(session: AsyncSession, min_karma: int = 10000, limit: int = 100) -> List[AuthorORM]:
        """Authors with link or comment karma above ``min_karma``, highest combined first."""
        result = await session.execute(
            select(AuthorORM)
            .where((AuthorORM.link_karma > min_karma) | (AuthorORM.comment_karma > min_karma))
            .order_by(author_karma().desc())
            .limit(limit)
        )
        return list(result.scalars().all())


class PostRepository:
    """Upserts and read queries for posts."""

    @staticmethod
    async def upsert(
        session: AsyncSession,
        post: NormalizedPost,
        subreddit_id: int,
        author_id: Optional[int],
    ) -> int:
        """
        Insert a post or, if its reddit_id exists, refresh its counters.

        Only score, upvotes, downvotes and comment_count change on conflict.

        Returns:
            The stored post's id
        """
        try:
            stmt = dialect_insert(session, PostORM).values(
                reddit_id=post.id,
                title=post.title,
                content=post.selftext or None,
                subreddit_id=subreddit_id,
                author_id=author_id,
                score=post.score,
                upvotes=post.ups,
                downvotes=post.downs,
                comment_count=post.num_comments,
                created_utc=post.created_utc,
                url=post.url,
                processed=False,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["reddit_id"],
                set_={
                    "score": stmt.excluded.score,
                    "upvotes": stmt.excluded.upvotes,
                    "downvotes": stmt.excluded.downvotes,
                    "comment_count": stmt.excluded.comment_count,
                    "updated_at": func.now(),
                },
            ).returning(PostORM.id)
            return (await session.execute(stmt)).scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Database error storing post {post.id}: {e}") from e

    @staticmethod
    async def find_recent(session: AsyncSession, limit: int = 50) -> List[SearchResult]:
        rows = await session.execute(
            joined_posts_select().order_by(PostORM.created_utc.desc()).limit(limit)
        )
        return rows_to_results(rows.all())

    @staticmethod
    async def find_by_subreddit(session: AsyncSession, subreddit_name: str, limit: int = 50) -> List[SearchResult]:
        rows = await session.execute(
            joined_posts_select()
            .where(SubredditORM.name == subreddit_name)
            .order_by(PostORM.created_utc.desc())
            .limit(limit)
        )
        return rows_to_results(rows.all())

    @staticmethod
    async def get_stats(session: AsyncSession) -> PostStats:
        """Counts, averages and sums over all stored posts."""
        result = await session.execute(
            select(
                func.count(PostORM.id).label("total_posts"),
                func.count(distinct(PostORM.subreddit_id)).label("total_subreddits"),
                func.count(distinct(PostORM.author_id)).label("total_authors"),
                func.avg(PostORM.score).label("avg_score"),
                func.max(PostORM.score).label("max_score"),
                func.sum(PostORM.comment_count).label("total_comments"),
            )
        )
        row = result.one()
        return PostStats(
            total_posts=row.total_posts or 0,
            total_subreddits=row.total_subreddits or 0,
            total_authors=row.total_authors or 0,
            avg_score=float(row.avg_score) if row.avg_score is not None else None,
            max_score=row.max_score,
            total_comments=row.total_comments,
        )
