"""
Search over stored posts.

Builds a single SELECT joining posts with their author and subreddit from a
``SearchQuery``; every supplied criterion adds an AND clause. Results are
ordered by the derived relevance score, then by the raw Reddit score.
"""

import logging
import re
from typing import Any, Iterable, List, Mapping, Optional, Union

from sqlalchemy import Select, and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reddit_analyzer.models.dtos import SearchQuery, SearchResult
from reddit_analyzer.models.orm import PostORM, SubredditORM
from reddit_analyzer.storage.repositories import (
    author_karma,
    dialect_name,
    joined_posts_select,
    rows_to_results,
)

logger = logging.getLogger(__name__)

TITLE_WEIGHT = 10
BODY_WEIGHT = 5

TS_CONFIG = "english"

_TSQUERY_TERM = re.compile(r"\w+")


def to_tsquery_text(keywords: Iterable[str]) -> str:
    """
    Combine keywords into a ``to_tsquery`` expression matching any of them.

    Multi-word keywords require all of their words. Characters with meaning
    in tsquery syntax are dropped.

        >>> to_tsquery_text(["python", "machine learning"])
        'python | (machine & learning)'
    """
    groups = []
    for keyword in keywords:
        terms = _TSQUERY_TERM.findall(keyword.lower())
        if not terms:
            continue
        if len(terms) == 1:
            groups.append(terms[0])
        else:
            groups.append("(" + " & ".join(terms) + ")")
    return " | ".join(groups)


def _substring_match(keyword: str):
    return or_(
        PostORM.title.icontains(keyword, autoescape=True),
        func.coalesce(PostORM.content, "").icontains(keyword, autoescape=True),
    )


def _keyword_clause(keywords: List[str], dialect: str):
    if dialect == "postgresql":
        tsquery_text = to_tsquery_text(keywords)
        if tsquery_text:
            document = PostORM.title + " " + func.coalesce(PostORM.content, "")
            return func.to_tsvector(TS_CONFIG, document).op("@@")(
                func.to_tsquery(TS_CONFIG, tsquery_text)
            )
    return or_(*[_substring_match(keyword) for keyword in keywords])


def build_search_query(criteria: SearchQuery, dialect: str = "postgresql") -> Select:
    """
    Build the ranked, paginated search statement for ``criteria``.

    Args:
        criteria: Validated search criteria
        dialect: SQL dialect name; full text search is used on PostgreSQL

    Returns:
        SELECT over posts joined with author username, combined karma and subreddit name
    """
    conditions = []

    keywords = [k for k in criteria.keywords if k.strip()]
    if keywords:
        conditions.append(_keyword_clause(keywords, dialect))

    for keyword in criteria.required_keywords:
        if keyword.strip():
            conditions.append(_substring_match(keyword))

    if criteria.subreddits:
        conditions.append(SubredditORM.name.in_(criteria.subreddits))

    if criteria.min_upvotes is not None:
        conditions.append(PostORM.score >= criteria.min_upvotes)

    if criteria.min_karma is not None:
        conditions.append(author_karma() >= criteria.min_karma)

    if criteria.date_range is not None:
        if criteria.date_range.start is not None:
            conditions.append(PostORM.created_utc >= criteria.date_range.start)
        if criteria.date_range.end is not None:
            conditions.append(PostORM.created_utc <= criteria.date_range.end)

    stmt = joined_posts_select()
    if conditions:
        stmt = stmt.where(and_(*conditions))

    return (
        stmt.order_by(PostORM.relevance_score.desc(), PostORM.score.desc(), PostORM.id)
        .limit(criteria.limit)
        .offset(criteria.offset)
    )


async def search_posts(
    session: AsyncSession,
    criteria: Union[SearchQuery, Mapping[str, Any], None] = None,
) -> List[SearchResult]:
    """
    Search stored posts.

    Args:
        session: Database session
        criteria: SearchQuery or a mapping validated into one; ``None`` matches everything

    Returns:
        Matching posts, best first
    """
    if criteria is None:
        criteria = SearchQuery()
    elif not isinstance(criteria, SearchQuery):
        criteria = SearchQuery.model_validate(criteria)

    stmt = build_search_query(criteria, dialect_name(session))
    rows = await session.execute(stmt)
    results = rows_to_results(rows.all())

    logger.debug(f"Search returned {len(results)} posts")
    return results


def compute_relevance_score(title: str, content: Optional[str], keywords: Iterable[str]) -> float:
    """
    Weighted keyword occurrence score of a post.

    Each case-insensitive occurrence of a keyword counts 10 in the title and
    5 in the body.
    """
    title_lower = (title or "").lower()
    content_lower = (content or "").lower()

    score = 0
    for keyword in keywords:
        needle = keyword.lower()
        if not needle:
            continue
        score += TITLE_WEIGHT * title_lower.count(needle)
        score += BODY_WEIGHT * content_lower.count(needle)
    return float(score)


async def update_relevance_score(
    session: AsyncSession, post_id: int, keywords: Iterable[str]
) -> Optional[float]:
    """
    Recompute and store the relevance score of one post.

    Returns:
        The new score, or None if the post does not exist
    """
    result = await session.execute(
        select(PostORM.title, PostORM.content).where(PostORM.id == post_id)
    )
    row = result.one_or_none()
    if row is None:
        logger.warning(f"Post {post_id} not found, relevance not updated")
        return None

    score = compute_relevance_score(row.title, row.content, keywords)
    await session.execute(
        update(PostORM).where(PostORM.id == post_id).values(relevance_score=score)
    )

    logger.debug(f"Relevance of post {post_id} set to {score}")
    return score
