"""
Models package for the Reddit Analyzer.

This package contains SQLAlchemy ORM models and Pydantic DTOs.
"""

from .orm import AuthorORM, Base, PostORM, SubredditORM
from .dtos import (
    DateRange,
    IngestionResult,
    NormalizedPost,
    PostStats,
    RateLimitStatus,
    RedditComment,
    SearchQuery,
    SearchResult,
)

__all__ = [
    # Base
    "Base",
    # ORMs
    "AuthorORM",
    "PostORM",
    "SubredditORM",
    # DTOs
    "DateRange",
    "IngestionResult",
    "NormalizedPost",
    "PostStats",
    "RateLimitStatus",
    "RedditComment",
    "SearchQuery",
    "SearchResult",
]
