"""
Pydantic data transfer objects for the Reddit Analyzer.

These models carry data between the API client, the ETL service and the
search layer, independent of Reddit's wire format and of the ORM.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class NormalizedPost(BaseModel):
    """A Reddit post after normalization, as produced by the API client."""
    id: str
    title: str
    selftext: str = ""
    author: str = "[deleted]"
    subreddit: str
    score: int = 0
    ups: int = 0
    downs: int = 0
    num_comments: int = 0
    created_utc: datetime
    url: Optional[str] = None
    permalink: Optional[str] = None


class RedditComment(BaseModel):
    """A single comment flattened out of a comment tree."""
    id: str
    body: str = ""
    author: str = "[deleted]"
    score: int = 0
    created_utc: datetime
    link_id: Optional[str] = None
    parent_id: Optional[str] = None
    depth: int = 0


class IngestionResult(BaseModel):
    """Outcome of one ingestion run."""
    success: bool = True
    posts_count: int = 0
    errors: List[str] = Field(default_factory=list)

    def record_stored(self) -> None:
        self.posts_count += 1

    def record_error(self, message: str) -> None:
        self.errors.append(message)

    @classmethod
    def failed(cls, message: str, posts_count: int = 0) -> "IngestionResult":
        return cls(success=False, posts_count=posts_count, errors=[message])


class RateLimitStatus(BaseModel):
    """Snapshot of the client's local request window."""
    request_count: int
    limit: int
    resets_in: int


class DateRange(BaseModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class SearchQuery(BaseModel):
    """
    Filter criteria for searching stored posts.

    Every criterion is optional; supplied criteria are combined with AND.
    """
    keywords: List[str] = Field(default_factory=list)
    required_keywords: List[str] = Field(default_factory=list)
    subreddits: List[str] = Field(default_factory=list)
    min_upvotes: Optional[int] = Field(default=None, ge=0)
    min_karma: Optional[int] = Field(default=None, ge=0)
    date_range: Optional[DateRange] = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class SearchResult(BaseModel):
    """A stored post joined with its author and subreddit."""
    id: int
    reddit_id: str
    title: str
    content: Optional[str] = None
    score: int
    upvotes: int
    downvotes: int
    comment_count: int
    created_utc: datetime
    url: Optional[str] = None
    relevance_score: float = 0.0
    processed: bool = False
    author_username: Optional[str] = None
    author_karma: Optional[int] = None
    subreddit_name: Optional[str] = None

    model_config = {"from_attributes": True}


class PostStats(BaseModel):
    """Aggregate statistics over stored posts."""
    total_posts: int = 0
    total_subreddits: int = 0
    total_authors: int = 0
    avg_score: Optional[float] = None
    max_score: Optional[int] = None
    total_comments: Optional[int] = None
