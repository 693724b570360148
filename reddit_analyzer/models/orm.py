"""
SQLAlchemy ORM models for subreddits, authors and posts.

The schema itself is owned by the database migrations; these classes only
map it. Tests create the tables from this metadata on SQLite.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import expression
from sqlalchemy.sql.sqltypes import TIMESTAMP

# SQLite only autoincrements INTEGER PRIMARY KEY columns
IdType = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


class SubredditORM(Base):
    """A subreddit, found or created by its unique name."""
    __tablename__ = "subreddits"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    subscribers_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<SubredditORM(id={self.id}, name='{self.name}')>"


class AuthorORM(Base):
    """A post author, found or created by username."""
    __tablename__ = "authors"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    link_karma: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    comment_karma: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    account_created_utc: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_authors_karma", "link_karma", "comment_karma"),
    )

    def __repr__(self) -> str:
        return f"<AuthorORM(id={self.id}, username='{self.username}')>"


class PostORM(Base):
    """
    A stored Reddit post.

    Unique on reddit_id: re-ingesting a post updates its counters in place.
    """
    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    reddit_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    subreddit_id: Mapped[Optional[int]] = mapped_column(
        IdType, ForeignKey("subreddits.id", ondelete="CASCADE"), nullable=True
    )
    author_id: Mapped[Optional[int]] = mapped_column(
        IdType, ForeignKey("authors.id", ondelete="SET NULL"), nullable=True
    )
    score: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    upvotes: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    downvotes: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    comment_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    created_utc: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=expression.false())
    relevance_score: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_posts_subreddit", "subreddit_id"),
        Index("idx_posts_author", "author_id"),
        Index("idx_posts_score", "score"),
        Index("idx_posts_created_utc", "created_utc"),
        Index("idx_posts_relevance", "relevance_score"),
    )

    def __repr__(self) -> str:
        return f"<PostORM(id={self.id}, reddit_id='{self.reddit_id}', score={self.score})>"
