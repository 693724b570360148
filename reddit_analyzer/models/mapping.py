"""Mapping functions to convert Reddit API JSON to our data models."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from reddit_analyzer.models.dtos import NormalizedPost, RedditComment

logger = logging.getLogger(__name__)

POST_KIND = "t3"
COMMENT_KIND = "t1"


def _to_datetime(created_utc: Any) -> datetime:
    return datetime.fromtimestamp(float(created_utc or 0), tz=timezone.utc)


def normalize_post(raw_post: Dict[str, Any]) -> NormalizedPost:
    """
    Convert the ``data`` object of a t3 listing child to a NormalizedPost.

    Args:
        raw_post: Post fields as returned by the Reddit API

    Returns:
        NormalizedPost with an absolute UTC creation time
    """
    return NormalizedPost(
        id=raw_post["id"],
        title=raw_post.get("title") or "",
        selftext=raw_post.get("selftext") or "",
        author=raw_post.get("author") or "[deleted]",
        subreddit=raw_post.get("subreddit") or "",
        score=raw_post.get("score") or 0,
        ups=raw_post.get("ups") or 0,
        downs=raw_post.get("downs") or 0,
        num_comments=raw_post.get("num_comments") or 0,
        created_utc=_to_datetime(raw_post.get("created_utc")),
        url=raw_post.get("url"),
        permalink=raw_post.get("permalink"),
    )


def listing_to_posts(listing: Dict[str, Any]) -> List[NormalizedPost]:
    """
    Extract and normalize the posts of a Reddit listing response.

    Children of any kind other than t3 are dropped.

    Args:
        listing: Decoded JSON body of a listing or search endpoint

    Returns:
        Posts in listing order
    """
    children = (listing.get("data") or {}).get("children") or []
    return [normalize_post(child["data"]) for child in children if child.get("kind") == POST_KIND]


def flatten_comments(children: List[Dict[str, Any]]) -> List[RedditComment]:
    """
    Flatten a nested comment tree into depth-first document order.

    Uses an explicit worklist so deep reply chains never hit the
    interpreter's recursion limit. Non-comment nodes ("more" stubs) are
    skipped together with their subtrees.

    Args:
        children: ``data.children`` of the comment listing

    Returns:
        Comments ordered parent first, then its replies top to bottom
    """
    comments: List[RedditComment] = []
    stack = [(child, 0) for child in reversed(children)]

    while stack:
        node, depth = stack.pop()
        if node.get("kind") != COMMENT_KIND:
            continue

        data = node.get("data") or {}
        comments.append(
            RedditComment(
                id=data["id"],
                body=data.get("body") or "",
                author=data.get("author") or "[deleted]",
                score=data.get("score") or 0,
                created_utc=_to_datetime(data.get("created_utc")),
                link_id=data.get("link_id"),
                parent_id=data.get("parent_id"),
                depth=depth,
            )
        )

        # Reddit sends an empty string instead of a listing when there are no replies
        replies = data.get("replies")
        if isinstance(replies, dict):
            reply_children = (replies.get("data") or {}).get("children") or []
            stack.extend((reply, depth + 1) for reply in reversed(reply_children))

    return comments
