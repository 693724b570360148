"""Tests for the mapping module."""

from datetime import datetime, timezone

from reddit_analyzer.models.mapping import flatten_comments, listing_to_posts, normalize_post


def test_normalize_post_maps_fields(make_post):
    post = normalize_post(make_post("abc", score=42, ups=50, downs=8, num_comments=7))

    assert post.id == "abc"
    assert post.title == "Post abc"
    assert post.selftext == "Body of abc"
    assert post.subreddit == "python"
    assert (post.score, post.ups, post.downs, post.num_comments) == (42, 50, 8, 7)
    assert post.created_utc == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


def test_normalize_post_fills_missing_values():
    post = normalize_post({"id": "x", "title": "t", "subreddit": "s", "author": None, "selftext": None})

    assert post.author == "[deleted]"
    assert post.selftext == ""
    assert post.score == 0
    assert post.url is None


def test_listing_to_posts_keeps_only_posts(listing, make_post):
    data = listing(
        make_post("a"),
        extra_children=[{"kind": "t5", "data": {"id": "sub"}}, {"kind": "more", "data": {}}],
    )

    assert [p.id for p in listing_to_posts(data)] == ["a"]


def test_listing_to_posts_handles_empty_listing():
    assert listing_to_posts({}) == []
    assert listing_to_posts({"data": {"children": []}}) == []


def test_flatten_comments_handles_deep_chains():
    # Deeper than the default recursion limit
    depth = 2000
    node = {"kind": "t1", "data": {"id": f"c{depth}", "replies": ""}}
    for i in range(depth - 1, -1, -1):
        node = {
            "kind": "t1",
            "data": {"id": f"c{i}", "replies": {"data": {"children": [node]}}},
        }

    comments = flatten_comments([node])

    assert len(comments) == depth + 1
    assert comments[-1].depth == depth
    assert comments[0].id == "c0"


def test_flatten_comments_skips_more_stubs():
    children = [
        {"kind": "more", "data": {"id": "m", "children": ["x", "y"]}},
        {"kind": "t1", "data": {"id": "c1", "body": "hello", "author": None, "replies": ""}},
    ]

    comments = flatten_comments(children)

    assert [c.id for c in comments] == ["c1"]
    assert comments[0].author == "[deleted]"
    assert comments[0].body == "hello"
