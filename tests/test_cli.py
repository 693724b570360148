"""Tests for the CLI module."""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError
from typer.testing import CliRunner

from reddit_analyzer.cli import app
from reddit_analyzer.exceptions import ConfigurationError
from reddit_analyzer.models.dtos import IngestionResult, PostStats

runner = CliRunner()


@pytest.fixture(autouse=True)
def environment(monkeypatch, tmp_path, mocker):
    for key in ("DATABASE_URL", "USE_REDIS", "REDDIT_RATE_LIMIT_PER_MINUTE"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("REDDIT_CLIENT_ID", "cli-client")
    monkeypatch.setenv("REDDIT_CLIENT_SECRET", "cli-secret")
    monkeypatch.chdir(tmp_path)
    mocker.patch("reddit_analyzer.cli.setup_logging")


@pytest.fixture
def runtime(mocker):
    session = mocker.AsyncMock()
    session_factory = mocker.MagicMock()
    session_factory.return_value.__aenter__.return_value = session

    rt = SimpleNamespace(
        config=None,
        engine=mocker.MagicMock(),
        session=session,
        session_factory=session_factory,
        client=mocker.MagicMock(),
        etl=mocker.MagicMock(),
    )
    rt.opened_with = []

    @asynccontextmanager
    async def fake_open_runtime(config):
        rt.opened_with.append(config)
        yield rt

    mocker.patch("reddit_analyzer.cli.open_runtime", fake_open_runtime)
    return rt


def test_sync_prints_result(runtime, mocker):
    runtime.etl.ingest_subreddit = mocker.AsyncMock(
        return_value=IngestionResult(posts_count=3, errors=["Failed to store post x: boom"])
    )

    result = runner.invoke(app, ["sync", "python", "--limit", "25", "--sort", "new"])

    assert result.exit_code == 0, result.output
    runtime.etl.ingest_subreddit.assert_awaited_once_with("python", 25, "week", "new")
    assert json.loads(result.stdout) == {
        "success": True,
        "posts_count": 3,
        "errors": ["Failed to store post x: boom"],
    }
    assert runtime.opened_with[0].client_id == "cli-client"


def test_sync_failed_run_exits_nonzero(runtime, mocker):
    runtime.etl.ingest_subreddit = mocker.AsyncMock(return_value=IngestionResult.failed("429"))

    result = runner.invoke(app, ["sync", "python"])

    assert result.exit_code == 1


def test_sync_requires_credentials(runtime, monkeypatch, mocker):
    monkeypatch.delenv("REDDIT_CLIENT_ID")
    runtime.etl.ingest_subreddit = mocker.AsyncMock()

    result = runner.invoke(app, ["sync", "python"])

    assert result.exit_code == 1
    runtime.etl.ingest_subreddit.assert_not_awaited()


def test_analyzer_errors_exit_nonzero(runtime, mocker):
    runtime.client.fetch_comments = mocker.AsyncMock(side_effect=ConfigurationError("no credentials"))

    result = runner.invoke(app, ["comments", "python", "abc"])

    assert result.exit_code == 1


def test_sync_search(runtime, mocker):
    runtime.etl.ingest_search = mocker.AsyncMock(return_value=IngestionResult(posts_count=1))

    result = runner.invoke(app, ["sync-search", "async io", "--subreddit", "python", "-n", "5"])

    assert result.exit_code == 0, result.output
    runtime.etl.ingest_search.assert_awaited_once_with("async io", "python", 5)


def test_batch_outputs_result_per_subreddit(runtime, mocker):
    runtime.etl.batch_ingest = mocker.AsyncMock(
        return_value={
            "python": IngestionResult(posts_count=2),
            "rust": IngestionResult.failed("Reddit API returned 404"),
        }
    )

    result = runner.invoke(app, ["batch", "python", "rust"])

    assert result.exit_code == 0, result.output
    runtime.etl.batch_ingest.assert_awaited_once_with(["python", "rust"], 50)
    output = json.loads(result.stdout)
    assert output["python"]["posts_count"] == 2
    assert output["rust"]["success"] is False


def test_batch_without_subreddits_fails(runtime):
    result = runner.invoke(app, ["batch"])

    assert result.exit_code == 1


def test_search_builds_criteria(runtime, monkeypatch, mocker):
    monkeypatch.delenv("REDDIT_CLIENT_ID")
    search_posts = mocker.patch("reddit_analyzer.cli.search_posts", new=mocker.AsyncMock(return_value=[]))

    result = runner.invoke(
        app,
        [
            "search",
            "-k", "python",
            "-k", "rust",
            "--require", "async",
            "--subreddit", "programming",
            "--min-upvotes", "5",
            "--min-karma", "100",
            "--start", "2024-01-01",
            "--limit", "10",
            "--offset", "20",
        ],
    )

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == []

    session, criteria = search_posts.await_args.args
    assert session is runtime.session
    assert criteria.keywords == ["python", "rust"]
    assert criteria.required_keywords == ["async"]
    assert criteria.subreddits == ["programming"]
    assert criteria.min_upvotes == 5
    assert criteria.min_karma == 100
    assert criteria.date_range.start == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert criteria.date_range.end is None
    assert (criteria.limit, criteria.offset) == (10, 20)


def test_relevance_prints_new_score(runtime, mocker):
    update = mocker.patch(
        "reddit_analyzer.cli.update_relevance_score", new=mocker.AsyncMock(return_value=25.0)
    )

    result = runner.invoke(app, ["relevance", "7", "python", "asyncio"])

    assert result.exit_code == 0, result.output
    update.assert_awaited_once_with(runtime.session, 7, ["python", "asyncio"])
    assert json.loads(result.stdout) == {"post_id": 7, "relevance_score": 25.0}


def test_relevance_missing_post(runtime, mocker):
    mocker.patch("reddit_analyzer.cli.update_relevance_score", new=mocker.AsyncMock(return_value=None))

    result = runner.invoke(app, ["relevance", "404", "python"])

    assert result.exit_code == 1


def test_stats(runtime, mocker):
    mocker.patch(
        "reddit_analyzer.cli.PostRepository.get_stats",
        new=mocker.AsyncMock(return_value=PostStats(total_posts=4, avg_score=2.5)),
    )

    result = runner.invoke(app, ["stats"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["total_posts"] == 4


def test_status_reports_configured_rate_limit(runtime, monkeypatch, mocker):
    monkeypatch.setenv("REDDIT_RATE_LIMIT_PER_MINUTE", "45")
    monkeypatch.setenv("REDDIT_MIN_REQUEST_INTERVAL_MS", "1500")
    mocker.patch("reddit_analyzer.cli.check_connection", new=mocker.AsyncMock(return_value=True))

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == {
        "database": True,
        "rate_limit": {"max_requests_per_minute": 45, "min_request_interval_sec": 1.5},
    }


def test_recent_by_subreddit(runtime, mocker):
    find = mocker.patch(
        "reddit_analyzer.cli.PostRepository.find_by_subreddit", new=mocker.AsyncMock(return_value=[])
    )

    result = runner.invoke(app, ["recent", "--subreddit", "rust", "-n", "5"])

    assert result.exit_code == 0, result.output
    find.assert_awaited_once_with(runtime.session, "rust", 5)


def test_authors(runtime, mocker):
    mocker.patch(
        "reddit_analyzer.cli.AuthorRepository.find_high_karma",
        new=mocker.AsyncMock(
            return_value=[SimpleNamespace(id=1, username="poster", link_karma=20000, comment_karma=3)]
        ),
    )

    result = runner.invoke(app, ["authors", "--min-karma", "10000"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == [
        {"id": 1, "username": "poster", "link_karma": 20000, "comment_karma": 3}
    ]


def test_database_errors_exit_nonzero(runtime, mocker):
    mocker.patch(
        "reddit_analyzer.cli.PostRepository.get_stats",
        new=mocker.AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("connection refused"))),
    )

    result = runner.invoke(app, ["stats"])

    assert result.exit_code == 1
    assert not isinstance(result.exception, OperationalError)
