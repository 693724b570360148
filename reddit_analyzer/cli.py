"""Command-line interface for the Reddit Analyzer."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, List, Optional

import typer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from typing_extensions import Annotated

from reddit_analyzer.collector.reddit_client import RedditClient
from reddit_analyzer.config import Config
from reddit_analyzer.etl.service import DEFAULT_BATCH_LIMIT, ETLService
from reddit_analyzer.exceptions import RedditAnalyzerError
from reddit_analyzer.models.dtos import DateRange, SearchQuery
from reddit_analyzer.monitoring.metrics import PrometheusExporter
from reddit_analyzer.search.query_builder import search_posts, update_relevance_score
from reddit_analyzer.storage.cache import InMemoryCache, RedisCache
from reddit_analyzer.storage.database import (
    check_connection,
    create_engine_from_config,
    create_session_factory,
    session_scope,
)
from reddit_analyzer.storage.repositories import (
    AuthorRepository,
    PostRepository,
    SubredditRepository,
)
from reddit_analyzer.utils.logging_utils import setup_logging

app = typer.Typer(help="Reddit Analyzer - Ingest Reddit posts and search them")

logger = logging.getLogger(__name__)

ConfigOption = Annotated[str, typer.Option("--config", "-c", help="Path to configuration file")]
LogLevelOption = Annotated[Optional[str], typer.Option("--loglevel", "-l", help="Logging level (overrides config)")]


@dataclass
class Runtime:
    """Long-lived collaborators shared by the commands of one invocation."""

    config: Config
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    client: RedditClient
    etl: ETLService


@asynccontextmanager
async def open_runtime(config: Config) -> AsyncIterator[Runtime]:
    """Create the database engine, cache, client and ETL service, and tear them down afterwards."""
    exporter = None
    if config.monitoring.enable_prometheus:
        exporter = PrometheusExporter(config.monitoring.prometheus_port)
        exporter.start_server()

    if config.cache.enabled:
        cache = RedisCache(config.cache.url)
    else:
        cache = InMemoryCache()

    engine = create_engine_from_config(config.postgres)
    session_factory = create_session_factory(engine)
    client = RedditClient(config, cache=cache, prometheus_exporter=exporter)
    etl = ETLService(client, session_factory, config.batch_pause_sec, exporter)

    try:
        yield Runtime(config, engine, session_factory, client, etl)
    finally:
        await client.close()
        if isinstance(cache, RedisCache):
            await cache.close()
        await engine.dispose()


def load_config(config_path: str, loglevel: Optional[str], require_credentials: bool = True) -> Config:
    """Load and validate configuration, then configure logging. Exits on invalid config."""
    cfg = Config.from_files(config_path)
    setup_logging(loglevel or cfg.log_level, cfg.log_file)

    errors = cfg.validate(require_credentials=require_credentials)
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        raise typer.Exit(code=1)
    return cfg


def echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _run(coro) -> Any:
    try:
        return asyncio.run(coro)
    except RedditAnalyzerError as e:
        logger.error(str(e))
        raise typer.Exit(code=1)
    except SQLAlchemyError as e:
        logger.error(f"Database error: {e}")
        raise typer.Exit(code=1)


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


@app.command()
def sync(
    subreddit: Annotated[str, typer.Argument(help="Subreddit name without r/")],
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum number of posts")] = 100,
    time_filter: Annotated[str, typer.Option("--time-filter", "-t", help="hour, day, week, month, year or all")] = "week",
    sort: Annotated[str, typer.Option("--sort", "-s", help="hot, new, top or rising")] = "hot",
    config: ConfigOption = "config.yaml",
    loglevel: LogLevelOption = None,
) -> None:
    """Ingest the posts of one subreddit."""
    cfg = load_config(config, loglevel)

    async def _sync():
        async with open_runtime(cfg) as runtime:
            return await runtime.etl.ingest_subreddit(subreddit, limit, time_filter, sort)

    result = _run(_sync())
    echo_json(result.model_dump(mode="json"))
    if not result.success:
        raise typer.Exit(code=1)


@app.command("sync-search")
def sync_search(
    query: Annotated[str, typer.Argument(help="Reddit search query")],
    subreddit: Annotated[Optional[str], typer.Option("--subreddit", "-r", help="Restrict the search to one subreddit")] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum number of posts")] = 100,
    config: ConfigOption = "config.yaml",
    loglevel: LogLevelOption = None,
) -> None:
    """Search Reddit and ingest the matching posts."""
    cfg = load_config(config, loglevel)

    async def _sync_search():
        async with open_runtime(cfg) as runtime:
            return await runtime.etl.ingest_search(query, subreddit, limit)

    result = _run(_sync_search())
    echo_json(result.model_dump(mode="json"))
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def batch(
    subreddits: Annotated[Optional[List[str]], typer.Argument(help="Subreddits to ingest (defaults to the configured list)")] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum number of posts per subreddit")] = DEFAULT_BATCH_LIMIT,
    config: ConfigOption = "config.yaml",
    loglevel: LogLevelOption = None,
) -> None:
    """Ingest several subreddits one after another."""
    cfg = load_config(config, loglevel)
    names = subreddits or cfg.subreddits
    if not names:
        logger.error("No subreddits given and none configured")
        raise typer.Exit(code=1)

    async def _batch():
        async with open_runtime(cfg) as runtime:
            return await runtime.etl.batch_ingest(names, limit)

    results = _run(_batch())
    echo_json({name: result.model_dump(mode="json") for name, result in results.items()})


@app.command()
def comments(
    subreddit: Annotated[str, typer.Argument(help="Subreddit the post belongs to")],
    post_id: Annotated[str, typer.Argument(help="Reddit post id")],
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum number of top-level comments")] = 100,
    config: ConfigOption = "config.yaml",
    loglevel: LogLevelOption = None,
) -> None:
    """Print the flattened comment tree of a post."""
    cfg = load_config(config, loglevel)

    async def _comments():
        async with open_runtime(cfg) as runtime:
            return await runtime.client.fetch_comments(subreddit, post_id, limit)

    result = _run(_comments())
    echo_json([comment.model_dump(mode="json") for comment in result])


@app.command()
def search(
    keyword: Annotated[Optional[List[str]], typer.Option("--keyword", "-k", help="Match any of these keywords")] = None,
    require: Annotated[Optional[List[str]], typer.Option("--require", help="Keyword that must appear")] = None,
    subreddit: Annotated[Optional[List[str]], typer.Option("--subreddit", "-r", help="Restrict to these subreddits")] = None,
    min_upvotes: Annotated[Optional[int], typer.Option("--min-upvotes", min=0)] = None,
    min_karma: Annotated[Optional[int], typer.Option("--min-karma", min=0)] = None,
    start: Annotated[Optional[datetime], typer.Option("--start", formats=["%Y-%m-%d"], help="Created on or after (UTC)")] = None,
    end: Annotated[Optional[datetime], typer.Option("--end", formats=["%Y-%m-%d"], help="Created on or before (UTC)")] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, max=500)] = 50,
    offset: Annotated[int, typer.Option("--offset", min=0)] = 0,
    config: ConfigOption = "config.yaml",
    loglevel: LogLevelOption = None,
) -> None:
    """Search stored posts."""
    cfg = load_config(config, loglevel, require_credentials=False)

    date_range = None
    if start or end:
        date_range = DateRange(start=_to_utc(start), end=_to_utc(end))

    criteria = SearchQuery(
        keywords=keyword or [],
        required_keywords=require or [],
        subreddits=subreddit or [],
        min_upvotes=min_upvotes,
        min_karma=min_karma,
        date_range=date_range,
        limit=limit,
        offset=offset,
    )

    async def _search():
        async with open_runtime(cfg) as runtime:
            async with session_scope(runtime.session_factory) as session:
                return await search_posts(session, criteria)

    results = _run(_search())
    echo_json([r.model_dump(mode="json") for r in results])


@app.command()
def relevance(
    post_id: Annotated[int, typer.Argument(help="Database id of the post")],
    keywords: Annotated[List[str], typer.Argument(help="Keywords to score against")],
    config: ConfigOption = "config.yaml",
    loglevel: LogLevelOption = None,
) -> None:
    """Recompute the relevance score of a stored post."""
    cfg = load_config(config, loglevel, require_credentials=False)

    async def _relevance():
        async with open_runtime(cfg) as runtime:
            async with session_scope(runtime.session_factory) as session:
                return await update_relevance_score(session, post_id, keywords)

    score = _run(_relevance())
    if score is None:
        logger.error(f"Post {post_id} not found")
        raise typer.Exit(code=1)
    echo_json({"post_id": post_id, "relevance_score": score})


@app.command()
def stats(
    config: ConfigOption = "config.yaml",
    loglevel: LogLevelOption = None,
) -> None:
    """Print aggregate statistics over stored posts."""
    cfg = load_config(config, loglevel, require_credentials=False)

    async def _stats():
        async with open_runtime(cfg) as runtime:
            async with session_scope(runtime.session_factory) as session:
                return await PostRepository.get_stats(session)

    echo_json(_run(_stats()).model_dump(mode="json"))


@app.command()
def recent(
    subreddit: Annotated[Optional[str], typer.Option("--subreddit", "-r", help="Only posts from this subreddit")] = None,
    limit: Annotated[int, typer.Option("--limit", "-n")] = 50,
    config: ConfigOption = "config.yaml",
    loglevel: LogLevelOption = None,
) -> None:
    """Print the most recently created stored posts."""
    cfg = load_config(config, loglevel, require_credentials=False)

    async def _recent():
        async with open_runtime(cfg) as runtime:
            async with session_scope(runtime.session_factory) as session:
                if subreddit:
                    return await PostRepository.find_by_subreddit(session, subreddit, limit)
                return await PostRepository.find_recent(session, limit)

    echo_json([r.model_dump(mode="json") for r in _run(_recent())])


@app.command()
def subreddits(
    config: ConfigOption = "config.yaml",
    loglevel: LogLevelOption = None,
) -> None:
    """List stored subreddits."""
    cfg = load_config(config, loglevel, require_credentials=False)

    async def _subreddits():
        async with open_runtime(cfg) as runtime:
            async with session_scope(runtime.session_factory) as session:
                rows = await SubredditRepository.find_all(session)
                return [
                    {"id": s.id, "name": s.name, "subscribers_count": s.subscribers_count}
                    for s in rows
                ]

    echo_json(_run(_subreddits()))


@app.command()
def authors(
    min_karma: Annotated[int, typer.Option("--min-karma", min=0)] = 10000,
    limit: Annotated[int, typer.Option("--limit", "-n")] = 100,
    config: ConfigOption = "config.yaml",
    loglevel: LogLevelOption = None,
) -> None:
    """List authors whose link or comment karma exceeds a threshold."""
    cfg = load_config(config, loglevel, require_credentials=False)

    async def _authors():
        async with open_runtime(cfg) as runtime:
            async with session_scope(runtime.session_factory) as session:
                rows = await AuthorRepository.find_high_karma(session, min_karma, limit)
                return [
                    {
                        "id": a.id,
                        "username": a.username,
                        "link_karma": a.link_karma,
                        "comment_karma": a.comment_karma,
                    }
                    for a in rows
                ]

    echo_json(_run(_authors()))


@app.command()
def status(
    config: ConfigOption = "config.yaml",
    loglevel: LogLevelOption = None,
) -> None:
    """Report database reachability and the configured rate limit."""
    cfg = load_config(config, loglevel, require_credentials=False)

    async def _status():
        async with open_runtime(cfg) as runtime:
            database_ok = await check_connection(runtime.engine)
            return {"database": database_ok, "rate_limit": asdict(cfg.rate_limit)}

    echo_json(_run(_status()))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
