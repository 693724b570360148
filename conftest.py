"""Project-level pytest configuration and shared fixtures."""

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from reddit_analyzer.config import Config, RateLimitConfig
from reddit_analyzer.models.orm import Base
from reddit_analyzer.storage.database import create_session_factory

_real_sleep = asyncio.sleep


class FakeClock:
    """Deterministic replacement for ``time.time`` and ``asyncio.sleep``."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start
        self.sleeps: List[float] = []

    def time(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        # Still yield so concurrent tasks interleave
        await _real_sleep(0)

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock(monkeypatch):
    """Freeze wall time and make every asyncio.sleep advance it instantly."""
    clock = FakeClock()
    monkeypatch.setattr("time.time", clock.time)
    monkeypatch.setattr("asyncio.sleep", clock.sleep)
    return clock


@pytest.fixture
def config() -> Config:
    """Config with credentials and no pacing delays."""
    return Config(
        client_id="test-client",
        client_secret="test-secret",
        user_agent="RedditAnalyzer/test",
        rate_limit=RateLimitConfig(max_requests_per_minute=30, min_request_interval_sec=0.0),
        batch_pause_sec=0.0,
    )


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with the ORM tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


class FakeResponse:
    """Minimal stand-in for ``aiohttp.ClientResponse`` used as an async context manager."""

    def __init__(self, status: int = 200, payload: Any = None, headers: Optional[Dict[str, str]] = None):
        self.status = status
        self.payload = payload
        self.headers = headers or {}

    async def json(self) -> Any:
        return self.payload

    async def text(self) -> str:
        if isinstance(self.payload, str):
            return self.payload
        return json.dumps(self.payload)

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        return None


class FakeSession:
    """
    Records requests and replays queued responses.

    ``post`` serves the token endpoint; ``get`` serves API calls in order.
    A queued exception is raised instead of returning a response.
    """

    def __init__(self, token_response: Optional[FakeResponse] = None):
        self.token_response = token_response or FakeResponse(
            200, {"access_token": "token-1", "expires_in": 3600}
        )
        self.get_responses: List[Any] = []
        self.get_calls: List[Dict[str, Any]] = []
        self.post_calls: List[Dict[str, Any]] = []
        self.closed = False

    def queue(self, *responses: Any) -> None:
        self.get_responses.extend(responses)

    def post(self, url: str, **kwargs) -> FakeResponse:
        self.post_calls.append({"url": url, **kwargs})
        return self.token_response

    def get(self, url: str, **kwargs) -> FakeResponse:
        self.get_calls.append({"url": url, **kwargs})
        response = self.get_responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_http() -> FakeSession:
    return FakeSession()


def make_post_data(post_id: str, subreddit: str = "python", **overrides) -> Dict[str, Any]:
    """Raw ``data`` object of a t3 listing child."""
    data = {
        "id": post_id,
        "title": f"Post {post_id}",
        "selftext": f"Body of {post_id}",
        "author": f"author_{post_id}",
        "subreddit": subreddit,
        "score": 10,
        "ups": 12,
        "downs": 2,
        "num_comments": 3,
        "created_utc": 1700000000,
        "url": f"https://reddit.com/r/{subreddit}/{post_id}",
        "permalink": f"/r/{subreddit}/comments/{post_id}/",
    }
    data.update(overrides)
    return data


def make_listing(*posts: Dict[str, Any], extra_children: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    children = [{"kind": "t3", "data": post} for post in posts]
    children.extend(extra_children or [])
    return {"kind": "Listing", "data": {"children": children}}


@pytest.fixture
def make_post():
    return make_post_data


@pytest.fixture
def listing():
    return make_listing


@pytest.fixture
def response():
    return FakeResponse
