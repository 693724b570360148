"""Tests for the retry policy."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from reddit_analyzer.collector.error_handler import execute_with_retry
from reddit_analyzer.exceptions import RemoteRequestError, ThrottlingError


@pytest.mark.asyncio
async def test_returns_result_without_retry(fake_clock):
    operation = AsyncMock(return_value="ok")

    assert await execute_with_retry(operation) == "ok"
    assert operation.await_count == 1
    assert fake_clock.sleeps == []


@pytest.mark.asyncio
async def test_backoff_doubles_then_raises(fake_clock):
    operation = AsyncMock(side_effect=ThrottlingError("429 Too Many Requests"))

    with pytest.raises(ThrottlingError):
        await execute_with_retry(operation, max_retries=3, base_delay=5.0)

    assert fake_clock.sleeps == [5.0, 10.0, 20.0]
    assert operation.await_count == 4


@pytest.mark.asyncio
async def test_recovers_after_throttling(fake_clock):
    operation = AsyncMock(side_effect=[ThrottlingError("429"), ThrottlingError("429"), "data"])

    result = await execute_with_retry(operation)

    assert result == "data"
    assert fake_clock.sleeps == [5.0, 10.0]


@pytest.mark.asyncio
async def test_non_throttling_error_is_not_retried(fake_clock):
    operation = AsyncMock(side_effect=RemoteRequestError("Reddit API returned 500", status=500))

    with pytest.raises(RemoteRequestError) as exc_info:
        await execute_with_retry(operation)

    assert exc_info.value.status == 500
    assert operation.await_count == 1
    assert fake_clock.sleeps == []


@pytest.mark.asyncio
async def test_zero_retries_raises_immediately(fake_clock):
    operation = AsyncMock(side_effect=ThrottlingError("429"))

    with pytest.raises(ThrottlingError):
        await execute_with_retry(operation, max_retries=0)

    assert fake_clock.sleeps == []


@pytest.mark.asyncio
async def test_backoff_is_reported_to_exporter(fake_clock):
    exporter = MagicMock()
    operation = AsyncMock(side_effect=[ThrottlingError("429"), "ok"])

    await execute_with_retry(operation, prometheus_exporter=exporter)

    exporter.record_api_error.assert_called_once_with("429")
    exporter.record_rate_limit_wait.assert_called_once_with("backoff", 5.0)
