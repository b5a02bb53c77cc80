"""
Unit tests for the exception taxonomy and @retry_on_network_error

Covers:
- Transient errors retried, permanent ones raised on the first attempt
- Attempt count (max_retries + 1 calls in total)
- Exponential backoff, max delay cap, server-provided Retry-After
- HTTP status classification
"""

from unittest.mock import patch

import pytest

from acquirarr.services.exceptions import (
    DownloadClientError,
    DuplicateDownloadError,
    IndexerError,
    NetworkRetryableError,
    classify_http_error,
    parse_retry_after,
    retry_on_network_error,
)


def failing(error, succeed_on=None):
    """Coroutine function raising `error` until call number `succeed_on`."""
    calls = []

    async def func():
        calls.append(1)
        if succeed_on is not None and len(calls) >= succeed_on:
            return "ok"
        raise error

    return func, calls


async def collect_delays(func):
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    with patch("asyncio.sleep", fake_sleep):
        with pytest.raises(NetworkRetryableError):
            await func()
    return delays


class TestRetry:

    @pytest.mark.asyncio
    async def test_succeeds_after_one_retry(self):
        func, calls = failing(NetworkRetryableError("Timeout"), succeed_on=2)
        assert await retry_on_network_error(max_retries=3, base_delay=0)(func)() == "ok"
        assert len(calls) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_retries,expected_calls", [(3, 4), (1, 2), (0, 1)])
    async def test_attempt_count(self, max_retries, expected_calls):
        func, calls = failing(NetworkRetryableError("503"))
        with pytest.raises(NetworkRetryableError):
            await retry_on_network_error(max_retries=max_retries, base_delay=0)(func)()
        assert len(calls) == expected_calls

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        IndexerError("Invalid API key", status_code=401),
        DownloadClientError("refused", client="qBittorrent"),
        ValueError("unexpected"),
    ])
    async def test_permanent_errors_are_not_retried(self, error):
        func, calls = failing(error)
        with pytest.raises(type(error)):
            await retry_on_network_error(max_retries=5, base_delay=0)(func)()
        assert len(calls) == 1


class TestBackoff:

    @pytest.mark.asyncio
    async def test_exponential(self):
        func, _ = failing(NetworkRetryableError("retry me"))
        delays = await collect_delays(retry_on_network_error(max_retries=3, base_delay=1.0)(func))
        assert delays == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_capped(self):
        func, _ = failing(NetworkRetryableError("retry me"))
        delays = await collect_delays(
            retry_on_network_error(max_retries=5, base_delay=10.0, max_delay=30.0)(func)
        )
        assert delays == [10.0, 20.0, 30.0, 30.0, 30.0]

    @pytest.mark.asyncio
    async def test_retry_after_wins(self):
        func, _ = failing(NetworkRetryableError("Rate limited", retry_after=10))
        delays = await collect_delays(retry_on_network_error(max_retries=2, base_delay=1.0)(func))
        assert delays == [10, 10]

    def test_parse_retry_after(self):
        assert parse_retry_after("120") == 120.0
        assert parse_retry_after("Wed, 21 Oct 2026 07:28:00 GMT") is None
        assert parse_retry_after(None) is None


class TestClassification:

    @pytest.mark.parametrize("status", [429, 502, 503, 504])
    def test_transient_statuses(self, status):
        assert isinstance(classify_http_error(status, "transient"), NetworkRetryableError)

    @pytest.mark.parametrize("status", [400, 401, 404, 500])
    def test_permanent_statuses_use_given_class(self, status):
        error = classify_http_error(status, "permanent", error_class=IndexerError)
        assert type(error) is IndexerError
        assert error.status_code == status

    def test_retry_after_sources(self):
        assert classify_http_error(429, "slow down", retry_after=5).retry_after == 5
        assert classify_http_error(429, "slow down", response_data={"retry_after": 30}).retry_after == 30

    def test_duplicate_download_error(self):
        error = DuplicateDownloadError("covered", existing_download_id=7, reason="same_url")
        assert error.status_code == 409
        assert (error.existing_download_id, error.reason) == (7, "same_url")
        assert str(error) == "DuplicateDownloadError (HTTP 409): covered"
