"""Tests for the fetch retry policy used by the page scraper."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from deepsearch.app.tools.retry import RetryPolicy, with_retry


def status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://example.com/page")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


class TestRetryPolicy:
    """Test RetryPolicy configuration."""

    def test_default_values(self):
        policy = RetryPolicy()
        assert policy.max_retries == 3
        assert policy.base_delay == 0.5
        assert policy.max_delay == 8.0
        assert policy.exponential_base == 2.0

    def test_calculate_delay_doubles(self):
        policy = RetryPolicy(base_delay=0.5)
        assert [policy.calculate_delay(i) for i in range(4)] == [0.5, 1.0, 2.0, 4.0]

    def test_calculate_delay_capped_at_max(self):
        """Delay never exceeds max_delay."""
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0)
        assert policy.calculate_delay(3) == 5.0
        assert policy.calculate_delay(10) == 5.0

    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    def test_retryable_statuses(self, status):
        assert RetryPolicy().is_retryable(status_error(status)) is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_client_errors_not_retryable(self, status):
        assert RetryPolicy().is_retryable(status_error(status)) is False

    def test_network_errors_retryable(self):
        policy = RetryPolicy()
        assert policy.is_retryable(httpx.ConnectError("refused")) is True
        assert policy.is_retryable(httpx.ReadTimeout("slow")) is True

    def test_other_exceptions_not_retryable(self):
        assert RetryPolicy().is_retryable(ValueError("bad")) is False


def decorated(outcomes, **policy):
    """Wrap an AsyncMock producing ``outcomes`` with a zero-delay retry policy."""
    fetch_mock = AsyncMock(side_effect=outcomes)

    @with_retry(RetryPolicy(base_delay=0, **policy))
    async def fetch():
        return await fetch_mock()

    return fetch, fetch_mock


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self):
        fetch, fetch_mock = decorated(["page"])
        assert await fetch() == "page"
        fetch_mock.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_recovers_from_transient_failures(self):
        fetch, fetch_mock = decorated([status_error(503), httpx.ConnectError("reset"), "page"])
        assert await fetch() == "page"
        assert fetch_mock.await_count == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        fetch, fetch_mock = decorated(httpx.ConnectError("refused"), max_retries=2)
        with pytest.raises(httpx.ConnectError, match="refused"):
            await fetch()
        assert fetch_mock.await_count == 3

    @pytest.mark.asyncio
    async def test_not_found_is_final(self):
        fetch, fetch_mock = decorated(status_error(404))
        with pytest.raises(httpx.HTTPStatusError):
            await fetch()
        fetch_mock.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_waits_grow_exponentially(self):
        waits = []

        async def record_sleep(seconds):
            waits.append(seconds)

        outcomes = [httpx.ConnectError("a"), httpx.ConnectError("b"), httpx.ConnectError("c"), "page"]
        fetch_mock = AsyncMock(side_effect=outcomes)

        @with_retry(RetryPolicy(base_delay=0.5))
        async def fetch():
            return await fetch_mock()

        with patch("deepsearch.app.tools.retry.asyncio.sleep", record_sleep):
            assert await fetch() == "page"
        assert waits == [0.5, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_each_retry_is_logged(self):
        fetch, _ = decorated([httpx.ConnectError("a"), "page"])
        with patch("deepsearch.app.tools.retry.logger") as logger:
            await fetch()
        logger.warning.assert_called_once()
        assert "Retry 1/3" in logger.warning.call_args.args[0]

    def test_wrapped_function_keeps_name_and_doc(self):
        @with_retry()
        async def fetch_page():
            """Fetch a page."""

        assert fetch_page.__name__ == "fetch_page"
        assert fetch_page.__doc__ == "Fetch a page."
