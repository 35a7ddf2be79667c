"""Unit tests for the retry executor

Tests cover:
- Attempt bound and jittered backoff on tenacity
- Retryable vs fatal classification
- Provider presets
"""

import asyncio
import httpx
import pytest
from unittest.mock import AsyncMock, patch

from libs.retry import (
    RETRY_CONFIGS,
    RetryConfig,
    compute_delay,
    is_retryable_error,
    with_retry,
)
from src.app.services.billing_provider import (
    ProviderProtocolError,
    ProviderRejected,
    ProviderTransient,
)


class StatusError(Exception):
    def __init__(self, status_code):
        super().__init__(f"status {status_code}")
        self.status_code = status_code


@pytest.mark.asyncio
class TestWithRetry:

    async def test_permanent_failure_makes_four_attempts_within_jitter_bound(self):
        """
        Given: max_retries=3, initial_delay=0.5s, multiplier=2 and a call that always times out
        When: with_retry runs it
        Then: Exactly 4 attempts, sleeps within ±25% of 0.5/1/2s, last error re-raised
        """
        # Arrange
        fn = AsyncMock(side_effect=ConnectionError("reset"))
        config = RetryConfig(max_retries=3, initial_delay=0.5, backoff_multiplier=2)

        # Act
        with patch("libs.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ConnectionError):
                await with_retry(fn, config)

        # Assert
        assert fn.await_count == 4
        delays = [call.args[0] for call in sleep.await_args_list]
        assert len(delays) == 3
        for delay, base in zip(delays, [0.5, 1.0, 2.0]):
            assert base * 0.75 <= delay <= base * 1.25
        assert 3.5 * 0.75 <= sum(delays) <= 3.5 * 1.25

    async def test_non_retryable_error_is_raised_immediately(self):
        """
        Given: A call failing with a rejected charge
        When: with_retry runs it
        Then: One attempt, no sleep
        """
        fn = AsyncMock(side_effect=ProviderRejected("declined"))

        with patch("libs.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ProviderRejected):
                await with_retry(fn, RetryConfig())

        assert fn.await_count == 1
        sleep.assert_not_awaited()

    async def test_recovers_after_transient_failures(self):
        """
        Given: A call that fails twice with ProviderTransient then succeeds
        When: with_retry runs it
        Then: The successful value is returned after 3 attempts
        """
        fn = AsyncMock(side_effect=[ProviderTransient("503"), ProviderTransient("503"), "ok"])

        with patch("libs.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await with_retry(fn, RetryConfig(max_retries=3))

        assert result == "ok"
        assert fn.await_count == 3
        assert sleep.await_count == 2

    async def test_zero_retries_means_single_attempt(self):
        fn = AsyncMock(side_effect=asyncio.TimeoutError())

        with patch("libs.retry.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(asyncio.TimeoutError):
                await with_retry(fn, RetryConfig(max_retries=0))

        assert fn.await_count == 1

    async def test_each_retry_is_logged_with_its_delay(self, caplog):
        fn = AsyncMock(side_effect=[ProviderTransient("503"), "ok"])
        config = RetryConfig(max_retries=2, initial_delay=1.0, label="stripe.retrieve")

        with patch("libs.retry.asyncio.sleep", new_callable=AsyncMock), \
                patch("libs.retry.random.random", return_value=0.5):
            with caplog.at_level("WARNING", logger="libs.retry"):
                await with_retry(fn, config)

        assert "stripe.retrieve attempt 1/3 failed (ProviderTransient), retrying in 1000ms" in caplog.text


class TestComputeDelay:

    def test_delay_is_capped_at_max_delay(self):
        config = RetryConfig(initial_delay=1.0, max_delay=10.0, backoff_multiplier=2)

        with patch("libs.retry.random.random", return_value=0.5):
            # jitter factor (0.5 * 2 - 1) == 0
            assert compute_delay(config, 0) == 1.0
            assert compute_delay(config, 2) == 4.0
            assert compute_delay(config, 10) == 10.0

    def test_jitter_extremes(self):
        config = RetryConfig(initial_delay=2.0)

        with patch("libs.retry.random.random", return_value=0.0):
            assert compute_delay(config, 0) == pytest.approx(1.5)
        with patch("libs.retry.random.random", return_value=1.0):
            assert compute_delay(config, 0) == pytest.approx(2.5)


class TestIsRetryableError:

    @pytest.mark.parametrize(
        "error",
        [
            ConnectionError(),
            TimeoutError(),
            asyncio.TimeoutError(),
            httpx.ConnectTimeout("timeout"),
            httpx.ReadError("reset"),
            ProviderTransient("unavailable"),
            StatusError(429),
            StatusError(503),
        ],
    )
    def test_retryable(self, error):
        assert is_retryable_error(error) is True

    @pytest.mark.parametrize(
        "error",
        [
            ValueError("bad"),
            ProviderRejected("declined"),
            ProviderProtocolError("malformed"),
            StatusError(400),
            StatusError(404),
        ],
    )
    def test_not_retryable(self, error):
        assert is_retryable_error(error) is False

    def test_http_status_error_uses_response_status(self):
        request = httpx.Request("GET", "https://example.com")
        server_error = httpx.HTTPStatusError(
            "boom", request=request, response=httpx.Response(502, request=request)
        )
        client_error = httpx.HTTPStatusError(
            "nope", request=request, response=httpx.Response(422, request=request)
        )

        assert is_retryable_error(server_error) is True
        assert is_retryable_error(client_error) is False


class TestRetryPresets:

    def test_webhook_ack_is_tighter_than_sync(self):
        webhook = RETRY_CONFIGS["webhook_ack"]
        sync = RETRY_CONFIGS["sync"]

        assert webhook.max_retries < sync.max_retries
        assert webhook.max_retries * webhook.max_delay < sync.max_retries * sync.max_delay

    def test_provider_presets(self):
        assert RETRY_CONFIGS["stripe"].max_retries == 3
        assert RETRY_CONFIGS["shopify"].initial_delay == 1.0
        assert RETRY_CONFIGS["sync"].max_delay == 30.0

    def test_with_label_keeps_policy(self):
        labelled = RETRY_CONFIGS["stripe"].with_label("stripe.create_subscription")

        assert labelled.label == "stripe.create_subscription"
        assert labelled.max_retries == RETRY_CONFIGS["stripe"].max_retries
