import pytest
from unittest.mock import AsyncMock, patch

import httpx

from core.exceptions import (
    GatewayError,
    GatewayTimeoutError,
    SessionCreationError,
    TransientGatewayError,
)
from ..utils.retry_decorator import ErrorClassification, RetryConfig, is_retryable_error, retry_async


class TestErrorClassification:
    @pytest.mark.parametrize(
        "error,expected",
        [
            (TransientGatewayError("busy", http_status=503), True),
            (TransientGatewayError("slow down", http_status=429), True),
            (TransientGatewayError("connection refused"), True),
            (TransientGatewayError("teapot", http_status=418), False),
            (GatewayTimeoutError("read timed out"), False),
            (SessionCreationError("Invalid request", http_status=400), False),
            (GatewayError("boom", http_status=500), False),
            (httpx.ConnectError("refused"), True),
            (httpx.ReadTimeout("timed out"), False),
            (ValueError("bad"), False),
        ],
    )
    def test_classification(self, error, expected):
        assert is_retryable_error(error) is expected

    def test_timeout_reason_mentions_unknown_outcome(self):
        is_transient, reason = ErrorClassification.classify_error(GatewayTimeoutError("t"))

        assert not is_transient
        assert "unknown outcome" in reason


class TestRetryConfig:
    def test_delay_grows_exponentially_and_is_capped(self):
        config = RetryConfig(initial_delay=1.0, max_delay=5.0, jitter=False)

        assert config.calculate_delay(1) == 1.0
        assert config.calculate_delay(2) == 2.0
        assert config.calculate_delay(3) == 4.0
        assert config.calculate_delay(4) == 5.0

    def test_jitter_stays_within_a_quarter(self):
        config = RetryConfig(initial_delay=4.0, jitter=True)

        for _ in range(20):
            assert 3.0 <= config.calculate_delay(1) <= 5.0

    def test_at_least_one_attempt(self):
        assert RetryConfig(max_attempts=0).max_attempts == 1


class TestRetryAsync:
    @pytest.mark.asyncio
    async def test_transient_errors_are_retried_until_success(self):
        calls = AsyncMock(side_effect=[TransientGatewayError("busy", http_status=503), "ok"])

        @retry_async(RetryConfig(max_attempts=3, initial_delay=0, jitter=False))
        async def operation():
            return await calls()

        with patch("asyncio.sleep", new=AsyncMock()) as sleep:
            assert await operation() == "ok"

        assert calls.await_count == 2
        sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        calls = AsyncMock(side_effect=TransientGatewayError("busy", http_status=503))

        @retry_async(RetryConfig(max_attempts=3, initial_delay=0, jitter=False))
        async def operation():
            return await calls()

        with pytest.raises(TransientGatewayError):
            await operation()

        assert calls.await_count == 3

    @pytest.mark.asyncio
    async def test_timeout_is_never_retried(self):
        calls = AsyncMock(side_effect=GatewayTimeoutError("read timed out"))

        @retry_async(RetryConfig(max_attempts=5, initial_delay=0))
        async def operation():
            return await calls()

        with pytest.raises(GatewayTimeoutError):
            await operation()

        assert calls.await_count == 1
