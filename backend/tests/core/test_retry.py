"""
Tests for the shared retry policy.
"""

from unittest.mock import AsyncMock, patch

import pytest

from app.core.retry import RetryPolicy, default_retry_policy


class TestDelays:
    def test_exponential_schedule(self):
        policy = RetryPolicy(max_attempts=4, backoff_seconds=0.5, backoff_max_seconds=4.0)
        assert list(policy.delays()) == [0.5, 1.0, 2.0]

    def test_delay_is_capped(self):
        policy = RetryPolicy(max_attempts=5, backoff_seconds=1.0, backoff_max_seconds=3.0)
        assert list(policy.delays()) == [1.0, 2.0, 3.0, 3.0]

    def test_single_attempt_never_waits(self):
        assert list(RetryPolicy(max_attempts=1).delays()) == []

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_attempts": 0}, {"backoff_seconds": -1}, {"backoff_max_seconds": -0.5}],
    )
    def test_invalid_policy(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_default_policy_uses_settings(self):
        with patch("app.core.retry.settings.RETRY_MAX_ATTEMPTS", 7):
            policy = default_retry_policy(retry_on=(ConnectionError,))

        assert policy.max_attempts == 7
        assert policy.retry_on == (ConnectionError,)


@pytest.mark.asyncio
class TestRun:
    """Test RetryPolicy.run()."""

    async def test_success_first_try(self):
        func = AsyncMock(return_value=42)

        assert await RetryPolicy(backoff_seconds=0).run(func, "a", key="b") == 42
        func.assert_awaited_once_with("a", key="b")

    async def test_retries_until_success(self):
        func = AsyncMock(side_effect=[ConnectionError("reset"), ConnectionError("reset"), "ok"])
        policy = RetryPolicy(max_attempts=3, backoff_seconds=0.25)

        with patch("app.core.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await policy.run(func) == "ok"

        assert func.await_count == 3
        assert [call.args[0] for call in sleep.await_args_list] == [0.25, 0.5]

    async def test_gives_up_after_max_attempts(self):
        func = AsyncMock(side_effect=ConnectionError("down"))
        policy = RetryPolicy(max_attempts=3, backoff_seconds=0)

        with pytest.raises(ConnectionError, match="down"):
            await policy.run(func, operation="ping")

        assert func.await_count == 3

    async def test_non_retryable_error_propagates_immediately(self):
        func = AsyncMock(side_effect=KeyError("missing"))
        policy = RetryPolicy(max_attempts=3, backoff_seconds=0, retry_on=(ConnectionError,))

        with pytest.raises(KeyError):
            await policy.run(func)

        assert func.await_count == 1
