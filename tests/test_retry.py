"""
Tests for async retry with backoff.

Запуск:
    pytest tests/test_retry.py -v
"""

import asyncio

import pytest

from airlink_audit.core.retry import call_with_retry, retry_async


class Flaky:
    """Падает заданное число раз, затем возвращает значение."""

    def __init__(self, failures: int, error: BaseException):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestCallWithRetry:
    """Повторы и проброс исключений."""

    @pytest.mark.asyncio
    async def test_timeout_retried_by_default(self):
        func = Flaky(2, asyncio.TimeoutError())
        assert await call_with_retry(func, base_delay=0, jitter=0) == "ok"
        assert func.calls == 3

    @pytest.mark.asyncio
    async def test_cancelled_error_not_retried(self):
        func = Flaky(1, asyncio.CancelledError())
        with pytest.raises(asyncio.CancelledError):
            await call_with_retry(func, base_delay=0, jitter=0)
        assert func.calls == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        func = Flaky(5, ConnectionError("down"))
        with pytest.raises(ConnectionError):
            await call_with_retry(func, max_attempts=2, base_delay=0, jitter=0)
        assert func.calls == 2

    @pytest.mark.asyncio
    async def test_only_listed_exceptions(self):
        func = Flaky(1, KeyError("x"))
        with pytest.raises(KeyError):
            await call_with_retry(func, exceptions=(ConnectionError,), base_delay=0, jitter=0)
        assert func.calls == 1

    @pytest.mark.asyncio
    async def test_decorator(self):
        func = Flaky(1, ConnectionError("blip"))

        @retry_async(max_attempts=3, base_delay=0, jitter=0)
        async def wrapped():
            return await func()

        assert await wrapped() == "ok"
        assert func.calls == 2
