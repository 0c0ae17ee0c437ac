import asyncio

import httpx
import pytest

from codebase_indexer.errors import ApiError
from codebase_indexer.retry import FatalError, Ok, RetryableError, classify_exception, run_with_retry, unwrap


class Flaky:
    """Fails with the queued errors, then returns a value."""

    def __init__(self, errors, value="done"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class TestRunWithRetry:

    @pytest.mark.asyncio
    async def test_success_after_retries(self):
        operation = Flaky([ApiError("busy", status=503, retryable=True)] * 2)

        result = await run_with_retry(operation, max_retries=3, base_delay=0)

        assert isinstance(result, Ok)
        assert result.value == "done"
        assert result.attempts == 3

    @pytest.mark.asyncio
    async def test_attempts_are_bounded(self):
        operation = Flaky([ApiError("busy", status=503, retryable=True)] * 10)

        result = await run_with_retry(operation, max_retries=2, base_delay=0)

        assert isinstance(result, RetryableError)
        assert result.attempts == 3
        assert operation.calls == 3

    @pytest.mark.asyncio
    async def test_fatal_error_short_circuits(self):
        operation = Flaky([ApiError("unauthorized", status=401), ApiError("never raised")])

        result = await run_with_retry(operation, max_retries=5, base_delay=0)

        assert isinstance(result, FatalError)
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self):
        operation = Flaky([httpx.ConnectError("refused")])

        result = await run_with_retry(operation, max_retries=0, base_delay=0)

        assert isinstance(result, RetryableError)
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_backoff_doubles(self, monkeypatch):
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr(asyncio, "sleep", fake_sleep)
        operation = Flaky([ApiError("busy", status=429, retryable=True)] * 3)

        await run_with_retry(operation, max_retries=3, base_delay=0.5)

        assert delays == [0.5, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        async def cancelled():
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await run_with_retry(cancelled, max_retries=3, base_delay=0)


class TestClassification:

    def test_classify(self):
        assert isinstance(classify_exception(ApiError("x", retryable=True)), RetryableError)
        assert isinstance(classify_exception(ApiError("x")), FatalError)
        assert isinstance(classify_exception(httpx.ReadTimeout("slow")), RetryableError)
        assert isinstance(classify_exception(ValueError("bad")), FatalError)

    def test_unwrap(self):
        assert unwrap(Ok(5)) == 5
        with pytest.raises(ValueError):
            unwrap(FatalError(ValueError("bad")))
