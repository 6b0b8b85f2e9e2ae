"""
Tests for the resilient invoker.
"""

import asyncio
import random
from unittest.mock import AsyncMock

import pytest

from bim_classifier.exceptions import ClassifierError, ConfigurationError, ValidationError
from bim_classifier.resilience.invoker import ResilientInvoker


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class TestResilientInvoker:
    """Test retry, backoff and timeout behaviour."""

    @pytest.mark.asyncio
    async def test_success_first_try(self) -> None:
        sleep = FakeSleep()
        invoker = ResilientInvoker(sleep=sleep)
        operation = AsyncMock(return_value="ok")

        result = await invoker.invoke(operation, "prompt", flag=True)

        assert result == "ok"
        operation.assert_awaited_once_with("prompt", flag=True)
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self) -> None:
        sleep = FakeSleep()
        invoker = ResilientInvoker(max_retries=3, base_delay=1.0, jitter=0.0, sleep=sleep)
        operation = AsyncMock(side_effect=[RuntimeError("503"), RuntimeError("503"), "ok"])

        result = await invoker.invoke(operation)

        assert result == "ok"
        assert operation.await_count == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhaustion_raises_classifier_error(self) -> None:
        sleep = FakeSleep()
        invoker = ResilientInvoker(max_retries=2, base_delay=0.5, jitter=0.0, sleep=sleep)
        cause = RuntimeError("provider down")
        operation = AsyncMock(side_effect=cause)

        with pytest.raises(ClassifierError) as exc_info:
            await invoker.invoke(operation)

        assert operation.await_count == 3
        assert exc_info.value.reason == "invocation"
        assert exc_info.value.retry_count == 2
        assert exc_info.value.__cause__ is cause
        assert sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_timeout_per_attempt(self) -> None:
        invoker = ResilientInvoker(max_retries=1, timeout=0.01, jitter=0.0, sleep=FakeSleep())

        async def hang():
            await asyncio.sleep(10)

        with pytest.raises(ClassifierError) as exc_info:
            await invoker.invoke(hang)

        assert exc_info.value.reason == "timeout"

    @pytest.mark.asyncio
    async def test_non_retryable_propagates_immediately(self) -> None:
        sleep = FakeSleep()
        invoker = ResilientInvoker(
            max_retries=3, non_retryable=(ConfigurationError,), sleep=sleep
        )
        operation = AsyncMock(side_effect=ConfigurationError("bad model"))

        with pytest.raises(ConfigurationError):
            await invoker.invoke(operation)

        assert operation.await_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_cancellation_is_not_swallowed(self) -> None:
        invoker = ResilientInvoker(max_retries=3, sleep=FakeSleep())
        operation = AsyncMock(side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await invoker.invoke(operation)

        assert operation.await_count == 1

    def test_delay_is_capped(self) -> None:
        invoker = ResilientInvoker(base_delay=1.0, max_delay=5.0, jitter=0.0)

        assert [invoker.compute_delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_jitter_bounds(self) -> None:
        invoker = ResilientInvoker(base_delay=2.0, jitter=0.5, rng=random.Random(42))

        for _ in range(50):
            delay = invoker.compute_delay(0)
            assert 2.0 <= delay <= 3.0

    def test_invalid_configuration(self) -> None:
        with pytest.raises(ValidationError):
            ResilientInvoker(max_retries=-1)
        with pytest.raises(ValidationError):
            ResilientInvoker(timeout=0)
        with pytest.raises(ValidationError):
            ResilientInvoker(base_delay=-1.0)
