"""
Bounded retry with exponential backoff, jitter and a per-attempt timeout.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from ..exceptions import ClassifierError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResilientInvoker:
    """
    Wraps an external async call with bounded retry and a timeout ceiling.

    Attempt ``n`` (0-based) that fails is followed by a sleep of
    ``min(max_delay, base_delay * backoff_multiplier ** n)`` plus a uniform
    jitter of up to ``jitter`` times that delay.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_multiplier: float = 2.0,
        jitter: float = 0.25,
        timeout: float = 30.0,
        non_retryable: Tuple[Type[BaseException], ...] = (),
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Initialize the invoker.

        Args:
            max_retries: Extra attempts after the first one
            base_delay: Delay before the first retry, in seconds
            max_delay: Upper bound for the exponential component
            backoff_multiplier: Growth factor between retries
            jitter: Fraction of the delay added at random
            timeout: Ceiling for a single attempt, in seconds
            non_retryable: Exception types that propagate immediately
            sleep: Sleep coroutine, injectable for tests
            rng: Random source for jitter, injectable for tests
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier
        self.jitter = jitter
        self.timeout = timeout
        self.non_retryable = non_retryable
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

        self._validate_configuration()

    def _validate_configuration(self) -> None:
        """Validate invoker configuration."""
        if self.max_retries < 0:
            raise ValidationError(
                "max_retries cannot be negative",
                field="max_retries",
                value=self.max_retries,
            )

        if self.timeout <= 0:
            raise ValidationError(
                "timeout must be positive", field="timeout", value=self.timeout
            )

        if self.base_delay < 0 or self.max_delay < 0:
            raise ValidationError(
                "delays cannot be negative",
                field="base_delay",
                value=self.base_delay,
            )

    def compute_delay(self, attempt: int) -> float:
        """Backoff delay after the given failed attempt, jitter included."""
        delay = min(self.max_delay, self.base_delay * (self.backoff_multiplier**attempt))
        if self.jitter > 0 and delay > 0:
            delay += self._rng.uniform(0, delay * self.jitter)
        return delay

    async def invoke(
        self, operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """
        Execute an async operation with retry and timeout.

        Args:
            operation: Coroutine function to call
            *args, **kwargs: Arguments to pass to the operation

        Returns:
            Result of the operation

        Raises:
            ClassifierError: When every attempt failed or timed out
        """
        last_exception: Optional[BaseException] = None
        timed_out = False

        for attempt in range(self.max_retries + 1):
            try:
                return await asyncio.wait_for(
                    operation(*args, **kwargs), timeout=self.timeout
                )

            except asyncio.TimeoutError as e:
                last_exception = e
                timed_out = True
                logger.warning(
                    "Attempt %d/%d timed out after %.1fs",
                    attempt + 1,
                    self.max_retries + 1,
                    self.timeout,
                )

            except self.non_retryable:
                raise

            except Exception as e:
                last_exception = e
                timed_out = False
                logger.warning(
                    "Attempt %d/%d failed: %s",
                    attempt + 1,
                    self.max_retries + 1,
                    e,
                )

            if attempt < self.max_retries:
                delay = self.compute_delay(attempt)
                logger.debug("Retrying in %.2fs", delay)
                await self._sleep(delay)

        raise ClassifierError(
            f"Operation failed after {self.max_retries + 1} attempts: {last_exception}",
            retry_count=self.max_retries,
            reason="timeout" if timed_out else "invocation",
        ) from last_exception
