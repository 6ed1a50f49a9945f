#!/usr/bin/env python3
"""Resilience patterns for calls to the XE.gr import API.

Two tools are provided:
    - retry_async: retry an awaitable with exponential backoff
    - CircuitBreaker: stop hammering the portal once it keeps failing

Example:
    circuit = CircuitBreaker(failure_threshold=5, timeout=60, name="xe_gr")
    response = await circuit.call(
        retry_async, client.post_package, url, form, max_attempts=3
    )
"""
import asyncio
import logging
import random
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .exceptions import (
    CircuitOpenError,
    NetworkError,
    RateLimitError,
    ServerError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================
# Retry with Exponential Backoff
# ============================================

# Client errors (4xx other than 429) and auth failures are never retried
DEFAULT_RETRYABLE_EXCEPTIONS = (
    NetworkError,
    RateLimitError,
    ServerError,
)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    retryable_exceptions: tuple = DEFAULT_RETRYABLE_EXCEPTIONS,
    **kwargs,
) -> T:
    """Retry an async function call with exponential backoff.

    Args:
        func: Async function to call
        *args: Arguments to pass to func
        max_attempts: Maximum attempts (including the first)
        backoff_factor: Delay multiplier
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        retryable_exceptions: Exceptions to retry on
        **kwargs: Keyword arguments to pass to func

    Returns:
        Result from func
    """
    delay = initial_delay

    for attempt in range(1, max_attempts + 1):
        try:
            return await func(*args, **kwargs)

        except retryable_exceptions as e:
            if attempt >= max_attempts:
                logger.error(f"All {max_attempts} attempts failed. Last error: {e}")
                raise

            if isinstance(e, RateLimitError) and e.retry_after:
                delay = float(e.retry_after)

            actual_delay = min(delay * (0.5 + random.random()), max_delay)
            logger.warning(
                f"Retry {attempt}/{max_attempts}: {e}. Waiting {actual_delay:.1f}s"
            )
            await asyncio.sleep(actual_delay)
            delay = min(delay * backoff_factor, max_delay)

    raise RuntimeError("Retry logic error")


# ============================================
# Circuit Breaker
# ============================================

class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Circuit breaker in front of the portal.

    State Transitions:
        CLOSED -> OPEN: When failure_count >= failure_threshold
        OPEN -> HALF_OPEN: When timeout expires
        HALF_OPEN -> CLOSED: When success_threshold test requests succeed
        HALF_OPEN -> OPEN: When a test request fails

    Only transport failures count against the circuit; see ``counts``.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: float = 60.0,
        success_threshold: int = 2,
        name: str = "default",
        counts: tuple = (NetworkError, ServerError),
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.name = name
        self.counts = counts

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[datetime] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _should_attempt(self) -> bool:
        if self._state == CircuitState.OPEN:
            if self._last_failure_time:
                elapsed = (datetime.utcnow() - self._last_failure_time).total_seconds()
                return elapsed >= self.timeout
            return False
        return True

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args,
        **kwargs,
    ) -> T:
        """Execute function through the circuit breaker.

        Raises:
            CircuitOpenError: If circuit is open and timeout hasn't passed
            Any exception from func (after updating circuit state)
        """
        async with self._lock:
            if not self._should_attempt():
                reset_at = None
                if self._last_failure_time:
                    reset_at = self._last_failure_time + timedelta(seconds=self.timeout)

                raise CircuitOpenError(
                    f"Circuit breaker '{self.name}' is open",
                    reset_at=reset_at,
                    failure_count=self._failure_count,
                )

            if self._state == CircuitState.OPEN:
                logger.info(f"Circuit '{self.name}' transitioning to HALF_OPEN")
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0

        try:
            result = await func(*args, **kwargs)
        except self.counts as e:
            await self._on_failure(e)
            raise

        await self._on_success()
        return result

    async def _on_success(self):
        async with self._lock:
            self._failure_count = 0

            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    logger.info(
                        f"Circuit '{self.name}' closing after "
                        f"{self._success_count} successes"
                    )
                    self._state = CircuitState.CLOSED
                    self._success_count = 0

    async def _on_failure(self, exception: Exception):
        async with self._lock:
            self._failure_count += 1
            self._last_failure_time = datetime.utcnow()

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(
                    f"Circuit '{self.name}' reopening after test failure: {exception}"
                )
                self._state = CircuitState.OPEN

            elif self._failure_count >= self.failure_threshold:
                logger.warning(
                    f"Circuit '{self.name}' opening after "
                    f"{self._failure_count} failures"
                )
                self._state = CircuitState.OPEN

    def reset(self):
        """Manually reset the circuit breaker to closed state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time = None
        logger.info(f"Circuit '{self.name}' manually reset")

    def get_status(self) -> dict[str, Any]:
        """Get circuit breaker status for the health endpoint."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "timeout_seconds": self.timeout,
            "last_failure_at": (
                self._last_failure_time.isoformat()
                if self._last_failure_time
                else None
            ),
        }


__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "retry_async",
    "DEFAULT_RETRYABLE_EXCEPTIONS",
]
