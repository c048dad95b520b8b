"""
Resilient execution of read-only chain queries.

Every read goes through a bounded retry state machine:

    ATTEMPTING(n) --ok--> SUCCEEDED
    ATTEMPTING(n) --error, n < max--> BACKOFF(n) --sleep n * base_delay--> ATTEMPTING(n + 1)
    ATTEMPTING(n) --error, n == max--> EXHAUSTED

A failed attempt invalidates the pool's connection handle, so the next attempt
re-probes the endpoint list and falls over to the next live endpoint. Each
attempt holds a checkout on its handle, so concurrent reads sharing the handle
keep their connection open until they finish.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

from hydrocred.core.exceptions import ReadExhausted, classify_chain_error
from .chain_connection import ChainConnection
from .endpoint_pool import ConnectionHandle, EndpointPool


logger = structlog.get_logger(__name__)

T = TypeVar("T")
ReadOperation = Callable[[ChainConnection], Awaitable[T]]


class RetryState(Enum):
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


@dataclass
class ReaderStats:
    """Counters across all reads executed by one reader."""
    total_attempts: int = 0
    successful_reads: int = 0
    failed_attempts: int = 0
    exhausted_reads: int = 0
    degraded_reads: int = 0
    total_backoff_seconds: float = 0.0


class ResilientReader:
    """
    Runs read operations against the endpoint pool with retry and fallback.

    ``execute`` propagates ``ReadExhausted``; ``execute_or_default`` turns it
    into a caller-supplied default for dashboard-style status reads. Calls
    with financial side effects must not be routed through this class.
    """

    def __init__(
        self,
        pool: EndpointPool,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.pool = pool
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep
        self.stats = ReaderStats()
        self.logger = logger.bind(service="resilient_reader")

    def backoff_delay(self, attempt: int) -> float:
        """Linear backoff: the wait after failed attempt ``n`` is ``n * base_delay``."""
        return attempt * self.base_delay

    async def execute(self, operation: ReadOperation, name: str = "read") -> T:
        """
        Execute ``operation`` with bounded retries.

        Args:
            operation: Coroutine function taking the live ChainConnection
            name: Operation label for logs and errors

        Returns:
            The operation's result

        Raises:
            ReadExhausted: If every attempt failed
        """
        state = RetryState.ATTEMPTING
        attempt = 1
        last_error: Optional[BaseException] = None
        result: Any = None

        while state not in (RetryState.SUCCEEDED, RetryState.EXHAUSTED):
            if state is RetryState.ATTEMPTING:
                self.stats.total_attempts += 1
                handle: Optional[ConnectionHandle] = None
                try:
                    handle = await self.pool.checkout()
                    try:
                        result = await operation(handle.connection)
                    finally:
                        await self.pool.release(handle)
                    state = RetryState.SUCCEEDED
                except Exception as e:
                    last_error = e
                    self.stats.failed_attempts += 1
                    self.logger.warning(
                        "Read attempt failed",
                        operation=name,
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                        endpoint=handle.url if handle else None,
                        error=str(e) or type(e).__name__,
                        error_code=classify_chain_error(e).code,
                    )
                    if handle is not None:
                        await self.pool.invalidate(handle, e)
                    state = RetryState.BACKOFF if attempt < self.max_attempts else RetryState.EXHAUSTED

            elif state is RetryState.BACKOFF:
                delay = self.backoff_delay(attempt)
                self.stats.total_backoff_seconds += delay
                await self._sleep(delay)
                attempt += 1
                state = RetryState.ATTEMPTING

        if state is RetryState.EXHAUSTED:
            self.stats.exhausted_reads += 1
            self.logger.error("Read exhausted all attempts", operation=name, attempts=attempt)
            raise ReadExhausted(name, attempt, last_error)

        self.stats.successful_reads += 1
        if attempt > 1:
            self.logger.info("Read succeeded after retries", operation=name, attempt=attempt)
        return result

    async def execute_or_default(self, operation: ReadOperation, default: T, name: str = "read") -> T:
        """Execute ``operation``; on exhaustion log and return ``default``."""
        try:
            return await self.execute(operation, name)
        except ReadExhausted as e:
            self.stats.degraded_reads += 1
            self.logger.warning(
                "Read degraded to default",
                operation=name,
                default=repr(default),
                error=str(e.last_error),
            )
            return default
