"""Bounded retry with exponential backoff for store and payment-provider calls.

Each attempt runs under a timeout. Only exception types listed as transient are
retried; everything else (validation, not-found, duplicate key) propagates on the
first failure. Before every retry the injected connectivity probe is asked whether
the backend is reachable at all; if it is not, retrying stops early.
"""

import asyncio
from typing import Awaitable, Callable, Protocol, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.core.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class OfflineError(Exception):
    """Raised instead of a retry when the connectivity probe reports the backend down."""


class ConnectivityProbe(Protocol):
    async def is_online(self) -> bool: ...


class AlwaysOnline:
    async def is_online(self) -> bool:
        return True


class RetryPolicy:
    def __init__(
        self,
        transient: tuple[type[BaseException], ...],
        attempts: int = 3,
        base_delay: float = 0.2,
        max_delay: float = 2.0,
        timeout: float | None = 10.0,
        probe: ConnectivityProbe | None = None,
        name: str = "call",
    ):
        self.transient = tuple(transient) + (asyncio.TimeoutError,)
        self.attempts = max(1, attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self.probe = probe or AlwaysOnline()
        self.name = name

    @property
    def unavailable_errors(self) -> tuple[type[BaseException], ...]:
        """Exception types a caller should map to "service unavailable" once run() gives up."""
        return self.transient + (OfflineError,)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        log.warning(
            "retry_scheduled",
            policy=self.name,
            attempt=retry_state.attempt_number,
            error=repr(exc),
        )

    async def run(self, fn: Callable[[], Awaitable[T]], op: str = "") -> T:
        """Call fn() until it succeeds, a non-transient error is raised, or attempts run out."""
        result = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception_type(self.transient),
            before_sleep=self._before_sleep,
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1 and not await self.probe.is_online():
                    log.warning("retry_aborted_offline", policy=self.name, op=op)
                    raise OfflineError(f"{self.name} backend unreachable")
                if self.timeout:
                    result = await asyncio.wait_for(fn(), timeout=self.timeout)
                else:
                    result = await fn()
        return result
