"""Background task dispatch with retry for transient store failures."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.exc import OperationalError
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from payroll_processing.config import Settings, get_settings
from payroll_processing.errors import SystemicFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

Job = Callable[[], Awaitable[Any]]


class TaskRunner:
    """Runs calculation jobs on the event loop, detached from the request.

    Keeps a reference to every in-flight task so they are not garbage
    collected, logs failures, and can be drained on shutdown.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._tasks: set[asyncio.Task[Any]] = set()

    def dispatch(self, job: Job, name: str | None = None) -> asyncio.Task[Any]:
        """Schedule a job and return immediately."""
        task = asyncio.create_task(job(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def with_retry(self, operation: Callable[[], Awaitable[T]], what: str) -> T:
        """Await ``operation``, retrying transient store errors with backoff.

        Raises SystemicFailure once the attempts are exhausted.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(OperationalError),
            stop=stop_after_attempt(self.settings.store_retry_attempts),
            wait=wait_exponential(multiplier=0.1, max=self.settings.store_retry_max_wait),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=False,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await operation()
        except RetryError as e:
            cause = e.last_attempt.exception()
            logger.error("Store unavailable during %s: %s", what, cause)
            raise SystemicFailure(f"Store unavailable during {what}") from cause

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def join(self) -> None:
        """Wait for every in-flight job to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task %s failed",
                task.get_name(),
                exc_info=(type(exc), exc, exc.__traceback__),
            )
