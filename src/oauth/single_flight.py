"""
Single-flight coordination for async operations.

At most one execution of an operation is in flight per SingleFlight
instance. Callers arriving while it runs await the same task and receive
the same result or exception. The in-flight marker is cleared when the task
finishes, whatever the outcome, so a failure never blocks later attempts.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Share one in-flight execution of an async operation between callers."""

    def __init__(self, name: str):
        """
        Args:
            name: Label used in log messages (e.g., "refresh")
        """
        self.name = name
        self._task: Optional["asyncio.Task[T]"] = None

    @property
    def in_flight(self) -> bool:
        """Whether an execution is currently running."""
        return self._task is not None

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` unless an execution is already in flight.

        Args:
            operation: Zero-argument coroutine function; only called when
                nothing is in flight

        Returns:
            Result of the shared execution

        Raises:
            Whatever the shared execution raised
        """
        task = self._task
        if task is None:
            task = asyncio.ensure_future(operation())
            self._task = task
            task.add_done_callback(self._clear)
            logger.debug(f"{self.name}: started")
        else:
            logger.debug(f"{self.name}: joining in-flight execution")

        # A cancelled waiter must not cancel the shared execution
        return await asyncio.shield(task)

    def _clear(self, task: "asyncio.Task[T]") -> None:
        if self._task is task:
            self._task = None
        if not task.cancelled():
            # Mark the exception retrieved; waiters receive it via shield
            task.exception()
