"""
Background task runner for fire-and-forget side effects.

State transitions are committed synchronously; the follow-up fan-out
(notifications, pushes) is submitted here so failures stay observable in
logs and counters instead of vanishing with an unreferenced task.
"""

import asyncio
import logging
from typing import Any, Coroutine

logger = logging.getLogger(__name__)


class BackgroundTaskRunner:
    """Tracks submitted coroutines until they finish."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self._accepting = True
        self.submitted = 0
        self.succeeded = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Coroutine[Any, Any, Any], label: str) -> asyncio.Task | None:
        """Schedule a coroutine on the running loop. Returns None after shutdown."""
        if not self._accepting:
            logger.warning("Background runner closed; dropping task %s", label)
            coro.close()
            return None

        task = asyncio.get_running_loop().create_task(coro, name=label)
        self._tasks.add(task)
        self.submitted += 1
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background task %s cancelled", task.get_name())
            self.failed += 1
            return
        exc = task.exception()
        if exc is not None:
            self.failed += 1
            logger.error(
                "Background task %s failed: %s",
                task.get_name(),
                type(exc).__name__,
                exc_info=exc,
            )
            return
        self.succeeded += 1

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for every tracked task. Returns False if the timeout expired first."""
        if not self._tasks:
            return True
        _, still_pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        return not still_pending

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Stop accepting work, wait up to ``timeout`` and cancel the rest."""
        self._accepting = False
        if await self.drain(timeout):
            return
        leftovers = list(self._tasks)
        logger.warning("Cancelling %d unfinished background tasks", len(leftovers))
        for task in leftovers:
            task.cancel()
        await asyncio.gather(*leftovers, return_exceptions=True)

    def stats(self) -> dict[str, int]:
        return {
            "submitted": self.submitted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "pending": self.pending,
        }
