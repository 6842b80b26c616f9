"""
Recurring task runner.

A ticker task fires ``func`` every ``interval_seconds``. Each tick runs in
its own task; a tick that comes due while the previous one is still in
flight is skipped, not queued. ``stop`` starts no new tick, lets the
in-flight one finish within the grace period and cancels it otherwise.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class RecurringTask:
    """Fixed-cadence ticker with skip-if-running overlap policy."""

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        run_immediately: bool = False,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self._func = func
        self._run_immediately = run_immediately
        self._stop_event = asyncio.Event()
        self._ticker: asyncio.Task | None = None
        self._current: asyncio.Task | None = None

        self.ticks_started = 0
        self.ticks_completed = 0
        self.ticks_failed = 0
        self.ticks_skipped = 0
        self.last_duration_ms: float | None = None
        self.last_result: Any = None

    @property
    def is_running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    @property
    def tick_in_flight(self) -> bool:
        return self._current is not None and not self._current.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._ticker = asyncio.get_running_loop().create_task(self._tick_loop(), name=f"{self.name}-ticker")
        logger.info("Recurring task %s started (interval %.1fs)", self.name, self.interval_seconds)

    async def _tick_loop(self) -> None:
        if self._run_immediately:
            self._launch_tick()
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                self._launch_tick()

    def _launch_tick(self) -> asyncio.Task | None:
        if self._stop_event.is_set():
            return None
        if self.tick_in_flight:
            self.ticks_skipped += 1
            logger.warning(
                "Recurring task %s: previous tick still running, skipping (skipped=%d)",
                self.name,
                self.ticks_skipped,
            )
            return None
        self.ticks_started += 1
        self._current = asyncio.get_running_loop().create_task(self._run_tick(), name=f"{self.name}-tick")
        return self._current

    async def _run_tick(self) -> None:
        started = time.monotonic()
        self.last_result = None
        try:
            self.last_result = await self._func()
            self.ticks_completed += 1
        except asyncio.CancelledError:
            logger.warning("Recurring task %s: tick cancelled", self.name)
            raise
        except Exception:
            self.ticks_failed += 1
            logger.exception("Recurring task %s: tick failed", self.name)
        finally:
            self.last_duration_ms = round((time.monotonic() - started) * 1000, 2)

    async def run_once(self) -> bool:
        """Run a tick now and wait for it. Returns False if it was skipped."""
        task = self._launch_tick()
        if task is None:
            return False
        await task
        return True

    async def stop(self, timeout: float = 10.0) -> None:
        """Request shutdown and wait for the in-flight tick up to ``timeout``."""
        self._stop_event.set()
        if self._ticker is not None:
            await self._ticker
            self._ticker = None

        current = self._current
        if current is not None and not current.done():
            done, _ = await asyncio.wait({current}, timeout=timeout)
            if not done:
                logger.warning("Recurring task %s: cancelling tick after %.1fs grace", self.name, timeout)
                current.cancel()
                await asyncio.gather(current, return_exceptions=True)
        logger.info("Recurring task %s stopped", self.name)

    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "running": self.is_running,
            "tick_in_flight": self.tick_in_flight,
            "ticks_started": self.ticks_started,
            "ticks_completed": self.ticks_completed,
            "ticks_failed": self.ticks_failed,
            "ticks_skipped": self.ticks_skipped,
            "last_duration_ms": self.last_duration_ms,
        }
