"""
Standalone alert scan worker.

Usage:
    python -m incident_engine.worker

Runs the alert scan on its own cadence, outside the API process. Sockets
live in the API process, so realtime pushes from here reach nobody; set
ALERT_SCAN_ENABLED=false on the API when running this worker.
"""

import asyncio
import logging
import signal

from incident_engine.core.config import settings
from incident_engine.core.runtime import build_runtime
from incident_engine.core.structured_logging import build_log_context, configure_logging
from incident_engine.db.session import SessionLocal

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


async def worker_loop(stop_event: asyncio.Event | None = None) -> None:
    """Run the alert scan until ``stop_event`` is set."""
    stop_event = stop_event or asyncio.Event()
    runtime = build_runtime(SessionLocal, settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Signal handlers are unavailable off the main thread and on Windows
            pass

    logger.info(
        "Worker starting (scan interval: %.1fs, grace: %.1fs)",
        settings.ALERT_SCAN_INTERVAL_SECONDS,
        settings.ALERT_SCAN_SHUTDOWN_GRACE_SECONDS,
    )
    runtime.alert_scan.start()
    try:
        await stop_event.wait()
    finally:
        await runtime.shutdown()


def main() -> None:
    """Entry point for the worker."""
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception("Worker crashed", extra=build_log_context(request_id="worker"))
        raise


if __name__ == "__main__":
    main()
