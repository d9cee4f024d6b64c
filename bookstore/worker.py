"""
Maintenance worker for the Astewai Bookstore.

Run with:
    RUN_MODE=worker python -m bookstore.worker

Runs the TokenReaper and StaleInitiationSweeper loops next to the API.
With WORKER_RUN_ONCE=true each job runs a single pass and the process exits,
which suits a cron-style scheduler.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Dict

from bookstore import config
from bookstore.core.logging import configure_logging
from bookstore.database import init_db
from bookstore.tasks import (
    StaleInitiationSweeper,
    TokenReaper,
    start_background_tasks,
    stop_background_tasks,
)

logger = logging.getLogger(__name__)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _request_stop() -> None:
        if not stop_event.is_set():
            logger.info("Shutdown signal received, stopping worker...")
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _request_stop)


async def run_maintenance_once() -> Dict[str, int]:
    """One pass of every maintenance job; returns rows touched per job."""
    reaped = await asyncio.to_thread(TokenReaper().run_once)
    expired = await asyncio.to_thread(StaleInitiationSweeper().run_once)
    logger.info("Maintenance pass: %d reading tokens reaped, %d initiations expired", reaped, expired)
    return {"reading_tokens_reaped": reaped, "initiations_expired": expired}


async def _run_worker_session(stop_event: asyncio.Event) -> None:
    init_db()
    await start_background_tasks()
    logger.info("Worker session started.")
    try:
        await stop_event.wait()
    finally:
        logger.info("Stopping worker background tasks...")
        await stop_background_tasks()


async def run_worker_forever(stop_event: asyncio.Event) -> None:
    """Run worker sessions until ``stop_event`` is set, backing off after crashes."""
    backoff = max(0.5, config.WORKER_RETRY_INITIAL_SECONDS)
    max_backoff = max(backoff, config.WORKER_RETRY_MAX_SECONDS)

    while not stop_event.is_set():
        try:
            await _run_worker_session(stop_event)
            return
        except asyncio.CancelledError:
            raise
        except Exception:
            if stop_event.is_set():
                return
            logger.exception("Worker session crashed; retrying in %.1fs", backoff)
            await asyncio.sleep(backoff)
            backoff = min(max_backoff, backoff * 2.0)


async def main_async() -> None:
    if config.RUN_MODE != "worker":
        logger.warning(
            "bookstore.worker invoked with RUN_MODE=%s. Exiting without starting worker loops.",
            config.RUN_MODE,
        )
        return

    if config.WORKER_RUN_ONCE:
        init_db()
        await run_maintenance_once()
        return

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)
    logger.info("Starting worker in continuous mode.")
    await run_worker_forever(stop_event)


def main() -> None:
    configure_logging()
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
