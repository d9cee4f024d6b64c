"""
Background Tasks for the Astewai Bookstore
- TokenReaper: deletes reading tokens long past their expiry
- StaleInitiationSweeper: rejects purchases never opened in Telegram
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from bookstore import config
from bookstore.database import get_db, get_expired_reading_tokens
from bookstore.services.purchases import expire_stale_initiations

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# TokenReaper
# ---------------------------------------------------------------------------

class TokenReaper:
    """Deletes reading tokens that expired more than READING_TOKEN_RETENTION_HOURS ago."""

    def __init__(self, interval_seconds: Optional[int] = None, retention_hours: Optional[int] = None):
        self.interval_seconds = interval_seconds or config.TOKEN_REAP_INTERVAL_SECONDS
        self.retention_hours = (
            retention_hours if retention_hours is not None else config.READING_TOKEN_RETENTION_HOURS
        )

    def run_once(self) -> int:
        db = get_db()
        try:
            expired = get_expired_reading_tokens(db, self.retention_hours)
            for row in expired:
                db.delete(row)
            db.commit()
            return len(expired)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def run_forever(self):
        logger.info("TokenReaper started (every %ds)", self.interval_seconds)
        while True:
            try:
                deleted = await asyncio.to_thread(self.run_once)
                if deleted:
                    logger.info("TokenReaper: deleted %d expired reading tokens", deleted)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("TokenReaper error: %s", e)
            await asyncio.sleep(self.interval_seconds)


# ---------------------------------------------------------------------------
# StaleInitiationSweeper
# ---------------------------------------------------------------------------

class StaleInitiationSweeper:
    """Rejects pending_initiation purchases older than PURCHASE_INITIATION_TTL_HOURS."""

    def __init__(self, interval_seconds: Optional[int] = None, ttl_hours: Optional[int] = None):
        self.interval_seconds = interval_seconds or config.INITIATION_SWEEP_INTERVAL_SECONDS
        self.ttl_hours = ttl_hours if ttl_hours is not None else config.PURCHASE_INITIATION_TTL_HOURS

    def run_once(self, now: Optional[datetime] = None) -> int:
        db = get_db()
        try:
            return expire_stale_initiations(db, self.ttl_hours, now=now)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def run_forever(self):
        logger.info("StaleInitiationSweeper started (every %ds)", self.interval_seconds)
        while True:
            try:
                expired = await asyncio.to_thread(self.run_once)
                if expired:
                    logger.info("StaleInitiationSweeper: expired %d purchase initiations", expired)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("StaleInitiationSweeper error: %s", e)
            await asyncio.sleep(self.interval_seconds)


# ---------------------------------------------------------------------------
# Task management
# ---------------------------------------------------------------------------

_tasks = []


async def start_background_tasks():
    """Create and start all background asyncio tasks."""
    global _tasks

    _tasks.append(asyncio.create_task(TokenReaper().run_forever()))
    _tasks.append(asyncio.create_task(StaleInitiationSweeper().run_forever()))

    logger.info("All %d background tasks started", len(_tasks))


async def stop_background_tasks():
    """Cancel all running background tasks."""
    for task in _tasks:
        task.cancel()
    if _tasks:
        await asyncio.gather(*_tasks, return_exceptions=True)
    _tasks.clear()
    logger.info("All background tasks stopped")
