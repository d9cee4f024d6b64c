"""
Astewai Bookstore — Centralised router registration.

This module is the single place where every APIRouter is mounted onto the
FastAPI application.  Import and call ``register_routes(app)`` once in
``bookstore.app``.

Also defines:

  GET  /api/health   — DB connectivity, cache backend and runtime metrics
"""

from __future__ import annotations

import asyncio
import logging
import time

from fastapi import APIRouter, FastAPI
from sqlalchemy import text

from bookstore import __version__
from bookstore.api.schemas import HealthResponse
from bookstore.cache_backend import get_cache_backend
from bookstore.database import get_db
from bookstore.metrics import metrics_snapshot

logger = logging.getLogger(__name__)

# Module-level start time for uptime reporting
_START_TIME: float = time.time()


# ---------------------------------------------------------------------------
# System endpoints
# ---------------------------------------------------------------------------

system_router = APIRouter(prefix="/api", tags=["system"])


def _check_db() -> str:
    db = get_db()
    try:
        db.execute(text("SELECT 1"))
        return "ok"
    except Exception as exc:
        return f"error: {exc}"
    finally:
        db.close()


@system_router.get("/health", response_model=HealthResponse, summary="Health check")
async def health_check():
    db_status = await asyncio.to_thread(_check_db)

    try:
        cache_name = get_cache_backend().backend
    except Exception as exc:
        cache_name = f"error: {exc}"

    from bookstore.tasks import _tasks  # noqa: PLC0415
    return HealthResponse(
        status="ok" if db_status == "ok" else "degraded",
        version=__version__,
        db=db_status,
        cache_backend=cache_name,
        background_tasks=len(_tasks),
        uptime_seconds=round(time.time() - _START_TIME, 1),
        metrics=metrics_snapshot(),
    )


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

def register_routes(app: FastAPI) -> None:
    """Mount all routers onto ``app``.

    Call this once from ``bookstore.app`` after creating the FastAPI instance.
    """
    from bookstore.auth import router as auth_router
    from bookstore.routers import (
        admin_catalog,
        admin_payments,
        admin_users,
        books,
        bundles,
        library,
        notifications,
        payments,
        profile,
        purchase_requests,
        purchases,
        storage,
        telegram,
    )

    app.include_router(auth_router)
    app.include_router(profile.router)
    app.include_router(books.router)
    app.include_router(bundles.router)
    app.include_router(library.router)
    app.include_router(purchases.router)
    app.include_router(purchase_requests.router)
    app.include_router(payments.router)
    app.include_router(telegram.router)
    app.include_router(notifications.router)
    app.include_router(admin_catalog.router)
    app.include_router(admin_payments.router)
    app.include_router(admin_users.router)
    app.include_router(storage.router)
    app.include_router(system_router)

    logger.info(
        "Routes registered: %d total endpoints",
        sum(1 for r in app.routes if getattr(r, "methods", None)),
    )
