"""
Astewai Bookstore - FastAPI Application
Main entry point for the API server.

Run with:
    uvicorn bookstore.app:app --reload --host 0.0.0.0 --port 8001
"""

import json
import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bookstore import __version__, config
from bookstore.api.routes import register_routes
from bookstore.core.logging import configure_logging
from bookstore.database import init_db
from bookstore.errors import ServiceError
from bookstore.metrics import record_error

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
configure_logging()
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan (startup / shutdown)
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Runs once on startup, yields for the lifetime of the app, then cleans up."""
    if config.RUN_MODE != "api":
        logger.warning(
            "bookstore.app started with RUN_MODE=%s. API mode is expected for this process.",
            config.RUN_MODE,
        )

    logger.info("Initialising database...")
    init_db()
    logger.info("Database ready.")

    yield  # Application is running


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Astewai Bookstore",
    version=__version__,
    description="Digital bookstore API with Telegram and receipt-based payments",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "Content-Disposition"],
)


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception on %s %s: %s\n%s",
        request.method, request.url.path, exc, traceback.format_exc(),
    )
    record_error()
    return JSONResponse(
        status_code=500,
        content={
            "detail": str(exc),
            "type": type(exc).__name__,
            "path": request.url.path,
        },
    )


# ---------------------------------------------------------------------------
# Request logging
# ---------------------------------------------------------------------------

async def request_logging_middleware(request: Request, call_next):
    """Emit one ``request_log {json}`` line per request and tag it with an id."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
    started = time.perf_counter()
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
        if status >= 500:
            record_error()
        response.headers["X-Request-ID"] = request_id
        return response
    finally:
        # Unhandled exceptions propagate with status 500; the error handler counts those.
        logger.info("request_log %s", json.dumps({
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": status,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        }))


app.middleware("http")(request_logging_middleware)


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

register_routes(app)


# ---------------------------------------------------------------------------
# Development entry-point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "bookstore.app:app",
        host="0.0.0.0",
        port=config.PORT,
        reload=True,
    )
