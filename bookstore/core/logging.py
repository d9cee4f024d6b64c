"""
Astewai Bookstore — Logging configuration.

Call ``configure_logging()`` once at process startup (the API app and the
worker both do) to install the shared stdout handler.
"""

from __future__ import annotations

import logging
import sys

from bookstore import config

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Libraries that log every request or statement at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "uvicorn.access")

_CONFIGURED = False


def configure_logging() -> None:
    """Configure the root logger exactly once, at ``LOG_LEVEL`` (default INFO)."""
    global _CONFIGURED
    if _CONFIGURED:
        return

    root = logging.getLogger()
    level = logging.getLevelName(config.LOG_LEVEL)
    root.setLevel(level if isinstance(level, int) else logging.INFO)

    # uvicorn may have installed its own handlers already.
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _CONFIGURED = True
