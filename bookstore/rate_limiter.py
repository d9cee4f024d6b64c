"""
Fixed-window rate limiter backed by the shared cache.
"""

from __future__ import annotations

import logging
import time

from bookstore.cache_backend import get_cache_backend

logger = logging.getLogger(__name__)


def check_rate_limit(
    bucket: str,
    identity: str,
    limit_per_minute: int,
) -> tuple[bool, int]:
    """Count one hit for ``identity`` in ``bucket``; returns (allowed, count)."""
    if limit_per_minute <= 0:
        return True, 0

    minute_bucket = int(time.time() // 60)
    key = f"rl:{bucket}:{identity}:{minute_bucket}"
    cache = get_cache_backend()
    try:
        count = cache.incr(key, ttl_seconds=70)
        return count <= int(limit_per_minute), count
    except Exception as exc:
        # Fail open if the cache backend is unavailable.
        logger.warning("rate limiter unavailable for %s: %s", bucket, exc)
        return True, 0
