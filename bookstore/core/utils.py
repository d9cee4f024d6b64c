"""
Astewai Bookstore — Shared utilities.

Pure functions used across the whole package. No imports from other
bookstore modules; only the standard library and bookstore.core.constants.
"""

from __future__ import annotations

import re
import secrets
import string
import time
import uuid
from typing import Optional

from bookstore.core.constants import MAX_FILENAME_CHARS


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

def new_id() -> str:
    """Return a fresh UUID4 string primary key."""
    return str(uuid.uuid4())


def generate_initiation_token() -> str:
    """Opaque token carried in the Telegram ``/start`` deep link.

    Telegram limits the start parameter to 64 chars of ``[A-Za-z0-9_-]``.
    """
    return secrets.token_urlsafe(24)


def generate_transaction_reference(now: Optional[float] = None) -> str:
    """Human-readable order id, e.g. ``AST-48213907-K3QZ``."""
    ts = int(now if now is not None else time.time())
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(4))
    return f"AST-{ts % 100_000_000:08d}-{suffix}"


def generate_reading_token() -> str:
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------

def to_birr(amount_usd: float, rate: float) -> float:
    """Convert a USD catalog price to Ethiopian Birr, rounded to cents."""
    return round(float(amount_usd) * float(rate), 2)


def format_money(amount: float, currency: str = "ETB") -> str:
    """``1234.5`` -> ``"1,234.50 ETB"``."""
    return f"{float(amount):,.2f} {currency}"


def prices_equal(a: float, b: float) -> bool:
    """Compare two prices to the cent."""
    return abs(float(a) - float(b)) < 0.005


def pct_difference(actual: float, expected: float) -> float:
    """Absolute difference between ``actual`` and ``expected`` as a % of expected."""
    if not expected:
        return 0.0 if not actual else 100.0
    return abs(float(actual) - float(expected)) / float(expected) * 100.0


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_filename(name: str, max_chars: int = MAX_FILENAME_CHARS) -> str:
    """Create a safe, short file name that keeps its extension."""
    name = (name or "").strip().replace(" ", "_")
    name = name.rsplit("/", 1)[-1].rsplit("\\", 1)[-1]
    safe = _UNSAFE_CHARS.sub("_", name).lstrip(".") or "file"
    if len(safe) <= max_chars:
        return safe
    stem, dot, ext = safe.rpartition(".")
    if not dot or len(ext) > 10:
        return safe[:max_chars]
    return f"{stem[: max_chars - len(ext) - 1]}.{ext}"


def excerpt(text: Optional[str], max_chars: int) -> str:
    """First ``max_chars`` characters of ``text``, cut on a word boundary."""
    text = (text or "").strip()
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars].rsplit(" ", 1)[0]
    return cut.rstrip(" ,.;:") + "…"
