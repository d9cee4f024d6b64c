"""
Centralized configuration for the Astewai Bookstore API.
All settings come from environment variables for 12-factor deployment.
"""

import os
import secrets


def _env_bool(name: str, default: bool = False) -> bool:
    val = os.environ.get(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


def _env_set(name: str) -> set:
    return {
        s.strip().lower()
        for s in os.environ.get(name, "").split(",")
        if s.strip()
    }


BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# ---------------------------------------------------------------------------
# Database / cache
# ---------------------------------------------------------------------------
DATABASE_URL = os.environ.get(
    "DATABASE_URL",
    f"sqlite:///{os.path.join(BASE_DIR, 'bookstore.db')}",
)
REDIS_URL = os.environ.get("REDIS_URL", "").strip()
# Namespaces keys on a Redis instance shared with other services.
CACHE_KEY_PREFIX = os.environ.get("CACHE_KEY_PREFIX", "astewai:")

# ---------------------------------------------------------------------------
# URLs
# ---------------------------------------------------------------------------
SITE_URL = os.environ.get("SITE_URL", "http://localhost:3000")
PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "http://localhost:8001")

# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------
AUTH_SECRET = os.environ.get("AUTH_SECRET", "") or secrets.token_hex(32)
SESSION_EXPIRY_SECONDS = int(os.environ.get("SESSION_EXPIRY_SECONDS", str(7 * 24 * 3600)))
PASSWORD_HASH_ITERATIONS = int(os.environ.get("PASSWORD_HASH_ITERATIONS", "120000"))
# Emails promoted to the admin role when they register.
ADMIN_EMAILS = _env_set("ADMIN_EMAILS")

# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------
PORT = int(os.environ.get("PORT", "8001"))
RUN_MODE = os.environ.get("RUN_MODE", "api").strip().lower()
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").strip().upper()
CORS_ORIGINS = [
    s.strip() for s in os.environ.get("CORS_ORIGINS", "*").split(",") if s.strip()
]

# ---------------------------------------------------------------------------
# Telegram
# ---------------------------------------------------------------------------
TELEGRAM_BOT_TOKEN = os.environ.get("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_BOT_USERNAME = os.environ.get("TELEGRAM_BOT_USERNAME", "AstewaiBookstoreBot")
# Shared secret the bot presents when it calls the purchase-info endpoint.
TELEGRAM_BOT_SECRET = os.environ.get("TELEGRAM_BOT_SECRET", "")
# Value Telegram echoes in X-Telegram-Bot-Api-Secret-Token (setWebhook secret_token).
TELEGRAM_WEBHOOK_SECRET = os.environ.get("TELEGRAM_WEBHOOK_SECRET", "")
TELEGRAM_ADMIN_CHANNEL_ID = os.environ.get("TELEGRAM_ADMIN_CHANNEL_ID", "")
TELEGRAM_API_BASE = os.environ.get("TELEGRAM_API_BASE", "https://api.telegram.org")

# ---------------------------------------------------------------------------
# Email (SMTP)
# ---------------------------------------------------------------------------
SMTP_HOST = os.environ.get("SMTP_HOST", "")
SMTP_PORT = int(os.environ.get("SMTP_PORT", "465"))
SMTP_USER = os.environ.get("SMTP_USER", "")
SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD", "")
EMAIL_FROM = os.environ.get("EMAIL_FROM", "") or SMTP_USER

# ---------------------------------------------------------------------------
# Storage / OCR
# ---------------------------------------------------------------------------
STORAGE_DIR = os.environ.get("STORAGE_DIR", os.path.join(BASE_DIR, "storage"))
GOOGLE_VISION_API_KEY = os.environ.get("GOOGLE_VISION_API_KEY", "")
OCR_CONFIDENCE_THRESHOLD = float(os.environ.get("OCR_CONFIDENCE_THRESHOLD", "0.7"))
AUTO_MATCH_MIN_CONFIDENCE = float(os.environ.get("AUTO_MATCH_MIN_CONFIDENCE", "0.7"))

# ---------------------------------------------------------------------------
# Commerce
# ---------------------------------------------------------------------------
USD_TO_BIRR_RATE = float(os.environ.get("USD_TO_BIRR_RATE", "120.0"))
DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "ETB")
READING_TOKEN_TTL_HOURS = int(os.environ.get("READING_TOKEN_TTL_HOURS", "24"))
READING_TOKEN_RETENTION_HOURS = int(os.environ.get("READING_TOKEN_RETENTION_HOURS", "72"))
PURCHASE_INITIATION_TTL_HOURS = int(os.environ.get("PURCHASE_INITIATION_TTL_HOURS", "48"))
PREVIEW_CHARS = int(os.environ.get("PREVIEW_CHARS", "500"))
CATALOG_CACHE_TTL_SECONDS = int(os.environ.get("CATALOG_CACHE_TTL_SECONDS", "120"))

# ---------------------------------------------------------------------------
# Rate limits (per minute, 0 disables)
# ---------------------------------------------------------------------------
LOGIN_RATE_LIMIT_PER_MINUTE = int(os.environ.get("LOGIN_RATE_LIMIT_PER_MINUTE", "10"))
PAYMENT_SUBMIT_RATE_LIMIT_PER_MINUTE = int(os.environ.get("PAYMENT_SUBMIT_RATE_LIMIT_PER_MINUTE", "10"))
TELEGRAM_RATE_LIMIT_PER_MINUTE = int(os.environ.get("TELEGRAM_RATE_LIMIT_PER_MINUTE", "30"))

# ---------------------------------------------------------------------------
# Worker runtime options
# ---------------------------------------------------------------------------
WORKER_RETRY_INITIAL_SECONDS = float(os.environ.get("WORKER_RETRY_INITIAL_SECONDS", "2"))
WORKER_RETRY_MAX_SECONDS = float(os.environ.get("WORKER_RETRY_MAX_SECONDS", "60"))
WORKER_RUN_ONCE = _env_bool("WORKER_RUN_ONCE", False)
TOKEN_REAP_INTERVAL_SECONDS = int(os.environ.get("TOKEN_REAP_INTERVAL_SECONDS", "3600"))
INITIATION_SWEEP_INTERVAL_SECONDS = int(os.environ.get("INITIATION_SWEEP_INTERVAL_SECONDS", "900"))
