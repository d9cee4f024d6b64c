"""
Astewai Bookstore — System-wide constants.

Limits, bucket names and lifecycle tables shared by routers and services.
"""

# ---------------------------------------------------------------------------
# Storage buckets
# ---------------------------------------------------------------------------

BUCKET_BOOKS: str = "books"
BUCKET_COVERS: str = "covers"
BUCKET_RECEIPTS: str = "payment-receipts"
BUCKETS = (BUCKET_BOOKS, BUCKET_COVERS, BUCKET_RECEIPTS)
# Served anonymously by GET /storage; the rest go through access-checked routes.
PUBLIC_BUCKETS = (BUCKET_COVERS,)

# ---------------------------------------------------------------------------
# Upload limits (bytes) and accepted content types
# ---------------------------------------------------------------------------

MAX_RECEIPT_BYTES: int = 10 * 1024 * 1024
MAX_COVER_BYTES: int = 5 * 1024 * 1024
MAX_CONTENT_BYTES: int = 50 * 1024 * 1024

RECEIPT_CONTENT_TYPES = frozenset({"image/jpeg", "image/png", "image/webp", "application/pdf"})
COVER_CONTENT_TYPES = frozenset({"image/jpeg", "image/png", "image/webp"})
BOOK_CONTENT_TYPES = frozenset({"application/pdf", "application/epub+zip"})

# Stored file names are cut to this many characters (extension kept).
MAX_FILENAME_CHARS: int = 80

# ---------------------------------------------------------------------------
# Catalog paging
# ---------------------------------------------------------------------------

DEFAULT_PAGE_SIZE: int = 12
MAX_PAGE_SIZE: int = 100

# ---------------------------------------------------------------------------
# Bundle pricing
# ---------------------------------------------------------------------------

BUNDLE_MIN_DISCOUNT_PCT: float = 1.0
BUNDLE_LOW_DISCOUNT_WARN_PCT: float = 5.0
BUNDLE_HIGH_DISCOUNT_WARN_PCT: float = 50.0
BUNDLE_RECOMMENDED_DISCOUNTS = {
    "conservative": 5.0,
    "moderate": 15.0,
    "aggressive": 25.0,
}

# ---------------------------------------------------------------------------
# Purchase-request lifecycle: status -> allowed next statuses
# ---------------------------------------------------------------------------

PURCHASE_REQUEST_TRANSITIONS = {
    "pending": ("contacted", "rejected"),
    "contacted": ("approved", "rejected"),
    "approved": ("completed",),
    "rejected": (),
    "completed": (),
}

# Telegram-flow purchase lifecycle.
PURCHASE_TRANSITIONS = {
    "pending_initiation": ("awaiting_payment", "rejected"),
    "awaiting_payment": ("pending_verification", "completed", "rejected"),
    "pending_verification": ("completed", "rejected"),
    "completed": (),
    "rejected": (),
}

# Statuses that block a second purchase / request for the same item.
LIVE_PURCHASE_STATUSES = ("pending_initiation", "awaiting_payment", "pending_verification", "completed")
LIVE_PURCHASE_REQUEST_STATUSES = ("pending", "contacted", "approved")
OPEN_PAYMENT_REQUEST_STATUSES = ("pending", "payment_initiated", "payment_verified")

# ---------------------------------------------------------------------------
# OCR patterns (tried in order, first capture group wins)
# ---------------------------------------------------------------------------

TX_ID_PATTERNS = (
    r"transaction[\s#:]*([A-Z0-9]{8,20})",
    r"ref[\s#:]*([A-Z0-9]{8,20})",
    r"reference[\s#:]*([A-Z0-9]{8,20})",
    r"tx[\s#:]*([A-Z0-9]{8,20})",
    r"id[\s#:]*([A-Z0-9]{8,20})",
    r"\b([A-Z0-9]{10,20})\b",
)

AMOUNT_PATTERNS = (
    r"amount[\s#:]*([0-9,]+\.[0-9]{2})",
    r"total[\s#:]*([0-9,]+\.[0-9]{2})",
    r"paid[\s#:]*([0-9,]+\.[0-9]{2})",
    r"([0-9,]+\.[0-9]{2})\s*(?:ETB|birr)",
    r"([0-9,]+\.[0-9]{2})",
)

# ---------------------------------------------------------------------------
# Auto-matching rule defaults
# ---------------------------------------------------------------------------

AMOUNT_MATCH_BASE_CONFIDENCE: float = 0.8
AMOUNT_MATCH_TOLERANCE_PCT: float = 5.0
TX_ID_PATTERN_BASE_CONFIDENCE: float = 0.7
TIME_WINDOW_BASE_CONFIDENCE: float = 0.6
TIME_WINDOW_MAX_MINUTES: float = 30.0
USER_HISTORY_BASE_CONFIDENCE: float = 0.5
USER_HISTORY_LOOKBACK: int = 50
