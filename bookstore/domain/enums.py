"""
bookstore.domain.enums — All enumerations used across the service.

Keep this module import-clean (stdlib only).
"""

from enum import Enum


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class UserRole(str, Enum):
    USER  = "user"
    ADMIN = "admin"


# ---------------------------------------------------------------------------
# Catalog / library
# ---------------------------------------------------------------------------

class ItemType(str, Enum):
    BOOK   = "book"
    BUNDLE = "bundle"


class BookStatus(str, Enum):
    """Moderation state of a book; only APPROVED books are listed publicly."""
    PENDING  = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class LibraryStatus(str, Enum):
    OWNED     = "owned"
    PENDING   = "pending"
    COMPLETED = "completed"


# ---------------------------------------------------------------------------
# Purchase lifecycles
# ---------------------------------------------------------------------------

class PurchaseStatus(str, Enum):
    """Telegram-flow purchase.

    pending_initiation → awaiting_payment → pending_verification → completed
    Any non-terminal state may move to rejected.
    """
    PENDING_INITIATION   = "pending_initiation"
    AWAITING_PAYMENT     = "awaiting_payment"
    PENDING_VERIFICATION = "pending_verification"
    COMPLETED            = "completed"
    REJECTED             = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (PurchaseStatus.COMPLETED, PurchaseStatus.REJECTED)


class PurchaseRequestStatus(str, Enum):
    """Contact-flow purchase request reviewed by an admin."""
    PENDING   = "pending"
    CONTACTED = "contacted"
    APPROVED  = "approved"
    REJECTED  = "rejected"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (PurchaseRequestStatus.REJECTED, PurchaseRequestStatus.COMPLETED)


class ContactMethod(str, Enum):
    TELEGRAM = "telegram"
    WHATSAPP = "whatsapp"
    EMAIL    = "email"


# ---------------------------------------------------------------------------
# Payments (wallet / receipt flow)
# ---------------------------------------------------------------------------

class PaymentStatus(str, Enum):
    PENDING           = "pending"
    PAYMENT_INITIATED = "payment_initiated"
    PAYMENT_VERIFIED  = "payment_verified"
    COMPLETED         = "completed"
    FAILED            = "failed"
    CANCELLED         = "cancelled"


class PaymentConfigType(str, Enum):
    BANK_ACCOUNT = "bank_account"
    MOBILE_MONEY = "mobile_money"


class WalletType(str, Enum):
    MOBILE_MONEY = "mobile_money"
    BANK_APP     = "bank_app"
    CRYPTO       = "crypto"


class VerificationMethod(str, Enum):
    AUTO             = "auto"
    MANUAL           = "manual"
    BANK_STATEMENT   = "bank_statement"
    SMS_VERIFICATION = "sms_verification"


class VerificationType(str, Enum):
    AUTO_MATCH         = "auto_match"
    OCR_PROCESSING     = "ocr_processing"
    ADMIN_VERIFICATION = "admin_verification"


class VerificationLogStatus(str, Enum):
    SUCCESS = "success"
    FAILED  = "failed"
    PENDING = "pending"


class AutoMatchingRuleType(str, Enum):
    AMOUNT_MATCH  = "amount_match"
    TX_ID_PATTERN = "tx_id_pattern"
    TIME_WINDOW   = "time_window"
    USER_HISTORY  = "user_history"


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class NotificationKind(str, Enum):
    PURCHASE_APPROVED = "purchase_approved"
    PURCHASE_REJECTED = "purchase_rejected"
    PAYMENT_VERIFIED  = "payment_verified"
    PAYMENT_REJECTED  = "payment_rejected"
    REQUEST_UPDATED   = "request_updated"
    ANNOUNCEMENT      = "announcement"
