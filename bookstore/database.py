"""
SQL Database Layer for the Astewai Bookstore.
Stores profiles, the catalog, libraries, purchases and payment evidence.
"""

from datetime import datetime, timedelta
from typing import Optional, List, Any

from sqlalchemy import (
    create_engine, Column, Integer, Float, String, Boolean,
    DateTime, Text, Index, ForeignKey, JSON, UniqueConstraint, event
)
from sqlalchemy.orm import declarative_base, sessionmaker, relationship, Session
from sqlalchemy.pool import StaticPool

from bookstore import config
from bookstore.core.utils import new_id

_IS_SQLITE = config.DATABASE_URL.startswith("sqlite")
_IS_MEMORY = _IS_SQLITE and ":memory:" in config.DATABASE_URL

if _IS_SQLITE:
    engine = create_engine(
        config.DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        if not _IS_MEMORY:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()
else:
    engine = create_engine(config.DATABASE_URL, pool_pre_ping=True)

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
Base = declarative_base()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class Profile(Base):
    """A registered account. Role is checked on every admin request."""
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    display_name = Column(String(120), nullable=True)
    avatar_url = Column(Text, nullable=True)
    role = Column(String(16), nullable=False, default="user")  # user, admin
    reading_preferences = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class BundleBook(Base):
    __tablename__ = "bundle_books"

    bundle_id = Column(String(36), ForeignKey("bundles.id", ondelete="CASCADE"), primary_key=True)
    book_id = Column(String(36), ForeignKey("books.id", ondelete="CASCADE"), primary_key=True)


class Book(Base):
    __tablename__ = "books"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(255), nullable=False, index=True)
    author = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    cover_image_url = Column(Text, nullable=True)
    content_url = Column(Text, nullable=True)
    price = Column(Float, nullable=False, default=0.0)
    is_free = Column(Boolean, nullable=False, default=False)
    category = Column(String(64), nullable=True, index=True)
    tags = Column(JSON, nullable=True)
    status = Column(String(16), nullable=False, default="approved")  # pending, approved, rejected
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Bundle(Base):
    __tablename__ = "bundles"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=False)
    cover_image_url = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    books = relationship("Book", secondary="bundle_books", lazy="selectin", order_by="Book.title")


class UserLibrary(Base):
    """A book in a user's library, with reading progress."""
    __tablename__ = "user_library"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    book_id = Column(String(36), ForeignKey("books.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(16), nullable=False, default="owned")  # owned, pending, completed
    progress = Column(Integer, nullable=False, default=0)          # 0-100
    last_read_position = Column(Text, nullable=True)
    added_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_read_at = Column(DateTime, nullable=True)

    book = relationship("Book", lazy="joined")

    __table_args__ = (
        UniqueConstraint("user_id", "book_id", name="uq_library_user_book"),
    )


# ---------------------------------------------------------------------------
# Purchases (Telegram flow) and purchase requests (contact flow)
# ---------------------------------------------------------------------------

class Purchase(Base):
    __tablename__ = "purchases"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    item_type = Column(String(8), nullable=False)   # book, bundle
    item_id = Column(String(36), nullable=False)
    item_title = Column(String(255), nullable=True)
    amount = Column(Float, nullable=False)
    status = Column(String(24), nullable=False, default="pending_initiation")
    initiation_token = Column(String(64), nullable=True, unique=True)
    transaction_reference = Column(String(32), nullable=False, unique=True)
    telegram_chat_id = Column(String(32), nullable=True, index=True)
    telegram_user_id = Column(String(32), nullable=True)
    admin_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("Profile", lazy="joined")

    __table_args__ = (
        Index("ix_purchase_user_item", "user_id", "item_type", "item_id"),
        Index("ix_purchase_status_created", "status", "created_at"),
    )


class PurchaseRequest(Base):
    __tablename__ = "purchase_requests"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    item_type = Column(String(8), nullable=False)
    item_id = Column(String(36), nullable=False)
    amount = Column(Float, nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    preferred_contact_method = Column(String(16), nullable=True)  # telegram, whatsapp, email
    user_message = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)
    contacted_at = Column(DateTime, nullable=True)
    responded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_preq_user_item", "user_id", "item_type", "item_id"),
    )


# ---------------------------------------------------------------------------
# Payments (wallet / receipt flow)
# ---------------------------------------------------------------------------

class PaymentConfig(Base):
    """Bank account or mobile money destination shown to buyers."""
    __tablename__ = "payment_config"

    id = Column(String(36), primary_key=True, default=new_id)
    config_type = Column(String(16), nullable=False)  # bank_account, mobile_money
    provider_name = Column(String(100), nullable=False)
    account_number = Column(String(100), nullable=False)
    account_name = Column(String(200), nullable=False)
    instructions = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class WalletConfig(Base):
    __tablename__ = "wallet_config"

    id = Column(String(36), primary_key=True, default=new_id)
    wallet_name = Column(String(100), nullable=False)
    wallet_type = Column(String(16), nullable=False)  # mobile_money, bank_app, crypto
    deep_link_template = Column(Text, nullable=True)
    tx_id_pattern = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    display_order = Column(Integer, nullable=False, default=0)
    icon_url = Column(Text, nullable=True)
    instructions = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PaymentRequest(Base):
    """
    A receipt-backed payment. Evidence arrives from the user (manual entry,
    receipt upload), OCR fills the extracted fields and auto-matching may
    mark it verified. Only an admin completes it.
    """
    __tablename__ = "payment_requests"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    item_type = Column(String(8), nullable=False)
    item_id = Column(String(36), nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String(8), nullable=False, default="ETB")
    status = Column(String(24), nullable=False, default="pending")

    # Wallet
    selected_wallet_id = Column(String(36), ForeignKey("wallet_config.id", ondelete="SET NULL"), nullable=True)
    deep_link_clicked_at = Column(DateTime, nullable=True)

    # Manual entry
    manual_tx_id = Column(String(64), nullable=True)
    manual_amount = Column(Float, nullable=True)
    receipt_urls = Column(JSON, nullable=True)
    receipt_uploaded_at = Column(DateTime, nullable=True)

    # OCR
    ocr_processed_at = Column(DateTime, nullable=True)
    ocr_extracted_tx_id = Column(String(64), nullable=True)
    ocr_extracted_amount = Column(Float, nullable=True)
    ocr_confidence_score = Column(Float, nullable=True)
    ocr_raw_text = Column(Text, nullable=True)

    # Auto-match
    auto_matched_at = Column(DateTime, nullable=True)
    auto_match_confidence = Column(Float, nullable=True)
    auto_match_reason = Column(Text, nullable=True)

    # Admin
    admin_verified_at = Column(DateTime, nullable=True)
    admin_verified_by = Column(String(36), nullable=True)
    admin_notes = Column(Text, nullable=True)
    verification_method = Column(String(24), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    wallet = relationship("WalletConfig", lazy="joined")
    user = relationship("Profile", lazy="joined")

    __table_args__ = (
        Index("ix_payreq_user_item", "user_id", "item_type", "item_id"),
        Index("ix_payreq_status_created", "status", "created_at"),
    )


class PaymentVerificationLog(Base):
    __tablename__ = "payment_verification_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    payment_request_id = Column(
        String(36), ForeignKey("payment_requests.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    verification_type = Column(String(24), nullable=False)  # auto_match, ocr_processing, admin_verification
    status = Column(String(16), nullable=False)             # success, failed, pending
    details = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    processed_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class AutoMatchingRule(Base):
    __tablename__ = "auto_matching_rules"

    id = Column(String(36), primary_key=True, default=new_id)
    rule_name = Column(String(100), nullable=False)
    rule_type = Column(String(24), nullable=False)  # amount_match, tx_id_pattern, time_window, user_history
    conditions = Column(JSON, nullable=True)
    confidence_threshold = Column(Float, nullable=False, default=0.7)
    is_active = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# ---------------------------------------------------------------------------
# Reading access, notifications, settings
# ---------------------------------------------------------------------------

class ReadingToken(Base):
    """Time-limited link to read purchased content."""
    __tablename__ = "reading_tokens"

    id = Column(String(36), primary_key=True, default=new_id)
    token = Column(String(64), nullable=False, unique=True)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    purchase_id = Column(String(36), ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False)
    item_type = Column(String(8), nullable=False)
    item_id = Column(String(36), nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class PushSubscription(Base):
    __tablename__ = "push_subscriptions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    endpoint = Column(Text, nullable=False, unique=True)
    p256dh = Column(Text, nullable=False)
    auth = Column(Text, nullable=False)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Notification(Base):
    """In-app notification."""
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(String(32), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)
    data = Column(JSON, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class Setting(Base):
    """Key-value settings store."""
    __tablename__ = "settings"

    key = Column(String(128), primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# ---------------------------------------------------------------------------
# Database initialization
# ---------------------------------------------------------------------------

def init_db():
    """Create all tables if they don't exist."""
    Base.metadata.create_all(bind=engine)


def get_db() -> Session:
    """Get a database session. Caller must close it."""
    return SessionLocal()


# ---------------------------------------------------------------------------
# Helper queries
# ---------------------------------------------------------------------------

def get_profile(db: Session, user_id: str) -> Optional[Profile]:
    return db.get(Profile, user_id)


def get_profile_by_email(db: Session, email: str) -> Optional[Profile]:
    return db.query(Profile).filter(Profile.email == email.strip().lower()).first()


def get_item(db: Session, item_type: str, item_id: str):
    """Return the Book or Bundle named by (item_type, item_id), or None."""
    if item_type == "book":
        return db.get(Book, item_id)
    if item_type == "bundle":
        return db.get(Bundle, item_id)
    return None


def get_library_entry(db: Session, user_id: str, book_id: str) -> Optional[UserLibrary]:
    return (
        db.query(UserLibrary)
        .filter(UserLibrary.user_id == user_id, UserLibrary.book_id == book_id)
        .first()
    )


def get_active_payment_configs(db: Session) -> List[PaymentConfig]:
    return (
        db.query(PaymentConfig)
        .filter(PaymentConfig.is_active.is_(True))
        .order_by(PaymentConfig.display_order.asc(), PaymentConfig.created_at.asc())
        .all()
    )


def get_active_wallets(db: Session) -> List[WalletConfig]:
    return (
        db.query(WalletConfig)
        .filter(WalletConfig.is_active.is_(True))
        .order_by(WalletConfig.display_order.asc(), WalletConfig.wallet_name.asc())
        .all()
    )


def get_active_rules(db: Session) -> List[AutoMatchingRule]:
    return (
        db.query(AutoMatchingRule)
        .filter(AutoMatchingRule.is_active.is_(True))
        .order_by(AutoMatchingRule.priority.desc(), AutoMatchingRule.created_at.asc())
        .all()
    )


def get_expired_reading_tokens(db: Session, older_than_hours: int) -> List[ReadingToken]:
    cutoff = datetime.utcnow() - timedelta(hours=older_than_hours)
    return db.query(ReadingToken).filter(ReadingToken.expires_at < cutoff).all()


def get_setting(db: Session, key: str, default: Any = None) -> Any:
    """Get a setting value."""
    row = db.query(Setting).filter(Setting.key == key).first()
    return row.value if row else default


def set_setting(db: Session, key: str, value: Any):
    """Set a setting value."""
    row = db.query(Setting).filter(Setting.key == key).first()
    if row:
        row.value = value
        row.updated_at = datetime.utcnow()
    else:
        row = Setting(key=key, value=value)
        db.add(row)
    db.commit()
