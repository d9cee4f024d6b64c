"""
Library access: granting purchased items, progress sync and reading tokens.

``grant_item_access`` is the single place that writes ownership; it never
commits so callers can fold it into their own transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from bookstore import config
from bookstore.core.utils import generate_reading_token
from bookstore.database import (
    Book,
    Bundle,
    Purchase,
    ReadingToken,
    UserLibrary,
    get_library_entry,
)
from bookstore.domain.enums import ItemType, LibraryStatus, PurchaseStatus
from bookstore.errors import BadRequest, Conflict, Forbidden, Gone, NotFound, PaymentRequired

logger = logging.getLogger(__name__)

_ACCESS_STATUSES = (LibraryStatus.OWNED.value, LibraryStatus.COMPLETED.value)


def book_ids_for_item(db: Session, item_type: str, item_id: str) -> List[str]:
    if item_type == ItemType.BOOK.value:
        return [item_id] if db.get(Book, item_id) else []
    if item_type == ItemType.BUNDLE.value:
        bundle = db.get(Bundle, item_id)
        return [b.id for b in bundle.books] if bundle else []
    return []


def grant_item_access(db: Session, user_id: str, item_type: str, item_id: str) -> List[str]:
    """Give ``user_id`` every book of the item. Idempotent; does not commit."""
    book_ids = book_ids_for_item(db, item_type, item_id)
    if not book_ids:
        raise NotFound(f"{item_type.capitalize()} not found")
    for book_id in book_ids:
        entry = get_library_entry(db, user_id, book_id)
        if entry is None:
            db.add(UserLibrary(user_id=user_id, book_id=book_id, status=LibraryStatus.OWNED.value))
        elif entry.status not in _ACCESS_STATUSES:
            entry.status = LibraryStatus.OWNED.value
    db.flush()
    return book_ids


def can_access_book(db: Session, user_id: Optional[str], book: Book) -> bool:
    if book.is_free:
        return True
    if not user_id:
        return False
    entry = get_library_entry(db, user_id, book.id)
    return bool(entry and entry.status in _ACCESS_STATUSES)


def add_free_book(db: Session, user_id: str, book_id: str) -> UserLibrary:
    book = db.get(Book, book_id)
    if not book:
        raise NotFound("Book not found")
    if not book.is_free:
        raise PaymentRequired("This book must be purchased before it can be added")
    if get_library_entry(db, user_id, book_id):
        raise Conflict("Book already in library")
    entry = UserLibrary(user_id=user_id, book_id=book_id, status=LibraryStatus.OWNED.value)
    db.add(entry)
    db.commit()
    return entry


def remove_book(db: Session, user_id: str, book_id: str) -> None:
    entry = get_library_entry(db, user_id, book_id)
    if not entry:
        raise NotFound("Book not in library")
    db.delete(entry)
    db.commit()


def sync_progress(
    db: Session,
    user_id: str,
    book_id: str,
    progress: int,
    last_read_position: Optional[str] = None,
) -> UserLibrary:
    if not 0 <= progress <= 100:
        raise BadRequest("Progress must be between 0 and 100")
    entry = get_library_entry(db, user_id, book_id)
    if not entry:
        raise NotFound("Book not in library")
    entry.progress = int(progress)
    if last_read_position is not None:
        entry.last_read_position = last_read_position
    entry.last_read_at = datetime.utcnow()
    if progress >= 100:
        entry.status = LibraryStatus.COMPLETED.value
    db.commit()
    return entry


def list_library(
    db: Session,
    user_id: str,
    status: Optional[str] = None,
    sort_by: str = "added_at",
    sort_order: str = "desc",
) -> List[UserLibrary]:
    columns = {
        "added_at": UserLibrary.added_at,
        "last_read_at": UserLibrary.last_read_at,
        "progress": UserLibrary.progress,
    }
    column = columns.get(sort_by)
    if column is None:
        raise BadRequest(f"Invalid sort_by: {sort_by}")
    q = db.query(UserLibrary).filter(UserLibrary.user_id == user_id)
    if status:
        q = q.filter(UserLibrary.status == status)
    q = q.order_by(column.asc() if sort_order == "asc" else column.desc())
    return q.all()


# ---------------------------------------------------------------------------
# Reading tokens
# ---------------------------------------------------------------------------

def issue_reading_token(
    db: Session,
    user_id: str,
    purchase_id: str,
    now: Optional[datetime] = None,
) -> ReadingToken:
    purchase = db.get(Purchase, purchase_id)
    if not purchase:
        raise NotFound("Purchase not found")
    if purchase.user_id != user_id:
        raise Forbidden("Not your purchase")
    if purchase.status != PurchaseStatus.COMPLETED.value:
        raise Conflict("Purchase is not completed yet")
    now = now or datetime.utcnow()
    row = ReadingToken(
        token=generate_reading_token(),
        user_id=user_id,
        purchase_id=purchase.id,
        item_type=purchase.item_type,
        item_id=purchase.item_id,
        expires_at=now + timedelta(hours=config.READING_TOKEN_TTL_HOURS),
    )
    db.add(row)
    db.commit()
    return row


def redeem_reading_token(db: Session, token: str, now: Optional[datetime] = None):
    """
    Validate ``token`` and return ``(reading_token, purchase, books)``.

    Unknown -> 404, expired -> 410, purchase not completed -> 409.
    ``used_at`` is stamped on the first successful read only.
    """
    now = now or datetime.utcnow()
    row = db.query(ReadingToken).filter(ReadingToken.token == token).first()
    if not row:
        raise NotFound("Reading link not found")
    if row.expires_at <= now:
        raise Gone("Link Expired")
    purchase = db.get(Purchase, row.purchase_id)
    if not purchase or purchase.status != PurchaseStatus.COMPLETED.value:
        raise Conflict("Purchase is still pending")

    if row.item_type == ItemType.BUNDLE.value:
        bundle = db.get(Bundle, row.item_id)
        books = list(bundle.books) if bundle else []
    else:
        book = db.get(Book, row.item_id)
        books = [book] if book else []

    if row.used_at is None:
        row.used_at = now
        db.commit()
    return row, purchase, books
