"""
Catalog queries (book search, cached bundle detail, priced-item lookup)
and the admin writes that keep the bundle cache in step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from bookstore import config
from bookstore.cache_backend import get_cache_backend
from bookstore.core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from bookstore.core.utils import prices_equal
from bookstore.database import Book, Bundle, BundleBook, Purchase, PurchaseRequest, get_item
from bookstore.domain.enums import BookStatus, ItemType, PurchaseRequestStatus, PurchaseStatus
from bookstore.errors import BadRequest, NotFound
from bookstore.metrics import record_cache_access
from bookstore.services.bundle_pricing import calculate_bundle_value, validate_bundle_pricing

logger = logging.getLogger(__name__)

BOOK_SORT_COLUMNS = {
    "created_at": Book.created_at,
    "title": Book.title,
    "author": Book.author,
    "price": Book.price,
}


@dataclass
class BookFilters:
    query: Optional[str] = None
    category: Optional[str] = None
    author: Optional[str] = None
    is_free: Optional[bool] = None
    tags: List[str] = field(default_factory=list)
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0


def search_books(db: Session, f: BookFilters, include_unapproved: bool = False) -> Tuple[List[Book], int]:
    """Filtered, sorted page of books plus the total match count."""
    if f.sort_by not in BOOK_SORT_COLUMNS:
        raise BadRequest(f"Invalid sort_by: {f.sort_by}")
    if f.price_min is not None and f.price_max is not None and f.price_min > f.price_max:
        raise BadRequest("price_min cannot exceed price_max")
    limit = max(1, min(MAX_PAGE_SIZE, int(f.limit)))
    offset = max(0, int(f.offset))

    q = db.query(Book)
    if not include_unapproved:
        q = q.filter(Book.status == BookStatus.APPROVED.value)
    if f.query:
        like = f"%{f.query.strip().lower()}%"
        q = q.filter(or_(
            func.lower(Book.title).like(like),
            func.lower(Book.author).like(like),
            func.lower(func.coalesce(Book.description, "")).like(like),
        ))
    if f.category:
        q = q.filter(Book.category == f.category)
    if f.author:
        q = q.filter(func.lower(Book.author).like(f"%{f.author.strip().lower()}%"))
    if f.is_free is not None:
        q = q.filter(Book.is_free.is_(f.is_free))
    if f.price_min is not None:
        q = q.filter(Book.price >= f.price_min)
    if f.price_max is not None:
        q = q.filter(Book.price <= f.price_max)

    column = BOOK_SORT_COLUMNS[f.sort_by]
    q = q.order_by(column.asc() if f.sort_order == "asc" else column.desc(), Book.id.asc())

    if f.tags:
        # JSON containment differs per backend; match tags in Python.
        wanted = {t.strip().lower() for t in f.tags if t.strip()}
        rows = [b for b in q.all() if wanted & {str(t).lower() for t in (b.tags or [])}]
        return rows[offset: offset + limit], len(rows)

    total = q.count()
    return q.offset(offset).limit(limit).all(), total


def resolve_priced_item(db: Session, item_type: str, item_id: str, amount: Optional[float] = None):
    """
    Look up a purchasable item and check the offered amount.

    Returns ``(item, title, price)``. 404 if missing, 400 for free books or
    a price mismatch.
    """
    if item_type not in (ItemType.BOOK.value, ItemType.BUNDLE.value):
        raise BadRequest("item_type must be 'book' or 'bundle'")
    item = get_item(db, item_type, item_id)
    if item is None:
        raise NotFound(f"{item_type.capitalize()} not found")
    if item_type == ItemType.BOOK.value and item.is_free:
        raise BadRequest("This book is free; add it to your library instead")
    price = float(item.price or 0)
    if amount is not None and not prices_equal(amount, price):
        raise BadRequest(f"Amount does not match the current price ({price:.2f})")
    return item, item.title, price


# ---------------------------------------------------------------------------
# Bundles
# ---------------------------------------------------------------------------

def _bundle_cache_key(bundle_id: str) -> str:
    return f"catalog:bundle:{bundle_id}"


def bundle_detail(db: Session, bundle_id: str, serialize_book) -> dict:
    """Bundle with its books and value, cached for CATALOG_CACHE_TTL_SECONDS."""
    cache = get_cache_backend()
    key = _bundle_cache_key(bundle_id)
    cached = cache.get_json(key)
    record_cache_access(cached is not None)
    if cached is not None:
        return cached

    bundle = db.get(Bundle, bundle_id)
    if not bundle:
        raise NotFound("Bundle not found")
    payload = {
        "id": bundle.id,
        "title": bundle.title,
        "description": bundle.description,
        "price": bundle.price,
        "cover_image_url": bundle.cover_image_url,
        "created_at": bundle.created_at.isoformat() if bundle.created_at else None,
        "books": [serialize_book(b) for b in bundle.books],
        "value": calculate_bundle_value(bundle.price, bundle.books).to_dict(),
    }
    cache.set_json(key, payload, ttl_seconds=config.CATALOG_CACHE_TTL_SECONDS)
    return payload


def invalidate_bundle(bundle_id: str) -> None:
    try:
        get_cache_backend().delete(_bundle_cache_key(bundle_id))
    except Exception as exc:
        logger.warning("bundle cache invalidation failed for %s: %s", bundle_id, exc)


def invalidate_bundles_for_book(db: Session, book_id: str) -> None:
    for (bundle_id,) in db.query(BundleBook.bundle_id).filter(BundleBook.book_id == book_id).all():
        invalidate_bundle(bundle_id)


# ---------------------------------------------------------------------------
# Admin writes
# ---------------------------------------------------------------------------

BOOK_FIELDS = ("title", "author", "description", "cover_image_url", "content_url",
               "price", "is_free", "category", "tags", "status")

BULK_ACTIONS = ("delete", "update_status", "update_category", "update_price")


def _check_book_values(values: dict) -> None:
    if "price" in values and values["price"] is not None and float(values["price"]) < 0:
        raise BadRequest("Price cannot be negative")
    if "status" in values and values["status"] is not None:
        try:
            BookStatus(values["status"])
        except ValueError:
            raise BadRequest(f"Invalid status: {values['status']}")


def create_book(db: Session, values: dict) -> Book:
    _check_book_values(values)
    book = Book(**{k: v for k, v in values.items() if k in BOOK_FIELDS and v is not None})
    if book.is_free:
        book.price = 0.0
    db.add(book)
    db.commit()
    logger.info("Book %s created: %s", book.id, book.title)
    return book


def update_book(db: Session, book_id: str, changes: dict) -> Book:
    book = db.get(Book, book_id)
    if not book:
        raise NotFound("Book not found")
    _check_book_values(changes)
    for key, value in changes.items():
        if key in BOOK_FIELDS:
            setattr(book, key, value)
    if book.is_free:
        book.price = 0.0
    db.commit()
    invalidate_bundles_for_book(db, book.id)
    return book


def delete_book(db: Session, book_id: str) -> Book:
    """Delete the row; stored cover/content files are removed by the caller."""
    book = db.get(Book, book_id)
    if not book:
        raise NotFound("Book not found")
    invalidate_bundles_for_book(db, book.id)
    db.delete(book)
    db.commit()
    return book


def bulk_update_books(db: Session, action: str, book_ids: List[str], value=None) -> dict:
    """Apply ``action`` to each id; one failure does not stop the rest."""
    if action not in BULK_ACTIONS:
        raise BadRequest(f"Invalid action. Allowed: {', '.join(BULK_ACTIONS)}")
    if not book_ids:
        raise BadRequest("Book IDs are required")
    if action != "delete" and value is None:
        raise BadRequest("A value is required for this action")

    field_for = {"update_status": "status", "update_category": "category", "update_price": "price"}
    results = []
    for book_id in book_ids:
        try:
            if action == "delete":
                book = delete_book(db, book_id)
                results.append({"id": book_id, "success": True, "files": [book.cover_image_url, book.content_url]})
                continue
            update_book(db, book_id, {field_for[action]: value})
            results.append({"id": book_id, "success": True})
        except (BadRequest, NotFound) as exc:
            db.rollback()
            results.append({"id": book_id, "success": False, "error": exc.detail})
    succeeded = sum(1 for r in results if r["success"])
    return {
        "action": action,
        "results": results,
        "total": len(results),
        "succeeded": succeeded,
        "failed": len(results) - succeeded,
    }


def _books_for_ids(db: Session, book_ids: List[str]) -> List[Book]:
    unique = list(dict.fromkeys(book_ids))
    books = db.query(Book).filter(Book.id.in_(unique)).all() if unique else []
    found = {b.id for b in books}
    missing = [i for i in unique if i not in found]
    if missing:
        raise BadRequest(f"Books not found: {', '.join(missing)}")
    return books


def create_bundle(db: Session, title: str, price: float, book_ids: List[str],
                  description: Optional[str] = None, cover_image_url: Optional[str] = None):
    """Create a bundle after pricing validation; returns (bundle, validation)."""
    books = _books_for_ids(db, book_ids)
    validation = validate_bundle_pricing(price, books)
    if not validation.is_valid:
        raise BadRequest("; ".join(validation.errors))
    bundle = Bundle(title=title, description=description, price=float(price), cover_image_url=cover_image_url)
    db.add(bundle)
    db.flush()
    for book in books:
        db.add(BundleBook(bundle_id=bundle.id, book_id=book.id))
    db.commit()
    db.expire(bundle)
    logger.info("Bundle %s created with %d books", bundle.id, len(books))
    return bundle, validation


def update_bundle(db: Session, bundle_id: str, changes: dict, book_ids: Optional[List[str]] = None):
    bundle = db.get(Bundle, bundle_id)
    if not bundle:
        raise NotFound("Bundle not found")
    books = _books_for_ids(db, book_ids) if book_ids is not None else list(bundle.books)
    price = float(changes.get("price", bundle.price))
    validation = validate_bundle_pricing(price, books)
    if not validation.is_valid:
        raise BadRequest("; ".join(validation.errors))
    for key in ("title", "description", "price", "cover_image_url"):
        if key in changes:
            setattr(bundle, key, changes[key])
    if book_ids is not None:
        db.query(BundleBook).filter(BundleBook.bundle_id == bundle.id).delete()
        for book in books:
            db.add(BundleBook(bundle_id=bundle.id, book_id=book.id))
    db.commit()
    db.expire(bundle)
    invalidate_bundle(bundle.id)
    return bundle, validation


def delete_bundle(db: Session, bundle_id: str) -> None:
    bundle = db.get(Bundle, bundle_id)
    if not bundle:
        raise NotFound("Bundle not found")
    db.delete(bundle)
    db.commit()
    invalidate_bundle(bundle_id)


def bundle_analytics(db: Session, bundle_id: str, now: Optional[datetime] = None) -> dict:
    bundle = db.get(Bundle, bundle_id)
    if not bundle:
        raise NotFound("Bundle not found")
    recent_cutoff = (now or datetime.utcnow()) - timedelta(days=30)
    purchases = (
        db.query(Purchase)
        .filter(Purchase.item_type == ItemType.BUNDLE.value, Purchase.item_id == bundle_id)
        .all()
    )
    requests = (
        db.query(PurchaseRequest)
        .filter(PurchaseRequest.item_type == ItemType.BUNDLE.value, PurchaseRequest.item_id == bundle_id)
        .all()
    )
    completed = [p for p in purchases if p.status == PurchaseStatus.COMPLETED.value]
    approved = sum(1 for r in requests if r.status == PurchaseRequestStatus.APPROVED.value)
    conversion = (len(completed) / len(purchases) * 100) if purchases else 0.0
    return {
        **calculate_bundle_value(bundle.price, bundle.books).to_dict(),
        "purchases": {
            "total": len(purchases),
            "completed": len(completed),
            "revenue": round(sum(p.amount for p in completed), 2),
            "recent": sum(1 for p in purchases if p.created_at and p.created_at >= recent_cutoff),
            "conversionRate": round(conversion, 2),
        },
        "requests": {
            "total": len(requests),
            "pending": sum(1 for r in requests if r.status == PurchaseRequestStatus.PENDING.value),
            "approved": approved,
            "rejected": sum(1 for r in requests if r.status == PurchaseRequestStatus.REJECTED.value),
            "recent": sum(1 for r in requests if r.created_at and r.created_at >= recent_cutoff),
            "conversionRate": round(approved / len(requests) * 100, 2) if requests else 0.0,
        },
    }
