"""
Catalog Endpoints for the Astewai Bookstore
GET /api/books                - filtered, paginated list of approved books
GET /api/books/{id}           - one book
GET /api/books/{id}/preview   - public metadata + description excerpt
GET /api/books/{id}/content   - content URL for owners (or free books)
GET /api/books/{id}/download  - stream the stored book file
"""

import asyncio
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from bookstore import config
from bookstore.api.schemas import BookListResponse
from bookstore.api.serializers import book_dict, public_book_dict
from bookstore.auth import optional_user, require_user
from bookstore.core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from bookstore.core.utils import excerpt, sanitize_filename
from bookstore.database import Book, get_db, get_library_entry
from bookstore.services import storage
from bookstore.services.catalog import BookFilters, search_books
from bookstore.services.library import can_access_book

router = APIRouter(prefix="/api/books", tags=["books"])


@router.get("", response_model=BookListResponse)
async def list_books(
    query: Optional[str] = Query(None, max_length=200),
    category: Optional[str] = None,
    author: Optional[str] = None,
    is_free: Optional[bool] = None,
    tags: Optional[List[str]] = Query(None),
    price_min: Optional[float] = Query(None, ge=0),
    price_max: Optional[float] = Query(None, ge=0),
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
):
    filters = BookFilters(
        query=query, category=category, author=author, is_free=is_free,
        tags=[t for raw in (tags or []) for t in raw.split(",")],
        price_min=price_min, price_max=price_max,
        sort_by=sort_by, sort_order=sort_order, limit=limit, offset=offset,
    )

    def _sync():
        db = get_db()
        try:
            rows, total = search_books(db, filters)
            return [public_book_dict(b) for b in rows], total
        finally:
            db.close()

    books, total = await asyncio.to_thread(_sync)
    return {
        "books": books,
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(books) < total,
    }


def _load_book(book_id: str) -> Optional[Book]:
    db = get_db()
    try:
        return db.get(Book, book_id)
    finally:
        db.close()


@router.get("/{book_id}")
async def get_book(book_id: str):
    book = await asyncio.to_thread(_load_book, book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return public_book_dict(book)


@router.get("/{book_id}/preview")
async def preview_book(book_id: str):
    book = await asyncio.to_thread(_load_book, book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    data = public_book_dict(book)
    data["preview"] = excerpt(book.description, config.PREVIEW_CHARS)
    return data


def _accessible_book(book_id: str, user_id: Optional[str]):
    db = get_db()
    try:
        book = db.get(Book, book_id)
        if not book:
            return None, False, None
        entry = get_library_entry(db, user_id, book_id) if user_id else None
        return book, can_access_book(db, user_id, book), entry
    finally:
        db.close()


@router.get("/{book_id}/content")
async def book_content(book_id: str, user: Optional[dict] = Depends(optional_user)):
    book, allowed, entry = await asyncio.to_thread(_accessible_book, book_id, user["id"] if user else None)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    if not allowed:
        if not user:
            raise HTTPException(status_code=401, detail="Authentication required")
        raise HTTPException(status_code=403, detail="You do not own this book")
    return {
        "book": book_dict(book),
        "content_url": book.content_url,
        "download_url": f"/api/books/{book.id}/download",
        "progress": entry.progress if entry else 0,
        "last_read_position": entry.last_read_position if entry else None,
    }


@router.get("/{book_id}/download")
async def download_book(book_id: str, user: dict = Depends(require_user)):
    book, allowed, _ = await asyncio.to_thread(_accessible_book, book_id, user["id"])
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    if not allowed:
        raise HTTPException(status_code=403, detail="You do not own this book")
    return await book_file_response(book)


async def book_file_response(book: Book) -> Response:
    """Stream the stored file behind ``book.content_url`` as an attachment."""
    try:
        data, media_type, path = await asyncio.to_thread(storage.read_by_url, book.content_url)
    except (FileNotFoundError, storage.StorageError):
        raise HTTPException(status_code=404, detail="Book file not available")

    ext = path.rsplit(".", 1)[-1] if "." in path else "pdf"
    filename = f"{sanitize_filename(book.title)}.{ext}"
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
