"""
Library Endpoints for the Astewai Bookstore
GET    /api/library                  - the caller's books
POST   /api/library/sync-progress    - save reading progress
POST   /api/library/reading-tokens   - issue a reading link for a completed purchase
GET    /api/library/read/{token}     - redeem a reading link
GET    /api/library/read/{token}/books/{book_id} - stream a book file while the link is live
POST   /api/library/{book_id}        - add a free book
DELETE /api/library/{book_id}        - remove a book
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from bookstore.api.serializers import book_dict, library_dict
from bookstore.auth import require_user
from bookstore.database import Book, get_db
from bookstore.domain.enums import LibraryStatus
from bookstore.routers.books import book_file_response
from bookstore.services import library as library_service

router = APIRouter(prefix="/api/library", tags=["library"])


class SyncProgressBody(BaseModel):
    book_id: str = Field(min_length=1)
    progress: int = Field(ge=0, le=100)
    last_read_position: Optional[str] = Field(default=None, max_length=2000)


class ReadingTokenBody(BaseModel):
    purchase_id: str = Field(min_length=1)


@router.get("")
async def get_library(
    status: Optional[LibraryStatus] = None,
    sort_by: str = Query("added_at", pattern="^(added_at|last_read_at|progress)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    user: dict = Depends(require_user),
):
    def _sync():
        db = get_db()
        try:
            rows = library_service.list_library(
                db, user["id"], status.value if status else None, sort_by, sort_order,
            )
            return [library_dict(e) for e in rows]
        finally:
            db.close()

    books = await asyncio.to_thread(_sync)
    return {"books": books, "total": len(books)}


@router.post("/sync-progress")
async def sync_progress(body: SyncProgressBody, user: dict = Depends(require_user)):
    def _sync():
        db = get_db()
        try:
            entry = library_service.sync_progress(
                db, user["id"], body.book_id, body.progress, body.last_read_position,
            )
            return library_dict(entry)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/reading-tokens", status_code=201)
async def create_reading_token(body: ReadingTokenBody, user: dict = Depends(require_user)):
    def _sync():
        db = get_db()
        try:
            row = library_service.issue_reading_token(db, user["id"], body.purchase_id)
            return {
                "token": row.token,
                "expires_at": row.expires_at.isoformat(),
                "read_path": f"/api/library/read/{row.token}",
            }
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/read/{token}")
async def read_with_token(token: str):
    """Anyone holding an unexpired link for a completed purchase may read."""
    def _sync():
        db = get_db()
        try:
            row, purchase, books = library_service.redeem_reading_token(db, token)
            return {
                "purchase_id": purchase.id,
                "item_type": row.item_type,
                "item_id": row.item_id,
                "expires_at": row.expires_at.isoformat(),
                "books": [
                    {**book_dict(b), "read_url": f"/api/library/read/{token}/books/{b.id}"}
                    for b in books
                ],
            }
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/read/{token}/books/{book_id}")
async def read_book_file(token: str, book_id: str):
    """The book file, only while ``token`` is unexpired and covers ``book_id``."""
    def _sync():
        db = get_db()
        try:
            _, _, books = library_service.redeem_reading_token(db, token)
            return next((b for b in books if b.id == book_id), None)
        finally:
            db.close()

    book: Optional[Book] = await asyncio.to_thread(_sync)
    if book is None:
        raise HTTPException(status_code=404, detail="Book not covered by this link")
    return await book_file_response(book)


@router.post("/{book_id}", status_code=201)
async def add_to_library(book_id: str, user: dict = Depends(require_user)):
    def _sync():
        db = get_db()
        try:
            entry = library_service.add_free_book(db, user["id"], book_id)
            return library_dict(entry)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.delete("/{book_id}")
async def remove_from_library(book_id: str, user: dict = Depends(require_user)):
    def _sync():
        db = get_db()
        try:
            library_service.remove_book(db, user["id"], book_id)
        finally:
            db.close()

    await asyncio.to_thread(_sync)
    return {"status": "removed", "book_id": book_id}
