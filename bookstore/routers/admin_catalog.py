"""
Admin Catalog Endpoints for the Astewai Bookstore
POST   /api/admin/books                                - create a book
POST   /api/admin/books/bulk                           - bulk delete / update
POST   /api/admin/books/upload                         - multipart cover + content upload
PUT    /api/admin/books/{id}                           - update a book
DELETE /api/admin/books/{id}                           - delete a book and its files
POST   /api/admin/bundles                              - create a bundle (pricing validated)
GET    /api/admin/bundles/pricing-recommendations      - suggested prices for book_ids
PUT    /api/admin/bundles/{id}                         - update a bundle
DELETE /api/admin/bundles/{id}                         - delete a bundle
GET    /api/admin/bundles/{id}/analytics               - purchases, revenue, conversion
"""

import asyncio
import json
import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field

from bookstore.api.schemas import PartialUpdate
from bookstore.api.serializers import book_dict, bundle_summary, public_book_dict
from bookstore.auth import require_admin
from bookstore.core.constants import BUCKET_BOOKS, BUCKET_COVERS
from bookstore.database import Book, get_db
from bookstore.domain.enums import BookStatus
from bookstore.errors import BadRequest
from bookstore.services import catalog, storage
from bookstore.services.bundle_pricing import get_pricing_recommendations

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class BookCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    author: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    cover_image_url: Optional[str] = None
    content_url: Optional[str] = None
    price: float = Field(default=0.0, ge=0)
    is_free: bool = False
    category: Optional[str] = Field(default=None, max_length=64)
    tags: List[str] = Field(default_factory=list)
    status: BookStatus = BookStatus.APPROVED


class BookUpdate(PartialUpdate):
    not_null = ("title", "author", "price", "is_free", "status")

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    author: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    cover_image_url: Optional[str] = None
    content_url: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    is_free: Optional[bool] = None
    category: Optional[str] = Field(default=None, max_length=64)
    tags: Optional[List[str]] = None
    status: Optional[BookStatus] = None


class BulkBody(BaseModel):
    action: str
    book_ids: List[str] = Field(min_length=1)
    value: Optional[Any] = None


class BundleCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    price: float = Field(gt=0)
    cover_image_url: Optional[str] = None
    book_ids: List[str] = Field(min_length=1)


class BundleUpdate(PartialUpdate):
    not_null = ("title", "price")

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, gt=0)
    cover_image_url: Optional[str] = None
    book_ids: Optional[List[str]] = None


def _bundle_payload(bundle, validation) -> dict:
    data = bundle_summary(bundle)
    data["books"] = [public_book_dict(b) for b in bundle.books]
    data["warnings"] = validation.warnings
    return data


def _remove_files(urls) -> None:
    for url in urls:
        if url:
            storage.delete_by_url(url)


# ---------------------------------------------------------------------------
# Books
# ---------------------------------------------------------------------------

@router.post("/books", status_code=201)
async def create_book(body: BookCreate, admin: dict = Depends(require_admin)):
    values = body.model_dump()
    values["status"] = body.status.value

    def _sync():
        db = get_db()
        try:
            return book_dict(catalog.create_book(db, values))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/books/bulk")
async def bulk_books(body: BulkBody, admin: dict = Depends(require_admin)):
    def _sync():
        db = get_db()
        try:
            return catalog.bulk_update_books(db, body.action, body.book_ids, body.value)
        finally:
            db.close()

    result = await asyncio.to_thread(_sync)
    if body.action == "delete":
        files = [u for r in result["results"] for u in r.pop("files", [])]
        await asyncio.to_thread(_remove_files, files)
    logger.info("Bulk %s by %s: %d ok, %d failed", body.action, admin["id"], result["succeeded"], result["failed"])
    return result


@router.post("/books/upload", status_code=201)
async def upload_book(
    title: str = Form(...),
    author: str = Form(...),
    description: Optional[str] = Form(None),
    price: float = Form(0.0),
    is_free: bool = Form(False),
    category: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    cover: Optional[UploadFile] = File(None),
    content: Optional[UploadFile] = File(None),
    admin: dict = Depends(require_admin),
):
    """Store the uploaded files, then create the book pointing at them."""
    if not title.strip() or not author.strip():
        raise HTTPException(status_code=400, detail="Title and author are required")
    if price < 0:
        raise HTTPException(status_code=400, detail="Price cannot be negative")

    uploads = []
    for upload, kind, bucket in ((cover, "cover", BUCKET_COVERS), (content, "content", BUCKET_BOOKS)):
        if upload is None or not upload.filename:
            continue
        try:
            data = await storage.read_upload(upload, kind)
        except storage.StorageError as exc:
            raise HTTPException(status_code=400, detail=f"{kind.capitalize()}: {exc}")
        uploads.append((kind, bucket, upload.filename, data))

    tag_list: List[str] = []
    if tags:
        try:
            parsed = json.loads(tags)
            tag_list = [str(t) for t in parsed] if isinstance(parsed, list) else [str(parsed)]
        except ValueError:
            tag_list = [t.strip() for t in tags.split(",") if t.strip()]

    def _sync():
        urls = {}
        for kind, bucket, filename, data in uploads:
            path = storage.build_object_path(kind, filename)
            urls[kind] = storage.save_bytes(bucket, path, data)
        db = get_db()
        try:
            book = catalog.create_book(db, {
                "title": title.strip(),
                "author": author.strip(),
                "description": description,
                "price": price,
                "is_free": is_free,
                "category": category,
                "tags": tag_list,
                "cover_image_url": urls.get("cover"),
                "content_url": urls.get("content"),
                "status": BookStatus.APPROVED.value,
            })
            return book_dict(book)
        except BadRequest:
            _remove_files(urls.values())
            raise
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.put("/books/{book_id}")
async def update_book(book_id: str, body: BookUpdate, admin: dict = Depends(require_admin)):
    changes = body.model_dump(exclude_unset=True)
    if "status" in changes and changes["status"] is not None:
        changes["status"] = body.status.value

    def _sync():
        db = get_db()
        try:
            return book_dict(catalog.update_book(db, book_id, changes))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.delete("/books/{book_id}")
async def delete_book(book_id: str, admin: dict = Depends(require_admin)):
    def _sync():
        db = get_db()
        try:
            book = catalog.delete_book(db, book_id)
        finally:
            db.close()
        _remove_files([book.cover_image_url, book.content_url])

    await asyncio.to_thread(_sync)
    return {"status": "deleted", "id": book_id}


# ---------------------------------------------------------------------------
# Bundles
# ---------------------------------------------------------------------------

@router.post("/bundles", status_code=201)
async def create_bundle(body: BundleCreate, admin: dict = Depends(require_admin)):
    def _sync():
        db = get_db()
        try:
            bundle, validation = catalog.create_bundle(
                db, body.title, body.price, body.book_ids, body.description, body.cover_image_url,
            )
            return _bundle_payload(bundle, validation)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/bundles/pricing-recommendations")
async def pricing_recommendations(book_ids: List[str] = Query(...), admin: dict = Depends(require_admin)):
    ids = [i for raw in book_ids for i in raw.split(",") if i]

    def _sync():
        db = get_db()
        try:
            books = db.query(Book).filter(Book.id.in_(ids)).all()
            return get_pricing_recommendations(books), len(books)
        finally:
            db.close()

    recommendations, found = await asyncio.to_thread(_sync)
    if not found:
        raise HTTPException(status_code=404, detail="No books found")
    return {"recommendations": recommendations, "bookCount": found}


@router.put("/bundles/{bundle_id}")
async def update_bundle(bundle_id: str, body: BundleUpdate, admin: dict = Depends(require_admin)):
    changes = body.model_dump(exclude_unset=True)
    book_ids = changes.pop("book_ids", None)

    def _sync():
        db = get_db()
        try:
            bundle, validation = catalog.update_bundle(db, bundle_id, changes, book_ids)
            return _bundle_payload(bundle, validation)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.delete("/bundles/{bundle_id}")
async def delete_bundle(bundle_id: str, admin: dict = Depends(require_admin)):
    def _sync():
        db = get_db()
        try:
            catalog.delete_bundle(db, bundle_id)
        finally:
            db.close()

    await asyncio.to_thread(_sync)
    return {"status": "deleted", "id": bundle_id}


@router.get("/bundles/{bundle_id}/analytics")
async def bundle_analytics(bundle_id: str, admin: dict = Depends(require_admin)):
    def _sync():
        db = get_db()
        try:
            return catalog.bundle_analytics(db, bundle_id)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)
