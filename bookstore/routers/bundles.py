"""
Bundle Endpoints for the Astewai Bookstore
GET /api/bundles       - paginated bundle list
GET /api/bundles/{id}  - bundle with its books and value (cached)
"""

import asyncio

from fastapi import APIRouter, Query

from bookstore.api.serializers import bundle_summary, public_book_dict
from bookstore.core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from bookstore.database import Bundle, get_db
from bookstore.services.bundle_pricing import calculate_bundle_value
from bookstore.services.catalog import bundle_detail

router = APIRouter(prefix="/api/bundles", tags=["bundles"])


@router.get("")
async def list_bundles(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
):
    def _sync():
        db = get_db()
        try:
            q = db.query(Bundle)
            total = q.count()
            rows = q.order_by(Bundle.created_at.desc()).offset(offset).limit(limit).all()
            bundles = []
            for b in rows:
                data = bundle_summary(b)
                data["value"] = calculate_bundle_value(b.price, b.books).to_dict()
                bundles.append(data)
            return bundles, total
        finally:
            db.close()

    bundles, total = await asyncio.to_thread(_sync)
    return {
        "bundles": bundles,
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(bundles) < total,
    }


@router.get("/{bundle_id}")
async def get_bundle(bundle_id: str):
    def _sync():
        db = get_db()
        try:
            return bundle_detail(db, bundle_id, public_book_dict)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)
