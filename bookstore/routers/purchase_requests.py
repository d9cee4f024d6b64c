"""
Purchase Request Endpoints (contact flow) for the Astewai Bookstore
POST   /api/purchase-requests        - open a request
GET    /api/purchase-requests        - the caller's requests (?all=true for admins)
GET    /api/purchase-requests/stats  - count per status
GET    /api/purchase-requests/{id}   - one request (owner or admin)
PUT    /api/purchase-requests/{id}   - admin status change
PATCH  /api/purchase-requests/{id}   - edit message / admin notes
DELETE /api/purchase-requests/{id}   - delete (owner: pending only)
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from bookstore.api.schemas import PurchaseRequestBody
from bookstore.api.serializers import payment_config_dict, purchase_request_dict
from bookstore.auth import is_admin, require_admin, require_user
from bookstore.database import get_active_payment_configs, get_db
from bookstore.domain.enums import PurchaseRequestStatus
from bookstore.services import purchase_requests as request_service

router = APIRouter(prefix="/api/purchase-requests", tags=["purchase-requests"])


class StatusUpdateBody(BaseModel):
    status: PurchaseRequestStatus
    admin_notes: Optional[str] = Field(default=None, max_length=2000)


class RequestPatchBody(BaseModel):
    user_message: Optional[str] = Field(default=None, max_length=2000)
    admin_notes: Optional[str] = Field(default=None, max_length=2000)


@router.post("", status_code=201)
async def create_request(body: PurchaseRequestBody, user: dict = Depends(require_user)):
    def _sync():
        db = get_db()
        try:
            row = request_service.create_request(
                db, user["id"], body.item_type, body.item_id, body.amount,
                body.user_message, body.preferred_contact_method,
            )
            methods = [payment_config_dict(c) for c in get_active_payment_configs(db)]
            return {"id": row.id, "request": purchase_request_dict(row), "payment_methods": methods}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("")
async def list_requests(
    all: bool = False,
    status: Optional[PurchaseRequestStatus] = None,
    user: dict = Depends(require_user),
):
    admin = all and await asyncio.to_thread(is_admin, user["id"])
    if all and not admin:
        raise HTTPException(status_code=403, detail="Admin access required")

    def _sync():
        db = get_db()
        try:
            rows = request_service.list_requests(
                db, None if admin else user["id"], status.value if status else None,
            )
            return [purchase_request_dict(r) for r in rows]
        finally:
            db.close()

    return {"requests": await asyncio.to_thread(_sync)}


@router.get("/stats")
async def request_stats(user: dict = Depends(require_user)):
    admin = await asyncio.to_thread(is_admin, user["id"])

    def _sync():
        db = get_db()
        try:
            return request_service.status_counts(db, None if admin else user["id"])
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/{request_id}")
async def get_request(request_id: str, user: dict = Depends(require_user)):
    admin = await asyncio.to_thread(is_admin, user["id"])

    def _sync():
        db = get_db()
        try:
            return purchase_request_dict(request_service.get_request_for(db, request_id, user["id"], admin))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.put("/{request_id}")
async def update_request_status(request_id: str, body: StatusUpdateBody, admin: dict = Depends(require_admin)):
    def _sync():
        db = get_db()
        try:
            row = request_service.update_status(db, request_id, body.status.value, body.admin_notes)
            return purchase_request_dict(row)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.patch("/{request_id}")
async def patch_request(request_id: str, body: RequestPatchBody, user: dict = Depends(require_user)):
    admin = await asyncio.to_thread(is_admin, user["id"])

    def _sync():
        db = get_db()
        try:
            row = request_service.get_request_for(db, request_id, user["id"], admin)
            row = request_service.patch_request(
                db, row, row.user_id == user["id"], admin, body.user_message, body.admin_notes,
            )
            return purchase_request_dict(row)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.delete("/{request_id}")
async def delete_request(request_id: str, user: dict = Depends(require_user)):
    admin = await asyncio.to_thread(is_admin, user["id"])

    def _sync():
        db = get_db()
        try:
            row = request_service.get_request_for(db, request_id, user["id"], admin)
            request_service.delete_request(db, row, admin)
        finally:
            db.close()

    await asyncio.to_thread(_sync)
    return {"status": "deleted", "id": request_id}
