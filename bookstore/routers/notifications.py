"""
Notification Endpoints for the Astewai Bookstore
GET    /api/notifications                   - the caller's in-app notifications
POST   /api/notifications/{id}/read         - mark one read
POST   /api/notifications/push/subscribe    - store a web-push subscription
DELETE /api/notifications/push/subscribe    - remove it
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from bookstore.api.serializers import notification_dict
from bookstore.auth import require_user
from bookstore.database import get_db
from bookstore.services import notifications as notification_service

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class PushKeys(BaseModel):
    p256dh: str = Field(min_length=1)
    auth: str = Field(min_length=1)


class PushSubscribeBody(BaseModel):
    endpoint: str = Field(min_length=1, max_length=2000)
    keys: PushKeys


class PushUnsubscribeBody(BaseModel):
    endpoint: str = Field(min_length=1, max_length=2000)


@router.get("")
async def list_notifications(
    unread: bool = False,
    limit: int = Query(50, ge=1, le=200),
    user: dict = Depends(require_user),
):
    def _sync():
        db = get_db()
        try:
            rows = notification_service.list_notifications(db, user["id"], unread, limit)
            return [notification_dict(n) for n in rows]
        finally:
            db.close()

    rows = await asyncio.to_thread(_sync)
    return {"notifications": rows, "unread": sum(1 for n in rows if not n["read"])}


@router.post("/{notification_id}/read")
async def mark_read(notification_id: str, user: dict = Depends(require_user)):
    def _sync():
        db = get_db()
        try:
            return notification_dict(notification_service.mark_read(db, user["id"], notification_id))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/push/subscribe", status_code=201)
async def push_subscribe(body: PushSubscribeBody, request: Request, user: dict = Depends(require_user)):
    user_agent: Optional[str] = request.headers.get("User-Agent")

    def _sync():
        db = get_db()
        try:
            row = notification_service.subscribe_push(
                db, user["id"], body.endpoint, body.keys.p256dh, body.keys.auth, user_agent,
            )
            return {"id": row.id, "endpoint": row.endpoint}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.delete("/push/subscribe")
async def push_unsubscribe(body: PushUnsubscribeBody, user: dict = Depends(require_user)):
    def _sync():
        db = get_db()
        try:
            return notification_service.unsubscribe_push(db, user["id"], body.endpoint)
        finally:
            db.close()

    removed = await asyncio.to_thread(_sync)
    return {"status": "unsubscribed" if removed else "not_found"}
