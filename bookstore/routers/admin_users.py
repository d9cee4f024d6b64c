"""
Admin User, Stats & Analytics Endpoints for the Astewai Bookstore
GET  /api/admin/users               - users (search, paging)
PUT  /api/admin/users/{id}/role     - change a role (no self-demotion)
GET  /api/admin/stats               - dashboard totals
GET  /api/admin/analytics           - daily revenue, top items, status breakdown
GET  /api/admin/analytics/export    - CSV of completed sales
POST /api/admin/notifications       - in-app notification to one user or everyone
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy import func, or_

from bookstore.api.schemas import AdminStatsResponse
from bookstore.api.serializers import user_dict
from bookstore.auth import require_admin
from bookstore.core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from bookstore.database import Profile, get_db
from bookstore.domain.enums import UserRole
from bookstore.services import analytics
from bookstore.services import notifications as notification_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class RoleBody(BaseModel):
    role: UserRole


class BroadcastBody(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    message: str = Field(default="", max_length=4000)
    user_id: Optional[str] = None


@router.get("/users")
async def list_users(
    search: Optional[str] = Query(None, max_length=200),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    admin: dict = Depends(require_admin),
):
    def _sync():
        db = get_db()
        try:
            q = db.query(Profile)
            if search:
                like = f"%{search.strip().lower()}%"
                q = q.filter(or_(
                    func.lower(Profile.email).like(like),
                    func.lower(func.coalesce(Profile.display_name, "")).like(like),
                ))
            total = q.count()
            rows = q.order_by(Profile.created_at.desc()).offset(offset).limit(limit).all()
            return [user_dict(p) for p in rows], total
        finally:
            db.close()

    users, total = await asyncio.to_thread(_sync)
    return {"users": users, "total": total, "limit": limit, "offset": offset,
            "has_more": offset + len(users) < total}


@router.put("/users/{user_id}/role")
async def update_role(user_id: str, body: RoleBody, admin: dict = Depends(require_admin)):
    if user_id == admin["id"] and body.role != UserRole.ADMIN:
        raise HTTPException(status_code=400, detail="You cannot remove your own admin role")

    def _sync():
        db = get_db()
        try:
            profile = db.get(Profile, user_id)
            if not profile:
                return None
            profile.role = body.role.value
            db.commit()
            return user_dict(profile)
        finally:
            db.close()

    profile = await asyncio.to_thread(_sync)
    if not profile:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("Role of %s set to %s by %s", user_id, body.role.value, admin["id"])
    return profile


@router.get("/stats", response_model=AdminStatsResponse)
async def admin_stats(admin: dict = Depends(require_admin)):
    def _sync():
        db = get_db()
        try:
            return analytics.admin_stats(db)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/analytics")
async def admin_analytics(days: int = Query(30, ge=1, le=365), admin: dict = Depends(require_admin)):
    def _sync():
        db = get_db()
        try:
            return analytics.analytics_summary(db, days)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/analytics/export")
async def export_analytics(days: int = Query(30, ge=1, le=365), admin: dict = Depends(require_admin)):
    def _sync():
        db = get_db()
        try:
            return analytics.export_sales_csv(db, days)
        finally:
            db.close()

    csv_text = await asyncio.to_thread(_sync)
    filename = f"astewai-sales-{days}d-{datetime.utcnow():%Y%m%d}.csv"
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/notifications", status_code=201)
async def send_notification(body: BroadcastBody, admin: dict = Depends(require_admin)):
    def _sync():
        db = get_db()
        try:
            return notification_service.broadcast(db, body.title, body.message, body.user_id)
        finally:
            db.close()

    sent = await asyncio.to_thread(_sync)
    return {"status": "sent", "recipients": sent}
