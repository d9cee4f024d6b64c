"""
Profile Endpoints for the Astewai Bookstore
GET /api/profile  - the caller's profile
PUT /api/profile  - update display name, avatar, reading preferences
"""

import asyncio
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from bookstore.auth import _profile_dict, require_user
from bookstore.database import get_db, get_profile

router = APIRouter(prefix="/api/profile", tags=["profile"])


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    avatar_url: Optional[str] = Field(default=None, max_length=2000)
    reading_preferences: Optional[Dict[str, Any]] = None


@router.get("")
async def get_profile_endpoint(user: dict = Depends(require_user)):
    def _sync():
        db = get_db()
        try:
            profile = get_profile(db, user["id"])
            return _profile_dict(profile) if profile else None
        finally:
            db.close()

    profile = await asyncio.to_thread(_sync)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@router.put("")
async def update_profile(body: ProfileUpdate, user: dict = Depends(require_user)):
    """Only the fields present in the body are changed."""
    changes = body.model_dump(exclude_unset=True)

    def _sync():
        db = get_db()
        try:
            profile = get_profile(db, user["id"])
            if not profile:
                return None
            for key, value in changes.items():
                setattr(profile, key, value)
            db.commit()
            return _profile_dict(profile)
        finally:
            db.close()

    profile = await asyncio.to_thread(_sync)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile
