"""
Purchase Endpoints (Telegram flow) for the Astewai Bookstore
POST /api/purchases       - start a purchase, returns the Telegram deep link
GET  /api/purchases       - the caller's purchases
GET  /api/purchases/{id}  - one purchase (owner or admin)
"""

import asyncio

from fastapi import APIRouter, Depends, HTTPException

from bookstore.api.schemas import ItemPurchaseBody
from bookstore.api.serializers import purchase_dict
from bookstore.auth import is_admin, require_user
from bookstore.database import Purchase, get_db
from bookstore.services import purchases as purchase_service

router = APIRouter(prefix="/api/purchases", tags=["purchases"])


@router.post("", status_code=201)
async def create_purchase(body: ItemPurchaseBody, user: dict = Depends(require_user)):
    def _sync():
        db = get_db()
        try:
            purchase = purchase_service.create_purchase(
                db, user["id"], body.item_type, body.item_id, body.amount,
            )
            return purchase_dict(purchase), purchase.initiation_token
        finally:
            db.close()

    purchase, token = await asyncio.to_thread(_sync)
    return {
        "purchase": purchase,
        "telegram_url": purchase_service.telegram_deep_link(token),
    }


@router.get("")
async def list_purchases(user: dict = Depends(require_user)):
    def _sync():
        db = get_db()
        try:
            return [purchase_dict(p) for p in purchase_service.list_user_purchases(db, user["id"])]
        finally:
            db.close()

    return {"purchases": await asyncio.to_thread(_sync)}


@router.get("/{purchase_id}")
async def get_purchase(purchase_id: str, user: dict = Depends(require_user)):
    def _sync():
        db = get_db()
        try:
            purchase = db.get(Purchase, purchase_id)
            return purchase_dict(purchase) if purchase else None
        finally:
            db.close()

    purchase = await asyncio.to_thread(_sync)
    if not purchase:
        raise HTTPException(status_code=404, detail="Purchase not found")
    if purchase["user_id"] != user["id"] and not await asyncio.to_thread(is_admin, user["id"]):
        raise HTTPException(status_code=403, detail="Not your purchase")
    return purchase
