"""
Telegram Endpoints for the Astewai Bookstore
POST /api/telegram/webhook               - Bot API updates
GET  /api/telegram/purchase-info/{token} - purchase + payment options (bot secret)
"""

import asyncio
import hmac
import logging

from fastapi import APIRouter, HTTPException, Request

from bookstore import config
from bookstore.database import get_active_payment_configs, get_db
from bookstore.rate_limiter import check_rate_limit
from bookstore.services import purchases as purchase_service
from bookstore.services.telegram import TelegramClient, TelegramDispatcher, payment_options_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/telegram", tags=["telegram"])


def get_dispatcher() -> TelegramDispatcher:
    return TelegramDispatcher(TelegramClient.from_config())


def _secret_matches(provided: str, expected: str) -> bool:
    return bool(expected) and hmac.compare_digest(provided.encode(), expected.encode())


@router.post("/webhook")
async def telegram_webhook(request: Request):
    if config.TELEGRAM_WEBHOOK_SECRET:
        provided = request.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
        if not _secret_matches(provided, config.TELEGRAM_WEBHOOK_SECRET):
            raise HTTPException(status_code=401, detail="Invalid webhook secret")

    try:
        update = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(update, dict):
        raise HTTPException(status_code=400, detail="Invalid update")

    chat_id = ((update.get("message") or {}).get("chat") or {}).get("id")
    if chat_id is not None:
        allowed, _ = check_rate_limit("telegram", str(chat_id), config.TELEGRAM_RATE_LIMIT_PER_MINUTE)
        if not allowed:
            logger.warning("Telegram chat %s rate limited", chat_id)
            return {"ok": True}

    await get_dispatcher().handle_update(update)
    return {"ok": True}


@router.get("/purchase-info/{token}")
async def purchase_info(token: str, request: Request):
    """Used by an external bot process; authenticated with TELEGRAM_BOT_SECRET."""
    auth = request.headers.get("Authorization", "")
    provided = auth[7:] if auth.startswith("Bearer ") else ""
    if not _secret_matches(provided, config.TELEGRAM_BOT_SECRET):
        raise HTTPException(status_code=401, detail="Unauthorized")

    def _sync():
        db = get_db()
        try:
            info = purchase_service.find_purchase_by_token(db, token)
            if not info:
                return None
            return {
                "purchase": info.to_dict(),
                "paymentOptions": payment_options_dict(get_active_payment_configs(db)),
            }
        finally:
            db.close()

    data = await asyncio.to_thread(_sync)
    if not data:
        raise HTTPException(status_code=404, detail="Purchase not found")
    return data
