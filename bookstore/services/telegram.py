"""
bookstore.services.telegram — Telegram bot integration.

Three parts:
    TelegramClient      — Bot API calls over httpx; returns False instead of raising
    messages            — text builders for every bot reply
    TelegramDispatcher  — routes a webhook ``Update`` to the right handler

Usage::

    dispatcher = TelegramDispatcher(TelegramClient.from_config())
    await dispatcher.handle_update(update_json)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from bookstore import config
from bookstore.core.utils import format_money
from bookstore.database import PaymentConfig, get_active_payment_configs, get_db, get_setting
from bookstore.domain.enums import PurchaseStatus
from bookstore.metrics import record_telegram_send
from bookstore.services import purchases as purchase_service
from bookstore.services.purchases import PurchaseInfo

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Bot API client
# ---------------------------------------------------------------------------

class TelegramClient:
    """Minimal Bot API client. Every call returns True on a 2xx ``ok`` reply."""

    def __init__(self, token: str, api_base: str = "https://api.telegram.org", timeout: float = 10.0) -> None:
        self._token = token
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout

    @classmethod
    def from_config(cls) -> "TelegramClient":
        return cls(config.TELEGRAM_BOT_TOKEN, config.TELEGRAM_API_BASE)

    @property
    def configured(self) -> bool:
        return bool(self._token)

    async def _call(self, method: str, payload: Dict[str, Any]) -> bool:
        if not self._token:
            logger.warning("TelegramClient: TELEGRAM_BOT_TOKEN not set; dropped %s", method)
            return False
        url = f"{self._api_base}/bot{self._token}/{method}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=payload)
        except httpx.HTTPError as exc:
            logger.error("TelegramClient.%s failed: %s", method, exc)
            record_telegram_send(False)
            return False
        if resp.status_code // 100 != 2:
            logger.error("TelegramClient.%s HTTP %s: %s", method, resp.status_code, resp.text[:300])
            record_telegram_send(False)
            return False
        record_telegram_send(True)
        return True

    async def send_message(self, chat_id, text: str, parse_mode: Optional[str] = "Markdown") -> bool:
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        return await self._call("sendMessage", payload)

    async def send_photo(self, chat_id, photo: str, caption: Optional[str] = None,
                         parse_mode: Optional[str] = "Markdown") -> bool:
        payload: Dict[str, Any] = {"chat_id": chat_id, "photo": photo}
        if caption:
            payload["caption"] = caption
            if parse_mode:
                payload["parse_mode"] = parse_mode
        return await self._call("sendPhoto", payload)


# ---------------------------------------------------------------------------
# Message builders
# ---------------------------------------------------------------------------

GENERIC_ERROR_MESSAGE = "❌ Something went wrong. Please try again or contact support."

_STATUS_LABELS = {
    PurchaseStatus.PENDING_INITIATION.value: "🟡 Pending - Waiting for payment initiation",
    PurchaseStatus.AWAITING_PAYMENT.value: "🟠 Awaiting Payment - Please send payment and confirm",
    PurchaseStatus.PENDING_VERIFICATION.value: "🔵 Under Review - We're verifying your payment",
    PurchaseStatus.COMPLETED.value: "✅ Completed - Book delivered to your library",
    PurchaseStatus.REJECTED.value: "❌ Rejected - Payment verification failed",
}


def _birr(amount: float) -> str:
    return f"{amount:,.2f}".rstrip("0").rstrip(".") if amount == int(amount) else f"{amount:,.2f}"


def welcome_message() -> str:
    return (
        "👋 Welcome to Astewai Digital Bookstore!\n\n"
        "To purchase a book, please use the purchase link from our website.\n\n"
        f"Visit: {config.SITE_URL}"
    )


def help_message() -> str:
    return (
        "📚 **Astewai Digital Bookstore Help**\n\n"
        "**How to Purchase:**\n"
        "1️⃣ Visit our website and click 'Buy Now' on any book\n"
        "2️⃣ You'll be redirected here with payment instructions\n"
        "3️⃣ Follow the payment instructions\n"
        "4️⃣ Send a screenshot or type \"PAID\"\n\n"
        "**Commands:**\n"
        "• /help - Show this help message\n"
        "• /orderstatus [OrderID] - Check your order status\n\n"
        "Need help? Contact our support team."
    )


def unknown_command_message() -> str:
    return (
        "🤖 I didn't understand that command.\n\n"
        "Available commands:\n"
        "• /help - Show help information\n\n"
        "To purchase a book, please use the purchase link from our website."
    )


def invalid_token_message() -> str:
    return (
        "❌ Invalid or expired purchase link.\n\n"
        "Please try again from our website or contact support if the issue persists."
    )


def no_pending_order_message() -> str:
    return (
        "❌ No pending purchase found.\n\n"
        "Please start a new purchase from our website."
    )


def order_not_found_message(reference: str) -> str:
    return f"❌ Order {reference} was not found for this chat."


def payment_received_message(reference: str) -> str:
    return (
        "✅ **Payment confirmation received!**\n\n"
        "Thank you. Our team will verify your transaction shortly.\n\n"
        f"**Order ID:** {reference}\n\n"
        "You'll be notified once your purchase is approved and the book is added to your library."
    )


def _format_payment_option(option: PaymentConfig, index: int) -> str:
    text = (
        f"{index}. **{option.provider_name}**\n"
        f"   Account: {option.account_number}\n"
        f"   Name: {option.account_name}\n"
    )
    if option.instructions:
        text += f"   📝 {option.instructions}\n"
    return text + "\n"


def _default_payment_options() -> str:
    return (
        "1. **Commercial Bank of Ethiopia**\n"
        "   Account: [Your Account Number]\n"
        "   Name: Astewai Bookstore\n\n"
        "2. **Telebirr**\n"
        "   Number: [Your Telebirr Number]\n\n"
    )


def purchase_message(info: PurchaseInfo, options: Sequence[PaymentConfig]) -> str:
    header = (
        f"📚 **{info.item_title}**\n"
        f"💵 **Price:** {_birr(info.amount_in_birr)} Birr\n"
    )
    instructions = "💳 **Payment Instructions:**\nPlease send payment to one of these accounts:\n\n"
    if options:
        instructions += "\n".join(_format_payment_option(o, i) for i, o in enumerate(options, start=1))
    else:
        instructions += _default_payment_options()
    footer = (
        f"**Order ID:** {info.purchase.transaction_reference}\n\n"
        "📱 After payment, send a screenshot here or type \"PAID\"\n\n"
        "❓ Need help? Type /help"
    )
    return "\n".join([header, instructions, footer])


def order_status_message(info: PurchaseInfo) -> str:
    p = info.purchase
    label = _STATUS_LABELS.get(p.status, "❓ Unknown Status")
    created = p.created_at.strftime("%Y-%m-%d") if p.created_at else "-"
    return (
        "📋 **Order Status**\n\n"
        f"**Order ID:** {p.transaction_reference}\n"
        f"**Status:** {label}\n"
        f"**Amount:** {_birr(info.amount_in_birr)} Birr\n"
        f"**Item:** {info.item_title}\n"
        f"**Created:** {created}\n\n"
        "Need help? Contact our support team."
    )


def admin_payment_notice(info: PurchaseInfo, sender: Dict[str, Any], kind: str) -> str:
    label = "New Payment Screenshot Received" if kind == "screenshot" else "New Payment Confirmation (Text)"
    name = " ".join(filter(None, [sender.get("first_name"), sender.get("last_name")])) or "Unknown"
    return (
        f"🔔 **{label}**\n\n"
        f"**Order ID:** {info.purchase.transaction_reference}\n"
        f"**User:** {name} (@{sender.get('username') or 'N/A'})\n"
        f"**Amount:** {_birr(info.amount_in_birr)} Birr ({format_money(info.purchase.amount, 'USD')})\n"
        f"**Item:** {info.item_title}"
    )


def purchase_decision_message(reference: str, item_title: str, approved: bool, reason: Optional[str] = None) -> str:
    if approved:
        return (
            "🎉 **Purchase approved!**\n\n"
            f"**Order ID:** {reference}\n"
            f"\"{item_title}\" is now in your library: {config.SITE_URL}/library"
        )
    return (
        "❌ **Purchase rejected**\n\n"
        f"**Order ID:** {reference}\n"
        f"Reason: {reason or 'Payment could not be verified'}\n\n"
        "Contact support if you believe this is a mistake."
    )


def payment_options_dict(options: Sequence[PaymentConfig]) -> List[dict]:
    return [
        {
            "id": o.id,
            "type": o.config_type,
            "providerName": o.provider_name,
            "accountNumber": o.account_number,
            "accountName": o.account_name,
            "instructions": o.instructions,
        }
        for o in options
    ]


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

def _admin_channel_id() -> str:
    db = get_db()
    try:
        override = get_setting(db, "telegram_admin_channel_id")
    finally:
        db.close()
    return str(override or config.TELEGRAM_ADMIN_CHANNEL_ID or "")


class TelegramDispatcher:
    """Handles one Telegram ``Update`` at a time."""

    def __init__(self, client: TelegramClient) -> None:
        self.client = client

    async def handle_update(self, update: Dict[str, Any]) -> None:
        message = update.get("message")
        if not message:
            return
        chat_id = (message.get("chat") or {}).get("id")
        if chat_id is None:
            return
        text = (message.get("text") or "").strip()
        sender = message.get("from") or {}
        logger.info("Telegram message from chat %s: %r", chat_id, text[:64])

        try:
            if text.startswith("/start "):
                await self._start_with_token(chat_id, text.split(maxsplit=1)[1].strip(), sender)
            elif text == "/start":
                await self.client.send_message(chat_id, welcome_message())
            elif text.startswith("/help"):
                await self.client.send_message(chat_id, help_message())
            elif text.startswith("/orderstatus"):
                parts = text.split(maxsplit=1)
                await self._order_status(chat_id, parts[1].strip() if len(parts) > 1 else "")
            elif message.get("photo") or message.get("document"):
                await self._payment_sent(chat_id, sender, message, "screenshot")
            elif text.upper() == "PAID":
                await self._payment_sent(chat_id, sender, message, "text")
            else:
                await self.client.send_message(chat_id, unknown_command_message())
        except Exception:
            logger.exception("Error handling Telegram message from chat %s", chat_id)
            try:
                await self.client.send_message(chat_id, GENERIC_ERROR_MESSAGE, parse_mode=None)
            except Exception as send_exc:
                logger.error("Failed to send error message to chat %s: %s", chat_id, send_exc)

    async def _start_with_token(self, chat_id, token: str, sender: Dict[str, Any]) -> None:
        def _sync():
            db = get_db()
            try:
                info = purchase_service.find_purchase_by_token(db, token)
                if not info:
                    return None, []
                if info.purchase.status in (
                    PurchaseStatus.PENDING_INITIATION.value, PurchaseStatus.AWAITING_PAYMENT.value,
                ):
                    purchase_service.bind_telegram_chat(db, info.purchase, chat_id, sender.get("id"))
                return info, get_active_payment_configs(db)
            finally:
                db.close()

        info, options = await asyncio.to_thread(_sync)
        if not info:
            await self.client.send_message(chat_id, invalid_token_message())
            return
        if info.purchase.status not in (
            PurchaseStatus.AWAITING_PAYMENT.value, PurchaseStatus.PENDING_INITIATION.value,
        ):
            await self.client.send_message(chat_id, order_status_message(info))
            return
        if info.cover_image_url:
            await self.client.send_photo(chat_id, info.cover_image_url, caption=f"📚 {info.item_title}")
        await self.client.send_message(chat_id, purchase_message(info, options))

    async def _order_status(self, chat_id, reference: str) -> None:
        if not reference:
            await self.client.send_message(chat_id, "Usage: /orderstatus [OrderID]", parse_mode=None)
            return

        def _sync():
            db = get_db()
            try:
                info = purchase_service.find_purchase_by_reference(db, reference)
                if not info or info.purchase.telegram_chat_id != str(chat_id):
                    return None
                return info
            finally:
                db.close()

        info = await asyncio.to_thread(_sync)
        if not info:
            await self.client.send_message(chat_id, order_not_found_message(reference))
            return
        await self.client.send_message(chat_id, order_status_message(info))

    async def _payment_sent(self, chat_id, sender: Dict[str, Any], message: Dict[str, Any], kind: str) -> None:
        def _sync():
            db = get_db()
            try:
                purchase = purchase_service.latest_awaiting_payment(db, chat_id)
                if not purchase:
                    return None
                purchase_service.mark_payment_sent(db, purchase)
                return purchase_service.find_purchase_by_reference(db, purchase.transaction_reference)
            finally:
                db.close()

        info = await asyncio.to_thread(_sync)
        if not info:
            await self.client.send_message(chat_id, no_pending_order_message())
            return

        await self.client.send_message(chat_id, payment_received_message(info.purchase.transaction_reference))

        channel = await asyncio.to_thread(_admin_channel_id)
        if not channel:
            logger.warning("No admin channel configured; order %s not forwarded", info.purchase.transaction_reference)
            return
        notice = admin_payment_notice(info, sender, kind)
        photos = message.get("photo") or []
        if photos:
            await self.client.send_photo(channel, photos[-1]["file_id"], caption=notice)
        else:
            await self.client.send_message(channel, notice)
