"""Tests for the Telegram bot dispatcher and webhook endpoints."""

from __future__ import annotations

import pytest

from bookstore.database import Purchase
from bookstore.routers import telegram as telegram_router
from bookstore.services import purchases as purchase_service
from bookstore.services import telegram as telegram_service
from bookstore.services.telegram import TelegramDispatcher


class FakeClient:
    """Records every outgoing Bot API call instead of sending it."""

    def __init__(self):
        self.messages = []
        self.photos = []

    async def send_message(self, chat_id, text, parse_mode="Markdown"):
        self.messages.append((chat_id, text))
        return True

    async def send_photo(self, chat_id, photo, caption=None, parse_mode="Markdown"):
        self.photos.append((chat_id, photo, caption))
        return True


def _update(chat_id, text="", **extra):
    message = {"chat": {"id": chat_id}, "from": {"id": 900, "first_name": "Abebe", "username": "abebe"}}
    if text:
        message["text"] = text
    message.update(extra)
    return {"update_id": 1, "message": message}


@pytest.fixture
def purchase(db, make_user, make_book):
    profile, _ = make_user()
    book = make_book(price=10.0, cover_image_url="http://testserver/storage/covers/c.png")
    return purchase_service.create_purchase(db, profile.id, "book", book.id, 10.0)


@pytest.fixture
def bot():
    return TelegramDispatcher(FakeClient())


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_start_with_token_binds_chat(self, db, bot, purchase):
        await bot.handle_update(_update(555, f"/start {purchase.initiation_token}"))

        db.expire_all()
        stored = db.get(Purchase, purchase.id)
        assert stored.status == "awaiting_payment"
        assert stored.telegram_chat_id == "555"
        assert stored.telegram_user_id == "900"
        assert bot.client.photos[0][1].endswith("c.png")
        assert purchase.transaction_reference in bot.client.messages[-1][1]

    @pytest.mark.asyncio
    async def test_start_with_unknown_token(self, bot):
        await bot.handle_update(_update(1, "/start nope"))
        assert bot.client.messages == [(1, telegram_service.invalid_token_message())]

    @pytest.mark.asyncio
    async def test_plain_start_and_help(self, bot):
        await bot.handle_update(_update(1, "/start"))
        await bot.handle_update(_update(1, "/help"))
        assert bot.client.messages[0][1] == telegram_service.welcome_message()
        assert bot.client.messages[1][1] == telegram_service.help_message()

    @pytest.mark.asyncio
    async def test_unknown_text(self, bot):
        await bot.handle_update(_update(1, "hello?"))
        assert bot.client.messages[0][1] == telegram_service.unknown_command_message()

    @pytest.mark.asyncio
    async def test_paid_moves_to_verification_and_forwards(self, db, bot, purchase, monkeypatch):
        monkeypatch.setattr(telegram_service.config, "TELEGRAM_ADMIN_CHANNEL_ID", "-100200")
        await bot.handle_update(_update(555, f"/start {purchase.initiation_token}"))

        await bot.handle_update(_update(555, "paid"))

        db.expire_all()
        assert db.get(Purchase, purchase.id).status == "pending_verification"
        user_reply = [t for c, t in bot.client.messages if c == 555][-1]
        assert purchase.transaction_reference in user_reply
        admin_notice = [t for c, t in bot.client.messages if c == "-100200"]
        assert len(admin_notice) == 1
        assert "Abebe" in admin_notice[0]

    @pytest.mark.asyncio
    async def test_screenshot_is_forwarded_as_photo(self, db, bot, purchase, monkeypatch):
        monkeypatch.setattr(telegram_service.config, "TELEGRAM_ADMIN_CHANNEL_ID", "-100200")
        await bot.handle_update(_update(555, f"/start {purchase.initiation_token}"))

        photo = [{"file_id": "small"}, {"file_id": "large"}]
        await bot.handle_update(_update(555, photo=photo))

        assert bot.client.photos[-1][0] == "-100200"
        assert bot.client.photos[-1][1] == "large"

    @pytest.mark.asyncio
    async def test_paid_without_pending_order(self, bot):
        await bot.handle_update(_update(777, "PAID"))
        assert bot.client.messages == [(777, telegram_service.no_pending_order_message())]

    @pytest.mark.asyncio
    async def test_order_status_is_scoped_to_chat(self, bot, purchase):
        await bot.handle_update(_update(555, f"/start {purchase.initiation_token}"))

        await bot.handle_update(_update(555, f"/orderstatus {purchase.transaction_reference}"))
        await bot.handle_update(_update(999, f"/orderstatus {purchase.transaction_reference}"))

        assert "Awaiting Payment" in bot.client.messages[-2][1]
        assert bot.client.messages[-1] == (
            999, telegram_service.order_not_found_message(purchase.transaction_reference),
        )

    @pytest.mark.asyncio
    async def test_completed_purchase_start_shows_status(self, db, bot, purchase):
        purchase_service.bind_telegram_chat(db, purchase, 555, None)
        purchase_service.approve_purchase(db, purchase.id)

        await bot.handle_update(_update(555, f"/start {purchase.initiation_token}"))

        assert "Completed" in bot.client.messages[-1][1]
        assert bot.client.photos == []

    @pytest.mark.asyncio
    async def test_handler_errors_send_generic_reply(self, bot, monkeypatch):
        def _boom(db, chat_id):
            raise RuntimeError("db down")

        monkeypatch.setattr(telegram_service.purchase_service, "latest_awaiting_payment", _boom)

        await bot.handle_update(_update(4, "PAID"))

        assert bot.client.messages == [(4, telegram_service.GENERIC_ERROR_MESSAGE)]

    @pytest.mark.asyncio
    async def test_updates_without_message_are_ignored(self, bot):
        await bot.handle_update({"update_id": 3, "edited_message": {}})
        assert bot.client.messages == []


class TestTelegramClient:
    @pytest.mark.asyncio
    async def test_unconfigured_client_drops_messages(self):
        client = telegram_service.TelegramClient("")
        assert not client.configured
        assert await client.send_message(1, "hi") is False


class TestWebhookRoutes:
    def test_webhook_dispatches_update(self, client, monkeypatch):
        fake = FakeClient()
        monkeypatch.setattr(telegram_router, "get_dispatcher", lambda: TelegramDispatcher(fake))

        resp = client.post("/api/telegram/webhook", json=_update(12, "/help"))

        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
        assert fake.messages[0][0] == 12

    def test_webhook_secret_is_checked(self, client, monkeypatch):
        monkeypatch.setattr(telegram_router.config, "TELEGRAM_WEBHOOK_SECRET", "s3cret")

        assert client.post("/api/telegram/webhook", json=_update(1, "/help")).status_code == 401
        ok = client.post(
            "/api/telegram/webhook",
            json={"update_id": 1},
            headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"},
        )
        assert ok.status_code == 200

    def test_webhook_rejects_bad_json(self, client):
        resp = client.post(
            "/api/telegram/webhook", content=b"not json", headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400

    def test_chat_rate_limit_drops_updates(self, client, monkeypatch):
        fake = FakeClient()
        monkeypatch.setattr(telegram_router, "get_dispatcher", lambda: TelegramDispatcher(fake))
        monkeypatch.setattr(telegram_router.config, "TELEGRAM_RATE_LIMIT_PER_MINUTE", 1)

        client.post("/api/telegram/webhook", json=_update(12, "/help"))
        resp = client.post("/api/telegram/webhook", json=_update(12, "/help"))

        assert resp.json() == {"ok": True}
        assert len(fake.messages) == 1

    def test_purchase_info_requires_bot_secret(self, client, purchase, monkeypatch):
        monkeypatch.setattr(telegram_router.config, "TELEGRAM_BOT_SECRET", "bot-secret")
        url = f"/api/telegram/purchase-info/{purchase.initiation_token}"

        assert client.get(url).status_code == 401
        resp = client.get(url, headers={"Authorization": "Bearer bot-secret"})
        assert resp.status_code == 200
        assert resp.json()["purchase"]["transactionReference"] == purchase.transaction_reference
        assert resp.json()["paymentOptions"] == []

        missing = client.get("/api/telegram/purchase-info/nope", headers={"Authorization": "Bearer bot-secret"})
        assert missing.status_code == 404
