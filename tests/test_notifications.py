"""Tests for in-app notifications, transactional email and push subscriptions."""

from __future__ import annotations

import pytest

from bookstore.database import Notification, PushSubscription
from bookstore.errors import NotFound
from bookstore.metrics import metrics_snapshot
from bookstore.services import email_sender
from bookstore.services import notifications as notification_service


@pytest.fixture
def outbox(monkeypatch):
    sent = []
    monkeypatch.setattr(email_sender, "is_configured", lambda: True)
    monkeypatch.setattr(email_sender, "send_email", lambda to, subject, body: sent.append((to, subject, body)))
    return sent


class TestEmail:
    def test_templates(self):
        subject, body = email_sender.payment_verified("Abebe", "Oromay", 1234.5, "ETB")
        assert subject == "Payment verified"
        assert "1,234.50 ETB" in body
        assert body.startswith("Hi Abebe,")

        subject, body = email_sender.purchase_rejected("Abebe", "Oromay", "AST-1", "")
        assert "AST-1" in subject
        assert "Reason: not specified" in body

    def test_unconfigured_smtp_skips(self, make_user):
        profile, _ = make_user()
        assert notification_service.send_user_email(profile, ("s", "b")) is False

    def test_send_counts_as_notification(self, make_user, outbox):
        profile, _ = make_user()

        assert notification_service.send_user_email(profile, ("Subject", "Body")) is True

        assert outbox == [("reader@astewai.test", "Subject", "Body")]
        assert metrics_snapshot()["notifications_sent"] == 1

    def test_smtp_failure_is_swallowed(self, make_user, monkeypatch):
        def _boom(to, subject, body):
            raise OSError("connection refused")

        monkeypatch.setattr(email_sender, "is_configured", lambda: True)
        monkeypatch.setattr(email_sender, "send_email", _boom)
        profile, _ = make_user()

        assert notification_service.send_user_email(profile, ("s", "b")) is False

    def test_approval_emails_the_buyer(self, db, make_user, make_book, outbox):
        from bookstore.services import purchases as purchase_service

        profile, _ = make_user(name="Tigist")
        purchase = purchase_service.create_purchase(db, profile.id, "book", make_book(price=10.0).id, 10.0)
        purchase_service.bind_telegram_chat(db, purchase, "555", None)
        purchase_service.approve_purchase(db, purchase.id)

        assert len(outbox) == 1
        assert "Fikir Eske Mekabir" in outbox[0][1]
        assert outbox[0][2].startswith("Hi Tigist,")


class TestNotificationService:
    def test_display_name(self, make_user):
        profile, _ = make_user(name="")
        assert notification_service.display_name(profile) == "reader"
        assert notification_service.display_name(None) == "reader"

    def test_mark_read_is_owner_scoped(self, db, make_user):
        owner, _ = make_user()
        other, _ = make_user(email="other@astewai.test")
        notification_service.broadcast(db, "Hello", "", user_id=owner.id)
        row = db.query(Notification).one()

        with pytest.raises(NotFound):
            notification_service.mark_read(db, other.id, row.id)
        assert notification_service.mark_read(db, owner.id, row.id).read is True

    def test_push_subscription_moves_between_users(self, db, make_user):
        first, _ = make_user()
        second, _ = make_user(email="other@astewai.test")

        notification_service.subscribe_push(db, first.id, "https://push.example/1", "key", "auth")
        notification_service.subscribe_push(db, second.id, "https://push.example/1", "key2", "auth2")

        row = db.query(PushSubscription).one()
        assert row.user_id == second.id
        assert row.p256dh == "key2"
        assert notification_service.unsubscribe_push(db, first.id, "https://push.example/1") is False
        assert notification_service.unsubscribe_push(db, second.id, "https://push.example/1") is True


class TestNotificationRoutes:
    def test_list_and_mark_read(self, client, db, make_user):
        profile, headers = make_user()
        notification_service.broadcast(db, "One", "", user_id=profile.id)
        notification_service.broadcast(db, "Two", "", user_id=profile.id)

        body = client.get("/api/notifications", headers=headers).json()
        assert body["unread"] == 2

        first = body["notifications"][0]["id"]
        assert client.post(f"/api/notifications/{first}/read", headers=headers).json()["read"] is True
        unread = client.get("/api/notifications", params={"unread": True}, headers=headers).json()
        assert len(unread["notifications"]) == 1
        assert client.post("/api/notifications/nope/read", headers=headers).status_code == 404

    def test_push_subscribe_and_unsubscribe(self, client, db, make_user):
        _, headers = make_user()
        sub = {"endpoint": "https://push.example/abc", "keys": {"p256dh": "BNc", "auth": "tBH"}}

        created = client.post("/api/notifications/push/subscribe", json=sub,
                              headers={**headers, "User-Agent": "Firefox"})
        assert created.status_code == 201
        assert db.query(PushSubscription).one().user_agent == "Firefox"

        removed = client.request("DELETE", "/api/notifications/push/subscribe",
                                 json={"endpoint": sub["endpoint"]}, headers=headers)
        assert removed.json() == {"status": "unsubscribed"}
        again = client.request("DELETE", "/api/notifications/push/subscribe",
                               json={"endpoint": sub["endpoint"]}, headers=headers)
        assert again.json() == {"status": "not_found"}
