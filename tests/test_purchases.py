"""Tests for the Telegram-flow purchase lifecycle."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from bookstore.database import Notification, Purchase, UserLibrary
from bookstore.errors import BadRequest, Conflict, InvalidTransition, NotFound
from bookstore.services import purchases as purchase_service


@pytest.fixture
def buyer(make_user):
    profile, headers = make_user()
    return profile, headers


class TestCreatePurchase:
    def test_new_purchase_waits_for_initiation(self, db, buyer, make_book):
        profile, _ = buyer
        book = make_book(price=12.5)

        purchase = purchase_service.create_purchase(db, profile.id, "book", book.id, 12.5)

        assert purchase.status == "pending_initiation"
        assert purchase.item_title == book.title
        assert purchase.initiation_token
        assert purchase.transaction_reference.startswith("AST-")

    def test_amount_must_match_current_price(self, db, buyer, make_book):
        profile, _ = buyer
        book = make_book(price=12.5)

        with pytest.raises(BadRequest):
            purchase_service.create_purchase(db, profile.id, "book", book.id, 10.0)

    def test_free_book_cannot_be_purchased(self, db, buyer, make_book):
        profile, _ = buyer
        book = make_book(price=0.0, is_free=True)

        with pytest.raises(BadRequest):
            purchase_service.create_purchase(db, profile.id, "book", book.id, 1.0)

    def test_unknown_item_is_not_found(self, db, buyer):
        profile, _ = buyer
        with pytest.raises(NotFound):
            purchase_service.create_purchase(db, profile.id, "bundle", "missing", 5.0)

    def test_second_live_purchase_for_same_item_conflicts(self, db, buyer, make_book):
        profile, _ = buyer
        book = make_book()
        purchase_service.create_purchase(db, profile.id, "book", book.id, book.price)

        with pytest.raises(Conflict):
            purchase_service.create_purchase(db, profile.id, "book", book.id, book.price)

    def test_rejected_purchase_does_not_block_a_new_one(self, db, buyer, make_book):
        profile, _ = buyer
        book = make_book()
        first = purchase_service.create_purchase(db, profile.id, "book", book.id, book.price)
        purchase_service.reject_purchase(db, first.id, "wrong amount")

        second = purchase_service.create_purchase(db, profile.id, "book", book.id, book.price)
        assert second.id != first.id


class TestLifecycle:
    def _purchase(self, db, profile, book):
        return purchase_service.create_purchase(db, profile.id, "book", book.id, book.price)

    def test_full_telegram_flow_grants_library_access(self, db, buyer, make_book):
        profile, _ = buyer
        book = make_book()
        purchase = self._purchase(db, profile, book)

        purchase_service.bind_telegram_chat(db, purchase, 555, 777)
        assert purchase.status == "awaiting_payment"
        assert purchase.telegram_chat_id == "555"

        awaiting = purchase_service.latest_awaiting_payment(db, "555")
        assert awaiting.id == purchase.id
        purchase_service.mark_payment_sent(db, awaiting)
        assert purchase.status == "pending_verification"

        purchase_service.approve_purchase(db, purchase.id, "looks good")

        db.expire_all()
        stored = db.get(Purchase, purchase.id)
        assert stored.status == "completed"
        assert stored.admin_notes == "looks good"
        entry = db.query(UserLibrary).filter_by(user_id=profile.id, book_id=book.id).one()
        assert entry.status == "owned"
        kinds = [n.kind for n in db.query(Notification).filter_by(user_id=profile.id)]
        assert kinds == ["purchase_approved"]

    def test_bundle_approval_grants_every_book(self, db, buyer, make_book, make_bundle):
        profile, _ = buyer
        a = make_book(title="A", price=10.0)
        b = make_book(title="B", price=15.0)
        bundle = make_bundle([a, b], price=20.0)
        purchase = purchase_service.create_purchase(db, profile.id, "bundle", bundle.id, 20.0)

        purchase_service.approve_purchase(db, purchase.id)

        owned = {e.book_id for e in db.query(UserLibrary).filter_by(user_id=profile.id)}
        assert owned == {a.id, b.id}

    def test_binding_twice_keeps_awaiting_payment(self, db, buyer, make_book):
        profile, _ = buyer
        purchase = self._purchase(db, profile, make_book())
        purchase_service.bind_telegram_chat(db, purchase, 1, None)
        purchase_service.bind_telegram_chat(db, purchase, 2, None)

        assert purchase.status == "awaiting_payment"
        assert purchase.telegram_chat_id == "2"

    def test_payment_cannot_be_sent_before_initiation(self, db, buyer, make_book):
        profile, _ = buyer
        purchase = self._purchase(db, profile, make_book())

        with pytest.raises(InvalidTransition):
            purchase_service.mark_payment_sent(db, purchase)

    def test_completed_purchase_is_terminal(self, db, buyer, make_book):
        profile, _ = buyer
        purchase = self._purchase(db, profile, make_book())
        purchase_service.bind_telegram_chat(db, purchase, 9, None)
        purchase_service.approve_purchase(db, purchase.id)

        with pytest.raises(InvalidTransition):
            purchase_service.reject_purchase(db, purchase.id, "late")
        with pytest.raises(InvalidTransition):
            purchase_service.approve_purchase(db, purchase.id)

    def test_pending_initiation_cannot_be_approved(self, db, buyer, make_book):
        profile, _ = buyer
        purchase = self._purchase(db, profile, make_book())

        with pytest.raises(InvalidTransition):
            purchase_service.approve_purchase(db, purchase.id)
        assert db.query(UserLibrary).count() == 0

    def test_approve_unknown_purchase(self, db):
        with pytest.raises(NotFound):
            purchase_service.approve_purchase(db, "nope")

    def test_stale_initiations_are_rejected(self, db, buyer, make_book):
        profile, _ = buyer
        stale = self._purchase(db, profile, make_book(title="Old"))
        fresh = self._purchase(db, profile, make_book(title="New"))
        purchase_service.bind_telegram_chat(db, fresh, 3, None)

        expired = purchase_service.expire_stale_initiations(
            db, 48, now=datetime.utcnow() + timedelta(hours=49),
        )

        assert expired == 1
        assert stale.status == "rejected"
        assert fresh.status == "awaiting_payment"


class TestPurchaseInfo:
    def test_info_converts_to_birr(self, db, buyer, make_book, monkeypatch):
        profile, _ = buyer
        monkeypatch.setattr(purchase_service.config, "USD_TO_BIRR_RATE", 100.0)
        book = make_book(price=12.5, cover_image_url="http://testserver/storage/covers/c.png")
        purchase = purchase_service.create_purchase(db, profile.id, "book", book.id, 12.5)

        info = purchase_service.find_purchase_by_token(db, purchase.initiation_token)

        assert info.amount_in_birr == 1250.0
        assert info.cover_image_url.endswith("c.png")
        data = info.to_dict()
        assert data["transactionReference"] == purchase.transaction_reference
        assert data["userName"] == "Reader"

    def test_birr_rate_setting_overrides_env(self, db, monkeypatch):
        from bookstore.database import set_setting

        monkeypatch.setattr(purchase_service.config, "USD_TO_BIRR_RATE", 100.0)
        set_setting(db, "usd_to_birr_rate", "130.5")
        assert purchase_service.birr_rate(db) == 130.5

    def test_unknown_token(self, db):
        assert purchase_service.find_purchase_by_token(db, "") is None
        assert purchase_service.find_purchase_by_token(db, "missing") is None


class TestPurchaseRoutes:
    def test_create_returns_deep_link(self, client, buyer, make_book):
        _, headers = buyer
        book = make_book()

        resp = client.post(
            "/api/purchases",
            json={"item_type": "book", "item_id": book.id, "amount": book.price},
            headers=headers,
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["purchase"]["status"] == "pending_initiation"
        assert body["telegram_url"].startswith("https://t.me/")
        assert "?start=" in body["telegram_url"]

    def test_requires_authentication(self, client, make_book):
        book = make_book()
        resp = client.post("/api/purchases", json={"item_type": "book", "item_id": book.id, "amount": 1})
        assert resp.status_code == 401

    def test_duplicate_is_409(self, client, buyer, make_book):
        _, headers = buyer
        book = make_book()
        payload = {"item_type": "book", "item_id": book.id, "amount": book.price}
        client.post("/api/purchases", json=payload, headers=headers)

        resp = client.post("/api/purchases", json=payload, headers=headers)
        assert resp.status_code == 409

    def test_other_users_purchase_is_forbidden(self, client, db, buyer, make_user, make_book):
        profile, _ = buyer
        _, other_headers = make_user(email="other@astewai.test")
        _, admin_headers = make_user(email="boss@astewai.test", role="admin")
        purchase = purchase_service.create_purchase(db, profile.id, "book", make_book().id, 12.5)

        assert client.get(f"/api/purchases/{purchase.id}", headers=other_headers).status_code == 403
        assert client.get(f"/api/purchases/{purchase.id}", headers=admin_headers).status_code == 200
