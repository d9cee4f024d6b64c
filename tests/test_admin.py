"""Tests for the admin catalog, payment and user endpoints."""

from __future__ import annotations

import pytest

from bookstore.database import (
    AutoMatchingRule,
    Book,
    Notification,
    PaymentConfig,
    Purchase,
    UserLibrary,
    WalletConfig,
)
from bookstore.services import payments as payment_service
from bookstore.services import purchases as purchase_service
from bookstore.services import storage


@pytest.fixture
def admin(make_user):
    return make_user(email="boss@astewai.test", role="admin", name="Boss")


class TestAdminGuard:
    def test_regular_users_are_refused(self, client, make_user):
        _, headers = make_user()
        assert client.get("/api/admin/stats", headers=headers).status_code == 403
        assert client.get("/api/admin/stats").status_code == 401

    def test_demoted_admin_loses_access_immediately(self, client, db, admin):
        profile, headers = admin
        assert client.get("/api/admin/stats", headers=headers).status_code == 200

        profile.role = "user"
        db.commit()

        assert client.get("/api/admin/stats", headers=headers).status_code == 403


class TestAdminBooks:
    def test_create_update_delete(self, client, db, admin):
        _, headers = admin

        created = client.post(
            "/api/admin/books",
            json={"title": "Oromay", "author": "Bealu Girma", "price": 15.0, "tags": ["classic"]},
            headers=headers,
        )
        assert created.status_code == 201
        book_id = created.json()["id"]
        assert created.json()["status"] == "approved"

        updated = client.put(f"/api/admin/books/{book_id}", json={"is_free": True}, headers=headers)
        assert updated.json()["is_free"] is True
        assert updated.json()["price"] == 0.0

        assert client.put(f"/api/admin/books/{book_id}", json={"price": -1}, headers=headers).status_code == 422
        assert client.put(f"/api/admin/books/{book_id}", json={"title": None}, headers=headers).status_code == 422
        assert client.delete(f"/api/admin/books/{book_id}", headers=headers).json()["status"] == "deleted"
        assert client.delete(f"/api/admin/books/{book_id}", headers=headers).status_code == 404

    def test_upload_stores_files(self, client, db, admin):
        _, headers = admin

        resp = client.post(
            "/api/admin/books/upload",
            data={"title": "Kadmas Bashager", "author": "Bealu Girma", "price": "15", "tags": "amharic, poetry"},
            files={
                "cover": ("cover.png", b"\x89PNG cover", "image/png"),
                "content": ("book.pdf", b"%PDF-1.4 body", "application/pdf"),
            },
            headers=headers,
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["tags"] == ["amharic", "poetry"]
        assert body["cover_image_url"].startswith("http://testserver/storage/covers/cover/")
        bucket, path = storage.parse_public_url(body["content_url"])
        assert storage.read_bytes(bucket, path) == b"%PDF-1.4 body"
        assert client.get(body["content_url"].replace("http://testserver", "")).status_code == 404

    def test_upload_rejects_wrong_cover_type(self, client, db, admin):
        _, headers = admin

        resp = client.post(
            "/api/admin/books/upload",
            data={"title": "T", "author": "A"},
            files={"cover": ("cover.pdf", b"%PDF", "application/pdf")},
            headers=headers,
        )

        assert resp.status_code == 400
        assert resp.json()["detail"].startswith("Cover: Invalid file type")
        assert db.query(Book).count() == 0

    def test_bulk_price_update_reports_each_id(self, client, db, admin, make_book):
        _, headers = admin
        book = make_book()

        resp = client.post(
            "/api/admin/books/bulk",
            json={"action": "update_price", "book_ids": [book.id, "missing"], "value": 9.0},
            headers=headers,
        )

        body = resp.json()
        assert (body["succeeded"], body["failed"]) == (1, 1)
        db.expire_all()
        assert db.get(Book, book.id).price == 9.0

    def test_bulk_delete_removes_files(self, client, db, admin, make_book):
        _, headers = admin
        book = make_book()
        storage.save_bytes("books", "content/1-book.pdf", b"%PDF")

        resp = client.post("/api/admin/books/bulk", json={"action": "delete", "book_ids": [book.id]}, headers=headers)

        assert resp.json()["succeeded"] == 1
        assert "files" not in resp.json()["results"][0]
        with pytest.raises(FileNotFoundError):
            storage.read_bytes("books", "content/1-book.pdf")

    def test_bulk_rejects_unknown_action(self, client, admin, make_book):
        _, headers = admin
        resp = client.post(
            "/api/admin/books/bulk", json={"action": "burn", "book_ids": [make_book().id]}, headers=headers,
        )
        assert resp.status_code == 400


class TestAdminBundles:
    def test_create_validates_pricing(self, client, admin, make_book):
        _, headers = admin
        ids = [make_book(title="A", price=12.5).id, make_book(title="B", price=10.0).id]

        too_dear = client.post("/api/admin/bundles", json={"title": "Pair", "price": 25.0, "book_ids": ids},
                               headers=headers)
        assert too_dear.status_code == 400
        assert "cannot exceed" in too_dear.json()["detail"]

        ok = client.post("/api/admin/bundles", json={"title": "Pair", "price": 20.0, "book_ids": ids},
                         headers=headers)
        assert ok.status_code == 201
        assert ok.json()["book_count"] == 2
        assert ok.json()["warnings"] == []

        missing = client.post("/api/admin/bundles", json={"title": "X", "price": 5.0, "book_ids": ["nope"]},
                              headers=headers)
        assert missing.status_code == 400

    def test_update_and_delete(self, client, admin, make_book, make_bundle):
        _, headers = admin
        bundle = make_bundle([make_book(title="A", price=12.5), make_book(title="B", price=10.0)])
        extra = make_book(title="C", price=30.0)

        resp = client.put(f"/api/admin/bundles/{bundle.id}",
                          json={"price": 40.0, "book_ids": [b.id for b in bundle.books] + [extra.id]},
                          headers=headers)
        assert resp.status_code == 200
        assert resp.json()["book_count"] == 3

        assert client.put(f"/api/admin/bundles/{bundle.id}", json={"price": None}, headers=headers).status_code == 422
        assert client.delete(f"/api/admin/bundles/{bundle.id}", headers=headers).status_code == 200
        assert client.get(f"/api/bundles/{bundle.id}").status_code == 404

    def test_pricing_recommendations(self, client, admin, make_book):
        _, headers = admin
        a = make_book(title="A", price=60.0)
        b = make_book(title="B", price=40.0)

        resp = client.get("/api/admin/bundles/pricing-recommendations",
                          params={"book_ids": f"{a.id},{b.id}"}, headers=headers)

        assert resp.json()["bookCount"] == 2
        assert resp.json()["recommendations"]["moderate"] == 85.0
        assert client.get("/api/admin/bundles/pricing-recommendations", params={"book_ids": "x"},
                          headers=headers).status_code == 404

    def test_analytics(self, client, db, admin, make_user, make_book, make_bundle):
        _, headers = admin
        buyer, _ = make_user()
        bundle = make_bundle([make_book(title="A", price=12.5), make_book(title="B", price=10.0)])
        purchase = purchase_service.create_purchase(db, buyer.id, "bundle", bundle.id, 20.0)
        purchase_service.bind_telegram_chat(db, purchase, "555", None)
        purchase_service.approve_purchase(db, purchase.id)

        body = client.get(f"/api/admin/bundles/{bundle.id}/analytics", headers=headers).json()

        assert body["savings"] == 2.5
        assert body["purchases"]["completed"] == 1
        assert body["purchases"]["revenue"] == 20.0
        assert body["purchases"]["conversionRate"] == 100.0
        assert body["requests"]["total"] == 0


class TestAdminPurchases:
    def _awaiting(self, db, make_user, make_book, chat_id="555"):
        buyer, _ = make_user()
        purchase = purchase_service.create_purchase(db, buyer.id, "book", make_book(price=10.0).id, 10.0)
        purchase_service.bind_telegram_chat(db, purchase, chat_id, None)
        return buyer, purchase

    def test_approve_grants_and_reports_notice(self, client, db, admin, make_user, make_book):
        _, headers = admin
        buyer, purchase = self._awaiting(db, make_user, make_book)

        resp = client.post("/api/admin/approve-purchase",
                           json={"purchase_id": purchase.id, "admin_notes": "seen in CBE"}, headers=headers)

        assert resp.status_code == 200
        assert resp.json()["purchase"]["status"] == "completed"
        assert resp.json()["telegram_notified"] is False
        db.expire_all()
        assert db.query(UserLibrary).filter_by(user_id=buyer.id).count() == 1

    def test_approve_twice_conflicts(self, client, db, admin, make_user, make_book):
        _, headers = admin
        _, purchase = self._awaiting(db, make_user, make_book)
        client.post("/api/admin/approve-purchase", json={"purchase_id": purchase.id}, headers=headers)

        again = client.post("/api/admin/approve-purchase", json={"purchase_id": purchase.id}, headers=headers)

        assert again.status_code == 409

    def test_reject_sends_telegram_notice(self, client, db, admin, make_user, make_book, monkeypatch):
        from bookstore.routers import admin_payments

        sent = []

        class _Client:
            async def send_message(self, chat_id, text, parse_mode="Markdown"):
                sent.append((chat_id, text))
                return True

        monkeypatch.setattr(admin_payments.TelegramClient, "from_config", classmethod(lambda cls: _Client()))
        _, headers = admin
        _, purchase = self._awaiting(db, make_user, make_book)

        resp = client.post("/api/admin/reject-purchase",
                           json={"purchase_id": purchase.id, "reason": "No transfer found"}, headers=headers)

        assert resp.json()["telegram_notified"] is True
        assert sent[0][0] == "555"
        assert "No transfer found" in sent[0][1]
        db.expire_all()
        assert db.get(Purchase, purchase.id).status == "rejected"

    def test_list_filters_by_status(self, client, db, admin, make_user, make_book):
        _, headers = admin
        self._awaiting(db, make_user, make_book)

        assert len(client.get("/api/admin/purchases", headers=headers).json()["purchases"]) == 1
        done = client.get("/api/admin/purchases", params={"status": "completed"}, headers=headers).json()
        assert done["purchases"] == []


class TestAdminPaymentConfig:
    def test_payment_config_crud(self, client, db, admin):
        _, headers = admin

        created = client.post(
            "/api/admin/payment-config",
            json={"config_type": "bank_account", "provider_name": "CBE",
                  "account_number": "1000123456789", "account_name": "Astewai"},
            headers=headers,
        )
        assert created.status_code == 201
        config_id = created.json()["id"]

        client.put(f"/api/admin/payment-config/{config_id}", json={"is_active": False}, headers=headers)
        db.expire_all()
        assert db.get(PaymentConfig, config_id).is_active is False

        listed = client.get("/api/admin/payment-config", headers=headers).json()["configs"]
        assert [c["provider_name"] for c in listed] == ["CBE"]

        assert client.delete(f"/api/admin/payment-config/{config_id}", headers=headers).status_code == 200
        assert client.delete(f"/api/admin/payment-config/{config_id}", headers=headers).status_code == 404

    def test_invalid_config_type(self, client, admin):
        _, headers = admin
        resp = client.post(
            "/api/admin/payment-config",
            json={"config_type": "cash", "provider_name": "X", "account_number": "1", "account_name": "Y"},
            headers=headers,
        )
        assert resp.status_code == 422

    def test_wallet_and_rule_crud(self, client, admin):
        _, headers = admin

        wallet = client.post(
            "/api/admin/payments/wallets",
            json={"wallet_name": "Telebirr", "wallet_type": "mobile_money",
                  "deep_link_template": "telebirr://pay?amount={amount}"},
            headers=headers,
        )
        assert wallet.status_code == 201
        renamed = client.put(f"/api/admin/payments/wallets/{wallet.json()['id']}",
                             json={"wallet_name": "telebirr SuperApp"}, headers=headers)
        assert renamed.json()["wallet_name"] == "telebirr SuperApp"
        assert client.put("/api/admin/payments/wallets/nope", json={}, headers=headers).status_code == 404

        rule = client.post(
            "/api/admin/payments/rules",
            json={"rule_name": "Exact", "rule_type": "amount_match", "conditions": {"tolerance_percentage": 2}},
            headers=headers,
        )
        assert rule.status_code == 201
        assert rule.json()["confidence_threshold"] == 0.7
        client.put(f"/api/admin/payments/rules/{rule.json()['id']}", json={"priority": 9}, headers=headers)
        rules = client.get("/api/admin/payments/rules", headers=headers).json()["rules"]
        assert rules[0]["priority"] == 9


    @pytest.mark.parametrize("model,path,field", [
        ("config", "/api/admin/payment-config", "provider_name"),
        ("config", "/api/admin/payment-config", "display_order"),
        ("wallet", "/api/admin/payments/wallets", "wallet_name"),
        ("rule", "/api/admin/payments/rules", "confidence_threshold"),
    ])
    def test_null_for_required_field_is_rejected(self, client, db, admin, model, path, field):
        _, headers = admin
        row = {
            "config": PaymentConfig(config_type="bank_account", provider_name="CBE",
                                    account_number="1000123456789", account_name="Astewai"),
            "wallet": WalletConfig(wallet_name="Telebirr", wallet_type="mobile_money"),
            "rule": AutoMatchingRule(rule_name="Exact", rule_type="amount_match"),
        }[model]
        db.add(row)
        db.commit()

        resp = client.put(f"{path}/{row.id}", json={field: None}, headers=headers)

        assert resp.status_code == 422
        assert "cannot be null" in resp.text
        assert "IntegrityError" not in resp.text

    def test_null_clears_optional_field(self, client, db, admin):
        _, headers = admin
        wallet = WalletConfig(wallet_name="Telebirr", wallet_type="mobile_money", instructions="Dial *127#")
        db.add(wallet)
        db.commit()

        resp = client.put(f"/api/admin/payments/wallets/{wallet.id}", json={"instructions": None}, headers=headers)

        assert resp.status_code == 200
        assert resp.json()["instructions"] is None

class TestAdminPayments:
    def test_list_stats_and_verify(self, client, db, admin, make_user, make_book):
        _, headers = admin
        buyer, _ = make_user()
        req, _ = payment_service.initiate_payment(db, buyer.id, "book", make_book().id, 12.5)

        listed = client.get("/api/admin/payments", params={"status": "pending"}, headers=headers).json()
        assert listed["total"] == 1

        verified = client.post(f"/api/admin/payments/{req.id}/verify",
                               json={"approve": True, "verification_method": "sms_verification"},
                               headers=headers)
        assert verified.json()["status"] == "completed"
        assert verified.json()["verification_method"] == "sms_verification"

        stats = client.get("/api/admin/payments/stats", headers=headers).json()
        assert stats["completed_requests"] == 1
        assert stats["total_amount"] == 12.5

    def test_verify_missing_request(self, client, admin):
        _, headers = admin
        resp = client.post("/api/admin/payments/nope/verify", json={"approve": False}, headers=headers)
        assert resp.status_code == 404


class TestAdminUsers:
    def test_search_and_role_change(self, client, db, admin, make_user):
        profile, headers = admin
        reader, _ = make_user(email="tigist@astewai.test", name="Tigist")

        found = client.get("/api/admin/users", params={"search": "tigi"}, headers=headers).json()
        assert [u["email"] for u in found["users"]] == ["tigist@astewai.test"]

        promoted = client.put(f"/api/admin/users/{reader.id}/role", json={"role": "admin"}, headers=headers)
        assert promoted.json()["role"] == "admin"

        self_demote = client.put(f"/api/admin/users/{profile.id}/role", json={"role": "user"}, headers=headers)
        assert self_demote.status_code == 400
        assert client.put("/api/admin/users/nope/role", json={"role": "user"}, headers=headers).status_code == 404

    def test_stats_and_analytics(self, client, db, admin, make_user, make_book):
        _, headers = admin
        buyer, _ = make_user()
        purchase = purchase_service.create_purchase(db, buyer.id, "book", make_book(price=10.0).id, 10.0)
        purchase_service.bind_telegram_chat(db, purchase, "555", None)
        purchase_service.approve_purchase(db, purchase.id)

        stats = client.get("/api/admin/stats", headers=headers).json()
        assert stats["totalUsers"] == 2
        assert stats["totalRevenue"] == 10.0
        assert stats["pendingPurchases"] == 0

        summary = client.get("/api/admin/analytics", params={"days": 7}, headers=headers).json()
        assert summary["totalRevenue"] == 10.0
        assert summary["topItems"][0]["title"] == "Fikir Eske Mekabir"

        export = client.get("/api/admin/analytics/export", headers=headers)
        assert export.headers["content-type"].startswith("text/csv")
        lines = export.text.strip().splitlines()
        assert lines[0] == "date,source,id,user_id,item_type,item_id,title,amount,status"
        assert "Fikir Eske Mekabir" in lines[1]

    def test_broadcast(self, client, db, admin, make_user):
        _, headers = admin
        reader, _ = make_user()

        everyone = client.post("/api/admin/notifications", json={"title": "New arrivals"}, headers=headers)
        assert everyone.json()["recipients"] == 2

        one = client.post("/api/admin/notifications",
                          json={"title": "Hi", "message": "Your order shipped", "user_id": reader.id},
                          headers=headers)
        assert one.json()["recipients"] == 1
        db.expire_all()
        assert db.query(Notification).filter_by(user_id=reader.id).count() == 2

        missing = client.post("/api/admin/notifications", json={"title": "Hi", "user_id": "nope"}, headers=headers)
        assert missing.status_code == 404
