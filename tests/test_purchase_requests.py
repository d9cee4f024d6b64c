"""Tests for the contact-flow purchase requests."""

from __future__ import annotations

import pytest

from bookstore.database import Notification, PaymentConfig, UserLibrary
from bookstore.errors import BadRequest, Conflict, Forbidden
from bookstore.services import purchase_requests as request_service


class TestRequestService:
    def test_walks_the_status_table(self, db, make_user, make_book):
        profile, _ = make_user()
        book = make_book()
        row = request_service.create_request(db, profile.id, "book", book.id, book.price, "Please call", "telegram")
        assert row.status == "pending"

        request_service.update_status(db, row.id, "contacted")
        assert row.contacted_at is not None
        assert db.query(UserLibrary).count() == 0

        request_service.update_status(db, row.id, "approved", "paid in cash")
        assert row.responded_at is not None
        assert row.admin_notes == "paid in cash"
        assert db.query(UserLibrary).filter_by(user_id=profile.id, book_id=book.id).count() == 1

        request_service.update_status(db, row.id, "completed")
        assert row.status == "completed"
        assert db.query(Notification).filter_by(user_id=profile.id).count() == 3

    def test_pending_cannot_jump_to_approved(self, db, make_user, make_book):
        profile, _ = make_user()
        row = request_service.create_request(db, profile.id, "book", make_book().id, 12.5)

        with pytest.raises(Conflict) as exc:
            request_service.update_status(db, row.id, "approved")
        assert exc.value.status_code == 400
        assert row.status == "pending"

    def test_unknown_status(self, db, make_user, make_book):
        profile, _ = make_user()
        row = request_service.create_request(db, profile.id, "book", make_book().id, 12.5)
        with pytest.raises(BadRequest):
            request_service.update_status(db, row.id, "teleported")

    def test_duplicate_open_request(self, db, make_user, make_book):
        profile, _ = make_user()
        book = make_book()
        request_service.create_request(db, profile.id, "book", book.id, book.price)
        with pytest.raises(Conflict):
            request_service.create_request(db, profile.id, "book", book.id, book.price)

    def test_owner_may_only_delete_pending(self, db, make_user, make_book):
        profile, _ = make_user()
        row = request_service.create_request(db, profile.id, "book", make_book().id, 12.5)
        request_service.update_status(db, row.id, "contacted")

        with pytest.raises(Conflict):
            request_service.delete_request(db, row, admin=False)
        request_service.delete_request(db, row, admin=True)

    def test_patch_permissions(self, db, make_user, make_book):
        profile, _ = make_user()
        row = request_service.create_request(db, profile.id, "book", make_book().id, 12.5)

        with pytest.raises(Forbidden):
            request_service.patch_request(db, row, is_owner=True, admin=False, admin_notes="sneaky")
        with pytest.raises(Forbidden):
            request_service.patch_request(db, row, is_owner=False, admin=True, user_message="hi")

        request_service.patch_request(db, row, is_owner=True, admin=False, user_message="updated")
        assert row.user_message == "updated"

    def test_status_counts(self, db, make_user, make_book):
        profile, _ = make_user()
        a = request_service.create_request(db, profile.id, "book", make_book(title="A").id, 12.5)
        request_service.create_request(db, profile.id, "book", make_book(title="B").id, 12.5)
        request_service.update_status(db, a.id, "rejected")

        counts = request_service.status_counts(db, profile.id)

        assert counts["pending"] == 1
        assert counts["rejected"] == 1
        assert counts["approved"] == 0
        assert counts["total"] == 2


class TestRequestRoutes:
    def test_create_lists_payment_methods(self, client, db, make_user, make_book):
        _, headers = make_user()
        db.add(PaymentConfig(config_type="bank_account", provider_name="CBE",
                             account_number="1000123456789", account_name="Astewai"))
        db.commit()
        book = make_book()

        resp = client.post(
            "/api/purchase-requests",
            json={"item_type": "book", "item_id": book.id, "amount": book.price,
                  "preferred_contact_method": "whatsapp"},
            headers=headers,
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["request"]["preferred_contact_method"] == "whatsapp"
        assert [m["provider_name"] for m in body["payment_methods"]] == ["CBE"]

    def test_status_change_requires_admin(self, client, db, make_user, make_book):
        profile, headers = make_user()
        _, admin_headers = make_user(email="boss@astewai.test", role="admin")
        row = request_service.create_request(db, profile.id, "book", make_book().id, 12.5)

        assert client.put(f"/api/purchase-requests/{row.id}", json={"status": "contacted"},
                          headers=headers).status_code == 403
        resp = client.put(f"/api/purchase-requests/{row.id}", json={"status": "contacted"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "contacted"

        bad = client.put(f"/api/purchase-requests/{row.id}", json={"status": "completed"}, headers=admin_headers)
        assert bad.status_code == 400

    def test_listing_all_needs_admin(self, client, make_user):
        _, headers = make_user()
        assert client.get("/api/purchase-requests?all=true", headers=headers).status_code == 403
        assert client.get("/api/purchase-requests", headers=headers).json() == {"requests": []}
