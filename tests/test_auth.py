"""Tests for registration, login, session tokens and the profile endpoints."""

from __future__ import annotations

import pytest

from bookstore import auth
from bookstore.auth import COOKIE_NAME, create_token, decode_token, hash_password, verify_password


class TestPasswords:
    def test_hash_round_trip(self):
        stored = hash_password("correct-horse", iterations=1000)
        assert stored.startswith("pbkdf2_sha256$1000$")
        assert verify_password("correct-horse", stored)
        assert not verify_password("wrong-horse", stored)

    @pytest.mark.parametrize("stored", ["", "plain", "md5$1$aa$bb", "pbkdf2_sha256$many$aa$bb"])
    def test_malformed_hashes_never_verify(self, stored):
        assert verify_password("anything", stored) is False


class TestTokens:
    def test_token_carries_subject(self):
        payload = decode_token(create_token({"id": "u1", "email": "a@b.c"}))
        assert payload["sub"] == "u1"
        assert payload["email"] == "a@b.c"

    def test_tampered_token_is_rejected(self):
        token = create_token({"id": "u1", "email": "a@b.c"})
        body, sig = token.split(".")
        assert decode_token(f"{body}.{'0' * len(sig)}") is None
        assert decode_token("no-dot") is None

    def test_expired_token_is_rejected(self):
        assert decode_token(create_token({"id": "u1", "email": "a@b.c"}, expires_in=-5)) is None


class TestAuthRoutes:
    def test_register_issues_token_and_cookie(self, client):
        resp = client.post("/api/auth/register", json={"email": "Tigist@Example.com", "password": "long-enough"})

        assert resp.status_code == 201
        body = resp.json()
        assert body["user"]["email"] == "tigist@example.com"
        assert body["user"]["role"] == "user"
        assert body["user"]["display_name"] == "tigist"
        assert resp.cookies.get(COOKIE_NAME)

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.json()["id"] == body["user"]["id"]

    def test_admin_emails_register_as_admin(self, client):
        resp = client.post("/api/auth/register", json={"email": "admin@astewai.test", "password": "long-enough"})
        assert resp.json()["user"]["role"] == "admin"

    def test_duplicate_email(self, client):
        body = {"email": "dup@example.com", "password": "long-enough"}
        client.post("/api/auth/register", json=body)
        assert client.post("/api/auth/register", json=body).status_code == 409

    @pytest.mark.parametrize("body", [
        {"email": "not-an-email", "password": "long-enough"},
        {"email": "a@b.co", "password": "short"},
    ])
    def test_register_validation(self, client, body):
        assert client.post("/api/auth/register", json=body).status_code == 422

    def test_login(self, client, make_user):
        make_user(email="reader@astewai.test")

        ok = client.post("/api/auth/login", json={"email": "READER@astewai.test", "password": "correct-horse"})
        assert ok.status_code == 200
        assert ok.json()["user"]["email"] == "reader@astewai.test"

        bad = client.post("/api/auth/login", json={"email": "reader@astewai.test", "password": "nope"})
        assert bad.status_code == 401

    def test_login_is_rate_limited_per_email(self, client, make_user, monkeypatch):
        monkeypatch.setattr(auth.config, "LOGIN_RATE_LIMIT_PER_MINUTE", 2)
        make_user()
        body = {"email": "reader@astewai.test", "password": "nope"}

        assert client.post("/api/auth/login", json=body).status_code == 401
        assert client.post("/api/auth/login", json=body).status_code == 401
        assert client.post("/api/auth/login", json=body).status_code == 429

    def test_cookie_session_and_logout(self, client):
        client.post("/api/auth/register", json={"email": "cookie@example.com", "password": "long-enough"})

        assert client.get("/api/auth/me").status_code == 200

        client.post("/api/auth/logout")
        assert client.get("/api/auth/me").status_code == 401

    def test_me_for_deleted_profile(self, client, db, make_user):
        profile, headers = make_user()
        db.delete(profile)
        db.commit()

        assert client.get("/api/auth/me", headers=headers).status_code == 401


class TestProfileRoutes:
    def test_get_and_update(self, client, make_user):
        _, headers = make_user()

        assert client.get("/api/profile", headers=headers).json()["display_name"] == "Reader"

        resp = client.put(
            "/api/profile",
            json={"display_name": "Abebe", "reading_preferences": {"font_size": 18}},
            headers=headers,
        )
        assert resp.json()["display_name"] == "Abebe"
        assert resp.json()["reading_preferences"] == {"font_size": 18}
        assert client.get("/api/profile", headers=headers).json()["display_name"] == "Abebe"

    def test_requires_login(self, client):
        assert client.get("/api/profile").status_code == 401
