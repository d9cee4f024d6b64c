"""
Pytest configuration and shared fixtures.

Fixtures available to all tests:
  • db            — a session on a fresh in-memory schema
  • client        — FastAPI TestClient for ``bookstore.app``
  • make_user     — create a profile, returns (profile, auth headers)
  • make_book     — create a catalog book
  • make_bundle   — create a bundle over existing books
"""

from __future__ import annotations

import os
import sys
import tempfile

import pytest

# Ensure the project root is on the path so all bookstore imports resolve.
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# Configuration is read at import time.
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["STORAGE_DIR"] = tempfile.mkdtemp(prefix="astewai-storage-")
os.environ["AUTH_SECRET"] = "test-secret"
os.environ["PASSWORD_HASH_ITERATIONS"] = "1000"
os.environ["PUBLIC_BASE_URL"] = "http://testserver"
os.environ["ADMIN_EMAILS"] = "admin@astewai.test"
os.environ["REDIS_URL"] = ""
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["GOOGLE_VISION_API_KEY"] = ""
os.environ["SMTP_HOST"] = ""

from bookstore.auth import create_token, hash_password  # noqa: E402
from bookstore.cache_backend import reset_cache_backend_for_tests  # noqa: E402
from bookstore.database import Base, Book, Bundle, Profile, engine, get_db  # noqa: E402
from bookstore.metrics import reset_metrics_for_tests  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_state():
    Base.metadata.create_all(bind=engine)
    reset_cache_backend_for_tests()
    reset_metrics_for_tests()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = get_db()
    yield session
    session.close()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from bookstore.app import app

    return TestClient(app)


def auth_headers(profile: Profile) -> dict:
    token = create_token({"id": profile.id, "email": profile.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(db):
    def _factory(email: str = "reader@astewai.test", role: str = "user", name: str = "Reader"):
        profile = Profile(
            email=email,
            password_hash=hash_password("correct-horse", iterations=1000),
            display_name=name,
            role=role,
        )
        db.add(profile)
        db.commit()
        return profile, auth_headers(profile)
    return _factory


@pytest.fixture
def make_book(db):
    def _factory(title: str = "Fikir Eske Mekabir", price: float = 12.5, **kwargs):
        values = {
            "author": "Haddis Alemayehu",
            "is_free": False,
            "status": "approved",
            "content_url": "http://testserver/storage/books/content/1-book.pdf",
        }
        values.update(kwargs)
        book = Book(title=title, price=price, **values)
        db.add(book)
        db.commit()
        return book
    return _factory


@pytest.fixture
def make_bundle(db):
    def _factory(books, price: float = 20.0, title: str = "Classics Bundle"):
        bundle = Bundle(title=title, price=price)
        bundle.books = list(books)
        db.add(bundle)
        db.commit()
        return bundle
    return _factory
