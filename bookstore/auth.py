"""
Email/password authentication for the Astewai Bookstore API.

Flow:
  1. POST /api/auth/register  -> profile created, token issued
  2. POST /api/auth/login     -> token issued (rate limited per email)
  3. Protected routes depend on ``require_user`` / ``require_admin``
  4. Frontend checks /api/auth/me to see if logged in

Authentication supports two modes:
  - Bearer token via Authorization header (cross-domain SPA deployment)
  - Signed session cookie (same-origin)

The admin role is always re-read from the database, never trusted from the
token payload, so a demotion takes effect on the next request.
"""

import asyncio
import base64
import hashlib
import hmac
import json
import logging
import os
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError

from bookstore import config
from bookstore.database import Profile, get_db, get_profile, get_profile_by_email
from bookstore.rate_limiter import check_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

COOKIE_NAME = "astewai_session"


# ---------------------------------------------------------------------------
# Password hashing (PBKDF2-SHA256)
# ---------------------------------------------------------------------------

def hash_password(password: str, iterations: Optional[int] = None) -> str:
    iterations = iterations or config.PASSWORD_HASH_ITERATIONS
    salt = os.urandom(16).hex()
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), bytes.fromhex(salt), iterations
    ).hex()
    return f"pbkdf2_sha256${iterations}${salt}${digest}"


def verify_password(password: str, stored: str) -> bool:
    try:
        algo, iters, salt, digest = stored.split("$", 3)
    except (ValueError, AttributeError):
        return False
    if algo != "pbkdf2_sha256":
        return False
    try:
        iterations = int(iters)
    except ValueError:
        return False
    candidate = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), bytes.fromhex(salt), iterations
    ).hex()
    return hmac.compare_digest(candidate, digest)


# ---------------------------------------------------------------------------
# HMAC-signed session tokens (no external JWT dependency)
# ---------------------------------------------------------------------------

def _sign(payload_bytes: bytes) -> str:
    """Create HMAC-SHA256 signature."""
    return hmac.new(config.AUTH_SECRET.encode(), payload_bytes, hashlib.sha256).hexdigest()


def create_token(user: dict, expires_in: Optional[int] = None) -> str:
    """Create a signed session token from profile data."""
    ttl = config.SESSION_EXPIRY_SECONDS if expires_in is None else expires_in
    payload = {
        "sub": user["id"],
        "email": user["email"],
        "exp": int(time.time()) + ttl,
    }
    payload_b64 = base64.urlsafe_b64encode(json.dumps(payload).encode()).decode()
    sig = _sign(payload_b64.encode())
    return f"{payload_b64}.{sig}"


def decode_token(token: str) -> Optional[dict]:
    """Decode and verify a signed session token."""
    try:
        parts = token.split(".", 1)
        if len(parts) != 2:
            return None
        payload_b64, sig = parts
        expected_sig = _sign(payload_b64.encode())
        if not hmac.compare_digest(sig, expected_sig):
            return None
        payload = json.loads(base64.urlsafe_b64decode(payload_b64))
        if payload.get("exp", 0) < time.time():
            return None
        return payload
    except (ValueError, TypeError, AttributeError):
        return None


def get_current_user(request: Request) -> Optional[dict]:
    """Extract the current user from Bearer token or session cookie."""
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        user = decode_token(auth_header[7:])
        if user:
            return user
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return decode_token(token)
    return None


# ---------------------------------------------------------------------------
# Route dependencies
# ---------------------------------------------------------------------------

def _profile_dict(profile: Profile) -> dict:
    return {
        "id": profile.id,
        "email": profile.email,
        "display_name": profile.display_name,
        "avatar_url": profile.avatar_url,
        "role": profile.role,
        "reading_preferences": profile.reading_preferences or {},
        "created_at": profile.created_at.isoformat() if profile.created_at else None,
    }


async def require_user(request: Request) -> dict:
    """Dependency: the authenticated caller as ``{"id", "email"}``, else 401."""
    payload = get_current_user(request)
    if not payload:
        raise HTTPException(status_code=401, detail="Authentication required")
    return {"id": payload["sub"], "email": payload.get("email")}


async def optional_user(request: Request) -> Optional[dict]:
    payload = get_current_user(request)
    if not payload:
        return None
    return {"id": payload["sub"], "email": payload.get("email")}


async def require_admin(user: dict = Depends(require_user)) -> dict:
    """Dependency: the caller's profile if its role is admin, else 403."""
    def _sync():
        db = get_db()
        try:
            profile = get_profile(db, user["id"])
            return _profile_dict(profile) if profile else None
        finally:
            db.close()

    profile = await asyncio.to_thread(_sync)
    if not profile or profile["role"] != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return profile


def is_admin(user_id: str) -> bool:
    """Blocking role lookup for routes that widen access for admins."""
    db = get_db()
    try:
        profile = get_profile(db, user_id)
        return bool(profile and profile.role == "admin")
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(min_length=8, max_length=256)
    display_name: Optional[str] = Field(default=None, max_length=120)


class LoginRequest(BaseModel):
    email: str
    password: str


def _token_response(profile: dict) -> JSONResponse:
    token = create_token(profile)
    response = JSONResponse({"token": token, "user": profile})
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=config.SESSION_EXPIRY_SECONDS,
        httponly=True,
        samesite="lax",
    )
    return response


@router.post("/register", status_code=201)
async def register(body: RegisterRequest):
    """Create a profile. Emails listed in ADMIN_EMAILS become admins."""
    email = body.email.strip().lower()

    def _sync():
        db = get_db()
        try:
            if get_profile_by_email(db, email):
                return None
            profile = Profile(
                email=email,
                password_hash=hash_password(body.password),
                display_name=body.display_name or email.split("@", 1)[0],
                role="admin" if email in config.ADMIN_EMAILS else "user",
            )
            db.add(profile)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return None
            return _profile_dict(profile)
        finally:
            db.close()

    profile = await asyncio.to_thread(_sync)
    if profile is None:
        raise HTTPException(status_code=409, detail="An account with this email already exists")
    logger.info("Registered profile %s (role=%s)", profile["id"], profile["role"])
    response = _token_response(profile)
    response.status_code = 201
    return response


@router.post("/login")
async def login(body: LoginRequest):
    email = body.email.strip().lower()
    allowed, _ = check_rate_limit("login", email, config.LOGIN_RATE_LIMIT_PER_MINUTE)
    if not allowed:
        raise HTTPException(status_code=429, detail="Too many login attempts. Try again in a minute.")

    def _sync():
        db = get_db()
        try:
            profile = get_profile_by_email(db, email)
            if not profile or not verify_password(body.password, profile.password_hash):
                return None
            return _profile_dict(profile)
        finally:
            db.close()

    profile = await asyncio.to_thread(_sync)
    if profile is None:
        logger.warning("Failed login for %s", email)
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return _token_response(profile)


@router.get("/me")
async def me(user: dict = Depends(require_user)):
    """Return the current logged-in profile, or 401 if not authenticated."""
    def _sync():
        db = get_db()
        try:
            profile = get_profile(db, user["id"])
            return _profile_dict(profile) if profile else None
        finally:
            db.close()

    profile = await asyncio.to_thread(_sync)
    if not profile:
        raise HTTPException(status_code=401, detail="Not authenticated.")
    return profile


@router.post("/logout")
async def logout():
    """Clear the session cookie."""
    response = JSONResponse({"status": "logged_out"})
    response.delete_cookie(COOKIE_NAME)
    return response
