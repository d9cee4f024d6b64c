"""
User notifications: the in-app row always, email when SMTP is configured.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from bookstore.database import Notification, Profile, PushSubscription
from bookstore.domain.enums import NotificationKind
from bookstore.errors import NotFound
from bookstore.metrics import increment_notifications_sent
from bookstore.services import email_sender

logger = logging.getLogger(__name__)


def add_notification(
    db: Session,
    user_id: str,
    kind: str,
    title: str,
    message: str = "",
    data: Optional[Dict[str, Any]] = None,
) -> Notification:
    """Stage an in-app notification on ``db``; the caller commits."""
    row = Notification(user_id=user_id, kind=kind, title=title, message=message, data=data or {})
    db.add(row)
    return row


def send_user_email(profile: Optional[Profile], email: Optional[Tuple[str, str]]) -> bool:
    """Best-effort email to ``profile``. Failures are logged, never raised."""
    if not email or not profile or not profile.email:
        return False
    if not email_sender.is_configured():
        logger.debug("SMTP not configured; skipping email to %s", profile.id)
        return False
    subject, body = email
    try:
        email_sender.send_email(profile.email, subject, body)
    except Exception as exc:
        logger.error("Email to %s failed: %s", profile.email, exc)
        return False
    increment_notifications_sent()
    return True


def display_name(profile: Optional[Profile]) -> str:
    if not profile:
        return "reader"
    return profile.display_name or (profile.email or "reader").split("@", 1)[0]


def list_notifications(db: Session, user_id: str, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    q = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.read.is_(False))
    return q.order_by(Notification.created_at.desc()).limit(max(1, min(200, limit))).all()


def mark_read(db: Session, user_id: str, notification_id: str) -> Notification:
    row = db.get(Notification, notification_id)
    if not row or row.user_id != user_id:
        raise NotFound("Notification not found")
    row.read = True
    db.commit()
    return row


def broadcast(
    db: Session,
    title: str,
    message: str,
    user_id: Optional[str] = None,
    kind: str = NotificationKind.ANNOUNCEMENT.value,
    data: Optional[Dict[str, Any]] = None,
) -> int:
    """In-app notification to one user, or every profile when ``user_id`` is None."""
    if user_id:
        if not db.get(Profile, user_id):
            raise NotFound("User not found")
        recipients = [user_id]
    else:
        recipients = [pid for (pid,) in db.query(Profile.id).all()]
    for rid in recipients:
        add_notification(db, rid, kind, title, message, data)
    db.commit()
    increment_notifications_sent(len(recipients))
    logger.info("Broadcast %r to %d user(s)", title, len(recipients))
    return len(recipients)


# ---------------------------------------------------------------------------
# Web push subscriptions (stored only)
# ---------------------------------------------------------------------------

def subscribe_push(
    db: Session,
    user_id: str,
    endpoint: str,
    p256dh: str,
    auth: str,
    user_agent: Optional[str] = None,
) -> PushSubscription:
    """Upsert by endpoint; a browser re-subscribing moves to the current user."""
    row = db.query(PushSubscription).filter(PushSubscription.endpoint == endpoint).first()
    if row is None:
        row = PushSubscription(endpoint=endpoint, user_id=user_id, p256dh=p256dh, auth=auth)
        db.add(row)
    row.user_id = user_id
    row.p256dh = p256dh
    row.auth = auth
    row.user_agent = user_agent
    db.commit()
    return row


def unsubscribe_push(db: Session, user_id: str, endpoint: str) -> bool:
    deleted = (
        db.query(PushSubscription)
        .filter(PushSubscription.endpoint == endpoint, PushSubscription.user_id == user_id)
        .delete()
    )
    db.commit()
    return bool(deleted)
