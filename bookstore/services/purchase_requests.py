"""
Contact-flow purchase requests reviewed by an admin.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from bookstore.core.constants import LIVE_PURCHASE_REQUEST_STATUSES, PURCHASE_REQUEST_TRANSITIONS
from bookstore.database import PurchaseRequest
from bookstore.domain.enums import NotificationKind, PurchaseRequestStatus
from bookstore.errors import BadRequest, Conflict, Forbidden, InvalidTransition, NotFound
from bookstore.services.catalog import resolve_priced_item
from bookstore.services.library import grant_item_access
from bookstore.services.notifications import add_notification

logger = logging.getLogger(__name__)


def create_request(
    db: Session,
    user_id: str,
    item_type: str,
    item_id: str,
    amount: float,
    user_message: Optional[str] = None,
    preferred_contact_method: Optional[str] = None,
) -> PurchaseRequest:
    resolve_priced_item(db, item_type, item_id, amount)
    live = (
        db.query(PurchaseRequest)
        .filter(
            PurchaseRequest.user_id == user_id,
            PurchaseRequest.item_type == item_type,
            PurchaseRequest.item_id == item_id,
            PurchaseRequest.status.in_(LIVE_PURCHASE_REQUEST_STATUSES),
        )
        .first()
    )
    if live:
        raise Conflict("You already have an open request for this item")
    row = PurchaseRequest(
        user_id=user_id,
        item_type=item_type,
        item_id=item_id,
        amount=float(amount),
        user_message=user_message,
        preferred_contact_method=preferred_contact_method,
    )
    db.add(row)
    db.commit()
    logger.info("Purchase request %s created by %s", row.id, user_id)
    return row


def get_request_for(db: Session, request_id: str, user_id: str, admin: bool) -> PurchaseRequest:
    row = db.get(PurchaseRequest, request_id)
    if not row:
        raise NotFound("Purchase request not found")
    if not admin and row.user_id != user_id:
        raise Forbidden("Not your purchase request")
    return row


def list_requests(db: Session, user_id: Optional[str] = None, status: Optional[str] = None) -> List[PurchaseRequest]:
    q = db.query(PurchaseRequest)
    if user_id:
        q = q.filter(PurchaseRequest.user_id == user_id)
    if status:
        q = q.filter(PurchaseRequest.status == status)
    return q.order_by(PurchaseRequest.created_at.desc()).all()


def update_status(
    db: Session,
    request_id: str,
    new_status: str,
    admin_notes: Optional[str] = None,
) -> PurchaseRequest:
    """Admin status change through the transition table; approval grants access."""
    row = db.get(PurchaseRequest, request_id)
    if not row:
        raise NotFound("Purchase request not found")
    try:
        target = PurchaseRequestStatus(new_status)
    except ValueError:
        raise BadRequest(f"Unknown status: {new_status}")
    if target.value not in PURCHASE_REQUEST_TRANSITIONS.get(row.status, ()):
        raise InvalidTransition(row.status, target.value, status_code=400)

    now = datetime.utcnow()
    try:
        row.status = target.value
        if admin_notes is not None:
            row.admin_notes = admin_notes
        if target is PurchaseRequestStatus.CONTACTED:
            row.contacted_at = now
        if target in (PurchaseRequestStatus.APPROVED, PurchaseRequestStatus.REJECTED):
            row.responded_at = now
        if target is PurchaseRequestStatus.APPROVED:
            grant_item_access(db, row.user_id, row.item_type, row.item_id)
        add_notification(
            db, row.user_id, NotificationKind.REQUEST_UPDATED.value,
            f"Purchase request {target.value}",
            admin_notes or "",
            {"purchase_request_id": row.id, "status": target.value},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Purchase request %s -> %s", row.id, target.value)
    return row


def patch_request(
    db: Session,
    row: PurchaseRequest,
    is_owner: bool,
    admin: bool,
    user_message: Optional[str] = None,
    admin_notes: Optional[str] = None,
) -> PurchaseRequest:
    """Edit free-text fields only; status is never touched here."""
    if user_message is not None:
        if not is_owner:
            raise Forbidden("Only the requester can edit the message")
        row.user_message = user_message
    if admin_notes is not None:
        if not admin:
            raise Forbidden("Only admins can edit admin notes")
        row.admin_notes = admin_notes
    db.commit()
    return row


def delete_request(db: Session, row: PurchaseRequest, admin: bool) -> None:
    if not admin and row.status != PurchaseRequestStatus.PENDING.value:
        raise Conflict("Only pending requests can be deleted")
    db.delete(row)
    db.commit()


def status_counts(db: Session, user_id: Optional[str] = None) -> Dict[str, int]:
    q = db.query(PurchaseRequest.status, func.count(PurchaseRequest.id))
    if user_id:
        q = q.filter(PurchaseRequest.user_id == user_id)
    counts = {s.value: 0 for s in PurchaseRequestStatus}
    for status, n in q.group_by(PurchaseRequest.status).all():
        counts[status] = int(n)
    counts["total"] = sum(v for k, v in counts.items() if k != "total")
    return counts
