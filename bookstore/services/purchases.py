"""
bookstore.services.purchases — Telegram-flow purchase lifecycle.

    pending_initiation ──/start <token>──▶ awaiting_payment
    awaiting_payment   ──PAID / photo───▶ pending_verification
    awaiting_payment | pending_verification ──admin approve──▶ completed
    any non-terminal   ──admin reject / sweep──▶ rejected

Every status change goes through ``_transition`` so a terminal purchase can
never move again. Approval and the library grant share one commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from bookstore import config
from bookstore.core.constants import LIVE_PURCHASE_STATUSES, PURCHASE_TRANSITIONS
from bookstore.core.utils import (
    generate_initiation_token,
    generate_transaction_reference,
    to_birr,
)
from bookstore.database import Book, Profile, Purchase, get_setting
from bookstore.domain.enums import ItemType, NotificationKind, PurchaseStatus
from bookstore.errors import Conflict, InvalidTransition, NotFound
from bookstore.services import email_sender
from bookstore.services.catalog import resolve_priced_item
from bookstore.services.library import grant_item_access
from bookstore.services.notifications import add_notification, display_name, send_user_email

logger = logging.getLogger(__name__)


@dataclass
class PurchaseInfo:
    """What the bot needs to render a purchase."""
    purchase: Purchase
    item_title: str
    amount_in_birr: float
    user: Optional[Profile]
    cover_image_url: Optional[str] = None

    def to_dict(self) -> dict:
        p = self.purchase
        return {
            "id": p.id,
            "itemType": p.item_type,
            "itemId": p.item_id,
            "itemTitle": self.item_title,
            "amount": p.amount,
            "amountInBirr": self.amount_in_birr,
            "status": p.status,
            "transactionReference": p.transaction_reference,
            "coverImageUrl": self.cover_image_url,
            "userId": p.user_id,
            "userName": display_name(self.user),
        }


def birr_rate(db: Session) -> float:
    """USD->Birr rate; the ``usd_to_birr_rate`` setting overrides the env default."""
    value = get_setting(db, "usd_to_birr_rate")
    try:
        return float(value) if value else config.USD_TO_BIRR_RATE
    except (TypeError, ValueError):
        return config.USD_TO_BIRR_RATE


def telegram_deep_link(token: str) -> str:
    return f"https://t.me/{config.TELEGRAM_BOT_USERNAME}?start={token}"


def _transition(purchase: Purchase, target: PurchaseStatus) -> None:
    allowed = PURCHASE_TRANSITIONS.get(purchase.status, ())
    if target.value not in allowed:
        raise InvalidTransition(purchase.status, target.value)
    purchase.status = target.value
    purchase.updated_at = datetime.utcnow()


# ---------------------------------------------------------------------------
# Creation and lookup
# ---------------------------------------------------------------------------

def create_purchase(db: Session, user_id: str, item_type: str, item_id: str, amount: float) -> Purchase:
    _item, title, _price = resolve_priced_item(db, item_type, item_id, amount)

    live = (
        db.query(Purchase)
        .filter(
            Purchase.user_id == user_id,
            Purchase.item_type == item_type,
            Purchase.item_id == item_id,
            Purchase.status.in_(LIVE_PURCHASE_STATUSES),
        )
        .first()
    )
    if live:
        raise Conflict("You already have a purchase for this item")

    purchase = Purchase(
        user_id=user_id,
        item_type=item_type,
        item_id=item_id,
        item_title=title,
        amount=float(amount),
        status=PurchaseStatus.PENDING_INITIATION.value,
        initiation_token=generate_initiation_token(),
        transaction_reference=generate_transaction_reference(),
    )
    db.add(purchase)
    db.commit()
    logger.info("Purchase %s created (%s %s) ref=%s", purchase.id, item_type, item_id, purchase.transaction_reference)
    return purchase


def _purchase_info(db: Session, purchase: Purchase) -> PurchaseInfo:
    cover = None
    title = purchase.item_title
    if purchase.item_type == ItemType.BOOK.value:
        book = db.get(Book, purchase.item_id)
        if book:
            cover = book.cover_image_url
            title = title or book.title
    return PurchaseInfo(
        purchase=purchase,
        item_title=title or "Unknown item",
        amount_in_birr=to_birr(purchase.amount, birr_rate(db)),
        user=purchase.user,
        cover_image_url=cover,
    )


def find_purchase_by_token(db: Session, token: str) -> Optional[PurchaseInfo]:
    if not token:
        return None
    purchase = db.query(Purchase).filter(Purchase.initiation_token == token).first()
    if not purchase:
        return None
    return _purchase_info(db, purchase)


def find_purchase_by_reference(db: Session, reference: str) -> Optional[PurchaseInfo]:
    purchase = db.query(Purchase).filter(Purchase.transaction_reference == reference.strip()).first()
    return _purchase_info(db, purchase) if purchase else None


def list_user_purchases(db: Session, user_id: str) -> List[Purchase]:
    return (
        db.query(Purchase)
        .filter(Purchase.user_id == user_id)
        .order_by(Purchase.created_at.desc())
        .all()
    )


# ---------------------------------------------------------------------------
# Telegram-driven transitions
# ---------------------------------------------------------------------------

def bind_telegram_chat(db: Session, purchase: Purchase, chat_id: str, telegram_user_id: Optional[str]) -> Purchase:
    """Attach the chat to the purchase; first contact moves it to awaiting_payment."""
    purchase.telegram_chat_id = str(chat_id)
    if telegram_user_id is not None:
        purchase.telegram_user_id = str(telegram_user_id)
    if purchase.status == PurchaseStatus.PENDING_INITIATION.value:
        _transition(purchase, PurchaseStatus.AWAITING_PAYMENT)
    db.commit()
    return purchase


def latest_awaiting_payment(db: Session, chat_id: str) -> Optional[Purchase]:
    return (
        db.query(Purchase)
        .filter(
            Purchase.telegram_chat_id == str(chat_id),
            Purchase.status == PurchaseStatus.AWAITING_PAYMENT.value,
        )
        .order_by(Purchase.updated_at.desc(), Purchase.created_at.desc())
        .first()
    )


def mark_payment_sent(db: Session, purchase: Purchase) -> Purchase:
    _transition(purchase, PurchaseStatus.PENDING_VERIFICATION)
    db.commit()
    return purchase


# ---------------------------------------------------------------------------
# Admin decisions
# ---------------------------------------------------------------------------

def approve_purchase(db: Session, purchase_id: str, admin_notes: Optional[str] = None) -> Purchase:
    """Complete the purchase and grant library access in one transaction."""
    purchase = db.get(Purchase, purchase_id)
    if not purchase:
        raise NotFound("Purchase not found")
    try:
        _transition(purchase, PurchaseStatus.COMPLETED)
        purchase.admin_notes = admin_notes or purchase.admin_notes
        grant_item_access(db, purchase.user_id, purchase.item_type, purchase.item_id)
        add_notification(
            db, purchase.user_id, NotificationKind.PURCHASE_APPROVED.value,
            "Purchase approved",
            f"{purchase.item_title or 'Your item'} is now in your library.",
            {"purchase_id": purchase.id, "reference": purchase.transaction_reference},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Purchase %s approved", purchase.id)
    send_user_email(purchase.user, email_sender.purchase_approved(
        display_name(purchase.user), purchase.item_title or "your item", purchase.transaction_reference,
    ))
    return purchase


def reject_purchase(db: Session, purchase_id: str, reason: Optional[str] = None) -> Purchase:
    purchase = db.get(Purchase, purchase_id)
    if not purchase:
        raise NotFound("Purchase not found")
    try:
        _transition(purchase, PurchaseStatus.REJECTED)
        purchase.admin_notes = reason or purchase.admin_notes
        add_notification(
            db, purchase.user_id, NotificationKind.PURCHASE_REJECTED.value,
            "Purchase rejected",
            reason or "Your payment could not be verified.",
            {"purchase_id": purchase.id, "reference": purchase.transaction_reference},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Purchase %s rejected: %s", purchase.id, reason)
    send_user_email(purchase.user, email_sender.purchase_rejected(
        display_name(purchase.user), purchase.item_title or "your item",
        purchase.transaction_reference, reason or "",
    ))
    return purchase


def expire_stale_initiations(db: Session, older_than_hours: int, now: Optional[datetime] = None) -> int:
    """Reject pending_initiation purchases nobody opened in Telegram."""
    cutoff = (now or datetime.utcnow()) - timedelta(hours=older_than_hours)
    stale = (
        db.query(Purchase)
        .filter(
            Purchase.status == PurchaseStatus.PENDING_INITIATION.value,
            Purchase.created_at < cutoff,
        )
        .all()
    )
    for purchase in stale:
        _transition(purchase, PurchaseStatus.REJECTED)
        purchase.admin_notes = "Initiation expired"
    db.commit()
    return len(stale)
