"""
bookstore.services.payments — Wallet/receipt payment requests.

    pending ──wallet chosen / receipt──▶ payment_initiated
            ──auto-match──────────────▶ payment_verified
            ──admin approve───────────▶ completed   (library access granted)
            ──admin reject────────────▶ failed

OCR runs outside any session (it is an HTTP call); its result is recorded
afterwards with ``record_ocr_result``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from bookstore import config
from bookstore.core.constants import OPEN_PAYMENT_REQUEST_STATUSES
from bookstore.database import (
    PaymentRequest,
    PaymentVerificationLog,
    Profile,
    WalletConfig,
    get_item,
)
from bookstore.domain.enums import (
    NotificationKind,
    PaymentStatus,
    VerificationLogStatus,
    VerificationMethod,
    VerificationType,
)
from bookstore.errors import BadRequest, Conflict, Forbidden, NotFound
from bookstore.services import email_sender
from bookstore.services.catalog import resolve_priced_item
from bookstore.services.library import grant_item_access
from bookstore.services.notifications import add_notification, display_name, send_user_email
from bookstore.services.ocr import OCRResult

logger = logging.getLogger(__name__)

_TERMINAL = (PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value, PaymentStatus.CANCELLED.value)


def render_deep_link(template: Optional[str], req: PaymentRequest) -> Optional[str]:
    if not template:
        return None
    return (
        template
        .replace("{amount}", f"{req.amount:g}")
        .replace("{reference}", req.id)
        .replace("{currency}", req.currency)
    )


def initiate_payment(
    db: Session,
    user_id: str,
    item_type: str,
    item_id: str,
    amount: float,
    currency: Optional[str] = None,
    wallet_id: Optional[str] = None,
) -> Tuple[PaymentRequest, Optional[str]]:
    """Open a payment request; returns it with the rendered wallet deep link."""
    resolve_priced_item(db, item_type, item_id, amount)

    wallet = None
    if wallet_id:
        wallet = db.get(WalletConfig, wallet_id)
        if not wallet or not wallet.is_active:
            raise BadRequest("Selected wallet is not available")

    open_req = (
        db.query(PaymentRequest)
        .filter(
            PaymentRequest.user_id == user_id,
            PaymentRequest.item_type == item_type,
            PaymentRequest.item_id == item_id,
            PaymentRequest.status.in_(OPEN_PAYMENT_REQUEST_STATUSES),
        )
        .first()
    )
    if open_req:
        raise Conflict("A payment for this item is already in progress")

    req = PaymentRequest(
        user_id=user_id,
        item_type=item_type,
        item_id=item_id,
        amount=float(amount),
        currency=(currency or config.DEFAULT_CURRENCY).upper(),
        status=PaymentStatus.PENDING.value,
        receipt_urls=[],
    )
    if wallet:
        req.selected_wallet_id = wallet.id
        req.deep_link_clicked_at = datetime.utcnow()
        req.status = PaymentStatus.PAYMENT_INITIATED.value
    db.add(req)
    db.commit()
    logger.info("Payment request %s initiated by %s for %s %s", req.id, user_id, item_type, item_id)
    return req, render_deep_link(wallet.deep_link_template if wallet else None, req)


def get_payment_for(db: Session, request_id: str, user_id: str, admin: bool = False) -> PaymentRequest:
    req = db.get(PaymentRequest, request_id)
    if not req:
        raise NotFound("Payment request not found")
    if not admin and req.user_id != user_id:
        raise Forbidden("Not your payment request")
    return req


def verification_logs(db: Session, request_id: str) -> List[PaymentVerificationLog]:
    return (
        db.query(PaymentVerificationLog)
        .filter(PaymentVerificationLog.payment_request_id == request_id)
        .order_by(PaymentVerificationLog.created_at.asc())
        .all()
    )


def record_receipt(db: Session, req: PaymentRequest, url: str) -> PaymentRequest:
    if req.status in _TERMINAL:
        raise Conflict(f"Payment request is already {req.status}")
    req.receipt_urls = list(req.receipt_urls or []) + [url]
    req.receipt_uploaded_at = datetime.utcnow()
    if req.status == PaymentStatus.PENDING.value:
        req.status = PaymentStatus.PAYMENT_INITIATED.value
    db.commit()
    return req


def record_ocr_result(db: Session, req: PaymentRequest, result: OCRResult) -> PaymentRequest:
    req.ocr_processed_at = datetime.utcnow()
    req.ocr_extracted_tx_id = result.extracted_tx_id
    req.ocr_extracted_amount = result.extracted_amount
    req.ocr_confidence_score = result.confidence_score
    req.ocr_raw_text = result.raw_text
    db.add(PaymentVerificationLog(
        payment_request_id=req.id,
        verification_type=VerificationType.OCR_PROCESSING.value,
        status=(VerificationLogStatus.FAILED if result.error and not result.raw_text
                else VerificationLogStatus.SUCCESS).value,
        details={k: v for k, v in result.to_dict().items() if k != "raw_text"},
        error_message=result.error,
    ))
    db.commit()
    return req


def confirm_manual(db: Session, req: PaymentRequest, tx_id: Optional[str], amount: Optional[float]) -> PaymentRequest:
    if req.status in _TERMINAL:
        raise Conflict(f"Payment request is already {req.status}")
    if not tx_id and amount is None:
        raise BadRequest("Provide a transaction id or an amount")
    if tx_id:
        req.manual_tx_id = tx_id.strip()
    if amount is not None:
        if amount <= 0:
            raise BadRequest("Invalid amount")
        req.manual_amount = float(amount)
    if req.status == PaymentStatus.PENDING.value:
        req.status = PaymentStatus.PAYMENT_INITIATED.value
    db.commit()
    return req


def _item_title(db: Session, req: PaymentRequest) -> str:
    item = get_item(db, req.item_type, req.item_id)
    return item.title if item else "your item"


def admin_verify(
    db: Session,
    request_id: str,
    admin_id: str,
    approve: bool,
    method: Optional[str] = None,
    notes: Optional[str] = None,
) -> PaymentRequest:
    """Complete (and grant) or fail a payment request; the user is emailed after commit."""
    req = db.get(PaymentRequest, request_id)
    if not req:
        raise NotFound("Payment request not found")
    if req.status in _TERMINAL:
        raise Conflict(f"Payment request is already {req.status}")
    method = method or VerificationMethod.MANUAL.value
    try:
        VerificationMethod(method)
    except ValueError:
        raise BadRequest(f"Unknown verification method: {method}")

    now = datetime.utcnow()
    title = _item_title(db, req)
    try:
        req.admin_verified_at = now
        req.admin_verified_by = admin_id
        req.admin_notes = notes
        req.verification_method = method
        if approve:
            req.status = PaymentStatus.COMPLETED.value
            grant_item_access(db, req.user_id, req.item_type, req.item_id)
        else:
            req.status = PaymentStatus.FAILED.value
        db.add(PaymentVerificationLog(
            payment_request_id=req.id,
            verification_type=VerificationType.ADMIN_VERIFICATION.value,
            status=(VerificationLogStatus.SUCCESS if approve else VerificationLogStatus.FAILED).value,
            details={"approve": approve, "verification_method": method, "admin_notes": notes},
            processed_by=admin_id,
        ))
        add_notification(
            db, req.user_id,
            (NotificationKind.PAYMENT_VERIFIED if approve else NotificationKind.PAYMENT_REJECTED).value,
            "Payment verified" if approve else "Payment not verified",
            f"{title}: {'added to your library' if approve else (notes or 'verification failed')}",
            {"payment_request_id": req.id},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Payment request %s %s by %s", req.id, "approved" if approve else "rejected", admin_id)
    profile = db.get(Profile, req.user_id)
    name = display_name(profile)
    email = (
        email_sender.payment_verified(name, title, req.amount, req.currency)
        if approve else
        email_sender.payment_rejected(name, title, req.amount, req.currency, notes or "")
    )
    send_user_email(profile, email)
    return req


def list_payment_requests(
    db: Session,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[PaymentRequest], int]:
    q = db.query(PaymentRequest)
    if status:
        q = q.filter(PaymentRequest.status == status)
    total = q.count()
    rows = q.order_by(PaymentRequest.created_at.desc()).offset(max(0, offset)).limit(max(1, min(100, limit))).all()
    return rows, total


def payment_stats(db: Session) -> Dict[str, float]:
    counts = dict(
        db.query(PaymentRequest.status, func.count(PaymentRequest.id))
        .group_by(PaymentRequest.status)
        .all()
    )
    completed_amount = (
        db.query(func.coalesce(func.sum(PaymentRequest.amount), 0.0))
        .filter(PaymentRequest.status == PaymentStatus.COMPLETED.value)
        .scalar()
    )
    auto_matched = db.query(func.count(PaymentRequest.id)).filter(PaymentRequest.auto_matched_at.isnot(None)).scalar()
    manual = (
        db.query(func.count(PaymentRequest.id))
        .filter(PaymentRequest.admin_verified_at.isnot(None), PaymentRequest.auto_matched_at.is_(None))
        .scalar()
    )
    durations = [
        (verified - created).total_seconds() / 3600.0
        for created, verified in (
            db.query(PaymentRequest.created_at, PaymentRequest.admin_verified_at)
            .filter(PaymentRequest.admin_verified_at.isnot(None))
            .all()
        )
        if created and verified
    ]
    pending = sum(int(counts.get(s, 0)) for s in OPEN_PAYMENT_REQUEST_STATUSES)
    return {
        "total_requests": int(sum(counts.values())),
        "pending_requests": pending,
        "completed_requests": int(counts.get(PaymentStatus.COMPLETED.value, 0)),
        "failed_requests": int(counts.get(PaymentStatus.FAILED.value, 0)),
        "auto_matched_requests": int(auto_matched or 0),
        "manual_verified_requests": int(manual or 0),
        "total_amount": round(float(completed_amount or 0.0), 2),
        "average_processing_time_hours": round(sum(durations) / len(durations), 2) if durations else 0.0,
    }
