"""
ORM row -> JSON dict helpers shared by the routers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from bookstore.database import (
    Book,
    Bundle,
    Notification,
    PaymentConfig,
    PaymentRequest,
    PaymentVerificationLog,
    Profile,
    Purchase,
    PurchaseRequest,
    UserLibrary,
    WalletConfig,
    AutoMatchingRule,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def book_dict(b: Book) -> dict:
    return {
        "id": b.id,
        "title": b.title,
        "author": b.author,
        "description": b.description,
        "cover_image_url": b.cover_image_url,
        "content_url": b.content_url,
        "price": b.price,
        "is_free": b.is_free,
        "category": b.category,
        "tags": b.tags or [],
        "status": b.status,
        "created_at": _iso(b.created_at),
        "updated_at": _iso(b.updated_at),
    }


def public_book_dict(b: Book) -> dict:
    """Book without its content URL; used where access is not checked."""
    data = book_dict(b)
    data.pop("content_url")
    return data


def bundle_summary(b: Bundle) -> dict:
    return {
        "id": b.id,
        "title": b.title,
        "description": b.description,
        "price": b.price,
        "cover_image_url": b.cover_image_url,
        "book_count": len(b.books),
        "created_at": _iso(b.created_at),
    }


def library_dict(entry: UserLibrary) -> dict:
    return {
        "id": entry.id,
        "book_id": entry.book_id,
        "status": entry.status,
        "progress": entry.progress,
        "last_read_position": entry.last_read_position,
        "added_at": _iso(entry.added_at),
        "last_read_at": _iso(entry.last_read_at),
        "book": public_book_dict(entry.book) if entry.book else None,
    }


def purchase_dict(p: Purchase) -> dict:
    return {
        "id": p.id,
        "user_id": p.user_id,
        "item_type": p.item_type,
        "item_id": p.item_id,
        "item_title": p.item_title,
        "amount": p.amount,
        "status": p.status,
        "transaction_reference": p.transaction_reference,
        "telegram_chat_id": p.telegram_chat_id,
        "admin_notes": p.admin_notes,
        "created_at": _iso(p.created_at),
        "updated_at": _iso(p.updated_at),
    }


def purchase_request_dict(r: PurchaseRequest) -> dict:
    return {
        "id": r.id,
        "user_id": r.user_id,
        "item_type": r.item_type,
        "item_id": r.item_id,
        "amount": r.amount,
        "status": r.status,
        "preferred_contact_method": r.preferred_contact_method,
        "user_message": r.user_message,
        "admin_notes": r.admin_notes,
        "contacted_at": _iso(r.contacted_at),
        "responded_at": _iso(r.responded_at),
        "created_at": _iso(r.created_at),
        "updated_at": _iso(r.updated_at),
    }


def payment_config_dict(c: PaymentConfig) -> dict:
    return {
        "id": c.id,
        "config_type": c.config_type,
        "provider_name": c.provider_name,
        "account_number": c.account_number,
        "account_name": c.account_name,
        "instructions": c.instructions,
        "is_active": c.is_active,
        "display_order": c.display_order,
    }


def wallet_dict(w: WalletConfig) -> dict:
    return {
        "id": w.id,
        "wallet_name": w.wallet_name,
        "wallet_type": w.wallet_type,
        "deep_link_template": w.deep_link_template,
        "tx_id_pattern": w.tx_id_pattern,
        "is_active": w.is_active,
        "display_order": w.display_order,
        "icon_url": w.icon_url,
        "instructions": w.instructions,
    }


def rule_dict(r: AutoMatchingRule) -> dict:
    return {
        "id": r.id,
        "rule_name": r.rule_name,
        "rule_type": r.rule_type,
        "conditions": r.conditions or {},
        "confidence_threshold": r.confidence_threshold,
        "is_active": r.is_active,
        "priority": r.priority,
    }


def payment_request_dict(r: PaymentRequest) -> dict:
    return {
        "id": r.id,
        "user_id": r.user_id,
        "item_type": r.item_type,
        "item_id": r.item_id,
        "amount": r.amount,
        "currency": r.currency,
        "status": r.status,
        "selected_wallet_id": r.selected_wallet_id,
        "deep_link_clicked_at": _iso(r.deep_link_clicked_at),
        "manual_tx_id": r.manual_tx_id,
        "manual_amount": r.manual_amount,
        "receipt_urls": r.receipt_urls or [],
        "receipt_uploaded_at": _iso(r.receipt_uploaded_at),
        "ocr_processed_at": _iso(r.ocr_processed_at),
        "ocr_extracted_tx_id": r.ocr_extracted_tx_id,
        "ocr_extracted_amount": r.ocr_extracted_amount,
        "ocr_confidence_score": r.ocr_confidence_score,
        "auto_matched_at": _iso(r.auto_matched_at),
        "auto_match_confidence": r.auto_match_confidence,
        "auto_match_reason": r.auto_match_reason,
        "admin_verified_at": _iso(r.admin_verified_at),
        "admin_verified_by": r.admin_verified_by,
        "admin_notes": r.admin_notes,
        "verification_method": r.verification_method,
        "created_at": _iso(r.created_at),
        "updated_at": _iso(r.updated_at),
    }


def verification_log_dict(log: PaymentVerificationLog) -> dict:
    return {
        "id": log.id,
        "verification_type": log.verification_type,
        "status": log.status,
        "details": log.details or {},
        "error_message": log.error_message,
        "processed_by": log.processed_by,
        "created_at": _iso(log.created_at),
    }


def notification_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "kind": n.kind,
        "title": n.title,
        "message": n.message,
        "data": n.data or {},
        "read": n.read,
        "created_at": _iso(n.created_at),
    }


def user_dict(p: Profile) -> dict:
    return {
        "id": p.id,
        "email": p.email,
        "display_name": p.display_name,
        "role": p.role,
        "created_at": _iso(p.created_at),
    }
