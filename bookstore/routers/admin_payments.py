"""
Admin Purchase & Payment Endpoints for the Astewai Bookstore
GET    /api/admin/purchases                    - purchases, optional ?status=
POST   /api/admin/approve-purchase             - complete + grant + Telegram notice
POST   /api/admin/reject-purchase              - reject + Telegram notice
GET    /api/admin/payment-config               - all bank / mobile-money accounts
POST   /api/admin/payment-config               - add one
PUT    /api/admin/payment-config/{id}          - edit one
DELETE /api/admin/payment-config/{id}          - remove one
GET    /api/admin/payments                     - payment requests (status filter, paging)
GET    /api/admin/payments/stats               - PaymentStats
POST   /api/admin/payments/{id}/verify         - approve / reject a payment request
GET    /api/admin/payments/wallets             - wallet CRUD
GET    /api/admin/payments/rules               - auto-matching rule CRUD
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from bookstore.api.schemas import PartialUpdate, PaymentStatsResponse
from bookstore.api.serializers import (
    payment_config_dict,
    payment_request_dict,
    purchase_dict,
    rule_dict,
    wallet_dict,
)
from bookstore.auth import require_admin
from bookstore.core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from bookstore.database import (
    AutoMatchingRule,
    PaymentConfig,
    Purchase,
    WalletConfig,
    get_db,
)
from bookstore.domain.enums import (
    AutoMatchingRuleType,
    PaymentConfigType,
    PaymentStatus,
    PurchaseStatus,
    VerificationMethod,
    WalletType,
)
from bookstore.services import payments as payment_service
from bookstore.services import purchases as purchase_service
from bookstore.services.telegram import TelegramClient, purchase_decision_message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Bodies
# ---------------------------------------------------------------------------

class ApprovePurchaseBody(BaseModel):
    purchase_id: str = Field(min_length=1)
    admin_notes: Optional[str] = Field(default=None, max_length=2000)


class RejectPurchaseBody(BaseModel):
    purchase_id: str = Field(min_length=1)
    reason: Optional[str] = Field(default=None, max_length=2000)


class PaymentConfigBody(BaseModel):
    config_type: PaymentConfigType
    provider_name: str = Field(min_length=1, max_length=100)
    account_number: str = Field(min_length=1, max_length=100)
    account_name: str = Field(min_length=1, max_length=200)
    instructions: Optional[str] = None
    is_active: bool = True
    display_order: int = Field(default=0, ge=0)


class PaymentConfigUpdate(PartialUpdate):
    not_null = ("config_type", "provider_name", "account_number", "account_name", "is_active", "display_order")

    config_type: Optional[PaymentConfigType] = None
    provider_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    account_number: Optional[str] = Field(default=None, min_length=1, max_length=100)
    account_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    instructions: Optional[str] = None
    is_active: Optional[bool] = None
    display_order: Optional[int] = Field(default=None, ge=0)


class WalletBody(BaseModel):
    wallet_name: str = Field(min_length=1, max_length=100)
    wallet_type: WalletType
    deep_link_template: Optional[str] = None
    tx_id_pattern: Optional[str] = Field(default=None, max_length=255)
    is_active: bool = True
    display_order: int = Field(default=0, ge=0)
    icon_url: Optional[str] = None
    instructions: Optional[str] = None


class WalletUpdate(PartialUpdate):
    not_null = ("wallet_name", "wallet_type", "is_active", "display_order")

    wallet_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    wallet_type: Optional[WalletType] = None
    deep_link_template: Optional[str] = None
    tx_id_pattern: Optional[str] = Field(default=None, max_length=255)
    is_active: Optional[bool] = None
    display_order: Optional[int] = Field(default=None, ge=0)
    icon_url: Optional[str] = None
    instructions: Optional[str] = None


class RuleBody(BaseModel):
    rule_name: str = Field(min_length=1, max_length=100)
    rule_type: AutoMatchingRuleType
    conditions: Dict[str, Any] = Field(default_factory=dict)
    confidence_threshold: float = Field(default=0.7, ge=0, le=1)
    is_active: bool = True
    priority: int = 0


class RuleUpdate(PartialUpdate):
    not_null = ("rule_name", "rule_type", "confidence_threshold", "is_active", "priority")

    rule_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    rule_type: Optional[AutoMatchingRuleType] = None
    conditions: Optional[Dict[str, Any]] = None
    confidence_threshold: Optional[float] = Field(default=None, ge=0, le=1)
    is_active: Optional[bool] = None
    priority: Optional[int] = None


class VerifyBody(BaseModel):
    approve: bool
    verification_method: VerificationMethod = VerificationMethod.MANUAL
    admin_notes: Optional[str] = Field(default=None, max_length=2000)


def _plain(values: dict) -> dict:
    """Enum members -> their string values, for assignment onto ORM rows."""
    return {k: (v.value if hasattr(v, "value") else v) for k, v in values.items()}


# ---------------------------------------------------------------------------
# Generic row CRUD for the config tables
# ---------------------------------------------------------------------------

def _list_rows(model, serialize, order_by):
    db = get_db()
    try:
        return [serialize(r) for r in db.query(model).order_by(*order_by).all()]
    finally:
        db.close()


def _create_row(model, serialize, values: dict):
    db = get_db()
    try:
        row = model(**values)
        db.add(row)
        db.commit()
        return serialize(row)
    finally:
        db.close()


def _update_row(model, serialize, row_id: str, changes: dict):
    db = get_db()
    try:
        row = db.get(model, row_id)
        if not row:
            return None
        for key, value in changes.items():
            setattr(row, key, value)
        db.commit()
        return serialize(row)
    finally:
        db.close()


def _delete_row(model, row_id: str) -> bool:
    db = get_db()
    try:
        row = db.get(model, row_id)
        if not row:
            return False
        db.delete(row)
        db.commit()
        return True
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------

@router.get("/purchases")
async def list_purchases(status: Optional[PurchaseStatus] = None, admin: dict = Depends(require_admin)):
    def _sync():
        db = get_db()
        try:
            q = db.query(Purchase)
            if status:
                q = q.filter(Purchase.status == status.value)
            return [purchase_dict(p) for p in q.order_by(Purchase.created_at.desc()).all()]
        finally:
            db.close()

    return {"purchases": await asyncio.to_thread(_sync)}


async def _notify_chat(purchase: dict, approved: bool, reason: Optional[str] = None) -> bool:
    """Best-effort Telegram message to the chat bound to the purchase."""
    chat_id = purchase.get("telegram_chat_id")
    if not chat_id:
        return False
    text = purchase_decision_message(
        purchase["transaction_reference"], purchase.get("item_title") or "your item", approved, reason,
    )
    try:
        return await TelegramClient.from_config().send_message(chat_id, text)
    except Exception as exc:
        logger.warning("Telegram notice for purchase %s failed: %s", purchase["id"], exc)
        return False


@router.post("/approve-purchase")
async def approve_purchase(body: ApprovePurchaseBody, admin: dict = Depends(require_admin)):
    def _sync():
        db = get_db()
        try:
            return purchase_dict(purchase_service.approve_purchase(db, body.purchase_id, body.admin_notes))
        finally:
            db.close()

    purchase = await asyncio.to_thread(_sync)
    notified = await _notify_chat(purchase, approved=True)
    logger.info("Purchase %s approved by %s", purchase["id"], admin["id"])
    return {"purchase": purchase, "telegram_notified": notified}


@router.post("/reject-purchase")
async def reject_purchase(body: RejectPurchaseBody, admin: dict = Depends(require_admin)):
    def _sync():
        db = get_db()
        try:
            return purchase_dict(purchase_service.reject_purchase(db, body.purchase_id, body.reason))
        finally:
            db.close()

    purchase = await asyncio.to_thread(_sync)
    notified = await _notify_chat(purchase, approved=False, reason=body.reason)
    logger.info("Purchase %s rejected by %s", purchase["id"], admin["id"])
    return {"purchase": purchase, "telegram_notified": notified}


# ---------------------------------------------------------------------------
# Payment config
# ---------------------------------------------------------------------------

@router.get("/payment-config")
async def list_payment_config(admin: dict = Depends(require_admin)):
    rows = await asyncio.to_thread(
        _list_rows, PaymentConfig, payment_config_dict, (PaymentConfig.display_order, PaymentConfig.created_at),
    )
    return {"configs": rows}


@router.post("/payment-config", status_code=201)
async def create_payment_config(body: PaymentConfigBody, admin: dict = Depends(require_admin)):
    return await asyncio.to_thread(_create_row, PaymentConfig, payment_config_dict, _plain(body.model_dump()))


@router.put("/payment-config/{config_id}")
async def update_payment_config(config_id: str, body: PaymentConfigUpdate, admin: dict = Depends(require_admin)):
    row = await asyncio.to_thread(
        _update_row, PaymentConfig, payment_config_dict, config_id, _plain(body.model_dump(exclude_unset=True)),
    )
    if row is None:
        raise HTTPException(status_code=404, detail="Payment config not found")
    return row


@router.delete("/payment-config/{config_id}")
async def delete_payment_config(config_id: str, admin: dict = Depends(require_admin)):
    if not await asyncio.to_thread(_delete_row, PaymentConfig, config_id):
        raise HTTPException(status_code=404, detail="Payment config not found")
    return {"status": "deleted", "id": config_id}


# ---------------------------------------------------------------------------
# Wallets
# ---------------------------------------------------------------------------

@router.get("/payments/wallets")
async def list_wallets(admin: dict = Depends(require_admin)):
    rows = await asyncio.to_thread(
        _list_rows, WalletConfig, wallet_dict, (WalletConfig.display_order, WalletConfig.created_at),
    )
    return {"wallets": rows}


@router.post("/payments/wallets", status_code=201)
async def create_wallet(body: WalletBody, admin: dict = Depends(require_admin)):
    return await asyncio.to_thread(_create_row, WalletConfig, wallet_dict, _plain(body.model_dump()))


@router.put("/payments/wallets/{wallet_id}")
async def update_wallet(wallet_id: str, body: WalletUpdate, admin: dict = Depends(require_admin)):
    row = await asyncio.to_thread(
        _update_row, WalletConfig, wallet_dict, wallet_id, _plain(body.model_dump(exclude_unset=True)),
    )
    if row is None:
        raise HTTPException(status_code=404, detail="Wallet not found")
    return row


@router.delete("/payments/wallets/{wallet_id}")
async def delete_wallet(wallet_id: str, admin: dict = Depends(require_admin)):
    if not await asyncio.to_thread(_delete_row, WalletConfig, wallet_id):
        raise HTTPException(status_code=404, detail="Wallet not found")
    return {"status": "deleted", "id": wallet_id}


# ---------------------------------------------------------------------------
# Auto-matching rules
# ---------------------------------------------------------------------------

@router.get("/payments/rules")
async def list_rules(admin: dict = Depends(require_admin)):
    rows = await asyncio.to_thread(
        _list_rows, AutoMatchingRule, rule_dict, (AutoMatchingRule.priority.desc(), AutoMatchingRule.created_at),
    )
    return {"rules": rows}


@router.post("/payments/rules", status_code=201)
async def create_rule(body: RuleBody, admin: dict = Depends(require_admin)):
    return await asyncio.to_thread(_create_row, AutoMatchingRule, rule_dict, _plain(body.model_dump()))


@router.put("/payments/rules/{rule_id}")
async def update_rule(rule_id: str, body: RuleUpdate, admin: dict = Depends(require_admin)):
    row = await asyncio.to_thread(
        _update_row, AutoMatchingRule, rule_dict, rule_id, _plain(body.model_dump(exclude_unset=True)),
    )
    if row is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    return row


# ---------------------------------------------------------------------------
# Payment requests
# ---------------------------------------------------------------------------

@router.get("/payments")
async def list_payments(
    status: Optional[PaymentStatus] = None,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    admin: dict = Depends(require_admin),
):
    def _sync():
        db = get_db()
        try:
            rows, total = payment_service.list_payment_requests(
                db, status.value if status else None, limit, offset,
            )
            return [payment_request_dict(r) for r in rows], total
        finally:
            db.close()

    rows, total = await asyncio.to_thread(_sync)
    return {"payments": rows, "total": total, "limit": limit, "offset": offset,
            "has_more": offset + len(rows) < total}


@router.get("/payments/stats", response_model=PaymentStatsResponse)
async def payments_stats(admin: dict = Depends(require_admin)):
    def _sync():
        db = get_db()
        try:
            return payment_service.payment_stats(db)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/payments/{request_id}/verify")
async def verify_payment(request_id: str, body: VerifyBody, admin: dict = Depends(require_admin)):
    def _sync():
        db = get_db()
        try:
            req = payment_service.admin_verify(
                db, request_id, admin["id"], body.approve, body.verification_method.value, body.admin_notes,
            )
            return payment_request_dict(req)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)
