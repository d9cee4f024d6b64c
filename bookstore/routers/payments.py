"""
Payment Endpoints (wallet / receipt flow) for the Astewai Bookstore
GET  /api/payments/methods              - active bank / mobile-money accounts
GET  /api/payments/wallets              - active wallets with deep links
POST /api/payments/initiate             - open a payment request
POST /api/payments/submit               - multipart: open a request + optional receipt
POST /api/payments/{id}/upload-receipt  - attach another receipt
POST /api/payments/{id}/confirm         - user-entered tx id / amount
GET  /api/payments/{id}                 - request with its verification logs
GET  /api/payments/{id}/receipts/{n}     - one uploaded receipt (owner or admin)
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, Field

from bookstore import config
from bookstore.api.schemas import PaymentInitiateBody
from bookstore.api.serializers import (
    payment_config_dict,
    payment_request_dict,
    verification_log_dict,
    wallet_dict,
)
from bookstore.auth import is_admin, require_user
from bookstore.core.constants import BUCKET_RECEIPTS
from bookstore.database import PaymentRequest, get_active_payment_configs, get_active_wallets, get_db
from bookstore.services import ocr, storage
from bookstore.services import payments as payment_service
from bookstore.services.auto_matching import run_auto_matching
from bookstore.rate_limiter import check_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


class ConfirmBody(BaseModel):
    manual_tx_id: Optional[str] = Field(default=None, max_length=64)
    manual_amount: Optional[float] = Field(default=None, gt=0)


async def _read_receipt(receipt: UploadFile):
    """Read and validate an uploaded receipt; 400 with the storage message on failure."""
    try:
        data = await storage.read_upload(receipt, "receipt")
    except storage.StorageError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return data


def _store_receipt(request_id: str, receipt: UploadFile, data: bytes) -> str:
    path = storage.build_object_path(request_id, receipt.filename)
    return storage.save_bytes(BUCKET_RECEIPTS, path, data)


async def _ocr_and_match(request_id: str, data: bytes, content_type: str, expected_amount: float) -> dict:
    """Run OCR over the receipt, store the result, then try the auto-matching rules."""
    result = await ocr.process_receipt(data, content_type, expected_amount=expected_amount)

    def _sync():
        db = get_db()
        try:
            req = db.get(PaymentRequest, request_id)
            payment_service.record_ocr_result(db, req, result)
            match = run_auto_matching(db, req)
            return match.to_dict()
        finally:
            db.close()

    match = await asyncio.to_thread(_sync)
    data_out = result.to_dict()
    data_out["auto_match"] = match
    return data_out


@router.get("/methods")
async def payment_methods():
    def _sync():
        db = get_db()
        try:
            return [payment_config_dict(c) for c in get_active_payment_configs(db)]
        finally:
            db.close()

    return {"methods": await asyncio.to_thread(_sync)}


@router.get("/wallets")
async def wallets():
    def _sync():
        db = get_db()
        try:
            return [wallet_dict(w) for w in get_active_wallets(db)]
        finally:
            db.close()

    return {"wallets": await asyncio.to_thread(_sync)}


@router.post("/initiate", status_code=201)
async def initiate(body: PaymentInitiateBody, user: dict = Depends(require_user)):
    def _sync():
        db = get_db()
        try:
            req, link = payment_service.initiate_payment(
                db, user["id"], body.item_type, body.item_id, body.amount,
                body.currency, body.selected_wallet_id,
            )
            return {"payment_request": payment_request_dict(req), "deep_link": link}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/submit")
async def submit_payment(
    item_id: Optional[str] = Form(None),
    amount: Optional[str] = Form(None),
    method: Optional[str] = Form(None),
    item_type: str = Form("book"),
    receipt: Optional[UploadFile] = File(None),
    user: dict = Depends(require_user),
):
    """Open a request for one item and, when a receipt is attached, run OCR on it."""
    allowed, _ = check_rate_limit("payment_submit", user["id"], config.PAYMENT_SUBMIT_RATE_LIMIT_PER_MINUTE)
    if not allowed:
        raise HTTPException(status_code=429, detail="Too many payment submissions. Try again in a minute.")
    if not item_id:
        raise HTTPException(status_code=400, detail="Missing item_id")
    if not amount:
        raise HTTPException(status_code=400, detail="Missing amount")
    try:
        value = float(amount)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid amount")
    if value != value or value <= 0:
        raise HTTPException(status_code=400, detail="Invalid amount")
    if item_type not in ("book", "bundle"):
        raise HTTPException(status_code=400, detail="item_type must be 'book' or 'bundle'")

    data = await _read_receipt(receipt) if receipt is not None and receipt.filename else None

    def _initiate():
        db = get_db()
        try:
            req, _ = payment_service.initiate_payment(db, user["id"], item_type, item_id, value)
            return req.id
        finally:
            db.close()

    request_id = await asyncio.to_thread(_initiate)

    receipt_url = None
    ocr_result = None
    if data is not None:
        def _attach():
            url = _store_receipt(request_id, receipt, data)
            db = get_db()
            try:
                payment_service.record_receipt(db, db.get(PaymentRequest, request_id), url)
            finally:
                db.close()
            return url

        receipt_url = await asyncio.to_thread(_attach)
        ocr_result = await _ocr_and_match(request_id, data, receipt.content_type, value)

    logger.info("Payment submitted: request=%s receipt=%s", request_id, bool(receipt_url))
    return {
        "paymentRequestId": request_id,
        "receipt_url": receipt_url,
        "ocr": ocr_result,
        "method": method or "other",
    }


@router.post("/{request_id}/upload-receipt")
async def upload_receipt(request_id: str, receipt: UploadFile = File(...), user: dict = Depends(require_user)):
    def _load():
        db = get_db()
        try:
            req = payment_service.get_payment_for(db, request_id, user["id"])
            if req.status in ("completed", "failed", "cancelled"):
                raise HTTPException(status_code=409, detail=f"Payment request is already {req.status}")
            return req.amount
        finally:
            db.close()

    expected = await asyncio.to_thread(_load)
    data = await _read_receipt(receipt)

    def _attach():
        url = _store_receipt(request_id, receipt, data)
        db = get_db()
        try:
            req = payment_service.record_receipt(db, db.get(PaymentRequest, request_id), url)
            return url, req.status
        finally:
            db.close()

    url, status = await asyncio.to_thread(_attach)
    ocr_result = await _ocr_and_match(request_id, data, receipt.content_type, expected)
    return {"receipt_url": url, "status": status, "ocr": ocr_result}


@router.post("/{request_id}/confirm")
async def confirm_payment(request_id: str, body: ConfirmBody, user: dict = Depends(require_user)):
    def _sync():
        db = get_db()
        try:
            req = payment_service.get_payment_for(db, request_id, user["id"])
            payment_service.confirm_manual(db, req, body.manual_tx_id, body.manual_amount)
            match = run_auto_matching(db, req)
            return {"payment_request": payment_request_dict(req), "auto_match": match.to_dict()}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/{request_id}")
async def get_payment(request_id: str, user: dict = Depends(require_user)):
    admin = await asyncio.to_thread(is_admin, user["id"])

    def _sync():
        db = get_db()
        try:
            req = payment_service.get_payment_for(db, request_id, user["id"], admin)
            data = payment_request_dict(req)
            data["verification_logs"] = [
                verification_log_dict(log) for log in payment_service.verification_logs(db, req.id)
            ]
            return data
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/{request_id}/receipts/{index}")
async def get_receipt(request_id: str, index: int, user: dict = Depends(require_user)):
    admin = await asyncio.to_thread(is_admin, user["id"])

    def _sync():
        db = get_db()
        try:
            req = payment_service.get_payment_for(db, request_id, user["id"], admin)
            urls = list(req.receipt_urls or [])
        finally:
            db.close()
        if not 0 <= index < len(urls):
            raise HTTPException(status_code=404, detail="Receipt not found")
        try:
            data, media_type, _ = storage.read_by_url(urls[index])
        except (FileNotFoundError, storage.StorageError):
            raise HTTPException(status_code=404, detail="Receipt not found")
        return data, media_type

    data, media_type = await asyncio.to_thread(_sync)
    return Response(content=data, media_type=media_type)
