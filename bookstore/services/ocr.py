"""
bookstore.services.ocr — Receipt text extraction.

Every provider implements the ``OCRProvider`` ABC with one async
``extract_text`` method; parsing and scoring are shared.

Providers:
    GoogleVisionProvider — Vision REST ``images:annotate`` (needs GOOGLE_VISION_API_KEY)
    TextFallbackProvider — decodes text-like uploads (plain-text SMS receipts,
                           uncompressed PDF text layers)

Usage::

    result = await process_receipt(data, "image/png", expected_amount=1500.0)
    if result.confidence_score >= config.OCR_CONFIDENCE_THRESHOLD: ...
"""

from __future__ import annotations

import base64
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import List, Optional, Sequence

import httpx

from bookstore import config
from bookstore.core.constants import AMOUNT_PATTERNS, TX_ID_PATTERNS

logger = logging.getLogger(__name__)

GOOGLE_VISION_URL = "https://vision.googleapis.com/v1/images:annotate"


@dataclass
class OCRResult:
    extracted_tx_id: Optional[str] = None
    extracted_amount: Optional[float] = None
    confidence_score: float = 0.0
    raw_text: str = ""
    processing_time_ms: int = 0
    provider: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Parsing and scoring
# ---------------------------------------------------------------------------

def extract_transaction_id(text: str, patterns: Sequence[str] = TX_ID_PATTERNS) -> Optional[str]:
    for pattern in patterns:
        try:
            match = re.search(pattern, text, re.IGNORECASE)
        except re.error:
            logger.warning("Invalid tx id pattern: %s", pattern)
            continue
        if match and match.group(1):
            return match.group(1).strip()
    return None


def extract_amount(text: str, patterns: Sequence[str] = AMOUNT_PATTERNS) -> Optional[float]:
    for pattern in patterns:
        try:
            match = re.search(pattern, text, re.IGNORECASE)
        except re.error:
            logger.warning("Invalid amount pattern: %s", pattern)
            continue
        if match and match.group(1):
            try:
                amount = float(match.group(1).replace(",", ""))
            except ValueError:
                continue
            if amount > 0:
                return amount
    return None


def calculate_confidence_score(
    raw_text: str,
    tx_id: Optional[str],
    amount: Optional[float],
    expected_amount: Optional[float] = None,
) -> float:
    score = 0.0
    if len(raw_text) > 50:
        score += 0.2
    elif len(raw_text) > 20:
        score += 0.1

    if tx_id:
        score += 0.3
        if len(tx_id) >= 10:
            score += 0.1

    if amount:
        score += 0.3
        if expected_amount and abs(amount - expected_amount) < 0.01:
            score += 0.2

    return round(min(score, 1.0), 4)


def parse_receipt_text(text: str, expected_amount: Optional[float] = None) -> OCRResult:
    tx_id = extract_transaction_id(text)
    amount = extract_amount(text)
    return OCRResult(
        extracted_tx_id=tx_id,
        extracted_amount=amount,
        confidence_score=calculate_confidence_score(text, tx_id, amount, expected_amount),
        raw_text=text,
    )


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class OCRProvider(ABC):
    name: str = "base"

    def is_available(self) -> bool:
        return True

    @abstractmethod
    async def extract_text(self, data: bytes, content_type: str) -> str:
        """Return the raw text found in ``data``. Raise on provider failure."""


class GoogleVisionProvider(OCRProvider):
    name = "google_vision"

    def __init__(self, api_key: str, timeout: float = 15.0) -> None:
        self._api_key = api_key
        self._timeout = timeout

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def extract_text(self, data: bytes, content_type: str) -> str:
        if content_type == "application/pdf":
            # images:annotate only takes images; PDFs need the async batch API.
            raise ValueError("google_vision does not process PDF receipts")
        body = {
            "requests": [{
                "image": {"content": base64.b64encode(data).decode("ascii")},
                "features": [{"type": "TEXT_DETECTION"}],
            }]
        }
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(GOOGLE_VISION_URL, params={"key": self._api_key}, json=body)
            resp.raise_for_status()
            payload = resp.json()

        first = (payload.get("responses") or [{}])[0]
        if first.get("error"):
            raise RuntimeError(first["error"].get("message", "vision error"))
        full = first.get("fullTextAnnotation") or {}
        if full.get("text"):
            return full["text"]
        annotations = first.get("textAnnotations") or []
        return annotations[0].get("description", "") if annotations else ""


_PDF_TEXT_OP = re.compile(rb"\((.*?)(?<!\\)\)\s*T[jJ]", re.DOTALL)
_PRINTABLE_RUNS = re.compile(r"[ -~\n\r\t]{4,}")


class TextFallbackProvider(OCRProvider):
    name = "text"

    async def extract_text(self, data: bytes, content_type: str) -> str:
        if content_type == "application/pdf":
            parts = [m.group(1).decode("latin-1", errors="ignore") for m in _PDF_TEXT_OP.finditer(data)]
            return "\n".join(p.strip() for p in parts if p.strip())
        if content_type.startswith("image/"):
            return ""
        text = data.decode("utf-8", errors="ignore")
        return "\n".join(run.strip() for run in _PRINTABLE_RUNS.findall(text) if run.strip())


def build_providers() -> List[OCRProvider]:
    providers: List[OCRProvider] = []
    if config.GOOGLE_VISION_API_KEY:
        providers.append(GoogleVisionProvider(config.GOOGLE_VISION_API_KEY))
    providers.append(TextFallbackProvider())
    return providers


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

async def process_receipt(
    data: bytes,
    content_type: str,
    expected_amount: Optional[float] = None,
    providers: Optional[List[OCRProvider]] = None,
    threshold: Optional[float] = None,
) -> OCRResult:
    """
    Run providers in order and return the first result that reaches the
    confidence threshold, else the best result seen. Never raises.
    """
    start = time.monotonic()
    providers = providers if providers is not None else build_providers()
    threshold = config.OCR_CONFIDENCE_THRESHOLD if threshold is None else threshold

    best: Optional[OCRResult] = None
    errors: List[str] = []
    for provider in providers:
        if not provider.is_available():
            continue
        try:
            text = await provider.extract_text(data, content_type)
        except Exception as exc:
            logger.warning("OCR provider %s failed: %s", provider.name, exc)
            errors.append(f"{provider.name}: {exc}")
            continue
        result = parse_receipt_text(text or "", expected_amount)
        result.provider = provider.name
        if best is None or result.confidence_score > best.confidence_score:
            best = result
        if result.confidence_score >= threshold:
            break

    if best is None:
        best = OCRResult(error="; ".join(errors) or "No OCR providers available")
    elif errors and best.confidence_score < threshold:
        best.error = "; ".join(errors)
    best.processing_time_ms = int((time.monotonic() - start) * 1000)
    return best
