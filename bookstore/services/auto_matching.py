"""
bookstore.services.auto_matching — Rule-based payment evidence matching.

Active ``auto_matching_rules`` are evaluated against a payment request in
descending priority; the single best-scoring rule decides. A match only
marks the request ``payment_verified``. Completing it (and granting access)
stays with an admin.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from bookstore import config
from bookstore.core.constants import (
    AMOUNT_MATCH_BASE_CONFIDENCE,
    AMOUNT_MATCH_TOLERANCE_PCT,
    TIME_WINDOW_BASE_CONFIDENCE,
    TIME_WINDOW_MAX_MINUTES,
    TX_ID_PATTERN_BASE_CONFIDENCE,
    USER_HISTORY_BASE_CONFIDENCE,
    USER_HISTORY_LOOKBACK,
)
from bookstore.core.utils import pct_difference
from bookstore.database import (
    AutoMatchingRule,
    PaymentRequest,
    PaymentVerificationLog,
    get_active_rules,
)
from bookstore.domain.enums import (
    AutoMatchingRuleType,
    PaymentStatus,
    VerificationLogStatus,
    VerificationType,
)

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
    matched: bool
    confidence: float
    reason: str = ""
    rule_id: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


_NO_MATCH = MatchResult(False, 0.0)


# ---------------------------------------------------------------------------
# Individual rules
# ---------------------------------------------------------------------------

def _amount_match(req: PaymentRequest, cond: dict) -> MatchResult:
    if not req.manual_amount and not req.ocr_extracted_amount:
        return MatchResult(False, 0.0, "No amount provided")
    actual = float(req.ocr_extracted_amount or req.manual_amount)
    expected = float(req.amount)
    tolerance = float(cond.get("tolerance_percentage") or AMOUNT_MATCH_TOLERANCE_PCT)
    diff = pct_difference(actual, expected)
    if diff > tolerance:
        return MatchResult(False, 0.0, f"Amount mismatch: {actual} vs {expected} ({diff:.1f}% difference)")
    base = float(cond.get("base_confidence") or AMOUNT_MATCH_BASE_CONFIDENCE)
    confidence = base * (0.5 + 0.5 * (tolerance - diff) / tolerance)
    return MatchResult(True, round(confidence, 4), f"Amount match: {actual} vs {expected} ({diff:.1f}% difference)")


def _tx_id_pattern(req: PaymentRequest, cond: dict) -> MatchResult:
    tx_id = req.manual_tx_id or req.ocr_extracted_tx_id
    if not tx_id:
        return MatchResult(False, 0.0, "No transaction ID provided")
    pattern = cond.get("pattern")
    if not pattern:
        return MatchResult(False, 0.0, "No pattern defined in rule")
    try:
        hit = re.search(pattern, tx_id, re.IGNORECASE)
    except re.error:
        return MatchResult(False, 0.0, f"Invalid regex pattern: {pattern}")
    if not hit:
        return MatchResult(False, 0.0, f"TX ID pattern mismatch: {tx_id} does not match {pattern}")
    confidence = float(cond.get("base_confidence") or TX_ID_PATTERN_BASE_CONFIDENCE)
    return MatchResult(True, confidence, f"TX ID pattern match: {tx_id} matches {pattern}")


def _time_window(req: PaymentRequest, cond: dict, now: datetime) -> MatchResult:
    if not req.deep_link_clicked_at:
        return MatchResult(False, 0.0, "No deep link click timestamp")
    max_minutes = float(cond.get("max_minutes") or TIME_WINDOW_MAX_MINUTES)
    elapsed = (now - req.deep_link_clicked_at).total_seconds() / 60.0
    if elapsed <= max_minutes and (req.manual_tx_id or req.ocr_extracted_tx_id):
        base = float(cond.get("base_confidence") or TIME_WINDOW_BASE_CONFIDENCE)
        remaining = max(0.0, max_minutes - elapsed)
        confidence = base * (0.3 + 0.7 * remaining / max_minutes)
        return MatchResult(
            True, round(confidence, 4),
            f"Time window match: {elapsed:.1f} minutes elapsed, TX ID provided",
        )
    return MatchResult(False, 0.0, f"Time window not met: {elapsed:.1f} minutes of {max_minutes:g}")


def _user_history(history: Sequence[PaymentRequest], cond: dict) -> MatchResult:
    completed = [p for p in history if p.status == PaymentStatus.COMPLETED.value]
    if not completed:
        return MatchResult(False, 0.0, "New user: no previous completed payments")
    confidence = float(cond.get("base_confidence") or USER_HISTORY_BASE_CONFIDENCE)
    return MatchResult(True, confidence, f"Returning user: {len(completed)} previous completed payments")


def apply_rule(
    rule: AutoMatchingRule,
    req: PaymentRequest,
    history: Sequence[PaymentRequest],
    now: datetime,
) -> MatchResult:
    cond = rule.conditions or {}
    kind = rule.rule_type
    if kind == AutoMatchingRuleType.AMOUNT_MATCH.value:
        return _amount_match(req, cond)
    if kind == AutoMatchingRuleType.TX_ID_PATTERN.value:
        return _tx_id_pattern(req, cond)
    if kind == AutoMatchingRuleType.TIME_WINDOW.value:
        return _time_window(req, cond, now)
    if kind == AutoMatchingRuleType.USER_HISTORY.value:
        return _user_history(history, cond)
    return MatchResult(False, 0.0, f"Unknown rule type: {kind}")


def evaluate_rules(
    rules: Sequence[AutoMatchingRule],
    req: PaymentRequest,
    history: Sequence[PaymentRequest],
    now: Optional[datetime] = None,
    min_confidence: Optional[float] = None,
) -> MatchResult:
    """Best result across ``rules``; matched only if it reaches ``min_confidence``."""
    now = now or datetime.utcnow()
    threshold = config.AUTO_MATCH_MIN_CONFIDENCE if min_confidence is None else min_confidence
    best = _NO_MATCH
    for rule in sorted(rules, key=lambda r: r.priority or 0, reverse=True):
        if not rule.is_active:
            continue
        result = apply_rule(rule, req, history, now)
        if result.matched and result.confidence > best.confidence:
            best = MatchResult(True, result.confidence, f"{rule.rule_name}: {result.reason}", rule.id)

    if best.confidence >= threshold and best.matched:
        return best
    return MatchResult(
        False, best.confidence,
        f"Confidence {best.confidence:.2f} below threshold {threshold}",
        best.rule_id,
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def _user_history_rows(db: Session, req: PaymentRequest) -> List[PaymentRequest]:
    return (
        db.query(PaymentRequest)
        .filter(PaymentRequest.user_id == req.user_id, PaymentRequest.id != req.id)
        .order_by(PaymentRequest.created_at.desc())
        .limit(USER_HISTORY_LOOKBACK)
        .all()
    )


def run_auto_matching(db: Session, req: PaymentRequest, now: Optional[datetime] = None) -> MatchResult:
    """
    Evaluate ``req`` against the active rules, log the attempt and, on a
    match, stamp the auto-match fields. Commits.
    """
    if req.auto_matched_at:
        return MatchResult(True, float(req.auto_match_confidence or 0.0), "Already auto-matched")

    now = now or datetime.utcnow()
    result = evaluate_rules(get_active_rules(db), req, _user_history_rows(db, req), now)

    db.add(PaymentVerificationLog(
        payment_request_id=req.id,
        verification_type=VerificationType.AUTO_MATCH.value,
        status=(VerificationLogStatus.SUCCESS if result.matched else VerificationLogStatus.FAILED).value,
        details=result.to_dict(),
    ))
    if result.matched:
        req.auto_matched_at = now
        req.auto_match_confidence = result.confidence
        req.auto_match_reason = result.reason
        if req.status in (PaymentStatus.PENDING.value, PaymentStatus.PAYMENT_INITIATED.value):
            req.status = PaymentStatus.PAYMENT_VERIFIED.value
        logger.info("Payment request %s auto-matched (%.2f): %s", req.id, result.confidence, result.reason)
    db.commit()
    return result
