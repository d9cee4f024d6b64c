"""
Admin dashboard figures built from the three sales channels.

Purchases (Telegram flow), payment requests (receipt flow) and purchase
requests (contact flow) are flattened into one pandas frame so the daily
series, top items and the CSV export share one code path.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

import pandas as pd
from sqlalchemy import func
from sqlalchemy.orm import Session

from bookstore.database import (
    Book,
    Bundle,
    PaymentRequest,
    Profile,
    Purchase,
    PurchaseRequest,
)
from bookstore.domain.enums import PaymentStatus, PurchaseRequestStatus, PurchaseStatus

logger = logging.getLogger(__name__)

SALE_COLUMNS = ["source", "id", "user_id", "item_type", "item_id", "amount", "status", "created_at", "completed"]

_COMPLETED = {
    "purchase": PurchaseStatus.COMPLETED.value,
    "payment_request": PaymentStatus.COMPLETED.value,
    "purchase_request": PurchaseRequestStatus.COMPLETED.value,
}


def _rows(db: Session, model, source: str, since: Optional[datetime]):
    q = db.query(model)
    if since is not None:
        q = q.filter(model.created_at >= since)
    for r in q.all():
        yield {
            "source": source,
            "id": r.id,
            "user_id": r.user_id,
            "item_type": r.item_type,
            "item_id": r.item_id,
            "amount": float(r.amount or 0.0),
            "status": r.status,
            "created_at": r.created_at,
            "completed": r.status == _COMPLETED[source],
        }


def sales_frame(db: Session, since: Optional[datetime] = None) -> pd.DataFrame:
    """Every sale-like row from all channels, one row per record."""
    records = []
    for model, source in ((Purchase, "purchase"), (PaymentRequest, "payment_request"),
                          (PurchaseRequest, "purchase_request")):
        records.extend(_rows(db, model, source, since))
    df = pd.DataFrame(records, columns=SALE_COLUMNS)
    if not df.empty:
        df["created_at"] = pd.to_datetime(df["created_at"], errors="coerce")
        df["date"] = df["created_at"].dt.date
    return df


def _item_titles(db: Session) -> Dict[str, str]:
    titles = {b.id: b.title for b in db.query(Book.id, Book.title).all()}
    titles.update({b.id: b.title for b in db.query(Bundle.id, Bundle.title).all()})
    return titles


def admin_stats(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    df = sales_frame(db)
    revenue = float(df.loc[df["completed"], "amount"].sum()) if not df.empty else 0.0
    pending = (
        db.query(func.count(Purchase.id))
        .filter(Purchase.status.in_([
            PurchaseStatus.AWAITING_PAYMENT.value, PurchaseStatus.PENDING_VERIFICATION.value,
        ]))
        .scalar()
    )
    return {
        "totalBooks": db.query(func.count(Book.id)).scalar() or 0,
        "totalBundles": db.query(func.count(Bundle.id)).scalar() or 0,
        "totalUsers": db.query(func.count(Profile.id)).scalar() or 0,
        "pendingPurchases": int(pending or 0),
        "totalRevenue": round(revenue, 2),
        "newUsersThisMonth": db.query(func.count(Profile.id)).filter(Profile.created_at >= month_start).scalar() or 0,
    }


def analytics_summary(db: Session, days: int = 30, now: Optional[datetime] = None, top_n: int = 10) -> dict:
    """Daily revenue / purchase counts, top items and a status breakdown."""
    now = now or datetime.utcnow()
    since = (now - timedelta(days=days)).replace(hour=0, minute=0, second=0, microsecond=0)
    df = sales_frame(db, since)

    all_days = pd.date_range(since.date(), now.date(), freq="D").date
    if df.empty:
        daily = pd.DataFrame({"revenue": 0.0, "purchases": 0}, index=all_days)
        top_items = []
        breakdown: Dict[str, Dict[str, int]] = {}
    else:
        done = df[df["completed"]]
        daily = (
            done.groupby("date")
            .agg(revenue=("amount", "sum"), purchases=("id", "count"))
            .reindex(all_days, fill_value=0)
        )
        titles = _item_titles(db)
        top = (
            done.groupby(["item_type", "item_id"])
            .agg(revenue=("amount", "sum"), sales=("id", "count"))
            .sort_values(["revenue", "sales"], ascending=False)
            .head(top_n)
            .reset_index()
        )
        top_items = [
            {
                "item_type": row.item_type,
                "item_id": row.item_id,
                "title": titles.get(row.item_id, "Unknown item"),
                "revenue": round(float(row.revenue), 2),
                "sales": int(row.sales),
            }
            for row in top.itertuples(index=False)
        ]
        breakdown = {
            source: {str(k): int(v) for k, v in group["status"].value_counts().items()}
            for source, group in df.groupby("source")
        }

    return {
        "days": days,
        "since": since.isoformat(),
        "daily": [
            {"date": d.isoformat(), "revenue": round(float(r.revenue), 2), "purchases": int(r.purchases)}
            for d, r in daily.iterrows()
        ],
        "totalRevenue": round(float(daily["revenue"].sum()), 2),
        "totalPurchases": int(daily["purchases"].sum()),
        "topItems": top_items,
        "statusBreakdown": breakdown,
    }


def export_sales_csv(db: Session, days: int = 30, now: Optional[datetime] = None) -> str:
    """CSV text of completed sales in the window, newest first."""
    now = now or datetime.utcnow()
    df = sales_frame(db, now - timedelta(days=days))
    columns = ["date", "source", "id", "user_id", "item_type", "item_id", "title", "amount", "status"]
    if df.empty:
        return pd.DataFrame(columns=columns).to_csv(index=False)
    done = df[df["completed"]].copy()
    done["title"] = done["item_id"].map(_item_titles(db)).fillna("Unknown item")
    done = done.sort_values("created_at", ascending=False)
    done["date"] = done["created_at"].dt.strftime("%Y-%m-%d %H:%M:%S")
    logger.info("Exporting %d completed sales (%d days)", len(done), days)
    return done[columns].to_csv(index=False)
