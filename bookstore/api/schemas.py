"""
Astewai Bookstore — API request/response schemas (Pydantic).

Request bodies shared by more than one router live here; router-specific
bodies stay next to their routes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, model_validator


ItemTypeField = Literal["book", "bundle"]


class PartialUpdate(BaseModel):
    """Body for PUT-as-patch routes: omitted fields are left alone.

    Fields named in ``not_null`` back NOT NULL columns, so an explicit
    ``null`` for them is a validation error (422) rather than a write.
    """

    not_null: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="after")
    def reject_nulls(self):
        nulls = [f for f in self.not_null if f in self.model_fields_set and getattr(self, f) is None]
        if nulls:
            raise ValueError(f"{', '.join(nulls)} cannot be null")
        return self


# ---------------------------------------------------------------------------
# Purchasing
# ---------------------------------------------------------------------------

class ItemPurchaseBody(BaseModel):
    """Item reference plus the price the client saw."""

    item_type: ItemTypeField
    item_id: str = Field(min_length=1)
    amount: float = Field(gt=0)


class PurchaseRequestBody(ItemPurchaseBody):
    user_message: Optional[str] = Field(default=None, max_length=2000)
    preferred_contact_method: Optional[Literal["telegram", "whatsapp", "email"]] = None


class PaymentInitiateBody(ItemPurchaseBody):
    currency: Optional[str] = Field(default=None, min_length=3, max_length=8)
    selected_wallet_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class BookListResponse(BaseModel):
    books: List[Dict[str, Any]]
    total: int
    limit: int
    offset: int
    has_more: bool


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

class PaymentStatsResponse(BaseModel):
    total_requests: int = 0
    pending_requests: int = 0
    completed_requests: int = 0
    failed_requests: int = 0
    auto_matched_requests: int = 0
    manual_verified_requests: int = 0
    total_amount: float = 0.0
    average_processing_time_hours: float = 0.0


class AdminStatsResponse(BaseModel):
    totalBooks: int = 0
    totalBundles: int = 0
    totalUsers: int = 0
    pendingPurchases: int = 0
    totalRevenue: float = 0.0
    newUsersThisMonth: int = 0


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str
    version: str = "1.0.0"
    db: str = "ok"
    cache_backend: str = "memory"
    background_tasks: int = 0
    uptime_seconds: float = 0.0
    metrics: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
