"""
bookstore.services.bundle_pricing — Bundle value, validation and price hints.

Pure functions over anything with a ``price`` attribute (ORM rows or
lightweight stand-ins in tests).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from bookstore.core.constants import (
    BUNDLE_HIGH_DISCOUNT_WARN_PCT,
    BUNDLE_LOW_DISCOUNT_WARN_PCT,
    BUNDLE_MIN_DISCOUNT_PCT,
    BUNDLE_RECOMMENDED_DISCOUNTS,
)


@dataclass
class BundleValue:
    bundle_price: float
    total_book_price: float
    savings: float
    discount_percentage: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "bundlePrice": round(self.bundle_price, 2),
            "totalBookPrice": round(self.total_book_price, 2),
            "savings": round(self.savings, 2),
            "discountPercentage": round(self.discount_percentage, 2),
        }


@dataclass
class BundleValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _total(books: Sequence) -> float:
    return float(sum(float(b.price or 0) for b in books))


def calculate_bundle_value(bundle_price: float, books: Sequence) -> BundleValue:
    """Savings of buying the bundle versus every book on its own."""
    total = _total(books)
    savings = total - float(bundle_price)
    discount = (savings / total) * 100 if total > 0 else 0.0
    return BundleValue(float(bundle_price), total, savings, discount)


def calculate_optimal_bundle_price(books: Sequence, target_discount_pct: float = 15.0) -> float:
    total = _total(books)
    return round(max(0.0, total - total * (target_discount_pct / 100.0)), 2)


def validate_bundle_pricing(bundle_price: float, books: Sequence) -> BundleValidationResult:
    """
    Check a proposed bundle price against its books.

    Errors make the bundle unsaveable; warnings are advisory.
    """
    if not books:
        return BundleValidationResult(False, ["Bundle must contain at least one book"], [])

    errors: List[str] = []
    warnings: List[str] = []
    value = calculate_bundle_value(bundle_price, books)

    if value.bundle_price <= 0:
        errors.append("Bundle price must be greater than 0")
    if value.bundle_price > value.total_book_price:
        errors.append("Bundle price cannot exceed total book prices")
    if value.total_book_price > 0 and value.discount_percentage < BUNDLE_MIN_DISCOUNT_PCT:
        errors.append(f"Bundle must provide at least {BUNDLE_MIN_DISCOUNT_PCT:g}% discount")

    if value.discount_percentage > BUNDLE_HIGH_DISCOUNT_WARN_PCT:
        warnings.append(
            f"Bundle discount exceeds {BUNDLE_HIGH_DISCOUNT_WARN_PCT:g}% - consider reviewing pricing"
        )
    if value.discount_percentage < BUNDLE_LOW_DISCOUNT_WARN_PCT:
        warnings.append(
            f"Bundle discount is less than {BUNDLE_LOW_DISCOUNT_WARN_PCT:g}% - "
            "customers may not find it attractive"
        )

    return BundleValidationResult(not errors, errors, warnings)


def get_pricing_recommendations(books: Sequence) -> Dict[str, float]:
    recs = {
        name: calculate_optimal_bundle_price(books, pct)
        for name, pct in BUNDLE_RECOMMENDED_DISCOUNTS.items()
    }
    recs["totalBookPrice"] = round(_total(books), 2)
    return recs
