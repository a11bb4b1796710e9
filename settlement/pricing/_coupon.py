"""
Coupon resolver.

Precedence:
1. the buyer's active user-coupon (at most one; enforced by the schema)
2. a coupon reference carried from the intent step, re-validated here

Consumption (deactivate + `used_count + 1`) is not done here; it happens in the
settlement unit, conditioned on `is_active` at write time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from settlement._types import ZERO, money, percent_of

MAX_PERCENTAGE = Decimal(90)


class DiscountType(Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


@dataclass(frozen=True, slots=True)
class CouponTerms:
    coupon_id: str
    code: str
    discount_type: DiscountType
    value: Decimal
    capped: bool = False
    is_active: bool = True
    expires_at: datetime | None = None
    max_uses: int | None = None
    used_count: int = 0

    def usable_at(self, at: datetime) -> bool:
        if not self.is_active:
            return False
        if self.expires_at is not None and at > self.expires_at:
            return False
        return self.max_uses is None or self.used_count < self.max_uses


@dataclass(frozen=True, slots=True)
class CarriedCoupon:
    """Coupon info the client (or the stored intent) carried forward."""

    coupon_id: str | None = None
    code: str | None = None
    discount_amount: Decimal | None = None


@dataclass(frozen=True, slots=True)
class ActiveUserCoupon:
    user_coupon_id: str
    terms: CouponTerms


@dataclass(frozen=True, slots=True)
class AppliedCoupon:
    coupon_id: str
    code: str
    amount: Decimal
    user_coupon_id: str | None = None


def coupon_discount(terms: CouponTerms, subtotal: Decimal) -> Decimal:
    match terms.discount_type:
        case DiscountType.PERCENTAGE:
            pct = terms.value
            if terms.capped or pct > MAX_PERCENTAGE:
                pct = min(pct, MAX_PERCENTAGE)
            return min(percent_of(subtotal, pct), subtotal)
        case DiscountType.FIXED:
            return money(min(terms.value, subtotal))


def resolve_coupon(
    subtotal: Decimal,
    *,
    user_coupon: ActiveUserCoupon | None,
    carried: CarriedCoupon | None = None,
    carried_terms: CouponTerms | None = None,
) -> AppliedCoupon | None:
    if user_coupon is not None:
        return AppliedCoupon(
            coupon_id=user_coupon.terms.coupon_id,
            code=user_coupon.terms.code,
            amount=coupon_discount(user_coupon.terms, subtotal),
            user_coupon_id=user_coupon.user_coupon_id,
        )

    if carried_terms is None:
        return None

    computed = coupon_discount(carried_terms, subtotal)
    claimed = carried.discount_amount if carried is not None else None
    amount = computed if claimed is None else max(ZERO, min(money(claimed), computed))
    return AppliedCoupon(
        coupon_id=carried_terms.coupon_id,
        code=carried_terms.code,
        amount=amount,
    )


__all__ = (
    "MAX_PERCENTAGE",
    "DiscountType",
    "CouponTerms",
    "CarriedCoupon",
    "ActiveUserCoupon",
    "AppliedCoupon",
    "coupon_discount",
    "resolve_coupon",
)
