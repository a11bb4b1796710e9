"""
Pricing inputs and outputs.

`PricingInputs` is a snapshot read inside the settlement unit; everything the
quote graph needs is in it, so the graph itself does no I/O.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from settlement.pricing._coupon import ActiveUserCoupon, AppliedCoupon, CarriedCoupon, CouponTerms
from settlement.pricing._flash import FlashSaleApplied, FlashSaleWindow
from settlement.pricing._policy import CheckoutPolicy
from settlement.pricing._slabs import Slab
from settlement.pricing._tax import TaxAddress


# ═══════════════════════════════════════════════════════════════════════════════
# Inputs
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class VariantSnapshot:
    id: str
    product_id: str
    product_name: str
    sku: str
    price: Decimal
    sale_price: Decimal | None
    quantity: int
    variant_slabs: tuple[Slab, ...] = ()
    product_slabs: tuple[Slab, ...] = ()


@dataclass(frozen=True, slots=True)
class CartLine:
    cart_item_id: str
    variant: VariantSnapshot
    quantity: int


@dataclass(frozen=True, slots=True)
class AddressSnapshot:
    id: str
    user_id: str
    full_name: str
    line1: str
    city: str
    state: str
    postal_code: str
    country: str

    def for_tax(self) -> TaxAddress:
        return TaxAddress(state=self.state, postal_code=self.postal_code, country=self.country)


@dataclass(frozen=True, slots=True)
class PricingInputs:
    user_id: str
    lines: tuple[CartLine, ...]
    policy: CheckoutPolicy
    at: datetime
    address: AddressSnapshot | None = None
    flash_sales: Mapping[str, FlashSaleWindow] = field(default_factory=dict)
    user_coupon: ActiveUserCoupon | None = None
    carried: CarriedCoupon | None = None
    carried_terms: CouponTerms | None = None
    cash: bool = False


# ═══════════════════════════════════════════════════════════════════════════════
# Outputs
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class PricedLine:
    line: CartLine
    unit_price: Decimal
    subtotal: Decimal
    flash_sale: FlashSaleApplied | None = None


@dataclass(frozen=True, slots=True)
class Quote:
    lines: tuple[PricedLine, ...]
    subtotal: Decimal
    discount: Decimal
    coupon: AppliedCoupon | None
    shipping: Decimal
    tax: Decimal
    cod_charge: Decimal
    total: Decimal


__all__ = (
    "VariantSnapshot",
    "CartLine",
    "AddressSnapshot",
    "PricingInputs",
    "PricedLine",
    "Quote",
)
