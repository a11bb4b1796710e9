"""
Pricing — slab, flash-sale, coupon, shipping and tax resolution.

    from settlement import pricing as P

    unit = P.resolve_base_price(quantity=12, variant_slabs=slabs, product_slabs=(),
                                price=Decimal("100"), sale_price=None)
    quote = await P.QuotePipeline()(inputs)
"""

from settlement.pricing._slabs import Slab, match_slab, resolve_base_price
from settlement.pricing._flash import FlashSaleWindow, FlashSaleApplied, apply_flash_sale
from settlement.pricing._coupon import (
    MAX_PERCENTAGE,
    DiscountType,
    CouponTerms,
    CarriedCoupon,
    ActiveUserCoupon,
    AppliedCoupon,
    coupon_discount,
    resolve_coupon,
)
from settlement.pricing._shipping import shipping_cost
from settlement.pricing._tax import TaxAddress, TaxResolver, ZeroTax, ZERO_TAX
from settlement.pricing._policy import CheckoutPolicy
from settlement.pricing._types import (
    VariantSnapshot,
    CartLine,
    AddressSnapshot,
    PricingInputs,
    PricedLine,
    Quote,
)
from settlement.pricing._graph import QuotePipeline

__all__ = (
    "Slab",
    "match_slab",
    "resolve_base_price",
    "FlashSaleWindow",
    "FlashSaleApplied",
    "apply_flash_sale",
    "MAX_PERCENTAGE",
    "DiscountType",
    "CouponTerms",
    "CarriedCoupon",
    "ActiveUserCoupon",
    "AppliedCoupon",
    "coupon_discount",
    "resolve_coupon",
    "shipping_cost",
    "TaxAddress",
    "TaxResolver",
    "ZeroTax",
    "ZERO_TAX",
    "CheckoutPolicy",
    "VariantSnapshot",
    "CartLine",
    "AddressSnapshot",
    "PricingInputs",
    "PricedLine",
    "Quote",
    "QuotePipeline",
)
