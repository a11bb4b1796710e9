"""
Checkout policy — everything pricing needs from store configuration.

Loaded once per request and passed explicitly; tests build one directly:

    policy = (
        CheckoutPolicy()
        .with_shipping(ShippingPolicy().with_free_shipping_over("500").with_charge("50"))
        .with_payments(PaymentSettings().with_cash(charge="40"))
    )

Note: Immutable — each method returns a new CheckoutPolicy.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from settlement._config import PaymentSettings, ShippingPolicy
from settlement.pricing._tax import ZERO_TAX, TaxResolver


@dataclass(frozen=True, slots=True)
class CheckoutPolicy:
    shipping: ShippingPolicy = field(default_factory=ShippingPolicy)
    payments: PaymentSettings = field(default_factory=PaymentSettings)
    tax: TaxResolver = ZERO_TAX
    currency: str = "INR"

    def with_shipping(self, shipping: ShippingPolicy) -> CheckoutPolicy:
        return replace(self, shipping=shipping)

    def with_payments(self, payments: PaymentSettings) -> CheckoutPolicy:
        return replace(self, payments=payments)

    def with_tax(self, tax: TaxResolver) -> CheckoutPolicy:
        return replace(self, tax=tax)


__all__ = ("CheckoutPolicy",)
