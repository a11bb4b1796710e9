"""Shipping cost resolver."""

from __future__ import annotations

from decimal import Decimal

from settlement._config import ShippingPolicy
from settlement._types import ZERO, money


def shipping_cost(subtotal: Decimal, policy: ShippingPolicy) -> Decimal:
    threshold = policy.free_shipping_threshold
    if threshold > 0 and subtotal >= threshold:
        return ZERO
    return money(policy.shipping_charge)


__all__ = ("shipping_cost",)
