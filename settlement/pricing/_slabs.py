"""
Slab pricing — quantity-break unit prices.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from settlement._types import money


@dataclass(frozen=True, slots=True)
class Slab:
    """`min_qty..max_qty` (inclusive, open-ended when `max_qty` is None) → `price`."""

    min_qty: int
    max_qty: int | None
    price: Decimal

    def matches(self, quantity: int) -> bool:
        if quantity < self.min_qty:
            return False
        return self.max_qty is None or quantity <= self.max_qty


def match_slab(slabs: Iterable[Slab], quantity: int) -> Slab | None:
    """First match by descending `min_qty` wins."""
    for slab in sorted(slabs, key=lambda s: s.min_qty, reverse=True):
        if slab.matches(quantity):
            return slab
    return None


def resolve_base_price(
    *,
    quantity: int,
    variant_slabs: Iterable[Slab],
    product_slabs: Iterable[Slab],
    price: Decimal,
    sale_price: Decimal | None,
) -> Decimal:
    """Variant slab → product slab → sale price → base price."""
    slab = match_slab(variant_slabs, quantity) or match_slab(product_slabs, quantity)
    if slab is not None:
        return money(slab.price)
    if sale_price is not None:
        return money(sale_price)
    return money(price)


__all__ = ("Slab", "match_slab", "resolve_base_price")
