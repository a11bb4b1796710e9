"""
Flash sales — time-boxed percentage discounts on slab-resolved prices.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from settlement._types import percent_of


@dataclass(frozen=True, slots=True)
class FlashSaleWindow:
    id: str
    name: str
    discount_percentage: Decimal
    start_time: datetime
    end_time: datetime
    is_active: bool = True

    def covers(self, at: datetime) -> bool:
        # The active flag alone is not enough; the window must contain `at`.
        return self.is_active and self.start_time <= at <= self.end_time


@dataclass(frozen=True, slots=True)
class FlashSaleApplied:
    """Kept on the order item for receipts."""

    flash_sale_id: str
    name: str
    discount_percentage: Decimal
    original_price: Decimal


def apply_flash_sale(
    price: Decimal,
    sale: FlashSaleWindow | None,
    at: datetime,
) -> tuple[Decimal, FlashSaleApplied | None]:
    if sale is None or not sale.covers(at):
        return price, None

    discount = percent_of(price, sale.discount_percentage)
    applied = FlashSaleApplied(
        flash_sale_id=sale.id,
        name=sale.name,
        discount_percentage=sale.discount_percentage,
        original_price=price,
    )
    return price - discount, applied


__all__ = ("FlashSaleWindow", "FlashSaleApplied", "apply_flash_sale")
