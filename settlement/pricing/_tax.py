"""
Tax — pluggable resolver.

The store currently charges no tax. Jurisdiction rules plug in here by
implementing `TaxResolver` and passing it via `CheckoutPolicy.with_tax(...)`.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from settlement._types import ZERO


@dataclass(frozen=True, slots=True)
class TaxAddress:
    state: str
    postal_code: str
    country: str


class TaxResolver(Protocol):
    def __call__(self, subtotal: Decimal, address: TaxAddress | None) -> Decimal: ...


@dataclass(frozen=True, slots=True)
class ZeroTax:
    def __call__(self, subtotal: Decimal, address: TaxAddress | None) -> Decimal:
        return ZERO


ZERO_TAX = ZeroTax()

__all__ = ("TaxAddress", "TaxResolver", "ZeroTax", "ZERO_TAX")
