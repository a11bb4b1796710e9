"""
Checkout requests and results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from settlement._errors import Errors
from settlement.gateway import GatewayName, NormalizedMethod
from settlement.pricing import CarriedCoupon, Quote


# ═══════════════════════════════════════════════════════════════════════════════
# Payment proof
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class PaymentProof:
    intent_ref: str
    payment_ref: str
    signature: str

    def __repr__(self) -> str:
        return f"PaymentProof(intent_ref={self.intent_ref!r}, payment_ref={self.payment_ref!r})"

    def ensure_complete(self) -> None:
        for name in ("intent_ref", "payment_ref", "signature"):
            if not getattr(self, name).strip():
                raise Errors.missing(name)


# ═══════════════════════════════════════════════════════════════════════════════
# Requests
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CheckoutRequest:
    """Ask for a gateway intent. `amount` is what the client displayed; advisory only."""

    user_id: str
    gateway: GatewayName = GatewayName.RAZORPAY
    currency: str | None = None
    amount: Decimal | None = None
    coupon: CarriedCoupon | None = None
    address_id: str | None = None
    owner_id: str | None = None


@dataclass(frozen=True, slots=True)
class VerifyRequest:
    user_id: str
    proof: PaymentProof
    address_id: str | None = None
    coupon: CarriedCoupon | None = None
    gateway: GatewayName | None = None
    owner_id: str | None = None


@dataclass(frozen=True, slots=True)
class CashOrderRequest:
    user_id: str
    address_id: str
    coupon: CarriedCoupon | None = None


@dataclass(frozen=True, slots=True)
class CancelRequest:
    order_id: str
    actor_id: str
    reason: str
    as_admin: bool = False


# ═══════════════════════════════════════════════════════════════════════════════
# Settlement plan: what the atomic unit is asked to do
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class GatewayPayment:
    """Verified proof plus the gateway facts recorded with it."""

    proof: PaymentProof
    gateway: GatewayName
    method: NormalizedMethod
    mode: str | None = None
    owner_id: str | None = None


@dataclass(frozen=True, slots=True)
class SettlementPlan:
    user_id: str
    address_id: str | None
    coupon: CarriedCoupon | None = None
    payment: GatewayPayment | None = None

    @property
    def cash(self) -> bool:
        return self.payment is None


# ═══════════════════════════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class IntentCreated:
    intent_ref: str
    gateway: GatewayName
    key_id: str
    amount: Decimal
    amount_minor: int
    currency: str
    receipt: str
    quote: Quote
    redirect_url: str | None = None


@dataclass(frozen=True, slots=True)
class SettledOrder:
    order_id: str
    order_number: str
    status: str
    total: Decimal
    payment_id: str | None = None


@dataclass(frozen=True, slots=True)
class RestoredLine:
    variant_id: str
    quantity: int
    previous_quantity: int
    new_quantity: int


@dataclass(frozen=True, slots=True)
class CancelledOrder:
    order_id: str
    order_number: str
    restored: tuple[RestoredLine, ...] = field(default_factory=tuple)
    refunded_payments: int = 0


__all__ = (
    "PaymentProof",
    "CheckoutRequest",
    "VerifyRequest",
    "CashOrderRequest",
    "CancelRequest",
    "GatewayPayment",
    "SettlementPlan",
    "IntentCreated",
    "SettledOrder",
    "RestoredLine",
    "CancelledOrder",
)
