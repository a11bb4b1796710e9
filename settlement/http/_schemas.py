"""
Wire models. `*In` models build domain requests via `to_domain()`; `*Out` models
are built from domain results via `from_domain()`.
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from settlement._config import PaymentSettings
from settlement.checkout import (
    CancelledOrder,
    CancelRequest,
    CashOrderRequest,
    CheckoutRequest,
    IntentCreated,
    PaymentProof,
    SettledOrder,
    VerifyRequest,
)
from settlement.gateway import GatewayName
from settlement.pricing import CarriedCoupon, PricedLine, Quote


class _In(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)


def _gateway_name(value: object) -> object:
    return value.upper() if isinstance(value, str) else value


# ═══════════════════════════════════════════════════════════════════════════════
# Requests
# ═══════════════════════════════════════════════════════════════════════════════


class CouponIn(_In):
    coupon_id: str | None = Field(default=None, validation_alias=AliasChoices("coupon_id", "couponId"))
    coupon_code: str | None = Field(default=None, validation_alias=AliasChoices("coupon_code", "couponCode"))
    discount_amount: Decimal | None = Field(
        default=None, validation_alias=AliasChoices("discount_amount", "discountAmount")
    )

    def carried(self) -> CarriedCoupon | None:
        if self.coupon_id is None and self.coupon_code is None:
            return None
        return CarriedCoupon(
            coupon_id=self.coupon_id,
            code=self.coupon_code,
            discount_amount=self.discount_amount,
        )


class CheckoutIn(CouponIn):
    gateway: GatewayName = GatewayName.RAZORPAY
    amount: Decimal | None = None
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    address_id: str | None = Field(default=None, validation_alias=AliasChoices("address_id", "addressId"))
    owner_id: str | None = Field(default=None, validation_alias=AliasChoices("owner_id", "ownerId"))

    @field_validator("gateway", mode="before")
    @classmethod
    def normalize_gateway(cls, value: object) -> object:
        return _gateway_name(value)

    def to_domain(self, user_id: str) -> CheckoutRequest:
        return CheckoutRequest(
            user_id=user_id,
            gateway=self.gateway,
            currency=self.currency,
            amount=self.amount,
            coupon=self.carried(),
            address_id=self.address_id,
            owner_id=self.owner_id,
        )


class ProofIn(_In):
    intent_ref: str = Field(
        default="",
        validation_alias=AliasChoices("intent_ref", "razorpay_order_id", "merchantTransactionId"),
    )
    payment_ref: str = Field(
        default="",
        validation_alias=AliasChoices("payment_ref", "razorpay_payment_id", "transactionId"),
    )
    signature: str = Field(
        default="",
        validation_alias=AliasChoices("signature", "razorpay_signature", "checksum"),
    )

    def proof(self) -> PaymentProof:
        return PaymentProof(
            intent_ref=self.intent_ref,
            payment_ref=self.payment_ref,
            signature=self.signature,
        )


class VerifyIn(ProofIn, CouponIn):
    address_id: str | None = Field(default=None, validation_alias=AliasChoices("address_id", "addressId"))
    gateway: GatewayName | None = None
    owner_id: str | None = Field(default=None, validation_alias=AliasChoices("owner_id", "ownerId"))

    @field_validator("gateway", mode="before")
    @classmethod
    def normalize_gateway(cls, value: object) -> object:
        return _gateway_name(value)

    def to_domain(self, user_id: str) -> VerifyRequest:
        return VerifyRequest(
            user_id=user_id,
            proof=self.proof(),
            address_id=self.address_id,
            coupon=self.carried(),
            gateway=self.gateway,
            owner_id=self.owner_id,
        )


class CashOrderIn(CouponIn):
    address_id: str = Field(default="", validation_alias=AliasChoices("address_id", "addressId"))

    def to_domain(self, user_id: str) -> CashOrderRequest:
        return CashOrderRequest(user_id=user_id, address_id=self.address_id, coupon=self.carried())


class CancelIn(_In):
    reason: str = ""

    def to_domain(self, order_id: str, actor_id: str, *, as_admin: bool = False) -> CancelRequest:
        return CancelRequest(order_id=order_id, actor_id=actor_id, reason=self.reason, as_admin=as_admin)


# ═══════════════════════════════════════════════════════════════════════════════
# Responses
# ═══════════════════════════════════════════════════════════════════════════════


class QuoteLineOut(BaseModel):
    variant_id: str
    product_name: str
    sku: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    original_price: Decimal | None = None
    flash_sale: str | None = None

    @classmethod
    def from_domain(cls, priced: PricedLine) -> QuoteLineOut:
        variant = priced.line.variant
        flash = priced.flash_sale
        return cls(
            variant_id=variant.id,
            product_name=variant.product_name,
            sku=variant.sku,
            quantity=priced.line.quantity,
            unit_price=priced.unit_price,
            subtotal=priced.subtotal,
            original_price=flash.original_price if flash else None,
            flash_sale=flash.name if flash else None,
        )


class QuoteOut(BaseModel):
    lines: list[QuoteLineOut]
    subtotal: Decimal
    discount: Decimal
    coupon_code: str | None
    shipping: Decimal
    tax: Decimal
    cod_charge: Decimal
    total: Decimal

    @classmethod
    def from_domain(cls, quote: Quote) -> QuoteOut:
        return cls(
            lines=[QuoteLineOut.from_domain(line) for line in quote.lines],
            subtotal=quote.subtotal,
            discount=quote.discount,
            coupon_code=quote.coupon.code if quote.coupon else None,
            shipping=quote.shipping,
            tax=quote.tax,
            cod_charge=quote.cod_charge,
            total=quote.total,
        )


class IntentOut(BaseModel):
    success: bool = True
    intent_ref: str
    gateway: str
    key_id: str
    amount: Decimal
    amount_minor: int
    currency: str
    receipt: str
    redirect_url: str | None = None
    quote: QuoteOut

    @classmethod
    def from_domain(cls, intent: IntentCreated) -> IntentOut:
        return cls(
            intent_ref=intent.intent_ref,
            gateway=intent.gateway.value,
            key_id=intent.key_id,
            amount=intent.amount,
            amount_minor=intent.amount_minor,
            currency=intent.currency,
            receipt=intent.receipt,
            redirect_url=intent.redirect_url,
            quote=QuoteOut.from_domain(intent.quote),
        )


class OrderOut(BaseModel):
    success: bool = True
    order_id: str
    order_number: str
    status: str
    total: Decimal
    payment_id: str | None = None

    @classmethod
    def from_domain(cls, order: SettledOrder) -> OrderOut:
        return cls(
            order_id=order.order_id,
            order_number=order.order_number,
            status=order.status,
            total=order.total,
            payment_id=order.payment_id,
        )


class CancelledOut(BaseModel):
    success: bool = True
    order_id: str
    order_number: str
    restored_items: int
    refunded_payments: int

    @classmethod
    def from_domain(cls, cancelled: CancelledOrder) -> CancelledOut:
        return cls(
            order_id=cancelled.order_id,
            order_number=cancelled.order_number,
            restored_items=len(cancelled.restored),
            refunded_payments=cancelled.refunded_payments,
        )


class PaymentSettingsOut(BaseModel):
    cash_enabled: bool
    razorpay_enabled: bool
    phonepe_enabled: bool
    cod_charge: Decimal

    @classmethod
    def from_domain(cls, settings: PaymentSettings) -> PaymentSettingsOut:
        return cls(
            cash_enabled=settings.cash_enabled,
            razorpay_enabled=settings.razorpay_enabled,
            phonepe_enabled=settings.phonepe_enabled,
            cod_charge=settings.cod_charge,
        )


class WebhookOut(BaseModel):
    status: str
    order_id: str | None = None


class ErrorOut(BaseModel):
    success: bool = False
    code: str
    message: str


__all__ = (
    "CouponIn",
    "CheckoutIn",
    "ProofIn",
    "VerifyIn",
    "CashOrderIn",
    "CancelIn",
    "QuoteLineOut",
    "QuoteOut",
    "IntentOut",
    "OrderOut",
    "CancelledOut",
    "PaymentSettingsOut",
    "WebhookOut",
    "ErrorOut",
)
