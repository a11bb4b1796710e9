"""
Database layer — SQLAlchemy models.

Invariants enforced by the schema, not just application code:
- `variants.quantity >= 0`
- a pricing slab is scoped to a variant XOR a product
- at most one active user-coupon per user (partial unique index)
- a buyer redeems a given coupon at most once
- one payment record per gateway payment ref (the settlement idempotency guard)
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from settlement._types import ZERO, new_id, utcnow

MONEY = Numeric(12, 2, asdecimal=True)


# ═══════════════════════════════════════════════════════════════════════════════
# Base
# ═══════════════════════════════════════════════════════════════════════════════


class Base(DeclarativeBase):
    pass


def _id() -> Mapped[str]:
    return mapped_column(String(32), primary_key=True, default=new_id)


# ═══════════════════════════════════════════════════════════════════════════════
# Buyers
# ═══════════════════════════════════════════════════════════════════════════════


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = _id()
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class Address(Base):
    __tablename__ = "addresses"

    id: Mapped[str] = _id()
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    line1: Mapped[str] = mapped_column(String(255), nullable=False)
    line2: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(100), nullable=False)
    postal_code: Mapped[str] = mapped_column(String(20), nullable=False)
    country: Mapped[str] = mapped_column(String(100), nullable=False, default="India")


# ═══════════════════════════════════════════════════════════════════════════════
# Catalog
# ═══════════════════════════════════════════════════════════════════════════════


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = _id()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Variant(Base):
    __tablename__ = "variants"
    __table_args__ = (CheckConstraint("quantity >= 0", name="ck_variants_stock_non_negative"),)

    id: Mapped[str] = _id()
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id"), nullable=False, index=True)
    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    sale_price: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class PricingSlab(Base):
    __tablename__ = "pricing_slabs"
    __table_args__ = (
        CheckConstraint(
            "(variant_id IS NULL) <> (product_id IS NULL)",
            name="ck_pricing_slabs_single_scope",
        ),
        CheckConstraint("min_qty >= 1", name="ck_pricing_slabs_min_qty"),
    )

    id: Mapped[str] = _id()
    variant_id: Mapped[str | None] = mapped_column(ForeignKey("variants.id"), nullable=True, index=True)
    product_id: Mapped[str | None] = mapped_column(ForeignKey("products.id"), nullable=True, index=True)
    min_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    max_qty: Mapped[int | None] = mapped_column(Integer, nullable=True)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)


class FlashSale(Base):
    __tablename__ = "flash_sales"

    id: Mapped[str] = _id()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    discount_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    sold_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class FlashSaleProduct(Base):
    __tablename__ = "flash_sale_products"

    flash_sale_id: Mapped[str] = mapped_column(ForeignKey("flash_sales.id"), primary_key=True)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id"), primary_key=True)


# ═══════════════════════════════════════════════════════════════════════════════
# Coupons
# ═══════════════════════════════════════════════════════════════════════════════


class Coupon(Base):
    __tablename__ = "coupons"

    id: Mapped[str] = _id()
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    discount_type: Mapped[str] = mapped_column(String(20), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    is_discount_capped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    max_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class UserCoupon(Base):
    __tablename__ = "user_coupons"
    __table_args__ = (
        Index(
            "uq_user_coupons_one_active",
            "user_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id: Mapped[str] = _id()
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    coupon_id: Mapped[str] = mapped_column(ForeignKey("coupons.id"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class CouponRedemption(Base):
    """One row per buyer per coupon. The unique pair is what makes a coupon single-use per buyer."""

    __tablename__ = "coupon_redemptions"
    __table_args__ = (
        UniqueConstraint("user_id", "coupon_id", name="uq_coupon_redemptions_user_coupon"),
    )

    id: Mapped[str] = _id()
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    coupon_id: Mapped[str] = mapped_column(ForeignKey("coupons.id"), nullable=False, index=True)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), nullable=False)
    user_coupon_id: Mapped[str | None] = mapped_column(ForeignKey("user_coupons.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


# ═══════════════════════════════════════════════════════════════════════════════
# Cart
# ═══════════════════════════════════════════════════════════════════════════════


class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("user_id", "variant_id", name="uq_cart_items_user_variant"),
        CheckConstraint("quantity > 0", name="ck_cart_items_quantity_positive"),
    )

    id: Mapped[str] = _id()
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    variant_id: Mapped[str] = mapped_column(ForeignKey("variants.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════


class Order(Base):
    """Monetary columns are point-in-time facts; never recomputed after insert."""

    __tablename__ = "orders"

    id: Mapped[str] = _id()
    order_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_gateway: Mapped[str | None] = mapped_column(String(20), nullable=True)
    payment_mode: Mapped[str | None] = mapped_column(String(10), nullable=True)
    payment_owner_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    intent_ref: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)

    sub_total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    discount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    shipping_cost: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    cod_charge: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    coupon_id: Mapped[str | None] = mapped_column(ForeignKey("coupons.id"), nullable=True)
    coupon_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    shipping_address_id: Mapped[str] = mapped_column(ForeignKey("addresses.id"), nullable=False)

    shipment_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    shipment_status: Mapped[str | None] = mapped_column(String(30), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(32), nullable=True)


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[str] = _id()
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id"), nullable=False)
    variant_id: Mapped[str] = mapped_column(ForeignKey("variants.id"), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    original_price: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    flash_sale_id: Mapped[str | None] = mapped_column(ForeignKey("flash_sales.id"), nullable=True)
    flash_sale_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    flash_sale_discount: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)


class InventoryLog(Base):
    """Append-only."""

    __tablename__ = "inventory_logs"

    id: Mapped[str] = _id()
    variant_id: Mapped[str] = mapped_column(ForeignKey("variants.id"), nullable=False, index=True)
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    previous_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    new_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class PaymentRecord(Base):
    __tablename__ = "payments"

    id: Mapped[str] = _id()
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), nullable=False, unique=True)
    gateway: Mapped[str] = mapped_column(String(20), nullable=False)
    intent_ref: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    payment_ref: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    signature: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


# ═══════════════════════════════════════════════════════════════════════════════
# Gateway configuration & intents
# ═══════════════════════════════════════════════════════════════════════════════


class GatewayCredential(Base):
    """`encrypted_secret` is `iv_hex:tag_hex:cipher_hex` (AES-256-GCM)."""

    __tablename__ = "gateway_credentials"
    __table_args__ = (UniqueConstraint("owner_id", "gateway", name="uq_gateway_credentials_owner"),)

    id: Mapped[str] = _id()
    owner_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    gateway: Mapped[str] = mapped_column(String(20), nullable=False)
    mode: Mapped[str] = mapped_column(String(10), nullable=False, default="test")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    key_id: Mapped[str] = mapped_column(String(255), nullable=False)
    encrypted_secret: Mapped[str] = mapped_column(Text, nullable=False)
    salt_index: Mapped[str | None] = mapped_column(String(10), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class CheckoutIntent(Base):
    """What was promised to the gateway; lets a webhook settle without the client."""

    __tablename__ = "checkout_intents"

    intent_ref: Mapped[str] = mapped_column(String(100), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    gateway: Mapped[str] = mapped_column(String(20), nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    mode: Mapped[str | None] = mapped_column(String(10), nullable=True)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    receipt: Mapped[str] = mapped_column(String(40), nullable=False)
    coupon_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    coupon_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    discount_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    shipping_address_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


# ═══════════════════════════════════════════════════════════════════════════════
# Store settings (single-row tables)
# ═══════════════════════════════════════════════════════════════════════════════


class ShippingSettings(Base):
    __tablename__ = "shipping_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    free_shipping_threshold: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    shipping_charge: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)


class PaymentSettingsRow(Base):
    __tablename__ = "payment_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    cash_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    razorpay_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    phonepe_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cod_charge: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)


# ═══════════════════════════════════════════════════════════════════════════════
# Referrals & outbox
# ═══════════════════════════════════════════════════════════════════════════════


class Referral(Base):
    __tablename__ = "referrals"

    id: Mapped[str] = _id()
    referrer_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    referred_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    reward_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    order_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id: Mapped[str] = _id()
    kind: Mapped[str] = mapped_column(String(40), nullable=False)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING", index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    available_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


__all__ = (
    "Base",
    "User",
    "Address",
    "Product",
    "Variant",
    "PricingSlab",
    "FlashSale",
    "FlashSaleProduct",
    "Coupon",
    "UserCoupon",
    "CouponRedemption",
    "CartItem",
    "Order",
    "OrderItem",
    "InventoryLog",
    "PaymentRecord",
    "GatewayCredential",
    "CheckoutIntent",
    "ShippingSettings",
    "PaymentSettingsRow",
    "Referral",
    "OutboxEvent",
)
