"""
Persistence — SQLAlchemy (asyncio) models and engine setup.

    from settlement import db

    session_factory, engine = await db.create_database("sqlite+aiosqlite:///shop.db")
"""

from settlement.db._models import (
    Base,
    User,
    Address,
    Product,
    Variant,
    PricingSlab,
    FlashSale,
    FlashSaleProduct,
    Coupon,
    UserCoupon,
    CouponRedemption,
    CartItem,
    Order,
    OrderItem,
    InventoryLog,
    PaymentRecord,
    GatewayCredential,
    CheckoutIntent,
    ShippingSettings,
    PaymentSettingsRow,
    Referral,
    OutboxEvent,
)
from settlement.db._engine import create_engine, create_database

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
    "create_engine",
    "create_database",
)
