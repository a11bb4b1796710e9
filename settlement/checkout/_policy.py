"""Per-request policy loading from the settings rows."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement._config import PaymentSettings, ShippingPolicy
from settlement.db import PaymentSettingsRow, ShippingSettings
from settlement.pricing import ZERO_TAX, CheckoutPolicy, TaxResolver


async def load_policy(
    session: AsyncSession,
    *,
    tax: TaxResolver = ZERO_TAX,
    currency: str = "INR",
) -> CheckoutPolicy:
    """Missing rows fall back to defaults (no free shipping, cash disabled)."""
    shipping_row = (await session.execute(select(ShippingSettings).limit(1))).scalar_one_or_none()
    payment_row = (await session.execute(select(PaymentSettingsRow).limit(1))).scalar_one_or_none()

    shipping = ShippingPolicy()
    if shipping_row is not None:
        shipping = (
            shipping
            .with_free_shipping_over(shipping_row.free_shipping_threshold)
            .with_charge(shipping_row.shipping_charge)
        )

    payments = PaymentSettings()
    if payment_row is not None:
        payments = (
            payments
            .with_cash(payment_row.cash_enabled, payment_row.cod_charge)
            .with_gateways(
                razorpay=payment_row.razorpay_enabled,
                phonepe=payment_row.phonepe_enabled,
            )
        )

    return CheckoutPolicy(shipping=shipping, payments=payments, tax=tax, currency=currency)


__all__ = ("load_policy",)
