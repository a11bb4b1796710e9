"""
Side-effect collaborators and the committed-order summary they receive.

Everything here reads committed rows. Totals are taken from the order as
stored; nothing is re-priced after settlement.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol, cast

from sqlalchemy import select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement._errors import Errors
from settlement._log import get_logger
from settlement._types import Clock, money, percent_of, utcnow
from settlement.db import Address, Order, OrderItem, Referral, User

log = get_logger("outbox")


# ═══════════════════════════════════════════════════════════════════════════════
# Order summary: built from committed rows
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SummaryLine:
    product_name: str
    sku: str
    quantity: int
    price: Decimal
    subtotal: Decimal
    flash_sale_name: str | None = None


@dataclass(frozen=True, slots=True)
class ShipTo:
    full_name: str
    phone: str
    line1: str
    line2: str | None
    city: str
    state: str
    postal_code: str
    country: str


@dataclass(frozen=True, slots=True)
class OrderSummary:
    order_id: str
    order_number: str
    user_id: str
    email: str
    customer_name: str
    status: str
    payment_method: str
    sub_total: Decimal
    discount: Decimal
    shipping_cost: Decimal
    tax: Decimal
    cod_charge: Decimal
    total: Decimal
    coupon_code: str | None
    ship_to: ShipTo
    lines: tuple[SummaryLine, ...]
    created_at: datetime
    shipment_ref: str | None = None


async def load_order_summary(session: AsyncSession, order_id: str) -> OrderSummary:
    row = (
        await session.execute(
            select(Order, User, Address)
            .join(User, User.id == Order.user_id)
            .join(Address, Address.id == Order.shipping_address_id)
            .where(Order.id == order_id)
        )
    ).first()
    if row is None:
        raise Errors.order_not_found()
    order, user, address = row

    items = (
        await session.execute(
            select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
        )
    ).scalars().all()

    return OrderSummary(
        order_id=order.id,
        order_number=order.order_number,
        user_id=order.user_id,
        email=user.email,
        customer_name=user.name or address.full_name,
        status=order.status,
        payment_method=order.payment_method,
        sub_total=order.sub_total,
        discount=order.discount,
        shipping_cost=order.shipping_cost,
        tax=order.tax,
        cod_charge=order.cod_charge,
        total=order.total,
        coupon_code=order.coupon_code,
        ship_to=ShipTo(
            full_name=address.full_name,
            phone=address.phone,
            line1=address.line1,
            line2=address.line2,
            city=address.city,
            state=address.state,
            postal_code=address.postal_code,
            country=address.country,
        ),
        lines=tuple(
            SummaryLine(
                product_name=item.product_name,
                sku=item.sku,
                quantity=item.quantity,
                price=item.price,
                subtotal=item.subtotal,
                flash_sale_name=item.flash_sale_name,
            )
            for item in items
        ),
        created_at=order.created_at,
        shipment_ref=order.shipment_ref,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Protocols
# ═══════════════════════════════════════════════════════════════════════════════


class NotificationSender(Protocol):
    async def send(self, email: str, summary: OrderSummary) -> None: ...


class ShipmentProvider(Protocol):
    async def register(self, order: OrderSummary) -> str | None:
        """Returns the provider's shipment reference, or None if not registered."""
        ...

    async def cancel(self, shipment_ref: str) -> None: ...


class ReferralEngine(Protocol):
    async def process(self, order_id: str, buyer_id: str, total: Decimal) -> Decimal | None:
        """Returns the reward granted, or None."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Defaults
# ═══════════════════════════════════════════════════════════════════════════════


class LogNotificationSender:
    """Writes the confirmation to the log instead of sending mail."""

    async def send(self, email: str, summary: OrderSummary) -> None:
        log.info(
            "order_confirmation",
            email=email,
            order_number=summary.order_number,
            total=str(summary.total),
            items=len(summary.lines),
        )


class NullShipmentProvider:
    async def register(self, order: OrderSummary) -> str | None:
        return None

    async def cancel(self, shipment_ref: str) -> None:
        return None


REFERRAL_PERCENT = Decimal("5")
REFERRAL_MIN_ORDER = Decimal("500")
REFERRAL_MAX_REWARD = Decimal("1000")


def referral_reward(total: Decimal) -> Decimal | None:
    """5% of the order total, for orders of at least 500, capped at 1000."""
    total = money(total)
    if total < REFERRAL_MIN_ORDER:
        return None
    return min(percent_of(total, REFERRAL_PERCENT), REFERRAL_MAX_REWARD)


class DbReferralEngine:
    """Completes the buyer's oldest pending referral with a reward."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def process(self, order_id: str, buyer_id: str, total: Decimal) -> Decimal | None:
        reward = referral_reward(total)
        if reward is None:
            return None

        async with self._session_factory() as session, session.begin():
            referral = (
                await session.execute(
                    select(Referral)
                    .where(Referral.referred_id == buyer_id, Referral.status == "PENDING")
                    .order_by(Referral.created_at, Referral.id)
                    .limit(1)
                )
            ).scalar_one_or_none()
            if referral is None:
                return None

            cursor = cast(
                CursorResult[Any],
                await session.execute(
                    update(Referral)
                    .where(Referral.id == referral.id, Referral.status == "PENDING")
                    .values(
                        status="COMPLETED",
                        reward_amount=reward,
                        order_id=order_id,
                        completed_at=self._clock(),
                    )
                    .execution_options(synchronize_session=False)
                ),
            )
            if cursor.rowcount != 1:
                return None

        log.info(
            "referral_completed",
            referral_id=referral.id,
            referrer_id=referral.referrer_id,
            order_id=order_id,
            reward=str(reward),
        )
        return reward


__all__ = (
    "SummaryLine",
    "ShipTo",
    "OrderSummary",
    "load_order_summary",
    "NotificationSender",
    "ShipmentProvider",
    "ReferralEngine",
    "LogNotificationSender",
    "NullShipmentProvider",
    "REFERRAL_PERCENT",
    "REFERRAL_MIN_ORDER",
    "REFERRAL_MAX_REWARD",
    "referral_reward",
    "DbReferralEngine",
)
