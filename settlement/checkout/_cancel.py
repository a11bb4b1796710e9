"""
Cancellation — the reverse unit: release stock, refund the payment record, mark CANCELLED.

Flash-sale `sold_count` is not rolled back; it counts units sold during the sale.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, cast

from sqlalchemy import select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from settlement._errors import Errors
from settlement.checkout._states import CANCELLABLE, OrderStatus, PaymentStatus
from settlement.checkout._types import CancelledOrder, CancelRequest, RestoredLine
from settlement.db import InventoryLog, Order, OrderItem, PaymentRecord, Variant
from settlement.outbox._events import ORDER_CANCELLED, enqueue


async def _find_order(session: AsyncSession, request: CancelRequest) -> Order:
    stmt = select(Order).where(Order.id == request.order_id)
    if not request.as_admin:
        stmt = stmt.where(Order.user_id == request.actor_id)
    order = (await session.execute(stmt)).scalar_one_or_none()
    if order is None:
        raise Errors.order_not_found()
    return order


async def restore_stock(
    session: AsyncSession, item: OrderItem, *, order_id: str, actor_id: str, at: datetime
) -> RestoredLine:
    previous = (
        await session.execute(
            select(Variant.quantity).where(Variant.id == item.variant_id).with_for_update()
        )
    ).scalar_one()
    await session.execute(
        update(Variant)
        .where(Variant.id == item.variant_id)
        .values(quantity=Variant.quantity + item.quantity)
        .execution_options(synchronize_session=False)
    )
    restored = RestoredLine(
        variant_id=item.variant_id,
        quantity=item.quantity,
        previous_quantity=previous,
        new_quantity=previous + item.quantity,
    )
    session.add(
        InventoryLog(
            variant_id=item.variant_id,
            quantity_change=item.quantity,
            reason="cancellation",
            reference_id=order_id,
            previous_quantity=restored.previous_quantity,
            new_quantity=restored.new_quantity,
            created_by=actor_id,
            created_at=at,
        )
    )
    return restored


async def run_cancellation(
    session: AsyncSession, request: CancelRequest, *, at: datetime
) -> CancelledOrder:
    """Must be called inside an open transaction; the caller commits."""
    reason = request.reason.strip()
    if not reason:
        raise Errors.missing("Cancellation reason")

    order = await _find_order(session, request)

    # Conditional on the status still being cancellable: a concurrent cancel
    # or shipment loses here instead of restoring stock twice.
    cursor = cast(
        CursorResult[Any],
        await session.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.status.in_([status.value for status in CANCELLABLE]),
            )
            .values(
                status=OrderStatus.CANCELLED.value,
                cancel_reason=reason,
                cancelled_at=at,
                cancelled_by=request.actor_id,
                updated_at=at,
            )
            .execution_options(synchronize_session=False)
        ),
    )
    if cursor.rowcount != 1:
        raise Errors.not_cancellable()

    items = (
        await session.execute(
            select(OrderItem).where(OrderItem.order_id == order.id).order_by(OrderItem.id)
        )
    ).scalars().all()
    restored = [
        await restore_stock(session, item, order_id=order.id, actor_id=request.actor_id, at=at)
        for item in items
    ]

    refunded = cast(
        CursorResult[Any],
        await session.execute(
            update(PaymentRecord)
            .where(
                PaymentRecord.order_id == order.id,
                PaymentRecord.status != PaymentStatus.REFUNDED,
            )
            .values(status=PaymentStatus.REFUNDED, updated_at=at)
            .execution_options(synchronize_session=False)
        ),
    )

    if order.shipment_ref:
        enqueue(session, order.id, ORDER_CANCELLED, at=at, payload={"shipmentRef": order.shipment_ref})

    await session.flush()
    return CancelledOrder(
        order_id=order.id,
        order_number=order.order_number,
        restored=tuple(restored),
        refunded_payments=refunded.rowcount,
    )


__all__ = ("restore_stock", "run_cancellation")
