"""
Settlement transaction — the atomic unit.

Runs inside the caller's `session.begin()`. Every failure is raised, so the
whole unit rolls back: there is never a partial order.

Preconditions (in order, before any write):
1. proof verified (done by the caller, outside the unit)
2. no payment record carries this payment ref
3. no CANCELLED order is tied to this intent ref
4. cart non-empty, address belongs to buyer
5. every line re-priced from current rows; stock sufficient per line

Contended writes are conditional (`WHERE quantity >= :q`, `WHERE is_active`), so
a lost race surfaces as a typed error rather than a negative stock or a reused coupon.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, cast

from sqlalchemy import delete, or_, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement._errors import ConflictError, Errors, InsufficientStockError
from settlement._types import order_number
from settlement.checkout._loader import load_pricing_inputs
from settlement.checkout._states import OrderStatus, PaymentStatus
from settlement.checkout._types import PaymentProof, SettledOrder, SettlementPlan
from settlement.db import (
    CartItem,
    Coupon,
    CouponRedemption,
    FlashSale,
    InventoryLog,
    Order,
    OrderItem,
    PaymentRecord,
    UserCoupon,
    Variant,
)
from settlement.outbox._events import ORDER_SETTLED, enqueue
from settlement.pricing import AppliedCoupon, CartLine, CheckoutPolicy, PricedLine, QuotePipeline

CASH = "CASH"


async def _execute(session: AsyncSession, stmt: Any) -> CursorResult[Any]:
    return cast(CursorResult[Any], await session.execute(stmt))


# ═══════════════════════════════════════════════════════════════════════════════
# Preconditions
# ═══════════════════════════════════════════════════════════════════════════════


async def ensure_payment_is_new(session: AsyncSession, proof: PaymentProof) -> None:
    existing = (
        await session.execute(
            select(PaymentRecord.id).where(PaymentRecord.payment_ref == proof.payment_ref)
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise Errors.duplicate_payment()


async def ensure_intent_not_cancelled(session: AsyncSession, intent_ref: str) -> None:
    cancelled = (
        await session.execute(
            select(Order.id).where(
                Order.intent_ref == intent_ref,
                Order.status == OrderStatus.CANCELLED.value,
            ).limit(1)
        )
    ).scalar_one_or_none()
    if cancelled is not None:
        raise Errors.cancelled_intent()


def ensure_stock(lines: tuple[CartLine, ...]) -> None:
    for line in lines:
        if line.variant.quantity < line.quantity:
            raise InsufficientStockError(line.variant.product_name)


# ═══════════════════════════════════════════════════════════════════════════════
# Contended writes
# ═══════════════════════════════════════════════════════════════════════════════


async def decrement_stock(session: AsyncSession, line: CartLine) -> int:
    """Conditional decrement. Returns the new quantity."""
    cursor = await _execute(
        session,
        update(Variant)
        .where(Variant.id == line.variant.id, Variant.quantity >= line.quantity)
        .values(quantity=Variant.quantity - line.quantity)
        .execution_options(synchronize_session=False),
    )
    if cursor.rowcount != 1:
        raise InsufficientStockError(line.variant.product_name)
    return line.variant.quantity - line.quantity


async def consume_coupon(
    session: AsyncSession, coupon: AppliedCoupon, *, user_id: str, order_id: str, at: datetime
) -> None:
    if coupon.user_coupon_id is not None:
        cursor = await _execute(
            session,
            update(UserCoupon)
            .where(UserCoupon.id == coupon.user_coupon_id, UserCoupon.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session=False),
        )
        if cursor.rowcount != 1:
            raise Errors.coupon_consumed()

    cursor = await _execute(
        session,
        update(Coupon)
        .where(
            Coupon.id == coupon.coupon_id,
            or_(Coupon.max_uses.is_(None), Coupon.used_count < Coupon.max_uses),
        )
        .values(used_count=Coupon.used_count + 1)
        .execution_options(synchronize_session=False),
    )
    if cursor.rowcount != 1:
        raise Errors.coupon_invalid(coupon.code)

    session.add(
        CouponRedemption(
            user_id=user_id,
            coupon_id=coupon.coupon_id,
            order_id=order_id,
            user_coupon_id=coupon.user_coupon_id,
            created_at=at,
        )
    )
    try:
        await session.flush()
    except IntegrityError as e:
        raise Errors.coupon_consumed() from e


async def bump_sold_count(session: AsyncSession, flash_sale_id: str, quantity: int) -> None:
    await session.execute(
        update(FlashSale)
        .where(FlashSale.id == flash_sale_id)
        .values(sold_count=FlashSale.sold_count + quantity)
        .execution_options(synchronize_session=False)
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Line items
# ═══════════════════════════════════════════════════════════════════════════════


def _order_item(order_id: str, priced: PricedLine) -> OrderItem:
    variant = priced.line.variant
    flash = priced.flash_sale
    return OrderItem(
        order_id=order_id,
        product_id=variant.product_id,
        variant_id=variant.id,
        product_name=variant.product_name,
        sku=variant.sku,
        price=priced.unit_price,
        quantity=priced.line.quantity,
        subtotal=priced.subtotal,
        original_price=flash.original_price if flash else None,
        flash_sale_id=flash.flash_sale_id if flash else None,
        flash_sale_name=flash.name if flash else None,
        flash_sale_discount=flash.discount_percentage if flash else None,
    )


async def write_line(
    session: AsyncSession,
    *,
    order_id: str,
    priced: PricedLine,
    actor_id: str,
    at: datetime,
) -> None:
    line = priced.line
    session.add(_order_item(order_id, priced))

    new_quantity = await decrement_stock(session, line)
    session.add(
        InventoryLog(
            variant_id=line.variant.id,
            quantity_change=-line.quantity,
            reason="sale",
            reference_id=order_id,
            previous_quantity=line.variant.quantity,
            new_quantity=new_quantity,
            created_by=actor_id,
            created_at=at,
        )
    )

    if priced.flash_sale is not None:
        await bump_sold_count(session, priced.flash_sale.flash_sale_id, line.quantity)


# ═══════════════════════════════════════════════════════════════════════════════
# run_settlement(): the unit
# ═══════════════════════════════════════════════════════════════════════════════


async def run_settlement(
    session: AsyncSession,
    plan: SettlementPlan,
    *,
    pipeline: QuotePipeline,
    policy: CheckoutPolicy,
    at: datetime,
) -> SettledOrder:
    """
    Gateway and cash orders share this unit; `plan.payment is None` means cash.

    Must be called inside an open transaction; the caller commits.
    """
    payment = plan.payment
    if payment is not None:
        await ensure_payment_is_new(session, payment.proof)
        await ensure_intent_not_cancelled(session, payment.proof.intent_ref)

    inputs = await load_pricing_inputs(
        session,
        user_id=plan.user_id,
        policy=policy,
        at=at,
        address_id=plan.address_id,
        require_address=True,
        carried=plan.coupon,
        cash=plan.cash,
    )
    ensure_stock(inputs.lines)
    if inputs.address is None:
        raise Errors.missing("Shipping address")
    quote = await pipeline(inputs)

    order = Order(
        order_number=order_number(),
        user_id=plan.user_id,
        status=(OrderStatus.PENDING if payment is None else OrderStatus.PAID).value,
        payment_method=CASH if payment is None else payment.gateway.value,
        payment_gateway=None if payment is None else payment.gateway.value,
        payment_mode=None if payment is None else payment.mode,
        payment_owner_id=None if payment is None else payment.owner_id,
        intent_ref=None if payment is None else payment.proof.intent_ref,
        sub_total=quote.subtotal,
        discount=quote.discount,
        shipping_cost=quote.shipping,
        tax=quote.tax,
        cod_charge=quote.cod_charge,
        total=quote.total,
        coupon_id=quote.coupon.coupon_id if quote.coupon else None,
        coupon_code=quote.coupon.code if quote.coupon else None,
        shipping_address_id=inputs.address.id,
        created_at=at,
        updated_at=at,
    )
    session.add(order)
    await session.flush()

    if quote.coupon is not None and quote.coupon.amount > 0:
        await consume_coupon(session, quote.coupon, user_id=plan.user_id, order_id=order.id, at=at)

    payment_row: PaymentRecord | None = None
    if payment is not None:
        payment_row = PaymentRecord(
            order_id=order.id,
            gateway=payment.gateway.value,
            intent_ref=payment.proof.intent_ref,
            payment_ref=payment.proof.payment_ref,
            signature=payment.proof.signature,
            amount=quote.total,
            status=PaymentStatus.CAPTURED,
            payment_method=payment.method.value,
            created_at=at,
            updated_at=at,
        )
        session.add(payment_row)

    for priced in quote.lines:
        await write_line(session, order_id=order.id, priced=priced, actor_id=plan.user_id, at=at)

    await session.execute(
        delete(CartItem)
        .where(CartItem.id.in_([line.cart_item_id for line in inputs.lines]))
        .execution_options(synchronize_session=False)
    )
    enqueue(session, order.id, ORDER_SETTLED, at=at)

    try:
        await session.flush()
    except IntegrityError as e:
        raise _as_conflict(e, payment is not None) from e

    return SettledOrder(
        order_id=order.id,
        order_number=order.order_number,
        status=order.status,
        total=order.total,
        payment_id=payment_row.id if payment_row is not None else None,
    )


def _as_conflict(err: IntegrityError, has_payment: bool) -> ConflictError:
    text = str(err.orig).lower()
    if has_payment and "payment_ref" in text:
        return Errors.duplicate_payment()
    return ConflictError("Order could not be committed because of a conflicting update")


__all__ = (
    "CASH",
    "ensure_payment_is_new",
    "ensure_intent_not_cancelled",
    "ensure_stock",
    "decrement_stock",
    "consume_coupon",
    "bump_sold_count",
    "write_line",
    "run_settlement",
)
