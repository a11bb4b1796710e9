"""
Snapshot loader — reads everything pricing needs, inside the caller's unit.

Variant rows are selected `FOR UPDATE` so that, on backends with row locks,
the stock we price against is the stock we later decrement. (SQLite has no row
locks; there the whole unit runs under `BEGIN IMMEDIATE`.)
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement._errors import Errors
from settlement.db import (
    Address,
    CartItem,
    Coupon,
    CouponRedemption,
    FlashSale,
    FlashSaleProduct,
    PricingSlab,
    Product,
    UserCoupon,
    Variant,
)
from settlement.pricing import (
    ActiveUserCoupon,
    AddressSnapshot,
    CarriedCoupon,
    CartLine,
    CheckoutPolicy,
    CouponTerms,
    DiscountType,
    FlashSaleWindow,
    PricingInputs,
    Slab,
    VariantSnapshot,
)


# ═══════════════════════════════════════════════════════════════════════════════
# Row → snapshot
# ═══════════════════════════════════════════════════════════════════════════════


def _terms(coupon: Coupon) -> CouponTerms:
    return CouponTerms(
        coupon_id=coupon.id,
        code=coupon.code,
        discount_type=DiscountType(coupon.discount_type),
        value=coupon.discount_value,
        capped=coupon.is_discount_capped,
        is_active=coupon.is_active,
        expires_at=coupon.expires_at,
        max_uses=coupon.max_uses,
        used_count=coupon.used_count,
    )


def _address(row: Address) -> AddressSnapshot:
    return AddressSnapshot(
        id=row.id,
        user_id=row.user_id,
        full_name=row.full_name,
        line1=row.line1,
        city=row.city,
        state=row.state,
        postal_code=row.postal_code,
        country=row.country,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Loaders
# ═══════════════════════════════════════════════════════════════════════════════


async def load_cart_lines(session: AsyncSession, user_id: str) -> tuple[CartLine, ...]:
    rows = (
        await session.execute(
            select(CartItem, Variant, Product)
            .join(Variant, Variant.id == CartItem.variant_id)
            .join(Product, Product.id == Variant.product_id)
            .where(CartItem.user_id == user_id)
            .order_by(CartItem.created_at, CartItem.id)
            .with_for_update(of=Variant)
        )
    ).all()
    if not rows:
        return ()

    variant_ids = [variant.id for _, variant, _ in rows]
    product_ids = list({product.id for _, _, product in rows})
    slabs = (
        await session.execute(
            select(PricingSlab)
            .where(
                or_(
                    PricingSlab.variant_id.in_(variant_ids),
                    PricingSlab.product_id.in_(product_ids),
                )
            )
            .order_by(PricingSlab.min_qty.desc())
        )
    ).scalars().all()

    by_variant: dict[str, list[Slab]] = defaultdict(list)
    by_product: dict[str, list[Slab]] = defaultdict(list)
    for slab in slabs:
        entry = Slab(min_qty=slab.min_qty, max_qty=slab.max_qty, price=slab.price)
        if slab.variant_id is not None:
            by_variant[slab.variant_id].append(entry)
        elif slab.product_id is not None:
            by_product[slab.product_id].append(entry)

    return tuple(
        CartLine(
            cart_item_id=item.id,
            quantity=item.quantity,
            variant=VariantSnapshot(
                id=variant.id,
                product_id=product.id,
                product_name=product.name,
                sku=variant.sku,
                price=variant.price,
                sale_price=variant.sale_price,
                quantity=variant.quantity,
                variant_slabs=tuple(by_variant[variant.id]),
                product_slabs=tuple(by_product[product.id]),
            ),
        )
        for item, variant, product in rows
    )


async def load_flash_sales(
    session: AsyncSession, product_ids: list[str], at: datetime
) -> dict[str, FlashSaleWindow]:
    """Sales covering `at`, per product; the most recently started wins."""
    rows = (
        await session.execute(
            select(FlashSale, FlashSaleProduct.product_id)
            .join(FlashSaleProduct, FlashSaleProduct.flash_sale_id == FlashSale.id)
            .where(
                FlashSaleProduct.product_id.in_(product_ids),
                FlashSale.is_active.is_(True),
                FlashSale.start_time <= at,
                FlashSale.end_time >= at,
            )
            .order_by(FlashSale.start_time.desc(), FlashSale.id)
        )
    ).all()

    windows: dict[str, FlashSaleWindow] = {}
    for sale, product_id in rows:
        windows.setdefault(
            product_id,
            FlashSaleWindow(
                id=sale.id,
                name=sale.name,
                discount_percentage=sale.discount_percentage,
                start_time=sale.start_time,
                end_time=sale.end_time,
                is_active=sale.is_active,
            ),
        )
    return windows


async def load_address(session: AsyncSession, user_id: str, address_id: str) -> AddressSnapshot:
    row = (
        await session.execute(
            select(Address).where(Address.id == address_id, Address.user_id == user_id)
        )
    ).scalar_one_or_none()
    if row is None:
        raise Errors.address_not_found()
    return _address(row)


async def load_user_coupon(
    session: AsyncSession, user_id: str, at: datetime
) -> ActiveUserCoupon | None:
    row = (
        await session.execute(
            select(UserCoupon, Coupon)
            .join(Coupon, Coupon.id == UserCoupon.coupon_id)
            .where(UserCoupon.user_id == user_id, UserCoupon.is_active.is_(True))
            .limit(1)
        )
    ).first()
    if row is None:
        return None
    user_coupon, coupon = row
    terms = _terms(coupon)
    if not terms.usable_at(at):
        return None
    return ActiveUserCoupon(user_coupon_id=user_coupon.id, terms=terms)


async def redeemed_by(session: AsyncSession, user_id: str, coupon_id: str) -> bool:
    """Spent by this buyer, or assigned to them and since deactivated."""
    redemption = select(CouponRedemption.id).where(
        CouponRedemption.user_id == user_id, CouponRedemption.coupon_id == coupon_id
    )
    spent_assignment = select(UserCoupon.id).where(
        UserCoupon.user_id == user_id,
        UserCoupon.coupon_id == coupon_id,
        UserCoupon.is_active.is_(False),
    )
    found = await session.execute(select(or_(redemption.exists(), spent_assignment.exists())))
    return bool(found.scalar())


async def load_carried_terms(
    session: AsyncSession, user_id: str, carried: CarriedCoupon, at: datetime
) -> CouponTerms | None:
    """Re-validate a carried coupon against the coupon row and this buyer's history."""
    if carried.coupon_id is None and carried.code is None:
        return None
    stmt = select(Coupon)
    if carried.coupon_id is not None:
        stmt = stmt.where(Coupon.id == carried.coupon_id)
    else:
        stmt = stmt.where(Coupon.code == carried.code)

    coupon = (await session.execute(stmt)).scalar_one_or_none()
    label = carried.code or carried.coupon_id or ""
    if coupon is None:
        raise Errors.coupon_invalid(label)
    terms = _terms(coupon)
    if not terms.usable_at(at):
        raise Errors.coupon_invalid(terms.code)
    if await redeemed_by(session, user_id, coupon.id):
        raise Errors.coupon_consumed()
    return terms


async def load_pricing_inputs(
    session: AsyncSession,
    *,
    user_id: str,
    policy: CheckoutPolicy,
    at: datetime,
    address_id: str | None,
    require_address: bool,
    carried: CarriedCoupon | None = None,
    cash: bool = False,
) -> PricingInputs:
    lines = await load_cart_lines(session, user_id)
    if not lines:
        raise Errors.empty_cart()

    address: AddressSnapshot | None = None
    if address_id is not None:
        address = await load_address(session, user_id, address_id)
    elif require_address:
        raise Errors.missing("Shipping address")

    flash_sales = await load_flash_sales(
        session, list({line.variant.product_id for line in lines}), at
    )
    user_coupon = await load_user_coupon(session, user_id, at)
    carried_terms = None
    if user_coupon is None and carried is not None:
        carried_terms = await load_carried_terms(session, user_id, carried, at)

    return PricingInputs(
        user_id=user_id,
        lines=lines,
        policy=policy,
        at=at,
        address=address,
        flash_sales=flash_sales,
        user_coupon=user_coupon,
        carried=carried,
        carried_terms=carried_terms,
        cash=cash,
    )


__all__ = (
    "load_cart_lines",
    "load_flash_sales",
    "load_address",
    "load_user_coupon",
    "redeemed_by",
    "load_carried_terms",
    "load_pricing_inputs",
)
