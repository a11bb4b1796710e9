import asyncio
from dataclasses import replace
from decimal import Decimal

import pytest
from sqlalchemy import update

from conftest import (
    NOW,
    FakeRazorpay,
    RecordingSender,
    RecordingShipments,
    Shop,
    err,
    ok,
    proof_for,
)
from settlement import db
from settlement._errors import (
    ConflictError,
    GatewayRequestError,
    InsufficientStockError,
    InvalidSignatureError,
    NotFoundError,
    ValidationError,
)
from settlement._types import Ok
from settlement.checkout import (
    CancelRequest,
    CashOrderRequest,
    CheckoutRequest,
    CheckoutService,
    OrderStatus,
    PaymentProof,
    VerifyRequest,
)
from settlement.checkout import _loader, _transaction
from settlement.gateway import GatewayName
from settlement.outbox import EventStatus, OutboxDispatcher
from settlement.pricing import CarriedCoupon

D = Decimal


def _verify(user: db.User, address: db.Address | None, intent_ref: str, payment_ref: str, **kw) -> VerifyRequest:
    return VerifyRequest(
        user_id=user.id,
        proof=proof_for(intent_ref, payment_ref),
        address_id=address.id if address is not None else None,
        **kw,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Happy path
# ═══════════════════════════════════════════════════════════════════════════════


async def test_verified_payment_commits_the_whole_order(
    service: CheckoutService,
    shop: Shop,
    dispatcher: OutboxDispatcher,
    sender: RecordingSender,
    shipments: RecordingShipments,
) -> None:
    user, address, variant = await shop.buyer_with_cart(price="100.00", stock=5, quantity=2)

    settled = ok(await service.verify(_verify(user, address, "order_1", "pay_1")))

    assert settled.status == OrderStatus.PAID.value
    assert settled.total == D("200.00")
    assert settled.order_number.startswith("ORD-")

    order = await shop.get(db.Order, settled.order_id)
    assert order.payment_method == "RAZORPAY"
    assert order.payment_gateway == "RAZORPAY"
    assert order.intent_ref == "order_1"
    assert order.shipping_address_id == address.id
    assert order.created_at == NOW

    (payment,) = await shop.all(db.PaymentRecord)
    assert payment.id == settled.payment_id
    assert payment.status == "CAPTURED"
    assert payment.payment_method == "UPI"
    assert payment.amount == D("200.00")

    (item,) = await shop.all(db.OrderItem)
    assert (item.quantity, item.price, item.subtotal) == (2, D("100.00"), D("200.00"))

    assert await shop.stock(variant) == 3
    (log,) = await shop.all(db.InventoryLog)
    assert (log.reason, log.quantity_change, log.previous_quantity, log.new_quantity) == ("sale", -2, 5, 3)
    assert log.reference_id == settled.order_id
    assert await shop.count(db.CartItem, db.CartItem.user_id == user.id) == 0

    await dispatcher.wait_idle()
    events = await shop.all(db.OutboxEvent)
    assert {e.kind for e in events} == {"referral.reward", "shipment.register", "email.confirmation"}
    assert {e.status for e in events} == {EventStatus.DONE}
    assert [email for email, _ in sender.sent] == [user.email]
    assert shipments.registered == [settled.order_id]
    assert (await shop.get(db.Order, settled.order_id)).shipment_ref == f"SHIP-{settled.order_number}"


async def test_flash_sale_order_records_original_price_and_sold_count(
    service: CheckoutService, shop: Shop
) -> None:
    user = await shop.user()
    address = await shop.address(user)
    variant = await shop.variant("100.00", 50)
    await shop.slab(variant, 10, "90.00")
    sale = await shop.flash_sale(variant, "20")
    await shop.cart(user, variant, 12)

    settled = ok(await service.verify(_verify(user, address, "order_1", "pay_1")))

    assert settled.total == D("864.00")
    (item,) = await shop.all(db.OrderItem)
    assert item.price == D("72.00")
    assert item.original_price == D("90.00")
    assert item.flash_sale_id == sale.id
    assert item.flash_sale_name == "Midnight Sale"
    assert (await shop.get(db.FlashSale, sale.id)).sold_count == 12


async def test_shipping_is_added_below_threshold(service: CheckoutService, shop: Shop) -> None:
    await shop.shipping("500", "49")
    user, address, _ = await shop.buyer_with_cart(price="100.00", quantity=2)

    settled = ok(await service.verify(_verify(user, address, "order_1", "pay_1")))

    order = await shop.get(db.Order, settled.order_id)
    assert (order.sub_total, order.shipping_cost, order.total) == (D("200.00"), D("49.00"), D("249.00"))


async def test_method_lookup_failure_still_settles(
    service: CheckoutService, shop: Shop, razorpay: FakeRazorpay
) -> None:
    razorpay.fail_payments = True
    user, address, _ = await shop.buyer_with_cart()

    ok(await service.verify(_verify(user, address, "order_1", "pay_1")))

    (payment,) = await shop.all(db.PaymentRecord)
    assert payment.payment_method == "OTHER"


# ═══════════════════════════════════════════════════════════════════════════════
# Rejections leave no rows behind
# ═══════════════════════════════════════════════════════════════════════════════


async def test_invalid_signature_is_rejected_before_any_write(service: CheckoutService, shop: Shop) -> None:
    user, address, variant = await shop.buyer_with_cart(stock=5)
    forged = PaymentProof(intent_ref="order_1", payment_ref="pay_1", signature="0" * 64)

    e = err(await service.verify(VerifyRequest(user_id=user.id, proof=forged, address_id=address.id)))

    assert isinstance(e, InvalidSignatureError)
    assert await shop.count(db.Order) == 0
    assert await shop.stock(variant) == 5
    assert await shop.count(db.CartItem) == 1


async def test_incomplete_proof_is_a_validation_error(service: CheckoutService, shop: Shop) -> None:
    user, address, _ = await shop.buyer_with_cart()
    proof = PaymentProof(intent_ref="order_1", payment_ref=" ", signature="abc")

    e = err(await service.verify(VerifyRequest(user_id=user.id, proof=proof, address_id=address.id)))

    assert isinstance(e, ValidationError)
    assert "payment_ref" in e.message


async def test_empty_cart_is_rejected(service: CheckoutService, shop: Shop) -> None:
    user = await shop.user()
    address = await shop.address(user)

    e = err(await service.verify(_verify(user, address, "order_1", "pay_1")))

    assert isinstance(e, ValidationError)
    assert e.message == "No items in cart"


async def test_address_is_required_and_must_belong_to_buyer(service: CheckoutService, shop: Shop) -> None:
    user, _, _ = await shop.buyer_with_cart()
    stranger = await shop.user()
    foreign = await shop.address(stranger)

    missing = err(await service.verify(_verify(user, None, "order_1", "pay_1")))
    other = err(await service.verify(_verify(user, foreign, "order_1", "pay_2")))

    assert isinstance(missing, ValidationError)
    assert isinstance(other, NotFoundError)
    assert await shop.count(db.Order) == 0


async def test_settlement_refuses_priced_inputs_without_an_address(
    service: CheckoutService, shop: Shop, monkeypatch: pytest.MonkeyPatch
) -> None:
    user, address, variant = await shop.buyer_with_cart(stock=5, quantity=1)
    load_inputs = _transaction.load_pricing_inputs

    async def addressless(session, **kwargs):
        return replace(await load_inputs(session, **kwargs), address=None)

    monkeypatch.setattr(_transaction, "load_pricing_inputs", addressless)
    e = err(await service.verify(_verify(user, address, "order_1", "pay_1")))

    assert isinstance(e, ValidationError)
    assert e.message == "Shipping address is required"
    assert await shop.count(db.Order) == 0
    assert await shop.stock(variant) == 5


async def test_insufficient_stock_rolls_back(service: CheckoutService, shop: Shop) -> None:
    user, address, variant = await shop.buyer_with_cart(stock=1, quantity=2)

    e = err(await service.verify(_verify(user, address, "order_1", "pay_1")))

    assert isinstance(e, InsufficientStockError)
    assert e.message.startswith("Not enough stock for Product")
    assert await shop.count(db.Order) == 0
    assert await shop.count(db.PaymentRecord) == 0
    assert await shop.stock(variant) == 1


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotency and races
# ═══════════════════════════════════════════════════════════════════════════════


async def test_same_payment_settles_once(service: CheckoutService, shop: Shop) -> None:
    user, address, variant = await shop.buyer_with_cart(stock=10, quantity=2)
    request = _verify(user, address, "order_1", "pay_1")

    ok(await service.verify(request))
    await shop.cart(user, variant, 2)
    e = err(await service.verify(request))

    assert isinstance(e, ConflictError)
    assert e.message == "Payment already processed"
    assert await shop.count(db.Order) == 1
    assert await shop.stock(variant) == 8


async def test_concurrent_buyers_cannot_oversell_last_unit(service: CheckoutService, shop: Shop) -> None:
    variant = await shop.variant("100.00", 1)
    buyers = []
    for _ in range(2):
        user = await shop.user()
        buyers.append((user, await shop.address(user)))
        await shop.cart(user, variant, 1)

    results = await asyncio.gather(
        *(
            service.verify(_verify(user, address, f"order_{n}", f"pay_{n}"))
            for n, (user, address) in enumerate(buyers)
        )
    )

    settled = [r for r in results if isinstance(r, Ok)]
    (lost,) = [err(r) for r in results if not isinstance(r, Ok)]
    assert len(settled) == 1
    assert isinstance(lost, InsufficientStockError)
    assert await shop.stock(variant) == 0
    assert await shop.count(db.Order) == 1


async def test_intent_of_cancelled_order_cannot_settle_again(service: CheckoutService, shop: Shop) -> None:
    user, address, variant = await shop.buyer_with_cart()
    settled = ok(await service.verify(_verify(user, address, "order_1", "pay_1")))
    ok(await service.cancel_order(CancelRequest(settled.order_id, user.id, "changed my mind")))

    await shop.cart(user, variant, 1)
    e = err(await service.verify(_verify(user, address, "order_1", "pay_2")))

    assert isinstance(e, ConflictError)
    assert "previously cancelled" in e.message
    assert await shop.count(db.Order) == 1


# ═══════════════════════════════════════════════════════════════════════════════
# Coupons
# ═══════════════════════════════════════════════════════════════════════════════


async def test_user_coupon_is_consumed_once(service: CheckoutService, shop: Shop) -> None:
    user, address, variant = await shop.buyer_with_cart(price="100.00", quantity=2)
    coupon = await shop.coupon("SAVE10", "10")
    user_coupon = await shop.assign(user, coupon)

    first = ok(await service.verify(_verify(user, address, "order_1", "pay_1")))
    await shop.cart(user, variant, 2)
    second = ok(await service.verify(_verify(user, address, "order_2", "pay_2")))

    assert first.total == D("180.00")
    assert second.total == D("200.00")
    assert (await shop.get(db.UserCoupon, user_coupon.id)).is_active is False
    assert (await shop.get(db.Coupon, coupon.id)).used_count == 1
    order = await shop.get(db.Order, first.order_id)
    assert (order.discount, order.coupon_code) == (D("20.00"), "SAVE10")


async def test_carried_discount_is_recomputed_server_side(service: CheckoutService, shop: Shop) -> None:
    user, address, _ = await shop.buyer_with_cart(price="100.00", quantity=2)
    await shop.coupon("SAVE10", "10")

    settled = ok(
        await service.verify(
            _verify(
                user,
                address,
                "order_1",
                "pay_1",
                coupon=CarriedCoupon(code="SAVE10", discount_amount=D("150.00")),
            )
        )
    )

    assert settled.total == D("180.00")


async def test_exhausted_coupon_rejects_settlement(service: CheckoutService, shop: Shop) -> None:
    user, address, variant = await shop.buyer_with_cart(quantity=1)
    coupon = await shop.coupon("ONCE", "50", kind="FIXED", max_uses=1)
    carried = CarriedCoupon(coupon_id=coupon.id, code="ONCE")

    ok(await service.verify(_verify(user, address, "order_1", "pay_1", coupon=carried)))
    await shop.cart(user, variant, 1)
    e = err(await service.verify(_verify(user, address, "order_2", "pay_2", coupon=carried)))

    assert isinstance(e, ConflictError)
    assert e.message == "Coupon ONCE is no longer valid"
    assert await shop.count(db.Order) == 1


async def test_buyer_cannot_redeem_the_same_code_twice(service: CheckoutService, shop: Shop) -> None:
    user, address, variant = await shop.buyer_with_cart(price="100.00", quantity=2)
    coupon = await shop.coupon("SAVE10", "10")
    carried = CarriedCoupon(code="SAVE10")

    first = ok(await service.verify(_verify(user, address, "order_1", "pay_1", coupon=carried)))
    await shop.cart(user, variant, 2)
    e = err(await service.verify(_verify(user, address, "order_2", "pay_2", coupon=carried)))

    assert first.total == D("180.00")
    assert isinstance(e, ConflictError)
    assert e.message == "Coupon has already been used"
    assert await shop.count(db.Order) == 1
    assert (await shop.get(db.Coupon, coupon.id)).used_count == 1

    neighbour, neighbour_address, _ = await shop.buyer_with_cart(price="100.00", quantity=2)
    other = ok(await service.verify(_verify(neighbour, neighbour_address, "order_3", "pay_3", coupon=carried)))
    assert other.total == D("180.00")
    assert (await shop.get(db.Coupon, coupon.id)).used_count == 2


async def test_spent_user_coupon_cannot_come_back_as_a_carried_one(
    service: CheckoutService, shop: Shop
) -> None:
    await shop.payments(cash=True)
    user, address, variant = await shop.buyer_with_cart(price="100.00", quantity=2)
    coupon = await shop.coupon("WELCOME", "10")
    user_coupon = await shop.assign(user, coupon)

    cash = ok(await service.create_cash_order(CashOrderRequest(user_id=user.id, address_id=address.id)))
    await shop.cart(user, variant, 2)
    e = err(
        await service.verify(
            _verify(user, address, "order_1", "pay_1", coupon=CarriedCoupon(coupon_id=coupon.id, code="WELCOME"))
        )
    )

    assert (await shop.get(db.Order, cash.order_id)).discount == D("20.00")
    assert (await shop.get(db.UserCoupon, user_coupon.id)).is_active is False
    assert isinstance(e, ConflictError)
    assert e.message == "Coupon has already been used"
    assert await shop.count(db.Order) == 1
    assert (await shop.get(db.Coupon, coupon.id)).used_count == 1


async def test_user_coupon_spent_by_a_concurrent_checkout_aborts_the_order(
    service: CheckoutService, shop: Shop, monkeypatch: pytest.MonkeyPatch
) -> None:
    user, address, variant = await shop.buyer_with_cart(price="100.00", stock=5, quantity=2)
    coupon = await shop.coupon("SAVE10", "10")
    user_coupon = await shop.assign(user, coupon)
    read_coupon = _loader.load_user_coupon

    async def read_then_lose_the_race(session, user_id, at):
        found = await read_coupon(session, user_id, at)
        await session.execute(
            update(db.UserCoupon)
            .where(db.UserCoupon.id == user_coupon.id)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        return found

    monkeypatch.setattr(_loader, "load_user_coupon", read_then_lose_the_race)
    e = err(await service.verify(_verify(user, address, "order_1", "pay_1")))

    assert isinstance(e, ConflictError)
    assert e.message == "Coupon has already been used"
    assert await shop.count(db.Order) == 0
    assert await shop.stock(variant) == 5
    assert (await shop.get(db.Coupon, coupon.id)).used_count == 0

    monkeypatch.undo()
    settled = ok(await service.verify(_verify(user, address, "order_2", "pay_2")))

    assert settled.total == D("180.00")
    assert await shop.count(db.Order) == 1
    assert (await shop.get(db.Coupon, coupon.id)).used_count == 1
    assert (await shop.get(db.UserCoupon, user_coupon.id)).is_active is False


# ═══════════════════════════════════════════════════════════════════════════════
# Intents and webhooks
# ═══════════════════════════════════════════════════════════════════════════════


async def test_intent_is_priced_server_side_and_stored(
    service: CheckoutService, shop: Shop, razorpay: FakeRazorpay
) -> None:
    user, address, _ = await shop.buyer_with_cart(price="100.00", quantity=3)

    intent = ok(
        await service.create_intent(
            CheckoutRequest(user_id=user.id, amount=D("1.00"), address_id=address.id)
        )
    )

    assert intent.amount == D("300.00")
    assert intent.amount_minor == 30000
    assert intent.gateway is GatewayName.RAZORPAY
    assert intent.key_id == "rzp_test_key"
    (sent,) = razorpay.orders
    assert sent["amount"] == 30000
    assert sent["notes"]["addressId"] == address.id

    stored = await shop.get(db.CheckoutIntent, intent.intent_ref)
    assert (stored.user_id, stored.amount, stored.shipping_address_id) == (user.id, D("300.00"), address.id)


async def test_intent_carries_coupon_to_webhook_settlement(
    service: CheckoutService, shop: Shop
) -> None:
    user, address, _ = await shop.buyer_with_cart(price="100.00", quantity=2)
    await shop.coupon("SAVE10", "10")
    intent = ok(
        await service.create_intent(
            CheckoutRequest(user_id=user.id, address_id=address.id, coupon=CarriedCoupon(code="SAVE10"))
        )
    )
    assert intent.quote.discount == D("20.00")

    settled = ok(await service.settle_webhook(GatewayName.RAZORPAY, proof_for(intent.intent_ref, "pay_w1")))

    order = await shop.get(db.Order, settled.order_id)
    assert order.user_id == user.id
    assert order.total == D("180.00")
    assert order.coupon_code == "SAVE10"


async def test_webhook_requires_a_stored_intent_for_that_gateway(
    service: CheckoutService, shop: Shop
) -> None:
    user, address, _ = await shop.buyer_with_cart()
    intent = ok(await service.create_intent(CheckoutRequest(user_id=user.id, address_id=address.id)))

    unknown = err(await service.settle_webhook(GatewayName.RAZORPAY, proof_for("order_404", "pay_1")))
    wrong_gateway = err(
        await service.settle_webhook(GatewayName.PHONEPE, proof_for(intent.intent_ref, "pay_1"))
    )

    assert isinstance(unknown, NotFoundError)
    assert isinstance(wrong_gateway, NotFoundError)
    assert await shop.count(db.Order) == 0


async def test_webhook_replay_after_client_verify_is_a_conflict(service: CheckoutService, shop: Shop) -> None:
    user, address, _ = await shop.buyer_with_cart()
    intent = ok(await service.create_intent(CheckoutRequest(user_id=user.id, address_id=address.id)))
    proof = proof_for(intent.intent_ref, "pay_1")

    ok(await service.verify(VerifyRequest(user_id=user.id, proof=proof)))
    e = err(await service.settle_webhook(GatewayName.RAZORPAY, proof))

    assert isinstance(e, ConflictError)
    assert await shop.count(db.Order) == 1


async def test_another_buyer_cannot_verify_a_stored_intent(service: CheckoutService, shop: Shop) -> None:
    user, address, _ = await shop.buyer_with_cart()
    intruder, intruder_address, _ = await shop.buyer_with_cart()
    intent = ok(await service.create_intent(CheckoutRequest(user_id=user.id, address_id=address.id)))

    e = err(await service.verify(_verify(intruder, intruder_address, intent.intent_ref, "pay_1")))

    assert isinstance(e, NotFoundError)


async def test_gateway_failure_creates_no_intent(
    service: CheckoutService, shop: Shop, razorpay: FakeRazorpay
) -> None:
    razorpay.fail_orders = True
    user, address, _ = await shop.buyer_with_cart()

    e = err(await service.create_intent(CheckoutRequest(user_id=user.id, address_id=address.id)))

    assert isinstance(e, GatewayRequestError)
    assert await shop.count(db.CheckoutIntent) == 0


async def test_disabled_gateway_and_tiny_totals_are_refused(service: CheckoutService, shop: Shop) -> None:
    await shop.payments(phonepe=False)
    user, address, _ = await shop.buyer_with_cart(price="0.40", quantity=1)

    disabled = err(
        await service.create_intent(
            CheckoutRequest(user_id=user.id, gateway=GatewayName.PHONEPE, address_id=address.id)
        )
    )
    tiny = err(await service.create_intent(CheckoutRequest(user_id=user.id, address_id=address.id)))

    assert isinstance(disabled, ValidationError)
    assert disabled.message == "PHONEPE payments are not enabled"
    assert isinstance(tiny, ValidationError)
    assert "at least 1" in tiny.message


# ═══════════════════════════════════════════════════════════════════════════════
# Quote and order lifecycle
# ═══════════════════════════════════════════════════════════════════════════════


async def test_quote_matches_what_settlement_charges(service: CheckoutService, shop: Shop) -> None:
    await shop.shipping("1000", "49")
    user, address, _ = await shop.buyer_with_cart(price="150.00", quantity=3)

    quote = ok(await service.quote(user.id, address_id=address.id))
    settled = ok(await service.verify(_verify(user, address, "order_1", "pay_1")))

    assert quote.total == settled.total == D("499.00")
    assert await shop.count(db.Order) == 1


async def test_order_moves_forward_only(service: CheckoutService, shop: Shop) -> None:
    user, address, _ = await shop.buyer_with_cart()
    settled = ok(await service.verify(_verify(user, address, "order_1", "pay_1")))

    shipped = ok(await service.advance_order(settled.order_id, OrderStatus.SHIPPED))
    backwards = err(await service.advance_order(settled.order_id, OrderStatus.PAID))
    cancel = err(await service.advance_order(settled.order_id, OrderStatus.CANCELLED))
    missing = err(await service.advance_order("nope", OrderStatus.SHIPPED))

    assert shipped.status == "SHIPPED"
    assert isinstance(backwards, ConflictError)
    assert isinstance(cancel, ValidationError)
    assert isinstance(missing, NotFoundError)
    assert (await shop.get(db.Order, settled.order_id)).status == "SHIPPED"
