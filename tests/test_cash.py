from decimal import Decimal

from conftest import Shop, err, ok
from settlement import db
from settlement._errors import ValidationError
from settlement.checkout import CASH, CashOrderRequest, CheckoutService, OrderStatus

D = Decimal


async def test_cash_order_is_pending_and_charges_cod(service: CheckoutService, shop: Shop) -> None:
    await shop.payments(cash=True, cod_charge="40")
    user, address, variant = await shop.buyer_with_cart(price="100.00", stock=4, quantity=2)

    settled = ok(await service.create_cash_order(CashOrderRequest(user.id, address.id)))

    assert settled.status == OrderStatus.PENDING.value
    assert settled.payment_id is None
    order = await shop.get(db.Order, settled.order_id)
    assert order.payment_method == CASH
    assert order.payment_gateway is None
    assert order.intent_ref is None
    assert (order.sub_total, order.cod_charge, order.total) == (D("200.00"), D("40.00"), D("240.00"))
    assert await shop.count(db.PaymentRecord) == 0
    assert await shop.stock(variant) == 2
    assert await shop.count(db.CartItem) == 0


async def test_cash_disabled_by_default(service: CheckoutService, shop: Shop) -> None:
    user, address, variant = await shop.buyer_with_cart(stock=4)

    e = err(await service.create_cash_order(CashOrderRequest(user.id, address.id)))

    assert isinstance(e, ValidationError)
    assert e.message == "Cash on Delivery is not enabled"
    assert await shop.count(db.Order) == 0
    assert await shop.stock(variant) == 4


async def test_cash_order_needs_an_address(service: CheckoutService, shop: Shop) -> None:
    await shop.payments(cash=True)
    user, _, _ = await shop.buyer_with_cart()

    e = err(await service.create_cash_order(CashOrderRequest(user.id, "")))

    assert isinstance(e, ValidationError)
    assert e.message == "Shipping address is required"


async def test_cash_order_consumes_user_coupon(service: CheckoutService, shop: Shop) -> None:
    await shop.payments(cash=True, cod_charge="25")
    await shop.shipping("1000", "49")
    user, address, _ = await shop.buyer_with_cart(price="250.00", quantity=2)
    coupon = await shop.coupon("FLAT100", "100", kind="FIXED")
    user_coupon = await shop.assign(user, coupon)

    settled = ok(await service.create_cash_order(CashOrderRequest(user.id, address.id)))

    # 500 - 100 + 49 shipping + 25 COD
    assert settled.total == D("474.00")
    assert (await shop.get(db.UserCoupon, user_coupon.id)).is_active is False
    assert (await shop.get(db.Coupon, coupon.id)).used_count == 1


async def test_payment_settings_reflect_store_row(service: CheckoutService, shop: Shop) -> None:
    defaults = ok(await service.payment_settings())
    await shop.payments(cash=True, cod_charge="30", phonepe=True)
    configured = ok(await service.payment_settings())

    assert (defaults.cash_enabled, defaults.razorpay_enabled, defaults.phonepe_enabled) == (False, True, False)
    assert (configured.cash_enabled, configured.phonepe_enabled, configured.cod_charge) == (True, True, D("30.00"))
