from collections.abc import AsyncIterator

import fastapi
import httpx
import pytest

from conftest import RAZORPAY_SECRET, Shop
from settlement import db
from settlement._errors import NotFoundError
from settlement.checkout import CheckoutService
from settlement.gateway import sign_payment
from settlement.http import create_app
from settlement.http._app import _settlement_error


@pytest.fixture
async def client(service: CheckoutService) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=create_app(service))
    async with httpx.AsyncClient(transport=transport, base_url="http://shop.test") as http:
        yield http


def _as(user: db.User, *, admin: bool = False) -> dict[str, str]:
    headers = {"X-User-Id": user.id}
    if admin:
        headers["X-User-Role"] = "admin"
    return headers


def _razorpay_callback(intent_ref: str, payment_ref: str) -> dict[str, str]:
    return {
        "razorpay_order_id": intent_ref,
        "razorpay_payment_id": payment_ref,
        "razorpay_signature": sign_payment(RAZORPAY_SECRET, intent_ref, payment_ref),
    }


async def test_buyer_identity_is_required(client: httpx.AsyncClient) -> None:
    response = await client.post("/checkout/cash-order", json={"addressId": "a1"})
    assert response.status_code == 401


async def test_payment_settings_are_public(client: httpx.AsyncClient, shop: Shop) -> None:
    await shop.payments(cash=True, cod_charge="40")

    response = await client.get("/payment-settings")

    assert response.status_code == 200
    assert response.json() == {
        "cash_enabled": True,
        "razorpay_enabled": True,
        "phonepe_enabled": False,
        "cod_charge": "40.00",
    }


async def test_cash_order_over_http(client: httpx.AsyncClient, shop: Shop) -> None:
    await shop.payments(cash=True, cod_charge="40")
    user, address, _ = await shop.buyer_with_cart(price="100.00", quantity=2)

    response = await client.post("/checkout/cash-order", json={"addressId": address.id}, headers=_as(user))

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["status"] == "PENDING"
    assert body["total"] == "240.00"
    assert body["payment_id"] is None


async def test_domain_errors_share_one_body_shape(client: httpx.AsyncClient, shop: Shop) -> None:
    user, address, _ = await shop.buyer_with_cart()

    response = await client.post("/checkout/cash-order", json={"address_id": address.id}, headers=_as(user))

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "code": "VALIDATION",
        "message": "Cash on Delivery is not enabled",
    }


async def test_checkout_then_verify_with_gateway_field_names(client: httpx.AsyncClient, shop: Shop) -> None:
    user, address, variant = await shop.buyer_with_cart(price="100.00", stock=5, quantity=2)

    created = await client.post(
        "/checkout", json={"addressId": address.id, "gateway": "razorpay", "amount": 200}, headers=_as(user)
    )
    assert created.status_code == 200
    intent = created.json()
    assert (intent["gateway"], intent["amount"], intent["amount_minor"]) == ("RAZORPAY", "200.00", 20000)
    assert intent["quote"]["lines"][0]["quantity"] == 2

    callback = {**_razorpay_callback(intent["intent_ref"], "pay_1"), "addressId": address.id}
    verified = await client.post("/checkout/verify", json=callback, headers=_as(user))

    assert verified.status_code == 200
    assert verified.json()["status"] == "PAID"
    assert await shop.stock(variant) == 3


async def test_bad_signature_is_a_400(client: httpx.AsyncClient, shop: Shop) -> None:
    user, address, _ = await shop.buyer_with_cart()
    payload = {**_razorpay_callback("order_1", "pay_1"), "razorpay_signature": "f" * 64, "addressId": address.id}

    response = await client.post("/checkout/verify", json=payload, headers=_as(user))

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_SIGNATURE"


async def test_quote_applies_coupon_code(client: httpx.AsyncClient, shop: Shop) -> None:
    await shop.coupon("SAVE10", "10")
    user, _, _ = await shop.buyer_with_cart(price="100.00", quantity=2)

    response = await client.get("/checkout/quote", params={"coupon_code": "SAVE10"}, headers=_as(user))

    assert response.status_code == 200
    quote = response.json()
    assert (quote["subtotal"], quote["discount"], quote["total"]) == ("200.00", "20.00", "180.00")
    assert quote["coupon_code"] == "SAVE10"


async def test_webhook_settles_once_and_acknowledges_replays(client: httpx.AsyncClient, shop: Shop) -> None:
    user, address, _ = await shop.buyer_with_cart()
    intent = (await client.post("/checkout", json={"addressId": address.id}, headers=_as(user))).json()
    callback = _razorpay_callback(intent["intent_ref"], "pay_w1")

    first = await client.post("/webhooks/razorpay", json=callback)
    replay = await client.post("/webhooks/RAZORPAY", json=callback)
    unknown = await client.post("/webhooks/stripe", json=callback)

    assert first.status_code == 200
    assert first.json()["status"] == "settled"
    assert replay.status_code == 200
    assert replay.json() == {"status": "ignored", "order_id": None}
    assert unknown.status_code == 400
    assert unknown.json()["code"] == "GATEWAY_NOT_CONFIGURED"
    assert await shop.count(db.Order) == 1


async def test_cancel_is_owner_scoped_unless_admin(client: httpx.AsyncClient, shop: Shop) -> None:
    await shop.payments(cash=True)
    user, address, variant = await shop.buyer_with_cart(stock=3, quantity=1)
    order = (
        await client.post("/checkout/cash-order", json={"addressId": address.id}, headers=_as(user))
    ).json()
    support = await shop.user()
    path = f"/orders/{order['order_id']}/cancel"

    denied = await client.post(path, json={"reason": "duplicate"}, headers=_as(support))
    allowed = await client.post(path, json={"reason": "duplicate"}, headers=_as(support, admin=True))
    again = await client.post(path, json={"reason": "duplicate"}, headers=_as(user))

    assert denied.status_code == 404
    assert allowed.status_code == 200
    assert allowed.json()["restored_items"] == 1
    assert again.status_code == 409
    assert await shop.stock(variant) == 3


async def test_unknown_gateway_in_body_is_rejected(client: httpx.AsyncClient, shop: Shop) -> None:
    user, address, _ = await shop.buyer_with_cart()

    response = await client.post("/checkout", json={"addressId": address.id, "gateway": "stripe"}, headers=_as(user))

    assert response.status_code == 422


async def test_error_handler_renders_only_domain_errors() -> None:
    request = fastapi.Request({"type": "http", "method": "GET", "path": "/orders", "headers": []})

    rendered = await _settlement_error(request, NotFoundError("Order not found"))
    assert rendered.status_code == 404

    with pytest.raises(RuntimeError, match="boom"):
        await _settlement_error(request, RuntimeError("boom"))
