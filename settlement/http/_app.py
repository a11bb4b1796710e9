"""
FastAPI surface.

    app = create_app(service)
    # uvicorn settlement.http:app  (after building the service yourself)

Caller identity comes from the `X-User-Id` header set by the fronting auth layer;
`X-User-Role: admin` allows cancelling other users' orders.
"""

from typing import Annotated

import fastapi
from fastapi.responses import JSONResponse

from settlement._errors import ConflictError, SettlementError
from settlement._log import get_logger
from settlement._types import Error, Ok
from settlement.checkout import CheckoutService
from settlement.gateway import parse_gateway
from settlement.http._schemas import (
    CancelIn,
    CancelledOut,
    CashOrderIn,
    CheckoutIn,
    CouponIn,
    ErrorOut,
    IntentOut,
    OrderOut,
    PaymentSettingsOut,
    ProofIn,
    QuoteOut,
    VerifyIn,
    WebhookOut,
)

log = get_logger("http")


async def current_user(
    x_user_id: Annotated[str | None, fastapi.Header()] = None,
) -> str:
    if not x_user_id:
        raise fastapi.HTTPException(status_code=401, detail="Authentication required")
    return x_user_id


async def is_admin(
    x_user_role: Annotated[str | None, fastapi.Header()] = None,
) -> bool:
    return (x_user_role or "").lower() == "admin"


UserId = Annotated[str, fastapi.Depends(current_user)]
Admin = Annotated[bool, fastapi.Depends(is_admin)]


async def _settlement_error(request: fastapi.Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, SettlementError):
        raise exc
    if exc.status_code >= 500:
        log.error("request_failed", path=request.url.path, code=exc.code, message=exc.message)
    body = ErrorOut(code=exc.code, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


def create_app(service: CheckoutService) -> fastapi.FastAPI:
    app = fastapi.FastAPI(title="settlement")
    app.add_exception_handler(SettlementError, _settlement_error)

    @app.post("/checkout")
    async def create_checkout(body: CheckoutIn, user_id: UserId) -> IntentOut:
        match await service.create_intent(body.to_domain(user_id)):
            case Ok(intent):
                return IntentOut.from_domain(intent)
            case Error(e):
                raise e

    @app.post("/checkout/verify")
    async def verify_payment(body: VerifyIn, user_id: UserId) -> OrderOut:
        match await service.verify(body.to_domain(user_id)):
            case Ok(order):
                return OrderOut.from_domain(order)
            case Error(e):
                raise e

    @app.post("/checkout/cash-order")
    async def create_cash_order(body: CashOrderIn, user_id: UserId) -> OrderOut:
        match await service.create_cash_order(body.to_domain(user_id)):
            case Ok(order):
                return OrderOut.from_domain(order)
            case Error(e):
                raise e

    @app.get("/checkout/quote")
    async def quote(
        user_id: UserId,
        address_id: str | None = None,
        coupon_code: str | None = None,
        coupon_id: str | None = None,
    ) -> QuoteOut:
        coupon = CouponIn(coupon_code=coupon_code, coupon_id=coupon_id).carried()
        match await service.quote(user_id, address_id=address_id, coupon=coupon):
            case Ok(priced):
                return QuoteOut.from_domain(priced)
            case Error(e):
                raise e

    @app.get("/payment-settings")
    async def payment_settings() -> PaymentSettingsOut:
        match await service.payment_settings():
            case Ok(settings):
                return PaymentSettingsOut.from_domain(settings)
            case Error(e):
                raise e

    @app.post("/orders/{order_id}/cancel")
    async def cancel_order(order_id: str, body: CancelIn, user_id: UserId, admin: Admin) -> CancelledOut:
        match await service.cancel_order(body.to_domain(order_id, user_id, as_admin=admin)):
            case Ok(cancelled):
                return CancelledOut.from_domain(cancelled)
            case Error(e):
                raise e

    @app.post("/webhooks/{gateway}")
    async def payment_webhook(gateway: str, body: ProofIn) -> WebhookOut:
        match parse_gateway(gateway):
            case Ok(name):
                pass
            case Error(err):
                raise err

        match await service.settle_webhook(name, body.proof()):
            case Ok(order):
                return WebhookOut(status="settled", order_id=order.order_id)
            case Error(ConflictError() as e):
                # Already settled (or cancelled): acknowledge so the gateway stops retrying.
                log.info("webhook_ignored", gateway=name.value, intent_ref=body.intent_ref, reason=e.message)
                return WebhookOut(status="ignored")
            case Error(e):
                raise e

    return app


__all__ = ("current_user", "is_admin", "create_app")
