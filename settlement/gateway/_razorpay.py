"""Razorpay adapter — Orders API + Payments API, HTTP basic auth."""

from __future__ import annotations

from decimal import Decimal

from settlement._errors import GatewayRequestError
from settlement._log import get_logger
from settlement.gateway._base import HttpGateway, make_receipt, to_minor_units
from settlement.gateway._types import GatewayName, Intent, NormalizedMethod

log = get_logger("gateway.razorpay")

_METHODS = {
    "card": NormalizedMethod.CARD,
    "netbanking": NormalizedMethod.NETBANKING,
    "wallet": NormalizedMethod.WALLET,
    "upi": NormalizedMethod.UPI,
    "emi": NormalizedMethod.EMI,
}


def map_razorpay_method(raw: str | None) -> NormalizedMethod:
    return _METHODS.get((raw or "").lower(), NormalizedMethod.OTHER)


class RazorpayGateway(HttpGateway):
    gateway = GatewayName.RAZORPAY

    @property
    def _auth(self) -> tuple[str, str]:
        return (self._credentials.key_id, self._credentials.secret.get_secret_value())

    async def _create_intent(
        self, amount: Decimal, currency: str, metadata: dict[str, str]
    ) -> Intent:
        receipt = metadata.pop("receipt", None) or make_receipt(metadata.get("userId", "anon"))
        minor = to_minor_units(amount)
        body = await self._request(
            "POST",
            "/orders",
            auth=self._auth,
            json={"amount": minor, "currency": currency, "receipt": receipt, "notes": metadata},
        )
        ref = body.get("id")
        if not ref:
            raise GatewayRequestError("RAZORPAY returned no order id")

        log.info("intent_created", intent_ref=ref, amount_minor=minor, currency=currency)
        return Intent(
            ref=str(ref),
            amount=amount,
            amount_minor=minor,
            currency=currency,
            receipt=receipt,
            metadata=metadata,
        )

    async def _fetch_method(self, payment_ref: str, intent_ref: str | None) -> NormalizedMethod:
        body = await self._request("GET", f"/payments/{payment_ref}", auth=self._auth)
        return map_razorpay_method(body.get("method"))


__all__ = ("RazorpayGateway", "map_razorpay_method")
