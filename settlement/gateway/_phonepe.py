"""
PhonePe adapter — PG pay + status APIs.

Requests are authenticated with an `X-VERIFY` checksum:
`sha256(<base64 payload> + <api path> + <salt key>) + "###" + <salt index>`.
"""

from __future__ import annotations

import base64
import hashlib
import json
import secrets
from decimal import Decimal

import httpx

from settlement._errors import GatewayRequestError
from settlement._log import get_logger
from settlement._types import epoch_ms
from settlement.gateway._base import HttpGateway, make_receipt, to_minor_units
from settlement.gateway._types import Credentials, GatewayName, Intent, NormalizedMethod

log = get_logger("gateway.phonepe")

PAY_PATH = "/pg/v1/pay"

_INSTRUMENTS = {
    "UPI_COLLECT": NormalizedMethod.UPI,
    "UPI_INTENT": NormalizedMethod.UPI,
    "UPI_QR": NormalizedMethod.UPI,
    "UPI": NormalizedMethod.UPI,
    "CARD": NormalizedMethod.CARD,
    "NETBANKING": NormalizedMethod.NETBANKING,
}


def map_phonepe_instrument(raw: str | None) -> NormalizedMethod:
    return _INSTRUMENTS.get((raw or "").upper(), NormalizedMethod.OTHER)


def x_verify(payload: str, path: str, salt_key: str, salt_index: str) -> str:
    digest = hashlib.sha256(f"{payload}{path}{salt_key}".encode()).hexdigest()
    return f"{digest}###{salt_index}"


class PhonePeGateway(HttpGateway):
    gateway = GatewayName.PHONEPE

    def __init__(
        self,
        credentials: Credentials,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        timeout: float,
        callback_url: str | None = None,
    ) -> None:
        super().__init__(credentials, client, base_url=base_url, timeout=timeout)
        self._callback_url = callback_url

    @property
    def _merchant_id(self) -> str:
        return self._credentials.key_id

    def _checksum(self, payload: str, path: str) -> str:
        return x_verify(
            payload,
            path,
            self._credentials.secret.get_secret_value(),
            self._credentials.salt_index or "1",
        )

    async def _create_intent(
        self, amount: Decimal, currency: str, metadata: dict[str, str]
    ) -> Intent:
        receipt = metadata.pop("receipt", None) or make_receipt(metadata.get("userId", "anon"))
        minor = to_minor_units(amount)
        txn_id = f"MT{epoch_ms()}{secrets.token_hex(3)}"

        request = {
            "merchantId": self._merchant_id,
            "merchantTransactionId": txn_id,
            "merchantUserId": metadata.get("userId", "anon"),
            "amount": minor,
            "paymentInstrument": {"type": "PAY_PAGE"},
        }
        if self._callback_url:
            request["callbackUrl"] = self._callback_url
            request["redirectUrl"] = self._callback_url

        payload = base64.b64encode(json.dumps(request).encode()).decode()
        body = await self._request(
            "POST",
            PAY_PATH,
            json={"request": payload},
            headers={"X-VERIFY": self._checksum(payload, PAY_PATH)},
        )
        if not body.get("success"):
            raise GatewayRequestError(f"PHONEPE rejected payment: {body.get('code', 'UNKNOWN')}")

        redirect = (
            body.get("data", {})
            .get("instrumentResponse", {})
            .get("redirectInfo", {})
            .get("url")
        )
        log.info("intent_created", intent_ref=txn_id, amount_minor=minor, currency=currency)
        return Intent(
            ref=txn_id,
            amount=amount,
            amount_minor=minor,
            currency=currency,
            receipt=receipt,
            redirect_url=redirect,
            metadata=metadata,
        )

    async def _fetch_method(self, payment_ref: str, intent_ref: str | None) -> NormalizedMethod:
        # Status is looked up by merchant transaction id, i.e. the intent ref.
        txn_id = intent_ref or payment_ref
        path = f"/pg/v1/status/{self._merchant_id}/{txn_id}"
        body = await self._request(
            "GET",
            path,
            headers={
                "X-VERIFY": self._checksum("", path),
                "X-MERCHANT-ID": self._merchant_id,
            },
        )
        instrument = body.get("data", {}).get("paymentInstrument", {}) or {}
        return map_phonepe_instrument(instrument.get("type"))


__all__ = ("PAY_PATH", "PhonePeGateway", "map_phonepe_instrument", "x_verify")
