"""
Shared gateway mechanics: minor units, HMAC proofs, bounded HTTP calls.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx
from combinators import TimeoutError as FlowTimeout
from combinators import flow
from combinators import lift as L
from kungfu import Error, LazyCoroResult, Ok

from settlement._errors import Errors, GatewayError, GatewayRequestError, as_gateway_error
from settlement._log import get_logger
from settlement._types import HUNDRED, epoch_ms, money
from settlement.gateway._types import Credentials, GatewayName, Intent, NormalizedMethod

log = get_logger("gateway")

RECEIPT_MAX = 40


# ═══════════════════════════════════════════════════════════════════════════════
# Pure helpers
# ═══════════════════════════════════════════════════════════════════════════════


def to_minor_units(amount: Decimal | int | float | str) -> int:
    """Round to cents first, then scale. Scaling first drifts by a cent on inputs like 1.005."""
    return int((money(amount) * HUNDRED).to_integral_value(rounding=ROUND_HALF_UP))


def make_receipt(user_id: str, now_ms: int | None = None) -> str:
    """`rcpt_{last 10 digits of epoch-ms}_{last 4 of buyer id}`."""
    ms = str(now_ms if now_ms is not None else epoch_ms())
    return f"rcpt_{ms[-10:]}_{user_id[-4:]}"[:RECEIPT_MAX]


def sign_payment(secret: str, intent_ref: str, payment_ref: str) -> str:
    """Hex HMAC-SHA256 over `intent_ref|payment_ref`."""
    message = f"{intent_ref}|{payment_ref}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def _keep(err: Exception) -> Exception:
    return err


# ═══════════════════════════════════════════════════════════════════════════════
# HttpGateway: base for both processors
# ═══════════════════════════════════════════════════════════════════════════════


class HttpGateway:
    """
    Base adapter.

    Subclasses implement `_create_intent` / `_fetch_method` as plain coroutines;
    this class turns them into `LazyCoroResult[..., GatewayError]` and bounds every
    remote call with a combinators timeout.
    """

    gateway: GatewayName

    def __init__(
        self,
        credentials: Credentials,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        timeout: float,
    ) -> None:
        self._credentials = credentials
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @property
    def name(self) -> GatewayName:
        return self.gateway

    @property
    def key_id(self) -> str:
        return self._credentials.key_id

    @property
    def mode(self) -> str:
        return self._credentials.mode

    # ─── adapter contract ───────────────────────────────────────────────────

    def create_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: Mapping[str, str],
    ) -> LazyCoroResult[Intent, GatewayError]:
        return L.catching_async(
            lambda: self._create_intent(money(amount), currency, dict(metadata)),
            on_error=as_gateway_error,
        )

    def verify_signature(self, intent_ref: str, payment_ref: str, signature: str) -> bool:
        expected = sign_payment(
            self._credentials.secret.get_secret_value(), intent_ref, payment_ref
        )
        return hmac.compare_digest(expected, signature)

    def fetch_payment_method(
        self,
        payment_ref: str,
        intent_ref: str | None = None,
    ) -> LazyCoroResult[NormalizedMethod, GatewayError]:
        return L.catching_async(
            lambda: self._fetch_method(payment_ref, intent_ref),
            on_error=as_gateway_error,
        )

    # ─── subclass hooks ─────────────────────────────────────────────────────

    async def _create_intent(
        self, amount: Decimal, currency: str, metadata: dict[str, str]
    ) -> Intent:
        raise NotImplementedError

    async def _fetch_method(self, payment_ref: str, intent_ref: str | None) -> NormalizedMethod:
        raise NotImplementedError

    # ─── transport ──────────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        sent = (
            flow(L.catching_async(lambda: self._client.request(method, url, **kwargs), on_error=_keep))
            .timeout(seconds=self._timeout)
            .compile()
        )
        match await sent:
            case Ok(response):
                pass
            case Error(FlowTimeout() as e):
                log.warning("gateway_timeout", gateway=self.gateway.value, path=path)
                raise Errors.gateway_timeout(self.gateway.value) from e
            case Error(httpx.HTTPError() as e):
                log.warning("gateway_transport_error", gateway=self.gateway.value, path=path, error=str(e))
                raise GatewayRequestError(f"{self.gateway.value} request failed: {e}") from e
            case Error(e):
                raise e

        if response.is_error:
            log.warning(
                "gateway_rejected_request",
                gateway=self.gateway.value,
                path=path,
                status=response.status_code,
            )
            raise GatewayRequestError(
                f"{self.gateway.value} returned HTTP {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise GatewayRequestError(f"{self.gateway.value} returned a non-JSON body") from e
        if not isinstance(body, dict):
            raise GatewayRequestError(f"{self.gateway.value} returned an unexpected body")
        return body


__all__ = ("RECEIPT_MAX", "to_minor_units", "make_receipt", "sign_payment", "HttpGateway")
