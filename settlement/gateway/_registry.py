"""
Gateway registry — credential resolution + adapter construction.

One shared `httpx.AsyncClient`; adapters are cheap and built per request so
decrypted secrets do not outlive the call that needed them.
"""

from __future__ import annotations

from kungfu import Error, Ok, Result
import httpx

from settlement._config import Settings
from settlement._errors import GatewayError, GatewayNotConfigured
from settlement.gateway._credentials import CredentialStore
from settlement.gateway._phonepe import PhonePeGateway
from settlement.gateway._razorpay import RazorpayGateway
from settlement.gateway._types import Credentials, GatewayName, PaymentGateway


def parse_gateway(raw: str) -> Result[GatewayName, GatewayError]:
    try:
        return Ok(GatewayName(raw.upper()))
    except ValueError:
        return Error(GatewayNotConfigured(f"Unsupported payment gateway: {raw}"))


class GatewayRegistry:
    def __init__(
        self,
        credentials: CredentialStore,
        client: httpx.AsyncClient,
        settings: Settings,
    ) -> None:
        self._credentials = credentials
        self._client = client
        self._settings = settings

    @property
    def credentials(self) -> CredentialStore:
        return self._credentials

    def build(self, creds: Credentials) -> PaymentGateway:
        match creds.gateway:
            case GatewayName.RAZORPAY:
                return RazorpayGateway(
                    creds,
                    self._client,
                    base_url=self._settings.razorpay_base_url,
                    timeout=self._settings.gateway_timeout,
                )
            case GatewayName.PHONEPE:
                return PhonePeGateway(
                    creds,
                    self._client,
                    base_url=self._settings.phonepe_base_url,
                    timeout=self._settings.gateway_timeout,
                    callback_url=self._settings.phonepe_callback_url,
                )

    async def for_owner(
        self, owner_id: str | None, gateway: GatewayName
    ) -> Result[PaymentGateway, GatewayError]:
        match await self._credentials.resolve(owner_id, gateway):
            case Ok(creds):
                return Ok(self.build(creds))
            case Error(e):
                return Error(e)


__all__ = ("parse_gateway", "GatewayRegistry")
