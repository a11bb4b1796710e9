"""
Gateway types — the adapter contract.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Protocol

from kungfu import LazyCoroResult
from pydantic import SecretStr

from settlement._errors import GatewayError


class GatewayName(Enum):
    RAZORPAY = "RAZORPAY"
    PHONEPE = "PHONEPE"


class NormalizedMethod(Enum):
    CARD = "CARD"
    NETBANKING = "NETBANKING"
    WALLET = "WALLET"
    UPI = "UPI"
    EMI = "EMI"
    OTHER = "OTHER"


@dataclass(frozen=True, slots=True)
class Credentials:
    """Decrypted credential set. `secret` stays a SecretStr until signing time."""

    gateway: GatewayName
    key_id: str
    secret: SecretStr
    mode: str = "test"
    owner_id: str | None = None
    salt_index: str | None = None

    def __repr__(self) -> str:
        return (
            f"Credentials(gateway={self.gateway.value}, key_id={self.key_id!r}, "
            f"mode={self.mode!r}, owner_id={self.owner_id!r})"
        )


@dataclass(frozen=True, slots=True)
class Intent:
    ref: str
    amount: Decimal
    amount_minor: int
    currency: str
    receipt: str
    redirect_url: str | None = None
    metadata: Mapping[str, str] = field(default_factory=dict)


class PaymentGateway(Protocol):
    """One interface, two processors."""

    @property
    def name(self) -> GatewayName: ...

    @property
    def key_id(self) -> str: ...

    @property
    def mode(self) -> str: ...

    def create_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: Mapping[str, str],
    ) -> LazyCoroResult[Intent, GatewayError]: ...

    def verify_signature(self, intent_ref: str, payment_ref: str, signature: str) -> bool: ...

    def fetch_payment_method(
        self,
        payment_ref: str,
        intent_ref: str | None = None,
    ) -> LazyCoroResult[NormalizedMethod, GatewayError]: ...


__all__ = ("GatewayName", "NormalizedMethod", "Credentials", "Intent", "PaymentGateway")
