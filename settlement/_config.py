"""
Configuration.

Two layers:

- `Settings` — process configuration from the environment (`SETTLEMENT_*`).
- `ShippingPolicy` / `PaymentSettings` — store policy, loaded per request and
  passed explicitly (see `settlement.pricing.CheckoutPolicy`).

    settings = Settings.from_env()
    policy = ShippingPolicy().with_free_shipping_over("499").with_charge("49")
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from settlement._retry import Retry, is_transient_conflict
from settlement._types import ZERO, money

ENV_PREFIX = "SETTLEMENT_"


# ═══════════════════════════════════════════════════════════════════════════════
# Settings: environment
# ═══════════════════════════════════════════════════════════════════════════════


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    database_url: str = "sqlite+aiosqlite:///./settlement.db"
    encryption_key: SecretStr = SecretStr("")
    currency: str = Field(default="INR", min_length=3, max_length=3)

    gateway_timeout: float = Field(default=15.0, gt=0)
    db_timeout: float = Field(default=30.0, gt=0)
    commit_attempts: int = Field(default=3, ge=1)

    razorpay_base_url: str = "https://api.razorpay.com/v1"
    phonepe_base_url: str = "https://api.phonepe.com/apis/hermes"
    phonepe_callback_url: str | None = None

    outbox_max_attempts: int = Field(default=5, ge=1)

    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Read `SETTLEMENT_<FIELD>` variables; pydantic coerces the strings."""
        env = os.environ if environ is None else environ
        values = {
            name: env[ENV_PREFIX + name.upper()]
            for name in cls.model_fields
            if ENV_PREFIX + name.upper() in env
        }
        return cls.model_validate(values)

    def commit_retry(self) -> Retry:
        return Retry(times=self.commit_attempts).with_retry_on(is_transient_conflict)


# ═══════════════════════════════════════════════════════════════════════════════
# Store policy: explicit, immutable
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ShippingPolicy:
    """Free above `free_shipping_threshold` (when > 0), flat charge otherwise."""

    free_shipping_threshold: Decimal = ZERO
    shipping_charge: Decimal = ZERO

    def with_free_shipping_over(self, threshold: Decimal | str | int) -> ShippingPolicy:
        return replace(self, free_shipping_threshold=money(threshold))

    def with_charge(self, charge: Decimal | str | int) -> ShippingPolicy:
        return replace(self, shipping_charge=money(charge))


@dataclass(frozen=True, slots=True)
class PaymentSettings:
    cash_enabled: bool = False
    razorpay_enabled: bool = True
    phonepe_enabled: bool = False
    cod_charge: Decimal = ZERO

    def with_cash(self, enabled: bool = True, charge: Decimal | str | int = ZERO) -> PaymentSettings:
        return replace(self, cash_enabled=enabled, cod_charge=money(charge))

    def with_gateways(self, *, razorpay: bool, phonepe: bool) -> PaymentSettings:
        return replace(self, razorpay_enabled=razorpay, phonepe_enabled=phonepe)

    def gateway_enabled(self, gateway: str) -> bool:
        match gateway:
            case "RAZORPAY":
                return self.razorpay_enabled
            case "PHONEPE":
                return self.phonepe_enabled
            case _:
                return False


__all__ = ("ENV_PREFIX", "Settings", "ShippingPolicy", "PaymentSettings")
