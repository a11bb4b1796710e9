"""
settlement — checkout pricing and payment settlement for a retail store.

    from settlement import pricing as P   # Slabs, flash sales, coupons, quote graph
    from settlement import gateway as GW  # Payment processor adapters + credentials
    from settlement import checkout as C  # Settlement, cash orders, cancellation
    from settlement import outbox as O    # Post-settlement side effects
"""

from settlement import db
from settlement import pricing
from settlement import gateway
from settlement import outbox
from settlement import checkout
from settlement._config import Settings, ShippingPolicy, PaymentSettings
from settlement._errors import (
    ErrorKind,
    SettlementError,
    ValidationError,
    NotFoundError,
    ConflictError,
    InsufficientStockError,
    InvalidSignatureError,
    InternalError,
    GatewayError,
    GatewayNotConfigured,
    GatewayAuthError,
    GatewayRequestError,
)
from settlement._log import configure_logging, get_logger
from settlement._retry import Retry, guarded
from settlement._types import Money, money

__version__ = "0.1.0"

__all__ = (
    "db",
    "pricing",
    "gateway",
    "outbox",
    "checkout",
    "Settings",
    "ShippingPolicy",
    "PaymentSettings",
    "ErrorKind",
    "SettlementError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "InsufficientStockError",
    "InvalidSignatureError",
    "InternalError",
    "GatewayError",
    "GatewayNotConfigured",
    "GatewayAuthError",
    "GatewayRequestError",
    "configure_logging",
    "get_logger",
    "Retry",
    "guarded",
    "Money",
    "money",
)
