"""
HTTP surface — FastAPI routes over `CheckoutService`.

    from settlement.http import create_app

    app = create_app(service)
"""

from settlement.http._schemas import (
    CouponIn,
    CheckoutIn,
    ProofIn,
    VerifyIn,
    CashOrderIn,
    CancelIn,
    QuoteLineOut,
    QuoteOut,
    IntentOut,
    OrderOut,
    CancelledOut,
    PaymentSettingsOut,
    WebhookOut,
    ErrorOut,
)
from settlement.http._app import current_user, is_admin, create_app

__all__ = (
    "CouponIn",
    "CheckoutIn",
    "ProofIn",
    "VerifyIn",
    "CashOrderIn",
    "CancelIn",
    "QuoteLineOut",
    "QuoteOut",
    "IntentOut",
    "OrderOut",
    "CancelledOut",
    "PaymentSettingsOut",
    "WebhookOut",
    "ErrorOut",
    "current_user",
    "is_admin",
    "create_app",
)
