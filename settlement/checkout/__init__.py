"""
Checkout — settlement of gateway payments and cash orders, plus cancellation.

    from settlement import checkout as C

    service = C.CheckoutService(session_factory, registry, settings=settings, dispatcher=dispatcher)

    match await service.create_cash_order(C.CashOrderRequest(user_id=uid, address_id=aid)):
        case Ok(order):
            ...
"""

from settlement.checkout._states import (
    SettlementState,
    SettlementTrace,
    OrderStatus,
    PaymentStatus,
    CANCELLABLE,
    can_advance,
    ensure_can_advance,
)
from settlement.checkout._types import (
    PaymentProof,
    CheckoutRequest,
    VerifyRequest,
    CashOrderRequest,
    CancelRequest,
    GatewayPayment,
    SettlementPlan,
    IntentCreated,
    SettledOrder,
    RestoredLine,
    CancelledOrder,
)
from settlement.checkout._loader import load_pricing_inputs
from settlement.checkout._policy import load_policy
from settlement.checkout._transaction import CASH, run_settlement
from settlement.checkout._cancel import run_cancellation
from settlement.checkout._service import MIN_TOTAL, CheckoutService

__all__ = (
    "SettlementState",
    "SettlementTrace",
    "OrderStatus",
    "PaymentStatus",
    "CANCELLABLE",
    "can_advance",
    "ensure_can_advance",
    "PaymentProof",
    "CheckoutRequest",
    "VerifyRequest",
    "CashOrderRequest",
    "CancelRequest",
    "GatewayPayment",
    "SettlementPlan",
    "IntentCreated",
    "SettledOrder",
    "RestoredLine",
    "CancelledOrder",
    "load_pricing_inputs",
    "load_policy",
    "CASH",
    "run_settlement",
    "run_cancellation",
    "MIN_TOTAL",
    "CheckoutService",
)
