"""
Outbox — post-settlement side effects, written with the order, delivered after commit.

    from settlement import outbox as O

    dispatcher = O.OutboxDispatcher(session_factory, referrals=O.DbReferralEngine(session_factory))
    report = await dispatcher.drain(order_id)
"""

from settlement.outbox._events import (
    EffectKind,
    EventStatus,
    ORDER_SETTLED,
    ORDER_CANCELLED,
    enqueue,
)
from settlement.outbox._saga import (
    SagaStep,
    SagaResult,
    SagaError,
    step,
    from_async,
    run_chain,
)
from settlement.outbox._collaborators import (
    SummaryLine,
    ShipTo,
    OrderSummary,
    load_order_summary,
    NotificationSender,
    ShipmentProvider,
    ReferralEngine,
    LogNotificationSender,
    NullShipmentProvider,
    REFERRAL_PERCENT,
    REFERRAL_MIN_ORDER,
    REFERRAL_MAX_REWARD,
    referral_reward,
    DbReferralEngine,
)
from settlement.outbox._dispatcher import (
    ClaimedEvent,
    EffectFailure,
    ClaimLost,
    DrainReport,
    OutboxDispatcher,
)

__all__ = (
    "EffectKind",
    "EventStatus",
    "ORDER_SETTLED",
    "ORDER_CANCELLED",
    "enqueue",
    "SagaStep",
    "SagaResult",
    "SagaError",
    "step",
    "from_async",
    "run_chain",
    "SummaryLine",
    "ShipTo",
    "OrderSummary",
    "load_order_summary",
    "NotificationSender",
    "ShipmentProvider",
    "ReferralEngine",
    "LogNotificationSender",
    "NullShipmentProvider",
    "REFERRAL_PERCENT",
    "REFERRAL_MIN_ORDER",
    "REFERRAL_MAX_REWARD",
    "referral_reward",
    "DbReferralEngine",
    "ClaimedEvent",
    "EffectFailure",
    "ClaimLost",
    "DrainReport",
    "OutboxDispatcher",
)
