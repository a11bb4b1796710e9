"""
Settlement state machine + order status transitions.

    PRICED ──► VERIFYING ──► COMMITTED
       │            │
       └──────► REJECTED ◄──┘

Order status (persisted):

    PENDING ──► PROCESSING ──► SHIPPED ──► DELIVERED
       │  └──► PAID ──┘ └────────┘
       └─ PENDING | PROCESSING | PAID ──► CANCELLED (terminal)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from settlement._errors import Errors, InternalError
from settlement._log import get_logger

log = get_logger("settlement")


# ═══════════════════════════════════════════════════════════════════════════════
# Settlement: in-flight lifecycle of one checkout attempt
# ═══════════════════════════════════════════════════════════════════════════════


class SettlementState(Enum):
    PRICED = "PRICED"
    VERIFYING = "VERIFYING"
    COMMITTED = "COMMITTED"
    REJECTED = "REJECTED"


_SETTLEMENT_EDGES: dict[SettlementState, frozenset[SettlementState]] = {
    SettlementState.PRICED: frozenset({SettlementState.VERIFYING, SettlementState.REJECTED}),
    SettlementState.VERIFYING: frozenset({SettlementState.COMMITTED, SettlementState.REJECTED}),
    SettlementState.COMMITTED: frozenset(),
    SettlementState.REJECTED: frozenset(),
}


@dataclass(slots=True)
class SettlementTrace:
    """
    Tracks one settlement attempt through its states.

    Not persisted: a rejected attempt leaves no rows behind, and a committed one
    is represented by its order.
    """

    reference: str
    state: SettlementState = SettlementState.PRICED
    history: list[SettlementState] = field(default_factory=lambda: [SettlementState.PRICED])
    reason: str | None = None

    def advance(self, target: SettlementState, *, reason: str | None = None) -> None:
        if target not in _SETTLEMENT_EDGES[self.state]:
            raise InternalError(
                f"Illegal settlement transition {self.state.value} -> {target.value}"
            )
        self.state = target
        self.history.append(target)
        if reason is not None:
            self.reason = reason
        log.info(
            "settlement_state",
            reference=self.reference,
            state=target.value,
            reason=reason,
        )

    def reject(self, reason: str) -> None:
        self.advance(SettlementState.REJECTED, reason=reason)

    @property
    def terminal(self) -> bool:
        return not _SETTLEMENT_EDGES[self.state]


# ═══════════════════════════════════════════════════════════════════════════════
# Order status
# ═══════════════════════════════════════════════════════════════════════════════


class OrderStatus(Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus:
    """Status constants for the `payments.status` column."""

    CAPTURED = "CAPTURED"
    REFUNDED = "REFUNDED"


CANCELLABLE: frozenset[OrderStatus] = frozenset(
    {OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.PAID}
)

_ORDER_EDGES: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.PAID}),
    OrderStatus.PAID: frozenset({OrderStatus.PROCESSING, OrderStatus.SHIPPED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_advance(current: OrderStatus, target: OrderStatus) -> bool:
    if target is OrderStatus.CANCELLED:
        return current in CANCELLABLE
    return target in _ORDER_EDGES[current]


def ensure_can_advance(current: OrderStatus, target: OrderStatus) -> None:
    if not can_advance(current, target):
        raise Errors.illegal_transition(current.value, target.value)


__all__ = (
    "SettlementState",
    "SettlementTrace",
    "OrderStatus",
    "PaymentStatus",
    "CANCELLABLE",
    "can_advance",
    "ensure_can_advance",
)
