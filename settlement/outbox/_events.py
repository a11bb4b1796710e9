"""
Outbox events — written in the same transaction as the order they describe.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from settlement.db import OutboxEvent


class EffectKind(Enum):
    REFERRAL_REWARD = "referral.reward"
    SHIPMENT_REGISTER = "shipment.register"
    SHIPMENT_CANCEL = "shipment.cancel"
    CONFIRMATION_EMAIL = "email.confirmation"


class EventStatus:
    """Status constants for the `outbox_events.status` column."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    DONE = "DONE"
    FAILED = "FAILED"


ORDER_SETTLED: tuple[EffectKind, ...] = (
    EffectKind.REFERRAL_REWARD,
    EffectKind.SHIPMENT_REGISTER,
    EffectKind.CONFIRMATION_EMAIL,
)

ORDER_CANCELLED: tuple[EffectKind, ...] = (EffectKind.SHIPMENT_CANCEL,)


def enqueue(
    session: AsyncSession,
    order_id: str,
    kinds: Iterable[EffectKind],
    *,
    at: datetime,
    payload: dict[str, Any] | None = None,
) -> list[OutboxEvent]:
    events = [
        OutboxEvent(
            kind=kind.value,
            order_id=order_id,
            payload=dict(payload or {}),
            status=EventStatus.PENDING,
            attempts=0,
            available_at=at,
            created_at=at,
        )
        for kind in kinds
    ]
    session.add_all(events)
    return events


__all__ = ("EffectKind", "EventStatus", "ORDER_SETTLED", "ORDER_CANCELLED", "enqueue")
