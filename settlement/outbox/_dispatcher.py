"""
Outbox dispatcher — delivers post-settlement side effects.

Each pending row runs as a compensated chain:

    claim (PENDING → PROCESSING, attempts + 1)  ──►  handle (→ DONE)
        compensate: release (→ PENDING with backoff, or FAILED at max_attempts)

A claim is a lease. A PROCESSING row whose claim is older than `lease` belongs
to a dispatcher that died mid-delivery; the next drain claims it again.

Handler failures are logged and recorded on the row. They never reach the
caller that settled the order: the order is already committed.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, cast

from combinators import RetryPolicy
from sqlalchemy import ColumnElement, and_, or_, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement._log import get_logger
from settlement._types import Clock, Ok, Error, Result, utcnow
from settlement.db import Order, OutboxEvent
from settlement.outbox._collaborators import (
    LogNotificationSender,
    NotificationSender,
    NullShipmentProvider,
    ReferralEngine,
    ShipmentProvider,
    load_order_summary,
)
from settlement.outbox._events import EffectKind, EventStatus
from settlement.outbox._saga import SagaError, SagaResult, from_async, run_chain

log = get_logger("outbox")


# ═══════════════════════════════════════════════════════════════════════════════
# Types
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ClaimedEvent:
    id: str
    kind: EffectKind
    order_id: str
    payload: dict[str, Any]
    attempts: int


@dataclass(frozen=True, slots=True)
class EffectFailure:
    message: str
    claimed: bool = True


class ClaimLost(Exception):
    """Another dispatcher holds a live claim on the row, or it is finished."""


@dataclass(slots=True)
class DrainReport:
    done: list[str] = field(default_factory=list)
    retrying: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def _claim_failed(err: Exception) -> EffectFailure:
    return EffectFailure(str(err) or type(err).__name__, claimed=not isinstance(err, ClaimLost))


def _handle_failed(err: Exception) -> EffectFailure:
    return EffectFailure(f"{type(err).__name__}: {err}")


# ═══════════════════════════════════════════════════════════════════════════════
# Dispatcher
# ═══════════════════════════════════════════════════════════════════════════════


class OutboxDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        notifications: NotificationSender | None = None,
        shipments: ShipmentProvider | None = None,
        referrals: ReferralEngine | None = None,
        max_attempts: int = 5,
        backoff: RetryPolicy[ClaimedEvent] | None = None,
        lease: timedelta = timedelta(minutes=5),
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.notifications: NotificationSender = notifications or LogNotificationSender()
        self.shipments: ShipmentProvider = shipments or NullShipmentProvider()
        self.referrals = referrals
        self.max_attempts = max_attempts
        self.backoff: RetryPolicy[ClaimedEvent] = backoff or RetryPolicy.exponential_jitter(
            times=max_attempts, initial=1.0, multiplier=2.0, max_delay=300.0
        )
        self.lease = lease
        self._clock = clock
        self._tasks: set[asyncio.Task[DrainReport]] = set()

    # ───────────────────────────────────────────────────────────────────────────
    # Scheduling
    # ───────────────────────────────────────────────────────────────────────────

    def schedule(self, order_id: str | None = None) -> asyncio.Task[DrainReport]:
        """Drain in the background; the caller does not wait for delivery."""
        task = asyncio.get_running_loop().create_task(self._drain_quietly(order_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _drain_quietly(self, order_id: str | None) -> DrainReport:
        try:
            return await self.drain(order_id)
        except Exception as e:
            log.error("outbox_drain_failed", order_id=order_id, error=f"{type(e).__name__}: {e}")
            return DrainReport()

    # ───────────────────────────────────────────────────────────────────────────
    # Draining
    # ───────────────────────────────────────────────────────────────────────────

    async def drain(self, order_id: str | None = None, *, limit: int = 100) -> DrainReport:
        async with self._session_factory() as session:
            stmt = (
                select(OutboxEvent.id)
                .where(self._claimable(self._clock()))
                .order_by(OutboxEvent.created_at, OutboxEvent.id)
                .limit(limit)
            )
            if order_id is not None:
                stmt = stmt.where(OutboxEvent.order_id == order_id)
            event_ids = list((await session.execute(stmt)).scalars().all())

        report = DrainReport()
        for event_id in event_ids:
            match await self.deliver(event_id):
                case Ok(_):
                    report.done.append(event_id)
                case Error(SagaError(error=EffectFailure(claimed=False))):
                    report.skipped.append(event_id)
                case Error(failure):
                    await self._record_error(event_id, failure.error.message)
                    status = await self._status(event_id)
                    if status == EventStatus.FAILED:
                        report.failed.append(event_id)
                    else:
                        report.retrying.append(event_id)
        return report

    async def deliver(
        self, event_id: str
    ) -> Result[SagaResult[None], SagaError[EffectFailure]]:
        chain = from_async(
            lambda: self._claim(event_id), on_error=_claim_failed, compensate=self._release
        ).then(lambda claimed: from_async(lambda: self._handle(claimed), on_error=_handle_failed))
        return await run_chain(chain)

    # ───────────────────────────────────────────────────────────────────────────
    # Claim / release
    # ───────────────────────────────────────────────────────────────────────────

    def _claimable(self, now: datetime) -> ColumnElement[bool]:
        return or_(
            and_(OutboxEvent.status == EventStatus.PENDING, OutboxEvent.available_at <= now),
            and_(
                OutboxEvent.status == EventStatus.PROCESSING,
                OutboxEvent.claimed_at <= now - self.lease,
            ),
        )

    async def _claim(self, event_id: str) -> ClaimedEvent:
        now = self._clock()
        async with self._session_factory() as session, session.begin():
            cursor = cast(
                CursorResult[Any],
                await session.execute(
                    update(OutboxEvent)
                    .where(OutboxEvent.id == event_id, self._claimable(now))
                    .values(
                        status=EventStatus.PROCESSING,
                        attempts=OutboxEvent.attempts + 1,
                        claimed_at=now,
                    )
                    .execution_options(synchronize_session=False)
                ),
            )
            if cursor.rowcount != 1:
                raise ClaimLost(event_id)
            row = (
                await session.execute(select(OutboxEvent).where(OutboxEvent.id == event_id))
            ).scalar_one()
            return ClaimedEvent(
                id=row.id,
                kind=EffectKind(row.kind),
                order_id=row.order_id,
                payload=dict(row.payload or {}),
                attempts=row.attempts,
            )

    async def _release(self, claimed: ClaimedEvent) -> None:
        now = self._clock()
        exhausted = claimed.attempts >= self.max_attempts
        values: dict[str, Any] = {"status": EventStatus.FAILED if exhausted else EventStatus.PENDING}
        if not exhausted:
            pause = self.backoff.backoff(claimed.attempts - 1, claimed)
            values["available_at"] = now + timedelta(seconds=pause)
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(OutboxEvent)
                .where(OutboxEvent.id == claimed.id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        log.warning(
            "outbox_event_released",
            event_id=claimed.id,
            kind=claimed.kind.value,
            attempts=claimed.attempts,
            status=values["status"],
        )

    async def _record_error(self, event_id: str, message: str) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(OutboxEvent)
                .where(OutboxEvent.id == event_id)
                .values(last_error=message[:2000])
                .execution_options(synchronize_session=False)
            )
        log.error("outbox_event_failed", event_id=event_id, error=message)

    async def _status(self, event_id: str) -> str | None:
        async with self._session_factory() as session:
            return (
                await session.execute(
                    select(OutboxEvent.status).where(OutboxEvent.id == event_id)
                )
            ).scalar_one_or_none()

    # ───────────────────────────────────────────────────────────────────────────
    # Handlers
    # ───────────────────────────────────────────────────────────────────────────

    async def _handle(self, claimed: ClaimedEvent) -> None:
        match claimed.kind:
            case EffectKind.REFERRAL_REWARD:
                await self._referral(claimed)
            case EffectKind.SHIPMENT_REGISTER:
                await self._register_shipment(claimed)
            case EffectKind.SHIPMENT_CANCEL:
                await self._cancel_shipment(claimed)
            case EffectKind.CONFIRMATION_EMAIL:
                await self._confirmation(claimed)

        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(OutboxEvent)
                .where(OutboxEvent.id == claimed.id)
                .values(status=EventStatus.DONE, processed_at=self._clock(), last_error=None)
                .execution_options(synchronize_session=False)
            )
        log.info(
            "outbox_event_done",
            event_id=claimed.id,
            kind=claimed.kind.value,
            order_id=claimed.order_id,
        )

    async def _referral(self, claimed: ClaimedEvent) -> None:
        if self.referrals is None:
            return
        async with self._session_factory() as session:
            order = (
                await session.execute(select(Order).where(Order.id == claimed.order_id))
            ).scalar_one()
        await self.referrals.process(order.id, order.user_id, order.total)

    async def _register_shipment(self, claimed: ClaimedEvent) -> None:
        async with self._session_factory() as session:
            summary = await load_order_summary(session, claimed.order_id)
        if summary.shipment_ref:
            return
        shipment_ref = await self.shipments.register(summary)
        if shipment_ref is None:
            return
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(Order)
                .where(Order.id == claimed.order_id)
                .values(shipment_ref=shipment_ref, shipment_status="REGISTERED")
                .execution_options(synchronize_session=False)
            )

    async def _cancel_shipment(self, claimed: ClaimedEvent) -> None:
        shipment_ref = claimed.payload.get("shipmentRef")
        if not shipment_ref:
            return
        await self.shipments.cancel(str(shipment_ref))
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(Order)
                .where(Order.id == claimed.order_id)
                .values(shipment_status="CANCELLED")
                .execution_options(synchronize_session=False)
            )

    async def _confirmation(self, claimed: ClaimedEvent) -> None:
        async with self._session_factory() as session:
            summary = await load_order_summary(session, claimed.order_id)
        await self.notifications.send(summary.email, summary)


__all__ = ("ClaimedEvent", "EffectFailure", "ClaimLost", "DrainReport", "OutboxDispatcher")
