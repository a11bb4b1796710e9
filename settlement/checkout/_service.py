"""
Checkout service — the operations callers use.

Every public method returns `Result[..., SettlementError]`:

    match await service.verify(VerifyRequest(user_id=uid, proof=proof, address_id=aid)):
        case Ok(order):
            print(order.order_number, order.total)
        case Error(ConflictError() as e):
            print(e.message)          # duplicate payment, cancelled intent, used coupon
        case Error(e):
            print(e.code, e.message)

Ordering inside a settlement:

    verify proof (outside the unit)  ──►  commit unit (timeout + retry)  ──►  schedule outbox

Gateway calls never run inside a database unit.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, cast

from combinators import TimeoutError as FlowTimeout
from combinators import flow
from combinators import lift as L
from sqlalchemy import select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement._config import PaymentSettings, Settings
from settlement._errors import (
    Errors,
    InternalError,
    SettlementError,
    ValidationError,
)
from settlement._log import get_logger
from settlement._retry import guarded
from settlement._types import Clock, Error, Ok, Result, money, utcnow
from settlement.checkout._cancel import run_cancellation
from settlement.checkout._loader import load_pricing_inputs
from settlement.checkout._policy import load_policy
from settlement.checkout._states import (
    OrderStatus,
    SettlementState,
    SettlementTrace,
    ensure_can_advance,
)
from settlement.checkout._transaction import run_settlement
from settlement.checkout._types import (
    CancelledOrder,
    CancelRequest,
    CashOrderRequest,
    CheckoutRequest,
    GatewayPayment,
    IntentCreated,
    PaymentProof,
    SettledOrder,
    SettlementPlan,
    VerifyRequest,
)
from settlement.db import CheckoutIntent, Order
from settlement.gateway import GatewayName, GatewayRegistry, NormalizedMethod, PaymentGateway
from settlement.outbox import OutboxDispatcher
from settlement.pricing import ZERO_TAX, CarriedCoupon, CheckoutPolicy, Quote, QuotePipeline, TaxResolver

log = get_logger("checkout")

MIN_TOTAL = money(1)


def _unwrap[T](result: Result[T, SettlementError]) -> T:
    match result:
        case Ok(value):
            return value
        case Error(e):
            raise e


def _as_settlement_error(err: Exception) -> SettlementError:
    match err:
        case SettlementError():
            return err
        case FlowTimeout() | TimeoutError():
            log.error("operation_timed_out")
            return InternalError("The operation timed out. Please try again.")
        case SQLAlchemyError():
            log.error("database_error", error=f"{type(err).__name__}: {err}")
            return InternalError("A database error occurred. Please try again.")
        case _:
            log.exception("unexpected_error", error=f"{type(err).__name__}: {err}")
            return InternalError("An unexpected error occurred")


class CheckoutService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateways: GatewayRegistry,
        *,
        settings: Settings | None = None,
        dispatcher: OutboxDispatcher | None = None,
        pipeline: QuotePipeline | None = None,
        tax: TaxResolver = ZERO_TAX,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._gateways = gateways
        self._settings = settings or Settings()
        self._dispatcher = dispatcher
        self._pipeline = pipeline or QuotePipeline()
        self._tax = tax
        self._clock = clock

    # ───────────────────────────────────────────────────────────────────────────
    # Plumbing
    # ───────────────────────────────────────────────────────────────────────────

    async def _unit[T](self, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """One transaction, bounded by `db_timeout`, re-run on transient lock conflicts."""

        async def attempt() -> T:
            async with self._session_factory() as session, session.begin():
                return await work(session)

        unit = guarded(attempt, retry=self._settings.commit_retry(), timeout=self._settings.db_timeout)
        match await unit:
            case Ok(value):
                return value
            case Error(e):
                raise e

    async def _policy(self, session: AsyncSession) -> CheckoutPolicy:
        return await load_policy(session, tax=self._tax, currency=self._settings.currency)

    def _schedule(self, order_id: str) -> None:
        if self._dispatcher is not None:
            self._dispatcher.schedule(order_id)

    # ───────────────────────────────────────────────────────────────────────────
    # Quote
    # ───────────────────────────────────────────────────────────────────────────

    async def quote(
        self,
        user_id: str,
        address_id: str | None = None,
        coupon: CarriedCoupon | None = None,
    ) -> Result[Quote, SettlementError]:
        async def work(session: AsyncSession) -> Quote:
            inputs = await load_pricing_inputs(
                session,
                user_id=user_id,
                policy=await self._policy(session),
                at=self._clock(),
                address_id=address_id,
                require_address=False,
                carried=coupon,
            )
            return await self._pipeline(inputs)

        return await L.catching_async(lambda: self._unit(work), on_error=_as_settlement_error)

    # ───────────────────────────────────────────────────────────────────────────
    # Intent
    # ───────────────────────────────────────────────────────────────────────────

    async def create_intent(self, request: CheckoutRequest) -> Result[IntentCreated, SettlementError]:
        return await L.catching_async(
            lambda: self._create_intent(request), on_error=_as_settlement_error
        )

    async def _create_intent(self, request: CheckoutRequest) -> IntentCreated:
        currency = request.currency or self._settings.currency

        async def price(session: AsyncSession) -> Quote:
            policy = await self._policy(session)
            if not policy.payments.gateway_enabled(request.gateway.value):
                raise ValidationError(f"{request.gateway.value} payments are not enabled")
            inputs = await load_pricing_inputs(
                session,
                user_id=request.user_id,
                policy=policy,
                at=self._clock(),
                address_id=request.address_id,
                require_address=False,
                carried=request.coupon,
            )
            return await self._pipeline(inputs)

        quote = await self._unit(price)
        if quote.total < MIN_TOTAL:
            raise ValidationError("Order total must be at least 1")
        if request.amount is not None and money(request.amount) != quote.total:
            log.warning(
                "client_amount_mismatch",
                user_id=request.user_id,
                client_amount=str(request.amount),
                amount=str(quote.total),
            )

        gateway = _unwrap(await self._gateways.for_owner(request.owner_id, request.gateway))
        metadata = {
            key: value
            for key, value in {
                "userId": request.user_id,
                "gateway": gateway.name.value,
                "mode": gateway.mode,
                "ownerId": request.owner_id,
                "addressId": request.address_id,
                "couponId": quote.coupon.coupon_id if quote.coupon else None,
                "couponCode": quote.coupon.code if quote.coupon else None,
                "discountAmount": str(quote.discount) if quote.coupon else None,
            }.items()
            if value is not None
        }
        intent = _unwrap(await gateway.create_intent(quote.total, currency, metadata))

        async def persist(session: AsyncSession) -> None:
            session.add(
                CheckoutIntent(
                    intent_ref=intent.ref,
                    user_id=request.user_id,
                    gateway=gateway.name.value,
                    owner_id=request.owner_id,
                    mode=gateway.mode,
                    amount=intent.amount,
                    currency=intent.currency,
                    receipt=intent.receipt,
                    coupon_id=quote.coupon.coupon_id if quote.coupon else None,
                    coupon_code=quote.coupon.code if quote.coupon else None,
                    discount_amount=quote.discount if quote.coupon else None,
                    shipping_address_id=request.address_id,
                    created_at=self._clock(),
                )
            )

        await self._unit(persist)
        log.info(
            "intent_created",
            intent_ref=intent.ref,
            gateway=gateway.name.value,
            user_id=request.user_id,
            amount=str(intent.amount),
        )
        return IntentCreated(
            intent_ref=intent.ref,
            gateway=gateway.name,
            key_id=gateway.key_id,
            amount=intent.amount,
            amount_minor=intent.amount_minor,
            currency=intent.currency,
            receipt=intent.receipt,
            quote=quote,
            redirect_url=intent.redirect_url,
        )

    # ───────────────────────────────────────────────────────────────────────────
    # Gateway settlement
    # ───────────────────────────────────────────────────────────────────────────

    async def verify(self, request: VerifyRequest) -> Result[SettledOrder, SettlementError]:
        return await L.catching_async(lambda: self._verify(request), on_error=_as_settlement_error)

    async def _verify(self, request: VerifyRequest) -> SettledOrder:
        request.proof.ensure_complete()
        stored = await self._stored_intent(request.proof.intent_ref)
        if stored is not None and stored.user_id != request.user_id:
            raise Errors.intent_not_found()

        gateway_name = request.gateway or (
            GatewayName(stored.gateway) if stored is not None else GatewayName.RAZORPAY
        )
        owner_id = request.owner_id or (stored.owner_id if stored is not None else None)
        gateway = _unwrap(await self._gateways.for_owner(owner_id, gateway_name))

        return await self._settle(
            gateway,
            request.proof,
            user_id=request.user_id,
            address_id=request.address_id or (stored.shipping_address_id if stored else None),
            coupon=request.coupon or _stored_coupon(stored),
            owner_id=owner_id,
        )

    async def settle_webhook(
        self, gateway: GatewayName, proof: PaymentProof
    ) -> Result[SettledOrder, SettlementError]:
        """Unauthenticated path: buyer, address and coupon come from the stored intent."""

        async def run() -> SettledOrder:
            proof.ensure_complete()
            stored = await self._stored_intent(proof.intent_ref)
            if stored is None or stored.gateway != gateway.value:
                raise Errors.intent_not_found()
            adapter = _unwrap(await self._gateways.for_owner(stored.owner_id, gateway))
            return await self._settle(
                adapter,
                proof,
                user_id=stored.user_id,
                address_id=stored.shipping_address_id,
                coupon=_stored_coupon(stored),
                owner_id=stored.owner_id,
            )

        return await L.catching_async(run, on_error=_as_settlement_error)

    async def _settle(
        self,
        gateway: PaymentGateway,
        proof: PaymentProof,
        *,
        user_id: str,
        address_id: str | None,
        coupon: CarriedCoupon | None,
        owner_id: str | None,
    ) -> SettledOrder:
        trace = SettlementTrace(reference=proof.intent_ref)
        trace.advance(SettlementState.VERIFYING)

        if not gateway.verify_signature(proof.intent_ref, proof.payment_ref, proof.signature):
            trace.reject("invalid_signature")
            log.warning(
                "payment_signature_rejected",
                intent_ref=proof.intent_ref,
                payment_ref=proof.payment_ref,
                gateway=gateway.name.value,
            )
            raise Errors.invalid_signature()

        plan = SettlementPlan(
            user_id=user_id,
            address_id=address_id,
            coupon=coupon,
            payment=GatewayPayment(
                proof=proof,
                gateway=gateway.name,
                method=await self._payment_method(gateway, proof),
                mode=gateway.mode,
                owner_id=owner_id,
            ),
        )

        async def commit(session: AsyncSession) -> SettledOrder:
            return await run_settlement(
                session,
                plan,
                pipeline=self._pipeline,
                policy=await self._policy(session),
                at=self._clock(),
            )

        try:
            order = await self._unit(commit)
        except Exception as e:
            trace.reject(_as_settlement_error(e).message)
            raise

        trace.advance(SettlementState.COMMITTED)
        log.info(
            "order_settled",
            order_id=order.order_id,
            order_number=order.order_number,
            intent_ref=proof.intent_ref,
            payment_ref=proof.payment_ref,
            total=str(order.total),
        )
        self._schedule(order.order_id)
        return order

    async def _payment_method(self, gateway: PaymentGateway, proof: PaymentProof) -> NormalizedMethod:
        """The payment is already verified; a failed lookup is recorded as OTHER."""
        lookup = (
            flow(gateway.fetch_payment_method(proof.payment_ref, proof.intent_ref))
            .timeout(seconds=self._settings.gateway_timeout)
            .compile()
        )
        match await lookup:
            case Ok(method):
                return method
            case Error(FlowTimeout()):
                log.warning("payment_method_timeout", payment_ref=proof.payment_ref)
                return NormalizedMethod.OTHER
            case Error(e):
                log.warning(
                    "payment_method_unavailable", payment_ref=proof.payment_ref, error=e.message
                )
                return NormalizedMethod.OTHER

    async def _stored_intent(self, intent_ref: str) -> CheckoutIntent | None:
        async with self._session_factory() as session:
            return (
                await session.execute(
                    select(CheckoutIntent).where(CheckoutIntent.intent_ref == intent_ref)
                )
            ).scalar_one_or_none()

    # ───────────────────────────────────────────────────────────────────────────
    # Cash
    # ───────────────────────────────────────────────────────────────────────────

    async def create_cash_order(
        self, request: CashOrderRequest
    ) -> Result[SettledOrder, SettlementError]:
        plan = SettlementPlan(
            user_id=request.user_id, address_id=request.address_id, coupon=request.coupon
        )

        async def commit(session: AsyncSession) -> SettledOrder:
            policy = await self._policy(session)
            if not policy.payments.cash_enabled:
                raise Errors.cash_disabled()
            return await run_settlement(
                session, plan, pipeline=self._pipeline, policy=policy, at=self._clock()
            )

        async def run() -> SettledOrder:
            if not request.address_id:
                raise Errors.missing("Shipping address")
            order = await self._unit(commit)
            log.info(
                "cash_order_created",
                order_id=order.order_id,
                order_number=order.order_number,
                total=str(order.total),
            )
            self._schedule(order.order_id)
            return order

        return await L.catching_async(run, on_error=_as_settlement_error)

    # ───────────────────────────────────────────────────────────────────────────
    # Order lifecycle
    # ───────────────────────────────────────────────────────────────────────────

    async def cancel_order(self, request: CancelRequest) -> Result[CancelledOrder, SettlementError]:
        async def run() -> CancelledOrder:
            cancelled = await self._unit(
                lambda session: run_cancellation(session, request, at=self._clock())
            )
            log.info(
                "order_cancelled",
                order_id=cancelled.order_id,
                actor_id=request.actor_id,
                restored=len(cancelled.restored),
                refunded=cancelled.refunded_payments,
            )
            self._schedule(cancelled.order_id)
            return cancelled

        return await L.catching_async(run, on_error=_as_settlement_error)

    async def advance_order(
        self, order_id: str, status: OrderStatus
    ) -> Result[SettledOrder, SettlementError]:
        """Forward transitions only; cancellation goes through `cancel_order`."""

        async def work(session: AsyncSession) -> SettledOrder:
            if status is OrderStatus.CANCELLED:
                raise ValidationError("Use order cancellation to cancel an order")
            order = (
                await session.execute(select(Order).where(Order.id == order_id))
            ).scalar_one_or_none()
            if order is None:
                raise Errors.order_not_found()
            current = OrderStatus(order.status)
            ensure_can_advance(current, status)
            cursor = cast(
                CursorResult[Any],
                await session.execute(
                    update(Order)
                    .where(Order.id == order_id, Order.status == current.value)
                    .values(status=status.value, updated_at=self._clock())
                    .execution_options(synchronize_session=False)
                ),
            )
            if cursor.rowcount != 1:
                raise Errors.illegal_transition(current.value, status.value)
            log.info("order_status_changed", order_id=order_id, previous=current.value, status=status.value)
            return SettledOrder(
                order_id=order.id,
                order_number=order.order_number,
                status=status.value,
                total=order.total,
            )

        return await L.catching_async(lambda: self._unit(work), on_error=_as_settlement_error)

    async def payment_settings(self) -> Result[PaymentSettings, SettlementError]:
        async def work(session: AsyncSession) -> PaymentSettings:
            return (await self._policy(session)).payments

        return await L.catching_async(lambda: self._unit(work), on_error=_as_settlement_error)


def _stored_coupon(stored: CheckoutIntent | None) -> CarriedCoupon | None:
    if stored is None or (stored.coupon_id is None and stored.coupon_code is None):
        return None
    return CarriedCoupon(
        coupon_id=stored.coupon_id,
        code=stored.coupon_code,
        discount_amount=stored.discount_amount,
    )


__all__ = ("MIN_TOTAL", "CheckoutService")
