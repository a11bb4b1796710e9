from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from itertools import count

import httpx
import pytest
from pydantic import SecretStr
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement import db
from settlement._config import Settings
from settlement._types import Error, Ok, Result
from settlement.checkout import CheckoutService, PaymentProof
from settlement.gateway import CredentialStore, GatewayName, GatewayRegistry, sign_payment
from settlement.outbox import DbReferralEngine, OrderSummary, OutboxDispatcher

NOW = datetime(2026, 3, 14, 12, 0, 0)
ENCRYPTION_KEY = "k" * 40
RAZORPAY_KEY = "rzp_test_key"
RAZORPAY_SECRET = "rzp_test_secret"


def clock() -> datetime:
    return NOW


def ok[T](result: Result[T, Exception]) -> T:
    match result:
        case Ok(value):
            return value
        case Error(e):
            raise AssertionError(f"expected Ok, got {e!r}")


def err[T](result: Result[T, Exception]) -> Exception:
    match result:
        case Error(e):
            return e
        case Ok(value):
            raise AssertionError(f"expected Error, got Ok({value!r})")


# ═══════════════════════════════════════════════════════════════════════════════
# Database
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
async def session_factory(tmp_path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    factory, engine = await db.create_database(f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}")
    yield factory
    await engine.dispose()


@dataclass
class Shop:
    """Seeds catalog rows and reads back state for assertions."""

    session_factory: async_sessionmaker[AsyncSession]
    _seq: count = field(default_factory=lambda: count(1))

    async def add(self, *rows: object) -> None:
        async with self.session_factory() as session, session.begin():
            session.add_all(list(rows))

    async def user(self, email: str | None = None, name: str = "Asha") -> db.User:
        n = next(self._seq)
        user = db.User(email=email or f"buyer{n}@example.com", name=name)
        await self.add(user)
        return user

    async def address(self, user: db.User) -> db.Address:
        address = db.Address(
            user_id=user.id,
            full_name="Asha Rao",
            phone="9990001111",
            line1="12 MG Road",
            city="Bengaluru",
            state="KA",
            postal_code="560001",
            country="India",
        )
        await self.add(address)
        return address

    async def variant(
        self,
        price: str = "100.00",
        quantity: int = 10,
        *,
        sale_price: str | None = None,
        name: str | None = None,
    ) -> db.Variant:
        n = next(self._seq)
        product = db.Product(name=name or f"Product {n}", slug=f"product-{n}")
        await self.add(product)
        variant = db.Variant(
            product_id=product.id,
            sku=f"SKU-{n}",
            price=Decimal(price),
            sale_price=Decimal(sale_price) if sale_price else None,
            quantity=quantity,
        )
        await self.add(variant)
        return variant

    async def slab(
        self,
        variant: db.Variant,
        min_qty: int,
        price: str,
        max_qty: int | None = None,
        *,
        product_scope: bool = False,
    ) -> None:
        await self.add(
            db.PricingSlab(
                variant_id=None if product_scope else variant.id,
                product_id=variant.product_id if product_scope else None,
                min_qty=min_qty,
                max_qty=max_qty,
                price=Decimal(price),
            )
        )

    async def flash_sale(
        self,
        variant: db.Variant,
        percentage: str,
        *,
        start: datetime = NOW - timedelta(hours=1),
        end: datetime = NOW + timedelta(hours=1),
        active: bool = True,
        name: str = "Midnight Sale",
    ) -> db.FlashSale:
        sale = db.FlashSale(
            name=name,
            start_time=start,
            end_time=end,
            is_active=active,
            discount_percentage=Decimal(percentage),
        )
        await self.add(sale)
        await self.add(db.FlashSaleProduct(flash_sale_id=sale.id, product_id=variant.product_id))
        return sale

    async def cart(self, user: db.User, variant: db.Variant, quantity: int) -> None:
        await self.add(db.CartItem(user_id=user.id, variant_id=variant.id, quantity=quantity))

    async def buyer_with_cart(
        self, price: str = "100.00", stock: int = 10, quantity: int = 2
    ) -> tuple[db.User, db.Address, db.Variant]:
        user = await self.user()
        address = await self.address(user)
        variant = await self.variant(price, stock)
        await self.cart(user, variant, quantity)
        return user, address, variant

    async def coupon(
        self,
        code: str,
        value: str,
        *,
        kind: str = "PERCENTAGE",
        capped: bool = False,
        max_uses: int | None = None,
        expires_at: datetime | None = None,
    ) -> db.Coupon:
        coupon = db.Coupon(
            code=code,
            discount_type=kind,
            discount_value=Decimal(value),
            is_discount_capped=capped,
            max_uses=max_uses,
            expires_at=expires_at,
        )
        await self.add(coupon)
        return coupon

    async def assign(self, user: db.User, coupon: db.Coupon) -> db.UserCoupon:
        user_coupon = db.UserCoupon(user_id=user.id, coupon_id=coupon.id)
        await self.add(user_coupon)
        return user_coupon

    async def shipping(self, threshold: str, charge: str) -> None:
        await self.add(
            db.ShippingSettings(
                free_shipping_threshold=Decimal(threshold), shipping_charge=Decimal(charge)
            )
        )

    async def payments(self, *, cash: bool = False, cod_charge: str = "0", phonepe: bool = False) -> None:
        await self.add(
            db.PaymentSettingsRow(
                cash_enabled=cash,
                razorpay_enabled=True,
                phonepe_enabled=phonepe,
                cod_charge=Decimal(cod_charge),
            )
        )

    # ─── reads ──────────────────────────────────────────────────────────────

    async def get[T](self, model: type[T], id_: str) -> T:
        async with self.session_factory() as session:
            row = await session.get(model, id_)
            assert row is not None
            return row

    async def count(self, model: type[object], *where: object) -> int:
        async with self.session_factory() as session:
            stmt = select(func.count()).select_from(model)
            for clause in where:
                stmt = stmt.where(clause)  # type: ignore[arg-type]
            return (await session.execute(stmt)).scalar_one()

    async def all[T](self, model: type[T], *where: object) -> list[T]:
        async with self.session_factory() as session:
            stmt = select(model)
            for clause in where:
                stmt = stmt.where(clause)  # type: ignore[arg-type]
            return list((await session.execute(stmt)).scalars().all())

    async def stock(self, variant: db.Variant) -> int:
        return (await self.get(db.Variant, variant.id)).quantity


@pytest.fixture
def shop(session_factory: async_sessionmaker[AsyncSession]) -> Shop:
    return Shop(session_factory)


# ═══════════════════════════════════════════════════════════════════════════════
# Gateway
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class FakeRazorpay:
    """In-process stand-in for the Razorpay Orders and Payments APIs."""

    method: str = "upi"
    fail_orders: bool = False
    fail_payments: bool = False
    orders: list[dict[str, object]] = field(default_factory=list)
    _ids: count = field(default_factory=lambda: count(1))

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path.endswith("/orders"):
            if self.fail_orders:
                return httpx.Response(500, json={"error": {"description": "boom"}})
            body = json.loads(request.content)
            order = {"id": f"order_{next(self._ids)}", **body}
            self.orders.append(order)
            return httpx.Response(200, json=order)
        if request.method == "GET" and "/payments/" in request.url.path:
            if self.fail_payments:
                return httpx.Response(503, json={})
            payment_id = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={"id": payment_id, "method": self.method})
        return httpx.Response(404, json={})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def proof_for(intent_ref: str, payment_ref: str, secret: str = RAZORPAY_SECRET) -> PaymentProof:
    return PaymentProof(
        intent_ref=intent_ref,
        payment_ref=payment_ref,
        signature=sign_payment(secret, intent_ref, payment_ref),
    )


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}",
        encryption_key=SecretStr(ENCRYPTION_KEY),
        gateway_timeout=2.0,
        db_timeout=10.0,
    )


@pytest.fixture
def razorpay() -> FakeRazorpay:
    return FakeRazorpay()


@pytest.fixture
async def credentials(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> CredentialStore:
    store = CredentialStore(session_factory, settings.encryption_key)
    await store.configure(
        gateway=GatewayName.RAZORPAY,
        key_id=RAZORPAY_KEY,
        secret=SecretStr(RAZORPAY_SECRET),
    )
    return store


@pytest.fixture
async def http_client(razorpay: FakeRazorpay) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=razorpay.transport()) as client:
        yield client


@pytest.fixture
def registry(
    credentials: CredentialStore, http_client: httpx.AsyncClient, settings: Settings
) -> GatewayRegistry:
    return GatewayRegistry(credentials, http_client, settings)


# ═══════════════════════════════════════════════════════════════════════════════
# Outbox + service
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class RecordingSender:
    sent: list[tuple[str, OrderSummary]] = field(default_factory=list)

    async def send(self, email: str, summary: OrderSummary) -> None:
        self.sent.append((email, summary))


@dataclass
class RecordingShipments:
    registered: list[str] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)
    fail: bool = False

    async def register(self, order: OrderSummary) -> str | None:
        if self.fail:
            raise RuntimeError("shipment provider unavailable")
        self.registered.append(order.order_id)
        return f"SHIP-{order.order_number}"

    async def cancel(self, shipment_ref: str) -> None:
        self.cancelled.append(shipment_ref)


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def shipments() -> RecordingShipments:
    return RecordingShipments()


@pytest.fixture
async def dispatcher(
    session_factory: async_sessionmaker[AsyncSession],
    sender: RecordingSender,
    shipments: RecordingShipments,
) -> AsyncIterator[OutboxDispatcher]:
    outbox = OutboxDispatcher(
        session_factory,
        notifications=sender,
        shipments=shipments,
        referrals=DbReferralEngine(session_factory, clock=clock),
        max_attempts=2,
        clock=clock,
    )
    yield outbox
    await outbox.wait_idle()


@pytest.fixture
def service(
    session_factory: async_sessionmaker[AsyncSession],
    registry: GatewayRegistry,
    settings: Settings,
    dispatcher: OutboxDispatcher,
) -> CheckoutService:
    return CheckoutService(
        session_factory,
        registry,
        settings=settings,
        dispatcher=dispatcher,
        clock=clock,
    )
