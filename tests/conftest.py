"""Shared test fixtures for the order escrow test suite.

Provides:
    - Settings with retry waits zeroed so ledger/carrier retries run instantly
    - A file-backed SQLite database per test (aiosqlite), tables created from the ORM
    - Recording fakes for the ledger, notification dispatcher and carrier
    - Service fixtures and an order factory
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

import pytest
import pytest_asyncio

from order_escrow.config import Settings
from order_escrow.domain.collaborators import LedgerResult, ListingSnapshot
from order_escrow.domain.enums import DeliveryOption
from order_escrow.infrastructure.collaborators import Collaborators
from order_escrow.infrastructure.database import Base, build_engine, build_session_factory
from order_escrow.infrastructure.ledger import SimulatedLedgerGateway
from order_escrow.infrastructure.listings import InMemoryListingReader
from order_escrow.infrastructure.shipping import SimulatedShippingCarrier
from order_escrow.services import (
    DisputeService,
    MaintenanceService,
    OrderService,
    SettlementService,
    ShippingService,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from order_escrow.infrastructure.database import Order

BUYER = "buyer-1"
SELLER = "seller-1"
LISTING_ID = "listing-1"
ADMIN_TOKEN = "test-admin-token"
VAULT_ADDRESS = {
    "name": "Pat Buyer",
    "line1": "1 Main St",
    "city": "Springfield",
    "postal_code": "12345",
    "country": "US",
}


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FlakyLedger(SimulatedLedgerGateway):
    """Simulated ledger that records calls and can be told to fail."""

    def __init__(self) -> None:
        super().__init__(escrow_account="platform-escrow")
        self.transfer_calls: list[str] = []
        self.refund_calls: list[str] = []
        self.failures_remaining = 0
        self.fail_always = False

    def _should_fail(self) -> bool:
        if self.fail_always:
            return True
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            return True
        return False

    async def transfer(
        self,
        order_id: str,
        from_account: str,
        to_account: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> LedgerResult:
        self.transfer_calls.append(idempotency_key)
        if self._should_fail():
            return LedgerResult(success=False, error="ledger unavailable")
        return await super().transfer(order_id, from_account, to_account, amount, idempotency_key)

    async def refund(
        self,
        order_id: str,
        to_account: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> LedgerResult:
        self.refund_calls.append(idempotency_key)
        if self._should_fail():
            return LedgerResult(success=False, error="ledger unavailable")
        return await super().refund(order_id, to_account, amount, idempotency_key)


class RecordingDispatcher:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    async def send(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
        self.sent.append((user_id, event_type, payload))

    def events_for(self, user_id: str) -> list[str]:
        return [event for uid, event, _ in self.sent if uid == user_id]


class FailingDispatcher:
    async def send(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
        raise RuntimeError("notification channel down")


class RecordingCarrier(SimulatedShippingCarrier):
    """Simulated carrier that counts calls and can be told to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[dict[str, Any], str]] = []
        self.fail_always = False

    async def create_shipment(
        self,
        address: dict[str, Any],
        items: list[dict[str, Any]],
        reference: str,
    ) -> str:
        self.calls.append((address, reference))
        if self.fail_always:
            raise ConnectionError("carrier API timeout")
        return await super().create_shipment(address, items, reference)


# ---------------------------------------------------------------------------
# Infrastructure fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        app_env="development",
        database_url="sqlite+aiosqlite://",
        ledger_max_attempts=3,
        ledger_retry_wait_min=0,
        ledger_retry_wait_max=0,
        carrier_max_attempts=2,
        carrier_retry_wait_min=0,
        carrier_retry_wait_max=0,
        admin_user_ids="admin-1",
        admin_api_token=ADMIN_TOKEN,
        confirmation_timeout_days=None,
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """A fresh SQLite file per test; separate connections behave like separate requests."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'escrow.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def ledger() -> FlakyLedger:
    return FlakyLedger()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def carrier() -> RecordingCarrier:
    return RecordingCarrier()


@pytest.fixture
def listings() -> InMemoryListingReader:
    return InMemoryListingReader(
        {
            LISTING_ID: ListingSnapshot(
                listing_id=LISTING_ID,
                title="1986 Fleer Michael Jordan #57",
                condition="graded",
                grade="PSA 8",
            )
        }
    )


@pytest.fixture
def collaborators(
    ledger: FlakyLedger,
    dispatcher: RecordingDispatcher,
    listings: InMemoryListingReader,
    carrier: RecordingCarrier,
) -> Collaborators:
    return Collaborators(ledger=ledger, notifications=dispatcher, listings=listings, carrier=carrier)


@pytest.fixture
def quiet_collaborators(
    ledger: FlakyLedger,
    listings: InMemoryListingReader,
    carrier: RecordingCarrier,
) -> Collaborators:
    """Same collaborators, but every notification raises."""
    return Collaborators(
        ledger=ledger, notifications=FailingDispatcher(), listings=listings, carrier=carrier
    )


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def order_service(session_factory, collaborators, settings) -> OrderService:  # noqa: ANN001
    return OrderService(session_factory, collaborators, settings)


@pytest.fixture
def settlement_service(session_factory, collaborators, settings) -> SettlementService:  # noqa: ANN001
    return SettlementService(session_factory, collaborators, settings)


@pytest.fixture
def dispute_service(session_factory, collaborators, settings) -> DisputeService:  # noqa: ANN001
    return DisputeService(session_factory, collaborators, settings)


@pytest.fixture
def shipping_service(session_factory, collaborators, settings) -> ShippingService:  # noqa: ANN001
    return ShippingService(session_factory, collaborators, settings)


@pytest.fixture
def maintenance_service(session_factory, collaborators, settings) -> MaintenanceService:  # noqa: ANN001
    return MaintenanceService(session_factory, collaborators, settings)


# ---------------------------------------------------------------------------
# Domain data
# ---------------------------------------------------------------------------


@pytest.fixture
def make_order(order_service: OrderService) -> Callable[..., Awaitable[Order]]:
    """Return a factory that creates an order and, by default, captures payment."""

    async def _make(
        paid: bool = True,
        price: Decimal = Decimal("100.00"),
        buyer_fee: Decimal = Decimal("0.00"),
        seller_fee: Decimal = Decimal("0.00"),
        delivery_option: DeliveryOption = DeliveryOption.SHIP,
        shipping_address: dict[str, Any] | None = None,
    ) -> Order:
        order = await order_service.create_order(
            buyer_id=BUYER,
            seller_id=SELLER,
            listing_id=LISTING_ID,
            price=price,
            buyer_fee=buyer_fee,
            seller_fee=seller_fee,
            delivery_option=delivery_option,
            shipping_address=shipping_address,
        )
        if paid:
            order = await order_service.capture_payment(order.id, payment_reference="pay-123")
        return order

    return _make
