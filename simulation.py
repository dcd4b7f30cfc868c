#!/usr/bin/env python3
"""Order Escrow — End-to-End Simulation.

Simulates five scenarios with BuyerBot and SellerBot agents against the
services, with the simulated ledger, carrier and listing reader:

    Scenario 1: Happy Path
        - Buyer confirms, seller is notified
        - Seller confirms -> funds released once -> completed

    Scenario 2: Simultaneous Confirmation
        - Buyer and seller confirm at the same moment
        - Exactly one release, one ledger transfer

    Scenario 3: Dispute Freezes Settlement
        - Buyer disputes before the seller confirms
        - Seller confirms -> recorded, but no release
        - Admin workflow refunds the buyer

    Scenario 4: Vault Shipping Handshake
        - Buyer requests and approves shipping; carrier not called yet
        - Seller approves -> exactly one shipment

    Scenario 5: Outsider
        - A user who is not a party confirms -> rejected, nothing logged

Usage:
    # Option A: Against PostgreSQL (DATABASE_URL from .env):
    docker compose up -d
    uv run python simulation.py

    # Option B: Without Docker (SQLite file in a temp directory):
    uv run python simulation.py --sqlite

    # Run a specific scenario:
    uv run python simulation.py --sqlite --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
import tempfile
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from order_escrow.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from order_escrow.config import get_settings  # noqa: E402
from order_escrow.domain.collaborators import ListingSnapshot  # noqa: E402
from order_escrow.domain.enums import DeliveryOption, ResolutionOutcome  # noqa: E402
from order_escrow.domain.exceptions import UnauthorizedActorError  # noqa: E402
from order_escrow.infrastructure.collaborators import Collaborators  # noqa: E402
from order_escrow.infrastructure.database import (  # noqa: E402
    Base,
    build_engine,
    build_session_factory,
)
from order_escrow.infrastructure.ledger import SimulatedLedgerGateway  # noqa: E402
from order_escrow.infrastructure.listings import InMemoryListingReader  # noqa: E402
from order_escrow.infrastructure.notifications import LoggingNotificationDispatcher  # noqa: E402
from order_escrow.infrastructure.shipping import SimulatedShippingCarrier  # noqa: E402
from order_escrow.services import (  # noqa: E402
    DisputeService,
    OrderService,
    SettlementService,
    ShippingService,
)

LISTING = ListingSnapshot(
    listing_id="listing-1986-fleer-57",
    title="1986 Fleer Michael Jordan #57",
    condition="graded",
    grade="PSA 8",
)
VAULT_ADDRESS = {
    "name": "Pat Buyer",
    "line1": "1 Main St",
    "city": "Springfield",
    "postal_code": "12345",
    "country": "US",
}

# Module-level state
_engine = None
_tmpdir: tempfile.TemporaryDirectory | None = None
_services: dict[str, Any] = {}
_collaborators: Collaborators | None = None


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Create the engine, the tables and the services."""
    global _engine, _tmpdir, _collaborators

    settings = get_settings()
    if use_sqlite:
        # A file, not :memory:, so concurrent sessions see each other's commits.
        _tmpdir = tempfile.TemporaryDirectory()
        url = f"sqlite+aiosqlite:///{Path(_tmpdir.name) / 'simulation.db'}"
    else:
        url = settings.database_url

    _engine = build_engine(url)
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database.initialized", backend=_engine.dialect.name)

    factory = build_session_factory(_engine)
    _collaborators = Collaborators(
        ledger=SimulatedLedgerGateway(escrow_account=settings.escrow_account_id),
        notifications=LoggingNotificationDispatcher(),
        listings=InMemoryListingReader({LISTING.listing_id: LISTING}),
        carrier=SimulatedShippingCarrier(),
    )
    _services.update(
        orders=OrderService(factory, _collaborators, settings),
        settlement=SettlementService(factory, _collaborators, settings),
        disputes=DisputeService(factory, _collaborators, settings),
        shipping=ShippingService(factory, _collaborators, settings),
    )


async def shutdown_database() -> None:
    """Close database connections."""
    global _engine, _tmpdir
    if _engine is not None:
        await _engine.dispose()
        _engine = None
    if _tmpdir is not None:
        _tmpdir.cleanup()
        _tmpdir = None


# ---------------------------------------------------------------------------
# Bot Agents
# ---------------------------------------------------------------------------
@dataclass
class BuyerBot:
    """Simulated buyer: places and pays for orders, confirms, disputes."""

    user_id: str = "buyer-ada"

    async def place_order(
        self,
        seller_id: str,
        price: Decimal,
        delivery_option: DeliveryOption = DeliveryOption.SHIP,
    ) -> Any:
        orders: OrderService = _services["orders"]
        order = await orders.create_order(
            buyer_id=self.user_id,
            seller_id=seller_id,
            listing_id=LISTING.listing_id,
            price=price,
            buyer_fee=Decimal("0.00"),
            seller_fee=(price * Decimal("0.10")).quantize(Decimal("0.01")),
            delivery_option=delivery_option,
            shipping_address=VAULT_ADDRESS if delivery_option is DeliveryOption.VAULT else None,
        )
        order = await orders.capture_payment(order.id, payment_reference=f"sim-pay-{order.id.hex[:8]}")
        logger.info("🔵 BUYER: Order placed and paid", order_id=str(order.id), price=str(price))
        return order

    async def confirm(self, order_id: Any) -> Any:
        result = await _services["settlement"].confirm(order_id, self.user_id)
        logger.info("🔵 BUYER: Confirmed", outcome=result.outcome.value)
        return result

    async def dispute(self, order_id: Any, reason: str) -> Any:
        escalation = await _services["disputes"].open_dispute(order_id, self.user_id, reason)
        logger.info("🔵 BUYER: Dispute opened", escalation_id=str(escalation.id))
        return escalation


@dataclass
class SellerBot:
    """Simulated seller: confirms and takes part in the shipping handshake."""

    user_id: str = "seller-grace"

    async def confirm(self, order_id: Any) -> Any:
        result = await _services["settlement"].confirm(order_id, self.user_id)
        logger.info("🟢 SELLER: Confirmed", outcome=result.outcome.value)
        return result

    async def approve_shipping(self, order_id: Any) -> Any:
        order = await _services["shipping"].approve_shipping(order_id, self.user_id)
        logger.info("🟢 SELLER: Shipping approved", tracking_number=order.tracking_number)
        return order


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


async def print_status(order_id: Any) -> None:
    status = await _services["orders"].get_status(order_id)
    print(f"  Status: {status['status']}  Escrow: {status['escrow_status']}")
    print(
        f"  Confirmed: buyer={status['buyer_confirmed']} seller={status['seller_confirmed']}"
        f"  Settlement: {status['settlement']}"
    )


async def print_audit_trail(order_id: Any) -> None:
    """Print the full action timeline for an order."""
    actions = await _services["orders"].get_timeline(order_id)
    print("\n  📜 Audit Trail:")
    for i, action in enumerate(actions, 1):
        actor = action.actor_id or action.actor_type
        print(f"    {i}. [{action.action_type}] by {actor}")
    print()


# ===========================================================================
# Scenarios
# ===========================================================================
async def scenario_1_happy_path() -> None:
    """Buyer confirms, then seller confirms; funds are released once."""
    banner("SCENARIO 1: Happy Path — Dual Confirmation")
    buyer, seller = BuyerBot(), SellerBot()

    section("Step 1: Buyer places and pays for the order")
    order = await buyer.place_order(seller.user_id, Decimal("100.00"))

    section("Step 2: Buyer confirms")
    await buyer.confirm(order.id)
    await print_status(order.id)

    section("Step 3: Seller confirms")
    await seller.confirm(order.id)
    await print_status(order.id)

    await print_audit_trail(order.id)


async def scenario_2_simultaneous_confirmation() -> None:
    """Both parties confirm at the same moment; exactly one release happens."""
    banner("SCENARIO 2: Simultaneous Confirmation")
    buyer, seller = BuyerBot(), SellerBot()
    order = await buyer.place_order(seller.user_id, Decimal("250.00"))
    ledger_entries_before = len(_collaborators.ledger.entries)

    section("Buyer and seller confirm concurrently")
    results = await asyncio.gather(buyer.confirm(order.id), seller.confirm(order.id))
    for result in results:
        print(f"  {result.role.value}: {result.outcome.value}")

    transfers = len(_collaborators.ledger.entries) - ledger_entries_before
    print(f"  Ledger transfers for this order: {transfers}")
    await print_status(order.id)
    await print_audit_trail(order.id)


async def scenario_3_dispute() -> None:
    """A dispute blocks release until the admin workflow resolves it."""
    banner("SCENARIO 3: Dispute Freezes Settlement")
    buyer, seller = BuyerBot(), SellerBot()
    order = await buyer.place_order(seller.user_id, Decimal("80.00"))

    section("Step 1: Buyer disputes")
    await buyer.dispute(order.id, "item not as described")

    section("Step 2: Seller confirms anyway")
    result = await seller.confirm(order.id)
    print(f"  Release blocked: {result.settlement_blocked}")
    await print_status(order.id)

    section("Step 3: Admin workflow refunds the buyer")
    await _services["disputes"].apply_resolution(
        order.id, ResolutionOutcome.REFUND, admin_id="admin-sim", note="seller could not verify"
    )
    await print_status(order.id)
    await print_audit_trail(order.id)


async def scenario_4_vault_shipping() -> None:
    """Vault goods ship only after both parties approve."""
    banner("SCENARIO 4: Vault Shipping Handshake")
    buyer, seller = BuyerBot(), SellerBot()
    order = await buyer.place_order(seller.user_id, Decimal("500.00"), DeliveryOption.VAULT)
    shipping: ShippingService = _services["shipping"]

    section("Step 1: Buyer requests and approves shipping")
    await shipping.request_shipping(order.id, buyer.user_id)
    order = await shipping.approve_shipping(order.id, buyer.user_id)
    print(f"  Tracking number yet: {order.tracking_number}")

    section("Step 2: Seller approves")
    order = await seller.approve_shipping(order.id)
    print(f"  Tracking number: {order.tracking_number}")
    await print_audit_trail(order.id)


async def scenario_5_outsider() -> None:
    """A user who is not a party cannot confirm."""
    banner("SCENARIO 5: Outsider Confirmation")
    buyer, seller = BuyerBot(), SellerBot()
    order = await buyer.place_order(seller.user_id, Decimal("30.00"))

    try:
        await _services["settlement"].confirm(order.id, "mallory")
    except UnauthorizedActorError as exc:
        print(f"  ❌ Rejected: {exc.message}")
    await print_status(order.id)
    await print_audit_trail(order.id)


SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_simultaneous_confirmation,
    3: scenario_3_dispute,
    4: scenario_4_vault_shipping,
    5: scenario_5_outsider,
}


# ===========================================================================
# Main
# ===========================================================================
async def run_all(use_sqlite: bool = False) -> None:
    """Run all scenarios sequentially."""
    await init_database(use_sqlite=use_sqlite)

    try:
        print("\n" + "🚀" * 35)
        print("  ORDER ESCROW — SIMULATION")
        print(f"  Database: {'SQLite (temp file)' if use_sqlite else 'PostgreSQL'}")
        print("🚀" * 35 + "\n")

        for scenario in SCENARIOS.values():
            await scenario()

        print("\n" + "=" * 70)
        print("  ✅ ALL SCENARIOS COMPLETED SUCCESSFULLY")
        print("=" * 70 + "\n")

    finally:
        await shutdown_database()


async def run_scenario(num: int, use_sqlite: bool = False) -> None:
    """Run a specific scenario."""
    await init_database(use_sqlite=use_sqlite)

    try:
        if num not in SCENARIOS:
            print(f"Unknown scenario {num}. Available: {', '.join(map(str, SCENARIOS))}")
            return
        await SCENARIOS[num]()
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Order Escrow Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1-5). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use a temporary SQLite file instead of PostgreSQL (no Docker needed).",
    )
    args = parser.parse_args()

    if args.scenario == 0:
        asyncio.run(run_all(use_sqlite=args.sqlite))
    else:
        asyncio.run(run_scenario(args.scenario, use_sqlite=args.sqlite))
