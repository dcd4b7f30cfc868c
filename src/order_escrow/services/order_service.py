"""Order Service — order lifecycle outside settlement, plus read helpers.

Creation, payment capture, fulfilment and cancellation. Every state change
is a conditional UPDATE keyed on the status read in the same transaction,
written together with its action log entry.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from order_escrow.config import Settings, get_settings
from order_escrow.domain.enums import (
    ActionType,
    ActorRole,
    ActorType,
    DeliveryOption,
    EscrowStatus,
    NotificationType,
    OrderStatus,
    ResolutionOutcome,
)
from order_escrow.domain.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    ListingNotFoundError,
    OrderValidationError,
    UnauthorizedActorError,
)
from order_escrow.domain.roles import resolve_role
from order_escrow.domain.state_machine import OrderStateMachine, validate_transition
from order_escrow.infrastructure.database import Order, unit_of_work
from order_escrow.logging_config import bind_order_context, get_logger
from order_escrow.services.escrow_funds import EscrowFunds, LogEntry
from order_escrow.services.notifier import Notifier
from order_escrow.services.resilience import retry_on_conflict
from order_escrow.services.settlement_service import settlement_outcome

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from order_escrow.infrastructure.collaborators import Collaborators
    from order_escrow.infrastructure.database import Escalation, OrderAction

logger = get_logger(__name__)


class OrderService:
    """Manages the order lifecycle around the settlement protocol."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        collaborators: Collaborators,
        settings: Settings | None = None,
    ) -> None:
        self._sessions = session_factory
        self._listings = collaborators.listings
        self._settings = settings or get_settings()
        self._funds = EscrowFunds(session_factory, collaborators.ledger, self._settings)
        self._notifier = Notifier(collaborators.notifications)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_order(
        self,
        buyer_id: str,
        seller_id: str,
        listing_id: str,
        price: Decimal,
        buyer_fee: Decimal = Decimal("0"),
        seller_fee: Decimal = Decimal("0"),
        delivery_option: DeliveryOption = DeliveryOption.SHIP,
        shipping_address: dict[str, Any] | None = None,
    ) -> Order:
        """Create an order in `pending`, snapshotting the listing for the audit record."""
        if buyer_id == seller_id:
            raise OrderValidationError("Buyer and seller must be different users")
        if price <= 0:
            raise OrderValidationError("Price must be positive")
        if buyer_fee < 0 or seller_fee < 0:
            raise OrderValidationError("Fees cannot be negative")
        if seller_fee > price:
            raise OrderValidationError("Seller fee cannot exceed the price")

        snapshot = await self._listings.get_snapshot(listing_id)
        if snapshot is None:
            raise ListingNotFoundError(listing_id)

        async with unit_of_work(self._sessions) as uow:
            order = await uow.orders.create(
                Order(
                    id=uuid.uuid4(),
                    listing_id=listing_id,
                    buyer_id=buyer_id,
                    seller_id=seller_id,
                    price=price,
                    buyer_fee=buyer_fee,
                    seller_fee=seller_fee,
                    escrow_held_amount=price + buyer_fee,
                    status=OrderStatus.PENDING.value,
                    escrow_status=EscrowStatus.PENDING.value,
                    version=1,
                    delivery_option=delivery_option.value,
                    shipping_address=shipping_address,
                    buyer_approved_shipping=False,
                    seller_approved_shipping=False,
                    listing_snapshot=snapshot.to_dict(),
                )
            )
            await uow.actions.append(
                order.id,
                ActionType.CREATED,
                buyer_id,
                ActorType.USER,
                {
                    "listing_id": listing_id,
                    "price": str(price),
                    "delivery_option": delivery_option.value,
                },
            )

        logger.info("order.created", order_id=str(order.id), price=price, listing_id=listing_id)
        return order

    # ------------------------------------------------------------------
    # Fulfilment
    # ------------------------------------------------------------------

    @retry_on_conflict
    async def capture_payment(
        self,
        order_id: uuid.UUID,
        payment_reference: str | None = None,
    ) -> Order:
        """Record that the payment processor captured the buyer's funds into escrow."""
        bind_order_context(order_id)
        order = await self._transition(
            order_id,
            "capture_payment",
            {"paid_at": datetime.now(UTC)},
            ActionType.PAYMENT_CAPTURED,
            actor_id=None,
            actor_type=ActorType.SYSTEM,
            details={"payment_reference": payment_reference},
        )
        logger.info("order.payment_captured", payment_reference=payment_reference)
        return order

    @retry_on_conflict
    async def mark_shipped(
        self,
        order_id: uuid.UUID,
        actor_id: str,
        tracking_number: str | None = None,
    ) -> Order:
        """Seller marks the order as shipped."""
        bind_order_context(order_id, actor_id)
        async with unit_of_work(self._sessions) as uow:
            order = await uow.get_order_or_raise(order_id)
            if resolve_role(str(order.id), order.buyer_id, order.seller_id, actor_id) is not ActorRole.SELLER:
                raise UnauthorizedActorError(str(order.id), actor_id)

        values: dict[str, Any] = {"shipped_at": datetime.now(UTC)}
        if tracking_number:
            values["tracking_number"] = tracking_number
        order = await self._transition(
            order_id,
            "ship",
            values,
            ActionType.SHIPPED,
            actor_id=actor_id,
            actor_type=ActorType.USER,
            details={"tracking_number": tracking_number},
        )
        await self._notifier.notify(
            order.buyer_id,
            NotificationType.ORDER_SHIPPED,
            order_id,
            tracking_number=tracking_number,
        )
        return order

    @retry_on_conflict
    async def mark_delivered(self, order_id: uuid.UUID, actor_id: str | None = None) -> Order:
        """Record delivery, reported by the buyer or by the carrier (no actor)."""
        bind_order_context(order_id, actor_id)
        if actor_id is not None:
            async with unit_of_work(self._sessions) as uow:
                order = await uow.get_order_or_raise(order_id)
                role = resolve_role(str(order.id), order.buyer_id, order.seller_id, actor_id)
                if role is not ActorRole.BUYER:
                    raise UnauthorizedActorError(str(order.id), actor_id)

        order = await self._transition(
            order_id,
            "deliver",
            {"delivered_at": datetime.now(UTC)},
            ActionType.DELIVERED,
            actor_id=actor_id,
            actor_type=ActorType.USER if actor_id else ActorType.SYSTEM,
        )
        await self._notifier.notify(order.seller_id, NotificationType.ORDER_DELIVERED, order_id)
        return order

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    @retry_on_conflict
    async def cancel_order(
        self,
        order_id: uuid.UUID,
        actor_id: str,
        reason: str,
        as_admin: bool = False,
    ) -> Order:
        """Cancel before anyone confirmed, refunding captured funds to the buyer.

        Refused once either party has confirmed. Parties may cancel their own
        orders; admins may cancel any pending or paid order.
        """
        bind_order_context(order_id, actor_id)
        actor_type = ActorType.ADMIN if as_admin else ActorType.USER

        async with unit_of_work(self._sessions) as uow:
            order = await uow.get_order_or_raise(order_id)
            if not as_admin:
                resolve_role(str(order.id), order.buyer_id, order.seller_id, actor_id)
            if order.buyer_confirmed_at is not None or order.seller_confirmed_at is not None:
                raise InvalidTransitionError(order.status, "cancel", "a confirmation is recorded")
            conditions = [
                Order.status == order.status,
                Order.buyer_confirmed_at.is_(None),
                Order.seller_confirmed_at.is_(None),
            ]
            if order.release_token is not None:
                raise InvalidTransitionError(order.status, "cancel", "settlement in progress")
            validate_transition(order.status, "cancel")

            if order.status == OrderStatus.PENDING.value:
                # Nothing was captured, so there is nothing to send back.
                won = await uow.orders.compare_and_set(
                    order.id,
                    {
                        "status": OrderStatus.REFUNDED.value,
                        "escrow_status": EscrowStatus.REFUNDED.value,
                        "refunded_at": datetime.now(UTC),
                        "escrow_held_amount": None,
                    },
                    Order.release_token.is_(None),
                    *conditions,
                )
                if not won:
                    raise ConcurrentModificationError(str(order.id))
                await uow.actions.append(
                    order.id,
                    ActionType.REFUNDED,
                    actor_id,
                    actor_type,
                    {"reason": reason, "payment_captured": False},
                )
                marker = None
            else:
                marker = await self._funds.claim(uow, order, ResolutionOutcome.REFUND, *conditions)
                if marker is None:
                    raise ConcurrentModificationError(str(order.id))
            parties = (order.buyer_id, order.seller_id)

        if marker is not None:
            await self._funds.execute(
                order_id,
                marker,
                LogEntry(
                    ActionType.REFUNDED,
                    actor_id,
                    actor_type,
                    {"reason": reason, "payment_captured": True},
                ),
            )

        logger.info("order.cancelled", reason=reason, as_admin=as_admin)
        await self._notifier.notify_many(parties, NotificationType.ORDER_REFUNDED, order_id, reason=reason)
        return await self.get_order(order_id)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_order(self, order_id: uuid.UUID, actor_id: str | None = None) -> Order:
        """Get an order; when `actor_id` is given it must be a party to the order."""
        async with unit_of_work(self._sessions) as uow:
            order = await uow.get_order_or_raise(order_id)
        if actor_id is not None:
            resolve_role(str(order.id), order.buyer_id, order.seller_id, actor_id)
        return order

    async def get_status(self, order_id: uuid.UUID) -> dict:
        """Get order status with allowed events and handshake progress."""
        order = await self.get_order(order_id)
        sm = OrderStateMachine(current_status=order.status)
        outcome = settlement_outcome(order)
        return {
            "order_id": str(order.id),
            "status": order.status,
            "escrow_status": order.escrow_status,
            "allowed_events": sm.get_allowed_events(),
            "buyer_confirmed": order.buyer_confirmed_at is not None,
            "seller_confirmed": order.seller_confirmed_at is not None,
            "settlement": outcome.value if outcome is not None else "ready",
            "settlement_failed": order.settlement_failed_at is not None,
            "shipping_requested": order.shipping_requested_at is not None,
            "buyer_approved_shipping": order.buyer_approved_shipping,
            "seller_approved_shipping": order.seller_approved_shipping,
            "tracking_number": order.tracking_number,
        }

    async def get_timeline(self, order_id: uuid.UUID) -> list[OrderAction]:
        """Get the audit trail in canonical order."""
        async with unit_of_work(self._sessions) as uow:
            await uow.get_order_or_raise(order_id)
            return await uow.actions.timeline(order_id)

    async def list_escalations(self, order_id: uuid.UUID) -> list[Escalation]:
        async with unit_of_work(self._sessions) as uow:
            await uow.get_order_or_raise(order_id)
            return await uow.escalations.get_by_order(order_id)

    async def list_orders_for_user(self, user_id: str) -> list[Order]:
        async with unit_of_work(self._sessions) as uow:
            return await uow.orders.list_for_user(user_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _transition(
        self,
        order_id: uuid.UUID,
        event_name: str,
        values: dict[str, Any],
        action_type: ActionType,
        actor_id: str | None,
        actor_type: ActorType,
        details: dict | None = None,
    ) -> Order:
        """Guard, apply and log one state machine transition.

        Raises InvalidTransitionError if the event is illegal from the stored
        status, ConcurrentModificationError if the status moved underneath us.
        """
        async with unit_of_work(self._sessions) as uow:
            order = await uow.get_order_or_raise(order_id)
            previous_status = order.status
            new_status = validate_transition(previous_status, event_name)

            won = await uow.orders.compare_and_set(
                order.id,
                {"status": new_status, **values},
                Order.status == previous_status,
            )
            if not won:
                raise ConcurrentModificationError(str(order.id))

            await uow.actions.append(
                order.id,
                action_type,
                actor_id,
                actor_type,
                {"from_status": previous_status, "to_status": new_status, **(details or {})},
            )
            order = await uow.get_order_or_raise(order_id)

        logger.info(
            "order.transitioned",
            transition=event_name,
            from_status=previous_status,
            to_status=new_status,
        )
        return order
