"""Shipping Service — two-party consent before vault goods leave storage.

Either party requests shipping (write-once), then each party approves
(write-once per party). The carrier is called exactly when both approvals
are in, and only by the caller that claims `shipment_dispatched_at`. Approvals
cannot be withdrawn.
"""

from __future__ import annotations

from datetime import UTC, datetime
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
)
from order_escrow.domain.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    OrderValidationError,
    ShipmentFailedError,
)
from order_escrow.domain.roles import resolve_role
from order_escrow.infrastructure.database import Order, unit_of_work
from order_escrow.logging_config import bind_order_context, get_logger
from order_escrow.services.notifier import Notifier
from order_escrow.services.resilience import create_shipment_with_retry, retry_on_conflict

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from order_escrow.infrastructure.collaborators import Collaborators

logger = get_logger(__name__)

_APPROVAL_COLUMNS = {
    ActorRole.BUYER: ("buyer_approved_shipping", "buyer_shipping_approved_at"),
    ActorRole.SELLER: ("seller_approved_shipping", "seller_shipping_approved_at"),
}
_UNSHIPPABLE_STATUSES = (OrderStatus.PENDING.value, OrderStatus.REFUNDED.value)


def _shipment_items(order: Order) -> list[dict[str, Any]]:
    if order.listing_snapshot:
        return [dict(order.listing_snapshot)]
    return [{"listing_id": order.listing_id}]


def _ensure_shippable(order: Order, operation: str) -> None:
    """Raise unless the order is a vault order that may leave storage."""
    if order.delivery_option != DeliveryOption.VAULT.value and order.shipment_dispatched_at is None:
        raise InvalidTransitionError(order.status, operation, "order is not stored in the vault")
    if order.status in _UNSHIPPABLE_STATUSES:
        raise InvalidTransitionError(order.status, operation, "order is not paid")
    if order.escrow_status == EscrowStatus.DISPUTED.value:
        raise InvalidTransitionError(order.status, operation, "order is disputed")


class ShippingService:
    """Runs the vault shipping-consent handshake and dispatches shipments."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        collaborators: Collaborators,
        settings: Settings | None = None,
    ) -> None:
        self._sessions = session_factory
        self._carrier = collaborators.carrier
        self._notifier = Notifier(collaborators.notifications)
        self._settings = settings or get_settings()

    @retry_on_conflict
    async def request_shipping(
        self,
        order_id: uuid.UUID,
        actor_id: str,
        shipping_address: dict[str, Any] | None = None,
    ) -> Order:
        """Ask for a vault order to be shipped. Only the first request is recorded."""
        bind_order_context(order_id, actor_id)

        async with unit_of_work(self._sessions) as uow:
            order = await uow.get_order_or_raise(order_id)
            role = resolve_role(str(order.id), order.buyer_id, order.seller_id, actor_id)
            _ensure_shippable(order, "request_shipping")

            if order.shipping_requested_at is not None:
                logger.info("shipping.request_repeated", role=role.value)
                return order

            address = shipping_address or order.shipping_address
            if not address:
                raise OrderValidationError("A shipping address is required to request shipping")

            won = await uow.orders.compare_and_set(
                order.id,
                {
                    "shipping_requested_at": datetime.now(UTC),
                    "shipping_requested_by": actor_id,
                    "shipping_address": address,
                },
                Order.shipping_requested_at.is_(None),
                Order.delivery_option == DeliveryOption.VAULT.value,
            )
            if not won:
                raise ConcurrentModificationError(str(order.id))

            await uow.actions.append(
                order.id,
                ActionType.SHIPPING_REQUESTED,
                actor_id,
                ActorType.USER,
                {"role": role.value, "address_updated": shipping_address is not None},
            )
            counterpart_id = order.seller_id if role is ActorRole.BUYER else order.buyer_id

        logger.info("shipping.requested", role=role.value)
        await self._notifier.notify(
            counterpart_id,
            NotificationType.SHIPPING_APPROVAL_REQUIRED,
            order_id,
            requested_by=role.value,
        )
        return await self._load(order_id)

    @retry_on_conflict
    async def approve_shipping(self, order_id: uuid.UUID, actor_id: str) -> Order:
        """Record the actor's approval; dispatch the shipment once both have approved.

        Raises:
            ShipmentFailedError: both approved but the carrier kept failing.
                The approval itself stays recorded and the shipment is retried
                by the maintenance sweep.
        """
        bind_order_context(order_id, actor_id)

        async with unit_of_work(self._sessions) as uow:
            order = await uow.get_order_or_raise(order_id)
            role = resolve_role(str(order.id), order.buyer_id, order.seller_id, actor_id)
            _ensure_shippable(order, "approve_shipping")
            if order.shipping_requested_at is None:
                raise InvalidTransitionError(
                    order.status, "approve_shipping", "shipping has not been requested"
                )

            flag, stamp = _APPROVAL_COLUMNS[role]
            recorded = not getattr(order, flag)
            if recorded:
                won = await uow.orders.compare_and_set(
                    order.id,
                    {flag: True, stamp: datetime.now(UTC)},
                    getattr(Order, flag).is_(False),
                )
                if not won:
                    raise ConcurrentModificationError(str(order.id))
                await uow.actions.append(
                    order.id,
                    ActionType.SHIPPING_APPROVED,
                    actor_id,
                    ActorType.USER,
                    {"role": role.value},
                )
            else:
                logger.info("shipping.approval_repeated", role=role.value)
            counterpart_id = order.seller_id if role is ActorRole.BUYER else order.buyer_id

        both_approved = await self._dispatch_if_ready(order_id)

        if recorded and not both_approved:
            await self._notifier.notify(
                counterpart_id,
                NotificationType.SHIPPING_APPROVAL_REQUIRED,
                order_id,
                approved_by=role.value,
            )
        logger.info("shipping.approved", role=role.value, recorded=recorded, both_approved=both_approved)
        return await self._load(order_id)

    async def resume_shipment(self, order_id: uuid.UUID) -> str | None:
        """Retry a shipment that was claimed but never got a tracking number."""
        async with unit_of_work(self._sessions) as uow:
            order = await uow.get_order_or_raise(order_id)
            if order.shipment_dispatched_at is None or order.tracking_number is not None:
                return None
            address = order.shipping_address or {}
            items = _shipment_items(order)
            parties = (order.buyer_id, order.seller_id)

        logger.info("shipping.dispatch_resumed", order_id=str(order_id))
        return await self._create_shipment(order_id, address, items, parties)

    async def _dispatch_if_ready(self, order_id: uuid.UUID) -> bool:
        """Claim and send the shipment if both parties approved. Returns True once both have."""
        async with unit_of_work(self._sessions) as uow:
            order = await uow.get_order_or_raise(order_id)
            if not (order.buyer_approved_shipping and order.seller_approved_shipping):
                return False
            if order.shipment_dispatched_at is not None:
                return True

            won = await uow.orders.compare_and_set(
                order.id,
                {"shipment_dispatched_at": datetime.now(UTC)},
                Order.shipment_dispatched_at.is_(None),
                Order.buyer_approved_shipping.is_(True),
                Order.seller_approved_shipping.is_(True),
            )
            if not won:
                return True
            address = order.shipping_address or {}
            items = _shipment_items(order)
            parties = (order.buyer_id, order.seller_id)

        await self._create_shipment(order_id, address, items, parties)
        return True

    async def _create_shipment(
        self,
        order_id: uuid.UUID,
        address: dict[str, Any],
        items: list[dict[str, Any]],
        parties: tuple[str, str],
    ) -> str:
        try:
            tracking_number = await create_shipment_with_retry(
                self._carrier, self._settings, str(order_id), address, items
            )
        except ShipmentFailedError as exc:
            logger.error("shipping.dispatch_failed", order_id=str(order_id), error=exc.message)
            raise

        async with unit_of_work(self._sessions) as uow:
            won = await uow.orders.compare_and_set(
                order_id,
                {
                    "tracking_number": tracking_number,
                    "delivery_option": DeliveryOption.SHIP.value,
                },
                Order.tracking_number.is_(None),
            )
            if won:
                await uow.actions.append(
                    order_id,
                    ActionType.SHIPMENT_CREATED,
                    None,
                    ActorType.SYSTEM,
                    {"tracking_number": tracking_number, "item_count": len(items)},
                )

        if won:
            logger.info("shipping.dispatched", order_id=str(order_id), tracking_number=tracking_number)
            await self._notifier.notify_many(
                parties,
                NotificationType.SHIPPING_APPROVED,
                order_id,
                tracking_number=tracking_number,
            )
        return tracking_number

    async def _load(self, order_id: uuid.UUID) -> Order:
        async with unit_of_work(self._sessions) as uow:
            return await uow.get_order_or_raise(order_id)
