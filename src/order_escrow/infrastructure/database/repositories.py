"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

Coordination between concurrent requests happens in one place:
OrderRepository.compare_and_set, a conditional UPDATE whose row count tells
the caller whether it won.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, or_, select, update

from order_escrow.infrastructure.database.orm_models import (
    Escalation,
    Order,
    OrderAction,
)

if TYPE_CHECKING:
    import uuid

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

    from order_escrow.domain.enums import ActionType, ActorType, EscalationType


class OrderRepository:
    """Data access for orders."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, order: Order) -> Order:
        """Insert a new order."""
        self._session.add(order)
        await self._session.flush()
        return order

    async def get_by_id(self, order_id: uuid.UUID) -> Order | None:
        """Fetch an order, always reflecting the latest committed row."""
        result = await self._session.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: str) -> list[Order]:
        """Fetch every order where the user is buyer or seller, newest first."""
        result = await self._session.execute(
            select(Order)
            .where(or_(Order.buyer_id == user_id, Order.seller_id == user_id))
            .order_by(Order.created_at.desc())
        )
        return list(result.scalars().all())

    async def compare_and_set(
        self,
        order_id: uuid.UUID,
        values: dict[str, Any],
        *conditions: ColumnElement[bool],
    ) -> bool:
        """Apply `values` only if every condition still holds.

        Bumps `version` and `updated_at` on success. Returns True when exactly
        one row was updated, False when another writer got there first.
        """
        stmt = (
            update(Order)
            .where(Order.id == order_id, *conditions)
            .values(**values, version=Order.version + 1, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def find_unfinished_settlements(self) -> list[Order]:
        """Orders whose escrow movement was claimed but never finalized."""
        result = await self._session.execute(
            select(Order)
            .where(
                Order.release_token.is_not(None),
                Order.escrow_status.in_(("pending", "disputed")),
            )
            .order_by(Order.release_claimed_at.asc())
        )
        return list(result.scalars().all())

    async def find_undelivered_shipments(self) -> list[Order]:
        """Vault orders whose shipment was claimed but has no tracking number yet."""
        result = await self._session.execute(
            select(Order)
            .where(
                Order.shipment_dispatched_at.is_not(None),
                Order.tracking_number.is_(None),
            )
            .order_by(Order.shipment_dispatched_at.asc())
        )
        return list(result.scalars().all())

    async def find_single_confirmations_before(self, cutoff: datetime) -> list[Order]:
        """Unsettled orders where exactly one party confirmed before `cutoff`."""
        buyer_only = and_(
            Order.buyer_confirmed_at.is_not(None),
            Order.seller_confirmed_at.is_(None),
            Order.buyer_confirmed_at < cutoff,
        )
        seller_only = and_(
            Order.seller_confirmed_at.is_not(None),
            Order.buyer_confirmed_at.is_(None),
            Order.seller_confirmed_at < cutoff,
        )
        result = await self._session.execute(
            select(Order).where(
                Order.escrow_status == "pending",
                Order.release_token.is_(None),
                Order.status.in_(("paid", "shipped", "delivered")),
                or_(buyer_only, seller_only),
            )
        )
        return list(result.scalars().all())


class ActionLogRepository:
    """Data access for the append-only order action timeline."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self,
        order_id: uuid.UUID,
        action_type: ActionType,
        actor_id: str | None,
        actor_type: ActorType,
        details: dict | None = None,
    ) -> OrderAction:
        """Append a new action. This is the ONLY write operation allowed."""
        action = OrderAction(
            order_id=order_id,
            action_type=action_type.value,
            actor_id=actor_id,
            actor_type=actor_type.value,
            details=details or {},
        )
        self._session.add(action)
        await self._session.flush()
        return action

    async def timeline(self, order_id: uuid.UUID) -> list[OrderAction]:
        """Fetch all actions for an order in canonical order."""
        result = await self._session.execute(
            select(OrderAction)
            .where(OrderAction.order_id == order_id)
            .order_by(OrderAction.created_at.asc(), OrderAction.id.asc())
        )
        return list(result.scalars().all())


class EscalationRepository:
    """Data access for dispute escalations."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        order_id: uuid.UUID,
        escalation_type: EscalationType,
        escalated_by: str,
        reason: str,
    ) -> Escalation:
        """Insert a new escalation record."""
        escalation = Escalation(
            order_id=order_id,
            escalation_type=escalation_type.value,
            escalated_by=escalated_by,
            reason=reason,
        )
        self._session.add(escalation)
        await self._session.flush()
        return escalation

    async def get_by_order(self, order_id: uuid.UUID) -> list[Escalation]:
        """Fetch all escalations for an order, oldest first."""
        result = await self._session.execute(
            select(Escalation)
            .where(Escalation.order_id == order_id)
            .order_by(Escalation.created_at.asc())
        )
        return list(result.scalars().all())
