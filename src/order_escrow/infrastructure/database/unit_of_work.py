"""Transaction scope shared by the engine services.

A UnitOfWork is one database transaction with the three repositories bound
to it. Everything done inside `async with unit_of_work(factory) as uow:`
commits together or not at all, which is how a state change and its action
log entry stay atomic.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from order_escrow.domain.exceptions import OrderNotFoundError
from order_escrow.infrastructure.database.repositories import (
    ActionLogRepository,
    EscalationRepository,
    OrderRepository,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from order_escrow.infrastructure.database.orm_models import Order


class UnitOfWork:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.orders = OrderRepository(session)
        self.actions = ActionLogRepository(session)
        self.escalations = EscalationRepository(session)

    async def get_order_or_raise(self, order_id: uuid.UUID) -> Order:
        order = await self.orders.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order


@asynccontextmanager
async def unit_of_work(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[UnitOfWork]:
    """Open a session, begin a transaction, commit on success, roll back on error."""
    async with session_factory() as session, session.begin():
        yield UnitOfWork(session)
