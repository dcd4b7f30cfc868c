"""Database infrastructure — engine, ORM models, repositories and unit of work."""

from order_escrow.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    close_db,
    get_session_factory,
    init_db,
)
from order_escrow.infrastructure.database.orm_models import (
    Base,
    Escalation,
    Order,
    OrderAction,
)
from order_escrow.infrastructure.database.repositories import (
    ActionLogRepository,
    EscalationRepository,
    OrderRepository,
)
from order_escrow.infrastructure.database.unit_of_work import UnitOfWork, unit_of_work

__all__ = [
    "Base",
    "Escalation",
    "Order",
    "OrderAction",
    "ActionLogRepository",
    "EscalationRepository",
    "OrderRepository",
    "UnitOfWork",
    "unit_of_work",
    "build_engine",
    "build_session_factory",
    "get_session_factory",
    "init_db",
    "close_db",
]
