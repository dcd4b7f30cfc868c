"""SQLAlchemy 2.0 ORM models for the order escrow engine.

Three tables:
    1. orders             — One row per buyer/seller transaction; the ground truth.
    2. order_actions      — Append-only audit timeline of every state change.
    3. order_escalations  — Dispute records handed to the admin workflow.

Design decisions:
    - UUIDs as primary keys for orders and escalations.
    - order_actions uses an integer key so ties on created_at still have a
      stable insertion order.
    - Decimal for money (no floating point rounding errors).
    - JSON columns (JSONB on PostgreSQL) for addresses, snapshots and details.
    - CHECK constraints on status values and on the settlement invariants.
    - `version` is bumped by every conditional update (optimistic concurrency).
    - order_actions is append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER PRIMARY KEY columns.
ActionIdType = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. orders
# ---------------------------------------------------------------------------
class Order(Base):
    """A buyer/seller transaction with escrowed funds."""

    __tablename__ = "orders"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # --- Parties ---
    listing_id: Mapped[str] = mapped_column(String(64), nullable=False)
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # --- Economics ---
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    buyer_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    seller_fee: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    escrow_held_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Funds held pending settlement; NULL once disputed, released or refunded",
    )

    # --- Lifecycle ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="Order lifecycle state (guarded by OrderStateMachine)",
    )
    escrow_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # --- Dual confirmation (write-once) ---
    buyer_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    seller_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # --- Settlement outcome ---
    funds_released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    release_token: Mapped[str | None] = mapped_column(
        String(64),
        comment="Set once by the caller that won the release race",
    )
    release_claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ledger_reference: Mapped[str | None] = mapped_column(String(128))
    settlement_failed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        comment="Ledger retries exhausted; needs administrative attention",
    )
    settlement_error: Mapped[str | None] = mapped_column(Text)

    # --- Dispute ---
    admin_escalated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    escalation_reason: Mapped[str | None] = mapped_column(Text)
    resolved_by: Mapped[str | None] = mapped_column(
        String(64),
        comment="Admin whose resolution claimed the settlement marker",
    )
    resolution_note: Mapped[str | None] = mapped_column(Text)

    # --- Delivery ---
    delivery_option: Mapped[str] = mapped_column(String(10), nullable=False, default="ship")
    tracking_number: Mapped[str | None] = mapped_column(String(128))
    shipping_address: Mapped[dict | None] = mapped_column(JSONType)

    # --- Vault shipping consent ---
    shipping_requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    shipping_requested_by: Mapped[str | None] = mapped_column(String(64))
    buyer_approved_shipping: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    seller_approved_shipping: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    buyer_shipping_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    seller_shipping_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    shipment_dispatched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        comment="Set once by the caller that won the shipment dispatch race",
    )

    # --- Listing snapshot ---
    listing_snapshot: Mapped[dict | None] = mapped_column(
        JSONType,
        comment="Listing title/condition/grade captured at order creation",
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'paid', 'shipped', 'delivered', "
            "'completed', 'disputed', 'refunded')",
            name="ck_order_valid_status",
        ),
        CheckConstraint(
            "escrow_status IN ('pending', 'released', 'disputed', 'refunded')",
            name="ck_order_valid_escrow_status",
        ),
        CheckConstraint(
            "delivery_option IN ('ship', 'vault')",
            name="ck_order_valid_delivery_option",
        ),
        CheckConstraint("price > 0", name="ck_order_positive_price"),
        CheckConstraint(
            "NOT (funds_released_at IS NOT NULL AND refunded_at IS NOT NULL)",
            name="ck_order_release_refund_exclusive",
        ),
        CheckConstraint(
            "(escrow_status = 'pending' AND escrow_held_amount IS NOT NULL) "
            "OR (escrow_status <> 'pending' AND escrow_held_amount IS NULL)",
            name="ck_order_held_amount_matches_escrow",
        ),
        Index("idx_order_status", "status"),
        Index("idx_order_escrow_status", "escrow_status"),
        Index("idx_order_buyer", "buyer_id"),
        Index("idx_order_seller", "seller_id"),
        Index("idx_order_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Order id={self.id} status={self.status} "
            f"escrow={self.escrow_status} price={self.price}>"
        )


# ---------------------------------------------------------------------------
# 2. order_actions (Append-Only Audit Timeline)
# ---------------------------------------------------------------------------
class OrderAction(Base):
    """Immutable record of one mutation of an order.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level.
    """

    __tablename__ = "order_actions"

    id: Mapped[int] = mapped_column(ActionIdType, primary_key=True, autoincrement=True)

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
    )
    action_type: Mapped[str] = mapped_column(String(40), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="User or admin id; NULL for system actions",
    )
    actor_type: Mapped[str] = mapped_column(String(10), nullable=False, default="system")
    details: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        CheckConstraint(
            "actor_type IN ('user', 'system', 'admin')",
            name="ck_action_valid_actor_type",
        ),
        Index("idx_action_order_created", "order_id", "created_at"),
        Index("idx_action_type", "action_type"),
    )

    def __repr__(self) -> str:
        return f"<OrderAction id={self.id} order={self.order_id} type={self.action_type}>"


# ---------------------------------------------------------------------------
# 3. order_escalations
# ---------------------------------------------------------------------------
class Escalation(Base):
    """A dispute raised by one party, awaiting human adjudication."""

    __tablename__ = "order_escalations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
    )
    escalation_type: Mapped[str] = mapped_column(String(20), nullable=False)
    escalated_by: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        CheckConstraint(
            "escalation_type IN ('buyer_dispute', 'seller_dispute')",
            name="ck_escalation_valid_type",
        ),
        Index("idx_escalation_order", "order_id"),
    )

    def __repr__(self) -> str:
        return f"<Escalation id={self.id} order={self.order_id} type={self.escalation_type}>"


event.listen(Order, "before_update", _set_updated_at)
