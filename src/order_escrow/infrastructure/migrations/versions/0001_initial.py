"""Initial schema: orders, order_actions, order_escalations.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
ActionIdType = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _ts(name: str, nullable: bool = True, comment: str | None = None) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable, comment=comment)


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("listing_id", sa.String(64), nullable=False),
        sa.Column("buyer_id", sa.String(64), nullable=False),
        sa.Column("seller_id", sa.String(64), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("buyer_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("seller_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "escrow_held_amount",
            sa.Numeric(12, 2),
            nullable=True,
            comment="Funds held pending settlement; NULL once disputed, released or refunded",
        ),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            comment="Order lifecycle state (guarded by OrderStateMachine)",
        ),
        sa.Column("escrow_status", sa.String(20), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        _ts("paid_at"),
        _ts("shipped_at"),
        _ts("delivered_at"),
        _ts("buyer_confirmed_at"),
        _ts("seller_confirmed_at"),
        _ts("funds_released_at"),
        _ts("refunded_at"),
        sa.Column(
            "release_token",
            sa.String(64),
            nullable=True,
            comment="Set once by the caller that won the release race",
        ),
        _ts("release_claimed_at"),
        sa.Column("ledger_reference", sa.String(128), nullable=True),
        _ts(
            "settlement_failed_at",
            comment="Ledger retries exhausted; needs administrative attention",
        ),
        sa.Column("settlement_error", sa.Text(), nullable=True),
        _ts("admin_escalated_at"),
        sa.Column("escalation_reason", sa.Text(), nullable=True),
        sa.Column(
            "resolved_by",
            sa.String(64),
            nullable=True,
            comment="Admin whose resolution claimed the settlement marker",
        ),
        sa.Column("resolution_note", sa.Text(), nullable=True),
        sa.Column("delivery_option", sa.String(10), nullable=False),
        sa.Column("tracking_number", sa.String(128), nullable=True),
        sa.Column("shipping_address", JSONType, nullable=True),
        _ts("shipping_requested_at"),
        sa.Column("shipping_requested_by", sa.String(64), nullable=True),
        sa.Column("buyer_approved_shipping", sa.Boolean(), nullable=False),
        sa.Column("seller_approved_shipping", sa.Boolean(), nullable=False),
        _ts("buyer_shipping_approved_at"),
        _ts("seller_shipping_approved_at"),
        _ts(
            "shipment_dispatched_at",
            comment="Set once by the caller that won the shipment dispatch race",
        ),
        sa.Column(
            "listing_snapshot",
            JSONType,
            nullable=True,
            comment="Listing title/condition/grade captured at order creation",
        ),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'paid', 'shipped', 'delivered', "
            "'completed', 'disputed', 'refunded')",
            name="ck_order_valid_status",
        ),
        sa.CheckConstraint(
            "escrow_status IN ('pending', 'released', 'disputed', 'refunded')",
            name="ck_order_valid_escrow_status",
        ),
        sa.CheckConstraint(
            "delivery_option IN ('ship', 'vault')",
            name="ck_order_valid_delivery_option",
        ),
        sa.CheckConstraint("price > 0", name="ck_order_positive_price"),
        sa.CheckConstraint(
            "NOT (funds_released_at IS NOT NULL AND refunded_at IS NOT NULL)",
            name="ck_order_release_refund_exclusive",
        ),
        sa.CheckConstraint(
            "(escrow_status = 'pending' AND escrow_held_amount IS NOT NULL) "
            "OR (escrow_status <> 'pending' AND escrow_held_amount IS NULL)",
            name="ck_order_held_amount_matches_escrow",
        ),
    )
    op.create_index("idx_order_status", "orders", ["status"])
    op.create_index("idx_order_escrow_status", "orders", ["escrow_status"])
    op.create_index("idx_order_buyer", "orders", ["buyer_id"])
    op.create_index("idx_order_seller", "orders", ["seller_id"])
    op.create_index("idx_order_created_at", "orders", ["created_at"])

    op.create_table(
        "order_actions",
        sa.Column("id", ActionIdType, primary_key=True, autoincrement=True),
        sa.Column(
            "order_id",
            sa.Uuid(),
            sa.ForeignKey("orders.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("action_type", sa.String(40), nullable=False),
        sa.Column(
            "actor_id",
            sa.String(64),
            nullable=True,
            comment="User or admin id; NULL for system actions",
        ),
        sa.Column("actor_type", sa.String(10), nullable=False),
        sa.Column("details", JSONType, nullable=False),
        _ts("created_at", nullable=False),
        sa.CheckConstraint(
            "actor_type IN ('user', 'system', 'admin')",
            name="ck_action_valid_actor_type",
        ),
    )
    op.create_index("idx_action_order_created", "order_actions", ["order_id", "created_at"])
    op.create_index("idx_action_type", "order_actions", ["action_type"])

    op.create_table(
        "order_escalations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "order_id",
            sa.Uuid(),
            sa.ForeignKey("orders.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("escalation_type", sa.String(20), nullable=False),
        sa.Column("escalated_by", sa.String(64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        _ts("created_at", nullable=False),
        sa.CheckConstraint(
            "escalation_type IN ('buyer_dispute', 'seller_dispute')",
            name="ck_escalation_valid_type",
        ),
    )
    op.create_index("idx_escalation_order", "order_escalations", ["order_id"])


def downgrade() -> None:
    op.drop_index("idx_escalation_order", table_name="order_escalations")
    op.drop_table("order_escalations")
    op.drop_index("idx_action_type", table_name="order_actions")
    op.drop_index("idx_action_order_created", table_name="order_actions")
    op.drop_table("order_actions")
    for index in (
        "idx_order_created_at",
        "idx_order_seller",
        "idx_order_buyer",
        "idx_order_escrow_status",
        "idx_order_status",
    ):
        op.drop_index(index, table_name="orders")
    op.drop_table("orders")
