"""Domain enumerations for the order escrow engine.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

from __future__ import annotations

import enum


class OrderStatus(enum.StrEnum):
    """Lifecycle states of a marketplace order.

    State transitions are enforced by the OrderStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.REFUNDED)


class EscrowStatus(enum.StrEnum):
    """State of the funds held against an order."""

    PENDING = "pending"
    RELEASED = "released"
    DISPUTED = "disputed"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in (EscrowStatus.RELEASED, EscrowStatus.REFUNDED)


class ActionType(enum.StrEnum):
    """Types of entries recorded in the order_actions table.

    Every state transition MUST produce exactly one action.
    This is the append-only timeline used for audit and UI reconstruction.
    """

    # Lifecycle
    CREATED = "created"
    PAYMENT_CAPTURED = "payment_captured"
    SHIPPED = "shipped"
    DELIVERED = "delivered"

    # Settlement
    BUYER_CONFIRMED = "buyer_confirmed"
    SELLER_CONFIRMED = "seller_confirmed"
    FUNDS_RELEASED = "funds_released"
    REFUNDED = "refunded"

    # Disputes and administration
    DISPUTED = "disputed"
    ADMIN_ACTION = "admin_action"

    # Vault shipping handshake
    SHIPPING_REQUESTED = "shipping_requested"
    SHIPPING_APPROVED = "shipping_approved"
    SHIPMENT_CREATED = "shipment_created"


class ActorType(enum.StrEnum):
    """Who performed an action."""

    USER = "user"
    SYSTEM = "system"
    ADMIN = "admin"


class ActorRole(enum.StrEnum):
    """Role of a user with respect to one order, resolved once per request."""

    BUYER = "buyer"
    SELLER = "seller"

    @property
    def counterpart(self) -> ActorRole:
        return ActorRole.SELLER if self is ActorRole.BUYER else ActorRole.BUYER


class EscalationType(enum.StrEnum):
    BUYER_DISPUTE = "buyer_dispute"
    SELLER_DISPUTE = "seller_dispute"


class DeliveryOption(enum.StrEnum):
    SHIP = "ship"
    VAULT = "vault"


class ResolutionOutcome(enum.StrEnum):
    """Outcome handed back by the external administrative workflow."""

    RELEASE = "release"
    REFUND = "refund"


class NotificationType(enum.StrEnum):
    """Event types sent through the notification dispatcher."""

    CONFIRMATION_PENDING = "confirmation_pending"
    ORDER_COMPLETED = "order_completed"
    ORDER_SHIPPED = "order_shipped"
    ORDER_DELIVERED = "order_delivered"
    ORDER_REFUNDED = "order_refunded"
    ORDER_DISPUTED = "order_disputed"
    ADMIN_ESCALATION = "admin_escalation"
    DISPUTE_RESOLVED = "dispute_resolved"
    SHIPPING_APPROVAL_REQUIRED = "shipping_approval_required"
    SHIPPING_APPROVED = "shipping_approved"


class SettlementOutcome(enum.StrEnum):
    """Where an order's escrow stands after a confirmation or release attempt."""

    AWAITING_COUNTERPARTY = "awaiting_counterparty"
    RELEASE_IN_PROGRESS = "release_in_progress"
    RELEASED = "released"
    BLOCKED = "blocked"
