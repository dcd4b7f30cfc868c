"""Domain layer — pure business logic with zero framework dependencies."""

from order_escrow.domain.collaborators import (
    LedgerGateway,
    LedgerResult,
    ListingReader,
    ListingSnapshot,
    NotificationDispatcher,
    ShippingCarrier,
)
from order_escrow.domain.enums import (
    ActionType,
    ActorRole,
    ActorType,
    DeliveryOption,
    EscalationType,
    EscrowStatus,
    NotificationType,
    OrderStatus,
    ResolutionOutcome,
    SettlementOutcome,
)
from order_escrow.domain.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    LedgerFailureError,
    ListingNotFoundError,
    OrderEscrowError,
    OrderNotFoundError,
    OrderValidationError,
    SettlementBlockedError,
    ShipmentFailedError,
    UnauthorizedActorError,
)
from order_escrow.domain.roles import resolve_role
from order_escrow.domain.state_machine import (
    OrderStateMachine,
    validate_transition,
)

__all__ = [
    "ActionType",
    "ActorRole",
    "ActorType",
    "DeliveryOption",
    "EscalationType",
    "EscrowStatus",
    "NotificationType",
    "OrderStatus",
    "ResolutionOutcome",
    "SettlementOutcome",
    "ConcurrentModificationError",
    "InvalidTransitionError",
    "LedgerFailureError",
    "ListingNotFoundError",
    "OrderEscrowError",
    "OrderNotFoundError",
    "OrderValidationError",
    "SettlementBlockedError",
    "ShipmentFailedError",
    "UnauthorizedActorError",
    "LedgerGateway",
    "LedgerResult",
    "ListingReader",
    "ListingSnapshot",
    "NotificationDispatcher",
    "ShippingCarrier",
    "OrderStateMachine",
    "validate_transition",
    "resolve_role",
]
