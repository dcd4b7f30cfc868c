"""Domain exceptions for the order escrow engine.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
"""


class OrderEscrowError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "ORDER_ESCROW_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Lookup Errors ---


class OrderNotFoundError(OrderEscrowError):
    """Raised when an order ID does not exist."""

    def __init__(self, order_id: str) -> None:
        super().__init__(
            message=f"Order not found: {order_id}",
            code="ORDER_NOT_FOUND",
        )
        self.order_id = order_id


class ListingNotFoundError(OrderEscrowError):
    """Raised when the listing snapshot cannot be read at order creation."""

    def __init__(self, listing_id: str) -> None:
        super().__init__(
            message=f"Listing not found: {listing_id}",
            code="LISTING_NOT_FOUND",
        )
        self.listing_id = listing_id


class OrderValidationError(OrderEscrowError):
    """Raised when order creation input breaks a business rule."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="ORDER_VALIDATION_ERROR")


# --- Authorization ---


class UnauthorizedActorError(OrderEscrowError):
    """Raised when the actor is neither the buyer nor the seller of the order."""

    def __init__(self, order_id: str, actor_id: str) -> None:
        super().__init__(
            message=f"Actor {actor_id} is not a party to order {order_id}",
            code="UNAUTHORIZED",
        )
        self.order_id = order_id
        self.actor_id = actor_id


# --- State Machine Errors ---


class InvalidTransitionError(OrderEscrowError):
    """Raised when an operation is illegal for the order's current state.

    Example: disputing an order that has already completed.
    """

    def __init__(self, current_state: str, attempted: str, reason: str | None = None) -> None:
        message = f"Invalid transition: {attempted} from {current_state}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message=message, code="INVALID_TRANSITION")
        self.current_state = current_state
        self.attempted = attempted


class SettlementBlockedError(OrderEscrowError):
    """Raised when a confirmation arrives for an order that can no longer settle."""

    def __init__(self, order_id: str, status: str, escrow_status: str) -> None:
        super().__init__(
            message=(
                f"Settlement blocked for order {order_id}: "
                f"status={status}, escrow_status={escrow_status}"
            ),
            code="SETTLEMENT_BLOCKED",
        )
        self.order_id = order_id
        self.status = status
        self.escrow_status = escrow_status


class ConcurrentModificationError(OrderEscrowError):
    """Raised when a conditional update lost a race with another writer.

    Services retry once internally before letting this escape.
    """

    def __init__(self, order_id: str) -> None:
        super().__init__(
            message=f"Order {order_id} was modified concurrently",
            code="CONCURRENT_MODIFICATION",
        )
        self.order_id = order_id


# --- Collaborator Errors ---


class LedgerFailureError(OrderEscrowError):
    """Raised when an escrow transfer or refund could not be completed."""

    def __init__(self, order_id: str, message: str) -> None:
        super().__init__(
            message=f"Ledger operation failed for order {order_id}: {message}",
            code="LEDGER_FAILURE",
        )
        self.order_id = order_id


class ShipmentFailedError(OrderEscrowError):
    """Raised when the shipping carrier could not create a shipment."""

    def __init__(self, order_id: str, message: str) -> None:
        super().__init__(
            message=f"Shipment creation failed for order {order_id}: {message}",
            code="SHIPMENT_FAILED",
        )
        self.order_id = order_id
