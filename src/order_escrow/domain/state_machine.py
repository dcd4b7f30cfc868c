"""Order State Machine Guard.

Uses python-statemachine to enforce legal order status transitions at the
domain level. No matter what the API or a maintenance sweep does, an illegal
transition (e.g., pending -> completed) raises TransitionNotAllowed.

The state machine is instantiated per-request from the stored status and
validates a transition before the conditional UPDATE is issued.

Transition table:
    pending                   -> paid        (capture_payment)
    paid                      -> shipped     (ship)
    shipped                   -> delivered   (deliver)
    paid|shipped|delivered    -> completed   (settle)
    paid|shipped|delivered    -> disputed    (open_dispute)
    pending|paid              -> refunded    (cancel)
    disputed                  -> completed   (resolve_release)
    disputed                  -> refunded    (resolve_refund)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from order_escrow.domain.exceptions import InvalidTransitionError


class OrderStateMachine(StateMachine):
    """State machine that guards the order lifecycle.

    Usage:
        sm = OrderStateMachine(current_status="paid")
        sm.ship()        # transitions to shipped
        sm.status        # "shipped"
    """

    # --- States ---
    PENDING = State("Pending", value="pending", initial=True)
    PAID = State("Paid", value="paid")
    SHIPPED = State("Shipped", value="shipped")
    DELIVERED = State("Delivered", value="delivered")
    COMPLETED = State("Completed", value="completed", final=True)
    DISPUTED = State("Disputed", value="disputed")
    REFUNDED = State("Refunded", value="refunded", final=True)

    # --- Events / Transitions ---

    # Fulfilment
    capture_payment = PENDING.to(PAID)
    ship = PAID.to(SHIPPED)
    deliver = SHIPPED.to(DELIVERED)

    # Dual-confirmation settlement
    settle = PAID.to(COMPLETED) | SHIPPED.to(COMPLETED) | DELIVERED.to(COMPLETED)

    # Disputes (side channel from any funded, non-terminal state)
    open_dispute = PAID.to(DISPUTED) | SHIPPED.to(DISPUTED) | DELIVERED.to(DISPUTED)
    resolve_release = DISPUTED.to(COMPLETED)
    resolve_refund = DISPUTED.to(REFUNDED)

    # Administrative / pre-confirmation cancellation
    cancel = PENDING.to(REFUNDED) | PAID.to(REFUNDED)

    def __init__(self, current_status: str = "pending") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current OrderStatus value (e.g., "paid").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches OrderStatus)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a transition and return the status it leads to.

    Args:
        current_status: Current OrderStatus value.
        event_name: The event to fire (e.g., "settle").

    Returns:
        The new status string after the transition.

    Raises:
        InvalidTransitionError: If the event is unknown or not allowed from
            the current status.
        ValueError: If the status itself is unknown.
    """
    sm = OrderStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise InvalidTransitionError(current_status, event_name, "unknown event")

    try:
        event_method()
    except TransitionNotAllowed as err:
        raise InvalidTransitionError(current_status, event_name) from err
    return sm.status
