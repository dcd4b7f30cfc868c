"""Actor role resolution.

A request's role on an order is computed once, here, and then passed around
as an ActorRole instead of being re-derived from ad hoc comparisons.
"""

from __future__ import annotations

from order_escrow.domain.enums import ActorRole, EscalationType
from order_escrow.domain.exceptions import UnauthorizedActorError


def resolve_role(order_id: str, buyer_id: str, seller_id: str, actor_id: str) -> ActorRole:
    """Return the actor's role on the order or raise UnauthorizedActorError."""
    if actor_id == buyer_id:
        return ActorRole.BUYER
    if actor_id == seller_id:
        return ActorRole.SELLER
    raise UnauthorizedActorError(order_id, actor_id)


def escalation_type_for(role: ActorRole) -> EscalationType:
    if role is ActorRole.BUYER:
        return EscalationType.BUYER_DISPUTE
    return EscalationType.SELLER_DISPUTE
