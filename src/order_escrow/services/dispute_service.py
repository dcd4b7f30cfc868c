"""Dispute Service — escalation to human adjudication.

Opening a dispute freezes normal settlement: escrow flips to `disputed` and
the confirmation path can no longer release funds. The engine never decides
a dispute itself. The admin workflow reads the escalations and hands back a
ResolutionOutcome through apply_resolution.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from order_escrow.config import Settings, get_settings
from order_escrow.domain.enums import (
    ActionType,
    ActorRole,
    ActorType,
    EscrowStatus,
    NotificationType,
    OrderStatus,
    ResolutionOutcome,
)
from order_escrow.domain.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    OrderValidationError,
)
from order_escrow.domain.roles import escalation_type_for, resolve_role
from order_escrow.domain.state_machine import validate_transition
from order_escrow.infrastructure.database import Order, unit_of_work
from order_escrow.logging_config import bind_order_context, get_logger
from order_escrow.services.escrow_funds import EscrowFunds, marker_kind, resolution_entry
from order_escrow.services.notifier import Notifier
from order_escrow.services.resilience import retry_on_conflict

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from order_escrow.infrastructure.collaborators import Collaborators
    from order_escrow.infrastructure.database import Escalation

logger = get_logger(__name__)

_RESOLUTION_EVENTS = {
    ResolutionOutcome.RELEASE: "resolve_release",
    ResolutionOutcome.REFUND: "resolve_refund",
}


class DisputeService:
    """Opens disputes and applies the admin workflow's resolutions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        collaborators: Collaborators,
        settings: Settings | None = None,
    ) -> None:
        self._sessions = session_factory
        self._settings = settings or get_settings()
        self._funds = EscrowFunds(session_factory, collaborators.ledger, self._settings)
        self._notifier = Notifier(collaborators.notifications)

    # ------------------------------------------------------------------
    # Opening a dispute
    # ------------------------------------------------------------------

    @retry_on_conflict
    async def open_dispute(self, order_id: uuid.UUID, actor_id: str, reason: str) -> Escalation:
        """Escalate the order and freeze settlement.

        A second dispute (typically from the other party) is recorded as an
        additional escalation without touching the order state again.
        """
        bind_order_context(order_id, actor_id)
        reason = (reason or "").strip()
        if not reason:
            raise OrderValidationError("A dispute reason is required")

        async with unit_of_work(self._sessions) as uow:
            order = await uow.get_order_or_raise(order_id)
            role = resolve_role(str(order.id), order.buyer_id, order.seller_id, actor_id)
            counterpart_id = order.seller_id if role is ActorRole.BUYER else order.buyer_id
            previous_status = order.status

            state_changed = order.escrow_status != EscrowStatus.DISPUTED.value
            if state_changed:
                validate_transition(order.status, "open_dispute")
                if order.release_token is not None:
                    raise InvalidTransitionError(order.status, "open_dispute", "settlement in progress")

                won = await uow.orders.compare_and_set(
                    order.id,
                    {
                        "status": OrderStatus.DISPUTED.value,
                        "escrow_status": EscrowStatus.DISPUTED.value,
                        "admin_escalated_at": datetime.now(UTC),
                        "escalation_reason": reason,
                        "escrow_held_amount": None,
                    },
                    Order.status == previous_status,
                    Order.escrow_status == EscrowStatus.PENDING.value,
                    Order.release_token.is_(None),
                )
                if not won:
                    raise ConcurrentModificationError(str(order.id))

            escalation = await uow.escalations.create(
                order.id,
                escalation_type_for(role),
                escalated_by=actor_id,
                reason=reason,
            )
            await uow.actions.append(
                order.id,
                ActionType.DISPUTED,
                actor_id,
                ActorType.USER,
                {
                    "reason": reason,
                    "role": role.value,
                    "escalation_id": str(escalation.id),
                    "escalation_type": escalation.escalation_type,
                    "previous_status": previous_status,
                    "state_changed": state_changed,
                },
            )

        logger.info(
            "dispute.opened",
            role=role.value,
            escalation_id=str(escalation.id),
            state_changed=state_changed,
        )

        await self._notifier.notify(
            counterpart_id,
            NotificationType.ORDER_DISPUTED,
            order_id,
            opened_by=role.value,
            reason=reason,
        )
        await self._notifier.notify_many(
            self._settings.admin_user_id_list,
            NotificationType.ADMIN_ESCALATION,
            order_id,
            escalation_id=str(escalation.id),
            escalation_type=escalation.escalation_type,
            reason=reason,
        )
        return escalation

    # ------------------------------------------------------------------
    # Resolution (called by the admin workflow)
    # ------------------------------------------------------------------

    @retry_on_conflict
    async def apply_resolution(
        self,
        order_id: uuid.UUID,
        outcome: ResolutionOutcome,
        admin_id: str,
        note: str | None = None,
    ) -> Order:
        """Release to the seller or refund the buyer for a disputed order.

        Re-applying the same outcome after a ledger failure resumes the
        movement; a conflicting outcome is rejected.
        """
        bind_order_context(order_id, admin_id)
        event = _RESOLUTION_EVENTS[outcome]

        async with unit_of_work(self._sessions) as uow:
            order = await uow.get_order_or_raise(order_id)
            if order.escrow_status != EscrowStatus.DISPUTED.value:
                raise InvalidTransitionError(order.status, event, "order is not disputed")
            validate_transition(order.status, event)

            marker = order.release_token
            if marker is not None:
                in_progress = marker_kind(marker)
                if in_progress is not outcome:
                    raise InvalidTransitionError(
                        order.status, event, f"{in_progress.value} already in progress"
                    )
                logger.info("dispute.resolution_resumed", outcome=outcome.value)
            else:
                marker = await self._funds.claim(
                    uow,
                    order,
                    outcome,
                    Order.escrow_status == EscrowStatus.DISPUTED.value,
                    admin_id=admin_id,
                    note=note,
                )
                if marker is None:
                    raise ConcurrentModificationError(str(order.id))

        movement = await self._funds.execute(order_id, marker, resolution_entry(outcome, admin_id, note))

        logger.info("dispute.resolved", outcome=outcome.value, applied=movement is not None)
        if movement is not None:
            await self._notifier.notify_many(
                (movement.buyer_id, movement.seller_id),
                NotificationType.DISPUTE_RESOLVED,
                order_id,
                outcome=outcome.value,
                amount=str(movement.amount),
            )

        async with unit_of_work(self._sessions) as uow:
            return await uow.get_order_or_raise(order_id)
