"""Settlement Service — dual confirmation and escrow release.

Buyer and seller confirm independently, from separate sessions and possibly
at the same time. Each confirmation is a write-once compare-and-set. Once
both are in, the release is claimed with a settlement marker so that exactly
one caller moves the money (see services/escrow_funds.py).
"""

from __future__ import annotations

from dataclasses import dataclass
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
    SettlementOutcome,
)
from order_escrow.domain.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    SettlementBlockedError,
)
from order_escrow.domain.roles import resolve_role
from order_escrow.domain.state_machine import validate_transition
from order_escrow.infrastructure.database import Order, UnitOfWork, unit_of_work
from order_escrow.logging_config import bind_order_context, get_logger
from order_escrow.services.escrow_funds import EscrowFunds, LogEntry, marker_kind
from order_escrow.services.notifier import Notifier
from order_escrow.services.resilience import retry_on_conflict

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from order_escrow.infrastructure.collaborators import Collaborators

logger = get_logger(__name__)

_CONFIRMATION_COLUMNS = {
    ActorRole.BUYER: "buyer_confirmed_at",
    ActorRole.SELLER: "seller_confirmed_at",
}
_CONFIRMATION_ACTIONS = {
    ActorRole.BUYER: ActionType.BUYER_CONFIRMED,
    ActorRole.SELLER: ActionType.SELLER_CONFIRMED,
}
_TERMINAL_STATUSES = tuple(s.value for s in OrderStatus if s.is_terminal)


@dataclass(frozen=True)
class ConfirmationResult:
    order_id: uuid.UUID
    role: ActorRole
    recorded: bool
    outcome: SettlementOutcome

    @property
    def released(self) -> bool:
        return self.outcome is SettlementOutcome.RELEASED

    @property
    def settlement_blocked(self) -> bool:
        return self.outcome is SettlementOutcome.BLOCKED


def settlement_outcome(order: Order) -> SettlementOutcome | None:
    """Classify an order's escrow; None means the release can be claimed now."""
    escrow_status = EscrowStatus(order.escrow_status)
    if escrow_status is EscrowStatus.RELEASED:
        return SettlementOutcome.RELEASED
    if escrow_status is not EscrowStatus.PENDING:
        return SettlementOutcome.BLOCKED
    refunding = (
        order.release_token is not None
        and marker_kind(order.release_token) is ResolutionOutcome.REFUND
    )
    if refunding:
        return SettlementOutcome.BLOCKED
    if order.buyer_confirmed_at is None or order.seller_confirmed_at is None:
        return SettlementOutcome.AWAITING_COUNTERPARTY
    if order.release_token is not None:
        return SettlementOutcome.RELEASE_IN_PROGRESS
    return None


class SettlementService:
    """Records confirmations and releases escrow once both parties agree."""

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
    # Confirmation
    # ------------------------------------------------------------------

    @retry_on_conflict
    async def confirm(self, order_id: uuid.UUID, actor_id: str) -> ConfirmationResult:
        """Record the actor's confirmation and release funds if both sides agree.

        Repeating a confirmation is a no-op that reports the current outcome.
        A confirmation on a disputed order is recorded but cannot release funds.

        Raises:
            UnauthorizedActorError: actor is neither buyer nor seller.
            SettlementBlockedError: the order already completed or was refunded.
            InvalidTransitionError: payment has not been captured yet.
            LedgerFailureError: the escrow transfer failed after all retries.
        """
        bind_order_context(order_id, actor_id)

        async with unit_of_work(self._sessions) as uow:
            order = await uow.get_order_or_raise(order_id)
            role = resolve_role(str(order.id), order.buyer_id, order.seller_id, actor_id)
            counterpart_id = order.seller_id if role is ActorRole.BUYER else order.buyer_id
            recorded = await self._record_confirmation(uow, order, role, actor_id, ActorType.USER)

        outcome = await self.attempt_release(order_id)

        if recorded and outcome is SettlementOutcome.AWAITING_COUNTERPARTY:
            await self._notifier.notify(
                counterpart_id,
                NotificationType.CONFIRMATION_PENDING,
                order_id,
                confirmed_by=role.value,
            )
        if outcome is SettlementOutcome.BLOCKED:
            logger.info("settlement.release_blocked", role=role.value)

        logger.info(
            "settlement.confirmed",
            role=role.value,
            recorded=recorded,
            outcome=outcome.value,
        )
        return ConfirmationResult(order_id=order_id, role=role, recorded=recorded, outcome=outcome)

    @retry_on_conflict
    async def auto_confirm(
        self,
        order_id: uuid.UUID,
        role: ActorRole,
        reason: str,
    ) -> SettlementOutcome:
        """Confirm on a party's behalf, e.g. once the confirmation window lapsed."""
        async with unit_of_work(self._sessions) as uow:
            order = await uow.get_order_or_raise(order_id)
            await self._record_confirmation(
                uow,
                order,
                role,
                actor_id=None,
                actor_type=ActorType.SYSTEM,
                details={"auto": True, "reason": reason},
            )
        logger.info("settlement.auto_confirmed", order_id=str(order_id), role=role.value, reason=reason)
        return await self.attempt_release(order_id)

    async def _record_confirmation(
        self,
        uow: UnitOfWork,
        order: Order,
        role: ActorRole,
        actor_id: str | None,
        actor_type: ActorType,
        details: dict | None = None,
    ) -> bool:
        """Stamp the role's confirmation. Returns False if it was already set."""
        column_name = _CONFIRMATION_COLUMNS[role]
        if getattr(order, column_name) is not None:
            logger.info("settlement.confirmation_repeated", role=role.value)
            return False

        status = OrderStatus(order.status)
        if status.is_terminal:
            logger.warning(
                "settlement.confirmation_rejected",
                status=order.status,
                escrow_status=order.escrow_status,
            )
            raise SettlementBlockedError(str(order.id), order.status, order.escrow_status)
        if status is OrderStatus.PENDING:
            raise InvalidTransitionError(order.status, "confirm", "payment not captured")

        column = getattr(Order, column_name)
        won = await uow.orders.compare_and_set(
            order.id,
            {column_name: datetime.now(UTC)},
            column.is_(None),
            Order.status.not_in(_TERMINAL_STATUSES),
            Order.status != OrderStatus.PENDING.value,
        )
        if not won:
            raise ConcurrentModificationError(str(order.id))

        await uow.actions.append(
            order.id,
            _CONFIRMATION_ACTIONS[role],
            actor_id,
            actor_type,
            {"role": role.value, **(details or {})},
        )
        return True

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    async def attempt_release(self, order_id: uuid.UUID) -> SettlementOutcome:
        """Release escrow if both confirmations are in and nobody else has claimed it."""
        async with unit_of_work(self._sessions) as uow:
            order = await uow.get_order_or_raise(order_id)
            outcome = settlement_outcome(order)
            if outcome is not None:
                return outcome

            validate_transition(order.status, "settle")
            marker = await self._funds.claim(
                uow,
                order,
                ResolutionOutcome.RELEASE,
                Order.escrow_status == EscrowStatus.PENDING.value,
                Order.buyer_confirmed_at.is_not(None),
                Order.seller_confirmed_at.is_not(None),
            )
            if marker is None:
                order = await uow.get_order_or_raise(order_id)
                outcome = settlement_outcome(order)
                if outcome is None:
                    raise ConcurrentModificationError(str(order_id))
                logger.info("settlement.release_claim_lost", outcome=outcome.value)
                return outcome

        movement = await self._funds.execute(
            order_id,
            marker,
            LogEntry(ActionType.FUNDS_RELEASED, None, ActorType.SYSTEM),
        )
        if movement is not None:
            await self._notifier.notify_many(
                (movement.buyer_id, movement.seller_id),
                NotificationType.ORDER_COMPLETED,
                order_id,
                amount=str(movement.amount),
            )
        return SettlementOutcome.RELEASED
