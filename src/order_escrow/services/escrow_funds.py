"""Escrow fund movements.

Every movement of held funds (release to the seller, refund to the buyer)
goes through the same three steps, each in its own transaction:

    1. claim     conditional UPDATE writes a settlement marker; one caller wins
    2. ledger    transfer/refund keyed on the order, retried with backoff
    3. finalize  conditional UPDATE on the marker closes the escrow

The marker is stored in `release_token` as "<kind>:<hex>", so a half-finished
movement can be resumed later without knowing who started it.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from order_escrow.domain.enums import (
    ActionType,
    ActorType,
    EscrowStatus,
    OrderStatus,
    ResolutionOutcome,
)
from order_escrow.domain.exceptions import LedgerFailureError
from order_escrow.infrastructure.database import Order, UnitOfWork, unit_of_work
from order_escrow.logging_config import get_logger
from order_escrow.services.resilience import refund_with_retry, transfer_with_retry

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from order_escrow.config import Settings
    from order_escrow.domain.collaborators import LedgerGateway

logger = get_logger(__name__)

HELD_ESCROW_STATUSES = (EscrowStatus.PENDING.value, EscrowStatus.DISPUTED.value)


@dataclass(frozen=True)
class LogEntry:
    """Action log entry written together with the finalize step."""

    action_type: ActionType
    actor_id: str | None
    actor_type: ActorType
    details: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Movement:
    """A completed movement of escrow funds."""

    kind: ResolutionOutcome
    order_id: uuid.UUID
    amount: Decimal
    beneficiary: str
    ledger_reference: str | None
    buyer_id: str
    seller_id: str
    resolved_dispute: bool = False


def new_marker(kind: ResolutionOutcome) -> str:
    return f"{kind.value}:{uuid.uuid4().hex}"


def marker_kind(marker: str) -> ResolutionOutcome:
    return ResolutionOutcome(marker.split(":", 1)[0])


def resolution_entry(
    outcome: ResolutionOutcome,
    admin_id: str | None,
    note: str | None,
    resumed: bool = False,
) -> LogEntry:
    """The admin_action entry written when a dispute resolution moves the funds."""
    details: dict = {"event": "resolution_applied", "outcome": outcome.value, "note": note}
    if resumed:
        details["resumed"] = True
    return LogEntry(ActionType.ADMIN_ACTION, admin_id, ActorType.ADMIN, details)


def _final_values(kind: ResolutionOutcome, reference: str | None) -> dict:
    now = datetime.now(UTC)
    values: dict = {
        "escrow_held_amount": None,
        "ledger_reference": reference,
        "settlement_failed_at": None,
        "settlement_error": None,
    }
    if kind is ResolutionOutcome.RELEASE:
        values.update(
            escrow_status=EscrowStatus.RELEASED.value,
            status=OrderStatus.COMPLETED.value,
            funds_released_at=now,
        )
    else:
        values.update(
            escrow_status=EscrowStatus.REFUNDED.value,
            status=OrderStatus.REFUNDED.value,
            refunded_at=now,
        )
    return values


class EscrowFunds:
    """Claims, executes and resumes escrow movements against the ledger."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: LedgerGateway,
        settings: Settings,
    ) -> None:
        self._sessions = session_factory
        self._ledger = ledger
        self._settings = settings

    async def claim(
        self,
        uow: UnitOfWork,
        order: Order,
        kind: ResolutionOutcome,
        *conditions: ColumnElement[bool],
        admin_id: str | None = None,
        note: str | None = None,
    ) -> str | None:
        """Write a settlement marker. Returns it, or None if another caller holds one.

        An admin resolution stores who resolved it and why alongside the marker,
        so a resumed movement is still attributed to that admin.
        """
        marker = new_marker(kind)
        values: dict = {"release_token": marker, "release_claimed_at": datetime.now(UTC)}
        if admin_id is not None:
            values.update(resolved_by=admin_id, resolution_note=note)
        won = await uow.orders.compare_and_set(
            order.id,
            values,
            Order.release_token.is_(None),
            Order.escrow_status.in_(HELD_ESCROW_STATUSES),
            *conditions,
        )
        if not won:
            return None
        logger.info("escrow.movement_claimed", order_id=str(order.id), kind=kind.value)
        return marker

    async def execute(self, order_id: uuid.UUID, marker: str, entry: LogEntry) -> Movement | None:
        """Move the funds for a claimed marker and close the escrow.

        Returns None when the movement had already been finalized by someone
        else. Raises LedgerFailureError (after recording it) if the ledger
        call failed on every attempt.
        """
        kind = marker_kind(marker)

        async with unit_of_work(self._sessions) as uow:
            order = await uow.get_order_or_raise(order_id)
            if order.release_token != marker or order.escrow_status not in HELD_ESCROW_STATUSES:
                return None
            buyer_id, seller_id = order.buyer_id, order.seller_id
            disputed = order.escrow_status == EscrowStatus.DISPUTED.value
            if kind is ResolutionOutcome.RELEASE:
                beneficiary, amount = seller_id, order.price - order.seller_fee
            else:
                # escrow_held_amount is cleared when a dispute opens, so derive it.
                beneficiary, amount = buyer_id, order.price + order.buyer_fee

        try:
            if kind is ResolutionOutcome.RELEASE:
                result = await transfer_with_retry(
                    self._ledger, self._settings, str(order_id), beneficiary, amount
                )
            else:
                result = await refund_with_retry(
                    self._ledger, self._settings, str(order_id), beneficiary, amount
                )
        except LedgerFailureError as exc:
            await self._record_failure(order_id, marker, kind, exc)
            raise

        async with unit_of_work(self._sessions) as uow:
            won = await uow.orders.compare_and_set(
                order_id,
                _final_values(kind, result.reference),
                Order.release_token == marker,
                Order.escrow_status.in_(HELD_ESCROW_STATUSES),
            )
            if won:
                await uow.actions.append(
                    order_id,
                    entry.action_type,
                    entry.actor_id,
                    entry.actor_type,
                    {
                        **entry.details,
                        "amount": str(amount),
                        "beneficiary": beneficiary,
                        "ledger_reference": result.reference,
                    },
                )

        if not won:
            logger.info("escrow.finalize_skipped", order_id=str(order_id), kind=kind.value)
            return None

        logger.info(
            "escrow.movement_completed",
            order_id=str(order_id),
            kind=kind.value,
            amount=amount,
            ledger_reference=result.reference,
        )
        return Movement(
            kind=kind,
            order_id=order_id,
            amount=amount,
            beneficiary=beneficiary,
            ledger_reference=result.reference,
            buyer_id=buyer_id,
            seller_id=seller_id,
            resolved_dispute=disputed,
        )

    async def resume(self, order_id: uuid.UUID) -> Movement | None:
        """Finish a movement whose marker was written but never finalized."""
        async with unit_of_work(self._sessions) as uow:
            order = await uow.get_order_or_raise(order_id)
            marker = order.release_token
            if marker is None or order.escrow_status not in HELD_ESCROW_STATUSES:
                return None
            kind = marker_kind(marker)
            if order.escrow_status == EscrowStatus.DISPUTED.value:
                entry = resolution_entry(kind, order.resolved_by, order.resolution_note, resumed=True)
            else:
                action_type = (
                    ActionType.FUNDS_RELEASED
                    if kind is ResolutionOutcome.RELEASE
                    else ActionType.REFUNDED
                )
                entry = LogEntry(action_type, None, ActorType.SYSTEM, {"resumed": True})

        logger.info("escrow.movement_resumed", order_id=str(order_id), kind=kind.value)
        return await self.execute(order_id, marker, entry)

    async def _record_failure(
        self,
        order_id: uuid.UUID,
        marker: str,
        kind: ResolutionOutcome,
        exc: LedgerFailureError,
    ) -> None:
        # The marker stays in place: escrow is never silently reversed.
        async with unit_of_work(self._sessions) as uow:
            await uow.orders.compare_and_set(
                order_id,
                {"settlement_failed_at": datetime.now(UTC), "settlement_error": exc.message},
                Order.release_token == marker,
            )
            await uow.actions.append(
                order_id,
                ActionType.ADMIN_ACTION,
                None,
                ActorType.SYSTEM,
                {
                    "event": "settlement_failed",
                    "operation": kind.value,
                    "error": exc.message,
                    "attempts": self._settings.ledger_max_attempts,
                },
            )
        logger.error(
            "escrow.ledger_failed",
            order_id=str(order_id),
            kind=kind.value,
            error=exc.message,
        )
