"""Maintenance sweeps.

Recovery jobs for work that was claimed but not finished:
    - escrow movements whose ledger call never completed
    - shipments claimed without a tracking number
    - single-sided confirmations past the configured window (off by default)

Each sweep handles orders one at a time; a failure on one order is logged
and counted, and the sweep moves on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from order_escrow.config import Settings, get_settings
from order_escrow.domain.enums import ActorRole, NotificationType, ResolutionOutcome
from order_escrow.domain.exceptions import OrderEscrowError
from order_escrow.infrastructure.database import unit_of_work
from order_escrow.logging_config import get_logger
from order_escrow.services.escrow_funds import EscrowFunds, Movement
from order_escrow.services.notifier import Notifier
from order_escrow.services.settlement_service import SettlementService
from order_escrow.services.shipping_service import ShippingService

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from order_escrow.infrastructure.collaborators import Collaborators

logger = get_logger(__name__)

CONFIRMATION_TIMEOUT_REASON = "confirmation_timeout"


@dataclass
class SweepReport:
    examined: int = 0
    completed: int = 0
    failed_order_ids: list[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failed_order_ids)


class MaintenanceService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        collaborators: Collaborators,
        settings: Settings | None = None,
    ) -> None:
        self._sessions = session_factory
        self._settings = settings or get_settings()
        self._funds = EscrowFunds(session_factory, collaborators.ledger, self._settings)
        self._settlement = SettlementService(session_factory, collaborators, self._settings)
        self._shipping = ShippingService(session_factory, collaborators, self._settings)
        self._notifier = Notifier(collaborators.notifications)

    async def resume_stuck_releases(self) -> SweepReport:
        """Finish releases and refunds whose marker was written but never finalized."""
        async with unit_of_work(self._sessions) as uow:
            order_ids = [order.id for order in await uow.orders.find_unfinished_settlements()]

        report = SweepReport(examined=len(order_ids))
        for order_id in order_ids:
            try:
                movement = await self._funds.resume(order_id)
            except OrderEscrowError as exc:
                self._record_failure(report, "settlement", order_id, exc)
                continue
            if movement is not None:
                report.completed += 1
                await self._notify_movement(movement)

        logger.info(
            "maintenance.settlements_swept",
            examined=report.examined,
            completed=report.completed,
            failed=report.failed,
        )
        return report

    async def retry_pending_shipments(self) -> SweepReport:
        """Re-send shipments that were claimed but never received a tracking number."""
        async with unit_of_work(self._sessions) as uow:
            order_ids = [order.id for order in await uow.orders.find_undelivered_shipments()]

        report = SweepReport(examined=len(order_ids))
        for order_id in order_ids:
            try:
                tracking_number = await self._shipping.resume_shipment(order_id)
            except OrderEscrowError as exc:
                self._record_failure(report, "shipment", order_id, exc)
                continue
            if tracking_number is not None:
                report.completed += 1

        logger.info(
            "maintenance.shipments_swept",
            examined=report.examined,
            completed=report.completed,
            failed=report.failed,
        )
        return report

    async def expire_single_confirmations(self, now: datetime | None = None) -> SweepReport:
        """Auto-confirm for the silent party once the confirmation window has passed.

        Does nothing unless `confirmation_timeout_days` is configured.
        """
        timeout_days = self._settings.confirmation_timeout_days
        if timeout_days is None:
            logger.debug("maintenance.confirmation_timeout_disabled")
            return SweepReport()

        cutoff = (now or datetime.now(UTC)) - timedelta(days=timeout_days)
        async with unit_of_work(self._sessions) as uow:
            expired = await uow.orders.find_single_confirmations_before(cutoff)
            candidates = [
                (
                    order.id,
                    ActorRole.SELLER if order.buyer_confirmed_at is not None else ActorRole.BUYER,
                )
                for order in expired
            ]

        report = SweepReport(examined=len(candidates))
        for order_id, missing_role in candidates:
            try:
                await self._settlement.auto_confirm(order_id, missing_role, CONFIRMATION_TIMEOUT_REASON)
            except OrderEscrowError as exc:
                self._record_failure(report, "confirmation_expiry", order_id, exc)
                continue
            report.completed += 1

        logger.info(
            "maintenance.confirmations_expired",
            cutoff=cutoff,
            examined=report.examined,
            completed=report.completed,
            failed=report.failed,
        )
        return report

    async def run_all(self) -> dict[str, SweepReport]:
        return {
            "settlements": await self.resume_stuck_releases(),
            "shipments": await self.retry_pending_shipments(),
            "confirmations": await self.expire_single_confirmations(),
        }

    async def _notify_movement(self, movement: Movement) -> None:
        parties = (movement.buyer_id, movement.seller_id)
        if movement.resolved_dispute:
            event_type = NotificationType.DISPUTE_RESOLVED
        elif movement.kind is ResolutionOutcome.RELEASE:
            event_type = NotificationType.ORDER_COMPLETED
        else:
            event_type = NotificationType.ORDER_REFUNDED
        await self._notifier.notify_many(
            parties,
            event_type,
            movement.order_id,
            outcome=movement.kind.value,
            amount=str(movement.amount),
            resumed=True,
        )

    @staticmethod
    def _record_failure(
        report: SweepReport,
        sweep: str,
        order_id: uuid.UUID,
        exc: OrderEscrowError,
    ) -> None:
        report.failed_order_ids.append(str(order_id))
        logger.error(
            "maintenance.order_failed",
            sweep=sweep,
            order_id=str(order_id),
            error_code=exc.code,
            error=exc.message,
        )
