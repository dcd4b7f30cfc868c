"""Simulated escrow ledger.

Stands in for the payment provider's escrow account API when
`simulate_collaborators` is on. Money movements are kept in memory and
deduplicated on the idempotency key, which is the contract the settlement
protocol relies on: a retried release never pays twice.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from order_escrow.domain.collaborators import LedgerResult
from order_escrow.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    kind: str
    order_id: str
    from_account: str | None
    to_account: str
    amount: Decimal
    reference: str


class SimulatedLedgerGateway:
    """In-memory LedgerGateway with idempotency-key deduplication."""

    def __init__(self, escrow_account: str = "platform-escrow") -> None:
        self._escrow_account = escrow_account
        self._entries: dict[str, LedgerEntry] = {}
        self.balances: defaultdict[str, Decimal] = defaultdict(lambda: Decimal("0"))

    @property
    def entries(self) -> list[LedgerEntry]:
        return list(self._entries.values())

    async def transfer(
        self,
        order_id: str,
        from_account: str,
        to_account: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> LedgerResult:
        existing = self._entries.get(idempotency_key)
        if existing is not None:
            logger.info("ledger.transfer_deduplicated", order_id=order_id, key=idempotency_key)
            return LedgerResult(success=True, reference=existing.reference)

        if amount <= 0:
            return LedgerResult(success=False, error=f"non-positive amount {amount}")

        entry = LedgerEntry(
            kind="transfer",
            order_id=order_id,
            from_account=from_account,
            to_account=to_account,
            amount=amount,
            reference=f"sim-tx-{uuid.uuid4().hex[:16]}",
        )
        self._entries[idempotency_key] = entry
        self.balances[from_account] -= amount
        self.balances[to_account] += amount
        logger.info(
            "ledger.transfer_simulated",
            order_id=order_id,
            amount=amount,
            to_account=to_account,
            reference=entry.reference,
        )
        return LedgerResult(success=True, reference=entry.reference)

    async def refund(
        self,
        order_id: str,
        to_account: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> LedgerResult:
        existing = self._entries.get(idempotency_key)
        if existing is not None:
            logger.info("ledger.refund_deduplicated", order_id=order_id, key=idempotency_key)
            return LedgerResult(success=True, reference=existing.reference)

        entry = LedgerEntry(
            kind="refund",
            order_id=order_id,
            from_account=self._escrow_account,
            to_account=to_account,
            amount=amount,
            reference=f"sim-rf-{uuid.uuid4().hex[:16]}",
        )
        self._entries[idempotency_key] = entry
        self.balances[self._escrow_account] -= amount
        self.balances[to_account] += amount
        logger.info(
            "ledger.refund_simulated",
            order_id=order_id,
            amount=amount,
            to_account=to_account,
            reference=entry.reference,
        )
        return LedgerResult(success=True, reference=entry.reference)
