"""External collaborator protocols.

Defines the interfaces of the systems this engine consumes but does not own:
the escrow ledger, the notification channel, the listing catalog and the
shipping carrier. These are Protocols (structural subtyping) so concrete
adapters don't need to inherit from a base class.

The domain layer has ZERO imports from Redis, payment providers or carriers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from decimal import Decimal


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of a ledger transfer or refund.

    Attributes:
        success: Whether the money movement took effect.
        reference: Ledger-side transaction reference (stable per idempotency key).
        error: Error message when success is False.
    """

    success: bool
    reference: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class ListingSnapshot:
    """Listing fields captured at order creation for the audit record."""

    listing_id: str
    title: str
    image_url: str | None = None
    condition: str | None = None
    grade: str | None = None
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Serialize for storage in the listing_snapshot JSON column."""
        return {
            "listing_id": self.listing_id,
            "title": self.title,
            "image_url": self.image_url,
            "condition": self.condition,
            "grade": self.grade,
            **self.extra,
        }


@runtime_checkable
class LedgerGateway(Protocol):
    """Escrow debit/credit operations.

    Implementations MUST deduplicate on idempotency_key: calling transfer
    twice with the same key moves money once and returns the same reference.
    """

    async def transfer(
        self,
        order_id: str,
        from_account: str,
        to_account: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> LedgerResult: ...

    async def refund(
        self,
        order_id: str,
        to_account: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> LedgerResult: ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Best-effort side channel to the two parties (and admins)."""

    async def send(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None: ...


@runtime_checkable
class ListingReader(Protocol):
    """Read-only access to listing metadata, used for display only."""

    async def get_snapshot(self, listing_id: str) -> ListingSnapshot | None: ...


@runtime_checkable
class ShippingCarrier(Protocol):
    """Creates physical shipments for vault-held goods."""

    async def create_shipment(
        self,
        address: dict[str, Any],
        items: list[dict[str, Any]],
        reference: str,
    ) -> str:
        """Create a shipment and return its tracking number.

        Args:
            address: Destination address as stored on the order.
            items: Item descriptions (from the listing snapshot).
            reference: The order id, so the carrier can deduplicate retries.
        """
        ...
