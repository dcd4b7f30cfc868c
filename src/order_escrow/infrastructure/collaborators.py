"""Wiring of the external collaborators the services depend on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from order_escrow.infrastructure.ledger import SimulatedLedgerGateway
from order_escrow.infrastructure.listings import InMemoryListingReader
from order_escrow.infrastructure.notifications import (
    LoggingNotificationDispatcher,
    RedisStreamNotificationDispatcher,
)
from order_escrow.infrastructure.shipping import SimulatedShippingCarrier
from order_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from order_escrow.config import Settings
    from order_escrow.domain.collaborators import (
        LedgerGateway,
        ListingReader,
        NotificationDispatcher,
        ShippingCarrier,
    )

logger = get_logger(__name__)


@dataclass
class Collaborators:
    ledger: LedgerGateway
    notifications: NotificationDispatcher
    listings: ListingReader
    carrier: ShippingCarrier


def build_collaborators(settings: Settings, redis: aioredis.Redis | None = None) -> Collaborators:
    """Build the collaborator set for the running app.

    Notifications go to Redis streams when a client is available. The ledger,
    listing reader and carrier are simulated; real adapters live with the
    payment, catalog and carrier integrations.
    """
    if not settings.simulate_collaborators:
        raise NotImplementedError(
            "Only simulated ledger/carrier/listing adapters are bundled; "
            "set SIMULATE_COLLABORATORS=true or inject real adapters"
        )

    notifications: NotificationDispatcher
    if redis is not None:
        notifications = RedisStreamNotificationDispatcher(
            redis,
            prefix=settings.notification_stream_prefix,
            maxlen=settings.notification_stream_maxlen,
        )
    else:
        logger.warning("collaborators.notifications_log_only", reason="redis unavailable")
        notifications = LoggingNotificationDispatcher()

    return Collaborators(
        ledger=SimulatedLedgerGateway(escrow_account=settings.escrow_account_id),
        notifications=notifications,
        listings=InMemoryListingReader(allow_unknown=True),
        carrier=SimulatedShippingCarrier(),
    )
