"""Simulated shipping carrier.

Generates fake tracking numbers instead of calling the carrier API. Repeated
calls for the same order reference return the same tracking number, matching
the carrier-side deduplication on referenceId.
"""

from __future__ import annotations

import uuid
from typing import Any

from order_escrow.logging_config import get_logger

logger = get_logger(__name__)


class SimulatedShippingCarrier:
    def __init__(self) -> None:
        self.shipments: dict[str, dict[str, Any]] = {}

    async def create_shipment(
        self,
        address: dict[str, Any],
        items: list[dict[str, Any]],
        reference: str,
    ) -> str:
        existing = self.shipments.get(reference)
        if existing is not None:
            return existing["tracking_number"]

        tracking_number = "SIM" + uuid.uuid4().hex[:12].upper()
        self.shipments[reference] = {
            "tracking_number": tracking_number,
            "address": address,
            "items": items,
        }
        logger.info(
            "carrier.shipment_simulated",
            reference=reference,
            tracking_number=tracking_number,
            item_count=len(items),
        )
        return tracking_number
