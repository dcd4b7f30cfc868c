"""Application services — use case orchestration."""

from order_escrow.services.dispute_service import DisputeService
from order_escrow.services.maintenance_service import MaintenanceService, SweepReport
from order_escrow.services.order_service import OrderService
from order_escrow.services.settlement_service import ConfirmationResult, SettlementService
from order_escrow.services.shipping_service import ShippingService

__all__ = [
    "ConfirmationResult",
    "DisputeService",
    "MaintenanceService",
    "OrderService",
    "SettlementService",
    "ShippingService",
    "SweepReport",
]
