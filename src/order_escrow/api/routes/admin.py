"""Administrative routes.

Routes:
    POST   /api/v1/admin/maintenance — Run the recovery sweeps once
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from order_escrow.api.deps import AdminOnly, get_maintenance_service
from order_escrow.logging_config import get_logger
from order_escrow.schemas.orders import SweepReportResponse
from order_escrow.services import MaintenanceService

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"], dependencies=[AdminOnly])
logger = get_logger(__name__)


@router.post(
    "/maintenance",
    response_model=dict[str, SweepReportResponse],
    summary="Run maintenance sweeps",
)
async def run_maintenance(
    svc: Annotated[MaintenanceService, Depends(get_maintenance_service)],
) -> dict[str, SweepReportResponse]:
    """Resume stuck settlements, retry shipments and expire stale confirmations."""
    reports = await svc.run_all()
    logger.info("admin.maintenance_run", **{name: r.completed for name, r in reports.items()})
    return {name: SweepReportResponse.model_validate(r) for name, r in reports.items()}
