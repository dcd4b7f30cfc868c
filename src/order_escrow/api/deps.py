"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the calling actor,
admin authorization, configuration and the application services. The
session factory and collaborators live on `app.state` (set in the lifespan),
so tests can swap them without touching module globals.
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Header, HTTPException, Request

from order_escrow.config import Settings, get_settings
from order_escrow.services import (
    DisputeService,
    MaintenanceService,
    OrderService,
    SettlementService,
    ShippingService,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from order_escrow.infrastructure.collaborators import Collaborators


def get_app_settings(request: Request) -> Settings:
    """Provide the application settings."""
    return getattr(request.app.state, "settings", None) or get_settings()


def _session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory


def _collaborators(request: Request) -> Collaborators:
    return request.app.state.collaborators


def get_actor_id(
    x_actor_id: Annotated[str, Header(min_length=1, max_length=64)],
) -> str:
    """Identity of the calling user, asserted by the upstream auth gateway."""
    return x_actor_id


def require_admin(
    request: Request,
    x_admin_token: Annotated[str | None, Header()] = None,
) -> None:
    """Reject the request unless it carries the configured admin token."""
    expected = get_app_settings(request).admin_api_token
    if not expected or x_admin_token is None:
        raise HTTPException(status_code=403, detail="Admin token required")
    if not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=403, detail="Invalid admin token")


def is_admin(
    request: Request,
    x_admin_token: Annotated[str | None, Header()] = None,
) -> bool:
    """True when the request carries a valid admin token; never raises."""
    expected = get_app_settings(request).admin_api_token
    return bool(expected and x_admin_token and secrets.compare_digest(x_admin_token, expected))


def get_order_service(request: Request) -> OrderService:
    return OrderService(_session_factory(request), _collaborators(request), get_app_settings(request))


def get_settlement_service(request: Request) -> SettlementService:
    return SettlementService(
        _session_factory(request), _collaborators(request), get_app_settings(request)
    )


def get_dispute_service(request: Request) -> DisputeService:
    return DisputeService(_session_factory(request), _collaborators(request), get_app_settings(request))


def get_shipping_service(request: Request) -> ShippingService:
    return ShippingService(_session_factory(request), _collaborators(request), get_app_settings(request))


def get_maintenance_service(request: Request) -> MaintenanceService:
    return MaintenanceService(
        _session_factory(request), _collaborators(request), get_app_settings(request)
    )


ActorId = Annotated[str, Depends(get_actor_id)]
AdminOnly = Depends(require_admin)
