"""FastAPI application entry point for the order escrow engine.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, create tables (dev mode),
       build the collaborator set (ledger, notifications, listings, carrier).
    2. Running: Serve the REST API on a single Uvicorn process.
    3. Shutdown: Close database and Redis connections gracefully.

Run with:
    uvicorn order_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from order_escrow.config import Settings, get_settings
from order_escrow.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings: Settings = app.state.settings

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
    )

    # 2. Initialize database
    from order_escrow.infrastructure.database.engine import (
        close_db,
        get_session_factory,
        init_db,
    )

    await init_db()
    app.state.session_factory = get_session_factory()

    # 3. Initialize Redis
    from order_escrow.infrastructure.redis_client import close_redis, connect_redis

    redis = await connect_redis(settings.redis_url)

    # 4. Collaborators
    from order_escrow.infrastructure.collaborators import build_collaborators

    app.state.collaborators = build_collaborators(settings, redis=redis)

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Order Escrow Engine",
        description=(
            "Escrow settlement and dispute resolution for marketplace orders: "
            "dual confirmation, disputes, vault shipping consent and an audit trail."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.settings = settings

    # --- Middleware ---
    from order_escrow.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from order_escrow.api.routes.admin import router as admin_router
    from order_escrow.api.routes.health import router as health_router
    from order_escrow.api.routes.orders import router as orders_router

    app.include_router(health_router)
    app.include_router(orders_router)
    app.include_router(admin_router)

    return app


# The app instance used by Uvicorn
app = create_app()
