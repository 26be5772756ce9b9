"""FastAPI application entry point for the marketplace escrow service.

Lifecycle:
    1. Startup: logging, database (tables in dev mode), Redis event bus with a
       logging fallback, payment gateway.
    2. Running: serve the REST API at /api/v1/*.
    3. Shutdown: close the gateway client, database and Redis connections.

Run with:
    uvicorn marketplace_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from marketplace_escrow.config import get_settings
from marketplace_escrow.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    # 2. Initialize database
    from marketplace_escrow.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Event bus: Redis when reachable, structured log otherwise
    from marketplace_escrow.infrastructure.event_bus import build_event_bus
    from marketplace_escrow.infrastructure.redis_client import close_redis, init_redis

    redis = None
    try:
        redis = await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))
    app.state.event_bus = build_event_bus(redis, settings.redis_event_channel)

    # 4. Payment gateway
    from marketplace_escrow.gateways import build_gateway

    app.state.gateway = build_gateway(settings)
    logger.info(
        "app.started",
        host=settings.app_host,
        port=settings.app_port,
        gateway=type(app.state.gateway).__name__,
        event_bus=type(app.state.event_bus).__name__,
    )

    yield

    # Shutdown
    logger.info("app.shutting_down")
    aclose = getattr(app.state.gateway, "aclose", None)
    if aclose is not None:
        await aclose()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Marketplace Escrow",
        description=(
            "Escrow, payout, production and dispute engine for a custom-print "
            "marketplace."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from marketplace_escrow.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from marketplace_escrow.api.routes.disputes import router as disputes_router
    from marketplace_escrow.api.routes.escrow import router as escrow_router
    from marketplace_escrow.api.routes.health import router as health_router
    from marketplace_escrow.api.routes.payments import router as payments_router
    from marketplace_escrow.api.routes.production import router as production_router

    app.include_router(health_router)
    app.include_router(escrow_router)
    app.include_router(disputes_router)
    app.include_router(production_router)
    app.include_router(payments_router)

    return app


# The app instance used by Uvicorn
app = create_app()
