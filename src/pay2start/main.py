"""FastAPI application entry point for Pay2Start.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, create tables (dev mode).
    2. Running: Serve the signing, contract, and webhook APIs under /api/v1/*.
    3. Shutdown: Close database and Redis connections gracefully.

Run with:
    uv run uvicorn pay2start.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from pay2start.config import get_settings
from pay2start.logging_config import get_logger, setup_logging

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
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
    )

    if settings.signing_secret_is_weak:
        log = logger.warning if settings.is_development else logger.error
        log(
            "security.weak_signing_secret",
            hint="Set SIGNING_TOKEN_SECRET to a random value of at least 32 characters",
        )
    if not settings.stripe_secret_key:
        logger.warning("app.stripe_not_configured")

    # 2. Initialize database
    from pay2start.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Initialize Redis (optional)
    from pay2start.infrastructure.redis_client import close_redis, init_redis

    await init_redis()

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Pay2Start",
        description=(
            "Contract signing and payments: one-time signing links, "
            "deposit checkout, and contract voiding with refunds."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from pay2start.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from pay2start.api.routes.contracts import router as contracts_router
    from pay2start.api.routes.health import router as health_router
    from pay2start.api.routes.signing import router as signing_router
    from pay2start.api.routes.webhooks import router as webhooks_router

    app.include_router(health_router)
    # Before the contracts router: /contracts/sign/... must not be read as /contracts/{id}/...
    app.include_router(signing_router)
    app.include_router(contracts_router)
    app.include_router(webhooks_router)

    return app


# The app instance used by Uvicorn
app = create_app()
