from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from rewards_api.core.settings import settings
from rewards_api.db.session import async_session, engine
from .api.v1 import router as v1_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing, shutdown_tracing
from .scheduling import RedemptionExpiryScheduler
from .services.notifications import wait_for_pending_notifications


APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    expiry_scheduler = RedemptionExpiryScheduler(
        session_factory=async_session,
        interval_seconds=settings.redemption_expiry_sweep_interval_seconds,
    )
    app.state.redemption_expiry_scheduler = expiry_scheduler

    sweep_enabled = settings.redemption_expiry_sweep_enabled
    if sweep_enabled:
        expiry_scheduler.start()
    else:
        logger.info(
            "Redemption expiry scheduler disabled",
            reason="redemption_expiry_sweep_enabled is false",
        )

    logger.info(
        "Rewards API started",
        environment=settings.environment,
        validator_auth_enabled=bool(settings.validator_api_key),
        reachability_probe_enabled=settings.reachability_probe_enabled,
    )
    try:
        yield
    finally:
        if sweep_enabled and expiry_scheduler.is_running:
            await expiry_scheduler.stop()
        await wait_for_pending_notifications(timeout=settings.push_timeout_seconds)
        await engine.dispose()
        if settings.tracing_enabled:
            shutdown_tracing()
        logger.info("Rewards API stopped")


def create_app() -> FastAPI:
    """Application factory for the rewards FastAPI service."""
    configure_logging(
        service_name="rewards-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Rewards API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if settings.tracing_enabled:
        configure_tracing(
            app,
            service_name="rewards-api",
            service_version=APP_VERSION,
            environment=settings.environment,
        )

    app.include_router(v1_router, prefix="/api/v1")

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
