"""
Delivery IQ — FastAPI Application.

Run: uvicorn deliveryiq.main:app --host 0.0.0.0 --port 8002 --reload

  - GET  /health                                              ← liveness probe
  - GET  /api/v1/delivery-iq/shipments/{shipment_id}/probability
  - POST /api/v1/delivery-iq/probabilities
  - GET  /api/v1/delivery-iq/stats

Batch jobs (outcome sync, curve recompute) run in the scheduler process,
not here: python -m deliveryiq.scheduler_main
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from deliveryiq.api.routers.delivery_iq import router as delivery_iq_router
from deliveryiq.config import settings
from deliveryiq.db.engine import close_db, init_db
from deliveryiq.log_config import configure_logging
from deliveryiq.middleware.error_handler import ErrorHandlerMiddleware
from deliveryiq.middleware.request_context import RequestContextMiddleware

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — startup and shutdown."""
    logger.info("deliveryiq_starting", version=settings.app_version)
    await init_db()
    yield
    await close_db()
    logger.info("deliveryiq_shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "# Delivery IQ — Delivery Intelligence Engine\n\n"
            "Survival-analysis estimates of whether in-transit shipments "
            "will eventually deliver.\n\n"
            "## Architecture\n"
            "- **Outcome Sync**: Tracking snapshots → labeled / censored Outcome Records\n"
            "- **Survival Curves**: Kaplan-Meier per segment + three fallback tiers\n"
            "- **Probability**: Resolved curve + risk signals → delivery probability\n"
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_tags=[
            {"name": "health", "description": "Liveness probe"},
            {"name": "delivery-iq", "description": "Delivery probability and engine statistics"},
        ],
    )

    # ── Middleware (last added = outermost) ──────────────────────────
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routes ────────────────────────────────────────────────────────
    app.include_router(delivery_iq_router)

    @app.get("/health", tags=["health"])
    async def health():
        """Liveness probe. Does not check the database."""
        return {
            "status": "ok",
            "version": settings.app_version,
            "service": "deliveryiq",
        }

    return app


app = create_app()
