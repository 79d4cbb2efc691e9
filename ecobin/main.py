"""
EcoBin Pipeline — FastAPI Application.

Read/write interface over the pipeline's derived tables. Scheduled jobs run
in a separate process (python -m ecobin.scheduler_main).

Run: uvicorn ecobin.main:app --host 0.0.0.0 --port 8000

  - GET  /api/analytics/insights/{bin_id}
  - GET  /api/analytics/anomalies/{bin_id}
  - GET  /api/analytics/metrics/{bin_id}
  - GET  /api/analytics/rewards/summary
  - GET  /api/analytics/rewards/history
  - POST /api/analytics/rewards/redeem
  - GET  /health, /ready
  - GET  /metrics               ← Prometheus metrics
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from ecobin.api import deps
from ecobin.api.routers.analytics import router as analytics_router
from ecobin.api.routers.health import router as health_router
from ecobin.api.routers.metrics import router as metrics_router
from ecobin.api.routers.rewards import router as rewards_router
from ecobin.config import settings, validate_settings
from ecobin.db.engine import close_db, init_db
from ecobin.exceptions import ConfigurationError
from ecobin.logging_config import configure_logging
from ecobin.middleware.error_handler import ErrorHandlerMiddleware
from ecobin.rewards.engine import RewardsEngine

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan: startup and shutdown.

    Invalid configuration aborts startup before the store is opened.
    """
    logger.info("ecobin_api_starting", version=settings.app_version)
    try:
        cfg = validate_settings(settings)
    except ConfigurationError as e:
        logger.error("invalid_configuration", **e.to_dict())
        raise
    deps.set_rewards_engine(RewardsEngine(cfg))
    await init_db()
    yield
    await close_db()
    logger.info("ecobin_api_shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_tags=[
            {"name": "health", "description": "Liveness and readiness checks"},
            {"name": "analytics", "description": "Daily metrics, anomalies and insights per bin"},
            {"name": "rewards", "description": "Points balance, history and redemption"},
            {"name": "observability", "description": "Prometheus metrics"},
        ],
    )

    app.add_middleware(ErrorHandlerMiddleware)

    app.include_router(health_router)
    app.include_router(analytics_router)
    app.include_router(rewards_router)
    app.include_router(metrics_router)
    return app


# Application instance
app = create_app()
