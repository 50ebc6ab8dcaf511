"""FastAPI application for the Points Bank service."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from libs.common.config import get_settings
from libs.common.error_handler import add_exception_handlers
from libs.common.logging import get_logger
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import limiter, rate_limit_exceeded_handler
from libs.db.config import init_models
from services.points_bank_service.routers import (
    auth_router,
    members_router,
    oauth_router,
    points_router,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.ENVIRONMENT == "local":
        # Local runs have no migration step
        await init_models()
    logger.info("Points Bank service started (environment=%s)", settings.ENVIRONMENT)
    yield


def create_app() -> FastAPI:
    """Create and configure the Points Bank FastAPI app."""
    app = FastAPI(
        title="Points Bank Service",
        version="0.1.0",
        description="OAuth-protected points custody and redemption service.",
        lifespan=lifespan,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # Structured logging + request tracing
    add_observability_middleware(app)

    # OAuth paths get RFC 6749 errors, everything else the standard envelope
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "points-bank"}

    app.include_router(oauth_router)
    app.include_router(points_router)
    app.include_router(members_router)
    app.include_router(auth_router)

    return app


app = create_app()
