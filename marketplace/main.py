"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from marketplace.api.middleware.error_handler import error_handler_middleware
from marketplace.api.middleware.latency_logging import latency_logging_middleware
from marketplace.api.middleware.request_size import request_size_limit_middleware
from marketplace.api.routes import admin, discounts, health, orders, pickup
from marketplace.core.config import get_settings
from marketplace.core.stripe import configure_stripe

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Configure the payment gateway on startup."""
    settings = get_settings()
    logger.info("Starting %s in %s mode", settings.app_name, settings.app_env)

    configure_stripe()
    logger.info(
        "Stripe SDK configured (%s mode)",
        "test" if settings.is_stripe_test_mode else "live",
    )

    yield
    logger.info("Shutting down %s", settings.app_name)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Marketplace Escrow API",
        description="Order lifecycle, escrow settlement and revenue reconciliation for a local marketplace",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handler first so it wraps the routes; middleware added later runs outside it
    app.add_middleware(BaseHTTPMiddleware, dispatch=error_handler_middleware)
    app.add_middleware(BaseHTTPMiddleware, dispatch=latency_logging_middleware)
    app.add_middleware(BaseHTTPMiddleware, dispatch=request_size_limit_middleware)

    # Health routes at root level for orchestrator checks
    app.include_router(health.router)

    api_v1_router = APIRouter(prefix="/api/v1")
    api_v1_router.include_router(orders.router)
    api_v1_router.include_router(discounts.router)
    api_v1_router.include_router(pickup.router)
    api_v1_router.include_router(admin.router)
    app.include_router(api_v1_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "marketplace.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
