"""TokenGuard - FastAPI Application Factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tokenguard.api import auth_router, health_router
from tokenguard.api.auth import get_token_codec
from tokenguard.core import dispose_engine, settings, setup_logging
from tokenguard.core.logging import get_logger

# Import all models to ensure they're registered with Base
from tokenguard.models import RefreshToken, TokenBlacklist, User  # noqa: F401
from tokenguard.services.token_cleanup import TokenCleanupService

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    setup_logging(level=settings.log_level, format_type=settings.log_format)
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    # Check security configuration
    for warning in settings.check_security_configuration():
        logger.warning(f"SECURITY: {warning}")

    # Load signing keys up front so a bad key pair fails startup, not the first login
    codec = get_token_codec()
    logger.info(f"Token signing ready (alg={codec.algorithm}, kid={codec.key_id})")

    cleanup_service = TokenCleanupService.get_instance()
    await cleanup_service.start()

    yield

    logger.info("Shutting down...")
    await cleanup_service.stop()
    await dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="JWT issuance, refresh token rotation and revocation",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    app.include_router(health_router)  # Health at root level
    app.include_router(auth_router)  # Auth at root level (/auth)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
        }

    return app


# Application instance
app = create_app()
