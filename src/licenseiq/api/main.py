"""
FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from licenseiq import __version__
from licenseiq.config import configure_logging, get_settings
from licenseiq.models.api import ErrorResponse, HealthResponse

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(
        "application_starting",
        environment=settings.environment,
        debug=settings.debug,
        primary_llm_provider=settings.primary_llm_provider,
    )

    yield

    # Shutdown
    logger.info("application_shutting_down")
    from licenseiq.storage.postgres import get_postgres_adapter

    if get_postgres_adapter.cache_info().currsize:
        await get_postgres_adapter().close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="LicenseIQ API",
        description="Royalty rule synthesis for license contracts",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Internal server error",
                detail=str(exc) if settings.debug else None,
            ).model_dump(),
        )

    # Include routers
    from licenseiq.api.routes import rules, term_mappings, terms

    app.include_router(rules.router, prefix="/api/v1/rules", tags=["rules"])
    app.include_router(
        term_mappings.router, prefix="/api/v1/term-mappings", tags=["term-mappings"]
    )
    app.include_router(terms.router, prefix="/api/v1/terms", tags=["terms"])

    # Health check
    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        from licenseiq.services.llm_service import get_llm_service
        from licenseiq.storage.postgres import get_postgres_adapter

        llm_status = get_llm_service().health_check()
        postgres_status = await get_postgres_adapter().health_check()

        return HealthResponse(
            status="healthy" if postgres_status and any(llm_status.values()) else "degraded",
            version=__version__,
            environment=settings.environment,
            services={
                "llm": llm_status,
                "postgres": postgres_status,
            },
        )

    # Root endpoint
    @app.get("/")
    async def root() -> dict:
        """Root endpoint."""
        return {
            "name": "LicenseIQ API",
            "version": __version__,
            "docs": "/docs",
        }

    return app


# Create default app instance
app = create_app()
