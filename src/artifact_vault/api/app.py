"""
FastAPI Application Setup.

Application factory for the Artifact Vault REST API. Serve with
``uvicorn --factory artifact_vault.api.app:create_app``.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from artifact_vault.api.middleware.logging import RequestLoggingMiddleware
from artifact_vault.api.routes import admin, artifacts, health
from artifact_vault.api.schemas.exceptions import APIException, status_for
from artifact_vault.artifacts.service import ArtifactService, get_service
from artifact_vault.core.exceptions import ArtifactVaultError
from artifact_vault.version import __version__

logger = logging.getLogger(__name__)


def _error_response(status_code: int, error_type: str, message: str, detail: object = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "type": error_type,
                "message": message,
                "detail": detail,
            }
        },
    )


def create_app(
    service: ArtifactService | None = None,
    start_reaper: bool | None = None,
    title: str = "Artifact Vault API",
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        service: Service to expose (defaults to the process-wide one)
        start_reaper: Run the retention reaper while the app is up
            (defaults to the ``reaper_enabled`` setting)
        title: Application title for OpenAPI docs

    Returns:
        Configured FastAPI application instance
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    service = service or get_service()
    if start_reaper is None:
        start_reaper = service.settings.reaper_enabled

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Start the reaper on startup and stop it on shutdown."""
        logger.info(f"Artifact Vault API starting up (version {__version__})")
        logger.info(f"Data directory: {service.settings.data_dir}")
        if start_reaper:
            service.reaper.start()

        yield

        logger.info("Artifact Vault API shutting down...")
        service.reaper.stop()

    app = FastAPI(
        title=title,
        description="Run-scoped artifact storage and retrieval",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(artifacts.router, prefix="/api/v1/artifacts", tags=["Artifacts"])
    app.include_router(admin.router, prefix="/api/v1/admin", tags=["Admin"])

    @app.exception_handler(ArtifactVaultError)
    async def domain_exception_handler(request: Request, exc: ArtifactVaultError) -> JSONResponse:
        """Map domain errors to HTTP statuses."""
        status_code, error_type = status_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return _error_response(status_code, error_type, exc.message, exc.details or None)

    @app.exception_handler(APIException)
    async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
        """Handle API exceptions with proper error responses."""
        return _error_response(exc.status_code, exc.error_type, exc.message, exc.detail)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle request validation errors with field information."""
        fields = {
            ".".join(str(part) for part in error.get("loc", ())): error.get("msg", "invalid value")
            for error in exc.errors()
        }
        return _error_response(400, "validation_error", "Request validation failed", fields)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception(f"Unhandled exception: {exc}")
        return _error_response(
            500,
            "internal_error",
            "An unexpected error occurred",
            str(exc) if logger.isEnabledFor(logging.DEBUG) else None,
        )

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, object]:
        """Root endpoint with API information."""
        return {
            "name": "Artifact Vault API",
            "version": __version__,
            "status": "operational",
            "docs": "/docs",
            "health": "/health",
        }

    return app
