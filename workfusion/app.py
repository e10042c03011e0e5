"""
FastAPI application entry point for the Workfusion API.

This module builds the FastAPI app with routers, middleware, error handlers
and the service container lifecycle. All configuration is loaded from
environment variables via the config module.

Run with ``uvicorn workfusion.app:app``.
"""

import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, get_settings
from .errors import AppError, MethodNotAllowed
from .middleware.logging import LoggingMiddleware
from .routers import health, insights, integrations, oauth, paypal, plaid, stripe, xero
from .services.container import ServiceContainer, build_container
from .utils.logging import configure_logging, get_logger
from .utils.responses import error_envelope

logger = get_logger(__name__)

# Map status codes to error codes for framework-raised HTTP errors
HTTP_ERROR_CODES = {
    400: "APP-400-VALIDATION",
    401: "APP-401-AUTH",
    403: "APP-403-FORBIDDEN",
    404: "APP-404-NOT-FOUND",
    405: MethodNotAllowed.code,
    429: "APP-429-RATE",
    500: "APP-500-INTERNAL",
}


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure as the ``{"ok": false, ...}`` envelope."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "Request failed",
            error_code=exc.code,
            status_code=exc.status_code,
            error=exc.message,
            detail=exc.log_detail,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(request, exc.message, exc.code, **exc.extra()),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
            message = MethodNotAllowed().message
        else:
            message = str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(
                request,
                message,
                HTTP_ERROR_CODES.get(exc.status_code, f"APP-{exc.status_code}"),
            ),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_envelope(
                request, "Request validation failed", "APP-400-VALIDATION", details=errors
            ),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error_type=type(exc).__name__,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_envelope(request, "An internal error occurred", "APP-500-INTERNAL"),
        )


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings to use (defaults to the process-wide instance)
        container: Pre-built services; when given, the app does not build or
            close its own
    """
    settings = settings or (container.settings if container else get_settings())
    configure_logging(
        log_level=settings.log_level,
        app_env=settings.app_env,
        app_version=settings.app_version,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Starting {settings.app_name}",
            version=settings.app_version,
            environment=settings.app_env,
        )
        settings.log_config()

        try:
            settings.validate_required_for_production()
        except ValueError as e:
            logger.error("Production validation failed", error=str(e))
            sys.exit(1)

        owns_container = container is None
        if owns_container:
            app.state.container = await build_container(settings)

        yield

        logger.info(f"Shutting down {settings.app_name}...")
        if owns_container:
            await app.state.container.close()

    app = FastAPI(
        title=settings.app_name,
        description="Accounting integrations API for Xero, PayPal and Plaid",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    if container is not None:
        app.state.container = container

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(plaid.router, tags=["plaid"])
    app.include_router(paypal.router, tags=["paypal"])
    app.include_router(xero.router, tags=["xero"])
    app.include_router(stripe.router, tags=["stripe"])
    app.include_router(insights.router, tags=["insights"])
    app.include_router(integrations.router, tags=["integrations"])
    # Registered last so the provider-specific routes win on overlapping paths
    app.include_router(oauth.router)

    @app.get("/", include_in_schema=False)
    async def root() -> Dict[str, Any]:
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
            "health": "/healthz",
        }

    return app


app = create_app()
