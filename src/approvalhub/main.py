"""FastAPI application factory and main entry point."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from approvalhub import __version__
from approvalhub.api.responses import error_envelope
from approvalhub.api.v1 import api_router
from approvalhub.core.config import get_settings
from approvalhub.core.errors import ServiceError
from approvalhub.core.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager for startup/shutdown events."""
    # Startup
    settings = get_settings()
    setup_logging(settings)
    app.state.settings = settings
    logger.info(f"Starting {settings.app_name} {__version__} ({settings.environment})")

    yield

    # Shutdown
    logger.info(f"Stopping {settings.app_name}")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        description="Service-to-service approval workflows with signed webhook callbacks",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)
    register_exception_handlers(app)
    register_routes(app)

    return app


def register_middleware(app: FastAPI) -> None:
    """Request timing and access logging."""

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)

        extra = {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": elapsed_ms,
            "service_id": getattr(request.state, "service_id", None),
        }
        if elapsed_ms > get_settings().slow_request_ms:
            logger.warning(
                f"Slow request {request.method} {request.url.path} took {elapsed_ms}ms",
                extra=extra,
            )
        else:
            logger.info(
                f"{request.method} {request.url.path} {response.status_code}", extra=extra
            )
        return response


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure through the standard envelope."""

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.message}")
        return error_envelope(exc.message, status_code=exc.status_code, data=exc.data)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return error_envelope(str(exc.detail), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        return error_envelope(
            "Validation failed", status_code=status.HTTP_400_BAD_REQUEST, data=errors
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return error_envelope(
            "Internal server error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        )


def register_routes(app: FastAPI) -> None:
    """Register all application routes."""
    settings = get_settings()

    # Include API router
    app.include_router(api_router, prefix=settings.api_v1_prefix)

    @app.get(f"{settings.api_v1_prefix}/", tags=["API"])
    async def api_root():
        """API root endpoint with application info."""
        return {
            "name": settings.app_name,
            "version": __version__,
            "environment": settings.environment,
            "docs_url": "/docs" if settings.debug else "Disabled in production",
        }


# Create application instance
app = create_app()
