"""
Backend API Service - PinDrop gateway
FastAPI service exposing bucket, file and maintenance endpoints
"""
import os
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import asyncpg
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from backend.dependencies import Services, build_services
from backend.endpoints.buckets import router as buckets_router
from backend.endpoints.files import router as files_router
from backend.endpoints.maintenance import router as maintenance_router
from shared.config.config_manager import ConfigManager
from shared.database.connection_manager import DatabaseConnectionError
from shared.services.access_service import AccessService
from shared.services.errors import (
    BackendUnavailableError,
    FileTooLargeError,
    InternalError,
    NotFoundError,
    PermissionDeniedError,
    PinDropError,
    RateLimitedError,
    ValidationError,
)

logger = logging.getLogger(__name__)


async def run_periodic_sweep(access: AccessService, interval_hours: int) -> None:
    """Sweep now, then every `interval_hours`, until cancelled."""
    while True:
        try:
            summary = await access.run_sweep()
            logger.info(f"Scheduled sweep purged {summary.total_buckets} buckets")
        except PinDropError as e:
            logger.error(f"Scheduled sweep failed: {e}")
        except Exception as e:
            # Keep the schedule alive; the next run retries
            logger.exception(f"Scheduled sweep crashed: {e}")
        await asyncio.sleep(interval_hours * 3600)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle events."""
    services: Optional[Services] = getattr(app.state, "services", None)
    owns_services = services is None
    sweep_task: Optional[asyncio.Task] = None

    # Startup
    if owns_services:
        services = build_services()
        app.state.services = services
        try:
            await services.database.initialize_schema()
        except (DatabaseConnectionError, asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error(f"Failed to initialize database schema: {e}")

    if services.sweep_enabled:
        sweep_task = asyncio.create_task(
            run_periodic_sweep(services.access, services.sweep_interval_hours)
        )
        logger.info(f"Lifecycle sweep scheduled every {services.sweep_interval_hours}h")
    else:
        logger.info("Lifecycle sweep disabled (SWEEP_ENABLED=false)")

    yield

    # Shutdown
    if sweep_task:
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass
    if owns_services:
        await services.close()


def _error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": message, **extra})


def register_exception_handlers(app: FastAPI) -> None:
    """Map engine errors to HTTP responses."""

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        status_code = 413 if isinstance(exc, FileTooLargeError) else 400
        return _error_response(status_code, str(exc))

    @app.exception_handler(RateLimitedError)
    async def rate_limited_handler(request: Request, exc: RateLimitedError):
        response = _error_response(
            429,
            str(exc),
            challenge_required=exc.challenge_required,
            minutes_left=exc.minutes_left
        )
        if exc.minutes_left:
            response.headers["Retry-After"] = str(exc.minutes_left * 60)
        return response

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error_response(404, str(exc))

    @app.exception_handler(PermissionDeniedError)
    async def permission_denied_handler(request: Request, exc: PermissionDeniedError):
        return _error_response(403, str(exc))

    @app.exception_handler(BackendUnavailableError)
    async def backend_unavailable_handler(request: Request, exc: BackendUnavailableError):
        logger.error(f"{request.method} {request.url.path} failed: {exc} ({exc.cause})")
        return _error_response(503, "Service temporarily unavailable. Please try again.")

    @app.exception_handler(InternalError)
    async def internal_error_handler(request: Request, exc: InternalError):
        logger.error(f"{request.method} {request.url.path} internal error: {exc}")
        return _error_response(500, "Internal server error")


openapi_tags = [
    {"name": "buckets", "description": "Bucket creation, PIN access and management"},
    {"name": "files", "description": "File upload, download and management inside a bucket"},
    {"name": "maintenance", "description": "Lifecycle sweep trigger for the scheduler"},
]


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Prebuilt services (tests); built from configuration at startup otherwise
    """
    app = FastAPI(
        title="PinDrop Backend",
        version=os.getenv("PINDROP_VERSION", "0.1.0"),
        lifespan=lifespan,
        openapi_tags=openapi_tags
    )
    if services is not None:
        app.state.services = services

    app.include_router(buckets_router)
    app.include_router(files_router)
    app.include_router(maintenance_router)
    register_exception_handlers(app)

    # Configure CORS
    allowed_origins = os.getenv("ALLOWED_CORS")
    allowed_origins = allowed_origins.split(",") if allowed_origins else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    class HealthResponse(BaseModel):
        service: str
        status: str
        version: str
        database: str
        configuration: Dict[str, Any]

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {"message": "PinDrop Backend API", "status": "ready"}

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint showing database state and non-secret configuration"""
        services: Services = request.app.state.services
        database_healthy = services.database is not None and await services.database.health_check()
        return HealthResponse(
            service="backend",
            status="ready" if database_healthy else "degraded",
            version=app.version,
            database="healthy" if database_healthy else "unhealthy",
            configuration=services.config.get_configuration() if services.config else {},
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    uvicorn.run(app, host="0.0.0.0", port=ConfigManager().api_port)
