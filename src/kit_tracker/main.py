"""kit-tracker service entry point.

Initializes the FastAPI application with:
- Logging configured from settings
- KitDatabase (async engine + session factory) stored on app.state
- Schema creation and optional demo seeding at startup
- Exception handlers mapping the kit_tracker error taxonomy to JSON responses

Run with: uvicorn kit_tracker.main:app
"""

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from kit_tracker.adapters.database import KitDatabase
from kit_tracker.adapters.seed import seed_database
from kit_tracker.api.router import router
from kit_tracker.core.errors import (
    KitTrackerError,
    NoChangesError,
    NotFoundError,
    PersistenceError,
    ValidationError,
    VersionConflictError,
)
from kit_tracker.observability import configure_logging
from kit_tracker.settings import Settings

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[KitTrackerError], int], ...] = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (VersionConflictError, 409),
    (NoChangesError, 200),
    (PersistenceError, 500),
)


def status_for_error(exc: KitTrackerError) -> int:
    """Return the HTTP status code for a kit_tracker error."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def kit_tracker_error_handler(request: Request, exc: KitTrackerError) -> JSONResponse:
    status_code = status_for_error(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    if isinstance(exc, NoChangesError):
        return JSONResponse(status_code=status_code, content={"saved": False, "message": exc.message})
    content: dict[str, object] = {"error": exc.message}
    if isinstance(exc, ValidationError) and exc.field:
        content["field"] = exc.field
    if isinstance(exc, VersionConflictError):
        content["currentVersion"] = exc.current_version
    return JSONResponse(status_code=status_code, content=content)


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content={"error": f"{location}: {message}" if location else message})


def create_app(
    settings: Settings | None = None,
    *,
    database: KitDatabase | None = None,
    clock: Callable[[], datetime] | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Service settings; read from the environment when omitted.
        database: An already-open KitDatabase. When given, the lifespan
            neither creates nor disposes a database and the caller owns it.
        clock: Optional clock for kit creation and updates (tests).

    Returns:
        The configured FastAPI application.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Open the kit database on startup and dispose it on shutdown.

        Args:
            app: The FastAPI application instance.

        Yields:
            None
        """
        configure_logging(settings.log_level)
        owns_database = app.state.database is None
        if owns_database:
            logger.info("Initializing kit database (service=%s)", settings.service_name)
            app.state.database = KitDatabase.from_settings(settings)

        if settings.create_schema_on_startup:
            await app.state.database.create_schema()
        if settings.seed_on_startup:
            created = await seed_database(app.state.database, settings.seed_kit_count)
            logger.info("Startup seed complete (kits_created=%d)", created)

        logger.info("%s startup complete", settings.service_name)

        yield

        logger.info("Shutting down %s", settings.service_name)
        if owns_database:
            await app.state.database.dispose()
            app.state.database = None

    app = FastAPI(title=settings.service_name, version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.clock = clock
    app.add_exception_handler(KitTrackerError, kit_tracker_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.include_router(router, prefix="/api/v1")

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        database_ok = app.state.database is not None and await app.state.database.check_connection()
        return {"status": "ok" if database_ok else "degraded", "service": settings.service_name}

    return app


app: FastAPI = create_app()
