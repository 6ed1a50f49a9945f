"""FastAPI application for XE.gr synchronization.

This is the main entry point for the sync API server.
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..api.database import check_database_health
from ..api.error_sanitizer import sanitize_error_message
from ..api.exceptions import (
    ConfigurationError,
    DatabaseError,
    InvalidStateError,
    NotFoundError,
    OikionError,
    ValidationError,
)
from .api.dependencies import (
    close_db_pool,
    close_lock_pool,
    close_xe_client,
    current_db_pool,
    get_xe_client,
    init_db_pool,
    init_lock_pool,
    init_xe_client,
)
from .api.router import router

load_dotenv()

logger = logging.getLogger(__name__)

# Service error -> HTTP status. First match wins, so subclasses come first.
_STATUS_BY_ERROR: list[tuple[type[OikionError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (ConfigurationError, 503),
    (DatabaseError, 503),
]


def status_for(exc: OikionError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    - Startup: Initialize database and lock pools, then the XE.gr client
    - Shutdown: Close XE.gr client, lock pool, and database pool
    """
    logger.info("Starting XE.gr Sync API...")

    try:
        await init_db_pool()
        await init_lock_pool()
        logger.info("Database pools initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database pools: {e}")
        raise

    await init_xe_client()

    yield

    logger.info("Shutting down XE.gr Sync API...")
    await close_xe_client()
    await close_lock_pool()
    await close_db_pool()


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(OikionError)
    async def service_error_handler(request: Request, exc: OikionError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc!r}", exc_info=exc)
            detail = sanitize_error_message(exc.message, "Service unavailable")
        else:
            logger.info(f"{request.method} {request.url.path} -> {status_code}: {exc.message}")
            detail = sanitize_error_message(exc.message)

        return JSONResponse(
            status_code=status_code,
            content={"detail": detail, "code": exc.code},
        )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Oikion XE.gr Sync API",
        description="""
    Publishes Oikion CRM properties to the XE.gr real-estate portal.

    ## Workflow

    1. Configure the tenant's XE.gr credentials and agent settings
    2. Sync properties (ADD) or remove them (REMOVE)
    3. Follow packages in the sync history; retry FAILED ones
    4. Outcomes that arrive later are applied by reconciliation or webhook
    """,
        version="1.0.0",
        lifespan=lifespan,
    )

    register_exception_handlers(app)
    app.include_router(router)

    @app.get("/health")
    async def health():
        """Global health check."""
        database = await check_database_health(current_db_pool())
        client = get_xe_client()
        return {
            "status": "healthy" if database.get("healthy") else "degraded",
            "database": database,
            "xe_circuit": client.circuit_status if client else None,
        }

    return app


app = create_app()


# Entry point for running with uvicorn
if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "src.oikion.xe.app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
    )
