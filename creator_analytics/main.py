"""FastAPI application factory.

Creates and configures the FastAPI app:
  - Includes route routers (API, import)
  - Maps storage failures to 503 responses
  - Initializes the database on startup via lifespan context manager
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from creator_analytics.config import settings
from creator_analytics.database import init_db
from creator_analytics.errors import StorageUnavailableError
from creator_analytics.routes.api import router as api_router
from creator_analytics.routes.upload import router as upload_router

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: initialize database on startup."""
    logger.info("Starting Creator Analytics on port %s", settings.app_port)
    import creator_analytics.database as db_module
    init_db(db_module.engine)
    logger.info("Database ready at %s", settings.db_path)
    yield
    logger.info("Shutting down Creator Analytics.")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="Creator Analytics",
        description="Import engine and metrics API for LinkedIn analytics exports.",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    @application.exception_handler(StorageUnavailableError)
    async def storage_unavailable(request: Request, exc: StorageUnavailableError):
        logger.error("Storage unavailable on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content={"errors": ["Storage is unavailable. Please try again later."]},
        )

    application.include_router(api_router)
    application.include_router(upload_router)

    return application


app = create_app()
