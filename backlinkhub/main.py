from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from backlinkhub import __version__
from backlinkhub.config import settings
from backlinkhub.core.database import init_db, reset_engine
from backlinkhub.core.errors import BacklinkHubError
from backlinkhub.core.errors.middleware import (
    backlinkhub_error_handler,
    request_validation_handler,
    unhandled_error_handler,
)
from backlinkhub.core.errors.registry import error_registry
from backlinkhub.core.log_middleware import CorrelationMiddleware
from backlinkhub.core.structured_logging import setup_logging
from backlinkhub.routers import functions, health

logger = logging.getLogger(__name__)

API_TITLE = "backlinkhub background API"

TAGS_METADATA = [
    {
        "name": "health",
        "description": "Liveness and database probe. No authentication required.",
    },
    {
        "name": "functions",
        "description": "Scheduled queue runs and the per-row workers they invoke.",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    setup_logging(log_dir=settings.log_dir, log_level=settings.log_level)
    logger.info("Starting %s v%s", API_TITLE, __version__)

    error_registry.load()
    init_db()
    logger.info("Database initialized")

    yield

    reset_engine()
    logger.info("Database connection closed")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title=API_TITLE,
        version=__version__,
        openapi_tags=TAGS_METADATA,
        lifespan=lifespan,
    )

    # The scheduler and browser callers send preflight requests
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )
    app.add_middleware(CorrelationMiddleware)

    app.add_exception_handler(BacklinkHubError, backlinkhub_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(health.router, tags=["health"])
    app.include_router(functions.router, prefix="/functions", tags=["functions"])

    return app


app = create_app()
