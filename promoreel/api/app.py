"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from promoreel import __version__, validate_dependencies
from promoreel.db import init_database, shutdown
from promoreel.errors import (
    NoClipsAvailableError,
    ProjectNotFoundError,
    PromoreelError,
    ResourceMissingError,
    ShotNotFoundError,
    StylePackNotFoundError,
    VersionNotFoundError,
)
from promoreel.api.routes import router

logger = logging.getLogger(__name__)

# Domain error -> HTTP status
ERROR_STATUS = {
    ProjectNotFoundError: 404,
    StylePackNotFoundError: 404,
    ShotNotFoundError: 404,
    VersionNotFoundError: 404,
    NoClipsAvailableError: 409,
    ResourceMissingError: 422,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup:
        - Report optional media tools (ffmpeg, ffprobe)
        - Initialize database schema

    Shutdown:
        - Close database connections
    """
    logger.info("Starting promoreel API...")
    validate_dependencies()
    await init_database()
    logger.info("API startup complete")

    yield

    logger.info("Shutting down promoreel API...")
    await shutdown()
    logger.info("API shutdown complete")


app = FastAPI(
    title="promoreel API",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(router)


@app.exception_handler(PromoreelError)
async def domain_exception_handler(request: Request, exc: PromoreelError):
    """Map domain errors onto 404/409/422; anything else is a 500."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        500,
    )
    if status_code == 500:
        logger.error(f"Unhandled {type(exc).__name__} in {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(
        status_code=422,
        content={"error": "Invalid request", "detail": str(exc)},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler to prevent stack traces in API responses."""
    logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc),
        }
    )
