"""
Main FastAPI application for the Voccal voice filter engine.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from voccal.api.routes import filters, health, render
from voccal.core.config import settings
from voccal.core.exceptions import VoccalError
from voccal.core.logging import get_logger

logger = get_logger(__name__)

# HTTP status per error code; anything else is a 400
ERROR_STATUS = {
    "UNKNOWN_FILTER": 404,
    "VALIDATION_ERROR": 400,
    "DECODE_ERROR": 415,
    "RENDER_BUSY": 409,
    "RENDER_ERROR": 500,
    "DEVICE_ERROR": 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan handler.
    Runs on startup and shutdown.
    """
    logger.info(
        "application_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        env=settings.env
    )

    yield

    logger.info("application_shutting_down")


app = FastAPI(
    title="Voccal Voice Filter API",
    description="Voice effect catalog and offline rendering for Voccal clips",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(VoccalError)
async def voccal_error_handler(request: Request, exc: VoccalError) -> JSONResponse:
    """Handle engine errors."""
    status_code = ERROR_STATUS.get(exc.code, 400)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "voccal_error",
        error_code=exc.code,
        message=exc.message,
        path=request.url.path
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": exc.code,
                "message": exc.message
            }
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected errors."""
    logger.exception(
        "unexpected_error",
        error_type=type(exc).__name__,
        path=request.url.path
    )

    if settings.is_development:
        message = str(exc)
    else:
        message = "An unexpected error occurred"
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": message
            }
        }
    )


app.include_router(health.router, prefix="/api/v1", tags=["health"])
app.include_router(filters.router, prefix="/api/v1", tags=["filters"])
app.include_router(render.router, prefix="/api/v1", tags=["render"])


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "status": "running",
        "environment": settings.env,
        "docs": "/docs",
        "api": {
            "health": "/api/v1/health",
            "filters": "/api/v1/filters",
            "render": "/api/v1/render"
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "voccal.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.lower()
    )
