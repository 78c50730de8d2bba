"""
FastAPI Main Application
"""

import secrets
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import structlog

from reelforge.config.constants import SESSION_COOKIE_MAX_AGE_S, SESSION_COOKIE_NAME
from reelforge.config.settings import settings
from reelforge.services.errors import (
    InvalidTransitionError,
    NotFoundError,
    ReelforgeError,
)


# Configure logging
logger = structlog.get_logger(__name__)


# Create FastAPI app
app = FastAPI(
    title="Reelforge - Product Ad Video Builder",
    description="Scene-by-scene image-to-video generation reconciled into one composed ad",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def session_middleware(request: Request, call_next):
    """
    Attach an opaque per-visitor session token, issuing one when absent
    """
    token = request.cookies.get(SESSION_COOKIE_NAME)
    issued = token is None
    if issued:
        token = secrets.token_urlsafe(32)
    request.state.session_token = token

    response = await call_next(request)

    if issued:
        response.set_cookie(
            SESSION_COOKIE_NAME,
            token,
            max_age=SESSION_COOKIE_MAX_AGE_S,
            httponly=True,
            samesite="lax",
        )
    return response


# Static files (relocated images, clips and final videos)
Path(settings.static_root).mkdir(parents=True, exist_ok=True)
app.mount(settings.static_url_prefix, StaticFiles(directory=settings.static_root), name="static")


# Health check endpoint
@app.get("/health")
async def health_check():
    """
    Health check endpoint

    Returns:
        JSON response with service health status
    """
    return {
        "status": "healthy",
        "version": "1.0.0",
        "service": "reelforge-backend",
        "provider": settings.video_provider,
    }


# Exception handlers
def _error_response(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    body = {"code": code, "message": message}
    body.update(extra)
    return JSONResponse(status_code=status_code, content={"error": body})


def _serialize_validation_errors(errors):
    cleaned = []
    for err in errors:
        err_copy = err.copy()
        ctx = err_copy.get("ctx")
        if ctx:
            err_copy["ctx"] = {
                key: (str(value) if isinstance(value, Exception) else value)
                for key, value in ctx.items()
            }
        cleaned.append(err_copy)
    return cleaned


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handle request validation errors (400)
    """
    logger.warning(
        "validation_error",
        path=request.url.path,
        errors=exc.errors(),
    )
    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        "VALIDATION_ERROR",
        "Request validation failed",
        details=_serialize_validation_errors(exc.errors()),
    )


@app.exception_handler(ReelforgeError)
async def reelforge_error_handler(request: Request, exc: ReelforgeError):
    """
    Handle domain errors: 404 not found, 409 lifecycle conflicts, 400 otherwise
    """
    if isinstance(exc, NotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, InvalidTransitionError):
        status_code = status.HTTP_409_CONFLICT
    else:
        status_code = status.HTTP_400_BAD_REQUEST

    logger.warning(
        "request_rejected",
        path=request.url.path,
        code=exc.code,
        error=exc.message,
    )
    return _error_response(status_code, exc.code, exc.message)


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """
    Handle value errors (400)
    """
    logger.warning(
        "value_error",
        path=request.url.path,
        error=str(exc),
    )
    return _error_response(status.HTTP_400_BAD_REQUEST, "INVALID_VALUE", str(exc))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """
    Handle generic exceptions (500)
    """
    logger.error(
        "unexpected_error",
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        "An unexpected error occurred",
    )


# Startup event
@app.on_event("startup")
async def startup_event():
    """
    Initialize application on startup
    """
    logger.info("application_starting", log_level=settings.log_level)

    from reelforge.models import init_db

    init_db()

    logger.info("application_started")


# Shutdown event
@app.on_event("shutdown")
async def shutdown_event():
    """
    Cleanup on shutdown
    """
    logger.info("application_shutting_down")


# Import routers
from reelforge.api.routes import music, projects, webhooks

# Register routers
app.include_router(projects.router, prefix="/v1", tags=["projects"])
app.include_router(music.router, prefix="/v1", tags=["music"])
app.include_router(webhooks.router, prefix="/v1", tags=["webhooks"])


# Root endpoint
@app.get("/")
async def root():
    """
    Root endpoint

    Returns:
        JSON response with API information
    """
    return {
        "name": "Reelforge API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }
