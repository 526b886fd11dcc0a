"""
ResumeIQ - resume review service

Upload a PDF resume with the target job, get an ATS score and
per-section feedback, review it next to a rendered preview.

JSON API under settings.api_prefix; upload, review and login screens at
the root. Every error leaves as {"success": false, "errors": [...]}.
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Union

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

import app.models  # registers users and kv_entries before init_db()
from app.core.config import settings
from app.core.exceptions import AppException
from app.core.logging import setup_logging
from app.core.limiter import limiter
from app.core.middleware import CorrelationIdMiddleware, LoggingMiddleware
from app.database import init_db, SessionLocal
from app.dependencies import get_review_sessions
from app.routers.api_router import api_router
from app.routers import screens
from app.services.pdf_render import engine_loader

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Creates the tables on startup; revokes open review sessions on shutdown."""
    logger.info(f"Starting {settings.app_name} v{settings.version} ({settings.environment})")

    try:
        init_db()
        logger.info("Database ready")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    yield

    sessions = get_review_sessions()
    open_sessions = len(sessions)
    sessions.close_all()
    logger.info(f"Shutting down, released {open_sessions} review sessions")


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Resume review with ATS scoring and AI feedback",
    docs_url="/docs",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# resume submissions are throttled per client
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# request id must be set before the access log line is written
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[settings.request_id_header, "X-Process-Time"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed form or JSON bodies, one entry per offending field."""
    errors = []
    for error in exc.errors():
        field = error["loc"][-1] if len(error["loc"]) > 0 else "unknown"
        errors.append({
            "field": str(field),
            "msg": error["msg"]
        })

    logger.warning(f"Rejected request body: {errors}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"success": False, "errors": errors}
    )


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    """Domain errors: pre-flight validation, missing records, malformed data, AI outages."""
    logger.warning(f"AppException: {exc.message}", extra={"code": exc.error_code})
    error = {"msg": exc.message, "code": exc.error_code}
    if exc.details:
        error["details"] = exc.details
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "errors": [error]}
    )


@app.exception_handler(StarletteHTTPException)
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: Union[HTTPException, StarletteHTTPException]):
    """404s, 401s and readiness failures in the shared error envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "errors": [{"msg": exc.detail if isinstance(exc.detail, str) else "Request failed"}]
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled server error", extra={"path": request.url.path})
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "errors": [{"msg": "An unexpected server error occurred."}]
        }
    )


app.include_router(api_router, prefix=settings.api_prefix)
app.include_router(screens.router)


@app.get("/", tags=["Health"])
def root():
    return {
        "message": "ResumeIQ API",
        "version": settings.version,
        "docs": "/docs",
        "upload": "/upload",
    }


@app.get("/health", tags=["Health"])
def health_check():
    """Liveness: the process answers."""
    return {
        "status": "up",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.version,
        "environment": settings.environment,
    }


@app.get("/readiness", tags=["Health"])
def readiness_check():
    """
    The database must answer and the storage root must exist. The
    render engine is reported but loads on first conversion.
    """
    try:
        with SessionLocal() as session:
            session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        raise HTTPException(status_code=503, detail="Service not ready")

    storage_root = Path(settings.storage_dir)
    try:
        storage_root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Storage root {storage_root} unavailable: {e}")
        raise HTTPException(status_code=503, detail="Service not ready")

    return {
        "status": "ready",
        "components": {
            "database": "connected",
            "storage": "writable" if os.access(storage_root, os.W_OK) else "read-only",
            "render_engine": "loaded" if engine_loader.loaded else "lazy",
            "ai": "disabled" if settings.ai.kill_switch else "enabled",
        },
    }


@app.get("/liveness", tags=["Health"])
def liveness_check():
    return health_check()
