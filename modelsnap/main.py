"""
ModelSnap Render API
FastAPI Backend Entry Point
"""

import io
import logging
import posixpath
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from modelsnap import __version__
from modelsnap.api import admin, batches, consent, download, internal, jobs, ledger, payouts
from modelsnap.core.config import settings
from modelsnap.core.database import SessionLocal, init_db
from modelsnap.core.exceptions import PipelineError, StorageError
from modelsnap.core.logging import configure_logging
from modelsnap.core.rate_limit import build_rate_limiter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    configure_logging()
    logger.info("Starting ModelSnap Render API...")
    init_db()
    if getattr(app.state, "rate_limiter", None) is None:
        app.state.rate_limiter = build_rate_limiter()
    yield
    logger.info("Shutting down ModelSnap Render API...")


app = FastAPI(
    title=settings.APP_NAME,
    description="Garment try-on render pipeline: batch admission, credit/royalty ledger and delivery gate",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path}: {exc.code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"[API] Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "Internal server error", "code": "SERVER_ERROR"},
    )


# Include routers
app.include_router(batches.router, prefix="/api/v1/batches", tags=["Batches"])
app.include_router(jobs.router, prefix="/api/v1/jobs", tags=["Jobs"])
app.include_router(download.router, prefix="/api/v1", tags=["Download"])
app.include_router(ledger.router, prefix="/api/v1/ledger", tags=["Ledger"])
app.include_router(payouts.router, prefix="/api/v1/payouts", tags=["Payouts"])
app.include_router(consent.router, prefix="/api/v1/consent", tags=["Consent"])
app.include_router(admin.router, prefix="/api/v1/admin", tags=["Admin"])
app.include_router(internal.router, prefix="/api/v1/internal", tags=["Internal"])


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed status of the database and Redis."""
    status = {
        "status": "healthy",
        "version": __version__,
        "environment": {
            "storage": "gcs" if settings.USE_GCS else ("local" if settings.USE_LOCAL_STORAGE else "s3"),
            "database": "sqlite" if settings.DATABASE_URL.startswith("sqlite") else "postgresql",
        },
        "services": {}
    }

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        status["services"]["database"] = "ok"
    except SQLAlchemyError as e:
        status["services"]["database"] = f"error: {str(e)}"
        status["status"] = "degraded"
    finally:
        db.close()

    from modelsnap.core.redis import redis_health_check
    redis_status = redis_health_check()
    if redis_status.get("connected"):
        status["services"]["redis"] = "ok"
        status["services"]["redis_version"] = redis_status.get("redis_version")
    else:
        status["services"]["redis"] = f"error: {redis_status.get('error', 'not connected')}"
        status["status"] = "degraded"

    return status


# Only reference images are public; renders go through the download gate
PUBLIC_FILE_PREFIXES = ("models/", "uploads/")


@app.get("/files/{file_path:path}", tags=["Files"])
async def serve_file(file_path: str):
    """
    Serve stored model reference images to the render service.

    Rendered outputs are only delivered through /api/v1/download.
    """
    from modelsnap.services.storage import get_storage_service

    normalized = posixpath.normpath(file_path)
    if ".." in file_path.split("/") or not normalized.startswith(PUBLIC_FILE_PREFIXES):
        return JSONResponse(
            status_code=404,
            content={"status": "error", "message": "File not found", "code": "NOT_FOUND"},
        )

    try:
        file_bytes = await get_storage_service().get_file(normalized)
    except StorageError:
        return JSONResponse(
            status_code=404,
            content={"status": "error", "message": "File not found", "code": "NOT_FOUND"},
        )

    content_type = "image/png" if file_path.endswith(".png") else "image/jpeg"
    if file_path.endswith(".webp"):
        content_type = "image/webp"

    return StreamingResponse(
        io.BytesIO(file_bytes),
        media_type=content_type,
        headers={"Cache-Control": "public, max-age=3600"}
    )
