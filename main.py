from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import time
import uuid
from contextlib import asynccontextmanager

from moderation_worker.routers import events, admin
from moderation_worker.core.logger import logger
from moderation_worker.core.exceptions import ModerationWorkerException, status_code_for
from moderation_worker.core.config import settings

VERSION = "1.0.0"


# Application lifespan management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management for startup and shutdown events."""
    logger.info("Starting moderation worker", extra={"version": VERSION})

    # Ensure document store tables exist when a database is configured
    if settings.database_url:
        try:
            from moderation_worker.db.init_db import init_db
            init_db()
            logger.info("Database tables verified/created successfully")
        except Exception as e:
            logger.error(f"Database initialization failed: {str(e)}", exc_info=True)
    else:
        logger.warning("DATABASE_URL is not set, events reaching the document store will be retried")

    yield

    logger.info("Shutting down moderation worker")

app = FastAPI(
    title=settings.app_name,
    description="""
    Event-driven moderation worker for user-uploaded images.

    Storage finalize notifications for objects under the pending prefix are
    classified with Cloud Vision SafeSearch. Unsafe images are deleted, their
    owning sale or profile reference is cleared and the owner receives a strike.
    Safe images are promoted to their public path and the owning reference is
    pointed at the public download URL.

    ## Delivery contract

    * `200` for every terminal result, including skipped events
    * `400` for bodies that are not JSON objects (never redelivered)
    * `5xx` when the object's moderation state is unresolved (redelivered)
    """,
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)


# Request ID middleware
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add unique request ID to all requests for tracing."""
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    logger.info(
        "Request started",
        extra={
            "request_id": request_id,
            "method": request.method,
            "url": str(request.url),
            "client_ip": request.client.host if request.client else "unknown"
        }
    )

    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(process_time)

    logger.info(
        "Request completed",
        extra={
            "request_id": request_id,
            "status_code": response.status_code,
            "process_time": process_time
        }
    )

    return response


# Global exception handler
@app.exception_handler(ModerationWorkerException)
async def moderation_worker_exception_handler(request: Request, exc: ModerationWorkerException):
    """Handle custom application exceptions."""
    status_code = status_code_for(exc)
    logger.error(
        f"Moderation worker exception: {exc.message}",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "error_code": exc.error_code,
            "details": exc.details,
            "status_code": status_code
        }
    )

    return JSONResponse(
        status_code=status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details,
            "request_id": getattr(request.state, "request_id", "unknown")
        }
    )

# Include routers
app.include_router(events.router)
app.include_router(admin.router)


@app.get("/", tags=["general"])
async def root():
    """Liveness check."""
    return {"status": "ok", "service": settings.app_name, "version": VERSION}


@app.get("/health", tags=["monitoring"])
async def health_check():
    """
    Health check endpoint for monitoring and load balancers.

    Only reports configuration; the object store and classifier are never
    contacted from here.

    Returns:
        Health status and configuration summary
    """
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": VERSION,
        "services": {
            "database": "configured" if settings.database_url else "missing",
            "storage_bucket": settings.storage_bucket or "unset",
            "pending_prefix": settings.pending_prefix
        }
    }
