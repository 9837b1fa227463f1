from contextlib import asynccontextmanager
import logging
import traceback

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from pharmabatch.config import settings
from pharmabatch.api.v1.router import api_router
from pharmabatch.database import init_db, async_session_factory
from pharmabatch.jobs.scheduler import start_scheduler, shutdown_scheduler


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create tables that do not exist yet
    - Start the background scheduler (auto-quarantine sweep, daily snapshot)
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()

    if settings.SCHEDULER_ENABLED:
        start_scheduler()
        logger.info("Background scheduler started")

    yield

    if settings.SCHEDULER_ENABLED:
        shutdown_scheduler()
    logger.info("Shutting down...")


OPENAPI_TAGS = [
    {"name": "Batches", "description": "Batch entry, goods receipt, FIFO consumption and adjustments"},
    {"name": "Quarantine", "description": "Quarantine records, dispose/return/release actions and audit trail"},
    {"name": "Expiry Trends", "description": "Daily snapshots, trend analysis, predictions and export"},
    {"name": "Expiry Summary", "description": "Dashboard views over current batch stock"},
    {"name": "Jobs", "description": "Scheduler status and manual job triggers"},
]

API_DESCRIPTION = """
## PharmaBatch Expiry Engine

Batch-level stock tracking for pharmaceutical products.

| Module | Description |
|--------|-------------|
| **Batches** | Per-batch quantities, FIFO consumption by earliest expiry |
| **Quarantine** | Pull batches from sale; dispose, return or release |
| **Expiry Trends** | One snapshot per day, trends and moving-average forecasts |

### Caller identity

Authentication happens upstream. Pass the acting user in the `X-Actor`
header; requests without it are recorded as `SYSTEM`.

### Error Codes

| Code | Description |
|------|-------------|
| 404 | Batch, record or snapshot not found |
| 409 | Insufficient stock, invalid status transition or already quarantined |
| 422 | Validation failed |
| 500 | Internal Server Error |
"""

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unexpected errors and return them as JSON."""
    if isinstance(exc, HTTPException):
        status_code = exc.status_code
        error_message = exc.detail
    else:
        status_code = 500
        error_message = str(exc)
        logger.error(
            f"Unhandled error on {request.method} {request.url.path}: {exc}\n"
            f"{traceback.format_exc()}"
        )

    error_detail = {
        "error": error_message,
        "type": type(exc).__name__,
        "path": str(request.url.path),
        "method": request.method,
    }
    if settings.DEBUG:
        error_detail["traceback"] = traceback.format_exc()

    return JSONResponse(status_code=status_code, content=error_detail)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown",
            "scheduler": "enabled" if settings.SCHEDULER_ENABLED else "disabled",
        }
    }

    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
