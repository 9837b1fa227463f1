from fastapi import APIRouter

from pharmabatch.api.v1.endpoints import (
    # Batch stock
    batches,
    # Quarantine
    quarantine,
    # Expiry analytics
    expiry_trends,
    expiry_summary,
    # Background jobs
    jobs,
)

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(batches.router, prefix="/batches", tags=["Batches"])
api_router.include_router(quarantine.router, prefix="/quarantine", tags=["Quarantine"])
api_router.include_router(expiry_trends.router, prefix="/expiry-trends", tags=["Expiry Trends"])
api_router.include_router(expiry_summary.router, prefix="/expiry-summary", tags=["Expiry Summary"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["Jobs"])
