"""
Job API Endpoints - scheduler status and manual job triggers.
"""
from datetime import date
from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends, HTTPException, status

from pharmabatch.api.deps import get_job_session_factory
from pharmabatch.jobs import get_job_status, get_registered_jobs, run_job
from pharmabatch.schemas.expiry_trend import JobRunResponse

router = APIRouter()


@router.get("/status", summary="Scheduled Job Status")
async def job_status() -> Dict[str, Any]:
    return {
        "registered": get_registered_jobs(),
        "scheduled": get_job_status(),
    }


@router.post(
    "/{job_name}/run",
    response_model=JobRunResponse,
    summary="Run Job Now"
)
async def trigger_job(
    job_name: str,
    run_date: Optional[date] = None,
    session_factory=Depends(get_job_session_factory),
):
    """Run a registered job immediately in its own transaction."""
    if job_name not in get_registered_jobs():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown job '{job_name}'"
        )
    return await run_job(job_name, run_date=run_date, session_factory=session_factory)
