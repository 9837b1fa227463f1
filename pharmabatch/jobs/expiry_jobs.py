"""
Expiry Background Jobs

Jobs registered here:
1. auto_quarantine_expired_batches - expire and quarantine ACTIVE batches past expiry (daily)
2. capture_expiry_snapshot         - store today's expiry trend snapshot (daily, scheduled before job 1)

Each job is a plain coroutine taking (session, run_date). The scheduler
and the manual-trigger endpoint both go through run_job(), which owns the
session and the timing/logging around the call.

Usage:
    @expiry_job("my_job")
    async def my_job(session, run_date):
        ...
"""

import logging
import time
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from pharmabatch.database import get_db_session
from pharmabatch.services.expiry_trend_service import ExpiryTrendService
from pharmabatch.services.quarantine_service import QuarantineService

logger = logging.getLogger(__name__)

# Registry of expiry jobs
_expiry_jobs: Dict[str, Callable] = {}


def expiry_job(name: str):
    """Decorator to register a background job under a stable name."""
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(session: AsyncSession, run_date: date):
            return await func(session, run_date)

        _expiry_jobs[name] = wrapper
        logger.debug(f"Registered expiry job: {name}")
        return wrapper
    return decorator


def get_registered_jobs() -> List[str]:
    return sorted(_expiry_jobs)


async def run_job(
    job_name: str,
    run_date: Optional[date] = None,
    session_factory: Optional[Callable[[], AbstractAsyncContextManager]] = None,
) -> Dict[str, Any]:
    """
    Run one registered job inside its own session/transaction.

    Raises KeyError for an unknown job name; exceptions from the job itself
    propagate after the session has rolled back.
    """
    if job_name not in _expiry_jobs:
        raise KeyError(f"Unknown job '{job_name}'")

    job = _expiry_jobs[job_name]
    run_date = run_date or date.today()
    factory = session_factory or get_db_session

    started_at = datetime.now(timezone.utc)
    start = time.monotonic()
    async with factory() as session:
        result = await job(session, run_date)
    elapsed_ms = int((time.monotonic() - start) * 1000)

    logger.info(f"Job '{job_name}' for {run_date} finished in {elapsed_ms}ms")
    return {
        "job": job_name,
        "run_date": run_date.isoformat(),
        "started_at": started_at.isoformat(),
        "duration_ms": elapsed_ms,
        "result": result,
    }


# ============================================================
# Job 1: Auto-quarantine expired batches
# ============================================================

@expiry_job("auto_quarantine_expired_batches")
async def auto_quarantine_expired_batches(session: AsyncSession, run_date: date) -> Dict[str, Any]:
    report = await QuarantineService(session).auto_quarantine_expired_batches(run_date)
    if report.failed:
        logger.error(
            f"Auto-quarantine {run_date}: {report.failed} of {report.examined} batches failed"
        )
    return report.to_dict()


# ============================================================
# Job 2: Daily expiry trend snapshot
# ============================================================

@expiry_job("capture_expiry_snapshot")
async def capture_expiry_snapshot(session: AsyncSession, run_date: date) -> Dict[str, Any]:
    snapshot = await ExpiryTrendService(session).capture_snapshot(run_date)
    return {
        "snapshot_id": str(snapshot.id),
        "snapshot_date": snapshot.snapshot_date.isoformat(),
        "expired_count": snapshot.expired_count,
        "expiring_30_days": snapshot.expiring_30_days,
        "trend_direction": snapshot.trend_direction,
    }
