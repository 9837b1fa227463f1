"""Job registry, manual runs and scheduler registration."""
from contextlib import asynccontextmanager
from datetime import date

import pytest

from pharmabatch.config import settings
from pharmabatch.jobs.expiry_jobs import get_registered_jobs, run_job
from pharmabatch.jobs.scheduler import get_job_status, register_jobs, scheduler
from pharmabatch.models.batch import BatchStatus


RUN_DATE = date(2026, 3, 10)


@pytest.fixture
def job_sessions(session_factory):
    @asynccontextmanager
    async def _session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    return _session


def test_registered_jobs():
    assert get_registered_jobs() == ["auto_quarantine_expired_batches", "capture_expiry_snapshot"]


async def test_unknown_job_raises(job_sessions):
    with pytest.raises(KeyError):
        await run_job("rebuild_everything", RUN_DATE, session_factory=job_sessions)


async def test_auto_quarantine_job(db, catalog, make_batch, job_sessions):
    expired = await make_batch(catalog.amoxicillin, "AMX-OLD", date(2026, 3, 1), 6)
    await make_batch(catalog.amoxicillin, "AMX-NEW", date(2026, 9, 1), 6)
    await db.commit()

    summary = await run_job("auto_quarantine_expired_batches", RUN_DATE, session_factory=job_sessions)

    assert summary["job"] == "auto_quarantine_expired_batches"
    assert summary["run_date"] == "2026-03-10"
    assert summary["duration_ms"] >= 0
    assert summary["result"]["examined"] == 1
    assert summary["result"]["quarantined"] == 1

    await db.refresh(expired)
    assert expired.status == BatchStatus.EXPIRED.value


async def test_snapshot_job(db, catalog, make_batch, job_sessions):
    await make_batch(catalog.flu_vaccine, "FLU-1", date(2026, 3, 15), 4)
    await db.commit()

    first = await run_job("capture_expiry_snapshot", RUN_DATE, session_factory=job_sessions)
    second = await run_job("capture_expiry_snapshot", RUN_DATE, session_factory=job_sessions)

    assert first["result"]["snapshot_date"] == "2026-03-10"
    assert first["result"]["expiring_30_days"] == 1
    assert first["result"]["snapshot_id"] == second["result"]["snapshot_id"]


async def test_daily_snapshot_sees_batches_before_the_sweep(db, catalog, make_batch, job_sessions):
    snapshot_time = (settings.SNAPSHOT_CRON_HOUR, settings.SNAPSHOT_CRON_MINUTE)
    sweep_time = (settings.AUTO_QUARANTINE_CRON_HOUR, settings.AUTO_QUARANTINE_CRON_MINUTE)
    assert snapshot_time < sweep_time

    await make_batch(catalog.amoxicillin, "AMX-OLD", date(2026, 3, 9), 6)
    await db.commit()

    snapshot = await run_job("capture_expiry_snapshot", RUN_DATE, session_factory=job_sessions)
    sweep = await run_job("auto_quarantine_expired_batches", RUN_DATE, session_factory=job_sessions)

    assert snapshot["result"]["expired_count"] == 1
    assert sweep["result"]["quarantined"] == 1


def test_register_jobs_adds_daily_jobs():
    try:
        register_jobs()
        ids = {job["id"] for job in get_job_status()}
        assert ids == {"auto_quarantine_expired_batches", "capture_expiry_snapshot"}
    finally:
        scheduler.remove_all_jobs()
