"""
APScheduler Configuration

Daily jobs for the expiry engine. The jobs themselves live in
expiry_jobs.py as plain coroutines; this module only decides when they
run.

Architecture:
- Jobs are registered with the @expiry_job decorator
- Scheduler triggers them on cron schedules from settings
- Each run gets its own database session
- A failing run is logged and never stops the scheduler
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from pharmabatch.config import settings

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE,
)


async def run_scheduled_job(job_name: str):
    """Entry point called by APScheduler; delegates to run_job()."""
    from pharmabatch.jobs.expiry_jobs import run_job

    try:
        summary = await run_job(job_name)
        logger.info(f"Job '{job_name}' completed: {summary.get('result')}")
    except Exception as e:
        logger.error(f"Job '{job_name}' failed: {e}")


def register_jobs():
    """Add the daily expiry jobs to the scheduler."""
    # Import to trigger @expiry_job registration
    from pharmabatch.jobs import expiry_jobs  # noqa: F401

    # Daily trend snapshot, before the sweep moves past-expiry batches to EXPIRED
    scheduler.add_job(
        run_scheduled_job,
        'cron',
        hour=settings.SNAPSHOT_CRON_HOUR,
        minute=settings.SNAPSHOT_CRON_MINUTE,
        args=['capture_expiry_snapshot'],
        id='capture_expiry_snapshot',
        name='Capture Expiry Trend Snapshot',
        replace_existing=True,
    )

    # Expire and quarantine past-expiry batches
    scheduler.add_job(
        run_scheduled_job,
        'cron',
        hour=settings.AUTO_QUARANTINE_CRON_HOUR,
        minute=settings.AUTO_QUARANTINE_CRON_MINUTE,
        args=['auto_quarantine_expired_batches'],
        id='auto_quarantine_expired_batches',
        name='Auto-Quarantine Expired Batches',
        replace_existing=True,
    )


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        register_jobs()
        scheduler.start()
        logger.info("Expiry job scheduler started")

        for job in scheduler.get_jobs():
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Expiry job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if getattr(job, 'next_run_time', None) else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
