"""
Background Jobs Module

Handles scheduled tasks for:
- Auto-quarantine of expired batches
- Daily expiry trend snapshots
"""

from pharmabatch.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status
from pharmabatch.jobs.expiry_jobs import run_job, get_registered_jobs

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "get_job_status",
    "run_job",
    "get_registered_jobs",
]
