"""
APScheduler configuration.

Runs the pallet jobs in the application's event loop. Started from the app
lifespan when settings.scheduler_enabled is set.
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from backend.app.core.config import settings

logger = logging.getLogger(__name__)

jobstores = {
    'default': MemoryJobStore()
}

executors = {
    'default': AsyncIOExecutor(),
}

job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,
}

scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone='UTC'
)


async def run_job(job_name: str):
    """Called by APScheduler; failures are logged and the next run proceeds."""
    from backend.app.jobs import pallet_jobs

    jobs = {
        'completion_sweep': pallet_jobs.run_completion_sweep,
        'reconciliation': pallet_jobs.run_reconciliation,
    }
    try:
        result = await jobs[job_name]()
        logger.info("Job '%s' completed: %s", job_name, result.model_dump_json())
    except Exception:
        logger.exception("Job '%s' failed", job_name)


def start_scheduler():
    """Start the background job scheduler."""
    if scheduler.running:
        return

    scheduler.add_job(
        run_job,
        'interval',
        seconds=settings.completion_sweep_interval_seconds,
        args=['completion_sweep'],
        id='completion_sweep',
        name='Pallet completion sweep',
        replace_existing=True,
    )

    scheduler.add_job(
        run_job,
        'interval',
        seconds=settings.reconciliation_interval_seconds,
        args=['reconciliation'],
        id='reconciliation',
        name='Pallet reconciliation backstop',
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Background job scheduler started")

    for job in scheduler.get_jobs():
        logger.info("Scheduled job: %s - Next run: %s", job.name, job.next_run_time)


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]
