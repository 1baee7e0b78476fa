"""
APScheduler configuration and job scheduling for pbackup.

Manages:
- The periodic backup job (based on a cron expression)
- Daily retention policy enforcement
- Manual backup triggers

A single worker thread and max_instances=1 serialize runs, so two backups
never target the same location at once.
"""

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from pbackup.backup.executor import execute_backup
from pbackup.backup.retention import enforce_retention_policies


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'periodic_backup'
RETENTION_JOB_ID = 'retention_cleanup'

# Global scheduler instance and backup context reference
scheduler = None
backup_context = None


def init_scheduler(context):
    """
    Initialize and configure APScheduler.

    Args:
        context: BackupContext used by every scheduled run
    """
    global scheduler, backup_context

    if scheduler is not None:
        return scheduler

    backup_context = context

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone='UTC'
    )

    # Add retention policy job (runs daily at 2 AM UTC)
    scheduler.add_job(
        func=_enforce_retention_wrapper,
        trigger=CronTrigger(hour=2, minute=0),
        id=RETENTION_JOB_ID,
        name='Daily Retention Cleanup',
        replace_existing=True
    )

    cron = getattr(context.config, 'SCHEDULE_CRON', None)
    if cron:
        schedule_backups(cron)

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after init_scheduler().
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started successfully (state={scheduler.state}, running={scheduler.running})")

        jobs = scheduler.get_jobs()
        if jobs:
            logger.info(f"Loaded {len(jobs)} scheduled jobs:")
            for job in jobs:
                next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
                logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
        else:
            logger.info("No scheduled jobs loaded")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def schedule_backups(cron: str):
    """
    Add or replace the periodic backup job.

    Args:
        cron: Crontab expression (e.g. '0 2 * * *')

    Raises:
        RuntimeError: If the scheduler is not initialized
        ValueError: If the cron expression is invalid
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    trigger = CronTrigger.from_crontab(cron, timezone='UTC')

    scheduler.add_job(
        func=_execute_backup_wrapper,
        trigger=trigger,
        id=BACKUP_JOB_ID,
        name='Periodic Backup',
        replace_existing=True
    )

    logger.info(f"Scheduled periodic backup ({cron})")


def _execute_backup_wrapper():
    """
    Wrapper for executing backups in scheduler context.

    Failures are logged and never propagate into the scheduler thread.
    """
    try:
        logger.info("Scheduler executing periodic backup")
        run = execute_backup(backup_context)
        for location, error in run.location_errors.items():
            logger.error(f"Backup to {location} failed: {error}")
        logger.info(f"Backup completed with status: {run.status}")
    except Exception as e:
        logger.error(f"Scheduled backup failed: {e}")


def _enforce_retention_wrapper():
    try:
        summary = enforce_retention_policies(backup_context)
        for error in summary['errors']:
            logger.error(error)
    except Exception as e:
        logger.error(f"Scheduled retention cleanup failed: {e}")


def trigger_backup_now() -> str:
    """
    Manually trigger a backup immediately.

    Returns:
        ID of the one-off scheduler job

    Raises:
        RuntimeError: If the scheduler is not initialized
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    now = datetime.now(timezone.utc)
    job_id = f"manual_{int(now.timestamp())}"

    scheduler.add_job(
        func=_execute_backup_wrapper,
        trigger=DateTrigger(run_date=now),
        id=job_id,
        name='Manual Backup',
        replace_existing=True
    )

    logger.info(f"Triggered manual backup (job: {job_id})")
    return job_id


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    if scheduler is None:
        return []

    jobs = []

    for job in scheduler.get_jobs():
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        })

    return jobs


def is_scheduler_running() -> bool:
    return scheduler is not None and scheduler.running
