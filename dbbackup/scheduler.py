"""
APScheduler configuration and job scheduling for dbbackup.

Manages:
- Cron-triggered backup jobs (one BackupRequest per cron expression)
- Scheduler lifecycle for the `dbbackup schedule` process
"""

import re
import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from dbbackup.config import Config, ConfigurationError
from dbbackup.models import ScheduleRequest
from dbbackup.backup.executor import execute_backup


logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None

# Cron weekday numbers, 0 and 7 both being Sunday
CRON_WEEKDAYS = ('sun', 'mon', 'tue', 'wed', 'thu', 'fri', 'sat', 'sun')

_NUMERIC_WEEKDAY = re.compile(r'^(\*|\d+)(?:-(\d+))?(?:/(\d+))?$')


def translate_day_of_week(field: str) -> str:
    """
    Rewrite numeric cron weekdays as day names.

    APScheduler counts weekdays from Monday = 0 while crontab counts from
    Sunday = 0 (7 is Sunday too). Numeric items, ranges and steps are
    expanded into explicit names; named items are left for APScheduler.

    Raises:
        ValueError: If a numeric item is out of range
    """
    if field == '*':
        return field

    items = []
    for item in field.split(','):
        match = _NUMERIC_WEEKDAY.match(item)
        if not match:
            items.append(item)
            continue

        start, end, step = match.groups()
        if start == '*':
            if end is not None:
                raise ValueError(f"Invalid day of week item {item!r}")
            first, last = 0, 6
        else:
            first = int(start)
            last = int(end) if end is not None else (7 if step else first)

        if first > 7 or last > 7:
            raise ValueError(f"Day of week {item!r} is outside 0-7")
        if first > last:
            raise ValueError(f"Day of week range {item!r} is reversed")
        step = int(step) if step else 1
        if step < 1:
            raise ValueError(f"Invalid step in day of week item {item!r}")

        for day in range(first, last + 1, step):
            name = CRON_WEEKDAYS[day]
            if name not in items:
                items.append(name)

    return ','.join(items)


def parse_cron_expression(expression: str, timezone: str = 'UTC') -> CronTrigger:
    """
    Parse a 5-field (crontab) or 6-field (seconds first) cron expression.

    Day of week follows crontab numbering (0 or 7 = Sunday).

    Args:
        expression: Cron expression
        timezone: Timezone for the trigger

    Returns:
        CronTrigger

    Raises:
        ConfigurationError: If the expression is malformed
    """
    fields = (expression or '').split()

    try:
        if len(fields) == 5:
            fields[4] = translate_day_of_week(fields[4])
            return CronTrigger.from_crontab(' '.join(fields), timezone=timezone)
        if len(fields) == 6:
            second, minute, hour, day, month, day_of_week = fields
            return CronTrigger(
                second=second,
                minute=minute,
                hour=hour,
                day=day,
                month=month,
                day_of_week=translate_day_of_week(day_of_week),
                timezone=timezone
            )
    except ValueError as e:
        raise ConfigurationError(f"Invalid cron expression {expression!r}: {e}")

    raise ConfigurationError(
        f"Invalid cron expression {expression!r}: expected 5 or 6 fields, got {len(fields)}"
    )


def init_scheduler():
    """Initialize and configure the foreground APScheduler."""
    global scheduler

    if scheduler is not None:
        return scheduler

    executors = {
        'default': ThreadPoolExecutor(max_workers=3)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone='UTC'
    )

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    With a BlockingScheduler this call serves until the process is
    interrupted or stop_scheduler() is called.
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if scheduler.running:
        logger.info(f"Scheduler already running (state={scheduler.state})")
        return

    jobs = scheduler.get_jobs()
    if jobs:
        logger.info(f"Starting scheduler with {len(jobs)} job(s):")
        for job in jobs:
            logger.info(f"  - {job.id}: {job.name} ({job.trigger})")
    else:
        logger.info("Starting scheduler with no jobs")

    scheduler.start()


def stop_scheduler():
    """Stop the APScheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


def schedule_backup(request: ScheduleRequest, config: Config) -> str:
    """
    Register a recurring backup.

    The cron expression is validated before the scheduler is touched, so an
    invalid expression creates no scheduler and no job.

    Args:
        request: ScheduleRequest with cron expression and backup request
        config: Configuration snapshot captured for every run

    Returns:
        Scheduler job ID

    Raises:
        ConfigurationError: If the cron expression is invalid
    """
    trigger = parse_cron_expression(request.cron_expression)

    sched = init_scheduler()

    backup_request = request.backup_request
    kind = getattr(backup_request.database_kind, 'value', backup_request.database_kind)
    job_id = f"backup_{kind}_{len(sched.get_jobs()) + 1}"

    sched.add_job(
        func=_execute_backup_wrapper,
        args=[backup_request, config],
        trigger=trigger,
        id=job_id,
        name=f"Backup: {kind}",
        replace_existing=True
    )

    logger.info(f"Scheduled backup job {job_id} ({request.cron_expression})")
    return job_id


def _execute_backup_wrapper(backup_request, config: Config):
    """
    Wrapper for running a backup from the scheduler.

    Failures are logged; they never propagate into the scheduler.
    """
    kind = getattr(backup_request.database_kind, 'value', backup_request.database_kind)
    try:
        logger.info(f"Scheduler executing backup: {kind}")
        result = execute_backup(backup_request, config)
        logger.info(f"Scheduled backup of {kind} completed with status: {result.status}")
    except Exception as e:
        logger.error(f"Scheduled backup of {kind} failed: {e}")


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    global scheduler

    if scheduler is None:
        return []

    jobs = []

    for job in scheduler.get_jobs():
        # Jobs added before start() have no next_run_time yet
        next_run = getattr(job, 'next_run_time', None)
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })

    return jobs
