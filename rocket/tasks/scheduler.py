# rocket/tasks/scheduler.py
"""
Periodic maintenance tasks

A thin cron-style front end over APScheduler's BackgroundScheduler. Specs
are either five-field cron expressions, one of the ``@daily``-style
shorthands, or ``@every <duration>`` (e.g. ``@every 1h30m``).
"""

import re
import logging
from typing import Callable, List, Optional

from apscheduler.job import Job
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from rocket.core.exceptions import SchedulerError

logger = logging.getLogger(__name__)

SHORTHANDS = {
    '@yearly': '0 0 1 1 *',
    '@annually': '0 0 1 1 *',
    '@monthly': '0 0 1 * *',
    '@weekly': '0 0 * * 0',
    '@daily': '0 0 * * *',
    '@midnight': '0 0 * * *',
    '@hourly': '0 * * * *',
}

_DURATION = re.compile(r'^(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$')


def parse_trigger(spec: str):
    """Translate a schedule spec into an APScheduler trigger"""
    spec = spec.strip()

    if spec.startswith('@every '):
        match = _DURATION.match(spec[len('@every '):].strip())
        if not match or not any(match.groups()):
            raise SchedulerError(f"invalid duration in schedule {spec!r}")
        hours, minutes, seconds = (int(part or 0) for part in match.groups())
        if hours == minutes == seconds == 0:
            raise SchedulerError(f"zero interval in schedule {spec!r}")
        return IntervalTrigger(hours=hours, minutes=minutes, seconds=seconds)

    expression = SHORTHANDS.get(spec, spec)
    if expression.startswith('@'):
        raise SchedulerError(f"unknown schedule shorthand {spec!r}")
    try:
        return CronTrigger.from_crontab(expression)
    except ValueError as e:
        raise SchedulerError(f"invalid cron expression {spec!r}: {e}") from e


class Scheduler:
    """Runs registered functions on their schedules from a background thread"""

    def __init__(self):
        self._scheduler = BackgroundScheduler(job_defaults={'coalesce': True, 'max_instances': 1})

    def add_func(self, spec: str, func: Callable[[], None], name: Optional[str] = None) -> Job:
        """
        Register ``func`` to run on ``spec``

        Args:
            spec: cron expression, shorthand or ``@every`` duration
            func: zero-argument callable
            name: job name; defaults to the spec itself

        Raises:
            SchedulerError: if the spec cannot be parsed
        """
        trigger = parse_trigger(spec)
        job = self._scheduler.add_job(func, trigger, name=name or spec)
        logger.info(f"Scheduled task {job.name!r} ({spec})")
        return job

    def jobs(self) -> List[Job]:
        return self._scheduler.get_jobs()

    def run_job(self, name: str) -> None:
        """Run a registered job immediately on the calling thread"""
        for job in self.jobs():
            if job.name == name:
                job.func()
                return
        raise SchedulerError(f"no scheduled task named {name!r}")

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Scheduler started")

    def shutdown(self) -> None:
        """Stop the scheduler without waiting for running jobs"""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
