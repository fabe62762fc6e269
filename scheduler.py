"""Named timers and one-off jobs on top of APScheduler."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

LOGGER = logging.getLogger(__name__)

STANDARD_TIMER = "standard"
EXTRA_TIMER = "extra"
OVERLAY_TIMER = "overlay"
MIDNIGHT_WATCH_TIMER = "midnight-watch"
BACKGROUND_TASK_TIMER = "background-refresh"

# Executor for jobs that may block on network or disk.
IO_EXECUTOR = "io"


class PrayerScheduler:
    """Owns keyed repeating timers and one-off jobs.

    Countdown ticks and notifications run on a single worker thread, one at a
    time, so they never interleave. Jobs that may block on I/O (sync and the
    background refresh) run on a separate single-worker ``io`` executor so a
    slow fetch never stalls a tick.
    """

    def __init__(self, timezone: Any, scheduler: Optional[BackgroundScheduler] = None) -> None:
        self._scheduler = scheduler or BackgroundScheduler(
            timezone=timezone,
            executors={"default": ThreadPoolExecutor(max_workers=1), IO_EXECUTOR: ThreadPoolExecutor(max_workers=1)},
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 30},
        )
        self._timers: Dict[str, str] = {}

    def start(self) -> None:
        if not self._scheduler.running:
            LOGGER.info("Starting background scheduler")
            self._scheduler.start()

    def shutdown(self) -> None:
        if self._scheduler.running:
            LOGGER.info("Stopping background scheduler")
            self._scheduler.shutdown(wait=False)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def timezone(self) -> str:
        tzinfo = self._scheduler.timezone
        zone = getattr(tzinfo, "zone", None)
        return str(zone or tzinfo)

    # -- Keyed timers ------------------------------------------------------
    def start_interval(
        self,
        key: str,
        seconds: float,
        callback: Callable[..., Any],
        args: Sequence[Any] = (),
        executor: str = "default",
    ) -> None:
        """Run *callback* every *seconds* under *key*, replacing any timer already there."""
        self.cancel(key)
        trigger = IntervalTrigger(seconds=seconds, timezone=self._scheduler.timezone)
        job = self._scheduler.add_job(callback, trigger=trigger, args=list(args), id=key, name=key, executor=executor)
        self._timers[key] = job.id
        LOGGER.debug("Started %s timer every %ss", key, seconds)

    def cancel(self, key: str) -> bool:
        job_id = self._timers.pop(key, None)
        if job_id is None:
            return False
        with suppress_not_found():
            self._scheduler.remove_job(job_id)
        LOGGER.debug("Cancelled %s timer", key)
        return True

    def is_active(self, key: str) -> bool:
        return key in self._timers and self._scheduler.get_job(self._timers[key]) is not None

    def running_keys(self) -> List[str]:
        return sorted(key for key in self._timers if self.is_active(key))

    def register_background_task(self, callback: Callable[[], Any], hours: float) -> None:
        """Register the periodic background wake, replacing a previous registration."""
        self.start_interval(BACKGROUND_TASK_TIMER, hours * 3600, callback, executor=IO_EXECUTOR)
        LOGGER.info("Registered background task every %s hours", hours)

    # -- One-off jobs ------------------------------------------------------
    def schedule_once(self, run_date: datetime, callback: Callable[..., Any], args: Sequence[Any] = ()) -> str:
        trigger = DateTrigger(run_date=run_date)
        job = self._scheduler.add_job(callback, trigger=trigger, args=list(args))
        LOGGER.debug("Scheduled job %s at %s", job.id, run_date)
        return job.id

    def cancel_job(self, job_id: str) -> None:
        with suppress_not_found():
            self._scheduler.remove_job(job_id)

    def job_ids(self) -> List[str]:
        timer_ids = set(self._timers.values())
        return [job.id for job in self._scheduler.get_jobs() if job.id not in timer_ids]


class suppress_not_found:
    """Context manager that suppresses APScheduler job lookup errors."""

    def __enter__(self) -> None:  # pragma: no cover - trivial
        return None

    def __exit__(self, exc_type, exc, tb) -> bool:  # pragma: no cover - trivial
        if exc_type is None:
            return False
        return isinstance(exc, JobLookupError)
