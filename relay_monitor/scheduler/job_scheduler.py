"""Cron job registry on top of APScheduler."""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger


logger = structlog.get_logger(__name__)

# Cron counts weekdays from Sunday (0 or 7); APScheduler counts from Monday.
CRON_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")

# Overlapping firings of the same job are allowed to run side by side.
MAX_CONCURRENT_RUNS = 3


def _cron_weekday(token: str) -> int:
    token = token.strip().lower()
    if token.isdigit():
        value = int(token)
        if not 0 <= value <= 7:
            raise ValueError(f"Invalid weekday {token!r}")
        return value
    if token[:3] in CRON_WEEKDAYS:
        return CRON_WEEKDAYS.index(token[:3])
    raise ValueError(f"Invalid weekday {token!r}")


def cron_day_of_week(field: str) -> str:
    """Rewrite a cron day-of-week field as APScheduler weekday names.

    Supports lists, ranges and steps, e.g. ``1-5``, ``0,6``, ``*/2``, ``5-7``.
    """
    if field in ("*", "?"):
        return "*"

    days = set()
    for term in field.split(","):
        span, _, step_text = term.partition("/")
        step = int(step_text) if step_text else 1
        if span in ("*", "?"):
            first, last = 0, 6
        elif "-" in span:
            low, _, high = span.partition("-")
            first, last = _cron_weekday(low), _cron_weekday(high)
        else:
            first = _cron_weekday(span)
            last = 6 if step_text else first
        if step < 1 or first > last:
            raise ValueError(f"Invalid day-of-week term {term!r}")
        days.update(day % 7 for day in range(first, last + 1, step))

    return ",".join(CRON_WEEKDAYS[day] for day in sorted(days))


def build_cron_trigger(cron_expression: str, tz: Optional[str] = None) -> CronTrigger:
    """Build a trigger from a 5-field cron expression.

    Raises:
        ValueError: the expression or timezone is not valid.
    """
    # Format: "minute hour day month day_of_week"
    cron_parts = (cron_expression or "").split()
    if len(cron_parts) != 5:
        raise ValueError(f"Invalid cron expression: {cron_expression!r}")

    try:
        return CronTrigger(
            minute=cron_parts[0],
            hour=cron_parts[1],
            day=cron_parts[2],
            month=cron_parts[3],
            day_of_week=cron_day_of_week(cron_parts[4]),
            timezone=tz or "UTC",
        )
    except (ValueError, LookupError) as e:
        raise ValueError(f"Invalid cron expression {cron_expression!r} ({tz}): {e}") from e


class JobScheduler:
    """Manages the process's cron jobs using APScheduler."""

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self.scheduler = scheduler or AsyncIOScheduler()
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.running = False

    async def start(self):
        """Start the job scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.start()
        self.running = True
        logger.info("Job scheduler started")

    async def stop(self):
        """Stop the job scheduler."""
        if not self.running:
            return

        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Job scheduler stopped")

    def has_job(self, job_id: str) -> bool:
        return job_id in self.jobs

    def job_ids(self) -> List[str]:
        return list(self.jobs)

    def job_spec(self, job_id: str) -> Optional[tuple]:
        info = self.jobs.get(job_id)
        if info is None:
            return None
        return info["expression"], info["timezone"]

    def add_cron_job(
        self,
        job_id: str,
        func: Callable,
        cron_expression: str,
        tz: Optional[str] = None,
        args: Optional[tuple] = None,
        kwargs: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ):
        """Add or replace a cron-scheduled job."""
        trigger = build_cron_trigger(cron_expression, tz)

        if job_id in self.jobs:
            logger.info("Job already exists, replacing", job_id=job_id)
            self.remove_job(job_id)

        job = self.scheduler.add_job(
            func=func,
            trigger=trigger,
            id=job_id,
            args=args or (),
            kwargs=kwargs or {},
            name=description or job_id,
            replace_existing=True,
            max_instances=MAX_CONCURRENT_RUNS,
        )

        self.jobs[job_id] = {
            "job": job,
            "expression": cron_expression,
            "timezone": tz or "UTC",
            "description": description,
            "added_at": datetime.now(timezone.utc),
        }

        logger.info("Added cron job", job_id=job_id, cron=cron_expression, timezone=tz, description=description)

    def remove_job(self, job_id: str) -> bool:
        """Remove a scheduled job."""
        if job_id not in self.jobs:
            return False

        del self.jobs[job_id]
        try:
            self.scheduler.remove_job(job_id)
        except Exception as e:
            logger.error("Failed to remove job", job_id=job_id, error=str(e))
            return False
        logger.info("Removed job", job_id=job_id)
        return True

    def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Get status information for a job."""
        if job_id not in self.jobs:
            return None

        job_info = self.jobs[job_id]
        job = self.scheduler.get_job(job_id) or job_info["job"]
        next_run = getattr(job, "next_run_time", None)
        return {
            "job_id": job_id,
            "cron": job_info["expression"],
            "timezone": job_info["timezone"],
            "next_run": next_run.isoformat() if next_run else None,
            "added_at": job_info["added_at"].isoformat(),
            "description": job_info.get("description"),
        }

    def list_jobs(self) -> List[Dict[str, Any]]:
        """List all scheduled jobs."""
        return [status for status in (self.get_job_status(job_id) for job_id in self.jobs) if status]
