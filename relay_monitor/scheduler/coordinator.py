"""Ownership of site checks between individual cron jobs and the global batch."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import structlog

from ..checker import CheckResult, SiteChecker
from ..notifications import EmailNotifier, FailedSite, NotificationResult, SiteChange
from ..storage.models import ModelDiff, Site
from ..storage.repository import MonitorRepository
from .job_scheduler import JobScheduler
from .pacing import FixedDelayPacer
from .reconcile import (
    GLOBAL_JOB_ID,
    JobSpec,
    candidate_sites,
    desired_state,
    global_job_spec,
    site_job_id,
    site_job_spec,
)


logger = structlog.get_logger(__name__)


@dataclass
class BatchSummary:
    checked: int = 0
    changes: list[SiteChange] = field(default_factory=list)
    failures: list[FailedSite] = field(default_factory=list)
    notification: Optional[NotificationResult] = None
    started_ts: float = 0.0
    finished_ts: float = 0.0


class ScheduleCoordinator:
    """Keeps the scheduler's jobs in line with sites and the global policy."""

    def __init__(
        self,
        repo: MonitorRepository,
        checker: SiteChecker,
        notifier: EmailNotifier,
        scheduler: Optional[JobScheduler] = None,
        *,
        default_site_timezone: str = "UTC",
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.repo = repo
        self.checker = checker
        self.notifier = notifier
        self.scheduler = scheduler or JobScheduler()
        self.default_site_timezone = default_site_timezone
        self._sleep = sleep

    async def start(self):
        await self.scheduler.start()
        self.reconcile()
        for status in self.scheduler.list_jobs():
            logger.info("Job scheduled", **status)
        logger.info("Schedule coordinator started", jobs=len(self.scheduler.jobs))

    async def stop(self):
        await self.scheduler.stop()
        logger.info("Schedule coordinator stopped")

    # --- reconciliation ---

    def reconcile(self) -> None:
        """Re-derive every job from the stored sites and global policy."""
        config = self.repo.get_schedule_config()
        sites = self.repo.list_sites()
        desired = desired_state(sites, config, self.default_site_timezone)

        wanted_ids = {site_job_id(site_id) for site_id, spec in desired.items() if spec is not None}
        for job_id in self.scheduler.job_ids():
            if job_id.startswith("site:") and job_id not in wanted_ids:
                self.scheduler.remove_job(job_id)

        for site_id, spec in desired.items():
            if spec is not None:
                self._ensure_site_job(site_id, spec)

        self._apply_global_job(global_job_spec(config))
        logger.info(
            "Schedules reconciled",
            sites=len(sites),
            individual_jobs=len(wanted_ids),
            global_enabled=bool(config and config.enabled),
            override_individual=bool(config and config.override_individual),
        )

    def on_site_updated(self, site: Site) -> None:
        """Re-evaluate one site after its schedule or config changed."""
        if site.id is None:
            return
        self.scheduler.remove_job(site_job_id(site.id))
        spec = site_job_spec(site, self.repo.get_schedule_config(), self.default_site_timezone)
        if spec is not None:
            self._ensure_site_job(site.id, spec)

    def on_site_removed(self, site_id: int) -> None:
        self.scheduler.remove_job(site_job_id(site_id))

    def _ensure_site_job(self, site_id: int, spec: JobSpec) -> None:
        job_id = site_job_id(site_id)
        if self.scheduler.job_spec(job_id) == (spec.cron, spec.timezone):
            return
        try:
            self.scheduler.add_cron_job(
                job_id=job_id,
                func=self.run_site_job,
                cron_expression=spec.cron,
                tz=spec.timezone,
                args=(site_id,),
                description=f"Individual check for site {site_id}",
            )
        except ValueError as e:
            self.scheduler.remove_job(job_id)
            logger.error("Invalid individual schedule, site not scheduled", site_id=site_id, cron=spec.cron, error=str(e))

    def _apply_global_job(self, spec: Optional[JobSpec]) -> None:
        if spec is None:
            self.scheduler.remove_job(GLOBAL_JOB_ID)
            return
        if self.scheduler.job_spec(GLOBAL_JOB_ID) == (spec.cron, spec.timezone):
            return
        try:
            self.scheduler.add_cron_job(
                job_id=GLOBAL_JOB_ID,
                func=self.run_global_batch,
                cron_expression=spec.cron,
                tz=spec.timezone,
                description="Global scheduled check",
            )
        except ValueError as e:
            self.scheduler.remove_job(GLOBAL_JOB_ID)
            logger.error("Invalid global schedule", cron=spec.cron, timezone=spec.timezone, error=str(e))

    # --- job bodies ---

    async def run_site_job(self, site_id: int) -> Optional[CheckResult]:
        """Individual cron firing: check one site and notify immediately."""
        site = self.repo.get_site(site_id)
        if site is None:
            logger.warning("Scheduled site no longer exists, removing job", site_id=site_id)
            self.on_site_removed(site_id)
            return None

        try:
            result = await self.checker.check_site(site)
        except Exception as e:
            logger.error("Scheduled site check failed", site_id=site_id, site_name=site.name, error=str(e))
            return None

        if result.has_changes and result.diff is not None:
            await self.notifier.notify_site_change(site.name, result.diff, result.check_in_result)
        return result

    async def run_global_batch(self) -> BatchSummary:
        """Check every candidate site in turn, then send one digest."""
        summary = BatchSummary(started_ts=time.time())
        config = self.repo.get_schedule_config()
        sites = candidate_sites(self.repo.list_sites(), config)
        interval = config.interval_seconds if config else 0
        pacer = FixedDelayPacer(interval, sleep=self._sleep or asyncio.sleep)

        logger.info("Global batch started", sites=len(sites), interval_seconds=interval)
        for site in sites:
            await pacer.wait_turn()
            summary.checked += 1
            try:
                result = await self.checker.check_site(site)
            except Exception as e:
                logger.error("Site check failed in global batch", site_id=site.id, site_name=site.name, error=str(e))
                summary.failures.append(FailedSite(site_name=site.name, error=str(e) or type(e).__name__))
                continue

            if result.has_changes and result.diff is not None:
                summary.changes.append(SiteChange(site.name, result.diff, result.check_in_result))
            elif result.check_in_changed and result.check_in_result is not None:
                summary.changes.append(SiteChange(site.name, result.diff or ModelDiff(), result.check_in_result))

        if summary.changes or summary.failures:
            summary.notification = await self.notifier.notify_batch(summary.changes, summary.failures)

        summary.finished_ts = time.time()
        self.repo.touch_schedule_last_run(summary.finished_ts)
        logger.info(
            "Global batch finished",
            checked=summary.checked,
            changed=len(summary.changes),
            failed=len(summary.failures),
            notification=summary.notification.status if summary.notification else None,
        )
        return summary
