"""Which cron jobs should exist for a given set of sites and global policy."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..storage.models import ScheduleConfig, Site

GLOBAL_JOB_ID = "global"


def site_job_id(site_id: int) -> str:
    return f"site:{site_id}"


@dataclass(frozen=True)
class JobSpec:
    cron: str
    timezone: str


class SiteScheduleState(str, Enum):
    UNSCHEDULED = "unscheduled"
    INDIVIDUAL = "individual"
    GLOBAL = "global"


def global_active(config: Optional[ScheduleConfig]) -> bool:
    return bool(config and config.enabled)


def override_active(config: Optional[ScheduleConfig]) -> bool:
    return global_active(config) and bool(config.override_individual)


def site_state(site: Site, config: Optional[ScheduleConfig]) -> SiteScheduleState:
    if override_active(config):
        return SiteScheduleState.GLOBAL
    if site.has_individual_schedule:
        return SiteScheduleState.INDIVIDUAL
    if global_active(config):
        return SiteScheduleState.GLOBAL
    return SiteScheduleState.UNSCHEDULED


def site_job_spec(site: Site, config: Optional[ScheduleConfig], default_timezone: str = "UTC") -> Optional[JobSpec]:
    if site_state(site, config) is not SiteScheduleState.INDIVIDUAL:
        return None
    return JobSpec(cron=site.schedule_cron.strip(), timezone=site.timezone or default_timezone)


def desired_state(
    sites: list[Site], config: Optional[ScheduleConfig], default_timezone: str = "UTC"
) -> dict[int, Optional[JobSpec]]:
    """Map every site id to the individual job it should have, or None."""
    return {site.id: site_job_spec(site, config, default_timezone) for site in sites if site.id is not None}


def global_job_spec(config: Optional[ScheduleConfig]) -> Optional[JobSpec]:
    if not global_active(config):
        return None
    return JobSpec(cron=config.cron_expression, timezone=config.timezone)


def candidate_sites(sites: list[Site], config: Optional[ScheduleConfig]) -> list[Site]:
    """Sites a global batch run should check, in id order."""
    if override_active(config):
        chosen = list(sites)
    else:
        chosen = [s for s in sites if not s.has_individual_schedule]
    return sorted(chosen, key=lambda s: s.id or 0)
