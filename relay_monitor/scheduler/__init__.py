"""Scheduler module for orchestrating site checks."""

from .coordinator import BatchSummary, ScheduleCoordinator
from .job_scheduler import JobScheduler
from .pacing import FixedDelayPacer
from .reconcile import JobSpec, SiteScheduleState, candidate_sites, desired_state, site_state

__all__ = [
    "BatchSummary",
    "FixedDelayPacer",
    "JobScheduler",
    "JobSpec",
    "ScheduleCoordinator",
    "SiteScheduleState",
    "candidate_sites",
    "desired_state",
    "site_state",
]
