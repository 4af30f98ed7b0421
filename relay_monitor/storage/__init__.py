"""Persistence for sites, observations and policies."""

from .models import (
    ApiType,
    BillingAuthType,
    BillingInfo,
    CheckInMode,
    CheckInResult,
    EmailConfig,
    ModelDiff,
    ModelDiffRecord,
    ModelInfo,
    ModelSnapshot,
    ScheduleConfig,
    Site,
)
from .repository import MonitorRepository

__all__ = [
    "ApiType",
    "BillingAuthType",
    "BillingInfo",
    "CheckInMode",
    "CheckInResult",
    "EmailConfig",
    "ModelDiff",
    "ModelDiffRecord",
    "ModelInfo",
    "ModelSnapshot",
    "MonitorRepository",
    "ScheduleConfig",
    "Site",
]
