"""Gating and change detection for the daily check-in."""

from __future__ import annotations

from typing import Optional

import structlog

from ..errors import DecryptionError
from ..providers.base import ProviderAdapter
from ..storage.models import CheckInMode, CheckInResult, ModelSnapshot, Site


logger = structlog.get_logger(__name__)


def should_check_in(site: Site, supports_checkin: bool, *, manual: bool = False) -> bool:
    """Manual runs check in whenever it is enabled; scheduled runs also honour the mode."""
    if not (supports_checkin and site.checkin_enabled):
        return False
    if manual:
        return True
    return site.checkin_mode in (CheckInMode.CHECKIN_ONLY, CheckInMode.BOTH)


def should_check_models(site: Site, *, manual: bool = False) -> bool:
    if manual:
        return True
    return site.checkin_mode in (CheckInMode.MODEL_ONLY, CheckInMode.BOTH)


async def perform_check_in(adapter: ProviderAdapter) -> CheckInResult:
    """Run the adapter's check-in, folding unexpected errors into a failed result."""
    try:
        return await adapter.fetch_checkin()
    except DecryptionError:
        raise
    except Exception as e:
        logger.error("Check-in raised", site_id=adapter.site.id, error=str(e), error_type=type(e).__name__)
        return CheckInResult(success=False, message="Check-in failed", error=str(e) or type(e).__name__)


def detect_checkin_transition(previous: Optional[ModelSnapshot], current: Optional[CheckInResult]) -> bool:
    """Whether this check-in outcome differs from the last recorded one.

    ``previous`` is the latest snapshot with a recorded check-in, from any kind of run.
    """
    if current is None:
        return False
    prior = previous.checkin_result if previous is not None else None
    if prior is None:
        return True
    if prior.success != current.success:
        return True
    return not current.success and prior.error != current.error
