"""One check of one site: fetch, persist, diff."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
import structlog

from ..config import MonitorSettings
from ..errors import DecryptionError, ProviderError
from ..providers import ProviderAdapter, get_adapter
from ..providers.base import ModelFetchResult
from ..security import SecretsCodec
from ..storage.models import (
    BillingInfo,
    CheckInResult,
    ModelDiff,
    ModelDiffRecord,
    ModelSnapshot,
    Site,
    models_to_json,
)
from ..storage.repository import MonitorRepository
from .checkin import detect_checkin_transition, perform_check_in, should_check_in, should_check_models
from .snapshot import EMPTY_HASH, compute_diff, compute_hash


logger = structlog.get_logger(__name__)

ClientFactory = Callable[[], httpx.AsyncClient]


@dataclass
class CheckResult:
    site_id: int
    site_name: str
    has_changes: bool
    snapshot_id: int
    diff: Optional[ModelDiff] = None
    check_in_only: bool = False
    check_in_changed: bool = False
    check_in_result: Optional[CheckInResult] = None
    billing: Optional[BillingInfo] = None


class SiteChecker:
    """Runs checks and writes exactly one snapshot per attempt."""

    def __init__(
        self,
        repo: MonitorRepository,
        codec: SecretsCodec,
        settings: MonitorSettings,
        client_factory: ClientFactory = httpx.AsyncClient,
    ):
        self.repo = repo
        self.codec = codec
        self.settings = settings
        self.client_factory = client_factory

    async def check_site(self, site: Site, *, manual: bool = False) -> CheckResult:
        """Check ``site`` once.

        Model-fetch failures write an error snapshot and are re-raised.
        Billing and check-in failures are recorded on the snapshot instead.

        Raises:
            DecryptionError: a stored credential could not be opened.
            ProviderError: the model listing could not be fetched.
            ConfigurationError: the site lacks a field its dialect needs.
        """
        if site.id is None:
            raise ValueError("Cannot check a site that has not been saved")
        api_key = self.codec.decrypt(site.api_key_enc)

        async with self.client_factory() as client:
            adapter = get_adapter(site, api_key, client=client, codec=self.codec, settings=self.settings)
            need_checkin = should_check_in(site, adapter.supports_checkin, manual=manual)
            need_models = should_check_models(site, manual=manual)
            logger.info(
                "Checking site",
                site_id=site.id,
                site_name=site.name,
                api_type=site.api_type.value,
                manual=manual,
                check_in=need_checkin,
                models=need_models,
            )

            checkin: Optional[CheckInResult] = None
            if need_checkin:
                checkin = await perform_check_in(adapter)
            previous_checkin = self.repo.latest_checkin_snapshot(site.id)
            checkin_changed = detect_checkin_transition(previous_checkin, checkin)

            if not need_models:
                return self._record_checkin_only(site, checkin, checkin_changed)

            models_outcome, billing_outcome = await asyncio.gather(
                adapter.fetch_models(),
                self._capture_billing(adapter),
                return_exceptions=True,
            )

        if isinstance(models_outcome, BaseException):
            if not isinstance(models_outcome, DecryptionError) and isinstance(models_outcome, Exception):
                self._record_failure(site, models_outcome, checkin)
            raise models_outcome
        if isinstance(billing_outcome, BaseException):
            raise billing_outcome

        return self._record_success(site, models_outcome, billing_outcome, checkin, checkin_changed)

    async def _capture_billing(self, adapter: ProviderAdapter) -> Optional[BillingInfo]:
        if adapter.site.unlimited_quota:
            return None
        try:
            return await adapter.fetch_billing()
        except DecryptionError:
            raise
        except Exception as e:
            logger.warning("Billing fetch failed", site_id=adapter.site.id, error=str(e))
            return BillingInfo(error=str(e) or type(e).__name__)

    def _record_checkin_only(
        self, site: Site, checkin: Optional[CheckInResult], checkin_changed: bool
    ) -> CheckResult:
        now = time.time()
        snapshot = self.repo.create_snapshot(
            ModelSnapshot(
                site_id=site.id,
                models_json="[]",
                hash=EMPTY_HASH,
                models_observed=False,
                fetched_ts=now,
                **_checkin_columns(checkin),
            )
        )
        self.repo.touch_site_checked(site.id, now)
        logger.info(
            "Check-in only run recorded",
            site_id=site.id,
            site_name=site.name,
            check_in_success=checkin.success if checkin else None,
            check_in_changed=checkin_changed,
        )
        return CheckResult(
            site_id=site.id,
            site_name=site.name,
            has_changes=False,
            snapshot_id=snapshot.id,
            check_in_only=True,
            check_in_changed=checkin_changed,
            check_in_result=checkin,
        )

    def _record_failure(self, site: Site, error: Exception, checkin: Optional[CheckInResult]) -> None:
        now = time.time()
        provider_error = error if isinstance(error, ProviderError) else None
        self.repo.create_snapshot(
            ModelSnapshot(
                site_id=site.id,
                models_json="[]",
                hash=EMPTY_HASH,
                models_observed=False,
                fetched_ts=now,
                raw_response=provider_error.raw_response if provider_error else None,
                error_message=str(error) or type(error).__name__,
                status_code=provider_error.status_code if provider_error else None,
                response_time_ms=provider_error.elapsed_ms if provider_error else None,
                **_checkin_columns(checkin),
            )
        )
        self.repo.touch_site_checked(site.id, now)
        logger.warning(
            "Model fetch failed, error snapshot recorded",
            site_id=site.id,
            site_name=site.name,
            error=str(error),
            error_type=type(error).__name__,
            status_code=provider_error.status_code if provider_error else None,
        )

    def _record_success(
        self,
        site: Site,
        fetched: ModelFetchResult,
        billing: Optional[BillingInfo],
        checkin: Optional[CheckInResult],
        checkin_changed: bool,
    ) -> CheckResult:
        now = time.time()
        digest = compute_hash(fetched.models)
        previous = self.repo.latest_successful_snapshot(site.id)

        snapshot = self.repo.create_snapshot(
            ModelSnapshot(
                site_id=site.id,
                models_json=models_to_json(fetched.models),
                hash=digest,
                fetched_ts=now,
                raw_response=fetched.raw_response,
                status_code=fetched.status_code,
                response_time_ms=fetched.response_time_ms,
                billing_limit=billing.limit if billing else None,
                billing_usage=billing.usage if billing else None,
                billing_error=billing.error if billing else None,
                **_checkin_columns(checkin),
            )
        )

        diff: Optional[ModelDiff] = None
        if previous is None:
            logger.info("Baseline snapshot recorded", site_id=site.id, site_name=site.name, models=len(fetched.models))
        elif previous.hash == digest:
            diff = ModelDiff()
        else:
            diff = compute_diff(previous.models, fetched.models)
            if diff.has_changes:
                self.repo.create_diff(
                    ModelDiffRecord(
                        site_id=site.id,
                        added_json=models_to_json(diff.added),
                        removed_json=models_to_json(diff.removed),
                        changed_json="[]",
                        snapshot_from_id=previous.id,
                        snapshot_to_id=snapshot.id,
                        diff_ts=now,
                    )
                )

        self.repo.touch_site_checked(site.id, now)
        has_changes = bool(diff and diff.has_changes)
        logger.info(
            "Site checked",
            site_id=site.id,
            site_name=site.name,
            models=len(fetched.models),
            has_changes=has_changes,
            added=len(diff.added) if diff else 0,
            removed=len(diff.removed) if diff else 0,
            billing_limit=billing.limit if billing else None,
            billing_usage=billing.usage if billing else None,
            billing_error=billing.error if billing else None,
            check_in_changed=checkin_changed,
            response_time_ms=round(fetched.response_time_ms, 1),
        )
        return CheckResult(
            site_id=site.id,
            site_name=site.name,
            has_changes=has_changes,
            snapshot_id=snapshot.id,
            diff=diff,
            check_in_changed=checkin_changed,
            check_in_result=checkin,
            billing=billing,
        )


def _checkin_columns(checkin: Optional[CheckInResult]) -> dict:
    if checkin is None:
        return {}
    return {
        "checkin_success": checkin.success,
        "checkin_message": checkin.message,
        "checkin_quota": checkin.quota,
        "checkin_error": checkin.error,
    }
