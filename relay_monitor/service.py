"""Operations the management surface calls into."""

from __future__ import annotations

import json
from dataclasses import fields
from typing import Any, Optional

import structlog

from .checker import CheckResult, SiteChecker
from .errors import ConfigurationError, SiteNotFoundError
from .notifications import EmailNotifier
from .scheduler import BatchSummary, ScheduleCoordinator
from .security import SecretsCodec
from .storage.models import (
    ApiType,
    BillingAuthType,
    CheckInMode,
    EmailConfig,
    ModelDiffRecord,
    ModelSnapshot,
    ScheduleConfig,
    Site,
)
from .storage.repository import MonitorRepository


logger = structlog.get_logger(__name__)

_SITE_FIELDS = {f.name for f in fields(Site)}
_PLAIN_SECRETS = {"api_key": "api_key_enc", "billing_auth_value": "billing_auth_value_enc"}
_READ_ONLY = {"id", "created_ts", "updated_ts", "last_checked_ts", "api_key_enc", "billing_auth_value_enc"}


class MonitorService:
    """Site and policy management plus manual triggers.

    Every site or schedule mutation is followed by the coordinator's
    re-derivation so jobs always match stored configuration.
    """

    def __init__(
        self,
        repo: MonitorRepository,
        codec: SecretsCodec,
        checker: SiteChecker,
        notifier: EmailNotifier,
        coordinator: ScheduleCoordinator,
        *,
        default_global_timezone: str = "Asia/Shanghai",
    ):
        self.repo = repo
        self.codec = codec
        self.checker = checker
        self.notifier = notifier
        self.coordinator = coordinator
        self.default_global_timezone = default_global_timezone

    # --- sites ---

    def _apply_site_changes(self, site: Site, changes: dict[str, Any]) -> Site:
        for key, value in changes.items():
            if key in _PLAIN_SECRETS:
                setattr(site, _PLAIN_SECRETS[key], self.codec.encrypt(value) if value else None)
                continue
            if key not in _SITE_FIELDS or key in _READ_ONLY:
                raise ValueError(f"Unknown or read-only site field: {key}")
            if key == "api_type":
                value = ApiType.parse(value)
            elif key == "checkin_mode":
                value = CheckInMode.parse(value)
            elif key == "billing_auth_type" and value is not None:
                value = BillingAuthType(value)
            setattr(site, key, value)
        if not site.api_key_enc:
            raise ConfigurationError("A site requires an API key")
        return site

    def create_site(self, name: str, base_url: str, api_key: str, **options: Any) -> Site:
        site = Site(name=name, base_url=base_url.strip(), api_key_enc="")
        self._apply_site_changes(site, {"api_key": api_key, **options})
        created = self.repo.create_site(site)
        self.coordinator.on_site_updated(created)
        logger.info("Site created", site_id=created.id, site_name=created.name, api_type=created.api_type.value)
        return created

    def update_site(self, site_id: int, **changes: Any) -> Site:
        site = self.get_site(site_id)
        self._apply_site_changes(site, changes)
        updated = self.repo.update_site(site)
        self.coordinator.on_site_updated(updated)
        logger.info("Site updated", site_id=site_id, fields=sorted(changes))
        return updated

    def delete_site(self, site_id: int) -> None:
        self.get_site(site_id)
        self.repo.delete_site(site_id)
        self.coordinator.on_site_removed(site_id)
        logger.info("Site deleted", site_id=site_id)

    def get_site(self, site_id: int) -> Site:
        site = self.repo.get_site(site_id)
        if site is None:
            raise SiteNotFoundError(f"Site {site_id} not found")
        return site

    def list_sites(self) -> list[Site]:
        return self.repo.list_sites()

    # --- manual triggers ---

    async def check_site(self, site_id: int, *, notify: bool = True) -> CheckResult:
        """Manual check. Errors propagate to the caller; notification failures do not."""
        site = self.get_site(site_id)
        result = await self.checker.check_site(site, manual=True)
        if notify and result.has_changes and result.diff is not None:
            await self.notifier.notify_site_change(site.name, result.diff, result.check_in_result)
        return result

    async def check_in(self, site_id: int) -> CheckResult:
        """Manual check-in. Runs through the same path as a manual check, without notifying."""
        site = self.get_site(site_id)
        if not site.checkin_enabled:
            raise ConfigurationError(f"Check-in is not enabled for site {site_id}")
        return await self.checker.check_site(site, manual=True)

    async def run_global_now(self) -> BatchSummary:
        return await self.coordinator.run_global_batch()

    # --- history ---

    def list_snapshots(self, site_id: int, limit: int = 50) -> list[ModelSnapshot]:
        self.get_site(site_id)
        return self.repo.list_snapshots(site_id, limit)

    def list_diffs(self, site_id: int, limit: int = 50) -> list[ModelDiffRecord]:
        self.get_site(site_id)
        return self.repo.list_diffs(site_id, limit)

    # --- policies ---

    def get_schedule_config(self) -> ScheduleConfig:
        return self.repo.get_schedule_config() or ScheduleConfig(timezone=self.default_global_timezone)

    def update_schedule_config(self, **changes: Any) -> ScheduleConfig:
        config = self.get_schedule_config()
        for key, value in changes.items():
            if key == "last_run_ts" or not hasattr(config, key):
                raise ValueError(f"Unknown or read-only schedule field: {key}")
            setattr(config, key, value)
        if not (0 <= int(config.hour) <= 23 and 0 <= int(config.minute) <= 59):
            raise ValueError(f"Invalid schedule time {config.hour}:{config.minute}")
        if int(config.interval_seconds) < 0:
            raise ValueError("interval_seconds must not be negative")
        saved = self.repo.save_schedule_config(config)
        self.coordinator.reconcile()
        logger.info("Schedule config updated", fields=sorted(changes))
        return saved

    def get_email_config(self) -> EmailConfig:
        return self.repo.get_email_config() or EmailConfig()

    def update_email_config(
        self,
        *,
        enabled: Optional[bool] = None,
        api_key: Optional[str] = None,
        notify_emails: Any = None,
    ) -> EmailConfig:
        """Update email policy. ``notify_emails`` may be a list or a delimited string."""
        config = self.get_email_config()
        if enabled is not None:
            config.enabled = bool(enabled)
        if api_key:
            config.api_key_enc = self.codec.encrypt(api_key)
        if notify_emails is not None:
            if isinstance(notify_emails, (list, tuple)):
                notify_emails = json.dumps([str(e).strip() for e in notify_emails if str(e).strip()])
            config.notify_emails = str(notify_emails)
        saved = self.repo.save_email_config(config)
        logger.info("Email config updated", enabled=saved.enabled)
        return saved
