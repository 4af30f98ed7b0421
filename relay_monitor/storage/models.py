"""Entities persisted by the monitor and the values that flow between stages."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ApiType(str, Enum):
    """Upstream gateway dialect."""

    OPENAI_COMPATIBLE = "openai-compatible"
    NEWAPI = "newapi"
    VELOERA = "veloera"
    DONEHUB = "donehub"
    VOAPI = "voapi"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "ApiType":
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.OTHER


class CheckInMode(str, Enum):
    """What a scheduled run does for a site with check-in enabled."""

    MODEL_ONLY = "model"
    CHECKIN_ONLY = "checkin"
    BOTH = "both"

    @classmethod
    def parse(cls, value: Any) -> "CheckInMode":
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.BOTH


class BillingAuthType(str, Enum):
    TOKEN = "token"
    COOKIE = "cookie"


@dataclass(frozen=True)
class ModelInfo:
    """One entry of a canonical model list."""

    id: str
    object: str = "model"
    owned_by: str = "unknown"
    created: float = 0

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "object": self.object, "owned_by": self.owned_by, "created": self.created}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModelInfo":
        return cls(
            id=str(data.get("id") or ""),
            object=str(data.get("object") or "model"),
            owned_by=str(data.get("owned_by") or "unknown"),
            created=data.get("created") or 0,
        )


def models_to_json(models: list[ModelInfo]) -> str:
    return json.dumps([m.to_dict() for m in models], ensure_ascii=False)


def models_from_json(raw: str | None) -> list[ModelInfo]:
    try:
        data = json.loads(raw or "[]")
    except (TypeError, ValueError):
        return []
    if not isinstance(data, list):
        return []
    return [ModelInfo.from_dict(item) for item in data if isinstance(item, dict)]


@dataclass(frozen=True)
class ModelDiff:
    """Added/removed models between two successful observations.

    ``changed`` is part of the record shape but is never populated: only
    presence and absence of a model id are tracked.
    """

    added: list[ModelInfo] = field(default_factory=list)
    removed: list[ModelInfo] = field(default_factory=list)
    changed: list[ModelInfo] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": [m.to_dict() for m in self.added],
            "removed": [m.to_dict() for m in self.removed],
            "changed": [m.to_dict() for m in self.changed],
        }


@dataclass(frozen=True)
class CheckInResult:
    success: bool
    message: str | None = None
    quota: float | None = None
    error: str | None = None


@dataclass(frozen=True)
class BillingInfo:
    """Billing figures in major currency units.

    ``limit`` is the total ever granted (remaining balance plus usage) for
    gateways that report a balance.
    """

    limit: float | None = None
    usage: float | None = None
    error: str | None = None


@dataclass
class Site:
    """A monitored gateway endpoint."""

    name: str
    base_url: str
    api_key_enc: str
    api_type: ApiType = ApiType.OTHER
    id: int | None = None
    user_id: str | None = None
    unlimited_quota: bool = False
    billing_url: str | None = None
    billing_limit_field: str | None = None
    billing_usage_field: str | None = None
    billing_ratio: float | None = None
    billing_auth_type: BillingAuthType | None = None
    billing_auth_value_enc: str | None = None
    checkin_enabled: bool = False
    checkin_mode: CheckInMode = CheckInMode.BOTH
    schedule_cron: str | None = None
    timezone: str | None = None
    last_checked_ts: float | None = None
    created_ts: float | None = None
    updated_ts: float | None = None

    @property
    def has_individual_schedule(self) -> bool:
        return bool((self.schedule_cron or "").strip())


@dataclass
class ModelSnapshot:
    """One observation of a site. Never updated after it is written.

    ``error_message is None`` marks a successful observation.
    ``models_observed`` is false for check-in-only runs and error snapshots;
    only successful snapshots that observed models belong to diff lineage.
    """

    site_id: int
    models_json: str
    hash: str
    fetched_ts: float
    models_observed: bool = True
    id: int | None = None
    raw_response: str | None = None
    error_message: str | None = None
    status_code: int | None = None
    response_time_ms: float | None = None
    billing_limit: float | None = None
    billing_usage: float | None = None
    billing_error: str | None = None
    checkin_success: bool | None = None
    checkin_message: str | None = None
    checkin_quota: float | None = None
    checkin_error: str | None = None

    @property
    def models(self) -> list[ModelInfo]:
        return models_from_json(self.models_json)

    @property
    def checkin_result(self) -> CheckInResult | None:
        if self.checkin_success is None:
            return None
        return CheckInResult(
            success=self.checkin_success,
            message=self.checkin_message,
            quota=self.checkin_quota,
            error=self.checkin_error,
        )


@dataclass
class ModelDiffRecord:
    site_id: int
    added_json: str
    removed_json: str
    changed_json: str
    snapshot_from_id: int
    snapshot_to_id: int
    diff_ts: float
    id: int | None = None

    @property
    def added(self) -> list[ModelInfo]:
        return models_from_json(self.added_json)

    @property
    def removed(self) -> list[ModelInfo]:
        return models_from_json(self.removed_json)


@dataclass
class ScheduleConfig:
    """Singleton global schedule policy."""

    enabled: bool = False
    hour: int = 9
    minute: int = 0
    timezone: str = "Asia/Shanghai"
    interval_seconds: int = 30
    override_individual: bool = False
    last_run_ts: float | None = None

    @property
    def cron_expression(self) -> str:
        return f"{int(self.minute)} {int(self.hour)} * * *"


@dataclass
class EmailConfig:
    """Singleton notification policy.

    ``notify_emails`` is kept as the operator entered it: a JSON list or a
    comma/semicolon separated string.
    """

    enabled: bool = False
    api_key_enc: str | None = None
    notify_emails: str = ""
