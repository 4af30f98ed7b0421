"""OpenAI-style gateways, plus the catch-all dialect with custom billing."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import structlog

from ..errors import DecryptionError
from ..storage.models import ApiType, BillingAuthType, BillingInfo
from .base import ModelFetchResult, ProviderAdapter, normalize_models, to_float


logger = structlog.get_logger(__name__)

# Highest priority first.
LIMIT_FALLBACK_FIELDS = ("system_hard_limit_usd", "balance", "quota", "limit")
USAGE_FALLBACK_FIELDS = ("total_usage", "consumed", "used", "usage")


def get_nested_value(data: Any, path: str) -> Any:
    """Look up a dotted path such as ``data.balance``; None when any segment is missing."""
    current = data
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def extract_custom_billing(
    data: Any,
    *,
    limit_field: Optional[str] = None,
    usage_field: Optional[str] = None,
    ratio: Optional[float] = None,
) -> BillingInfo:
    limit: Optional[float] = None
    usage: Optional[float] = None

    if limit_field and usage_field:
        limit = to_float(get_nested_value(data, limit_field))
        usage = to_float(get_nested_value(data, usage_field))
    elif isinstance(data, dict):
        for name in LIMIT_FALLBACK_FIELDS:
            limit = to_float(data.get(name))
            if limit is not None:
                break
        for name in USAGE_FALLBACK_FIELDS:
            usage = to_float(data.get(name))
            if usage is not None:
                if name == "total_usage":
                    # cents
                    usage *= 0.01
                break

    if ratio:
        limit = None if limit is None else limit / ratio
        usage = None if usage is None else usage / ratio

    return BillingInfo(limit=limit, usage=usage)


class OpenAICompatibleAdapter(ProviderAdapter):
    api_type = ApiType.OPENAI_COMPATIBLE

    async def fetch_models(self) -> ModelFetchResult:
        resp = await self.request_json(
            "GET", self.endpoint("v1/models"), headers=self.headers(), timeout=self.settings.models_timeout
        )
        return ModelFetchResult(
            models=normalize_models(resp.data, self.provider_name),
            raw_response=resp.text,
            status_code=resp.status_code,
            response_time_ms=resp.elapsed_ms,
        )

    async def _fetch_subscription(self) -> Optional[float]:
        resp = await self.request_json(
            "GET",
            self.endpoint("v1/dashboard/billing/subscription"),
            headers=self.headers(),
            timeout=self.settings.billing_timeout,
        )
        if not isinstance(resp.data, dict):
            raise self.malformed("Subscription response is not an object", resp)
        return to_float(resp.data.get("system_hard_limit_usd"))

    async def _fetch_usage(self) -> Optional[float]:
        resp = await self.request_json(
            "GET",
            self.endpoint("v1/dashboard/billing/usage"),
            headers=self.headers(),
            timeout=self.settings.billing_timeout,
        )
        if not isinstance(resp.data, dict):
            raise self.malformed("Usage response is not an object", resp)
        total = to_float(resp.data.get("total_usage"))
        return None if total is None else total * 0.01

    async def fetch_billing(self) -> Optional[BillingInfo]:
        subscription, usage = await asyncio.gather(
            self._fetch_subscription(), self._fetch_usage(), return_exceptions=True
        )

        errors: list[str] = []
        limit_value: Optional[float] = None
        usage_value: Optional[float] = None
        for label, outcome in (("Subscription", subscription), ("Usage", usage)):
            if isinstance(outcome, DecryptionError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.warning("Billing lookup failed", site_id=self.site.id, part=label, error=str(outcome))
                errors.append(f"{label}: {outcome}")
            elif label == "Subscription":
                limit_value = outcome
            else:
                usage_value = outcome

        return BillingInfo(limit=limit_value, usage=usage_value, error="; ".join(errors) or None)


class OtherAdapter(OpenAICompatibleAdapter):
    """Unknown gateways: OpenAI model listing, optionally a custom billing endpoint."""

    api_type = ApiType.OTHER

    def _billing_auth_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self.settings.user_agent,
        }
        if not self.site.billing_auth_value_enc:
            return headers

        value = self.codec.decrypt(self.site.billing_auth_value_enc)
        if self.site.billing_auth_type == BillingAuthType.TOKEN:
            headers["Authorization"] = value if value.startswith("Bearer ") else f"Bearer {value}"
        elif self.site.billing_auth_type == BillingAuthType.COOKIE:
            headers["Cookie"] = value
        return headers

    async def fetch_billing(self) -> Optional[BillingInfo]:
        if not self.site.billing_url:
            return await super().fetch_billing()

        resp = await self.request_json(
            "GET",
            self.site.billing_url,
            headers=self._billing_auth_headers(),
            timeout=self.settings.billing_timeout,
        )
        billing = extract_custom_billing(
            resp.data,
            limit_field=self.site.billing_limit_field,
            usage_field=self.site.billing_usage_field,
            ratio=self.site.billing_ratio,
        )
        logger.info(
            "Custom billing fetched",
            site_id=self.site.id,
            limit=billing.limit,
            usage=billing.usage,
            mapped=bool(self.site.billing_limit_field and self.site.billing_usage_field),
        )
        return billing
