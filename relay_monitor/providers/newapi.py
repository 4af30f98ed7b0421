"""NewAPI and Veloera gateways.

Both authenticate management endpoints with the token plus an acting-as-user
header, and report quota in 1/500000 dollar units.
"""

from __future__ import annotations

import asyncio
import json
from typing import Optional

import httpx
import structlog

from ..errors import ConfigurationError
from ..storage.models import ApiType, BillingInfo, CheckInResult
from .base import ModelFetchResult, ProviderAdapter, normalize_models, quota_billing


logger = structlog.get_logger(__name__)


class NewApiAdapter(ProviderAdapter):
    api_type = ApiType.NEWAPI
    provider_name = "new-api"
    user_header = "new-api-user"

    def user_headers(self, **extra: str) -> dict[str, str]:
        user_id = (self.site.user_id or "").strip()
        if not user_id:
            raise ConfigurationError(f"{self.api_type.value} sites require a user id")
        return self.headers(**{self.user_header: user_id}, **extra)

    async def fetch_models(self) -> ModelFetchResult:
        resp = await self.request_json(
            "GET",
            self.endpoint("api/user/models"),
            headers=self.user_headers(),
            timeout=self.settings.models_timeout,
        )
        if not isinstance(resp.data, dict) or not resp.data.get("success") or not isinstance(resp.data.get("data"), list):
            raise self.malformed("Invalid response format", resp)
        return ModelFetchResult(
            models=normalize_models(resp.data["data"], self.provider_name),
            raw_response=resp.text,
            status_code=resp.status_code,
            response_time_ms=resp.elapsed_ms,
        )

    async def fetch_billing(self) -> Optional[BillingInfo]:
        resp = await self.request_json(
            "GET",
            self.endpoint("api/user/self"),
            headers=self.user_headers(),
            timeout=self.settings.billing_timeout,
        )
        if not isinstance(resp.data, dict) or not resp.data.get("success") or not isinstance(resp.data.get("data"), dict):
            raise self.malformed("Invalid user info response", resp)
        return quota_billing(resp.data["data"])


class VeloeraAdapter(NewApiAdapter):
    api_type = ApiType.VELOERA
    provider_name = "veloera"
    user_header = "veloera-user"
    supports_checkin = True

    async def fetch_checkin(self) -> CheckInResult:
        """POST the daily check-in. Never raises for upstream problems."""
        if not (self.site.user_id or "").strip():
            return CheckInResult(success=False, message="Missing user id", error="Check-in requires a user id")

        url = self.endpoint("api/user/check_in")
        logger.info("Check-in started", site_id=self.site.id, site_name=self.site.name, url=url)
        try:
            resp = await asyncio.wait_for(
                self.client.post(
                    url,
                    headers=self.user_headers(**{"Cache-Control": "no-store"}),
                    timeout=self.settings.checkin_timeout,
                ),
                timeout=self.settings.checkin_timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            return CheckInResult(
                success=False,
                message="Check-in failed",
                error=f"Request timed out after {self.settings.checkin_timeout:g}s",
            )
        except httpx.HTTPError as e:
            return CheckInResult(success=False, message="Check-in failed", error=f"{type(e).__name__}: {e}")

        # Gateways report check-in outcomes in the body even on 4xx.
        text = resp.text
        try:
            result = json.loads(text)
        except ValueError:
            logger.warning("Check-in response not JSON", site_id=self.site.id, status_code=resp.status_code)
            return CheckInResult(
                success=False,
                message="Check-in response could not be parsed",
                error=f"Invalid response format: {text[:100]}",
            )
        if not isinstance(result, dict):
            return CheckInResult(
                success=False,
                message="Check-in response could not be parsed",
                error=f"Invalid response format: {text[:100]}",
            )

        if result.get("success"):
            data = result.get("data") if isinstance(result.get("data"), dict) else {}
            quota = data.get("quota") or None
            message = result.get("message") or "Check-in succeeded"
            logger.info("Check-in succeeded", site_id=self.site.id, message=message, quota=quota)
            return CheckInResult(success=True, message=message, quota=quota)

        error = result.get("message") or result.get("error") or "Check-in failed"
        logger.info("Check-in rejected", site_id=self.site.id, error=error)
        return CheckInResult(success=False, message=error, error=error)
