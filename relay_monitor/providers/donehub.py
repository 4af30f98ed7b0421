from __future__ import annotations

from typing import Optional

from ..storage.models import ApiType, BillingInfo, ModelInfo
from .base import ModelFetchResult, ProviderAdapter, normalize_models, quota_billing


class DoneHubAdapter(ProviderAdapter):
    """DoneHub lists models as an object keyed by model id."""

    api_type = ApiType.DONEHUB

    async def fetch_models(self) -> ModelFetchResult:
        resp = await self.request_json(
            "GET",
            self.endpoint("api/available_model"),
            headers=self.headers(),
            timeout=self.settings.models_timeout,
        )
        data = resp.data.get("data") if isinstance(resp.data, dict) else None
        if isinstance(data, dict):
            models = []
            for model_id, info in data.items():
                owned_by = info.get("owned_by") if isinstance(info, dict) else None
                models.append(ModelInfo(id=str(model_id), owned_by=str(owned_by or self.provider_name)))
            models.sort(key=lambda m: m.id)
        elif isinstance(data, list):
            models = normalize_models(data, self.provider_name)
        else:
            raise self.malformed("Invalid response format", resp)

        return ModelFetchResult(
            models=models,
            raw_response=resp.text,
            status_code=resp.status_code,
            response_time_ms=resp.elapsed_ms,
        )

    async def fetch_billing(self) -> Optional[BillingInfo]:
        resp = await self.request_json(
            "GET",
            self.endpoint("api/user/self"),
            headers=self.headers(),
            timeout=self.settings.billing_timeout,
        )
        if not isinstance(resp.data, dict) or not resp.data.get("success") or not isinstance(resp.data.get("data"), dict):
            raise self.malformed("Invalid user info response", resp)
        return quota_billing(resp.data["data"])
