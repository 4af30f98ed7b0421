"""Shared plumbing for gateway dialect adapters."""

from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Optional

import httpx
import structlog

from ..config import MonitorSettings
from ..errors import MalformedResponseError, NetworkError, UpstreamHTTPError
from ..security import SecretsCodec
from ..storage.models import ApiType, BillingInfo, CheckInResult, ModelInfo, Site


logger = structlog.get_logger(__name__)

# Gateways built on the one-api lineage account in 1/500000 of a dollar.
QUOTA_PER_UNIT = 500000.0


@dataclass(frozen=True)
class JsonResponse:
    data: Any
    text: str
    status_code: int
    elapsed_ms: float


@dataclass(frozen=True)
class ModelFetchResult:
    models: list[ModelInfo]
    raw_response: Optional[str]
    status_code: Optional[int]
    response_time_ms: float


def join_url(base_url: str, path: str) -> str:
    """Resolve ``path`` relative to ``base_url``, keeping any path prefix on the base."""
    base = base_url if base_url.endswith("/") else base_url + "/"
    return str(httpx.URL(base).join(path))


def normalize_models(payload: Any, default_owner: str = "unknown") -> list[ModelInfo]:
    """Turn an upstream model listing into the canonical sorted list.

    Accepts ``{"data": [...]}`` or a bare list; entries may be plain model ids
    or objects carrying ``id`` (or ``model``).
    """
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        entries = payload["data"]
    elif isinstance(payload, list):
        entries = payload
    else:
        raise MalformedResponseError("Model listing is not a list")

    models: list[ModelInfo] = []
    for entry in entries:
        if isinstance(entry, str):
            models.append(ModelInfo(id=entry, owned_by=default_owner))
            continue
        if not isinstance(entry, dict):
            continue
        model_id = entry.get("id") or entry.get("model")
        if not model_id:
            continue
        models.append(
            ModelInfo(
                id=str(model_id),
                owned_by=str(entry.get("owned_by") or entry.get("ownedBy") or default_owner),
                created=entry.get("created") or 0,
            )
        )
    models.sort(key=lambda m: m.id)
    return models


def to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def quota_billing(user_data: dict) -> BillingInfo:
    """Billing from a ``quota``/``used_quota`` account record.

    ``quota`` is the remaining balance, so the reported limit is balance plus usage.
    """
    remaining = (to_float(user_data.get("quota")) or 0.0) / QUOTA_PER_UNIT
    used = (to_float(user_data.get("used_quota")) or 0.0) / QUOTA_PER_UNIT
    return BillingInfo(limit=remaining + used, usage=used)


class ProviderAdapter(ABC):
    """One gateway dialect: model listing, billing and optional check-in."""

    api_type: ClassVar[ApiType]
    provider_name: ClassVar[str] = "unknown"
    supports_checkin: ClassVar[bool] = False

    def __init__(
        self,
        site: Site,
        api_key: str,
        *,
        client: httpx.AsyncClient,
        codec: SecretsCodec,
        settings: MonitorSettings,
    ):
        self.site = site
        self.api_key = api_key
        self.client = client
        self.codec = codec
        self.settings = settings

    def endpoint(self, path: str) -> str:
        return join_url(self.site.base_url, path)

    def headers(self, **extra: str) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self.settings.user_agent,
        }
        headers.update(extra)
        return headers

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        timeout: float,
    ) -> JsonResponse:
        """Issue one request and parse the body as JSON.

        Raises:
            NetworkError: timeout or connection failure.
            UpstreamHTTPError: non-2xx status.
            MalformedResponseError: body is not JSON.
        """
        start = time.monotonic()
        try:
            # httpx timeouts are per phase; wait_for bounds the whole exchange.
            resp = await asyncio.wait_for(
                self.client.request(method, url, headers=headers, timeout=timeout), timeout=timeout
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            elapsed = (time.monotonic() - start) * 1000
            raise NetworkError(f"Request timed out after {timeout:g}s", elapsed_ms=elapsed) from e
        except httpx.HTTPError as e:
            elapsed = (time.monotonic() - start) * 1000
            raise NetworkError(f"{type(e).__name__}: {e}", elapsed_ms=elapsed) from e

        elapsed = (time.monotonic() - start) * 1000
        text = resp.text
        logger.debug(
            "Upstream response",
            site_id=self.site.id,
            method=method,
            url=url,
            status_code=resp.status_code,
            elapsed_ms=round(elapsed, 1),
            body=text[:500],
        )

        if not resp.is_success:
            raise UpstreamHTTPError(
                f"HTTP {resp.status_code}: {text[:200]}",
                raw_response=text,
                status_code=resp.status_code,
                elapsed_ms=elapsed,
            )

        try:
            data = json.loads(text)
        except ValueError as e:
            raise MalformedResponseError(
                f"Invalid JSON response: {text[:200]}",
                raw_response=text,
                status_code=resp.status_code,
                elapsed_ms=elapsed,
            ) from e

        return JsonResponse(data=data, text=text, status_code=resp.status_code, elapsed_ms=elapsed)

    def malformed(self, message: str, resp: JsonResponse) -> MalformedResponseError:
        return MalformedResponseError(
            message, raw_response=resp.text, status_code=resp.status_code, elapsed_ms=resp.elapsed_ms
        )

    @abstractmethod
    async def fetch_models(self) -> ModelFetchResult:
        """Fetch and normalize the gateway's model listing."""

    @abstractmethod
    async def fetch_billing(self) -> Optional[BillingInfo]:
        """Fetch billing figures, or return None when billing is not available for this site."""

    async def fetch_checkin(self) -> CheckInResult:
        return CheckInResult(
            success=False,
            message="Check-in not supported",
            error=f"Check-in is not supported for {self.api_type.value} sites",
        )
