from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from relay_monitor.errors import ConfigurationError, MalformedResponseError, NetworkError, UpstreamHTTPError
from relay_monitor.providers import ADAPTERS, get_adapter
from relay_monitor.providers.openai_compat import extract_custom_billing
from relay_monitor.storage import ApiType, BillingAuthType, Site


def _site(api_type: ApiType, **overrides) -> Site:
    data = {
        "id": 1,
        "name": "Relay",
        "base_url": "https://relay.example.com",
        "api_key_enc": "unused",
        "api_type": api_type,
    }
    data.update(overrides)
    return Site(**data)


def _json(payload, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, text=json.dumps(payload))


class Recorder:
    def __init__(self, routes: dict):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, text="not found")
        if callable(route):
            return route(request)
        return route


def _adapter(site: Site, handler, codec, settings):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client, get_adapter(site, "sk-test", client=client, codec=codec, settings=settings)


def test_every_api_type_has_an_adapter() -> None:
    assert set(ADAPTERS) == set(ApiType)


@pytest.mark.asyncio
async def test_openai_models_keep_base_path_and_sort(codec, settings) -> None:
    rec = Recorder({"/api/v1/models": _json({"data": [{"id": "gpt-4", "owned_by": "openai"}, {"id": "claude-3"}]})})
    client, adapter = _adapter(_site(ApiType.OPENAI_COMPATIBLE, base_url="https://relay.example.com/api"), rec, codec, settings)
    async with client:
        result = await adapter.fetch_models()

    assert [m.id for m in result.models] == ["claude-3", "gpt-4"]
    assert result.models[0].owned_by == "unknown"
    assert result.status_code == 200
    assert rec.requests[0].headers["Authorization"] == "Bearer sk-test"


@pytest.mark.asyncio
async def test_newapi_models_send_user_header(codec, settings) -> None:
    rec = Recorder({"/api/user/models": _json({"success": True, "data": ["gpt-4o", "deepseek-v3"]})})
    client, adapter = _adapter(_site(ApiType.NEWAPI, user_id="42"), rec, codec, settings)
    async with client:
        result = await adapter.fetch_models()

    assert [m.id for m in result.models] == ["deepseek-v3", "gpt-4o"]
    assert all(m.owned_by == "new-api" for m in result.models)
    assert rec.requests[0].headers["new-api-user"] == "42"


@pytest.mark.asyncio
async def test_newapi_unsuccessful_listing_is_malformed(codec, settings) -> None:
    rec = Recorder({"/api/user/models": _json({"success": False, "message": "unauthorized"})})
    client, adapter = _adapter(_site(ApiType.NEWAPI, user_id="42"), rec, codec, settings)
    async with client:
        with pytest.raises(MalformedResponseError) as excinfo:
            await adapter.fetch_models()
    assert "unauthorized" in excinfo.value.raw_response


@pytest.mark.asyncio
async def test_newapi_billing_converts_quota_units(codec, settings) -> None:
    rec = Recorder({"/api/user/self": _json({"success": True, "data": {"quota": 1000000, "used_quota": 250000}})})
    client, adapter = _adapter(_site(ApiType.NEWAPI, user_id="42"), rec, codec, settings)
    async with client:
        billing = await adapter.fetch_billing()

    assert billing.limit == pytest.approx(2.5)
    assert billing.usage == pytest.approx(0.5)
    assert billing.error is None


@pytest.mark.asyncio
async def test_veloera_requires_user_id(codec, settings) -> None:
    rec = Recorder({})
    client, adapter = _adapter(_site(ApiType.VELOERA), rec, codec, settings)
    async with client:
        with pytest.raises(ConfigurationError):
            await adapter.fetch_models()
    assert rec.requests == []


@pytest.mark.asyncio
async def test_donehub_models_keyed_by_id(codec, settings) -> None:
    payload = {"data": {"gpt-4": {"owned_by": "openai"}, "claude-3": {}, "abab": None}}
    rec = Recorder({"/api/available_model": _json(payload)})
    client, adapter = _adapter(_site(ApiType.DONEHUB), rec, codec, settings)
    async with client:
        result = await adapter.fetch_models()

    assert [m.id for m in result.models] == ["abab", "claude-3", "gpt-4"]
    assert result.models[2].owned_by == "openai"
    assert result.models[1].owned_by == "unknown"


@pytest.mark.asyncio
async def test_voapi_billing_uses_raw_jwt(codec, settings) -> None:
    payload = {
        "code": 0,
        "data": {"bindBalance": "1.5", "basicBalance": 2, "usedBindBalance": 0.5, "usedBasicBalance": "0"},
    }
    rec = Recorder({"/api/user/info": _json(payload)})
    site = _site(ApiType.VOAPI, billing_auth_value_enc=codec.encrypt("eyJ.jwt.token"))
    client, adapter = _adapter(site, rec, codec, settings)
    async with client:
        billing = await adapter.fetch_billing()

    assert rec.requests[0].headers["Authorization"] == "eyJ.jwt.token"
    assert billing.limit == pytest.approx(3.5)
    assert billing.usage == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_voapi_without_jwt_skips_billing(codec, settings) -> None:
    rec = Recorder({})
    client, adapter = _adapter(_site(ApiType.VOAPI), rec, codec, settings)
    async with client:
        assert await adapter.fetch_billing() is None
    assert rec.requests == []


@pytest.mark.asyncio
async def test_openai_billing_combines_subscription_and_usage(codec, settings) -> None:
    rec = Recorder(
        {
            "/v1/dashboard/billing/subscription": _json({"system_hard_limit_usd": 100}),
            "/v1/dashboard/billing/usage": _json({"total_usage": 1234}),
        }
    )
    client, adapter = _adapter(_site(ApiType.OPENAI_COMPATIBLE), rec, codec, settings)
    async with client:
        billing = await adapter.fetch_billing()

    assert billing.limit == pytest.approx(100.0)
    assert billing.usage == pytest.approx(12.34)
    assert billing.error is None


@pytest.mark.asyncio
async def test_openai_billing_partial_failure_is_reported(codec, settings) -> None:
    rec = Recorder(
        {
            "/v1/dashboard/billing/subscription": _json({"system_hard_limit_usd": 50}),
            "/v1/dashboard/billing/usage": httpx.Response(500, text="boom"),
        }
    )
    client, adapter = _adapter(_site(ApiType.OTHER), rec, codec, settings)
    async with client:
        billing = await adapter.fetch_billing()

    assert billing.limit == pytest.approx(50.0)
    assert billing.usage is None
    assert billing.error == "Usage: HTTP 500: boom"


@pytest.mark.asyncio
async def test_custom_billing_with_cookie_and_field_mapping(codec, settings) -> None:
    rec = Recorder({"/dashboard/balance": _json({"data": {"balance": 1000000, "used": 500000}})})
    site = _site(
        ApiType.OTHER,
        billing_url="https://billing.example.com/dashboard/balance",
        billing_limit_field="data.balance",
        billing_usage_field="data.used",
        billing_ratio=500000,
        billing_auth_type=BillingAuthType.COOKIE,
        billing_auth_value_enc=codec.encrypt("session=abc"),
    )
    client, adapter = _adapter(site, rec, codec, settings)
    async with client:
        billing = await adapter.fetch_billing()

    assert rec.requests[0].headers["Cookie"] == "session=abc"
    assert "Authorization" not in rec.requests[0].headers
    assert billing.limit == pytest.approx(2.0)
    assert billing.usage == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_custom_billing_token_gets_bearer_prefix(codec, settings) -> None:
    rec = Recorder({"/b": _json({"balance": 3})})
    site = _site(
        ApiType.OTHER,
        billing_url="https://billing.example.com/b",
        billing_auth_type=BillingAuthType.TOKEN,
        billing_auth_value_enc=codec.encrypt("tok"),
    )
    client, adapter = _adapter(site, rec, codec, settings)
    async with client:
        await adapter.fetch_billing()
    assert rec.requests[0].headers["Authorization"] == "Bearer tok"


def test_custom_billing_fallback_priority() -> None:
    billing = extract_custom_billing({"limit": 1, "quota": 5, "balance": 10, "used": 1, "total_usage": 250})
    assert billing.limit == 10
    assert billing.usage == pytest.approx(2.5)


def test_custom_billing_needs_both_fields_for_mapping() -> None:
    billing = extract_custom_billing({"quota": 7, "usage": 2, "data": {"x": 1}}, limit_field="data.x")
    assert billing.limit == 7
    assert billing.usage == 2


def test_custom_billing_missing_path_is_none() -> None:
    billing = extract_custom_billing({"data": {}}, limit_field="data.balance", usage_field="data.used")
    assert billing.limit is None and billing.usage is None


@pytest.mark.asyncio
async def test_timeout_is_network_error(codec, settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client, adapter = _adapter(_site(ApiType.OPENAI_COMPATIBLE), handler, codec, settings)
    async with client:
        with pytest.raises(NetworkError) as excinfo:
            await adapter.fetch_models()
    assert excinfo.value.elapsed_ms is not None


@pytest.mark.asyncio
async def test_non_2xx_is_upstream_error_with_body(codec, settings) -> None:
    rec = Recorder({"/v1/models": httpx.Response(502, text="bad gateway")})
    client, adapter = _adapter(_site(ApiType.OPENAI_COMPATIBLE), rec, codec, settings)
    async with client:
        with pytest.raises(UpstreamHTTPError) as excinfo:
            await adapter.fetch_models()
    assert excinfo.value.status_code == 502
    assert excinfo.value.raw_response == "bad gateway"


@pytest.mark.asyncio
async def test_non_json_is_malformed(codec, settings) -> None:
    rec = Recorder({"/v1/models": httpx.Response(200, text="<html>cloudflare</html>")})
    client, adapter = _adapter(_site(ApiType.OPENAI_COMPATIBLE), rec, codec, settings)
    async with client:
        with pytest.raises(MalformedResponseError):
            await adapter.fetch_models()


@pytest.mark.asyncio
async def test_veloera_checkin_success(codec, settings) -> None:
    rec = Recorder({"/api/user/check_in": _json({"success": True, "message": "ok", "data": {"quota": 250000}})})
    client, adapter = _adapter(_site(ApiType.VELOERA, user_id="9"), rec, codec, settings)
    async with client:
        result = await adapter.fetch_checkin()

    req = rec.requests[0]
    assert req.method == "POST"
    assert req.headers["veloera-user"] == "9"
    assert req.headers["Cache-Control"] == "no-store"
    assert result.success is True
    assert result.message == "ok"
    assert result.quota == 250000


@pytest.mark.asyncio
async def test_veloera_checkin_rejection_reads_body_on_4xx(codec, settings) -> None:
    rec = Recorder({"/api/user/check_in": _json({"success": False, "message": "already checked in"}, 400)})
    client, adapter = _adapter(_site(ApiType.VELOERA, user_id="9"), rec, codec, settings)
    async with client:
        result = await adapter.fetch_checkin()
    assert result.success is False
    assert result.error == "already checked in"


@pytest.mark.asyncio
async def test_veloera_checkin_non_json_is_failure(codec, settings) -> None:
    body = "x" * 300
    rec = Recorder({"/api/user/check_in": httpx.Response(200, text=body)})
    client, adapter = _adapter(_site(ApiType.VELOERA, user_id="9"), rec, codec, settings)
    async with client:
        result = await adapter.fetch_checkin()
    assert result.success is False
    assert result.error == "Invalid response format: " + "x" * 100


@pytest.mark.asyncio
async def test_veloera_checkin_without_user_id_is_failed_result(codec, settings) -> None:
    rec = Recorder({})
    client, adapter = _adapter(_site(ApiType.VELOERA), rec, codec, settings)
    async with client:
        result = await adapter.fetch_checkin()
    assert result.success is False
    assert rec.requests == []


@pytest.mark.asyncio
async def test_veloera_checkin_network_error_is_failed_result(codec, settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client, adapter = _adapter(_site(ApiType.VELOERA, user_id="9"), handler, codec, settings)
    async with client:
        result = await adapter.fetch_checkin()
    assert result.success is False
    assert "refused" in result.error


@pytest.mark.asyncio
async def test_checkin_unsupported_dialect(codec, settings) -> None:
    client, adapter = _adapter(_site(ApiType.NEWAPI, user_id="1"), Recorder({}), codec, settings)
    async with client:
        result = await adapter.fetch_checkin()
    assert result.success is False
    assert not adapter.supports_checkin


class TrickleStream(httpx.AsyncByteStream):
    """Body that keeps sending bytes, slower than any sane deadline."""

    def __init__(self, chunks: int = 100, delay: float = 0.05):
        self.chunks = chunks
        self.delay = delay

    async def __aiter__(self):
        for _ in range(self.chunks):
            await asyncio.sleep(self.delay)
            yield b" "


@pytest.mark.asyncio
async def test_trickling_body_hits_total_deadline(codec, settings) -> None:
    fast = settings.model_copy(update={"models_timeout": 0.2})
    rec = Recorder({"/v1/models": lambda request: httpx.Response(200, stream=TrickleStream())})
    client, adapter = _adapter(_site(ApiType.OPENAI_COMPATIBLE), rec, codec, fast)
    async with client:
        with pytest.raises(NetworkError) as excinfo:
            await adapter.fetch_models()

    assert str(excinfo.value) == "Request timed out after 0.2s"
    assert excinfo.value.elapsed_ms < 2000


@pytest.mark.asyncio
async def test_trickling_checkin_is_failed_result(codec, settings) -> None:
    fast = settings.model_copy(update={"checkin_timeout": 0.2})
    rec = Recorder({"/api/user/check_in": lambda request: httpx.Response(200, stream=TrickleStream())})
    client, adapter = _adapter(_site(ApiType.VELOERA, user_id="9"), rec, codec, fast)
    async with client:
        result = await adapter.fetch_checkin()

    assert result.success is False
    assert result.error == "Request timed out after 0.2s"
