from __future__ import annotations

import httpx

from ..config import MonitorSettings
from ..security import SecretsCodec
from ..storage.models import ApiType, Site
from .base import ProviderAdapter
from .donehub import DoneHubAdapter
from .newapi import NewApiAdapter, VeloeraAdapter
from .openai_compat import OpenAICompatibleAdapter, OtherAdapter
from .voapi import VoApiAdapter


ADAPTERS: dict[ApiType, type[ProviderAdapter]] = {
    ApiType.OPENAI_COMPATIBLE: OpenAICompatibleAdapter,
    ApiType.NEWAPI: NewApiAdapter,
    ApiType.VELOERA: VeloeraAdapter,
    ApiType.DONEHUB: DoneHubAdapter,
    ApiType.VOAPI: VoApiAdapter,
    ApiType.OTHER: OtherAdapter,
}


def adapter_class(api_type: ApiType) -> type[ProviderAdapter]:
    return ADAPTERS.get(api_type, OtherAdapter)


def get_adapter(
    site: Site,
    api_key: str,
    *,
    client: httpx.AsyncClient,
    codec: SecretsCodec,
    settings: MonitorSettings,
) -> ProviderAdapter:
    return adapter_class(site.api_type)(site, api_key, client=client, codec=codec, settings=settings)
