from __future__ import annotations

from typing import Callable

import httpx
import pytest

from relay_monitor.config import MonitorSettings
from relay_monitor.security import SecretsCodec
from relay_monitor.storage import ApiType, MonitorRepository, Site


TEST_KEY = "0123456789abcdef" * 4


@pytest.fixture
def settings(tmp_path) -> MonitorSettings:
    return MonitorSettings(database_path=str(tmp_path / "monitor.db"), encryption_key=TEST_KEY)


@pytest.fixture
def repo(settings: MonitorSettings) -> MonitorRepository:
    r = MonitorRepository(settings.database_path)
    r.initialize()
    return r


@pytest.fixture
def codec() -> SecretsCodec:
    return SecretsCodec.from_secret(TEST_KEY)


@pytest.fixture
def mock_client_factory() -> Callable[[Callable[[httpx.Request], httpx.Response]], Callable[[], httpx.AsyncClient]]:
    def build(handler: Callable[[httpx.Request], httpx.Response]) -> Callable[[], httpx.AsyncClient]:
        return lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return build


@pytest.fixture
def make_site(repo: MonitorRepository, codec: SecretsCodec) -> Callable[..., Site]:
    def _make(**overrides) -> Site:
        data = {
            "name": "Relay A",
            "base_url": "https://relay.example.com",
            "api_key_enc": codec.encrypt("sk-test"),
            "api_type": ApiType.OPENAI_COMPATIBLE,
        }
        data.update(overrides)
        return repo.create_site(Site(**data))

    return _make
