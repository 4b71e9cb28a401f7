from __future__ import annotations

from typing import List, Tuple

import httpx
import pytest

from compass.api.client import CompassApiClient
from compass.services.query_cache import QueryCache
from fakes import BASE_URL, FakeCompassApi


@pytest.fixture()
def fake_api() -> FakeCompassApi:
    return FakeCompassApi()


@pytest.fixture()
async def api_client(fake_api):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_api.handler), base_url=BASE_URL)
    client = CompassApiClient(http_client=http_client)
    try:
        yield client
    finally:
        await http_client.aclose()


@pytest.fixture()
def cache() -> QueryCache:
    return QueryCache()


@pytest.fixture()
def notifications() -> List[Tuple[str, str]]:
    return []


@pytest.fixture()
def notifier(notifications):
    def record(level: str, message: str) -> None:
        notifications.append((level, message))

    return record
