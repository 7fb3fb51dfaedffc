"""Tests for the HTTP client factory."""

import httpx
import pytest

from cricclubs_sync.models import ClientConfig
from cricclubs_sync.services.http_client import USER_AGENT, HttpClientFactory


@pytest.mark.asyncio
async def test_client_uses_client_config() -> None:
    factory = HttpClientFactory(ClientConfig(
        api_base_url="https://api.cricclubs.com",
        api_key="secret",
        request_timeout_seconds=45,
    ))

    client = factory.create_client()
    try:
        assert isinstance(client, httpx.AsyncClient)
        assert str(client.base_url).rstrip("/") == "https://api.cricclubs.com"
        assert client.timeout.read == 45
        assert client.headers["User-Agent"] == USER_AGENT
        assert client.headers["X-Api-Key"] == "secret"
    finally:
        await factory.close()

    assert client.is_closed


@pytest.mark.asyncio
async def test_default_config_creates_a_client() -> None:
    factory = HttpClientFactory(ClientConfig())

    client = factory.create_client(headers={"Accept": "application/json"})

    assert "X-Api-Key" not in client.headers
    assert client.headers["Accept"] == "application/json"
    await factory.close()


@pytest.mark.asyncio
async def test_non_positive_limits_mean_no_limit() -> None:
    factory = HttpClientFactory(ClientConfig(request_timeout_seconds=-5, max_concurrent_requests=0))

    client = factory.create_client()

    assert client.timeout.read is None
    await factory.close()


@pytest.mark.asyncio
async def test_close_closes_every_client() -> None:
    factory = HttpClientFactory(ClientConfig())
    clients = [factory.create_client() for _ in range(3)]
    assert factory.client_count == 3

    await factory.close()
    await factory.close()

    assert all(client.is_closed for client in clients)
    assert factory.client_count == 0
    with pytest.raises(RuntimeError):
        factory.create_client()
