"""Tests for the pooled provider HTTP client."""

import pytest

from solvegate.app.core.config import Settings
from solvegate.app.core.http_client import (
    build_provider_client,
    get_http_client,
    init_http_client,
)


@pytest.mark.asyncio
async def test_read_timeout_is_provider_deadline():
    config = Settings(_env_file=None, provider_timeout=7.5, httpx_connect_timeout=2.0)

    client = build_provider_client(config)
    try:
        assert client.timeout.read == 7.5
        assert client.timeout.connect == 2.0
    finally:
        await client.aclose()


def test_client_unavailable_outside_lifespan():
    with pytest.raises(RuntimeError):
        get_http_client()


@pytest.mark.asyncio
async def test_lifespan_client_is_shared_then_closed():
    async with init_http_client(Settings(_env_file=None)) as client:
        assert get_http_client() is client

    assert client.is_closed
    with pytest.raises(RuntimeError):
        get_http_client()
