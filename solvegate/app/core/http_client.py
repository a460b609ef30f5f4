"""Pooled HTTP client for the completion provider.

One ``httpx.AsyncClient`` is opened in the FastAPI lifespan and handed to
the provider, so every solve reuses the same keep-alive connections.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx

from solvegate.app.core.config import Settings, settings

_shared_http_client: httpx.AsyncClient | None = None


def build_provider_client(config: Settings | None = None) -> httpx.AsyncClient:
    """Create a client whose read timeout is the provider call deadline."""
    config = config or settings
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=config.httpx_connect_timeout,
            read=config.provider_timeout,
            write=config.httpx_write_timeout,
            pool=config.httpx_pool_timeout,
        ),
        limits=httpx.Limits(
            max_connections=config.httpx_max_connections,
            max_keepalive_connections=config.httpx_max_keepalive_connections,
            keepalive_expiry=config.httpx_keepalive_expiry,
        ),
    )


def get_http_client() -> httpx.AsyncClient:
    """Return the lifespan client.

    Raises:
        RuntimeError: If called outside the application lifespan.
    """
    if _shared_http_client is None:
        raise RuntimeError("HTTP client not initialized. Ensure lifespan context is active.")
    return _shared_http_client


@asynccontextmanager
async def init_http_client(config: Settings | None = None) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Open the shared client for the duration of the block and close it after."""
    global _shared_http_client

    _shared_http_client = build_provider_client(config)
    try:
        yield _shared_http_client
    finally:
        await _shared_http_client.aclose()
        _shared_http_client = None
