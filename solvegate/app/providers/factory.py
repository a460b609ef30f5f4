"""Provider factory for creating completion provider instances."""

from enum import Enum
from typing import Optional

import httpx

from solvegate.app.core.config import Settings, settings
from solvegate.app.core.logging import get_logger
from solvegate.app.providers.base import BaseProvider
from solvegate.app.providers.mock import MockProvider
from solvegate.app.providers.openai import OpenAIProvider

logger = get_logger(__name__)


class ProviderType(str, Enum):
    """Supported provider types."""
    OPENAI = "openai"
    MOCK = "mock"


def resolve_provider_type(config: Settings = settings) -> ProviderType:
    """Pick the provider type from configuration.

    The mock provider is used when explicitly enabled, or when no API key is
    configured so a development instance still starts.
    """
    if config.mock_provider:
        return ProviderType.MOCK
    if not config.provider_api_key:
        logger.warning("PROVIDER_API_KEY is not set; falling back to the mock provider")
        return ProviderType.MOCK
    return ProviderType.OPENAI


def create_provider(
    provider_type: Optional[ProviderType] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    config: Settings = settings,
) -> BaseProvider:
    """Create a provider instance.

    Args:
        provider_type: Provider to build. Resolved from configuration if None.
        http_client: Optional shared HTTP client for connection pooling
        config: Settings to read provider options from

    Returns:
        Provider instance

    Raises:
        ValueError: If provider type is not supported
    """
    provider_type = provider_type or resolve_provider_type(config)

    if provider_type == ProviderType.MOCK:
        return MockProvider()
    if provider_type == ProviderType.OPENAI:
        return OpenAIProvider(
            base_url=config.provider_base_url,
            api_key=config.provider_api_key,
            model=config.provider_model,
            max_tokens=config.max_output_tokens,
            temperature=config.provider_temperature,
            http_client=http_client,
            timeout=config.provider_timeout,
        )
    raise ValueError(f"Unsupported provider type: {provider_type}")


# Global provider instance
_provider: Optional[BaseProvider] = None


def get_provider(http_client: Optional[httpx.AsyncClient] = None) -> BaseProvider:
    """Get the global provider instance (singleton pattern).

    Args:
        http_client: Optional HTTP client to use. Only used on first call;
            defaults to the shared lifespan client when it is running.
    """
    global _provider
    if _provider is None:
        client = http_client
        if client is None:
            from solvegate.app.core.http_client import get_http_client

            try:
                client = get_http_client()
            except RuntimeError:
                # Lifespan not running (tests, scripts)
                client = None
        _provider = create_provider(http_client=client)
        logger.info(f"Completion provider initialized: {_provider.name}")
    return _provider


def reset_provider() -> None:
    """Reset the global provider instance.

    This is useful for testing or when configuration changes.
    """
    global _provider
    _provider = None
