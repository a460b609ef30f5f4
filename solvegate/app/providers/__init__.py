"""Completion providers package.

This package provides:
- Base provider interface (BaseProvider, Completion)
- Provider implementations (OpenAIProvider, MockProvider)
- Provider factory (ProviderType, create_provider, get_provider)
"""

from solvegate.app.providers.base import BaseProvider, Completion
from solvegate.app.providers.factory import (
    ProviderType,
    create_provider,
    get_provider,
    reset_provider,
)
from solvegate.app.providers.mock import MockProvider
from solvegate.app.providers.openai import OpenAIProvider

__all__ = [
    # Base
    "BaseProvider",
    "Completion",
    # Providers
    "MockProvider",
    "OpenAIProvider",
    # Factory
    "ProviderType",
    "create_provider",
    "get_provider",
    "reset_provider",
]
