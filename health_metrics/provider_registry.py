"""Provider registry mapping provider names to extraction providers.

The orchestrator selects providers by the names produced by the configuration
resolver; this registry is the only place those names are bound to
implementations.
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import Dict, Iterable, List, Optional

from .errors import ConfigurationError
from .providers import (
    ClaudeExtractionProvider,
    DeepseekExtractionProvider,
    ExtractionProvider,
    OpenAIExtractionProvider,
)

LOGGER = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of extraction providers keyed by provider name.

    Registration happens while the engine is wired up; lookups afterwards are
    read-only and safe to share between threads.
    """

    def __init__(self, providers: Optional[Iterable[ExtractionProvider]] = None):
        self._providers: Dict[str, ExtractionProvider] = {}
        for provider in providers or ():
            self.register(provider)

    def register(self, provider: ExtractionProvider, name: Optional[str] = None) -> None:
        """Register ``provider`` under ``name`` (defaults to ``provider.name``).

        Raises:
            ConfigurationError: If the name is empty.
        """
        key = (name or provider.name or "").strip().lower()
        if not key:
            raise ConfigurationError.invalid_config(
                "providers", "provider name is required", {"provider_class": type(provider).__name__}
            )
        if key in self._providers:
            LOGGER.warning("Replacing registered provider %s", key)
        self._providers[key] = provider
        LOGGER.debug("Registered %s provider", key)

    def get_provider(self, provider_name: str) -> ExtractionProvider:
        """Return the provider registered under ``provider_name``.

        Raises:
            ConfigurationError: If no provider has that name.
        """
        key = provider_name.strip().lower()
        provider = self._providers.get(key)
        if provider is None:
            raise ConfigurationError.invalid_config(
                f"providers.{key}",
                "no extraction provider is registered under this name",
                {"provider": key, "registered": self.names()},
            )
        return provider

    def names(self) -> List[str]:
        return sorted(self._providers)

    def __contains__(self, provider_name: object) -> bool:
        return isinstance(provider_name, str) and provider_name.strip().lower() in self._providers


def build_default_registry() -> ProviderRegistry:
    """Create a registry with the built-in DeepSeek, Claude and OpenAI providers."""
    return ProviderRegistry(
        [
            DeepseekExtractionProvider(),
            ClaudeExtractionProvider(),
            OpenAIExtractionProvider(),
        ]
    )


_registry: Optional[ProviderRegistry] = None
_registry_lock = Lock()


def get_provider_registry() -> ProviderRegistry:
    """Get the global provider registry instance.

    Returns:
        Singleton ProviderRegistry populated with the built-in providers.
    """
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = build_default_registry()
    return _registry
