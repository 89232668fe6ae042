"""Compute provider registry.

Resolves a provider implementation by name and enforces which providers are
administratively enabled. The local provider is always available.
"""

from __future__ import annotations

import structlog

from gitterm_compute.config import LOCAL_PROVIDER, Settings, settings
from gitterm_compute.errors import ProviderNotEnabledError, UnknownProviderError
from gitterm_compute.providers.aws.provider import AwsProvider
from gitterm_compute.providers.base import ComputeProvider
from gitterm_compute.providers.local import LocalProvider
from gitterm_compute.providers.railway.provider import RailwayProvider

logger = structlog.get_logger()


class ProviderRegistry:
    """Static map of provider name to implementation."""

    def __init__(
        self,
        providers: dict[str, ComputeProvider] | None = None,
        app_settings: Settings | None = None,
    ) -> None:
        self._settings = app_settings or settings
        if providers is None:
            providers = {
                LOCAL_PROVIDER: LocalProvider(app_settings=self._settings),
                "railway": RailwayProvider(app_settings=self._settings),
                "aws": AwsProvider(app_settings=self._settings),
            }
        self._providers = {name.lower(): provider for name, provider in providers.items()}

    @property
    def enabled_providers(self) -> list[str]:
        enabled = list(self._settings.enabled_providers)
        if LOCAL_PROVIDER not in enabled:
            enabled.append(LOCAL_PROVIDER)
        return enabled

    def is_provider_implemented(self, name: str) -> bool:
        return name.lower() in self._providers

    def is_provider_enabled(self, name: str) -> bool:
        """Local is always enabled; anything else must be listed in settings."""
        return name.lower() in self.enabled_providers

    def get_available_provider_names(self) -> list[str]:
        """Providers that are both implemented and enabled."""
        return [name for name in self._providers if self.is_provider_enabled(name)]

    def get_provider(self, name: str) -> ComputeProvider:
        """Resolve a provider by name.

        Raises:
            UnknownProviderError: no implementation exists for the name
            ProviderNotEnabledError: implemented but not enabled
        """
        key = name.strip().lower()
        provider = self._providers.get(key)
        if provider is None:
            logger.error("Unknown compute provider requested", provider=key)
            raise UnknownProviderError(key, sorted(self._providers))
        if not self.is_provider_enabled(key):
            logger.error("Disabled compute provider requested", provider=key)
            raise ProviderNotEnabledError(key, self.enabled_providers)
        return provider

    def get_default_provider(self) -> ComputeProvider:
        return self.get_provider(self._settings.default_provider_name)


class RegistrySingleton:
    """Singleton holder for the process-wide provider registry."""

    _instance: ProviderRegistry | None = None

    @classmethod
    def get(cls) -> ProviderRegistry:
        """Get or create the shared registry."""
        if cls._instance is None:
            cls._instance = ProviderRegistry()
        return cls._instance

    @classmethod
    def clear_instance(cls) -> None:
        cls._instance = None


def get_provider(name: str) -> ComputeProvider:
    return RegistrySingleton.get().get_provider(name)


def get_default_provider() -> ComputeProvider:
    return RegistrySingleton.get().get_default_provider()


def is_provider_enabled(name: str) -> bool:
    return RegistrySingleton.get().is_provider_enabled(name)


def is_provider_implemented(name: str) -> bool:
    return RegistrySingleton.get().is_provider_implemented(name)


def get_available_provider_names() -> list[str]:
    return RegistrySingleton.get().get_available_provider_names()
