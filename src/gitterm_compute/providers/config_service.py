"""Provider configuration lookup.

Providers fetch their configuration from a ProviderConfigService the first
time they need it and keep it for their whole lifetime; it is never
re-fetched per call.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

import structlog
from pydantic import BaseModel

from gitterm_compute.config import Settings, settings
from gitterm_compute.errors import ProviderConfigurationError
from gitterm_compute.models.provider_config import validate_provider_config

logger = structlog.get_logger()

ConfigT = TypeVar("ConfigT", bound=BaseModel)


class ProviderConfigService(ABC):
    """Source of provider configuration (credentials, default region, flags)."""

    @abstractmethod
    async def get_provider_config_for_use(self, provider_name: str) -> dict[str, Any] | None:
        """Return the decrypted configuration for a provider, or None if unset."""


class SettingsProviderConfigService(ProviderConfigService):
    """Provider configuration read from GITTERM_* environment settings."""

    def __init__(self, app_settings: Settings | None = None) -> None:
        self._settings = app_settings or settings

    async def get_provider_config_for_use(self, provider_name: str) -> dict[str, Any] | None:
        s = self._settings
        if provider_name == "aws":
            if not s.aws_access_key_id or not s.aws_secret_access_key:
                return None
            return {
                "accessKeyId": s.aws_access_key_id,
                "secretAccessKey": s.aws_secret_access_key,
                "region": s.aws_region,
                "accountId": s.aws_account_id,
                "publicIngress": s.aws_public_ingress,
                "endpointUrl": s.aws_endpoint,
            }
        if provider_name == "railway":
            if not s.railway_api_token:
                return None
            return {
                "apiUrl": s.railway_api_url,
                "apiToken": s.railway_api_token,
                "projectId": s.railway_project_id or "",
                "environmentId": s.railway_environment_id or "",
                "defaultRegion": s.railway_default_region,
                "publicRailwayDomains": s.railway_public_domains,
            }
        return None


class CachedProviderConfig(Generic[ConfigT]):
    """Fetch-once holder for a provider's validated configuration."""

    def __init__(self, provider_name: str, config_service: ProviderConfigService) -> None:
        self._provider_name = provider_name
        self._config_service = config_service
        self._config: ConfigT | None = None
        self._lock = asyncio.Lock()

    async def get(self) -> ConfigT:
        if self._config is not None:
            return self._config

        async with self._lock:
            if self._config is not None:
                return self._config

            raw = await self._config_service.get_provider_config_for_use(self._provider_name)
            if not raw:
                logger.error("Provider is not configured", provider=self._provider_name)
                raise ProviderConfigurationError(
                    f"{self._provider_name} provider is not configured. "
                    "Please configure it in the admin panel."
                )

            result = validate_provider_config(self._provider_name, raw)
            if not result.success or result.data is None:
                logger.error(
                    "Invalid provider configuration",
                    provider=self._provider_name,
                    errors=result.errors,
                )
                raise ProviderConfigurationError(
                    f"Invalid {self._provider_name} provider configuration: "
                    f"{'; '.join(result.errors)}"
                )

            self._config = result.data  # type: ignore[assignment]
            return self._config  # type: ignore[return-value]

    def clear(self) -> None:
        """Drop the cached configuration."""
        self._config = None
