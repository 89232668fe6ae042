"""Compute providers and the registry that selects between them."""

from gitterm_compute.providers.aws import AwsProvider
from gitterm_compute.providers.base import ComputeProvider
from gitterm_compute.providers.config_service import (
    CachedProviderConfig,
    ProviderConfigService,
    SettingsProviderConfigService,
)
from gitterm_compute.providers.domains import build_workspace_domain
from gitterm_compute.providers.local import LocalProvider
from gitterm_compute.providers.railway import RailwayProvider
from gitterm_compute.providers.registry import (
    ProviderRegistry,
    get_available_provider_names,
    get_default_provider,
    get_provider,
    is_provider_enabled,
    is_provider_implemented,
)

__all__ = [
    "AwsProvider",
    "CachedProviderConfig",
    "ComputeProvider",
    "LocalProvider",
    "ProviderConfigService",
    "ProviderRegistry",
    "RailwayProvider",
    "SettingsProviderConfigService",
    "build_workspace_domain",
    "get_available_provider_names",
    "get_default_provider",
    "get_provider",
    "is_provider_enabled",
    "is_provider_implemented",
]
