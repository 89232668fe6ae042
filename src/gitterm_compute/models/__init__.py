"""Compute engine models."""

from gitterm_compute.models.provider_config import (
    PROVIDER_DEFINITIONS,
    AwsConfig,
    ProviderDefinition,
    RailwayConfig,
    ValidationResult,
    get_provider_definition,
    validate_provider_config,
)
from gitterm_compute.models.workspace import (
    ExposedPortDomain,
    PersistentWorkspaceConfig,
    PersistentWorkspaceInfo,
    WorkspaceConfig,
    WorkspaceInfo,
    WorkspaceStatus,
    WorkspaceStatusResult,
)

__all__ = [
    "PROVIDER_DEFINITIONS",
    "AwsConfig",
    "ExposedPortDomain",
    "PersistentWorkspaceConfig",
    "PersistentWorkspaceInfo",
    "ProviderDefinition",
    "RailwayConfig",
    "ValidationResult",
    "WorkspaceConfig",
    "WorkspaceInfo",
    "WorkspaceStatus",
    "WorkspaceStatusResult",
    "get_provider_definition",
    "validate_provider_config",
]
