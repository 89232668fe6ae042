"""Custom exception classes for the compute provisioning engine."""

from typing import Any


class ComputeProviderError(Exception):
    """Base exception for compute provider failures."""


class ProviderConfigurationError(ComputeProviderError):
    """Raised when provider configuration is missing or invalid.

    Configuration errors are fatal and never retried by the engine.
    """


class UnknownProviderError(ProviderConfigurationError):
    """Raised when no implementation exists for a provider name."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        super().__init__(
            f"Unknown compute provider: {name}. "
            f"Available implementations: {', '.join(available)}"
        )


class ProviderNotEnabledError(ProviderConfigurationError):
    """Raised when a provider is implemented but not administratively enabled."""

    def __init__(self, name: str, enabled: list[str]) -> None:
        self.name = name
        self.enabled = enabled
        super().__init__(
            f"Compute provider '{name}' is not enabled. "
            f"Enabled providers: {', '.join(enabled) or 'none'}"
        )


class ProvisioningError(ComputeProviderError):
    """Raised when a remote call completes without returning the expected resource."""


class ProvisioningTimeoutError(ComputeProviderError):
    """Raised when a bounded waiter exceeds its window."""

    def __init__(self, resource: str, timeout_seconds: int) -> None:
        self.resource = resource
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Timed out after {timeout_seconds}s waiting for {resource}")


class NoRunningTaskError(ComputeProviderError):
    """Raised when a workspace has no running task to resolve an address from."""

    def __init__(self, service: str) -> None:
        self.service = service
        super().__init__(f"No running task found for workspace service {service}")


class RailwayAPIError(ComputeProviderError):
    """Raised when the Railway control plane rejects or fails a request."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        self.errors = errors or []
        super().__init__(message)

    @property
    def is_not_found(self) -> bool:
        """True when every GraphQL error reports a missing entity."""
        if not self.errors:
            return False
        return all("not found" in str(e.get("message", "")).lower() for e in self.errors)
