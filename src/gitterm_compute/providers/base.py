"""Abstract base class for compute providers."""

from __future__ import annotations

from abc import ABC, abstractmethod

from gitterm_compute.models.workspace import (
    ExposedPortDomain,
    PersistentWorkspaceConfig,
    PersistentWorkspaceInfo,
    WorkspaceConfig,
    WorkspaceInfo,
    WorkspaceStatusResult,
)


class ComputeProvider(ABC):
    """Cloud-agnostic compute provider interface.

    Implemented by:
    - AwsProvider: ECS Fargate services behind per-workspace load balancers
    - RailwayProvider: Railway services and volumes
    - LocalProvider: no-op backend for tunnel-only deployments

    Every operation either completes or raises a ComputeProviderError (or the
    underlying transport error); partial results are never returned.
    """

    #: Provider name identifier (e.g. "railway", "aws", "local")
    name: str

    @abstractmethod
    async def create_workspace(self, config: WorkspaceConfig) -> WorkspaceInfo:
        """Create a new workspace instance.

        Args:
            config: Workspace configuration (image, subdomain, region, env)

        Returns:
            WorkspaceInfo with the external service id and routing addresses
        """

    @abstractmethod
    async def create_persistent_workspace(
        self,
        config: PersistentWorkspaceConfig,
    ) -> PersistentWorkspaceInfo:
        """Create a new workspace backed by a durable volume.

        Args:
            config: Persistent workspace configuration

        Returns:
            PersistentWorkspaceInfo including the external volume id
        """

    @abstractmethod
    async def stop_workspace(self, external_id: str, region_identifier: str | None) -> None:
        """Scale a workspace to zero replicas, keeping its resources.

        Args:
            external_id: The provider's service handle
            region_identifier: Region hint; providers may infer it when None
        """

    @abstractmethod
    async def restart_workspace(self, external_id: str, region_identifier: str | None) -> None:
        """Scale a stopped workspace back to one replica.

        Args:
            external_id: The provider's service handle
            region_identifier: Region hint; providers may infer it when None
        """

    @abstractmethod
    async def terminate_workspace(
        self,
        external_service_id: str,
        external_volume_id: str | None = None,
    ) -> None:
        """Permanently delete every resource created for a workspace.

        Args:
            external_service_id: The provider's service handle
            external_volume_id: Volume handle for persistent workspaces
        """

    @abstractmethod
    async def get_status(self, external_id: str) -> WorkspaceStatusResult:
        """Get the current status of a workspace.

        A workspace that no longer exists reports TERMINATED rather than raising.
        """

    @abstractmethod
    async def create_or_get_exposed_port_domain(
        self,
        external_service_id: str,
        port: int,
    ) -> ExposedPortDomain:
        """Return an address reachable for a container port.

        Args:
            external_service_id: The provider's service handle
            port: Container port to expose

        Returns:
            ExposedPortDomain with the address and an optional provider handle
        """

    async def remove_exposed_port_domain(self, external_port_domain_id: str) -> None:  # noqa: B027
        """Release an exposed port address. Providers without handles do nothing."""
