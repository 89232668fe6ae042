"""Railway compute provider.

Railway has no separate networking step: a workspace is a Railway service
whose placement is a replica-count-per-region map. Stop and restart mutate
that map; status is inferred from service existence only and reconciled
out-of-band through Railway webhooks.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from gitterm_compute.config import Settings, settings
from gitterm_compute.errors import RailwayAPIError
from gitterm_compute.models.provider_config import RailwayConfig
from gitterm_compute.models.workspace import (
    ExposedPortDomain,
    PersistentWorkspaceConfig,
    PersistentWorkspaceInfo,
    WorkspaceConfig,
    WorkspaceInfo,
    WorkspaceStatus,
    WorkspaceStatusResult,
)
from gitterm_compute.providers.base import ComputeProvider
from gitterm_compute.providers.config_service import (
    CachedProviderConfig,
    ProviderConfigService,
    SettingsProviderConfigService,
)
from gitterm_compute.providers.domains import build_workspace_domain
from gitterm_compute.providers.railway.client import RailwayClient

logger = structlog.get_logger()

DEFAULT_PORT = 7681
VOLUME_MOUNT_PATH = "/workspace"
PRIVATE_DOMAIN_SUFFIX = "railway.internal"


def build_multi_region_config(
    default_region: str,
    region: str,
    num_replicas: int = 1,
) -> dict[str, Any]:
    """Replica placement map for serviceInstanceUpdate.

    When the requested region differs from the project default, the default
    region is cleared so the service only runs where it was asked to.
    """
    if default_region == region:
        return {default_region: {"numReplicas": num_replicas}}
    return {default_region: None, region: {"numReplicas": num_replicas}}


def _parse_timestamp(value: str | None) -> datetime:
    if not value:
        return datetime.now(UTC)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class RailwayProvider(ComputeProvider):
    """Workspaces as Railway services, optionally with a Railway volume."""

    name = "railway"

    def __init__(
        self,
        config_service: ProviderConfigService | None = None,
        app_settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = CachedProviderConfig[RailwayConfig](
            "railway", config_service or SettingsProviderConfigService()
        )
        self._settings = app_settings or settings
        self._http_client = http_client
        self._client: RailwayClient | None = None

    async def get_config(self) -> RailwayConfig:
        return await self._config.get()

    async def _get_client(self) -> RailwayClient:
        if self._client is None:
            config = await self.get_config()
            self._client = RailwayClient(
                str(config.api_url), config.api_token, http_client=self._http_client
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    def _default_region(self, config: RailwayConfig) -> str:
        return config.default_region or self._settings.railway_default_region

    async def _delete_service_after_failure(self, client: RailwayClient, service_id: str) -> None:
        try:
            await client.service_delete(service_id)
        except RailwayAPIError as e:
            logger.warning(
                "Failed to delete Railway service after create failure",
                service_id=service_id,
                error=str(e),
            )

    async def _private_endpoint(
        self,
        client: RailwayClient,
        environment_id: str,
        service_id: str,
        fallback_host: str,
        port: int,
    ) -> str:
        network_id = await client.get_private_network_id(environment_id)
        if not network_id:
            raise RailwayAPIError("No private network found")

        dns_name = await client.get_private_network_dns_name(environment_id, network_id, service_id)
        return f"http://{dns_name or fallback_host}.{PRIVATE_DOMAIN_SUFFIX}:{port}"

    async def _create(
        self,
        config: WorkspaceConfig,
        persistent: bool,
    ) -> tuple[WorkspaceInfo, dict[str, Any] | None]:
        railway_config = await self.get_config()
        client = await self._get_client()
        environment_id = railway_config.environment_id

        logger.info(
            "Creating Railway workspace",
            workspace_id=config.workspace_id,
            region=config.region_identifier,
            persistent=persistent,
        )

        service = await client.service_create(
            railway_config.project_id,
            config.subdomain,
            config.resolved_environment(),
        )
        service_id = service["id"]

        volume: dict[str, Any] | None = None
        try:
            await client.service_instance_update(
                environment_id,
                service_id,
                build_multi_region_config(
                    self._default_region(railway_config), config.region_identifier
                ),
                image=config.image_id,
            )

            if persistent:
                volume = await client.volume_create(
                    railway_config.project_id,
                    environment_id,
                    service_id,
                    VOLUME_MOUNT_PATH,
                    config.region_identifier,
                )

            await client.service_instance_deploy(environment_id, service_id)

            if railway_config.public_railway_domains:
                service_domain = await client.service_domain_create(
                    environment_id, service_id, DEFAULT_PORT
                )
                upstream_url = f"https://{service_domain['domain']}"
                domain = upstream_url
            else:
                upstream_url = await self._private_endpoint(
                    client, environment_id, service_id, config.subdomain, DEFAULT_PORT
                )
                domain = build_workspace_domain(
                    config.subdomain, self._settings.base_domain, self._settings.routing_mode
                )
        except Exception as e:
            logger.warning(
                "Railway workspace creation failed, deleting service",
                workspace_id=config.workspace_id,
                service_id=service_id,
                error=str(e),
            )
            await self._delete_service_after_failure(client, service_id)
            if isinstance(e, RailwayAPIError):
                raise
            raise RailwayAPIError(f"Railway workspace creation failed: {e}") from e

        logger.info(
            "Railway workspace created",
            workspace_id=config.workspace_id,
            service_id=service_id,
        )
        info = WorkspaceInfo(
            external_service_id=service_id,
            upstream_url=upstream_url,
            domain=domain,
            service_created_at=_parse_timestamp(service.get("createdAt")),
        )
        return info, volume

    async def create_workspace(self, config: WorkspaceConfig) -> WorkspaceInfo:
        info, _ = await self._create(config, persistent=False)
        return info

    async def create_persistent_workspace(
        self,
        config: PersistentWorkspaceConfig,
    ) -> PersistentWorkspaceInfo:
        info, volume = await self._create(config, persistent=True)
        if volume is None:
            raise RailwayAPIError("Railway volume was not created")
        return PersistentWorkspaceInfo(
            **info.model_dump(),
            external_volume_id=volume["id"],
            volume_created_at=_parse_timestamp(volume.get("createdAt")),
        )

    async def _set_replicas(
        self,
        external_id: str,
        region_identifier: str | None,
        num_replicas: int,
    ) -> None:
        railway_config = await self.get_config()
        client = await self._get_client()
        region = region_identifier or self._default_region(railway_config)
        await client.service_instance_update(
            railway_config.environment_id,
            external_id,
            {region: {"numReplicas": num_replicas}},
        )

    async def stop_workspace(self, external_id: str, region_identifier: str | None) -> None:
        await self._set_replicas(external_id, region_identifier, 0)
        logger.info("Railway workspace stopped", service_id=external_id)

    async def restart_workspace(self, external_id: str, region_identifier: str | None) -> None:
        await self._set_replicas(external_id, region_identifier, 1)
        logger.info("Railway workspace restarted", service_id=external_id)

    async def terminate_workspace(
        self,
        external_service_id: str,
        external_volume_id: str | None = None,
    ) -> None:
        """Delete the service, then its volume when one was created."""
        client = await self._get_client()
        await client.service_delete(external_service_id)
        if external_volume_id:
            await client.volume_delete(external_volume_id)
        logger.info(
            "Railway workspace terminated",
            service_id=external_service_id,
            volume_id=external_volume_id,
        )

    async def get_status(self, external_id: str) -> WorkspaceStatusResult:
        client = await self._get_client()
        try:
            service = await client.get_service(external_id)
        except RailwayAPIError as e:
            if e.is_not_found:
                return WorkspaceStatusResult(status=WorkspaceStatus.TERMINATED)
            raise

        if not service:
            return WorkspaceStatusResult(status=WorkspaceStatus.TERMINATED)
        return WorkspaceStatusResult(status=WorkspaceStatus.RUNNING)

    async def create_or_get_exposed_port_domain(
        self,
        external_service_id: str,
        port: int,
    ) -> ExposedPortDomain:
        railway_config = await self.get_config()
        client = await self._get_client()
        environment_id = railway_config.environment_id

        if railway_config.public_railway_domains:
            service_domain = await client.service_domain_create(
                environment_id, external_service_id, port
            )
            return ExposedPortDomain(
                domain=f"https://{service_domain['domain']}",
                external_port_domain_id=service_domain["id"],
            )

        domain = await self._private_endpoint(
            client, environment_id, external_service_id, external_service_id, port
        )
        return ExposedPortDomain(domain=domain)

    async def remove_exposed_port_domain(self, external_port_domain_id: str) -> None:
        client = await self._get_client()
        await client.service_domain_delete(external_port_domain_id)
        logger.info("Removed Railway service domain", service_domain_id=external_port_domain_id)

