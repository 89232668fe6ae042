"""Async client for the Railway GraphQL control plane."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from gitterm_compute.errors import RailwayAPIError

logger = structlog.get_logger()

SERVICE_CREATE = """
mutation ServiceCreate($input: ServiceCreateInput!) {
  serviceCreate(input: $input) {
    id
    name
    createdAt
  }
}
"""

SERVICE_INSTANCE_UPDATE = """
mutation ServiceInstanceUpdate(
  $environmentId: String!
  $serviceId: String!
  $input: ServiceInstanceUpdateInput!
) {
  serviceInstanceUpdate(environmentId: $environmentId, serviceId: $serviceId, input: $input)
}
"""

SERVICE_INSTANCE_DEPLOY = """
mutation ServiceInstanceDeploy(
  $environmentId: String!
  $serviceId: String!
  $latestCommit: Boolean
) {
  serviceInstanceDeploy(
    environmentId: $environmentId
    serviceId: $serviceId
    latestCommit: $latestCommit
  )
}
"""

SERVICE_DELETE = """
mutation ServiceDelete($id: String!) {
  serviceDelete(id: $id)
}
"""

SERVICE_QUERY = """
query Service($id: String!) {
  service(id: $id) {
    id
    name
    createdAt
  }
}
"""

VOLUME_CREATE = """
mutation VolumeCreate($input: VolumeCreateInput!) {
  volumeCreate(input: $input) {
    id
    createdAt
  }
}
"""

VOLUME_DELETE = """
mutation VolumeDelete($volumeId: String!) {
  volumeDelete(volumeId: $volumeId)
}
"""

SERVICE_DOMAIN_CREATE = """
mutation ServiceDomainCreate($input: ServiceDomainCreateInput!) {
  serviceDomainCreate(input: $input) {
    id
    domain
  }
}
"""

SERVICE_DOMAIN_DELETE = """
mutation ServiceDomainDelete($id: String!) {
  serviceDomainDelete(id: $id)
}
"""

PRIVATE_NETWORKS = """
query PrivateNetworks($environmentId: String!) {
  privateNetworks(environmentId: $environmentId) {
    publicId
  }
}
"""

PRIVATE_NETWORK_ENDPOINT = """
query PrivateNetworkEndpoint(
  $environmentId: String!
  $privateNetworkId: String!
  $serviceId: String!
) {
  privateNetworkEndpoint(
    environmentId: $environmentId
    privateNetworkId: $privateNetworkId
    serviceId: $serviceId
  ) {
    dnsName
  }
}
"""


class RailwayClient:
    """Thin GraphQL wrapper: one method per control-plane operation.

    Every method raises RailwayAPIError on transport failures, non-2xx
    responses, GraphQL errors or a response without data.
    """

    def __init__(
        self,
        api_url: str,
        api_token: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._api_url = api_url
        self._api_token = api_token
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10.0))

    async def close(self) -> None:
        await self._http.aclose()

    async def execute(
        self,
        operation: str,
        query: str,
        variables: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """POST a GraphQL document and return its ``data`` payload."""
        if not self._api_token:
            raise RailwayAPIError("Railway API token is not set")
        if not self._api_url:
            raise RailwayAPIError("Railway API URL is not set")

        try:
            response = await self._http.post(
                self._api_url,
                json={"query": query, "variables": variables or {}},
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self._api_token}",
                },
            )
        except httpx.HTTPError as e:
            logger.warning("Railway API request failed", operation=operation, error=str(e))
            raise RailwayAPIError(f"Railway API request failed ({operation}): {e}") from e

        if not response.is_success:
            raise RailwayAPIError(
                f"Railway API request failed ({operation}): "
                f"{response.status_code} {response.reason_phrase}"
            )

        try:
            result = response.json()
        except ValueError as e:
            raise RailwayAPIError(f"Invalid JSON from Railway API ({operation}): {e}") from e
        if not isinstance(result, dict):
            raise RailwayAPIError(f"Unexpected response from Railway API ({operation})")

        errors = result.get("errors") or []
        if errors:
            messages = ", ".join(str(e.get("message", "")) for e in errors)
            raise RailwayAPIError(f"GraphQL errors ({operation}): {messages}", errors)

        data = result.get("data")
        if not data:
            raise RailwayAPIError(f"No data returned from Railway API ({operation})")
        return dict(data)

    async def service_create(
        self,
        project_id: str,
        name: str,
        variables: dict[str, str],
    ) -> dict[str, Any]:
        data = await self.execute(
            "ServiceCreate",
            SERVICE_CREATE,
            {"input": {"projectId": project_id, "name": name, "variables": variables}},
        )
        return dict(data["serviceCreate"])

    async def service_instance_update(
        self,
        environment_id: str,
        service_id: str,
        multi_region_config: dict[str, Any],
        image: str | None = None,
    ) -> None:
        update: dict[str, Any] = {"multiRegionConfig": multi_region_config}
        if image:
            update["source"] = {"image": image}
        await self.execute(
            "ServiceInstanceUpdate",
            SERVICE_INSTANCE_UPDATE,
            {"environmentId": environment_id, "serviceId": service_id, "input": update},
        )

    async def service_instance_deploy(self, environment_id: str, service_id: str) -> None:
        await self.execute(
            "ServiceInstanceDeploy",
            SERVICE_INSTANCE_DEPLOY,
            {"environmentId": environment_id, "serviceId": service_id, "latestCommit": True},
        )

    async def service_delete(self, service_id: str) -> None:
        await self.execute("ServiceDelete", SERVICE_DELETE, {"id": service_id})

    async def get_service(self, service_id: str) -> dict[str, Any] | None:
        data = await self.execute("Service", SERVICE_QUERY, {"id": service_id})
        service = data.get("service")
        return dict(service) if service else None

    async def volume_create(
        self,
        project_id: str,
        environment_id: str,
        service_id: str,
        mount_path: str,
        region: str,
    ) -> dict[str, Any]:
        data = await self.execute(
            "VolumeCreate",
            VOLUME_CREATE,
            {
                "input": {
                    "projectId": project_id,
                    "environmentId": environment_id,
                    "serviceId": service_id,
                    "mountPath": mount_path,
                    "region": region,
                }
            },
        )
        return dict(data["volumeCreate"])

    async def volume_delete(self, volume_id: str) -> None:
        await self.execute("VolumeDelete", VOLUME_DELETE, {"volumeId": volume_id})

    async def service_domain_create(
        self,
        environment_id: str,
        service_id: str,
        target_port: int,
    ) -> dict[str, Any]:
        data = await self.execute(
            "ServiceDomainCreate",
            SERVICE_DOMAIN_CREATE,
            {
                "input": {
                    "environmentId": environment_id,
                    "serviceId": service_id,
                    "targetPort": target_port,
                }
            },
        )
        return dict(data["serviceDomainCreate"])

    async def service_domain_delete(self, service_domain_id: str) -> None:
        await self.execute("ServiceDomainDelete", SERVICE_DOMAIN_DELETE, {"id": service_domain_id})

    async def get_private_network_id(self, environment_id: str) -> str | None:
        data = await self.execute(
            "PrivateNetworks", PRIVATE_NETWORKS, {"environmentId": environment_id}
        )
        networks = data.get("privateNetworks") or []
        if not networks or not networks[0]:
            return None
        return networks[0].get("publicId")

    async def get_private_network_dns_name(
        self,
        environment_id: str,
        private_network_id: str,
        service_id: str,
    ) -> str | None:
        data = await self.execute(
            "PrivateNetworkEndpoint",
            PRIVATE_NETWORK_ENDPOINT,
            {
                "environmentId": environment_id,
                "privateNetworkId": private_network_id,
                "serviceId": service_id,
            },
        )
        endpoint = data.get("privateNetworkEndpoint") or {}
        return endpoint.get("dnsName")
