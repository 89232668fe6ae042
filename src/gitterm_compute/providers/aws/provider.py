"""AWS compute provider (ECS Fargate behind a per-workspace load balancer).

Architecture:
- **Shared infrastructure (per region)**: one ECS cluster, the default VPC and
  its public subnets, and three security groups (load balancer, tasks, EFS).
  These are created once, cached per region and never rolled back.
- **Per-workspace resources**: an application load balancer, a target group,
  an HTTP listener, a task definition family and an ECS service, all named
  from the workspace id's short hash. Persistent workspaces also get an EFS
  file system with one mount target per public subnet.

A failed create deletes every per-workspace resource it obtained and then
re-raises the original error.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import aioboto3
import structlog
from botocore.exceptions import ClientError, WaiterError

from gitterm_compute.config import Settings, settings
from gitterm_compute.errors import (
    NoRunningTaskError,
    ProviderConfigurationError,
    ProvisioningError,
    ProvisioningTimeoutError,
)
from gitterm_compute.models.provider_config import AwsConfig
from gitterm_compute.models.workspace import (
    ExposedPortDomain,
    PersistentWorkspaceConfig,
    PersistentWorkspaceInfo,
    WorkspaceConfig,
    WorkspaceInfo,
    WorkspaceStatus,
    WorkspaceStatusResult,
)
from gitterm_compute.providers.aws.cleanup import ResourceTeardown
from gitterm_compute.providers.aws.errors import is_duplicate_permission, is_not_found
from gitterm_compute.providers.aws.naming import (
    get_file_system_tag_name,
    get_file_system_token,
    get_load_balancer_name,
    get_service_name,
    get_short_id,
    get_target_group_name,
    get_task_definition_family,
    parse_region_from_service_arn,
    service_name_from_handle,
    short_id_from_service_name,
)
from gitterm_compute.providers.aws.network import NetworkConfig, NetworkConfigCache
from gitterm_compute.providers.base import ComputeProvider
from gitterm_compute.providers.config_service import (
    CachedProviderConfig,
    ProviderConfigService,
    SettingsProviderConfigService,
)
from gitterm_compute.providers.domains import build_workspace_domain
from gitterm_compute.utils.workspace_lock import WorkspaceLocks

logger = structlog.get_logger()

DEFAULT_PORT = 7681
CLUSTER_NAME = "gitterm-workspaces"
TASK_CONTAINER_NAME = "workspace"
VOLUME_NAME = "workspace"
VOLUME_CONTAINER_PATH = "/workspace"
DEFAULT_CPU = "1024"
DEFAULT_MEMORY = "2048"
HTTP_PORT = 80
HTTPS_PORT = 443
NFS_PORT = 2049
HEALTH_CHECK_PATH = "/health"

SECURITY_GROUP_ALB = "gitterm-workspaces-alb"
SECURITY_GROUP_TASKS = "gitterm-workspaces-tasks"
SECURITY_GROUP_EFS = "gitterm-workspaces-efs"

ANYWHERE_IPV4 = [{"CidrIp": "0.0.0.0/0"}]
ANYWHERE_IPV6 = [{"CidrIpv6": "::/0"}]
ALLOW_ALL_EGRESS = [
    {"IpProtocol": "-1", "IpRanges": ANYWHERE_IPV4, "Ipv6Ranges": ANYWHERE_IPV6},
]

SessionFactory = Callable[..., Any]


@dataclass
class AwsClients:
    """Open service clients for one region."""

    ecs: Any
    ec2: Any
    elb: Any
    efs: Any


@dataclass
class _ProvisionedResources:
    """Per-workspace resources obtained during one create call."""

    load_balancer_arn: str | None = None
    target_group_arn: str | None = None
    listener_arn: str | None = None
    task_definition_arn: str | None = None
    previous_task_definition_arn: str | None = None
    service_arn: str | None = None


@dataclass
class _ProvisionResult:
    service: dict[str, Any]
    load_balancer: dict[str, Any]
    file_system: dict[str, Any] | None


class AwsProvider(ComputeProvider):
    """Production implementation using AWS ECS Fargate, ELBv2 and EFS.

    Stateless between calls apart from the fetched provider configuration,
    the per-region NetworkConfig cache and in-process create leases.
    """

    name = "aws"

    def __init__(
        self,
        config_service: ProviderConfigService | None = None,
        session_factory: SessionFactory | None = None,
        app_settings: Settings | None = None,
    ) -> None:
        self._config = CachedProviderConfig[AwsConfig](
            "aws", config_service or SettingsProviderConfigService()
        )
        self._session_factory: SessionFactory = session_factory or aioboto3.Session
        self._session: Any = None
        self._settings = app_settings or settings
        self._network_cache = NetworkConfigCache()
        self._locks = WorkspaceLocks()

    async def get_config(self) -> AwsConfig:
        """Provider configuration, fetched on first use and then cached."""
        return await self._config.get()

    @property
    def network_cache(self) -> NetworkConfigCache:
        return self._network_cache

    def _get_session(self, config: AwsConfig) -> Any:
        if self._session is None:
            self._session = self._session_factory(
                aws_access_key_id=config.access_key_id,
                aws_secret_access_key=config.secret_access_key,
                region_name=config.region,
            )
        return self._session

    def get_region(
        self,
        config: AwsConfig,
        region_identifier: str | None = None,
        external_service_id: str | None = None,
    ) -> str:
        """Resolve the region: explicit hint, then the service ARN, then the default."""
        if region_identifier:
            return region_identifier
        arn_region = parse_region_from_service_arn(external_service_id)
        if arn_region:
            return arn_region
        return config.region

    @asynccontextmanager
    async def _clients(self, config: AwsConfig, region: str) -> AsyncIterator[AwsClients]:
        session = self._get_session(config)
        client_kwargs = {"region_name": region, "endpoint_url": config.endpoint_url}
        async with AsyncExitStack() as stack:
            ecs = await stack.enter_async_context(session.client("ecs", **client_kwargs))
            ec2 = await stack.enter_async_context(session.client("ec2", **client_kwargs))
            elb = await stack.enter_async_context(session.client("elbv2", **client_kwargs))
            efs = await stack.enter_async_context(session.client("efs", **client_kwargs))
            yield AwsClients(ecs=ecs, ec2=ec2, elb=elb, efs=efs)

    async def _wait(
        self,
        client: Any,
        waiter_name: str,
        resource: str,
        timeout_seconds: int,
        **params: Any,
    ) -> None:
        """Run a botocore waiter bounded by timeout_seconds."""
        delay = max(1, self._settings.waiter_delay_seconds)
        waiter = client.get_waiter(waiter_name)
        try:
            await waiter.wait(
                **params,
                WaiterConfig={"Delay": delay, "MaxAttempts": max(1, timeout_seconds // delay)},
            )
        except WaiterError as e:
            logger.warning(
                "Timed out waiting for AWS resource",
                resource=resource,
                waiter=waiter_name,
                timeout_seconds=timeout_seconds,
                error=str(e),
            )
            raise ProvisioningTimeoutError(resource, timeout_seconds) from e

    # --- Shared infrastructure ---

    async def _ensure_cluster(self, ecs: Any) -> None:
        existing = await ecs.describe_clusters(clusters=[CLUSTER_NAME])
        if any(c.get("status") == "ACTIVE" for c in existing.get("clusters", [])):
            return

        await ecs.create_cluster(clusterName=CLUSTER_NAME)
        logger.info("Created ECS cluster", cluster=CLUSTER_NAME)

    async def _get_default_vpc(self, ec2: Any) -> tuple[str, str]:
        result = await ec2.describe_vpcs(Filters=[{"Name": "isDefault", "Values": ["true"]}])
        vpcs = result.get("Vpcs", [])
        vpc = vpcs[0] if vpcs else {}
        if not vpc.get("VpcId"):
            raise ProviderConfigurationError("No default VPC found for AWS provider")
        if not vpc.get("CidrBlock"):
            raise ProviderConfigurationError("Default VPC CIDR not found for AWS provider")
        return vpc["VpcId"], vpc["CidrBlock"]

    async def _get_public_subnet_ids(self, ec2: Any, vpc_id: str) -> tuple[str, ...]:
        result = await ec2.describe_subnets(Filters=[{"Name": "vpc-id", "Values": [vpc_id]}])
        subnet_ids = tuple(
            subnet["SubnetId"]
            for subnet in result.get("Subnets", [])
            if subnet.get("MapPublicIpOnLaunch") and subnet.get("SubnetId")
        )
        if not subnet_ids:
            raise ProviderConfigurationError("No public subnets found in default VPC")
        return subnet_ids

    async def _get_or_create_security_group(
        self,
        ec2: Any,
        vpc_id: str,
        name: str,
        description: str,
    ) -> str:
        existing = await ec2.describe_security_groups(
            Filters=[
                {"Name": "group-name", "Values": [name]},
                {"Name": "vpc-id", "Values": [vpc_id]},
            ]
        )
        groups = existing.get("SecurityGroups", [])
        if groups and groups[0].get("GroupId"):
            return str(groups[0]["GroupId"])

        created = await ec2.create_security_group(
            GroupName=name,
            Description=description,
            VpcId=vpc_id,
        )
        group_id = created.get("GroupId")
        if not group_id:
            raise ProvisioningError(f"Failed to create security group: {name}")

        logger.info("Created security group", name=name, group_id=group_id, vpc_id=vpc_id)
        return str(group_id)

    async def _authorize_ingress(self, ec2: Any, group_id: str, permissions: list[dict]) -> None:
        try:
            await ec2.authorize_security_group_ingress(GroupId=group_id, IpPermissions=permissions)
        except ClientError as e:
            if not is_duplicate_permission(e):
                raise

    async def _authorize_egress(self, ec2: Any, group_id: str, permissions: list[dict]) -> None:
        try:
            await ec2.authorize_security_group_egress(GroupId=group_id, IpPermissions=permissions)
        except ClientError as e:
            if not is_duplicate_permission(e):
                raise

    async def _ensure_security_group_rules(
        self,
        ec2: Any,
        alb_group_id: str,
        tasks_group_id: str,
        efs_group_id: str,
    ) -> None:
        # Load balancer: HTTP/HTTPS from anywhere
        await self._authorize_ingress(
            ec2,
            alb_group_id,
            [
                {
                    "IpProtocol": "tcp",
                    "FromPort": port,
                    "ToPort": port,
                    "IpRanges": ANYWHERE_IPV4,
                    "Ipv6Ranges": ANYWHERE_IPV6,
                }
                for port in (HTTP_PORT, HTTPS_PORT)
            ],
        )
        await self._authorize_egress(ec2, alb_group_id, ALLOW_ALL_EGRESS)

        # Tasks: container port from the load balancer only
        await self._authorize_ingress(
            ec2,
            tasks_group_id,
            [
                {
                    "IpProtocol": "tcp",
                    "FromPort": DEFAULT_PORT,
                    "ToPort": DEFAULT_PORT,
                    "UserIdGroupPairs": [{"GroupId": alb_group_id}],
                }
            ],
        )
        await self._authorize_egress(ec2, tasks_group_id, ALLOW_ALL_EGRESS)

        # EFS: NFS from tasks only
        await self._authorize_ingress(
            ec2,
            efs_group_id,
            [
                {
                    "IpProtocol": "tcp",
                    "FromPort": NFS_PORT,
                    "ToPort": NFS_PORT,
                    "UserIdGroupPairs": [{"GroupId": tasks_group_id}],
                }
            ],
        )
        await self._authorize_egress(ec2, efs_group_id, ALLOW_ALL_EGRESS)

    async def _get_network_config(self, ec2: Any, region: str) -> NetworkConfig:
        async def discover() -> NetworkConfig:
            vpc_id, vpc_cidr = await self._get_default_vpc(ec2)
            subnet_ids = await self._get_public_subnet_ids(ec2, vpc_id)

            alb_group_id = await self._get_or_create_security_group(
                ec2, vpc_id, SECURITY_GROUP_ALB, "Gitterm ALB security group"
            )
            tasks_group_id = await self._get_or_create_security_group(
                ec2, vpc_id, SECURITY_GROUP_TASKS, "Gitterm ECS task security group"
            )
            efs_group_id = await self._get_or_create_security_group(
                ec2, vpc_id, SECURITY_GROUP_EFS, "Gitterm EFS security group"
            )
            await self._ensure_security_group_rules(
                ec2, alb_group_id, tasks_group_id, efs_group_id
            )

            logger.info(
                "Resolved AWS network configuration",
                region=region,
                vpc_id=vpc_id,
                subnets=len(subnet_ids),
            )
            return NetworkConfig(
                vpc_id=vpc_id,
                vpc_cidr=vpc_cidr,
                subnet_ids=subnet_ids,
                alb_security_group_id=alb_group_id,
                tasks_security_group_id=tasks_group_id,
                efs_security_group_id=efs_group_id,
            )

        return await self._network_cache.get_or_populate(region, discover)

    # --- Persistent storage ---

    async def _ensure_file_system(self, efs: Any, workspace_id: str) -> dict[str, Any]:
        short_id = get_short_id(workspace_id)
        token = get_file_system_token(short_id)

        existing = await efs.describe_file_systems(CreationToken=token)
        file_systems = existing.get("FileSystems", [])
        if file_systems and file_systems[0].get("FileSystemId"):
            return dict(file_systems[0])

        created = await efs.create_file_system(
            CreationToken=token,
            Encrypted=True,
            Tags=[
                {"Key": "Name", "Value": get_file_system_tag_name(short_id)},
                {"Key": "gitterm:workspace", "Value": workspace_id},
            ],
        )
        if not created.get("FileSystemId"):
            raise ProvisioningError("Failed to create EFS file system")

        logger.info(
            "Created EFS file system",
            workspace_id=workspace_id,
            file_system_id=created["FileSystemId"],
        )
        return dict(created)

    async def _ensure_mount_targets(
        self,
        efs: Any,
        file_system_id: str,
        subnet_ids: tuple[str, ...],
        security_group_id: str,
    ) -> None:
        mounts = await efs.describe_mount_targets(FileSystemId=file_system_id)
        existing = {m["SubnetId"] for m in mounts.get("MountTargets", []) if m.get("SubnetId")}

        for subnet_id in subnet_ids:
            if subnet_id in existing:
                continue
            await efs.create_mount_target(
                FileSystemId=file_system_id,
                SubnetId=subnet_id,
                SecurityGroups=[security_group_id],
            )

    # --- Per-workspace resources ---

    async def _describe_load_balancer(self, elb: Any, name: str) -> dict[str, Any] | None:
        try:
            existing = await elb.describe_load_balancers(Names=[name])
        except ClientError as e:
            if is_not_found(e, "LoadBalancerNotFound"):
                return None
            raise
        load_balancers = existing.get("LoadBalancers", [])
        return dict(load_balancers[0]) if load_balancers else None

    async def _get_or_create_load_balancer(
        self,
        elb: Any,
        name: str,
        network: NetworkConfig,
        public_ingress: bool,
    ) -> dict[str, Any]:
        existing = await self._describe_load_balancer(elb, name)
        if existing:
            return existing

        created = await elb.create_load_balancer(
            Name=name,
            Subnets=list(network.subnet_ids),
            SecurityGroups=[network.alb_security_group_id],
            Scheme="internet-facing" if public_ingress else "internal",
            Type="application",
            IpAddressType="ipv4",
            Tags=[{"Key": "gitterm:service", "Value": "workspace"}],
        )
        load_balancers = created.get("LoadBalancers", [])
        if not load_balancers or not load_balancers[0].get("LoadBalancerArn"):
            raise ProvisioningError("Failed to create load balancer")
        return dict(load_balancers[0])

    async def _wait_for_load_balancer(self, elb: Any, load_balancer: dict[str, Any]) -> None:
        if load_balancer.get("State", {}).get("Code") == "active":
            return
        await self._wait(
            elb,
            "load_balancer_available",
            f"load balancer {load_balancer.get('LoadBalancerName', '')}".strip(),
            self._settings.load_balancer_wait_seconds,
            LoadBalancerArns=[load_balancer["LoadBalancerArn"]],
        )

    async def _describe_target_group(self, elb: Any, name: str) -> dict[str, Any] | None:
        try:
            existing = await elb.describe_target_groups(Names=[name])
        except ClientError as e:
            if is_not_found(e, "TargetGroupNotFound"):
                return None
            raise
        target_groups = existing.get("TargetGroups", [])
        return dict(target_groups[0]) if target_groups else None

    async def _ensure_target_group(
        self,
        elb: Any,
        name: str,
        vpc_id: str,
        port: int,
    ) -> dict[str, Any]:
        existing = await self._describe_target_group(elb, name)
        if existing:
            return existing

        created = await elb.create_target_group(
            Name=name,
            Port=port,
            Protocol="HTTP",
            TargetType="ip",
            VpcId=vpc_id,
            HealthCheckPath=HEALTH_CHECK_PATH,
            HealthCheckProtocol="HTTP",
        )
        target_groups = created.get("TargetGroups", [])
        if not target_groups or not target_groups[0].get("TargetGroupArn"):
            raise ProvisioningError("Failed to create target group")
        return dict(target_groups[0])

    async def _ensure_listener(
        self,
        elb: Any,
        load_balancer_arn: str,
        target_group_arn: str,
    ) -> dict[str, Any]:
        listeners = await elb.describe_listeners(LoadBalancerArn=load_balancer_arn)
        for listener in listeners.get("Listeners", []):
            if listener.get("Port") == HTTP_PORT:
                return dict(listener)

        created = await elb.create_listener(
            LoadBalancerArn=load_balancer_arn,
            Port=HTTP_PORT,
            Protocol="HTTP",
            DefaultActions=[{"Type": "forward", "TargetGroupArn": target_group_arn}],
        )
        created_listeners = created.get("Listeners", [])
        if not created_listeners:
            raise ProvisioningError("Failed to create load balancer listener")
        return dict(created_listeners[0])

    async def _register_task_definition(
        self,
        ecs: Any,
        family: str,
        config: WorkspaceConfig,
        file_system_id: str | None = None,
    ) -> str:
        container_definition: dict[str, Any] = {
            "name": TASK_CONTAINER_NAME,
            "image": config.image_id,
            "essential": True,
            "portMappings": [{"containerPort": DEFAULT_PORT, "protocol": "tcp"}],
            "environment": [
                {"name": k, "value": v} for k, v in config.resolved_environment().items()
            ],
        }

        params: dict[str, Any] = {
            "family": family,
            "networkMode": "awsvpc",
            "requiresCompatibilities": ["FARGATE"],
            "cpu": DEFAULT_CPU,
            "memory": DEFAULT_MEMORY,
            "containerDefinitions": [container_definition],
        }

        if file_system_id:
            container_definition["mountPoints"] = [
                {
                    "sourceVolume": VOLUME_NAME,
                    "containerPath": VOLUME_CONTAINER_PATH,
                    "readOnly": False,
                }
            ]
            params["volumes"] = [
                {
                    "name": VOLUME_NAME,
                    "efsVolumeConfiguration": {
                        "fileSystemId": file_system_id,
                        "transitEncryption": "ENABLED",
                    },
                }
            ]

        response = await ecs.register_task_definition(**params)
        task_definition_arn = response.get("taskDefinition", {}).get("taskDefinitionArn")
        if not task_definition_arn:
            raise ProvisioningError("Failed to register task definition")
        return str(task_definition_arn)

    async def _describe_service(self, ecs: Any, service: str) -> dict[str, Any] | None:
        """Describe a service; missing, inactive or cluster-less services yield None."""
        try:
            result = await ecs.describe_services(cluster=CLUSTER_NAME, services=[service])
        except ClientError as e:
            if is_not_found(e, "ClusterNotFoundException", "ServiceNotFoundException"):
                return None
            raise

        for described in result.get("services", []):
            if described.get("status") != "INACTIVE":
                return dict(described)
        return None

    async def _create_service(
        self,
        ecs: Any,
        region: str,
        network: NetworkConfig,
        config: WorkspaceConfig,
        target_group_arn: str,
        task_definition_arn: str,
        public_ingress: bool,
        resources: _ProvisionedResources,
    ) -> dict[str, Any]:
        service_name = get_service_name(get_short_id(config.workspace_id))

        existing = await self._describe_service(ecs, service_name)
        if existing:
            logger.info(
                "Reusing existing ECS service",
                workspace_id=config.workspace_id,
                service=service_name,
            )
            # A failed update unwinds the reused service along with the rest
            resources.service_arn = existing.get("serviceArn")
            previous = existing.get("taskDefinition")
            if previous and previous != task_definition_arn:
                resources.previous_task_definition_arn = previous
            response = await ecs.update_service(
                cluster=CLUSTER_NAME,
                service=service_name,
                taskDefinition=task_definition_arn,
                desiredCount=1,
            )
            if resources.previous_task_definition_arn:
                await ecs.deregister_task_definition(
                    taskDefinition=resources.previous_task_definition_arn
                )
                resources.previous_task_definition_arn = None
            return dict(response.get("service", {}))

        response = await ecs.create_service(
            cluster=CLUSTER_NAME,
            serviceName=service_name,
            taskDefinition=task_definition_arn,
            desiredCount=1,
            launchType="FARGATE",
            deploymentConfiguration={"minimumHealthyPercent": 0, "maximumPercent": 200},
            networkConfiguration={
                "awsvpcConfiguration": {
                    "subnets": list(network.subnet_ids),
                    "securityGroups": [network.tasks_security_group_id],
                    "assignPublicIp": "ENABLED" if public_ingress else "DISABLED",
                },
            },
            loadBalancers=[
                {
                    "targetGroupArn": target_group_arn,
                    "containerName": TASK_CONTAINER_NAME,
                    "containerPort": DEFAULT_PORT,
                }
            ],
            enableExecuteCommand=False,
            tags=[
                {"key": "gitterm:workspace", "value": config.workspace_id},
                {"key": "gitterm:region", "value": region},
            ],
        )
        return dict(response.get("service", {}))

    async def _delete_listeners(self, elb: Any, load_balancer_arn: str) -> None:
        listeners = await elb.describe_listeners(LoadBalancerArn=load_balancer_arn)
        for listener in listeners.get("Listeners", []):
            if listener.get("ListenerArn"):
                await elb.delete_listener(ListenerArn=listener["ListenerArn"])

    async def _delete_load_balancer(self, elb: Any, load_balancer_arn: str) -> None:
        await elb.delete_load_balancer(LoadBalancerArn=load_balancer_arn)
        await self._wait(
            elb,
            "load_balancers_deleted",
            f"load balancer deletion {load_balancer_arn}",
            self._settings.load_balancer_wait_seconds,
            LoadBalancerArns=[load_balancer_arn],
        )

    async def _cleanup_failed_workspace(
        self,
        clients: AwsClients,
        workspace_id: str,
        resources: _ProvisionedResources,
    ) -> ResourceTeardown:
        """Best-effort deletion of everything a failed create obtained."""
        ecs, elb = clients.ecs, clients.elb
        teardown = ResourceTeardown(workspace_id=workspace_id)

        await teardown.attempt(
            "ecs_service",
            resources.service_arn,
            lambda: ecs.delete_service(
                cluster=CLUSTER_NAME, service=resources.service_arn, force=True
            ),
        )
        await teardown.attempt(
            "task_definition",
            resources.task_definition_arn,
            lambda: ecs.deregister_task_definition(taskDefinition=resources.task_definition_arn),
        )
        await teardown.attempt(
            "task_definition",
            resources.previous_task_definition_arn,
            lambda: ecs.deregister_task_definition(
                taskDefinition=resources.previous_task_definition_arn
            ),
        )
        await teardown.attempt(
            "listener",
            resources.load_balancer_arn,
            lambda: self._delete_listeners(elb, str(resources.load_balancer_arn)),
        )
        await teardown.attempt(
            "load_balancer",
            resources.load_balancer_arn,
            lambda: self._delete_load_balancer(elb, str(resources.load_balancer_arn)),
        )
        await teardown.attempt(
            "target_group",
            resources.target_group_arn,
            lambda: elb.delete_target_group(TargetGroupArn=resources.target_group_arn),
        )

        if not teardown.succeeded:
            logger.warning(
                "Workspace rollback left resources behind",
                workspace_id=workspace_id,
                failed=[f.resource for f in teardown.failures],
            )
        return teardown

    async def _provision(
        self,
        config: WorkspaceConfig,
        persistent: bool,
    ) -> _ProvisionResult:
        aws_config = await self.get_config()
        region = self.get_region(aws_config, config.region_identifier)
        public_ingress = aws_config.public_ingress

        short_id = get_short_id(config.workspace_id)

        logger.info(
            "Creating AWS workspace",
            workspace_id=config.workspace_id,
            user_id=config.user_id,
            region=region,
            short_id=short_id,
            persistent=persistent,
            public_ingress=public_ingress,
        )

        async with self._locks.lease(config.workspace_id), self._clients(
            aws_config, region
        ) as clients:
            # Shared infrastructure, never rolled back
            await self._ensure_cluster(clients.ecs)
            network = await self._get_network_config(clients.ec2, region)

            file_system: dict[str, Any] | None = None
            if persistent:
                file_system = await self._ensure_file_system(clients.efs, config.workspace_id)
                await self._ensure_mount_targets(
                    clients.efs,
                    file_system["FileSystemId"],
                    network.subnet_ids,
                    network.efs_security_group_id,
                )

            resources = _ProvisionedResources()
            try:
                load_balancer = await self._get_or_create_load_balancer(
                    clients.elb, get_load_balancer_name(short_id), network, public_ingress
                )
                resources.load_balancer_arn = load_balancer["LoadBalancerArn"]
                await self._wait_for_load_balancer(clients.elb, load_balancer)

                target_group = await self._ensure_target_group(
                    clients.elb, get_target_group_name(short_id), network.vpc_id, DEFAULT_PORT
                )
                resources.target_group_arn = target_group["TargetGroupArn"]

                listener = await self._ensure_listener(
                    clients.elb, load_balancer["LoadBalancerArn"], target_group["TargetGroupArn"]
                )
                resources.listener_arn = listener.get("ListenerArn")

                resources.task_definition_arn = await self._register_task_definition(
                    clients.ecs,
                    get_task_definition_family(short_id),
                    config,
                    file_system["FileSystemId"] if file_system else None,
                )

                service = await self._create_service(
                    clients.ecs,
                    region,
                    network,
                    config,
                    target_group["TargetGroupArn"],
                    resources.task_definition_arn,
                    public_ingress,
                    resources,
                )
                resources.service_arn = service.get("serviceArn")
                if not resources.service_arn:
                    raise ProvisioningError("Failed to create ECS service")
            except Exception as e:
                logger.warning(
                    "AWS workspace creation failed, rolling back",
                    workspace_id=config.workspace_id,
                    error=str(e),
                )
                await self._cleanup_failed_workspace(clients, config.workspace_id, resources)
                raise

        logger.info(
            "AWS workspace created",
            workspace_id=config.workspace_id,
            service_arn=resources.service_arn,
        )
        return _ProvisionResult(
            service=service, load_balancer=load_balancer, file_system=file_system
        )

    @staticmethod
    def _upstream_url(load_balancer: dict[str, Any]) -> str:
        dns_name = load_balancer.get("DNSName")
        return f"http://{dns_name}" if dns_name else ""

    async def create_workspace(self, config: WorkspaceConfig) -> WorkspaceInfo:
        """Create an ECS service workspace behind its own load balancer."""
        result = await self._provision(config, persistent=False)
        return WorkspaceInfo(
            external_service_id=result.service["serviceArn"],
            upstream_url=self._upstream_url(result.load_balancer),
            domain=build_workspace_domain(
                config.subdomain, self._settings.base_domain, self._settings.routing_mode
            ),
            service_created_at=result.service.get("createdAt") or datetime.now(UTC),
        )

    async def create_persistent_workspace(
        self,
        config: PersistentWorkspaceConfig,
    ) -> PersistentWorkspaceInfo:
        """Create a workspace whose /workspace directory lives on EFS."""
        result = await self._provision(config, persistent=True)
        file_system = result.file_system or {}
        return PersistentWorkspaceInfo(
            external_service_id=result.service["serviceArn"],
            external_volume_id=file_system["FileSystemId"],
            upstream_url=self._upstream_url(result.load_balancer),
            domain=build_workspace_domain(
                config.subdomain, self._settings.base_domain, self._settings.routing_mode
            ),
            service_created_at=result.service.get("createdAt") or datetime.now(UTC),
            volume_created_at=file_system.get("CreationTime") or datetime.now(UTC),
        )

    async def _set_desired_count(
        self,
        external_id: str,
        region_identifier: str | None,
        desired_count: int,
    ) -> None:
        aws_config = await self.get_config()
        region = self.get_region(aws_config, region_identifier, external_id)
        async with self._clients(aws_config, region) as clients:
            await clients.ecs.update_service(
                cluster=CLUSTER_NAME,
                service=external_id,
                desiredCount=desired_count,
            )

    async def stop_workspace(self, external_id: str, region_identifier: str | None) -> None:
        """Scale the ECS service to zero; load balancer resources stay in place."""
        await self._set_desired_count(external_id, region_identifier, 0)
        logger.info("AWS workspace stopped", external_id=external_id)

    async def restart_workspace(self, external_id: str, region_identifier: str | None) -> None:
        """Scale the ECS service back to one task."""
        await self._set_desired_count(external_id, region_identifier, 1)
        logger.info("AWS workspace restarted", external_id=external_id)

    async def _delete_service(self, ecs: Any, external_service_id: str) -> bool:
        try:
            await ecs.delete_service(cluster=CLUSTER_NAME, service=external_service_id, force=True)
        except ClientError as e:
            if is_not_found(e, "ServiceNotFoundException", "ClusterNotFoundException"):
                return False
            raise
        return True

    async def _delete_file_system(self, efs: Any, file_system_id: str) -> None:
        mounts = await efs.describe_mount_targets(FileSystemId=file_system_id)
        for mount in mounts.get("MountTargets", []):
            if mount.get("MountTargetId"):
                await efs.delete_mount_target(MountTargetId=mount["MountTargetId"])

        # Mount target deletion is asynchronous; the file system stays in use until
        # every target is gone. EFS has no botocore waiter for this.
        delay = max(1, self._settings.waiter_delay_seconds)
        for _ in range(max(1, self._settings.file_system_wait_seconds // delay)):
            remaining = await efs.describe_mount_targets(FileSystemId=file_system_id)
            if not remaining.get("MountTargets"):
                break
            await asyncio.sleep(delay)

        await efs.delete_file_system(FileSystemId=file_system_id)

    async def terminate_workspace(
        self,
        external_service_id: str,
        external_volume_id: str | None = None,
    ) -> None:
        """Delete the service, task definition, load balancer, target group and EFS volume."""
        aws_config = await self.get_config()
        region = self.get_region(aws_config, None, external_service_id)
        short_id = short_id_from_service_name(service_name_from_handle(external_service_id))
        lb_name = get_load_balancer_name(short_id)
        tg_name = get_target_group_name(short_id)

        logger.info(
            "Terminating AWS workspace",
            external_service_id=external_service_id,
            region=region,
            short_id=short_id,
            has_volume=bool(external_volume_id),
        )

        async with self._clients(aws_config, region) as clients:
            ecs, elb = clients.ecs, clients.elb

            service = await self._describe_service(ecs, external_service_id)
            task_definition_arn = service.get("taskDefinition") if service else None

            if service and await self._delete_service(ecs, external_service_id):
                await self._wait(
                    ecs,
                    "services_inactive",
                    f"ECS service {external_service_id}",
                    self._settings.service_inactive_wait_seconds,
                    cluster=CLUSTER_NAME,
                    services=[external_service_id],
                )

            if task_definition_arn:
                await ecs.deregister_task_definition(taskDefinition=task_definition_arn)

            load_balancer = await self._describe_load_balancer(elb, lb_name)
            if load_balancer:
                try:
                    await self._delete_listeners(elb, load_balancer["LoadBalancerArn"])
                    await self._delete_load_balancer(elb, load_balancer["LoadBalancerArn"])
                except ClientError as e:
                    if not is_not_found(e, "LoadBalancerNotFound", "ListenerNotFound"):
                        raise

            target_group = await self._describe_target_group(elb, tg_name)
            if target_group:
                try:
                    await elb.delete_target_group(TargetGroupArn=target_group["TargetGroupArn"])
                except ClientError as e:
                    if not is_not_found(e, "TargetGroupNotFound"):
                        raise

            if external_volume_id:
                teardown = ResourceTeardown(workspace_id=short_id)
                await teardown.attempt(
                    "file_system",
                    external_volume_id,
                    lambda: self._delete_file_system(clients.efs, external_volume_id),
                )

        logger.info("AWS workspace terminated", external_service_id=external_service_id)

    async def get_status(self, external_id: str) -> WorkspaceStatusResult:
        """Map the ECS service's replica counts to a workspace status."""
        aws_config = await self.get_config()
        region = self.get_region(aws_config, None, external_id)

        async with self._clients(aws_config, region) as clients:
            service = await self._describe_service(clients.ecs, external_id)

        return WorkspaceStatusResult(status=status_from_service(service))

    async def _get_load_balancer_dns(self, elb: Any, service_name: str) -> str | None:
        lb_name = get_load_balancer_name(short_id_from_service_name(service_name))
        load_balancer = await self._describe_load_balancer(elb, lb_name)
        return load_balancer.get("DNSName") if load_balancer else None

    async def _get_task_network_interface(
        self,
        ecs: Any,
        ec2: Any,
        service_name: str,
    ) -> dict[str, Any] | None:
        tasks = await ecs.list_tasks(
            cluster=CLUSTER_NAME,
            serviceName=service_name,
            desiredStatus="RUNNING",
        )
        task_arns = tasks.get("taskArns", [])
        if not task_arns:
            return None

        described = await ecs.describe_tasks(cluster=CLUSTER_NAME, tasks=[task_arns[0]])
        task = (described.get("tasks") or [{}])[0]

        eni_id = None
        for attachment in task.get("attachments", []):
            if attachment.get("type") != "ElasticNetworkInterface":
                continue
            for detail in attachment.get("details", []):
                if detail.get("name") == "networkInterfaceId":
                    eni_id = detail.get("value")
        if not eni_id:
            return None

        interfaces = await ec2.describe_network_interfaces(NetworkInterfaceIds=[eni_id])
        found = interfaces.get("NetworkInterfaces", [])
        return dict(found[0]) if found else None

    async def _authorize_port_ingress(
        self,
        ec2: Any,
        security_group_id: str,
        port: int,
        public_ingress: bool,
        vpc_cidr: str,
    ) -> None:
        permission: dict[str, Any] = {"IpProtocol": "tcp", "FromPort": port, "ToPort": port}
        if public_ingress:
            permission["IpRanges"] = ANYWHERE_IPV4
            permission["Ipv6Ranges"] = ANYWHERE_IPV6
        else:
            permission["IpRanges"] = [{"CidrIp": vpc_cidr}]
        await self._authorize_ingress(ec2, security_group_id, [permission])

    async def create_or_get_exposed_port_domain(
        self,
        external_service_id: str,
        port: int,
    ) -> ExposedPortDomain:
        """Resolve an address for a container port.

        The primary port is served by the load balancer. Any other port is
        opened on the task security group and addressed directly on the
        running task (public IP with public ingress, private IP otherwise).
        """
        aws_config = await self.get_config()
        region = self.get_region(aws_config, None, external_service_id)
        public_ingress = aws_config.public_ingress
        service_name = service_name_from_handle(external_service_id)

        async with self._clients(aws_config, region) as clients:
            if port == DEFAULT_PORT:
                dns_name = await self._get_load_balancer_dns(clients.elb, service_name)
                if not dns_name:
                    raise ProvisioningError("Load balancer not found for service")
                return ExposedPortDomain(domain=f"http://{dns_name}")

            network = await self._get_network_config(clients.ec2, region)
            await self._authorize_port_ingress(
                clients.ec2,
                network.tasks_security_group_id,
                port,
                public_ingress,
                network.vpc_cidr,
            )

            interface = await self._get_task_network_interface(
                clients.ecs, clients.ec2, service_name
            )

        address = None
        if interface:
            if public_ingress:
                address = interface.get("Association", {}).get("PublicIp")
            else:
                address = interface.get("PrivateIpAddress")
        if not address:
            raise NoRunningTaskError(service_name)

        logger.info(
            "Resolved exposed port address",
            service=service_name,
            port=port,
            public_ingress=public_ingress,
        )
        return ExposedPortDomain(domain=f"http://{address}:{port}")


def status_from_service(service: dict[str, Any] | None) -> WorkspaceStatus:
    """Normalize an ECS service description to a workspace status."""
    if not service:
        return WorkspaceStatus.TERMINATED
    if service.get("desiredCount", 0) == 0:
        return WorkspaceStatus.STOPPED
    if service.get("runningCount", 0) > 0:
        return WorkspaceStatus.RUNNING
    return WorkspaceStatus.PENDING
