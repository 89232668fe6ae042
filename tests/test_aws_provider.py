"""Tests for the AWS (ECS Fargate) compute provider."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any

import pytest
from botocore.exceptions import ClientError

from gitterm_compute.config import Settings
from gitterm_compute.errors import (
    NoRunningTaskError,
    ProviderConfigurationError,
    ProvisioningError,
    ProvisioningTimeoutError,
)
from gitterm_compute.models.workspace import (
    PersistentWorkspaceConfig,
    WorkspaceConfig,
    WorkspaceStatus,
)
from gitterm_compute.providers.aws.provider import (
    CLUSTER_NAME,
    AwsProvider,
    status_from_service,
)
from tests.conftest import StaticProviderConfigService
from tests.fake_aws import DEFAULT_VPC_CIDR, FakeAws

SHORT_ID = "0646f2c0cf1b"  # sha1("ws-123")[:12]
PERSISTENT_SHORT_ID = "11d8b30bcaf0"  # sha1("ws-persist")[:12]
SERVICE_NAME = f"gitterm-ws-{SHORT_ID}"
SERVICE_ARN = f"arn:aws:ecs:us-east-1:123456789012:service/{CLUSTER_NAME}/{SERVICE_NAME}"
LB_DNS = f"gitterm-alb-{SHORT_ID}.us-east-1.elb.amazonaws.com"

NO_RESOURCES = {
    "services": 0,
    "task_definitions": 0,
    "load_balancers": 0,
    "target_groups": 0,
    "listeners": 0,
}


def security_group(aws: FakeAws, name: str) -> dict[str, Any]:
    return next(g for g in aws.security_groups.values() if g["GroupName"] == name)


def only(items: list[dict[str, Any]]) -> dict[str, Any]:
    assert len(items) == 1
    return items[0]


# ============================================
# Create
# ============================================


class TestCreateWorkspace:
    """Tests for the creation algorithm."""

    @pytest.mark.asyncio
    async def test_returns_workspace_info(
        self,
        aws_provider: AwsProvider,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Create returns the service ARN, load balancer upstream and public domain."""
        info = await aws_provider.create_workspace(workspace_config)

        assert info.external_service_id == SERVICE_ARN
        assert info.upstream_url == f"http://{LB_DNS}"
        assert info.domain == "https://alice.gitterm.dev"
        assert info.service_created_at == datetime(2026, 1, 1, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_creates_shared_infrastructure(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Cluster and the three security groups are created with their rules."""
        await aws_provider.create_workspace(workspace_config)

        assert fake_aws.clusters[CLUSTER_NAME]["status"] == "ACTIVE"

        alb = security_group(fake_aws, "gitterm-workspaces-alb")
        tasks = security_group(fake_aws, "gitterm-workspaces-tasks")
        efs = security_group(fake_aws, "gitterm-workspaces-efs")

        for port in (80, 443):
            assert ("tcp", port, port, "0.0.0.0/0") in alb["Ingress"]
            assert ("tcp", port, port, "::/0") in alb["Ingress"]
        assert ("tcp", 7681, 7681, alb["GroupId"]) in tasks["Ingress"]
        assert ("tcp", 2049, 2049, tasks["GroupId"]) in efs["Ingress"]
        for group in (alb, tasks, efs):
            assert ("-1", None, None, "0.0.0.0/0") in group["Egress"]

    @pytest.mark.asyncio
    async def test_existing_cluster_is_not_recreated(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Test that an active cluster is reused."""
        fake_aws.clusters[CLUSTER_NAME] = {"clusterName": CLUSTER_NAME, "status": "ACTIVE"}

        await aws_provider.create_workspace(workspace_config)

        assert fake_aws.calls_to("create_cluster") == []

    @pytest.mark.asyncio
    async def test_per_workspace_resource_parameters(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Load balancer, target group, listener, task definition and service settings."""
        await aws_provider.create_workspace(workspace_config)

        lb = only(fake_aws.calls_to("create_load_balancer"))
        assert lb["Name"] == f"gitterm-alb-{SHORT_ID}"
        assert lb["Scheme"] == "internal"
        assert lb["Type"] == "application"
        assert lb["Subnets"] == ["subnet-public-0", "subnet-public-1"]
        assert lb["SecurityGroups"] == [security_group(fake_aws, "gitterm-workspaces-alb")["GroupId"]]
        assert {"Key": "gitterm:service", "Value": "workspace"} in lb["Tags"]

        tg = only(fake_aws.calls_to("create_target_group"))
        assert tg["Name"] == f"gitterm-tg-{SHORT_ID}"
        assert tg["Port"] == 7681
        assert tg["Protocol"] == "HTTP"
        assert tg["TargetType"] == "ip"
        assert tg["HealthCheckPath"] == "/health"

        listener = only(fake_aws.calls_to("create_listener"))
        assert listener["Port"] == 80
        assert listener["DefaultActions"][0]["Type"] == "forward"

        task_def = only(fake_aws.calls_to("register_task_definition"))
        assert task_def["family"] == SERVICE_NAME
        assert task_def["networkMode"] == "awsvpc"
        assert task_def["requiresCompatibilities"] == ["FARGATE"]
        assert task_def["cpu"] == "1024"
        assert task_def["memory"] == "2048"
        assert "volumes" not in task_def
        container = only(task_def["containerDefinitions"])
        assert container["name"] == "workspace"
        assert container["image"] == "ghcr.io/gitterm/workspace:latest"
        assert container["portMappings"] == [{"containerPort": 7681, "protocol": "tcp"}]
        assert container["environment"] == [
            {"name": "REPO_URL", "value": "https://github.com/alice/project"}
        ]

        service = only(fake_aws.calls_to("create_service"))
        assert service["serviceName"] == SERVICE_NAME
        assert service["cluster"] == CLUSTER_NAME
        assert service["desiredCount"] == 1
        assert service["launchType"] == "FARGATE"
        assert service["deploymentConfiguration"] == {
            "minimumHealthyPercent": 0,
            "maximumPercent": 200,
        }
        network = service["networkConfiguration"]["awsvpcConfiguration"]
        assert network["assignPublicIp"] == "DISABLED"
        assert network["securityGroups"] == [
            security_group(fake_aws, "gitterm-workspaces-tasks")["GroupId"]
        ]
        assert service["loadBalancers"][0]["containerPort"] == 7681
        assert {"key": "gitterm:workspace", "value": "ws-123"} in service["tags"]
        assert {"key": "gitterm:region", "value": "us-east-1"} in service["tags"]

    @pytest.mark.asyncio
    async def test_public_ingress(
        self,
        public_aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Public ingress yields an internet-facing load balancer and public task IPs."""
        await public_aws_provider.create_workspace(workspace_config)

        assert only(fake_aws.calls_to("create_load_balancer"))["Scheme"] == "internet-facing"
        service = only(fake_aws.calls_to("create_service"))
        assert service["networkConfiguration"]["awsvpcConfiguration"]["assignPublicIp"] == "ENABLED"

    @pytest.mark.asyncio
    async def test_waits_for_load_balancer(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Test that a new load balancer is waited on until available."""
        await aws_provider.create_workspace(workspace_config)

        assert "load_balancer_available" in fake_aws.call_names("waiter")
        lb = only(list(fake_aws.load_balancers.values()))
        assert lb["State"] == {"Code": "active"}

    @pytest.mark.asyncio
    async def test_path_routing_domain(
        self,
        fake_aws: FakeAws,
        aws_config_service: StaticProviderConfigService,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Test domain for path routing on a localhost base domain."""
        provider = AwsProvider(
            config_service=aws_config_service,
            session_factory=fake_aws.session_factory,
            app_settings=Settings(base_domain="localhost:8888", routing_mode="path"),
        )

        info = await provider.create_workspace(workspace_config)

        assert info.domain == "http://localhost:8888/ws/alice"

    @pytest.mark.asyncio
    async def test_session_uses_configured_credentials(
        self,
        fake_aws: FakeAws,
        aws_config_data: dict[str, Any],
        test_settings: Settings,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Test that the session and clients get credentials, region and endpoint."""
        sessions = []

        def factory(**credentials: Any) -> Any:
            session = fake_aws.session_factory(**credentials)
            sessions.append(session)
            return session

        provider = AwsProvider(
            config_service=StaticProviderConfigService(
                {"aws": {**aws_config_data, "endpointUrl": "http://localhost:4566"}}
            ),
            session_factory=factory,
            app_settings=test_settings,
        )

        await provider.create_workspace(workspace_config)
        await provider.get_status(SERVICE_ARN)

        assert len(sessions) == 1
        assert sessions[0].credentials == {
            "aws_access_key_id": "AKIAEXAMPLE",
            "aws_secret_access_key": "secret",
            "region_name": "us-east-1",
        }
        assert {service for service, _ in fake_aws.client_regions} == {"ecs", "ec2", "elbv2", "efs"}


class TestCreateIdempotency:
    """Tests for re-entry with the same workspace id."""

    @pytest.mark.asyncio
    async def test_second_create_reuses_resources(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """A repeated create reuses every resource by name."""
        first = await aws_provider.create_workspace(workspace_config)
        second = await aws_provider.create_workspace(workspace_config)

        assert first.external_service_id == second.external_service_id
        assert first.upstream_url == second.upstream_url
        assert len(fake_aws.calls_to("create_load_balancer")) == 1
        assert len(fake_aws.calls_to("create_target_group")) == 1
        assert len(fake_aws.calls_to("create_listener")) == 1
        assert len(fake_aws.calls_to("create_service")) == 1
        assert fake_aws.workspace_resources() == {
            "services": 1,
            "task_definitions": 1,
            "load_balancers": 1,
            "target_groups": 1,
            "listeners": 1,
        }

    @pytest.mark.asyncio
    async def test_reuse_points_service_at_new_revision(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Test that reuse updates the service and retires the old revision."""
        await aws_provider.create_workspace(workspace_config)
        await aws_provider.create_workspace(workspace_config)

        service = fake_aws.services[SERVICE_NAME]
        assert service["taskDefinition"].endswith(f"{SERVICE_NAME}:2")
        assert service["desiredCount"] == 1
        assert only(fake_aws.active_task_definitions())["revision"] == 2

    @pytest.mark.asyncio
    async def test_network_resolved_once_per_region(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Network discovery runs once and is cached for the process lifetime."""
        other = workspace_config.model_copy(update={"workspace_id": "ws-456", "subdomain": "carol"})

        await aws_provider.create_workspace(workspace_config)
        await aws_provider.create_workspace(other)

        assert len(fake_aws.calls_to("describe_vpcs")) == 1
        assert len(fake_aws.calls_to("create_security_group")) == 3
        assert "us-east-1" in aws_provider.network_cache

    @pytest.mark.asyncio
    async def test_duplicate_rules_are_swallowed(
        self,
        fake_aws: FakeAws,
        aws_config_service: StaticProviderConfigService,
        test_settings: Settings,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """A fresh process re-authorizes existing rules without failing."""
        first = AwsProvider(
            config_service=aws_config_service,
            session_factory=fake_aws.session_factory,
            app_settings=test_settings,
        )
        second = AwsProvider(
            config_service=aws_config_service,
            session_factory=fake_aws.session_factory,
            app_settings=test_settings,
        )

        await first.create_workspace(workspace_config)
        info = await second.create_workspace(workspace_config)

        assert info.external_service_id == SERVICE_ARN
        assert len(fake_aws.calls_to("create_security_group")) == 3

    @pytest.mark.asyncio
    async def test_concurrent_creates_share_resources(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Concurrent creates for one workspace id never duplicate resources."""
        results = await asyncio.gather(
            aws_provider.create_workspace(workspace_config),
            aws_provider.create_workspace(workspace_config),
        )

        assert results[0].external_service_id == results[1].external_service_id
        assert len(fake_aws.load_balancers) == 1
        assert len(fake_aws.calls_to("create_service")) == 1


# ============================================
# Rollback
# ============================================


class TestCreateRollback:
    """Tests for partial-failure rollback."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "failing_call",
        [
            "create_load_balancer",
            "create_target_group",
            "create_listener",
            "register_task_definition",
            "create_service",
        ],
    )
    async def test_failure_leaves_no_workspace_resources(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
        failing_call: str,
    ) -> None:
        """Any failure from the load balancer step on unwinds everything created."""
        fake_aws.fail(failing_call, code="InternalFailure")

        with pytest.raises(ClientError) as exc_info:
            await aws_provider.create_workspace(workspace_config)

        assert exc_info.value.response["Error"]["Code"] == "InternalFailure"
        assert exc_info.value.operation_name == failing_call
        assert fake_aws.workspace_resources() == NO_RESOURCES

    @pytest.mark.asyncio
    async def test_shared_infrastructure_survives_rollback(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Cluster and security groups are never rolled back."""
        fake_aws.fail("create_service")

        with pytest.raises(ClientError):
            await aws_provider.create_workspace(workspace_config)

        assert CLUSTER_NAME in fake_aws.clusters
        assert len(fake_aws.security_groups) == 3

    @pytest.mark.asyncio
    async def test_persistent_file_system_survives_rollback(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        persistent_workspace_config: PersistentWorkspaceConfig,
    ) -> None:
        """Test that the file system and mount targets stay after a failed create."""
        fake_aws.fail("create_service")

        with pytest.raises(ClientError):
            await aws_provider.create_persistent_workspace(persistent_workspace_config)

        assert len(fake_aws.file_systems) == 1
        assert len(fake_aws.mount_targets) == 2
        assert fake_aws.workspace_resources() == NO_RESOURCES

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failing_call", ["update_service", "deregister_task_definition"])
    async def test_failed_reuse_unwinds_existing_service(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
        failing_call: str,
    ) -> None:
        """A second create that fails while reusing the service removes the service too."""
        await aws_provider.create_workspace(workspace_config)
        fake_aws.fail(failing_call, code="InternalFailure")

        with pytest.raises(ClientError) as exc_info:
            await aws_provider.create_workspace(workspace_config)

        assert exc_info.value.operation_name == failing_call
        deleted = [params["service"] for params in fake_aws.calls_to("delete_service")]
        assert deleted == [SERVICE_ARN]
        assert fake_aws.workspace_resources() == NO_RESOURCES

    @pytest.mark.asyncio
    async def test_cleanup_failure_does_not_mask_original_error(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """A failing cleanup step is logged; the caller sees the original error."""
        fake_aws.fail("create_service", code="InternalFailure")
        fake_aws.fail("delete_target_group", code="AccessDenied", times=None)

        with pytest.raises(ClientError) as exc_info:
            await aws_provider.create_workspace(workspace_config)

        assert exc_info.value.response["Error"]["Code"] == "InternalFailure"
        assert len(fake_aws.target_groups) == 1
        assert len(fake_aws.load_balancers) == 0
        assert fake_aws.active_task_definitions() == []

    @pytest.mark.asyncio
    async def test_load_balancer_timeout_rolls_back(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """A load balancer that never becomes available surfaces as a timeout."""
        fake_aws.stuck_waiters.add("load_balancer_available")

        with pytest.raises(ProvisioningTimeoutError) as exc_info:
            await aws_provider.create_workspace(workspace_config)

        assert exc_info.value.timeout_seconds == 2
        assert fake_aws.workspace_resources() == NO_RESOURCES
        assert fake_aws.calls_to("create_target_group") == []

    @pytest.mark.asyncio
    async def test_rollback_order(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Test that the listener and load balancer go before the target group."""
        fake_aws.fail("create_service")

        with pytest.raises(ClientError):
            await aws_provider.create_workspace(workspace_config)

        names = fake_aws.call_names()
        assert (
            names.index("deregister_task_definition")
            < names.index("delete_listener")
            < names.index("delete_load_balancer")
            < names.index("delete_target_group")
        )


class TestCreatePreconditions:
    """Tests for fatal configuration failures."""

    @pytest.mark.asyncio
    async def test_no_public_subnets(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Test that a VPC without public subnets is a configuration error."""
        fake_aws.subnets = [s for s in fake_aws.subnets if not s["MapPublicIpOnLaunch"]]

        with pytest.raises(ProviderConfigurationError, match="No public subnets"):
            await aws_provider.create_workspace(workspace_config)

        assert fake_aws.calls_to("create_load_balancer") == []

    @pytest.mark.asyncio
    async def test_no_default_vpc(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Test that a missing default VPC is a configuration error."""
        fake_aws.vpcs.clear()

        with pytest.raises(ProviderConfigurationError, match="No default VPC"):
            await aws_provider.create_workspace(workspace_config)

    @pytest.mark.asyncio
    async def test_rule_authorization_error_propagates(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Only duplicate-rule errors are swallowed."""
        fake_aws.fail("authorize_security_group_ingress", code="UnauthorizedOperation")

        with pytest.raises(ClientError) as exc_info:
            await aws_provider.create_workspace(workspace_config)

        assert exc_info.value.response["Error"]["Code"] == "UnauthorizedOperation"
        assert "us-east-1" not in aws_provider.network_cache

    @pytest.mark.asyncio
    async def test_missing_configuration(
        self,
        fake_aws: FakeAws,
        test_settings: Settings,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Test that an unconfigured provider fails before any AWS call."""
        provider = AwsProvider(
            config_service=StaticProviderConfigService({}),
            session_factory=fake_aws.session_factory,
            app_settings=test_settings,
        )

        with pytest.raises(ProviderConfigurationError, match="not configured"):
            await provider.create_workspace(workspace_config)

        assert fake_aws.calls == []

    @pytest.mark.asyncio
    async def test_invalid_configuration(
        self,
        fake_aws: FakeAws,
        aws_config_data: dict[str, Any],
        test_settings: Settings,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Test that an invalid account id is rejected."""
        provider = AwsProvider(
            config_service=StaticProviderConfigService(
                {"aws": {**aws_config_data, "accountId": "123"}}
            ),
            session_factory=fake_aws.session_factory,
            app_settings=test_settings,
        )

        with pytest.raises(ProviderConfigurationError, match="Invalid aws provider configuration"):
            await provider.create_workspace(workspace_config)


# ============================================
# Persistent workspaces
# ============================================


class TestCreatePersistentWorkspace:
    """Tests for EFS-backed workspaces."""

    @pytest.mark.asyncio
    async def test_creates_file_system_and_mounts(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        persistent_workspace_config: PersistentWorkspaceConfig,
    ) -> None:
        """File system, one mount target per public subnet, and an EFS volume."""
        info = await aws_provider.create_persistent_workspace(persistent_workspace_config)

        file_system = only(list(fake_aws.file_systems.values()))
        assert info.external_volume_id == file_system["FileSystemId"]
        assert info.volume_created_at == datetime(2026, 1, 2, tzinfo=UTC)
        assert file_system["CreationToken"] == f"gitterm-{PERSISTENT_SHORT_ID}"
        assert file_system["Encrypted"] is True
        assert {"Key": "Name", "Value": f"gitterm-efs-{PERSISTENT_SHORT_ID}"} in file_system["Tags"]

        efs_group = security_group(fake_aws, "gitterm-workspaces-efs")["GroupId"]
        mounts = list(fake_aws.mount_targets.values())
        assert sorted(m["SubnetId"] for m in mounts) == ["subnet-public-0", "subnet-public-1"]
        assert all(m["SecurityGroups"] == [efs_group] for m in mounts)

        task_def = only(fake_aws.calls_to("register_task_definition"))
        assert task_def["volumes"] == [
            {
                "name": "workspace",
                "efsVolumeConfiguration": {
                    "fileSystemId": file_system["FileSystemId"],
                    "transitEncryption": "ENABLED",
                },
            }
        ]
        container = only(task_def["containerDefinitions"])
        assert container["mountPoints"] == [
            {"sourceVolume": "workspace", "containerPath": "/workspace", "readOnly": False}
        ]

    @pytest.mark.asyncio
    async def test_reuses_file_system_and_mount_targets(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        persistent_workspace_config: PersistentWorkspaceConfig,
    ) -> None:
        """Test that the creation token makes the file system idempotent."""
        first = await aws_provider.create_persistent_workspace(persistent_workspace_config)
        second = await aws_provider.create_persistent_workspace(persistent_workspace_config)

        assert first.external_volume_id == second.external_volume_id
        assert len(fake_aws.calls_to("create_file_system")) == 1
        assert len(fake_aws.calls_to("create_mount_target")) == 2

    @pytest.mark.asyncio
    async def test_adds_missing_mount_targets(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        persistent_workspace_config: PersistentWorkspaceConfig,
    ) -> None:
        """Only subnets without a mount target get one."""
        await aws_provider.create_persistent_workspace(persistent_workspace_config)
        mount_id = next(
            m["MountTargetId"]
            for m in fake_aws.mount_targets.values()
            if m["SubnetId"] == "subnet-public-1"
        )
        del fake_aws.mount_targets[mount_id]

        await aws_provider.create_persistent_workspace(persistent_workspace_config)

        created = fake_aws.calls_to("create_mount_target")
        assert [c["SubnetId"] for c in created] == [
            "subnet-public-0",
            "subnet-public-1",
            "subnet-public-1",
        ]


# ============================================
# Stop / restart / status
# ============================================


class TestLifecycle:
    """Tests for stop, restart and status."""

    @pytest.mark.asyncio
    async def test_status_transitions(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Status follows desired and running counts."""
        info = await aws_provider.create_workspace(workspace_config)
        handle = info.external_service_id

        assert (await aws_provider.get_status(handle)).status == WorkspaceStatus.PENDING

        fake_aws.start_tasks(SERVICE_NAME)
        assert (await aws_provider.get_status(handle)).status == WorkspaceStatus.RUNNING

        await aws_provider.stop_workspace(handle, None)
        assert (await aws_provider.get_status(handle)).status == WorkspaceStatus.STOPPED

        await aws_provider.restart_workspace(handle, None)
        assert (await aws_provider.get_status(handle)).status == WorkspaceStatus.PENDING

        await aws_provider.terminate_workspace(handle)
        assert (await aws_provider.get_status(handle)).status == WorkspaceStatus.TERMINATED

    @pytest.mark.asyncio
    async def test_stop_and_restart_only_touch_desired_count(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Test that stop/restart leave load balancer resources alone."""
        info = await aws_provider.create_workspace(workspace_config)
        calls_before = len(fake_aws.calls)

        await aws_provider.stop_workspace(info.external_service_id, "us-east-1")
        await aws_provider.restart_workspace(info.external_service_id, "us-east-1")

        methods = [method for _, method, _ in fake_aws.calls[calls_before:]]
        assert methods == ["update_service", "update_service"]
        assert [c["desiredCount"] for c in fake_aws.calls_to("update_service")] == [0, 1]
        assert len(fake_aws.load_balancers) == 1

    @pytest.mark.asyncio
    async def test_status_of_unknown_service(self, aws_provider: AwsProvider) -> None:
        """A handle without a service (or cluster) is terminated, not an error."""
        status = await aws_provider.get_status(SERVICE_ARN)

        assert status.status == WorkspaceStatus.TERMINATED

    @pytest.mark.asyncio
    async def test_region_from_service_arn(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
    ) -> None:
        """Test that the region embedded in the ARN picks the client region."""
        arn = f"arn:aws:ecs:eu-west-1:123456789012:service/{CLUSTER_NAME}/{SERVICE_NAME}"

        await aws_provider.get_status(arn)

        assert ("ecs", "eu-west-1") in fake_aws.client_regions

    @pytest.mark.asyncio
    async def test_explicit_region_wins(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Test that an explicit region overrides the ARN."""
        info = await aws_provider.create_workspace(workspace_config)
        fake_aws.client_regions.clear()

        await aws_provider.stop_workspace(info.external_service_id, "ap-south-1")

        assert ("ecs", "ap-south-1") in fake_aws.client_regions

    @pytest.mark.asyncio
    async def test_plain_handle_uses_configured_region(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
    ) -> None:
        """Test that a non-ARN handle falls back to the configured region."""
        await aws_provider.get_status(SERVICE_NAME)

        assert fake_aws.client_regions[0] == ("ecs", "us-east-1")


class TestStatusFromService:
    """Tests for status_from_service mapping."""

    @pytest.mark.parametrize(
        ("service", "expected"),
        [
            (None, WorkspaceStatus.TERMINATED),
            ({"desiredCount": 0, "runningCount": 0}, WorkspaceStatus.STOPPED),
            ({"desiredCount": 0, "runningCount": 1}, WorkspaceStatus.STOPPED),
            ({"desiredCount": 1, "runningCount": 1}, WorkspaceStatus.RUNNING),
            ({"desiredCount": 1, "runningCount": 0}, WorkspaceStatus.PENDING),
        ],
    )
    def test_mapping(self, service: dict[str, int] | None, expected: WorkspaceStatus) -> None:
        assert status_from_service(service) == expected


# ============================================
# Terminate
# ============================================


class TestTerminateWorkspace:
    """Tests for full teardown."""

    @pytest.mark.asyncio
    async def test_deletes_every_workspace_resource(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Test that terminate leaves no per-workspace resources."""
        info = await aws_provider.create_workspace(workspace_config)

        await aws_provider.terminate_workspace(info.external_service_id)

        assert fake_aws.workspace_resources() == NO_RESOURCES
        assert fake_aws.services[SERVICE_NAME]["status"] == "INACTIVE"
        assert CLUSTER_NAME in fake_aws.clusters

    @pytest.mark.asyncio
    async def test_teardown_order(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Service first, then task definition, load balancer and target group."""
        info = await aws_provider.create_workspace(workspace_config)
        fake_aws.calls.clear()

        await aws_provider.terminate_workspace(info.external_service_id)

        names = fake_aws.call_names()
        assert (
            names.index("delete_service")
            < names.index("services_inactive")
            < names.index("deregister_task_definition")
            < names.index("delete_listener")
            < names.index("delete_load_balancer")
            < names.index("load_balancers_deleted")
            < names.index("delete_target_group")
        )
        assert only(fake_aws.calls_to("delete_service"))["force"] is True

    @pytest.mark.asyncio
    async def test_deletes_file_system(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        persistent_workspace_config: PersistentWorkspaceConfig,
    ) -> None:
        """Mount targets are removed before the file system."""
        info = await aws_provider.create_persistent_workspace(persistent_workspace_config)

        await aws_provider.terminate_workspace(info.external_service_id, info.external_volume_id)

        assert fake_aws.file_systems == {}
        assert fake_aws.mount_targets == {}
        assert fake_aws.workspace_resources() == NO_RESOURCES

    @pytest.mark.asyncio
    async def test_file_system_failure_is_best_effort(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        persistent_workspace_config: PersistentWorkspaceConfig,
    ) -> None:
        """Test that an EFS deletion failure is logged, not raised."""
        info = await aws_provider.create_persistent_workspace(persistent_workspace_config)
        fake_aws.fail("delete_file_system", code="AccessDenied", times=None)

        await aws_provider.terminate_workspace(info.external_service_id, info.external_volume_id)

        assert len(fake_aws.file_systems) == 1
        assert fake_aws.workspace_resources() == NO_RESOURCES

    @pytest.mark.asyncio
    async def test_terminate_is_repeatable(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Missing resources are tolerated on a second terminate."""
        info = await aws_provider.create_workspace(workspace_config)

        await aws_provider.terminate_workspace(info.external_service_id)
        await aws_provider.terminate_workspace(info.external_service_id)

        assert len(fake_aws.calls_to("delete_service")) == 1
        assert fake_aws.workspace_resources() == NO_RESOURCES

    @pytest.mark.asyncio
    async def test_terminate_unknown_workspace(self, aws_provider: AwsProvider) -> None:
        """Test that terminating a never-created workspace succeeds."""
        await aws_provider.terminate_workspace(SERVICE_ARN)

    @pytest.mark.asyncio
    async def test_service_inactive_timeout(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Test that a service stuck draining surfaces as a timeout."""
        info = await aws_provider.create_workspace(workspace_config)
        fake_aws.stuck_waiters.add("services_inactive")

        with pytest.raises(ProvisioningTimeoutError):
            await aws_provider.terminate_workspace(info.external_service_id)


# ============================================
# Exposed ports
# ============================================


class TestExposedPortDomain:
    """Tests for exposed-port resolution."""

    @pytest.mark.asyncio
    async def test_primary_port_uses_load_balancer(
        self,
        aws_provider: AwsProvider,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Test that the primary port returns the load balancer address."""
        info = await aws_provider.create_workspace(workspace_config)

        result = await aws_provider.create_or_get_exposed_port_domain(info.external_service_id, 7681)

        assert result.domain == f"http://{LB_DNS}"
        assert result.external_port_domain_id is None

    @pytest.mark.asyncio
    async def test_primary_port_without_load_balancer(self, aws_provider: AwsProvider) -> None:
        """Test that a missing load balancer is an error."""
        with pytest.raises(ProvisioningError, match="Load balancer not found"):
            await aws_provider.create_or_get_exposed_port_domain(SERVICE_ARN, 7681)

    @pytest.mark.asyncio
    async def test_private_port_uses_task_private_ip(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Without public ingress the port opens to the VPC on the private IP."""
        info = await aws_provider.create_workspace(workspace_config)
        fake_aws.start_tasks(SERVICE_NAME, private_ip="172.31.9.9", public_ip=None)

        result = await aws_provider.create_or_get_exposed_port_domain(info.external_service_id, 3000)

        assert result.domain == "http://172.31.9.9:3000"
        tasks_group = security_group(fake_aws, "gitterm-workspaces-tasks")
        assert ("tcp", 3000, 3000, DEFAULT_VPC_CIDR) in tasks_group["Ingress"]
        assert ("tcp", 3000, 3000, "0.0.0.0/0") not in tasks_group["Ingress"]

    @pytest.mark.asyncio
    async def test_public_port_uses_task_public_ip(
        self,
        public_aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """With public ingress the port opens to anywhere on the public IP."""
        info = await public_aws_provider.create_workspace(workspace_config)
        fake_aws.start_tasks(SERVICE_NAME, public_ip="54.10.20.30")

        result = await public_aws_provider.create_or_get_exposed_port_domain(
            info.external_service_id, 8080
        )

        assert result.domain == "http://54.10.20.30:8080"
        tasks_group = security_group(fake_aws, "gitterm-workspaces-tasks")
        assert ("tcp", 8080, 8080, "0.0.0.0/0") in tasks_group["Ingress"]
        assert ("tcp", 8080, 8080, "::/0") in tasks_group["Ingress"]

    @pytest.mark.asyncio
    async def test_repeated_port_is_idempotent(
        self,
        aws_provider: AwsProvider,
        fake_aws: FakeAws,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Test that re-exposing a port swallows the duplicate rule."""
        info = await aws_provider.create_workspace(workspace_config)
        fake_aws.start_tasks(SERVICE_NAME)

        first = await aws_provider.create_or_get_exposed_port_domain(info.external_service_id, 3000)
        second = await aws_provider.create_or_get_exposed_port_domain(info.external_service_id, 3000)

        assert first.domain == second.domain

    @pytest.mark.asyncio
    async def test_no_running_task(
        self,
        aws_provider: AwsProvider,
        workspace_config: WorkspaceConfig,
    ) -> None:
        """Test that a service with no running task cannot expose a port."""
        info = await aws_provider.create_workspace(workspace_config)

        with pytest.raises(NoRunningTaskError, match=SERVICE_NAME):
            await aws_provider.create_or_get_exposed_port_domain(info.external_service_id, 3000)

    @pytest.mark.asyncio
    async def test_remove_exposed_port_domain_is_noop(self, aws_provider: AwsProvider) -> None:
        await aws_provider.remove_exposed_port_domain("anything")
