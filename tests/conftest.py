"""Shared test fixtures for compute engine tests."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
import respx

from gitterm_compute.config import Settings
from gitterm_compute.models.workspace import PersistentWorkspaceConfig, WorkspaceConfig
from gitterm_compute.providers.aws.provider import AwsProvider
from gitterm_compute.providers.config_service import ProviderConfigService
from gitterm_compute.providers.railway.provider import RailwayProvider
from tests.fake_aws import FakeAws

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Generator

RAILWAY_API_URL = "https://backboard.railway.test/graphql/v2"


class StaticProviderConfigService(ProviderConfigService):
    """Config service returning fixed per-provider dictionaries."""

    def __init__(self, configs: dict[str, dict[str, Any] | None]) -> None:
        self.configs = configs
        self.lookups: list[str] = []

    async def get_provider_config_for_use(self, provider_name: str) -> dict[str, Any] | None:
        self.lookups.append(provider_name)
        return self.configs.get(provider_name)


# ============================================
# Settings Fixtures
# ============================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings with short waiter windows and a production-style base domain."""
    return Settings(
        base_domain="gitterm.dev",
        routing_mode="subdomain",
        enabled_providers=["aws", "railway"],
        waiter_delay_seconds=1,
        load_balancer_wait_seconds=2,
        service_inactive_wait_seconds=2,
        file_system_wait_seconds=1,
    )


# ============================================
# Workspace Fixtures
# ============================================


@pytest.fixture
def workspace_config() -> WorkspaceConfig:
    return WorkspaceConfig(
        workspace_id="ws-123",
        user_id="user-1",
        image_id="ghcr.io/gitterm/workspace:latest",
        subdomain="alice",
        repository_url="https://github.com/alice/project",
        region_identifier="us-east-1",
        environment_variables={"REPO_URL": "https://github.com/alice/project", "UNSET": None},
    )


@pytest.fixture
def persistent_workspace_config() -> PersistentWorkspaceConfig:
    return PersistentWorkspaceConfig(
        workspace_id="ws-persist",
        user_id="user-1",
        image_id="ghcr.io/gitterm/workspace:latest",
        subdomain="bob",
        region_identifier="us-east-1",
        environment_variables={"REPO_URL": "https://github.com/bob/project"},
    )


# ============================================
# AWS Fixtures
# ============================================


@pytest.fixture
def aws_config_data() -> dict[str, Any]:
    return {
        "accessKeyId": "AKIAEXAMPLE",
        "secretAccessKey": "secret",
        "region": "us-east-1",
        "publicIngress": False,
    }


@pytest.fixture
def fake_aws() -> FakeAws:
    """Fake AWS account with a default VPC, two public and one private subnet."""
    return FakeAws().with_default_network()


@pytest.fixture
def aws_config_service(aws_config_data: dict[str, Any]) -> StaticProviderConfigService:
    return StaticProviderConfigService({"aws": aws_config_data})


@pytest.fixture
def aws_provider(
    fake_aws: FakeAws,
    aws_config_service: StaticProviderConfigService,
    test_settings: Settings,
) -> AwsProvider:
    return AwsProvider(
        config_service=aws_config_service,
        session_factory=fake_aws.session_factory,
        app_settings=test_settings,
    )


@pytest.fixture
def public_aws_provider(
    fake_aws: FakeAws,
    aws_config_data: dict[str, Any],
    test_settings: Settings,
) -> AwsProvider:
    return AwsProvider(
        config_service=StaticProviderConfigService(
            {"aws": {**aws_config_data, "publicIngress": True}}
        ),
        session_factory=fake_aws.session_factory,
        app_settings=test_settings,
    )


# ============================================
# Railway Fixtures
# ============================================


@pytest.fixture
def railway_config_data() -> dict[str, Any]:
    return {
        "apiUrl": RAILWAY_API_URL,
        "apiToken": "railway-token",
        "projectId": "proj-1",
        "environmentId": "env-1",
        "defaultRegion": "us-east4-eqdc4a",
        "publicRailwayDomains": False,
    }


@pytest.fixture
async def railway_provider(
    railway_config_data: dict[str, Any],
    test_settings: Settings,
) -> AsyncGenerator[RailwayProvider, None]:
    provider = RailwayProvider(
        config_service=StaticProviderConfigService({"railway": railway_config_data}),
        app_settings=test_settings,
    )
    yield provider
    await provider.close()


@pytest.fixture
def railway_api() -> Generator[respx.MockRouter, None, None]:
    """Mocked Railway GraphQL endpoint."""
    with respx.mock(assert_all_called=False) as mock:
        yield mock
