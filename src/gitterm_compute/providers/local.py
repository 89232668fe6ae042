"""Local compute provider.

Used for tunnel-only and single-machine deployments where the workspace runs
on the user's own machine. No remote resources exist, so every lifecycle
operation only records the request.
"""

from __future__ import annotations

from datetime import UTC, datetime

import structlog

from gitterm_compute.config import Settings, settings
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
from gitterm_compute.providers.domains import build_workspace_domain

logger = structlog.get_logger()

LOCAL_HANDLE_PREFIX = "local:"


class LocalProvider(ComputeProvider):
    """No-op backend; the local tunnel client supplies the upstream itself."""

    name = "local"

    def __init__(self, app_settings: Settings | None = None) -> None:
        self._settings = app_settings or settings

    def _workspace_info(self, config: WorkspaceConfig) -> WorkspaceInfo:
        return WorkspaceInfo(
            external_service_id=f"{LOCAL_HANDLE_PREFIX}{config.workspace_id}",
            upstream_url="",
            domain=build_workspace_domain(
                config.subdomain, self._settings.base_domain, self._settings.routing_mode
            ),
            service_created_at=datetime.now(UTC),
        )

    async def create_workspace(self, config: WorkspaceConfig) -> WorkspaceInfo:
        logger.info("Registered local workspace", workspace_id=config.workspace_id)
        return self._workspace_info(config)

    async def create_persistent_workspace(
        self,
        config: PersistentWorkspaceConfig,
    ) -> PersistentWorkspaceInfo:
        info = self._workspace_info(config)
        logger.info("Registered local persistent workspace", workspace_id=config.workspace_id)
        return PersistentWorkspaceInfo(
            **info.model_dump(),
            external_volume_id=f"{LOCAL_HANDLE_PREFIX}{config.workspace_id}",
            volume_created_at=info.service_created_at,
        )

    async def stop_workspace(self, external_id: str, region_identifier: str | None) -> None:
        logger.info("Local workspace stop requested", external_id=external_id)

    async def restart_workspace(self, external_id: str, region_identifier: str | None) -> None:
        logger.info("Local workspace restart requested", external_id=external_id)

    async def terminate_workspace(
        self,
        external_service_id: str,
        external_volume_id: str | None = None,
    ) -> None:
        logger.info("Local workspace terminate requested", external_id=external_service_id)

    async def get_status(self, external_id: str) -> WorkspaceStatusResult:
        # Liveness of a local workspace is tracked by its tunnel connection
        return WorkspaceStatusResult(status=WorkspaceStatus.RUNNING)

    async def create_or_get_exposed_port_domain(
        self,
        external_service_id: str,
        port: int,
    ) -> ExposedPortDomain:
        return ExposedPortDomain(domain=f"http://localhost:{port}")
