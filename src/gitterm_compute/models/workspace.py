"""Workspace models exchanged between callers and compute providers.

Configs are immutable inputs to a single provisioning call. Infos carry the
external identifiers a caller-owned store persists and hands back on
stop/restart/terminate/status calls.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class WorkspaceStatus(str, Enum):
    """Normalized workspace lifecycle status reported by every provider."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    TERMINATED = "terminated"


class WorkspaceConfig(BaseModel):
    """Configuration for creating a new workspace."""

    model_config = ConfigDict(frozen=True)

    workspace_id: str
    user_id: str
    image_id: str = Field(description="Container image reference")
    subdomain: str
    repository_url: str | None = None
    region_identifier: str
    environment_variables: dict[str, str | None] = Field(default_factory=dict)

    def resolved_environment(self) -> dict[str, str]:
        """Environment variables with unset values dropped."""
        return {k: str(v) for k, v in self.environment_variables.items() if v is not None}


class PersistentWorkspaceConfig(WorkspaceConfig):
    """Workspace configuration that also provisions a durable volume."""

    persistent: bool = True


class WorkspaceInfo(BaseModel):
    """Result of a successful workspace creation."""

    external_service_id: str
    upstream_url: str = Field(description="Internal address a reverse proxy forwards to")
    domain: str
    service_created_at: datetime


class PersistentWorkspaceInfo(WorkspaceInfo):
    """Result of a successful persistent workspace creation."""

    external_volume_id: str
    volume_created_at: datetime


class WorkspaceStatusResult(BaseModel):
    """Current status of a workspace as seen by its provider."""

    status: WorkspaceStatus
    last_active_at: datetime | None = None


class ExposedPortDomain(BaseModel):
    """Address reachable for a secondary container port."""

    domain: str
    external_port_domain_id: str | None = None
