"""Compute engine configuration."""

from typing import Annotated, Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode

DEFAULT_BASE_DOMAIN = "gitterm.dev"
LOCAL_PROVIDER = "local"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service
    environment: Literal["development", "staging", "production"] = "development"
    deployment_mode: Literal["self-hosted", "managed"] = "self-hosted"

    # Public routing
    base_domain: str = DEFAULT_BASE_DOMAIN
    routing_mode: Literal["subdomain", "path"] = "subdomain"

    # Compute providers (comma-separated in env, e.g. "aws,local")
    enabled_providers: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: [LOCAL_PROVIDER]
    )
    default_provider: str | None = None

    # AWS fallback credentials (used by the env-backed provider config service)
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_region: str = "us-east-1"
    aws_account_id: str | None = None
    aws_public_ingress: bool = False
    aws_endpoint: str | None = None  # LocalStack

    # Railway fallback credentials
    railway_api_url: str = "https://backboard.railway.app/graphql/v2"
    railway_api_token: str | None = None
    railway_project_id: str | None = None
    railway_environment_id: str | None = None
    railway_default_region: str = "us-east4-eqdc4a"
    railway_public_domains: bool = False

    # Bounded waiters
    load_balancer_wait_seconds: int = 120
    service_inactive_wait_seconds: int = 120
    file_system_wait_seconds: int = 120
    waiter_delay_seconds: int = 15

    # Sentry (reads from SENTRY_ env vars, not GITTERM_)
    sentry_dsn: str | None = Field(default=None, validation_alias="SENTRY_DSN")

    model_config = {"env_prefix": "GITTERM_", "case_sensitive": False}

    @field_validator("enabled_providers", mode="before")
    @classmethod
    def parse_enabled_providers(cls, v: Any) -> list[str]:
        """Accept a comma-separated string or a list of provider names."""
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        return [str(name).strip().lower() for name in v if str(name).strip()]

    @field_validator("default_provider", mode="before")
    @classmethod
    def normalize_default_provider(cls, v: Any) -> str | None:
        if not v:
            return None
        return str(v).strip().lower()

    @property
    def default_provider_name(self) -> str:
        """Configured default, else the first enabled provider, else local."""
        if self.default_provider:
            return self.default_provider
        if self.enabled_providers:
            return self.enabled_providers[0]
        return LOCAL_PROVIDER

    @property
    def is_managed(self) -> bool:
        return self.deployment_mode == "managed"

    @property
    def is_self_hosted(self) -> bool:
        return self.deployment_mode == "self-hosted"


settings = Settings()
