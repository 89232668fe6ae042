"""Provider configuration models and validation.

Provider configuration is stored by an external configuration service
(camelCase keys). These models validate it before a provider uses it.
"""

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, ValidationError
from pydantic.alias_generators import to_camel


class _ProviderConfigModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class AwsConfig(_ProviderConfigModel):
    """Credentials and defaults for the AWS (ECS Fargate) provider."""

    access_key_id: str = Field(min_length=1)
    secret_access_key: str = Field(min_length=1)
    region: str = Field(min_length=1)
    account_id: str | None = Field(default=None, pattern=r"^\d{12}$")
    public_ingress: bool = False
    endpoint_url: str | None = None  # LocalStack


class RailwayConfig(_ProviderConfigModel):
    """Credentials and defaults for the Railway provider."""

    api_url: HttpUrl
    api_token: str = Field(min_length=1)
    project_id: str = Field(min_length=1)
    environment_id: str = Field(min_length=1)
    default_region: str | None = None
    public_railway_domains: bool = False


class ProviderDefinition(BaseModel):
    """Static description of a provider and its configuration schema."""

    name: str
    display_name: str
    category: Literal["compute", "sandbox", "both"]
    config_model: type[BaseModel]


@dataclass
class ValidationResult:
    """Outcome of validating a provider configuration."""

    success: bool
    data: BaseModel | None = None
    errors: list[str] = field(default_factory=list)


PROVIDER_DEFINITIONS: dict[str, ProviderDefinition] = {
    "railway": ProviderDefinition(
        name="railway",
        display_name="Railway",
        category="compute",
        config_model=RailwayConfig,
    ),
    "aws": ProviderDefinition(
        name="aws",
        display_name="AWS",
        category="compute",
        config_model=AwsConfig,
    ),
}


def get_provider_definition(provider_name: str) -> ProviderDefinition | None:
    return PROVIDER_DEFINITIONS.get(provider_name)


def validate_provider_config(provider_name: str, config: dict[str, Any]) -> ValidationResult:
    """Validate raw configuration against a provider's schema.

    Errors are reported as "<field path>: <message>" strings.
    """
    definition = get_provider_definition(provider_name)
    if definition is None:
        return ValidationResult(success=False, errors=[f"Unknown provider: {provider_name}"])

    try:
        data = definition.config_model.model_validate(config)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in issue['loc'])}: {issue['msg']}" for issue in e.errors()
        ]
        return ValidationResult(success=False, errors=errors)

    return ValidationResult(success=True, data=data)
