"""
Typed per-provider deployment configuration.

Each provider declares its own model with its own required fields. The
raw ``config`` blob on a Deployment is parsed into the model for its
provider at deploy time; a missing required field raises
ConfigurationError before any backend call is made.
"""

from typing import Any, Dict, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from deployment_service.core.errors import ConfigurationError, ValidationError
from deployment_service.core.models import DeploymentProvider


class _ProviderConfig(BaseModel):
    # Accepts both "functionName" and "function_name"
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class KubernetesConfig(_ProviderConfig):
    namespace: str = Field(min_length=1)
    image: str = Field(min_length=1)
    replicas: Optional[int] = Field(default=None, ge=0)
    container_port: Optional[int] = None
    environment: Dict[str, str] = Field(default_factory=dict)


class LambdaConfig(_ProviderConfig):
    function_name: str = Field(min_length=1)
    runtime: str = Field(min_length=1)
    handler: str = Field(min_length=1)
    role: str = Field(min_length=1)
    code: str = Field(min_length=1)  # base64-encoded deployment package
    memory_size: int = 128
    timeout: int = 30
    environment: Dict[str, str] = Field(default_factory=dict)


class CloudRunConfig(_ProviderConfig):
    name: str = Field(min_length=1)
    image: str = Field(min_length=1)
    # Falls back to ProviderSettings.gcp_region when omitted
    region: Optional[str] = None
    cpu: str = "1000m"
    memory: str = "256Mi"
    container_concurrency: int = 80
    environment: Dict[str, str] = Field(default_factory=dict)


ProviderConfig = Union[KubernetesConfig, LambdaConfig, CloudRunConfig]


CONFIG_MODELS: Dict[DeploymentProvider, Type[_ProviderConfig]] = {
    DeploymentProvider.KUBERNETES: KubernetesConfig,
    DeploymentProvider.AWS_LAMBDA: LambdaConfig,
    DeploymentProvider.CLOUD_RUN: CloudRunConfig,
}


def parse_provider_config(provider, raw: Optional[Dict[str, Any]]) -> ProviderConfig:
    """
    Parse a raw config blob into the typed config for ``provider``.

    Raises:
        ValidationError: provider has no typed config
        ConfigurationError: required fields missing or malformed
    """
    provider = DeploymentProvider.parse(provider)
    model = CONFIG_MODELS.get(provider)
    if model is None:
        raise ValidationError(f"No typed configuration for provider {provider.value}")

    try:
        return model.model_validate(raw or {})
    except PydanticValidationError as e:
        fields = []
        for error in e.errors():
            name = ".".join(str(part) for part in error["loc"]) or "config"
            if name not in fields:
                fields.append(name)
        raise ConfigurationError(provider.value, fields) from e
