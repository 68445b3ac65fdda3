from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from deployment_service.core.models import (
    AutoscalingConfig,
    DeploymentEnvironment,
    ResourceLimits,
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AutoscalingRequest(_CamelModel):
    enabled: bool = False
    min_replicas: int = Field(default=1, ge=0)
    max_replicas: int = Field(default=5, ge=1)
    target_cpu_utilization: int = Field(default=70, ge=1, le=100)


class ResourcesRequest(_CamelModel):
    cpu: str = "100m"
    memory: str = "256Mi"
    replicas: int = Field(default=1, ge=0)
    autoscaling: AutoscalingRequest = Field(default_factory=AutoscalingRequest)

    def to_domain(self) -> ResourceLimits:
        return ResourceLimits(
            cpu=self.cpu,
            memory=self.memory,
            replicas=self.replicas,
            autoscaling=AutoscalingConfig(
                enabled=self.autoscaling.enabled,
                min_replicas=self.autoscaling.min_replicas,
                max_replicas=self.autoscaling.max_replicas,
                target_cpu_utilization=self.autoscaling.target_cpu_utilization,
            ),
        )


class DeploymentCreateRequest(_CamelModel):
    agent_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    provider: str
    config: Dict[str, Any] = Field(default_factory=dict)
    resources: Optional[ResourcesRequest] = None
    environment: DeploymentEnvironment = DeploymentEnvironment.DEVELOPMENT
    description: Optional[str] = None

    # False registers the deployment without calling the provider
    deploy: bool = True


class DeploymentUpdateRequest(_CamelModel):
    """Fields left out are kept as stored."""
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
