"""Core deployment domain models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from deployment_service.core.errors import ValidationError


# Inline log entries kept on the record; older ones are dropped
MAX_INLINE_LOGS = 100


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================
# ENUMS
# ============================================

class DeploymentStatus(Enum):
    """Deployment lifecycle status."""
    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"
    DELETED = "deleted"


class DeploymentProvider(Enum):
    """Execution backend a deployment targets."""
    KUBERNETES = "kubernetes"
    AWS_LAMBDA = "aws-lambda"
    CLOUD_RUN = "cloud-run"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value) -> "DeploymentProvider":
        """
        Resolve a provider from its declared type.

        Accepts enum members and strings in either "aws-lambda" or
        "aws_lambda" form, case-insensitive.
        """
        if isinstance(value, cls):
            return value

        normalized = str(value or "").strip().lower().replace("_", "-")
        for provider in cls:
            if provider.value == normalized:
                return provider

        raise ValidationError(f"Unsupported deployment type: {value}")


class DeploymentEnvironment(Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


# ============================================
# RESOURCES
# ============================================

@dataclass
class AutoscalingConfig:
    """Autoscaling bounds for a deployment."""
    enabled: bool = False
    min_replicas: int = 1
    max_replicas: int = 5
    target_cpu_utilization: int = 70

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "minReplicas": self.min_replicas,
            "maxReplicas": self.max_replicas,
            "targetCpuUtilization": self.target_cpu_utilization,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AutoscalingConfig":
        data = data or {}
        return cls(
            enabled=bool(data.get("enabled", False)),
            min_replicas=int(data.get("minReplicas", data.get("min_replicas", 1))),
            max_replicas=int(data.get("maxReplicas", data.get("max_replicas", 5))),
            target_cpu_utilization=int(
                data.get("targetCpuUtilization", data.get("target_cpu_utilization", 70))
            ),
        )


@dataclass
class ResourceLimits:
    """Declared CPU/memory limits and replica count."""
    cpu: str = "100m"
    memory: str = "256Mi"
    replicas: int = 1
    autoscaling: AutoscalingConfig = field(default_factory=AutoscalingConfig)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cpu": self.cpu,
            "memory": self.memory,
            "replicas": self.replicas,
            "autoscaling": self.autoscaling.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ResourceLimits":
        data = data or {}
        return cls(
            cpu=str(data.get("cpu", "100m")),
            memory=str(data.get("memory", "256Mi")),
            replicas=int(data.get("replicas", 1)),
            autoscaling=AutoscalingConfig.from_dict(data.get("autoscaling")),
        )


# ============================================
# METRICS / COST / LOGS
# ============================================

@dataclass
class DeploymentMetrics:
    """
    Canonical metrics tuple over a 5-minute trailing window.

    Dimensions a backend does not expose are reported as zero.
    """
    cpu_usage: float = 0.0
    memory_usage: float = 0.0
    request_count: float = 0.0
    response_time: float = 0.0
    error_rate: float = 0.0

    @classmethod
    def zero(cls) -> "DeploymentMetrics":
        return cls()

    def to_dict(self) -> Dict[str, float]:
        return {
            "cpuUsage": self.cpu_usage,
            "memoryUsage": self.memory_usage,
            "requestCount": self.request_count,
            "responseTime": self.response_time,
            "errorRate": self.error_rate,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DeploymentMetrics":
        data = data or {}
        return cls(
            cpu_usage=float(data.get("cpuUsage", 0)),
            memory_usage=float(data.get("memoryUsage", 0)),
            request_count=float(data.get("requestCount", 0)),
            response_time=float(data.get("responseTime", 0)),
            error_rate=float(data.get("errorRate", 0)),
        )


@dataclass
class CostTracking:
    """Running cost totals, maintained by the usage aggregator."""
    start_date: datetime = field(default_factory=utc_now)
    total_cost: float = 0.0
    current_month_cost: float = 0.0
    month: Optional[str] = None  # "YYYY-MM" that current_month_cost belongs to

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "totalCost": self.total_cost,
            "currentMonthCost": self.current_month_cost,
            "month": self.month,
        }


@dataclass
class LogEntry:
    timestamp: datetime
    level: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogEntry":
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            timestamp=timestamp or utc_now(),
            level=data.get("level", "info"),
            message=data["message"],
        )


# ============================================
# DEPLOYMENT
# ============================================

@dataclass
class Deployment:
    """One running or desired agent instance."""

    # Identity
    deployment_id: UUID
    agent_id: str
    user_id: str
    name: str

    # Target
    provider: DeploymentProvider = DeploymentProvider.KUBERNETES
    environment: DeploymentEnvironment = DeploymentEnvironment.DEVELOPMENT
    description: Optional[str] = None
    endpoint: Optional[str] = None

    # Desired state
    resources: ResourceLimits = field(default_factory=ResourceLimits)
    config: Dict[str, Any] = field(default_factory=dict)

    # Observed state
    status: DeploymentStatus = DeploymentStatus.PENDING
    error_message: Optional[str] = None
    metrics: DeploymentMetrics = field(default_factory=DeploymentMetrics)
    metrics_updated_at: Optional[datetime] = None
    cost_tracking: CostTracking = field(default_factory=CostTracking)
    logs: List[LogEntry] = field(default_factory=list)

    # Lifecycle timestamps
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    # Optimistic concurrency
    version: int = 0

    @classmethod
    def create(
        cls,
        *,
        agent_id: str,
        user_id: str,
        name: str,
        provider,
        config: Optional[Dict[str, Any]] = None,
        resources: Optional[ResourceLimits] = None,
        environment: DeploymentEnvironment = DeploymentEnvironment.DEVELOPMENT,
        description: Optional[str] = None,
    ) -> "Deployment":
        """Build a new pending deployment with a generated id."""
        now = utc_now()
        deployment = cls(
            deployment_id=uuid4(),
            agent_id=agent_id,
            user_id=user_id,
            name=name,
            provider=DeploymentProvider.parse(provider),
            environment=environment,
            description=description,
            resources=resources or ResourceLimits(),
            config=dict(config or {}),
            created_at=now,
            updated_at=now,
            cost_tracking=CostTracking(start_date=now),
        )
        validate_new_deployment(deployment)
        return deployment

    def append_log(self, message: str, level: str = "info", now: Optional[datetime] = None) -> None:
        """Append an inline log entry, keeping at most MAX_INLINE_LOGS."""
        self.logs.append(LogEntry(timestamp=now or utc_now(), level=level, message=message))
        if len(self.logs) > MAX_INLINE_LOGS:
            del self.logs[: len(self.logs) - MAX_INLINE_LOGS]

    def replace_metrics(self, metrics: DeploymentMetrics, now: Optional[datetime] = None) -> None:
        """Overwrite the metrics snapshot wholesale."""
        self.metrics = metrics
        self.metrics_updated_at = now or utc_now()

    def to_dict(self) -> Dict[str, Any]:
        metrics = self.metrics.to_dict()
        metrics["lastUpdated"] = (
            self.metrics_updated_at.isoformat() if self.metrics_updated_at else None
        )
        return {
            "id": str(self.deployment_id),
            "agentId": self.agent_id,
            "userId": self.user_id,
            "name": self.name,
            "description": self.description,
            "provider": self.provider.value,
            "environment": self.environment.value,
            "endpoint": self.endpoint,
            "status": self.status.value,
            "errorMessage": self.error_message,
            "resources": self.resources.to_dict(),
            "config": self.config,
            "metrics": metrics,
            "costTracking": self.cost_tracking.to_dict(),
            "logs": [entry.to_dict() for entry in self.logs],
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


def validate_new_deployment(deployment: Deployment) -> None:
    # -------------------------
    # Identity
    # -------------------------
    if not deployment.deployment_id:
        raise ValidationError("deployment_id is required")

    if not deployment.agent_id:
        raise ValidationError("agent_id is required")

    if not deployment.user_id:
        raise ValidationError("user_id is required")

    if not deployment.name:
        raise ValidationError("name is required")

    # -------------------------
    # Config
    # -------------------------
    if not isinstance(deployment.config, dict):
        raise ValidationError("config must be a dict")

    # -------------------------
    # Resources
    # -------------------------
    if deployment.resources.replicas < 0:
        raise ValidationError("replicas must not be negative")

    autoscaling = deployment.resources.autoscaling
    if autoscaling.min_replicas > autoscaling.max_replicas:
        raise ValidationError("autoscaling minReplicas must not exceed maxReplicas")

    # -------------------------
    # Lifecycle invariants
    # -------------------------
    if deployment.status != DeploymentStatus.PENDING:
        raise ValidationError("new deployment must start in pending state")

    if deployment.version != 0:
        raise ValidationError("new deployment version must be 0")
