#deployment_service\providers\base.py

"""Provider adapter contract."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Generic, List, TypeVar

from deployment_service.core.models import Deployment, DeploymentMetrics, DeploymentProvider, DeploymentStatus
from deployment_service.core.provider_config import ProviderConfig, parse_provider_config

logger = logging.getLogger(__name__)


DEFAULT_LOG_TAIL = 100

# Trailing window for metrics queries
METRICS_WINDOW_SECONDS = 300

T = TypeVar("T")


@dataclass(frozen=True)
class ProviderReading(Generic[T]):
    """A read result; degraded marks a safe default standing in for a failed backend call."""
    value: T
    degraded: bool = False


class ProviderAdapter(ABC):
    """
    Translation layer between the deployment lifecycle and one backend.

    Write methods (deploy, undeploy) raise ProviderError on backend
    failure. Status and metrics are fetched by fetch_status/fetch_metrics,
    which raise; get_status/get_metrics wrap them, log failures and
    return FAILED or zero metrics. read_status/read_metrics return the
    same values but flag the fallback as degraded. get_logs never raises
    for backend failures and returns an empty list instead.
    """

    provider: DeploymentProvider

    @abstractmethod
    def deploy(self, deployment: Deployment) -> None:
        """Create or update the backend resource."""
        ...

    @abstractmethod
    def undeploy(self, deployment: Deployment) -> None:
        """Delete the backend resource. A missing resource counts as success."""
        ...

    @abstractmethod
    def fetch_status(self, deployment: Deployment) -> DeploymentStatus:
        """Canonical status as reported by the backend. Raises if it cannot be read."""
        ...

    @abstractmethod
    def fetch_metrics(self, deployment: Deployment) -> DeploymentMetrics:
        """Metrics over the trailing window. Raises if they cannot be read."""
        ...

    @abstractmethod
    def get_logs(self, deployment: Deployment, tail: int = DEFAULT_LOG_TAIL) -> List[str]:
        ...

    # -------------------------
    # SAFE READS
    # -------------------------

    def read_status(self, deployment: Deployment) -> ProviderReading[DeploymentStatus]:
        try:
            return ProviderReading(self.fetch_status(deployment))
        except Exception as e:
            logger.error(f"[{self.provider.value}] status {deployment.deployment_id} failed: {e}", exc_info=True)
            return ProviderReading(DeploymentStatus.FAILED, degraded=True)

    def read_metrics(self, deployment: Deployment) -> ProviderReading[DeploymentMetrics]:
        try:
            return ProviderReading(self.fetch_metrics(deployment))
        except Exception as e:
            logger.error(f"[{self.provider.value}] metrics {deployment.deployment_id} failed: {e}", exc_info=True)
            return ProviderReading(DeploymentMetrics.zero(), degraded=True)

    def get_status(self, deployment: Deployment) -> DeploymentStatus:
        return self.read_status(deployment).value

    def get_metrics(self, deployment: Deployment) -> DeploymentMetrics:
        return self.read_metrics(deployment).value

    # -------------------------
    # SHARED HELPERS
    # -------------------------

    def parse_config(self, deployment: Deployment) -> ProviderConfig:
        """Typed config for this adapter; raises ConfigurationError locally."""
        return parse_provider_config(self.provider, deployment.config)

    @staticmethod
    def runtime_environment(deployment: Deployment, extra: Dict[str, str]) -> Dict[str, str]:
        """Workload environment: user-supplied variables plus the agent identity."""
        env = dict(extra or {})
        env["AGENT_ID"] = str(deployment.agent_id)
        env["DEPLOYMENT_ID"] = str(deployment.deployment_id)
        return env
