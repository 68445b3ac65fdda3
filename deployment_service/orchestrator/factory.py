#deployment_service\orchestrator\factory.py

"""Deployment factory - registry and dispatcher over provider adapters."""

import logging
from typing import Dict, List, Optional

from deployment_service.core.errors import ValidationError
from deployment_service.core.models import (
    Deployment,
    DeploymentMetrics,
    DeploymentProvider,
    DeploymentStatus,
)
from deployment_service.providers.aws_lambda import AwsLambdaAdapter
from deployment_service.providers.base import DEFAULT_LOG_TAIL, ProviderAdapter, ProviderReading
from deployment_service.providers.cloud_run import CloudRunAdapter
from deployment_service.providers.config import ProviderSettings
from deployment_service.providers.kubernetes import KubernetesAdapter

logger = logging.getLogger(__name__)


class DeploymentFactory:
    """
    Resolves a deployment's provider to its adapter and delegates.

    Write operations (deploy, stop, start, delete) log and re-raise so
    the caller can mark the deployment failed. Read operations never
    raise: status degrades to FAILED, metrics to zero, logs to empty.
    read_deployment_status and read_deployment_metrics flag such a
    fallback as degraded so callers can keep it out of storage.
    """

    def __init__(self, adapters: Optional[Dict[DeploymentProvider, ProviderAdapter]] = None):
        self._adapters: Dict[DeploymentProvider, ProviderAdapter] = dict(adapters or {})

    def register(self, provider: DeploymentProvider, adapter: ProviderAdapter) -> None:
        self._adapters[provider] = adapter

    def resolve_provider(self, provider_type) -> ProviderAdapter:
        """
        Adapter for a declared provider type.

        Raises:
            ValidationError: unknown type, or no adapter registered for it
        """
        provider = DeploymentProvider.parse(provider_type)
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise ValidationError(f"Unsupported deployment type: {provider.value}")
        return adapter

    # -------------------------
    # WRITE OPERATIONS
    # -------------------------

    def deploy(self, deployment: Deployment) -> None:
        try:
            self.resolve_provider(deployment.provider).deploy(deployment)
            logger.info(f"[factory] deployed {deployment.deployment_id} via {deployment.provider.value}")
        except Exception as e:
            logger.error(f"[factory] deploy {deployment.deployment_id} failed: {e}")
            raise

    def stop(self, deployment: Deployment) -> None:
        """Stopping removes the backend resource; start recreates it."""
        try:
            self.resolve_provider(deployment.provider).undeploy(deployment)
            logger.info(f"[factory] stopped {deployment.deployment_id}")
        except Exception as e:
            logger.error(f"[factory] stop {deployment.deployment_id} failed: {e}")
            raise

    def start(self, deployment: Deployment) -> None:
        try:
            self.resolve_provider(deployment.provider).deploy(deployment)
            logger.info(f"[factory] started {deployment.deployment_id}")
        except Exception as e:
            logger.error(f"[factory] start {deployment.deployment_id} failed: {e}")
            raise

    def delete(self, deployment: Deployment) -> None:
        try:
            self.resolve_provider(deployment.provider).undeploy(deployment)
            logger.info(f"[factory] deleted {deployment.deployment_id}")
        except Exception as e:
            logger.error(f"[factory] delete {deployment.deployment_id} failed: {e}")
            raise

    # -------------------------
    # READ OPERATIONS
    # -------------------------

    def read_deployment_status(self, deployment: Deployment) -> ProviderReading[DeploymentStatus]:
        try:
            return self.resolve_provider(deployment.provider).read_status(deployment)
        except Exception as e:
            logger.error(f"[factory] status {deployment.deployment_id} failed: {e}", exc_info=True)
            return ProviderReading(DeploymentStatus.FAILED, degraded=True)

    def read_deployment_metrics(self, deployment: Deployment) -> ProviderReading[DeploymentMetrics]:
        try:
            return self.resolve_provider(deployment.provider).read_metrics(deployment)
        except Exception as e:
            logger.error(f"[factory] metrics {deployment.deployment_id} failed: {e}", exc_info=True)
            return ProviderReading(DeploymentMetrics.zero(), degraded=True)

    def get_deployment_status(self, deployment: Deployment) -> DeploymentStatus:
        return self.read_deployment_status(deployment).value

    def get_deployment_metrics(self, deployment: Deployment) -> DeploymentMetrics:
        return self.read_deployment_metrics(deployment).value

    def get_deployment_logs(self, deployment: Deployment, tail: int = DEFAULT_LOG_TAIL) -> List[str]:
        try:
            return self.resolve_provider(deployment.provider).get_logs(deployment, tail)
        except Exception as e:
            logger.error(f"[factory] logs {deployment.deployment_id} failed: {e}", exc_info=True)
            return []


def build_deployment_factory(settings: ProviderSettings) -> DeploymentFactory:
    """Factory with the three built-in adapters registered."""
    return DeploymentFactory({
        DeploymentProvider.KUBERNETES: KubernetesAdapter(settings),
        DeploymentProvider.AWS_LAMBDA: AwsLambdaAdapter(settings),
        DeploymentProvider.CLOUD_RUN: CloudRunAdapter(settings),
    })
