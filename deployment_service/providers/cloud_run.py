#deployment_service\providers\cloud_run.py

"""Google Cloud Run provider: one service per agent deployment."""

import json
import logging
import time
from typing import List, Optional

from google.api_core import exceptions as gcp_exceptions
from google.cloud import logging as gcp_logging
from google.cloud import monitoring_v3, run_v2

from deployment_service.core.errors import ConfigurationError, ProviderError
from deployment_service.core.models import (
    Deployment,
    DeploymentMetrics,
    DeploymentProvider,
    DeploymentStatus,
)
from deployment_service.core.provider_config import CloudRunConfig
from deployment_service.providers.base import DEFAULT_LOG_TAIL, METRICS_WINDOW_SECONDS, ProviderAdapter
from deployment_service.providers.config import ProviderSettings

logger = logging.getLogger(__name__)


REQUEST_COUNT = "run.googleapis.com/request_count"
REQUEST_LATENCIES = "run.googleapis.com/request_latencies"
CPU_UTILIZATIONS = "run.googleapis.com/container/cpu/utilizations"
MEMORY_UTILIZATIONS = "run.googleapis.com/container/memory/utilizations"


def _point_value(point) -> float:
    value = point.value
    if "distribution_value" in value:
        return float(value.distribution_value.mean)
    if "int64_value" in value:
        return float(value.int64_value)
    return float(value.double_value)


class CloudRunAdapter(ProviderAdapter):
    """
    Deploys to Cloud Run (v2 Admin API); metrics come from Cloud
    Monitoring and logs from Cloud Logging. The project is taken from
    ProviderSettings; the region from the deployment's config, else
    ProviderSettings.gcp_region.
    """

    provider = DeploymentProvider.CLOUD_RUN

    def __init__(
        self,
        settings: ProviderSettings,
        services_client: Optional[run_v2.ServicesClient] = None,
        metrics_client: Optional[monitoring_v3.MetricServiceClient] = None,
        logging_client: Optional[gcp_logging.Client] = None,
    ):
        self._settings = settings
        self._timeout = settings.provider_request_timeout_seconds
        self._services = services_client
        self._metrics = metrics_client
        self._logging = logging_client

    # -------------------------
    # CLIENTS
    # -------------------------

    @property
    def services_client(self) -> run_v2.ServicesClient:
        if self._services is None:
            self._services = run_v2.ServicesClient()
        return self._services

    @property
    def metrics_client(self) -> monitoring_v3.MetricServiceClient:
        if self._metrics is None:
            self._metrics = monitoring_v3.MetricServiceClient()
        return self._metrics

    @property
    def logging_client(self) -> gcp_logging.Client:
        if self._logging is None:
            self._logging = gcp_logging.Client(project=self._require_project())
        return self._logging

    def _require_project(self) -> str:
        if not self._settings.gcp_project:
            raise ConfigurationError(self.provider.value, ["GCP_PROJECT"])
        return self._settings.gcp_project

    def _parent(self, cfg: CloudRunConfig) -> str:
        region = cfg.region or self._settings.gcp_region
        return f"projects/{self._require_project()}/locations/{region}"

    def _service_path(self, cfg: CloudRunConfig) -> str:
        return f"{self._parent(cfg)}/services/{cfg.name}"

    # -------------------------
    # WRITE
    # -------------------------

    def deploy(self, deployment: Deployment) -> None:
        """Submit a create (or update) of the service; rollout progress is read back through get_status."""
        cfg: CloudRunConfig = self.parse_config(deployment)
        parent = self._parent(cfg)
        service = self._build_service(deployment, cfg)

        logger.info(f"[cloud-run] deploying service {cfg.name} to {parent}")
        try:
            try:
                self.services_client.create_service(
                    request=run_v2.CreateServiceRequest(
                        parent=parent,
                        service=service,
                        service_id=cfg.name,
                    ),
                    timeout=self._timeout,
                )
            except gcp_exceptions.AlreadyExists:
                service.name = self._service_path(cfg)
                self.services_client.update_service(
                    request=run_v2.UpdateServiceRequest(service=service),
                    timeout=self._timeout,
                )
        except gcp_exceptions.GoogleAPIError as e:
            logger.error(f"[cloud-run] deploy {cfg.name} failed: {e}")
            raise ProviderError(self.provider.value, "deploy", str(e)) from e

    def undeploy(self, deployment: Deployment) -> None:
        cfg: CloudRunConfig = self.parse_config(deployment)
        name = self._service_path(cfg)

        try:
            self.services_client.delete_service(name=name, timeout=self._timeout)
            logger.info(f"[cloud-run] deleted service {name}")
        except gcp_exceptions.NotFound:
            logger.info(f"[cloud-run] service {name} already absent")
        except gcp_exceptions.GoogleAPIError as e:
            logger.error(f"[cloud-run] undeploy {name} failed: {e}")
            raise ProviderError(self.provider.value, "undeploy", str(e)) from e

    def _build_service(self, deployment: Deployment, cfg: CloudRunConfig) -> run_v2.Service:
        container = run_v2.Container(
            image=cfg.image,
            env=[
                run_v2.EnvVar(name=key, value=value)
                for key, value in self.runtime_environment(deployment, cfg.environment).items()
            ],
            resources=run_v2.ResourceRequirements(limits={"cpu": cfg.cpu, "memory": cfg.memory}),
        )

        template = run_v2.RevisionTemplate(
            containers=[container],
            max_instance_request_concurrency=cfg.container_concurrency,
        )

        autoscaling = deployment.resources.autoscaling
        if autoscaling.enabled:
            template.scaling = run_v2.RevisionScaling(
                min_instance_count=autoscaling.min_replicas,
                max_instance_count=autoscaling.max_replicas,
            )

        return run_v2.Service(template=template)

    # -------------------------
    # READ
    # -------------------------

    def fetch_status(self, deployment: Deployment) -> DeploymentStatus:
        cfg: CloudRunConfig = self.parse_config(deployment)
        try:
            service = self.services_client.get_service(name=self._service_path(cfg), timeout=self._timeout)
        except gcp_exceptions.NotFound:
            return DeploymentStatus.STOPPED
        except gcp_exceptions.GoogleAPIError as e:
            raise ProviderError(self.provider.value, "status", str(e)) from e

        if service.reconciling:
            return DeploymentStatus.PENDING

        state = service.terminal_condition.state
        if state == run_v2.Condition.State.CONDITION_SUCCEEDED:
            return DeploymentStatus.RUNNING
        if state == run_v2.Condition.State.CONDITION_FAILED:
            return DeploymentStatus.FAILED
        return DeploymentStatus.PENDING

    def fetch_metrics(self, deployment: Deployment) -> DeploymentMetrics:
        cfg: CloudRunConfig = self.parse_config(deployment)

        requests = self._series_values(REQUEST_COUNT, cfg.name)
        latencies = self._series_values(REQUEST_LATENCIES, cfg.name)
        cpu = self._series_values(CPU_UTILIZATIONS, cfg.name)
        memory = self._series_values(MEMORY_UTILIZATIONS, cfg.name)

        # Cloud Run has no direct error-rate metric
        return DeploymentMetrics(
            cpu_usage=_mean(cpu) * 100,
            memory_usage=_mean(memory) * 100,
            request_count=float(sum(requests)),
            response_time=_mean(latencies),
        )

    def _series_values(self, metric_type: str, service_name: str) -> List[float]:
        now = int(time.time())
        interval = monitoring_v3.TimeInterval(
            {
                "end_time": {"seconds": now},
                "start_time": {"seconds": now - METRICS_WINDOW_SECONDS},
            }
        )

        results = self.metrics_client.list_time_series(
            request={
                "name": f"projects/{self._require_project()}",
                "filter": (
                    f'metric.type="{metric_type}" '
                    f'AND resource.labels.service_name="{service_name}"'
                ),
                "interval": interval,
                "view": monitoring_v3.ListTimeSeriesRequest.TimeSeriesView.FULL,
            },
            timeout=self._timeout,
        )

        return [_point_value(point) for series in results for point in series.points]

    def get_logs(self, deployment: Deployment, tail: int = DEFAULT_LOG_TAIL) -> List[str]:
        try:
            cfg: CloudRunConfig = self.parse_config(deployment)
            entries = self.logging_client.list_entries(
                filter_=(
                    'resource.type="cloud_run_revision" '
                    f'AND resource.labels.service_name="{cfg.name}"'
                ),
                order_by=gcp_logging.DESCENDING,
                max_results=tail,
            )

            lines = []
            for entry in entries:
                payload = entry.payload
                if isinstance(payload, dict):
                    lines.append(payload.get("message") or json.dumps(payload))
                else:
                    lines.append(str(payload))
            return lines
        except Exception as e:
            logger.error(f"[cloud-run] logs {deployment.deployment_id} failed: {e}", exc_info=True)
            return []


def _mean(values: List[float]) -> float:
    return float(sum(values) / len(values)) if values else 0.0
