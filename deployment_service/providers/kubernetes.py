#deployment_service\providers\kubernetes.py

"""Kubernetes provider: one apps/v1 Deployment per agent deployment."""

import logging
import re
from typing import List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.utils import parse_quantity

from deployment_service.core.errors import ProviderError
from deployment_service.core.models import (
    Deployment,
    DeploymentMetrics,
    DeploymentProvider,
    DeploymentStatus,
)
from deployment_service.core.provider_config import KubernetesConfig
from deployment_service.providers.base import DEFAULT_LOG_TAIL, ProviderAdapter
from deployment_service.providers.config import ProviderSettings

logger = logging.getLogger(__name__)


def workload_name(deployment: Deployment) -> str:
    """DNS-1123 name for the workload, derived from the deployment name."""
    name = re.sub(r"[^a-z0-9-]+", "-", deployment.name.lower()).strip("-")[:63].rstrip("-")
    return name or f"agent-{deployment.deployment_id.hex[:8]}"


class KubernetesAdapter(ProviderAdapter):
    """
    Deploys to a cluster through the official ``kubernetes`` client.

    Pods are selected with the label ``app=<workload name>``. API clients
    are created on first use so the adapter can be constructed without a
    reachable cluster.
    """

    provider = DeploymentProvider.KUBERNETES

    def __init__(
        self,
        settings: ProviderSettings,
        apps_api: Optional[client.AppsV1Api] = None,
        core_api: Optional[client.CoreV1Api] = None,
        custom_api: Optional[client.CustomObjectsApi] = None,
    ):
        self._settings = settings
        self._timeout = settings.provider_request_timeout_seconds
        self._apps_api = apps_api
        self._core_api = core_api
        self._custom_api = custom_api
        self._config_loaded = False

    # -------------------------
    # CLIENTS
    # -------------------------

    def _load_config(self) -> None:
        if self._config_loaded:
            return
        if self._settings.kube_in_cluster:
            config.load_incluster_config()
        else:
            config.load_kube_config(config_file=self._settings.kubeconfig_path)
        self._config_loaded = True

    @property
    def apps_api(self) -> client.AppsV1Api:
        if self._apps_api is None:
            self._load_config()
            self._apps_api = client.AppsV1Api()
        return self._apps_api

    @property
    def core_api(self) -> client.CoreV1Api:
        if self._core_api is None:
            self._load_config()
            self._core_api = client.CoreV1Api()
        return self._core_api

    @property
    def custom_api(self) -> client.CustomObjectsApi:
        if self._custom_api is None:
            self._load_config()
            self._custom_api = client.CustomObjectsApi()
        return self._custom_api

    # -------------------------
    # WRITE
    # -------------------------

    def deploy(self, deployment: Deployment) -> None:
        cfg: KubernetesConfig = self.parse_config(deployment)
        name = workload_name(deployment)
        manifest = self._build_manifest(deployment, cfg, name)

        logger.info(f"[kubernetes] deploying {name} to namespace {cfg.namespace}")
        try:
            try:
                self.apps_api.create_namespaced_deployment(
                    namespace=cfg.namespace,
                    body=manifest,
                    _request_timeout=self._timeout,
                )
            except ApiException as e:
                if e.status != 409:
                    raise
                # Already exists: converge it to the new manifest
                self.apps_api.replace_namespaced_deployment(
                    name=name,
                    namespace=cfg.namespace,
                    body=manifest,
                    _request_timeout=self._timeout,
                )
        except Exception as e:
            logger.error(f"[kubernetes] deploy {name} failed: {e}")
            raise ProviderError(self.provider.value, "deploy", str(e)) from e

    def undeploy(self, deployment: Deployment) -> None:
        cfg: KubernetesConfig = self.parse_config(deployment)
        name = workload_name(deployment)

        try:
            self.apps_api.delete_namespaced_deployment(
                name=name,
                namespace=cfg.namespace,
                propagation_policy="Background",
                _request_timeout=self._timeout,
            )
            logger.info(f"[kubernetes] deleted {name} from namespace {cfg.namespace}")
        except ApiException as e:
            if e.status == 404:
                logger.info(f"[kubernetes] {name} already absent from namespace {cfg.namespace}")
                return
            logger.error(f"[kubernetes] undeploy {name} failed: {e}")
            raise ProviderError(self.provider.value, "undeploy", str(e)) from e
        except Exception as e:
            logger.error(f"[kubernetes] undeploy {name} failed: {e}")
            raise ProviderError(self.provider.value, "undeploy", str(e)) from e

    def _build_manifest(self, deployment: Deployment, cfg: KubernetesConfig, name: str) -> client.V1Deployment:
        resources = deployment.resources
        replicas = cfg.replicas if cfg.replicas is not None else resources.replicas
        limits = {"cpu": resources.cpu, "memory": resources.memory}

        container = client.V1Container(
            name=name,
            image=cfg.image,
            env=[
                client.V1EnvVar(name=key, value=value)
                for key, value in self.runtime_environment(deployment, cfg.environment).items()
            ],
            ports=[client.V1ContainerPort(container_port=cfg.container_port)] if cfg.container_port else None,
            resources=client.V1ResourceRequirements(requests=dict(limits), limits=limits),
        )

        return client.V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=cfg.namespace,
                labels={"app": name, "deployment-id": str(deployment.deployment_id)},
            ),
            spec=client.V1DeploymentSpec(
                replicas=replicas,
                selector=client.V1LabelSelector(match_labels={"app": name}),
                template=client.V1PodTemplateSpec(
                    metadata=client.V1ObjectMeta(labels={"app": name}),
                    spec=client.V1PodSpec(containers=[container]),
                ),
            ),
        )

    # -------------------------
    # READ
    # -------------------------

    def fetch_status(self, deployment: Deployment) -> DeploymentStatus:
        cfg: KubernetesConfig = self.parse_config(deployment)
        try:
            workload = self.apps_api.read_namespaced_deployment(
                name=workload_name(deployment),
                namespace=cfg.namespace,
                _request_timeout=self._timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return DeploymentStatus.STOPPED
            raise ProviderError(self.provider.value, "status", str(e)) from e

        desired = (workload.spec.replicas if workload.spec else 0) or 0
        status = workload.status
        available = (status.available_replicas if status else 0) or 0

        if desired == 0:
            return DeploymentStatus.STOPPED

        for condition in (status.conditions if status else None) or []:
            if condition.type == "Progressing" and condition.reason == "ProgressDeadlineExceeded":
                return DeploymentStatus.FAILED

        if available >= desired:
            return DeploymentStatus.RUNNING
        return DeploymentStatus.PENDING

    def fetch_metrics(self, deployment: Deployment) -> DeploymentMetrics:
        """CPU and memory as a percentage of the declared limits; request metrics are not exposed."""
        cfg: KubernetesConfig = self.parse_config(deployment)
        result = self.custom_api.list_namespaced_custom_object(
            group="metrics.k8s.io",
            version="v1beta1",
            namespace=cfg.namespace,
            plural="pods",
            label_selector=f"app={workload_name(deployment)}",
            _request_timeout=self._timeout,
        )

        pods = result.get("items", [])
        if not pods:
            return DeploymentMetrics.zero()

        cpu_used = sum(
            parse_quantity(c["usage"]["cpu"]) for pod in pods for c in pod.get("containers", [])
        )
        memory_used = sum(
            parse_quantity(c["usage"]["memory"]) for pod in pods for c in pod.get("containers", [])
        )

        cpu_limit = parse_quantity(deployment.resources.cpu) * len(pods)
        memory_limit = parse_quantity(deployment.resources.memory) * len(pods)

        return DeploymentMetrics(
            cpu_usage=float(cpu_used / cpu_limit * 100) if cpu_limit else 0.0,
            memory_usage=float(memory_used / memory_limit * 100) if memory_limit else 0.0,
        )

    def get_logs(self, deployment: Deployment, tail: int = DEFAULT_LOG_TAIL) -> List[str]:
        """Tail of the newest pod's log."""
        try:
            cfg: KubernetesConfig = self.parse_config(deployment)
            pods = self.core_api.list_namespaced_pod(
                namespace=cfg.namespace,
                label_selector=f"app={workload_name(deployment)}",
                _request_timeout=self._timeout,
            ).items

            if not pods:
                return []

            newest = max(pods, key=lambda pod: pod.metadata.creation_timestamp)
            text = self.core_api.read_namespaced_pod_log(
                name=newest.metadata.name,
                namespace=cfg.namespace,
                tail_lines=tail,
                _request_timeout=self._timeout,
            )
            return [line for line in (text or "").splitlines() if line]
        except Exception as e:
            logger.error(f"[kubernetes] logs {deployment.deployment_id} failed: {e}", exc_info=True)
            return []
