"""Test provider adapters against mocked SDK clients."""

import base64
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, WaiterError
from google.api import distribution_pb2
from google.api_core import exceptions as gcp_exceptions
from google.cloud import monitoring_v3, run_v2
from kubernetes.client.rest import ApiException

from deployment_service.core.errors import ConfigurationError, ProviderError, ValidationError
from deployment_service.core.models import Deployment, DeploymentStatus
from deployment_service.providers.aws_lambda import AwsLambdaAdapter
from deployment_service.providers.cloud_run import CloudRunAdapter
from deployment_service.providers.config import ProviderSettings
from deployment_service.providers.kubernetes import KubernetesAdapter, workload_name


@pytest.fixture
def provider_settings():
    return ProviderSettings(
        provider_request_timeout_seconds=15,
        aws_region="us-east-1",
        gcp_project="novamind",
    )


def client_error(code: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


# ============================================
# KUBERNETES
# ============================================

@pytest.fixture
def k8s_deployment():
    deployment = Deployment.create(
        agent_id="agent-1",
        user_id="u1",
        name="Support Bot",
        provider="kubernetes",
        config={"namespace": "agents", "image": "novamind/agent-runtime:latest", "replicas": 2},
    )
    return deployment


@pytest.fixture
def k8s_apis():
    return SimpleNamespace(apps=MagicMock(), core=MagicMock(), custom=MagicMock())


@pytest.fixture
def k8s_adapter(provider_settings, k8s_apis):
    return KubernetesAdapter(
        provider_settings,
        apps_api=k8s_apis.apps,
        core_api=k8s_apis.core,
        custom_api=k8s_apis.custom,
    )


def k8s_workload(desired, available, conditions=None):
    return SimpleNamespace(
        spec=SimpleNamespace(replicas=desired),
        status=SimpleNamespace(available_replicas=available, conditions=conditions or []),
    )


class TestKubernetesAdapter:

    def test_workload_name_is_dns_safe(self, k8s_deployment):
        assert workload_name(k8s_deployment) == "support-bot"

    def test_deploy_creates_workload(self, k8s_adapter, k8s_apis, k8s_deployment):
        k8s_adapter.deploy(k8s_deployment)

        kwargs = k8s_apis.apps.create_namespaced_deployment.call_args.kwargs
        body = kwargs["body"]
        container = body.spec.template.spec.containers[0]
        env = {var.name: var.value for var in container.env}

        assert kwargs["namespace"] == "agents"
        assert kwargs["_request_timeout"] == 15
        assert body.metadata.name == "support-bot"
        assert body.spec.replicas == 2
        assert container.image == "novamind/agent-runtime:latest"
        assert container.resources.limits == {"cpu": "100m", "memory": "256Mi"}
        assert env["AGENT_ID"] == "agent-1"
        assert env["DEPLOYMENT_ID"] == str(k8s_deployment.deployment_id)

    def test_deploy_replaces_existing_workload(self, k8s_adapter, k8s_apis, k8s_deployment):
        k8s_apis.apps.create_namespaced_deployment.side_effect = ApiException(status=409, reason="Conflict")

        k8s_adapter.deploy(k8s_deployment)

        k8s_apis.apps.replace_namespaced_deployment.assert_called_once()
        assert k8s_apis.apps.replace_namespaced_deployment.call_args.kwargs["name"] == "support-bot"

    def test_deploy_failure_raises_provider_error(self, k8s_adapter, k8s_apis, k8s_deployment):
        k8s_apis.apps.create_namespaced_deployment.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(ProviderError) as exc_info:
            k8s_adapter.deploy(k8s_deployment)

        assert isinstance(exc_info.value.__cause__, ApiException)

    def test_deploy_validates_config_before_calling_out(self, k8s_adapter, k8s_apis, k8s_deployment):
        k8s_deployment.config = {"namespace": "agents"}

        with pytest.raises(ConfigurationError, match="image"):
            k8s_adapter.deploy(k8s_deployment)

        k8s_apis.apps.create_namespaced_deployment.assert_not_called()

    def test_undeploy_missing_workload_succeeds(self, k8s_adapter, k8s_apis, k8s_deployment):
        k8s_apis.apps.delete_namespaced_deployment.side_effect = ApiException(status=404, reason="Not Found")

        k8s_adapter.undeploy(k8s_deployment)

        kwargs = k8s_apis.apps.delete_namespaced_deployment.call_args.kwargs
        assert kwargs["propagation_policy"] == "Background"

    def test_undeploy_failure_raises(self, k8s_adapter, k8s_apis, k8s_deployment):
        k8s_apis.apps.delete_namespaced_deployment.side_effect = ApiException(status=500, reason="Error")

        with pytest.raises(ProviderError):
            k8s_adapter.undeploy(k8s_deployment)

    @pytest.mark.parametrize("workload, expected", [
        (k8s_workload(2, 2), DeploymentStatus.RUNNING),
        (k8s_workload(2, 1), DeploymentStatus.PENDING),
        (k8s_workload(0, 0), DeploymentStatus.STOPPED),
        (
            k8s_workload(2, 0, [SimpleNamespace(type="Progressing", reason="ProgressDeadlineExceeded")]),
            DeploymentStatus.FAILED,
        ),
    ])
    def test_status_mapping(self, k8s_adapter, k8s_apis, k8s_deployment, workload, expected):
        k8s_apis.apps.read_namespaced_deployment.return_value = workload

        assert k8s_adapter.get_status(k8s_deployment) == expected

    def test_status_missing_workload_is_stopped(self, k8s_adapter, k8s_apis, k8s_deployment):
        k8s_apis.apps.read_namespaced_deployment.side_effect = ApiException(status=404, reason="Not Found")

        assert k8s_adapter.get_status(k8s_deployment) == DeploymentStatus.STOPPED

    def test_status_error_is_failed(self, k8s_adapter, k8s_apis, k8s_deployment):
        k8s_apis.apps.read_namespaced_deployment.side_effect = ApiException(status=500, reason="Error")

        assert k8s_adapter.get_status(k8s_deployment) == DeploymentStatus.FAILED

    def test_status_error_reading_is_degraded(self, k8s_adapter, k8s_apis, k8s_deployment):
        k8s_apis.apps.read_namespaced_deployment.side_effect = ApiException(status=500, reason="Error")

        assert k8s_adapter.read_status(k8s_deployment).degraded is True

    def test_stalled_rollout_is_a_real_failure(self, k8s_adapter, k8s_apis, k8s_deployment):
        k8s_apis.apps.read_namespaced_deployment.return_value = k8s_workload(
            2, 0, [SimpleNamespace(type="Progressing", reason="ProgressDeadlineExceeded")],
        )

        reading = k8s_adapter.read_status(k8s_deployment)

        assert reading.value == DeploymentStatus.FAILED
        assert reading.degraded is False

    def test_fetch_status_raises_on_api_error(self, k8s_adapter, k8s_apis, k8s_deployment):
        k8s_apis.apps.read_namespaced_deployment.side_effect = ApiException(status=500, reason="Error")

        with pytest.raises(ProviderError):
            k8s_adapter.fetch_status(k8s_deployment)

    def test_metrics_as_percentage_of_limits(self, k8s_adapter, k8s_apis, k8s_deployment):
        k8s_apis.custom.list_namespaced_custom_object.return_value = {
            "items": [
                {"containers": [{"usage": {"cpu": "50m", "memory": "128Mi"}}]},
                {"containers": [{"usage": {"cpu": "30m", "memory": "64Mi"}}]},
            ]
        }

        metrics = k8s_adapter.get_metrics(k8s_deployment)

        assert metrics.cpu_usage == pytest.approx(40.0)
        assert metrics.memory_usage == pytest.approx(37.5)
        assert metrics.request_count == 0
        kwargs = k8s_apis.custom.list_namespaced_custom_object.call_args.kwargs
        assert kwargs["label_selector"] == "app=support-bot"

    def test_metrics_error_returns_zero(self, k8s_adapter, k8s_apis, k8s_deployment):
        k8s_apis.custom.list_namespaced_custom_object.side_effect = ApiException(status=503, reason="Unavailable")

        assert k8s_adapter.get_metrics(k8s_deployment).to_dict() == {
            "cpuUsage": 0.0,
            "memoryUsage": 0.0,
            "requestCount": 0.0,
            "responseTime": 0.0,
            "errorRate": 0.0,
        }

    def test_logs_from_newest_pod(self, k8s_adapter, k8s_apis, k8s_deployment):
        old_pod = SimpleNamespace(metadata=SimpleNamespace(
            name="support-bot-old", creation_timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        ))
        new_pod = SimpleNamespace(metadata=SimpleNamespace(
            name="support-bot-new", creation_timestamp=datetime(2024, 1, 2, tzinfo=timezone.utc),
        ))
        k8s_apis.core.list_namespaced_pod.return_value = SimpleNamespace(items=[old_pod, new_pod])
        k8s_apis.core.read_namespaced_pod_log.return_value = "first\nsecond\n"

        lines = k8s_adapter.get_logs(k8s_deployment, tail=20)

        assert lines == ["first", "second"]
        kwargs = k8s_apis.core.read_namespaced_pod_log.call_args.kwargs
        assert kwargs["name"] == "support-bot-new"
        assert kwargs["tail_lines"] == 20

    def test_logs_error_returns_empty(self, k8s_adapter, k8s_apis, k8s_deployment):
        k8s_apis.core.list_namespaced_pod.side_effect = RuntimeError("connection refused")

        assert k8s_adapter.get_logs(k8s_deployment) == []


# ============================================
# AWS LAMBDA
# ============================================

PACKAGE = b"PK\x03\x04fake-zip"


@pytest.fixture
def lambda_deployment():
    return Deployment.create(
        agent_id="agent-2",
        user_id="u1",
        name="Summariser",
        provider="aws-lambda",
        config={
            "functionName": "summariser",
            "runtime": "python3.12",
            "handler": "app.handler",
            "role": "arn:aws:iam::123456789012:role/agent",
            "code": base64.b64encode(PACKAGE).decode(),
            "environment": {"MODEL": "small"},
        },
    )


@pytest.fixture
def aws_clients():
    return SimpleNamespace(lambda_=MagicMock(), cloudwatch=MagicMock(), logs=MagicMock())


@pytest.fixture
def lambda_adapter(provider_settings, aws_clients):
    return AwsLambdaAdapter(
        provider_settings,
        lambda_client=aws_clients.lambda_,
        cloudwatch_client=aws_clients.cloudwatch,
        logs_client=aws_clients.logs,
    )


class TestAwsLambdaAdapter:

    def test_deploy_creates_function(self, lambda_adapter, aws_clients, lambda_deployment):
        lambda_adapter.deploy(lambda_deployment)

        kwargs = aws_clients.lambda_.create_function.call_args.kwargs
        assert kwargs["FunctionName"] == "summariser"
        assert kwargs["Code"] == {"ZipFile": PACKAGE}
        assert kwargs["Environment"]["Variables"]["MODEL"] == "small"
        assert kwargs["Environment"]["Variables"]["AGENT_ID"] == "agent-2"

    def test_deploy_updates_existing_function(self, lambda_adapter, aws_clients, lambda_deployment):
        aws_clients.lambda_.create_function.side_effect = client_error("ResourceConflictException")

        lambda_adapter.deploy(lambda_deployment)

        aws_clients.lambda_.update_function_code.assert_called_once_with(
            FunctionName="summariser", ZipFile=PACKAGE, Publish=True,
        )
        aws_clients.lambda_.get_waiter.assert_called_once_with("function_updated")
        assert aws_clients.lambda_.update_function_configuration.call_args.kwargs["Handler"] == "app.handler"

    def test_update_wait_is_bounded_by_request_timeout(self, lambda_adapter, aws_clients, lambda_deployment):
        aws_clients.lambda_.create_function.side_effect = client_error("ResourceConflictException")

        lambda_adapter.deploy(lambda_deployment)

        wait = aws_clients.lambda_.get_waiter.return_value.wait
        wait.assert_called_once_with(
            FunctionName="summariser",
            WaiterConfig={"Delay": 2, "MaxAttempts": 8},
        )

    def test_update_wait_timeout_raises_provider_error(self, lambda_adapter, aws_clients, lambda_deployment):
        aws_clients.lambda_.create_function.side_effect = client_error("ResourceConflictException")
        aws_clients.lambda_.get_waiter.return_value.wait.side_effect = WaiterError(
            name="FunctionUpdated", reason="Max attempts exceeded", last_response={},
        )

        with pytest.raises(ProviderError):
            lambda_adapter.deploy(lambda_deployment)

        aws_clients.lambda_.update_function_configuration.assert_not_called()

    def test_deploy_failure_raises_provider_error(self, lambda_adapter, aws_clients, lambda_deployment):
        aws_clients.lambda_.create_function.side_effect = client_error("AccessDeniedException")

        with pytest.raises(ProviderError) as exc_info:
            lambda_adapter.deploy(lambda_deployment)

        assert isinstance(exc_info.value.__cause__, ClientError)

    def test_deploy_rejects_invalid_package(self, lambda_adapter, aws_clients, lambda_deployment):
        lambda_deployment.config["code"] = "not base64!"

        with pytest.raises(ValidationError):
            lambda_adapter.deploy(lambda_deployment)

        aws_clients.lambda_.create_function.assert_not_called()

    def test_undeploy_missing_function_succeeds(self, lambda_adapter, aws_clients, lambda_deployment):
        aws_clients.lambda_.delete_function.side_effect = client_error("ResourceNotFoundException")

        lambda_adapter.undeploy(lambda_deployment)

    @pytest.mark.parametrize("configuration, expected", [
        ({"State": "Active", "LastUpdateStatus": "Successful"}, DeploymentStatus.RUNNING),
        ({"State": "Active", "LastUpdateStatus": "InProgress"}, DeploymentStatus.PENDING),
        ({"State": "Pending"}, DeploymentStatus.PENDING),
        ({"State": "Inactive"}, DeploymentStatus.STOPPED),
        ({"State": "Failed"}, DeploymentStatus.FAILED),
    ])
    def test_status_mapping(self, lambda_adapter, aws_clients, lambda_deployment, configuration, expected):
        aws_clients.lambda_.get_function_configuration.return_value = configuration

        assert lambda_adapter.get_status(lambda_deployment) == expected

    def test_status_missing_function_is_stopped(self, lambda_adapter, aws_clients, lambda_deployment):
        aws_clients.lambda_.get_function_configuration.side_effect = client_error("ResourceNotFoundException")

        assert lambda_adapter.get_status(lambda_deployment) == DeploymentStatus.STOPPED

    def test_metrics_from_cloudwatch(self, lambda_adapter, aws_clients, lambda_deployment):
        aws_clients.cloudwatch.get_metric_data.return_value = {
            "MetricDataResults": [
                {"Id": "invocations", "Values": [10.0, 10.0]},
                {"Id": "errors", "Values": [2.0]},
                {"Id": "duration", "Values": [100.0, 200.0]},
            ]
        }

        metrics = lambda_adapter.get_metrics(lambda_deployment)

        assert metrics.request_count == 20
        assert metrics.error_rate == pytest.approx(10.0)
        assert metrics.response_time == pytest.approx(150.0)
        assert metrics.cpu_usage == 0
        assert metrics.memory_usage == 0

    def test_metrics_error_returns_zero(self, lambda_adapter, aws_clients, lambda_deployment):
        aws_clients.cloudwatch.get_metric_data.side_effect = client_error("ThrottlingException")

        assert lambda_adapter.get_metrics(lambda_deployment).to_dict()["requestCount"] == 0

    def test_status_error_reading_is_degraded(self, lambda_adapter, aws_clients, lambda_deployment):
        aws_clients.lambda_.get_function_configuration.side_effect = client_error("ThrottlingException")

        reading = lambda_adapter.read_status(lambda_deployment)

        assert reading.value == DeploymentStatus.FAILED
        assert reading.degraded is True

    def test_metrics_error_reading_is_degraded(self, lambda_adapter, aws_clients, lambda_deployment):
        aws_clients.cloudwatch.get_metric_data.side_effect = client_error("ThrottlingException")

        assert lambda_adapter.read_metrics(lambda_deployment).degraded is True

    def test_logs_from_latest_stream(self, lambda_adapter, aws_clients, lambda_deployment):
        aws_clients.logs.describe_log_streams.return_value = {"logStreams": [{"logStreamName": "2024/01/15/abc"}]}
        aws_clients.logs.get_log_events.return_value = {
            "events": [{"message": "START\n"}, {"message": "END\n"}]
        }

        assert lambda_adapter.get_logs(lambda_deployment, tail=50) == ["START", "END"]

        kwargs = aws_clients.logs.get_log_events.call_args.kwargs
        assert kwargs["logGroupName"] == "/aws/lambda/summariser"
        assert kwargs["limit"] == 50
        assert kwargs["startFromHead"] is False

    def test_logs_without_streams(self, lambda_adapter, aws_clients, lambda_deployment):
        aws_clients.logs.describe_log_streams.return_value = {"logStreams": []}

        assert lambda_adapter.get_logs(lambda_deployment) == []


# ============================================
# CLOUD RUN
# ============================================

@pytest.fixture
def cloud_run_deployment():
    return Deployment.create(
        agent_id="agent-3",
        user_id="u1",
        name="Researcher",
        provider="cloud-run",
        config={"name": "researcher", "image": "gcr.io/novamind/agent", "region": "europe-west1"},
    )


@pytest.fixture
def gcp_clients():
    return SimpleNamespace(services=MagicMock(), metrics=MagicMock(), logging=MagicMock())


@pytest.fixture
def cloud_run_adapter(provider_settings, gcp_clients):
    return CloudRunAdapter(
        provider_settings,
        services_client=gcp_clients.services,
        metrics_client=gcp_clients.metrics,
        logging_client=gcp_clients.logging,
    )


def series(*values):
    return monitoring_v3.TimeSeries(points=[monitoring_v3.Point(value=value) for value in values])


class TestCloudRunAdapter:

    def test_deploy_creates_service(self, cloud_run_adapter, gcp_clients, cloud_run_deployment):
        cloud_run_adapter.deploy(cloud_run_deployment)

        call = gcp_clients.services.create_service.call_args
        request = call.kwargs["request"]
        container = request.service.template.containers[0]
        env = {var.name: var.value for var in container.env}

        assert request.parent == "projects/novamind/locations/europe-west1"
        assert request.service_id == "researcher"
        assert container.image == "gcr.io/novamind/agent"
        assert env["DEPLOYMENT_ID"] == str(cloud_run_deployment.deployment_id)
        assert call.kwargs["timeout"] == 15

    def test_deploy_updates_existing_service(self, cloud_run_adapter, gcp_clients, cloud_run_deployment):
        gcp_clients.services.create_service.side_effect = gcp_exceptions.AlreadyExists("exists")

        cloud_run_adapter.deploy(cloud_run_deployment)

        request = gcp_clients.services.update_service.call_args.kwargs["request"]
        assert request.service.name == "projects/novamind/locations/europe-west1/services/researcher"

    def test_deploy_without_region_uses_default_region(self, gcp_clients, cloud_run_deployment):
        adapter = CloudRunAdapter(
            ProviderSettings(gcp_project="novamind", gcp_region="asia-northeast1"),
            services_client=gcp_clients.services,
        )
        del cloud_run_deployment.config["region"]

        adapter.deploy(cloud_run_deployment)

        request = gcp_clients.services.create_service.call_args.kwargs["request"]
        assert request.parent == "projects/novamind/locations/asia-northeast1"

    def test_deploy_requires_project(self, gcp_clients, cloud_run_deployment):
        adapter = CloudRunAdapter(
            ProviderSettings(gcp_project=None),
            services_client=gcp_clients.services,
        )

        with pytest.raises(ConfigurationError, match="GCP_PROJECT"):
            adapter.deploy(cloud_run_deployment)

        gcp_clients.services.create_service.assert_not_called()

    def test_deploy_failure_raises_provider_error(self, cloud_run_adapter, gcp_clients, cloud_run_deployment):
        gcp_clients.services.create_service.side_effect = gcp_exceptions.PermissionDenied("denied")

        with pytest.raises(ProviderError):
            cloud_run_adapter.deploy(cloud_run_deployment)

    def test_undeploy_missing_service_succeeds(self, cloud_run_adapter, gcp_clients, cloud_run_deployment):
        gcp_clients.services.delete_service.side_effect = gcp_exceptions.NotFound("gone")

        cloud_run_adapter.undeploy(cloud_run_deployment)

    @pytest.mark.parametrize("service, expected", [
        (
            run_v2.Service(terminal_condition=run_v2.Condition(
                state=run_v2.Condition.State.CONDITION_SUCCEEDED,
            )),
            DeploymentStatus.RUNNING,
        ),
        (
            run_v2.Service(terminal_condition=run_v2.Condition(
                state=run_v2.Condition.State.CONDITION_FAILED,
            )),
            DeploymentStatus.FAILED,
        ),
        (
            run_v2.Service(reconciling=True, terminal_condition=run_v2.Condition(
                state=run_v2.Condition.State.CONDITION_SUCCEEDED,
            )),
            DeploymentStatus.PENDING,
        ),
    ])
    def test_status_mapping(self, cloud_run_adapter, gcp_clients, cloud_run_deployment, service, expected):
        gcp_clients.services.get_service.return_value = service

        assert cloud_run_adapter.get_status(cloud_run_deployment) == expected

    def test_status_missing_service_is_stopped(self, cloud_run_adapter, gcp_clients, cloud_run_deployment):
        gcp_clients.services.get_service.side_effect = gcp_exceptions.NotFound("gone")

        assert cloud_run_adapter.get_status(cloud_run_deployment) == DeploymentStatus.STOPPED

    def test_metrics_from_monitoring(self, cloud_run_adapter, gcp_clients, cloud_run_deployment):
        by_metric = {
            "run.googleapis.com/request_count": [
                series(monitoring_v3.TypedValue(int64_value=5), monitoring_v3.TypedValue(int64_value=7)),
            ],
            "run.googleapis.com/request_latencies": [
                series(monitoring_v3.TypedValue(
                    distribution_value=distribution_pb2.Distribution(count=12, mean=120.0),
                )),
            ],
            "run.googleapis.com/container/cpu/utilizations": [
                series(monitoring_v3.TypedValue(
                    distribution_value=distribution_pb2.Distribution(count=1, mean=0.25),
                )),
            ],
            "run.googleapis.com/container/memory/utilizations": [
                series(monitoring_v3.TypedValue(double_value=0.5)),
            ],
        }

        def list_time_series(request, timeout):
            metric = request["filter"].split('"')[1]
            return by_metric[metric]

        gcp_clients.metrics.list_time_series.side_effect = list_time_series

        metrics = cloud_run_adapter.get_metrics(cloud_run_deployment)

        assert metrics.request_count == 12
        assert metrics.response_time == pytest.approx(120.0)
        assert metrics.cpu_usage == pytest.approx(25.0)
        assert metrics.memory_usage == pytest.approx(50.0)
        assert metrics.error_rate == 0

    def test_metrics_error_returns_zero(self, cloud_run_adapter, gcp_clients, cloud_run_deployment):
        gcp_clients.metrics.list_time_series.side_effect = gcp_exceptions.ServiceUnavailable("down")

        assert cloud_run_adapter.get_metrics(cloud_run_deployment).cpu_usage == 0

    def test_status_error_reading_is_degraded(self, cloud_run_adapter, gcp_clients, cloud_run_deployment):
        gcp_clients.services.get_service.side_effect = gcp_exceptions.DeadlineExceeded("timed out")

        reading = cloud_run_adapter.read_status(cloud_run_deployment)

        assert reading.value == DeploymentStatus.FAILED
        assert reading.degraded is True

    def test_logs_from_cloud_logging(self, cloud_run_adapter, gcp_clients, cloud_run_deployment):
        gcp_clients.logging.list_entries.return_value = [
            SimpleNamespace(payload={"message": "request handled"}),
            SimpleNamespace(payload="plain text line"),
        ]

        lines = cloud_run_adapter.get_logs(cloud_run_deployment, tail=10)

        assert lines == ["request handled", "plain text line"]
        kwargs = gcp_clients.logging.list_entries.call_args.kwargs
        assert 'resource.labels.service_name="researcher"' in kwargs["filter_"]
        assert kwargs["max_results"] == 10

    def test_logs_error_returns_empty(self, cloud_run_adapter, gcp_clients, cloud_run_deployment):
        gcp_clients.logging.list_entries.side_effect = gcp_exceptions.Forbidden("no access")

        assert cloud_run_adapter.get_logs(cloud_run_deployment) == []
