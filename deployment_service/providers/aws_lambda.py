#deployment_service\providers\aws_lambda.py

"""AWS Lambda provider: one function per agent deployment."""

import base64
import binascii
import logging
import math
from datetime import timedelta
from typing import Any, Dict, List

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from deployment_service.core.errors import ProviderError, ValidationError
from deployment_service.core.models import (
    Deployment,
    DeploymentMetrics,
    DeploymentProvider,
    DeploymentStatus,
    utc_now,
)
from deployment_service.core.provider_config import LambdaConfig
from deployment_service.providers.base import DEFAULT_LOG_TAIL, METRICS_WINDOW_SECONDS, ProviderAdapter
from deployment_service.providers.config import ProviderSettings

logger = logging.getLogger(__name__)


# Poll interval of the function_updated waiter
WAITER_DELAY_SECONDS = 2


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class AwsLambdaAdapter(ProviderAdapter):
    """
    Deploys to AWS Lambda; metrics come from CloudWatch and logs from
    CloudWatch Logs. Lambda does not expose CPU or memory utilization,
    so those dimensions are always zero.
    """

    provider = DeploymentProvider.AWS_LAMBDA

    def __init__(
        self,
        settings: ProviderSettings,
        lambda_client=None,
        cloudwatch_client=None,
        logs_client=None,
    ):
        self._settings = settings
        self._lambda = lambda_client
        self._cloudwatch = cloudwatch_client
        self._logs = logs_client
        self._client_config = Config(
            connect_timeout=settings.provider_request_timeout_seconds,
            read_timeout=settings.provider_request_timeout_seconds,
            retries={"max_attempts": 2},
        )

    # -------------------------
    # CLIENTS
    # -------------------------

    def _client(self, service: str):
        return boto3.client(service, region_name=self._settings.aws_region, config=self._client_config)

    def _waiter_config(self) -> Dict[str, int]:
        """Polling budget bounded by the provider request timeout."""
        timeout = self._settings.provider_request_timeout_seconds
        return {
            "Delay": WAITER_DELAY_SECONDS,
            "MaxAttempts": max(1, math.ceil(timeout / WAITER_DELAY_SECONDS)),
        }

    @property
    def lambda_client(self):
        if self._lambda is None:
            self._lambda = self._client("lambda")
        return self._lambda

    @property
    def cloudwatch_client(self):
        if self._cloudwatch is None:
            self._cloudwatch = self._client("cloudwatch")
        return self._cloudwatch

    @property
    def logs_client(self):
        if self._logs is None:
            self._logs = self._client("logs")
        return self._logs

    # -------------------------
    # WRITE
    # -------------------------

    def deploy(self, deployment: Deployment) -> None:
        cfg: LambdaConfig = self.parse_config(deployment)

        try:
            package = base64.b64decode(cfg.code, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError("Lambda code must be a base64-encoded deployment package") from e

        function_config = {
            "FunctionName": cfg.function_name,
            "Runtime": cfg.runtime,
            "Handler": cfg.handler,
            "Role": cfg.role,
            "MemorySize": cfg.memory_size,
            "Timeout": cfg.timeout,
            "Environment": {"Variables": self.runtime_environment(deployment, cfg.environment)},
        }

        logger.info(f"[lambda] deploying function {cfg.function_name}")
        try:
            try:
                self.lambda_client.create_function(Code={"ZipFile": package}, Publish=True, **function_config)
            except ClientError as e:
                if _error_code(e) != "ResourceConflictException":
                    raise
                # Function exists: push the new code, then the new configuration
                self.lambda_client.update_function_code(
                    FunctionName=cfg.function_name,
                    ZipFile=package,
                    Publish=True,
                )
                self.lambda_client.get_waiter("function_updated").wait(
                    FunctionName=cfg.function_name,
                    WaiterConfig=self._waiter_config(),
                )
                self.lambda_client.update_function_configuration(**function_config)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"[lambda] deploy {cfg.function_name} failed: {e}")
            raise ProviderError(self.provider.value, "deploy", str(e)) from e

    def undeploy(self, deployment: Deployment) -> None:
        cfg: LambdaConfig = self.parse_config(deployment)

        try:
            self.lambda_client.delete_function(FunctionName=cfg.function_name)
            logger.info(f"[lambda] deleted function {cfg.function_name}")
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                logger.info(f"[lambda] function {cfg.function_name} already absent")
                return
            logger.error(f"[lambda] undeploy {cfg.function_name} failed: {e}")
            raise ProviderError(self.provider.value, "undeploy", str(e)) from e
        except BotoCoreError as e:
            logger.error(f"[lambda] undeploy {cfg.function_name} failed: {e}")
            raise ProviderError(self.provider.value, "undeploy", str(e)) from e

    # -------------------------
    # READ
    # -------------------------

    def fetch_status(self, deployment: Deployment) -> DeploymentStatus:
        cfg: LambdaConfig = self.parse_config(deployment)
        try:
            function = self.lambda_client.get_function_configuration(FunctionName=cfg.function_name)
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                return DeploymentStatus.STOPPED
            raise ProviderError(self.provider.value, "status", str(e)) from e

        state = function.get("State")
        last_update = function.get("LastUpdateStatus")

        if state == "Failed" or last_update == "Failed":
            return DeploymentStatus.FAILED
        if state == "Pending" or last_update == "InProgress":
            return DeploymentStatus.PENDING
        if state == "Active":
            return DeploymentStatus.RUNNING
        if state == "Inactive":
            return DeploymentStatus.STOPPED
        return DeploymentStatus.PENDING

    def fetch_metrics(self, deployment: Deployment) -> DeploymentMetrics:
        cfg: LambdaConfig = self.parse_config(deployment)
        end = utc_now()
        start = end - timedelta(seconds=METRICS_WINDOW_SECONDS)

        response = self.cloudwatch_client.get_metric_data(
            MetricDataQueries=[
                self._metric_query("invocations", "Invocations", "Sum", cfg.function_name),
                self._metric_query("errors", "Errors", "Sum", cfg.function_name),
                self._metric_query("duration", "Duration", "Average", cfg.function_name),
            ],
            StartTime=start,
            EndTime=end,
        )

        values: Dict[str, List[float]] = {
            result["Id"]: list(result.get("Values", []))
            for result in response.get("MetricDataResults", [])
        }

        invocations = sum(values.get("invocations", []))
        errors = sum(values.get("errors", []))
        durations = values.get("duration", [])

        return DeploymentMetrics(
            request_count=float(invocations),
            response_time=float(sum(durations) / len(durations)) if durations else 0.0,
            error_rate=float(errors / invocations * 100) if invocations else 0.0,
        )

    @staticmethod
    def _metric_query(query_id: str, metric: str, stat: str, function_name: str) -> Dict[str, Any]:
        return {
            "Id": query_id,
            "MetricStat": {
                "Metric": {
                    "Namespace": "AWS/Lambda",
                    "MetricName": metric,
                    "Dimensions": [{"Name": "FunctionName", "Value": function_name}],
                },
                "Period": METRICS_WINDOW_SECONDS,
                "Stat": stat,
            },
            "ReturnData": True,
        }

    def get_logs(self, deployment: Deployment, tail: int = DEFAULT_LOG_TAIL) -> List[str]:
        """Last ``tail`` events of the most recently written log stream."""
        try:
            cfg: LambdaConfig = self.parse_config(deployment)
            group = f"/aws/lambda/{cfg.function_name}"

            streams = self.logs_client.describe_log_streams(
                logGroupName=group,
                orderBy="LastEventTime",
                descending=True,
                limit=1,
            ).get("logStreams", [])

            if not streams:
                return []

            events = self.logs_client.get_log_events(
                logGroupName=group,
                logStreamName=streams[0]["logStreamName"],
                limit=tail,
                startFromHead=False,
            ).get("events", [])

            return [event["message"].rstrip("\n") for event in events]
        except Exception as e:
            logger.error(f"[lambda] logs {deployment.deployment_id} failed: {e}", exc_info=True)
            return []
