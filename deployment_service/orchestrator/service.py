#deployment_service\orchestrator\service.py

"""Deployment service - lifecycle operations that persist their outcome."""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional
from uuid import UUID

from deployment_service.billing.repository import UsageRepository
from deployment_service.core.errors import InvalidStateError, NotFoundError, PersistenceError, ValidationError
from deployment_service.core.models import (
    Deployment,
    DeploymentEnvironment,
    DeploymentMetrics,
    DeploymentStatus,
    ResourceLimits,
    utc_now,
)
from deployment_service.core.repository import DeploymentRepository
from deployment_service.core.state_machine import DeploymentStateMachine
from deployment_service.orchestrator.factory import DeploymentFactory
from deployment_service.providers.base import DEFAULT_LOG_TAIL

logger = logging.getLogger(__name__)


class DeploymentService:
    """
    Drives the deployment state machine around factory calls.

    Every write goes through the factory first; the resulting status is
    then persisted. A failed provider call marks the deployment FAILED
    with the error message before the error is re-raised.
    """

    def __init__(
        self,
        repository: DeploymentRepository,
        usage_repository: UsageRepository,
        factory: DeploymentFactory,
    ):
        self._repo = repository
        self._usage_repo = usage_repository
        self._factory = factory

    # -------------------------
    # CREATE
    # -------------------------

    def create_deployment(
        self,
        *,
        agent_id: str,
        user_id: str,
        name: str,
        provider,
        config: Optional[Dict[str, Any]] = None,
        resources: Optional[ResourceLimits] = None,
        environment: DeploymentEnvironment = DeploymentEnvironment.DEVELOPMENT,
        description: Optional[str] = None,
    ) -> Deployment:
        """Register a pending deployment. Unsupported providers are rejected up front."""
        self._factory.resolve_provider(provider)

        deployment = Deployment.create(
            agent_id=agent_id,
            user_id=user_id,
            name=name,
            provider=provider,
            config=config,
            resources=resources,
            environment=environment,
            description=description,
        )
        deployment.append_log(f"Deployment created for provider {deployment.provider.value}")

        self._repo.create(deployment)
        logger.info(f"[deployments] created {deployment.deployment_id} for user {user_id}")
        return deployment

    def update(
        self,
        deployment_id: UUID,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> Deployment:
        """
        Change name, description or config of the stored record.

        The backend is not touched; a new config takes effect on the next
        deploy or start. Deleted deployments are read-only.
        """
        deployment = self.require(deployment_id)
        if deployment.status == DeploymentStatus.DELETED:
            raise InvalidStateError(f"Deployment {deployment_id} is deleted")

        if name is not None:
            if not name.strip():
                raise ValidationError("name must not be empty")
            deployment.name = name
        if description is not None:
            deployment.description = description
        if config is not None:
            deployment.config = dict(config)

        deployment.updated_at = utc_now()
        deployment.append_log("Deployment updated", now=deployment.updated_at)
        self._repo.update(deployment)
        logger.info(f"[deployments] updated {deployment_id}")
        return deployment

    # -------------------------
    # LIFECYCLE
    # -------------------------

    def deploy(self, deployment_id: UUID) -> Deployment:
        deployment = self.require(deployment_id)
        self._assert_can_transition(deployment, DeploymentStatus.RUNNING)

        try:
            self._factory.deploy(deployment)
        except Exception as e:
            self._mark_failed(deployment, f"Deployment failed: {e}")
            raise

        DeploymentStateMachine.transition(deployment, DeploymentStatus.RUNNING)
        self._repo.update(deployment)
        return deployment

    def stop(self, deployment_id: UUID) -> Deployment:
        deployment = self.require(deployment_id)
        self._assert_can_transition(deployment, DeploymentStatus.STOPPED)

        try:
            self._factory.stop(deployment)
        except Exception as e:
            self._mark_failed(deployment, f"Stop failed: {e}")
            raise

        DeploymentStateMachine.transition(deployment, DeploymentStatus.STOPPED)
        self._repo.update(deployment)
        return deployment

    def start(self, deployment_id: UUID) -> Deployment:
        deployment = self.require(deployment_id)
        self._assert_can_transition(deployment, DeploymentStatus.RUNNING)

        try:
            self._factory.start(deployment)
        except Exception as e:
            self._mark_failed(deployment, f"Start failed: {e}")
            raise

        DeploymentStateMachine.transition(deployment, DeploymentStatus.RUNNING)
        self._repo.update(deployment)
        return deployment

    def delete(self, deployment_id: UUID) -> bool:
        """
        Remove the backend resource, then the record.

        A deployment with usage history is kept and marked DELETED so its
        billing rows keep a name; one without is removed outright.

        Returns:
            True if the record was hard-deleted, False if soft-deleted
        """
        deployment = self.require(deployment_id)
        self._assert_can_transition(deployment, DeploymentStatus.DELETED)

        try:
            self._factory.delete(deployment)
        except Exception as e:
            self._mark_failed(deployment, f"Delete failed: {e}")
            raise

        if self._usage_repo.has_usage(deployment_id):
            DeploymentStateMachine.transition(deployment, DeploymentStatus.DELETED)
            self._repo.update(deployment)
            logger.info(f"[deployments] soft-deleted {deployment_id} (has usage history)")
            return False

        self._repo.delete(deployment_id)
        logger.info(f"[deployments] hard-deleted {deployment_id}")
        return True

    # -------------------------
    # OBSERVED STATE
    # -------------------------

    def refresh_status(self, deployment_id: UUID) -> Deployment:
        """
        Pull status from the backend and persist it if it changed.

        When the backend could not be read, the FAILED fallback is returned
        on a copy and the stored record is left alone.
        """
        deployment = self.require(deployment_id)
        if deployment.status == DeploymentStatus.DELETED:
            return deployment

        reading = self._factory.read_deployment_status(deployment)
        if reading.degraded:
            logger.warning(f"[deployments] status of {deployment_id} unavailable; not persisted")
            return replace(
                deployment,
                status=reading.value,
                error_message="Provider status unavailable",
            )

        observed = reading.value
        if observed == deployment.status:
            return deployment

        if not DeploymentStateMachine.can_transition(deployment.status, observed):
            logger.warning(
                f"[deployments] ignoring observed status {observed.value} "
                f"for {deployment_id} in {deployment.status.value}"
            )
            return deployment

        DeploymentStateMachine.transition(
            deployment,
            observed,
            reason="Provider reported deployment failure",
        )
        self._repo.update(deployment)
        return deployment

    def refresh_metrics(self, deployment_id: UUID) -> DeploymentMetrics:
        """Replace the metrics snapshot; only running deployments are polled."""
        deployment = self.require(deployment_id)
        if deployment.status != DeploymentStatus.RUNNING:
            return deployment.metrics

        reading = self._factory.read_deployment_metrics(deployment)
        if reading.degraded:
            # Keep the last real snapshot
            return reading.value

        deployment.replace_metrics(reading.value)
        self._repo.update(deployment)
        return reading.value

    def get_logs(self, deployment_id: UUID, tail: int = DEFAULT_LOG_TAIL) -> List[str]:
        """Live provider log lines, or the inline log when the backend has none."""
        deployment = self.require(deployment_id)

        lines = self._factory.get_deployment_logs(deployment, tail)
        if lines:
            return lines

        return [
            f"{entry.timestamp.isoformat()} [{entry.level}] {entry.message}"
            for entry in deployment.logs[-tail:]
        ] if tail > 0 else []

    # -------------------------
    # QUERIES
    # -------------------------

    def get(self, deployment_id: UUID) -> Optional[Deployment]:
        return self._repo.get(deployment_id)

    def require(self, deployment_id: UUID) -> Deployment:
        deployment = self._repo.get(deployment_id)
        if deployment is None:
            raise NotFoundError(f"Deployment {deployment_id} not found")
        return deployment

    def list_for_user(self, user_id: str) -> List[Deployment]:
        return self._repo.list_by_user(user_id)

    # -------------------------
    # INTERNAL HELPERS
    # -------------------------

    @staticmethod
    def _assert_can_transition(deployment: Deployment, target: DeploymentStatus) -> None:
        if not DeploymentStateMachine.can_transition(deployment.status, target):
            raise InvalidStateError(
                f"Cannot move deployment {deployment.deployment_id} "
                f"from {deployment.status.value} to {target.value}"
            )

    def _mark_failed(self, deployment: Deployment, reason: str) -> None:
        """Persist FAILED; a persistence error here is logged so the provider error still propagates."""
        DeploymentStateMachine.transition(deployment, DeploymentStatus.FAILED, reason=reason)
        try:
            self._repo.update(deployment)
        except PersistenceError as e:
            logger.error(f"[deployments] could not persist failure of {deployment.deployment_id}: {e}")
