#deployment_service\core\state_machine.py

from datetime import datetime
from typing import Optional

from deployment_service.core.errors import InvalidStateError
from deployment_service.core.models import Deployment, DeploymentStatus, utc_now


ALLOWED_TRANSITIONS = {
    DeploymentStatus.PENDING: {
        DeploymentStatus.RUNNING,
        DeploymentStatus.FAILED,
        DeploymentStatus.DELETED,
    },
    DeploymentStatus.RUNNING: {
        DeploymentStatus.STOPPED,
        DeploymentStatus.FAILED,
        DeploymentStatus.DELETED,
        DeploymentStatus.PENDING,
    },
    DeploymentStatus.STOPPED: {
        DeploymentStatus.RUNNING,
        DeploymentStatus.FAILED,
        DeploymentStatus.DELETED,
        DeploymentStatus.PENDING,
    },
    DeploymentStatus.FAILED: {
        DeploymentStatus.RUNNING,
        DeploymentStatus.STOPPED,
        DeploymentStatus.DELETED,
        DeploymentStatus.PENDING,
    },
    # DELETED is terminal
}


class DeploymentStateMachine:
    @staticmethod
    def can_transition(current: DeploymentStatus, new_status: DeploymentStatus) -> bool:
        if current == new_status:
            return True
        return new_status in ALLOWED_TRANSITIONS.get(current, set())

    @staticmethod
    def transition(
        deployment: Deployment,
        new_status: DeploymentStatus,
        *,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Deployment:
        now = now or utc_now()

        current = deployment.status

        if current == new_status:
            return deployment

        if not DeploymentStateMachine.can_transition(current, new_status):
            raise InvalidStateError(
                f"Cannot transition deployment {deployment.deployment_id} "
                f"from {current.value} to {new_status.value}"
            )

        if new_status == DeploymentStatus.FAILED:
            deployment.error_message = reason
            deployment.append_log(reason or "Deployment failed", level="error", now=now)
        else:
            deployment.error_message = None
            deployment.append_log(
                f"Status changed from {current.value} to {new_status.value}",
                now=now,
            )

        deployment.status = new_status
        deployment.updated_at = now
        return deployment
