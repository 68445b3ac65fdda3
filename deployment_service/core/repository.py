# deployment_service/core/repository.py

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from deployment_service.core.models import Deployment


class DeploymentRepository(ABC):
    """
    Persistence contract for deployment records.
    """

    @abstractmethod
    def create(self, deployment: Deployment) -> None:
        """
        Persist a new deployment.
        Must fail if deployment_id already exists.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, deployment_id: UUID) -> Optional[Deployment]:
        """
        Fetch deployment by ID.
        Returns None if not found.
        """
        raise NotImplementedError

    @abstractmethod
    def update(self, deployment: Deployment) -> None:
        """
        Persist updated deployment state.
        Must enforce optimistic concurrency on ``version``.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, deployment_id: UUID) -> bool:
        """
        Physically remove a deployment.
        Returns False if it did not exist.
        """
        raise NotImplementedError

    @abstractmethod
    def list_by_user(self, user_id: str) -> List[Deployment]:
        raise NotImplementedError

    @abstractmethod
    def get_names(self, deployment_ids: Iterable[UUID]) -> Dict[UUID, str]:
        """
        Resolve display names for the given ids.
        Unknown ids are simply absent from the result.
        """
        raise NotImplementedError

    @abstractmethod
    def add_cost(self, deployment_id: UUID, amount: float, month: str) -> bool:
        """
        Atomically accrue cost on a deployment's cost tracking.

        ``month`` is the "YYYY-MM" key of the event; current-month cost
        restarts from ``amount`` when it differs from the stored key.
        Returns False if the deployment does not exist.
        """
        raise NotImplementedError
