# deployment_service/billing/repository.py

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Dict, List, Optional
from uuid import UUID

from deployment_service.billing.models import (
    BillingStatus,
    DailyUsage,
    MonthlyBilling,
    UsageEvent,
)


class UsageRepository(ABC):
    """
    Persistence contract for daily usage aggregates.
    """

    @abstractmethod
    def apply_usage(
        self,
        deployment_id: UUID,
        user_id: str,
        day: date,
        event: UsageEvent,
        compute_cost: float,
        token_cost: float,
    ) -> DailyUsage:
        """
        Fold one usage event into the (deployment_id, day) aggregate,
        creating it if needed.

        Must be atomic per key: concurrent callers never lose increments.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, deployment_id: UUID, day: date) -> Optional[DailyUsage]:
        raise NotImplementedError

    @abstractmethod
    def list_for_deployment(self, deployment_id: UUID, start: date, end: date) -> List[DailyUsage]:
        """Records in [start, end], oldest first."""
        raise NotImplementedError

    @abstractmethod
    def list_for_user(self, user_id: str, start: date, end: date) -> List[DailyUsage]:
        raise NotImplementedError

    @abstractmethod
    def sum_costs_by_deployment(self, user_id: str, start: date, end: date) -> Dict[UUID, float]:
        """Total cost per deployment for a user within [start, end]."""
        raise NotImplementedError

    @abstractmethod
    def distinct_users(self, start: date, end: date) -> List[str]:
        """Users with any usage within [start, end]."""
        raise NotImplementedError

    @abstractmethod
    def has_usage(self, deployment_id: UUID) -> bool:
        raise NotImplementedError


class BillingRepository(ABC):
    """
    Persistence contract for monthly billing records.
    """

    @abstractmethod
    def get(self, user_id: str, year: int, month: int) -> Optional[MonthlyBilling]:
        raise NotImplementedError

    @abstractmethod
    def create(self, billing: MonthlyBilling) -> None:
        """
        Persist a new billing record.
        Must fail with AlreadyExistsError if (user_id, year, month) exists.
        """
        raise NotImplementedError

    @abstractmethod
    def update_status(
        self,
        billing_id: UUID,
        status: BillingStatus,
        paid_at: Optional[datetime] = None,
    ) -> MonthlyBilling:
        """
        Change status / paid_at. Everything else is immutable.
        Raises NotFoundError if the record does not exist.
        """
        raise NotImplementedError

    @abstractmethod
    def list_for_user(self, user_id: str) -> List[MonthlyBilling]:
        """All records for a user, newest month first."""
        raise NotImplementedError
