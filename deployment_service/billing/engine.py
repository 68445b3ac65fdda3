#deployment_service\billing\engine.py

"""Billing roll-up engine - monthly billing records from daily usage."""

import calendar
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional
from uuid import UUID

from deployment_service.billing.models import (
    BillingLineItem,
    BillingStatus,
    BillingSummary,
    MonthlyBilling,
    month_bounds,
    previous_month,
)
from deployment_service.billing.repository import BillingRepository, UsageRepository
from deployment_service.core.errors import AlreadyExistsError, NotFoundError, PersistenceError
from deployment_service.core.models import utc_now
from deployment_service.core.repository import DeploymentRepository

logger = logging.getLogger(__name__)


TOP_DEPLOYMENTS = 5


def fallback_name(deployment_id: UUID) -> str:
    return f"Deployment {deployment_id}"


class BillingEngine:
    """Rolls a user's daily usage for a calendar month into one billing record."""

    def __init__(
        self,
        usage_repository: UsageRepository,
        billing_repository: BillingRepository,
        deployment_repository: DeploymentRepository,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._usage_repo = usage_repository
        self._billing_repo = billing_repository
        self._deployment_repo = deployment_repository
        self._clock = clock

    # -------------------------
    # ROLL-UP
    # -------------------------

    def generate_monthly_billing(self, user_id: str, year: int, month: int) -> MonthlyBilling:
        """
        Billing record for (user, year, month).

        An existing record is returned unchanged; nothing is recomputed.
        """
        start, end = month_bounds(year, month)

        existing = self._billing_repo.get(user_id, year, month)
        if existing is not None:
            logger.info(f"[billing] {user_id} {year}-{month:02d} already billed ({existing.billing_id})")
            return existing

        costs = self._usage_repo.sum_costs_by_deployment(user_id, start, end)
        items = self._line_items(costs)

        billing = MonthlyBilling.create(user_id, year, month, items)
        try:
            self._billing_repo.create(billing)
        except AlreadyExistsError:
            # A concurrent roll-up won; return its record
            winner = self._billing_repo.get(user_id, year, month)
            if winner is None:
                raise PersistenceError(
                    f"Billing for {user_id} {year}-{month:02d} reported as existing but not found"
                )
            return winner

        logger.info(
            f"[billing] generated {billing.billing_id} for {user_id} {year}-{month:02d}: "
            f"{len(items)} deployment(s), total {billing.total_cost:.4f}"
        )
        return billing

    def process_monthly_billing(self, now: Optional[datetime] = None) -> int:
        """
        Roll up last calendar month for every user with usage in it.

        One user's failure does not stop the others.

        Returns:
            Number of users processed successfully
        """
        now = now or self._clock()
        year, month = previous_month(now.year, now.month)
        start, end = month_bounds(year, month)

        users = self._usage_repo.distinct_users(start, end)
        logger.info(f"[billing] processing {year}-{month:02d} for {len(users)} user(s)")

        processed = 0
        for user_id in users:
            try:
                self.generate_monthly_billing(user_id, year, month)
                processed += 1
            except Exception as e:
                logger.error(
                    f"[billing] roll-up failed for {user_id} {year}-{month:02d}: {e}",
                    exc_info=True,
                )

        logger.info(f"[billing] processed {processed}/{len(users)} user(s) for {year}-{month:02d}")
        return processed

    # -------------------------
    # LOOKUP
    # -------------------------

    def get_monthly_billing(self, user_id: str, year: int, month: int) -> MonthlyBilling:
        """Stored record for (user, year, month); never generates one."""
        month_bounds(year, month)

        billing = self._billing_repo.get(user_id, year, month)
        if billing is None:
            raise NotFoundError(f"No billing for {user_id} {year}-{month:02d}")
        return billing

    def get_billing_history(self, user_id: str) -> List[MonthlyBilling]:
        """Every billing record of a user, newest month first."""
        return self._billing_repo.list_for_user(user_id)

    # -------------------------
    # SUMMARY
    # -------------------------

    def get_user_billing_summary(self, user_id: str, now: Optional[datetime] = None) -> BillingSummary:
        """Month-to-date total, linear projection, last month's billed total and top deployments."""
        now = now or self._clock()
        try:
            start, end = month_bounds(now.year, now.month)
            costs = self._usage_repo.sum_costs_by_deployment(user_id, start, end)

            current_total = sum(costs.values())
            days_in_month = calendar.monthrange(now.year, now.month)[1]
            projected = current_total / now.day * days_in_month

            prev_year, prev_month = previous_month(now.year, now.month)
            previous = self._billing_repo.get(user_id, prev_year, prev_month)

            return BillingSummary(
                current_month_total=current_total,
                projected_cost=projected,
                previous_month_total=previous.total_cost if previous else 0.0,
                most_expensive_deployments=self._line_items(costs)[:TOP_DEPLOYMENTS],
            )
        except Exception as e:
            logger.error(f"[billing] summary for {user_id} failed: {e}", exc_info=True)
            return BillingSummary()

    # -------------------------
    # STATUS
    # -------------------------

    def update_billing_status(
        self,
        billing_id: UUID,
        status: BillingStatus,
        paid_at: Optional[datetime] = None,
    ) -> MonthlyBilling:
        if status == BillingStatus.PAID and paid_at is None:
            paid_at = self._clock()
        return self._billing_repo.update_status(billing_id, status, paid_at)

    # -------------------------
    # INTERNAL HELPERS
    # -------------------------

    def _line_items(self, costs: Dict[UUID, float]) -> List[BillingLineItem]:
        """Line items, most expensive first, with best-effort display names."""
        try:
            names = self._deployment_repo.get_names(costs.keys())
        except Exception as e:
            logger.warning(f"[billing] deployment name lookup failed: {e}")
            names = {}

        items = [
            BillingLineItem(
                deployment_id=deployment_id,
                name=names.get(deployment_id) or fallback_name(deployment_id),
                cost=cost,
            )
            for deployment_id, cost in costs.items()
        ]
        return sorted(items, key=lambda item: item.cost, reverse=True)
