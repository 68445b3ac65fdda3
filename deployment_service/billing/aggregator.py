#deployment_service\billing\aggregator.py

"""Usage aggregator - folds usage events into daily aggregates."""

import logging
from datetime import date, datetime
from typing import Callable, Dict, List, Optional
from uuid import UUID

from deployment_service.billing.models import (
    DailyStat,
    DailyUsage,
    UsageEvent,
    UsageStats,
    UserDailyUsage,
    month_key,
)
from deployment_service.billing.pricing import PricingSettings
from deployment_service.billing.repository import UsageRepository
from deployment_service.core.errors import ValidationError
from deployment_service.core.models import utc_now
from deployment_service.core.repository import DeploymentRepository

logger = logging.getLogger(__name__)


class UsageAggregator:
    """
    One usage event per served request.

    Recording never raises: the agent runtime calls this on its response
    path, so persistence failures are logged and swallowed.
    """

    def __init__(
        self,
        usage_repository: UsageRepository,
        deployment_repository: DeploymentRepository,
        pricing: PricingSettings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._usage_repo = usage_repository
        self._deployment_repo = deployment_repository
        self._pricing = pricing
        self._clock = clock

    def record_usage(
        self,
        deployment_id: UUID,
        user_id: str,
        event: UsageEvent,
    ) -> Optional[DailyUsage]:
        """
        Apply one event to today's (UTC) aggregate for the deployment.

        Returns the updated aggregate, or None if recording failed.
        """
        try:
            day = self._clock().date()
            compute_cost = self._pricing.compute_cost(event.latency_ms)
            token_cost = self._pricing.token_cost(event.input_tokens, event.output_tokens)

            usage = self._usage_repo.apply_usage(
                deployment_id=deployment_id,
                user_id=user_id,
                day=day,
                event=event,
                compute_cost=compute_cost,
                token_cost=token_cost,
            )

            if not self._deployment_repo.add_cost(deployment_id, compute_cost + token_cost, month_key(day)):
                logger.debug(f"[usage] no deployment record for {deployment_id}; cost tracking skipped")

            return usage

        except Exception as e:
            logger.error(f"[usage] failed to record usage for {deployment_id}: {e}", exc_info=True)
            return None

    def get_deployment_usage_stats(self, deployment_id: UUID, start: date, end: date) -> UsageStats:
        """Totals over [start, end] with request-weighted latency and error rate in percent."""
        if start > end:
            raise ValidationError("start date must not be after end date")

        rows = self._usage_repo.list_for_deployment(deployment_id, start, end)

        total_requests = sum(row.request_count for row in rows)
        total_errors = sum(row.error_count for row in rows)
        weighted_latency = sum(row.latency_avg * row.request_count for row in rows)

        return UsageStats(
            total_requests=total_requests,
            total_tokens=sum(row.total_tokens for row in rows),
            average_latency=weighted_latency / total_requests if total_requests else 0.0,
            error_rate=total_errors / total_requests * 100 if total_requests else 0.0,
            total_cost=sum(row.cost_total for row in rows),
            daily_stats=[
                DailyStat(
                    date=row.date,
                    requests=row.request_count,
                    tokens=row.total_tokens,
                    cost=row.cost_total,
                )
                for row in rows
            ],
        )

    def get_user_daily_usage(self, user_id: str, start: date, end: date) -> List[UserDailyUsage]:
        """A user's usage per day over [start, end], summed across deployments, oldest first."""
        if start > end:
            raise ValidationError("start date must not be after end date")

        days: Dict[date, UserDailyUsage] = {}
        for usage in self._usage_repo.list_for_user(user_id, start, end):
            days.setdefault(usage.date, UserDailyUsage(date=usage.date)).add(usage)

        return [days[day] for day in sorted(days)]
