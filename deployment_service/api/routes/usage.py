import logging
from datetime import date, timedelta
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends

from deployment_service.api.container import (
    get_billing_engine,
    get_deployment_service,
    get_usage_aggregator,
)
from deployment_service.api.schemas.usage import UsageRecordRequest
from deployment_service.billing.aggregator import UsageAggregator
from deployment_service.billing.engine import BillingEngine
from deployment_service.core.models import utc_now
from deployment_service.orchestrator.service import DeploymentService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["usage"])


# Default window for usage queries without explicit dates
DEFAULT_USAGE_DAYS = 30


def date_window(start: Optional[date], end: Optional[date]):
    end = end or utc_now().date()
    return start or end - timedelta(days=DEFAULT_USAGE_DAYS), end


# -------------------------
# USAGE
# -------------------------

@router.post("/api/deployments/{deployment_id}/record-usage")
def record_usage(
    deployment_id: UUID,
    request: UsageRecordRequest,
    aggregator: UsageAggregator = Depends(get_usage_aggregator),
    deployments: DeploymentService = Depends(get_deployment_service),
):
    user_id = request.user_id
    if user_id is None:
        deployment = deployments.get(deployment_id)
        if deployment is None:
            # Nothing to attribute the event to; the sender must not retry it
            logger.warning(f"[usage] dropped event for unknown deployment {deployment_id} without userId")
            return {"recorded": False, "usage": None}
        user_id = deployment.user_id

    usage = aggregator.record_usage(deployment_id, user_id, request.to_event())

    return {
        "recorded": usage is not None,
        "usage": usage.to_dict() if usage else None,
    }


@router.get("/api/deployments/{deployment_id}/usage")
def get_usage(
    deployment_id: UUID,
    start: Optional[date] = None,
    end: Optional[date] = None,
    aggregator: UsageAggregator = Depends(get_usage_aggregator),
):
    start, end = date_window(start, end)
    return aggregator.get_deployment_usage_stats(deployment_id, start, end).to_dict()


@router.get("/api/usage/daily/user/{user_id}")
def get_user_daily_usage(
    user_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
    aggregator: UsageAggregator = Depends(get_usage_aggregator),
):
    start, end = date_window(start, end)
    days = aggregator.get_user_daily_usage(user_id, start, end)
    return {"count": len(days), "usage": [day.to_dict() for day in days]}


# -------------------------
# BILLING
# -------------------------

@router.post("/api/billing/process")
def process_billing(engine: BillingEngine = Depends(get_billing_engine)):
    return {"processed": engine.process_monthly_billing()}


@router.post("/api/billing/{user_id}/{year}/{month}")
def generate_billing(
    user_id: str,
    year: int,
    month: int,
    engine: BillingEngine = Depends(get_billing_engine),
):
    return engine.generate_monthly_billing(user_id, year, month).to_dict()


@router.get("/api/billing/{user_id}/{year}/{month}")
def get_billing(
    user_id: str,
    year: int,
    month: int,
    engine: BillingEngine = Depends(get_billing_engine),
):
    return engine.get_monthly_billing(user_id, year, month).to_dict()


@router.get("/api/billing/{user_id}/history")
def get_billing_history(
    user_id: str,
    engine: BillingEngine = Depends(get_billing_engine),
):
    history = engine.get_billing_history(user_id)
    return {"count": len(history), "billing": [billing.to_dict() for billing in history]}


@router.get("/api/billing/{user_id}/summary")
def get_billing_summary(
    user_id: str,
    engine: BillingEngine = Depends(get_billing_engine),
):
    return engine.get_user_billing_summary(user_id).to_dict()
