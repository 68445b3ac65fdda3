#deployment_service\api\container.py
from functools import lru_cache

from fastapi import Depends

from deployment_service.billing.aggregator import UsageAggregator
from deployment_service.billing.engine import BillingEngine
from deployment_service.container import Container, build_container
from deployment_service.orchestrator.service import DeploymentService


@lru_cache(maxsize=1)
def get_container() -> Container:
    # Built on first request; tests override this dependency
    return build_container()


def get_deployment_service(container: Container = Depends(get_container)) -> DeploymentService:
    return container.deployment_service


def get_usage_aggregator(container: Container = Depends(get_container)) -> UsageAggregator:
    return container.usage_aggregator


def get_billing_engine(container: Container = Depends(get_container)) -> BillingEngine:
    return container.billing_engine
