#deployment_service\container.py

"""Dependency injection container - wires all services together."""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from deployment_service.billing.aggregator import UsageAggregator
from deployment_service.billing.engine import BillingEngine
from deployment_service.billing.pricing import PricingSettings
from deployment_service.infrastructure.postgres.config import DatabaseSettings
from deployment_service.infrastructure.postgres.database import create_db_engine, get_session_factory
from deployment_service.infrastructure.postgres.deployment_repository import PostgresDeploymentRepository
from deployment_service.infrastructure.postgres.usage_repository import (
    PostgresBillingRepository,
    PostgresUsageRepository,
)
from deployment_service.orchestrator.factory import DeploymentFactory, build_deployment_factory
from deployment_service.orchestrator.service import DeploymentService
from deployment_service.providers.config import ProviderSettings


@dataclass
class Container:
    engine: Engine
    session_factory: sessionmaker

    # Repositories
    deployment_repository: PostgresDeploymentRepository
    usage_repository: PostgresUsageRepository
    billing_repository: PostgresBillingRepository

    # Services
    factory: DeploymentFactory
    deployment_service: DeploymentService
    usage_aggregator: UsageAggregator
    billing_engine: BillingEngine


def build_container(
    database: Optional[DatabaseSettings] = None,
    providers: Optional[ProviderSettings] = None,
    pricing: Optional[PricingSettings] = None,
    *,
    engine: Optional[Engine] = None,
    factory: Optional[DeploymentFactory] = None,
) -> Container:
    """
    Build the object graph.

    Settings not passed in are read from the environment. Tests pass
    their own engine and factory.
    """
    engine = engine or create_db_engine(database or DatabaseSettings())
    session_factory = get_session_factory(engine)

    # ============================================
    # REPOSITORIES
    # ============================================

    deployment_repository = PostgresDeploymentRepository(session_factory)
    usage_repository = PostgresUsageRepository(session_factory)
    billing_repository = PostgresBillingRepository(session_factory)

    # ============================================
    # SERVICES
    # ============================================

    factory = factory or build_deployment_factory(providers or ProviderSettings())

    deployment_service = DeploymentService(
        repository=deployment_repository,
        usage_repository=usage_repository,
        factory=factory,
    )

    usage_aggregator = UsageAggregator(
        usage_repository=usage_repository,
        deployment_repository=deployment_repository,
        pricing=pricing or PricingSettings(),
    )

    billing_engine = BillingEngine(
        usage_repository=usage_repository,
        billing_repository=billing_repository,
        deployment_repository=deployment_repository,
    )

    return Container(
        engine=engine,
        session_factory=session_factory,
        deployment_repository=deployment_repository,
        usage_repository=usage_repository,
        billing_repository=billing_repository,
        factory=factory,
        deployment_service=deployment_service,
        usage_aggregator=usage_aggregator,
        billing_engine=billing_engine,
    )
