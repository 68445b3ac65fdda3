#tests\conftest.py

"""Pytest configuration and fixtures."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from deployment_service.billing.aggregator import UsageAggregator
from deployment_service.billing.engine import BillingEngine
from deployment_service.billing.pricing import PricingSettings
from deployment_service.core.errors import ProviderError
from deployment_service.core.models import (
    Deployment,
    DeploymentMetrics,
    DeploymentProvider,
    DeploymentStatus,
)
from deployment_service.infrastructure.postgres.database import drop_db, get_session_factory, init_db
from deployment_service.infrastructure.postgres.deployment_repository import PostgresDeploymentRepository
from deployment_service.infrastructure.postgres.usage_repository import (
    PostgresBillingRepository,
    PostgresUsageRepository,
)
from deployment_service.orchestrator.factory import DeploymentFactory
from deployment_service.orchestrator.service import DeploymentService
from deployment_service.providers.base import ProviderAdapter


# ============================================
# FAKE PROVIDER
# ============================================

class FakeAdapter(ProviderAdapter):
    """In-memory adapter that records calls and fails on request."""

    def __init__(self, provider: DeploymentProvider):
        self.provider = provider
        self.calls = []
        self.fail_on = set()
        self.status = DeploymentStatus.RUNNING
        self.metrics = DeploymentMetrics(
            cpu_usage=12.5,
            memory_usage=40.0,
            request_count=30,
            response_time=180.0,
            error_rate=3.3,
        )
        self.logs = ["agent started", "listening on :4000"]

    def _call(self, operation: str, deployment: Deployment):
        self.calls.append((operation, deployment.deployment_id))
        if operation in self.fail_on:
            raise ProviderError(self.provider.value, operation, "backend unavailable")

    def deploy(self, deployment):
        self._call("deploy", deployment)

    def undeploy(self, deployment):
        self._call("undeploy", deployment)

    def fetch_status(self, deployment):
        self._call("get_status", deployment)
        return self.status

    def fetch_metrics(self, deployment):
        self._call("get_metrics", deployment)
        return self.metrics

    def get_logs(self, deployment, tail=100):
        self._call("get_logs", deployment)
        return self.logs[-tail:]

    def operations(self):
        return [operation for operation, _ in self.calls]


# ============================================
# DATABASE
# ============================================

@pytest.fixture(scope="function")
def test_engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)

    yield engine

    drop_db(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_session_factory(test_engine):
    """Create session factory for tests."""
    return get_session_factory(test_engine)


@pytest.fixture
def deployment_repository(test_session_factory):
    return PostgresDeploymentRepository(session_factory=test_session_factory)


@pytest.fixture
def usage_repository(test_session_factory):
    return PostgresUsageRepository(session_factory=test_session_factory)


@pytest.fixture
def billing_repository(test_session_factory):
    return PostgresBillingRepository(session_factory=test_session_factory)


# ============================================
# DOMAIN
# ============================================

@pytest.fixture
def fixed_now():
    return datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def pricing():
    return PricingSettings(
        compute_rate_per_ms=0.00000008,
        input_token_rate=0.0000015,
        output_token_rate=0.000002,
    )


@pytest.fixture
def sample_deployment():
    """A pending Kubernetes deployment."""
    return Deployment.create(
        agent_id="agent-1",
        user_id="u1",
        name="Support Bot",
        provider="kubernetes",
        config={"namespace": "agents", "image": "novamind/agent-runtime:latest"},
    )


# ============================================
# SERVICES
# ============================================

@pytest.fixture
def fake_adapters():
    return {
        DeploymentProvider.KUBERNETES: FakeAdapter(DeploymentProvider.KUBERNETES),
        DeploymentProvider.AWS_LAMBDA: FakeAdapter(DeploymentProvider.AWS_LAMBDA),
        DeploymentProvider.CLOUD_RUN: FakeAdapter(DeploymentProvider.CLOUD_RUN),
    }


@pytest.fixture
def custom_adapter():
    return FakeAdapter(DeploymentProvider.CUSTOM)


@pytest.fixture
def fake_factory(fake_adapters):
    return DeploymentFactory(fake_adapters)


@pytest.fixture
def deployment_service(deployment_repository, usage_repository, fake_factory):
    return DeploymentService(
        repository=deployment_repository,
        usage_repository=usage_repository,
        factory=fake_factory,
    )


@pytest.fixture
def aggregator(usage_repository, deployment_repository, pricing, fixed_now):
    return UsageAggregator(
        usage_repository=usage_repository,
        deployment_repository=deployment_repository,
        pricing=pricing,
        clock=lambda: fixed_now,
    )


@pytest.fixture
def billing_engine(usage_repository, billing_repository, deployment_repository, fixed_now):
    return BillingEngine(
        usage_repository=usage_repository,
        billing_repository=billing_repository,
        deployment_repository=deployment_repository,
        clock=lambda: fixed_now,
    )
