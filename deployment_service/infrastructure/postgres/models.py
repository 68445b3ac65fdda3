#deployment_service\infrastructure\postgres\models.py
"""SQLAlchemy ORM models for database tables."""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, BigInteger, Date, DateTime, JSON, Enum as SQLEnum,
    Index, Text, Float, UniqueConstraint, Uuid,
)

from deployment_service.billing.models import BillingStatus
from deployment_service.core.models import DeploymentStatus
from deployment_service.infrastructure.postgres.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


# ============================================
# DEPLOYMENTS
# ============================================

class DeploymentORM(Base):
    """
    Deployment table - desired and observed state of one agent instance.

    Indexes:
    - Primary key on deployment_id
    - Composite index on (user_id, status) for per-user listings
    """

    __tablename__ = "deployments"

    # Primary key
    deployment_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4, nullable=False)

    # Identity (owned by other services, not enforced)
    agent_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    provider = Column(String(50), nullable=False)
    environment = Column(String(50), nullable=False, default="development")
    endpoint = Column(String(500), nullable=True)

    # Desired state
    resources = Column(JSON, nullable=False)
    config = Column(JSON, nullable=False)

    # Observed state
    status = Column(
        SQLEnum(DeploymentStatus, name="deployment_status"),
        nullable=False,
        default=DeploymentStatus.PENDING,
        index=True
    )
    error_message = Column(Text, nullable=True)
    metrics = Column(JSON, nullable=False)
    metrics_updated_at = Column(DateTime(timezone=True), nullable=True)
    logs = Column(JSON, nullable=False)

    # Cost tracking
    cost_start_date = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    total_cost = Column(Float, nullable=False, default=0.0)
    current_month_cost = Column(Float, nullable=False, default=0.0)
    cost_month = Column(String(7), nullable=True)

    # Lifecycle timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # Optimistic concurrency
    version = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index('ix_deployments_user_status', 'user_id', 'status'),
    )

    def __repr__(self) -> str:
        return (
            f"<DeploymentORM(deployment_id={self.deployment_id}, "
            f"provider={self.provider}, "
            f"status={self.status.value})>"
        )


# ============================================
# DAILY USAGE
# ============================================

class DailyUsageORM(Base):
    """
    One running aggregate per (deployment_id, date).

    The unique constraint is what keeps concurrent first events of the
    day from creating two rows.
    """

    __tablename__ = "daily_usage"

    usage_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    deployment_id = Column(Uuid(as_uuid=True), nullable=False)
    user_id = Column(String(64), nullable=False)
    date = Column(Date, nullable=False)

    request_count = Column(Integer, nullable=False, default=0)

    input_tokens = Column(BigInteger, nullable=False, default=0)
    output_tokens = Column(BigInteger, nullable=False, default=0)
    total_tokens = Column(BigInteger, nullable=False, default=0)

    latency_avg = Column(Float, nullable=False, default=0.0)
    latency_min = Column(Float, nullable=False)
    latency_max = Column(Float, nullable=False, default=0.0)
    latency_p95 = Column(Float, nullable=False, default=0.0)
    latency_p99 = Column(Float, nullable=False, default=0.0)

    error_count = Column(Integer, nullable=False, default=0)

    cost_compute = Column(Float, nullable=False, default=0.0)
    cost_tokens = Column(Float, nullable=False, default=0.0)
    cost_total = Column(Float, nullable=False, default=0.0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint('deployment_id', 'date', name='uq_daily_usage_deployment_date'),
        Index('ix_daily_usage_user_date', 'user_id', 'date'),
        Index('ix_daily_usage_date', 'date'),
    )


# ============================================
# MONTHLY BILLING
# ============================================

class MonthlyBillingORM(Base):
    """Monthly billing table - one row per (user_id, year, month)."""

    __tablename__ = "monthly_billing"

    billing_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    user_id = Column(String(64), nullable=False, index=True)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)

    deployments = Column(JSON, nullable=False)  # [{deploymentId, name, cost}]
    total_cost = Column(Float, nullable=False, default=0.0)

    status = Column(
        SQLEnum(BillingStatus, name="billing_status"),
        nullable=False,
        default=BillingStatus.PENDING
    )

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint('user_id', 'year', 'month', name='uq_monthly_billing_user_period'),
    )
