#deployment_service\infrastructure\postgres\usage_repository.py

"""PostgreSQL usage and billing repositories."""

import logging
import math
from datetime import date, datetime
from typing import Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import and_, case, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from deployment_service.billing.models import (
    BillingLineItem,
    BillingStatus,
    DailyUsage,
    MonthlyBilling,
    UsageEvent,
)
from deployment_service.billing.repository import BillingRepository, UsageRepository
from deployment_service.core.errors import AlreadyExistsError, NotFoundError, PersistenceError
from deployment_service.core.models import utc_now
from deployment_service.infrastructure.postgres.models import DailyUsageORM, MonthlyBillingORM

logger = logging.getLogger(__name__)


# ============================================
# MAPPING FUNCTIONS
# ============================================

def usage_to_domain(orm: DailyUsageORM) -> DailyUsage:
    return DailyUsage(
        usage_id=orm.usage_id,
        deployment_id=orm.deployment_id,
        user_id=orm.user_id,
        date=orm.date,
        request_count=orm.request_count,
        input_tokens=orm.input_tokens,
        output_tokens=orm.output_tokens,
        total_tokens=orm.total_tokens,
        latency_avg=orm.latency_avg,
        latency_min=orm.latency_min,
        latency_max=orm.latency_max,
        latency_p95=orm.latency_p95,
        latency_p99=orm.latency_p99,
        error_count=orm.error_count,
        cost_compute=orm.cost_compute,
        cost_tokens=orm.cost_tokens,
        cost_total=orm.cost_total,
        created_at=orm.created_at,
        updated_at=orm.updated_at,
    )


def billing_to_domain(orm: MonthlyBillingORM) -> MonthlyBilling:
    return MonthlyBilling(
        billing_id=orm.billing_id,
        user_id=orm.user_id,
        year=orm.year,
        month=orm.month,
        deployments=[BillingLineItem.from_dict(item) for item in (orm.deployments or [])],
        total_cost=orm.total_cost,
        status=orm.status,
        created_at=orm.created_at,
        paid_at=orm.paid_at,
    )


def billing_to_orm(billing: MonthlyBilling) -> MonthlyBillingORM:
    return MonthlyBillingORM(
        billing_id=billing.billing_id,
        user_id=billing.user_id,
        year=billing.year,
        month=billing.month,
        deployments=[item.to_dict() for item in billing.deployments],
        total_cost=billing.total_cost,
        status=billing.status,
        created_at=billing.created_at,
        paid_at=billing.paid_at,
    )


# ============================================
# USAGE REPOSITORY
# ============================================

class PostgresUsageRepository(UsageRepository):
    """
    Daily usage aggregates.

    Every event is folded in with one UPDATE whose right-hand sides all
    read the pre-update row, so the database serializes concurrent
    events on the same (deployment_id, date) without lost increments.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _get_session(self) -> Session:
        return self._session_factory()

    # -------------------------
    # WRITE
    # -------------------------

    def apply_usage(
        self,
        deployment_id: UUID,
        user_id: str,
        day: date,
        event: UsageEvent,
        compute_cost: float,
        token_cost: float,
    ) -> DailyUsage:
        usage = self._increment(deployment_id, day, event, compute_cost, token_cost)
        if usage is not None:
            return usage

        # First event of the day for this deployment
        self._ensure_row(deployment_id, user_id, day)

        usage = self._increment(deployment_id, day, event, compute_cost, token_cost)
        if usage is None:
            raise PersistenceError(
                f"Usage row for {deployment_id} on {day} vanished during update"
            )
        return usage

    def _increment(
        self,
        deployment_id: UUID,
        day: date,
        event: UsageEvent,
        compute_cost: float,
        token_cost: float,
    ) -> Optional[DailyUsage]:
        """Apply one event atomically. Returns None if the row does not exist."""
        t = DailyUsageORM
        latency = float(event.latency_ms)
        key = and_(t.deployment_id == deployment_id, t.date == day)

        session = self._get_session()
        try:
            result = session.execute(
                update(t)
                .where(key)
                .values(
                    request_count=t.request_count + 1,
                    input_tokens=t.input_tokens + event.input_tokens,
                    output_tokens=t.output_tokens + event.output_tokens,
                    total_tokens=t.total_tokens + event.total_tokens,
                    # new_avg = (old_avg * old_count + sample) / new_count
                    latency_avg=case(
                        (t.request_count == 0, latency),
                        else_=(t.latency_avg * t.request_count + latency) / (t.request_count + 1),
                    ),
                    latency_min=case((t.latency_min > latency, latency), else_=t.latency_min),
                    latency_max=case((t.latency_max < latency, latency), else_=t.latency_max),
                    error_count=t.error_count + (1 if event.is_error else 0),
                    cost_compute=t.cost_compute + compute_cost,
                    cost_tokens=t.cost_tokens + token_cost,
                    cost_total=t.cost_total + (compute_cost + token_cost),
                    updated_at=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                session.rollback()
                return None

            usage = usage_to_domain(session.query(t).filter(key).one())
            session.commit()
            return usage

        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to apply usage for {deployment_id}: {e}") from e
        finally:
            session.close()

    def _ensure_row(self, deployment_id: UUID, user_id: str, day: date) -> None:
        """Insert a zeroed row; a concurrent insert of the same key is fine."""
        session = self._get_session()
        try:
            now = utc_now()
            session.add(DailyUsageORM(
                usage_id=uuid4(),
                deployment_id=deployment_id,
                user_id=user_id,
                date=day,
                request_count=0,
                input_tokens=0,
                output_tokens=0,
                total_tokens=0,
                latency_avg=0.0,
                latency_min=math.inf,
                latency_max=0.0,
                latency_p95=0.0,
                latency_p99=0.0,
                error_count=0,
                cost_compute=0.0,
                cost_tokens=0.0,
                cost_total=0.0,
                created_at=now,
                updated_at=now,
            ))
            session.commit()
            logger.debug(f"[postgres] created daily usage {deployment_id} / {day}")
        except IntegrityError:
            session.rollback()
            logger.debug(f"[postgres] daily usage {deployment_id} / {day} created concurrently")
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to create usage row: {e}") from e
        finally:
            session.close()

    # -------------------------
    # READ
    # -------------------------

    def get(self, deployment_id: UUID, day: date) -> Optional[DailyUsage]:
        session = self._get_session()
        try:
            orm = session.query(DailyUsageORM).filter(
                and_(
                    DailyUsageORM.deployment_id == deployment_id,
                    DailyUsageORM.date == day,
                )
            ).first()
            return usage_to_domain(orm) if orm else None
        finally:
            session.close()

    def list_for_deployment(self, deployment_id: UUID, start: date, end: date) -> List[DailyUsage]:
        session = self._get_session()
        try:
            rows = (
                session.query(DailyUsageORM)
                .filter(
                    DailyUsageORM.deployment_id == deployment_id,
                    DailyUsageORM.date >= start,
                    DailyUsageORM.date <= end,
                )
                .order_by(DailyUsageORM.date.asc())
                .all()
            )
            return [usage_to_domain(orm) for orm in rows]
        finally:
            session.close()

    def list_for_user(self, user_id: str, start: date, end: date) -> List[DailyUsage]:
        session = self._get_session()
        try:
            rows = (
                session.query(DailyUsageORM)
                .filter(
                    DailyUsageORM.user_id == user_id,
                    DailyUsageORM.date >= start,
                    DailyUsageORM.date <= end,
                )
                .order_by(DailyUsageORM.date.asc())
                .all()
            )
            return [usage_to_domain(orm) for orm in rows]
        finally:
            session.close()

    def sum_costs_by_deployment(self, user_id: str, start: date, end: date) -> Dict[UUID, float]:
        session = self._get_session()
        try:
            rows = (
                session.query(DailyUsageORM.deployment_id, func.sum(DailyUsageORM.cost_total))
                .filter(
                    DailyUsageORM.user_id == user_id,
                    DailyUsageORM.date >= start,
                    DailyUsageORM.date <= end,
                )
                .group_by(DailyUsageORM.deployment_id)
                .all()
            )
            return {row[0]: float(row[1] or 0.0) for row in rows}
        finally:
            session.close()

    def distinct_users(self, start: date, end: date) -> List[str]:
        session = self._get_session()
        try:
            rows = (
                session.query(DailyUsageORM.user_id)
                .filter(DailyUsageORM.date >= start, DailyUsageORM.date <= end)
                .distinct()
                .all()
            )
            return sorted(row[0] for row in rows)
        finally:
            session.close()

    def has_usage(self, deployment_id: UUID) -> bool:
        session = self._get_session()
        try:
            row = (
                session.query(DailyUsageORM.usage_id)
                .filter(DailyUsageORM.deployment_id == deployment_id)
                .first()
            )
            return row is not None
        finally:
            session.close()


# ============================================
# BILLING REPOSITORY
# ============================================

class PostgresBillingRepository(BillingRepository):
    """Monthly billing records."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _get_session(self) -> Session:
        return self._session_factory()

    def get(self, user_id: str, year: int, month: int) -> Optional[MonthlyBilling]:
        session = self._get_session()
        try:
            orm = session.query(MonthlyBillingORM).filter(
                and_(
                    MonthlyBillingORM.user_id == user_id,
                    MonthlyBillingORM.year == year,
                    MonthlyBillingORM.month == month,
                )
            ).first()
            return billing_to_domain(orm) if orm else None
        finally:
            session.close()

    def create(self, billing: MonthlyBilling) -> None:
        session = self._get_session()
        try:
            session.add(billing_to_orm(billing))
            session.commit()
            logger.debug(
                f"[postgres] created billing {billing.billing_id} "
                f"for {billing.user_id} {billing.year}-{billing.month:02d}"
            )
        except IntegrityError as e:
            session.rollback()
            raise AlreadyExistsError(
                f"Billing for {billing.user_id} {billing.year}-{billing.month:02d} already exists"
            ) from e
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to create billing: {e}") from e
        finally:
            session.close()

    def update_status(
        self,
        billing_id: UUID,
        status: BillingStatus,
        paid_at: Optional[datetime] = None,
    ) -> MonthlyBilling:
        session = self._get_session()
        try:
            orm = session.query(MonthlyBillingORM).filter(
                MonthlyBillingORM.billing_id == billing_id
            ).with_for_update().first()

            if orm is None:
                raise NotFoundError(f"Billing {billing_id} not found")

            orm.status = status
            if paid_at is not None:
                orm.paid_at = paid_at

            session.commit()
            return billing_to_domain(orm)
        except NotFoundError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to update billing {billing_id}: {e}") from e
        finally:
            session.close()

    def list_for_user(self, user_id: str) -> List[MonthlyBilling]:
        session = self._get_session()
        try:
            rows = (
                session.query(MonthlyBillingORM)
                .filter(MonthlyBillingORM.user_id == user_id)
                .order_by(MonthlyBillingORM.year.desc(), MonthlyBillingORM.month.desc())
                .all()
            )
            return [billing_to_domain(orm) for orm in rows]
        finally:
            session.close()
