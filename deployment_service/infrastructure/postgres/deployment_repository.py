#deployment_service\infrastructure\postgres\deployment_repository.py

"""PostgreSQL deployment repository using SQLAlchemy."""

import logging
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import and_, case, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from deployment_service.core.errors import (
    AlreadyExistsError,
    ConcurrencyError,
    NotFoundError,
    PersistenceError,
)
from deployment_service.core.models import (
    CostTracking,
    Deployment,
    DeploymentEnvironment,
    DeploymentMetrics,
    DeploymentProvider,
    LogEntry,
    ResourceLimits,
    utc_now,
)
from deployment_service.core.repository import DeploymentRepository
from deployment_service.infrastructure.postgres.models import DeploymentORM

logger = logging.getLogger(__name__)


# ============================================
# Mapping Functions
# ============================================

def orm_to_domain(orm: DeploymentORM) -> Deployment:
    """Convert ORM model to domain model."""
    return Deployment(
        deployment_id=orm.deployment_id,
        agent_id=orm.agent_id,
        user_id=orm.user_id,
        name=orm.name,
        provider=DeploymentProvider.parse(orm.provider),
        environment=DeploymentEnvironment(orm.environment),
        description=orm.description,
        endpoint=orm.endpoint,
        resources=ResourceLimits.from_dict(orm.resources),
        config=dict(orm.config or {}),
        status=orm.status,
        error_message=orm.error_message,
        metrics=DeploymentMetrics.from_dict(orm.metrics),
        metrics_updated_at=orm.metrics_updated_at,
        cost_tracking=CostTracking(
            start_date=orm.cost_start_date,
            total_cost=orm.total_cost,
            current_month_cost=orm.current_month_cost,
            month=orm.cost_month,
        ),
        logs=[LogEntry.from_dict(entry) for entry in (orm.logs or [])],
        created_at=orm.created_at,
        updated_at=orm.updated_at,
        version=orm.version,
    )


def domain_to_orm(deployment: Deployment) -> DeploymentORM:
    """Convert domain model to ORM model."""
    return DeploymentORM(
        deployment_id=deployment.deployment_id,
        agent_id=deployment.agent_id,
        user_id=deployment.user_id,
        name=deployment.name,
        description=deployment.description,
        provider=deployment.provider.value,
        environment=deployment.environment.value,
        endpoint=deployment.endpoint,
        resources=deployment.resources.to_dict(),
        config=deployment.config,
        status=deployment.status,
        error_message=deployment.error_message,
        metrics=deployment.metrics.to_dict(),
        metrics_updated_at=deployment.metrics_updated_at,
        logs=[entry.to_dict() for entry in deployment.logs],
        cost_start_date=deployment.cost_tracking.start_date,
        total_cost=deployment.cost_tracking.total_cost,
        current_month_cost=deployment.cost_tracking.current_month_cost,
        cost_month=deployment.cost_tracking.month,
        created_at=deployment.created_at,
        updated_at=deployment.updated_at,
        version=deployment.version,
    )


# ============================================
# Repository Implementation
# ============================================

class PostgresDeploymentRepository(DeploymentRepository):
    """PostgreSQL implementation using SQLAlchemy with dependency injection."""

    def __init__(self, session_factory: sessionmaker):
        """
        Initialize repository.

        Args:
            session_factory: SQLAlchemy session factory
        """
        self._session_factory = session_factory

    def _get_session(self) -> Session:
        """Get new session from the injected factory."""
        return self._session_factory()

    # -------------------------
    # CREATE
    # -------------------------

    def create(self, deployment: Deployment) -> None:
        """Create a new deployment."""
        session = self._get_session()
        try:
            session.add(domain_to_orm(deployment))
            session.commit()
            logger.debug(f"[postgres] create deployment {deployment.deployment_id} -> done")
        except IntegrityError as e:
            session.rollback()
            raise AlreadyExistsError(
                f"Deployment {deployment.deployment_id} already exists"
            ) from e
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to create deployment: {e}") from e
        finally:
            session.close()

    # -------------------------
    # READ
    # -------------------------

    def get(self, deployment_id: UUID) -> Optional[Deployment]:
        """Get deployment by ID."""
        session = self._get_session()
        try:
            orm = session.get(DeploymentORM, deployment_id)

            if orm is None:
                logger.debug(f"[postgres] get deployment {deployment_id} -> not found")
                return None

            return orm_to_domain(orm)
        finally:
            session.close()

    def list_by_user(self, user_id: str) -> List[Deployment]:
        """List a user's deployments, newest first."""
        session = self._get_session()
        try:
            results = (
                session.query(DeploymentORM)
                .filter(DeploymentORM.user_id == user_id)
                .order_by(DeploymentORM.created_at.desc())
                .all()
            )
            logger.debug(f"[postgres] list_by_user user={user_id} -> {len(results)} rows")
            return [orm_to_domain(orm) for orm in results]
        finally:
            session.close()

    def get_names(self, deployment_ids: Iterable[UUID]) -> Dict[UUID, str]:
        """Resolve display names; ids without a row are left out."""
        ids = list(deployment_ids)
        if not ids:
            return {}

        session = self._get_session()
        try:
            rows = (
                session.query(DeploymentORM.deployment_id, DeploymentORM.name)
                .filter(DeploymentORM.deployment_id.in_(ids))
                .all()
            )
            return {row[0]: row[1] for row in rows}
        finally:
            session.close()

    # -------------------------
    # UPDATE
    # -------------------------

    def update(self, deployment: Deployment) -> None:
        """
        Update deployment with optimistic locking.

        Cost tracking columns are owned by add_cost() and are not written here.
        """
        session = self._get_session()
        try:
            current = session.query(DeploymentORM).filter(
                and_(
                    DeploymentORM.deployment_id == deployment.deployment_id,
                    DeploymentORM.version == deployment.version
                )
            ).with_for_update().first()

            if not current:
                if session.get(DeploymentORM, deployment.deployment_id) is None:
                    raise NotFoundError(f"Deployment {deployment.deployment_id} not found")
                raise ConcurrencyError(
                    f"Update failed for {deployment.deployment_id} - concurrent modification"
                )

            current.name = deployment.name
            current.description = deployment.description
            current.endpoint = deployment.endpoint
            current.resources = deployment.resources.to_dict()
            current.config = deployment.config
            current.status = deployment.status
            current.error_message = deployment.error_message
            current.metrics = deployment.metrics.to_dict()
            current.metrics_updated_at = deployment.metrics_updated_at
            current.logs = [entry.to_dict() for entry in deployment.logs]
            current.updated_at = deployment.updated_at
            current.version = deployment.version + 1

            session.commit()
            deployment.version += 1
            logger.debug(f"[postgres] update deployment {deployment.deployment_id} -> v{deployment.version}")

        except (NotFoundError, ConcurrencyError):
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Update failed: {e}") from e
        finally:
            session.close()

    def add_cost(self, deployment_id: UUID, amount: float, month: str) -> bool:
        """Accrue cost in a single UPDATE so concurrent events never lose an increment."""
        session = self._get_session()
        try:
            result = session.execute(
                update(DeploymentORM)
                .where(DeploymentORM.deployment_id == deployment_id)
                .values(
                    total_cost=DeploymentORM.total_cost + amount,
                    current_month_cost=case(
                        (DeploymentORM.cost_month == month, DeploymentORM.current_month_cost + amount),
                        else_=amount,
                    ),
                    cost_month=month,
                )
                .execution_options(synchronize_session=False)
            )
            session.commit()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to add cost to {deployment_id}: {e}") from e
        finally:
            session.close()

    # -------------------------
    # DELETE
    # -------------------------

    def delete(self, deployment_id: UUID) -> bool:
        """Hard-delete a deployment row."""
        session = self._get_session()
        try:
            orm = session.get(DeploymentORM, deployment_id)
            if orm is None:
                return False

            session.delete(orm)
            session.commit()
            logger.debug(f"[postgres] delete deployment {deployment_id} -> done")
            return True
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to delete deployment {deployment_id}: {e}") from e
        finally:
            session.close()
