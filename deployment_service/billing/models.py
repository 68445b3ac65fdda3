"""Usage and billing domain models."""

import calendar
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID, uuid4

from deployment_service.core.errors import ValidationError
from deployment_service.core.models import utc_now


# ============================================
# ENUMS
# ============================================

class BillingStatus(Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    PAID = "paid"


# ============================================
# USAGE
# ============================================

@dataclass(frozen=True)
class UsageEvent:
    """One served request, as reported by the agent runtime."""
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: float = 0.0
    is_error: bool = False

    def __post_init__(self):
        if self.input_tokens < 0 or self.output_tokens < 0:
            raise ValidationError("token counts must not be negative")
        if self.latency_ms < 0:
            raise ValidationError("latency_ms must not be negative")

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class DailyUsage:
    """
    Per-deployment, per-day (UTC) running aggregate.

    latency_p95 / latency_p99 are carried for the JSON contract but are
    not computed; they stay 0.0 until a latency-sample store exists.
    """
    usage_id: UUID
    deployment_id: UUID
    user_id: str
    date: date

    request_count: int = 0

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    latency_avg: float = 0.0
    latency_min: float = math.inf
    latency_max: float = 0.0
    latency_p95: float = 0.0
    latency_p99: float = 0.0

    error_count: int = 0

    cost_compute: float = 0.0
    cost_tokens: float = 0.0
    cost_total: float = 0.0

    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.usage_id),
            "deploymentId": str(self.deployment_id),
            "userId": self.user_id,
            "date": self.date.isoformat(),
            "requestCount": self.request_count,
            "tokenCount": {
                "input": self.input_tokens,
                "output": self.output_tokens,
                "total": self.total_tokens,
            },
            "latency": {
                "avg": self.latency_avg,
                # inf sentinel until the first sample lands
                "min": self.latency_min if math.isfinite(self.latency_min) else 0.0,
                "max": self.latency_max,
                "p95": self.latency_p95,
                "p99": self.latency_p99,
            },
            "errorCount": self.error_count,
            "cost": {
                "compute": self.cost_compute,
                "tokens": self.cost_tokens,
                "total": self.cost_total,
            },
        }


@dataclass
class DailyStat:
    date: date
    requests: int
    tokens: int
    cost: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "requests": self.requests,
            "tokens": self.tokens,
            "cost": self.cost,
        }


@dataclass
class DeploymentDayShare:
    deployment_id: UUID
    request_count: int
    cost: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deploymentId": str(self.deployment_id),
            "requestCount": self.request_count,
            "cost": self.cost,
        }


@dataclass
class UserDailyUsage:
    """One user's usage on one day, summed across deployments."""
    date: date
    request_count: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    error_count: int = 0
    cost_compute: float = 0.0
    cost_tokens: float = 0.0
    cost_total: float = 0.0
    deployments: List[DeploymentDayShare] = field(default_factory=list)

    def add(self, usage: DailyUsage) -> None:
        self.request_count += usage.request_count
        self.input_tokens += usage.input_tokens
        self.output_tokens += usage.output_tokens
        self.total_tokens += usage.total_tokens
        self.error_count += usage.error_count
        self.cost_compute += usage.cost_compute
        self.cost_tokens += usage.cost_tokens
        self.cost_total += usage.cost_total
        self.deployments.append(DeploymentDayShare(
            deployment_id=usage.deployment_id,
            request_count=usage.request_count,
            cost=usage.cost_total,
        ))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "requestCount": self.request_count,
            "tokenCount": {
                "input": self.input_tokens,
                "output": self.output_tokens,
                "total": self.total_tokens,
            },
            "errorCount": self.error_count,
            "cost": {
                "compute": self.cost_compute,
                "tokens": self.cost_tokens,
                "total": self.cost_total,
            },
            "deployments": [share.to_dict() for share in self.deployments],
        }


@dataclass
class UsageStats:
    """Usage totals for one deployment over a date range."""
    total_requests: int = 0
    total_tokens: int = 0
    average_latency: float = 0.0
    error_rate: float = 0.0
    total_cost: float = 0.0
    daily_stats: List[DailyStat] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRequests": self.total_requests,
            "totalTokens": self.total_tokens,
            "averageLatency": self.average_latency,
            "errorRate": self.error_rate,
            "totalCost": self.total_cost,
            "dailyStats": [stat.to_dict() for stat in self.daily_stats],
        }


# ============================================
# BILLING
# ============================================

@dataclass(frozen=True)
class BillingLineItem:
    deployment_id: UUID
    name: str
    cost: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deploymentId": str(self.deployment_id),
            "name": self.name,
            "cost": self.cost,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BillingLineItem":
        return cls(
            deployment_id=UUID(str(data["deploymentId"])),
            name=data["name"],
            cost=float(data["cost"]),
        )


@dataclass
class MonthlyBilling:
    """Monthly cost summary for one user. Only status/paid_at change after creation."""
    billing_id: UUID
    user_id: str
    year: int
    month: int
    deployments: List[BillingLineItem] = field(default_factory=list)
    total_cost: float = 0.0
    status: BillingStatus = BillingStatus.PENDING
    created_at: datetime = field(default_factory=utc_now)
    paid_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        user_id: str,
        year: int,
        month: int,
        deployments: List[BillingLineItem],
    ) -> "MonthlyBilling":
        return cls(
            billing_id=uuid4(),
            user_id=user_id,
            year=year,
            month=month,
            deployments=list(deployments),
            total_cost=sum(item.cost for item in deployments),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.billing_id),
            "userId": self.user_id,
            "year": self.year,
            "month": self.month,
            "deployments": [item.to_dict() for item in self.deployments],
            "totalCost": self.total_cost,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
        }


@dataclass
class BillingSummary:
    current_month_total: float = 0.0
    projected_cost: float = 0.0
    previous_month_total: float = 0.0
    most_expensive_deployments: List[BillingLineItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentMonth": {
                "totalCost": self.current_month_total,
                "projectedCost": self.projected_cost,
            },
            "previousMonth": {
                "totalCost": self.previous_month_total,
            },
            "mostExpensiveDeployments": [
                item.to_dict() for item in self.most_expensive_deployments
            ],
        }


# ============================================
# CALENDAR HELPERS
# ============================================

def month_bounds(year: int, month: int) -> Tuple[date, date]:
    """First and last calendar day of a month."""
    if not 1 <= month <= 12:
        raise ValidationError(f"month must be between 1 and 12, got {month}")
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def previous_month(year: int, month: int) -> Tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"
