"""deployments, daily usage and monthly billing

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa

from alembic import op

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


deployment_status = sa.Enum(
    "PENDING", "RUNNING", "STOPPED", "FAILED", "DELETED",
    name="deployment_status",
)
billing_status = sa.Enum("PENDING", "PROCESSED", "PAID", name="billing_status")


def upgrade() -> None:
    op.create_table(
        "deployments",
        sa.Column("deployment_id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("agent_id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("environment", sa.String(50), nullable=False),
        sa.Column("endpoint", sa.String(500), nullable=True),
        sa.Column("resources", sa.JSON(), nullable=False),
        sa.Column("config", sa.JSON(), nullable=False),
        sa.Column("status", deployment_status, nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metrics", sa.JSON(), nullable=False),
        sa.Column("metrics_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("logs", sa.JSON(), nullable=False),
        sa.Column("cost_start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_cost", sa.Float(), nullable=False),
        sa.Column("current_month_cost", sa.Float(), nullable=False),
        sa.Column("cost_month", sa.String(7), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_deployments_agent_id", "deployments", ["agent_id"])
    op.create_index("ix_deployments_user_id", "deployments", ["user_id"])
    op.create_index("ix_deployments_status", "deployments", ["status"])
    op.create_index("ix_deployments_user_status", "deployments", ["user_id", "status"])

    op.create_table(
        "daily_usage",
        sa.Column("usage_id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("deployment_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("request_count", sa.Integer(), nullable=False),
        sa.Column("input_tokens", sa.BigInteger(), nullable=False),
        sa.Column("output_tokens", sa.BigInteger(), nullable=False),
        sa.Column("total_tokens", sa.BigInteger(), nullable=False),
        sa.Column("latency_avg", sa.Float(), nullable=False),
        sa.Column("latency_min", sa.Float(), nullable=False),
        sa.Column("latency_max", sa.Float(), nullable=False),
        sa.Column("latency_p95", sa.Float(), nullable=False),
        sa.Column("latency_p99", sa.Float(), nullable=False),
        sa.Column("error_count", sa.Integer(), nullable=False),
        sa.Column("cost_compute", sa.Float(), nullable=False),
        sa.Column("cost_tokens", sa.Float(), nullable=False),
        sa.Column("cost_total", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("deployment_id", "date", name="uq_daily_usage_deployment_date"),
    )
    op.create_index("ix_daily_usage_user_date", "daily_usage", ["user_id", "date"])
    op.create_index("ix_daily_usage_date", "daily_usage", ["date"])

    op.create_table(
        "monthly_billing",
        sa.Column("billing_id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("deployments", sa.JSON(), nullable=False),
        sa.Column("total_cost", sa.Float(), nullable=False),
        sa.Column("status", billing_status, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_monthly_billing_user_period"),
    )
    op.create_index("ix_monthly_billing_user_id", "monthly_billing", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_monthly_billing_user_id", table_name="monthly_billing")
    op.drop_table("monthly_billing")

    op.drop_index("ix_daily_usage_date", table_name="daily_usage")
    op.drop_index("ix_daily_usage_user_date", table_name="daily_usage")
    op.drop_table("daily_usage")

    op.drop_index("ix_deployments_user_status", table_name="deployments")
    op.drop_index("ix_deployments_status", table_name="deployments")
    op.drop_index("ix_deployments_user_id", table_name="deployments")
    op.drop_index("ix_deployments_agent_id", table_name="deployments")
    op.drop_table("deployments")

    billing_status.drop(op.get_bind(), checkfirst=True)
    deployment_status.drop(op.get_bind(), checkfirst=True)
