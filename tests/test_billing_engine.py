"""Test monthly billing roll-up, summaries and status updates."""

from datetime import date, datetime, timezone
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from deployment_service.billing.engine import BillingEngine, fallback_name
from deployment_service.billing.models import BillingLineItem, BillingStatus, MonthlyBilling, UsageEvent
from deployment_service.core.errors import AlreadyExistsError, NotFoundError, PersistenceError, ValidationError
from deployment_service.core.models import Deployment


def add_usage(usage_repository, deployment_id, day, cost, user_id="u1"):
    usage_repository.apply_usage(deployment_id, user_id, day, UsageEvent(latency_ms=100), cost, 0.0)


def store_deployment(deployment_repository, name, user_id="u1"):
    deployment = Deployment.create(
        agent_id=f"agent-{name.lower()}",
        user_id=user_id,
        name=name,
        provider="kubernetes",
        config={"namespace": "agents", "image": "novamind/agent-runtime:latest"},
    )
    deployment_repository.create(deployment)
    return deployment


@pytest.fixture
def january_usage(usage_repository, deployment_repository):
    """Two deployments for u1: 12.50 (two days) and 7.25 in January 2024."""
    bot = store_deployment(deployment_repository, "Support Bot")
    summariser = store_deployment(deployment_repository, "Summariser")

    add_usage(usage_repository, bot.deployment_id, date(2024, 1, 3), 10.0)
    add_usage(usage_repository, bot.deployment_id, date(2024, 1, 20), 2.5)
    add_usage(usage_repository, summariser.deployment_id, date(2024, 1, 31), 7.25)
    return bot, summariser


class TestGenerateMonthlyBilling:

    def test_totals_and_line_items(self, billing_engine, january_usage):
        bot, summariser = january_usage

        billing = billing_engine.generate_monthly_billing("u1", 2024, 1)

        assert billing.total_cost == pytest.approx(19.75)
        assert len(billing.deployments) == 2
        assert [item.deployment_id for item in billing.deployments] == [
            bot.deployment_id, summariser.deployment_id,
        ]
        assert billing.deployments[0].name == "Support Bot"
        assert billing.deployments[0].cost == pytest.approx(12.5)
        assert billing.status == BillingStatus.PENDING

    def test_is_idempotent(self, billing_engine, billing_repository, usage_repository, january_usage):
        bot, _ = january_usage
        first = billing_engine.generate_monthly_billing("u1", 2024, 1)

        add_usage(usage_repository, bot.deployment_id, date(2024, 1, 25), 100.0)
        second = billing_engine.generate_monthly_billing("u1", 2024, 1)

        assert second.billing_id == first.billing_id
        assert second.total_cost == pytest.approx(19.75)
        assert billing_repository.get("u1", 2024, 1).billing_id == first.billing_id

    def test_excludes_other_months(self, billing_engine, usage_repository, january_usage):
        bot, _ = january_usage
        add_usage(usage_repository, bot.deployment_id, date(2023, 12, 31), 50.0)
        add_usage(usage_repository, bot.deployment_id, date(2024, 2, 1), 50.0)

        billing = billing_engine.generate_monthly_billing("u1", 2024, 1)

        assert billing.total_cost == pytest.approx(19.75)

    def test_unknown_deployment_uses_fallback_name(self, billing_engine, usage_repository):
        orphan = uuid4()
        add_usage(usage_repository, orphan, date(2024, 1, 5), 1.0)

        billing = billing_engine.generate_monthly_billing("u1", 2024, 1)

        assert billing.deployments[0].name == fallback_name(orphan)
        assert billing.deployments[0].name == f"Deployment {orphan}"

    def test_name_lookup_failure_uses_fallback(self, usage_repository, billing_repository, fixed_now):
        deployment_repository = MagicMock()
        deployment_repository.get_names.side_effect = PersistenceError("timeout")
        engine = BillingEngine(usage_repository, billing_repository, deployment_repository, clock=lambda: fixed_now)
        deployment_id = uuid4()
        add_usage(usage_repository, deployment_id, date(2024, 1, 5), 1.0)

        billing = engine.generate_monthly_billing("u1", 2024, 1)

        assert billing.deployments[0].name == fallback_name(deployment_id)

    def test_month_without_usage(self, billing_engine):
        billing = billing_engine.generate_monthly_billing("u1", 2024, 1)

        assert billing.total_cost == 0.0
        assert billing.deployments == []

    def test_invalid_month(self, billing_engine):
        with pytest.raises(ValidationError):
            billing_engine.generate_monthly_billing("u1", 2024, 13)

    def test_concurrent_creator_wins(self, usage_repository, deployment_repository, fixed_now):
        winner = MonthlyBilling.create("u1", 2024, 1, [
            BillingLineItem(deployment_id=uuid4(), name="Support Bot", cost=19.75),
        ])
        billing_repository = MagicMock()
        billing_repository.get.side_effect = [None, winner]
        billing_repository.create.side_effect = AlreadyExistsError("exists")
        engine = BillingEngine(usage_repository, billing_repository, deployment_repository, clock=lambda: fixed_now)

        billing = engine.generate_monthly_billing("u1", 2024, 1)

        assert billing is winner

    def test_vanished_winner(self, usage_repository, deployment_repository, fixed_now):
        billing_repository = MagicMock()
        billing_repository.get.return_value = None
        billing_repository.create.side_effect = AlreadyExistsError("exists")
        engine = BillingEngine(usage_repository, billing_repository, deployment_repository, clock=lambda: fixed_now)

        with pytest.raises(PersistenceError):
            engine.generate_monthly_billing("u1", 2024, 1)


class TestProcessMonthlyBilling:

    def test_bills_previous_month_for_every_user(self, billing_engine, billing_repository, usage_repository):
        add_usage(usage_repository, uuid4(), date(2024, 1, 10), 1.0, user_id="u1")
        add_usage(usage_repository, uuid4(), date(2024, 1, 11), 2.0, user_id="u2")
        add_usage(usage_repository, uuid4(), date(2024, 2, 1), 3.0, user_id="u3")

        processed = billing_engine.process_monthly_billing(now=datetime(2024, 2, 3, tzinfo=timezone.utc))

        assert processed == 2
        assert billing_repository.get("u1", 2024, 1).total_cost == pytest.approx(1.0)
        assert billing_repository.get("u2", 2024, 1).total_cost == pytest.approx(2.0)
        assert billing_repository.get("u3", 2024, 1) is None

    def test_january_bills_december(self, billing_engine, billing_repository, usage_repository):
        add_usage(usage_repository, uuid4(), date(2023, 12, 24), 4.0)

        assert billing_engine.process_monthly_billing() == 1
        assert billing_repository.get("u1", 2023, 12) is not None

    def test_one_failure_does_not_stop_others(self, billing_engine, billing_repository, usage_repository, monkeypatch):
        add_usage(usage_repository, uuid4(), date(2024, 1, 10), 1.0, user_id="u1")
        add_usage(usage_repository, uuid4(), date(2024, 1, 11), 2.0, user_id="u2")

        original = billing_engine.generate_monthly_billing

        def generate(user_id, year, month):
            if user_id == "u1":
                raise PersistenceError("connection reset")
            return original(user_id, year, month)

        monkeypatch.setattr(billing_engine, "generate_monthly_billing", generate)

        processed = billing_engine.process_monthly_billing(now=datetime(2024, 2, 3, tzinfo=timezone.utc))

        assert processed == 1
        assert billing_repository.get("u1", 2024, 1) is None
        assert billing_repository.get("u2", 2024, 1) is not None

    def test_rerun_is_harmless(self, billing_engine, billing_repository, usage_repository):
        add_usage(usage_repository, uuid4(), date(2024, 1, 10), 1.0)
        now = datetime(2024, 2, 3, tzinfo=timezone.utc)

        first = billing_engine.process_monthly_billing(now=now)
        billing_id = billing_repository.get("u1", 2024, 1).billing_id
        second = billing_engine.process_monthly_billing(now=now)

        assert first == second == 1
        assert billing_repository.get("u1", 2024, 1).billing_id == billing_id


class TestBillingSummary:

    def test_projection_and_previous_month(self, billing_engine, billing_repository, usage_repository):
        deployment_id = uuid4()
        add_usage(usage_repository, deployment_id, date(2024, 1, 2), 10.0)
        add_usage(usage_repository, deployment_id, date(2024, 1, 14), 20.0)
        billing_repository.create(MonthlyBilling.create("u1", 2023, 12, [
            BillingLineItem(deployment_id=deployment_id, name="Support Bot", cost=41.0),
        ]))

        summary = billing_engine.get_user_billing_summary("u1")

        # clock is 2024-01-15: 30 / 15 * 31
        assert summary.current_month_total == pytest.approx(30.0)
        assert summary.projected_cost == pytest.approx(62.0)
        assert summary.previous_month_total == pytest.approx(41.0)

    def test_top_five_deployments(self, billing_engine, usage_repository):
        for cost in (1.0, 6.0, 3.0, 5.0, 2.0, 4.0):
            add_usage(usage_repository, uuid4(), date(2024, 1, 10), cost)

        summary = billing_engine.get_user_billing_summary("u1")

        assert [item.cost for item in summary.most_expensive_deployments] == [6.0, 5.0, 4.0, 3.0, 2.0]
        assert summary.to_dict()["previousMonth"]["totalCost"] == 0.0

    def test_failure_returns_empty_summary(self, billing_repository, deployment_repository, fixed_now):
        usage_repository = MagicMock()
        usage_repository.sum_costs_by_deployment.side_effect = PersistenceError("database unavailable")
        engine = BillingEngine(usage_repository, billing_repository, deployment_repository, clock=lambda: fixed_now)

        summary = engine.get_user_billing_summary("u1")

        assert summary.current_month_total == 0.0
        assert summary.projected_cost == 0.0
        assert summary.most_expensive_deployments == []


class TestBillingLookup:

    def test_stored_record_is_returned(self, billing_engine, january_usage):
        generated = billing_engine.generate_monthly_billing("u1", 2024, 1)

        fetched = billing_engine.get_monthly_billing("u1", 2024, 1)

        assert fetched.billing_id == generated.billing_id
        assert fetched.total_cost == pytest.approx(19.75)

    def test_missing_record_is_not_generated(self, billing_engine, billing_repository, january_usage):
        with pytest.raises(NotFoundError):
            billing_engine.get_monthly_billing("u1", 2024, 1)

        assert billing_repository.get("u1", 2024, 1) is None

    def test_invalid_month(self, billing_engine):
        with pytest.raises(ValidationError):
            billing_engine.get_monthly_billing("u1", 2024, 13)

    def test_history_is_newest_first(self, billing_engine, usage_repository, january_usage):
        bot, _ = january_usage
        add_usage(usage_repository, bot.deployment_id, date(2024, 2, 5), 3.0)
        billing_engine.generate_monthly_billing("u1", 2024, 1)
        billing_engine.generate_monthly_billing("u1", 2024, 2)

        history = billing_engine.get_billing_history("u1")

        assert [(billing.year, billing.month) for billing in history] == [(2024, 2), (2024, 1)]
        assert history[0].total_cost == pytest.approx(3.0)
        assert billing_engine.get_billing_history("u2") == []


class TestUpdateBillingStatus:

    def test_paid_defaults_paid_at_to_now(self, billing_engine, january_usage, fixed_now):
        billing = billing_engine.generate_monthly_billing("u1", 2024, 1)

        updated = billing_engine.update_billing_status(billing.billing_id, BillingStatus.PAID)

        assert updated.status == BillingStatus.PAID
        assert updated.paid_at.replace(tzinfo=timezone.utc) == fixed_now

    def test_processed_leaves_paid_at_empty(self, billing_engine, january_usage):
        billing = billing_engine.generate_monthly_billing("u1", 2024, 1)

        updated = billing_engine.update_billing_status(billing.billing_id, BillingStatus.PROCESSED)

        assert updated.status == BillingStatus.PROCESSED
        assert updated.paid_at is None
