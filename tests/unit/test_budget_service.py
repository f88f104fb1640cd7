"""Unit tests for the monthly extraction budget."""

import datetime as dt
from unittest.mock import MagicMock

import pytest

from invoice_ingest.budget.service import BudgetService, start_of_month
from invoice_ingest.db.models import OcrUsage
from invoice_ingest.db.repository import UsageRepository
from invoice_ingest.db.session import Database
from invoice_ingest.shared.errors import PersistenceError

NOW = dt.datetime(2026, 3, 15, 12, 0, 0)


def _insert_usage(database: Database, cost_cents: int, created_at: dt.datetime) -> None:
    with database.session_scope() as session:
        session.add(
            OcrUsage(
                invoice_id=1,
                user_id=1,
                tokens_input=1000,
                tokens_output=100,
                cost_cents=cost_cents,
                model="claude-sonnet-4-20250514",
                created_at=created_at,
            )
        )


@pytest.fixture
def budget(database: Database) -> BudgetService:
    return BudgetService(UsageRepository(database), budget_cents=1000, clock=lambda: NOW)


def test_start_of_month() -> None:
    assert start_of_month(NOW) == dt.datetime(2026, 3, 1, 0, 0, 0)


def test_budget_must_be_positive(database: Database) -> None:
    with pytest.raises(ValueError):
        BudgetService(UsageRepository(database), budget_cents=0)


def test_empty_month_is_allowed(budget: BudgetService) -> None:
    status = budget.check_budget()

    assert status.allowed is True
    assert status.spent_cents == 0
    assert status.remaining_cents == 1000


def test_only_current_month_counts(budget: BudgetService, database: Database) -> None:
    _insert_usage(database, 700, dt.datetime(2026, 2, 28, 23, 59, 59))
    _insert_usage(database, 30, dt.datetime(2026, 3, 1, 0, 0, 0))
    _insert_usage(database, 20, dt.datetime(2026, 3, 14, 9, 30))

    status = budget.check_budget()

    assert status.spent_cents == 50
    assert status.remaining_cents == 950


def test_spend_equal_to_cap_is_not_allowed(budget: BudgetService, database: Database) -> None:
    _insert_usage(database, 1000, dt.datetime(2026, 3, 2))

    status = budget.check_budget()

    assert status.allowed is False
    assert status.remaining_cents == 0


def test_one_cent_below_cap_is_allowed(budget: BudgetService, database: Database) -> None:
    _insert_usage(database, 999, dt.datetime(2026, 3, 2))

    assert budget.check_budget().allowed is True


def test_overspend_reports_zero_remaining(budget: BudgetService, database: Database) -> None:
    _insert_usage(database, 1004, dt.datetime(2026, 3, 2))

    status = budget.check_budget()

    assert status.spent_cents == 1004
    assert status.remaining_cents == 0


def test_record_usage_is_counted(database: Database) -> None:
    budget = BudgetService(UsageRepository(database), budget_cents=1000)

    budget.record_usage(7, 3, 1500, 120, 4, "claude-sonnet-4-20250514")

    assert budget.check_budget().spent_cents == 4


def test_record_usage_safely_swallows_persistence_errors() -> None:
    usage = MagicMock(spec=UsageRepository)
    usage.add.side_effect = PersistenceError("disk full")
    budget = BudgetService(usage, budget_cents=1000)

    assert budget.record_usage_safely(1, 1, 10, 10, 1, "m") is False


def test_usage_summary(budget: BudgetService, database: Database) -> None:
    _insert_usage(database, 3, dt.datetime(2026, 3, 3))
    _insert_usage(database, 4, dt.datetime(2026, 3, 4))
    _insert_usage(database, 500, dt.datetime(2026, 2, 4))

    summary = budget.get_usage_summary()

    assert summary.spent_cents == 7
    assert summary.call_count == 2
    assert summary.avg_cost_cents == 4
    assert summary.remaining_cents == 993
    assert summary.month == "2026-03"


def test_usage_summary_without_calls(budget: BudgetService) -> None:
    summary = budget.get_usage_summary()

    assert summary.call_count == 0
    assert summary.avg_cost_cents == 0
