"""Monthly extraction budget tracking and enforcement.

Spend is the sum of ``ocr_usage.cost_cents`` since local midnight on the 1st
of the current month. A new extraction is allowed strictly while spend is
below the cap, so at most one call can push the month over it.

``check_budget`` and ``record_usage`` are only atomic when called inside
``ExtractionGate.run``.
"""

import datetime as dt
import logging
from collections.abc import Callable

from pydantic import BaseModel

from invoice_ingest.db.repository import UsageRepository
from invoice_ingest.shared.errors import PersistenceError

logger = logging.getLogger(__name__)


class BudgetStatus(BaseModel):
    """Budget snapshot for the current calendar month."""

    allowed: bool
    spent_cents: int
    budget_cents: int
    remaining_cents: int


class UsageSummary(BaseModel):
    """Monthly usage overview for administrators."""

    spent_cents: int
    budget_cents: int
    remaining_cents: int
    call_count: int
    avg_cost_cents: int
    month: str  # "2026-02"


def start_of_month(now: dt.datetime) -> dt.datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class BudgetService:
    """Computes monthly spend against a fixed cap and appends usage rows."""

    def __init__(
        self,
        usage: UsageRepository,
        budget_cents: int,
        clock: Callable[[], dt.datetime] = dt.datetime.now,
    ) -> None:
        """Initialize budget service.

        Args:
            usage: Usage log repository
            budget_cents: Monthly cap in cents (must be positive)
            clock: Source of local server time, injectable for tests
        """
        if budget_cents <= 0:
            raise ValueError("Monthly budget must be a positive number of cents")
        self.usage = usage
        self.budget_cents = budget_cents
        self._clock = clock

    def check_budget(self) -> BudgetStatus:
        """Compare this month's spend with the cap.

        Raises:
            PersistenceError: If usage cannot be read
        """
        spent_cents, _ = self.usage.totals_since(start_of_month(self._clock()))
        return BudgetStatus(
            allowed=spent_cents < self.budget_cents,
            spent_cents=spent_cents,
            budget_cents=self.budget_cents,
            remaining_cents=max(self.budget_cents - spent_cents, 0),
        )

    def record_usage(
        self,
        invoice_id: int,
        user_id: int,
        tokens_input: int,
        tokens_output: int,
        cost_cents: int,
        model: str,
    ) -> None:
        """Append a usage row for an extraction call that returned a response."""
        self.usage.add(
            invoice_id=invoice_id,
            user_id=user_id,
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            cost_cents=cost_cents,
            model=model,
        )
        logger.info(f"Recorded {cost_cents}c of extraction usage for invoice {invoice_id}")

    def record_usage_safely(
        self,
        invoice_id: int,
        user_id: int,
        tokens_input: int,
        tokens_output: int,
        cost_cents: int,
        model: str,
    ) -> bool:
        """Like ``record_usage`` but never raises.

        Returns:
            True if the row was written
        """
        try:
            self.record_usage(invoice_id, user_id, tokens_input, tokens_output, cost_cents, model)
            return True
        except PersistenceError as e:
            logger.error(f"Failed to record {cost_cents}c usage for invoice {invoice_id}: {e}")
            return False

    def get_usage_summary(self) -> UsageSummary:
        now = self._clock()
        spent_cents, call_count = self.usage.totals_since(start_of_month(now))
        return UsageSummary(
            spent_cents=spent_cents,
            budget_cents=self.budget_cents,
            remaining_cents=max(self.budget_cents - spent_cents, 0),
            call_count=call_count,
            avg_cost_cents=round(spent_cents / call_count) if call_count else 0,
            month=f"{now.year}-{now.month:02d}",
        )
