"""ORM models for the ingestion-and-matching pipeline.

Ledger entries and projects are owned by the surrounding bookkeeping
application; only the columns the pipeline reads or updates are mapped here.
"""

import datetime as dt
import enum
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates

from invoice_ingest.db.types import JSONMapping
from invoice_ingest.shared.errors import InvalidStatusTransition


class Base(DeclarativeBase):
    pass


class OcrStatus(str, enum.Enum):
    """Extraction lifecycle of an uploaded invoice.

    PENDING is the only initial state; the other three are terminal.
    """

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"


ALLOWED_TRANSITIONS: dict[OcrStatus, frozenset[OcrStatus]] = {
    OcrStatus.PENDING: frozenset(
        {OcrStatus.COMPLETED, OcrStatus.FAILED, OcrStatus.BUDGET_EXCEEDED}
    ),
    OcrStatus.COMPLETED: frozenset(),
    OcrStatus.FAILED: frozenset(),
    OcrStatus.BUDGET_EXCEEDED: frozenset(),
}


def _now() -> dt.datetime:
    # Local server time; the budget month boundary is local midnight on the 1st.
    return dt.datetime.now()


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    # Category name -> budget in cents.
    category_budgets: Mapped[dict[str, Any]] = mapped_column(
        JSONMapping(value_type=int), default=dict
    )


class LedgerEntry(Base):
    """A bank movement invoices are matched against. Expenses are negative."""

    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, index=True)
    amount: Mapped[float] = mapped_column(Float)
    concept: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    has_invoice: Mapped[bool] = mapped_column(Boolean, default=False)
    project_id: Mapped[int | None] = mapped_column(ForeignKey("projects.id"), nullable=True)

    project: Mapped[Project | None] = relationship(lazy="joined")
    invoices: Mapped[list["InvoiceRecord"]] = relationship(back_populates="ledger_entry")


class InvoiceRecord(Base):
    """One uploaded document and its extraction state.

    Created only after the blob is in storage. A null ``ledger_entry_id``
    marks an orphan invoice waiting to be linked.
    """

    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    storage_key: Mapped[str] = mapped_column(String(400), unique=True)
    file_name: Mapped[str] = mapped_column(String(255))
    media_type: Mapped[str] = mapped_column(String(50))
    ledger_entry_id: Mapped[int | None] = mapped_column(
        ForeignKey("ledger_entries.id", ondelete="SET NULL"), nullable=True, index=True
    )

    ocr_status: Mapped[OcrStatus] = mapped_column(
        Enum(OcrStatus, native_enum=False, length=20), default=OcrStatus.PENDING, index=True
    )
    ocr_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    ocr_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    ocr_vendor: Mapped[str | None] = mapped_column(String(500), nullable=True)
    ocr_invoice_number: Mapped[str | None] = mapped_column(String(200), nullable=True)
    ocr_raw_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    ocr_error: Mapped[str | None] = mapped_column(String(500), nullable=True)
    ocr_tokens_used: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ocr_cost_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_now, onupdate=_now)

    ledger_entry: Mapped[LedgerEntry | None] = relationship(back_populates="invoices")

    @validates("ocr_status")
    def _check_transition(self, key: str, new_status: OcrStatus) -> OcrStatus:
        new_status = OcrStatus(new_status)
        current = self.ocr_status
        if current is None:
            if new_status is not OcrStatus.PENDING:
                raise InvalidStatusTransition(f"Invoices start as PENDING, not {new_status.value}")
            return new_status
        if new_status not in ALLOWED_TRANSITIONS[OcrStatus(current)]:
            raise InvalidStatusTransition(
                f"Invoice {self.id}: {OcrStatus(current).value} -> {new_status.value} not allowed"
            )
        return new_status

    def transition_to(self, status: OcrStatus) -> None:
        self.ocr_status = status

    @property
    def is_linked(self) -> bool:
        return self.ledger_entry_id is not None


class OcrUsage(Base):
    """Append-only record of one executed extraction call."""

    __tablename__ = "ocr_usage"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Kept after the invoice is deleted: spend already happened.
    invoice_id: Mapped[int] = mapped_column(Integer, index=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    tokens_input: Mapped[int] = mapped_column(Integer)
    tokens_output: Mapped[int] = mapped_column(Integer)
    cost_cents: Mapped[int] = mapped_column(Integer)
    model: Mapped[str] = mapped_column(String(100))
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_now, index=True)


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    action: Mapped[str] = mapped_column(String(100), index=True)
    entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSONMapping(), default=dict)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_now)
