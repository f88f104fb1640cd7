"""Repositories for invoice records, usage accounting and ledger lookups.

Each public method is one transaction. Returned ORM objects are detached
snapshots (sessions do not expire on commit); relationships other than
``LedgerEntry.project`` are not loaded.
"""

import datetime as dt
import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from invoice_ingest.db.models import InvoiceRecord, LedgerEntry, OcrStatus, OcrUsage
from invoice_ingest.db.session import Database
from invoice_ingest.extraction.schema import ExtractionResult
from invoice_ingest.shared.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

MATCH_WINDOW_DAYS = 30
AMOUNT_BAND_LOW = 0.5
AMOUNT_BAND_HIGH = 1.5

CORRECTABLE_FIELDS = frozenset({"ocr_amount", "ocr_date", "ocr_vendor", "ocr_invoice_number"})


def _get_invoice(session: Session, invoice_id: int, for_update: bool = False) -> InvoiceRecord:
    query = select(InvoiceRecord).where(InvoiceRecord.id == invoice_id)
    if for_update:
        query = query.with_for_update()
    record = session.scalars(query).one_or_none()
    if record is None:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return record


class InvoiceRepository:
    """Lifecycle writes for InvoiceRecord."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def create(
        self,
        storage_key: str,
        file_name: str,
        media_type: str,
        ledger_entry_id: int | None = None,
    ) -> InvoiceRecord:
        """Insert a PENDING record for a blob that is already in storage."""
        with self.database.session_scope() as session:
            record = InvoiceRecord(
                storage_key=storage_key,
                file_name=file_name[:255],
                media_type=media_type,
                ledger_entry_id=ledger_entry_id,
                ocr_status=OcrStatus.PENDING,
            )
            session.add(record)
            session.flush()
            logger.info(f"Created invoice {record.id} for {storage_key}")
            return record

    def get(self, invoice_id: int) -> InvoiceRecord:
        """Fetch one record.

        Raises:
            NotFoundError: If the record does not exist
        """
        with self.database.session_scope() as session:
            return _get_invoice(session, invoice_id)

    def find_by_storage_key(self, storage_key: str) -> InvoiceRecord | None:
        with self.database.session_scope() as session:
            return session.scalars(
                select(InvoiceRecord).where(InvoiceRecord.storage_key == storage_key)
            ).one_or_none()

    def attach(
        self,
        ledger_entry_id: int,
        storage_key: str,
        file_name: str,
        media_type: str,
    ) -> InvoiceRecord:
        """Register a directly uploaded blob as a PENDING invoice of a ledger entry.

        Creates the linked record and flags the entry as invoiced in one transaction.

        Raises:
            NotFoundError: If the ledger entry does not exist
            ConflictError: If the blob is already registered
        """
        with self.database.session_scope() as session:
            entry = session.get(LedgerEntry, ledger_entry_id)
            if entry is None:
                raise NotFoundError(f"Ledger entry {ledger_entry_id} not found")
            existing = session.scalar(
                select(InvoiceRecord.id).where(InvoiceRecord.storage_key == storage_key)
            )
            if existing is not None:
                raise ConflictError(f"{storage_key} is already registered as invoice {existing}")

            record = InvoiceRecord(
                storage_key=storage_key,
                file_name=file_name[:255],
                media_type=media_type,
                ledger_entry_id=entry.id,
                ocr_status=OcrStatus.PENDING,
            )
            session.add(record)
            entry.has_invoice = True
            session.flush()
            logger.info(f"Attached invoice {record.id} ({storage_key}) to entry {ledger_entry_id}")
            return record

    def mark_budget_exceeded(self, invoice_id: int) -> InvoiceRecord:
        with self.database.session_scope() as session:
            record = _get_invoice(session, invoice_id, for_update=True)
            record.transition_to(OcrStatus.BUDGET_EXCEEDED)
            return record

    def mark_failed(self, invoice_id: int, error: str) -> InvoiceRecord:
        """Move a PENDING record to FAILED with an already-truncated message."""
        with self.database.session_scope() as session:
            record = _get_invoice(session, invoice_id, for_update=True)
            record.transition_to(OcrStatus.FAILED)
            record.ocr_error = error
            return record

    def complete_extraction(
        self,
        invoice_id: int,
        result: ExtractionResult,
        cost_cents: int,
        user_id: int,
    ) -> InvoiceRecord:
        """Store extraction output and its usage row in one transaction.

        Args:
            invoice_id: PENDING record the extraction ran for
            result: Provider result (fields may be empty if the reply was unusable)
            cost_cents: Estimated cost of the call
            user_id: User who triggered the upload

        Returns:
            The COMPLETED record
        """
        with self.database.session_scope() as session:
            record = _get_invoice(session, invoice_id, for_update=True)
            record.transition_to(OcrStatus.COMPLETED)
            record.ocr_amount = result.fields.amount
            record.ocr_date = result.fields.date
            record.ocr_vendor = result.fields.vendor
            record.ocr_invoice_number = result.fields.invoice_number
            record.ocr_raw_response = result.raw_response
            record.ocr_tokens_used = result.tokens_used
            record.ocr_cost_cents = cost_cents

            session.add(
                OcrUsage(
                    invoice_id=invoice_id,
                    user_id=user_id,
                    tokens_input=result.tokens_input,
                    tokens_output=result.tokens_output,
                    cost_cents=cost_cents,
                    model=result.model,
                )
            )
            return record

    def update_fields(self, invoice_id: int, changes: dict[str, Any]) -> InvoiceRecord:
        """Apply manual corrections to the extracted fields of an orphan invoice.

        Args:
            invoice_id: Record to correct
            changes: Sanitized values keyed by column name (``ocr_amount``, ``ocr_date``,
                ``ocr_vendor``, ``ocr_invoice_number``)

        Raises:
            NotFoundError: If the record does not exist
            ConflictError: If the record is already linked to a ledger entry
            ValueError: If ``changes`` names a column that cannot be corrected
        """
        unknown = set(changes) - CORRECTABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be corrected: {', '.join(sorted(unknown))}")

        with self.database.session_scope() as session:
            record = _get_invoice(session, invoice_id, for_update=True)
            if record.is_linked:
                raise ConflictError(f"Invoice {invoice_id} is already linked")
            for column, value in changes.items():
                setattr(record, column, value)
            return record

    def link(self, invoice_id: int, ledger_entry_id: int) -> InvoiceRecord:
        """Link an orphan invoice to a ledger entry and flag the entry as invoiced.

        Raises:
            NotFoundError: If the invoice or the ledger entry does not exist
            ConflictError: If the invoice is already linked
        """
        with self.database.session_scope() as session:
            record = _get_invoice(session, invoice_id, for_update=True)
            if record.is_linked:
                raise ConflictError(
                    f"Invoice {invoice_id} is already linked to entry {record.ledger_entry_id}"
                )
            entry = session.get(LedgerEntry, ledger_entry_id)
            if entry is None:
                raise NotFoundError(f"Ledger entry {ledger_entry_id} not found")

            record.ledger_entry_id = entry.id
            entry.has_invoice = True
            logger.info(f"Linked invoice {invoice_id} to ledger entry {ledger_entry_id}")
            return record

    def delete(self, invoice_id: int) -> InvoiceRecord:
        """Delete a record and refresh the invoiced flag of its ledger entry.

        Returns:
            Snapshot of the deleted record (its storage key is still needed for blob cleanup)

        Raises:
            NotFoundError: If the record does not exist
        """
        with self.database.session_scope() as session:
            record = _get_invoice(session, invoice_id, for_update=True)
            entry_id = record.ledger_entry_id
            session.delete(record)
            session.flush()

            if entry_id is not None:
                remaining = session.scalar(
                    select(func.count(InvoiceRecord.id)).where(
                        InvoiceRecord.ledger_entry_id == entry_id
                    )
                )
                if not remaining:
                    entry = session.get(LedgerEntry, entry_id)
                    if entry is not None:
                        entry.has_invoice = False
            return record


class UsageRepository:
    """Append-only access to the extraction usage log."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def add(
        self,
        invoice_id: int,
        user_id: int,
        tokens_input: int,
        tokens_output: int,
        cost_cents: int,
        model: str,
    ) -> OcrUsage:
        with self.database.session_scope() as session:
            usage = OcrUsage(
                invoice_id=invoice_id,
                user_id=user_id,
                tokens_input=tokens_input,
                tokens_output=tokens_output,
                cost_cents=cost_cents,
                model=model,
            )
            session.add(usage)
            return usage

    def totals_since(self, since: dt.datetime) -> tuple[int, int]:
        """Sum of cost and number of calls recorded at or after ``since``.

        Returns:
            Tuple of (spent cents, call count)
        """
        with self.database.session_scope() as session:
            spent, count = session.execute(
                select(
                    func.coalesce(func.sum(OcrUsage.cost_cents), 0),
                    func.count(OcrUsage.id),
                ).where(OcrUsage.created_at >= since)
            ).one()
            return int(spent), int(count)


class LedgerEntryRepository:
    """Read-only query surface over ledger entries used for matching."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def get(self, entry_id: int) -> LedgerEntry:
        with self.database.session_scope() as session:
            entry = session.get(LedgerEntry, entry_id)
            if entry is None:
                raise NotFoundError(f"Ledger entry {entry_id} not found")
            return entry

    def find_match_candidates(
        self,
        amount: float | None,
        on_date: dt.date | None,
        limit: int,
    ) -> list[LedgerEntry]:
        """Pre-filter expense entries that could plausibly match an invoice.

        The filters are deliberately wide; precise ranking happens in scoring.

        Args:
            amount: Invoice amount (sign ignored); adds a 0.5x-1.5x band when given
            on_date: Invoice date; adds a +/-30 day window when given
            limit: Maximum rows, most recent first

        Returns:
            Candidate entries ordered by date descending, then id descending
        """
        query = select(LedgerEntry).where(
            LedgerEntry.amount < 0,
            LedgerEntry.is_archived.is_(False),
        )

        if on_date is not None:
            window = dt.timedelta(days=MATCH_WINDOW_DAYS)
            query = query.where(LedgerEntry.date.between(on_date - window, on_date + window))

        if amount is not None:
            magnitude = abs(amount)
            query = query.where(
                LedgerEntry.amount >= -(magnitude * AMOUNT_BAND_HIGH),
                LedgerEntry.amount <= -(magnitude * AMOUNT_BAND_LOW),
            )

        query = query.order_by(LedgerEntry.date.desc(), LedgerEntry.id.desc()).limit(limit)

        with self.database.session_scope() as session:
            return list(session.scalars(query).unique())
