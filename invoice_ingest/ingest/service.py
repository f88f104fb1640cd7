"""Single-invoice operations: correct, link, re-match, download, delete."""

import logging

from invoice_ingest.db.repository import InvoiceRepository, LedgerEntryRepository
from invoice_ingest.ingest.schema import (
    CorrectionResult,
    DownloadUrl,
    InvoiceCorrection,
    InvoiceView,
    UploadUrl,
)
from invoice_ingest.matching.scorer import MatchScorer, MatchSuggestion
from invoice_ingest.shared.config import Settings
from invoice_ingest.shared.errors import StorageError
from invoice_ingest.storage.keys import generate_invoice_key
from invoice_ingest.storage.service import StorageService

logger = logging.getLogger(__name__)


class InvoiceService:
    """Operations a reviewer performs on one invoice after ingestion."""

    def __init__(
        self,
        settings: Settings,
        invoices: InvoiceRepository,
        ledger: LedgerEntryRepository,
        storage: StorageService,
        scorer: MatchScorer,
    ) -> None:
        self.settings = settings
        self.invoices = invoices
        self.ledger = ledger
        self.storage = storage
        self.scorer = scorer

    def get(self, invoice_id: int) -> InvoiceView:
        return InvoiceView.model_validate(self.invoices.get(invoice_id))

    def suggestions(self, invoice_id: int) -> list[MatchSuggestion]:
        """Recompute match suggestions from the stored extracted fields."""
        record = self.invoices.get(invoice_id)
        return self.scorer.find_matches(
            record.ocr_amount,
            record.ocr_date,
            record.ocr_vendor,
            self.settings.match_result_limit,
        )

    def correct_fields(self, invoice_id: int, correction: InvoiceCorrection) -> CorrectionResult:
        """Save manually corrected fields of an orphan invoice and re-run matching.

        Raises:
            NotFoundError: If the invoice does not exist
            ConflictError: If the invoice is already linked
        """
        record = self.invoices.update_fields(invoice_id, correction.changes())
        logger.info(
            f"Corrected fields {sorted(correction.model_fields_set)} of invoice {invoice_id}"
        )
        suggestions = self.scorer.find_matches(
            record.ocr_amount,
            record.ocr_date,
            record.ocr_vendor,
            self.settings.match_result_limit,
        )
        return CorrectionResult(invoice=InvoiceView.model_validate(record), suggestions=suggestions)

    def link(self, invoice_id: int, ledger_entry_id: int) -> InvoiceView:
        """Attach an orphan invoice to a ledger entry.

        Raises:
            NotFoundError: If the invoice or ledger entry does not exist
            ConflictError: If the invoice is already linked
        """
        return InvoiceView.model_validate(self.invoices.link(invoice_id, ledger_entry_id))

    def delete(self, invoice_id: int) -> InvoiceView:
        """Remove an invoice record, then its blob.

        The database is authoritative: once the record is gone the operation
        succeeds even if the blob cannot be deleted.
        """
        record = self.invoices.delete(invoice_id)
        result = self.storage.delete_object(record.storage_key)
        if not result.success:
            logger.error(
                f"Invoice {invoice_id} deleted but blob {record.storage_key} "
                f"remains: {result.error}"
            )
        return InvoiceView.model_validate(record)

    def download_url(self, invoice_id: int) -> DownloadUrl:
        """Presigned GET URL for the stored file.

        Raises:
            NotFoundError: If the invoice does not exist
            StorageError: If the URL cannot be signed
        """
        record = self.invoices.get(invoice_id)
        result = self.storage.get_presigned_url(
            record.storage_key,
            expires_seconds=self.settings.storage_download_url_ttl_seconds,
        )
        if not result.success or result.url is None:
            raise StorageError(f"Could not sign download URL: {result.error}")
        return DownloadUrl(
            url=result.url,
            file_name=record.file_name,
            expires_in_seconds=self.settings.storage_download_url_ttl_seconds,
        )

    def upload_url(self, ledger_entry_id: int, file_name: str) -> UploadUrl:
        """Presigned PUT URL for uploading an invoice of a known ledger entry.

        Raises:
            NotFoundError: If the ledger entry does not exist
            StorageError: If the URL cannot be signed
        """
        self.ledger.get(ledger_entry_id)
        key = generate_invoice_key(file_name, ledger_entry_id=ledger_entry_id)
        result = self.storage.get_presigned_upload_url(
            key,
            expires_seconds=self.settings.storage_upload_url_ttl_seconds,
        )
        if not result.success or result.url is None:
            raise StorageError(f"Could not sign upload URL: {result.error}")
        return UploadUrl(
            url=result.url,
            key=key,
            expires_in_seconds=self.settings.storage_upload_url_ttl_seconds,
        )
