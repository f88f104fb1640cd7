"""Bulk invoice ingestion: validate, store, persist, extract, match.

Each file in a batch runs through the same pipeline and ends with exactly one
outcome, whatever happens to the other files:

1. Validate declared type and magic bytes -> INVALID, nothing created
2. Upload the blob under a fresh orphan key -> FAILED, nothing created
3. Create the PENDING record -> FAILED, blob deleted best-effort
4. Budget check + extraction + result/usage write, serialized by the gate
   -> BUDGET_EXCEEDED / FAILED / COMPLETED
5. For COMPLETED, rank ledger entries against the extracted fields

Files uploaded directly to storage for a known ledger entry join at step 3,
already linked, and skip step 5.

Blocking work (object storage, database) runs in worker threads; only the
extraction critical section is serialized process-wide.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from prometheus_client import Counter, Histogram

from invoice_ingest.budget.gate import ExtractionGate
from invoice_ingest.budget.service import BudgetService, BudgetStatus
from invoice_ingest.db.models import InvoiceRecord
from invoice_ingest.db.repository import InvoiceRepository
from invoice_ingest.extraction.base import ExtractionProvider
from invoice_ingest.extraction.pricing import estimate_cost_cents, get_rates
from invoice_ingest.extraction.schema import ExtractionResult
from invoice_ingest.ingest.schema import (
    BatchResult,
    FileOutcome,
    IngestOutcome,
    InvoiceView,
    UploadedFile,
)
from invoice_ingest.matching.scorer import MatchScorer, MatchSuggestion
from invoice_ingest.shared.config import Settings
from invoice_ingest.shared.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    StorageError,
    ValidationError,
)
from invoice_ingest.storage.keys import generate_invoice_key, is_entry_key
from invoice_ingest.storage.service import StorageService
from invoice_ingest.validation.content import (
    guess_media_type,
    is_allowed_media_type,
    validate_magic_bytes,
)

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500

extraction_duration_seconds = Histogram(
    "invoice_extraction_duration_seconds",
    "Duration of extraction calls in seconds",
    ["provider"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

extraction_cost_cents_total = Counter(
    "invoice_extraction_cost_cents_total",
    "Estimated extraction spend in cents",
    ["model"],
)

extraction_attempts_total = Counter(
    "invoice_extraction_attempts_total",
    "Gated extraction attempts by result",
    ["result"],  # completed, failed, budget_exceeded
)


def truncate_error(message: str, limit: int = MAX_ERROR_LENGTH) -> str:
    return message if len(message) <= limit else message[: limit - 3] + "..."


class BulkIngestOrchestrator:
    """Drives batches of uploaded invoices through the ingestion pipeline."""

    def __init__(
        self,
        settings: Settings,
        storage: StorageService,
        invoices: InvoiceRepository,
        budget: BudgetService,
        gate: ExtractionGate,
        extractor: ExtractionProvider,
        scorer: MatchScorer,
    ) -> None:
        self.settings = settings
        self.storage = storage
        self.invoices = invoices
        self.budget = budget
        self.gate = gate
        self.extractor = extractor
        self.scorer = scorer

    async def ingest_batch(self, files: list[UploadedFile], user_id: int) -> BatchResult:
        """Process every file in submission order.

        Args:
            files: Uploaded files with their declared media types
            user_id: User the extraction spend is attributed to

        Returns:
            One outcome per file, plus the budget after the batch
        """
        results = [await self.ingest_file(upload, user_id) for upload in files]

        budget: BudgetStatus | None = None
        try:
            budget = await asyncio.to_thread(self.budget.check_budget)
        except PersistenceError as e:
            logger.error(f"Could not read budget after batch: {e}")

        counts = {outcome.value: 0 for outcome in IngestOutcome}
        for result in results:
            counts[result.outcome.value] += 1
        logger.info(f"Batch of {len(files)} files processed: {counts}")

        return BatchResult(results=results, budget=budget)

    async def ingest_file(self, upload: UploadedFile, user_id: int) -> FileOutcome:
        """Run one file through the pipeline. Never raises."""
        try:
            return await self._ingest_file(upload, user_id)
        except Exception as e:
            logger.exception(f"Unexpected error ingesting {upload.file_name}: {e}")
            return FileOutcome(
                file_name=upload.file_name,
                outcome=IngestOutcome.FAILED,
                error="Unexpected error while processing file",
            )

    async def attach_upload(
        self,
        ledger_entry_id: int,
        storage_key: str,
        file_name: str,
        user_id: int,
    ) -> FileOutcome:
        """Register a file the browser uploaded through a presigned URL.

        The blob is checked like a bulk upload, with its type taken from
        ``file_name``. It is recorded as linked to the ledger entry, then
        extracted under the same budget and gate as bulk uploads. A rejected
        blob is deleted.

        Raises:
            ValidationError: If the key was not issued for the entry or the file is unacceptable
            NotFoundError: If nothing was uploaded under the key, or the entry does not exist
            ConflictError: If the key is already registered
            StorageError: If the blob cannot be read
        """
        if not is_entry_key(storage_key, ledger_entry_id):
            raise ValidationError(f"Key {storage_key} is not an upload of entry {ledger_entry_id}")
        media_type = guess_media_type(file_name)
        if media_type is None:
            raise ValidationError(f"Unsupported file type: {file_name}")

        existing = await asyncio.to_thread(self.invoices.find_by_storage_key, storage_key)
        if existing is not None:
            raise ConflictError(f"{storage_key} is already registered as invoice {existing.id}")

        size = await asyncio.to_thread(self.storage.object_size, storage_key)
        if size is None:
            raise NotFoundError(f"No uploaded file at {storage_key}")
        if size > self.settings.upload_max_bytes:
            await self._discard_blob(storage_key)
            raise ValidationError(f"File exceeds {self.settings.upload_max_bytes} bytes")

        downloaded = await asyncio.to_thread(self.storage.download_bytes, storage_key)
        if not downloaded.success or downloaded.data is None:
            raise StorageError(f"Could not read {storage_key}: {downloaded.error}")
        upload = UploadedFile(file_name=file_name, media_type=media_type, content=downloaded.data)
        if not validate_magic_bytes(upload.content, media_type):
            await self._discard_blob(storage_key)
            raise ValidationError(f"File content does not match declared type {media_type}")

        record = await asyncio.to_thread(
            self.invoices.attach, ledger_entry_id, storage_key, file_name, media_type
        )
        outcome, record = await self.gate.run(
            lambda: self._extract_within_budget(record, upload, media_type, user_id)
        )

        return FileOutcome(
            file_name=file_name,
            outcome=outcome,
            invoice=InvoiceView.model_validate(record),
            error=record.ocr_error,
        )

    async def _ingest_file(self, upload: UploadedFile, user_id: int) -> FileOutcome:
        invalid_reason = self._validate(upload)
        if invalid_reason is not None:
            logger.info(f"Rejected {upload.file_name}: {invalid_reason}")
            return FileOutcome(
                file_name=upload.file_name,
                outcome=IngestOutcome.INVALID,
                error=invalid_reason,
            )
        media_type = upload.media_type or ""

        storage_key = generate_invoice_key(upload.file_name)
        stored = await asyncio.to_thread(
            self.storage.upload_bytes, upload.content, storage_key, media_type
        )
        if not stored.success:
            return FileOutcome(
                file_name=upload.file_name,
                outcome=IngestOutcome.FAILED,
                error=f"Storage upload failed: {stored.error}",
            )

        try:
            async with self._discard_blob_on_error(storage_key):
                record = await asyncio.to_thread(
                    self.invoices.create, storage_key, upload.file_name, media_type
                )
        except PersistenceError as e:
            logger.error(f"Could not create invoice record for {storage_key}: {e}")
            return FileOutcome(
                file_name=upload.file_name,
                outcome=IngestOutcome.FAILED,
                error="Could not save invoice record",
            )

        outcome, record = await self.gate.run(
            lambda: self._extract_within_budget(record, upload, media_type, user_id)
        )

        suggestions: list[MatchSuggestion] = []
        if outcome is IngestOutcome.COMPLETED:
            suggestions = await self._suggest(record)

        return FileOutcome(
            file_name=upload.file_name,
            outcome=outcome,
            invoice=InvoiceView.model_validate(record),
            suggestions=suggestions,
            error=record.ocr_error,
        )

    def _validate(self, upload: UploadedFile) -> str | None:
        if not is_allowed_media_type(upload.media_type):
            return f"Unsupported file type: {upload.media_type}"
        if len(upload.content) > self.settings.upload_max_bytes:
            return f"File exceeds {self.settings.upload_max_bytes} bytes"
        if not validate_magic_bytes(upload.content, upload.media_type):
            return f"File content does not match declared type {upload.media_type}"
        return None

    @asynccontextmanager
    async def _discard_blob_on_error(self, storage_key: str) -> AsyncIterator[None]:
        """Delete ``storage_key`` if the block raises; the original error propagates."""
        try:
            yield
        except BaseException:
            await self._discard_blob(storage_key)
            raise

    async def _discard_blob(self, storage_key: str) -> None:
        try:
            result = await asyncio.to_thread(self.storage.delete_object, storage_key)
        except Exception as e:
            logger.error(f"Orphan blob cleanup raised for {storage_key}: {e}")
            return
        if not result.success:
            logger.error(f"Orphan blob left in storage: {storage_key} ({result.error})")

    async def _extract_within_budget(
        self,
        record: InvoiceRecord,
        upload: UploadedFile,
        media_type: str,
        user_id: int,
    ) -> tuple[IngestOutcome, InvoiceRecord]:
        """Critical section: budget check, extraction, result and usage write.

        Always leaves the record in a terminal status unless the database
        rejects every write, in which case the last known snapshot is returned.
        """
        try:
            status = await asyncio.to_thread(self.budget.check_budget)
        except PersistenceError as e:
            logger.error(f"Budget check failed for invoice {record.id}: {e}")
            extraction_attempts_total.labels(result="failed").inc()
            record = await asyncio.to_thread(
                self._mark_failed_safely, record, truncate_error(f"Budget check failed: {e}")
            )
            return IngestOutcome.FAILED, record

        if not status.allowed:
            logger.warning(
                f"Extraction budget exhausted ({status.spent_cents}/{status.budget_cents}c), "
                f"skipping invoice {record.id}"
            )
            extraction_attempts_total.labels(result="budget_exceeded").inc()
            try:
                record = await asyncio.to_thread(self.invoices.mark_budget_exceeded, record.id)
            except PersistenceError as e:
                logger.error(f"Could not mark invoice {record.id} as over budget: {e}")
                record = await asyncio.to_thread(
                    self._mark_failed_safely, record, truncate_error(f"Status update failed: {e}")
                )
                return IngestOutcome.FAILED, record
            return IngestOutcome.BUDGET_EXCEEDED, record

        started = time.time()
        try:
            result = await self.extractor.extract(upload.content, media_type, upload.file_name)
        except Exception as e:
            logger.error(f"Extraction failed for invoice {record.id}: {e!r}")
            extraction_attempts_total.labels(result="failed").inc()
            record = await asyncio.to_thread(
                self._mark_failed_safely, record, truncate_error(str(e) or repr(e))
            )
            return IngestOutcome.FAILED, record
        finally:
            extraction_duration_seconds.labels(provider=self.extractor.provider_name).observe(
                time.time() - started
            )

        return await asyncio.to_thread(self._store_extraction, record, result, user_id)

    def _mark_failed_safely(self, record: InvoiceRecord, message: str) -> InvoiceRecord:
        try:
            return self.invoices.mark_failed(record.id, message)
        except PersistenceError as e:
            logger.error(f"Invoice {record.id} left {record.ocr_status.value}: {e}")
            return record

    def _store_extraction(
        self,
        record: InvoiceRecord,
        result: ExtractionResult,
        user_id: int,
    ) -> tuple[IngestOutcome, InvoiceRecord]:
        cost_cents = estimate_cost_cents(
            result.tokens_input, result.tokens_output, get_rates(result.model)
        )
        extraction_cost_cents_total.labels(model=result.model).inc(cost_cents)

        try:
            record = self.invoices.complete_extraction(record.id, result, cost_cents, user_id)
        except PersistenceError as e:
            # The call was paid for: keep the spend visible to the budget.
            logger.error(f"Could not store extraction result for invoice {record.id}: {e}")
            self.budget.record_usage_safely(
                record.id,
                user_id,
                result.tokens_input,
                result.tokens_output,
                cost_cents,
                result.model,
            )
            extraction_attempts_total.labels(result="failed").inc()
            record = self._mark_failed_safely(
                record, "Extraction succeeded but its result could not be saved"
            )
            return IngestOutcome.FAILED, record

        extraction_attempts_total.labels(result="completed").inc()
        if result.fields.is_empty():
            logger.warning(f"Invoice {record.id}: no fields could be read from the response")
        return IngestOutcome.COMPLETED, record

    async def _suggest(self, record: InvoiceRecord) -> list[MatchSuggestion]:
        try:
            return await asyncio.to_thread(
                self.scorer.find_matches,
                record.ocr_amount,
                record.ocr_date,
                record.ocr_vendor,
                self.settings.match_result_limit,
            )
        except PersistenceError as e:
            logger.error(f"Matching failed for invoice {record.id}: {e}")
            return []
