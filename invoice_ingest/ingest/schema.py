"""Request and response models for invoice ingestion."""

import datetime as dt
import enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from invoice_ingest.budget.service import BudgetStatus
from invoice_ingest.db.models import OcrStatus
from invoice_ingest.extraction.parsing import (
    MAX_INVOICE_NUMBER_LENGTH,
    MAX_VENDOR_LENGTH,
    sanitize_date,
    sanitize_text,
)
from invoice_ingest.matching.scorer import MatchSuggestion


class IngestOutcome(str, enum.Enum):
    """Per-file result of a bulk upload."""

    INVALID = "INVALID"
    FAILED = "FAILED"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    COMPLETED = "COMPLETED"


class UploadedFile(BaseModel):
    """One file of a batch as received from the caller."""

    file_name: str
    media_type: str | None
    content: bytes


class InvoiceView(BaseModel):
    """Snapshot of an InvoiceRecord."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    storage_key: str
    file_name: str
    media_type: str
    ledger_entry_id: int | None
    ocr_status: OcrStatus
    ocr_amount: float | None
    ocr_date: dt.date | None
    ocr_vendor: str | None
    ocr_invoice_number: str | None
    ocr_raw_response: str | None
    ocr_error: str | None
    ocr_tokens_used: int | None
    ocr_cost_cents: int | None
    created_at: dt.datetime
    updated_at: dt.datetime


class FileOutcome(BaseModel):
    file_name: str
    outcome: IngestOutcome
    invoice: InvoiceView | None = None
    suggestions: list[MatchSuggestion] = Field(default_factory=list)
    error: str | None = None


class BatchResult(BaseModel):
    """Outcome of every submitted file, in submission order, plus the budget afterwards."""

    results: list[FileOutcome]
    budget: BudgetStatus | None


class InvoiceCorrection(BaseModel):
    """Manually corrected extraction fields. Omitted fields are left unchanged."""

    model_config = ConfigDict(extra="forbid")

    ocr_amount: float | None = Field(None, gt=0, allow_inf_nan=False)
    ocr_date: dt.date | None = None
    ocr_vendor: str | None = None
    ocr_invoice_number: str | None = None

    @field_validator("ocr_date", mode="before")
    @classmethod
    def _strict_iso_date(cls, value: object) -> object:
        if value is None or isinstance(value, dt.date):
            return value
        parsed = sanitize_date(value)
        if parsed is None:
            raise ValueError("Date format: YYYY-MM-DD")
        return parsed

    @field_validator("ocr_amount")
    @classmethod
    def _round_amount(cls, value: float | None) -> float | None:
        return round(value, 2) if value is not None else None

    @field_validator("ocr_vendor")
    @classmethod
    def _truncate_vendor(cls, value: str | None) -> str | None:
        return sanitize_text(value, MAX_VENDOR_LENGTH)

    @field_validator("ocr_invoice_number")
    @classmethod
    def _truncate_invoice_number(cls, value: str | None) -> str | None:
        return sanitize_text(value, MAX_INVOICE_NUMBER_LENGTH)

    def changes(self) -> dict[str, object]:
        """Values explicitly provided by the caller, keyed by column name."""
        return self.model_dump(include=self.model_fields_set)


class CorrectionResult(BaseModel):
    invoice: InvoiceView
    suggestions: list[MatchSuggestion]


class DownloadUrl(BaseModel):
    url: str
    file_name: str
    expires_in_seconds: int


class UploadUrl(BaseModel):
    url: str
    key: str
    expires_in_seconds: int
