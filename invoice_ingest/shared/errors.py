"""Exception taxonomy for the ingestion-and-matching pipeline.

Budget rejection is deliberately absent: running out of budget is a normal
terminal status (``OcrStatus.BUDGET_EXCEEDED``), not a fault.
"""


class InvoiceIngestError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(InvoiceIngestError):
    """Input has the wrong shape or type. Raised before storage is touched."""


class StorageError(InvoiceIngestError):
    """Blob store put/delete failed."""


class PersistenceError(InvoiceIngestError):
    """A database write failed."""


class ExtractionTransportError(InvoiceIngestError):
    """The extraction service could not be reached, timed out, or rejected credentials."""


class ExtractionParseError(InvoiceIngestError):
    """Model output could not be parsed. Never escapes the extraction adapter."""


class InvalidStatusTransition(InvoiceIngestError):
    """An invoice status change violates the OCR state machine."""


class NotFoundError(InvoiceIngestError):
    """Requested record does not exist."""


class ConflictError(InvoiceIngestError):
    """Operation conflicts with the current record state (e.g. already linked)."""
