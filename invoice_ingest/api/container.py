"""Wiring of the services behind the HTTP API.

One container per application instance. Tests build their own with fakes for
storage and extraction and hand it to ``create_app``.
"""

import logging

from invoice_ingest.audit.service import AuditLogger
from invoice_ingest.budget.gate import ExtractionGate
from invoice_ingest.budget.service import BudgetService
from invoice_ingest.db.repository import InvoiceRepository, LedgerEntryRepository, UsageRepository
from invoice_ingest.db.session import Database
from invoice_ingest.extraction.base import ExtractionProvider
from invoice_ingest.extraction.factory import create_extraction_provider
from invoice_ingest.ingest.orchestrator import BulkIngestOrchestrator
from invoice_ingest.ingest.service import InvoiceService
from invoice_ingest.matching.scorer import MatchScorer
from invoice_ingest.shared.config import Settings
from invoice_ingest.storage.service import StorageService

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Holds the long-lived services of one application instance."""

    def __init__(
        self,
        settings: Settings,
        database: Database,
        storage: StorageService,
        extractor: ExtractionProvider,
        gate: ExtractionGate | None = None,
    ) -> None:
        self.settings = settings
        self.database = database
        self.storage = storage
        self.extractor = extractor
        self.gate = gate or ExtractionGate()

        self.invoices = InvoiceRepository(database)
        self.ledger = LedgerEntryRepository(database)
        self.usage = UsageRepository(database)

        self.budget = BudgetService(self.usage, settings.ocr_monthly_budget_cents)
        self.scorer = MatchScorer(self.ledger, candidate_limit=settings.match_candidate_limit)
        self.audit = AuditLogger(database)

        self.orchestrator = BulkIngestOrchestrator(
            settings=settings,
            storage=storage,
            invoices=self.invoices,
            budget=self.budget,
            gate=self.gate,
            extractor=extractor,
            scorer=self.scorer,
        )
        self.invoice_service = InvoiceService(
            settings=settings,
            invoices=self.invoices,
            ledger=self.ledger,
            storage=storage,
            scorer=self.scorer,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContainer":
        """Build the production wiring from configuration."""
        extractor = create_extraction_provider(settings)
        if not extractor.is_available():
            logger.warning(
                f"Extraction provider '{extractor.provider_name}' has no credentials; "
                "uploads will be stored but extraction will fail"
            )
        return cls(
            settings=settings,
            database=Database.from_settings(settings),
            storage=StorageService(settings),
            extractor=extractor,
        )
