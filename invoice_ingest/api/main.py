"""FastAPI application for invoice ingestion and ledger matching.

Provides:
- Bulk upload of invoice files with per-file outcomes
- Review operations on one invoice (correct, link, re-match, download, delete)
- Presigned upload URLs, registration of the uploaded files, monthly usage
- Health and readiness checks for Kubernetes
- Prometheus metrics for monitoring

Authentication happens upstream; the acting user arrives in ``X-User-Id``.

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import (
    Depends,
    FastAPI,
    File,
    Header,
    HTTPException,
    Request,
    Response,
    UploadFile,
    status,
)
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from invoice_ingest.api import metrics
from invoice_ingest.api.container import ServiceContainer
from invoice_ingest.audit.service import client_ip
from invoice_ingest.budget.service import UsageSummary
from invoice_ingest.ingest.schema import (
    BatchResult,
    CorrectionResult,
    DownloadUrl,
    FileOutcome,
    InvoiceCorrection,
    InvoiceView,
    UploadedFile,
    UploadUrl,
)
from invoice_ingest.matching.scorer import MatchSuggestion
from invoice_ingest.shared.config import Settings, get_settings
from invoice_ingest.shared.errors import (
    ConflictError,
    InvalidStatusTransition,
    NotFoundError,
    PersistenceError,
    StorageError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    database: bool
    storage: bool


class LinkRequest(BaseModel):
    ledger_entry_id: int


class UploadUrlRequest(BaseModel):
    ledger_entry_id: int
    file_name: str = Field(..., min_length=1, max_length=255)


class AttachRequest(BaseModel):
    ledger_entry_id: int
    key: str = Field(..., min_length=1, max_length=512)
    file_name: str = Field(..., min_length=1, max_length=255)


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def current_user_id(x_user_id: int | None = Header(None, alias="X-User-Id")) -> int:
    """Acting user as asserted by the upstream auth layer."""
    if x_user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id")
    return x_user_id


def _error_response(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


def create_app(
    settings: Settings | None = None,
    container: ServiceContainer | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Configuration, defaults to environment settings
        container: Pre-built services, defaults to production wiring

    Returns:
        Configured FastAPI application
    """
    settings = settings or (container.settings if container else get_settings())
    container = container or ServiceContainer.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        container.database.create_all()
        logger.info(
            f"{settings.service_name} {settings.service_version} started "
            f"(provider={container.extractor.provider_name}, model={container.extractor.model})"
        )
        yield

    app = FastAPI(
        title="Invoice Ingest",
        description="Bulk invoice ingestion with budgeted extraction and ledger matching",
        version=settings.service_version,
        lifespan=lifespan,
    )
    app.state.container = container

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Collect request count and duration per route template."""
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Route template keeps invoice ids out of label values
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        metrics.http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
        ).inc()
        metrics.http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error_response(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
        return _error_response(status.HTTP_409_CONFLICT, str(exc))

    @app.exception_handler(InvalidStatusTransition)
    async def transition_handler(request: Request, exc: InvalidStatusTransition) -> JSONResponse:
        return _error_response(status.HTTP_409_CONFLICT, str(exc))

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return _error_response(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(StorageError)
    async def storage_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error(f"Storage error on {request.url.path}: {exc}")
        return _error_response(status.HTTP_502_BAD_GATEWAY, "Object storage unavailable")

    @app.exception_handler(PersistenceError)
    async def persistence_handler(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error(f"Database error on {request.url.path}: {exc}")
        return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "Database unavailable")

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def health_check() -> HealthResponse:
        """Liveness check."""
        return HealthResponse(
            status="healthy", version=settings.service_version, service=settings.service_name
        )

    @app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
    def readiness_check(
        services: ServiceContainer = Depends(get_container),  # noqa: B008
    ) -> ReadinessResponse:
        """Readiness check: database reachable and, when configured, the bucket too."""
        database_ok = services.database.health_check()
        storage_ok = services.storage.health_check() if services.storage.is_available() else False
        return ReadinessResponse(ready=database_ok, database=database_ok, storage=storage_ok)

    @app.get("/metrics", tags=["Monitoring"])
    def get_metrics() -> Response:
        """Prometheus metrics endpoint."""
        metrics_data, content_type = metrics.get_metrics()
        return Response(content=metrics_data, media_type=content_type)

    @app.post("/api/v1/invoices/bulk", response_model=BatchResult, tags=["Invoices"])
    async def bulk_upload(
        request: Request,
        files: list[UploadFile] = File(  # noqa: B008
            ..., description="PDF, JPEG, PNG or WebP invoices"
        ),
        user_id: int = Depends(current_user_id),  # noqa: B008
        services: ServiceContainer = Depends(get_container),  # noqa: B008
    ) -> BatchResult:
        """Upload several invoice files at once.

        Every file gets its own outcome (INVALID, FAILED, BUDGET_EXCEEDED or
        COMPLETED); one bad file never fails the request. Files are stored as
        orphans and, when extraction succeeds, returned with ranked ledger
        suggestions.

        ## Usage Example

        ```bash
        curl -X POST "http://localhost:8000/api/v1/invoices/bulk" \\
          -H "X-User-Id: 1" \\
          -F "files=@invoice-1.pdf" -F "files=@receipt.jpg"
        ```

        Raises:
            HTTPException: 400 if no files or more than the configured maximum
        """
        if not files:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No files provided")
        if len(files) > settings.bulk_upload_max_files:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"At most {settings.bulk_upload_max_files} files per upload",
            )

        uploads: list[UploadedFile] = []
        for upload in files:
            content = await upload.read()
            metrics.invoice_upload_size_bytes.observe(len(content))
            uploads.append(
                UploadedFile(
                    file_name=upload.filename or "unnamed",
                    media_type=upload.content_type,
                    content=content,
                )
            )

        batch = await services.orchestrator.ingest_batch(uploads, user_id)

        counts: dict[str, int] = {}
        for result in batch.results:
            metrics.invoices_ingested_total.labels(outcome=result.outcome.value).inc()
            counts[result.outcome.value] = counts.get(result.outcome.value, 0) + 1
        if batch.budget is not None:
            metrics.ocr_monthly_spend_cents.set(batch.budget.spent_cents)

        await asyncio.to_thread(
            services.audit.log,
            "invoice.bulk_upload",
            entity_type="invoice",
            user_id=user_id,
            details={
                "files": len(uploads),
                "outcomes": counts,
                "invoice_ids": [r.invoice.id for r in batch.results if r.invoice is not None],
            },
            ip_address=client_ip(request),
        )
        return batch

    @app.post("/api/v1/invoices/upload-url", response_model=UploadUrl, tags=["Invoices"])
    def create_upload_url(
        body: UploadUrlRequest,
        user_id: int = Depends(current_user_id),  # noqa: B008
        services: ServiceContainer = Depends(get_container),  # noqa: B008
    ) -> UploadUrl:
        """Presigned PUT URL for attaching a file to a known ledger entry.

        After the PUT succeeds, register the file with ``POST /api/v1/invoices/attach``.
        """
        return services.invoice_service.upload_url(body.ledger_entry_id, body.file_name)

    @app.post("/api/v1/invoices/attach", response_model=FileOutcome, tags=["Invoices"])
    async def attach_invoice(
        body: AttachRequest,
        request: Request,
        user_id: int = Depends(current_user_id),  # noqa: B008
        services: ServiceContainer = Depends(get_container),  # noqa: B008
    ) -> FileOutcome:
        """Register a file uploaded through a presigned URL and extract it.

        The invoice is linked to the ledger entry the URL was issued for.

        Raises:
            HTTPException: 400 if the key belongs to another entry or the file is rejected,
                404 if nothing was uploaded, 409 if the file is already registered
        """
        outcome = await services.orchestrator.attach_upload(
            body.ledger_entry_id, body.key, body.file_name, user_id
        )
        metrics.invoices_ingested_total.labels(outcome=outcome.outcome.value).inc()

        await asyncio.to_thread(
            services.audit.log,
            "invoice.attach",
            entity_type="invoice",
            entity_id=outcome.invoice.id if outcome.invoice is not None else None,
            user_id=user_id,
            details={
                "ledger_entry_id": body.ledger_entry_id,
                "key": body.key,
                "outcome": outcome.outcome.value,
            },
            ip_address=client_ip(request),
        )
        return outcome

    @app.get("/api/v1/invoices/ocr/usage", response_model=UsageSummary, tags=["Invoices"])
    def ocr_usage(
        user_id: int = Depends(current_user_id),  # noqa: B008
        services: ServiceContainer = Depends(get_container),  # noqa: B008
    ) -> UsageSummary:
        """Extraction spend and call count for the current month."""
        summary = services.budget.get_usage_summary()
        metrics.ocr_monthly_spend_cents.set(summary.spent_cents)
        return summary

    @app.get("/api/v1/invoices/{invoice_id}", response_model=InvoiceView, tags=["Invoices"])
    def get_invoice(
        invoice_id: int,
        user_id: int = Depends(current_user_id),  # noqa: B008
        services: ServiceContainer = Depends(get_container),  # noqa: B008
    ) -> InvoiceView:
        return services.invoice_service.get(invoice_id)

    @app.patch(
        "/api/v1/invoices/{invoice_id}/ocr", response_model=CorrectionResult, tags=["Invoices"]
    )
    def correct_invoice(
        invoice_id: int,
        correction: InvoiceCorrection,
        request: Request,
        user_id: int = Depends(current_user_id),  # noqa: B008
        services: ServiceContainer = Depends(get_container),  # noqa: B008
    ) -> CorrectionResult:
        """Correct extracted fields of an orphan invoice and get fresh suggestions.

        Returns 409 when the invoice is already linked to a ledger entry.
        """
        result = services.invoice_service.correct_fields(invoice_id, correction)
        services.audit.log(
            "invoice.correct",
            entity_type="invoice",
            entity_id=invoice_id,
            user_id=user_id,
            details={
                "changes": correction.model_dump(mode="json", include=correction.model_fields_set)
            },
            ip_address=client_ip(request),
        )
        return result

    @app.post("/api/v1/invoices/{invoice_id}/link", response_model=InvoiceView, tags=["Invoices"])
    def link_invoice(
        invoice_id: int,
        body: LinkRequest,
        request: Request,
        user_id: int = Depends(current_user_id),  # noqa: B008
        services: ServiceContainer = Depends(get_container),  # noqa: B008
    ) -> InvoiceView:
        """Attach an orphan invoice to a ledger entry."""
        invoice = services.invoice_service.link(invoice_id, body.ledger_entry_id)
        services.audit.log(
            "invoice.link",
            entity_type="invoice",
            entity_id=invoice_id,
            user_id=user_id,
            details={"ledger_entry_id": body.ledger_entry_id},
            ip_address=client_ip(request),
        )
        return invoice

    @app.get(
        "/api/v1/invoices/{invoice_id}/suggestions",
        response_model=list[MatchSuggestion],
        tags=["Invoices"],
    )
    def invoice_suggestions(
        invoice_id: int,
        user_id: int = Depends(current_user_id),  # noqa: B008
        services: ServiceContainer = Depends(get_container),  # noqa: B008
    ) -> list[MatchSuggestion]:
        """Re-run matching from the stored extracted fields."""
        return services.invoice_service.suggestions(invoice_id)

    @app.get(
        "/api/v1/invoices/{invoice_id}/download", response_model=DownloadUrl, tags=["Invoices"]
    )
    def download_invoice(
        invoice_id: int,
        user_id: int = Depends(current_user_id),  # noqa: B008
        services: ServiceContainer = Depends(get_container),  # noqa: B008
    ) -> DownloadUrl:
        """Presigned GET URL for the stored file."""
        return services.invoice_service.download_url(invoice_id)

    @app.delete("/api/v1/invoices/{invoice_id}", response_model=InvoiceView, tags=["Invoices"])
    def delete_invoice(
        invoice_id: int,
        request: Request,
        user_id: int = Depends(current_user_id),  # noqa: B008
        services: ServiceContainer = Depends(get_container),  # noqa: B008
    ) -> InvoiceView:
        """Delete an invoice record and its stored file."""
        invoice = services.invoice_service.delete(invoice_id)
        services.audit.log(
            "invoice.delete",
            entity_type="invoice",
            entity_id=invoice_id,
            user_id=user_id,
            details={
                "file_name": invoice.file_name,
                "ledger_entry_id": invoice.ledger_entry_id,
            },
            ip_address=client_ip(request),
        )
        return invoice

    return app


def main() -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(create_app(settings), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
