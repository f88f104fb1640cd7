"""Unit tests for the invoice ingestion API.

Tests cover:
- Health, readiness and metrics endpoints
- Bulk upload with per-file outcomes
- Review operations (correct, link, suggestions, download, delete)
- Presigned upload URLs, registration of the uploaded files and monthly usage
"""

import datetime as dt
from collections.abc import Generator

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from invoice_ingest.api.container import ServiceContainer
from invoice_ingest.api.main import create_app
from invoice_ingest.db.models import AuditLog
from invoice_ingest.db.session import Database
from invoice_ingest.shared.config import Settings
from tests.fakes import JPEG_BYTES, PDF_BYTES, FakeExtractor, FakeStorage, add_ledger_entry

USER = {"X-User-Id": "1"}


@pytest.fixture
def container(
    settings: Settings,
    database: Database,
    fake_storage: FakeStorage,
    fake_extractor: FakeExtractor,
) -> ServiceContainer:
    return ServiceContainer(
        settings, database, fake_storage, fake_extractor  # type: ignore[arg-type]
    )


@pytest.fixture
def client(container: ServiceContainer) -> Generator[TestClient, None, None]:
    """Create test client."""
    with TestClient(create_app(container=container)) as test_client:
        yield test_client


def _upload(client: TestClient, *files: tuple[str, bytes, str]) -> dict:
    response = client.post(
        "/api/v1/invoices/bulk",
        files=[("files", f) for f in files],
        headers=USER,
    )
    assert response.status_code == status.HTTP_200_OK
    return response.json()


def _upload_one(client: TestClient) -> int:
    data = _upload(client, ("factura.pdf", PDF_BYTES, "application/pdf"))
    return data["results"][0]["invoice"]["id"]


def _audit_actions(database: Database) -> list[str]:
    with database.session_scope() as session:
        return [row.action for row in session.query(AuditLog).order_by(AuditLog.id)]


class TestHealth:
    def test_health_check(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert "service" in data

    def test_readiness_check(self, client: TestClient) -> None:
        response = client.get("/ready")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"ready": True, "database": True, "storage": True}

    def test_metrics_endpoint(self, client: TestClient) -> None:
        client.get("/health")

        response = client.get("/metrics")

        assert response.status_code == status.HTTP_200_OK
        assert "http_requests_total" in response.text
        assert "invoice_extraction_cost_cents_total" in response.text


class TestBulkUpload:
    def test_mixed_batch(self, client: TestClient, database: Database) -> None:
        entry_id = add_ledger_entry(database, dt.date(2026, 2, 6), -115.0, "Ferreteria Lopez")

        data = _upload(
            client,
            ("factura.pdf", PDF_BYTES, "application/pdf"),
            ("photo.pdf", JPEG_BYTES, "application/pdf"),
            ("notes.txt", b"hello world, not an invoice", "text/plain"),
        )

        outcomes = [r["outcome"] for r in data["results"]]
        assert outcomes == ["COMPLETED", "INVALID", "INVALID"]

        completed = data["results"][0]
        assert completed["invoice"]["ocr_status"] == "COMPLETED"
        assert completed["invoice"]["ocr_date"] == "2026-02-06"
        assert completed["suggestions"][0]["ledger_entry_id"] == entry_id
        assert completed["suggestions"][0]["score"] == 100
        assert data["budget"]["spent_cents"] == 1
        assert _audit_actions(database) == ["invoice.bulk_upload"]

    def test_too_many_files(self, client: TestClient, settings: Settings) -> None:
        settings.bulk_upload_max_files = 2
        files = [("files", (f"{n}.pdf", PDF_BYTES, "application/pdf")) for n in range(3)]

        response = client.post("/api/v1/invoices/bulk", files=files, headers=USER)

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_requires_user(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/invoices/bulk",
            files=[("files", ("factura.pdf", PDF_BYTES, "application/pdf"))],
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_budget_exhausted_mid_batch(
        self, client: TestClient, container: ServiceContainer
    ) -> None:
        container.budget.budget_cents = 1
        files = [("factura.pdf", PDF_BYTES, "application/pdf")] * 2

        data = _upload(client, *files)

        assert [r["outcome"] for r in data["results"]] == ["COMPLETED", "BUDGET_EXCEEDED"]
        assert data["results"][1]["invoice"]["ocr_status"] == "BUDGET_EXCEEDED"
        assert data["budget"]["allowed"] is False


class TestInvoiceOperations:
    def test_get_invoice(self, client: TestClient) -> None:
        invoice_id = _upload_one(client)

        response = client.get(f"/api/v1/invoices/{invoice_id}", headers=USER)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["ocr_vendor"] == "Ferreteria Lopez"

    def test_get_missing_invoice(self, client: TestClient) -> None:
        response = client.get("/api/v1/invoices/999", headers=USER)

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_correct_fields(self, client: TestClient, database: Database) -> None:
        invoice_id = _upload_one(client)

        response = client.patch(
            f"/api/v1/invoices/{invoice_id}/ocr",
            json={"ocr_amount": 99.999, "ocr_vendor": "Ferreteria Lopez SL"},
            headers=USER,
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["invoice"]["ocr_amount"] == 100.0
        assert data["invoice"]["ocr_vendor"] == "Ferreteria Lopez SL"
        assert "suggestions" in data
        assert _audit_actions(database)[-1] == "invoice.correct"

    @pytest.mark.parametrize(
        "body",
        [
            {"ocr_status": "COMPLETED"},
            {"ocr_amount": -5},
            {"ocr_date": "06/02/2026"},
        ],
    )
    def test_correction_rejects_bad_input(self, client: TestClient, body: dict) -> None:
        invoice_id = _upload_one(client)

        response = client.patch(f"/api/v1/invoices/{invoice_id}/ocr", json=body, headers=USER)

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.parametrize("token", ["Infinity", "-Infinity", "NaN"])
    def test_correction_rejects_non_finite_amount(
        self, client: TestClient, token: str
    ) -> None:
        invoice_id = _upload_one(client)

        response = client.patch(
            f"/api/v1/invoices/{invoice_id}/ocr",
            content=f'{{"ocr_amount": {token}}}',
            headers={**USER, "Content-Type": "application/json"},
        )
        stored = client.get(f"/api/v1/invoices/{invoice_id}", headers=USER)

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert stored.json()["ocr_amount"] == 115.0

    def test_link_then_correct_conflicts(self, client: TestClient, database: Database) -> None:
        entry_id = add_ledger_entry(database, dt.date(2026, 2, 6), -115.0)
        invoice_id = _upload_one(client)

        linked = client.post(
            f"/api/v1/invoices/{invoice_id}/link",
            json={"ledger_entry_id": entry_id},
            headers=USER,
        )
        corrected = client.patch(
            f"/api/v1/invoices/{invoice_id}/ocr", json={"ocr_amount": 1}, headers=USER
        )
        relinked = client.post(
            f"/api/v1/invoices/{invoice_id}/link",
            json={"ledger_entry_id": entry_id},
            headers=USER,
        )

        assert linked.status_code == status.HTTP_200_OK
        assert linked.json()["ledger_entry_id"] == entry_id
        assert corrected.status_code == status.HTTP_409_CONFLICT
        assert relinked.status_code == status.HTTP_409_CONFLICT

    def test_suggestions(self, client: TestClient, database: Database) -> None:
        entry_id = add_ledger_entry(database, dt.date(2026, 2, 7), -115.0, "Ferreteria Lopez")
        invoice_id = _upload_one(client)

        response = client.get(f"/api/v1/invoices/{invoice_id}/suggestions", headers=USER)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data[0]["ledger_entry_id"] == entry_id
        assert data[0]["score_breakdown"]["date_score"] == 27

    def test_download(self, client: TestClient) -> None:
        invoice_id = _upload_one(client)

        response = client.get(f"/api/v1/invoices/{invoice_id}/download", headers=USER)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["file_name"] == "factura.pdf"

    def test_download_signing_failure(self, client: TestClient, fake_storage: FakeStorage) -> None:
        invoice_id = _upload_one(client)
        fake_storage.fail_signing = True

        response = client.get(f"/api/v1/invoices/{invoice_id}/download", headers=USER)

        assert response.status_code == status.HTTP_502_BAD_GATEWAY

    def test_delete(self, client: TestClient, fake_storage: FakeStorage) -> None:
        invoice_id = _upload_one(client)

        deleted = client.delete(f"/api/v1/invoices/{invoice_id}", headers=USER)
        again = client.get(f"/api/v1/invoices/{invoice_id}", headers=USER)

        assert deleted.status_code == status.HTTP_200_OK
        assert fake_storage.objects == {}
        assert again.status_code == status.HTTP_404_NOT_FOUND


class TestUploadUrlAndUsage:
    def test_upload_url(self, client: TestClient, database: Database) -> None:
        entry_id = add_ledger_entry(database, dt.date(2026, 2, 6), -50.0)

        response = client.post(
            "/api/v1/invoices/upload-url",
            json={"ledger_entry_id": entry_id, "file_name": "ticket.jpg"},
            headers=USER,
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["key"].startswith(f"invoices/{entry_id}/")

    def test_upload_url_unknown_entry(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/invoices/upload-url",
            json={"ledger_entry_id": 42, "file_name": "ticket.jpg"},
            headers=USER,
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def _issue_key(self, client: TestClient, entry_id: int, file_name: str) -> str:
        response = client.post(
            "/api/v1/invoices/upload-url",
            json={"ledger_entry_id": entry_id, "file_name": file_name},
            headers=USER,
        )
        return response.json()["key"]

    def test_attach_uploaded_file(
        self, client: TestClient, database: Database, fake_storage: FakeStorage
    ) -> None:
        entry_id = add_ledger_entry(database, dt.date(2026, 2, 6), -115.0)
        key = self._issue_key(client, entry_id, "ticket.jpg")
        fake_storage.objects[key] = JPEG_BYTES

        response = client.post(
            "/api/v1/invoices/attach",
            json={"ledger_entry_id": entry_id, "key": key, "file_name": "ticket.jpg"},
            headers=USER,
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["outcome"] == "COMPLETED"
        assert data["invoice"]["ledger_entry_id"] == entry_id
        assert data["invoice"]["storage_key"] == key
        assert _audit_actions(database)[-1] == "invoice.attach"

        again = client.post(
            "/api/v1/invoices/attach",
            json={"ledger_entry_id": entry_id, "key": key, "file_name": "ticket.jpg"},
            headers=USER,
        )
        assert again.status_code == status.HTTP_409_CONFLICT

    def test_attach_key_of_another_entry(
        self, client: TestClient, database: Database, fake_storage: FakeStorage
    ) -> None:
        entry_id = add_ledger_entry(database, dt.date(2026, 2, 6), -115.0)
        other_id = add_ledger_entry(database, dt.date(2026, 2, 7), -20.0)
        key = self._issue_key(client, other_id, "ticket.jpg")
        fake_storage.objects[key] = JPEG_BYTES

        response = client.post(
            "/api/v1/invoices/attach",
            json={"ledger_entry_id": entry_id, "key": key, "file_name": "ticket.jpg"},
            headers=USER,
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert key in fake_storage.objects

    def test_attach_before_upload(self, client: TestClient, database: Database) -> None:
        entry_id = add_ledger_entry(database, dt.date(2026, 2, 6), -115.0)
        key = self._issue_key(client, entry_id, "factura.pdf")

        response = client.post(
            "/api/v1/invoices/attach",
            json={"ledger_entry_id": entry_id, "key": key, "file_name": "factura.pdf"},
            headers=USER,
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_usage_summary(self, client: TestClient) -> None:
        _upload_one(client)

        response = client.get("/api/v1/invoices/ocr/usage", headers=USER)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["spent_cents"] == 1
        assert data["call_count"] == 1
        assert data["budget_cents"] == 1000
