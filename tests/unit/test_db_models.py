"""Unit tests for ORM models, the OCR status machine and JSON columns."""

import pytest
from sqlalchemy import text
from sqlalchemy.dialects import sqlite

from invoice_ingest.db.models import InvoiceRecord, OcrStatus, Project
from invoice_ingest.db.session import Database
from invoice_ingest.db.types import JSONMapping
from invoice_ingest.shared.errors import InvalidStatusTransition, PersistenceError


def _new_invoice(**overrides: object) -> InvoiceRecord:
    values: dict[str, object] = {
        "storage_key": "invoices/orphan/1-abc-x.pdf",
        "file_name": "x.pdf",
        "media_type": "application/pdf",
        "ocr_status": OcrStatus.PENDING,
    }
    values.update(overrides)
    return InvoiceRecord(**values)


class TestOcrStatusMachine:
    def test_new_record_starts_pending(self) -> None:
        assert _new_invoice().ocr_status is OcrStatus.PENDING

    def test_new_record_cannot_start_terminal(self) -> None:
        with pytest.raises(InvalidStatusTransition):
            _new_invoice(ocr_status=OcrStatus.COMPLETED)

    @pytest.mark.parametrize(
        "target", [OcrStatus.COMPLETED, OcrStatus.FAILED, OcrStatus.BUDGET_EXCEEDED]
    )
    def test_pending_moves_to_any_terminal(self, target: OcrStatus) -> None:
        record = _new_invoice()
        record.transition_to(target)
        assert record.ocr_status is target

    @pytest.mark.parametrize(
        "terminal", [OcrStatus.COMPLETED, OcrStatus.FAILED, OcrStatus.BUDGET_EXCEEDED]
    )
    def test_terminal_states_are_final(self, terminal: OcrStatus) -> None:
        record = _new_invoice()
        record.transition_to(terminal)

        for target in OcrStatus:
            with pytest.raises(InvalidStatusTransition):
                record.transition_to(target)

    def test_is_linked(self) -> None:
        assert _new_invoice().is_linked is False
        assert _new_invoice(ledger_entry_id=5).is_linked is True


class TestPersistence:
    def test_round_trip_and_defaults(self, database: Database) -> None:
        with database.session_scope() as session:
            record = _new_invoice()
            session.add(record)
            session.flush()
            invoice_id = record.id

        with database.session_scope() as session:
            loaded = session.get(InvoiceRecord, invoice_id)
            assert loaded is not None
            assert loaded.ocr_status is OcrStatus.PENDING
            assert loaded.created_at is not None
            # Loaded records still enforce the status machine
            loaded.transition_to(OcrStatus.FAILED)
            with pytest.raises(InvalidStatusTransition):
                loaded.transition_to(OcrStatus.COMPLETED)

    def test_storage_key_is_unique(self, database: Database) -> None:
        with database.session_scope() as session:
            session.add(_new_invoice())

        with pytest.raises(PersistenceError):
            with database.session_scope() as session:
                session.add(_new_invoice())

    def test_failed_transaction_rolls_back(self, database: Database) -> None:
        with pytest.raises(PersistenceError):
            with database.session_scope() as session:
                session.add(_new_invoice(storage_key="a"))
                session.flush()
                session.add(_new_invoice(storage_key="a"))

        with database.session_scope() as session:
            assert session.query(InvoiceRecord).count() == 0

    def test_health_check(self, database: Database) -> None:
        assert database.health_check() is True


class TestJSONMapping:
    def test_typed_mapping_round_trip(self, database: Database) -> None:
        with database.session_scope() as session:
            project = Project(name="Casa", category_budgets={"materials": 50000, "labor": 20000})
            session.add(project)
            session.flush()
            project_id = project.id

        with database.session_scope() as session:
            loaded = session.get(Project, project_id)
            assert loaded is not None
            assert loaded.category_budgets == {"labor": 20000, "materials": 50000}

    def test_malformed_document_reads_as_empty(self, database: Database) -> None:
        with database.session_scope() as session:
            session.execute(
                text("INSERT INTO projects (id, name, category_budgets) VALUES (9, 'x', '{oops')")
            )

        with database.session_scope() as session:
            loaded = session.get(Project, 9)
            assert loaded is not None
            assert loaded.category_budgets == {}

    def test_wrong_value_types_are_dropped(self, database: Database) -> None:
        with database.session_scope() as session:
            session.execute(
                text(
                    "INSERT INTO projects (id, name, category_budgets) "
                    """VALUES (10, 'x', '{"ok": 100, "bad": "lots", "flag": true}')"""
                )
            )

        with database.session_scope() as session:
            loaded = session.get(Project, 10)
            assert loaded is not None
            assert loaded.category_budgets == {"ok": 100}

    def test_non_object_reads_as_empty(self) -> None:
        column_type = JSONMapping(value_type=int)
        dialect = sqlite.dialect()

        assert column_type.process_result_value("[1, 2]", dialect) == {}
        assert column_type.process_result_value(None, dialect) == {}
