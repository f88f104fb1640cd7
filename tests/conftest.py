"""Shared fixtures: temporary SQLite database, settings and test doubles."""

from collections.abc import Generator
from pathlib import Path

import pytest

from invoice_ingest.db.session import Database
from invoice_ingest.shared.config import Settings
from tests.fakes import FakeExtractor, FakeStorage


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a throwaway SQLite file."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'invoices.db'}",
        storage_endpoint="localhost:9000",
        storage_access_key="test-access-key",
        storage_secret_key="test-secret-key",
        storage_bucket="test-invoices",
        storage_secure=False,
        ocr_monthly_budget_cents=1000,
    )


@pytest.fixture
def database(settings: Settings) -> Generator[Database, None, None]:
    db = Database(settings.database_url)
    db.create_all()
    yield db
    db.engine.dispose()


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def fake_extractor(settings: Settings) -> FakeExtractor:
    return FakeExtractor(settings)
