"""Unit tests for configuration management."""

import os
from collections.abc import Generator

import pytest
from pydantic import ValidationError

from invoice_ingest.shared.config import Settings, get_settings


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Clean environment variables before and after test."""
    original_env = dict(os.environ)
    env_vars = [k for k in os.environ if k.startswith("APP_")]
    for var in env_vars:
        del os.environ[var]
    yield
    os.environ.clear()
    os.environ.update(original_env)


def test_settings_defaults(clean_env: None) -> None:
    """Test that settings have correct default values."""
    settings = Settings(_env_file=None)

    assert settings.environment == "development"
    assert settings.log_level == "INFO"
    assert settings.service_name == "invoice-ingest"
    assert settings.service_version == "0.1.0"


def test_pipeline_defaults(clean_env: None) -> None:
    """Budget, URL lifetimes and limits default to the production values."""
    settings = Settings(_env_file=None)

    assert settings.ocr_monthly_budget_cents == 1000
    assert settings.storage_upload_url_ttl_seconds == 600
    assert settings.storage_download_url_ttl_seconds == 3600
    assert settings.extraction_provider == "anthropic"
    assert settings.extraction_model is None
    assert settings.extraction_max_tokens == 500
    assert settings.bulk_upload_max_files == 20
    assert settings.upload_max_bytes == 10 * 1024 * 1024
    assert settings.match_candidate_limit == 200
    assert settings.match_result_limit == 5


def test_settings_from_env_vars(clean_env: None) -> None:
    """Test that settings can be overridden via environment variables."""
    os.environ["APP_ENVIRONMENT"] = "production"
    os.environ["APP_LOG_LEVEL"] = "ERROR"
    os.environ["APP_OCR_MONTHLY_BUDGET_CENTS"] = "2500"
    os.environ["APP_EXTRACTION_PROVIDER"] = "openai"

    settings = Settings(_env_file=None)

    assert settings.environment == "production"
    assert settings.log_level == "ERROR"
    assert settings.ocr_monthly_budget_cents == 2500
    assert settings.extraction_provider == "openai"


def test_settings_case_insensitive(clean_env: None) -> None:
    """Test that environment variables are case insensitive."""
    os.environ["app_log_level"] = "DEBUG"

    settings = Settings(_env_file=None)

    assert settings.log_level == "DEBUG"


def test_budget_must_be_positive(clean_env: None) -> None:
    """A zero or negative monthly budget is a configuration error."""
    with pytest.raises(ValidationError):
        Settings(_env_file=None, ocr_monthly_budget_cents=0)


def test_unknown_provider_rejected(clean_env: None) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, extraction_provider="tesseract")


def test_get_settings_factory(clean_env: None) -> None:
    """Test that factory function returns Settings instance."""
    settings = get_settings()

    assert isinstance(settings, Settings)
    assert settings.service_name == "invoice-ingest"
