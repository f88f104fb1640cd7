"""Shared configuration management for the invoice ingestion service.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_OCR_MONTHLY_BUDGET_CENTS=2500
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    service_name: str = Field(
        default="invoice-ingest",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # API server
    api_host: str = Field(
        default="0.0.0.0",
        description="Bind address of the HTTP server",
    )
    api_port: int = Field(
        default=8000,
        description="Port of the HTTP server",
    )

    # Relational store
    database_url: str = Field(
        default="sqlite:///./invoice_ingest.db",
        description="SQLAlchemy database URL",
    )
    database_echo: bool = Field(
        default=False,
        description="Log every SQL statement (debugging only)",
    )

    # Object storage (S3-compatible: MinIO, Cloudflare R2, AWS S3)
    storage_endpoint: str = Field(
        default="localhost:9000",
        description="S3-compatible storage endpoint (host:port)",
    )
    storage_access_key: str = Field(
        default="",
        description="Storage access key (use env var APP_STORAGE_ACCESS_KEY)",
    )
    storage_secret_key: str = Field(
        default="",
        description="Storage secret key (use env var APP_STORAGE_SECRET_KEY)",
    )
    storage_bucket: str = Field(
        default="invoices",
        description="Bucket holding uploaded invoice files",
    )
    storage_secure: bool = Field(
        default=True,
        description="Use HTTPS for storage connections",
    )
    storage_region: str | None = Field(
        default=None,
        description="Storage region ('auto' for Cloudflare R2)",
    )
    storage_upload_url_ttl_seconds: int = Field(
        default=600,
        gt=0,
        description="Lifetime of presigned upload URLs",
    )
    storage_download_url_ttl_seconds: int = Field(
        default=3600,
        gt=0,
        description="Lifetime of presigned download URLs",
    )

    # Extraction provider configuration
    extraction_provider: Literal["anthropic", "openai"] = Field(
        default="anthropic",
        description="Vision extraction provider: anthropic (Claude) or openai (GPT-4o family)",
    )
    extraction_model: str | None = Field(
        default=None,
        description="Model override (defaults to the provider's own default model)",
    )
    extraction_max_tokens: int = Field(
        default=500,
        gt=0,
        description="Upper bound on output tokens per extraction call",
    )
    extraction_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="HTTP timeout for a single extraction request",
    )
    extraction_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per extraction call on transient transport errors",
    )

    # Budget
    ocr_monthly_budget_cents: int = Field(
        default=1000,
        gt=0,
        description="Monthly extraction spending cap in cents (default $10)",
    )

    # Bulk upload limits
    bulk_upload_max_files: int = Field(
        default=20,
        gt=0,
        description="Maximum number of files accepted by one bulk upload",
    )
    upload_max_bytes: int = Field(
        default=10 * 1024 * 1024,
        gt=0,
        description="Maximum size of a single uploaded file",
    )

    # Matching
    match_candidate_limit: int = Field(
        default=200,
        gt=0,
        description="Maximum ledger entries scored per match query",
    )
    match_result_limit: int = Field(
        default=5,
        gt=0,
        description="Maximum suggestions returned per invoice",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
