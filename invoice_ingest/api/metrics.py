"""Prometheus metrics for the API service.

Exposes:
- Request counts by endpoint and status
- Request duration histograms
- Per-file bulk upload outcomes
- Extraction spend for the current month

Extraction call duration and cost counters live next to the code that makes
the calls (``invoice_ingest.ingest.orchestrator``).

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 120.0),
)

# Ingestion metrics
invoices_ingested_total = Counter(
    "invoices_ingested_total",
    "Files processed by bulk upload",
    ["outcome"],  # INVALID, FAILED, BUDGET_EXCEEDED, COMPLETED
)

invoice_upload_size_bytes = Histogram(
    "invoice_upload_size_bytes",
    "Uploaded invoice size in bytes",
    buckets=(1024, 10240, 102400, 1048576, 10485760),  # 1KB to 10MB
)

# Budget metrics
ocr_monthly_spend_cents = Gauge(
    "ocr_monthly_spend_cents",
    "Extraction spend of the current calendar month in cents",
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
