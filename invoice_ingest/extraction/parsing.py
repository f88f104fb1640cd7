"""Parsing and sanitization of extraction replies.

Model output is untrusted. A reply that cannot be parsed yields empty fields,
never an exception: the call has already been paid for and its token usage
must still be recorded.
"""

import json
import logging
import math
import re
from datetime import date
from typing import Any

from invoice_ingest.extraction.schema import ExtractedInvoiceFields
from invoice_ingest.shared.errors import ExtractionParseError

logger = logging.getLogger(__name__)

MAX_VENDOR_LENGTH = 500
MAX_INVOICE_NUMBER_LENGTH = 200

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_decoder = json.JSONDecoder()


def extract_json_object(raw_text: str) -> dict[str, Any]:
    """Return the first top-level JSON object embedded in ``raw_text``.

    Tolerates markdown fences and prose around the object.

    Raises:
        ExtractionParseError: If no object can be decoded
    """
    start = raw_text.find("{")
    if start < 0:
        raise ExtractionParseError("No JSON object found in response")

    try:
        parsed, _ = _decoder.raw_decode(raw_text, start)
    except json.JSONDecodeError as e:
        raise ExtractionParseError(f"Invalid JSON in response: {e}") from e

    if not isinstance(parsed, dict):
        raise ExtractionParseError("Response JSON is not an object")
    return parsed


def sanitize_amount(value: Any) -> float | None:
    """Keep only finite positive numbers, rounded to cents."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return round(float(value), 2)


def sanitize_date(value: Any) -> date | None:
    """Accept only strict ``YYYY-MM-DD`` strings naming a real calendar day."""
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not _ISO_DATE.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def sanitize_text(value: Any, max_length: int) -> str | None:
    """Trim and hard-truncate free text; empty results become None."""
    if not isinstance(value, str):
        return None
    text = value.strip()[:max_length].strip()
    return text or None


def sanitize_fields(payload: dict[str, Any]) -> ExtractedInvoiceFields:
    """Build sanitized fields from a decoded reply.

    Accepts both ``invoiceNumber`` (as requested by the prompt) and
    ``invoice_number`` keys.
    """
    invoice_number = payload.get("invoiceNumber", payload.get("invoice_number"))
    return ExtractedInvoiceFields(
        amount=sanitize_amount(payload.get("amount")),
        date=sanitize_date(payload.get("date")),
        vendor=sanitize_text(payload.get("vendor"), MAX_VENDOR_LENGTH),
        invoice_number=sanitize_text(invoice_number, MAX_INVOICE_NUMBER_LENGTH),
    )


def parse_extraction_response(raw_text: str) -> ExtractedInvoiceFields:
    """Parse a raw model reply into sanitized fields.

    Args:
        raw_text: Text block returned by the extraction service

    Returns:
        Sanitized fields; all None if the reply holds no usable JSON object
    """
    try:
        payload = extract_json_object(raw_text)
    except ExtractionParseError as e:
        logger.warning(f"Unparseable extraction response ({len(raw_text)} chars): {e}")
        return ExtractedInvoiceFields()

    return sanitize_fields(payload)
