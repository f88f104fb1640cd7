"""Unit tests for storage key generation."""

import re

import pytest

from invoice_ingest.storage.keys import generate_invoice_key, is_entry_key, sanitize_filename

KEY_PATTERN = re.compile(r"^invoices/(orphan|\d+)/\d{13}-[0-9a-f]{8}-[a-zA-Z0-9._-]+$")


def test_sanitize_replaces_unsafe_characters() -> None:
    assert sanitize_filename("factura enero (1).pdf") == "factura_enero__1_.pdf"
    assert sanitize_filename("../../etc/passwd") == ".._.._etc_passwd"
    assert sanitize_filename("recibo-ñandú.jpg") == "recibo-_and_.jpg"


def test_sanitize_keeps_tail_of_long_names() -> None:
    name = "a" * 300 + ".pdf"
    sanitized = sanitize_filename(name)

    assert len(sanitized) == 120
    assert sanitized.endswith(".pdf")


def test_sanitize_empty_name_falls_back() -> None:
    assert sanitize_filename("   ") == "file"


def test_orphan_key_format() -> None:
    key = generate_invoice_key("factura enero.pdf")

    assert KEY_PATTERN.match(key)
    assert key.startswith("invoices/orphan/")
    assert key.endswith("-factura_enero.pdf")


def test_entry_key_uses_entry_namespace() -> None:
    key = generate_invoice_key("ticket.png", ledger_entry_id=42)

    assert KEY_PATTERN.match(key)
    assert key.startswith("invoices/42/")


def test_keys_never_collide() -> None:
    """Same file name uploaded repeatedly in a tight loop yields distinct keys."""
    keys = {generate_invoice_key("same.pdf") for _ in range(500)}
    assert len(keys) == 500


def test_issued_key_belongs_to_its_entry() -> None:
    key = generate_invoice_key("ticket.png", ledger_entry_id=42)

    assert is_entry_key(key, 42) is True
    assert is_entry_key(key, 4) is False
    assert is_entry_key(key, 420) is False


@pytest.mark.parametrize(
    "key",
    [
        "invoices/orphan/1739812345123-3f9c2a1b-a.pdf",
        "invoices/42/../7/1739812345123-3f9c2a1b-a.pdf",
        "invoices/42/1739812345123-3f9c2a1b-a.pdf/extra",
        "invoices/42/",
        "other/42/1739812345123-3f9c2a1b-a.pdf",
    ],
)
def test_foreign_keys_are_rejected(key: str) -> None:
    assert is_entry_key(key, 42) is False
