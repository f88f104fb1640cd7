"""Object key generation for uploaded invoices.

Keys look like ``invoices/orphan/1739812345123-3f9c2a1b-factura_enero.pdf``
or ``invoices/42/1739812345123-3f9c2a1b-factura_enero.pdf``: a namespace
segment (``orphan`` or the ledger entry id), a millisecond timestamp, a random
suffix so two uploads in the same millisecond never collide, and the
sanitized original file name.
"""

import re
import time
import uuid

KEY_PREFIX = "invoices"
ORPHAN_NAMESPACE = "orphan"
MAX_FILENAME_LENGTH = 120

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_filename(file_name: str) -> str:
    """Replace anything outside ``[a-zA-Z0-9.-]`` with underscores."""
    sanitized = _UNSAFE_CHARS.sub("_", file_name.strip())[-MAX_FILENAME_LENGTH:]
    return sanitized or "file"


def generate_invoice_key(file_name: str, ledger_entry_id: int | None = None) -> str:
    """Build a globally unique storage key for a new upload.

    Args:
        file_name: Original file name as uploaded
        ledger_entry_id: Ledger entry the file belongs to, or None for orphan uploads

    Returns:
        Storage key, never reused
    """
    namespace = ORPHAN_NAMESPACE if ledger_entry_id is None else str(ledger_entry_id)
    timestamp_ms = int(time.time() * 1000)
    nonce = uuid.uuid4().hex[:8]
    return f"{KEY_PREFIX}/{namespace}/{timestamp_ms}-{nonce}-{sanitize_filename(file_name)}"


_ENTRY_KEY_NAME = re.compile(r"\d+-[0-9a-f]{8}-[a-zA-Z0-9._-]+")


def is_entry_key(storage_key: str, ledger_entry_id: int) -> bool:
    """Check that ``storage_key`` is an upload slot issued for ``ledger_entry_id``."""
    prefix = f"{KEY_PREFIX}/{ledger_entry_id}/"
    if not storage_key.startswith(prefix):
        return False
    return _ENTRY_KEY_NAME.fullmatch(storage_key[len(prefix) :]) is not None
