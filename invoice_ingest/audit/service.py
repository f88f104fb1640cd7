"""Audit trail of invoice operations.

Writes are fire-and-forget: an audit failure is logged and never reaches
the caller.
"""

import logging
from typing import Any

from starlette.requests import Request

from invoice_ingest.db.models import AuditLog
from invoice_ingest.db.session import Database
from invoice_ingest.shared.errors import PersistenceError

logger = logging.getLogger(__name__)


class AuditLogger:
    """Appends rows to the ``audit_log`` table."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def log(
        self,
        action: str,
        entity_type: str | None = None,
        entity_id: int | None = None,
        user_id: int | None = None,
        details: dict[str, Any] | None = None,
        ip_address: str | None = None,
    ) -> bool:
        """Record one action.

        Returns:
            True if the entry was written
        """
        try:
            with self.database.session_scope() as session:
                session.add(
                    AuditLog(
                        action=action,
                        entity_type=entity_type,
                        entity_id=entity_id,
                        user_id=user_id,
                        details=details or {},
                        ip_address=ip_address,
                    )
                )
            return True
        except PersistenceError as e:
            logger.error(f"Audit log failed for {action}: {e}")
            return False


def client_ip(request: Request) -> str:
    """Best-effort client address, honouring proxies that set X-Forwarded-For."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return "unknown"
