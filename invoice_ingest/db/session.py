"""Database engine and transaction scope.

Every unit of work runs inside ``Database.session_scope()``: all statements
issued in the block commit together or not at all. Driver errors surface as
``PersistenceError`` so callers never depend on SQLAlchemy exception types.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from invoice_ingest.db.models import Base
from invoice_ingest.shared.config import Settings
from invoice_ingest.shared.errors import PersistenceError

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


class Database:
    """Owns the SQLAlchemy engine and session factory."""

    def __init__(self, url: str, echo: bool = False) -> None:
        """Create engine for ``url``.

        Args:
            url: SQLAlchemy database URL
            echo: Log SQL statements
        """
        self.url = url
        engine_kwargs: dict[str, Any] = {"echo": echo, "pool_pre_ping": True}

        is_sqlite = url.startswith("sqlite")
        if is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool

        self.engine: Engine = create_engine(url, **engine_kwargs)
        if is_sqlite:
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self._session_factory = sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(settings.database_url, echo=settings.database_echo)

    def create_all(self) -> None:
        """Create missing tables. Schema migrations are managed outside this service."""
        Base.metadata.create_all(self.engine)

    def health_check(self) -> bool:
        try:
            with self.engine.connect() as connection:
                connection.exec_driver_sql("SELECT 1")
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Run a block in one transaction.

        Commits when the block finishes, rolls back on any exception.

        Raises:
            PersistenceError: If the database rejects a statement or the commit
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Database operation failed: {e}") from e
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()
