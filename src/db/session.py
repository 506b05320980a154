"""
Request-scoped database session management.

This module owns the shared SQLAlchemy engine and hands out one backend
per request. There is no global backend: the application creates a
SessionManager at startup and passes the backend it yields to whatever
needs it.

Transaction Model:
- Each request operates on its own session
- Units of work that must be atomic use backend.transaction()
- Whatever is left pending is committed at successful request completion
- Rollback happens on any exception
"""

from __future__ import annotations

import logging
from typing import Optional, Any, Iterator, TYPE_CHECKING
from contextlib import contextmanager

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .config import get_config
from .postgresql.connection import create_db_engine
from .postgresql.models import Base

if TYPE_CHECKING:
    from .postgresql import PostgreSQLBackend

# Logger for this module
_log = logging.getLogger(__name__)


class SessionManager:
    """Manages the engine and the lifecycle of request-scoped backends.

    Usage:
        # Initialize once at application startup
        session_manager = SessionManager(database_url="...")

        # Per request
        with session_manager.request_context() as db:
            profile = db.profiles.get("t2_abc")
            # On successful completion, changes are committed
            # On exception, changes are rolled back
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
    ) -> None:
        """Initialize the session manager.

        Args:
            database_url: Database connection URL. If not provided,
                          reads from DATABASE_URL environment variable.
            engine: An existing engine to use instead of creating one.
        """
        if engine is None:
            url = database_url or get_config().database_url
            if not url:
                raise ValueError(
                    "DATABASE_URL required. "
                    "Set via environment or database_url parameter."
                )
            engine = create_db_engine(url)
        self._engine = engine
        # Shared sessionmaker (created once, used by all requests)
        self._session_factory: Any = sessionmaker(
            bind=engine,
            expire_on_commit=False,
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_tables(self) -> None:
        """Create all tables that do not exist yet"""
        Base.metadata.create_all(self._engine)

    def create_backend(self) -> "PostgreSQLBackend":
        """Create a new backend with its own session"""
        from .postgresql import PostgreSQLBackend

        return PostgreSQLBackend(session_factory=self._session_factory)

    @contextmanager
    def request_context(self) -> Iterator["PostgreSQLBackend"]:
        """Context manager for request-scoped database operations.

        This wraps the entire request lifecycle:
        1. Creates a backend/session for this request
        2. Yields the backend for use
        3. Commits on successful completion
        4. Rolls back on any exception
        5. Closes the session

        Yields:
            The database backend for this request.
        """
        backend = self.create_backend()
        try:
            yield backend
        except Exception:
            try:
                backend.rollback()
            except Exception as e:
                _log.warning(f"Error during rollback: {e}")
            raise
        else:
            try:
                backend.commit()
            except Exception as e:
                _log.error(f"Error during commit: {e}")
                backend.rollback()
                raise
        finally:
            try:
                backend.close()
            except Exception as e:
                _log.warning(f"Error closing backend: {e}")

    def dispose(self) -> None:
        """Close all pooled connections"""
        self._engine.dispose()
