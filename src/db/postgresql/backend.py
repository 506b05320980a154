"""
PostgreSQL Backend implementation.

This module provides the main PostgreSQLBackend class that implements
DatabaseBackendProtocol using SQLAlchemy ORM.
"""

from __future__ import annotations

from typing import Optional, Any, TYPE_CHECKING

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .connection import DatabaseSession, create_db_engine
from .models import Base
from .repositories import (
    ProfileRepository,
    ChallengeRepository,
    AttemptRepository,
)

if TYPE_CHECKING:
    from ..protocols import (
        ProfileRepositoryProtocol,
        ChallengeRepositoryProtocol,
        AttemptRepositoryProtocol,
    )


class PostgreSQLTransactionContext:
    """Transaction context manager for PostgreSQL.

    The context delimits a complete unit of work on the backend's
    session: everything done since the last commit is committed when
    the block exits normally, and rolled back if it raises. Contexts
    do not nest.

    Usage:
        with db.transaction():
            db.attempts.mark_solved(attempt.id, 1, 28, 28)
            db.profiles.apply_point_delta(user_id, 28, 28)
    """

    def __init__(self, backend: "PostgreSQLBackend") -> None:
        self._backend = backend

    def __enter__(self) -> "PostgreSQLTransactionContext":
        if self._backend._in_transaction:
            raise RuntimeError("Transactions cannot be nested")
        self._backend._in_transaction = True
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        """End the transaction - commit or rollback."""
        self._backend._in_transaction = False
        if exc_type is None:
            try:
                self._backend.commit()
            except Exception:
                self._backend.rollback()
                raise
        else:
            self._backend.rollback()
        return False  # Don't suppress exceptions


class PostgreSQLBackend:
    """PostgreSQL implementation of DatabaseBackendProtocol.

    Usage:
        from db.postgresql import PostgreSQLBackend

        db = PostgreSQLBackend(database_url="postgresql://...")

        # Reads
        profile = db.profiles.get("t2_abc")

        # Transactional operations
        with db.transaction():
            db.attempts.mark_solved(attempt.id, 1, 28, 28)
            db.profiles.apply_point_delta("t2_abc", 28, 28)
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        session_factory: Optional[Any] = None,
    ) -> None:
        """Initialize the PostgreSQL backend.

        Args:
            database_url: PostgreSQL connection URL. If not provided, reads from
                          DATABASE_URL environment variable.
            session_factory: A shared sessionmaker, as created once by the
                             SessionManager. Takes precedence over database_url.
        """
        self._db_session: Optional[DatabaseSession] = None
        if session_factory is None:
            # Standalone use: this backend owns its engine
            self._db_session = DatabaseSession(create_db_engine(database_url))
            session_factory = self._db_session.session_factory

        # The request-scoped session used by all repositories
        self._session: Session = session_factory()

        self._in_transaction: bool = False

        self._profiles = ProfileRepository(self._session)
        self._challenges = ChallengeRepository(self._session)
        self._attempts = AttemptRepository(self._session)

    @property
    def profiles(self) -> "ProfileRepositoryProtocol":
        """Access the Profile repository."""
        return self._profiles

    @property
    def challenges(self) -> "ChallengeRepositoryProtocol":
        """Access the Challenge repository."""
        return self._challenges

    @property
    def attempts(self) -> "AttemptRepositoryProtocol":
        """Access the Attempt repository."""
        return self._attempts

    @property
    def engine(self) -> Engine:
        bind = self._session.get_bind()
        assert isinstance(bind, Engine)
        return bind

    def transaction(self) -> PostgreSQLTransactionContext:
        """Begin a database transaction.

        Usage:
            with db.transaction():
                db.attempts.record_wrong_guess(attempt.id, 3, 10)
                db.profiles.apply_point_delta(user_id, -1)
                # Commits on success, rolls back on exception
        """
        return PostgreSQLTransactionContext(self)

    def flush(self) -> None:
        """Flush pending changes to the database without committing."""
        self._session.flush()

    def commit(self) -> None:
        """Commit the current transaction, making all changes permanent."""
        self._session.commit()

    def rollback(self) -> None:
        """Roll back the current transaction, discarding all changes."""
        self._session.rollback()

    def close(self) -> None:
        """Close the session, and the engine if this backend owns it."""
        self._session.close()
        if self._db_session is not None:
            self._db_session.close()

    def create_tables(self) -> None:
        """Create all database tables.

        This should only be called during initial setup or testing.
        For production, use proper migrations (e.g., Alembic).
        """
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        """Drop all database tables.

        WARNING: This deletes all data! Only use for testing.
        """
        Base.metadata.drop_all(self.engine)
