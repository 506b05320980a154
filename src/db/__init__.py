"""
Relational store for Guess The Link.

This package holds the authoritative game state: profiles with their
point totals, challenges, and attempts. The interface is defined by the
Protocol classes in db.protocols; db.postgresql implements it with
SQLAlchemy on PostgreSQL (and on SQLite, for tests).

Usage:
    # In application startup (main.py):
    from db import SessionManager
    session_manager = SessionManager(database_url="...")

    # Per request:
    with session_manager.request_context() as db:
        profile = db.profiles.get("t2_abc")
        # Changes committed at request end
"""

from __future__ import annotations

from .session import SessionManager
from .postgresql import PostgreSQLBackend
from .protocols import (
    Profile,
    Challenge,
    Attempt,
    GuessRecord,
    RankedProfile,
    DatabaseBackendProtocol,
)

__all__ = [
    "SessionManager",
    "PostgreSQLBackend",
    "DatabaseBackendProtocol",
    "Profile",
    "Challenge",
    "Attempt",
    "GuessRecord",
    "RankedProfile",
]
