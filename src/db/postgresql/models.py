"""
SQLAlchemy ORM models for the PostgreSQL backend.

The tables mirror the game's relational schema: profiles hold the
authoritative point totals, challenges the puzzles, and attempts the
per-player progress together with guess history, revealed hints and
the point-award keys that make point deltas idempotent.

JSON columns become JSONB on PostgreSQL; other dialects (SQLite in tests)
fall back to plain JSON.
"""

from __future__ import annotations

from typing import Optional, List, Dict, Any
from datetime import datetime, timezone

import uuid

from sqlalchemy import (
    JSON,
    String,
    Text,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
)

# UTC timezone constant
UTC = timezone.utc

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def new_id() -> str:
    """Generate a new UUID for entity IDs."""
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class UserProfile(Base):
    """Player profile, statistics and progression."""

    __tablename__ = "user_profiles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[str] = mapped_column(String(128), nullable=False)

    # Progression
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_experience: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Statistics
    challenges_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    challenges_attempted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    challenges_solved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    best_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # 'player' or 'mod'
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="player")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        # Leaderboard order
        Index("ix_user_profiles_points", "total_points", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<UserProfile(user_id={self.user_id!r}, points={self.total_points})>"


class Challenge(Base):
    """A challenge definition: images, answers and scoring."""

    __tablename__ = "challenges"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    creator_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("user_profiles.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    creator_username: Mapped[str] = mapped_column(String(128), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)

    # Answers
    correct_answer: Mapped[str] = mapped_column(Text, nullable=False)
    answer_explanation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # {"correct": [...], "close": [...]}
    answer_set: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    # Images
    image_count: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    image_descriptions: Mapped[List[str]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    # Scoring
    max_score: Mapped[int] = mapped_column(Integer, nullable=False)
    score_deduction_per_hint: Mapped[int] = mapped_column(Integer, nullable=False)

    # Aggregate counters
    players_played: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    players_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return f"<Challenge(id={self.id!r}, title={self.title!r})>"


class ChallengeAttempt(Base):
    """A user's progress on a challenge; one per (user, challenge)."""

    __tablename__ = "challenge_attempts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("user_profiles.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    challenge_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("challenges.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Number of wrong guesses so far
    attempts_made: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_solved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    game_over: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    experience_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("user_id", "challenge_id", name="uq_user_challenge"),
    )

    def __repr__(self) -> str:
        return (
            f"<ChallengeAttempt(user_id={self.user_id!r}, "
            f"challenge_id={self.challenge_id!r}, attempts_made={self.attempts_made})>"
        )


class AttemptHint(Base):
    """An image whose description has been revealed in an attempt."""

    __tablename__ = "attempt_hints"

    attempt_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("challenge_attempts.id", ondelete="CASCADE"),
        primary_key=True,
    )
    image_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    revealed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class AttemptGuess(Base):
    """An individual guess made during an attempt."""

    __tablename__ = "attempt_guesses"

    # Sequential: the order of guesses within an attempt
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    attempt_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("challenge_attempts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    guess_text: Mapped[str] = mapped_column(Text, nullable=False)
    # 'correct', 'close' or 'incorrect'
    judgment: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class PointAward(Base):
    """Idempotency key of a point delta caused by an attempt.
    The delta and its key are written in the same transaction."""

    __tablename__ = "point_awards"

    attempt_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("challenge_attempts.id", ondelete="CASCADE"),
        primary_key=True,
    )
    # 'reward', 'creator_bonus', 'penalty:<n>'
    kind: Mapped[str] = mapped_column(String(32), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
