"""
Protocol definitions for the relational store.

This module defines the interface contracts between the game engine and
its persistence collaborators: the profile store, the challenge store and
the attempt store. Using Protocol classes enables structural subtyping,
so backends don't need to explicitly inherit from these classes.

Repositories return plain dataclasses rather than ORM instances, and
raise sqlalchemy.exc.SQLAlchemyError (or a subclass) on storage failure.
"""

from __future__ import annotations

from typing import (
    Protocol,
    Optional,
    List,
    Dict,
    Any,
    Sequence,
    FrozenSet,
)
from datetime import datetime
from dataclasses import dataclass, field


# =============================================================================
# Data Transfer Objects
# =============================================================================


@dataclass
class Profile:
    """A player's profile. The authoritative home of the point total."""

    user_id: str
    username: str
    total_points: int = 0
    total_experience: int = 0
    level: int = 1
    challenges_created: int = 0
    challenges_attempted: int = 0
    challenges_solved: int = 0
    current_streak: int = 0
    best_streak: int = 0
    role: str = "player"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Challenge:
    """A puzzle: 2 or 3 images linked by a concept."""

    id: str
    creator_id: str
    creator_username: str
    title: str
    correct_answer: str
    max_score: int
    score_deduction_per_hint: int
    image_count: int
    answer_set: Optional[Dict[str, List[str]]] = None
    answer_explanation: Optional[str] = None
    image_descriptions: List[str] = field(default_factory=list)
    players_played: int = 0
    players_completed: int = 0
    created_at: Optional[datetime] = None

    def accepted_answers(self) -> Dict[str, List[str]]:
        """The answer set used for matching. Older challenges only
        have a single correct answer and no close answers."""
        if self.answer_set and self.answer_set.get("correct"):
            return {
                "correct": list(self.answer_set.get("correct") or []),
                "close": list(self.answer_set.get("close") or []),
            }
        if self.correct_answer:
            return {"correct": [self.correct_answer], "close": []}
        return {"correct": [], "close": []}


@dataclass
class Attempt:
    """A player's progress on one challenge."""

    id: str
    user_id: str
    challenge_id: str
    attempts_made: int = 0
    is_solved: bool = False
    game_over: bool = False
    points_earned: int = 0
    experience_earned: int = 0
    hints_used: FrozenSet[int] = frozenset()
    attempted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass
class GuessRecord:
    """One evaluated guess, as kept in the attempt history."""

    attempt_id: str
    guess_text: str
    judgment: str
    created_at: Optional[datetime] = None


@dataclass
class RankedProfile:
    """A leaderboard row computed from the relational store."""

    user_id: str
    username: str
    level: int
    total_points: int


# =============================================================================
# Repository Protocols
# =============================================================================


class ProfileRepositoryProtocol(Protocol):
    """Protocol for Profile repository operations."""

    def get(self, user_id: str) -> Optional[Profile]:
        """Fetch a profile by user id."""
        ...

    def get_multi(self, user_ids: Sequence[str]) -> Dict[str, Profile]:
        """Fetch several profiles, keyed by user id. Missing ids are omitted."""
        ...

    def create(
        self,
        user_id: str,
        username: str,
        total_points: int = 0,
        role: str = "player",
    ) -> Profile:
        """Create a new profile."""
        ...

    def apply_point_delta(
        self,
        user_id: str,
        points_delta: int,
        exp_delta: int = 0,
        **counters: int,
    ) -> bool:
        """Atomically add to the point and experience totals and to the
        given counters (challenges_solved etc.). Returns False if the
        profile does not exist."""
        ...

    def deduct_points_if_available(self, user_id: str, amount: int) -> bool:
        """Atomically deduct points if the balance covers the amount.
        Returns False if it does not (or the profile is missing)."""
        ...

    def raise_level(self, user_id: str, level: int) -> bool:
        """Set the level if it is higher than the stored one."""
        ...

    def set_streak(self, user_id: str, value: int) -> bool:
        """Set the current streak."""
        ...

    def increment_streak(self, user_id: str) -> bool:
        """Increment the current streak, raising the best streak with it."""
        ...

    def count(self) -> int:
        """Number of profiles on the leaderboard."""
        ...

    def list_by_points(self, offset: int, limit: int) -> List[RankedProfile]:
        """Profiles in leaderboard order (points descending)."""
        ...

    def rank_of(self, user_id: str) -> Optional[int]:
        """1-indexed leaderboard position, or None if not found."""
        ...

    def all_totals(self) -> Dict[str, int]:
        """Lifetime points of every profile on the leaderboard."""
        ...


class ChallengeRepositoryProtocol(Protocol):
    """Protocol for Challenge repository operations."""

    def get(self, challenge_id: str) -> Optional[Challenge]:
        """Fetch a challenge by id."""
        ...

    def create(self, **kwargs: Any) -> Challenge:
        """Create a challenge (used by the creation flow and in tests)."""
        ...

    def increment_players_played(self, challenge_id: str) -> bool:
        """Atomically count a new player of the challenge."""
        ...

    def increment_players_completed(self, challenge_id: str) -> bool:
        """Atomically count a new solver of the challenge."""
        ...


class AttemptRepositoryProtocol(Protocol):
    """Protocol for Attempt repository operations."""

    def get(self, user_id: str, challenge_id: str) -> Optional[Attempt]:
        """Fetch the attempt of a user on a challenge."""
        ...

    def create(self, user_id: str, challenge_id: str) -> Optional[Attempt]:
        """Create a fresh attempt. Returns None if one already exists,
        for instance when a concurrent request created it first."""
        ...

    def record_wrong_guess(
        self, attempt_id: str, seen_attempts: int, max_attempts: int
    ) -> bool:
        """Increment attempts_made if it still equals seen_attempts and the
        game is not over, ending the game when max_attempts is reached.
        Returns False if another request got there first."""
        ...

    def mark_solved(
        self, attempt_id: str, seen_attempts: int, points: int, experience: int
    ) -> bool:
        """Mark an open attempt as solved, if attempts_made still equals
        seen_attempts, from which the reward was priced. Returns False
        if the attempt was already over or another guess got in first."""
        ...

    def give_up(self, attempt_id: str) -> bool:
        """End an open attempt without a solve. Returns False if it
        was already over."""
        ...

    def add_hint(self, attempt_id: str, image_index: int) -> bool:
        """Record a revealed image. Returns False if it was already revealed."""
        ...

    def claim_award(self, attempt_id: str, kind: str) -> bool:
        """Claim the idempotency key for a point delta caused by an attempt.
        Returns False if the key was claimed before."""
        ...

    def add_guess(self, attempt_id: str, guess_text: str, judgment: str) -> None:
        """Append a guess to the attempt history."""
        ...

    def list_guesses(self, attempt_id: str) -> List[GuessRecord]:
        """The guess history of an attempt, oldest first."""
        ...

    def list_for_user(self, user_id: str) -> List[Attempt]:
        """All attempts of a user, newest first."""
        ...


# =============================================================================
# Transaction Context Protocol
# =============================================================================


class TransactionContextProtocol(Protocol):
    """Protocol for transaction context managers."""

    def __enter__(self) -> TransactionContextProtocol:
        ...

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        ...


# =============================================================================
# Database Backend Protocol
# =============================================================================


class DatabaseBackendProtocol(Protocol):
    """Protocol for the complete database backend.

    This is the main entry point for database operations. Implementations
    provide access to all repositories and transaction management.
    """

    @property
    def profiles(self) -> ProfileRepositoryProtocol:
        """Access the Profile repository."""
        ...

    @property
    def challenges(self) -> ChallengeRepositoryProtocol:
        """Access the Challenge repository."""
        ...

    @property
    def attempts(self) -> AttemptRepositoryProtocol:
        """Access the Attempt repository."""
        ...

    def transaction(self) -> TransactionContextProtocol:
        """Run a unit of work that commits on success and rolls back
        on exception.

        Usage:
            with db.transaction():
                db.attempts.mark_solved(attempt.id, 1, 28, 28)
                db.profiles.apply_point_delta(user_id, 28, 28)
        """
        ...

    def commit(self) -> None:
        """Commit the current transaction."""
        ...

    def rollback(self) -> None:
        """Roll back the current transaction."""
        ...

    def close(self) -> None:
        """Close database connections and clean up resources."""
        ...

