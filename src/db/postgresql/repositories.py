"""
Repository implementations for PostgreSQL backend.

These classes implement the repository protocols using SQLAlchemy ORM.

Every change to a counter or balance is a single UPDATE statement whose
SET clause refers to the stored value (SET x = x + :d) and whose WHERE
clause carries the precondition, so concurrent requests never overwrite
each other's increments. The affected row count tells the caller whether
the precondition held.
"""

from __future__ import annotations

from typing import (
    Optional,
    List,
    Dict,
    Sequence,
    Any,
    Type,
)
from datetime import datetime, timezone

from sqlalchemy import select, update, insert, func, desc, asc, or_, and_, case
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import (
    Base,
    UserProfile,
    Challenge as ChallengeModel,
    ChallengeAttempt,
    AttemptHint,
    AttemptGuess,
    PointAward,
    new_id,
)

from ..protocols import (
    Profile,
    Challenge,
    Attempt,
    GuessRecord,
    RankedProfile,
)

UTC = timezone.utc

# Profile counters that apply_point_delta() may increment
PROFILE_COUNTERS = frozenset(
    ("challenges_created", "challenges_attempted", "challenges_solved")
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _insert_if_absent(session: Session, model: Type[Base], **values: Any) -> bool:
    """Insert a row unless one with the same key exists.
    Returns True if the row was inserted."""
    table: Any = model.__table__
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt: Any = pg_insert(table).values(**values).on_conflict_do_nothing()
    elif dialect == "sqlite":
        stmt = sqlite_insert(table).values(**values).on_conflict_do_nothing()
    else:
        try:
            with session.begin_nested():
                session.connection().execute(insert(table).values(**values))
            return True
        except IntegrityError:
            return False
    result = session.connection().execute(stmt)
    return result.rowcount > 0


def _user_id_bytewise(session: Session) -> Any:
    """The user id column, compared byte by byte as Redis compares
    members. SQLite compares text that way by default; PostgreSQL
    uses the collation of the database unless told otherwise."""
    if session.get_bind().dialect.name == "postgresql":
        return UserProfile.user_id.collate("C")
    return UserProfile.user_id


def _execute_update(session: Session, stmt: Any) -> bool:
    """Execute a conditional UPDATE; True if a row was affected"""
    result = session.execute(
        stmt.execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def _profile(row: UserProfile) -> Profile:
    return Profile(
        user_id=row.user_id,
        username=row.username,
        total_points=row.total_points,
        total_experience=row.total_experience,
        level=row.level,
        challenges_created=row.challenges_created,
        challenges_attempted=row.challenges_attempted,
        challenges_solved=row.challenges_solved,
        current_streak=row.current_streak,
        best_streak=row.best_streak,
        role=row.role,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _challenge(row: ChallengeModel) -> Challenge:
    return Challenge(
        id=row.id,
        creator_id=row.creator_id,
        creator_username=row.creator_username,
        title=row.title,
        correct_answer=row.correct_answer,
        max_score=row.max_score,
        score_deduction_per_hint=row.score_deduction_per_hint,
        image_count=row.image_count,
        answer_set=row.answer_set,
        answer_explanation=row.answer_explanation,
        image_descriptions=list(row.image_descriptions or []),
        players_played=row.players_played,
        players_completed=row.players_completed,
        created_at=row.created_at,
    )


class ProfileRepository:
    """PostgreSQL implementation of ProfileRepositoryProtocol."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, user_id: str) -> Optional[Profile]:
        """Fetch a profile by user id."""
        row = self._session.get(UserProfile, user_id, populate_existing=True)
        return _profile(row) if row else None

    def get_multi(self, user_ids: Sequence[str]) -> Dict[str, Profile]:
        """Fetch several profiles, keyed by user id."""
        if not user_ids:
            return {}
        stmt = (
            select(UserProfile)
            .where(UserProfile.user_id.in_(list(user_ids)))
            .execution_options(populate_existing=True)
        )
        rows = self._session.execute(stmt).scalars()
        return {row.user_id: _profile(row) for row in rows}

    def create(
        self,
        user_id: str,
        username: str,
        total_points: int = 0,
        role: str = "player",
    ) -> Profile:
        """Create a new profile."""
        row = UserProfile(
            user_id=user_id,
            username=username,
            total_points=total_points,
            total_experience=0,
            level=1,
            challenges_created=0,
            challenges_attempted=0,
            challenges_solved=0,
            current_streak=0,
            best_streak=0,
            role=role,
        )
        self._session.add(row)
        self._session.flush()
        return _profile(row)

    def apply_point_delta(
        self,
        user_id: str,
        points_delta: int,
        exp_delta: int = 0,
        **counters: int,
    ) -> bool:
        """Add to the point and experience totals, and to the given
        statistics counters, in one statement."""
        values: Dict[Any, Any] = {
            UserProfile.total_points: UserProfile.total_points + points_delta,
            UserProfile.total_experience: UserProfile.total_experience + exp_delta,
            UserProfile.updated_at: _utcnow(),
        }
        for name, delta in counters.items():
            if name not in PROFILE_COUNTERS:
                raise ValueError(f"Unknown profile counter: {name}")
            column = getattr(UserProfile, name)
            values[column] = column + delta
        stmt = update(UserProfile).where(UserProfile.user_id == user_id).values(values)
        return _execute_update(self._session, stmt)

    def deduct_points_if_available(self, user_id: str, amount: int) -> bool:
        """Deduct points if the balance covers the amount."""
        stmt = (
            update(UserProfile)
            .where(
                UserProfile.user_id == user_id,
                UserProfile.total_points >= amount,
            )
            .values(
                total_points=UserProfile.total_points - amount,
                updated_at=_utcnow(),
            )
        )
        return _execute_update(self._session, stmt)

    def raise_level(self, user_id: str, level: int) -> bool:
        """Set the level if it is higher than the stored one."""
        stmt = (
            update(UserProfile)
            .where(UserProfile.user_id == user_id, UserProfile.level < level)
            .values(level=level)
        )
        return _execute_update(self._session, stmt)

    def set_streak(self, user_id: str, value: int) -> bool:
        stmt = (
            update(UserProfile)
            .where(UserProfile.user_id == user_id)
            .values(current_streak=value)
        )
        return _execute_update(self._session, stmt)

    def increment_streak(self, user_id: str) -> bool:
        """Increment the current streak, raising the best streak with it."""
        new_streak = UserProfile.current_streak + 1
        stmt = (
            update(UserProfile)
            .where(UserProfile.user_id == user_id)
            .values(
                current_streak=new_streak,
                best_streak=case(
                    (UserProfile.best_streak < new_streak, new_streak),
                    else_=UserProfile.best_streak,
                ),
            )
        )
        return _execute_update(self._session, stmt)

    def count(self) -> int:
        """Number of profiles on the leaderboard."""
        stmt = select(func.count()).select_from(UserProfile)
        return self._session.execute(stmt).scalar() or 0

    def list_by_points(self, offset: int, limit: int) -> List[RankedProfile]:
        """Profiles in leaderboard order. Ties are ordered by user id,
        descending, which matches the order of the sorted-set index."""
        if limit <= 0:
            return []
        stmt = (
            select(
                UserProfile.user_id,
                UserProfile.username,
                UserProfile.level,
                UserProfile.total_points,
            )
            .order_by(
                desc(UserProfile.total_points),
                desc(_user_id_bytewise(self._session)),
            )
            .offset(max(0, offset))
            .limit(limit)
        )
        return [
            RankedProfile(
                user_id=row.user_id,
                username=row.username,
                level=row.level,
                total_points=row.total_points,
            )
            for row in self._session.execute(stmt)
        ]

    def rank_of(self, user_id: str) -> Optional[int]:
        """1-indexed leaderboard position, or None if not found."""
        points = self._session.execute(
            select(UserProfile.total_points).where(UserProfile.user_id == user_id)
        ).scalar_one_or_none()
        if points is None:
            return None
        stmt = (
            select(func.count())
            .select_from(UserProfile)
            .where(
                or_(
                    UserProfile.total_points > points,
                    and_(
                        UserProfile.total_points == points,
                        _user_id_bytewise(self._session) > user_id,
                    ),
                )
            )
        )
        ahead = self._session.execute(stmt).scalar() or 0
        return ahead + 1

    def all_totals(self) -> Dict[str, int]:
        """Lifetime points of every profile."""
        stmt = select(UserProfile.user_id, UserProfile.total_points)
        return {row.user_id: row.total_points for row in self._session.execute(stmt)}


class ChallengeRepository:
    """PostgreSQL implementation of ChallengeRepositoryProtocol."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, challenge_id: str) -> Optional[Challenge]:
        """Fetch a challenge by id."""
        row = self._session.get(ChallengeModel, challenge_id, populate_existing=True)
        return _challenge(row) if row else None

    def create(self, **kwargs: Any) -> Challenge:
        """Create a challenge. The creator's challenges_created
        counter is maintained by the creation flow."""
        kwargs.setdefault("id", new_id())
        kwargs.setdefault("players_played", 0)
        kwargs.setdefault("players_completed", 0)
        descriptions = kwargs.setdefault("image_descriptions", [])
        kwargs.setdefault("image_count", len(descriptions) or 3)
        row = ChallengeModel(**kwargs)
        self._session.add(row)
        self._session.flush()
        return _challenge(row)

    def _increment(self, challenge_id: str, column: Any) -> bool:
        stmt = (
            update(ChallengeModel)
            .where(ChallengeModel.id == challenge_id)
            .values({column: column + 1})
        )
        return _execute_update(self._session, stmt)

    def increment_players_played(self, challenge_id: str) -> bool:
        return self._increment(challenge_id, ChallengeModel.players_played)

    def increment_players_completed(self, challenge_id: str) -> bool:
        return self._increment(challenge_id, ChallengeModel.players_completed)


class AttemptRepository:
    """PostgreSQL implementation of AttemptRepositoryProtocol."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def _hints(self, attempt_id: str) -> frozenset[int]:
        stmt = select(AttemptHint.image_index).where(
            AttemptHint.attempt_id == attempt_id
        )
        return frozenset(self._session.execute(stmt).scalars())

    def _to_attempt(self, row: ChallengeAttempt) -> Attempt:
        return Attempt(
            id=row.id,
            user_id=row.user_id,
            challenge_id=row.challenge_id,
            attempts_made=row.attempts_made,
            is_solved=row.is_solved,
            game_over=row.game_over,
            points_earned=row.points_earned,
            experience_earned=row.experience_earned,
            hints_used=self._hints(row.id),
            attempted_at=row.attempted_at,
            completed_at=row.completed_at,
        )

    def get(self, user_id: str, challenge_id: str) -> Optional[Attempt]:
        """Fetch the attempt of a user on a challenge."""
        stmt = (
            select(ChallengeAttempt)
            .where(
                ChallengeAttempt.user_id == user_id,
                ChallengeAttempt.challenge_id == challenge_id,
            )
            .execution_options(populate_existing=True)
        )
        row = self._session.execute(stmt).scalar_one_or_none()
        return self._to_attempt(row) if row else None

    def create(self, user_id: str, challenge_id: str) -> Optional[Attempt]:
        """Create a fresh attempt, unless the user already has one
        on this challenge."""
        inserted = _insert_if_absent(
            self._session,
            ChallengeAttempt,
            id=new_id(),
            user_id=user_id,
            challenge_id=challenge_id,
            attempts_made=0,
            is_solved=False,
            game_over=False,
            points_earned=0,
            experience_earned=0,
            attempted_at=_utcnow(),
        )
        if not inserted:
            return None
        return self.get(user_id, challenge_id)

    def record_wrong_guess(
        self, attempt_id: str, seen_attempts: int, max_attempts: int
    ) -> bool:
        """Compare-and-set of attempts_made, from the value the caller
        read to the next one. The game ends at max_attempts."""
        attempts_made = seen_attempts + 1
        game_over = attempts_made >= max_attempts
        stmt = (
            update(ChallengeAttempt)
            .where(
                ChallengeAttempt.id == attempt_id,
                ChallengeAttempt.attempts_made == seen_attempts,
                ChallengeAttempt.game_over.is_(False),
            )
            .values(
                attempts_made=attempts_made,
                game_over=game_over,
                completed_at=_utcnow() if game_over else None,
            )
        )
        return _execute_update(self._session, stmt)

    def mark_solved(
        self, attempt_id: str, seen_attempts: int, points: int, experience: int
    ) -> bool:
        """Mark an open attempt as solved, at the attempt count
        the reward was priced from."""
        stmt = (
            update(ChallengeAttempt)
            .where(
                ChallengeAttempt.id == attempt_id,
                ChallengeAttempt.attempts_made == seen_attempts,
                ChallengeAttempt.game_over.is_(False),
            )
            .values(
                is_solved=True,
                game_over=True,
                points_earned=points,
                experience_earned=experience,
                completed_at=_utcnow(),
            )
        )
        return _execute_update(self._session, stmt)

    def give_up(self, attempt_id: str) -> bool:
        """End an open attempt, unsolved."""
        stmt = (
            update(ChallengeAttempt)
            .where(
                ChallengeAttempt.id == attempt_id,
                ChallengeAttempt.game_over.is_(False),
            )
            .values(game_over=True, completed_at=_utcnow())
        )
        return _execute_update(self._session, stmt)

    def add_hint(self, attempt_id: str, image_index: int) -> bool:
        """Record a revealed image, once."""
        return _insert_if_absent(
            self._session,
            AttemptHint,
            attempt_id=attempt_id,
            image_index=image_index,
            revealed_at=_utcnow(),
        )

    def claim_award(self, attempt_id: str, kind: str) -> bool:
        """Claim the idempotency key of a point delta."""
        return _insert_if_absent(
            self._session,
            PointAward,
            attempt_id=attempt_id,
            kind=kind,
            created_at=_utcnow(),
        )

    def add_guess(self, attempt_id: str, guess_text: str, judgment: str) -> None:
        self._session.add(
            AttemptGuess(
                attempt_id=attempt_id,
                guess_text=guess_text,
                judgment=judgment,
                created_at=_utcnow(),
            )
        )
        self._session.flush()

    def list_guesses(self, attempt_id: str) -> List[GuessRecord]:
        """The guess history of an attempt, oldest first."""
        stmt = (
            select(AttemptGuess)
            .where(AttemptGuess.attempt_id == attempt_id)
            .order_by(asc(AttemptGuess.id))
        )
        return [
            GuessRecord(
                attempt_id=row.attempt_id,
                guess_text=row.guess_text,
                judgment=row.judgment,
                created_at=row.created_at,
            )
            for row in self._session.execute(stmt).scalars()
        ]

    def list_for_user(self, user_id: str) -> List[Attempt]:
        """All attempts of a user, newest first."""
        stmt = (
            select(ChallengeAttempt)
            .where(ChallengeAttempt.user_id == user_id)
            .order_by(desc(ChallengeAttempt.attempted_at))
            .execution_options(populate_existing=True)
        )
        return [self._to_attempt(row) for row in self._session.execute(stmt).scalars()]
