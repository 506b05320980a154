"""

    Attempt ledger

    Copyright © 2025 Miðeind ehf.

    The Creative Commons Attribution-NonCommercial 4.0
    International Public License (CC-BY-NC 4.0) applies to this software.
    For further information, see https://github.com/mideind/Netskrafl


    This module keeps track of each player's progress on each challenge
    and enforces the rules of a game:

        NEW -> IN_PROGRESS -> SOLVED
                           -> EXHAUSTED

    An attempt is created by the first guess or hint reveal. A correct
    guess solves it and pays out the reward; the tenth wrong guess ends
    it without a reward. The player may also give up, which ends an open
    attempt the same way and resets the winning streak. Once an attempt
    is over, further guesses replay the stored result and change nothing.

    Every transition is a conditional UPDATE that only succeeds if the
    attempt is still in the state that the request read. Every point
    delta is paired with an award key, inserted in the same transaction,
    so that a delta can never be applied twice for the same cause. A
    request that loses a race re-reads the attempt and returns what it
    finds.

"""

from __future__ import annotations

from typing import Callable, List, Optional, Tuple, TypeVar

import enum
import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from config import DEFAULT_SETTINGS, GameSettings
from db.protocols import (
    Attempt,
    Challenge,
    DatabaseBackendProtocol,
    GuessRecord,
    Profile,
)
from matcher import Judgment, classify, feedback, normalize
from rankstore import RankStore
from result import (
    AppError,
    Err,
    ErrorKind,
    Ok,
    Result,
    internal_error,
    not_found_error,
    storage_error,
    validation_error,
    with_retry,
)
from rewards import (
    Reward,
    calculate_level,
    hint_cost,
    potential_score,
    solve_payout,
)


T = TypeVar("T")

# Award keys; wrong-guess penalties are keyed by the guess number
REWARD_AWARD = "reward"
CREATOR_BONUS_AWARD = "creator_bonus"


def penalty_award(attempts_made: int) -> str:
    return f"penalty:{attempts_made}"


class AttemptState(str, enum.Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    SOLVED = "solved"
    EXHAUSTED = "exhausted"

    @classmethod
    def of(cls, attempt: Optional[Attempt]) -> AttemptState:
        """The state of a stored attempt (or of no attempt at all)"""
        if attempt is None:
            return cls.NEW
        if attempt.is_solved:
            return cls.SOLVED
        if attempt.game_over:
            return cls.EXHAUSTED
        return cls.IN_PROGRESS

    @property
    def terminal(self) -> bool:
        return self in (AttemptState.SOLVED, AttemptState.EXHAUSTED)


@dataclass(frozen=True)
class GuessOutcome:
    """The result of a guess, as returned to the player"""

    correct: bool
    game_over: bool
    attempts_made: int
    attempts_remaining: int
    # What a correct guess would pay now; 0 once the game is over
    potential_score: int
    message: str
    # None if the guess was not evaluated, i.e. the attempt was already over
    judgment: Optional[Judgment] = None
    # The answer explanation is only revealed once the game is over
    explanation: Optional[str] = None
    reward: Optional[Reward] = None
    # True if this is the stored result of an earlier request
    replayed: bool = False


@dataclass(frozen=True)
class HintOutcome:
    image_index: int
    description: str
    # 0 if the description had already been revealed
    cost: int
    remaining_points: int
    hints_used: Tuple[int, ...]
    potential_score: int


class _Superseded(Exception):
    """Another request changed the attempt after we read it"""


class _Abort(Exception):
    """A step failed; roll back the transaction and return the error"""

    def __init__(self, error: AppError) -> None:
        super().__init__(error.message)
        self.error = error


class AttemptLedger:
    """Per-(user, challenge) state machine over the relational store"""

    def __init__(
        self,
        db: DatabaseBackendProtocol,
        ranks: RankStore,
        settings: GameSettings = DEFAULT_SETTINGS,
    ) -> None:
        self._db = db
        self._ranks = ranks
        self._settings = settings

    # Reads

    def _read(self, operation: str, func: Callable[[], T]) -> Result[T]:
        """A database read, retried a bounded number of times"""

        def attempt() -> Result[T]:
            try:
                return Ok(func())
            except SQLAlchemyError as e:
                # Clear the failed transaction before retrying
                self._db.rollback()
                return storage_error(operation, str(e))

        return with_retry(
            attempt,
            retries=self._settings.storage_retries,
            backoff=self._settings.retry_backoff,
            operation=operation,
        )

    def _load(
        self, user_id: str, challenge_id: str, operation: str
    ) -> Result[Tuple[Challenge, Profile, Optional[Attempt]]]:
        """Load everything a guess or hint needs"""
        db = self._db
        loaded = self._read(
            operation,
            lambda: (
                db.challenges.get(challenge_id),
                db.profiles.get(user_id),
                db.attempts.get(user_id, challenge_id),
            ),
        )
        if isinstance(loaded, Err):
            return loaded
        challenge, profile, attempt = loaded.value
        if challenge is None:
            return not_found_error("Challenge", challenge_id, operation)
        if profile is None:
            return not_found_error("Profile", user_id, operation)
        return Ok((challenge, profile, attempt))

    def get_attempt(self, user_id: str, challenge_id: str) -> Result[Optional[Attempt]]:
        return self._read(
            "get_attempt", lambda: self._db.attempts.get(user_id, challenge_id)
        )

    def get_status(self, user_id: str, challenge_id: str) -> Result[Optional[Attempt]]:
        """The attempt if it is over (solved or exhausted), else None"""
        result = self.get_attempt(user_id, challenge_id)
        if isinstance(result, Err):
            return result
        attempt = result.value
        return Ok(attempt if AttemptState.of(attempt).terminal else None)

    def list_user_attempts(self, user_id: str) -> Result[List[Attempt]]:
        return self._read(
            "list_user_attempts", lambda: self._db.attempts.list_for_user(user_id)
        )

    def list_guesses(self, user_id: str, challenge_id: str) -> Result[List[GuessRecord]]:
        """The guess history of a player on a challenge, oldest first"""
        result = self.get_attempt(user_id, challenge_id)
        if isinstance(result, Err):
            return result
        attempt = result.value
        if attempt is None:
            return Ok([])
        return self._read(
            "list_guesses", lambda: self._db.attempts.list_guesses(attempt.id)
        )

    # Outcomes

    def _remaining(self, attempts_made: int) -> int:
        return max(0, self._settings.max_attempts - attempts_made)

    def _potential(self, challenge: Challenge, attempts_made: int) -> int:
        return potential_score(
            challenge.max_score,
            challenge.score_deduction_per_hint,
            attempts_made,
            self._settings.max_attempts,
        )

    def _stored_outcome(
        self, challenge: Challenge, attempt: Optional[Attempt]
    ) -> GuessOutcome:
        """The outcome as it stands in the database"""
        state = AttemptState.of(attempt)
        made = attempt.attempts_made if attempt else 0
        if attempt is not None and state == AttemptState.SOLVED:
            return GuessOutcome(
                correct=True,
                game_over=True,
                attempts_made=made,
                attempts_remaining=self._remaining(made),
                potential_score=0,
                message="You already solved this challenge.",
                explanation=challenge.answer_explanation,
                reward=Reward(attempt.points_earned, attempt.experience_earned),
                replayed=True,
            )
        if state == AttemptState.EXHAUSTED:
            return GuessOutcome(
                correct=False,
                game_over=True,
                attempts_made=made,
                attempts_remaining=0,
                potential_score=0,
                message=(
                    "No attempts left."
                    if made >= self._settings.max_attempts
                    else "You gave up on this challenge."
                ),
                explanation=challenge.answer_explanation,
                replayed=True,
            )
        return GuessOutcome(
            correct=False,
            game_over=False,
            attempts_made=made,
            attempts_remaining=self._remaining(made),
            potential_score=self._potential(challenge, made),
            message="Your guess was superseded by another one.",
            replayed=True,
        )

    # Writes

    def _apply(self, user_id: str, points: int, experience: int = 0, **counters: int) -> None:
        result = self._ranks.apply_delta(user_id, points, experience, **counters)
        if isinstance(result, Err):
            raise _Abort(result.error)

    def _raise_level(self, user_id: str) -> Tuple[int, int]:
        """Bring the stored level in line with the stored experience.
        Returns the levels before and after."""
        profile = self._db.profiles.get(user_id)
        if profile is None:
            raise _Abort(internal_error(f"Profile {user_id} vanished", "raise_level").error)
        level = calculate_level(profile.total_experience)
        if level > profile.level:
            self._db.profiles.raise_level(user_id, level)
            return profile.level, level
        return profile.level, profile.level

    def _ensure_attempt(self, user_id: str, challenge: Challenge) -> Attempt:
        """Fetch the attempt, creating it on first contact"""
        attempts = self._db.attempts
        attempt = attempts.get(user_id, challenge.id)
        if attempt is not None:
            return attempt
        created = attempts.create(user_id, challenge.id)
        if created is None:
            # Created by a concurrent request
            attempt = attempts.get(user_id, challenge.id)
            if attempt is None:
                raise _Abort(
                    internal_error("Attempt missing after conflict", "create").error
                )
            return attempt
        self._apply(user_id, 0, 0, challenges_attempted=1)
        self._db.challenges.increment_players_played(challenge.id)
        return created

    def _run(
        self, operation: str, unit_of_work: Callable[[], T]
    ) -> Tuple[Optional[T], Optional[AppError], bool]:
        """Run a unit of work in a transaction. Returns its value, or the
        error that rolled it back, or a superseded flag."""
        try:
            with self._db.transaction():
                value = unit_of_work()
        except _Superseded:
            self._ranks.discard()
            return None, None, True
        except _Abort as e:
            self._ranks.discard()
            return None, e.error, False
        except SQLAlchemyError as e:
            self._ranks.discard()
            logging.warning(f"Database error in {operation}, rolled back: {e}")
            return None, storage_error(operation, str(e)).error, False
        self._ranks.publish()
        return value, None, False

    def submit_guess(
        self, user_id: str, challenge_id: str, raw_guess: str
    ) -> Result[GuessOutcome]:
        """Evaluate a guess and apply its consequences"""
        loaded = self._load(user_id, challenge_id, "submit_guess")
        if isinstance(loaded, Err):
            return loaded
        challenge, _, attempt = loaded.value
        if AttemptState.of(attempt).terminal:
            return Ok(self._stored_outcome(challenge, attempt))

        classified = classify(raw_guess, challenge.accepted_answers())
        if isinstance(classified, Err):
            return classified
        judgment = classified.value
        guess_text = normalize(raw_guess)

        def guess() -> GuessOutcome:
            current = self._ensure_attempt(user_id, challenge)
            if AttemptState.of(current).terminal:
                raise _Superseded()
            self._db.attempts.add_guess(current.id, guess_text, judgment.value)
            if judgment == Judgment.CORRECT:
                return self._solve(current, challenge)
            return self._wrong_guess(current, challenge, judgment)

        outcome, error, superseded = self._run("submit_guess", guess)
        if error is not None:
            return Err(error)
        if superseded or outcome is None:
            reread = self.get_attempt(user_id, challenge_id)
            if isinstance(reread, Err):
                return reread
            return Ok(self._stored_outcome(challenge, reread.value))
        if outcome.correct:
            assert outcome.reward is not None
            logging.info(
                f"User {user_id} solved challenge {challenge_id} "
                f"for {outcome.reward.points} points"
            )
        elif outcome.game_over:
            logging.info(f"User {user_id} ran out of attempts on {challenge_id}")
        return Ok(outcome)

    def _solve(self, attempt: Attempt, challenge: Challenge) -> GuessOutcome:
        """IN_PROGRESS -> SOLVED, with the payout"""
        db = self._db
        user_id = attempt.user_id
        profile = db.profiles.get(user_id)
        if profile is None:
            raise _Abort(not_found_error("Profile", user_id, "solve").error)
        payout = solve_payout(
            challenge.max_score,
            challenge.score_deduction_per_hint,
            attempt.attempts_made,
            profile.total_experience,
            self._settings.experience_overrides,
        )
        if not db.attempts.mark_solved(
            attempt.id, attempt.attempts_made, payout.points, payout.experience
        ):
            raise _Superseded()
        level_up = False
        if db.attempts.claim_award(attempt.id, REWARD_AWARD):
            self._apply(user_id, payout.points, payout.experience, challenges_solved=1)
            before, after = self._raise_level(user_id)
            level_up = after > before
        db.profiles.increment_streak(user_id)
        db.challenges.increment_players_completed(challenge.id)

        creator_id = challenge.creator_id
        if creator_id != user_id and db.attempts.claim_award(
            attempt.id, CREATOR_BONUS_AWARD
        ):
            bonus = self._ranks.apply_delta(
                creator_id,
                self._settings.creator_bonus_points,
                self._settings.creator_bonus_experience,
            )
            if isinstance(bonus, Err):
                if bonus.error.kind != ErrorKind.NOT_FOUND:
                    raise _Abort(bonus.error)
                # A deleted creator does not stand in the way of a solve
                logging.warning(f"Creator {creator_id} of {challenge.id} not found")
            else:
                self._raise_level(creator_id)

        return GuessOutcome(
            correct=True,
            game_over=True,
            attempts_made=attempt.attempts_made,
            attempts_remaining=self._remaining(attempt.attempts_made),
            potential_score=0,
            message=feedback(Judgment.CORRECT),
            judgment=Judgment.CORRECT,
            explanation=challenge.answer_explanation,
            reward=Reward(payout.points, payout.experience, level_up),
        )

    def _wrong_guess(
        self, attempt: Attempt, challenge: Challenge, judgment: Judgment
    ) -> GuessOutcome:
        """IN_PROGRESS -> IN_PROGRESS or EXHAUSTED"""
        db = self._db
        user_id = attempt.user_id
        max_attempts = self._settings.max_attempts
        if not db.attempts.record_wrong_guess(
            attempt.id, attempt.attempts_made, max_attempts
        ):
            raise _Superseded()
        made = attempt.attempts_made + 1
        penalty = self._settings.wrong_guess_penalty
        if penalty and db.attempts.claim_award(attempt.id, penalty_award(made)):
            self._apply(user_id, -penalty)
        exhausted = made >= max_attempts
        if exhausted:
            db.profiles.set_streak(user_id, 0)
        return GuessOutcome(
            correct=False,
            game_over=exhausted,
            attempts_made=made,
            attempts_remaining=self._remaining(made),
            potential_score=self._potential(challenge, made),
            message=feedback(judgment),
            judgment=judgment,
            explanation=challenge.answer_explanation if exhausted else None,
        )

    def give_up(self, user_id: str, challenge_id: str) -> Result[GuessOutcome]:
        """End an attempt without a solve. The answer is revealed,
        nothing is paid and the player's streak is reset."""
        loaded = self._load(user_id, challenge_id, "give_up")
        if isinstance(loaded, Err):
            return loaded
        challenge, _, attempt = loaded.value
        if AttemptState.of(attempt).terminal:
            return Ok(self._stored_outcome(challenge, attempt))

        def give_up() -> GuessOutcome:
            current = self._ensure_attempt(user_id, challenge)
            if not self._db.attempts.give_up(current.id):
                raise _Superseded()
            self._db.profiles.set_streak(user_id, 0)
            return GuessOutcome(
                correct=False,
                game_over=True,
                attempts_made=current.attempts_made,
                attempts_remaining=0,
                potential_score=0,
                message="You gave up on this challenge.",
                explanation=challenge.answer_explanation,
            )

        outcome, error, superseded = self._run("give_up", give_up)
        if error is not None:
            return Err(error)
        if superseded or outcome is None:
            reread = self.get_attempt(user_id, challenge_id)
            if isinstance(reread, Err):
                return reread
            return Ok(self._stored_outcome(challenge, reread.value))
        logging.info(f"User {user_id} gave up on challenge {challenge_id}")
        return Ok(outcome)

    def reveal_hint(
        self, user_id: str, challenge_id: str, image_index: int
    ) -> Result[HintOutcome]:
        """Reveal the description of one image, for a fee"""
        loaded = self._load(user_id, challenge_id, "reveal_hint")
        if isinstance(loaded, Err):
            return loaded
        challenge, profile, attempt = loaded.value
        if not 0 <= image_index < challenge.image_count:
            return validation_error(
                f"Invalid image index: {image_index}", "reveal_hint"
            )
        if AttemptState.of(attempt).terminal:
            return validation_error(
                "Hints are not available once the game is over", "reveal_hint"
            )
        descriptions = challenge.image_descriptions
        description = descriptions[image_index] if image_index < len(descriptions) else ""

        def outcome(cost: int, points: int, current: Optional[Attempt]) -> HintOutcome:
            made = current.attempts_made if current else 0
            return HintOutcome(
                image_index=image_index,
                description=description,
                cost=cost,
                remaining_points=points,
                hints_used=tuple(sorted(current.hints_used)) if current else (),
                potential_score=self._potential(challenge, made),
            )

        if attempt is not None and image_index in attempt.hints_used:
            return Ok(outcome(0, profile.total_points, attempt))

        priced = hint_cost(challenge.image_count, self._settings.hint_costs)
        if isinstance(priced, Err):
            return priced
        cost = priced.value

        def reveal() -> None:
            current = self._ensure_attempt(user_id, challenge)
            if AttemptState.of(current).terminal:
                raise _Abort(
                    validation_error(
                        "Hints are not available once the game is over", "reveal_hint"
                    ).error
                )
            if not self._db.attempts.add_hint(current.id, image_index):
                raise _Superseded()
            spent = self._ranks.spend(user_id, cost)
            if isinstance(spent, Err):
                raise _Abort(spent.error)
            if not spent.value:
                raise _Abort(
                    validation_error("Insufficient points", "reveal_hint").error
                )

        _, error, superseded = self._run("reveal_hint", reveal)
        if error is not None:
            return Err(error)
        reread = self._read(
            "reveal_hint",
            lambda: (
                self._db.profiles.get(user_id),
                self._db.attempts.get(user_id, challenge_id),
            ),
        )
        if isinstance(reread, Err):
            return reread
        fresh_profile, fresh_attempt = reread.value
        points = fresh_profile.total_points if fresh_profile else profile.total_points
        return Ok(outcome(0 if superseded else cost, points, fresh_attempt))
