"""

    Game engine

    Copyright © 2025 Miðeind ehf.

    The Creative Commons Attribution-NonCommercial 4.0
    International Public License (CC-BY-NC 4.0) applies to this software.
    For further information, see https://github.com/mideind/Netskrafl


    This module exposes the operations that callers (the HTTP API, or any
    other front end) invoke: submitting a guess, revealing a hint and
    reading a leaderboard page.

    A GameEngine is built per request from the request's database
    backend, the shared Redis wrapper and the rule settings. Nothing
    is looked up from module globals.

"""

from __future__ import annotations

from typing import Callable, List, Optional, TypeVar

import logging

from cache import RedisWrapper
from config import DEFAULT_SETTINGS, GameSettings
from db.protocols import Attempt, DatabaseBackendProtocol, GuessRecord
from leaderboard import LeaderboardPage, LeaderboardPaginator
from ledger import AttemptLedger, GuessOutcome, HintOutcome
from rankstore import RankStore
from result import Result, internal_error, validation_error


T = TypeVar("T")


class GameEngine:
    """The attempt resolution and ranking engine"""

    def __init__(
        self,
        db: DatabaseBackendProtocol,
        cache: Optional[RedisWrapper],
        settings: GameSettings = DEFAULT_SETTINGS,
    ) -> None:
        self.settings = settings
        self.ranks = RankStore(
            db.profiles,
            cache,
            retries=settings.storage_retries,
            backoff=settings.retry_backoff,
            rollback=db.rollback,
        )
        self.ledger = AttemptLedger(db, self.ranks, settings)
        self.leaderboard = LeaderboardPaginator(
            self.ranks, settings.page_size, settings.max_leaderboard_entries
        )

    @staticmethod
    def _guarded(operation: str, func: Callable[[], Result[T]]) -> Result[T]:
        """Turn an unexpected exception into an internal error"""
        try:
            return func()
        except Exception as e:
            logging.exception(f"Unexpected error in {operation}")
            return internal_error(repr(e), operation)

    def submit_guess(
        self, user_id: str, challenge_id: str, raw_text: str
    ) -> Result[GuessOutcome]:
        """Submit a guess for a challenge"""
        if not user_id or not challenge_id:
            return validation_error("Missing user or challenge id", "submit_guess")
        return self._guarded(
            "submit_guess",
            lambda: self.ledger.submit_guess(user_id, challenge_id, raw_text or ""),
        )

    def give_up(self, user_id: str, challenge_id: str) -> Result[GuessOutcome]:
        """Give up on a challenge, ending the attempt unsolved"""
        if not user_id or not challenge_id:
            return validation_error("Missing user or challenge id", "give_up")
        return self._guarded(
            "give_up", lambda: self.ledger.give_up(user_id, challenge_id)
        )

    def reveal_hint(
        self, user_id: str, challenge_id: str, image_index: int
    ) -> Result[HintOutcome]:
        """Reveal the description of one of the challenge's images"""
        if not user_id or not challenge_id:
            return validation_error("Missing user or challenge id", "reveal_hint")
        return self._guarded(
            "reveal_hint",
            lambda: self.ledger.reveal_hint(user_id, challenge_id, image_index),
        )

    def get_leaderboard_page(
        self, user_id: Optional[str], page: int
    ) -> Result[LeaderboardPage]:
        """Return a page of the global leaderboard, with the
        requesting player's own rank"""
        return self._guarded(
            "get_leaderboard_page",
            lambda: self.leaderboard.get_page(user_id, page),
        )

    def get_status(self, user_id: str, challenge_id: str) -> Result[Optional[Attempt]]:
        """The finished attempt of a player on a challenge, if any"""
        return self._guarded(
            "get_status", lambda: self.ledger.get_status(user_id, challenge_id)
        )

    def list_guesses(
        self, user_id: str, challenge_id: str
    ) -> Result[List[GuessRecord]]:
        return self._guarded(
            "list_guesses", lambda: self.ledger.list_guesses(user_id, challenge_id)
        )
