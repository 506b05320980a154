"""

    Server API for Guess The Link

    Copyright © 2025 Miðeind ehf.

    The Creative Commons Attribution-NonCommercial 4.0
    International Public License (CC-BY-NC 4.0) applies to this software.
    For further information, see https://github.com/mideind/Netskrafl


    This module contains the JSON API entry points of the game engine.
    The routes only parse requests and format replies; all game logic
    is in engine.py and the modules it uses.

    Every reply is a JSON object with an 'ok' field. Failed requests
    also carry 'error' (a message) and 'kind', and an HTTP status that
    depends on the kind of error. Storage errors are transient, and
    their replies carry 'retry': true.

"""

from __future__ import annotations

from typing import Any, Dict, Iterator, Mapping, Optional, Sequence

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from functools import wraps

from flask import Blueprint, request
from flask.globals import current_app

from basics import RequestData, auth_required, current_user_id, jsonify
from cache import RedisWrapper
from config import DEFAULT_SETTINGS, GameSettings, ResponseType, RouteType
from db.session import SessionManager
from engine import GameEngine
from leaderboard import LeaderboardPage
from ledger import GuessOutcome, HintOutcome
from result import AppError, Err, ErrorKind, Result


# Key of the engine dependencies in app.extensions
EXTENSION_KEY = "guessthelink"

_ONLY_POST: Sequence[str] = ["POST"]

_HTTP_STATUS: Mapping[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.STORAGE: 503,
    ErrorKind.INTERNAL: 500,
}

api = Blueprint("api", __name__)


@dataclass
class EngineDependencies:
    """What a GameEngine is built from, shared by all requests"""

    sessions: SessionManager
    cache: Optional[RedisWrapper]
    settings: GameSettings = DEFAULT_SETTINGS


def api_route(route: str, methods: Sequence[str] = _ONLY_POST) -> Any:
    """Decorator for API routes; checks that the name of the route function ends with '_api'"""

    def decorator(f: RouteType) -> RouteType:

        assert f.__name__.endswith(
            "_api"
        ), f"Name of API function '{f.__name__}' must end with '_api'"

        @api.route(route, methods=methods)
        @wraps(f)
        def wrapper(*args: Any, **kwargs: Any) -> ResponseType:
            return f(*args, **kwargs)

        return wrapper

    return decorator


@contextmanager
def game_engine() -> Iterator[GameEngine]:
    """A GameEngine over a fresh request-scoped database session"""
    deps: EngineDependencies = current_app.extensions[EXTENSION_KEY]
    with deps.sessions.request_context() as db:
        yield GameEngine(db, deps.cache, deps.settings)


def error_response(error: AppError) -> ResponseType:
    """Reply to a failed request"""
    status = _HTTP_STATUS.get(error.kind, 500)
    if status >= 500:
        logging.warning(f"API request failed: {error}")
    reply: Dict[str, Any] = dict(ok=False, error=error.message, kind=error.kind.value)
    if error.retryable:
        reply["retry"] = True
    return jsonify(reply), status


def guess_outcome_dict(outcome: GuessOutcome) -> Dict[str, Any]:
    d: Dict[str, Any] = dict(
        correct=outcome.correct,
        game_over=outcome.game_over,
        attempts_made=outcome.attempts_made,
        attempts_remaining=outcome.attempts_remaining,
        potential_score=outcome.potential_score,
        message=outcome.message,
        judgment=outcome.judgment.value if outcome.judgment else None,
        replayed=outcome.replayed,
    )
    if outcome.explanation is not None:
        d["explanation"] = outcome.explanation
    if outcome.reward is not None:
        d["reward"] = dict(
            points=outcome.reward.points,
            experience=outcome.reward.experience,
            level_up=outcome.reward.level_up,
        )
    return d


def hint_outcome_dict(outcome: HintOutcome) -> Dict[str, Any]:
    return dict(
        image_index=outcome.image_index,
        description=outcome.description,
        cost=outcome.cost,
        remaining_points=outcome.remaining_points,
        hints_used=list(outcome.hints_used),
        potential_score=outcome.potential_score,
    )


def leaderboard_page_dict(page: LeaderboardPage) -> Dict[str, Any]:
    return dict(
        entries=[
            dict(
                rank=e.rank,
                user_id=e.user_id,
                username=e.username,
                level=e.level,
                total_points=e.total_points,
                is_current_user=e.is_current_user,
            )
            for e in page.entries
        ],
        total_players=page.total_players,
        total_pages=page.total_pages,
        current_page=page.current_page,
        your_rank=page.your_rank,
        has_next_page=page.has_next_page,
        has_previous_page=page.has_previous_page,
    )


def _reply(result: Result[Any], formatter: Any) -> ResponseType:
    if isinstance(result, Err):
        return error_response(result.error)
    return jsonify(ok=True, **formatter(result.value))


@api_route("/guess")
@auth_required(error="Not identified")
def guess_api() -> ResponseType:
    """Submit a guess for a challenge"""
    rq = RequestData(request)
    user_id = current_user_id()
    assert user_id is not None
    with game_engine() as engine:
        result = engine.submit_guess(
            user_id, rq.get_str("challenge_id"), rq.get_str("guess")
        )
    return _reply(result, guess_outcome_dict)


@api_route("/giveup")
@auth_required(error="Not identified")
def giveup_api() -> ResponseType:
    """Give up on a challenge. The answer is revealed and the
    player's streak is reset."""
    rq = RequestData(request)
    user_id = current_user_id()
    assert user_id is not None
    with game_engine() as engine:
        result = engine.give_up(user_id, rq.get_str("challenge_id"))
    return _reply(result, guess_outcome_dict)


@api_route("/hint")
@auth_required(error="Not identified")
def hint_api() -> ResponseType:
    """Reveal the description of one image of a challenge"""
    rq = RequestData(request)
    user_id = current_user_id()
    assert user_id is not None
    with game_engine() as engine:
        result = engine.reveal_hint(
            user_id, rq.get_str("challenge_id"), rq.get_int("image_index", -1)
        )
    return _reply(result, hint_outcome_dict)


@api_route("/leaderboard", methods=["GET", "POST"])
def leaderboard_api() -> ResponseType:
    """Return a page of the leaderboard. Anonymous requests
    get the page without a rank of their own."""
    rq = RequestData(request, use_args=True)
    with game_engine() as engine:
        result = engine.get_leaderboard_page(current_user_id(), rq.get_int("page", 0))
    return _reply(result, leaderboard_page_dict)


@api_route("/attempt")
@auth_required(error="Not identified")
def attempt_api() -> ResponseType:
    """Return the finished attempt of the player on a challenge,
    if any, with the guess history"""
    rq = RequestData(request)
    user_id = current_user_id()
    assert user_id is not None
    challenge_id = rq.get_str("challenge_id")
    with game_engine() as engine:
        status = engine.get_status(user_id, challenge_id)
        guesses = engine.list_guesses(user_id, challenge_id)
    if isinstance(status, Err):
        return error_response(status.error)
    if isinstance(guesses, Err):
        return error_response(guesses.error)
    attempt = status.value
    return jsonify(
        ok=True,
        finished=attempt is not None,
        solved=bool(attempt and attempt.is_solved),
        points_earned=attempt.points_earned if attempt else 0,
        attempts_made=attempt.attempts_made if attempt else 0,
        guesses=[dict(guess=g.guess_text, judgment=g.judgment) for g in guesses.value],
    )
