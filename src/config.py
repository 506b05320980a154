"""

    Configuration data

    Copyright © 2025 Miðeind ehf.

    The Creative Commons Attribution-NonCommercial 4.0
    International Public License (CC-BY-NC 4.0) applies to this software.
    For further information, see https://github.com/mideind/Netskrafl


    This module reads the game rule constants and service settings
    for the Guess The Link engine from environment variables,
    falling back to the defaults of the game.

"""

from __future__ import annotations

from typing import Callable, Dict, Mapping, Optional, Tuple, Union

import os
from dataclasses import dataclass, field

from flask.wrappers import Response
from werkzeug.wrappers import Response as WerkzeugResponse


# Type definitions
ResponseType = Union[
    str, bytes, Response, WerkzeugResponse, Tuple[str, int], Tuple[Response, int]
]
RouteType = Callable[..., ResponseType]


def _env_int(name: str, default: int) -> int:
    """Read an integer from the environment, ignoring garbage"""
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


# Are we running in a local development environment?
running_local: bool = os.environ.get("SERVER_SOFTWARE", "").startswith("Development")

# Redis connection
REDISHOST: str = os.environ.get("REDISHOST", "127.0.0.1" if running_local else "localhost")
REDISPORT: int = _env_int("REDISPORT", 6379)

# Redis sorted set holding lifetime points per user id
LEADERBOARD_KEY = os.environ.get("LEADERBOARD_KEY", "leaderboard:points")
# Seconds a rebuilt rank index is trusted before it is rebuilt again
RANK_INDEX_TTL = _env_int("RANK_INDEX_TTL", 600)

# Wrong guesses allowed before the game is over
MAX_ATTEMPTS = 10

# Default challenge scoring, as used by the challenge creation flow
DEFAULT_MAX_SCORE = 30
DEFAULT_DEDUCTION_PER_HINT = 2

# Flat hint fee by number of images in the challenge. Fewer images means
# that each hint reveals a larger share of the puzzle, so it costs more;
# revealing every hint costs the same in both cases.
HINT_COSTS: Mapping[int, int] = {2: 6, 3: 4}

# Paid to a challenge creator when somebody else solves the challenge
CREATOR_BONUS_POINTS = _env_int("CREATOR_BONUS_POINTS", 5)
CREATOR_BONUS_EXPERIENCE = _env_int("CREATOR_BONUS_EXPERIENCE", 5)

# Deducted from the player's balance for each wrong guess
WRONG_GUESS_PENALTY = _env_int("WRONG_GUESS_PENALTY", 1)

# Leaderboard paging
LEADERBOARD_PAGE_SIZE = 5
# Cap on the number of leaderboard entries shown (0 = no cap)
LEADERBOARD_MAX_ENTRIES = _env_int("LEADERBOARD_MAX_ENTRIES", 0)

# Bounded retries for storage reads and idempotent writes
STORAGE_RETRIES = _env_int("STORAGE_RETRIES", 3)
# Initial backoff in seconds; doubled after each retry
STORAGE_RETRY_BACKOFF = _env_float("STORAGE_RETRY_BACKOFF", 0.05)

# Header carrying the user id, as set by the authenticating gateway
USER_ID_HEADER = os.environ.get("USER_ID_HEADER", "X-User-Id")


@dataclass(frozen=True)
class GameSettings:
    """The rule constants in effect for one engine instance"""

    max_attempts: int = MAX_ATTEMPTS
    hint_costs: Mapping[int, int] = field(default_factory=lambda: dict(HINT_COSTS))
    creator_bonus_points: int = CREATOR_BONUS_POINTS
    creator_bonus_experience: int = CREATOR_BONUS_EXPERIENCE
    wrong_guess_penalty: int = WRONG_GUESS_PENALTY
    page_size: int = LEADERBOARD_PAGE_SIZE
    max_leaderboard_entries: int = LEADERBOARD_MAX_ENTRIES
    storage_retries: int = STORAGE_RETRIES
    retry_backoff: float = STORAGE_RETRY_BACKOFF
    # Experience paid for a solve, keyed by points, where it
    # should differ from the points themselves
    experience_overrides: Optional[Dict[int, int]] = None


DEFAULT_SETTINGS = GameSettings()
