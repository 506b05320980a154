"""

    Reward calculation

    Copyright © 2025 Miðeind ehf.

    The Creative Commons Attribution-NonCommercial 4.0
    International Public License (CC-BY-NC 4.0) applies to this software.
    For further information, see https://github.com/mideind/Netskrafl


    This module contains the pure functions of the scoring economy:
    the decaying reward for solving a challenge, the flat hint fee,
    the creator bonus and the experience-to-level progression.
    Nothing here touches storage.

"""

from __future__ import annotations

from typing import Mapping, Optional

from dataclasses import dataclass

from config import (
    CREATOR_BONUS_EXPERIENCE,
    CREATOR_BONUS_POINTS,
    HINT_COSTS,
    MAX_ATTEMPTS,
)
from result import Ok, Result, validation_error


# Experience needed to go from level n-1 to level n is LEVEL_EXP_STEP * n
LEVEL_EXP_STEP = 50


@dataclass(frozen=True)
class Reward:
    """Points and experience paid out for an action"""

    points: int
    experience: int
    level_up: bool = False


CREATOR_BONUS = Reward(CREATOR_BONUS_POINTS, CREATOR_BONUS_EXPERIENCE)


def solve_reward(max_score: int, deduction_per_hint: int, attempts_made: int) -> int:
    """The points for solving a challenge after the given number of
    wrong guesses. With the defaults (30, 2) this goes from 30 on the
    first try down to 12 on the tenth."""
    return max_score - attempts_made * deduction_per_hint


def potential_score(
    max_score: int,
    deduction_per_hint: int,
    attempts_made: int,
    max_attempts: int = MAX_ATTEMPTS,
) -> int:
    """What a correct guess would pay right now"""
    if attempts_made >= max_attempts:
        return 0
    return max(0, solve_reward(max_score, deduction_per_hint, attempts_made))


def experience_for(
    points: int, overrides: Optional[Mapping[int, int]] = None
) -> int:
    """Experience mirrors points unless the override table says otherwise"""
    if overrides and points in overrides:
        return overrides[points]
    return max(0, points)


def hint_cost(
    image_count: int, costs: Mapping[int, int] = HINT_COSTS
) -> Result[int]:
    """The flat fee for revealing one image description"""
    cost = costs.get(image_count)
    if cost is None:
        return validation_error(
            f"Unsupported image count: {image_count}", "hint_cost"
        )
    return Ok(cost)


def exp_for_level(level: int) -> int:
    """Experience needed to reach the given level from the one below it"""
    if level < 1:
        raise ValueError("Level must be at least 1")
    return LEVEL_EXP_STEP * level


def calculate_level(total_exp: int) -> int:
    """The level reached with the given total experience (minimum 1).
    Level 2 is reached at 100, level 3 at 250, level 4 at 450."""
    level = 1
    required = 0
    while True:
        required += exp_for_level(level + 1)
        if required > total_exp:
            return level
        level += 1


def exp_to_next_level(total_exp: int, level: int) -> int:
    """Experience still missing to reach the next level"""
    if level < 1:
        raise ValueError("Level must be at least 1")
    needed = sum(exp_for_level(n) for n in range(2, level + 2))
    return max(0, needed - total_exp)


def solve_payout(
    max_score: int,
    deduction_per_hint: int,
    attempts_made: int,
    total_exp_before: int,
    overrides: Optional[Mapping[int, int]] = None,
) -> Reward:
    """The complete reward for a solve, including whether it
    lifts the player to a new level"""
    points = solve_reward(max_score, deduction_per_hint, attempts_made)
    experience = experience_for(points, overrides)
    level_up = calculate_level(total_exp_before + experience) > calculate_level(
        max(0, total_exp_before)
    )
    return Reward(points, experience, level_up)
