"""
Tests for the reward calculator.
"""

from __future__ import annotations

import pytest

from result import Err, Ok
from rewards import (
    CREATOR_BONUS,
    calculate_level,
    exp_for_level,
    exp_to_next_level,
    experience_for,
    hint_cost,
    potential_score,
    solve_payout,
    solve_reward,
)


class TestSolveReward:
    def test_first_try_pays_max_score(self) -> None:
        assert solve_reward(30, 2, 0) == 30

    def test_tenth_try(self) -> None:
        assert solve_reward(30, 2, 9) == 12

    def test_one_wrong_guess(self) -> None:
        assert solve_reward(30, 2, 1) == 28

    def test_non_increasing_in_attempts(self) -> None:
        rewards = [solve_reward(30, 2, n) for n in range(10)]
        assert rewards == sorted(rewards, reverse=True)

    def test_potential_score_is_zero_once_exhausted(self) -> None:
        assert potential_score(30, 2, 3) == 24
        assert potential_score(30, 2, 10) == 0
        assert potential_score(30, 2, 10, max_attempts=12) == 10

    def test_potential_score_is_never_negative(self) -> None:
        assert potential_score(10, 5, 4) == 0


class TestHintCost:
    def test_fewer_images_cost_more(self) -> None:
        assert hint_cost(2) == Ok(6)
        assert hint_cost(3) == Ok(4)

    def test_full_reveal_costs_the_same(self) -> None:
        two, three = hint_cost(2), hint_cost(3)
        assert isinstance(two, Ok) and isinstance(three, Ok)
        assert two.value * 2 == three.value * 3

    def test_unsupported_image_count(self) -> None:
        assert isinstance(hint_cost(4), Err)

    def test_custom_cost_table(self) -> None:
        assert hint_cost(2, {2: 10}) == Ok(10)


class TestLevels:
    @pytest.mark.parametrize(
        "exp, level",
        [(0, 1), (99, 1), (100, 2), (249, 2), (250, 3), (449, 3), (450, 4)],
    )
    def test_calculate_level(self, exp: int, level: int) -> None:
        assert calculate_level(exp) == level

    def test_exp_for_level(self) -> None:
        assert exp_for_level(2) == 100
        assert exp_for_level(3) == 150
        with pytest.raises(ValueError):
            exp_for_level(0)

    def test_exp_to_next_level(self) -> None:
        assert exp_to_next_level(0, 1) == 100
        assert exp_to_next_level(120, 2) == 130
        assert exp_to_next_level(500, 2) == 0


class TestPayout:
    def test_experience_mirrors_points(self) -> None:
        assert experience_for(28) == 28
        assert experience_for(28, {28: 40}) == 40
        assert experience_for(-3) == 0

    def test_solve_payout(self) -> None:
        payout = solve_payout(30, 2, 1, total_exp_before=0)
        assert (payout.points, payout.experience, payout.level_up) == (28, 28, False)

    def test_solve_payout_level_up(self) -> None:
        payout = solve_payout(30, 2, 0, total_exp_before=80)
        assert payout.level_up is True

    def test_creator_bonus(self) -> None:
        assert CREATOR_BONUS.points == 5
        assert CREATOR_BONUS.experience == 5
