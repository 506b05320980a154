"""
Tests for answer matching.
"""

from __future__ import annotations

import pytest

from matcher import Judgment, classify, condense, feedback, normalize
from result import Err, ErrorKind, Ok


ANSWERS = {
    "correct": ["Citrus Fruits", "Spider-Man"],
    "close": ["fruits", "citrus"],
}


class TestNormalize:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Citrus Fruits", "citrus fruits"),
            ("  citrus   FRUITS  ", "citrus fruits"),
            ("Spider-Man!", "spider man"),
            ("rock_and_roll", "rock and roll"),
            ("Þórsmörk", "þórsmörk"),
            ("?!...", ""),
            ("", ""),
        ],
    )
    def test_normalize(self, raw: str, expected: str) -> None:
        assert normalize(raw) == expected

    def test_condense_removes_spaces(self) -> None:
        assert condense(normalize("Spider-Man")) == "spiderman"


class TestClassify:
    def test_exact_match_is_correct(self) -> None:
        assert classify("Citrus Fruits", ANSWERS) == Ok(Judgment.CORRECT)

    def test_match_ignores_case_punctuation_and_spacing(self) -> None:
        assert classify("  citrus, FRUITS! ", ANSWERS) == Ok(Judgment.CORRECT)

    def test_condensed_match_is_correct(self) -> None:
        """'spiderman' matches 'Spider-Man'"""
        assert classify("spiderman", ANSWERS) == Ok(Judgment.CORRECT)

    def test_close_match(self) -> None:
        assert classify("Fruits", ANSWERS) == Ok(Judgment.CLOSE)

    def test_correct_takes_priority_over_close(self) -> None:
        answers = {"correct": ["citrus"], "close": ["citrus"]}
        assert classify("citrus", answers) == Ok(Judgment.CORRECT)

    def test_anything_else_is_incorrect(self) -> None:
        assert classify("vegetables", ANSWERS) == Ok(Judgment.INCORRECT)

    def test_no_partial_matching(self) -> None:
        assert classify("citrus fruit salad", ANSWERS) == Ok(Judgment.INCORRECT)

    @pytest.mark.parametrize("guess", ["", "   ", "!?", "--"])
    def test_empty_guess_is_a_validation_error(self, guess: str) -> None:
        result = classify(guess, ANSWERS)
        assert isinstance(result, Err)
        assert result.error.kind == ErrorKind.VALIDATION
        assert result.error.message == "Please enter a valid guess"

    def test_empty_answer_set_is_a_validation_error(self) -> None:
        result = classify("citrus", {"correct": [], "close": ["citrus"]})
        assert isinstance(result, Err)
        assert result.error.kind == ErrorKind.VALIDATION


def test_feedback_messages() -> None:
    assert feedback(Judgment.CORRECT) == "You got it!"
    assert feedback(Judgment.CLOSE) == "Close, try again!"
    assert feedback(Judgment.INCORRECT) == "Not quite."
