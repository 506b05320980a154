"""

    Answer matching

    Copyright © 2025 Miðeind ehf.

    The Creative Commons Attribution-NonCommercial 4.0
    International Public License (CC-BY-NC 4.0) applies to this software.
    For further information, see https://github.com/mideind/Netskrafl


    This module classifies a player's guess against the editorial
    answer set of a challenge. Matching is plain set membership after
    normalization: there is no fuzzy or partial scoring. A guess found
    in the 'close' list never ends the game; it only tells the player
    that they are on the right track.

"""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence, TypedDict

import enum
import re

from result import Ok, Result, validation_error


class AnswerSetDict(TypedDict):
    """The accepted answers of a challenge"""

    correct: Sequence[str]
    close: Sequence[str]


class Judgment(str, enum.Enum):
    CORRECT = "correct"
    CLOSE = "close"
    INCORRECT = "incorrect"


_PUNCTUATION = re.compile(r"[^\w\s]|_", re.UNICODE)
_WHITESPACE = re.compile(r"\s+", re.UNICODE)

_FEEDBACK: Mapping[Judgment, str] = {
    Judgment.CORRECT: "You got it!",
    Judgment.CLOSE: "Close, try again!",
    Judgment.INCORRECT: "Not quite.",
}


def normalize(text: str) -> str:
    """Lowercase, turn punctuation into spaces, collapse whitespace and trim.
    'Spider-Man ' becomes 'spider man'."""
    text = _PUNCTUATION.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", text).strip()


def condense(normalized: str) -> str:
    """Remove all spaces from a normalized string, so that
    'spider man' and 'spiderman' compare equal"""
    return normalized.replace(" ", "")


def _answer_keys(answers: Iterable[str]) -> frozenset[str]:
    """The set of comparison keys for a list of answers"""
    keys: set[str] = set()
    for answer in answers:
        norm = normalize(answer)
        if norm:
            keys.add(norm)
            keys.add(condense(norm))
    return frozenset(keys)


def classify(raw_guess: str, answer_set: AnswerSetDict) -> Result[Judgment]:
    """Classify a raw guess as correct, close or incorrect"""
    correct = _answer_keys(answer_set.get("correct") or ())
    if not correct:
        return validation_error("Challenge has no accepted answers", "classify")
    norm = normalize(raw_guess or "")
    if not norm:
        return validation_error("Please enter a valid guess", "classify")
    candidates = (norm, condense(norm))
    # Correct takes priority over close
    if any(c in correct for c in candidates):
        return Ok(Judgment.CORRECT)
    close = _answer_keys(answer_set.get("close") or ())
    if any(c in close for c in candidates):
        return Ok(Judgment.CLOSE)
    return Ok(Judgment.INCORRECT)


def feedback(judgment: Judgment) -> str:
    """The message shown to the player for a judgment"""
    return _FEEDBACK[judgment]
