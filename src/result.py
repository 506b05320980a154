"""

    Result types

    Copyright © 2025 Miðeind ehf.

    The Creative Commons Attribution-NonCommercial 4.0
    International Public License (CC-BY-NC 4.0) applies to this software.
    For further information, see https://github.com/mideind/Netskrafl


    This module implements a small success/failure union that is
    returned across every service boundary of the game engine instead
    of raising exceptions. A failure carries a typed AppError, which
    lets callers decide uniformly whether to retry, fall back or
    surface the error to the client.

"""

from __future__ import annotations

from typing import Any, Callable, Generic, Optional, TypeVar, Union

import enum
import logging
import time
from dataclasses import dataclass, field

from config import STORAGE_RETRIES, STORAGE_RETRY_BACKOFF


T = TypeVar("T")
U = TypeVar("U")


class ErrorKind(str, enum.Enum):
    """The kinds of errors the engine distinguishes"""

    # Malformed or out-of-range input; not retried
    VALIDATION = "validation"
    # Missing challenge or profile; not retried
    NOT_FOUND = "not_found"
    # Transient cache or database failure; retried a bounded number of times
    STORAGE = "storage"
    # Broken invariant; logged, never retried
    INTERNAL = "internal"


@dataclass(frozen=True)
class AppError:
    """A typed error, as carried by Err"""

    kind: ErrorKind
    message: str
    operation: str = ""
    retryable: bool = False
    details: Optional[Any] = field(default=None, compare=False)

    def __str__(self) -> str:
        if self.operation:
            return f"{self.kind.value} error in {self.operation}: {self.message}"
        return f"{self.kind.value} error: {self.message}"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: AppError

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


def validation_error(message: str, operation: str = "", details: Any = None) -> Err:
    return Err(AppError(ErrorKind.VALIDATION, message, operation, False, details))


def not_found_error(resource: str, identifier: str, operation: str = "") -> Err:
    return Err(
        AppError(
            ErrorKind.NOT_FOUND,
            f"{resource} '{identifier}' not found",
            operation,
            False,
            {"resource": resource, "id": identifier},
        )
    )


def storage_error(operation: str, message: str) -> Err:
    """A transient storage failure; the client may safely retry"""
    return Err(AppError(ErrorKind.STORAGE, message, operation, True))


def internal_error(message: str, operation: str = "") -> Err:
    return Err(AppError(ErrorKind.INTERNAL, message, operation, False))


def is_ok(result: Result[Any]) -> bool:
    return isinstance(result, Ok)


def unwrap_or(result: Result[T], default: U) -> Union[T, U]:
    """Return the value of a successful result, or the default"""
    if isinstance(result, Ok):
        return result.value
    return default


def with_retry(
    func: Callable[[], Result[T]],
    *,
    retries: int = STORAGE_RETRIES,
    backoff: float = STORAGE_RETRY_BACKOFF,
    operation: str = "",
) -> Result[T]:
    """Call func(), retrying while it fails with a retryable storage error.
    Only use this for reads and for idempotent writes."""
    attempt = 0
    delay = backoff
    while True:
        result = func()
        if isinstance(result, Ok):
            return result
        error = result.error
        if error.kind != ErrorKind.STORAGE or not error.retryable:
            return result
        if attempt >= retries:
            logging.error(
                f"Storage error in {operation or error.operation} "
                f"persisted after {retries} retries: {error.message}"
            )
            return result
        attempt += 1
        logging.warning(
            f"Retrying {operation or error.operation} "
            f"(attempt {attempt} of {retries}) after {error.message}"
        )
        if delay > 0:
            time.sleep(delay)
        delay *= 2
