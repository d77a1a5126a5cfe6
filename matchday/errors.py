"""
Failure taxonomy shared by services and the API.
Every error carries a stable `code` tag and a human-readable message.
"""
from __future__ import annotations

import functools
import logging
import sqlite3
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class MatchdayError(Exception):
    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "detail": self.message}


class Unauthorized(MatchdayError):
    """Actor lacks the rights for this operation."""
    code = "unauthorized"


class LoginRequired(Unauthorized):
    """Anonymous caller attempted an operation that needs an identity."""


class ValidationError(MatchdayError, ValueError):
    """Bad shape or out-of-range input."""
    code = "validation_error"


class MatchFull(ValidationError):
    """Signup rejected because the match has no spots left."""
    code = "match_full"


class DuplicateSignup(MatchdayError):
    """The player is already signed up for this match."""
    code = "duplicate_signup"


class NotFound(MatchdayError):
    code = "not_found"


class Unexpected(MatchdayError):
    """Infrastructure failure (store, IO)."""
    code = "unexpected"


def operation(name: str) -> Callable[[F], F]:
    """
    Operation boundary: tagged errors pass through; store and other
    infrastructure failures become Unexpected. Nothing else escapes.
    """
    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return fn(*args, **kwargs)
            except MatchdayError:
                raise
            except sqlite3.Error as e:
                logger.exception("Store failure in %s", name)
                raise Unexpected(f"Unexpected error in {name}: {e}") from e
            except Exception as e:
                logger.exception("Unexpected failure in %s", name)
                raise Unexpected(f"Unexpected error in {name}") from e
        return wrapper  # type: ignore[return-value]
    return decorator
