"""
auth/results.py -- Tagged success/error values returned by AuthService.

Every AuthService operation returns either Ok(value) or Err(AuthError). Expected
failures (bad input, wrong password, stale refresh token) are values, not
exceptions. The transport layer is the only place an Err becomes an HTTP
response; see api/main.py for the single translator.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Failure categories an auth operation can report."""

    INVALID_INPUT = "invalid_input"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    UPSTREAM_FAILURE = "upstream_failure"
    INTERNAL = "internal"


# Duplicates answer 400, not 409 -- clients of the original API rely on it.
_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.CONFLICT: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.UPSTREAM_FAILURE: 500,
    ErrorKind.INTERNAL: 500,
}


@dataclass(frozen=True)
class AuthError:
    """A failed operation: kind, human-readable message, optional detail list."""

    kind: ErrorKind
    message: str
    errors: list[str] = field(default_factory=list)

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.kind]


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: AuthError

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


def fail(kind: ErrorKind, message: str, errors: list[str] | None = None) -> Err:
    """Shorthand for Err(AuthError(...))."""
    return Err(AuthError(kind=kind, message=message, errors=list(errors or [])))


class AuthServiceError(Exception):
    """Raised by the transport layer to hand an Err to the boundary translator.

    The service itself never raises this; route handlers call unwrap() and the
    exception handler in api/main.py renders the failure envelope.
    """

    def __init__(self, error: AuthError) -> None:
        super().__init__(error.message)
        self.error = error


def unwrap(result: Result[T]) -> T:
    """Return the Ok value or raise AuthServiceError for an Err."""
    if isinstance(result, Err):
        raise AuthServiceError(result.error)
    return result.value
