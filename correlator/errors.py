"""Error taxonomy and result wrappers for correlator operations."""

from __future__ import annotations

from enum import Enum
from typing import Any, Awaitable, Literal, Union

from pydantic import BaseModel


class ErrorKind(str, Enum):
    not_found = "not_found"
    forbidden = "forbidden"
    duplicate_key = "duplicate_key"
    invalid_reference = "invalid_reference"
    invalid_transition = "invalid_transition"
    store_unavailable = "store_unavailable"


class CorrelatorError(Exception):
    """Base class for every failure raised by the correlator core.

    Each error carries its :class:`ErrorKind` and the identifier that caused
    it, so callers can tell "nothing to show" from "invalid request".
    """

    kind: ErrorKind
    retryable = False

    def __init__(self, identifier: str, message: str | None = None) -> None:
        self.identifier = identifier
        self.message = message or f"{self.kind.value}: {identifier}"
        super().__init__(self.message)


class NotFoundError(CorrelatorError):
    """Entity is absent or not visible to the calling identity."""

    kind = ErrorKind.not_found


class ForbiddenError(CorrelatorError):
    """Identity may see the entity but lacks the right to change it."""

    kind = ErrorKind.forbidden


class DuplicateKeyError(CorrelatorError):
    kind = ErrorKind.duplicate_key


class InvalidReferenceError(CorrelatorError):
    kind = ErrorKind.invalid_reference


class InvalidTransitionError(CorrelatorError):
    kind = ErrorKind.invalid_transition


class StoreUnavailableError(CorrelatorError):
    """Store timed out or could not be reached. Safe to retry."""

    kind = ErrorKind.store_unavailable
    retryable = True


class Ok(BaseModel):
    """Successful outcome of an operation."""

    ok: Literal[True] = True
    value: Any = None


class Failure(BaseModel):
    """Failed outcome of an operation, mirroring a :class:`CorrelatorError`."""

    ok: Literal[False] = False
    kind: ErrorKind
    identifier: str
    message: str
    retryable: bool = False

    @classmethod
    def from_error(cls, error: CorrelatorError) -> "Failure":
        return cls(
            kind=error.kind,
            identifier=error.identifier,
            message=error.message,
            retryable=error.retryable,
        )


Result = Union[Ok, Failure]


async def capture(operation: Awaitable[Any]) -> Result:
    """Await ``operation`` and fold correlator errors into a :data:`Result`.

    Only :class:`CorrelatorError` is folded; anything else propagates.
    """
    try:
        value = await operation
    except CorrelatorError as exc:
        return Failure.from_error(exc)
    return Ok(value=value)
