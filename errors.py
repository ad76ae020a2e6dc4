"""Error taxonomy shared by the signup core and its callers."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ConflictReason(str, Enum):
    ALREADY_BOOSTER_IN_EVENT = "ALREADY_BOOSTER_IN_EVENT"
    CHAR_ALREADY_PICKED_IN_CYCLE_SAME_DIFFICULTY = "CHAR_ALREADY_PICKED_IN_CYCLE_SAME_DIFFICULTY"
    TIME_CONFLICT = "TIME_CONFLICT"


class RaidBotError(Exception):
    """Base class for errors raised by the signup core."""


class ValidationError(RaidBotError):
    """Raised when input is missing or malformed."""


class DuplicateSignupError(ValidationError):
    """Raised when a character is already signed up for a raid."""


class NotFoundError(RaidBotError):
    """Raised when a referenced raid, signup or character does not exist."""


class ForbiddenError(RaidBotError):
    """Raised when the acting user may not manage the raid."""


class ConflictError(RaidBotError):
    """Raised when a pick violates one of the roster rules."""

    def __init__(
        self,
        reason: ConflictReason,
        message: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.meta: Dict[str, Any] = dict(meta or {})

    @property
    def code(self) -> str:
        return self.reason.value


# Mapping of errors to HTTP-style status codes for calling layers
ERROR_STATUS = {
    ValidationError: 400,
    DuplicateSignupError: 409,
    ForbiddenError: 403,
    NotFoundError: 404,
    ConflictError: 409,
}


def status_for(exc: BaseException) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


__all__ = [
    "ConflictError",
    "ConflictReason",
    "DuplicateSignupError",
    "ERROR_STATUS",
    "ForbiddenError",
    "NotFoundError",
    "RaidBotError",
    "ValidationError",
    "status_for",
]
