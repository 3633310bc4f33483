"""
Error taxonomy
──────────────
Two families:

  * Exceptions (``DealBotError`` subclasses) for conditions that change the
    control flow of a transition: storage failures abort the event, invalid
    input and out-of-region locations abort only the transition.
  * ``ProviderResult`` values for everything an external provider can do
    wrong. Provider-specific error shapes never leave the provider facade.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class DealBotError(Exception):
    """Base class for all errors raised by the conversation core."""


class StorageUnavailable(DealBotError):
    """The session store or deal store could not complete a read/write."""


class InvalidInput(DealBotError):
    """Malformed coordinates or button id. Carries the reprompt shown to the user."""

    def __init__(self, reprompt: str, detail: str | None = None):
        super().__init__(detail or reprompt)
        self.reprompt = reprompt


class OutOfRegion(DealBotError):
    """A shared location resolved outside the configured region."""

    def __init__(self, message: str, country: str | None = None):
        super().__init__(message)
        self.message = message
        self.country = country


class FailureKind(str, Enum):
    UNAVAILABLE = "unavailable"       # timeouts, 429, 5xx, connection errors
    DENIED = "denied"                 # 401 / 403
    OUT_OF_REGION = "out_of_region"
    UNRESOLVABLE = "unresolvable"
    INVALID = "invalid"


@dataclass(frozen=True)
class ProviderResult(Generic[T]):
    ok: bool
    value: T | None = None
    kind: FailureKind | None = None
    detail: str | None = None

    @classmethod
    def success(cls, value: Any) -> "ProviderResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, kind: FailureKind, detail: str | None = None) -> "ProviderResult":
        return cls(ok=False, kind=kind, detail=detail)


def classify_status(status_code: int) -> FailureKind:
    """Map an HTTP status from any provider onto the two failure families."""
    if status_code in (401, 403):
        return FailureKind.DENIED
    if status_code == 429 or status_code >= 500:
        return FailureKind.UNAVAILABLE
    return FailureKind.INVALID
