from dataclasses import dataclass
from typing import Generic, TypeVar

from nominationbot.constants import NomineeState

T = TypeVar("T")


@dataclass(frozen=True)
class NominationError:
    """Base class for the expected failures nomination operations report."""

    @property
    def message(self) -> str:
        return "Nomination operation failed."

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ValidationError(NominationError):
    """Bad user input, such as a name that is too long or a negative duration."""

    reason: str

    @property
    def message(self) -> str:
        return self.reason


@dataclass(frozen=True)
class NotFound(NominationError):
    what: str

    @property
    def message(self) -> str:
        return f"{self.what} not found."


@dataclass(frozen=True)
class InProgressConflict(NominationError):
    """Another nominee in the community already holds an in-progress state."""

    blocking_name: str
    blocking_state: NomineeState

    @property
    def message(self) -> str:
        return (
            f"Cannot start discussion: {self.blocking_name} is already in "
            f"{self.blocking_state.name.lower()} state."
        )


@dataclass(frozen=True)
class MissingPrecondition(NominationError):
    reason: str

    @property
    def message(self) -> str:
        return self.reason


@dataclass(frozen=True)
class InvalidTransition(NominationError):
    source: NomineeState
    target: NomineeState

    @property
    def message(self) -> str:
        return (
            f"Invalid state transition from {self.source.name} to {self.target.name}."
        )


@dataclass(frozen=True)
class SideEffectFailure(NominationError):
    """A Discord side effect failed after its state transition was committed."""

    action: str
    detail: str

    @property
    def message(self) -> str:
        return f"Failed to {self.action}: {self.detail}"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a fallible operation: exactly one of value or error is meaningful."""

    value: T | None = None
    error: NominationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: NominationError) -> "Result[T]":
        return cls(error=error)
