"""
Error taxonomy for the epic engine.

Every refusal and every failure surfaces as an EpicError subclass. The
kind is the stable, machine-readable part; the message is for humans.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorKind(Enum):
    NOT_FOUND = "not_found"
    MALFORMED_DOCUMENT = "malformed_document"
    SCHEMA_VIOLATION = "schema_violation"
    INVALID_TRANSITION = "invalid_transition"
    COMPLETION_BLOCKED = "completion_blocked"
    CONSTRAINT_VIOLATION = "constraint_violation"
    MISSING_ARGUMENT = "missing_argument"
    IO_FAILURE = "io_failure"
    INVALID_QUERY = "invalid_query"


# Kinds that mean "the engine refused", as opposed to "the engine could not run"
REFUSAL_KINDS = frozenset({
    ErrorKind.SCHEMA_VIOLATION,
    ErrorKind.INVALID_TRANSITION,
    ErrorKind.COMPLETION_BLOCKED,
    ErrorKind.CONSTRAINT_VIOLATION,
    ErrorKind.MISSING_ARGUMENT,
})


@dataclass(frozen=True)
class EntityRef:
    """The entity an error or result is about."""
    kind: str  # "epic", "phase", "task", "test"
    id: str
    name: str = ""
    current_status: str | None = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "id": self.id,
            "name": self.name,
            "current_status": self.current_status,
        }


@dataclass(frozen=True)
class Blocker:
    """One reason a transition is refused."""
    kind: str  # "phase", "task", "test"
    id: str
    name: str
    current_status: str
    test_result: str | None = None

    def to_dict(self) -> dict:
        data = {
            "kind": self.kind,
            "id": self.id,
            "name": self.name,
            "current_status": self.current_status,
        }
        if self.test_result is not None:
            data["test_result"] = self.test_result
        return data


class EpicError(Exception):
    """Base class for all engine errors."""

    kind = ErrorKind.IO_FAILURE

    def __init__(
        self,
        message: str,
        entity: EntityRef | None = None,
        blockers: list[Blocker] | None = None,
        suggestion: str = "",
    ):
        self.message = message
        self.entity = entity
        self.blockers = list(blockers or [])
        self.suggestion = suggestion
        super().__init__(message)

    @property
    def is_refusal(self) -> bool:
        return self.kind in REFUSAL_KINDS

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "entity": self.entity.to_dict() if self.entity else None,
            "blockers": [b.to_dict() for b in self.blockers],
            "suggestion": self.suggestion,
        }


class NotFound(EpicError):
    kind = ErrorKind.NOT_FOUND


class MalformedDocument(EpicError):
    kind = ErrorKind.MALFORMED_DOCUMENT


class SchemaMismatch(MalformedDocument):
    """The document parses but does not have the epic shape."""


class SchemaViolation(EpicError):
    kind = ErrorKind.SCHEMA_VIOLATION


class InvalidTransition(EpicError):
    kind = ErrorKind.INVALID_TRANSITION


class CompletionBlocked(EpicError):
    kind = ErrorKind.COMPLETION_BLOCKED


class ConstraintViolation(EpicError):
    kind = ErrorKind.CONSTRAINT_VIOLATION


class MissingArgument(EpicError):
    kind = ErrorKind.MISSING_ARGUMENT


class IOFailure(EpicError):
    kind = ErrorKind.IO_FAILURE


class InvalidQuery(EpicError):
    kind = ErrorKind.INVALID_QUERY


ERROR_CLASSES: dict[ErrorKind, type[EpicError]] = {
    ErrorKind.NOT_FOUND: NotFound,
    ErrorKind.MALFORMED_DOCUMENT: MalformedDocument,
    ErrorKind.SCHEMA_VIOLATION: SchemaViolation,
    ErrorKind.INVALID_TRANSITION: InvalidTransition,
    ErrorKind.COMPLETION_BLOCKED: CompletionBlocked,
    ErrorKind.CONSTRAINT_VIOLATION: ConstraintViolation,
    ErrorKind.MISSING_ARGUMENT: MissingArgument,
    ErrorKind.IO_FAILURE: IOFailure,
    ErrorKind.INVALID_QUERY: InvalidQuery,
}


def error_for(kind: ErrorKind, message: str, **kwargs) -> EpicError:
    """Build the exception matching an error kind."""
    return ERROR_CLASSES[kind](message, **kwargs)
