"""Exception hierarchy and error taxonomy for git-engine.

Every failure that leaves the engine is a ``GitEngineError`` carrying an
``ErrorRecord``: a stable category, a stable code, a human-readable message,
and an optional diagnostic payload. Callers can catch broad categories
(``GitEngineError``) or a specific category (``ConflictError`` etc.).

``SpawnError``, ``ParseError`` and ``ConfigError`` are internal causes; the
error mapper turns the first two into records.

This module is a base-layer module: it must NOT import from any
other ``git_engine`` submodule.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Stable failure categories exposed to callers."""

    VALIDATION = "validation"
    NOT_FOUND = "not-found"
    CONFLICT = "conflict"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


# Stable error codes
UNSAFE_ARGUMENT = "UNSAFE_ARGUMENT"
BLOCKED_FLAG = "BLOCKED_FLAG"
UNKNOWN_FLAG = "UNKNOWN_FLAG"
PATH_TRAVERSAL = "PATH_TRAVERSAL"
INVALID_OPTIONS = "INVALID_OPTIONS"
INVALID_BRANCH_NAME = "INVALID_BRANCH_NAME"
INVALID_KEY = "INVALID_KEY"
UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"
NO_WORKING_DIRECTORY = "NO_WORKING_DIRECTORY"
WORKING_DIRECTORY_NOT_FOUND = "WORKING_DIRECTORY_NOT_FOUND"
REPOSITORY_NOT_FOUND = "REPOSITORY_NOT_FOUND"
PATH_NOT_FOUND = "PATH_NOT_FOUND"
REF_NOT_FOUND = "REF_NOT_FOUND"
INDEX_LOCKED = "INDEX_LOCKED"
SIGNING_FAILED = "SIGNING_FAILED"
MERGE_CONFLICT = "MERGE_CONFLICT"
WORKING_TREE_DIRTY = "WORKING_TREE_DIRTY"
ALREADY_EXISTS = "ALREADY_EXISTS"
NOTHING_TO_COMMIT = "NOTHING_TO_COMMIT"
GIT_TIMEOUT = "GIT_TIMEOUT"
OUTPUT_LIMIT_EXCEEDED = "OUTPUT_LIMIT_EXCEEDED"
GIT_SPAWN_FAILED = "GIT_SPAWN_FAILED"
UNPARSABLE_OUTPUT = "UNPARSABLE_OUTPUT"
GIT_OPERATION_FAILED = "GIT_OPERATION_FAILED"
UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


@dataclass(frozen=True)
class ErrorRecord:
    """Structured description of a failed operation."""

    category: ErrorCategory
    code: str
    message: str
    operation: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)
    cause: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        result: dict[str, Any] = {
            "category": self.category.value,
            "code": self.code,
            "message": self.message,
        }
        if self.operation:
            result["operation"] = self.operation
        if self.details:
            result["details"] = dict(self.details)
        if self.cause is not None:
            result["cause"] = dict(self.cause)
        return result


class GitEngineError(Exception):
    """Base exception for all git-engine errors surfaced to callers."""

    category = ErrorCategory.INTERNAL

    def __init__(self, record: ErrorRecord):
        super().__init__(record.message)
        self.record = record

    @classmethod
    def create(
        cls,
        code: str,
        message: str,
        *,
        operation: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[dict[str, Any]] = None,
    ) -> "GitEngineError":
        """Build an exception of this class with a matching record."""
        return cls(
            ErrorRecord(
                category=cls.category,
                code=code,
                message=message,
                operation=operation,
                details=details or {},
                cause=cause,
            )
        )

    @property
    def code(self) -> str:
        return self.record.code


class GitValidationError(GitEngineError):
    """Rejected input: unsafe arguments, bad options, invalid names."""

    category = ErrorCategory.VALIDATION


class NotFoundError(GitEngineError):
    """Missing repository, working directory, path, or ref."""

    category = ErrorCategory.NOT_FOUND


class ConflictError(GitEngineError):
    """Repository state prevents the operation (locks, conflicts, signing)."""

    category = ErrorCategory.CONFLICT


class GitTimeoutError(GitEngineError):
    """Process exceeded its time or output budget and was killed."""

    category = ErrorCategory.TIMEOUT


class InternalError(GitEngineError):
    """Spawn failures, unparsable output, and unclassified git failures."""

    category = ErrorCategory.INTERNAL


_CATEGORY_EXCEPTIONS: dict[ErrorCategory, type[GitEngineError]] = {
    ErrorCategory.VALIDATION: GitValidationError,
    ErrorCategory.NOT_FOUND: NotFoundError,
    ErrorCategory.CONFLICT: ConflictError,
    ErrorCategory.TIMEOUT: GitTimeoutError,
    ErrorCategory.INTERNAL: InternalError,
}


def error_from_record(record: ErrorRecord) -> GitEngineError:
    """Wrap a record in the exception class for its category."""
    return _CATEGORY_EXCEPTIONS[record.category](record)


class SpawnError(Exception):
    """The git process could not be started at all."""

    def __init__(self, binary: str, reason: str):
        super().__init__(f"Failed to spawn {binary}: {reason}")
        self.binary = binary
        self.reason = reason


class ParseError(Exception):
    """Successful git output did not match the expected structure."""

    def __init__(self, parser: str, line: str, reason: str = "unrecognized line"):
        super().__init__(f"{parser}: {reason}: {line!r}")
        self.parser = parser
        self.line = line
        self.reason = reason


class ConfigError(Exception):
    """Raised when engine configuration is invalid."""
