"""Classify failures into the engine's error taxonomy.

``map_error`` turns a failed ``ProcessResult``, a ``SpawnError``, a
``ParseError`` or any other exception into an ``ErrorRecord``. The first
matching rule wins:

1. spawn failure -> internal
2. timeout / output cap -> timeout
3. ``index.lock`` contention -> conflict (retryable)
4. ``not a git repository`` -> not-found
5. ``gpg failed to sign`` -> conflict
6. known stderr patterns (merge conflicts, dirty tree, missing refs...)
7. anything else -> internal, carrying raw stderr
"""

from __future__ import annotations

import re
from typing import Optional, Union

from git_engine.errors import (
    ALREADY_EXISTS,
    GIT_OPERATION_FAILED,
    GIT_SPAWN_FAILED,
    GIT_TIMEOUT,
    INDEX_LOCKED,
    MERGE_CONFLICT,
    NOTHING_TO_COMMIT,
    OUTPUT_LIMIT_EXCEEDED,
    PATH_NOT_FOUND,
    REF_NOT_FOUND,
    REPOSITORY_NOT_FOUND,
    SIGNING_FAILED,
    UNEXPECTED_ERROR,
    UNPARSABLE_OUTPUT,
    WORKING_TREE_DIRTY,
    ErrorCategory,
    ErrorRecord,
    GitEngineError,
    ParseError,
    SpawnError,
    error_from_record,
)
from git_engine.models import ProcessResult
from git_engine.parsers import parse_conflicts

SIGNING_FAILURE_MARKER = "gpg failed to sign"

_MAX_STDERR_IN_CAUSE = 4096

# (pattern, category, code), checked in order after the fixed rules
_STDERR_RULES: list[tuple[re.Pattern, ErrorCategory, str]] = [
    (re.compile(r"CONFLICT"), ErrorCategory.CONFLICT, MERGE_CONFLICT),
    (re.compile(r"fix conflicts|unmerged files|you have unmerged paths", re.I),
     ErrorCategory.CONFLICT, MERGE_CONFLICT),
    (re.compile(r"would be overwritten by"), ErrorCategory.CONFLICT, WORKING_TREE_DIRTY),
    (re.compile(r"already exists"), ErrorCategory.CONFLICT, ALREADY_EXISTS),
    (re.compile(r"nothing to commit|no changes added to commit"),
     ErrorCategory.CONFLICT, NOTHING_TO_COMMIT),
    (re.compile(r"pathspec .* did not match"), ErrorCategory.NOT_FOUND, PATH_NOT_FOUND),
    (re.compile(r"no such path|does not exist in|exists on disk, but not in", re.I),
     ErrorCategory.NOT_FOUND, PATH_NOT_FOUND),
    (re.compile(
        r"unknown revision|ambiguous argument|invalid reference|not a valid ref"
        r"|bad revision|couldn't find remote ref|no such remote|does not appear to be a git repository"
        r"|branch '.*' not found|not a valid object name|needed a single revision"
        r"|does not have any commits yet|no stash entries found",
        re.I,
    ), ErrorCategory.NOT_FOUND, REF_NOT_FOUND),
]

_PREFIX_RE = re.compile(r"^(?:fatal|error|warning|hint): ", re.I)


def extract_git_error_message(stderr: str) -> str:
    """Pick the most relevant line of git's stderr, without its prefix."""
    lines = [line.strip() for line in stderr.splitlines() if line.strip()]
    if not lines:
        return ""
    for prefix in ("fatal:", "error:"):
        for line in lines:
            if line.lower().startswith(prefix):
                return _PREFIX_RE.sub("", line)
    for line in lines:
        if "CONFLICT" in line:
            return line
    for line in lines:
        if not line.lower().startswith("hint:"):
            return _PREFIX_RE.sub("", line)
    return _PREFIX_RE.sub("", lines[0])


def _process_cause(result: ProcessResult) -> dict:
    return {
        "exit_code": result.exit_code,
        "stderr": result.stderr[:_MAX_STDERR_IN_CAUSE],
        "elapsed_ms": result.elapsed_ms,
    }


def is_signing_failure(result: ProcessResult) -> bool:
    return result.exit_code not in (0, None) and SIGNING_FAILURE_MARKER in result.stderr


def map_process_result(result: ProcessResult, operation: Optional[str] = None) -> ErrorRecord:
    """Classify a ProcessResult that did not succeed."""
    op_label = operation or "git"

    if result.timed_out:
        return ErrorRecord(
            category=ErrorCategory.TIMEOUT,
            code=GIT_TIMEOUT,
            message=f"{op_label} timed out after {result.elapsed_ms}ms",
            operation=operation,
            cause=_process_cause(result),
        )
    if result.truncated:
        return ErrorRecord(
            category=ErrorCategory.TIMEOUT,
            code=OUTPUT_LIMIT_EXCEEDED,
            message=f"{op_label} output exceeded the buffer limit",
            operation=operation,
            cause=_process_cause(result),
        )

    stderr = result.stderr
    combined = f"{result.stdout}\n{stderr}"
    detail = extract_git_error_message(stderr) or extract_git_error_message(result.stdout)
    cause = _process_cause(result)

    if "index.lock" in stderr:
        return ErrorRecord(
            category=ErrorCategory.CONFLICT,
            code=INDEX_LOCKED,
            message=f"{op_label} failed: repository index is locked by another git process",
            operation=operation,
            details={"retryable": True},
            cause=cause,
        )
    if "not a git repository" in stderr.lower():
        return ErrorRecord(
            category=ErrorCategory.NOT_FOUND,
            code=REPOSITORY_NOT_FOUND,
            message=f"{op_label} failed: not a git repository",
            operation=operation,
            cause=cause,
        )
    if SIGNING_FAILURE_MARKER in stderr:
        return ErrorRecord(
            category=ErrorCategory.CONFLICT,
            code=SIGNING_FAILED,
            message=f"{op_label} failed: commit signing failed",
            operation=operation,
            cause=cause,
        )

    for pattern, category, code in _STDERR_RULES:
        if pattern.search(combined):
            details = {}
            if code == MERGE_CONFLICT:
                details["conflicted_files"] = parse_conflicts(combined)
            return ErrorRecord(
                category=category,
                code=code,
                message=f"{op_label} failed: {detail}" if detail else f"{op_label} failed",
                operation=operation,
                details=details,
                cause=cause,
            )

    return ErrorRecord(
        category=ErrorCategory.INTERNAL,
        code=GIT_OPERATION_FAILED,
        message=(
            f"{op_label} failed with exit code {result.exit_code}: {detail}"
            if detail
            else f"{op_label} failed with exit code {result.exit_code}"
        ),
        operation=operation,
        cause=cause,
    )


def map_error(
    cause: Union[ProcessResult, BaseException],
    operation: Optional[str] = None,
) -> ErrorRecord:
    """Map any failure cause to an ErrorRecord.

    Args:
        cause: A failed ProcessResult or the exception that was raised.
        operation: Operation name to include in the record.
    """
    if isinstance(cause, ProcessResult):
        return map_process_result(cause, operation)
    if isinstance(cause, GitEngineError):
        return cause.record
    if isinstance(cause, SpawnError):
        return ErrorRecord(
            category=ErrorCategory.INTERNAL,
            code=GIT_SPAWN_FAILED,
            message=str(cause),
            operation=operation,
            cause={"binary": cause.binary, "reason": cause.reason},
        )
    if isinstance(cause, ParseError):
        return ErrorRecord(
            category=ErrorCategory.INTERNAL,
            code=UNPARSABLE_OUTPUT,
            message=f"Could not parse git output: {cause}",
            operation=operation,
            details={"parser": cause.parser, "line": cause.line[:500]},
        )
    return ErrorRecord(
        category=ErrorCategory.INTERNAL,
        code=UNEXPECTED_ERROR,
        message=f"Unexpected error: {cause}",
        operation=operation,
        cause={"type": type(cause).__name__},
    )


def to_exception(
    cause: Union[ProcessResult, BaseException],
    operation: Optional[str] = None,
) -> GitEngineError:
    """Map ``cause`` and wrap the record in its category's exception."""
    if isinstance(cause, GitEngineError):
        return cause
    return error_from_record(map_error(cause, operation))


