"""Argument, path, and ref-name validation for git invocations.

Every argv produced by the command builder passes through ``validate_args``
before a process is spawned. Any failure raises ``GitValidationError`` (or
``NotFoundError`` for a missing working directory); nothing is sanitized
or rewritten.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Optional, Sequence

from git_engine.errors import (
    BLOCKED_FLAG,
    INVALID_BRANCH_NAME,
    INVALID_OPTIONS,
    PATH_TRAVERSAL,
    UNKNOWN_FLAG,
    UNSAFE_ARGUMENT,
    WORKING_DIRECTORY_NOT_FOUND,
    GitValidationError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------

MAX_ARGS_COUNT = 256                    # Max number of args
MAX_ARG_LENGTH = 8 * 1024               # 8KB per arg
MAX_BRANCH_NAME_LENGTH = 255

# ---------------------------------------------------------------------------
# Blocklists / allowlists
# ---------------------------------------------------------------------------

SHELL_METACHARACTERS = frozenset(";&|`$<>")

# Flags that can execute programs or escape the working directory.
HIGH_RISK_FLAGS = frozenset({
    "--upload-pack",
    "--receive-pack",
    "--exec",
    "--git-dir",
    "--work-tree",
    "--config-env",
    "--template",
})

# Long flags accepted without an inline value.
SAFE_FLAGS = frozenset({
    # status
    "--branch",
    "--ignore-submodules",
    "--short",
    "--porcelain",
    # common
    "--all",
    "--force",
    "--quiet",
    "--verbose",
    "--dry-run",
    "--no-color",
    "--no-pager",
    "--abort",
    "--continue",
    "--skip",
    # init / clone
    "--bare",
    "--single-branch",
    # add
    "--update",
    # commit
    "--amend",
    "--allow-empty",
    "--no-verify",
    "--no-gpg-sign",
    "--no-edit",
    "--gpg-sign",
    # log / show / diff
    "--cached",
    "--staged",
    "--stat",
    "--numstat",
    "--patch",
    "--no-patch",
    "--no-renames",
    "--no-ext-diff",
    "--no-textconv",
    "--line-porcelain",
    # branch / checkout / tag
    "--list",
    "--remotes",
    "--no-abbrev",
    "--detach",
    "--annotate",
    # merge / pull / rebase
    "--no-ff",
    "--ff-only",
    "--squash",
    "--rebase",
    "--no-rebase",
    "--no-commit",
    # stash
    "--include-untracked",
    "--keep-index",
    "--index",
    # fetch / push
    "--prune",
    "--tags",
    "--set-upstream",
    "--force-with-lease",
    "--delete",
    # reset
    "--soft",
    "--mixed",
    "--hard",
    # misc
    "--show-toplevel",
    "--version",
    "--verify",
})

_SHORT_FLAG_RE = re.compile(r"^-[a-zA-Z]$")
_PATH_SPLIT_RE = re.compile(r"[\\/]")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")

# git check-ref-format rules
_BRANCH_FORBIDDEN_CHARS = frozenset(" ~^:?*[\\")


def _has_traversal(value: str) -> bool:
    return ".." in _PATH_SPLIT_RE.split(value)


def _validation_error(code: str, message: str, **details) -> GitValidationError:
    return GitValidationError.create(code, message, details=details)


def _is_utf8_encodable(value: str) -> bool:
    # Lone surrogates survive pydantic str validation but not os.fsencode
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def validate_text(value: str, field: str = "input") -> None:
    """Check text sent to git on stdin (commit, merge and tag messages)."""
    if not _is_utf8_encodable(value):
        raise _validation_error(UNSAFE_ARGUMENT, f"{field} is not valid UTF-8", field=field)


# ---------------------------------------------------------------------------
# argv validation
# ---------------------------------------------------------------------------


def validate_args(args: Sequence[str], *, strict: bool = False) -> None:
    """Validate a complete git argument vector (without the binary).

    Args:
        args: Arguments that will follow the git binary.
        strict: Reject long flags that are neither known-safe nor carry an
            inline value. When False they are logged and allowed.

    Raises:
        GitValidationError: On the first unsafe argument.
    """
    if len(args) > MAX_ARGS_COUNT:
        raise _validation_error(
            INVALID_OPTIONS,
            f"Too many arguments ({len(args)}, max {MAX_ARGS_COUNT})",
        )

    after_separator = False
    for arg in args:
        if len(arg) > MAX_ARG_LENGTH:
            raise _validation_error(
                INVALID_OPTIONS,
                f"Argument too long ({len(arg)} chars, max {MAX_ARG_LENGTH})",
            )

        if any(ch in SHELL_METACHARACTERS for ch in arg):
            raise _validation_error(
                UNSAFE_ARGUMENT,
                f"Unsafe shell character detected in git argument: {arg}",
                argument=arg,
            )

        if "\x00" in arg:
            raise _validation_error(
                UNSAFE_ARGUMENT, "NUL byte in git argument", argument=arg
            )

        if not _is_utf8_encodable(arg):
            raise _validation_error(
                UNSAFE_ARGUMENT,
                "Git argument is not valid UTF-8",
                argument=ascii(arg),
            )

        if after_separator:
            if _has_traversal(arg):
                raise _validation_error(
                    PATH_TRAVERSAL,
                    f"Path traversal (..) not allowed in arg: {arg}",
                    argument=arg,
                )
            continue

        if arg == "--":
            after_separator = True
            continue

        if arg.startswith("-"):
            _validate_flag(arg, strict=strict)
            value = arg.split("=", 1)[1] if "=" in arg else ""
        else:
            value = arg

        if value and _has_traversal(value):
            raise _validation_error(
                PATH_TRAVERSAL,
                f"Path traversal (..) not allowed in arg: {arg}",
                argument=arg,
            )


def _validate_flag(arg: str, *, strict: bool) -> None:
    flag_name = arg.split("=", 1)[0]

    if flag_name in HIGH_RISK_FLAGS:
        raise _validation_error(
            BLOCKED_FLAG, f"Flag not allowed: {flag_name}", flag=flag_name
        )

    if _SHORT_FLAG_RE.match(flag_name) or flag_name in SAFE_FLAGS or "=" in arg:
        return

    if strict:
        raise _validation_error(
            UNKNOWN_FLAG, f"Unknown or potentially unsafe git flag: {arg}", flag=arg
        )
    logger.warning("Allowing unrecognized git flag %s", arg)


# ---------------------------------------------------------------------------
# Paths and names
# ---------------------------------------------------------------------------


def validate_path_shape(path: str, field: str = "path") -> None:
    """Check that a path is absolute and free of ``..`` segments."""
    if not path:
        raise _validation_error(INVALID_OPTIONS, f"{field} cannot be empty", field=field)
    if "\x00" in path:
        raise _validation_error(UNSAFE_ARGUMENT, f"{field} contains a NUL byte", field=field)
    if not os.path.isabs(path):
        raise _validation_error(
            INVALID_OPTIONS, f"{field} must be an absolute path: {path}", field=field
        )
    if _has_traversal(path):
        raise _validation_error(
            PATH_TRAVERSAL, f"Path traversal (..) not allowed in {field}: {path}", field=field
        )


def validate_working_directory(path: str, *, must_exist: bool = True) -> str:
    """Validate a working directory and return it normalized.

    Raises:
        GitValidationError: Path is relative or contains traversal.
        NotFoundError: ``must_exist`` and the directory does not exist.
    """
    validate_path_shape(path, "working_directory")
    normalized = os.path.normpath(path)
    if must_exist and not os.path.isdir(normalized):
        raise NotFoundError.create(
            WORKING_DIRECTORY_NOT_FOUND,
            f"Working directory does not exist: {normalized}",
            details={"path": normalized},
        )
    return normalized


def validate_relative_path(path: str, field: str = "path") -> None:
    """Check a path that git resolves relative to the working directory."""
    if not path:
        raise _validation_error(INVALID_OPTIONS, f"{field} cannot be empty", field=field)
    if os.path.isabs(path):
        raise _validation_error(
            INVALID_OPTIONS, f"{field} must be relative to the working directory: {path}", field=field
        )
    if path.startswith("-"):
        raise _validation_error(
            INVALID_OPTIONS, f"{field} must not start with '-': {path}", field=field
        )
    if _has_traversal(path):
        raise _validation_error(
            PATH_TRAVERSAL, f"Path traversal (..) not allowed in {field}: {path}", field=field
        )


def validate_ref(ref: str, field: str = "ref") -> None:
    """Check a revision expression passed as a positional argument."""
    if not ref or not ref.strip():
        raise _validation_error(INVALID_OPTIONS, f"{field} cannot be empty", field=field)
    if ref.startswith("-"):
        raise _validation_error(
            INVALID_OPTIONS, f"{field} must not start with '-': {ref}", field=field
        )
    if _CONTROL_CHARS_RE.search(ref) or " " in ref:
        raise _validation_error(
            INVALID_OPTIONS, f"{field} contains whitespace or control characters", field=field
        )


def validate_branch_name(name: str, field: str = "name") -> None:
    """Validate a branch or tag name against git's ref-name rules.

    Raises:
        GitValidationError: With code INVALID_BRANCH_NAME naming the rule.
    """
    reason = branch_name_problem(name)
    if reason is not None:
        raise _validation_error(
            INVALID_BRANCH_NAME, f"Invalid {field} '{name}': {reason}", field=field
        )


def branch_name_problem(name: str) -> Optional[str]:
    """Return why ``name`` is not a valid ref name, or None if it is."""
    if not name:
        return "name cannot be empty"
    if len(name) > MAX_BRANCH_NAME_LENGTH:
        return f"name exceeds {MAX_BRANCH_NAME_LENGTH} characters"
    if name.startswith("-"):
        return "name cannot start with '-'"
    if name.startswith(".") or "/." in name:
        return "name components cannot start with '.'"
    if ".." in name:
        return "name cannot contain '..'"
    if "//" in name:
        return "name cannot contain '//'"
    if "@{" in name:
        return "name cannot contain '@{'"
    if name == "@":
        return "name cannot be '@'"
    if _CONTROL_CHARS_RE.search(name):
        return "name cannot contain control characters"
    bad = sorted(ch for ch in set(name) if ch in _BRANCH_FORBIDDEN_CHARS)
    if bad:
        return f"name cannot contain {' '.join(repr(ch) for ch in bad)}"
    if name.endswith(".lock"):
        return "name cannot end with '.lock'"
    if name.endswith("/") or name.endswith("."):
        return "name cannot end with '/' or '.'"
    if name.startswith("/"):
        return "name cannot start with '/'"
    return None
