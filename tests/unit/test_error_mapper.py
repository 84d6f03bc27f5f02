"""Unit tests for git_engine.error_mapper."""

import pytest

from git_engine.error_mapper import (
    extract_git_error_message,
    is_signing_failure,
    map_error,
    map_process_result,
    to_exception,
)
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
    ConflictError,
    ErrorCategory,
    GitValidationError,
    InternalError,
    ParseError,
    SpawnError,
)
from git_engine.models import ProcessResult


def _failed(stderr="", stdout="", exit_code=128, **kwargs):
    return ProcessResult(exit_code=exit_code, stdout=stdout, stderr=stderr, **kwargs)


class TestFixedRules:
    """Rules checked before the stderr pattern table."""

    def test_timeout(self):
        record = map_process_result(
            ProcessResult(exit_code=None, timed_out=True, elapsed_ms=50), "fetch"
        )
        assert record.category is ErrorCategory.TIMEOUT
        assert record.code == GIT_TIMEOUT
        assert record.operation == "fetch"

    def test_output_limit(self):
        record = map_process_result(ProcessResult(exit_code=None, truncated=True), "log")
        assert record.category is ErrorCategory.TIMEOUT
        assert record.code == OUTPUT_LIMIT_EXCEEDED

    def test_index_lock(self):
        stderr = (
            "fatal: Unable to create '/repo/.git/index.lock': File exists.\n\n"
            "Another git process seems to be running in this repository\n"
        )
        record = map_process_result(_failed(stderr), "add")
        assert record.category is ErrorCategory.CONFLICT
        assert record.code == INDEX_LOCKED
        assert record.details["retryable"] is True

    def test_not_a_repository(self):
        stderr = "fatal: not a git repository (or any of the parent directories): .git\n"
        record = map_process_result(_failed(stderr), "status")
        assert record.category is ErrorCategory.NOT_FOUND
        assert record.code == REPOSITORY_NOT_FOUND

    def test_signing_failure(self):
        stderr = "error: gpg failed to sign the data\nfatal: failed to write commit object\n"
        record = map_process_result(_failed(stderr), "commit")
        assert record.category is ErrorCategory.CONFLICT
        assert record.code == SIGNING_FAILED

    def test_index_lock_wins_over_other_patterns(self):
        stderr = "fatal: Unable to create '.git/index.lock': File exists. CONFLICT\n"
        assert map_process_result(_failed(stderr)).code == INDEX_LOCKED


class TestStderrRules:
    """Pattern table classification."""

    def test_merge_conflict_lists_files(self):
        stdout = (
            "Auto-merging a.txt\n"
            "CONFLICT (content): Merge conflict in a.txt\n"
            "Automatic merge failed; fix conflicts and then commit the result.\n"
        )
        record = map_process_result(_failed(stdout=stdout, exit_code=1), "merge")
        assert record.category is ErrorCategory.CONFLICT
        assert record.code == MERGE_CONFLICT
        assert record.details["conflicted_files"] == ["a.txt"]
        assert "CONFLICT" in record.message

    @pytest.mark.parametrize(
        "stderr,category,code",
        [
            (
                "error: Your local changes to the following files would be overwritten by checkout:\n\ta.txt\n",
                ErrorCategory.CONFLICT,
                WORKING_TREE_DIRTY,
            ),
            ("fatal: a branch named 'x' already exists\n", ErrorCategory.CONFLICT, ALREADY_EXISTS),
            ("error: pathspec 'nope.txt' did not match any file(s) known to git\n",
             ErrorCategory.NOT_FOUND, PATH_NOT_FOUND),
            ("fatal: no such path 'x' in HEAD\n", ErrorCategory.NOT_FOUND, PATH_NOT_FOUND),
            ("fatal: ambiguous argument 'nope': unknown revision or path not in the working tree.\n",
             ErrorCategory.NOT_FOUND, REF_NOT_FOUND),
            ("fatal: couldn't find remote ref feature\n", ErrorCategory.NOT_FOUND, REF_NOT_FOUND),
            ("error: No such remote 'upstream'\n", ErrorCategory.NOT_FOUND, REF_NOT_FOUND),
            ("fatal: your current branch 'main' does not have any commits yet\n",
             ErrorCategory.NOT_FOUND, REF_NOT_FOUND),
        ],
    )
    def test_classification(self, stderr, category, code):
        record = map_process_result(_failed(stderr))
        assert record.category is category
        assert record.code == code

    def test_nothing_to_commit_on_stdout(self):
        stdout = "On branch main\nnothing to commit, working tree clean\n"
        record = map_process_result(_failed(stdout=stdout, exit_code=1), "commit")
        assert record.category is ErrorCategory.CONFLICT
        assert record.code == NOTHING_TO_COMMIT

    def test_unclassified_keeps_raw_stderr(self):
        stderr = "fatal: something nobody has seen before\n"
        record = map_process_result(_failed(stderr, exit_code=3), "push")
        assert record.category is ErrorCategory.INTERNAL
        assert record.code == GIT_OPERATION_FAILED
        assert record.cause["stderr"] == stderr
        assert record.cause["exit_code"] == 3
        assert "something nobody has seen before" in record.message

    def test_cause_stderr_truncated(self):
        record = map_process_result(_failed("x" * 10000))
        assert len(record.cause["stderr"]) == 4096


class TestExtractMessage:
    """Picking the relevant stderr line."""

    def test_prefers_fatal(self):
        stderr = "hint: try this\nwarning: meh\nfatal: real problem\n"
        assert extract_git_error_message(stderr) == "real problem"

    def test_skips_hints(self):
        assert extract_git_error_message("hint: a\nplain line\n") == "plain line"

    def test_empty(self):
        assert extract_git_error_message("") == ""


class TestMapError:
    """map_error() over non-process causes."""

    def test_spawn_error(self):
        record = map_error(SpawnError("git", "No such file or directory"), "status")
        assert record.category is ErrorCategory.INTERNAL
        assert record.code == GIT_SPAWN_FAILED
        assert record.cause == {"binary": "git", "reason": "No such file or directory"}

    def test_parse_error(self):
        record = map_error(ParseError("status", "garbage"), "status")
        assert record.code == UNPARSABLE_OUTPUT
        assert record.details["line"] == "garbage"

    def test_engine_error_passes_through(self):
        err = GitValidationError.create("UNSAFE_ARGUMENT", "bad")
        assert map_error(err) is err.record
        assert to_exception(err) is err

    def test_unexpected(self):
        record = map_error(RuntimeError("boom"))
        assert record.code == UNEXPECTED_ERROR
        assert record.cause == {"type": "RuntimeError"}

    def test_to_exception_class(self):
        assert isinstance(to_exception(SpawnError("git", "x")), InternalError)
        assert isinstance(
            to_exception(_failed("error: gpg failed to sign the data")), ConflictError
        )


class TestSigningDetection:
    """is_signing_failure()."""

    def test_detects_marker(self):
        assert is_signing_failure(_failed("error: gpg failed to sign the data"))

    def test_requires_failure(self):
        assert not is_signing_failure(
            ProcessResult(exit_code=0, stderr="gpg failed to sign")
        )

    def test_other_failure(self):
        assert not is_signing_failure(_failed("fatal: something else"))
