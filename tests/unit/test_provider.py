"""Unit tests for CliGitProvider with a scripted executor.

No git process is spawned: ``FakeExecutor`` (see conftest) records each
argv and replays canned ProcessResults.
"""

import logging
import sqlite3

import pytest

from git_engine.config import EngineConfig
from git_engine.errors import (
    GIT_SPAWN_FAILED,
    INVALID_OPTIONS,
    MERGE_CONFLICT,
    NO_WORKING_DIRECTORY,
    SIGNING_FAILED,
    UNPARSABLE_OUTPUT,
    UNEXPECTED_ERROR,
    UNSAFE_ARGUMENT,
    UNSUPPORTED_OPERATION,
    WORKING_DIRECTORY_NOT_FOUND,
    ConflictError,
    GitValidationError,
    InternalError,
    NotFoundError,
    SpawnError,
)
from git_engine.logging_config import get_context
from git_engine.models import (
    CommitOptions,
    GitOperation,
    OperationContext,
    ProcessResult,
    RequestContext,
    StatusOptions,
    StatusResult,
)
from git_engine.provider import CliGitProvider, audit_log, coerce_options, resolve_operation
from git_engine.working_dir import InMemoryWorkingDirectoryStore

HEAD = "c" * 40
GPG_FAILURE = ProcessResult(
    exit_code=128,
    stderr="error: gpg failed to sign the data\nfatal: failed to write commit object\n",
)
COMMIT_OK = ProcessResult(exit_code=0, stdout="[main 1a2b3c4] Add feature\n 1 file changed\n")
REV_PARSE = ProcessResult(exit_code=0, stdout=HEAD + "\n")
STATUS_OUT = ProcessResult(exit_code=0, stdout=f"# branch.oid {HEAD}\n# branch.head main\n? new.txt\n")


@pytest.fixture
def ctx(tmp_path):
    return OperationContext(working_directory=str(tmp_path))


class TestOperationResolution:
    """Operation names and option coercion."""

    def test_resolve_by_name(self):
        assert resolve_operation("status") is GitOperation.STATUS
        assert resolve_operation("cherry-pick") is GitOperation.CHERRY_PICK

    def test_unknown_operation(self):
        with pytest.raises(GitValidationError) as exc_info:
            resolve_operation("gc")
        assert exc_info.value.code == UNSUPPORTED_OPERATION

    def test_coerce_dict(self):
        opts = coerce_options(GitOperation.COMMIT, {"message": "hi"})
        assert isinstance(opts, CommitOptions)

    def test_coerce_none_uses_defaults(self):
        assert coerce_options(GitOperation.STATUS, None) == StatusOptions()

    def test_coerce_reports_field_errors(self):
        with pytest.raises(GitValidationError) as exc_info:
            coerce_options(GitOperation.COMMIT, {"mesage": "typo"})
        err = exc_info.value
        assert err.code == INVALID_OPTIONS
        fields = {e["field"] for e in err.record.details["errors"]}
        assert "mesage" in fields
        assert "message" in fields

    def test_coerce_rejects_wrong_model(self):
        with pytest.raises(GitValidationError):
            coerce_options(GitOperation.STATUS, CommitOptions(message="x"))


class TestExecute:
    """The execute() pipeline."""

    def test_status(self, provider, fake_executor, ctx, tmp_path):
        fake_executor.queue(STATUS_OUT)
        result = provider.execute("status", None, ctx)
        assert isinstance(result, StatusResult)
        assert result.branch == "main"
        assert result.untracked == ["new.txt"]
        call = fake_executor.calls[0]
        assert call["args"][0] == "status"
        assert call["cwd"] == str(tmp_path)

    def test_convenience_method(self, provider, fake_executor, ctx):
        fake_executor.queue(STATUS_OUT)
        assert provider.status(context=ctx).branch == "main"

    def test_invalid_options_never_spawn(self, provider, fake_executor, ctx):
        with pytest.raises(GitValidationError):
            provider.execute("commit", {"message": ""}, ctx)
        assert fake_executor.calls == []

    def test_unsafe_argument_never_spawns(self, provider, fake_executor, ctx):
        with pytest.raises(GitValidationError) as exc_info:
            provider.execute("branch", {"action": "create", "name": "x;rm"}, ctx)
        assert exc_info.value.code == UNSAFE_ARGUMENT
        assert fake_executor.calls == []

    def test_denied_command_is_audited(self, provider, ctx, caplog):
        with caplog.at_level(logging.INFO, logger="git_engine.audit"):
            with pytest.raises(GitValidationError):
                provider.execute("log", {"author": "a|b"}, ctx)
        denied = [r for r in caplog.records if getattr(r, "decision", None) == "deny"]
        assert len(denied) == 1
        assert denied[0].git_operation == "log"
        assert denied[0].levelno == logging.WARNING

    def test_allowed_command_is_audited_without_stdin(self, provider, fake_executor, ctx, caplog):
        fake_executor.queue(COMMIT_OK, REV_PARSE)
        with caplog.at_level(logging.INFO, logger="git_engine.audit"):
            provider.execute("commit", {"message": "secret message body"}, ctx)
        allowed = [r for r in caplog.records if getattr(r, "decision", None) == "allow"]
        assert [r.command_args[0] for r in allowed] == ["commit", "rev-parse"]
        assert all("secret message body" not in r.getMessage() for r in caplog.records)
        assert all("secret message body" not in str(r.command_args) for r in allowed)

    def test_log_context_restored(self, provider, fake_executor, tmp_path):
        fake_executor.queue(STATUS_OUT)
        ctx = OperationContext(
            working_directory=str(tmp_path),
            request_context=RequestContext(tenant_id="acme", trace_id="t-1"),
        )
        provider.execute("status", None, ctx)
        assert get_context() == {}

    def test_missing_working_directory(self, provider, fake_executor, tmp_path):
        ctx = OperationContext(working_directory=str(tmp_path / "gone"))
        with pytest.raises(NotFoundError) as exc_info:
            provider.execute("status", None, ctx)
        assert exc_info.value.code == WORKING_DIRECTORY_NOT_FOUND
        assert fake_executor.calls == []

    def test_relative_working_directory(self, provider):
        with pytest.raises(GitValidationError):
            provider.execute("status", None, OperationContext(working_directory="repo"))

    def test_spawn_failure_becomes_internal(self, provider, fake_executor, ctx):
        fake_executor.queue(SpawnError("git", "No such file or directory"))
        with pytest.raises(InternalError) as exc_info:
            provider.execute("status", None, ctx)
        assert exc_info.value.code == GIT_SPAWN_FAILED
        assert isinstance(exc_info.value.__cause__, SpawnError)

    def test_unparsable_output(self, provider, fake_executor, ctx):
        fake_executor.queue(ProcessResult(exit_code=0, stdout="garbage\n"))
        with pytest.raises(InternalError) as exc_info:
            provider.execute("status", None, ctx)
        assert exc_info.value.code == UNPARSABLE_OUTPUT

    def test_git_failure_mapped(self, provider, fake_executor, ctx):
        fake_executor.queue(ProcessResult(
            exit_code=1,
            stdout="CONFLICT (content): Merge conflict in a.txt\n"
                   "Automatic merge failed; fix conflicts and then commit the result.\n",
        ))
        with pytest.raises(ConflictError) as exc_info:
            provider.execute("merge", {"branch": "feature"}, ctx)
        assert exc_info.value.code == MERGE_CONFLICT
        assert exc_info.value.record.details["conflicted_files"] == ["a.txt"]
        assert exc_info.value.record.operation == "merge"

    def test_unexpected_exception_becomes_internal(self, provider, fake_executor, ctx):
        fake_executor.queue(RuntimeError("boom"))
        with pytest.raises(InternalError) as exc_info:
            provider.execute("status", None, ctx)
        assert exc_info.value.code == UNEXPECTED_ERROR
        assert exc_info.value.record.operation == "status"
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_store_failure_becomes_internal(self, fake_executor):
        class BrokenStore(InMemoryWorkingDirectoryStore):
            def get(self, tenant_id, session_id, context=None):
                raise sqlite3.OperationalError("database is locked")

        provider = CliGitProvider(
            config=EngineConfig(), executor=fake_executor, store=BrokenStore()
        )
        with pytest.raises(InternalError) as exc_info:
            provider.execute("status", None, OperationContext())
        assert exc_info.value.code == UNEXPECTED_ERROR
        assert fake_executor.calls == []

    def test_non_utf8_path_rejected_before_spawn(self, provider, fake_executor, ctx):
        with pytest.raises(GitValidationError) as exc_info:
            provider.add({"paths": ["a\ud800"]}, ctx)
        assert exc_info.value.code == UNSAFE_ARGUMENT
        assert fake_executor.calls == []

    def test_non_utf8_message_rejected_before_spawn(self, provider, fake_executor, ctx):
        with pytest.raises(GitValidationError) as exc_info:
            provider.commit({"message": "fix \udcff"}, ctx)
        assert exc_info.value.code == UNSAFE_ARGUMENT
        assert fake_executor.calls == []


class TestWorkingDirectoryResolution:
    """Session store lookup when no explicit directory is given."""

    def test_uses_stored_directory(self, provider, fake_executor, store, tmp_path):
        store.set("default", "s1", str(tmp_path))
        fake_executor.queue(STATUS_OUT)
        ctx = OperationContext(request_context=RequestContext(session_id="s1"))
        provider.execute("status", None, ctx)
        assert fake_executor.calls[0]["cwd"] == str(tmp_path)

    def test_tenant_override_scopes_lookup(self, provider, fake_executor, store, tmp_path):
        store.set("acme", "s1", str(tmp_path))
        fake_executor.queue(STATUS_OUT)
        ctx = OperationContext(
            request_context=RequestContext(tenant_id="other", session_id="s1"),
            tenant_id="acme",
        )
        provider.execute("status", None, ctx)
        assert fake_executor.calls[0]["cwd"] == str(tmp_path)

    def test_other_tenant_cannot_see_directory(self, provider, fake_executor, store, tmp_path):
        store.set("acme", "s1", str(tmp_path))
        ctx = OperationContext(request_context=RequestContext(tenant_id="evil", session_id="s1"))
        with pytest.raises(GitValidationError) as exc_info:
            provider.execute("status", None, ctx)
        assert exc_info.value.code == NO_WORKING_DIRECTORY
        assert fake_executor.calls == []

    def test_explicit_directory_wins(self, provider, fake_executor, store, tmp_path):
        other = tmp_path / "other"
        other.mkdir()
        store.set("default", "default", str(tmp_path))
        fake_executor.queue(STATUS_OUT)
        provider.execute("status", None, OperationContext(working_directory=str(other)))
        assert fake_executor.calls[0]["cwd"] == str(other)


class TestCommitAndSigning:
    """Commit results and the single unsigned retry."""

    def test_commit_result(self, provider, fake_executor, ctx):
        fake_executor.queue(COMMIT_OK, REV_PARSE)
        result = provider.commit({"message": "Add feature"}, ctx)
        assert result.hash == HEAD
        assert result.branch == "main"
        assert result.subject == "Add feature"
        assert result.signed is False
        commit_call = fake_executor.calls[0]
        assert commit_call["input"] == "Add feature"
        assert fake_executor.argvs[1] == ["rev-parse", "--verify", "HEAD"]

    def test_author_passed_as_env(self, provider, fake_executor, ctx):
        fake_executor.queue(COMMIT_OK, REV_PARSE)
        provider.commit({"message": "m", "author_name": "Ada", "author_email": "ada@example.com"}, ctx)
        assert fake_executor.calls[0]["env"] == {
            "GIT_AUTHOR_NAME": "Ada",
            "GIT_AUTHOR_EMAIL": "ada@example.com",
        }

    def test_signed_commit(self, fake_executor, store, ctx):
        provider = CliGitProvider(EngineConfig(sign_commits=True), fake_executor, store)
        fake_executor.queue(COMMIT_OK, REV_PARSE)
        result = provider.commit({"message": "m"}, ctx)
        assert "--gpg-sign" in fake_executor.argvs[0]
        assert result.signed is True

    def test_signing_failure_retries_once_unsigned(self, fake_executor, store, ctx):
        provider = CliGitProvider(EngineConfig(sign_commits=True), fake_executor, store)
        fake_executor.queue(GPG_FAILURE, COMMIT_OK, REV_PARSE)
        result = provider.commit({"message": "m"}, ctx)
        commit_argvs = [a for a in fake_executor.argvs if a[0] == "commit"]
        assert len(commit_argvs) == 2
        assert "--gpg-sign" in commit_argvs[0]
        assert "--no-gpg-sign" in commit_argvs[1]
        assert result.signed is False

    def test_signing_failure_twice_raises(self, provider, fake_executor, ctx):
        fake_executor.queue(GPG_FAILURE, GPG_FAILURE)
        with pytest.raises(ConflictError) as exc_info:
            provider.commit({"message": "m", "sign": True}, ctx)
        assert exc_info.value.code == SIGNING_FAILED
        assert len(fake_executor.calls) == 2

    def test_no_retry_when_signing_not_requested(self, provider, fake_executor, ctx):
        fake_executor.queue(GPG_FAILURE)
        with pytest.raises(ConflictError) as exc_info:
            provider.commit({"message": "m"}, ctx)
        assert exc_info.value.code == SIGNING_FAILED
        assert len(fake_executor.calls) == 1

    def test_no_retry_on_unrelated_failure(self, provider, fake_executor, ctx):
        fake_executor.queue(ProcessResult(exit_code=1, stdout="nothing to commit, working tree clean\n"))
        with pytest.raises(ConflictError):
            provider.commit({"message": "m", "sign": True}, ctx)
        assert len(fake_executor.calls) == 1

    def test_explicit_sign_false_overrides_config(self, fake_executor, store, ctx):
        provider = CliGitProvider(EngineConfig(sign_commits=True), fake_executor, store)
        fake_executor.queue(COMMIT_OK, REV_PARSE)
        provider.commit({"message": "m", "sign": False}, ctx)
        assert "--no-gpg-sign" in fake_executor.argvs[0]

    def test_merge_signing_retry(self, provider, fake_executor, ctx):
        fake_executor.queue(
            GPG_FAILURE,
            ProcessResult(exit_code=0, stdout="Merge made by the 'ort' strategy.\n a.txt | 1 +\n"),
        )
        result = provider.merge({"branch": "feature", "no_ff": True, "sign": True}, ctx)
        assert "--gpg-sign" in fake_executor.argvs[0]
        assert "--no-gpg-sign" in fake_executor.argvs[1]
        assert result.signed is False
        assert result.files_changed == ["a.txt"]

    def test_fast_forward_merge_not_signed(self, provider, fake_executor, ctx):
        fake_executor.queue(ProcessResult(
            exit_code=0, stdout="Updating 1a2b3c4..5d6e7f8\nFast-forward\n a.txt | 2 +-\n",
        ))
        result = provider.merge({"branch": "feature", "sign": True}, ctx)
        assert result.fast_forward
        assert result.signed is False

    def test_ff_only_merge_never_retries(self, provider, fake_executor, ctx):
        fake_executor.queue(GPG_FAILURE)
        with pytest.raises(ConflictError):
            provider.merge({"branch": "feature", "ff_only": True, "sign": True}, ctx)
        assert len(fake_executor.calls) == 1
        assert not any("gpg" in a for a in fake_executor.argvs[0])


class TestOtherHandlers:
    """Result shaping for a selection of operations."""

    def test_reset_reports_head(self, provider, fake_executor, ctx):
        fake_executor.queue(
            ProcessResult(exit_code=0, stdout="Unstaged changes after reset:\nM\ta.txt\n"),
            REV_PARSE,
        )
        result = provider.reset({"ref": "HEAD~1"}, ctx)
        assert result.head == HEAD
        assert result.unstaged == ["a.txt"]

    def test_clean_dry_run(self, provider, fake_executor, ctx):
        fake_executor.queue(ProcessResult(exit_code=0, stdout="Would remove junk.txt\n"))
        result = provider.clean(None, ctx)
        assert result.dry_run
        assert result.files == ["junk.txt"]
        assert fake_executor.argvs[0] == ["clean", "-n"]

    def test_init_path(self, provider, fake_executor, ctx, tmp_path):
        fake_executor.queue(ProcessResult(
            exit_code=0, stdout=f"Initialized empty Git repository in {tmp_path}/sub/.git/\n",
        ))
        result = provider.init({"directory": "sub"}, ctx)
        assert result.path == str(tmp_path / "sub")
        assert result.reinitialized is False

    def test_clone_directory_from_url(self, provider, fake_executor, ctx, tmp_path):
        fake_executor.queue(ProcessResult(exit_code=0, stderr=""))
        result = provider.clone({"url": "https://example.com/org/project.git"}, ctx)
        assert result.directory == str(tmp_path / "project")

    def test_remote_get_url(self, provider, fake_executor, ctx):
        fake_executor.queue(ProcessResult(exit_code=0, stdout="https://example.com/r.git\n"))
        result = provider.remote({"action": "get_url", "name": "origin"}, ctx)
        assert result.url == "https://example.com/r.git"

    def test_tag_list(self, provider, fake_executor, ctx):
        fake_executor.queue(ProcessResult(exit_code=0, stdout="v1.0\nv1.1\n"))
        assert provider.tag(None, ctx).tags == ["v1.0", "v1.1"]

    def test_cherry_pick_abort_skips_head(self, provider, fake_executor, ctx):
        result = provider.cherry_pick({"abort": True}, ctx)
        assert result.aborted
        assert len(fake_executor.calls) == 1

    def test_push(self, provider, fake_executor, ctx):
        fake_executor.queue(ProcessResult(
            exit_code=0,
            stdout="To https://example.com/r.git\n \trefs/heads/main:refs/heads/main\t1a2b3c4..5d6e7f8\nDone\n",
        ))
        result = provider.push({"branch": "main"}, ctx)
        assert result.url == "https://example.com/r.git"
        assert result.refs[0].remote_ref == "refs/heads/main"


class TestMetadata:
    """capabilities() and health_check()."""

    def test_capabilities(self, provider):
        caps = provider.capabilities()
        assert caps.name == "cli"
        assert set(caps.supported_operations) == {op.value for op in GitOperation}
        assert "message" in caps.operation_options["commit"]

    def test_healthy(self, provider, fake_executor):
        fake_executor.queue(ProcessResult(exit_code=0, stdout="git version 2.43.0\n"))
        status = provider.health_check()
        assert status.healthy
        assert status.git_version == "2.43.0"
        assert fake_executor.argvs[0] == ["--version"]

    def test_unhealthy_when_spawn_fails(self, provider, fake_executor):
        fake_executor.queue(SpawnError("git", "No such file or directory"))
        status = provider.health_check()
        assert not status.healthy
        assert "No such file or directory" in status.message


class TestAuditLog:
    """audit_log() entry shape."""

    def test_output_truncated(self, caplog):
        with caplog.at_level(logging.INFO, logger="git_engine.audit"):
            audit_log(event="execute", operation="log", decision="allow", stdout="x" * 5000)
        record = caplog.records[-1]
        assert len(record.stdout) == 1024
        assert record.stdout_truncated is True
        assert record.component == "git_engine"
