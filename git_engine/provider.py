"""Provider abstraction and the git-CLI provider.

``GitProvider`` is the engine's public contract: ``execute(operation,
options, context)`` plus one convenience method per operation,
``capabilities()`` and ``health_check()``. ``CliGitProvider`` implements
it by chaining the working-directory store, command builder, validator,
process executor, output parsers and error mapper.

Every spawned git process is recorded on the ``git_engine.audit`` logger.
"""

from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from git_engine import __version__
from git_engine.command_builder import (
    GitCommand,
    build_command,
    build_rev_parse_head,
    build_version,
)
from git_engine.config import EngineConfig
from git_engine.error_mapper import is_signing_failure, to_exception
from git_engine.errors import (
    INVALID_OPTIONS,
    NO_WORKING_DIRECTORY,
    UNSUPPORTED_OPERATION,
    GitEngineError,
    GitValidationError,
    SpawnError,
)
from git_engine.executor import GitExecutor
from git_engine.logging_config import LogContext
from git_engine.models import (
    OPTIONS_BY_OPERATION,
    AddResult,
    BlameResult,
    BranchResult,
    CheckoutResult,
    CherryPickResult,
    CleanResult,
    CloneResult,
    CommitResult,
    DiffResult,
    FetchResult,
    GitOperation,
    HealthStatus,
    InitResult,
    LogResult,
    MergeResult,
    OperationContext,
    OperationOptions,
    OperationRequest,
    ProcessResult,
    ProviderCapabilities,
    PullResult,
    PushResult,
    RebaseResult,
    ReflogResult,
    RemoteResult,
    ResetResult,
    ResultModel,
    ShowResult,
    StashResult,
    StatusResult,
    TagResult,
    WorktreeResult,
)
from git_engine import parsers
from git_engine.validation import validate_args, validate_text, validate_working_directory
from git_engine.working_dir import WorkingDirectoryStore, create_store

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("git_engine.audit")

AUDIT_OUTPUT_TRUNCATE = 1024

OptionsInput = Union[OperationOptions, Mapping[str, Any], None]


def audit_log(
    *,
    event: str,
    operation: str,
    decision: str,
    command_args: Optional[list[str]] = None,
    reason: Optional[str] = None,
    exit_code: Optional[int] = None,
    elapsed_ms: Optional[int] = None,
    stdout: Optional[str] = None,
    stderr: Optional[str] = None,
    **extra: Any,
) -> None:
    """Emit a structured audit log entry for a git operation.

    Correlation ids (tenant, session, trace) come from the logging context.
    stdin (commit and tag messages) is never logged; stdout/stderr are
    truncated to AUDIT_OUTPUT_TRUNCATE characters.
    """
    entry: dict[str, Any] = {
        "event": event,
        "component": "git_engine",
        "git_operation": operation,
        "decision": decision,
    }
    if reason:
        entry["reason"] = reason
    if command_args:
        # Avoid clobbering LogRecord.args (reserved field in logging).
        entry["command_args"] = command_args
    if exit_code is not None:
        entry["exit_code"] = exit_code
    if elapsed_ms is not None:
        entry["elapsed_ms"] = elapsed_ms

    if stdout is not None:
        entry["stdout"] = stdout[:AUDIT_OUTPUT_TRUNCATE]
        if len(stdout) > AUDIT_OUTPUT_TRUNCATE:
            entry["stdout_truncated"] = True
    if stderr is not None:
        entry["stderr"] = stderr[:AUDIT_OUTPUT_TRUNCATE]
        if len(stderr) > AUDIT_OUTPUT_TRUNCATE:
            entry["stderr_truncated"] = True

    if extra:
        entry.update(extra)

    log_fn = audit_logger.warning if decision in ("deny", "error") else audit_logger.info
    log_fn("git.%s", event, extra=entry)


# ---------------------------------------------------------------------------
# Provider contract
# ---------------------------------------------------------------------------


class GitProvider(ABC):
    """Abstract git provider.

    Implementations raise ``GitEngineError`` subclasses for every failure;
    the exception's ``record`` is the structured ErrorRecord.
    """

    name: str = "abstract"
    version: str = __version__

    @abstractmethod
    def execute(
        self,
        operation: Union[GitOperation, str],
        options: OptionsInput = None,
        context: Optional[OperationContext] = None,
    ) -> ResultModel:
        """Run one operation and return its typed result."""

    @abstractmethod
    def capabilities(self) -> ProviderCapabilities:
        """Describe supported operations and their options."""

    @abstractmethod
    def health_check(self) -> HealthStatus:
        """Check that the provider can run git."""

    def init(self, options: OptionsInput = None, context=None) -> InitResult:
        return self.execute(GitOperation.INIT, options, context)

    def clone(self, options: OptionsInput = None, context=None) -> CloneResult:
        return self.execute(GitOperation.CLONE, options, context)

    def status(self, options: OptionsInput = None, context=None) -> StatusResult:
        return self.execute(GitOperation.STATUS, options, context)

    def clean(self, options: OptionsInput = None, context=None) -> CleanResult:
        return self.execute(GitOperation.CLEAN, options, context)

    def add(self, options: OptionsInput = None, context=None) -> AddResult:
        return self.execute(GitOperation.ADD, options, context)

    def commit(self, options: OptionsInput = None, context=None) -> CommitResult:
        return self.execute(GitOperation.COMMIT, options, context)

    def log(self, options: OptionsInput = None, context=None) -> LogResult:
        return self.execute(GitOperation.LOG, options, context)

    def show(self, options: OptionsInput = None, context=None) -> ShowResult:
        return self.execute(GitOperation.SHOW, options, context)

    def diff(self, options: OptionsInput = None, context=None) -> DiffResult:
        return self.execute(GitOperation.DIFF, options, context)

    def blame(self, options: OptionsInput = None, context=None) -> BlameResult:
        return self.execute(GitOperation.BLAME, options, context)

    def reflog(self, options: OptionsInput = None, context=None) -> ReflogResult:
        return self.execute(GitOperation.REFLOG, options, context)

    def branch(self, options: OptionsInput = None, context=None) -> BranchResult:
        return self.execute(GitOperation.BRANCH, options, context)

    def checkout(self, options: OptionsInput = None, context=None) -> CheckoutResult:
        return self.execute(GitOperation.CHECKOUT, options, context)

    def merge(self, options: OptionsInput = None, context=None) -> MergeResult:
        return self.execute(GitOperation.MERGE, options, context)

    def rebase(self, options: OptionsInput = None, context=None) -> RebaseResult:
        return self.execute(GitOperation.REBASE, options, context)

    def cherry_pick(self, options: OptionsInput = None, context=None) -> CherryPickResult:
        return self.execute(GitOperation.CHERRY_PICK, options, context)

    def reset(self, options: OptionsInput = None, context=None) -> ResetResult:
        return self.execute(GitOperation.RESET, options, context)

    def stash(self, options: OptionsInput = None, context=None) -> StashResult:
        return self.execute(GitOperation.STASH, options, context)

    def worktree(self, options: OptionsInput = None, context=None) -> WorktreeResult:
        return self.execute(GitOperation.WORKTREE, options, context)

    def tag(self, options: OptionsInput = None, context=None) -> TagResult:
        return self.execute(GitOperation.TAG, options, context)

    def remote(self, options: OptionsInput = None, context=None) -> RemoteResult:
        return self.execute(GitOperation.REMOTE, options, context)

    def fetch(self, options: OptionsInput = None, context=None) -> FetchResult:
        return self.execute(GitOperation.FETCH, options, context)

    def pull(self, options: OptionsInput = None, context=None) -> PullResult:
        return self.execute(GitOperation.PULL, options, context)

    def push(self, options: OptionsInput = None, context=None) -> PushResult:
        return self.execute(GitOperation.PUSH, options, context)


def resolve_operation(operation: Union[GitOperation, str]) -> GitOperation:
    """Accept an enum member or its name (``cherry-pick`` or ``cherry_pick``)."""
    if isinstance(operation, GitOperation):
        return operation
    try:
        return GitOperation(str(operation).replace("-", "_"))
    except ValueError:
        raise GitValidationError.create(
            UNSUPPORTED_OPERATION, f"Unsupported operation: {operation}"
        )


def coerce_options(operation: GitOperation, options: OptionsInput) -> OperationOptions:
    """Turn caller input into the operation's options model."""
    model = OPTIONS_BY_OPERATION[operation]
    if isinstance(options, model):
        return options
    if isinstance(options, OperationOptions):
        raise GitValidationError.create(
            INVALID_OPTIONS,
            f"{operation.value} expects {model.__name__}, got {type(options).__name__}",
            operation=operation.value,
        )
    try:
        return model.model_validate(dict(options or {}))
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise GitValidationError.create(
            INVALID_OPTIONS,
            f"Invalid options for {operation.value}: "
            + "; ".join(
                f"{err['field']}: {err['message']}" if err["field"] else err["message"]
                for err in errors
            ),
            operation=operation.value,
            details={"errors": errors},
        )


# ---------------------------------------------------------------------------
# CLI provider
# ---------------------------------------------------------------------------


class CliGitProvider(GitProvider):
    """Provider that drives the ``git`` command-line program."""

    name = "cli"

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        executor: Optional[GitExecutor] = None,
        store: Optional[WorkingDirectoryStore] = None,
    ):
        self.config = config or EngineConfig()
        self.executor = executor or GitExecutor(self.config)
        self.store = store if store is not None else create_store(self.config)
        self._handlers: dict[GitOperation, Callable[[OperationRequest], ResultModel]] = {
            GitOperation.INIT: self._init,
            GitOperation.CLONE: self._clone,
            GitOperation.STATUS: self._status,
            GitOperation.CLEAN: self._clean,
            GitOperation.ADD: self._add,
            GitOperation.COMMIT: self._commit,
            GitOperation.LOG: self._log,
            GitOperation.SHOW: self._show,
            GitOperation.DIFF: self._diff,
            GitOperation.BLAME: self._blame,
            GitOperation.REFLOG: self._reflog,
            GitOperation.BRANCH: self._branch,
            GitOperation.CHECKOUT: self._checkout,
            GitOperation.MERGE: self._merge,
            GitOperation.REBASE: self._rebase,
            GitOperation.CHERRY_PICK: self._cherry_pick,
            GitOperation.RESET: self._reset,
            GitOperation.STASH: self._stash,
            GitOperation.WORKTREE: self._worktree,
            GitOperation.TAG: self._tag,
            GitOperation.REMOTE: self._remote,
            GitOperation.FETCH: self._fetch,
            GitOperation.PULL: self._pull,
            GitOperation.PUSH: self._push,
        }

    # -- contract -----------------------------------------------------------

    def execute(
        self,
        operation: Union[GitOperation, str],
        options: OptionsInput = None,
        context: Optional[OperationContext] = None,
    ) -> ResultModel:
        """Run one operation.

        Args:
            operation: Operation enum member or name.
            options: Options model, a mapping of option fields, or None
                for defaults.
            context: Working directory and correlation ids. Without an
                explicit working directory, the session's stored one is used.

        Returns:
            The operation's result model.

        Raises:
            GitEngineError: Validation, not-found, conflict, timeout or
                internal failure, with ``.record`` describing it.
        """
        context = context or OperationContext()
        request_context = context.request_context
        op = resolve_operation(operation)

        with LogContext(
            tenant_id=context.effective_tenant,
            session_id=request_context.session_id,
            trace_id=request_context.trace_id,
        ):
            try:
                opts = coerce_options(op, options)
                cwd = self._resolve_working_directory(context)
                request = OperationRequest(
                    operation=op,
                    options=opts,
                    working_directory=cwd,
                    context=context,
                )
                return self._handlers[op](request)
            except GitEngineError as e:
                logger.info("git %s failed: %s (%s)", op.value, e.record.code, e.record.message)
                raise
            except Exception as e:
                error = to_exception(e, op.value)
                logger.error("git %s failed: %s", op.value, error.record.message)
                audit_log(
                    event="error",
                    operation=op.value,
                    decision="error",
                    reason=error.record.code,
                )
                raise error from e

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            name=self.name,
            version=self.version,
            supported_operations=[op.value for op in GitOperation],
            operation_options={
                op.value: list(OPTIONS_BY_OPERATION[op].model_fields)
                for op in GitOperation
            },
            sign_commits=self.config.sign_commits,
        )

    def health_check(self) -> HealthStatus:
        try:
            result = self.executor.run(build_version().args, cwd=tempfile.gettempdir())
        except SpawnError as e:
            return HealthStatus(healthy=False, message=str(e))
        version = parsers.parse_git_version(result.stdout)
        if result.ok and "git version" in result.stdout:
            return HealthStatus(healthy=True, git_version=version, message=result.stdout.strip())
        return HealthStatus(
            healthy=False,
            git_version=version,
            message=(result.stderr or result.stdout).strip() or "git --version failed",
        )

    # -- plumbing -----------------------------------------------------------

    def _resolve_working_directory(self, context: OperationContext) -> str:
        path = context.working_directory
        if not path:
            path = self.store.get(
                context.effective_tenant,
                context.request_context.session_id,
                context,
            )
        if not path:
            raise GitValidationError.create(
                NO_WORKING_DIRECTORY,
                "No working directory set for this session; "
                "pass one explicitly or set it first",
                details={"session_id": context.request_context.session_id},
            )
        return validate_working_directory(path)

    def _run(self, request: OperationRequest, command: GitCommand) -> ProcessResult:
        """Validate and run one command. Non-zero exits are returned, not raised."""
        op = request.operation.value
        try:
            validate_args(command.args, strict=self.config.strict_flags)
            if command.input is not None:
                validate_text(command.input, "message")
        except GitValidationError as e:
            audit_log(
                event="validation",
                operation=op,
                decision="deny",
                command_args=command.args,
                reason=e.record.message,
            )
            raise

        result = self.executor.run(
            command.args,
            cwd=request.working_directory,
            env=command.env or None,
            input=command.input,
        )
        audit_log(
            event="execute",
            operation=op,
            decision="allow",
            command_args=command.args,
            exit_code=result.exit_code,
            elapsed_ms=result.elapsed_ms,
            stdout=result.stdout,
            stderr=result.stderr,
            timed_out=result.timed_out,
            output_truncated=result.truncated,
        )
        return result

    def _run_checked(self, request: OperationRequest, command: GitCommand) -> ProcessResult:
        result = self._run(request, command)
        if not result.ok:
            raise to_exception(result, request.operation.value)
        return result

    def _command(self, request: OperationRequest, sign: Optional[bool] = None) -> GitCommand:
        return build_command(request.operation, request.options, sign=sign)

    def _head(self, request: OperationRequest) -> str:
        return self._run_checked(request, build_rev_parse_head()).stdout.strip()

    def _resolve_sign(self, sign: Optional[bool]) -> Optional[bool]:
        if sign is not None:
            return sign
        return True if self.config.sign_commits else None

    def _run_signed(
        self, request: OperationRequest, sign: Optional[bool]
    ) -> tuple[ProcessResult, bool]:
        """Run with signing; retry exactly once unsigned if gpg fails.

        Returns:
            (successful result, whether the signed attempt was kept).
        """
        result = self._run(request, self._command(request, sign=sign))
        if sign and is_signing_failure(result):
            logger.warning(
                "Signing failed for git %s; retrying without signature",
                request.operation.value,
            )
            result = self._run(request, self._command(request, sign=False))
            sign = False
        if not result.ok:
            raise to_exception(result, request.operation.value)
        return result, bool(sign)

    # -- handlers -----------------------------------------------------------

    def _init(self, request: OperationRequest) -> InitResult:
        opts = request.options
        result = self._run_checked(request, self._command(request))
        _, reinitialized = parsers.parse_init(result.stdout)
        path = os.path.normpath(os.path.join(request.working_directory, opts.directory or ""))
        return InitResult(path=path, reinitialized=reinitialized, bare=opts.bare)

    def _clone(self, request: OperationRequest) -> CloneResult:
        opts = request.options
        result = self._run_checked(request, self._command(request))
        directory = opts.directory or parsers.parse_clone_directory(result.stderr)
        if not directory:
            directory = opts.url.rstrip("/").rsplit("/", 1)[-1].rsplit(":", 1)[-1]
            if directory.endswith(".git") and not opts.bare:
                directory = directory[:-4]
        return CloneResult(
            url=opts.url,
            directory=os.path.normpath(os.path.join(request.working_directory, directory)),
        )

    def _status(self, request: OperationRequest) -> StatusResult:
        result = self._run_checked(request, self._command(request))
        return parsers.parse_status(result.stdout)

    def _clean(self, request: OperationRequest) -> CleanResult:
        result = self._run_checked(request, self._command(request))
        files, directories = parsers.parse_clean(result.stdout)
        return CleanResult(
            dry_run=request.options.dry_run, files=files, directories=directories
        )

    def _add(self, request: OperationRequest) -> AddResult:
        self._run_checked(request, self._command(request))
        return AddResult(paths=list(request.options.paths), all=request.options.all)

    def _commit(self, request: OperationRequest) -> CommitResult:
        result, signed = self._run_signed(request, self._resolve_sign(request.options.sign))
        summary = parsers.parse_commit_summary(result.stdout)
        return CommitResult(
            hash=self._head(request),
            branch=summary["branch"],
            subject=summary["subject"],
            root_commit=summary["root_commit"],
            signed=signed,
        )

    def _log(self, request: OperationRequest) -> LogResult:
        result = self._run_checked(request, self._command(request))
        return LogResult(commits=parsers.parse_log(result.stdout))

    def _show(self, request: OperationRequest) -> ShowResult:
        result = self._run_checked(request, self._command(request))
        commit, rest = parsers.parse_show(result.stdout)
        if request.options.stat:
            return ShowResult(commit=commit, files=parsers.parse_numstat(rest))
        return ShowResult(commit=commit, patch=rest)

    def _diff(self, request: OperationRequest) -> DiffResult:
        result = self._run_checked(request, self._command(request))
        if request.options.stat:
            return DiffResult(files=parsers.parse_numstat(result.stdout))
        return DiffResult(diff=result.stdout)

    def _blame(self, request: OperationRequest) -> BlameResult:
        result = self._run_checked(request, self._command(request))
        return BlameResult(path=request.options.path, lines=parsers.parse_blame(result.stdout))

    def _reflog(self, request: OperationRequest) -> ReflogResult:
        result = self._run_checked(request, self._command(request))
        return ReflogResult(ref=request.options.ref, entries=parsers.parse_reflog(result.stdout))

    def _branch(self, request: OperationRequest) -> BranchResult:
        opts = request.options
        result = self._run_checked(request, self._command(request))
        if opts.action == "list":
            return BranchResult(action="list", branches=parsers.parse_branches(result.stdout))
        return BranchResult(action=opts.action, name=opts.name, new_name=opts.new_name)

    def _checkout(self, request: OperationRequest) -> CheckoutResult:
        opts = request.options
        result = self._run_checked(request, self._command(request))
        return CheckoutResult(
            ref=opts.ref,
            created_branch=opts.create_branch,
            paths=list(opts.paths),
            message=(result.stderr or result.stdout).strip(),
        )

    def _merge(self, request: OperationRequest) -> MergeResult:
        opts = request.options
        if opts.abort:
            self._run_checked(request, self._command(request))
            return MergeResult(aborted=True)

        sign = self._resolve_sign(opts.sign) if opts.creates_merge_commit else None
        result, signed = self._run_signed(request, sign)
        fast_forward = parsers.is_fast_forward(result.stdout, result.stderr)
        up_to_date = parsers.is_up_to_date(result.stdout, result.stderr)
        return MergeResult(
            branch=opts.branch,
            fast_forward=fast_forward,
            up_to_date=up_to_date,
            squashed=opts.squash,
            signed=signed and not (fast_forward or up_to_date),
            files_changed=parsers.parse_diffstat_paths(result.stdout),
        )

    def _rebase(self, request: OperationRequest) -> RebaseResult:
        result = self._run_checked(request, self._command(request))
        return RebaseResult(
            action=request.options.action,
            up_to_date=parsers.is_up_to_date(result.stdout, result.stderr),
            message=(result.stdout.strip() or result.stderr.strip()),
        )

    def _cherry_pick(self, request: OperationRequest) -> CherryPickResult:
        opts = request.options
        self._run_checked(request, self._command(request))
        if opts.abort:
            return CherryPickResult(aborted=True)
        return CherryPickResult(commits=list(opts.commits), head=self._head(request))

    def _reset(self, request: OperationRequest) -> ResetResult:
        result = self._run_checked(request, self._command(request))
        return ResetResult(
            mode=request.options.mode,
            head=self._head(request),
            unstaged=parsers.parse_reset_unstaged(result.stdout),
        )

    def _stash(self, request: OperationRequest) -> StashResult:
        opts = request.options
        result = self._run_checked(request, self._command(request))
        if opts.action == "list":
            return StashResult(action="list", entries=parsers.parse_stash_list(result.stdout))
        return StashResult(
            action=opts.action,
            message=(result.stdout.strip() or result.stderr.strip()),
        )

    def _worktree(self, request: OperationRequest) -> WorktreeResult:
        opts = request.options
        result = self._run_checked(request, self._command(request))
        if opts.action == "list":
            return WorktreeResult(action="list", worktrees=parsers.parse_worktrees(result.stdout))
        path = opts.new_path if opts.action == "move" else opts.path
        return WorktreeResult(action=opts.action, path=path)

    def _tag(self, request: OperationRequest) -> TagResult:
        opts = request.options
        result = self._run_checked(request, self._command(request))
        if opts.action == "list":
            return TagResult(action="list", tags=[t for t in result.stdout.splitlines() if t.strip()])
        return TagResult(action=opts.action, name=opts.name)

    def _remote(self, request: OperationRequest) -> RemoteResult:
        opts = request.options
        result = self._run_checked(request, self._command(request))
        if opts.action == "list":
            return RemoteResult(action="list", remotes=parsers.parse_remotes(result.stdout))
        if opts.action == "get_url":
            return RemoteResult(action="get_url", url=result.stdout.strip())
        return RemoteResult(action=opts.action, url=opts.url)

    def _fetch(self, request: OperationRequest) -> FetchResult:
        result = self._run_checked(request, self._command(request))
        return FetchResult(
            remote=request.options.remote,
            updates=parsers.parse_ref_updates(result.stderr),
        )

    def _pull(self, request: OperationRequest) -> PullResult:
        result = self._run_checked(request, self._command(request))
        combined = f"{result.stdout}\n{result.stderr}"
        return PullResult(
            remote=request.options.remote,
            fast_forward=parsers.is_fast_forward(result.stdout, result.stderr),
            up_to_date=parsers.is_up_to_date(result.stdout, result.stderr),
            conflicts=parsers.parse_conflicts(combined),
            files_changed=parsers.parse_diffstat_paths(result.stdout),
            updates=parsers.parse_ref_updates(result.stderr),
        )

    def _push(self, request: OperationRequest) -> PushResult:
        result = self._run_checked(request, self._command(request))
        url, refs = parsers.parse_push(result.stdout)
        return PushResult(remote=request.options.remote, url=url, refs=refs)
