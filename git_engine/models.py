"""Pydantic models for git-engine requests, options, and results.

Every operation has one options model with explicit defaults. Options are
immutable and reject unknown fields, so a typo in a caller's option name
fails validation instead of being silently ignored.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class GitOperation(str, Enum):
    """Curated set of supported git operations."""

    INIT = "init"
    CLONE = "clone"
    STATUS = "status"
    CLEAN = "clean"
    ADD = "add"
    COMMIT = "commit"
    LOG = "log"
    SHOW = "show"
    DIFF = "diff"
    BLAME = "blame"
    REFLOG = "reflog"
    BRANCH = "branch"
    CHECKOUT = "checkout"
    MERGE = "merge"
    REBASE = "rebase"
    CHERRY_PICK = "cherry_pick"
    RESET = "reset"
    STASH = "stash"
    WORKTREE = "worktree"
    TAG = "tag"
    REMOTE = "remote"
    FETCH = "fetch"
    PULL = "pull"
    PUSH = "push"


# ============================================================================
# Context
# ============================================================================


class RequestContext(BaseModel):
    """Correlation identifiers for one call."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tenant_id: str = "default"
    """Tenant the call runs for."""

    session_id: str = "default"
    """Session key used to look up the working directory."""

    trace_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    """Per-call trace identifier (generated when not supplied)."""


class OperationContext(BaseModel):
    """Where and for whom an operation runs."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    working_directory: Optional[str] = None
    """Explicit working directory; when unset the session store is consulted."""

    request_context: RequestContext = Field(default_factory=RequestContext)

    tenant_id: Optional[str] = None
    """Overrides ``request_context.tenant_id`` when set."""

    @property
    def effective_tenant(self) -> str:
        return self.tenant_id or self.request_context.tenant_id


# ============================================================================
# Options
# ============================================================================


class OperationOptions(BaseModel):
    """Base class for per-operation options."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class InitOptions(OperationOptions):
    directory: Optional[str] = None
    """Directory to initialize, relative to the working directory."""

    bare: bool = False
    initial_branch: Optional[str] = None


class CloneOptions(OperationOptions):
    url: str = Field(min_length=1)
    directory: Optional[str] = None
    """Target directory, relative to the working directory."""

    branch: Optional[str] = None
    depth: Optional[int] = Field(default=None, ge=1)
    bare: bool = False
    single_branch: bool = False


class StatusOptions(OperationOptions):
    include_untracked: bool = True
    include_ignored: bool = False
    ignore_submodules: bool = False


class CleanOptions(OperationOptions):
    dry_run: bool = True
    """Only report what would be removed (git clean -n)."""

    force: bool = False
    """Actually remove files (git clean -f). Required when dry_run is False."""

    directories: bool = False
    """Also remove untracked directories (-d)."""

    include_ignored: bool = False
    """Also remove ignored files (-x)."""

    paths: list[str] = Field(default_factory=list)


class AddOptions(OperationOptions):
    paths: list[str] = Field(default_factory=list)
    all: bool = False
    """Stage all changes including untracked files (-A)."""

    update: bool = False
    """Stage modifications and deletions of tracked files only (-u)."""


class CommitOptions(OperationOptions):
    message: str = Field(min_length=1)
    amend: bool = False
    allow_empty: bool = False
    all: bool = False
    """Stage modified and deleted tracked files before committing (-a)."""

    no_verify: bool = False
    author_name: Optional[str] = None
    author_email: Optional[str] = None
    sign: Optional[bool] = None
    """Sign the commit. ``None`` defers to the engine's ``sign_commits`` setting."""


class LogOptions(OperationOptions):
    max_count: int = Field(default=20, ge=1)
    skip: int = Field(default=0, ge=0)
    ref: Optional[str] = None
    author: Optional[str] = None
    since: Optional[str] = None
    until: Optional[str] = None
    paths: list[str] = Field(default_factory=list)


class ShowOptions(OperationOptions):
    ref: str = "HEAD"
    stat: bool = False
    """Show per-file line counts instead of the patch."""


class DiffOptions(OperationOptions):
    staged: bool = False
    ref: Optional[str] = None
    target: Optional[str] = None
    paths: list[str] = Field(default_factory=list)
    stat: bool = False
    """Return per-file line counts only (--numstat)."""

    context_lines: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _target_needs_ref(self) -> "DiffOptions":
        if self.target and not self.ref:
            raise ValueError("target requires ref")
        return self


class BlameOptions(OperationOptions):
    path: str = Field(min_length=1)
    ref: Optional[str] = None
    start_line: Optional[int] = Field(default=None, ge=1)
    end_line: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _line_range(self) -> "BlameOptions":
        if self.end_line is not None and self.start_line is None:
            raise ValueError("end_line requires start_line")
        if self.start_line and self.end_line and self.end_line < self.start_line:
            raise ValueError("end_line must not be before start_line")
        return self


class ReflogOptions(OperationOptions):
    ref: str = "HEAD"
    max_count: Optional[int] = Field(default=None, ge=1)


class BranchOptions(OperationOptions):
    action: Literal["list", "create", "delete", "rename"] = "list"
    name: Optional[str] = None
    new_name: Optional[str] = None
    start_point: Optional[str] = None
    force: bool = False
    remote: bool = False
    """List remote-tracking branches instead of local ones."""

    all: bool = False
    """List both local and remote-tracking branches."""

    @model_validator(mode="after")
    def _required_fields(self) -> "BranchOptions":
        if self.action in ("create", "delete", "rename") and not self.name:
            raise ValueError(f"branch {self.action} requires name")
        if self.action == "rename" and not self.new_name:
            raise ValueError("branch rename requires new_name")
        return self


class CheckoutOptions(OperationOptions):
    ref: Optional[str] = None
    create_branch: bool = False
    """Create ``ref`` as a new branch (-b), optionally from ``start_point``."""

    start_point: Optional[str] = None
    force: bool = False
    paths: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _ref_or_paths(self) -> "CheckoutOptions":
        if not self.ref and not self.paths:
            raise ValueError("checkout requires ref or paths")
        if self.create_branch and not self.ref:
            raise ValueError("create_branch requires ref")
        if self.create_branch and self.paths:
            raise ValueError("create_branch cannot be combined with paths")
        return self


class MergeOptions(OperationOptions):
    branch: Optional[str] = None
    message: Optional[str] = None
    no_ff: bool = False
    ff_only: bool = False
    squash: bool = False
    strategy: Optional[Literal["ort", "recursive", "resolve", "octopus", "ours", "subtree"]] = None
    abort: bool = False
    sign: Optional[bool] = None
    """Sign the merge commit. ``None`` defers to the engine's ``sign_commits`` setting."""

    @model_validator(mode="after")
    def _consistent_modes(self) -> "MergeOptions":
        if not self.abort and not self.branch:
            raise ValueError("merge requires branch")
        if self.no_ff and self.ff_only:
            raise ValueError("no_ff and ff_only are mutually exclusive")
        if self.squash and self.no_ff:
            raise ValueError("squash and no_ff are mutually exclusive")
        return self

    @property
    def creates_merge_commit(self) -> bool:
        return not (self.abort or self.squash or self.ff_only)


class RebaseOptions(OperationOptions):
    action: Literal["start", "continue", "abort", "skip"] = "start"
    upstream: Optional[str] = None
    onto: Optional[str] = None

    @model_validator(mode="after")
    def _upstream_for_start(self) -> "RebaseOptions":
        if self.action == "start" and not self.upstream:
            raise ValueError("rebase start requires upstream")
        return self


class CherryPickOptions(OperationOptions):
    commits: list[str] = Field(default_factory=list)
    no_commit: bool = False
    mainline: Optional[int] = Field(default=None, ge=1)
    abort: bool = False

    @model_validator(mode="after")
    def _commits_required(self) -> "CherryPickOptions":
        if not self.abort and not self.commits:
            raise ValueError("cherry_pick requires at least one commit")
        return self


class ResetOptions(OperationOptions):
    mode: Literal["soft", "mixed", "hard"] = "mixed"
    ref: Optional[str] = None
    paths: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _paths_only_mixed(self) -> "ResetOptions":
        if self.paths and self.mode != "mixed":
            raise ValueError(f"--{self.mode} reset cannot be combined with paths")
        return self


class StashOptions(OperationOptions):
    action: Literal["list", "push", "pop", "apply", "drop", "clear"] = "list"
    message: Optional[str] = None
    include_untracked: bool = False
    keep_index: bool = False
    index: Optional[int] = Field(default=None, ge=0)
    """Stash entry for pop/apply/drop (``stash@{index}``)."""

    @model_validator(mode="after")
    def _drop_needs_index(self) -> "StashOptions":
        if self.action == "drop" and self.index is None:
            raise ValueError("stash drop requires index")
        return self


class WorktreeOptions(OperationOptions):
    action: Literal["list", "add", "remove", "move", "prune"] = "list"
    path: Optional[str] = None
    new_path: Optional[str] = None
    commitish: Optional[str] = None
    branch: Optional[str] = None
    """Create a new branch for the worktree (-b)."""

    detach: bool = False
    force: bool = False

    @model_validator(mode="after")
    def _required_fields(self) -> "WorktreeOptions":
        if self.action in ("add", "remove", "move") and not self.path:
            raise ValueError(f"worktree {self.action} requires path")
        if self.action == "move" and not self.new_path:
            raise ValueError("worktree move requires new_path")
        if self.branch and self.detach:
            raise ValueError("branch and detach are mutually exclusive")
        return self


class TagOptions(OperationOptions):
    action: Literal["list", "create", "delete"] = "list"
    name: Optional[str] = None
    ref: Optional[str] = None
    message: Optional[str] = None
    """Create an annotated tag with this message."""

    pattern: Optional[str] = None
    force: bool = False

    @model_validator(mode="after")
    def _name_required(self) -> "TagOptions":
        if self.action in ("create", "delete") and not self.name:
            raise ValueError(f"tag {self.action} requires name")
        return self


class RemoteOptions(OperationOptions):
    action: Literal["list", "add", "remove", "rename", "get_url", "set_url"] = "list"
    name: Optional[str] = None
    url: Optional[str] = None
    new_name: Optional[str] = None

    @model_validator(mode="after")
    def _required_fields(self) -> "RemoteOptions":
        if self.action != "list" and not self.name:
            raise ValueError(f"remote {self.action} requires name")
        if self.action in ("add", "set_url") and not self.url:
            raise ValueError(f"remote {self.action} requires url")
        if self.action == "rename" and not self.new_name:
            raise ValueError("remote rename requires new_name")
        return self


class FetchOptions(OperationOptions):
    remote: str = "origin"
    refspec: Optional[str] = None
    prune: bool = False
    tags: bool = False
    depth: Optional[int] = Field(default=None, ge=1)


class PullOptions(OperationOptions):
    remote: str = "origin"
    branch: Optional[str] = None
    rebase: bool = False
    ff_only: bool = False

    @model_validator(mode="after")
    def _exclusive(self) -> "PullOptions":
        if self.rebase and self.ff_only:
            raise ValueError("rebase and ff_only are mutually exclusive")
        return self


class PushOptions(OperationOptions):
    remote: str = "origin"
    branch: Optional[str] = None
    set_upstream: bool = False
    force_with_lease: bool = False
    tags: bool = False
    delete: bool = False

    @model_validator(mode="after")
    def _delete_needs_branch(self) -> "PushOptions":
        if self.delete and not self.branch:
            raise ValueError("push delete requires branch")
        return self


OPTIONS_BY_OPERATION: dict[GitOperation, type[OperationOptions]] = {
    GitOperation.INIT: InitOptions,
    GitOperation.CLONE: CloneOptions,
    GitOperation.STATUS: StatusOptions,
    GitOperation.CLEAN: CleanOptions,
    GitOperation.ADD: AddOptions,
    GitOperation.COMMIT: CommitOptions,
    GitOperation.LOG: LogOptions,
    GitOperation.SHOW: ShowOptions,
    GitOperation.DIFF: DiffOptions,
    GitOperation.BLAME: BlameOptions,
    GitOperation.REFLOG: ReflogOptions,
    GitOperation.BRANCH: BranchOptions,
    GitOperation.CHECKOUT: CheckoutOptions,
    GitOperation.MERGE: MergeOptions,
    GitOperation.REBASE: RebaseOptions,
    GitOperation.CHERRY_PICK: CherryPickOptions,
    GitOperation.RESET: ResetOptions,
    GitOperation.STASH: StashOptions,
    GitOperation.WORKTREE: WorktreeOptions,
    GitOperation.TAG: TagOptions,
    GitOperation.REMOTE: RemoteOptions,
    GitOperation.FETCH: FetchOptions,
    GitOperation.PULL: PullOptions,
    GitOperation.PUSH: PushOptions,
}


class OperationRequest(BaseModel):
    """A fully resolved request, ready for argv construction.

    Created per call and discarded when the call completes. The working
    directory is absolute and traversal-free by the time one exists.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    operation: GitOperation
    options: OperationOptions
    working_directory: str
    context: OperationContext

    @field_validator("working_directory")
    @classmethod
    def _absolute(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("working_directory must be absolute")
        if ".." in value.split("/"):
            raise ValueError("working_directory must not contain '..'")
        return value


# ============================================================================
# Process result
# ============================================================================


class ProcessResult(BaseModel):
    """Outcome of one git process."""

    model_config = ConfigDict(frozen=True)

    exit_code: Optional[int]
    """Process exit code; ``None`` when the process was killed."""

    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0
    timed_out: bool = False
    truncated: bool = False
    """Output exceeded the buffer cap and the process was killed."""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.truncated


# ============================================================================
# Results
# ============================================================================


class ResultModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class InitResult(ResultModel):
    path: str
    reinitialized: bool = False
    bare: bool = False


class CloneResult(ResultModel):
    url: str
    directory: str


class RenamedPath(ResultModel):
    path: str
    orig_path: str


class StatusResult(ResultModel):
    branch: Optional[str] = None
    """Current branch; ``None`` when HEAD is detached."""

    head_oid: Optional[str] = None
    """HEAD commit; ``None`` before the first commit."""

    upstream: Optional[str] = None
    ahead: int = 0
    behind: int = 0
    added: list[str] = Field(default_factory=list)
    modified: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    renamed: list[RenamedPath] = Field(default_factory=list)
    copied: list[RenamedPath] = Field(default_factory=list)
    untracked: list[str] = Field(default_factory=list)
    ignored: list[str] = Field(default_factory=list)
    conflicted: list[str] = Field(default_factory=list)
    staged: list[str] = Field(default_factory=list)
    """Paths with index changes."""

    unstaged: list[str] = Field(default_factory=list)
    """Paths with working-tree changes."""

    @property
    def is_clean(self) -> bool:
        return not (self.staged or self.unstaged or self.untracked or self.conflicted)


class CleanResult(ResultModel):
    dry_run: bool
    files: list[str] = Field(default_factory=list)
    directories: list[str] = Field(default_factory=list)


class AddResult(ResultModel):
    paths: list[str] = Field(default_factory=list)
    all: bool = False


class CommitResult(ResultModel):
    hash: str
    branch: Optional[str] = None
    subject: str = ""
    root_commit: bool = False
    signed: bool = False


class CommitInfo(ResultModel):
    hash: str
    short_hash: str
    author_name: str
    author_email: str
    timestamp: int
    subject: str
    parents: list[str] = Field(default_factory=list)
    body: str = ""


class LogResult(ResultModel):
    commits: list[CommitInfo] = Field(default_factory=list)


class FileStat(ResultModel):
    path: str
    additions: Optional[int]
    """``None`` for binary files."""

    deletions: Optional[int]

    @property
    def binary(self) -> bool:
        return self.additions is None


class ShowResult(ResultModel):
    commit: CommitInfo
    patch: str = ""
    files: list[FileStat] = Field(default_factory=list)


class DiffResult(ResultModel):
    diff: str = ""
    files: list[FileStat] = Field(default_factory=list)


class BlameLine(ResultModel):
    line_number: int
    hash: str
    author: str
    author_time: int
    content: str


class BlameResult(ResultModel):
    path: str
    lines: list[BlameLine] = Field(default_factory=list)


class ReflogEntry(ResultModel):
    hash: str
    ref_name: str
    action: str
    message: str
    timestamp: Optional[int] = None


class ReflogResult(ResultModel):
    ref: str
    entries: list[ReflogEntry] = Field(default_factory=list)


class BranchInfo(ResultModel):
    name: str
    hash: str
    current: bool = False
    remote: bool = False
    upstream: Optional[str] = None
    ahead: int = 0
    behind: int = 0
    gone: bool = False
    """Upstream is configured but no longer exists."""


class BranchResult(ResultModel):
    action: str
    branches: list[BranchInfo] = Field(default_factory=list)
    name: Optional[str] = None
    new_name: Optional[str] = None


class CheckoutResult(ResultModel):
    ref: Optional[str] = None
    created_branch: bool = False
    paths: list[str] = Field(default_factory=list)
    message: str = ""


class MergeResult(ResultModel):
    branch: Optional[str] = None
    fast_forward: bool = False
    up_to_date: bool = False
    squashed: bool = False
    aborted: bool = False
    signed: bool = False
    files_changed: list[str] = Field(default_factory=list)


class RebaseResult(ResultModel):
    action: str
    up_to_date: bool = False
    message: str = ""


class CherryPickResult(ResultModel):
    commits: list[str] = Field(default_factory=list)
    aborted: bool = False
    head: Optional[str] = None


class ResetResult(ResultModel):
    mode: str
    head: str
    unstaged: list[str] = Field(default_factory=list)


class StashEntry(ResultModel):
    index: int
    ref: str
    branch: Optional[str] = None
    message: str


class StashResult(ResultModel):
    action: str
    entries: list[StashEntry] = Field(default_factory=list)
    message: str = ""


class WorktreeInfo(ResultModel):
    path: str
    head: Optional[str] = None
    branch: Optional[str] = None
    detached: bool = False
    bare: bool = False
    locked: bool = False
    lock_reason: Optional[str] = None
    prunable: bool = False
    prunable_reason: Optional[str] = None


class WorktreeResult(ResultModel):
    action: str
    worktrees: list[WorktreeInfo] = Field(default_factory=list)
    path: Optional[str] = None


class TagResult(ResultModel):
    action: str
    tags: list[str] = Field(default_factory=list)
    name: Optional[str] = None


class RemoteInfo(ResultModel):
    name: str
    fetch_url: Optional[str] = None
    push_url: Optional[str] = None


class RemoteResult(ResultModel):
    action: str
    remotes: list[RemoteInfo] = Field(default_factory=list)
    url: Optional[str] = None


class RefUpdate(ResultModel):
    kind: Literal["new_branch", "new_tag", "new_ref", "deleted", "updated", "forced", "tag_update"]
    ref: str
    """Remote-side ref name."""

    local_ref: Optional[str] = None
    old: Optional[str] = None
    new: Optional[str] = None


class FetchResult(ResultModel):
    remote: str
    updates: list[RefUpdate] = Field(default_factory=list)


class PullResult(ResultModel):
    remote: str
    fast_forward: bool = False
    up_to_date: bool = False
    conflicts: list[str] = Field(default_factory=list)
    files_changed: list[str] = Field(default_factory=list)
    updates: list[RefUpdate] = Field(default_factory=list)


class PushRefResult(ResultModel):
    flag: str
    """Porcelain status flag: ' ', '+', '-', '*', '=', '!'."""

    local_ref: Optional[str]
    remote_ref: str
    summary: str

    @property
    def rejected(self) -> bool:
        return self.flag == "!"


class PushResult(ResultModel):
    remote: str
    url: Optional[str] = None
    refs: list[PushRefResult] = Field(default_factory=list)


# ============================================================================
# Provider metadata
# ============================================================================


class ProviderCapabilities(ResultModel):
    name: str
    version: str
    supported_operations: list[str]
    operation_options: dict[str, list[str]]
    """Option field names accepted per operation."""

    sign_commits: bool = False


class HealthStatus(ResultModel):
    healthy: bool
    git_version: Optional[str] = None
    message: str = ""
