"""Argument-vector construction for each supported operation.

``build_command`` maps an options model to a ``GitCommand``: the argv that
follows the git binary, plus optional stdin text and environment. Values
that could be mistaken for flags are emitted in ``--flag=value`` form or
after a ``--`` separator, and ref-like positionals are rejected when they
start with ``-``. Commit, merge and tag messages travel over stdin
(``--file=-``) so message text never appears in argv.

The resulting argv is still passed through ``validation.validate_args``
before anything is spawned.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from git_engine.errors import INVALID_OPTIONS, UNSUPPORTED_OPERATION, GitValidationError
from git_engine.models import (
    AddOptions,
    BlameOptions,
    BranchOptions,
    CheckoutOptions,
    CherryPickOptions,
    CleanOptions,
    CloneOptions,
    CommitOptions,
    DiffOptions,
    FetchOptions,
    OPTIONS_BY_OPERATION,
    GitOperation,
    InitOptions,
    LogOptions,
    MergeOptions,
    OperationOptions,
    PullOptions,
    PushOptions,
    RebaseOptions,
    ReflogOptions,
    RemoteOptions,
    ResetOptions,
    ShowOptions,
    StashOptions,
    StatusOptions,
    TagOptions,
    WorktreeOptions,
)
from git_engine.parsers import BRANCH_FORMAT, LOG_FORMAT, REFLOG_FORMAT
from git_engine.validation import (
    validate_branch_name,
    validate_ref,
    validate_relative_path,
)


@dataclass
class GitCommand:
    """Arguments (excluding the git binary) plus optional stdin and env."""

    args: list[str]
    input: Optional[str] = None
    env: dict[str, str] = field(default_factory=dict)


def _sign_flag(sign: Optional[bool]) -> list[str]:
    if sign is True:
        return ["--gpg-sign"]
    if sign is False:
        return ["--no-gpg-sign"]
    return []


def _path(value: str, field_name: str) -> str:
    """A path argument placed before ``--`` (must not look like a flag)."""
    validate_relative_path(value, field_name)
    return value


def _ref(value: str, field_name: str = "ref") -> str:
    validate_ref(value, field_name)
    return value


def _branch(value: str, field_name: str = "name") -> str:
    validate_branch_name(value, field_name)
    return value


# ---------------------------------------------------------------------------
# Per-operation builders
# ---------------------------------------------------------------------------


def _build_init(opts: InitOptions, sign: Optional[bool]) -> GitCommand:
    args = ["init"]
    if opts.bare:
        args.append("--bare")
    if opts.initial_branch:
        args.append(f"--initial-branch={_branch(opts.initial_branch, 'initial_branch')}")
    if opts.directory:
        args.append(_path(opts.directory, "directory"))
    return GitCommand(args)


def _build_clone(opts: CloneOptions, sign: Optional[bool]) -> GitCommand:
    args = ["clone"]
    if opts.branch:
        args.append(f"--branch={_ref(opts.branch, 'branch')}")
    if opts.depth:
        args.append(f"--depth={opts.depth}")
    if opts.bare:
        args.append("--bare")
    if opts.single_branch:
        args.append("--single-branch")
    args.extend(["--", opts.url])
    if opts.directory:
        args.append(_path(opts.directory, "directory"))
    return GitCommand(args)


def _build_status(opts: StatusOptions, sign: Optional[bool]) -> GitCommand:
    args = ["status", "--porcelain=v2", "--branch"]
    args.append("--untracked-files=all" if opts.include_untracked else "--untracked-files=no")
    if opts.include_ignored:
        args.append("--ignored=matching")
    if opts.ignore_submodules:
        args.append("--ignore-submodules=all")
    return GitCommand(args)


def _build_clean(opts: CleanOptions, sign: Optional[bool]) -> GitCommand:
    if not opts.dry_run and not opts.force:
        raise GitValidationError.create(
            INVALID_OPTIONS,
            "clean requires dry_run or force",
            operation=GitOperation.CLEAN.value,
        )
    args = ["clean", "-n" if opts.dry_run else "-f"]
    if opts.directories:
        args.append("-d")
    if opts.include_ignored:
        args.append("-x")
    if opts.paths:
        args.extend(["--", *opts.paths])
    return GitCommand(args)


def _build_add(opts: AddOptions, sign: Optional[bool]) -> GitCommand:
    if not (opts.paths or opts.all or opts.update):
        raise GitValidationError.create(
            INVALID_OPTIONS,
            "add requires paths, all, or update",
            operation=GitOperation.ADD.value,
        )
    args = ["add"]
    if opts.all:
        args.append("--all")
    elif opts.update:
        args.append("--update")
    if opts.paths:
        args.extend(["--", *opts.paths])
    return GitCommand(args)


def _build_commit(opts: CommitOptions, sign: Optional[bool]) -> GitCommand:
    args = ["commit", "--file=-"]
    if opts.amend:
        args.append("--amend")
    if opts.allow_empty:
        args.append("--allow-empty")
    if opts.all:
        args.append("--all")
    if opts.no_verify:
        args.append("--no-verify")
    args.extend(_sign_flag(sign))

    env = {}
    if opts.author_name:
        env["GIT_AUTHOR_NAME"] = opts.author_name
    if opts.author_email:
        env["GIT_AUTHOR_EMAIL"] = opts.author_email
    return GitCommand(args, input=opts.message, env=env)


def _build_log(opts: LogOptions, sign: Optional[bool]) -> GitCommand:
    args = ["log", f"--max-count={opts.max_count}", f"--format={LOG_FORMAT}"]
    if opts.skip:
        args.append(f"--skip={opts.skip}")
    if opts.author:
        args.append(f"--author={opts.author}")
    if opts.since:
        args.append(f"--since={opts.since}")
    if opts.until:
        args.append(f"--until={opts.until}")
    if opts.ref:
        args.append(_ref(opts.ref))
    if opts.paths:
        args.extend(["--", *opts.paths])
    return GitCommand(args)


def _build_show(opts: ShowOptions, sign: Optional[bool]) -> GitCommand:
    args = ["show", f"--format={LOG_FORMAT}"]
    args.append("--numstat" if opts.stat else "--patch")
    args.append(_ref(opts.ref))
    return GitCommand(args)


def _build_diff(opts: DiffOptions, sign: Optional[bool]) -> GitCommand:
    args = ["diff", "--no-color", "--no-ext-diff"]
    if opts.staged:
        args.append("--cached")
    if opts.context_lines is not None:
        args.append(f"--unified={opts.context_lines}")
    if opts.stat:
        args.append("--numstat")
    if opts.ref:
        args.append(_ref(opts.ref))
    if opts.target:
        args.append(_ref(opts.target, "target"))
    if opts.paths:
        args.extend(["--", *opts.paths])
    return GitCommand(args)


def _build_blame(opts: BlameOptions, sign: Optional[bool]) -> GitCommand:
    args = ["blame", "--line-porcelain"]
    if opts.start_line is not None:
        end = opts.end_line if opts.end_line is not None else ""
        args.extend(["-L", f"{opts.start_line},{end}"])
    if opts.ref:
        args.append(_ref(opts.ref))
    args.extend(["--", opts.path])
    return GitCommand(args)


def _build_reflog(opts: ReflogOptions, sign: Optional[bool]) -> GitCommand:
    args = ["reflog", "show", "--date=unix", f"--format={REFLOG_FORMAT}"]
    if opts.max_count:
        args.append(f"--max-count={opts.max_count}")
    args.append(_ref(opts.ref))
    return GitCommand(args)


def _build_branch(opts: BranchOptions, sign: Optional[bool]) -> GitCommand:
    if opts.action == "list":
        args = ["for-each-ref", f"--format={BRANCH_FORMAT}"]
        if opts.all or not opts.remote:
            args.append("refs/heads")
        if opts.all or opts.remote:
            args.append("refs/remotes")
        return GitCommand(args)

    name = opts.name or ""
    if opts.action == "create":
        args = ["branch"]
        if opts.force:
            args.append("--force")
        args.append(_branch(name))
        if opts.start_point:
            args.append(_ref(opts.start_point, "start_point"))
        return GitCommand(args)
    if opts.action == "delete":
        return GitCommand(["branch", "-D" if opts.force else "-d", _ref(name, "name")])
    # rename
    return GitCommand([
        "branch",
        "-M" if opts.force else "-m",
        _ref(name, "name"),
        _branch(opts.new_name or "", "new_name"),
    ])


def _build_checkout(opts: CheckoutOptions, sign: Optional[bool]) -> GitCommand:
    args = ["checkout"]
    if opts.paths:
        if opts.ref:
            args.append(_ref(opts.ref))
        args.extend(["--", *opts.paths])
        return GitCommand(args)

    ref = opts.ref or ""
    if opts.create_branch:
        args.extend(["-B" if opts.force else "-b", _branch(ref, "ref")])
        if opts.start_point:
            args.append(_ref(opts.start_point, "start_point"))
        return GitCommand(args)

    if opts.force:
        args.append("--force")
    # Trailing -- disambiguates a ref from a same-named file
    args.extend([_ref(ref), "--"])
    return GitCommand(args)


def _build_merge(opts: MergeOptions, sign: Optional[bool]) -> GitCommand:
    if opts.abort:
        return GitCommand(["merge", "--abort"])
    args = ["merge"]
    if opts.no_ff:
        args.append("--no-ff")
    if opts.ff_only:
        args.append("--ff-only")
    if opts.squash:
        args.append("--squash")
    if opts.strategy:
        args.append(f"--strategy={opts.strategy}")
    message = None
    if opts.message:
        args.append("--file=-")
        message = opts.message
    else:
        args.append("--no-edit")
    if opts.creates_merge_commit:
        args.extend(_sign_flag(sign))
    args.append(_ref(opts.branch or "", "branch"))
    return GitCommand(args, input=message)


def _build_rebase(opts: RebaseOptions, sign: Optional[bool]) -> GitCommand:
    if opts.action != "start":
        return GitCommand(["rebase", f"--{opts.action}"])
    args = ["rebase"]
    if opts.onto:
        args.append(f"--onto={_ref(opts.onto, 'onto')}")
    args.append(_ref(opts.upstream or "", "upstream"))
    return GitCommand(args)


def _build_cherry_pick(opts: CherryPickOptions, sign: Optional[bool]) -> GitCommand:
    if opts.abort:
        return GitCommand(["cherry-pick", "--abort"])
    args = ["cherry-pick"]
    if opts.no_commit:
        args.append("--no-commit")
    if opts.mainline:
        args.append(f"--mainline={opts.mainline}")
    args.extend(_ref(c, "commits") for c in opts.commits)
    return GitCommand(args)


def _build_reset(opts: ResetOptions, sign: Optional[bool]) -> GitCommand:
    args = ["reset"]
    if not opts.paths:
        args.append(f"--{opts.mode}")
    if opts.ref:
        args.append(_ref(opts.ref))
    if opts.paths:
        args.extend(["--", *opts.paths])
    return GitCommand(args)


def _build_stash(opts: StashOptions, sign: Optional[bool]) -> GitCommand:
    if opts.action == "list":
        return GitCommand(["stash", "list"])
    if opts.action == "clear":
        return GitCommand(["stash", "clear"])
    if opts.action == "push":
        args = ["stash", "push"]
        if opts.include_untracked:
            args.append("--include-untracked")
        if opts.keep_index:
            args.append("--keep-index")
        if opts.message:
            args.append(f"--message={opts.message}")
        return GitCommand(args)
    # pop / apply / drop
    args = ["stash", opts.action]
    if opts.index is not None:
        args.append(f"stash@{{{opts.index}}}")
    return GitCommand(args)


def _build_worktree(opts: WorktreeOptions, sign: Optional[bool]) -> GitCommand:
    if opts.action == "list":
        return GitCommand(["worktree", "list", "--porcelain"])
    if opts.action == "prune":
        return GitCommand(["worktree", "prune", "--verbose"])

    path = _path(opts.path or "", "path")
    if opts.action == "add":
        args = ["worktree", "add"]
        if opts.branch:
            args.extend(["-b", _branch(opts.branch, "branch")])
        if opts.detach:
            args.append("--detach")
        if opts.force:
            args.append("--force")
        args.append(path)
        if opts.commitish:
            args.append(_ref(opts.commitish, "commitish"))
        return GitCommand(args)
    if opts.action == "remove":
        args = ["worktree", "remove"]
        if opts.force:
            args.append("--force")
        args.append(path)
        return GitCommand(args)
    # move
    return GitCommand(["worktree", "move", path, _path(opts.new_path or "", "new_path")])


def _build_tag(opts: TagOptions, sign: Optional[bool]) -> GitCommand:
    if opts.action == "list":
        args = ["tag", "--list"]
        if opts.pattern:
            args.append(_ref(opts.pattern, "pattern"))
        return GitCommand(args)
    name = opts.name or ""
    if opts.action == "delete":
        return GitCommand(["tag", "--delete", _ref(name, "name")])
    args = ["tag"]
    message = None
    if opts.message:
        args.extend(["--annotate", "--file=-"])
        message = opts.message
    if opts.force:
        args.append("--force")
    args.append(_branch(name))
    if opts.ref:
        args.append(_ref(opts.ref))
    return GitCommand(args, input=message)


def _build_remote(opts: RemoteOptions, sign: Optional[bool]) -> GitCommand:
    if opts.action == "list":
        return GitCommand(["remote", "--verbose"])
    name = _ref(opts.name or "", "name")
    if opts.action == "add":
        return GitCommand(["remote", "add", name, "--", opts.url or ""])
    if opts.action == "remove":
        return GitCommand(["remote", "remove", name])
    if opts.action == "rename":
        return GitCommand(["remote", "rename", name, _ref(opts.new_name or "", "new_name")])
    if opts.action == "get_url":
        return GitCommand(["remote", "get-url", name])
    return GitCommand(["remote", "set-url", name, "--", opts.url or ""])


def _build_fetch(opts: FetchOptions, sign: Optional[bool]) -> GitCommand:
    args = ["fetch"]
    if opts.prune:
        args.append("--prune")
    if opts.tags:
        args.append("--tags")
    if opts.depth:
        args.append(f"--depth={opts.depth}")
    args.append(_ref(opts.remote, "remote"))
    if opts.refspec:
        args.append(_ref(opts.refspec, "refspec"))
    return GitCommand(args)


def _build_pull(opts: PullOptions, sign: Optional[bool]) -> GitCommand:
    args = ["pull"]
    if opts.rebase:
        args.append("--rebase")
    elif opts.ff_only:
        args.append("--ff-only")
    else:
        args.append("--no-rebase")
    args.append(_ref(opts.remote, "remote"))
    if opts.branch:
        args.append(_ref(opts.branch, "branch"))
    return GitCommand(args)


def _build_push(opts: PushOptions, sign: Optional[bool]) -> GitCommand:
    args = ["push", "--porcelain"]
    if opts.set_upstream:
        args.append("--set-upstream")
    if opts.force_with_lease:
        args.append("--force-with-lease")
    if opts.tags:
        args.append("--tags")
    if opts.delete:
        args.append("--delete")
    args.append(_ref(opts.remote, "remote"))
    if opts.branch:
        args.append(_ref(opts.branch, "branch"))
    return GitCommand(args)


_BUILDERS: dict[GitOperation, Callable[..., GitCommand]] = {
    GitOperation.INIT: _build_init,
    GitOperation.CLONE: _build_clone,
    GitOperation.STATUS: _build_status,
    GitOperation.CLEAN: _build_clean,
    GitOperation.ADD: _build_add,
    GitOperation.COMMIT: _build_commit,
    GitOperation.LOG: _build_log,
    GitOperation.SHOW: _build_show,
    GitOperation.DIFF: _build_diff,
    GitOperation.BLAME: _build_blame,
    GitOperation.REFLOG: _build_reflog,
    GitOperation.BRANCH: _build_branch,
    GitOperation.CHECKOUT: _build_checkout,
    GitOperation.MERGE: _build_merge,
    GitOperation.REBASE: _build_rebase,
    GitOperation.CHERRY_PICK: _build_cherry_pick,
    GitOperation.RESET: _build_reset,
    GitOperation.STASH: _build_stash,
    GitOperation.WORKTREE: _build_worktree,
    GitOperation.TAG: _build_tag,
    GitOperation.REMOTE: _build_remote,
    GitOperation.FETCH: _build_fetch,
    GitOperation.PULL: _build_pull,
    GitOperation.PUSH: _build_push,
}


def build_command(
    operation: GitOperation,
    options: OperationOptions,
    *,
    sign: Optional[bool] = None,
) -> GitCommand:
    """Build the git command for ``operation``.

    Args:
        operation: Operation to build.
        options: The operation's options model.
        sign: Resolved signing choice for commit/merge. ``None`` falls
            back to ``options.sign`` when the model has one.

    Raises:
        GitValidationError: Unsupported operation, mismatched options, or
            a precondition of the operation not met.
    """
    builder = _BUILDERS.get(operation)
    if builder is None:
        raise GitValidationError.create(
            UNSUPPORTED_OPERATION, f"Unsupported operation: {operation}"
        )
    expected = OPTIONS_BY_OPERATION[operation]
    if not isinstance(options, expected):
        raise GitValidationError.create(
            INVALID_OPTIONS,
            f"{operation.value} expects {expected.__name__}, got {type(options).__name__}",
            operation=operation.value,
        )
    if sign is None:
        sign = getattr(options, "sign", None)
    return builder(options, sign)


def build(operation: GitOperation, options: OperationOptions) -> list[str]:
    """Return just the argument vector for ``operation``."""
    return build_command(operation, options).args


def build_rev_parse_head() -> GitCommand:
    return GitCommand(["rev-parse", "--verify", "HEAD"])


def build_version() -> GitCommand:
    return GitCommand(["--version"])
