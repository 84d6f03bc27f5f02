"""Parsers for git's machine-readable and semi-structured output.

Each parser documents the exact format it expects. The formats assume
git >= 2.25 invoked with ``LC_ALL=C`` and the flags emitted by
``command_builder``. A parser that meets a line it cannot interpret on an
otherwise successful run raises ``ParseError`` naming that line, rather
than guessing.
"""

from __future__ import annotations

import re
from typing import Optional

from git_engine.errors import ParseError
from git_engine.models import (
    BlameLine,
    BranchInfo,
    CommitInfo,
    FileStat,
    PushRefResult,
    RefUpdate,
    ReflogEntry,
    RemoteInfo,
    RenamedPath,
    StashEntry,
    StatusResult,
    WorktreeInfo,
)

# ---------------------------------------------------------------------------
# Formats requested from git
# ---------------------------------------------------------------------------

FIELD_SEP = "\x1f"
RECORD_SEP = "\x1e"

# hash, short hash, author name, author email, author time, parents, subject, body
LOG_FORMAT = "%H%x1f%h%x1f%an%x1f%ae%x1f%at%x1f%P%x1f%s%x1f%b%x1e"
_LOG_FIELD_COUNT = 8

BRANCH_FORMAT = (
    "%(HEAD)%1f%(refname)%1f%(objectname)%1f%(upstream:short)%1f%(upstream:track)"
)

# With --date=unix the selector is the entry's Unix timestamp: HEAD@{1700000000}
REFLOG_FORMAT = "%H %gd: %gs"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_C_ESCAPES = {
    "a": 7, "b": 8, "t": 9, "n": 10, "v": 11, "f": 12, "r": 13,
    '"': 34, "\\": 92,
}


def unquote_path(path: str) -> str:
    """Undo git's C-style quoting of unusual path names (core.quotePath)."""
    if len(path) < 2 or not (path.startswith('"') and path.endswith('"')):
        return path
    body = path[1:-1]
    out = bytearray()
    i = 0
    while i < len(body):
        ch = body[i]
        if ch != "\\" or i + 1 >= len(body):
            out.extend(ch.encode("utf-8"))
            i += 1
            continue
        nxt = body[i + 1]
        if nxt in _C_ESCAPES:
            out.append(_C_ESCAPES[nxt])
            i += 2
        elif body[i + 1:i + 4].isdigit() and len(body[i + 1:i + 4]) == 3:
            out.append(int(body[i + 1:i + 4], 8) & 0xFF)
            i += 4
        else:
            out.extend(nxt.encode("utf-8"))
            i += 2
    return out.decode("utf-8", errors="replace")


def _lines(text: str) -> list[str]:
    return [line for line in text.splitlines() if line.strip()]


# ---------------------------------------------------------------------------
# status --porcelain=v2 --branch
# ---------------------------------------------------------------------------

_STATUS_CATEGORIES = {
    "A": "added",
    "M": "modified",
    "T": "modified",
    "D": "deleted",
    "R": "renamed",
    "C": "copied",
}


def parse_status(output: str) -> StatusResult:
    """Parse ``git status --porcelain=v2 --branch`` output.

    Header lines start with ``#`` (branch.oid, branch.head,
    branch.upstream, branch.ab; others are ignored). Entry lines:

    - ``1 XY sub mH mI mW hH hI path``
    - ``2 XY sub mH mI mW hH hI Xscore path<TAB>origPath``
    - ``u XY sub m1 m2 m3 mW h1 h2 h3 path``
    - ``? path`` / ``! path``

    X is the index status, Y the working-tree status, ``.`` meaning
    unchanged. A path is categorized by X when staged, else by Y.
    """
    fields: dict = {
        "added": [], "modified": [], "deleted": [], "renamed": [], "copied": [],
        "untracked": [], "ignored": [], "conflicted": [], "staged": [], "unstaged": [],
    }
    branch: Optional[str] = None
    head_oid: Optional[str] = None
    upstream: Optional[str] = None
    ahead = behind = 0

    for line in output.splitlines():
        if not line:
            continue
        kind = line[0]

        if kind == "#":
            parts = line[2:].split(" ", 1)
            key = parts[0]
            value = parts[1] if len(parts) > 1 else ""
            if key == "branch.oid":
                head_oid = None if value == "(initial)" else value
            elif key == "branch.head":
                branch = None if value == "(detached)" else value
            elif key == "branch.upstream":
                upstream = value
            elif key == "branch.ab":
                m = re.match(r"^\+(\d+) -(\d+)$", value)
                if not m:
                    raise ParseError("status", line, "malformed ahead/behind header")
                ahead, behind = int(m.group(1)), int(m.group(2))
            continue

        if kind == "?":
            fields["untracked"].append(unquote_path(line[2:]))
            continue
        if kind == "!":
            fields["ignored"].append(unquote_path(line[2:]))
            continue

        if kind == "u":
            parts = line.split(" ", 10)
            if len(parts) != 11:
                raise ParseError("status", line, "malformed unmerged entry")
            fields["conflicted"].append(unquote_path(parts[10]))
            continue

        if kind == "1":
            parts = line.split(" ", 8)
            if len(parts) != 9:
                raise ParseError("status", line, "malformed changed entry")
            xy, path, orig = parts[1], unquote_path(parts[8]), None
        elif kind == "2":
            parts = line.split(" ", 9)
            if len(parts) != 10 or "\t" not in parts[9]:
                raise ParseError("status", line, "malformed rename/copy entry")
            new_path, orig_path = parts[9].split("\t", 1)
            xy, path, orig = parts[1], unquote_path(new_path), unquote_path(orig_path)
        else:
            raise ParseError("status", line)

        if len(xy) != 2:
            raise ParseError("status", line, "malformed XY status")
        x, y = xy[0], xy[1]
        if x != ".":
            fields["staged"].append(path)
        if y != ".":
            fields["unstaged"].append(path)

        code = x if x != "." else y
        category = _STATUS_CATEGORIES.get(code)
        if category is None:
            raise ParseError("status", line, f"unknown status code {code!r}")
        if category in ("renamed", "copied"):
            fields[category].append(RenamedPath(path=path, orig_path=orig or path))
        else:
            fields[category].append(path)

    return StatusResult(
        branch=branch,
        head_oid=head_oid,
        upstream=upstream,
        ahead=ahead,
        behind=behind,
        **fields,
    )


# ---------------------------------------------------------------------------
# clean
# ---------------------------------------------------------------------------

_CLEAN_RE = re.compile(r"^(?:Removing|Would remove) (.+)$")
_CLEAN_SKIP_RE = re.compile(r"^(?:Would skip|Skipping) repository ")


def parse_clean(output: str) -> tuple[list[str], list[str]]:
    """Parse ``git clean`` output into (files, directories).

    Lines are ``Removing <path>`` or ``Would remove <path>``; directories
    carry a trailing ``/``. Nested repositories that git declines to touch
    (``Would skip repository`` / ``Skipping repository``) are ignored.
    """
    files: list[str] = []
    directories: list[str] = []
    for line in _lines(output):
        if _CLEAN_SKIP_RE.match(line):
            continue
        m = _CLEAN_RE.match(line)
        if not m:
            raise ParseError("clean", line)
        path = unquote_path(m.group(1))
        if path.endswith("/"):
            directories.append(path)
        else:
            files.append(path)
    return files, directories


# ---------------------------------------------------------------------------
# log / show
# ---------------------------------------------------------------------------


def _parse_commit_record(record: str) -> CommitInfo:
    parts = record.split(FIELD_SEP)
    if len(parts) != _LOG_FIELD_COUNT:
        raise ParseError("log", record, f"expected {_LOG_FIELD_COUNT} fields, got {len(parts)}")
    full, short, name, email, when, parents, subject, body = parts
    try:
        timestamp = int(when)
    except ValueError:
        raise ParseError("log", record, "non-numeric author time")
    return CommitInfo(
        hash=full,
        short_hash=short,
        author_name=name,
        author_email=email,
        timestamp=timestamp,
        subject=subject,
        parents=parents.split(),
        body=body.strip(),
    )


def parse_log(output: str) -> list[CommitInfo]:
    """Parse ``git log --format=LOG_FORMAT`` output.

    Records end with ``\\x1e`` and fields are separated by ``\\x1f``.
    """
    commits = []
    for record in output.split(RECORD_SEP):
        record = record.strip("\n")
        if not record.strip():
            continue
        commits.append(_parse_commit_record(record))
    return commits


def parse_show(output: str) -> tuple[CommitInfo, str]:
    """Parse ``git show --format=LOG_FORMAT`` output into (commit, remainder).

    The remainder is the patch or numstat block following the header.
    """
    header, sep, rest = output.partition(RECORD_SEP)
    if not sep:
        raise ParseError("show", output.splitlines()[0] if output else "", "missing commit header")
    return _parse_commit_record(header.strip("\n")), rest.lstrip("\n")


_NUMSTAT_RE = re.compile(r"^(\d+|-)\t(\d+|-)\t(.+)$")


def parse_numstat(output: str) -> list[FileStat]:
    """Parse ``--numstat`` lines: ``<adds>\\t<dels>\\t<path>`` (``-`` for binary)."""
    stats = []
    for line in _lines(output):
        m = _NUMSTAT_RE.match(line)
        if not m:
            raise ParseError("numstat", line)
        adds, dels, path = m.groups()
        stats.append(
            FileStat(
                path=unquote_path(path),
                additions=None if adds == "-" else int(adds),
                deletions=None if dels == "-" else int(dels),
            )
        )
    return stats


# ---------------------------------------------------------------------------
# commit
# ---------------------------------------------------------------------------

_COMMIT_SUMMARY_RE = re.compile(
    r"^\[(?P<branch>.+?) (?:\((?P<root>root-commit)\) )?(?P<hash>[0-9a-f]{7,64})\] (?P<subject>.*)$"
)


def parse_commit_summary(output: str) -> dict:
    """Find the ``[branch (root-commit) abc1234] subject`` line of ``git commit``."""
    for line in output.splitlines():
        m = _COMMIT_SUMMARY_RE.match(line)
        if m:
            branch = m.group("branch")
            return {
                "branch": None if branch.startswith("detached HEAD") else branch,
                "short_hash": m.group("hash"),
                "root_commit": m.group("root") is not None,
                "subject": m.group("subject"),
            }
    first = output.splitlines()[0] if output.strip() else ""
    raise ParseError("commit", first, "missing commit summary line")


# ---------------------------------------------------------------------------
# reflog
# ---------------------------------------------------------------------------

_REFLOG_RE = re.compile(
    r"^(?P<hash>[0-9a-f]{7,64}) (?P<ref>\S+?@\{(?P<selector>[^}]*)\}): (?P<rest>.*)$"
)


def parse_reflog(output: str) -> list[ReflogEntry]:
    """Parse ``git reflog show --date=unix --format=REFLOG_FORMAT`` output.

    Each line is ``<hash> <ref>@{<unix time>}: <action>: <message>``.
    Entries keep emission order (newest first).
    """
    entries = []
    for line in _lines(output):
        m = _REFLOG_RE.match(line)
        if not m:
            raise ParseError("reflog", line)
        rest = m.group("rest")
        action, sep, message = rest.partition(": ")
        if not sep:
            action, message = rest, ""
        selector = m.group("selector")
        entries.append(
            ReflogEntry(
                hash=m.group("hash"),
                ref_name=m.group("ref"),
                action=action,
                message=message,
                timestamp=int(selector) if selector.isdigit() else None,
            )
        )
    return entries


# ---------------------------------------------------------------------------
# branch (for-each-ref)
# ---------------------------------------------------------------------------

_TRACK_RE = re.compile(r"(ahead|behind) (\d+)")


def parse_branches(output: str) -> list[BranchInfo]:
    """Parse ``git for-each-ref --format=BRANCH_FORMAT`` output."""
    branches = []
    for line in _lines(output):
        parts = line.split(FIELD_SEP)
        if len(parts) != 5:
            raise ParseError("branch", line, "expected 5 fields")
        head, refname, objectname, upstream, track = parts
        if refname.startswith("refs/heads/"):
            name, remote = refname[len("refs/heads/"):], False
        elif refname.startswith("refs/remotes/"):
            name, remote = refname[len("refs/remotes/"):], True
            if name.endswith("/HEAD"):
                continue
        else:
            raise ParseError("branch", line, "unexpected ref namespace")
        counts = {k: int(v) for k, v in _TRACK_RE.findall(track)}
        branches.append(
            BranchInfo(
                name=name,
                hash=objectname,
                current=head == "*",
                remote=remote,
                upstream=upstream or None,
                ahead=counts.get("ahead", 0),
                behind=counts.get("behind", 0),
                gone=track == "[gone]",
            )
        )
    return branches


# ---------------------------------------------------------------------------
# stash list
# ---------------------------------------------------------------------------

_STASH_RE = re.compile(r"^(?P<ref>stash@\{\d+\}): (?P<description>.*)$")
_STASH_BRANCH_RE = re.compile(r"^(?:WIP on|On) (?P<branch>[^:]+): (?P<message>.*)$")


def parse_stash_list(output: str) -> list[StashEntry]:
    """Parse ``git stash list``: ``stash@{N}: <description>`` per line.

    The index is the entry's position in the list.
    """
    entries = []
    for index, line in enumerate(_lines(output)):
        m = _STASH_RE.match(line)
        if not m:
            raise ParseError("stash", line)
        description = m.group("description")
        bm = _STASH_BRANCH_RE.match(description)
        entries.append(
            StashEntry(
                index=index,
                ref=m.group("ref"),
                branch=bm.group("branch") if bm else None,
                message=bm.group("message") if bm else description,
            )
        )
    return entries


# ---------------------------------------------------------------------------
# worktree list --porcelain
# ---------------------------------------------------------------------------


def parse_worktrees(output: str) -> list[WorktreeInfo]:
    """Parse ``git worktree list --porcelain``.

    Blocks separated by blank lines, each starting ``worktree <path>``
    followed by ``HEAD``, ``branch``, ``detached``, ``bare``,
    ``locked [reason]`` or ``prunable [reason]``. Unknown attributes are
    skipped.
    """
    worktrees: list[WorktreeInfo] = []
    current: Optional[dict] = None

    def flush() -> None:
        if current is not None:
            worktrees.append(WorktreeInfo(**current))

    for line in output.splitlines():
        if not line.strip():
            flush()
            current = None
            continue
        key, _, value = line.partition(" ")
        if key == "worktree":
            flush()
            current = {"path": value}
            continue
        if current is None:
            raise ParseError("worktree", line, "attribute before worktree line")
        if key == "HEAD":
            current["head"] = value
        elif key == "branch":
            current["branch"] = value[len("refs/heads/"):] if value.startswith("refs/heads/") else value
        elif key in ("detached", "bare"):
            current[key] = True
        elif key == "locked":
            current["locked"] = True
            current["lock_reason"] = value or None
        elif key == "prunable":
            current["prunable"] = True
            current["prunable_reason"] = value or None
    flush()
    return worktrees


# ---------------------------------------------------------------------------
# remote -v
# ---------------------------------------------------------------------------

_REMOTE_RE = re.compile(r"^(?P<name>\S+)\t(?P<url>.+) \((?P<kind>fetch|push)\)$")


def parse_remotes(output: str) -> list[RemoteInfo]:
    """Parse ``git remote --verbose``: ``<name>\\t<url> (fetch|push)``."""
    remotes: dict[str, dict] = {}
    for line in _lines(output):
        m = _REMOTE_RE.match(line)
        if not m:
            raise ParseError("remote", line)
        entry = remotes.setdefault(m.group("name"), {"name": m.group("name")})
        entry[f"{m.group('kind')}_url"] = m.group("url")
    return [RemoteInfo(**entry) for entry in remotes.values()]


# ---------------------------------------------------------------------------
# blame --line-porcelain
# ---------------------------------------------------------------------------

_BLAME_HEADER_RE = re.compile(r"^([0-9a-f]{40,64}) (\d+) (\d+)(?: \d+)?$")


def parse_blame(output: str) -> list[BlameLine]:
    """Parse ``git blame --line-porcelain``.

    Every line group is a header ``<hash> <orig> <final> [<count>]``,
    ``key value`` attribute lines, and the content line prefixed by a TAB.
    """
    lines: list[BlameLine] = []
    header: Optional[re.Match] = None
    attrs: dict[str, str] = {}
    for line in output.splitlines():
        if line.startswith("\t"):
            if header is None:
                raise ParseError("blame", line, "content before header")
            lines.append(
                BlameLine(
                    line_number=int(header.group(3)),
                    hash=header.group(1),
                    author=attrs.get("author", ""),
                    author_time=int(attrs.get("author-time", "0")),
                    content=line[1:],
                )
            )
            header, attrs = None, {}
            continue
        if header is None:
            if not line:
                continue
            header = _BLAME_HEADER_RE.match(line)
            if header is None:
                raise ParseError("blame", line)
            continue
        key, _, value = line.partition(" ")
        attrs[key] = value
    return lines


# ---------------------------------------------------------------------------
# fetch / pull / merge / push
# ---------------------------------------------------------------------------

_REF_UPDATE_RE = re.compile(
    r"^ (?P<flag>[ *+\-t!=]) (?P<summary>\[[^\]]+\]|[0-9a-f]+\.\.\.?[0-9a-f]+)\s+"
    r"(?P<from>\S+)\s+->\s+(?P<to>\S+)(?:\s+\((?P<reason>[^)]*)\))?\s*$"
)

_BRACKET_KINDS = {
    "[new branch]": "new_branch",
    "[new tag]": "new_tag",
    "[new ref]": "new_ref",
    "[deleted]": "deleted",
    "[tag update]": "tag_update",
}


def parse_ref_updates(stderr: str) -> list[RefUpdate]:
    """Recover ref changes from fetch/pull stderr.

    Lines look like `` * [new branch]      feature -> origin/feature``,
    `` - [deleted]         (none)  -> origin/old`` or
    ``   abc1234..def5678  main    -> origin/main``. Progress, ``From``,
    ``remote:`` and up-to-date lines are skipped.
    """
    updates = []
    for line in stderr.splitlines():
        m = _REF_UPDATE_RE.match(line)
        if not m:
            continue
        flag, summary = m.group("flag"), m.group("summary")
        src, dst = m.group("from"), m.group("to")
        old = new = None
        if summary.startswith("["):
            kind = _BRACKET_KINDS.get(summary)
            if kind is None:
                continue
        else:
            kind = "forced" if flag == "+" else "updated"
            old, _, new = re.split(r"(\.\.\.?)", summary, maxsplit=1)
        updates.append(
            RefUpdate(
                kind=kind,
                ref=dst if src == "(none)" else src,
                local_ref=dst,
                old=old,
                new=new,
            )
        )
    return updates


_MERGE_CONFLICT_RE = re.compile(r"Merge conflict in (.+)$")
_OTHER_CONFLICT_RE = re.compile(r"CONFLICT \([^)]*\): (\S+)")


def parse_conflicts(text: str) -> list[str]:
    """Paths named on ``CONFLICT (...)`` lines, in order, without duplicates."""
    paths: list[str] = []
    for line in text.splitlines():
        if "CONFLICT" not in line:
            continue
        m = _MERGE_CONFLICT_RE.search(line) or _OTHER_CONFLICT_RE.search(line)
        if m and m.group(1) not in paths:
            paths.append(m.group(1))
    return paths


_DIFFSTAT_RE = re.compile(r"^ (\S.*?)\s+\|\s+(?:\d+|Bin)")


def parse_diffstat_paths(output: str) -> list[str]:
    """Paths from a ``--stat`` block (`` path | 3 +-``)."""
    paths = []
    for line in output.splitlines():
        m = _DIFFSTAT_RE.match(line)
        if m:
            paths.append(m.group(1).strip())
    return paths


def is_fast_forward(stdout: str, stderr: str = "") -> bool:
    return "Fast-forward" in stdout or "Fast-forward" in stderr


def is_up_to_date(stdout: str, stderr: str = "") -> bool:
    text = stdout + "\n" + stderr
    return "Already up to date" in text or "Already up-to-date" in text or " is up to date" in text


_PUSH_REF_RE = re.compile(
    r"^(?P<flag>[ +\-*=!])\t(?P<from>[^:\t]*):(?P<to>[^\t]+)\t(?P<summary>.*)$"
)
_PUSH_TRACKING_RE = re.compile(r"^branch '.+' set up to track ")


def parse_push(stdout: str) -> tuple[Optional[str], list[PushRefResult]]:
    """Parse ``git push --porcelain`` stdout into (url, refs).

    Format: ``To <url>``, then ``<flag>\\t<from>:<to>\\t<summary>`` per
    ref, then ``Done``.
    """
    url = None
    refs = []
    for line in _lines(stdout):
        if line.startswith("To "):
            url = line[3:]
            continue
        if line == "Done" or _PUSH_TRACKING_RE.match(line):
            continue
        m = _PUSH_REF_RE.match(line)
        if not m:
            raise ParseError("push", line)
        refs.append(
            PushRefResult(
                flag=m.group("flag"),
                local_ref=m.group("from") or None,
                remote_ref=m.group("to"),
                summary=m.group("summary"),
            )
        )
    return url, refs


# ---------------------------------------------------------------------------
# init / clone / reset / version
# ---------------------------------------------------------------------------

_INIT_RE = re.compile(
    r"^(?P<kind>Reinitialized existing|Initialized empty) (?:shared )?Git repository in (?P<path>.+)$"
)


def parse_init(output: str) -> tuple[str, bool]:
    """Parse ``git init`` output into (git dir, reinitialized)."""
    for line in _lines(output):
        m = _INIT_RE.match(line)
        if m:
            return m.group("path").rstrip("/"), m.group("kind").startswith("Re")
    first = output.splitlines()[0] if output.strip() else ""
    raise ParseError("init", first, "missing repository line")


_CLONE_RE = re.compile(r"^Cloning into (?:bare repository )?'(?P<dir>.+)'\.\.\.$")


def parse_clone_directory(stderr: str) -> Optional[str]:
    for line in stderr.splitlines():
        m = _CLONE_RE.match(line.strip())
        if m:
            return m.group("dir")
    return None


_RESET_PATH_RE = re.compile(r"^[MADTU]\t(.+)$")


def parse_reset_unstaged(output: str) -> list[str]:
    """Paths listed after ``Unstaged changes after reset:``."""
    return [
        unquote_path(m.group(1))
        for m in (_RESET_PATH_RE.match(line) for line in output.splitlines())
        if m
    ]


_VERSION_RE = re.compile(r"git version (\S+)")


def parse_git_version(output: str) -> Optional[str]:
    m = _VERSION_RE.search(output)
    return m.group(1) if m else None
