"""
Top-level pytest conftest.py -- shared fixtures for git-engine tests.

Provides:
    has_git       - session-scoped check for a git binary
    requires_git  - skip the test when git is not installed
    git           - run_git helper for direct git calls in tests
    local_repo    - temporary directory with a deterministic git repo
    make_result   - factory for ProcessResult values
"""

import os
import shutil
import subprocess

import pytest

from git_engine.models import ProcessResult

GIT_IDENTITY_ENV = {
    "GIT_AUTHOR_NAME": "Test User",
    "GIT_AUTHOR_EMAIL": "test@example.com",
    "GIT_COMMITTER_NAME": "Test User",
    "GIT_COMMITTER_EMAIL": "test@example.com",
}


@pytest.fixture(scope="session")
def has_git():
    """Return True if the ``git`` command is on PATH."""
    return shutil.which("git") is not None


@pytest.fixture
def requires_git(has_git):
    """Skip the test when git is not installed."""
    if not has_git:
        pytest.skip("git is not available")


def run_git(repo, *args, check=True):
    """Run git directly (bypassing the engine) for test setup."""
    env = {**os.environ, **GIT_IDENTITY_ENV}
    return subprocess.run(
        ["git", *args],
        cwd=str(repo),
        env=env,
        capture_output=True,
        text=True,
        check=check,
    )


@pytest.fixture
def git():
    """The run_git helper, for tests that drive git directly."""
    return run_git


@pytest.fixture
def local_repo(tmp_path, requires_git):
    """Create a temporary directory containing a deterministic git repo.

    The repo has ``main`` as its default branch, a single ``README.md``,
    and one initial commit. Identity and signing are configured in the
    repo itself because the engine does not pass GIT_* variables through.
    Yields the ``pathlib.Path`` to the repo root.
    """
    repo = tmp_path / "repo"
    repo.mkdir()

    run_git(repo, "init", "-b", "main")
    run_git(repo, "config", "user.name", "Test User")
    run_git(repo, "config", "user.email", "test@example.com")
    run_git(repo, "config", "commit.gpgsign", "false")
    run_git(repo, "config", "tag.gpgsign", "false")
    (repo / "README.md").write_text("# Test Repository\n")
    run_git(repo, "add", "README.md")
    run_git(repo, "commit", "-m", "Initial commit")

    yield repo


@pytest.fixture
def make_result():
    """Factory for ProcessResult values used by fake executors."""

    def _make(exit_code=0, stdout="", stderr="", **kwargs):
        return ProcessResult(exit_code=exit_code, stdout=stdout, stderr=stderr, **kwargs)

    return _make
