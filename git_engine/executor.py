"""Bounded git process execution.

Spawns the git binary with a sanitized, non-interactive environment and
enforces two bounds on every run: a wall-clock timeout and a per-stream
output cap. Whichever trips first kills the process (its whole process
group on POSIX) and the returned ``ProcessResult`` says which.

A process that cannot be started raises ``SpawnError``; that is distinct
from a process that ran and exited non-zero.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from typing import IO, Mapping, Optional, Sequence

from git_engine.config import EngineConfig
from git_engine.errors import SpawnError
from git_engine.models import ProcessResult

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024
_POLL_INTERVAL = 0.05
_REAP_TIMEOUT = 5.0
_POSIX = os.name == "posix"

# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

ENV_ALLOWED: frozenset = frozenset({
    "PATH",
    "HOME",
    "USER",
    "TERM",
    "TMPDIR",
    "TZ",
    "XDG_CONFIG_HOME",
    "SSH_AUTH_SOCK",
    "GNUPGHOME",
    "SYSTEMROOT",
})

# Applied after the allowlist, before caller overrides.
GIT_ENV_DEFAULTS: dict[str, str] = {
    "GIT_TERMINAL_PROMPT": "0",
    "GCM_INTERACTIVE": "never",
    "GIT_PAGER": "cat",
    "PAGER": "cat",
    "GIT_EDITOR": "true",
    "LC_ALL": "C",
    "LANG": "C",
}


def build_git_env(
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """Build a sanitized environment for git subprocess execution.

    Starts from an empty env and only copies allowed variables from
    ``base`` (default ``os.environ``). All other GIT_* variables are
    excluded, so a caller's GIT_DIR or GIT_WORK_TREE cannot redirect the
    operation.
    """
    source = os.environ if base is None else base
    clean: dict[str, str] = {}

    for key in ENV_ALLOWED:
        val = source.get(key)
        if val is not None:
            clean[key] = val

    # Ensure PATH is always set
    if "PATH" not in clean:
        clean["PATH"] = "/usr/local/bin:/usr/bin:/bin"

    clean.update(GIT_ENV_DEFAULTS)
    if overrides:
        clean.update(overrides)
    return clean


# ---------------------------------------------------------------------------
# Spawners
# ---------------------------------------------------------------------------


class ProcessSpawner(ABC):
    """Runs one process to completion under time and output bounds."""

    @abstractmethod
    def run(
        self,
        argv: Sequence[str],
        cwd: str,
        env: Mapping[str, str],
        timeout_s: float,
        max_buffer_bytes: int,
        input: Optional[str] = None,
    ) -> ProcessResult:
        """Run ``argv`` and return its bounded result.

        Raises:
            SpawnError: The process could not be started.
        """


class _StreamCollector(threading.Thread):
    """Drains one pipe into memory, stopping at the byte cap."""

    def __init__(self, stream: IO[bytes], limit: int, overflow: threading.Event):
        super().__init__(daemon=True)
        self._stream = stream
        self._limit = limit
        self._overflow = overflow
        self.data = bytearray()

    def run(self) -> None:
        try:
            for chunk in iter(lambda: self._stream.read1(_READ_CHUNK), b""):
                room = self._limit - len(self.data)
                if len(chunk) > room:
                    self.data.extend(chunk[:room])
                    self._overflow.set()
                    return
                self.data.extend(chunk)
        except (OSError, ValueError):
            # Pipe closed underneath us after a kill
            return
        finally:
            try:
                self._stream.close()
            except OSError:
                pass

    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")


def _feed_stdin(stream: IO[bytes], payload: bytes) -> None:
    try:
        stream.write(payload)
    except (BrokenPipeError, OSError):
        pass
    finally:
        try:
            stream.close()
        except OSError:
            pass


def _kill(proc: subprocess.Popen) -> None:
    """Kill the process, and its process group on POSIX."""
    if _POSIX:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
    try:
        proc.kill()
    except ProcessLookupError:
        pass
    try:
        proc.wait(timeout=_REAP_TIMEOUT)
    except subprocess.TimeoutExpired:
        logger.warning("Process %d did not exit after SIGKILL", proc.pid)


class SubprocessSpawner(ProcessSpawner):
    """``subprocess.Popen`` with reader threads for both streams."""

    def run(
        self,
        argv: Sequence[str],
        cwd: str,
        env: Mapping[str, str],
        timeout_s: float,
        max_buffer_bytes: int,
        input: Optional[str] = None,
    ) -> ProcessResult:
        start = time.monotonic()
        payload = None
        if input is not None:
            try:
                payload = input.encode("utf-8")
            except UnicodeEncodeError as e:
                raise SpawnError(argv[0], f"stdin is not valid UTF-8: {e.reason}") from e
        try:
            proc = subprocess.Popen(
                list(argv),
                cwd=cwd,
                env=dict(env),
                stdin=subprocess.PIPE if payload is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=_POSIX,
            )
        except OSError as e:
            raise SpawnError(argv[0], e.strerror or str(e)) from e
        except ValueError as e:
            # Unencodable argv or env entries (lone surrogates, embedded NUL)
            raise SpawnError(argv[0], str(e)) from e

        overflow = threading.Event()
        stdout = _StreamCollector(proc.stdout, max_buffer_bytes, overflow)
        stderr = _StreamCollector(proc.stderr, max_buffer_bytes, overflow)
        stdout.start()
        stderr.start()

        writer = None
        if payload is not None:
            writer = threading.Thread(
                target=_feed_stdin,
                args=(proc.stdin, payload),
                daemon=True,
            )
            writer.start()

        deadline = start + timeout_s
        timed_out = False
        while True:
            if overflow.is_set():
                break
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                timed_out = True
                break
            try:
                proc.wait(timeout=min(remaining, _POLL_INTERVAL))
                break
            except subprocess.TimeoutExpired:
                continue

        truncated = overflow.is_set()
        if timed_out or truncated:
            _kill(proc)

        for thread in (stdout, stderr, writer):
            if thread is not None:
                thread.join(timeout=_REAP_TIMEOUT)

        # A process can exit in the same instant its output overflows
        truncated = truncated or overflow.is_set()
        killed = timed_out or truncated
        elapsed_ms = int((time.monotonic() - start) * 1000)

        return ProcessResult(
            exit_code=None if killed else proc.returncode,
            stdout=stdout.text(),
            stderr=stderr.text(),
            elapsed_ms=elapsed_ms,
            timed_out=timed_out,
            truncated=truncated,
        )


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class GitExecutor:
    """Runs validated git argument vectors with engine-wide bounds."""

    def __init__(self, config: EngineConfig, spawner: Optional[ProcessSpawner] = None):
        self.config = config
        self.spawner = spawner or SubprocessSpawner()

    def run(
        self,
        args: Sequence[str],
        cwd: str,
        env: Optional[Mapping[str, str]] = None,
        timeout_ms: Optional[int] = None,
        input: Optional[str] = None,
    ) -> ProcessResult:
        """Run ``git <args>`` in ``cwd``.

        Args:
            args: Validated arguments (excluding the git binary).
            cwd: Absolute working directory.
            env: Extra environment variables applied last.
            timeout_ms: Per-call timeout; defaults to the configured one.
            input: Text written to the process's stdin.

        Returns:
            ProcessResult, including for non-zero exits, timeouts and
            output-cap kills.

        Raises:
            SpawnError: git could not be started.
        """
        argv = [self.config.git_binary, *args]
        timeout = timeout_ms if timeout_ms is not None else self.config.timeout_ms
        logger.debug("Running %s in %s", " ".join(argv), cwd)

        result = self.spawner.run(
            argv,
            cwd=cwd,
            env=build_git_env(env),
            timeout_s=timeout / 1000.0,
            max_buffer_bytes=self.config.max_buffer_bytes,
            input=input,
        )

        if result.timed_out:
            logger.warning(
                "git %s timed out after %dms", args[0] if args else "", timeout
            )
        elif result.truncated:
            logger.warning(
                "git %s exceeded output limit of %d bytes",
                args[0] if args else "",
                self.config.max_buffer_bytes,
            )
        return result
